"""
Custom exceptions for the Parcel Scanner application.

This module defines application-specific exceptions for better error handling,
operator feedback, and debugging. Using custom exceptions allows the application to:
- Separate "the scan was repeated" from "the network is down"
- Include contextual information (conflicting code, carrier id, storage key)
- Let the scan station decide which failures go to the offline queue
- Improve logging and error reporting

Most scan problems are NOT exceptions: an unknown code, a repeated code or a
busy scanner are reported as ScanOutcome values. The classes below cover the
failures that genuinely interrupt an operation.

Exception hierarchy:
    ScannerError (base)
    ├── NetworkError (remote store / order API unreachable)
    ├── PersistenceError (remote store rejected the operation)
    │   └── DuplicateCodeError (unique constraint on code)
    ├── CarrierConfigError (malformed carrier rules)
    ├── StorageCorruptionError (local store value unreadable)
    ├── ConfigurationError (config.ini / environment incomplete)
    └── ValidationError (input validation failures)
"""

from typing import Optional


class ScannerError(Exception):
    """
    Base exception for all Parcel Scanner errors.

    All application-specific exceptions inherit from this class.
    This allows catching all application errors with a single except clause:
        try:
            # ... application code ...
        except ScannerError as e:
            logger.error(f"Application error: {e}")

    Note: This does NOT inherit from built-in errors like ValueError, IOError
    to maintain clear separation between application and system errors.
    """
    pass


class NetworkError(ScannerError):
    """
    Raised when the remote store or the order API cannot be reached.

    Common scenarios at a packing station:
    - Wi-Fi drops in the back of the warehouse
    - Upstream service timeout
    - DNS / TLS failures on a flaky mobile hotspot

    A NetworkError during a scan is retryable: the scan station puts the
    record into the offline queue instead of losing it.
    """
    pass


class PersistenceError(ScannerError):
    """
    Raised when the remote store answered but refused the operation.

    Unlike NetworkError the request reached the server, so retrying the same
    payload is unlikely to help without operator attention.

    Attributes:
        code (str | None): Backend error code if one was returned (e.g. "42501")
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class DuplicateCodeError(PersistenceError):
    """
    Raised when inserting a scan whose code is already stored.

    The codes table has a unique constraint on the normalized code. Two
    operators scanning the same parcel at nearly the same time both pass the
    existence check; the second insert then fails with this error. It is a
    normal "repeated" outcome, not a failure.

    Attributes:
        scan_code (str): The normalized code that already exists
    """

    def __init__(self, scan_code: str, message: Optional[str] = None):
        super().__init__(message or f"Code already recorded: {scan_code}", code="23505")
        self.scan_code = scan_code

    def get_display_message(self) -> str:
        """Short operator-facing text for the scanner display."""
        return f"{self.scan_code} - REPEATED"


class CarrierConfigError(ScannerError):
    """
    Raised when a carrier row has rules that cannot be parsed.

    Carrier rules are JSON blobs edited directly in the database. A typo there
    (unknown pattern, negative length, broken regex) is caught once when the
    carriers are loaded instead of silently failing every scan.

    Attributes:
        carrier_id: Identifier of the offending carrier row (may be None)
        field (str | None): Rule key that failed to parse
    """

    def __init__(self, message: str, carrier_id=None, field: Optional[str] = None):
        super().__init__(message)
        self.carrier_id = carrier_id
        self.field = field

    def get_display_message(self) -> str:
        """
        Get a message suitable for the admin log view.

        Example output:
            "Carrier 'coordinadora' has an invalid 'pattern' rule: unknown pattern 'ends_at_001'"
        """
        if self.carrier_id is None:
            return str(self)
        if self.field:
            return f"Carrier '{self.carrier_id}' has an invalid '{self.field}' rule: {self}"
        return f"Carrier '{self.carrier_id}' is misconfigured: {self}"


class StorageCorruptionError(ScannerError):
    """
    Raised when a value in the local store cannot be decoded.

    Attributes:
        key (str): The storage key whose value is unreadable
    """

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key


class ConfigurationError(ScannerError):
    """
    Raised when required settings are missing.

    Example usage:
        if not settings.supabase_url:
            raise ConfigurationError("SUPABASE_URL is not configured")
    """
    pass


class ValidationError(ScannerError):
    """
    Raised when input validation fails outside the scan path.

    Examples:
    - Empty operator id at login
    - Manual entry that is blank after trimming
    """
    pass
