"""
Code validation and extraction.

Pure functions only: nothing in here touches the network, the session or the
local store, so the whole matching pipeline can be tested with plain carrier
objects.

Matching pipeline for one raw scan:
    1. Trim whitespace and leading/trailing quote characters
       (some scanners wrap QR payloads in quotes)
    2. Long payloads (> 50 chars, i.e. QR contents) are searched for an
       embedded tracking number:
         a. "GUIA: <12-13 digits>"
         b. a 12-13 digit token starting with a known carrier prefix
         c. any 12-13 digit run, preferring one with a known prefix
    3. The first active carrier whose rules all pass wins; its extraction
       method produces the normalized code

Note: validate(extract(raw, c), c) is NOT guaranteed to hold. Extraction is
allowed to change the code shape on purpose (e.g. 13 -> 12 digits).
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from carrier_rules import Carrier
from logger import get_logger

logger = get_logger(__name__)

# Scans longer than this are treated as QR payloads
QR_MIN_LENGTH = 50
# Digit-only codes up to this length are treated as 1D barcodes
BARCODE_MAX_LENGTH = 30

NOT_RECOGNIZED = "Code not recognized for any active carrier"

_QUOTES = re.compile(r"^[\"']+|[\"']+$")
_GUIA = re.compile(r"GUIA:\s*([0-9]{12,13})", re.IGNORECASE)
_DIGIT_TOKEN = re.compile(r"\b[0-9]{12,13}\b")
_DIGIT_RUN = re.compile(r"[0-9]{12,13}")
_ALL_DIGITS = re.compile(r"[0-9]+")


@dataclass
class MatchResult:
    """
    Result of matching one scan against the carrier list.

    On success normalized_code/carrier are set; on failure only error is.
    """
    valid: bool
    normalized_code: Optional[str] = None
    original_code: Optional[str] = None
    carrier: Optional[Carrier] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str = NOT_RECOGNIZED, original_code: Optional[str] = None) -> "MatchResult":
        return cls(valid=False, error=error, original_code=original_code)


def validate(code: str, carrier: Carrier) -> bool:
    """True when ``code`` passes every rule of ``carrier`` (stops at the first failure)."""
    return all(rule.check(code) for rule in carrier.rules)


def extract(raw: str, carrier: Carrier) -> str:
    """Apply the carrier's extraction method; without one the code is returned unchanged."""
    if carrier.extraction is None:
        return raw
    return carrier.extraction.apply(raw)


def detect_scan_type(raw: str) -> str:
    """Classify a raw scan as 'qr' or 'barcode'."""
    if len(raw) > QR_MIN_LENGTH:
        return "qr"
    if len(raw) <= BARCODE_MAX_LENGTH and _ALL_DIGITS.fullmatch(raw):
        return "barcode"
    return "qr"


def clean_scan(raw: str) -> str:
    """Trim whitespace and strip surrounding quote characters."""
    return _QUOTES.sub("", (raw or "").strip())


def known_prefixes(carriers: Iterable[Carrier]) -> List[str]:
    """Distinct starts_with literals of the active carriers, in carrier order."""
    prefixes: List[str] = []
    for carrier in carriers:
        if not carrier.is_active:
            continue
        for prefix in carrier.prefixes:
            if prefix not in prefixes:
                prefixes.append(prefix)
    return prefixes


def find_embedded_code(payload: str, prefixes: List[str]) -> Optional[str]:
    """
    Pull a tracking number out of a long QR payload.

    Returns:
        The embedded 12-13 digit code, or None when nothing looks like one
    """
    guia = _GUIA.search(payload)
    if guia:
        return guia.group(1)

    for token in _DIGIT_TOKEN.findall(payload):
        if any(token.startswith(p) for p in prefixes):
            return token

    runs = _DIGIT_RUN.findall(payload)
    if not runs:
        return None
    for run in runs:
        if any(run.startswith(p) for p in prefixes):
            return run
    return runs[0]


def match_against_carriers(raw: str, carriers: List[Carrier]) -> MatchResult:
    """
    Find the carrier for a raw scan and normalize the code.

    Args:
        raw: Scanner output as received
        carriers: Carriers in match order (earlier wins)

    Returns:
        MatchResult; failures carry a generic error that does not list the
        carriers that were tried
    """
    code = clean_scan(raw)
    if not code:
        return MatchResult.failure("Empty scan", original_code=raw)

    if len(code) > QR_MIN_LENGTH:
        embedded = find_embedded_code(code, known_prefixes(carriers))
        if embedded:
            logger.debug(f"Extracted embedded code {embedded} from {len(code)}-char payload")
            code = embedded

    for carrier in carriers:
        if not carrier.is_active:
            continue
        if validate(code, carrier):
            return MatchResult(
                valid=True,
                normalized_code=extract(code, carrier),
                original_code=code,
                carrier=carrier,
            )

    logger.info(f"Scan rejected, no carrier matched ({len(code)} chars)")
    return MatchResult.failure(original_code=code)
