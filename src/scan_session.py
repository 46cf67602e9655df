"""
Operator session state: identity, dedup cache and counters.

A ScanSession lives from login to logout. The dedup cache is rehydrated from
the remote store at login and only cleared at logout.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set

from exceptions import ValidationError
from logger import get_logger, set_operator_context, set_session_context, set_device_context

logger = get_logger(__name__)


class ScanSession:
    """
    Explicit per-operator state shared by the scan processor, the scan station
    and the change-feed mirror.

    Attributes:
        operator_id: Logged-in operator, None when logged out
        store_id / store_name: Optional store the operator works for
        device_id: Station identifier
        session_id: "<date>_<time>" stamp of the login, used in logs
        codes: Normalized codes known to be stored or queued
        scanned / repeated / queued: Counters for this session
    """

    def __init__(self, device_id: Optional[str] = None):
        self.device_id = device_id
        self.operator_id: Optional[str] = None
        self.store_id: Optional[Any] = None
        self.store_name: Optional[str] = None
        self.session_id: Optional[str] = None
        self.started_at: Optional[datetime] = None
        self.codes: Set[str] = set()
        self.scanned = 0
        self.repeated = 0
        self.queued = 0

    @property
    def is_active(self) -> bool:
        return self.operator_id is not None

    def login(self, operator_id: str, store_id: Optional[Any] = None, store_name: Optional[str] = None) -> None:
        if not operator_id or not str(operator_id).strip():
            raise ValidationError("Operator id is required to start a scan session")

        self.operator_id = str(operator_id).strip()
        self.store_id = store_id
        self.store_name = store_name
        self.started_at = datetime.now()
        self.session_id = self.started_at.strftime("%Y-%m-%d_%H-%M-%S")
        self.codes = set()
        self.scanned = self.repeated = self.queued = 0

        set_operator_context(self.operator_id)
        set_session_context(self.session_id)
        set_device_context(self.device_id)
        logger.info(f"Session started for operator {self.operator_id} on {self.device_id}")

    def logout(self) -> Dict[str, Any]:
        """End the session. Returns the final summary."""
        summary = self.summary()
        logger.info(f"Session ended: {summary}")
        self.operator_id = None
        self.store_id = None
        self.store_name = None
        self.session_id = None
        self.started_at = None
        self.codes.clear()
        set_operator_context(None)
        set_session_context(None)
        return summary

    def rehydrate(self, codes: Iterable[str]) -> int:
        """Merge stored codes into the cache. Returns the cache size."""
        self.codes.update(c for c in codes if c)
        logger.info(f"Dedup cache rehydrated with {len(self.codes)} codes")
        return len(self.codes)

    def has_code(self, code: str) -> bool:
        return code in self.codes

    def remember(self, code: str) -> None:
        self.codes.add(code)

    def summary(self) -> Dict[str, Any]:
        return {
            "operator_id": self.operator_id,
            "session_id": self.session_id,
            "device_id": self.device_id,
            "scanned": self.scanned,
            "repeated": self.repeated,
            "queued": self.queued,
            "cached_codes": len(self.codes),
        }
