"""
Records exchanged between the scan pipeline, the offline queue and the stores.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Any, Dict, Optional

# Persisted schema limit for raw_scan
RAW_SCAN_MAX_LENGTH = 500

SCAN_TYPE_QR = "qr"
SCAN_TYPE_BARCODE = "barcode"
SCAN_TYPE_MANUAL = "manual"


@dataclass
class ScanRecord:
    """
    One persisted scan, field names as in the ``codes`` table.

    Attributes:
        code: Normalized code (unique across all records)
        carrier_id: Carrier row id
        carrier_name: Carrier display name at scan time
        store_id: Optional store the operator works for
        operator_id: Operator who scanned the parcel
        raw_scan: Scanner output, capped at RAW_SCAN_MAX_LENGTH characters
        scan_type: "qr", "barcode" or "manual"
        order_id, customer_name, store_name: Optional order enrichment
        created_at: ISO 8601 timestamp
    """
    code: str
    carrier_id: Any
    carrier_name: str
    operator_id: Optional[str]
    raw_scan: str
    scan_type: str
    created_at: str
    store_id: Optional[Any] = None
    order_id: Optional[Any] = None
    customer_name: Optional[str] = None
    store_name: Optional[str] = None

    def __post_init__(self):
        if self.raw_scan and len(self.raw_scan) > RAW_SCAN_MAX_LENGTH:
            self.raw_scan = self.raw_scan[:RAW_SCAN_MAX_LENGTH]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanRecord":
        """Build from a row or queue payload; unknown keys (id, timestamp...) are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def apply_enrichment(self, enrichment: "EnrichmentResult") -> None:
        if not enrichment.found:
            return
        self.order_id = enrichment.order_id
        self.customer_name = enrichment.customer_name
        self.store_name = enrichment.store_name


# Lookup reasons
REASON_NOT_READY = "NOT_READY"
REASON_NOT_FOUND = "NOT_FOUND"
REASON_ALREADY_SCANNED = "ALREADY_SCANNED"
REASON_UNKNOWN = "UNKNOWN"
REASON_UNAVAILABLE = "UNAVAILABLE"


@dataclass
class EnrichmentResult:
    """
    Answer of the order API for one code.

    can_ship is True for a found order, False when the API explicitly refuses
    dispatch, and None when it could not tell (not found / unreachable).
    """
    found: bool
    data: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    can_ship: Optional[bool] = None
    message: Optional[str] = None

    @classmethod
    def unavailable(cls, message: str) -> "EnrichmentResult":
        return cls(found=False, reason=REASON_UNAVAILABLE, message=message)

    @property
    def order_id(self):
        return self.data.get("order_id") or None

    @property
    def customer_name(self) -> Optional[str]:
        name = f"{self.data.get('firstname') or ''} {self.data.get('lastname') or ''}".strip()
        return name or None

    @property
    def store_name(self) -> Optional[str]:
        return self.data.get("store") or None


@dataclass
class ChangeEvent:
    """A row change pushed by the remote store's change feed."""
    event_type: str
    record: Dict[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> Optional[str]:
        return self.record.get("code")
