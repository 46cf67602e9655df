"""
Scan processor: one raw scan in, one ScanOutcome out.

Pipeline (states emitted through ``state_changed``):

    IDLE -> VALIDATING -> CACHE_CHECK -> REMOTE_CHECK -> ENRICHING -> PERSISTING -> IDLE

1. VALIDATING: clean the input and match it against the active carriers
2. CACHE_CHECK: a code already in the session cache is "repeated" (no network)
3. REMOTE_CHECK: a code already stored remotely is "repeated" and cached
4. ENRICHING: order lookup under a timeout; failures continue without data
5. PERSISTING: insert; a unique conflict is "repeated", never an error

Only one scan is processed at a time per session. A scan arriving while
another is in flight gets BUSY back immediately; nothing is queued.

Problems with the scan itself are returned as outcomes, never raised. Store
and network failures end with an ERROR outcome that carries the built record,
so the caller (ScanStation) can hand it to the offline queue.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from PySide6.QtCore import QObject, Signal

from carrier_rules import Carrier, load_carriers
from clock import Clock, SystemClock
from code_validator import clean_scan, detect_scan_type, match_against_carriers
from exceptions import DuplicateCodeError, NetworkError, PersistenceError
from logger import get_logger
from scan_record import (
    EnrichmentResult, ScanRecord, RAW_SCAN_MAX_LENGTH, SCAN_TYPE_MANUAL,
)
from scan_session import ScanSession

logger = get_logger(__name__)

DEFAULT_ENRICHMENT_TIMEOUT = 8.0


class ScanStatus(str, Enum):
    SUCCESS = "success"
    REPEATED = "repeated"
    INVALID = "invalid"
    BUSY = "busy"
    NOT_READY = "not_ready"
    CANNOT_SHIP = "cannot_ship"
    ERROR = "error"
    QUEUED = "queued"


class ScanState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CACHE_CHECK = "cache_check"
    REMOTE_CHECK = "remote_check"
    ENRICHING = "enriching"
    PERSISTING = "persisting"


@dataclass
class ScanOutcome:
    """
    Result of one process_scan() call.

    Attributes:
        status: Terminal status of the scan
        code: Normalized code (when matching succeeded)
        message: Operator-facing text
        carrier: Matched carrier
        record: Built ScanRecord (set once matching succeeded)
        stored: Row returned by the store on SUCCESS
        retryable: True when an ERROR was caused by connectivity
    """
    status: ScanStatus
    code: Optional[str] = None
    message: str = ""
    carrier: Optional[Carrier] = None
    record: Optional[ScanRecord] = None
    stored: Optional[Dict[str, Any]] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.status in (ScanStatus.SUCCESS, ScanStatus.QUEUED)


class ScanProcessor(QObject):
    """
    Validates, deduplicates, enriches and persists scans for one session.

    Signals:
        scan_processed (Signal): Emitted with the ScanOutcome of every scan
        state_changed (Signal): Emitted with the ScanState value on transitions
    """

    scan_processed = Signal(object)
    state_changed = Signal(str)

    def __init__(self, session: ScanSession, store, order_lookup=None,
                 clock: Optional[Clock] = None,
                 enrichment_timeout: float = DEFAULT_ENRICHMENT_TIMEOUT,
                 block_unshippable: bool = True,
                 raw_scan_max_length: int = RAW_SCAN_MAX_LENGTH):
        super().__init__()
        self.session = session
        self.store = store
        self.order_lookup = order_lookup
        self.clock = clock or SystemClock()
        self.enrichment_timeout = enrichment_timeout
        self.block_unshippable = block_unshippable
        # ScanRecord still enforces the column limit
        self.raw_scan_max_length = min(raw_scan_max_length, RAW_SCAN_MAX_LENGTH)

        self.carriers: List[Carrier] = []
        self.state = ScanState.IDLE
        self._in_flight = False

    # ------------------------------------------------------------------
    # Carriers
    # ------------------------------------------------------------------

    async def refresh_carriers(self) -> List[Carrier]:
        """Reload active carriers from the store (malformed rows are skipped)."""
        rows = await self.store.query_active_carriers()
        self.carriers = [c for c in load_carriers(rows) if c.is_active]
        return self.carriers

    def set_carriers(self, carriers: List[Carrier]) -> None:
        self.carriers = [c for c in carriers if c.is_active]

    @property
    def is_ready(self) -> bool:
        return bool(self.carriers)

    @property
    def busy(self) -> bool:
        return self._in_flight

    def _set_state(self, state: ScanState) -> None:
        self.state = state
        self.state_changed.emit(state.value)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def process_scan(self, raw: str, manual: bool = False, online: bool = True) -> ScanOutcome:
        """
        Run one scan through the pipeline.

        Args:
            raw: Scanner output (or typed code for manual entry)
            manual: Record scan_type "manual" instead of detecting it
            online: When False, stop after the cache check and return a
                    retryable ERROR carrying the record for the offline queue

        Returns:
            ScanOutcome (emitted through scan_processed unless BUSY or NOT_READY)
        """
        if self._in_flight:
            logger.debug("Scan rejected: another scan is in flight")
            return ScanOutcome(ScanStatus.BUSY, message="Processing previous scan, please wait")

        if not self.is_ready:
            logger.warning("Scan rejected: no active carriers loaded")
            return ScanOutcome(ScanStatus.NOT_READY, message="Carriers not loaded yet")

        self._in_flight = True
        try:
            outcome = await self._run_pipeline(raw, manual, online)
        finally:
            self._in_flight = False
            self._set_state(ScanState.IDLE)

        self.scan_processed.emit(outcome)
        return outcome

    async def _run_pipeline(self, raw: str, manual: bool, online: bool) -> ScanOutcome:
        self._set_state(ScanState.VALIDATING)
        match = match_against_carriers(raw, self.carriers)
        if not match.valid:
            return ScanOutcome(ScanStatus.INVALID, message=match.error)

        code = match.normalized_code
        carrier = match.carrier

        self._set_state(ScanState.CACHE_CHECK)
        if self.session.has_code(code):
            return self._repeated(code, carrier)

        record = self._build_record(raw, code, carrier, manual)

        if not online:
            return ScanOutcome(ScanStatus.ERROR, code=code, carrier=carrier, record=record,
                               retryable=True, message="Offline")

        self._set_state(ScanState.REMOTE_CHECK)
        try:
            if await self.store.exists(code):
                self.session.remember(code)
                return self._repeated(code, carrier)
        except NetworkError as e:
            logger.warning(f"Existence check failed for {code}: {e}")
            return ScanOutcome(ScanStatus.ERROR, code=code, carrier=carrier, record=record,
                               retryable=True, message=str(e))
        except PersistenceError as e:
            logger.error(f"Existence check rejected for {code}: {e}")
            return ScanOutcome(ScanStatus.ERROR, code=code, carrier=carrier, record=record,
                               retryable=False, message=str(e))

        self._set_state(ScanState.ENRICHING)
        enrichment = await self._enrich(code)
        if enrichment.can_ship is False and self.block_unshippable:
            logger.info(f"Scan {code} blocked: order cannot ship ({enrichment.message})")
            return ScanOutcome(ScanStatus.CANNOT_SHIP, code=code, carrier=carrier, record=record,
                               message=enrichment.message or "Order not ready to ship")
        record.apply_enrichment(enrichment)

        self._set_state(ScanState.PERSISTING)
        try:
            stored = await self.store.insert(record)
        except DuplicateCodeError:
            # Lost the race with another station between exists() and insert()
            self.session.remember(code)
            return self._repeated(code, carrier)
        except NetworkError as e:
            logger.warning(f"Insert failed for {code}, store unreachable: {e}")
            return ScanOutcome(ScanStatus.ERROR, code=code, carrier=carrier, record=record,
                               retryable=True, message=str(e))
        except PersistenceError as e:
            logger.error(f"Insert rejected for {code}: {e}")
            return ScanOutcome(ScanStatus.ERROR, code=code, carrier=carrier, record=record,
                               retryable=False, message=str(e))

        self.session.remember(code)
        self.session.scanned += 1
        logger.info(f"Scan saved: {code} ({carrier.display_name})")
        return ScanOutcome(ScanStatus.SUCCESS, code=code, carrier=carrier, record=record,
                           stored=stored, message=f"{code} - {carrier.display_name}")

    def _repeated(self, code: str, carrier: Carrier) -> ScanOutcome:
        self.session.repeated += 1
        logger.info(f"Repeated scan: {code}")
        return ScanOutcome(ScanStatus.REPEATED, code=code, carrier=carrier, message=f"{code} - REPEATED")

    def _build_record(self, raw: str, code: str, carrier: Carrier, manual: bool) -> ScanRecord:
        cleaned = clean_scan(raw)
        return ScanRecord(
            code=code,
            carrier_id=carrier.id,
            carrier_name=carrier.display_name,
            store_id=self.session.store_id,
            operator_id=self.session.operator_id,
            raw_scan=cleaned[:self.raw_scan_max_length],
            scan_type=SCAN_TYPE_MANUAL if manual else detect_scan_type(cleaned),
            created_at=self.clock.now_iso(),
        )

    async def _enrich(self, code: str) -> EnrichmentResult:
        if self.order_lookup is None:
            return EnrichmentResult.unavailable("Order lookup not configured")
        try:
            return await asyncio.wait_for(self.order_lookup.lookup(code), timeout=self.enrichment_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Order lookup timed out for {code} after {self.enrichment_timeout}s")
            return EnrichmentResult.unavailable("Order lookup timed out")
        except Exception as e:
            logger.warning(f"Order lookup failed for {code}: {e}")
            return EnrichmentResult.unavailable(str(e))
