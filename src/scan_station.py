"""
Scan station: the operator-facing entry point of the scanner.

Wires the session, scan processor, offline queue, sync engine and change
feed together and decides what happens to scans that could not reach the
remote store:

    processor says ERROR + retryable  ->  offline queue, outcome QUEUED
    (includes every scan made while the station is offline)

A queued code goes into the dedup cache right away, so rescanning the same
parcel before the queue drains is reported as repeated.
"""

from typing import Any, Dict, Optional

from exceptions import ScannerError, ValidationError
from logger import get_logger
from offline_queue import OfflineQueue
from scan_processor import ScanOutcome, ScanProcessor, ScanStatus
from scan_session import ScanSession

logger = get_logger(__name__)


class ScanStation:
    """
    One operator at one device.

    Args:
        session: ScanSession shared with the processor and the mirror
        processor: ScanProcessor for this session
        queue: OfflineQueue for scans that could not be stored
        connectivity: ConnectivityMonitor (is_online())
        store: Remote ScanStore, used to rehydrate the cache at login
        sync_engine: Optional SyncEngine started/stopped with the session
        mirror: Optional ChangeFeedMirror started/stopped with the session
    """

    def __init__(self, session: ScanSession, processor: ScanProcessor, queue: OfflineQueue,
                 connectivity, store=None, sync_engine=None, mirror=None):
        self.session = session
        self.processor = processor
        self.queue = queue
        self.connectivity = connectivity
        self.store = store
        self.sync_engine = sync_engine
        self.mirror = mirror

    async def login(self, operator_id: str, store_id: Optional[Any] = None,
                    store_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a session: identity, carriers, dedup cache, background tasks.

        Remote failures here are logged, not raised. The station then runs
        with whatever it could load (no carriers means every scan is NOT_READY).
        """
        self.session.login(operator_id, store_id=store_id, store_name=store_name)

        # Codes still waiting in the queue count as known
        self.session.rehydrate(item.payload.get("code") for item in self.queue.list())

        if self.store is not None and self.connectivity.is_online():
            try:
                await self.processor.refresh_carriers()
            except ScannerError as e:
                logger.error(f"Could not load carriers: {e}")
            try:
                self.session.rehydrate(await self.store.list_codes())
            except ScannerError as e:
                logger.warning(f"Could not rehydrate dedup cache from store: {e}")

        if self.mirror is not None:
            try:
                await self.mirror.start()
            except ScannerError as e:
                logger.warning(f"Change feed unavailable: {e}")
        if self.sync_engine is not None:
            self.sync_engine.start()

        return self.summary()

    async def logout(self) -> Dict[str, Any]:
        if self.sync_engine is not None:
            await self.sync_engine.stop()
        if self.mirror is not None:
            await self.mirror.stop()
        summary = self.summary()
        self.session.logout()
        return summary

    async def submit(self, raw: str) -> ScanOutcome:
        """Process a scanner read."""
        outcome = await self.processor.process_scan(raw, online=self.connectivity.is_online())
        return self._route(outcome)

    async def submit_manual(self, code: str) -> ScanOutcome:
        """
        Process a code typed by the operator (scan_type "manual").

        Raises:
            ValidationError: If the code is blank
        """
        if not code or not code.strip():
            raise ValidationError("Manual code is empty")
        outcome = await self.processor.process_scan(code.strip(), manual=True,
                                                    online=self.connectivity.is_online())
        return self._route(outcome)

    def _route(self, outcome: ScanOutcome) -> ScanOutcome:
        if outcome.status != ScanStatus.ERROR or not outcome.retryable or outcome.record is None:
            return outcome

        item = self.queue.enqueue(outcome.record.to_dict())
        self.session.remember(outcome.code)
        self.session.queued += 1
        return ScanOutcome(
            ScanStatus.QUEUED,
            code=outcome.code,
            carrier=outcome.carrier,
            record=outcome.record,
            message=f"{outcome.code} - saved offline ({item.id[:8]})",
        )

    def summary(self) -> Dict[str, Any]:
        summary = self.session.summary()
        summary["queue_count"] = self.queue.count()
        summary["is_online"] = self.connectivity.is_online()
        return summary
