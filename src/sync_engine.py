"""
Sync engine: drains the offline queue into the remote store.

Drain procedure (sync_queue):
1. Offline -> record status "offline", touch nothing
2. Empty queue -> record status "synced"
3. Oldest first, in batches of BATCH_SIZE items sent concurrently, with a
   short pause between batches to go easy on a link that just came back
4. Per item:
   - stored          -> removed from the queue
   - duplicate code  -> removed from the queue (someone else stored it)
   - any other error -> retry_count + 1; at MAX_RETRIES the item is dropped
                        and reported through item_dropped
5. Record "synced" (no errors) or "partial" plus the remaining queue size

Only one drain runs at a time. A drain requested while another is running
returns immediately with reason "already_syncing".

Triggers:
- start() while online with a non-empty queue -> immediate drain
- Ticker every SYNC_INTERVAL seconds, only when online and the queue is non-empty
- Connectivity back online -> drain after a short settle delay
- Connectivity lost -> status "offline" only
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from PySide6.QtCore import QObject, Signal

from clock import Clock, SystemClock, Ticker
from exceptions import DuplicateCodeError
from logger import get_logger
from offline_queue import OfflineQueue, QueueItem
from scan_record import ScanRecord

logger = get_logger(__name__)

BATCH_SIZE = 5
MAX_RETRIES = 3
BATCH_PAUSE_SECONDS = 0.5
SYNC_INTERVAL_SECONDS = 30.0
SETTLE_DELAY_SECONDS = 1.0

SYNC_STATUS_KEY = "sync_status"

REASON_ALREADY_SYNCING = "already_syncing"
REASON_OFFLINE = "offline"
REASON_FAILED = "failed"


class SyncStatus(str, Enum):
    SYNCING = "syncing"
    SYNCED = "synced"
    PARTIAL = "partial"
    OFFLINE = "offline"
    ERROR = "error"


# Per-item results
_STORED = "stored"
_DUPLICATE = "duplicate"
_RETRY = "retry"
_DROPPED = "dropped"


@dataclass
class SyncSummary:
    """
    Result of one sync_queue() call.

    Attributes:
        success: False only when the drain did not run or blew up
        reason: Why the drain did not run ("already_syncing", "offline", "failed")
        status: Status recorded at the end of the drain
        synced: Items stored
        duplicates: Items already stored remotely (removed without error)
        failed: Items that failed and stay queued for another attempt
        dropped: Payloads evicted after MAX_RETRIES failures
        remaining: Queue size after the drain
    """
    success: bool
    reason: Optional[str] = None
    status: Optional[SyncStatus] = None
    synced: int = 0
    duplicates: int = 0
    failed: int = 0
    dropped: List[Dict[str, Any]] = field(default_factory=list)
    remaining: int = 0

    @property
    def errors(self) -> int:
        return self.failed + len(self.dropped)


class SyncEngine(QObject):
    """
    Replays queued scans against the remote store.

    Signals:
        status_changed (Signal): Emitted with the SyncStatus value whenever a status is recorded
        item_dropped (Signal): Emitted with the item dict of every evicted scan
        sync_finished (Signal): Emitted with the SyncSummary of every completed drain
    """

    status_changed = Signal(str)
    item_dropped = Signal(object)
    sync_finished = Signal(object)

    def __init__(self, queue: OfflineQueue, store, local_store, connectivity,
                 clock: Optional[Clock] = None,
                 batch_size: int = BATCH_SIZE,
                 max_retries: int = MAX_RETRIES,
                 batch_pause: float = BATCH_PAUSE_SECONDS,
                 interval: float = SYNC_INTERVAL_SECONDS,
                 settle_delay: float = SETTLE_DELAY_SECONDS):
        super().__init__()
        self.queue = queue
        self.store = store
        self.local_store = local_store
        self.connectivity = connectivity
        self.clock = clock or SystemClock()
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.batch_pause = batch_pause
        self.settle_delay = settle_delay

        self._is_syncing = False
        self._ticker = Ticker(interval, self.auto_sync_tick, self.clock, name="auto-sync")
        self._pending: Set[asyncio.Task] = set()
        self._connected = False

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the periodic ticker and follow connectivity changes. Needs a running loop.

        Scans left in the queue by a previous run are drained right away when online.
        """
        if not self._connected:
            self.connectivity.online_changed.connect(self.handle_connectivity_change)
            self._connected = True
        self._ticker.start()
        logger.info(f"Auto-sync started (every {self._ticker.interval}s)")
        if self.connectivity.is_online() and self.queue.count() > 0:
            self._schedule(self.sync_queue())

    async def stop(self) -> None:
        if self._connected:
            self.connectivity.online_changed.disconnect(self.handle_connectivity_change)
            self._connected = False
        await self._ticker.stop()
        for task in list(self._pending):
            task.cancel()
        await self.wait_idle()
        logger.info("Auto-sync stopped")

    async def wait_idle(self) -> None:
        """Wait for drains scheduled by start() or connectivity events to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def auto_sync_tick(self) -> None:
        if not self.connectivity.is_online():
            return
        if self.queue.count() == 0:
            return
        await self.sync_queue()

    def handle_connectivity_change(self, online: bool) -> None:
        """Slot for ConnectivityMonitor.online_changed."""
        if not online:
            logger.warning("Connection lost, scans will be queued")
            self._record_status(SyncStatus.OFFLINE)
            return

        logger.info(f"Connection restored, syncing in {self.settle_delay}s")
        self._schedule(self._sync_after_settle())

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _sync_after_settle(self) -> None:
        await self.clock.sleep(self.settle_delay)
        if self.connectivity.is_online():
            await self.sync_queue()

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def sync_queue(self) -> SyncSummary:
        if self._is_syncing:
            logger.debug("Sync requested while another sync is running")
            return SyncSummary(success=False, reason=REASON_ALREADY_SYNCING)

        if not self.connectivity.is_online():
            self._record_status(SyncStatus.OFFLINE)
            return SyncSummary(success=False, reason=REASON_OFFLINE, status=SyncStatus.OFFLINE,
                               remaining=self.queue.count())

        items = self.queue.list_sorted_by_age()
        if not items:
            self._record_status(SyncStatus.SYNCED)
            return SyncSummary(success=True, status=SyncStatus.SYNCED)

        self._is_syncing = True
        summary = SyncSummary(success=True)
        try:
            self._record_status(SyncStatus.SYNCING)
            logger.info(f"Syncing {len(items)} queued scans")

            for start in range(0, len(items), self.batch_size):
                batch = items[start:start + self.batch_size]
                results = await asyncio.gather(*(self._sync_item(item) for item in batch))

                for item, result in zip(batch, results):
                    if result == _STORED:
                        summary.synced += 1
                    elif result == _DUPLICATE:
                        summary.duplicates += 1
                    elif result == _DROPPED:
                        summary.dropped.append(item.to_dict())
                    else:
                        summary.failed += 1

                if start + self.batch_size < len(items):
                    await self.clock.sleep(self.batch_pause)

            summary.status = SyncStatus.SYNCED if summary.errors == 0 else SyncStatus.PARTIAL
        except Exception as e:
            logger.error(f"Sync aborted: {e}", exc_info=True)
            summary.success = False
            summary.reason = REASON_FAILED
            summary.status = SyncStatus.ERROR
        finally:
            self._is_syncing = False

        summary.remaining = self.queue.count()
        self._record_status(summary.status)
        logger.info(
            f"Sync finished: {summary.synced} stored, {summary.duplicates} duplicates, "
            f"{summary.failed} failed, {len(summary.dropped)} dropped, {summary.remaining} remaining"
        )
        self.sync_finished.emit(summary)
        return summary

    async def _sync_item(self, item: QueueItem) -> str:
        code = item.payload.get("code")
        try:
            await self.store.insert(ScanRecord.from_dict(item.payload))
        except DuplicateCodeError:
            self.queue.remove(item.id)
            logger.info(f"Queued scan {code} already stored, removed from queue")
            return _DUPLICATE
        except Exception as e:
            retries = self.queue.increment_retry(item.id)
            if retries >= self.max_retries:
                self.queue.remove(item.id)
                dropped = item.to_dict()
                dropped["retry_count"] = retries
                logger.error(f"Dropping queued scan {code} after {retries} failed attempts: {e}")
                self.item_dropped.emit(dropped)
                return _DROPPED
            logger.warning(f"Sync of {code} failed (attempt {retries}/{self.max_retries}): {e}")
            return _RETRY

        self.queue.remove(item.id)
        return _STORED

    # ------------------------------------------------------------------
    # Status record
    # ------------------------------------------------------------------

    def _record_status(self, status: SyncStatus) -> None:
        record = {
            "last_sync": self.clock.now_iso(),
            "status": status.value,
            "queue_count": self.queue.count(),
        }
        self.local_store.set_json(SYNC_STATUS_KEY, record)
        self.status_changed.emit(status.value)

    def last_status(self) -> Optional[Dict[str, Any]]:
        """The persisted {last_sync, status, queue_count} record, if any."""
        return self.local_store.get_json(SYNC_STATUS_KEY)

    def sync_info(self) -> Dict[str, Any]:
        return {
            "queue_count": self.queue.count(),
            "is_online": self.connectivity.is_online(),
            "is_syncing": self._is_syncing,
        }
