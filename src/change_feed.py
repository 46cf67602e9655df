"""
Mirror of remote inserts into the session dedup cache.

The store's change feed may call back from its own thread. Events are moved
onto an asyncio.Queue on the scanner loop and applied there by a single
drain task, so the cache is only ever touched from the loop thread.
"""

import asyncio
import inspect
from typing import Optional

from PySide6.QtCore import QObject, Signal

from logger import get_logger
from scan_record import ChangeEvent
from scan_session import ScanSession

logger = get_logger(__name__)


class ChangeFeedMirror(QObject):
    """
    Keeps the local cache in step with codes stored by other stations.

    Signals:
        code_inserted (Signal): Emitted with each code newly added to the cache
    """

    code_inserted = Signal(str)

    def __init__(self, session: ScanSession, store):
        super().__init__()
        self.session = session
        self.store = store
        self._events: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._task = self._loop.create_task(self._drain(), name="change-feed-mirror")
        self._unsubscribe = await self.store.subscribe_to_changes(self._on_event)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            result = self._unsubscribe()
            if inspect.isawaitable(result):
                await result
            self._unsubscribe = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def wait_drained(self) -> None:
        """Wait until every delivered event has been applied."""
        if self._events is not None:
            # Deliveries scheduled with call_soon_threadsafe land first
            await asyncio.sleep(0)
            await self._events.join()

    def _on_event(self, event: ChangeEvent) -> None:
        # May run on the realtime client's thread
        self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    async def _drain(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self.apply(event)
            except Exception as e:
                logger.error(f"Failed to apply change event {event}: {e}", exc_info=True)
            finally:
                self._events.task_done()

    def apply(self, event: ChangeEvent) -> bool:
        """Add an inserted code to the cache. Returns True if the cache changed."""
        if event.event_type != "INSERT" or not event.code:
            return False
        if self.session.has_code(event.code):
            return False
        self.session.remember(event.code)
        logger.debug(f"Remote insert mirrored into cache: {event.code}")
        self.code_inserted.emit(event.code)
        return True
