"""
Time source and periodic tasks.

Everything that waits or reads the current time goes through a Clock so the
sync engine and the connectivity probe can be driven by a fake clock in tests.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from logger import get_logger

logger = get_logger(__name__)


class Clock:
    """Interface: current epoch time and an awaitable sleep."""

    def now(self) -> float:
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        raise NotImplementedError

    def now_iso(self) -> str:
        """Current time as an ISO 8601 UTC string (used for created_at/last_sync)."""
        return datetime.fromtimestamp(self.now(), tz=timezone.utc).isoformat()


class SystemClock(Clock):
    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Ticker:
    """
    Runs an async callback every ``interval`` seconds on the running loop.

    The first call happens one interval after start(). An exception raised by
    the callback is logged and the ticker keeps running; cancellation (stop())
    ends the loop.

    Example:
        ticker = Ticker(30, engine.auto_sync_tick, clock)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]],
                 clock: Optional[Clock] = None, name: str = "ticker"):
        if interval <= 0:
            raise ValueError(f"Ticker interval must be positive, got {interval}")
        self.interval = interval
        self.callback = callback
        self.clock = clock or SystemClock()
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug(f"Ticker '{self.name}' started ({self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Ticker '{self.name}' stopped")

    async def _run(self) -> None:
        while True:
            await self.clock.sleep(self.interval)
            try:
                await self.callback()
            except Exception as e:
                logger.error(f"Ticker '{self.name}' callback failed: {e}", exc_info=True)
