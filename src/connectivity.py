"""
Connectivity monitor.

Holds the station's online flag and announces transitions through the
``online_changed`` signal. The flag is set either by the host application
(set_online) or by periodically probing an HTTP endpoint (probe / start).
"""

import asyncio
from typing import Optional

import requests
from PySide6.QtCore import QObject, Signal

from clock import Clock, SystemClock, Ticker
from logger import get_logger

logger = get_logger(__name__)


class ConnectivityMonitor(QObject):
    """
    Online/offline state of the station.

    Signals:
        online_changed (Signal): Emitted with the new bool value on every transition
    """

    online_changed = Signal(bool)

    def __init__(self, probe_url: Optional[str] = None, probe_timeout: float = 3.0,
                 probe_interval: float = 15.0, clock: Optional[Clock] = None,
                 initially_online: bool = True):
        super().__init__()
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._online = initially_online
        self._ticker = Ticker(probe_interval, self._probe_tick, clock or SystemClock(), name="connectivity-probe")

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self.online_changed.emit(online)

    async def probe(self) -> bool:
        """
        HEAD the probe URL and update the flag.

        Any HTTP answer counts as online; connection errors and timeouts as offline.
        Without a probe URL the current flag is returned unchanged.
        """
        if not self.probe_url:
            return self._online
        try:
            await asyncio.to_thread(requests.head, self.probe_url, timeout=self.probe_timeout)
            online = True
        except requests.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        self.set_online(online)
        return online

    async def _probe_tick(self) -> None:
        await self.probe()

    def start(self) -> None:
        """Probe periodically (requires a probe URL and a running loop)."""
        if self.probe_url:
            self._ticker.start()

    async def stop(self) -> None:
        await self._ticker.stop()
