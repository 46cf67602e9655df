"""
Offline queue of scans waiting for the remote store.

Items live under a single key of the local store as a JSON list. Every
mutation is read-modify-write on the event loop thread, so there is no
interleaving between the scan station and the sync engine.

Item shape (persisted):
    {"id": "9f1c...", "timestamp": 1730817045.1, "retry_count": 0,
     "code": "...", "carrier_id": ..., ... ScanRecord fields ...}
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from clock import Clock, SystemClock
from exceptions import StorageCorruptionError
from logger import get_logger

logger = get_logger(__name__)

QUEUE_KEY = "offline_queue"
STALE_AFTER_SECONDS = 24 * 60 * 60


@dataclass
class QueueItem:
    id: str
    timestamp: float
    retry_count: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.payload)
        data.update(id=self.id, timestamp=self.timestamp, retry_count=self.retry_count)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        payload = {k: v for k, v in data.items() if k not in ("id", "timestamp", "retry_count")}
        return cls(
            id=data["id"],
            timestamp=float(data.get("timestamp", 0)),
            retry_count=int(data.get("retry_count", 0)),
            payload=payload,
        )


class OfflineQueue:
    """
    Durable FIFO-ish store of pending scan payloads.

    Args:
        store: LocalStore (or MemoryStore) holding the queue
        clock: Time source for enqueue timestamps and staleness
    """

    def __init__(self, store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def _load(self) -> List[QueueItem]:
        try:
            raw = self.store.get_json(QUEUE_KEY, default=[])
        except StorageCorruptionError as e:
            logger.error(f"Offline queue unreadable, treating as empty: {e}")
            return []

        if not isinstance(raw, list):
            logger.error(f"Offline queue has unexpected shape ({type(raw).__name__}), treating as empty")
            return []

        items = []
        for entry in raw:
            try:
                items.append(QueueItem.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping unreadable queue entry: {e}")
        return items

    def _save(self, items: List[QueueItem]) -> None:
        self.store.set_json(QUEUE_KEY, [item.to_dict() for item in items])

    def enqueue(self, payload: Dict[str, Any]) -> QueueItem:
        item = QueueItem(id=str(uuid.uuid4()), timestamp=self.clock.now(), retry_count=0,
                         payload=dict(payload))
        items = self._load()
        items.append(item)
        self._save(items)
        logger.info(f"Queued offline scan {payload.get('code')} (queue size {len(items)})")
        return item

    def list(self) -> List[QueueItem]:
        return self._load()

    def list_sorted_by_age(self) -> List[QueueItem]:
        """Oldest first."""
        return sorted(self._load(), key=lambda item: item.timestamp)

    def remove(self, item_id: str) -> None:
        items = self._load()
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) != len(items):
            self._save(remaining)

    def increment_retry(self, item_id: str) -> int:
        """
        Bump the retry counter of an item.

        Returns:
            The new count, or 0 if the item is no longer queued
        """
        items = self._load()
        for item in items:
            if item.id == item_id:
                item.retry_count += 1
                self._save(items)
                return item.retry_count
        return 0

    def count(self) -> int:
        return len(self._load())

    def has_stale_items(self, threshold_seconds: float = STALE_AFTER_SECONDS) -> bool:
        cutoff = self.clock.now() - threshold_seconds
        return any(item.timestamp < cutoff for item in self._load())

    def clear(self) -> None:
        """Drop every pending item. Operator action only; queued scans are lost."""
        dropped = self.count()
        self.store.remove(QUEUE_KEY)
        logger.warning(f"Offline queue cleared by operator ({dropped} items discarded)")
