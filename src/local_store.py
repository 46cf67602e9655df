"""
Local SQLite key-value store.

Holds the offline queue and the sync status record on the station itself, so
scans made without connectivity survive an application restart.

DB location: [Storage] LocalDbPath, default ~/.parcel_scanner/scanner_state.db
"""

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional

from exceptions import StorageCorruptionError
from logger import get_logger

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  REAL NOT NULL
);
"""


def get_db_path(db_path: Optional[Path] = None) -> Path:
    path = Path(db_path) if db_path else Path.home() / ".parcel_scanner" / "scanner_state.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class LocalStore:
    """SQLite-backed JSON values by key. One short-lived connection per call."""

    def __init__(self, db_path: Optional[Path] = None):
        self._path = str(get_db_path(db_path))
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a value.

        Raises:
            StorageCorruptionError: If the stored text is not valid JSON
        """
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise StorageCorruptionError(f"Stored value for '{key}' is not valid JSON: {e}", key=key) from e

    def set_json(self, key: str, value: Any) -> None:
        text = json.dumps(value, ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                (key, text, time.time()),
            )

    def set_raw(self, key: str, text: str) -> None:
        """Store text as-is (no JSON encoding). Used by maintenance tools and tests."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                (key, text, time.time()),
            )

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))


class MemoryStore:
    """In-process store with the LocalStore interface (values kept JSON-encoded)."""

    def __init__(self):
        self._data = {}

    def get_json(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        try:
            return json.loads(self._data[key])
        except json.JSONDecodeError as e:
            raise StorageCorruptionError(f"Stored value for '{key}' is not valid JSON: {e}", key=key) from e

    def set_json(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def set_raw(self, key: str, text: str) -> None:
        self._data[key] = text

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
