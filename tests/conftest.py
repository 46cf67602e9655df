"""
Pytest configuration file for Parcel Scanner tests.

Puts 'src' on sys.path and provides in-memory fakes for the remote store,
the order API and the clock, plus helpers to build carrier rows.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Get the repository root directory (parent of tests directory)
repo_root = Path(__file__).parent.parent

# Add src directory to sys.path (for src modules)
src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from clock import Clock  # noqa: E402
from exceptions import DuplicateCodeError, NetworkError  # noqa: E402
from persistence import OrderLookup, ScanStore  # noqa: E402
from scan_record import ChangeEvent, EnrichmentResult, REASON_NOT_FOUND  # noqa: E402


# ============================================================================
# Fakes
# ============================================================================

class FakeClock(Clock):
    """Clock whose sleep() returns at once and moves time forward."""

    def __init__(self, start: float = 1_730_800_000.0):
        self.t = start
        self.sleeps = []

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds
        await asyncio.sleep(0)


class FakeScanStore(ScanStore):
    """
    In-memory ScanStore.

    Attributes:
        rows: code -> stored row
        carrier_rows: rows returned by query_active_carriers()
        unreachable: when True every call raises NetworkError
        failing_codes: codes whose insert raises NetworkError
        insert_attempts: code -> number of insert() calls
    """

    def __init__(self, carrier_rows=None):
        self.rows = {}
        self.carrier_rows = list(carrier_rows or [])
        self.unreachable = False
        self.failing_codes = set()
        self.insert_attempts = {}
        self.exists_calls = 0
        self.subscribers = []
        self._next_id = 1

    def _check_reachable(self):
        if self.unreachable:
            raise NetworkError("store unreachable")

    def seed(self, code: str, **fields):
        row = {"id": self._next_id, "code": code}
        row.update(fields)
        self.rows[code] = row
        self._next_id += 1
        return row

    async def exists(self, code):
        self._check_reachable()
        self.exists_calls += 1
        return code in self.rows

    async def insert(self, record):
        self.insert_attempts[record.code] = self.insert_attempts.get(record.code, 0) + 1
        self._check_reachable()
        if record.code in self.failing_codes:
            raise NetworkError(f"timeout inserting {record.code}")
        if record.code in self.rows:
            raise DuplicateCodeError(record.code)
        return self.seed(record.code, **{k: v for k, v in record.to_dict().items() if k != "code"})

    async def delete(self, record_id):
        self._check_reachable()
        self.rows = {c: r for c, r in self.rows.items() if r["id"] != record_id}

    async def update(self, record_id, values):
        self._check_reachable()
        for row in self.rows.values():
            if row["id"] == record_id:
                row.update(values)
                return dict(row)
        return {}

    async def query_active_carriers(self):
        self._check_reachable()
        return [row for row in self.carrier_rows if row.get("is_active", True)]

    async def list_codes(self):
        self._check_reachable()
        return list(self.rows)

    async def list_since(self, since_iso):
        self._check_reachable()
        return [row for row in self.rows.values() if row.get("created_at", "") >= since_iso]

    async def records_missing_enrichment(self):
        self._check_reachable()
        return [dict(row) for row in self.rows.values()
                if not row.get("order_id") or not row.get("customer_name") or not row.get("store_name")]

    async def subscribe_to_changes(self, callback):
        self.subscribers.append(callback)

        def unsubscribe():
            self.subscribers.remove(callback)

        return unsubscribe

    def push_insert(self, code: str):
        """Simulate another station inserting a code."""
        self.seed(code)
        for callback in list(self.subscribers):
            callback(ChangeEvent(event_type="INSERT", record={"code": code}))


class FakeOrderLookup(OrderLookup):
    """OrderLookup answering from a dict; unknown codes are NOT_FOUND."""

    def __init__(self, results=None, delay: float = 0.0, error: Exception = None):
        self.results = dict(results or {})
        self.delay = delay
        self.error = error
        self.calls = []

    async def lookup(self, code):
        self.calls.append(code)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.results.get(code, EnrichmentResult(found=False, reason=REASON_NOT_FOUND))


# ============================================================================
# Helpers
# ============================================================================

def make_carrier_row(carrier_id, display_name=None, rules=None, extraction=None, **extra):
    """Build a carriers table row."""
    row = {
        "id": carrier_id,
        "code": str(carrier_id),
        "display_name": display_name or str(carrier_id).title(),
        "is_active": True,
        "validation_rules": rules or {},
        "extraction_config": extraction,
    }
    row.update(extra)
    return row


def found_order(order_id="ORD-1", firstname="Ana", lastname="Lopez", store="Tienda Norte"):
    return EnrichmentResult(
        found=True,
        can_ship=True,
        data={"order_id": order_id, "firstname": firstname, "lastname": lastname, "store": store},
    )


# Carriers used across the suite
COORDINADORA_ROW = make_carrier_row(
    "coordinadora", "Coordinadora",
    rules={"pattern": "ends_with_001", "min_length": 20, "digits_only": True},
    extraction={"method": "slice", "start": -14, "end": -3},
)
INTERRAPIDISIMO_ROW = make_carrier_row(
    "interrapidisimo", "Interrapidisimo",
    rules={"pattern": "starts_with_24", "length": [12, 13], "digits_only": True},
    extraction={"method": "substring", "length": 12},
)
GENERIC_ROW = make_carrier_row(
    "generic", "Generic",
    rules={"length": 11, "digits_only": True},
)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def carrier_rows():
    return [COORDINADORA_ROW, INTERRAPIDISIMO_ROW, GENERIC_ROW]


@pytest.fixture
def fake_store(carrier_rows):
    return FakeScanStore(carrier_rows)
