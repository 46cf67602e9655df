"""
Tests for LocalStore and OfflineQueue.
"""

import pytest

from exceptions import StorageCorruptionError
from local_store import LocalStore, MemoryStore
from offline_queue import QUEUE_KEY, OfflineQueue, QueueItem
from conftest import FakeClock


@pytest.fixture
def local_store(tmp_path):
    return LocalStore(tmp_path / "state" / "scanner_state.db")


@pytest.fixture
def queue(local_store):
    return OfflineQueue(local_store, FakeClock())


# ============================================================================
# LocalStore
# ============================================================================

class TestLocalStore:

    def test_creates_parent_directory(self, tmp_path):
        LocalStore(tmp_path / "nested" / "dir" / "db.sqlite")
        assert (tmp_path / "nested" / "dir" / "db.sqlite").exists()

    def test_json_roundtrip_and_default(self, local_store):
        assert local_store.get_json("missing", default=[]) == []

        local_store.set_json("status", {"status": "synced", "queue_count": 2})

        assert local_store.get_json("status") == {"status": "synced", "queue_count": 2}

    def test_remove_is_idempotent(self, local_store):
        local_store.set_json("k", 1)
        local_store.remove("k")
        local_store.remove("k")
        assert local_store.get_json("k") is None

    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "db.sqlite"
        LocalStore(path).set_json("k", ["a"])
        assert LocalStore(path).get_json("k") == ["a"]

    def test_corrupt_value_raises(self, local_store):
        local_store.set_raw("k", "{not json")

        with pytest.raises(StorageCorruptionError) as exc_info:
            local_store.get_json("k")

        assert exc_info.value.key == "k"

    def test_memory_store_same_contract(self):
        store = MemoryStore()
        store.set_json("k", {"a": 1})
        assert store.get_json("k") == {"a": 1}
        store.set_raw("k", "oops")
        with pytest.raises(StorageCorruptionError):
            store.get_json("k")


# ============================================================================
# OfflineQueue
# ============================================================================

class TestOfflineQueue:

    def test_enqueue_assigns_id_time_and_zero_retries(self, queue):
        item = queue.enqueue({"code": "55566677788", "operator_id": "op-1"})

        assert isinstance(item, QueueItem)
        assert item.id
        assert item.retry_count == 0
        assert item.timestamp == queue.clock.now()
        assert item.payload["code"] == "55566677788"
        assert queue.count() == 1

    def test_ids_are_unique(self, queue):
        ids = {queue.enqueue({"code": str(i)}).id for i in range(20)}
        assert len(ids) == 20

    def test_persisted_shape_is_flat(self, queue, local_store):
        item = queue.enqueue({"code": "1"})

        (stored,) = local_store.get_json(QUEUE_KEY)

        assert stored == {"code": "1", "id": item.id, "timestamp": item.timestamp, "retry_count": 0}

    def test_list_sorted_by_age(self, queue):
        queue.enqueue({"code": "first"})
        queue.clock.advance(10)
        queue.enqueue({"code": "second"})

        # Put an older item at the end of the stored list
        items = queue.list()
        items[1].timestamp = queue.clock.now() - 100
        queue._save(items)

        assert [i.payload["code"] for i in queue.list_sorted_by_age()] == ["second", "first"]

    def test_remove_is_idempotent(self, queue):
        item = queue.enqueue({"code": "1"})
        queue.remove(item.id)
        queue.remove(item.id)
        queue.remove("never-existed")
        assert queue.count() == 0

    def test_increment_retry(self, queue):
        item = queue.enqueue({"code": "1"})

        assert queue.increment_retry(item.id) == 1
        assert queue.increment_retry(item.id) == 2
        assert queue.list()[0].retry_count == 2

    def test_increment_retry_unknown_id(self, queue):
        assert queue.increment_retry("missing") == 0

    def test_has_stale_items(self, queue):
        queue.enqueue({"code": "1"})
        assert not queue.has_stale_items()

        queue.clock.advance(24 * 60 * 60 + 1)

        assert queue.has_stale_items()
        assert not queue.has_stale_items(threshold_seconds=48 * 60 * 60)

    def test_clear(self, queue):
        queue.enqueue({"code": "1"})
        queue.enqueue({"code": "2"})

        queue.clear()

        assert queue.count() == 0

    def test_corrupt_storage_degrades_to_empty(self, queue, local_store):
        local_store.set_raw(QUEUE_KEY, "[{broken")

        assert queue.list() == []
        assert queue.count() == 0

        # Still usable afterwards
        queue.enqueue({"code": "1"})
        assert queue.count() == 1

    def test_wrong_shape_degrades_to_empty(self, queue, local_store):
        local_store.set_json(QUEUE_KEY, {"not": "a list"})
        assert queue.list() == []

    def test_unreadable_entry_skipped(self, queue, local_store):
        local_store.set_json(QUEUE_KEY, [{"code": "no id"}, {"id": "a", "timestamp": 1, "retry_count": 0}])
        assert [i.id for i in queue.list()] == ["a"]

    def test_survives_restart(self, tmp_path):
        path = tmp_path / "db.sqlite"
        OfflineQueue(LocalStore(path), FakeClock()).enqueue({"code": "55566677788"})

        reopened = OfflineQueue(LocalStore(path), FakeClock())

        assert [i.payload["code"] for i in reopened.list()] == ["55566677788"]
