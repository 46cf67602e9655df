"""
Tests for the Supabase store adapter. The client is a MagicMock whose query
builders end in an AsyncMock execute().
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from postgrest.exceptions import APIError

from exceptions import DuplicateCodeError, NetworkError, PersistenceError
from scan_record import ScanRecord
from supabase_store import PAGE_SIZE, SupabaseScanStore, parse_change_payload


def response(data):
    result = MagicMock()
    result.data = data
    return result


def make_record(code="240041585918"):
    return ScanRecord(code=code, carrier_id="interrapidisimo", carrier_name="Interrapidisimo",
                      operator_id="op-7", raw_scan=code, scan_type="barcode",
                      created_at="2025-11-05T14:30:45+00:00")


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return SupabaseScanStore(client, codes_table="codes", carriers_table="carriers")


# ============================================================================
# Change payloads
# ============================================================================

def test_parse_wrapped_payload():
    event = parse_change_payload({"data": {"type": "insert", "record": {"code": "1"}}})
    assert event.event_type == "INSERT"
    assert event.code == "1"


def test_parse_flat_payload():
    event = parse_change_payload({"eventType": "DELETE", "new": {}, "old": {"id": 3}})
    assert event.event_type == "DELETE"
    assert event.code is None


@pytest.mark.parametrize("payload", [None, "INSERT", {}, {"data": {"record": {"code": "1"}}}])
def test_parse_unusable_payload(payload):
    assert parse_change_payload(payload) is None


# ============================================================================
# Error mapping
# ============================================================================

def test_unique_violation_becomes_duplicate(store, client):
    client.table.return_value.insert.return_value.execute = AsyncMock(
        side_effect=APIError({"code": "23505", "message": "duplicate key value"}))

    with pytest.raises(DuplicateCodeError) as exc_info:
        asyncio.run(store.insert(make_record()))

    assert exc_info.value.scan_code == "240041585918"


def test_other_api_error_becomes_persistence_error(store, client):
    client.table.return_value.insert.return_value.execute = AsyncMock(
        side_effect=APIError({"code": "42501", "message": "permission denied"}))

    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(store.insert(make_record()))

    assert not isinstance(exc_info.value, DuplicateCodeError)
    assert exc_info.value.code == "42501"


def test_transport_error_becomes_network_error(store, client):
    client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute = AsyncMock(
        side_effect=ConnectionError("connection reset"))

    with pytest.raises(NetworkError):
        asyncio.run(store.exists("240041585918"))


# ============================================================================
# Queries
# ============================================================================

def test_exists(store, client):
    query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    query.execute = AsyncMock(return_value=response([{"id": 1}]))

    assert asyncio.run(store.exists("240041585918")) is True
    client.table.assert_called_with("codes")
    client.table.return_value.select.return_value.eq.assert_called_with("code", "240041585918")


def test_insert_returns_stored_row(store, client):
    client.table.return_value.insert.return_value.execute = AsyncMock(
        return_value=response([{"id": 9, "code": "240041585918"}]))

    row = asyncio.run(store.insert(make_record()))

    assert row["id"] == 9
    inserted = client.table.return_value.insert.call_args[0][0]
    assert inserted["operator_id"] == "op-7"


def test_list_codes_pages_through_results(store, client):
    first_page = [{"code": str(i)} for i in range(PAGE_SIZE)]
    query = client.table.return_value.select.return_value.range.return_value
    query.execute = AsyncMock(side_effect=[response(first_page), response([{"code": "last"}])])

    codes = asyncio.run(store.list_codes())

    assert len(codes) == PAGE_SIZE + 1
    assert codes[-1] == "last"
    client.table.return_value.select.return_value.range.assert_called_with(PAGE_SIZE, 2 * PAGE_SIZE - 1)


def test_query_active_carriers(store, client):
    query = client.table.return_value.select.return_value.eq.return_value.order.return_value.order.return_value
    query.execute = AsyncMock(return_value=response([{"id": "coordinadora"}]))

    rows = asyncio.run(store.query_active_carriers())

    assert rows == [{"id": "coordinadora"}]
    client.table.assert_called_with("carriers")


# ============================================================================
# Change feed
# ============================================================================

def test_subscribe_and_unsubscribe(store, client):
    channel = MagicMock()
    channel.subscribe = AsyncMock()
    client.channel.return_value = channel
    client.remove_channel = AsyncMock()
    events = []

    async def scenario():
        unsubscribe = await store.subscribe_to_changes(lambda event: events.append(event))
        on_change = channel.on_postgres_changes.call_args.kwargs["callback"]
        on_change({"data": {"type": "INSERT", "record": {"code": "240041585918"}}})
        on_change({"unexpected": True})
        await unsubscribe()

    asyncio.run(scenario())

    assert [event.code for event in events] == ["240041585918"]
    client.remove_channel.assert_awaited_once_with(channel)
