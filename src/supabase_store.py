"""
Supabase implementation of the ScanStore contract.

Tables:
    codes     - one row per scanned parcel, unique constraint on ``code``
    carriers  - carrier definitions with JSON validation/extraction rules

Errors are translated at this boundary:
    Postgres 23505 (unique_violation) -> DuplicateCodeError
    any other PostgREST error         -> PersistenceError
    transport failures                -> NetworkError
"""

from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from exceptions import DuplicateCodeError, NetworkError, PersistenceError
from logger import get_logger
from persistence import ChangeCallback, ScanStore, Unsubscribe
from scan_record import ChangeEvent, ScanRecord

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"
PAGE_SIZE = 1000
ENRICHMENT_FIELDS = ("order_id", "customer_name", "store_name")


def parse_change_payload(payload: Dict[str, Any]) -> Optional[ChangeEvent]:
    """
    Normalize a realtime postgres_changes payload.

    Accepts both the wrapped shape ({"data": {"type": ..., "record": ...}})
    and the flat shape ({"eventType": ..., "new": ...}).
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get("data", payload)
    event_type = data.get("eventType") or data.get("type")
    record = data.get("new") or data.get("record") or {}
    if not event_type:
        return None
    return ChangeEvent(event_type=str(event_type).upper(), record=dict(record))


class SupabaseScanStore(ScanStore):
    """
    Async Supabase-backed store.

    Build with ``await SupabaseScanStore.connect(url, key)``.
    """

    def __init__(self, client: AsyncClient, codes_table: str = "codes", carriers_table: str = "carriers"):
        self.client = client
        self.codes_table = codes_table
        self.carriers_table = carriers_table

    @classmethod
    async def connect(cls, url: str, key: str, codes_table: str = "codes",
                      carriers_table: str = "carriers") -> "SupabaseScanStore":
        try:
            client = await acreate_client(url, key)
        except Exception as e:
            raise NetworkError(f"Could not connect to Supabase: {e}") from e
        logger.info(f"Connected to Supabase at {url}")
        return cls(client, codes_table, carriers_table)

    async def _execute(self, query, action: str, code: Optional[str] = None):
        try:
            return await query.execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateCodeError(code or "", message=e.message) from e
            logger.error(f"Supabase rejected {action}: {e.code} {e.message}")
            raise PersistenceError(f"{action} failed: {e.message}", code=e.code) from e
        except Exception as e:
            raise NetworkError(f"{action} failed: {e}") from e

    # ------------------------------------------------------------------
    # Codes
    # ------------------------------------------------------------------

    async def exists(self, code: str) -> bool:
        query = self.client.table(self.codes_table).select("id").eq("code", code).limit(1)
        response = await self._execute(query, "exists")
        return bool(response.data)

    async def insert(self, record: ScanRecord) -> Dict[str, Any]:
        query = self.client.table(self.codes_table).insert(record.to_dict())
        response = await self._execute(query, "insert", code=record.code)
        return response.data[0] if response.data else record.to_dict()

    async def delete(self, record_id: Any) -> None:
        query = self.client.table(self.codes_table).delete().eq("id", record_id)
        await self._execute(query, "delete")

    async def update(self, record_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        query = self.client.table(self.codes_table).update(values).eq("id", record_id)
        response = await self._execute(query, "update")
        return response.data[0] if response.data else {}

    async def list_codes(self) -> List[str]:
        codes: List[str] = []
        start = 0
        while True:
            query = self.client.table(self.codes_table).select("code").range(start, start + PAGE_SIZE - 1)
            response = await self._execute(query, "list_codes")
            rows = response.data or []
            codes.extend(row["code"] for row in rows if row.get("code"))
            if len(rows) < PAGE_SIZE:
                return codes
            start += PAGE_SIZE

    async def list_since(self, since_iso: str) -> List[Dict[str, Any]]:
        query = (self.client.table(self.codes_table).select("*")
                 .gte("created_at", since_iso).order("created_at", desc=True))
        response = await self._execute(query, "list_since")
        return response.data or []

    async def records_missing_enrichment(self) -> List[Dict[str, Any]]:
        null_filter = ",".join(f"{name}.is.null" for name in ENRICHMENT_FIELDS)
        query = (self.client.table(self.codes_table)
                 .select("id, code, customer_name, order_id, store_name, carrier_name")
                 .or_(null_filter)
                 .order("created_at", desc=True))
        response = await self._execute(query, "records_missing_enrichment")
        return response.data or []

    # ------------------------------------------------------------------
    # Carriers
    # ------------------------------------------------------------------

    async def query_active_carriers(self) -> List[Dict[str, Any]]:
        query = (self.client.table(self.carriers_table).select("*")
                 .eq("is_active", True)
                 .order("priority", nullsfirst=False)
                 .order("display_name"))
        response = await self._execute(query, "query_active_carriers")
        return response.data or []

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    async def subscribe_to_changes(self, callback: ChangeCallback) -> Unsubscribe:
        def on_change(payload):
            event = parse_change_payload(payload)
            if event is not None:
                callback(event)

        channel = self.client.channel(f"{self.codes_table}-changes")
        channel.on_postgres_changes("*", schema="public", table=self.codes_table, callback=on_change)
        await channel.subscribe()
        logger.info(f"Subscribed to changes on '{self.codes_table}'")

        async def unsubscribe():
            await self.client.remove_channel(channel)
            logger.info(f"Unsubscribed from changes on '{self.codes_table}'")

        return unsubscribe
