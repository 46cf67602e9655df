"""
Contracts the scan pipeline needs from its collaborators.

ScanStore is the remote store (SupabaseScanStore in production, an in-memory
fake in tests). OrderLookup is the order-management API.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

from scan_record import ChangeEvent, EnrichmentResult, ScanRecord

ChangeCallback = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], Any]


class ScanStore(ABC):
    """Remote persistence for scans and carriers."""

    @abstractmethod
    async def exists(self, code: str) -> bool:
        """True if a record with this normalized code is already stored."""

    @abstractmethod
    async def insert(self, record: ScanRecord) -> Dict[str, Any]:
        """
        Store a record and return the stored row.

        Raises:
            DuplicateCodeError: If the code is already stored
            PersistenceError: If the store rejected the record
            NetworkError: If the store could not be reached
        """

    @abstractmethod
    async def delete(self, record_id: Any) -> None:
        ...

    @abstractmethod
    async def query_active_carriers(self) -> List[Dict[str, Any]]:
        """Raw carrier rows, active only, ordered by priority then display_name."""

    @abstractmethod
    async def list_codes(self) -> List[str]:
        """Every stored code, used to rehydrate the session cache."""

    @abstractmethod
    async def subscribe_to_changes(self, callback: ChangeCallback) -> Unsubscribe:
        """
        Register for row changes on the scans table.

        The callback may be invoked from a foreign thread; consumers must hop
        back onto their own loop. Returns an (a)sync callable that unsubscribes.
        """

    async def list_since(self, since_iso: str) -> List[Dict[str, Any]]:
        """Rows created at or after ``since_iso``."""
        raise NotImplementedError

    async def records_missing_enrichment(self) -> List[Dict[str, Any]]:
        """Rows with a null order_id, customer_name or store_name."""
        raise NotImplementedError

    async def update(self, record_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError


class OrderLookup(ABC):
    """Order-management API used to enrich scans."""

    @abstractmethod
    async def lookup(self, code: str) -> EnrichmentResult:
        """Never raises for API-level failures; returns a not-found result instead."""
