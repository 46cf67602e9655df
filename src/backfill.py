"""
Enrichment backfill.

Scans stored while the order API was down (or before it knew the order) have
null order_id / customer_name / store_name. The backfill re-queries the order
API for each of them and writes back whatever it learns.

Per record:
    found                          -> update, counted as updated
    refused (can_ship False) but
    the API still sent order data  -> update, counted as updated with a warning
    anything else                  -> counted as failed, record left untouched
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from exceptions import ScannerError
from logger import get_logger
from scan_record import EnrichmentResult

logger = get_logger(__name__)


@dataclass
class BackfillSummary:
    total: int = 0
    updated: int = 0
    failed: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def enrichment_values(result: EnrichmentResult) -> Dict[str, Any]:
    return {
        "order_id": result.order_id,
        "customer_name": result.customer_name,
        "store_name": result.store_name,
    }


class BackfillService:
    """
    Args:
        store: ScanStore with records_missing_enrichment() and update()
        order_lookup: OrderLookup used for the re-queries
    """

    def __init__(self, store, order_lookup):
        self.store = store
        self.order_lookup = order_lookup

    async def run(self, on_progress: Optional[Callable[[int, int, str], None]] = None) -> BackfillSummary:
        """
        Backfill every record missing enrichment, one at a time.

        Args:
            on_progress: Called as on_progress(done, total, code) after each record

        Returns:
            BackfillSummary

        Raises:
            ScannerError: If the list of records cannot be fetched
        """
        records = await self.store.records_missing_enrichment()
        summary = BackfillSummary(total=len(records))
        logger.info(f"Backfill started: {summary.total} records missing order data")

        for index, row in enumerate(records, start=1):
            await self._backfill_one(row, summary)
            if on_progress is not None:
                on_progress(index, summary.total, row.get("code"))

        logger.info(f"Backfill finished: {summary.updated} updated, {summary.failed} failed, "
                     f"{len(summary.warnings)} warnings")
        return summary

    async def _backfill_one(self, row: Dict[str, Any], summary: BackfillSummary) -> None:
        code = row.get("code")
        result = await self.order_lookup.lookup(code)

        has_data = result.found or (result.can_ship is False and result.order_id is not None)
        if not has_data:
            summary.failed += 1
            summary.errors.append(f"{code}: {result.message or result.reason}")
            return

        try:
            await self.store.update(row["id"], enrichment_values(result))
        except ScannerError as e:
            logger.error(f"Backfill update failed for {code}: {e}")
            summary.failed += 1
            summary.errors.append(f"{code}: {e}")
            return

        summary.updated += 1
        if not result.found:
            summary.warnings.append(f"{code}: updated with warning ({result.message})")
