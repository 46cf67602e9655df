"""
Daily scan statistics.

Counts today's stored scans in total, per carrier and per store. Rows come
from ScanStore.list_since(); the aggregation itself is plain pandas so it can
be tested with literal rows.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from logger import get_logger

logger = get_logger(__name__)

NO_STORE = "No store"


def start_of_day_iso(now: datetime) -> str:
    """Midnight (UTC) of the given moment as ISO 8601."""
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


def summarize_records(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate scan rows.

    Returns:
        {"total": int,
         "by_carrier": {carrier_name: count},
         "by_store": {store_name or "No store": count},
         "by_type": {scan_type: count}}
        Each breakdown is sorted by count, descending.
    """
    if not rows:
        return {"total": 0, "by_carrier": {}, "by_store": {}, "by_type": {}}

    df = pd.DataFrame(rows)
    for column in ("carrier_name", "store_name", "scan_type"):
        if column not in df.columns:
            df[column] = None

    df["store_name"] = df["store_name"].fillna(NO_STORE)
    df["carrier_name"] = df["carrier_name"].fillna("Unknown")
    df["scan_type"] = df["scan_type"].fillna("unknown")

    def counts(column: str) -> Dict[str, int]:
        series = df[column].value_counts()
        return {str(k): int(v) for k, v in series.items()}

    return {
        "total": int(len(df)),
        "by_carrier": counts("carrier_name"),
        "by_store": counts("store_name"),
        "by_type": counts("scan_type"),
    }


async def daily_statistics(store, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Statistics for every record created since midnight UTC."""
    now = now or datetime.now(timezone.utc)
    since = start_of_day_iso(now)
    rows = await store.list_since(since)
    stats = summarize_records(rows)
    stats["since"] = since
    logger.info(f"Daily statistics: {stats['total']} scans since {since}")
    return stats
