import argparse
import asyncio
import sys

from change_feed import ChangeFeedMirror
from clock import SystemClock
from connectivity import ConnectivityMonitor
from exceptions import ConfigurationError, ScannerError, ValidationError
from local_store import LocalStore
from logger import get_logger
from offline_queue import OfflineQueue
from order_lookup import OrderApiClient
from scan_processor import ScanProcessor
from scan_session import ScanSession
from scan_statistics import daily_statistics
from scan_station import ScanStation
from settings import load_settings
from supabase_store import SupabaseScanStore
from sync_engine import SyncEngine

logger = get_logger(__name__)

MANUAL_COMMAND = "!manual"
COMMANDS_HELP = "Scan a code, or type: !manual <code> | !sync | !status | !stats | !quit"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parcel scanner station")
    parser.add_argument("--operator", required=True, help="Operator id for this session")
    parser.add_argument("--store-id", default=None, help="Store the operator works for")
    parser.add_argument("--store-name", default=None)
    parser.add_argument("--config", default=None, help="Path to config.ini")
    parser.add_argument("--offline", action="store_true", help="Start in offline mode")
    return parser.parse_args(argv)


async def build_station(settings, offline: bool = False) -> ScanStation:
    """Create every component from settings and wire them together."""
    settings.require_supabase()
    clock = SystemClock()

    store = await SupabaseScanStore.connect(settings.supabase_url, settings.supabase_key,
                                            settings.codes_table, settings.carriers_table)
    order_lookup = None
    if settings.order_api_url:
        order_lookup = OrderApiClient(settings.order_api_url, settings.order_api_key,
                                      timeout=settings.order_api_timeout)
    else:
        logger.warning("[OrderApi] BaseUrl not set, scans will not be enriched")

    local_store = LocalStore(settings.local_db_path)
    queue = OfflineQueue(local_store, clock)
    connectivity = ConnectivityMonitor(settings.probe_url, settings.probe_timeout,
                                       settings.probe_interval_seconds, clock,
                                       initially_online=not offline)
    session = ScanSession(device_id=settings.device_id)
    processor = ScanProcessor(session, store, order_lookup, clock,
                              enrichment_timeout=settings.enrichment_timeout,
                              block_unshippable=settings.block_unshippable,
                              raw_scan_max_length=settings.raw_scan_max_length)
    sync_engine = SyncEngine(queue, store, local_store, connectivity, clock,
                             batch_size=settings.batch_size,
                             max_retries=settings.max_retries,
                             batch_pause=settings.batch_pause_seconds,
                             interval=settings.sync_interval_seconds,
                             settle_delay=settings.settle_delay_seconds)
    sync_engine.item_dropped.connect(
        lambda item: print(f"!! Dropped after retries: {item.get('code')}")
    )
    mirror = ChangeFeedMirror(session, store)

    if queue.has_stale_items(settings.stale_after_seconds):
        logger.warning("Offline queue holds scans older than the stale threshold")

    return ScanStation(session, processor, queue, connectivity, store=store,
                       sync_engine=sync_engine, mirror=mirror)


async def handle_line(station: ScanStation, line: str) -> bool:
    """Process one input line. Returns False when the operator quits."""
    line = line.strip()
    if not line:
        return True
    if line == "!quit":
        return False
    if line == "!sync":
        summary = await station.sync_engine.sync_queue()
        print(f"Sync: {summary.status.value if summary.status else summary.reason} "
              f"({summary.synced} stored, {summary.remaining} remaining)")
        return True
    if line == "!status":
        print(station.summary())
        return True
    if line == "!stats":
        print(await daily_statistics(station.store))
        return True

    command, _, rest = line.partition(" ")
    try:
        if command == MANUAL_COMMAND:
            outcome = await station.submit_manual(rest.strip())
        else:
            outcome = await station.submit(line)
    except ValidationError as e:
        print(f"!! {e}")
        return True

    print(f"[{outcome.status.value.upper()}] {outcome.message}")
    return True


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    station = await build_station(settings, offline=args.offline)
    station.connectivity.start()

    await station.login(args.operator, store_id=args.store_id, store_name=args.store_name)
    print(COMMANDS_HELP)

    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            if not await handle_line(station, line):
                break
    finally:
        await station.connectivity.stop()
        summary = await station.logout()
        print(f"Session closed: {summary}")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except ScannerError as e:
        logger.error(f"Scanner failed to start: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
