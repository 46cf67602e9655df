"""
Application settings loaded from config.ini and the environment.

config.ini holds the station-level tuning (batch sizes, timeouts, file
locations). Credentials are read from the environment (optionally from a
.env file) so they never end up in a shared config file.

Example config.ini:
    [Supabase]
    CodesTable = codes
    CarriersTable = carriers

    [OrderApi]
    BaseUrl = https://orders.example.com/api/1.1/wf
    TimeoutSeconds = 8

    [Scanner]
    DeviceId = DOCK-2
    BlockUnshippable = true

    [Sync]
    BatchSize = 5
    MaxRetries = 3
"""

import configparser
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from exceptions import ConfigurationError
from logger import get_logger, CONFIG_ENV_VAR

logger = get_logger(__name__)

# Default locations
DEFAULT_DATA_DIR = Path(os.path.expanduser("~")) / ".parcel_scanner"


@dataclass
class Settings:
    """
    Resolved configuration for one scanner station.

    Every field has a default so a station can start with an empty
    config.ini; only the Supabase credentials are mandatory, and only
    when a remote store is actually built.
    """
    # Remote store
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    codes_table: str = "codes"
    carriers_table: str = "carriers"

    # Order enrichment API
    order_api_url: Optional[str] = None
    order_api_key: Optional[str] = None
    order_api_timeout: float = 8.0

    # Scanner behaviour
    device_id: str = socket.gethostname()
    raw_scan_max_length: int = 500
    block_unshippable: bool = True
    enrichment_timeout: float = 8.0

    # Offline queue / sync
    batch_size: int = 5
    max_retries: int = 3
    batch_pause_seconds: float = 0.5
    sync_interval_seconds: float = 30.0
    settle_delay_seconds: float = 1.0
    stale_after_seconds: float = 24 * 60 * 60

    # Local storage
    local_db_path: Path = DEFAULT_DATA_DIR / "scanner_state.db"

    # Connectivity probing
    probe_url: Optional[str] = None
    probe_interval_seconds: float = 15.0
    probe_timeout: float = 3.0

    def require_supabase(self):
        """
        Ensure remote store credentials are present.

        Raises:
            ConfigurationError: If URL or key are missing
        """
        missing = [name for name, value in (("SUPABASE_URL", self.supabase_url),
                                            ("SUPABASE_KEY", self.supabase_key)) if not value]
        if missing:
            raise ConfigurationError(
                f"Missing remote store configuration: {', '.join(missing)}\n\n"
                f"Set them in the environment, a .env file, or the [Supabase] section of config.ini."
            )


def _read_config(config_path: Path) -> configparser.ConfigParser:
    """Load config.ini; a missing file yields an empty parser (defaults apply)."""
    config = configparser.ConfigParser()

    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return config

    try:
        config.read(config_path, encoding='utf-8')
        logger.info(f"Configuration loaded from {config_path}")
    except configparser.Error as e:
        logger.error(f"Failed to parse config: {e}")
        raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e

    return config


def load_settings(config_path: Optional[str] = None, env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from config.ini plus environment variables.

    Lookup order for the config file: explicit argument, $PARCEL_SCANNER_CONFIG,
    ./config.ini. Environment variables override the matching config values:
    SUPABASE_URL, SUPABASE_KEY, ORDER_API_URL, ORDER_API_KEY, SCANNER_DEVICE_ID.

    Args:
        config_path: Optional path to config.ini
        env_file: Optional path to a .env file (default: search from cwd)

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If config.ini exists but cannot be parsed
    """
    load_dotenv(env_file)

    path = Path(config_path or os.environ.get(CONFIG_ENV_VAR, 'config.ini'))
    config = _read_config(path)
    defaults = Settings()

    settings = Settings(
        supabase_url=os.getenv("SUPABASE_URL") or config.get('Supabase', 'Url', fallback=None),
        supabase_key=os.getenv("SUPABASE_KEY") or config.get('Supabase', 'Key', fallback=None),
        codes_table=config.get('Supabase', 'CodesTable', fallback=defaults.codes_table),
        carriers_table=config.get('Supabase', 'CarriersTable', fallback=defaults.carriers_table),

        order_api_url=os.getenv("ORDER_API_URL") or config.get('OrderApi', 'BaseUrl', fallback=None),
        order_api_key=os.getenv("ORDER_API_KEY") or config.get('OrderApi', 'ApiKey', fallback=None),
        order_api_timeout=config.getfloat('OrderApi', 'TimeoutSeconds', fallback=defaults.order_api_timeout),

        device_id=os.getenv("SCANNER_DEVICE_ID") or config.get('Scanner', 'DeviceId', fallback=defaults.device_id),
        raw_scan_max_length=config.getint('Scanner', 'RawScanMaxLength', fallback=defaults.raw_scan_max_length),
        block_unshippable=config.getboolean('Scanner', 'BlockUnshippable', fallback=defaults.block_unshippable),
        enrichment_timeout=config.getfloat('Scanner', 'EnrichmentTimeoutSeconds', fallback=defaults.enrichment_timeout),

        batch_size=config.getint('Sync', 'BatchSize', fallback=defaults.batch_size),
        max_retries=config.getint('Sync', 'MaxRetries', fallback=defaults.max_retries),
        batch_pause_seconds=config.getfloat('Sync', 'BatchPauseSeconds', fallback=defaults.batch_pause_seconds),
        sync_interval_seconds=config.getfloat('Sync', 'IntervalSeconds', fallback=defaults.sync_interval_seconds),
        settle_delay_seconds=config.getfloat('Sync', 'SettleDelaySeconds', fallback=defaults.settle_delay_seconds),
        stale_after_seconds=config.getfloat('Sync', 'StaleHours', fallback=24.0) * 3600,

        local_db_path=Path(config.get('Storage', 'LocalDbPath', fallback=str(defaults.local_db_path))).expanduser(),

        probe_url=config.get('Connectivity', 'ProbeUrl', fallback=None),
        probe_interval_seconds=config.getfloat('Connectivity', 'ProbeIntervalSeconds',
                                               fallback=defaults.probe_interval_seconds),
        probe_timeout=config.getfloat('Connectivity', 'ProbeTimeoutSeconds', fallback=defaults.probe_timeout),
    )

    if settings.batch_size < 1:
        raise ConfigurationError(f"[Sync] BatchSize must be at least 1, got {settings.batch_size}")
    if settings.max_retries < 1:
        raise ConfigurationError(f"[Sync] MaxRetries must be at least 1, got {settings.max_retries}")

    logger.debug(f"Settings resolved for device {settings.device_id}")
    return settings
