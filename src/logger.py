"""
Centralized logging configuration for Parcel Scanner.

This module provides the logging setup shared by every scanner module:
- Structured JSON logging for easy parsing and analysis
- Automatic file rotation (prevents log files from growing indefinitely)
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Both file and console output
- Context-aware logging (operator_id, session_id, device_id)

At a packing station the log is the only record of why a parcel was not
saved: a rejected code, a dropped offline item, a failed sync. Every such
event is logged with the operator and device that produced it.

Log file location: [Logging] LogDir, default ~/.parcel_scanner/logs/
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-05T14:30:45.123", "level": "INFO", "tool": "parcel_scanner",
     "operator_id": "op-7", "session_id": "2025-11-05_1", "device_id": "DOCK-2",
     "module": "scan_processor", "function": "process_scan", "line": 212,
     "message": "Scan saved: 56813890077 (Coordinadora)"}
"""

# Standard library imports
import logging  # Core logging framework
import json  # JSON formatting for structured logging
import os  # Environment variables and paths
from datetime import datetime, timedelta  # Log rotation and cleanup
from pathlib import Path  # Modern path handling
from logging.handlers import RotatingFileHandler  # Automatic log rotation
from typing import Optional, Dict, Any  # Type hints
import configparser  # Reading config.ini settings
from contextvars import ContextVar  # Task-safe context storage


# Context variables for structured logging
_operator_id: ContextVar[Optional[str]] = ContextVar('operator_id', default=None)
_session_id: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
_device_id: ContextVar[Optional[str]] = ContextVar('device_id', default=None)

# Environment variable that points at an alternative config.ini
CONFIG_ENV_VAR = 'PARCEL_SCANNER_CONFIG'


class StructuredJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - tool: Always "parcel_scanner"
    - operator_id: Current operator context (if set)
    - session_id: Current scan session context (if set)
    - device_id: Current device/station context (if set)
    - module: Logger name
    - function: Function name
    - line: Line number
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON string.

        Args:
            record: LogRecord to format

        Returns:
            JSON string with structured log data
        """
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'parcel_scanner',
            'operator_id': _operator_id.get(),
            'session_id': _session_id.get(),
            'device_id': _device_id.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        # Extra fields attached via logger.info(..., extra={"extra_data": {...}})
        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured only once, on the first get_logger() call,
    regardless of how many modules import the logger.

    The logging system is configured from config.ini with these settings:
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - LogDir: Directory for daily log files
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep

    Attributes:
        _initialized: Whether logging has been configured (class-level)
        log_file: Path of the active log file once configured
    """

    _initialized: bool = False
    log_file: Optional[Path] = None

    @classmethod
    def get_logger(cls, name: str = 'ParcelScanner') -> logging.Logger:
        """
        Get or create application logger with lazy initialization.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)
            logger.info("Starting operation")

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Configured logger instance for the specified name
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Setup logging configuration from config.ini.

        Configures:
        1. Log directory and daily file path
        2. Log level (from config or default to INFO)
        3. JSON file handler with rotation
        4. Human-readable console handler
        5. Cleanup of logs older than the retention period
        """
        config = cls._load_config()

        # === LOG DIRECTORY SETUP ===
        default_dir = Path(os.path.expanduser("~")) / ".parcel_scanner" / "logs"
        log_dir = Path(config.get('Logging', 'LogDir', fallback=str(default_dir))).expanduser()

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Configured directory unusable (read-only mount, missing drive)
            log_dir = default_dir
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not use configured log directory. Using local: {log_dir}. Error: {e}")

        # One file per day: 2025-11-05.log
        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"
        cls.log_file = log_file

        # === LOG LEVEL CONFIGURATION ===
        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        # === FILE ROTATION CONFIGURATION ===
        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        json_formatter = StructuredJSONFormatter()

        # Format: timestamp | module | level | function:line | message
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('ParcelScanner')
        logger.info("=" * 80)
        logger.info("Parcel Scanner Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @staticmethod
    def _load_config() -> configparser.ConfigParser:
        """
        Load logging configuration from config.ini.

        The file is looked up at $PARCEL_SCANNER_CONFIG, then ./config.ini.
        If neither exists an empty ConfigParser is returned and every option
        falls back to its default.

        Configuration options:
            [Logging]
            LogLevel = INFO
            LogDir = ~/.parcel_scanner/logs
            MaxLogSizeMB = 10
            LogRetentionDays = 30

        Returns:
            ConfigParser object with loaded configuration
        """
        config = configparser.ConfigParser()
        config_path = Path(os.environ.get(CONFIG_ENV_VAR, 'config.ini'))

        if config_path.exists():
            config.read(config_path, encoding='utf-8')

        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs.
                            0 or negative disables cleanup.
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            # Matches 2025-11-05.log and rotated 2025-11-05.log.1
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)

                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('ParcelScanner').debug(f"Deleted old log: {log_file.name}")

        except OSError as e:
            # Non-fatal: file in use or permission issue
            logging.getLogger('ParcelScanner').warning(f"Failed to cleanup old logs: {e}")


# Convenience functions
def get_logger(name: str = 'ParcelScanner') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Starting process")
    """
    return AppLogger.get_logger(name)


def set_operator_context(operator_id: Optional[str]) -> None:
    """
    Set current operator ID for structured logging context.

    Args:
        operator_id: Operator identifier or None to clear

    Example:
        >>> set_operator_context("op-7")
        >>> logger.info("Scan saved")  # Will include operator_id="op-7"
    """
    _operator_id.set(operator_id)


def set_session_context(session_id: Optional[str]) -> None:
    """
    Set current scan session ID for structured logging context.

    Args:
        session_id: Session identifier (e.g., "2025-11-05_14-30-45") or None to clear
    """
    _session_id.set(session_id)


def set_device_context(device_id: Optional[str]) -> None:
    """
    Set current device/station ID for structured logging context.

    Args:
        device_id: Station identifier (e.g., "DOCK-2") or None to clear
    """
    _device_id.set(device_id)


def clear_logging_context() -> None:
    """Clear all logging context (operator_id, session_id, device_id)."""
    _operator_id.set(None)
    _session_id.set(None)
    _device_id.set(None)
