"""Utility functions for PZMon"""

import logging
import os
from datetime import UTC, datetime
from pathlib import Path


def get_int_env(key: str, default: int = 0) -> int:
    """Get integer value from environment variable, return default if not set or invalid."""
    val = os.getenv(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def get_float_env(key: str, default: float) -> float:
    """Get float value from environment variable, return default if not set or invalid."""
    val = os.getenv(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def get_str_env(key: str, default: str) -> str:
    """
    Get string from environment variable, return default if not set.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        String value or default
    """
    return os.getenv(key, default)


def get_bool_env(key: str, default: bool) -> bool:
    """
    Get boolean from environment variable, return default if not set.

    Recognizes: true/false, yes/no, 1/0 (case-insensitive)

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Boolean value or default
    """
    val = os.getenv(key)
    if val is None:
        return default
    val_lower = val.lower()
    if val_lower in ('true', 'yes', '1'):
        return True
    elif val_lower in ('false', 'no', '0'):
        return False
    return default


def get_list_env(key: str) -> list[str]:
    """Get a comma-separated list from environment variable, empty items dropped."""
    val = os.getenv(key, '')
    return [item.strip() for item in val.split(',') if item.strip()]


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def setup_logging(level_name: str | None = None):
    """
    Configure root logging from PZMON_LOG_LEVEL.

    Safe to call more than once; only the first call installs handlers.
    """
    level_name = (level_name or get_str_env('PZMON_LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


class ShutdownFilter(logging.Filter):
    """
    Logging filter to suppress shutdown-related error tracebacks.

    Filters out KeyboardInterrupt, CancelledError, and SystemExit errors
    that occur during graceful shutdown of uvicorn/asyncio servers.
    """

    def filter(self, record):
        if record.levelname == 'ERROR':
            msg = str(record.getMessage())
            if any(x in msg for x in ['KeyboardInterrupt', 'CancelledError', 'Shutting down']):
                return False
            if record.exc_info:
                exc_type = record.exc_info[0]
                if exc_type and exc_type.__name__ in ('KeyboardInterrupt', 'CancelledError', 'SystemExit'):
                    return False
        return True


def setup_shutdown_filter():
    """Apply ShutdownFilter to uvicorn and asyncio loggers before serving."""
    shutdown_filter = ShutdownFilter()
    for logger_name in ['uvicorn.error', 'uvicorn', 'asyncio']:
        logging.getLogger(logger_name).addFilter(shutdown_filter)


def get_pzmon_data_dir() -> Path:
    """Get the data directory for PZMon (database, state).

    Priority:
    1. PZMON_DATA_DIR environment variable (if set)
    2. XDG_DATA_HOME environment variable (if set)
    3. ~/.local/share (default)

    Returns:
        Path to the data directory (e.g., ~/.local/share/pzmon)
    """
    data_dir = os.environ.get('PZMON_DATA_DIR')
    if data_dir:
        return Path(data_dir)
    xdg_data = os.environ.get('XDG_DATA_HOME')
    if xdg_data:
        base = Path(xdg_data)
    else:
        base = Path.home() / '.local' / 'share'
    return base / 'pzmon'
