"""Runtime settings loaded from PZMON_* environment variables."""

from dataclasses import dataclass, field

from pzmon.utils import get_float_env, get_int_env, get_list_env, get_pzmon_data_dir, get_str_env


DEFAULT_SERVER_CACHE_BASE = '/root/server-cache'
DEFAULT_BACKUP_SYSTEM_ROOT = '/opt/zomboid-backups'


@dataclass
class Settings:
    """Settings shared by the CLI, the web app and the composition root."""

    database_url: str
    server_cache_base: str = DEFAULT_SERVER_CACHE_BASE
    backup_logs_dir: str = f'{DEFAULT_BACKUP_SYSTEM_ROOT}/logs'
    servers: list[str] = field(default_factory=list)
    log_timezone: str = 'UTC'
    debounce_seconds: float = 1.0
    min_ingest_interval_seconds: float = 0.5
    rotation_poll_seconds: float = 1.0
    rotation_timeout_seconds: float = 300.0
    stream_buffer_size: int = 1000

    @classmethod
    def from_env(cls) -> 'Settings':
        data_dir = get_pzmon_data_dir()
        backup_root = get_str_env('PZMON_BACKUP_SYSTEM_ROOT', DEFAULT_BACKUP_SYSTEM_ROOT)
        buffer_size = get_int_env('PZMON_STREAM_BUFFER_SIZE', 1000)
        return cls(
            database_url=get_str_env('PZMON_DATABASE_URL', f'sqlite:///{data_dir / "pzmon.db"}'),
            server_cache_base=get_str_env('PZMON_SERVER_CACHE_BASE', DEFAULT_SERVER_CACHE_BASE),
            backup_logs_dir=get_str_env('PZMON_BACKUP_LOGS_DIR', f'{backup_root}/logs'),
            servers=get_list_env('PZMON_SERVERS'),
            log_timezone=get_str_env('PZMON_LOG_TIMEZONE', 'UTC'),
            debounce_seconds=get_float_env('PZMON_DEBOUNCE_SECONDS', 1.0),
            min_ingest_interval_seconds=get_float_env('PZMON_MIN_INGEST_INTERVAL_SECONDS', 0.5),
            rotation_poll_seconds=get_float_env('PZMON_ROTATION_POLL_SECONDS', 1.0),
            rotation_timeout_seconds=get_float_env('PZMON_ROTATION_TIMEOUT_SECONDS', 300.0),
            stream_buffer_size=buffer_size if buffer_size > 0 else 1000,
        )
