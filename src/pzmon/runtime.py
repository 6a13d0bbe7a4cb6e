"""Composition root: builds and owns every service of a PZMon process."""

import logging
import signal
import threading
from datetime import UTC
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pzmon.config import Settings
from pzmon.db import Database
from pzmon.log_manager import LogManager
from pzmon.log_stream import LogStreamManager
from pzmon.log_watcher import LogWatcher
from pzmon.monitor_manager import MonitorManager
from pzmon.paths import LogPathResolver
from pzmon.parsers import default_parsers
from pzmon.system_monitor import SystemMonitorService


logger = logging.getLogger(__name__)


def load_timezone(name: str):
    if name.upper() == 'UTC':
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f'Unknown time zone {name!r}, using UTC')
        return UTC


class Runtime:
    """Services wired together from Settings.

    Nothing here is a module-level singleton: tests and entry points create
    their own Runtime and shut it down with stop().
    """

    def __init__(self, settings: Settings, observer_factory=None, sampler=None):
        self.settings = settings
        self.database = Database(settings.database_url)
        self.database.create_all()

        self.resolver = LogPathResolver(settings.server_cache_base, settings.backup_logs_dir)
        self.log_manager = LogManager(self.database, parsers=default_parsers(load_timezone(settings.log_timezone)))
        self.stream = LogStreamManager(settings.stream_buffer_size)

        watcher_options = {}
        if observer_factory is not None:
            watcher_options['observer_factory'] = observer_factory
        self.watcher = LogWatcher(
            self.log_manager,
            self.stream,
            resolver=self.resolver,
            configured_servers=self.configured_servers,
            debounce_seconds=settings.debounce_seconds,
            min_ingest_interval_seconds=settings.min_ingest_interval_seconds,
            rotation_poll_seconds=settings.rotation_poll_seconds,
            rotation_timeout_seconds=settings.rotation_timeout_seconds,
            **watcher_options,
        )
        self.monitor_manager = MonitorManager(self.database)
        self.monitor = SystemMonitorService(self.monitor_manager, sampler=sampler)
        self._stopped = threading.Event()

    @classmethod
    def from_env(cls) -> 'Runtime':
        return cls(Settings.from_env())

    def configured_servers(self) -> list[str]:
        return list(self.settings.servers) or self.resolver.known_servers()

    def stop(self):
        """Stop watchers and the monitor; safe to call more than once."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self.watcher.stop_all_watchers()
        self.monitor.stop()
        self.database.dispose()
        logger.info('PZMon runtime stopped')

    def wait(self, timeout: float | None = None) -> bool:
        return self._stopped.wait(timeout)

    def install_signal_handlers(self):
        """Stop everything on SIGINT/SIGTERM (main thread only)."""

        def handle(signum, frame):
            logger.info(f'Received {signal.Signals(signum).name}, shutting down')
            self.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, handle)
