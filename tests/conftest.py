"""Pytest configuration and shared fixtures for PZMon tests.

Every test gets its own data directory, server cache and backup log
directory, so nothing touches the real ~/.local/share/pzmon or /opt paths.
"""

import os
import threading
import time
from datetime import date

import pytest

from pzmon.config import Settings
from pzmon.db import Database
from pzmon.log_manager import LogManager
from pzmon.log_stream import LogStreamManager
from pzmon.sampler import InterfaceCounters, RawTelemetry


# A fixed calendar day for parsers that only see clock times
REFERENCE_DATE = date(2024, 1, 15)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Point every PZMON_* location at the test's temporary directory."""
    data_dir = tmp_path / 'data'
    cache_dir = tmp_path / 'server-cache'
    backup_dir = tmp_path / 'backups' / 'logs'
    monkeypatch.setenv('PZMON_DATA_DIR', str(data_dir))
    monkeypatch.setenv('PZMON_SERVER_CACHE_BASE', str(cache_dir))
    monkeypatch.setenv('PZMON_BACKUP_LOGS_DIR', str(backup_dir))
    for key in ('PZMON_DATABASE_URL', 'PZMON_SERVERS', 'PZMON_WATCH', 'PZMON_MONITOR', 'PZMON_WATCH_SERVERS'):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


@pytest.fixture
def database(tmp_path):
    db = Database(f'sqlite:///{tmp_path / "test.db"}')
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def log_manager(database):
    return LogManager(database)


@pytest.fixture
def stream():
    return LogStreamManager(max_buffer_size=100)


@pytest.fixture
def server_cache(tmp_path):
    """A server cache with one server ('servertest') and its Logs directory."""
    logs = tmp_path / 'server-cache' / 'servertest' / 'Logs'
    logs.mkdir(parents=True)
    return tmp_path / 'server-cache'


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f'sqlite:///{tmp_path / "runtime.db"}',
        server_cache_base=str(tmp_path / 'server-cache'),
        backup_logs_dir=str(tmp_path / 'backups' / 'logs'),
        debounce_seconds=0.05,
        min_ingest_interval_seconds=0.0,
        rotation_poll_seconds=0.05,
        rotation_timeout_seconds=1.0,
    )


def wait_for(condition, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll condition() until it is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return bool(condition())


def append(path, text: str):
    with open(path, 'a', encoding='utf-8') as f:
        f.write(text)


class FakeObserver:
    """In-memory stand-in for watchdog's Observer.

    Records scheduled handlers so tests can deliver real watchdog events
    to them with emit().
    """

    def __init__(self):
        self.handlers: dict[int, tuple[object, str]] = {}
        self.started = False
        self.stopped = False
        self._next = 0
        self._lock = threading.Lock()

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass

    def schedule(self, handler, path, recursive=False):
        with self._lock:
            self._next += 1
            self.handlers[self._next] = (handler, os.path.abspath(path))
            return self._next

    def unschedule(self, handle):
        with self._lock:
            self.handlers.pop(handle, None)

    @property
    def directories(self) -> list[str]:
        with self._lock:
            return sorted(path for _, path in self.handlers.values())

    def emit(self, event):
        """Deliver an event to every handler watching the event's directory."""
        directory = os.path.dirname(os.path.abspath(os.fsdecode(event.src_path)))
        with self._lock:
            handlers = [handler for handler, path in self.handlers.values() if path == directory]
        for handler in handlers:
            handler.dispatch(event)


@pytest.fixture
def observer():
    return FakeObserver()


class FakeSampler:
    """Returns queued telemetry readings, repeating the last one when exhausted."""

    def __init__(self, readings: list[RawTelemetry] | None = None):
        self.readings = list(readings or [make_telemetry()])
        self.calls = 0
        self.fail_with: Exception | None = None

    def read(self) -> RawTelemetry:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


def make_telemetry(
    cpu: float = 10.0,
    memory: float = 40.0,
    swap: float = 0.0,
    rx: int = 1_000_000,
    tx: int = 500_000,
    interfaces: list[InterfaceCounters] | None = None,
) -> RawTelemetry:
    return RawTelemetry(
        cpu_percent=cpu,
        cpu_cores=[cpu, cpu],
        memory_used_bytes=int(8 * 1024**3 * memory / 100),
        memory_total_bytes=8 * 1024**3,
        memory_percent=memory,
        swap_used_bytes=0,
        swap_total_bytes=2 * 1024**3,
        swap_percent=swap,
        interfaces=interfaces
        if interfaces is not None
        else [
            InterfaceCounters(name='lo', rx_bytes=10, tx_bytes=10),
            InterfaceCounters(name='eth0', rx_bytes=rx, tx_bytes=tx),
        ],
    )


@pytest.fixture
def fake_sampler():
    return FakeSampler()
