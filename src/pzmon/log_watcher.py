"""Watch log files and ingest them as they grow.

Every watched (parser type, file) key runs a small state machine:

    NOT_WATCHING -> WATCHING_DIRECTORY   file missing, wait for it to appear
    NOT_WATCHING -> WATCHING_FILE        file present
    WATCHING_DIRECTORY -> WATCHING_FILE  file created
    WATCHING_FILE -> ROTATING            file renamed or deleted
    ROTATING -> WATCHING_FILE            file reappeared (polled)
    ROTATING -> WATCHING_DIRECTORY       not back before the rotation timeout
    any -> NOT_WATCHING                  unwatch / stop

Change notifications come from watchdog. One handler is scheduled per
directory and routes events to the keys of files in it. Changes are debounced
per key; ingestion runs on timer threads and never overlaps for a key.
"""

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from pzmon import prometheus as prom
from pzmon.log_manager import LogManager
from pzmon.log_stream import LogStreamManager
from pzmon.models import (
    PARSER_SOURCES,
    IngestResult,
    IngestSummary,
    LogLevel,
    ParserType,
    UnifiedLogEntry,
    WatchStatus,
    new_entry_id,
)
from pzmon.paths import LogPathResolver, LogTarget
from pzmon.servers import find_running_servers, resolve_servers
from pzmon.utils import utcnow


logger = logging.getLogger(__name__)

UNKNOWN_SERVER = 'unknown'


class WatchPhase(str, Enum):
    NOT_WATCHING = 'not_watching'
    WATCHING_DIRECTORY = 'watching_directory'
    WATCHING_FILE = 'watching_file'
    ROTATING = 'rotating'


@dataclass(eq=False)
class WatchState:
    key: str
    file_path: str
    parser_type: ParserType
    server: str
    phase: WatchPhase = WatchPhase.NOT_WATCHING
    inode: int | None = None
    debounce_timer: threading.Timer | None = None
    poll_timer: threading.Timer | None = None
    rotation_deadline: float | None = None
    last_ingest: float | None = None
    last_ingest_time: datetime | None = None
    pending: bool = False
    closed: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock)
    ingest_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def directory(self) -> str:
        return os.path.dirname(self.file_path)


def _inode(path: str) -> int | None:
    try:
        return os.stat(path).st_ino
    except OSError:
        return None


class _DirectoryHandler(FileSystemEventHandler):
    """Forwards file events of one directory to the watcher."""

    def __init__(self, watcher: 'LogWatcher', directory: str):
        super().__init__()
        self.watcher = watcher
        self.directory = directory

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        try:
            self.watcher.dispatch(self.directory, event)
        except Exception:
            logger.exception(f'Error handling {event.event_type} event in {self.directory}')


@dataclass
class _DirectoryWatch:
    handle: object
    keys: set[str] = field(default_factory=set)


class LogWatcher:
    def __init__(
        self,
        log_manager: LogManager,
        stream: LogStreamManager,
        resolver: LogPathResolver | None = None,
        configured_servers: Callable[[], list[str]] | None = None,
        running_servers: Callable[[], list[str]] = find_running_servers,
        observer_factory: Callable[[], object] = Observer,
        debounce_seconds: float = 1.0,
        min_ingest_interval_seconds: float = 0.5,
        rotation_poll_seconds: float = 1.0,
        rotation_timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.log_manager = log_manager
        self.stream = stream
        self.resolver = resolver
        self.configured_servers = configured_servers or (lambda: resolver.known_servers() if resolver else [])
        self.running_servers = running_servers
        self.observer_factory = observer_factory
        self.debounce_seconds = debounce_seconds
        self.min_ingest_interval_seconds = min_ingest_interval_seconds
        self.rotation_poll_seconds = rotation_poll_seconds
        self.rotation_timeout_seconds = rotation_timeout_seconds
        self.clock = clock

        self._states: dict[str, WatchState] = {}
        self._directories: dict[str, _DirectoryWatch] = {}
        self._observer = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @staticmethod
    def make_key(file_path: str, parser_type: ParserType) -> str:
        return f'{parser_type.value}:{os.path.abspath(file_path)}'

    def watch_log_file(
        self, file_path: str, parser_type: ParserType, server: str = UNKNOWN_SERVER
    ) -> WatchState | None:
        """Start watching a file; a second call for the same key is a no-op.

        Returns:
            The key's state, or None when the file's directory does not exist.
        """
        path = os.path.abspath(file_path)
        key = self.make_key(path, parser_type)
        with self._lock:
            existing = self._states.get(key)
            if existing:
                return existing
            if not os.path.isdir(os.path.dirname(path)):
                logger.warning(f'Not watching {path}: directory does not exist')
                return None

            state = WatchState(key=key, file_path=path, parser_type=parser_type, server=server or UNKNOWN_SERVER)
            self._states[key] = state
            self._attach(state)
            if os.path.exists(path):
                self._set_phase(state, WatchPhase.WATCHING_FILE)
                state.inode = _inode(path)
            else:
                self._set_phase(state, WatchPhase.WATCHING_DIRECTORY)
            prom.watched_files.set(len(self._states))
        return state

    def unwatch_log_file(self, file_path: str, parser_type: ParserType) -> bool:
        key = self.make_key(file_path, parser_type)
        with self._lock:
            state = self._states.pop(key, None)
            if state is None:
                return False
            self._close(state)
            prom.watched_files.set(len(self._states))
        logger.info(f'Stopped watching {state.file_path}')
        return True

    def stop_all_watchers(self):
        """Close every watch, cancel every timer and stop the observer."""
        with self._lock:
            states = list(self._states.values())
            self._states.clear()
            for state in states:
                self._close(state)
            observer, self._observer = self._observer, None
            self._directories.clear()
            prom.watched_files.set(0)

        if observer is not None:
            observer.stop()
            if threading.current_thread() is not observer:
                observer.join(timeout=5)
        if states:
            logger.info(f'Stopped {len(states)} log watchers')

    def get_state(self, file_path: str, parser_type: ParserType) -> WatchState | None:
        with self._lock:
            return self._states.get(self.make_key(file_path, parser_type))

    def get_watch_status(self) -> list[WatchStatus]:
        with self._lock:
            states = list(self._states.values())
        return [
            WatchStatus(
                key=state.key,
                file_path=state.file_path,
                parser_type=state.parser_type,
                server=state.server,
                phase=state.phase.value,
                last_ingest_time=state.last_ingest_time,
            )
            for state in states
        ]

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def _targets(self, servers: list[str] | None) -> list[LogTarget]:
        if self.resolver is None:
            raise RuntimeError('LogWatcher needs a LogPathResolver for bulk operations')
        targets = list(self.resolver.backup_targets())
        for server in resolve_servers(servers, self.configured_servers, self.running_servers):
            if not os.path.isdir(self.resolver.server_logs_dir(server)):
                logger.warning(f'No log directory for server {server}, skipping')
                continue
            targets.extend(self.resolver.server_targets(server))
        return targets

    def start_watching_all(self, servers: list[str] | None = None) -> int:
        """Watch the backup-system logs and every log of the selected servers.

        Args:
            servers: Server names, 'all' or 'running'; defaults to all configured servers

        Returns:
            Number of keys being watched afterwards
        """
        for target in self._targets(servers):
            self.watch_log_file(target.file_path, target.parser_type, target.server or UNKNOWN_SERVER)
        with self._lock:
            count = len(self._states)
        logger.info(f'Watching {count} log files')
        return count

    def ingest_all_logs(self, servers: list[str] | None = None) -> IngestSummary:
        """One-shot sweep over every known log file that exists."""
        summary = IngestSummary()
        for target in self._targets(servers):
            if not os.path.exists(target.file_path):
                continue
            result = self.log_manager.parse_and_ingest_file(target.file_path, target.parser_type, target.server)
            summary.files += 1
            summary.total_entries += result.entries_added
            summary.errors.extend(f'{target.file_path}: {error}' for error in result.errors)
        logger.info(f'Ingested {summary.total_entries} entries from {summary.files} files')
        return summary

    # ------------------------------------------------------------------
    # Directory watches
    # ------------------------------------------------------------------

    def _ensure_observer(self):
        if self._observer is None:
            self._observer = self.observer_factory()
            self._observer.start()
        return self._observer

    def _attach(self, state: WatchState):
        with self._lock:
            directory = state.directory
            watch = self._directories.get(directory)
            if watch is None:
                handle = self._ensure_observer().schedule(
                    _DirectoryHandler(self, directory), directory, recursive=False
                )
                watch = self._directories[directory] = _DirectoryWatch(handle=handle)
            watch.keys.add(state.key)

    def _detach(self, state: WatchState):
        with self._lock:
            watch = self._directories.get(state.directory)
            if watch is None:
                return
            watch.keys.discard(state.key)
            if not watch.keys:
                del self._directories[state.directory]
                if self._observer is not None:
                    self._observer.unschedule(watch.handle)

    def _close(self, state: WatchState):
        with state.lock:
            state.closed = True
            for timer in (state.debounce_timer, state.poll_timer):
                if timer is not None:
                    timer.cancel()
            state.debounce_timer = state.poll_timer = None
            state.phase = WatchPhase.NOT_WATCHING
        self._detach(state)

    @staticmethod
    def _set_phase(state: WatchState, phase: WatchPhase):
        if state.phase != phase:
            logger.debug(f'{state.key}: {state.phase.value} -> {phase.value}')
            state.phase = phase

    # ------------------------------------------------------------------
    # Event routing
    # ------------------------------------------------------------------

    def dispatch(self, directory: str, event: FileSystemEvent):
        """Route a watchdog event for `directory` to the keys it concerns."""
        src = os.path.abspath(os.fsdecode(event.src_path))
        dest_path = getattr(event, 'dest_path', '')
        dest = os.path.abspath(os.fsdecode(dest_path)) if dest_path else None

        with self._lock:
            watch = self._directories.get(directory)
            states = [self._states[key] for key in watch.keys if key in self._states] if watch else []

        for state in states:
            if event.event_type == EVENT_TYPE_MODIFIED and src == state.file_path:
                self._on_change(state)
            elif event.event_type == EVENT_TYPE_CREATED and src == state.file_path:
                self._on_appeared(state)
            elif event.event_type == EVENT_TYPE_DELETED and src == state.file_path:
                self._on_rename(state)
            elif event.event_type == EVENT_TYPE_MOVED:
                if src == state.file_path:
                    self._on_rename(state)
                elif dest == state.file_path:
                    self._on_appeared(state)

    def _on_change(self, state: WatchState):
        with state.lock:
            phase = state.phase
        if phase == WatchPhase.WATCHING_FILE:
            self._schedule_ingest(state, self.debounce_seconds)
        elif phase == WatchPhase.WATCHING_DIRECTORY:
            self._on_appeared(state)

    def _on_appeared(self, state: WatchState):
        with state.lock:
            if state.closed or state.phase not in (WatchPhase.WATCHING_DIRECTORY, WatchPhase.ROTATING):
                return
            if state.poll_timer is not None:
                state.poll_timer.cancel()
                state.poll_timer = None
            reattach = state.phase == WatchPhase.ROTATING
            self._set_phase(state, WatchPhase.WATCHING_FILE)
            state.inode = _inode(state.file_path)
        if reattach:
            self._attach(state)
        logger.info(f'Log file available: {state.file_path}')
        self._schedule_ingest(state, self.debounce_seconds)

    def _on_rename(self, state: WatchState):
        with state.lock:
            if state.closed or state.phase != WatchPhase.WATCHING_FILE:
                return
            self._set_phase(state, WatchPhase.ROTATING)
            if state.debounce_timer is not None:
                state.debounce_timer.cancel()
                state.debounce_timer = None
            old_inode = state.inode

        logger.info(f'Log rotation detected: {state.file_path}')
        prom.file_rotations_total.inc()

        current = _inode(state.file_path)
        with state.ingest_lock:
            if current is None or current == old_inode:
                self._ingest(state, final=True)
            try:
                self.log_manager.reset_position(state.file_path, state.parser_type)
            except Exception as e:
                logger.error(f'Failed to reset position for {state.file_path}: {e}')

        self._detach(state)
        with state.lock:
            if state.closed:
                return
            state.rotation_deadline = self.clock() + self.rotation_timeout_seconds
            self._start_poll(state)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_poll(self, state: WatchState):
        timer = threading.Timer(self.rotation_poll_seconds, self._poll_for_file, args=(state,))
        timer.daemon = True
        state.poll_timer = timer
        timer.start()

    def _poll_for_file(self, state: WatchState):
        with state.lock:
            if state.closed or state.phase != WatchPhase.ROTATING:
                return
            state.poll_timer = None
            if not os.path.exists(state.file_path):
                if self.clock() < (state.rotation_deadline or 0):
                    self._start_poll(state)
                    return
                logger.warning(f'{state.file_path} did not reappear, waiting for it to be created')
                self._set_phase(state, WatchPhase.WATCHING_DIRECTORY)
                fallback = True
            else:
                fallback = False
        if fallback:
            self._attach(state)
        else:
            self._on_appeared(state)

    def _schedule_ingest(self, state: WatchState, delay: float):
        with state.lock:
            if state.closed:
                return
            if state.debounce_timer is not None:
                state.debounce_timer.cancel()
            timer = threading.Timer(delay, self._debounce_fired, args=(state,))
            timer.daemon = True
            state.debounce_timer = timer
            timer.start()

    def _debounce_fired(self, state: WatchState):
        with state.lock:
            state.debounce_timer = None
            if state.closed or state.phase != WatchPhase.WATCHING_FILE:
                return
            if state.last_ingest is not None:
                wait = self.min_ingest_interval_seconds - (self.clock() - state.last_ingest)
                if wait > 0:
                    self._schedule_ingest(state, wait)
                    return
            if not state.ingest_lock.acquire(blocking=False):
                # Picked up again when the running ingestion finishes
                state.pending = True
                return

        try:
            self._ingest(state)
        finally:
            state.ingest_lock.release()

        with state.lock:
            rerun, state.pending = state.pending, False
        if rerun:
            self._schedule_ingest(state, self.debounce_seconds)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _ingest(self, state: WatchState, final: bool = False) -> IngestResult | None:
        server_name = None if state.server == UNKNOWN_SERVER else state.server
        try:
            result = self.log_manager.parse_and_ingest_file(
                state.file_path, state.parser_type, server_name, final=final
            )
        except Exception as e:
            logger.error(f'Error ingesting {state.file_path}: {e}')
            return None

        state.last_ingest = self.clock()
        state.last_ingest_time = utcnow()
        if result.entries_added > 0 and server_name:
            self.stream.queue_entries(state.server, self._stream_entries(state, result.entries_added))
        return result

    @staticmethod
    def _stream_entries(state: WatchState, count: int) -> list[UnifiedLogEntry]:
        source = PARSER_SOURCES[state.parser_type]
        now = utcnow()
        message = f'Parsed from {os.path.basename(state.file_path)}'
        return [
            UnifiedLogEntry(
                id=new_entry_id(source.value),
                time=now,
                source=source,
                server=state.server,
                event_type=state.parser_type.value,
                level=LogLevel.INFO,
                message=message,
            )
            for _ in range(count)
        ]
