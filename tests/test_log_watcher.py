"""Tests for the log watcher state machine, debouncing and rotation handling.

watchdog's Observer is replaced by FakeObserver; events are real
watchdog event objects delivered through the scheduled handlers.
"""

import os
import threading
import time

import pytest
from conftest import append, wait_for
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent

from pzmon.log_watcher import LogWatcher, WatchPhase
from pzmon.models import LogSource, ParserType
from pzmon.paths import LogPathResolver


CHAT_LINE = "[12-02-26 16:21:22.677][info] Got message:ChatMessage{chat=Local, author='bob', text='%s'}.\n"


@pytest.fixture
def make_watcher(log_manager, stream, observer):
    created = []

    def factory(**options):
        params = {
            'observer_factory': lambda: observer,
            'running_servers': lambda: [],
            'debounce_seconds': 0.05,
            'min_ingest_interval_seconds': 0.0,
            'rotation_poll_seconds': 0.02,
            'rotation_timeout_seconds': 2.0,
        }
        params.update(options)
        watcher = LogWatcher(log_manager, stream, **params)
        created.append(watcher)
        return watcher

    yield factory
    for watcher in created:
        watcher.stop_all_watchers()


@pytest.fixture
def watcher(make_watcher):
    return make_watcher()


@pytest.fixture
def logs_dir(tmp_path):
    path = tmp_path / 'Logs'
    path.mkdir()
    return path


def chat_count(log_manager) -> int:
    return log_manager.get_chat_messages().total


class TestRegistration:
    def test_existing_file_is_watched(self, watcher, observer, logs_dir):
        path = logs_dir / 'chat.txt'
        path.write_text('')

        state = watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        assert state.phase == WatchPhase.WATCHING_FILE
        assert observer.started
        assert observer.directories == [str(logs_dir)]

    def test_missing_file_waits_in_directory(self, watcher, logs_dir):
        state = watcher.watch_log_file(str(logs_dir / 'chat.txt'), ParserType.CHAT, 'servertest')
        assert state.phase == WatchPhase.WATCHING_DIRECTORY

    def test_missing_directory_is_not_watched(self, watcher, tmp_path):
        assert watcher.watch_log_file(str(tmp_path / 'nope' / 'chat.txt'), ParserType.CHAT) is None
        assert watcher.get_watch_status() == []

    def test_same_key_twice_is_a_noop(self, watcher, observer, logs_dir):
        path = str(logs_dir / 'chat.txt')
        first = watcher.watch_log_file(path, ParserType.CHAT)
        second = watcher.watch_log_file(path, ParserType.CHAT)
        assert first is second
        assert len(observer.handlers) == 1

    def test_same_file_with_other_parser_is_a_separate_key(self, watcher, logs_dir):
        path = str(logs_dir / 'chat.txt')
        watcher.watch_log_file(path, ParserType.CHAT)
        watcher.watch_log_file(path, ParserType.USER)
        assert len(watcher.get_watch_status()) == 2

    def test_directory_watch_is_shared(self, watcher, observer, logs_dir):
        chat = str(logs_dir / 'chat.txt')
        user = str(logs_dir / 'user.txt')
        watcher.watch_log_file(chat, ParserType.CHAT)
        watcher.watch_log_file(user, ParserType.USER)
        assert len(observer.handlers) == 1

        assert watcher.unwatch_log_file(chat, ParserType.CHAT) is True
        assert len(observer.handlers) == 1
        assert watcher.unwatch_log_file(user, ParserType.USER) is True
        assert observer.handlers == {}
        assert watcher.unwatch_log_file(user, ParserType.USER) is False

    def test_stop_all_watchers(self, watcher, observer, logs_dir):
        state = watcher.watch_log_file(str(logs_dir / 'chat.txt'), ParserType.CHAT)

        watcher.stop_all_watchers()

        assert state.phase == WatchPhase.NOT_WATCHING
        assert observer.stopped
        assert watcher.get_watch_status() == []
        watcher.stop_all_watchers()


class TestIngestOnChange:
    def test_modification_is_ingested_and_streamed(self, watcher, observer, log_manager, stream, logs_dir):
        path = logs_dir / 'chat.txt'
        path.write_text('')
        watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        append(path, CHAT_LINE % 'one' + CHAT_LINE % 'two')
        observer.emit(FileModifiedEvent(str(path)))

        assert wait_for(lambda: chat_count(log_manager) == 2)
        assert wait_for(lambda: len(stream.peek('servertest')) == 2)
        queued = stream.drain('servertest')
        assert {e.message for e in queued} == {'Parsed from chat.txt'}
        assert {e.source for e in queued} == {LogSource.CHAT}
        assert watcher.get_watch_status()[0].last_ingest_time is not None

    def test_unknown_server_is_not_streamed(self, watcher, observer, log_manager, stream, logs_dir):
        path = logs_dir / 'chat.txt'
        path.write_text('')
        watcher.watch_log_file(str(path), ParserType.CHAT)

        append(path, CHAT_LINE % 'one')
        observer.emit(FileModifiedEvent(str(path)))

        assert wait_for(lambda: chat_count(log_manager) == 1)
        assert stream.peek('unknown') == []

    def test_bursts_are_debounced(self, make_watcher, observer, log_manager, logs_dir):
        watcher = make_watcher(debounce_seconds=0.2)
        path = logs_dir / 'chat.txt'
        path.write_text('')
        watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        calls = []
        original = log_manager.parse_and_ingest_file

        def counting(*args, **kwargs):
            calls.append(args[0])
            return original(*args, **kwargs)

        log_manager.parse_and_ingest_file = counting

        for i in range(5):
            append(path, CHAT_LINE % i)
            observer.emit(FileModifiedEvent(str(path)))

        assert wait_for(lambda: chat_count(log_manager) == 5)
        time.sleep(0.3)
        assert len(calls) == 1

    def test_events_for_other_files_are_ignored(self, watcher, observer, log_manager, logs_dir):
        path = logs_dir / 'chat.txt'
        path.write_text(CHAT_LINE % 'one')
        watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        observer.emit(FileModifiedEvent(str(logs_dir / 'other.txt')))

        time.sleep(0.2)
        assert chat_count(log_manager) == 0

    def test_created_file_is_picked_up(self, watcher, observer, log_manager, logs_dir):
        path = logs_dir / 'chat.txt'
        state = watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        path.write_text(CHAT_LINE % 'first')
        observer.emit(FileCreatedEvent(str(path)))

        assert state.phase == WatchPhase.WATCHING_FILE
        assert wait_for(lambda: chat_count(log_manager) == 1)


class TestIngestGuards:
    def test_busy_key_defers_to_one_follow_up_ingest(self, watcher, observer, log_manager, logs_dir):
        path = logs_dir / 'chat.txt'
        path.write_text('')
        state = watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        release = threading.Event()
        busy = threading.Lock()
        calls = []
        overlapped = []
        original = log_manager.parse_and_ingest_file

        def blocking(*args, **kwargs):
            if not busy.acquire(blocking=False):
                overlapped.append(args[0])
                return original(*args, **kwargs)
            try:
                calls.append(args[0])
                release.wait(timeout=5)
                return original(*args, **kwargs)
            finally:
                busy.release()

        log_manager.parse_and_ingest_file = blocking

        try:
            append(path, CHAT_LINE % 'one')
            observer.emit(FileModifiedEvent(str(path)))
            assert wait_for(lambda: len(calls) == 1)

            # Fires while the first ingestion is still running
            append(path, CHAT_LINE % 'two')
            observer.emit(FileModifiedEvent(str(path)))
            assert wait_for(lambda: state.pending)
            assert len(calls) == 1
        finally:
            release.set()

        assert wait_for(lambda: len(calls) == 2)
        time.sleep(0.2)
        assert len(calls) == 2
        assert overlapped == []
        assert state.pending is False
        assert chat_count(log_manager) == 2

    def test_min_interval_delays_the_next_ingest(self, make_watcher, observer, log_manager, logs_dir):
        watcher = make_watcher(min_ingest_interval_seconds=0.5)
        path = logs_dir / 'chat.txt'
        path.write_text('')
        watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        started = []
        original = log_manager.parse_and_ingest_file

        def timed(*args, **kwargs):
            started.append(time.monotonic())
            return original(*args, **kwargs)

        log_manager.parse_and_ingest_file = timed

        append(path, CHAT_LINE % 'one')
        observer.emit(FileModifiedEvent(str(path)))
        assert wait_for(lambda: chat_count(log_manager) == 1)

        append(path, CHAT_LINE % 'two')
        observer.emit(FileModifiedEvent(str(path)))
        time.sleep(0.2)
        assert len(started) == 1

        assert wait_for(lambda: chat_count(log_manager) == 2)
        assert len(started) == 2
        assert started[1] - started[0] >= 0.5


class TestRotation:
    def ingest_initial(self, watcher, observer, log_manager, path):
        path.write_text(CHAT_LINE % 'before')
        state = watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')
        observer.emit(FileModifiedEvent(str(path)))
        assert wait_for(lambda: chat_count(log_manager) == 1)
        return state

    def test_rename_resets_position_and_follows_new_file(self, watcher, observer, log_manager, logs_dir):
        path = logs_dir / 'chat.txt'
        state = self.ingest_initial(watcher, observer, log_manager, path)

        rotated = logs_dir / 'chat.txt.1'
        os.rename(path, rotated)
        observer.emit(FileMovedEvent(str(path), str(rotated)))

        assert state.phase == WatchPhase.ROTATING
        assert log_manager.positions.get(str(path)).last_position == 0
        assert observer.handlers == {}

        path.write_text(CHAT_LINE % 'after')

        assert wait_for(lambda: state.phase == WatchPhase.WATCHING_FILE)
        assert wait_for(lambda: chat_count(log_manager) == 2)
        assert observer.directories == [str(logs_dir)]

    def test_delete_counts_as_rotation(self, watcher, observer, log_manager, logs_dir):
        path = logs_dir / 'chat.txt'
        state = self.ingest_initial(watcher, observer, log_manager, path)

        os.remove(path)
        observer.emit(FileDeletedEvent(str(path)))

        assert state.phase == WatchPhase.ROTATING

    def test_file_not_back_falls_back_to_directory_watch(self, make_watcher, observer, log_manager, logs_dir):
        watcher = make_watcher(rotation_timeout_seconds=0.1)
        path = logs_dir / 'chat.txt'
        state = self.ingest_initial(watcher, observer, log_manager, path)

        os.rename(path, logs_dir / 'chat.txt.1')
        observer.emit(FileMovedEvent(str(path), str(logs_dir / 'chat.txt.1')))

        assert wait_for(lambda: state.phase == WatchPhase.WATCHING_DIRECTORY)
        assert observer.directories == [str(logs_dir)]

        path.write_text(CHAT_LINE % 'late')
        observer.emit(FileCreatedEvent(str(path)))

        assert state.phase == WatchPhase.WATCHING_FILE
        assert wait_for(lambda: chat_count(log_manager) == 2)

    def test_file_moved_into_place_counts_as_appearance(self, watcher, observer, log_manager, logs_dir):
        path = logs_dir / 'chat.txt'
        state = watcher.watch_log_file(str(path), ParserType.CHAT, 'servertest')

        staged = logs_dir / 'chat.tmp'
        staged.write_text(CHAT_LINE % 'swapped')
        os.rename(staged, path)
        observer.emit(FileMovedEvent(str(staged), str(path)))

        assert state.phase == WatchPhase.WATCHING_FILE
        assert wait_for(lambda: chat_count(log_manager) == 1)


class TestBulkOperations:
    @pytest.fixture
    def resolver(self, server_cache, tmp_path):
        logs = server_cache / 'servertest' / 'Logs'
        (logs / 'chat.txt').write_text(CHAT_LINE % 'hello')
        (logs / 'user.txt').write_text('[12-02-26 16:17:54.957] 1.2.3.4 "bob" attempting to join.\n')
        return LogPathResolver(str(server_cache), str(tmp_path / 'backups' / 'logs'))

    def test_ingest_all_logs(self, make_watcher, resolver, log_manager):
        watcher = make_watcher(resolver=resolver)

        summary = watcher.ingest_all_logs(['servertest'])

        assert summary.files == 2
        assert summary.total_entries == 2
        assert log_manager.get_player_events().items[0].server == 'servertest'

    def test_ingest_all_defaults_to_known_servers(self, make_watcher, resolver):
        watcher = make_watcher(resolver=resolver)
        assert watcher.ingest_all_logs().total_entries == 2

    def test_unknown_server_is_skipped(self, make_watcher, resolver):
        watcher = make_watcher(resolver=resolver)
        assert watcher.ingest_all_logs(['ghost']).files == 0

    def test_start_watching_all(self, make_watcher, resolver, observer):
        watcher = make_watcher(resolver=resolver)

        count = watcher.start_watching_all(['servertest'])

        # six fixed files plus the day's debug log; backup log directory does not exist
        assert count == 7
        phases = {status.file_path.rsplit('/', 1)[-1]: status.phase for status in watcher.get_watch_status()}
        assert phases['chat.txt'] == WatchPhase.WATCHING_FILE.value
        assert phases['pvp.txt'] == WatchPhase.WATCHING_DIRECTORY.value
        assert len(observer.handlers) == 1

    def test_running_selection(self, make_watcher, resolver):
        watcher = make_watcher(resolver=resolver, running_servers=lambda: ['servertest'])
        assert watcher.ingest_all_logs(['running']).files == 2
