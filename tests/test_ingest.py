"""Tests for incremental file ingestion and durable read offsets."""

import os
from datetime import UTC, datetime

from pzmon.models import LogFilters, LogSource, ParserType
from pzmon.positions import FilePositionStore, head_checksum


CHAT_LINE = "[12-02-26 16:21:22.677][info] Got message:ChatMessage{chat=Local, author='bob', text='%s'}.\n"
USER_LINE = '[12-02-26 16:17:54.957] 1.2.3.4 "%s" attempting to join.\n'


def write(path, text: str, mode: str = 'a'):
    with open(path, mode, encoding='utf-8') as f:
        f.write(text)


class TestFilePositionStore:
    def test_get_missing(self, database):
        assert FilePositionStore(database).get('/nope') is None

    def test_set_then_update(self, database):
        store = FilePositionStore(database)
        first = store.set('/logs/chat.txt', 10, ParserType.CHAT, file_size=10, checksum='abc')
        store.set('/logs/chat.txt', 25, ParserType.CHAT, file_size=25)

        position = store.get('/logs/chat.txt')
        assert position.last_position == 25
        assert position.file_size == 25
        assert position.parser_type == ParserType.CHAT
        assert position.last_ingested >= first.last_ingested
        assert position.last_ingested.tzinfo is not None
        assert position.last_modified is None
        assert len(store.all()) == 1

    def test_last_modified_is_the_file_mtime(self, database, tmp_path):
        path = tmp_path / 'chat.txt'
        path.write_text('hello\n')
        os.utime(path, (1_700_000_000, 1_700_000_000))
        store = FilePositionStore(database)

        store.set(str(path), 6, ParserType.CHAT, file_size=6)

        position = store.get(str(path))
        assert position.last_modified == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
        assert position.last_ingested > position.last_modified

    def test_reset(self, database):
        store = FilePositionStore(database)
        store.set('/logs/chat.txt', 10, ParserType.CHAT)
        store.reset('/logs/chat.txt', ParserType.CHAT)
        assert store.get('/logs/chat.txt').last_position == 0

    def test_head_checksum(self, tmp_path):
        path = tmp_path / 'f.txt'
        path.write_bytes(b'hello world')
        assert head_checksum(str(path), 5) == head_checksum(str(path), 5)
        assert head_checksum(str(path), 5) != head_checksum(str(path), 11)
        assert head_checksum(str(tmp_path / 'missing')) is None
        assert head_checksum(str(path), 0) is None


class TestParseAndIngestFile:
    def test_ingests_and_advances_position(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        write(path, CHAT_LINE % 'one' + CHAT_LINE % 'two')

        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        assert result.entries_processed == 2
        assert result.entries_added == 2
        assert result.bytes_processed == os.path.getsize(path)
        assert log_manager.positions.get(str(path)).last_position == os.path.getsize(path)
        page = log_manager.get_chat_messages()
        assert page.total == 2
        assert {m.server for m in page.items} == {'servertest'}

    def test_no_new_bytes_is_a_noop(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        write(path, CHAT_LINE % 'one')
        log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        assert result.entries_added == 0
        assert result.bytes_processed == 0
        assert log_manager.get_chat_messages().total == 1

    def test_only_new_lines_are_read(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        write(path, CHAT_LINE % 'one')
        log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')
        write(path, CHAT_LINE % 'two')

        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        assert result.entries_added == 1
        messages = [m.message for m in log_manager.get_chat_messages().items]
        assert sorted(messages) == ['one', 'two']

    def test_partial_line_is_held_back(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        complete = CHAT_LINE % 'one'
        write(path, complete + CHAT_LINE.rstrip('\n') % 'two')

        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        assert result.entries_added == 1
        assert log_manager.positions.get(str(path)).last_position == len(complete.encode('utf-8'))

        write(path, '\n')
        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')
        assert result.entries_added == 1
        assert log_manager.get_chat_messages().total == 2

    def test_final_consumes_partial_line(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        write(path, CHAT_LINE.rstrip('\n') % 'tail')

        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest', final=True)

        assert result.entries_added == 1
        assert log_manager.positions.get(str(path)).last_position == os.path.getsize(path)

    def test_shrunk_file_is_read_from_start(self, log_manager, tmp_path):
        path = tmp_path / 'user.txt'
        write(path, USER_LINE % 'alice' + USER_LINE % 'bob' + USER_LINE % 'carol')
        log_manager.parse_and_ingest_file(str(path), ParserType.USER, 'servertest')

        write(path, USER_LINE % 'dave', mode='w')
        result = log_manager.parse_and_ingest_file(str(path), ParserType.USER, 'servertest')

        assert result.entries_added == 1
        assert log_manager.positions.get(str(path)).last_position == os.path.getsize(path)
        names = {e.username for e in log_manager.get_player_events().items}
        assert names == {'alice', 'bob', 'carol', 'dave'}

    def test_multibyte_position_is_in_bytes(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        write(path, CHAT_LINE % 'ok')
        log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')
        before = log_manager.positions.get(str(path)).last_position

        write(path, 'é\n')
        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        assert log_manager.positions.get(str(path)).last_position == before + 3
        assert result.entries_added == 0
        assert len(result.errors) == 1

    def test_invalid_utf8_does_not_break_offsets(self, log_manager, tmp_path):
        path = tmp_path / 'chat.txt'
        with open(path, 'wb') as f:
            f.write(b'\xff\xfe broken\n')
            f.write((CHAT_LINE % 'after').encode('utf-8'))

        result = log_manager.parse_and_ingest_file(str(path), ParserType.CHAT, 'servertest')

        assert result.entries_added == 1
        assert log_manager.positions.get(str(path)).last_position == os.path.getsize(path)

    def test_missing_file(self, log_manager, tmp_path):
        result = log_manager.parse_and_ingest_file(str(tmp_path / 'missing.txt'), ParserType.CHAT)
        assert result.entries_added == 0
        assert result.errors

    def test_malformed_lines_are_reported(self, log_manager, tmp_path):
        path = tmp_path / 'user.txt'
        write(path, 'junk\n' + USER_LINE % 'bob')

        result = log_manager.parse_and_ingest_file(str(path), ParserType.USER, 'servertest')

        assert result.entries_added == 1
        assert result.errors == ['Line 1: Not a user log line: junk']

    def test_backup_logs_take_server_from_message(self, log_manager, tmp_path):
        path = tmp_path / 'backup.log'
        write(path, '[2024-01-15 03:00:00] [INFO] Backup started. Server: servertest, Schedule: daily\n')

        log_manager.parse_and_ingest_file(str(path), ParserType.BACKUP)

        entry = log_manager.get_backup_logs().items[0]
        assert entry.server == 'servertest'
        assert entry.log_type == ParserType.BACKUP
        assert entry.details['schedule'] == 'daily'

    def test_admin_lines_land_in_player_events(self, log_manager, tmp_path):
        path = tmp_path / 'admin.txt'
        write(path, '[16-02-26 10:00:00.000] admin teleported to 1000,2000,0.\n')

        log_manager.parse_and_ingest_file(str(path), ParserType.ADMIN, 'servertest')

        page = log_manager.get_player_events(LogFilters(event_type='admin_command'))
        assert page.total == 1
        assert page.items[0].username == 'admin'

    def test_skill_snapshot_is_stored(self, log_manager, tmp_path):
        path = tmp_path / 'PerkLog.txt'
        write(
            path,
            '[12-02-26 16:18:24.420] [bob][1234,5678,0][Login][Hours Survived: 87]\n'
            '[12-02-26 16:18:24.420] [bob][1234,5678,0][Cooking=0, Fitness=9][Hours Survived: 87]\n',
        )

        log_manager.parse_and_ingest_file(str(path), ParserType.PERK, 'servertest')

        snapshot = log_manager.get_skill_snapshots().items[0]
        assert snapshot.event_type == 'login'
        assert snapshot.hours_survived == 87
        assert snapshot.skills == {'Cooking': 0, 'Fitness': 9}
        assert snapshot.details['coordinates'] == {'x': 1234.0, 'y': 5678.0, 'z': 0.0}

    def test_unified_source_of_parser(self, log_manager, tmp_path):
        path = tmp_path / 'pvp.txt'
        write(path, '[12-02-26 16:31:00.000] alice killed bob with Base.Shotgun\n')

        log_manager.parse_and_ingest_file(str(path), ParserType.PVP, 'servertest')

        page = log_manager.get_unified_logs(LogFilters(source=LogSource.PVP))
        assert page.total == 1
        assert page.items[0].source == LogSource.PVP
        assert page.items[0].username == 'alice'
