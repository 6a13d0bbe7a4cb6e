"""Tests for server selection, log path resolution and settings."""

from datetime import date

import psutil
import pytest

from pzmon.config import Settings
from pzmon.models import ParserType
from pzmon.paths import LogPathResolver
from pzmon.servers import find_running_servers, resolve_servers


class FakeProcess:
    def __init__(self, cmdline):
        self.info = {'cmdline': cmdline}


class TestResolveServers:
    def test_all_is_the_default(self):
        assert resolve_servers(None, configured=lambda: ['a', 'b'], running=lambda: []) == ['a', 'b']

    def test_running(self):
        assert resolve_servers(['running'], configured=lambda: ['a'], running=lambda: ['b']) == ['b']

    def test_explicit_names_and_dedupe(self):
        result = resolve_servers(['b', 'all', 'b', 'c'], configured=lambda: ['a', 'b'], running=lambda: [])
        assert result == ['b', 'a', 'c']


class TestFindRunningServers:
    def test_reads_servername_from_command_line(self, monkeypatch):
        processes = [
            FakeProcess(['java', 'zombie.network.GameServer', '-servername', 'servertest', 'ProjectZomboid64']),
            FakeProcess(['ProjectZomboid64', '-servername', 'pvp']),
            FakeProcess(['python', '-servername', 'not-a-game']),
            FakeProcess(None),
        ]
        monkeypatch.setattr(psutil, 'process_iter', lambda attrs=None: iter(processes))

        assert find_running_servers() == ['pvp', 'servertest']


class TestLogPathResolver:
    @pytest.fixture
    def resolver(self, server_cache, tmp_path):
        return LogPathResolver(str(server_cache), str(tmp_path / 'backups' / 'logs'))

    def test_server_log_files(self, resolver, server_cache):
        logs = server_cache / 'servertest' / 'Logs'
        assert resolver.server_log_file('servertest', ParserType.PERK) == str(logs / 'PerkLog.txt')
        assert resolver.server_log_file('servertest', ParserType.CMD) == str(logs / 'cmd.txt')

    def test_backup_log_files(self, resolver, tmp_path):
        assert resolver.backup_log_file(ParserType.ROLLBACK) == str(tmp_path / 'backups' / 'logs' / 'rollback-cli.log')
        assert [t.parser_type for t in resolver.backup_targets()] == [
            ParserType.BACKUP,
            ParserType.RESTORE,
            ParserType.ROLLBACK,
        ]
        assert all(t.server is None for t in resolver.backup_targets())

    def test_debug_log_prefers_newest_started_file(self, resolver, server_cache):
        logs = server_cache / 'servertest' / 'Logs'
        (logs / '2024-01-15_08-00_DebugLog-server.txt').write_text('')
        (logs / '2024-01-15_16-17_DebugLog-server.txt').write_text('')
        (logs / '2024-01-14_23-00_DebugLog-server.txt').write_text('')

        path = resolver.debug_log_file('servertest', date(2024, 1, 15))

        assert path == str(logs / '2024-01-15_16-17_DebugLog-server.txt')

    def test_debug_log_default_name(self, resolver, server_cache):
        path = resolver.debug_log_file('servertest', date(2024, 1, 15))
        assert path == str(server_cache / 'servertest' / 'Logs' / '2024-01-15_DebugLog-server.txt')

    def test_server_targets(self, resolver):
        targets = resolver.server_targets('servertest', date(2024, 1, 15))
        assert len(targets) == 7
        assert targets[-1].parser_type == ParserType.SERVER
        assert {t.server for t in targets} == {'servertest'}

    def test_known_servers(self, resolver, server_cache):
        (server_cache / 'other' / 'Logs').mkdir(parents=True)
        (server_cache / 'no-logs').mkdir()
        (server_cache / 'stray.txt').write_text('')
        assert resolver.known_servers() == ['other', 'servertest']

    def test_known_servers_without_cache(self, tmp_path):
        resolver = LogPathResolver(str(tmp_path / 'missing'), str(tmp_path))
        assert resolver.known_servers() == []


class TestSettings:
    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv('PZMON_SERVERS', 'servertest, pvp ,')
        monkeypatch.setenv('PZMON_DEBOUNCE_SECONDS', '2.5')
        monkeypatch.setenv('PZMON_STREAM_BUFFER_SIZE', '0')

        settings = Settings.from_env()

        assert settings.database_url == f'sqlite:///{tmp_path / "data" / "pzmon.db"}'
        assert settings.server_cache_base == str(tmp_path / 'server-cache')
        assert settings.servers == ['servertest', 'pvp']
        assert settings.debounce_seconds == 2.5
        assert settings.stream_buffer_size == 1000

    def test_backup_logs_follow_backup_root(self, monkeypatch):
        monkeypatch.delenv('PZMON_BACKUP_LOGS_DIR')
        monkeypatch.setenv('PZMON_BACKUP_SYSTEM_ROOT', '/srv/backups')
        assert Settings.from_env().backup_logs_dir == '/srv/backups/logs'

    def test_invalid_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv('PZMON_ROTATION_TIMEOUT_SECONDS', 'soon')
        assert Settings.from_env().rotation_timeout_seconds == 300.0
