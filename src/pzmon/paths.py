"""Where game servers and the backup system write their logs."""

import glob
import os
from dataclasses import dataclass
from datetime import date

from pzmon.models import ParserType


# Per-server logs under <server cache>/<server>/Logs/
SERVER_LOG_FILES: dict[ParserType, str] = {
    ParserType.USER: 'user.txt',
    ParserType.CHAT: 'chat.txt',
    ParserType.PERK: 'PerkLog.txt',
    ParserType.PVP: 'pvp.txt',
    ParserType.ADMIN: 'admin.txt',
    ParserType.CMD: 'cmd.txt',
}

# Backup-system logs under <backup root>/logs/
BACKUP_LOG_FILES: dict[ParserType, str] = {
    ParserType.BACKUP: 'backup.log',
    ParserType.RESTORE: 'restore.log',
    ParserType.ROLLBACK: 'rollback-cli.log',
}


@dataclass
class LogTarget:
    file_path: str
    parser_type: ParserType
    server: str | None = None


@dataclass
class LogPathResolver:
    server_cache_base: str
    backup_logs_dir: str

    def server_logs_dir(self, server: str) -> str:
        return os.path.join(self.server_cache_base, server, 'Logs')

    def server_log_file(self, server: str, parser_type: ParserType) -> str:
        return os.path.join(self.server_logs_dir(server), SERVER_LOG_FILES[parser_type])

    def debug_log_file(self, server: str, day: date | None = None) -> str:
        """Path of the day's DebugLog-server file.

        The game prefixes the file with its start time ('2026-02-12_16-17_DebugLog-server.txt');
        the newest match for the day wins, otherwise the plain dated name is returned.
        """
        day = day or date.today()
        logs_dir = self.server_logs_dir(server)
        pattern = os.path.join(glob.escape(logs_dir), f'{day.isoformat()}*DebugLog-server.txt')
        matches = sorted(glob.glob(pattern))
        if matches:
            return matches[-1]
        return os.path.join(logs_dir, f'{day.isoformat()}_DebugLog-server.txt')

    def backup_log_file(self, parser_type: ParserType) -> str:
        return os.path.join(self.backup_logs_dir, BACKUP_LOG_FILES[parser_type])

    def backup_targets(self) -> list[LogTarget]:
        return [LogTarget(self.backup_log_file(parser_type), parser_type) for parser_type in BACKUP_LOG_FILES]

    def server_targets(self, server: str, day: date | None = None) -> list[LogTarget]:
        """Every log file a server writes, the day's debug log last."""
        targets = [
            LogTarget(self.server_log_file(server, parser_type), parser_type, server)
            for parser_type in SERVER_LOG_FILES
        ]
        targets.append(LogTarget(self.debug_log_file(server, day), ParserType.SERVER, server))
        return targets

    def known_servers(self) -> list[str]:
        """Server directories present under the server cache base."""
        try:
            entries = os.listdir(self.server_cache_base)
        except OSError:
            return []
        return sorted(
            name for name in entries if os.path.isdir(os.path.join(self.server_cache_base, name, 'Logs'))
        )
