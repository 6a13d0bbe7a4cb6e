"""Parser for backup-system logs (backup.log, restore.log, rollback-cli.log)."""

import re
from datetime import UTC, date, tzinfo
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import BACKUP_TIMESTAMP, BaseParser, parse_backup_timestamp


BACKUP_LINE_RE = re.compile(rf'^\[({BACKUP_TIMESTAMP})\] \[(\w+)\] (.+)$')

_SERVER_RE = re.compile(r'Server:\s*([^,]+)', re.IGNORECASE)
_SCHEDULE_RE = re.compile(r'Schedule:\s*([^,]+)', re.IGNORECASE)
_DRY_RUN_RE = re.compile(r'Dry-run:\s*(true|false)', re.IGNORECASE)
_SOURCE_SIZE_RE = re.compile(r'Source size:\s*([\d.]+\s*[KMGT]?B)', re.IGNORECASE)
_SIZE_RE = re.compile(r'(\d+\.?\d*\s*[KMGT]?B)')
_RATIO_RE = re.compile(r'ratio:\s*([\d.]+)x', re.IGNORECASE)
_SNAPSHOT_RE = re.compile(r'(/\S+\.(?:tar\.zst|tar\.gz|zip))')
_DURATION_RE = re.compile(r'completed in\s*([\d.]+)\s*(seconds?|minutes?|ms)', re.IGNORECASE)

# Checked in order; first keyword found in the lowercased message wins
_EVENT_KEYWORDS: dict[ParserType, list[tuple[str, str]]] = {
    ParserType.BACKUP: [
        ('started', 'backup_started'),
        ('completed', 'backup_completed'),
        ('failed', 'backup_failed'),
        ('summary', 'backup_summary'),
        ('cleanup', 'retention_cleanup'),
        ('verifying', 'integrity_check'),
    ],
    ParserType.RESTORE: [
        ('started', 'restore_started'),
        ('completed', 'restore_completed'),
        ('failed', 'restore_failed'),
        ('emergency backup', 'emergency_backup'),
        ('verifying', 'integrity_check'),
    ],
    ParserType.ROLLBACK: [
        ('rollback', 'rollback'),
        ('selected', 'snapshot_selected'),
    ],
}


class BackupLogParser(BaseParser):
    """Parses '[YYYY-MM-DD HH:MM:SS] [LEVEL] message' lines.

    The same dialect is used by the backup, restore and rollback logs; the
    log kind only changes which event types are recognized.
    """

    def __init__(self, log_type: ParserType = ParserType.BACKUP, tz: tzinfo = UTC, reference_date: date | None = None):
        super().__init__(tz=tz, reference_date=reference_date)
        if log_type not in _EVENT_KEYWORDS:
            raise ValueError(f'Not a backup-system log type: {log_type}')
        self.log_type = log_type

    @property
    def parser_type(self) -> ParserType:
        return self.log_type

    def parse_line(self, line: str, batch: Any) -> RawEvent:
        match = BACKUP_LINE_RE.match(line)
        if not match:
            raise LineParseError(f'Not a backup log line: {line[:80]}')

        timestamp, level, message = match.groups()
        details = self._parse_details(message)
        return RawEvent(
            time=parse_backup_timestamp(timestamp, self.tz),
            server=details.get('server'),
            event_type=self._event_type(message),
            level=LogLevel.normalize(level),
            message=self._format_message(message, details),
            details={**details, 'log_type': self.log_type.value},
        )

    def _parse_details(self, message: str) -> dict[str, Any]:
        details: dict[str, Any] = {}
        lower = message.lower()

        if match := _SERVER_RE.search(message):
            details['server'] = match.group(1).strip()
        if match := _SCHEDULE_RE.search(message):
            details['schedule'] = match.group(1).strip()
        if match := _DRY_RUN_RE.search(message):
            details['dry_run'] = match.group(1).lower() == 'true'
        if match := _SOURCE_SIZE_RE.search(message):
            details['source_size'] = match.group(1)
        if (match := _SIZE_RE.search(message)) and ('created:' in message or 'completed' in message):
            details['compressed_size'] = match.group(1)
        if match := _RATIO_RE.search(message):
            details['ratio'] = match.group(1)
        if match := _SNAPSHOT_RE.search(message):
            details['snapshot_path'] = match.group(1)
        if 'error' in lower or 'failed' in lower:
            details['error'] = message
        if match := _DURATION_RE.search(message):
            value = float(match.group(1))
            unit = match.group(2).lower()
            if unit.startswith('minute'):
                value *= 60
            elif unit == 'ms':
                value /= 1000
            details['duration'] = value

        return details

    def _event_type(self, message: str) -> str:
        lower = message.lower()
        for keyword, event_type in _EVENT_KEYWORDS[self.log_type]:
            if keyword in lower:
                return event_type
        if 'error' in lower:
            return 'error'
        if 'warn' in lower:
            return 'warning'
        return 'info'

    @staticmethod
    def _format_message(message: str, details: dict[str, Any]) -> str:
        formatted = message
        if 'server' in details:
            formatted = re.sub(r'Server:\s*[^,]+,?\s*', '', formatted, count=1, flags=re.IGNORECASE)
        if 'schedule' in details:
            formatted = re.sub(r'Schedule:\s*[^,]+,?\s*', '', formatted, count=1, flags=re.IGNORECASE)
        if 'dry_run' in details:
            formatted = re.sub(r'Dry-run:\s*(true|false),?\s*', '', formatted, count=1, flags=re.IGNORECASE)
        formatted = re.sub(r'\s+', ' ', re.sub(r',\s*$', '', formatted)).strip()
        return formatted or message
