"""Base parser, timestamp helpers and byte accounting shared by every log dialect."""

import re
from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, tzinfo
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import ParserType, ParseResult, RawEvent


# Game logs: [12-02-26 16:17:54.957] (day-month-year)
PZ_TIMESTAMP = r'\d{2}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}(?:\.\d+)?'
# Backup system logs: [2026-02-10 03:05:06]
BACKUP_TIMESTAMP = r'\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}'

_PZ_TS_RE = re.compile(r'^(\d{2})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?$')
_BACKUP_TS_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})$')
_CLOCK_RE = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')
_COORDS_RE = re.compile(r'[\[(]?(-?[\d.]+)\s*,\s*(-?[\d.]+)\s*,\s*(-?[\d.]+)[\])]?')


def byte_length(line: str) -> int:
    """UTF-8 length of a decoded line, exact for bytes carried with surrogateescape."""
    return len(line.encode('utf-8', 'surrogateescape'))


def split_lines(text: str) -> list[str]:
    """Split text on '\\n' keeping terminators; a trailing partial line is kept unterminated."""
    parts = text.split('\n')
    lines = [part + '\n' for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def parse_pz_timestamp(value: str, tz: tzinfo = UTC) -> datetime:
    """Parse 'DD-MM-YY HH:MM:SS.mmm' into an aware UTC datetime.

    Raises:
        LineParseError: If the value is not a valid game timestamp
    """
    match = _PZ_TS_RE.match(value.strip().strip('[]'))
    if not match:
        raise LineParseError(f'Invalid timestamp: {value}')
    dd, mm, yy, hh, mi, ss, frac = match.groups()
    micros = int((frac or '0').ljust(6, '0')[:6])
    try:
        local = datetime(2000 + int(yy), int(mm), int(dd), int(hh), int(mi), int(ss), micros, tzinfo=tz)
    except ValueError as e:
        raise LineParseError(f'Invalid timestamp {value}: {e}') from e
    return local.astimezone(UTC)


def parse_backup_timestamp(value: str, tz: tzinfo = UTC) -> datetime:
    """Parse 'YYYY-MM-DD HH:MM:SS' into an aware UTC datetime."""
    match = _BACKUP_TS_RE.match(value.strip().strip('[]'))
    if not match:
        raise LineParseError(f'Invalid timestamp: {value}')
    try:
        local = datetime(*(int(part) for part in match.groups()), tzinfo=tz)
    except ValueError as e:
        raise LineParseError(f'Invalid timestamp {value}: {e}') from e
    return local.astimezone(UTC)


def parse_clock_time(value: str, on_date: date, tz: tzinfo = UTC) -> datetime:
    """Parse 'HH:MM[:SS]' on the given calendar date."""
    match = _CLOCK_RE.match(value.strip())
    if not match:
        raise LineParseError(f'Invalid time: {value}')
    hh, mi, ss = match.groups()
    try:
        local = datetime(on_date.year, on_date.month, on_date.day, int(hh), int(mi), int(ss or 0), tzinfo=tz)
    except ValueError as e:
        raise LineParseError(f'Invalid time {value}: {e}') from e
    return local.astimezone(UTC)


def parse_coordinates(value: str) -> dict[str, float] | None:
    """Extract x,y,z from '[x,y,z]', '(x,y,z)' or 'x,y,z'."""
    match = _COORDS_RE.search(value)
    if not match:
        return None
    try:
        x, y, z = (float(part) for part in match.groups())
    except ValueError:
        return None
    return {'x': x, 'y': y, 'z': z}


class BaseParser(ABC):
    """Base class for all log dialect parsers.

    Parsers hold configuration only (time zone, reference date); every
    parse_lines call starts from a clean state, so one instance can be
    shared across files and threads.
    """

    def __init__(self, tz: tzinfo = UTC, reference_date: date | None = None):
        self.tz = tz
        self.reference_date = reference_date

    @property
    @abstractmethod
    def parser_type(self) -> ParserType:
        pass

    @abstractmethod
    def parse_line(self, line: str, batch: Any) -> RawEvent | list[RawEvent] | None:
        """Parse one line (terminator stripped).

        Args:
            line: The log line
            batch: Per-call scratch state from begin_batch()

        Returns:
            Event(s) for the line, or None when the line carries nothing to store.

        Raises:
            LineParseError: If the line does not have the dialect's shape
        """
        pass

    def begin_batch(self) -> Any:
        """Create scratch state for one parse_lines call."""
        return None

    def end_batch(self, batch: Any) -> list[RawEvent]:
        """Flush events still held in the batch state."""
        return []

    def today(self) -> date:
        return self.reference_date or datetime.now(self.tz).date()

    def parse_lines(self, lines: list[str], start_offset: int = 0) -> ParseResult:
        """Parse a batch of lines read from start_offset.

        Each line is expected to carry its '\\n' terminator. Malformed lines
        are reported in errors and skipped; they never stop the batch.
        """
        result = ParseResult(start_offset=start_offset)
        batch = self.begin_batch()

        for line_number, raw in enumerate(lines, 1):
            result.bytes_processed += byte_length(raw)
            line = raw.rstrip('\r\n')
            if not line.strip():
                continue
            try:
                parsed = self.parse_line(line, batch)
            except Exception as e:
                result.errors.append(f'Line {line_number}: {e}')
                continue
            if parsed is None:
                continue
            if isinstance(parsed, list):
                result.entries.extend(parsed)
            else:
                result.entries.append(parsed)

        result.entries.extend(self.end_batch(batch))
        return result
