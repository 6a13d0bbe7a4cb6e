"""Parser for the dated DebugLog-server.txt files."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import PZ_TIMESTAMP, BaseParser, parse_pz_timestamp


SERVER_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\]\[(\w+)\] (.+)$')
STACK_LINE_RE = re.compile(r'^\s+at\s+|^\s+\.\.\.|^\s*Caused by:')
JAVA_EXCEPTION_RE = re.compile(r'(java\.\w+\.\w+(?:Exception|Error))')

_MOD_RE = re.compile(r"mod\s*[:=]?\s*['\"]?(\w+)['\"]?", re.IGNORECASE)
_PLAYER_RE = re.compile(r"player\s*[:=]?\s*['\"]?(\w+)['\"]?", re.IGNORECASE)

LIFECYCLE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r'server (started|listening|initialized)', re.IGNORECASE), 'startup'),
    (re.compile(r'server (stopping|shutting down|quitting)', re.IGNORECASE), 'shutdown'),
    (re.compile(r'server (stopped|offline|quit)', re.IGNORECASE), 'shutdown'),
    (re.compile(r'saving (world|game)', re.IGNORECASE), 'save'),
    (re.compile(r'loading map', re.IGNORECASE), 'map_load'),
    (re.compile(r'loading mod', re.IGNORECASE), 'mod_load'),
]

ACTIVITY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r'player.*joined|connected player', re.IGNORECASE), 'player_join'),
    (re.compile(r'player.*left|disconnected player', re.IGNORECASE), 'player_leave'),
    (re.compile(r'mod.*loaded', re.IGNORECASE), 'mod_loaded'),
    (re.compile(r'mod.*error', re.IGNORECASE), 'mod_error'),
    (re.compile(r'lua error', re.IGNORECASE), 'lua_error'),
]

CATEGORY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r'network|socket|connection|port|timeout', re.IGNORECASE), 'network'),
    (re.compile(r'performance|memory|lag|slow', re.IGNORECASE), 'performance'),
    (re.compile(r'mod|lua|script', re.IGNORECASE), 'mod'),
    (re.compile(r'player|user|client', re.IGNORECASE), 'player'),
    (re.compile(r'world|chunk|map|save|load', re.IGNORECASE), 'world'),
]


def categorize(message: str) -> str:
    for pattern, category in CATEGORY_PATTERNS:
        if pattern.search(message):
            return category
    return 'general'


@dataclass
class ExceptionBlock:
    time: datetime
    lines: list[str] = field(default_factory=list)


class ServerLogParser(BaseParser):
    """Parses '[ts][LEVEL] message' lines.

    An ERROR line naming a Java exception opens a block; following stack
    frames ('at ...', 'Caused by:') are folded into it and the block becomes a
    single error event when the next regular line (or the batch end) arrives.
    """

    @property
    def parser_type(self) -> ParserType:
        return ParserType.SERVER

    def begin_batch(self) -> dict[str, ExceptionBlock | None]:
        return {'block': None}

    def end_batch(self, batch: dict[str, ExceptionBlock | None]) -> list[RawEvent]:
        block = batch['block']
        batch['block'] = None
        return [self._exception_event(block)] if block else []

    def parse_line(self, line: str, batch: dict[str, ExceptionBlock | None]) -> RawEvent | list[RawEvent] | None:
        block = batch['block']
        if STACK_LINE_RE.match(line):
            if block is None:
                raise LineParseError(f'Stack frame outside an exception: {line[:80]}')
            block.lines.append(line.strip())
            return None

        match = SERVER_LINE_RE.match(line)
        if not match:
            raise LineParseError(f'Not a server log line: {line[:80]}')

        flushed = []
        if block is not None:
            flushed.append(self._exception_event(block))
            batch['block'] = None

        timestamp, level, message = match.groups()
        when = parse_pz_timestamp(timestamp, self.tz)
        normalized = LogLevel.normalize(level)

        if normalized == LogLevel.ERROR and JAVA_EXCEPTION_RE.search(message):
            batch['block'] = ExceptionBlock(time=when, lines=[message])
            return flushed or None

        event = RawEvent(
            time=when,
            event_type=self._event_type(message, normalized),
            level=normalized,
            message=self._format_message(message),
            details=self._details(message),
        )
        return flushed + [event] if flushed else event

    @staticmethod
    def _event_type(message: str, level: LogLevel) -> str:
        for pattern, event_type in LIFECYCLE_PATTERNS:
            if pattern.search(message):
                return event_type
        if level == LogLevel.ERROR:
            return 'error'
        if level == LogLevel.WARN:
            return 'warning'
        for pattern, event_type in ACTIVITY_PATTERNS:
            if pattern.search(message):
                return event_type
        return 'info'

    @staticmethod
    def _details(message: str) -> dict[str, Any]:
        details: dict[str, Any] = {'category': categorize(message), 'raw_message': message}
        if match := _MOD_RE.search(message):
            details['mod_name'] = match.group(1)
        if match := _PLAYER_RE.search(message):
            details['player'] = match.group(1)
        if match := JAVA_EXCEPTION_RE.search(message):
            details['exception'] = match.group(1)
        return details

    @staticmethod
    def _format_message(message: str) -> str:
        message = re.sub(r'^\[[\w-]+\]\s*', '', message)
        message = re.sub(r'^(LOG|INFO):\s*', '', message, flags=re.IGNORECASE)
        return message.strip()

    @staticmethod
    def _exception_event(block: ExceptionBlock) -> RawEvent:
        head = block.lines[0]
        match = JAVA_EXCEPTION_RE.search(head)
        exception = match.group(1) if match else 'Exception'
        relevant = next((frame for frame in block.lines[1:] if 'zomboid' in frame or 'zombie' in frame), None)
        return RawEvent(
            time=block.time,
            event_type='error',
            level=LogLevel.ERROR,
            message=exception,
            details={
                'category': 'general',
                'exception': exception,
                'raw_message': head,
                'stack_trace': block.lines,
                'relevant_frame': relevant,
            },
        )
