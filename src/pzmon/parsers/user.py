"""Parser for user.txt: logins, logouts, deaths, kicks and connection failures."""

import re
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import PZ_TIMESTAMP, BaseParser, parse_pz_timestamp


# [12-02-26 16:17:54.957] 14.191.221.162 "username" attempting to join.
USER_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\] ([\w.:]+) "([^"]+)" (.+)$')

_DEATH_COORDS_RE = re.compile(r'died at\s*\((-?[\d.]+)\s*,\s*(-?[\d.]+)\s*,\s*(-?[\d.]+)\)', re.IGNORECASE)
_LOAD_TIME_RE = re.compile(r'loading time:\s*(\d+)', re.IGNORECASE)
_VERSION_RE = re.compile(r'version\s*[:=]?\s*(\d+\.?\d*)', re.IGNORECASE)

EVENT_PATTERNS: list[tuple[re.Pattern, str, str]] = [
    (re.compile(r'attempting to join', re.IGNORECASE), 'login_attempt', 'Attempting to join server'),
    (re.compile(r'allowed to join', re.IGNORECASE), 'login_success', 'Successfully joined server'),
    (_LOAD_TIME_RE, 'login_complete', 'Finished loading into game'),
    (re.compile(r'disconnected|connection lost', re.IGNORECASE), 'logout', 'Disconnected from server'),
    (re.compile(r'died at', re.IGNORECASE), 'death', 'Player died'),
    (re.compile(r'kicked', re.IGNORECASE), 'kicked', 'Player was kicked'),
    (re.compile(r'banned', re.IGNORECASE), 'banned', 'Player was banned'),
    (re.compile(r'already connected', re.IGNORECASE), 'already_connected', 'Already connected from another location'),
    (re.compile(r'server full', re.IGNORECASE), 'server_full', 'Server is full'),
    (re.compile(r'invalid password', re.IGNORECASE), 'invalid_password', 'Invalid password'),
    (re.compile(r'version mismatch', re.IGNORECASE), 'version_mismatch', 'Client version mismatch'),
    (re.compile(r'ping timeout', re.IGNORECASE), 'ping_timeout', 'Connection timed out'),
]

ERROR_EVENTS = {'kicked', 'banned', 'ping_timeout', 'version_mismatch', 'invalid_password'}
WARN_EVENTS = {'server_full', 'already_connected'}


class UserLogParser(BaseParser):
    @property
    def parser_type(self) -> ParserType:
        return ParserType.USER

    def parse_line(self, line: str, batch: Any) -> RawEvent:
        match = USER_LINE_RE.match(line)
        if not match:
            raise LineParseError(f'Not a user log line: {line[:80]}')

        timestamp, address, username, message = match.groups()
        event_type, summary = 'unknown', message
        for pattern, candidate, text in EVENT_PATTERNS:
            if pattern.search(message):
                event_type, summary = candidate, text
                break

        details: dict[str, Any] = {'ip_address': address, 'raw_message': message}
        if coords := _DEATH_COORDS_RE.search(message):
            x, y, z = (float(part) for part in coords.groups())
            details['coordinates'] = {'x': x, 'y': y, 'z': z}
            summary = f'Player died at {coords.group(1)}, {coords.group(2)}, {coords.group(3)}'
        if load_time := _LOAD_TIME_RE.search(message):
            details['load_time'] = int(load_time.group(1))
        if version := _VERSION_RE.search(message):
            details['version'] = version.group(1)

        if event_type in ERROR_EVENTS:
            level = LogLevel.ERROR
        elif event_type in WARN_EVENTS:
            level = LogLevel.WARN
        else:
            level = LogLevel.INFO

        return RawEvent(
            time=parse_pz_timestamp(timestamp, self.tz),
            event_type=event_type,
            level=level,
            username=username,
            message=summary,
            details=details,
        )
