"""Parser for admin.txt and cmd.txt.

Both files record who ran what:

    [16-02-26 10:00:00.000] admin teleported to 1000,2000,0.
    [16-02-26 10:00:05.000] 76561198012345678 "Bob" used command: /help
"""

import re
from datetime import UTC, date, tzinfo
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import PZ_TIMESTAMP, BaseParser, parse_coordinates, parse_pz_timestamp


COMMAND_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\] (.+)$')
_QUOTED_USER_RE = re.compile(r'^(?:([\w.:]+) )?"([^"]+)" (.+)$')
_BARE_USER_RE = re.compile(r'^(\S+) (.+)$')
_COMMAND_RE = re.compile(r'(/\w+)')

EVENT_TYPES = {
    ParserType.ADMIN: 'admin_command',
    ParserType.CMD: 'command',
}


class CommandLogParser(BaseParser):
    def __init__(self, log_type: ParserType = ParserType.ADMIN, tz: tzinfo = UTC, reference_date: date | None = None):
        super().__init__(tz=tz, reference_date=reference_date)
        if log_type not in EVENT_TYPES:
            raise ValueError(f'Not a command log type: {log_type}')
        self.log_type = log_type

    @property
    def parser_type(self) -> ParserType:
        return self.log_type

    def parse_line(self, line: str, batch: Any) -> RawEvent:
        match = COMMAND_LINE_RE.match(line)
        if not match:
            raise LineParseError(f'Not a {self.log_type.value} log line: {line[:80]}')

        timestamp, body = match.groups()
        details: dict[str, Any] = {'raw_message': body}

        if quoted := _QUOTED_USER_RE.match(body):
            user_id, username, action = quoted.groups()
            if user_id:
                details['user_id'] = user_id
        elif bare := _BARE_USER_RE.match(body):
            username, action = bare.groups()
        else:
            raise LineParseError(f'No user in {self.log_type.value} line: {line[:80]}')

        action = action.rstrip('.').strip()
        if command := _COMMAND_RE.search(action):
            details['command'] = command.group(1)
        if coordinates := parse_coordinates(action):
            details['coordinates'] = coordinates

        return RawEvent(
            time=parse_pz_timestamp(timestamp, self.tz),
            event_type=EVENT_TYPES[self.log_type],
            level=LogLevel.INFO,
            username=username,
            message=action,
            details=details,
        )
