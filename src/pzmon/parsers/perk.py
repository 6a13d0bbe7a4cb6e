"""Parser for PerkLog.txt (skill snapshots).

Snapshots are written as two lines with the same user and timestamp:

    [12-02-26 16:18:24.420] [bob][1234,5678,0][Login][Hours Survived: 87]
    [12-02-26 16:18:24.420] [bob][1234,5678,0][Cooking=0, Fitness=9][Hours Survived: 87]

The pair is joined inside a single parse_lines call.
"""

import re
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import PZ_TIMESTAMP, BaseParser, parse_coordinates, parse_pz_timestamp


PERK_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\] \[([^\]]+)\]\[([^\]]+)\]\[([^\]]+)\]\[Hours Survived: (\d+)\]')
# [12-02-26 16:30:00.000] [bob][1234,5678,0][Woodwork][3][Hours Survived: 88]
LEVEL_UP_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\] \[[^\]]+\]\[[^\]]+\]\[\w+\]\[\d+\]\[Hours Survived: \d+\]')

KNOWN_EVENTS = {'Login', 'Logout', 'Died', 'Spawn', 'Respawn'}


def parse_skills(text: str) -> dict[str, int]:
    """Parse 'Cooking=0, Fitness=9, ...'; pairs without an integer value are dropped."""
    skills: dict[str, int] = {}
    for pair in text.split(','):
        name, sep, value = pair.strip().partition('=')
        if not sep or not name.strip():
            continue
        try:
            skills[name.strip()] = int(value.strip())
        except ValueError:
            continue
    return skills


class PerkLogParser(BaseParser):
    @property
    def parser_type(self) -> ParserType:
        return ParserType.PERK

    def begin_batch(self) -> dict[tuple[str, str], str]:
        # (username, timestamp) -> event name of a header line still waiting for its skills line
        return {}

    def parse_line(self, line: str, batch: dict[tuple[str, str], str]) -> RawEvent | None:
        match = PERK_LINE_RE.match(line)
        if not match:
            if LEVEL_UP_LINE_RE.match(line):
                return None
            raise LineParseError(f'Not a perk log line: {line[:80]}')

        timestamp, username, coords, data, hours = match.groups()
        key = (username, timestamp)

        if data in KNOWN_EVENTS:
            batch[key] = data
            return None

        skills = parse_skills(data)
        if not skills:
            raise LineParseError(f'No skills in perk line: {line[:80]}')

        event = batch.pop(key, 'Snapshot')
        hours_survived = int(hours)
        details: dict[str, Any] = {
            'event': event,
            'hours_survived': hours_survived,
            'skills': skills,
        }
        if coordinates := parse_coordinates(coords):
            details['coordinates'] = coordinates

        return RawEvent(
            time=parse_pz_timestamp(timestamp, self.tz),
            event_type=event.lower(),
            level=LogLevel.INFO,
            username=username,
            message=f'{event}: {username} ({hours_survived}h survived)',
            details=details,
        )
