"""Parser for chat.txt"""

import re
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import PZ_TIMESTAMP, BaseParser, parse_clock_time, parse_pz_timestamp


# [12-02-26 16:21:22.677][info] Got message:ChatMessage{chat=Local, author='X', text='Y'}
CHAT_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\]\[(\w+)\] (.+)$')
# [12:00] Alice: hello
SHORT_CHAT_LINE_RE = re.compile(r'^\[(\d{1,2}:\d{2}(?::\d{2})?)\] ([^:]+?): (.*)$')

_CHAT_MESSAGE_RE = re.compile(r"ChatMessage\{chat=(\w+),\s*author='([^']*)',\s*text='([^']*)'")
_BARE_AUTHOR_TEXT_RE = re.compile(r"author='([^']*)'.*text='([^']*)'")
_POS_RE = re.compile(r'pos=\((-?[\d.]+),\s*(-?[\d.]+),\s*(-?[\d.]+)\)')


class ChatLogParser(BaseParser):
    @property
    def parser_type(self) -> ParserType:
        return ParserType.CHAT

    def parse_line(self, line: str, batch: Any) -> RawEvent | None:
        match = CHAT_LINE_RE.match(line)
        if match:
            timestamp, level, message = match.groups()
            parsed = self._parse_chat_message(message)
            if parsed is None:
                # Engine chatter in chat.txt, not a message
                return None
            chat_type, author, text, coordinates = parsed
            return self._event(parse_pz_timestamp(timestamp, self.tz), level, chat_type, author, text, coordinates)

        short = SHORT_CHAT_LINE_RE.match(line)
        if short:
            clock, author, text = short.groups()
            when = parse_clock_time(clock, self.today(), self.tz)
            return self._event(when, 'info', 'Local', author.strip(), text, None)

        raise LineParseError(f'Not a chat log line: {line[:80]}')

    @staticmethod
    def _parse_chat_message(message: str) -> tuple[str, str, str, dict[str, float] | None] | None:
        match = _CHAT_MESSAGE_RE.search(message)
        if not match:
            bare = _BARE_AUTHOR_TEXT_RE.search(message)
            if bare:
                return 'Unknown', bare.group(1), bare.group(2), None
            return None

        chat_type, author, text = match.groups()
        coordinates = None
        if pos := _POS_RE.search(message):
            x, y, z = (float(part) for part in pos.groups())
            coordinates = {'x': x, 'y': y, 'z': z}
        return chat_type, author, text, coordinates

    @staticmethod
    def _event(when, level: str, chat_type: str, author: str, text: str, coordinates) -> RawEvent:
        details: dict[str, Any] = {'chat_type': chat_type}
        if coordinates:
            details['coordinates'] = coordinates
        return RawEvent(
            time=when,
            event_type='chat',
            level=LogLevel.normalize(level),
            username=author,
            message=text,
            details=details,
        )
