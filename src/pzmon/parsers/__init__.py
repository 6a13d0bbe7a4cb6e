"""Log dialect parsers.

Each ParserType maps to one parser class. Parsers are stateless between
parse_lines calls, so a registry built once can be shared by every file.
"""

from datetime import UTC, date, tzinfo

from pzmon.exceptions import UnknownParserError
from pzmon.models import ParserType
from pzmon.parsers.admin import CommandLogParser
from pzmon.parsers.backup import BackupLogParser
from pzmon.parsers.base import BaseParser
from pzmon.parsers.chat import ChatLogParser
from pzmon.parsers.perk import PerkLogParser
from pzmon.parsers.pvp import PVPLogParser
from pzmon.parsers.server import ServerLogParser
from pzmon.parsers.user import UserLogParser


def create_parser(parser_type: ParserType, tz: tzinfo = UTC, reference_date: date | None = None) -> BaseParser:
    """Create the parser for a log dialect.

    Raises:
        UnknownParserError: If parser_type has no parser
    """
    match parser_type:
        case ParserType.BACKUP | ParserType.RESTORE | ParserType.ROLLBACK:
            return BackupLogParser(parser_type, tz=tz, reference_date=reference_date)
        case ParserType.ADMIN | ParserType.CMD:
            return CommandLogParser(parser_type, tz=tz, reference_date=reference_date)
        case ParserType.USER:
            return UserLogParser(tz=tz, reference_date=reference_date)
        case ParserType.CHAT:
            return ChatLogParser(tz=tz, reference_date=reference_date)
        case ParserType.PERK:
            return PerkLogParser(tz=tz, reference_date=reference_date)
        case ParserType.SERVER:
            return ServerLogParser(tz=tz, reference_date=reference_date)
        case ParserType.PVP:
            return PVPLogParser(tz=tz, reference_date=reference_date)
    raise UnknownParserError(f'No parser for {parser_type!r}')


def default_parsers(tz: tzinfo = UTC) -> dict[ParserType, BaseParser]:
    """Return one parser per ParserType."""
    return {parser_type: create_parser(parser_type, tz=tz) for parser_type in ParserType}


__all__ = [
    'BaseParser',
    'BackupLogParser',
    'ChatLogParser',
    'CommandLogParser',
    'PVPLogParser',
    'PerkLogParser',
    'ServerLogParser',
    'UserLogParser',
    'create_parser',
    'default_parsers',
]
