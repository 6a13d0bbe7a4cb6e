"""Exception types raised inside PZMon"""


class PzmonError(Exception):
    """Base class for PZMon errors"""


class LineParseError(PzmonError):
    """A log line does not have the shape its dialect requires.

    Raised by parsers for a single line; parse_lines records it and moves on.
    """


class UnknownParserError(PzmonError):
    """No parser is registered for the requested parser type"""
