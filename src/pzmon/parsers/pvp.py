"""Parser for pvp.txt (combat, damage, kills)."""

import re
from typing import Any

from pzmon.exceptions import LineParseError
from pzmon.models import LogLevel, ParserType, RawEvent
from pzmon.parsers.base import PZ_TIMESTAMP, BaseParser, parse_pz_timestamp


# Level tag is optional: '[ts] msg' and '[ts][info] msg' both occur
PVP_LINE_RE = re.compile(rf'^\[({PZ_TIMESTAMP})\](?:\[(\w+)\])? (.+)$')

_COMBAT_RE = re.compile(
    r'Combat:\s*"([^"]+)"\s*\([^)]+\)\s+hit\s+"([^"]+)"\s*\([^)]+\)\s+weapon="([^"]+)"\s+damage=(-?\d+(?:\.\d+)?)',
    re.IGNORECASE,
)
_KILL_RE = re.compile(r'(\w+)\s+killed\s+(\w+)\s+with\s+(.+)', re.IGNORECASE)
_DAMAGE_RE = re.compile(r'(\w+)\s+hit\s+(\w+)\s+with\s+(.+?)\s+for\s+([\d.]+)\s+damage', re.IGNORECASE)
_ATTACK_RE = re.compile(r'pvp:\s*(\w+)\s+(?:attacked|hit|killed)\s+(\w+)', re.IGNORECASE)
_DEATH_RE = re.compile(r'(\w+)\s+(?:died|was killed)', re.IGNORECASE)
_BODY_PART_RE = re.compile(r'(?:hit|shot)\s+(?:in|to)\s+(?:the\s+)?(\w+)', re.IGNORECASE)
_COORDS_RE = re.compile(r'\((-?[\d.]+)\s*,\s*(-?[\d.]+)\s*,\s*(-?[\d.]+)\)')


def _extract(message: str) -> dict[str, Any] | None:
    if match := _COMBAT_RE.search(message):
        attacker, victim, weapon, damage = match.groups()
        return {'attacker': attacker, 'victim': victim, 'weapon': weapon, 'damage': float(damage), 'was_kill': False}
    if match := _KILL_RE.search(message):
        attacker, victim, weapon = match.groups()
        return {'attacker': attacker, 'victim': victim, 'weapon': weapon.strip(), 'was_kill': True}
    if match := _DAMAGE_RE.search(message):
        attacker, victim, weapon, damage = match.groups()
        return {
            'attacker': attacker,
            'victim': victim,
            'weapon': weapon.strip(),
            'damage': float(damage),
            'was_kill': False,
        }
    if match := _ATTACK_RE.search(message):
        return {'attacker': match.group(1), 'victim': match.group(2), 'was_kill': False}
    if match := _DEATH_RE.search(message):
        return {'victim': match.group(1), 'was_kill': True}
    return None


def _event_type(details: dict[str, Any]) -> str:
    if details.get('was_kill') and details.get('attacker'):
        return 'kill'
    if details.get('damage'):
        return 'damage'
    if details.get('attacker') and details.get('victim'):
        return 'combat'
    if details.get('victim'):
        return 'death'
    return 'pvp'


def _summary(details: dict[str, Any], event_type: str) -> str:
    attacker = details.get('attacker') or 'Unknown'
    victim = details.get('victim') or 'Unknown'
    weapon = f' with {details["weapon"]}' if details.get('weapon') else ''
    if event_type == 'kill':
        return f'{attacker} killed {victim}{weapon}'
    if event_type == 'damage':
        return f'{attacker} hit {victim} for {details["damage"]:g} damage{weapon}'
    if event_type == 'death':
        return f'{victim} died'
    if event_type == 'combat':
        return f'{attacker} attacked {victim}{weapon}'
    return f'PVP event: {attacker} vs {victim}'


class PVPLogParser(BaseParser):
    @property
    def parser_type(self) -> ParserType:
        return ParserType.PVP

    def parse_line(self, line: str, batch: Any) -> RawEvent | None:
        match = PVP_LINE_RE.match(line)
        if not match:
            raise LineParseError(f'Not a pvp log line: {line[:80]}')

        timestamp, _level, message = match.groups()
        details = _extract(message)
        if details is None:
            return None

        if body_part := _BODY_PART_RE.search(message):
            details['body_part'] = body_part.group(1).lower()
        if coords := _COORDS_RE.search(message):
            x, y, z = (float(part) for part in coords.groups())
            details['coordinates'] = {'x': x, 'y': y, 'z': z}
        details['raw_message'] = message

        event_type = _event_type(details)
        return RawEvent(
            time=parse_pz_timestamp(timestamp, self.tz),
            event_type=event_type,
            level=LogLevel.WARN if details.get('was_kill') else LogLevel.INFO,
            username=details.get('attacker') or details.get('victim'),
            message=_summary(details, event_type),
            details=details,
        )
