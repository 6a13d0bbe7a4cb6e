"""Log ingestion and queries over the per-source stores.

Ingestion reads a file from its stored offset, parses only complete lines,
stores what the parser produced and advances the offset. Queries filter one
store at a time or project every store onto UnifiedLogEntry.
"""

import logging
import os
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, tzinfo
from enum import Enum
from typing import Any

from pydantic import BaseModel
from sqlalchemy import Table, case, desc, func, literal, or_, select, union_all
from sqlalchemy.exc import SQLAlchemyError

from pzmon import prometheus as prom
from pzmon.db import (
    Database,
    backup_logs,
    pz_chat_messages,
    pz_player_events,
    pz_pvp_events,
    pz_server_events,
    pz_skill_snapshots,
)
from pzmon.models import (
    PARSER_SOURCES,
    BackupLogEntry,
    IngestResult,
    LogFilters,
    LogLevel,
    LogPage,
    LogSource,
    LogStats,
    ParserType,
    PZChatMessage,
    PZPlayerEvent,
    PZPVPEvent,
    PZServerEvent,
    PZSkillSnapshot,
    RawEvent,
    UnifiedLogEntry,
    chat_type_of,
    coordinates_of,
    detail_str,
    new_entry_id,
    skill_hours_of,
    skills_of,
)
from pzmon.parsers import BaseParser, default_parsers
from pzmon.parsers.base import split_lines
from pzmon.positions import CHECKSUM_BYTES, FilePositionStore, head_checksum


logger = logging.getLogger(__name__)

DEFAULT_SINCE_SOURCES = [LogSource.PLAYER, LogSource.CHAT, LogSource.SERVER, LogSource.PVP, LogSource.SKILL]

SOURCE_TABLES: dict[LogSource, Table] = {
    LogSource.BACKUP: backup_logs,
    LogSource.PLAYER: pz_player_events,
    LogSource.SERVER: pz_server_events,
    LogSource.CHAT: pz_chat_messages,
    LogSource.PVP: pz_pvp_events,
    LogSource.SKILL: pz_skill_snapshots,
}

SOURCE_MODELS: dict[LogSource, type[BaseModel]] = {
    LogSource.BACKUP: BackupLogEntry,
    LogSource.PLAYER: PZPlayerEvent,
    LogSource.SERVER: PZServerEvent,
    LogSource.CHAT: PZChatMessage,
    LogSource.PVP: PZPVPEvent,
    LogSource.SKILL: PZSkillSnapshot,
}


# ============================================================================
# RawEvent -> stored record
# ============================================================================


def _backup_record(event: RawEvent, parser_type: ParserType, server: str | None) -> BackupLogEntry:
    return BackupLogEntry(
        time=event.time,
        log_type=parser_type,
        event_type=event.event_type,
        level=event.level,
        server=server or event.server,
        message=event.message,
        details=event.details,
    )


def _player_record(event: RawEvent, parser_type: ParserType, server: str | None) -> PZPlayerEvent:
    return PZPlayerEvent(
        time=event.time,
        server=server or event.server or 'unknown',
        event_type=event.event_type,
        username=event.username or 'unknown',
        ip_address=detail_str(event.details, 'ip_address'),
        level=event.level,
        message=event.message,
        details=event.details,
    )


def _server_record(event: RawEvent, parser_type: ParserType, server: str | None) -> PZServerEvent:
    return PZServerEvent(
        time=event.time,
        server=server or event.server or 'unknown',
        event_type=event.event_type,
        category=detail_str(event.details, 'category'),
        level=event.level,
        message=event.message,
        details=event.details,
    )


def _chat_record(event: RawEvent, parser_type: ParserType, server: str | None) -> PZChatMessage:
    return PZChatMessage(
        time=event.time,
        server=server or event.server or 'unknown',
        username=event.username or 'unknown',
        chat_type=chat_type_of(event.details),
        message=event.message,
        coordinates=coordinates_of(event.details),
    )


def _pvp_record(event: RawEvent, parser_type: ParserType, server: str | None) -> PZPVPEvent:
    damage = event.details.get('damage')
    return PZPVPEvent(
        time=event.time,
        server=server or event.server or 'unknown',
        event_type=event.event_type,
        attacker=detail_str(event.details, 'attacker'),
        victim=detail_str(event.details, 'victim'),
        weapon=detail_str(event.details, 'weapon'),
        damage=float(damage) if damage is not None else None,
        level=event.level,
        message=event.message,
        details=event.details,
    )


def _skill_record(event: RawEvent, parser_type: ParserType, server: str | None) -> PZSkillSnapshot | None:
    skills = skills_of(event.details)
    if not skills:
        return None
    details = {key: value for key, value in event.details.items() if key in ('event', 'coordinates')}
    return PZSkillSnapshot(
        time=event.time,
        server=server or event.server or 'unknown',
        username=event.username or 'unknown',
        event_type=event.event_type,
        hours_survived=skill_hours_of(event.details),
        skills=skills,
        details=details,
    )


RECORD_BUILDERS: dict[LogSource, Callable[[RawEvent, ParserType, str | None], BaseModel | None]] = {
    LogSource.BACKUP: _backup_record,
    LogSource.PLAYER: _player_record,
    LogSource.SERVER: _server_record,
    LogSource.CHAT: _chat_record,
    LogSource.PVP: _pvp_record,
    LogSource.SKILL: _skill_record,
}


# ============================================================================
# stored record -> UnifiedLogEntry
# ============================================================================


def _unified_backup(r: BackupLogEntry) -> UnifiedLogEntry:
    return UnifiedLogEntry(
        id=new_entry_id('backup'),
        time=r.time,
        source=LogSource.BACKUP,
        server=r.server,
        event_type=r.event_type,
        level=r.level,
        message=r.message,
        details={**r.details, 'log_type': r.log_type.value},
    )


def _unified_player(r: PZPlayerEvent) -> UnifiedLogEntry:
    return UnifiedLogEntry(
        id=new_entry_id('player'),
        time=r.time,
        source=LogSource.PLAYER,
        server=r.server,
        event_type=r.event_type,
        level=r.level,
        username=r.username,
        message=r.message or f'{r.event_type}: {r.username}',
        details={**r.details, 'ip_address': r.ip_address},
    )


def _unified_server(r: PZServerEvent) -> UnifiedLogEntry:
    return UnifiedLogEntry(
        id=new_entry_id('server'),
        time=r.time,
        source=LogSource.SERVER,
        server=r.server,
        event_type=r.event_type,
        level=r.level,
        message=r.message,
        details={**r.details, 'category': r.category},
    )


def _unified_chat(r: PZChatMessage) -> UnifiedLogEntry:
    details: dict[str, Any] = {'chat_type': r.chat_type}
    if r.coordinates:
        details['coordinates'] = r.coordinates
    return UnifiedLogEntry(
        id=new_entry_id('chat'),
        time=r.time,
        source=LogSource.CHAT,
        server=r.server,
        event_type='chat',
        level=LogLevel.INFO,
        username=r.username,
        message=f'[{r.chat_type}] {r.username}: {r.message}',
        details=details,
    )


def _unified_pvp(r: PZPVPEvent) -> UnifiedLogEntry:
    return UnifiedLogEntry(
        id=new_entry_id('pvp'),
        time=r.time,
        source=LogSource.PVP,
        server=r.server,
        event_type=r.event_type,
        level=r.level,
        username=r.attacker or r.victim,
        message=r.message or f'{r.attacker or "Unknown"} vs {r.victim or "Unknown"}',
        details={**r.details, 'attacker': r.attacker, 'victim': r.victim, 'weapon': r.weapon, 'damage': r.damage},
    )


def _unified_skill(r: PZSkillSnapshot) -> UnifiedLogEntry:
    event = detail_str(r.details, 'event') or r.event_type.capitalize()
    hours = f' ({r.hours_survived}h survived)' if r.hours_survived is not None else ''
    return UnifiedLogEntry(
        id=new_entry_id('skill'),
        time=r.time,
        source=LogSource.SKILL,
        server=r.server,
        event_type=r.event_type,
        level=LogLevel.INFO,
        username=r.username,
        message=f'{event}: {r.username}{hours}',
        details={**r.details, 'hours_survived': r.hours_survived, 'skills': r.skills},
    )


PROJECTIONS: dict[LogSource, Callable[[Any], UnifiedLogEntry]] = {
    LogSource.BACKUP: _unified_backup,
    LogSource.PLAYER: _unified_player,
    LogSource.SERVER: _unified_server,
    LogSource.CHAT: _unified_chat,
    LogSource.PVP: _unified_pvp,
    LogSource.SKILL: _unified_skill,
}


def to_unified(source: LogSource, record: BaseModel) -> UnifiedLogEntry:
    return PROJECTIONS[source](record)


def _row_values(record: BaseModel) -> dict[str, Any]:
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in record.model_dump(exclude={'id'}).items()
    }


def _record_from_row(model: type[BaseModel], row) -> BaseModel:
    # NULL columns fall back to the model defaults
    return model(**{key: value for key, value in row._mapping.items() if value is not None})


class LogManager:
    """Owns ingestion into and queries over the six log stores."""

    def __init__(
        self,
        database: Database,
        positions: FilePositionStore | None = None,
        parsers: dict[ParserType, BaseParser] | None = None,
        tz: tzinfo = UTC,
    ):
        self.database = database
        self.positions = positions or FilePositionStore(database)
        self.parsers = parsers or default_parsers(tz)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def parse_and_ingest_file(
        self,
        file_path: str,
        parser_type: ParserType,
        server_name: str | None = None,
        final: bool = False,
    ) -> IngestResult:
        """Read new bytes from file_path, parse them and store the results.

        Args:
            file_path: Log file to read
            parser_type: Dialect of the file
            server_name: Server the records belong to (backup logs carry it in the message)
            final: Consume a trailing unterminated line too (used before a rotation reset)

        Returns:
            IngestResult; a missing file yields a zero result with an error note.
        """
        started = time.perf_counter()
        try:
            size = os.stat(file_path).st_size
        except FileNotFoundError:
            logger.debug(f'Skipping missing file {file_path}')
            return IngestResult(errors=[f'File not found: {file_path}'])
        except OSError as e:
            logger.warning(f'Cannot stat {file_path}: {e}')
            return IngestResult(errors=[f'Cannot read {file_path}: {e}'])

        stored = self.positions.get(file_path)
        start = stored.last_position if stored else 0

        if size < start:
            logger.info(f'{file_path} shrank from {start} to {size} bytes, reading from the start')
            start = 0
            self.positions.reset(file_path, parser_type)
        elif stored and stored.checksum and start > 0:
            current = head_checksum(file_path, min(CHECKSUM_BYTES, start))
            if current != stored.checksum:
                logger.warning(f'{file_path} head changed without shrinking; possible same-size rotation')

        if size == start:
            return IngestResult()

        try:
            with open(file_path, 'rb') as f:
                f.seek(start)
                chunk = f.read(size - start)
        except OSError as e:
            logger.warning(f'Cannot read {file_path}: {e}')
            return IngestResult(errors=[f'Cannot read {file_path}: {e}'])

        if not final:
            chunk = chunk[: chunk.rfind(b'\n') + 1]
        if not chunk:
            return IngestResult()

        lines = split_lines(chunk.decode('utf-8', 'surrogateescape'))
        parsed = self.parsers[parser_type].parse_lines(lines, start)
        added = self.store_events(parsed.entries, parser_type, server_name)

        checksum = head_checksum(file_path, min(CHECKSUM_BYTES, parsed.end_offset))
        self.positions.set(file_path, parsed.end_offset, parser_type, file_size=size, checksum=checksum)

        prom.record_ingest(
            parser_type.value, added, len(parsed.errors), parsed.bytes_processed, time.perf_counter() - started
        )
        if parsed.errors:
            logger.debug(f'{file_path}: {len(parsed.errors)} malformed lines skipped')
        logger.info(
            f'Ingested {added}/{len(parsed.entries)} {parser_type.value} entries from {file_path} '
            f'({parsed.bytes_processed} bytes)'
        )
        return IngestResult(
            entries_processed=len(parsed.entries),
            entries_added=added,
            bytes_processed=parsed.bytes_processed,
            errors=parsed.errors,
        )

    def reset_position(self, file_path: str, parser_type: ParserType):
        self.positions.reset(file_path, parser_type)

    def store_events(self, events: Iterable[RawEvent], parser_type: ParserType, server_name: str | None) -> int:
        """Map parsed events onto their store and insert them; returns how many were stored."""
        source = PARSER_SOURCES[parser_type]
        build = RECORD_BUILDERS[source]
        records = [record for record in (build(event, parser_type, server_name) for event in events) if record]
        return self.insert_records(source, records)

    def insert_records(self, source: LogSource, records: list[BaseModel]) -> int:
        """Insert records into a store, best-effort per row.

        The batch is tried in one transaction first; if that fails every row
        is retried alone so one bad row only costs itself.
        """
        if not records:
            return 0
        table = SOURCE_TABLES[source]
        rows = [_row_values(record) for record in records]
        try:
            with self.database.engine.begin() as conn:
                conn.execute(table.insert(), rows)
            return len(rows)
        except SQLAlchemyError as e:
            logger.warning(f'Batch insert into {table.name} failed, retrying row by row: {e}')

        added = 0
        for row in rows:
            try:
                with self.database.engine.begin() as conn:
                    conn.execute(table.insert().values(**row))
                added += 1
            except SQLAlchemyError as e:
                logger.error(f'Failed to insert into {table.name}: {e}')
                prom.record_insert_failure(source.value)
        return added

    # ------------------------------------------------------------------
    # Per-source queries
    # ------------------------------------------------------------------

    @staticmethod
    def _conditions(source: LogSource, filters: LogFilters) -> list:
        table = SOURCE_TABLES[source]
        columns = table.c
        conditions = []
        if filters.server:
            conditions.append(columns.server == filters.server)
        if filters.event_type and 'event_type' in columns:
            conditions.append(columns.event_type == filters.event_type)
        if filters.username:
            pattern = f'%{filters.username}%'
            if source == LogSource.PVP:
                conditions.append(or_(columns.attacker.ilike(pattern), columns.victim.ilike(pattern)))
            elif 'username' in columns:
                conditions.append(columns.username.ilike(pattern))
        if filters.level and 'level' in columns:
            conditions.append(columns.level == filters.level.value)
        if filters.start:
            conditions.append(columns.time >= filters.start)
        if filters.end:
            conditions.append(columns.time <= filters.end)
        return conditions

    def _query(self, source: LogSource, filters: LogFilters | None) -> LogPage:
        filters = filters or LogFilters()
        table = SOURCE_TABLES[source]
        model = SOURCE_MODELS[source]
        conditions = self._conditions(source, filters)

        with self.database.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(table).where(*conditions)).scalar_one()
            rows = conn.execute(
                select(table)
                .where(*conditions)
                .order_by(table.c.time.desc(), table.c.id.desc())
                .limit(filters.limit)
                .offset(filters.offset)
            ).all()
        return LogPage(items=[_record_from_row(model, row) for row in rows], total=total)

    def get_backup_logs(self, filters: LogFilters | None = None) -> LogPage[BackupLogEntry]:
        return self._query(LogSource.BACKUP, filters)

    def get_player_events(self, filters: LogFilters | None = None) -> LogPage[PZPlayerEvent]:
        return self._query(LogSource.PLAYER, filters)

    def get_server_events(self, filters: LogFilters | None = None) -> LogPage[PZServerEvent]:
        return self._query(LogSource.SERVER, filters)

    def get_chat_messages(self, filters: LogFilters | None = None) -> LogPage[PZChatMessage]:
        return self._query(LogSource.CHAT, filters)

    def get_pvp_events(self, filters: LogFilters | None = None) -> LogPage[PZPVPEvent]:
        return self._query(LogSource.PVP, filters)

    def get_skill_snapshots(self, filters: LogFilters | None = None) -> LogPage[PZSkillSnapshot]:
        return self._query(LogSource.SKILL, filters)

    # ------------------------------------------------------------------
    # Unified view
    # ------------------------------------------------------------------

    def get_unified_logs(self, filters: LogFilters | None = None) -> LogPage[UnifiedLogEntry]:
        """Query one store (filters.source, backup when unset) and project it."""
        filters = filters or LogFilters()
        source = filters.source or LogSource.BACKUP
        page = self._query(source, filters)
        return LogPage(items=[to_unified(source, record) for record in page.items], total=page.total)

    def get_unified_logs_since(
        self,
        server: str,
        sources: list[LogSource] | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[UnifiedLogEntry]:
        """Newest entries for a server across several stores, newest first.

        One UNION ALL picks the (source, id) pairs in time order; the rows are
        then loaded per store and projected like get_unified_logs does.
        """
        selected = sources or DEFAULT_SINCE_SOURCES
        selects = []
        for source in dict.fromkeys(selected):
            table = SOURCE_TABLES[source]
            conditions = [table.c.server == server]
            if since is not None:
                conditions.append(table.c.time > since)
            selects.append(
                select(literal(source.value).label('source'), table.c.id, table.c.time).where(*conditions)
            )

        picked = (union_all(*selects) if len(selects) > 1 else selects[0]).subquery()
        stmt = select(picked.c.source, picked.c.id).order_by(desc(picked.c.time)).limit(limit)

        with self.database.engine.connect() as conn:
            order = [(LogSource(row.source), row.id) for row in conn.execute(stmt)]
            ids_by_source: dict[LogSource, list[int]] = defaultdict(list)
            for source, row_id in order:
                ids_by_source[source].append(row_id)
            records: dict[tuple[LogSource, int], BaseModel] = {}
            for source, ids in ids_by_source.items():
                table = SOURCE_TABLES[source]
                for row in conn.execute(select(table).where(table.c.id.in_(ids))):
                    records[(source, row.id)] = _record_from_row(SOURCE_MODELS[source], row)

        return [
            to_unified(source, records[(source, row_id)]) for source, row_id in order if (source, row_id) in records
        ]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_log_stats(self, server: str | None = None) -> LogStats:
        """Aggregate counters across the stores, optionally for one server."""

        def where(table: Table) -> list:
            return [table.c.server == server] if server else []

        def count_when(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stats = LogStats()
        with self.database.engine.connect() as conn:
            for table in (backup_logs, pz_server_events):
                total, errors, warnings = conn.execute(
                    select(
                        func.count(),
                        count_when(table.c.level == 'ERROR'),
                        count_when(table.c.level == 'WARN'),
                    )
                    .select_from(table)
                    .where(*where(table))
                ).one()
                stats.total_logs += total
                stats.error_count += errors
                stats.warning_count += warnings

            total, logins, deaths, players = conn.execute(
                select(
                    func.count(),
                    count_when(pz_player_events.c.event_type == 'login_success'),
                    count_when(pz_player_events.c.event_type == 'death'),
                    func.count(func.distinct(pz_player_events.c.username)),
                )
                .select_from(pz_player_events)
                .where(*where(pz_player_events))
            ).one()
            stats.total_logs += total
            stats.login_count = logins
            stats.death_count = deaths
            stats.unique_players = players

            for table in (pz_pvp_events, pz_chat_messages, pz_skill_snapshots):
                total = conn.execute(select(func.count()).select_from(table).where(*where(table))).scalar_one()
                stats.total_logs += total
                if table is pz_chat_messages:
                    stats.chat_count = total
        return stats
