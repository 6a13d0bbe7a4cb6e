"""Durable per-file read offsets."""

import hashlib
import logging
import os
from datetime import UTC, datetime

from sqlalchemy import select

from pzmon.db import Database, log_file_positions
from pzmon.models import LogFilePosition, ParserType
from pzmon.utils import utcnow


logger = logging.getLogger(__name__)

# Bytes hashed from the start of a file to spot same-size replacement
CHECKSUM_BYTES = 1024


def head_checksum(file_path: str, length: int = CHECKSUM_BYTES) -> str | None:
    """SHA-256 of the first `length` bytes of a file, None if unreadable or empty."""
    if length <= 0:
        return None
    try:
        with open(file_path, 'rb') as f:
            head = f.read(length)
    except OSError:
        return None
    if not head:
        return None
    return hashlib.sha256(head).hexdigest()


def file_mtime(file_path: str) -> datetime | None:
    try:
        return datetime.fromtimestamp(os.stat(file_path).st_mtime, UTC)
    except OSError:
        return None


class FilePositionStore:
    def __init__(self, database: Database):
        self.database = database

    def get(self, file_path: str) -> LogFilePosition | None:
        with self.database.engine.connect() as conn:
            row = conn.execute(select(log_file_positions).where(log_file_positions.c.file_path == file_path)).first()
        if row is None:
            return None
        return LogFilePosition(**row._mapping)

    def set(
        self,
        file_path: str,
        position: int,
        parser_type: ParserType,
        file_size: int | None = None,
        checksum: str | None = None,
    ) -> LogFilePosition:
        """Insert or update the offset for a file.

        last_modified is the file's own mtime (None when it cannot be stat'ed);
        last_ingested is when this offset was recorded.
        """
        values = {
            'last_position': position,
            'last_modified': file_mtime(file_path),
            'last_ingested': utcnow(),
            'file_size': file_size,
            'checksum': checksum,
            'parser_type': parser_type.value,
        }
        table = log_file_positions
        with self.database.engine.begin() as conn:
            exists = conn.execute(select(table.c.file_path).where(table.c.file_path == file_path)).first()
            if exists:
                conn.execute(table.update().where(table.c.file_path == file_path).values(**values))
            else:
                conn.execute(table.insert().values(file_path=file_path, **values))
        logger.debug(f'Position for {file_path} set to {position}')
        return LogFilePosition(file_path=file_path, **values)

    def reset(self, file_path: str, parser_type: ParserType) -> LogFilePosition:
        return self.set(file_path, 0, parser_type, file_size=0)

    def all(self) -> list[LogFilePosition]:
        with self.database.engine.connect() as conn:
            rows = conn.execute(select(log_file_positions).order_by(log_file_positions.c.file_path)).all()
        return [LogFilePosition(**row._mapping) for row in rows]
