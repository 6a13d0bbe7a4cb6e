"""SQLAlchemy Core schema and engine wrapper.

All times are stored as naive UTC and come back as aware UTC datetimes.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.types import TypeDecorator


logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """DateTime column that always hands back aware UTC values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


metadata = MetaData()


def _now():
    return datetime.now(UTC)


backup_logs = Table(
    'backup_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('log_type', String(20), nullable=False),
    Column('event_type', String(50), nullable=False),
    Column('level', String(10), nullable=False),
    Column('server', String(100)),
    Column('message', Text, nullable=False),
    Column('details', JSON),
    Column('parsed_at', UTCDateTime, default=_now),
    Index('ix_backup_logs_time', 'time'),
)

pz_player_events = Table(
    'pz_player_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('server', String(100), nullable=False),
    Column('event_type', String(50), nullable=False),
    Column('username', String(100), nullable=False),
    Column('ip_address', String(64)),
    Column('level', String(10), nullable=False),
    Column('message', Text),
    Column('details', JSON),
    Column('parsed_at', UTCDateTime, default=_now),
    Index('ix_pz_player_events_server_time', 'server', 'time'),
)

pz_server_events = Table(
    'pz_server_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('server', String(100), nullable=False),
    Column('event_type', String(50), nullable=False),
    Column('category', String(50)),
    Column('level', String(10), nullable=False),
    Column('message', Text, nullable=False),
    Column('details', JSON),
    Column('parsed_at', UTCDateTime, default=_now),
    Index('ix_pz_server_events_server_time', 'server', 'time'),
)

pz_chat_messages = Table(
    'pz_chat_messages',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('server', String(100), nullable=False),
    Column('username', String(100), nullable=False),
    Column('chat_type', String(30), nullable=False),
    Column('message', Text, nullable=False),
    Column('coordinates', JSON),
    Column('parsed_at', UTCDateTime, default=_now),
    Index('ix_pz_chat_messages_server_time', 'server', 'time'),
)

pz_pvp_events = Table(
    'pz_pvp_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('server', String(100), nullable=False),
    Column('event_type', String(30), nullable=False),
    Column('attacker', String(100)),
    Column('victim', String(100)),
    Column('weapon', String(200)),
    Column('damage', Float),
    Column('level', String(10), nullable=False),
    Column('message', Text),
    Column('details', JSON),
    Column('parsed_at', UTCDateTime, default=_now),
    Index('ix_pz_pvp_events_server_time', 'server', 'time'),
)

pz_skill_snapshots = Table(
    'pz_skill_snapshots',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('server', String(100), nullable=False),
    Column('username', String(100), nullable=False),
    Column('event_type', String(30), nullable=False),
    Column('hours_survived', Integer),
    Column('skills', JSON, nullable=False),
    Column('details', JSON),
    Column('parsed_at', UTCDateTime, default=_now),
    Index('ix_pz_skill_snapshots_user_time', 'server', 'username', 'time'),
)

log_file_positions = Table(
    'log_file_positions',
    metadata,
    Column('file_path', String(500), primary_key=True),
    Column('last_position', BigInteger, nullable=False, default=0),
    Column('last_modified', UTCDateTime),
    Column('last_ingested', UTCDateTime),
    Column('file_size', BigInteger),
    Column('checksum', String(64)),
    Column('parser_type', String(20), nullable=False),
)

system_metrics = Table(
    'system_metrics',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('cpu_percent', Float),
    Column('cpu_cores', JSON),
    Column('memory_used_bytes', BigInteger),
    Column('memory_total_bytes', BigInteger),
    Column('memory_percent', Float),
    Column('swap_used_bytes', BigInteger),
    Column('swap_total_bytes', BigInteger),
    Column('swap_percent', Float),
    Column('network_interface', String(50)),
    Column('network_rx_bytes', BigInteger),
    Column('network_tx_bytes', BigInteger),
    Column('network_rx_sec', Float),
    Column('network_tx_sec', Float),
    Index('ix_system_metrics_time', 'time'),
)

system_spikes = Table(
    'system_spikes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('time', UTCDateTime, nullable=False),
    Column('metric_type', String(20), nullable=False),
    Column('severity', String(20), nullable=False),
    Column('previous_value', Float),
    Column('current_value', Float, nullable=False),
    Column('change_percent', Float),
    Column('sustained_for_seconds', Integer, nullable=False, default=0),
    Column('details', JSON),
    Index('ix_system_spikes_time', 'time'),
)

monitor_config = Table(
    'monitor_config',
    metadata,
    Column('id', Integer, primary_key=True),
    Column('enabled', Boolean, nullable=False),
    Column('polling_interval_seconds', Integer, nullable=False),
    Column('data_retention_days', Integer, nullable=False),
    Column('cpu_spike_threshold_percent', Float, nullable=False),
    Column('cpu_spike_sustained_seconds', Integer, nullable=False),
    Column('cpu_critical_threshold', Float),
    Column('memory_spike_threshold_percent', Float, nullable=False),
    Column('memory_spike_sustained_seconds', Integer, nullable=False),
    Column('memory_critical_threshold', Float),
    Column('swap_spike_threshold_percent', Float, nullable=False),
    Column('swap_spike_sustained_seconds', Integer, nullable=False),
    Column('swap_critical_threshold', Float),
    Column('network_spike_threshold_percent', Float, nullable=False),
    Column('network_spike_sustained_seconds', Integer, nullable=False),
    Column('network_critical_threshold', Float),
    Column('updated_at', UTCDateTime),
)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA busy_timeout=5000')
    cursor.close()


class Database:
    """Owns the engine; one instance per process, passed to the services that need it."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        parsed = make_url(url)
        connect_args = {}
        if parsed.get_backend_name() == 'sqlite':
            connect_args['check_same_thread'] = False
            if parsed.database and parsed.database != ':memory:':
                Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(url, echo=echo, connect_args=connect_args)
        if parsed.get_backend_name() == 'sqlite':
            event.listen(self.engine, 'connect', _set_sqlite_pragmas)

    def create_all(self):
        metadata.create_all(self.engine)
        logger.debug(f'Schema ready at {self.engine.url!r}')

    def dispose(self):
        self.engine.dispose()
