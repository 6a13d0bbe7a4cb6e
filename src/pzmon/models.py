"""Pydantic models for log records, monitoring samples and API responses"""

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class ParserType(str, Enum):
    """Log dialects the parser set understands."""

    BACKUP = 'backup'
    RESTORE = 'restore'
    ROLLBACK = 'rollback'
    USER = 'user'
    CHAT = 'chat'
    PERK = 'perk'
    SERVER = 'server'
    PVP = 'pvp'
    ADMIN = 'admin'
    CMD = 'cmd'


class LogSource(str, Enum):
    """Stores that ingested records land in, and the sources of the unified view."""

    BACKUP = 'backup'
    PLAYER = 'player'
    SERVER = 'server'
    CHAT = 'chat'
    PVP = 'pvp'
    SKILL = 'skill'


class LogLevel(str, Enum):
    INFO = 'INFO'
    ERROR = 'ERROR'
    WARN = 'WARN'
    DEBUG = 'DEBUG'

    @classmethod
    def normalize(cls, value: str | None) -> 'LogLevel':
        """Map free-form level text (info, WARNING, err...) onto the closed set."""
        text = (value or '').strip().upper()
        if text.startswith('ERR') or text in ('SEVERE', 'FATAL', 'CRITICAL'):
            return cls.ERROR
        if text.startswith('WARN'):
            return cls.WARN
        if text in ('DEBUG', 'TRACE'):
            return cls.DEBUG
        return cls.INFO


class MetricType(str, Enum):
    CPU = 'cpu'
    MEMORY = 'memory'
    SWAP = 'swap'
    NETWORK = 'network'


class SpikeSeverity(str, Enum):
    WARNING = 'warning'
    CRITICAL = 'critical'


PARSER_SOURCES: dict[ParserType, LogSource] = {
    ParserType.BACKUP: LogSource.BACKUP,
    ParserType.RESTORE: LogSource.BACKUP,
    ParserType.ROLLBACK: LogSource.BACKUP,
    ParserType.USER: LogSource.PLAYER,
    ParserType.ADMIN: LogSource.PLAYER,
    ParserType.CMD: LogSource.PLAYER,
    ParserType.CHAT: LogSource.CHAT,
    ParserType.PERK: LogSource.SKILL,
    ParserType.SERVER: LogSource.SERVER,
    ParserType.PVP: LogSource.PVP,
}


# ============================================================================
# Parser output
# ============================================================================


class RawEvent(BaseModel):
    """One event produced by a parser before it is mapped onto a store."""

    time: datetime
    event_type: str
    level: LogLevel = LogLevel.INFO
    message: str = ''
    server: str | None = None
    username: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ParseResult(BaseModel):
    """Output of one parse_lines call.

    Attributes:
        entries: Parsed events in input order
        bytes_processed: UTF-8 bytes consumed from the batch, terminators included
        start_offset: Byte offset the batch started at
        errors: One message per malformed line, e.g. 'Line 3: ...'
    """

    entries: list[RawEvent] = Field(default_factory=list)
    bytes_processed: int = 0
    start_offset: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def end_offset(self) -> int:
        """Byte-offset watermark: where the next read should start."""
        return self.start_offset + self.bytes_processed


class IngestResult(BaseModel):
    """Result of parse_and_ingest_file"""

    entries_processed: int = Field(0, description='Entries the parser produced')
    entries_added: int = Field(0, description='Entries actually stored')
    bytes_processed: int = Field(0, description='Bytes consumed this cycle')
    errors: list[str] = Field(default_factory=list)


class IngestSummary(BaseModel):
    """Result of a one-shot sweep over every known log file"""

    files: int = 0
    total_entries: int = 0
    errors: list[str] = Field(default_factory=list)


class LogFilePosition(BaseModel):
    file_path: str
    last_position: int = 0
    last_modified: datetime | None = None
    last_ingested: datetime | None = None
    file_size: int | None = None
    checksum: str | None = None
    parser_type: ParserType


# ============================================================================
# Stored records
# ============================================================================


class BackupLogEntry(BaseModel):
    id: int | None = None
    time: datetime
    log_type: ParserType = ParserType.BACKUP
    event_type: str = 'info'
    level: LogLevel = LogLevel.INFO
    server: str | None = None
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class PZPlayerEvent(BaseModel):
    id: int | None = None
    time: datetime
    server: str
    event_type: str
    username: str
    ip_address: str | None = None
    level: LogLevel = LogLevel.INFO
    message: str = ''
    details: dict[str, Any] = Field(default_factory=dict)


class PZServerEvent(BaseModel):
    id: int | None = None
    time: datetime
    server: str
    event_type: str
    category: str | None = None
    level: LogLevel = LogLevel.INFO
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class PZSkillSnapshot(BaseModel):
    id: int | None = None
    time: datetime
    server: str
    username: str
    event_type: str = 'snapshot'
    hours_survived: int | None = None
    skills: dict[str, int] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)


class PZChatMessage(BaseModel):
    id: int | None = None
    time: datetime
    server: str
    username: str
    chat_type: str = 'Local'
    message: str
    coordinates: dict[str, float] | None = None


class PZPVPEvent(BaseModel):
    id: int | None = None
    time: datetime
    server: str
    event_type: str
    attacker: str | None = None
    victim: str | None = None
    weapon: str | None = None
    damage: float | None = None
    level: LogLevel = LogLevel.INFO
    message: str = ''
    details: dict[str, Any] = Field(default_factory=dict)


def new_entry_id(source: str) -> str:
    return f'{source}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}'


class UnifiedLogEntry(BaseModel):
    """Common projection of every store, used by the unified view and the live stream."""

    id: str
    time: datetime
    source: LogSource
    server: str | None = None
    event_type: str
    level: LogLevel | None = None
    username: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None


T = TypeVar('T')


class LogPage(BaseModel, Generic[T]):
    """One page of records plus the total matching the filters."""

    items: list[T] = Field(default_factory=list)
    total: int = 0


class LogFilters(BaseModel):
    """Filters accepted by every query operation.

    Fields that do not apply to a store are ignored by that store.
    """

    source: LogSource | None = None
    server: str | None = None
    event_type: str | None = None
    username: str | None = None
    level: LogLevel | None = None
    start: datetime | None = Field(None, description='Inclusive lower bound on time')
    end: datetime | None = Field(None, description='Inclusive upper bound on time')
    limit: int = Field(100, ge=1, le=10000)
    offset: int = Field(0, ge=0)


class LogStats(BaseModel):
    total_logs: int = 0
    unique_players: int = 0
    error_count: int = 0
    warning_count: int = 0
    login_count: int = 0
    death_count: int = 0
    chat_count: int = 0


# ============================================================================
# Monitoring
# ============================================================================


class CpuCoreLoad(BaseModel):
    core: int
    percent: float


class SystemMetric(BaseModel):
    """One telemetry sample. Rates are None on the first sample."""

    id: int | None = None
    time: datetime
    cpu_percent: float | None = None
    cpu_cores: list[CpuCoreLoad] | None = None
    memory_used_bytes: int | None = None
    memory_total_bytes: int | None = None
    memory_percent: float | None = None
    swap_used_bytes: int | None = None
    swap_total_bytes: int | None = None
    swap_percent: float | None = None
    network_interface: str | None = None
    network_rx_bytes: int | None = None
    network_tx_bytes: int | None = None
    network_rx_sec: float | None = None
    network_tx_sec: float | None = None

    @property
    def network_total_sec(self) -> float | None:
        if self.network_rx_sec is None or self.network_tx_sec is None:
            return None
        return self.network_rx_sec + self.network_tx_sec


class SystemSpike(BaseModel):
    id: int | None = None
    time: datetime
    metric_type: MetricType
    severity: SpikeSeverity
    previous_value: float | None = None
    current_value: float
    change_percent: float | None = None
    sustained_for_seconds: int = 0
    details: dict[str, Any] = Field(default_factory=dict)


class MonitorConfig(BaseModel):
    """Persisted monitoring configuration; thresholds are live-reloadable."""

    enabled: bool = True
    polling_interval_seconds: int = Field(5, ge=1, le=3600)
    data_retention_days: int = Field(30, ge=1)
    cpu_spike_threshold_percent: float = Field(25.0, gt=0)
    cpu_spike_sustained_seconds: int = Field(15, gt=0)
    cpu_critical_threshold: float | None = 90.0
    memory_spike_threshold_percent: float = Field(20.0, gt=0)
    memory_spike_sustained_seconds: int = Field(10, gt=0)
    memory_critical_threshold: float | None = 90.0
    swap_spike_threshold_percent: float = Field(30.0, gt=0)
    swap_spike_sustained_seconds: int = Field(10, gt=0)
    swap_critical_threshold: float | None = 50.0
    network_spike_threshold_percent: float = Field(50.0, gt=0)
    network_spike_sustained_seconds: int = Field(10, gt=0)
    network_critical_threshold: float | None = None
    updated_at: datetime | None = None

    def threshold_percent(self, metric: MetricType) -> float:
        return getattr(self, f'{metric.value}_spike_threshold_percent')

    def sustained_seconds(self, metric: MetricType) -> int:
        return getattr(self, f'{metric.value}_spike_sustained_seconds')

    def critical_threshold(self, metric: MetricType) -> float | None:
        return getattr(self, f'{metric.value}_critical_threshold')


class MonitorConfigUpdate(BaseModel):
    """Partial MonitorConfig; only fields that are set are applied."""

    enabled: bool | None = None
    polling_interval_seconds: int | None = Field(None, ge=1, le=3600)
    data_retention_days: int | None = Field(None, ge=1)
    cpu_spike_threshold_percent: float | None = Field(None, gt=0)
    cpu_spike_sustained_seconds: int | None = Field(None, gt=0)
    cpu_critical_threshold: float | None = None
    memory_spike_threshold_percent: float | None = Field(None, gt=0)
    memory_spike_sustained_seconds: int | None = Field(None, gt=0)
    memory_critical_threshold: float | None = None
    swap_spike_threshold_percent: float | None = Field(None, gt=0)
    swap_spike_sustained_seconds: int | None = Field(None, gt=0)
    swap_critical_threshold: float | None = None
    network_spike_threshold_percent: float | None = Field(None, gt=0)
    network_spike_sustained_seconds: int | None = Field(None, gt=0)
    network_critical_threshold: float | None = None


class MetricBucket(BaseModel):
    """Aggregated samples for one time bucket"""

    bucket: datetime
    samples: int
    avg_cpu: float | None = None
    max_cpu: float | None = None
    avg_memory: float | None = None
    max_memory: float | None = None
    avg_swap: float | None = None
    avg_network_rx: float | None = None
    avg_network_tx: float | None = None


class MonitorStatus(BaseModel):
    is_running: bool
    last_sample_time: datetime | None = None
    total_samples: int = 0
    total_spikes: int = 0
    last_error: str | None = None
    config: MonitorConfig | None = None


class WatchStatus(BaseModel):
    key: str
    file_path: str
    parser_type: ParserType
    server: str
    phase: str
    last_ingest_time: datetime | None = None


class HealthResponse(BaseModel):
    status: str = Field(..., examples=['ok'])
    app_version: str
    python_version: str
    database_url: str
    watched_files: int = 0
    monitor_running: bool = False


# ============================================================================
# details accessors
# ============================================================================


def detail_str(details: dict[str, Any] | None, key: str) -> str | None:
    if not details:
        return None
    value = details.get(key)
    return None if value is None else str(value)


def detail_int(details: dict[str, Any] | None, key: str) -> int | None:
    if not details:
        return None
    value = details.get(key)
    try:
        return None if value is None else int(value)
    except (TypeError, ValueError):
        return None


def coordinates_of(details: dict[str, Any] | None) -> dict[str, float] | None:
    """Return {'x','y','z'} coordinates stored in details, if any."""
    if not details:
        return None
    coords = details.get('coordinates')
    if isinstance(coords, dict) and {'x', 'y', 'z'} <= set(coords):
        return {axis: float(coords[axis]) for axis in ('x', 'y', 'z')}
    return None


def chat_type_of(details: dict[str, Any] | None) -> str:
    return detail_str(details, 'chat_type') or 'Local'


def skill_hours_of(details: dict[str, Any] | None) -> int | None:
    return detail_int(details, 'hours_survived')


def skills_of(details: dict[str, Any] | None) -> dict[str, int]:
    if not details or not isinstance(details.get('skills'), dict):
        return {}
    return {name: int(level) for name, level in details['skills'].items()}
