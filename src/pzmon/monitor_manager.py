"""Persistence of monitoring configuration, samples and spikes."""

import logging
from collections import defaultdict
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select

from pzmon.db import Database, monitor_config, system_metrics, system_spikes
from pzmon.models import (
    MetricBucket,
    MetricType,
    MonitorConfig,
    MonitorConfigUpdate,
    SystemMetric,
    SystemSpike,
)
from pzmon.utils import ensure_utc, utcnow


logger = logging.getLogger(__name__)

CONFIG_ROW_ID = 1


def _avg(values: list[float]) -> float | None:
    return round(sum(values) / len(values), 2) if values else None


def _max(values: list[float]) -> float | None:
    return round(max(values), 2) if values else None


class MonitorManager:
    def __init__(self, database: Database):
        self.database = database

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> MonitorConfig:
        """Stored configuration, or the defaults when nothing was saved yet."""
        with self.database.engine.connect() as conn:
            row = conn.execute(select(monitor_config).where(monitor_config.c.id == CONFIG_ROW_ID)).first()
        if row is None:
            return MonitorConfig()
        values = dict(row._mapping)
        values.pop('id', None)
        return MonitorConfig(**values)

    def update_config(self, update: MonitorConfigUpdate | dict) -> MonitorConfig:
        """Merge the fields that are set into the stored configuration (last writer wins)."""
        if isinstance(update, dict):
            update = MonitorConfigUpdate(**update)
        changes = update.model_dump(exclude_unset=True)

        with self.database.engine.begin() as conn:
            row = conn.execute(select(monitor_config).where(monitor_config.c.id == CONFIG_ROW_ID)).first()
            current = MonitorConfig(**{k: v for k, v in row._mapping.items() if k != 'id'}) if row else MonitorConfig()
            merged = MonitorConfig(**{**current.model_dump(), **changes, 'updated_at': utcnow()})
            values = merged.model_dump()
            if row is None:
                conn.execute(monitor_config.insert().values(id=CONFIG_ROW_ID, **values))
            else:
                conn.execute(monitor_config.update().where(monitor_config.c.id == CONFIG_ROW_ID).values(**values))

        logger.info(f'Monitor config updated: {", ".join(sorted(changes)) or "no changes"}')
        return merged

    # ------------------------------------------------------------------
    # Samples and spikes
    # ------------------------------------------------------------------

    def record_metric(self, metric: SystemMetric) -> SystemMetric:
        values = metric.model_dump(exclude={'id'})
        with self.database.engine.begin() as conn:
            result = conn.execute(system_metrics.insert().values(**values))
            metric_id = result.inserted_primary_key[0]
        return metric.model_copy(update={'id': metric_id})

    def record_spike(self, spike: SystemSpike) -> SystemSpike:
        values = spike.model_dump(exclude={'id'})
        values['metric_type'] = spike.metric_type.value
        values['severity'] = spike.severity.value
        with self.database.engine.begin() as conn:
            result = conn.execute(system_spikes.insert().values(**values))
            spike_id = result.inserted_primary_key[0]
        return spike.model_copy(update={'id': spike_id})

    def get_latest_metrics(self, limit: int = 100) -> list[SystemMetric]:
        """Newest samples first."""
        with self.database.engine.connect() as conn:
            rows = conn.execute(
                select(system_metrics).order_by(system_metrics.c.time.desc(), system_metrics.c.id.desc()).limit(limit)
            ).all()
        return [SystemMetric(**row._mapping) for row in rows]

    def get_current_metric(self) -> SystemMetric | None:
        latest = self.get_latest_metrics(limit=1)
        return latest[0] if latest else None

    def get_metrics_range(self, start: datetime, end: datetime) -> list[SystemMetric]:
        with self.database.engine.connect() as conn:
            rows = conn.execute(
                select(system_metrics)
                .where(system_metrics.c.time >= start, system_metrics.c.time <= end)
                .order_by(system_metrics.c.time)
            ).all()
        return [SystemMetric(**row._mapping) for row in rows]

    def get_metrics_timeseries(self, start: datetime, end: datetime, interval_seconds: int = 60) -> list[MetricBucket]:
        """
        Aggregate samples in [start, end] into fixed buckets.

        Args:
            start: Range start (inclusive)
            end: Range end (inclusive)
            interval_seconds: Bucket width; buckets are aligned to the Unix epoch

        Returns:
            One MetricBucket per non-empty bucket, oldest first
        """
        if interval_seconds <= 0:
            raise ValueError('interval_seconds must be positive')

        buckets: dict[int, list[SystemMetric]] = defaultdict(list)
        for metric in self.get_metrics_range(start, end):
            epoch = int(metric.time.timestamp())
            buckets[epoch - epoch % interval_seconds].append(metric)

        series = []
        for bucket_start in sorted(buckets):
            samples = buckets[bucket_start]
            cpu = [m.cpu_percent for m in samples if m.cpu_percent is not None]
            memory = [m.memory_percent for m in samples if m.memory_percent is not None]
            swap = [m.swap_percent for m in samples if m.swap_percent is not None]
            rx = [m.network_rx_sec for m in samples if m.network_rx_sec is not None]
            tx = [m.network_tx_sec for m in samples if m.network_tx_sec is not None]
            series.append(
                MetricBucket(
                    bucket=datetime.fromtimestamp(bucket_start, UTC),
                    samples=len(samples),
                    avg_cpu=_avg(cpu),
                    max_cpu=_max(cpu),
                    avg_memory=_avg(memory),
                    max_memory=_max(memory),
                    avg_swap=_avg(swap),
                    avg_network_rx=_avg(rx),
                    avg_network_tx=_avg(tx),
                )
            )
        return series

    def get_recent_spikes(
        self, hours: float = 24, limit: int = 100, metric_type: MetricType | None = None
    ) -> list[SystemSpike]:
        since = utcnow() - timedelta(hours=hours)
        conditions = [system_spikes.c.time >= since]
        if metric_type is not None:
            conditions.append(system_spikes.c.metric_type == metric_type.value)
        with self.database.engine.connect() as conn:
            rows = conn.execute(
                select(system_spikes).where(*conditions).order_by(system_spikes.c.time.desc()).limit(limit)
            ).all()
        return [SystemSpike(**{k: v for k, v in row._mapping.items() if v is not None}) for row in rows]

    def cleanup_old_metrics(self, days: int | None = None, now: datetime | None = None) -> int:
        """
        Delete samples and spikes older than the retention period.

        Args:
            days: Retention in days; defaults to the configured data_retention_days
            now: Reference time, defaults to the current time

        Returns:
            Number of rows deleted across both tables
        """
        if days is None:
            days = self.get_config().data_retention_days
        cutoff = ensure_utc(now or utcnow()) - timedelta(days=days)
        with self.database.engine.begin() as conn:
            metrics_deleted = conn.execute(delete(system_metrics).where(system_metrics.c.time < cutoff)).rowcount
            spikes_deleted = conn.execute(delete(system_spikes).where(system_spikes.c.time < cutoff)).rowcount
        deleted = (metrics_deleted or 0) + (spikes_deleted or 0)
        if deleted:
            logger.info(f'Cleaned up {metrics_deleted} samples and {spikes_deleted} spikes older than {days} days')
        return deleted
