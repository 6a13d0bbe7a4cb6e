import logging
import platform
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import anyio
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError

from pzmon import prometheus as prom
from pzmon.__version__ import __version__
from pzmon.models import (
    HealthResponse,
    IngestSummary,
    LogFilters,
    LogLevel,
    LogPage,
    LogSource,
    LogStats,
    MetricBucket,
    MetricType,
    MonitorConfig,
    MonitorConfigUpdate,
    MonitorStatus,
    SystemMetric,
    SystemSpike,
    UnifiedLogEntry,
    WatchStatus,
)
from pzmon.runtime import Runtime
from pzmon.utils import get_bool_env, get_list_env, setup_logging, utcnow


setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A runtime placed on app.state before startup (tests, embedding) is used as is
    runtime = getattr(app.state, 'runtime', None)
    owned = runtime is None
    if owned:
        runtime = Runtime.from_env()
        app.state.runtime = runtime
    logger.info(f'Database: {runtime.settings.database_url}')

    if get_bool_env('PZMON_WATCH', False):
        servers = get_list_env('PZMON_WATCH_SERVERS') or None
        await anyio.to_thread.run_sync(runtime.watcher.start_watching_all, servers)
    if get_bool_env('PZMON_MONITOR', False):
        await anyio.to_thread.run_sync(runtime.monitor.start)

    yield

    logger.info('Shutting down pzmon')
    if owned:
        await anyio.to_thread.run_sync(runtime.stop)
        app.state.runtime = None


app = FastAPI(
    title='PZMon',
    version=__version__,
    description="""
    Project Zomboid log ingestion and host monitoring.

    ## Endpoints

    * `/v1/logs` - Query stored log records by source with filters
    * `/v1/logs/since` - Newest entries of a server across sources
    * `/v1/logs/stream` - Drain entries queued by the live watcher
    * `/v1/monitor/*` - Host samples, spikes and monitoring configuration
    * `/health` - Service health
    * `/metrics` - Prometheus metrics
    """,
    lifespan=lifespan,
    docs_url='/docs',
    redoc_url='/redoc',
)


def get_runtime() -> Runtime:
    runtime = getattr(app.state, 'runtime', None)
    if runtime is None:
        raise HTTPException(status_code=503, detail='Service is not initialized')
    return runtime


@app.get('/health', tags=['General'], response_model=HealthResponse)
async def health():
    runtime = get_runtime()
    prom.record_http_response('/health', 200)
    return HealthResponse(
        status='ok',
        app_version=__version__,
        python_version=platform.python_version(),
        database_url=runtime.database.engine.url.render_as_string(hide_password=True),
        watched_files=len(runtime.watcher.get_watch_status()),
        monitor_running=runtime.monitor.is_running,
    )


@app.get('/metrics', tags=['Monitoring'])
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ============================================================================
# Logs
# ============================================================================


@app.get('/v1/logs', tags=['Logs'], response_model=LogPage[UnifiedLogEntry])
async def get_logs(
    source: LogSource = Query(LogSource.BACKUP, description='Store to query'),
    server: str | None = Query(None, description='Exact server name'),
    event_type: str | None = Query(None, description='Exact event type'),
    username: str | None = Query(None, description='Case-insensitive substring of the username'),
    level: LogLevel | None = Query(None),
    start: datetime | None = Query(None, description='Inclusive lower time bound (ISO 8601)'),
    end: datetime | None = Query(None, description='Inclusive upper time bound (ISO 8601)'),
    limit: int = Query(100, ge=1, le=10000),
    offset: int = Query(0, ge=0),
):
    runtime = get_runtime()
    filters = LogFilters(
        source=source,
        server=server,
        event_type=event_type,
        username=username,
        level=level,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    page = await anyio.to_thread.run_sync(runtime.log_manager.get_unified_logs, filters)
    prom.record_http_response('/v1/logs', 200)
    return page


@app.get('/v1/logs/since', tags=['Logs'], response_model=list[UnifiedLogEntry])
async def get_logs_since(
    server: str = Query(..., description='Server name'),
    sources: list[LogSource] | None = Query(None, description='Sources to include (default: game logs)'),
    since: datetime | None = Query(None, description='Only entries strictly newer than this time'),
    limit: int = Query(100, ge=1, le=1000),
):
    runtime = get_runtime()
    entries = await anyio.to_thread.run_sync(
        runtime.log_manager.get_unified_logs_since, server, sources or None, since, limit
    )
    prom.record_http_response('/v1/logs/since', 200)
    return entries


@app.get('/v1/logs/stats', tags=['Logs'], response_model=LogStats)
async def get_logs_stats(server: str | None = Query(None)):
    runtime = get_runtime()
    stats = await anyio.to_thread.run_sync(runtime.log_manager.get_log_stats, server)
    prom.record_http_response('/v1/logs/stats', 200)
    return stats


@app.get('/v1/logs/stream', tags=['Logs'], response_model=list[UnifiedLogEntry])
async def drain_stream(
    server: str = Query(..., description='Server name (case-insensitive)'),
    max_items: int | None = Query(None, ge=1, description='Maximum number of entries to drain'),
):
    """Remove and return entries queued by the watcher since the last call."""
    runtime = get_runtime()
    prom.record_http_response('/v1/logs/stream', 200)
    return runtime.stream.drain(server, max_items)


@app.post('/v1/logs/ingest', tags=['Logs'], response_model=IngestSummary)
async def ingest_logs(servers: list[str] | None = Query(None, description="Server names, 'all' or 'running'")):
    """Run a one-shot ingestion sweep over every known log file."""
    runtime = get_runtime()
    summary = await anyio.to_thread.run_sync(runtime.watcher.ingest_all_logs, servers or None)
    prom.record_http_response('/v1/logs/ingest', 200)
    return summary


@app.get('/v1/watch/status', tags=['Logs'], response_model=list[WatchStatus])
async def watch_status():
    runtime = get_runtime()
    return runtime.watcher.get_watch_status()


# ============================================================================
# Monitor
# ============================================================================


@app.get('/v1/monitor/status', tags=['Monitor'], response_model=MonitorStatus)
async def monitor_status():
    runtime = get_runtime()
    return await anyio.to_thread.run_sync(runtime.monitor.get_status)


@app.get('/v1/monitor/current', tags=['Monitor'], response_model=SystemMetric)
async def monitor_current():
    runtime = get_runtime()
    metric = await anyio.to_thread.run_sync(runtime.monitor_manager.get_current_metric)
    if metric is None:
        prom.record_http_response('/v1/monitor/current', 404)
        raise HTTPException(status_code=404, detail='No samples recorded yet')
    prom.record_http_response('/v1/monitor/current', 200)
    return metric


@app.get('/v1/monitor/history', tags=['Monitor'], response_model=list[MetricBucket])
async def monitor_history(
    start: datetime | None = Query(None, description='Range start, default one hour ago'),
    end: datetime | None = Query(None, description='Range end, default now'),
    interval: int = Query(60, ge=1, le=86400, description='Bucket width in seconds'),
):
    runtime = get_runtime()
    end = end or utcnow()
    start = start or end - timedelta(hours=1)
    if start > end:
        raise HTTPException(status_code=400, detail='start must not be after end')
    buckets = await anyio.to_thread.run_sync(runtime.monitor_manager.get_metrics_timeseries, start, end, interval)
    prom.record_http_response('/v1/monitor/history', 200)
    return buckets


@app.get('/v1/monitor/spikes', tags=['Monitor'], response_model=list[SystemSpike])
async def monitor_spikes(
    hours: float = Query(24, gt=0, le=24 * 365),
    limit: int = Query(100, ge=1, le=1000),
    metric_type: MetricType | None = Query(None),
):
    runtime = get_runtime()
    return await anyio.to_thread.run_sync(runtime.monitor_manager.get_recent_spikes, hours, limit, metric_type)


@app.get('/v1/monitor/config', tags=['Monitor'], response_model=MonitorConfig)
async def get_monitor_config():
    runtime = get_runtime()
    return await anyio.to_thread.run_sync(runtime.monitor_manager.get_config)


@app.patch('/v1/monitor/config', tags=['Monitor'], response_model=MonitorConfig)
async def patch_monitor_config(update: MonitorConfigUpdate):
    """Apply a partial configuration update; the running monitor picks it up immediately."""
    runtime = get_runtime()
    try:
        config = await anyio.to_thread.run_sync(runtime.monitor.update_config, update)
    except ValidationError as e:
        prom.record_http_response('/v1/monitor/config', 400)
        raise HTTPException(status_code=400, detail=str(e)) from e
    prom.record_http_response('/v1/monitor/config', 200)
    return config


@app.post('/v1/monitor/cleanup', tags=['Monitor'])
async def monitor_cleanup(days: int | None = Query(None, ge=1, description='Retention in days')):
    runtime = get_runtime()
    deleted = await anyio.to_thread.run_sync(runtime.monitor_manager.cleanup_old_metrics, days)
    return {'deleted': deleted}
