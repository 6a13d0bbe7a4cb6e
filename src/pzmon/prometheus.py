"""Prometheus metrics for PZMon"""

from prometheus_client import Counter, Gauge, Histogram


# ============================================================================
# Ingestion Metrics
# ============================================================================

log_entries_ingested_total = Counter(
    'pzmon_log_entries_ingested_total',
    'Total number of log entries stored',
    ['parser_type'],
)

log_parse_errors_total = Counter(
    'pzmon_log_parse_errors_total',
    'Total number of malformed log lines skipped',
    ['parser_type'],
)

log_insert_failures_total = Counter(
    'pzmon_log_insert_failures_total',
    'Total number of parsed entries that failed to store',
    ['source'],
)

log_bytes_processed_total = Counter('pzmon_log_bytes_processed_total', 'Total number of log bytes consumed')

ingest_duration_seconds = Histogram(
    'pzmon_ingest_duration_seconds',
    'Time spent in one parse-and-ingest cycle',
    ['parser_type'],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    # 5ms to 30s - a cycle is usually a handful of lines, a cold start reads whole files
)

file_rotations_total = Counter('pzmon_file_rotations_total', 'Total number of log file rotations handled')


# ============================================================================
# Watcher / Stream Metrics
# ============================================================================

watched_files = Gauge('pzmon_watched_files', 'Number of log files currently registered with the watcher')

stream_entries_queued_total = Counter(
    'pzmon_stream_entries_queued_total', 'Total number of entries queued for streaming'
)

stream_entries_dropped_total = Counter(
    'pzmon_stream_entries_dropped_total', 'Total number of stream entries dropped because a buffer was full'
)


# ============================================================================
# Monitor Metrics
# ============================================================================

monitor_samples_total = Counter('pzmon_monitor_samples_total', 'Total number of telemetry samples stored')

monitor_sample_errors_total = Counter('pzmon_monitor_sample_errors_total', 'Total number of failed telemetry samples')

spikes_detected_total = Counter(
    'pzmon_spikes_detected_total',
    'Total number of spikes detected',
    ['metric_type', 'severity'],
)

host_cpu_percent = Gauge('pzmon_host_cpu_percent', 'CPU usage of the last sample')
host_memory_percent = Gauge('pzmon_host_memory_percent', 'Memory usage of the last sample')
host_swap_percent = Gauge('pzmon_host_swap_percent', 'Swap usage of the last sample')
host_network_rx_bytes_per_second = Gauge('pzmon_host_network_rx_bytes_per_second', 'Primary interface receive rate')
host_network_tx_bytes_per_second = Gauge('pzmon_host_network_tx_bytes_per_second', 'Primary interface transmit rate')


# ============================================================================
# HTTP Metrics
# ============================================================================

http_responses_total = Counter(
    'pzmon_http_responses_total',
    'Total number of HTTP responses by status code',
    ['endpoint', 'status_code'],
)


# ============================================================================
# Helper Functions
# ============================================================================


def record_ingest(parser_type: str, entries_added: int, parse_errors: int, bytes_processed: int, duration: float):
    """
    Record metrics for one parse-and-ingest cycle.

    Args:
        parser_type: Log dialect of the file
        entries_added: Entries stored
        parse_errors: Malformed lines skipped
        bytes_processed: Bytes consumed
        duration: Cycle duration in seconds
    """
    log_entries_ingested_total.labels(parser_type=parser_type).inc(entries_added)
    if parse_errors:
        log_parse_errors_total.labels(parser_type=parser_type).inc(parse_errors)
    log_bytes_processed_total.inc(bytes_processed)
    ingest_duration_seconds.labels(parser_type=parser_type).observe(duration)


def record_insert_failure(source: str):
    log_insert_failures_total.labels(source=source).inc()


def record_sample(cpu: float | None, memory: float | None, swap: float | None, rx: float | None, tx: float | None):
    """Record a stored telemetry sample and mirror its values into gauges."""
    monitor_samples_total.inc()
    for gauge, value in (
        (host_cpu_percent, cpu),
        (host_memory_percent, memory),
        (host_swap_percent, swap),
        (host_network_rx_bytes_per_second, rx),
        (host_network_tx_bytes_per_second, tx),
    ):
        if value is not None:
            gauge.set(value)


def record_spike(metric_type: str, severity: str):
    spikes_detected_total.labels(metric_type=metric_type, severity=severity).inc()


def record_http_response(endpoint: str, status_code: int):
    http_responses_total.labels(endpoint=endpoint, status_code=str(status_code)).inc()
