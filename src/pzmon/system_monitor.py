"""Periodic host sampling with spike detection and retention cleanup.

SystemMonitorService is either stopped or running. While running, a sampling
thread stores one sample per polling interval (the first one synchronously
inside start()) and feeds it to the spike detector; a second thread prunes
old samples once an hour.
"""

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from pzmon import prometheus as prom
from pzmon.models import CpuCoreLoad, MonitorConfig, MonitorConfigUpdate, MonitorStatus, SystemMetric
from pzmon.monitor_manager import MonitorManager
from pzmon.sampler import PsutilSampler, RawTelemetry, select_primary_interface
from pzmon.spike_detector import SpikeDetector
from pzmon.utils import utcnow


logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 3600


class MonitorState(str, Enum):
    STOPPED = 'stopped'
    RUNNING = 'running'


class SystemMonitorService:
    def __init__(
        self,
        manager: MonitorManager,
        sampler=None,
        detector: SpikeDetector | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self.manager = manager
        self._sampler = sampler
        self.detector = detector or SpikeDetector()
        self.clock = clock
        self.now = now
        self.cleanup_interval_seconds = cleanup_interval_seconds

        self._state = MonitorState.STOPPED
        self._config: MonitorConfig | None = None
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.RLock()
        self._sample_lock = threading.Lock()

        self._previous_counters: tuple[str, int, int, float] | None = None
        self._last_sample_time: datetime | None = None
        self._last_error: str | None = None
        self._total_samples = 0
        self._total_spikes = 0

    @property
    def sampler(self):
        if self._sampler is None:
            self._sampler = PsutilSampler()
        return self._sampler

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == MonitorState.RUNNING

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start sampling with the stored configuration.

        Returns:
            True if the service is running afterwards (False when monitoring is disabled)
        """
        with self._lock:
            if self._state == MonitorState.RUNNING:
                return True
            config = self.manager.get_config()
            self._config = config
            if not config.enabled:
                logger.info('System monitoring is disabled, not starting')
                return False
            self.detector.update_config(config)
            self._stop_event = threading.Event()
            self._state = MonitorState.RUNNING

        logger.info(f'System monitor started (interval {config.polling_interval_seconds}s)')
        self.collect_sample()

        threads = [
            threading.Thread(
                target=self._sample_loop,
                args=(self._stop_event, config.polling_interval_seconds),
                name='pzmon-sampler',
                daemon=True,
            ),
            threading.Thread(
                target=self._cleanup_loop,
                args=(self._stop_event,),
                name='pzmon-cleanup',
                daemon=True,
            ),
        ]
        with self._lock:
            self._threads = threads
        for thread in threads:
            thread.start()
        return True

    def stop(self):
        """Stop sampling; a no-op when already stopped."""
        with self._lock:
            if self._state == MonitorState.STOPPED:
                return
            self._state = MonitorState.STOPPED
            self._stop_event.set()
            threads, self._threads = self._threads, []
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout=10)
        logger.info('System monitor stopped')

    def update_config(self, update: MonitorConfigUpdate | dict | None = None) -> MonitorConfig:
        """Persist a partial update (if given) and apply the stored configuration.

        The sampling loop is restarted only when the enabled flag or the
        polling interval changed; thresholds apply to the next sample.
        """
        old = self._config or self.manager.get_config()
        new = self.manager.update_config(update) if update else self.manager.get_config()
        self._config = new
        self.detector.update_config(new)

        if self.is_running:
            if not new.enabled:
                self.stop()
            elif new.polling_interval_seconds != old.polling_interval_seconds:
                self.stop()
                self.start()
        elif new.enabled and not old.enabled:
            self.start()
        return new

    def _sample_loop(self, stop_event: threading.Event, interval: float):
        next_tick = time.monotonic() + interval
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.collect_sample()
            next_tick += interval
            if next_tick < time.monotonic():
                next_tick = time.monotonic() + interval

    def _cleanup_loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.cleanup_interval_seconds):
            try:
                config = self._config or self.manager.get_config()
                self.manager.cleanup_old_metrics(config.data_retention_days)
            except Exception as e:
                logger.error(f'Metric cleanup failed: {e}')

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def collect_sample(self) -> SystemMetric | None:
        """Take, store and analyse one sample; errors are kept in last_error."""
        with self._sample_lock:
            try:
                metric = self.build_metric(self.sampler.read())
                stored = self.manager.record_metric(metric)
                spikes = self.detector.process_metric(stored)
                for spike in spikes:
                    self.manager.record_spike(spike)
                    prom.record_spike(spike.metric_type.value, spike.severity.value)
                    logger.warning(
                        f'{spike.severity.value.upper()} {spike.metric_type.value} spike: '
                        f'{spike.previous_value} -> {spike.current_value}'
                    )
            except Exception as e:
                self._last_error = str(e)
                prom.monitor_sample_errors_total.inc()
                logger.error(f'Failed to collect system sample: {e}')
                return None

            self._total_samples += 1
            self._total_spikes += len(spikes)
            self._last_sample_time = stored.time
            self._last_error = None
            prom.record_sample(
                stored.cpu_percent,
                stored.memory_percent,
                stored.swap_percent,
                stored.network_rx_sec,
                stored.network_tx_sec,
            )
            return stored

    def build_metric(self, raw: RawTelemetry) -> SystemMetric:
        """Turn raw counters into a sample, computing network rates from the previous read."""
        iface = select_primary_interface(raw.interfaces)
        rx_sec = tx_sec = None
        if iface is not None:
            tick = self.clock()
            previous = self._previous_counters
            if previous and previous[0] == iface.name:
                elapsed = tick - previous[3]
                rx_delta = iface.rx_bytes - previous[1]
                tx_delta = iface.tx_bytes - previous[2]
                if elapsed > 0 and rx_delta >= 0 and tx_delta >= 0:
                    rx_sec = round(rx_delta / elapsed, 2)
                    tx_sec = round(tx_delta / elapsed, 2)
            self._previous_counters = (iface.name, iface.rx_bytes, iface.tx_bytes, tick)

        return SystemMetric(
            time=self.now(),
            cpu_percent=raw.cpu_percent,
            cpu_cores=[CpuCoreLoad(core=index, percent=load) for index, load in enumerate(raw.cpu_cores)],
            memory_used_bytes=raw.memory_used_bytes,
            memory_total_bytes=raw.memory_total_bytes,
            memory_percent=raw.memory_percent,
            swap_used_bytes=raw.swap_used_bytes,
            swap_total_bytes=raw.swap_total_bytes,
            swap_percent=raw.swap_percent,
            network_interface=iface.name if iface else None,
            network_rx_bytes=iface.rx_bytes if iface else None,
            network_tx_bytes=iface.tx_bytes if iface else None,
            network_rx_sec=rx_sec,
            network_tx_sec=tx_sec,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> MonitorStatus:
        return MonitorStatus(
            is_running=self.is_running,
            last_sample_time=self._last_sample_time,
            total_samples=self._total_samples,
            total_spikes=self._total_spikes,
            last_error=self._last_error,
            config=self._config or self.manager.get_config(),
        )

    def get_spike_detector_stats(self) -> dict:
        return self.detector.get_stats()
