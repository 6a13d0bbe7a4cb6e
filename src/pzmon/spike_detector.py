"""Sustained-spike detection over telemetry samples.

For every metric the detector keeps a short history of (time, value, elevated)
samples and runs two independent checks:

* Rate of change: the percent change against a baseline (the earliest settled
  value inside the sustained window before the episode began) must stay at or
  above the threshold for at least sustained_seconds before a warning spike is
  emitted. A single elevated sample never qualifies, and since elevated samples
  are never used as a baseline, a lone outlier cannot turn the normal samples
  after it into a spike either.
* Critical: a value at or above the absolute critical threshold is emitted
  immediately.

Both checks are edge-triggered: after emitting, a check stays quiet until the
metric falls back under its condition.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from pzmon.models import MetricType, MonitorConfig, SpikeSeverity, SystemMetric, SystemSpike


logger = logging.getLogger(__name__)

# Rate checks need a baseline above this floor
MIN_BASELINE: dict[MetricType, float] = {
    MetricType.CPU: 0.0,
    MetricType.MEMORY: 0.0,
    MetricType.SWAP: 0.0,
    MetricType.NETWORK: 100_000.0,  # bytes/s
}

HISTORY_LIMIT = 720


def metric_value(metric: SystemMetric, metric_type: MetricType) -> float | None:
    """Value the detector tracks for a metric: percentages, or total bytes/s for network."""
    match metric_type:
        case MetricType.CPU:
            return metric.cpu_percent
        case MetricType.MEMORY:
            return metric.memory_percent
        case MetricType.SWAP:
            return metric.swap_percent
        case MetricType.NETWORK:
            return metric.network_total_sec
    return None


@dataclass
class MetricWindow:
    """Detection state of one metric."""

    history: deque[tuple[float, float, bool]] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))
    episode_start: float | None = None
    episode_baseline: float | None = None
    rate_armed: bool = True
    critical_armed: bool = True

    def reset(self):
        self.history.clear()
        self.episode_start = None
        self.episode_baseline = None
        self.rate_armed = True
        self.critical_armed = True


def _percent_change(baseline: float, value: float) -> float:
    return (value - baseline) / baseline * 100.0


def _settled_baseline(history: deque[tuple[float, float, bool]], since: float, previous: float | None) -> float | None:
    """Earliest non-elevated value at or after `since`, else the latest non-elevated value at all."""
    settled = [(t, v) for t, v, elevated in history if not elevated]
    for t, v in settled:
        if t >= since:
            return v
    if settled:
        return settled[-1][1]
    return previous


class SpikeDetector:
    def __init__(self, config: MonitorConfig | None = None):
        self.config = config or MonitorConfig()
        self._windows: dict[MetricType, MetricWindow] = {metric: MetricWindow() for metric in MetricType}
        self._samples = 0
        self._spikes = 0

    def update_config(self, config: MonitorConfig):
        """Apply new thresholds; history and episode state are kept."""
        self.config = config
        logger.debug('Spike detector thresholds updated')

    def reset(self):
        for window in self._windows.values():
            window.reset()
        self._samples = 0
        self._spikes = 0

    def get_stats(self) -> dict:
        return {
            'samples_seen': self._samples,
            'spikes_detected': self._spikes,
            'history_sizes': {metric.value: len(window.history) for metric, window in self._windows.items()},
            'active_episodes': [
                metric.value for metric, window in self._windows.items() if window.episode_start is not None
            ],
        }

    def process_metric(self, metric: SystemMetric) -> list[SystemSpike]:
        """Feed one sample; returns the spikes it confirms."""
        self._samples += 1
        now = metric.time.timestamp()
        spikes = []
        for metric_type in MetricType:
            value = metric_value(metric, metric_type)
            if value is None:
                continue
            spike = self._check(metric_type, self._windows[metric_type], now, value, metric.time)
            if spike is not None:
                spikes.append(spike)
        self._spikes += len(spikes)
        return spikes

    def _check(
        self, metric_type: MetricType, window: MetricWindow, now: float, value: float, when: datetime
    ) -> SystemSpike | None:
        threshold = self.config.threshold_percent(metric_type)
        sustained = self.config.sustained_seconds(metric_type)
        critical = self.config.critical_threshold(metric_type)

        previous = window.history[-1][1] if window.history else None
        baseline = window.episode_baseline
        if baseline is None:
            baseline = _settled_baseline(window.history, now - sustained, previous)

        elevated = False
        change = None
        if baseline is not None and baseline > MIN_BASELINE[metric_type]:
            change = _percent_change(baseline, value)
            elevated = abs(change) >= threshold

        window.history.append((now, value, elevated))
        horizon = now - 2 * sustained
        while window.history and window.history[0][0] < horizon:
            window.history.popleft()

        spike = None

        if critical is not None:
            if value >= critical:
                if window.critical_armed:
                    window.critical_armed = False
                    change = _percent_change(previous, value) if previous else None
                    spike = SystemSpike(
                        time=when,
                        metric_type=metric_type,
                        severity=SpikeSeverity.CRITICAL,
                        previous_value=previous,
                        current_value=round(value, 2),
                        change_percent=round(change, 2) if change is not None else None,
                        sustained_for_seconds=0,
                        details={'critical_threshold': critical},
                    )
            else:
                window.critical_armed = True

        if not elevated:
            window.episode_start = None
            window.episode_baseline = None
            window.rate_armed = True
            return spike

        if window.episode_start is None:
            window.episode_start = now
            window.episode_baseline = baseline

        duration = now - window.episode_start
        if duration >= sustained and window.rate_armed:
            window.rate_armed = False
            if spike is None:
                spike = SystemSpike(
                    time=when,
                    metric_type=metric_type,
                    severity=SpikeSeverity.WARNING,
                    previous_value=round(baseline, 2),
                    current_value=round(value, 2),
                    change_percent=round(change, 2),
                    sustained_for_seconds=int(duration),
                    details={
                        'threshold_percent': threshold,
                        'direction': 'increase' if change > 0 else 'decrease',
                    },
                )
        return spike
