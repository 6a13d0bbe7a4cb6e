"""Tests for sustained-spike detection."""

from datetime import UTC, datetime, timedelta

from pzmon.models import MetricType, MonitorConfig, SpikeSeverity, SystemMetric
from pzmon.spike_detector import SpikeDetector, metric_value


T0 = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


def sample(seconds: float, cpu: float | None = None, memory: float | None = None, rx=None, tx=None) -> SystemMetric:
    return SystemMetric(
        time=T0 + timedelta(seconds=seconds),
        cpu_percent=cpu,
        memory_percent=memory,
        network_rx_sec=rx,
        network_tx_sec=tx,
    )


def feed(detector: SpikeDetector, points: list[tuple[float, float]]) -> list:
    spikes = []
    for seconds, cpu in points:
        spikes.extend(detector.process_metric(sample(seconds, cpu=cpu)))
    return spikes


class TestRateOfChange:
    """cpu defaults: 25% threshold sustained for 15s, critical at 90."""

    def test_first_sample_never_spikes(self):
        assert SpikeDetector().process_metric(sample(0, cpu=80)) == []

    def test_single_elevated_sample_is_ignored(self):
        spikes = feed(SpikeDetector(), [(0, 20), (5, 20), (10, 40), (15, 20), (20, 20)])
        assert spikes == []

    def test_single_elevated_sample_never_becomes_the_baseline(self):
        # Normal samples long after the blip must not read as a sustained decrease
        points = [(0, 20), (5, 20), (10, 40)] + [(seconds, 20) for seconds in range(15, 65, 5)]
        detector = SpikeDetector()

        assert feed(detector, points) == []
        assert detector.get_stats()['active_episodes'] == []

    def test_short_episode_is_ignored(self):
        spikes = feed(SpikeDetector(), [(0, 20), (5, 40), (10, 40), (15, 20)])
        assert spikes == []

    def test_sustained_increase_emits_one_warning(self):
        spikes = feed(SpikeDetector(), [(0, 20), (5, 20), (10, 40), (15, 40), (20, 40), (25, 40), (30, 40)])

        assert len(spikes) == 1
        spike = spikes[0]
        assert spike.metric_type == MetricType.CPU
        assert spike.severity == SpikeSeverity.WARNING
        assert spike.previous_value == 20
        assert spike.current_value == 40
        assert spike.change_percent == 100.0
        assert spike.sustained_for_seconds == 15
        assert spike.time == T0 + timedelta(seconds=25)
        assert spike.details['direction'] == 'increase'

    def test_baseline_is_frozen_for_the_episode(self):
        # A slow climb would never trigger against a moving baseline
        spikes = feed(SpikeDetector(), [(0, 20), (5, 26), (10, 30), (15, 33), (20, 36)])
        assert len(spikes) == 1
        assert spikes[0].previous_value == 20

    def test_sustained_decrease_is_reported(self):
        spikes = feed(SpikeDetector(), [(0, 40), (5, 20), (10, 20), (15, 20), (20, 20)])
        assert len(spikes) == 1
        assert spikes[0].details['direction'] == 'decrease'
        assert spikes[0].change_percent == -50.0

    def test_rearms_after_returning_to_normal(self):
        detector = SpikeDetector()
        first = feed(detector, [(0, 20), (5, 40), (10, 40), (15, 40), (20, 40)])
        assert len(first) == 1
        # Back to the baseline, then a new episode measured against it
        second = feed(detector, [(25, 20), (30, 80), (35, 80), (40, 80), (45, 80)])
        assert len(second) == 1
        assert second[0].previous_value == 20

    def test_zero_baseline_is_skipped(self):
        spikes = feed(SpikeDetector(), [(0, 0), (5, 50), (10, 50), (15, 50), (20, 50)])
        assert spikes == []


class TestCritical:
    def test_fires_immediately_and_once(self):
        detector = SpikeDetector()
        spikes = feed(detector, [(0, 50), (1, 95), (2, 96)])

        assert len(spikes) == 1
        assert spikes[0].severity == SpikeSeverity.CRITICAL
        assert spikes[0].current_value == 95
        assert spikes[0].previous_value == 50
        assert spikes[0].sustained_for_seconds == 0

    def test_rearms_below_threshold(self):
        spikes = feed(SpikeDetector(), [(0, 95), (1, 50), (2, 95)])
        assert [s.severity for s in spikes] == [SpikeSeverity.CRITICAL, SpikeSeverity.CRITICAL]

    def test_disabled_critical(self):
        config = MonitorConfig(cpu_critical_threshold=None)
        assert feed(SpikeDetector(config), [(0, 95), (1, 99)]) == []


class TestNetwork:
    def test_value_is_rx_plus_tx(self):
        assert metric_value(sample(0, rx=100.0, tx=50.0), MetricType.NETWORK) == 150.0
        assert metric_value(sample(0, rx=100.0), MetricType.NETWORK) is None

    def test_low_traffic_baseline_is_ignored(self):
        detector = SpikeDetector()
        spikes = []
        for seconds, rate in [(0, 1000), (5, 50_000), (10, 50_000), (15, 50_000)]:
            spikes.extend(detector.process_metric(sample(seconds, rx=rate, tx=0)))
        assert spikes == []

    def test_sustained_network_spike(self):
        detector = SpikeDetector()
        spikes = []
        for seconds, rate in [(0, 200_000), (5, 400_000), (10, 400_000), (15, 400_000)]:
            spikes.extend(detector.process_metric(sample(seconds, rx=rate, tx=0)))
        assert [s.metric_type for s in spikes] == [MetricType.NETWORK]


class TestConfigAndStats:
    def test_update_config_applies_to_next_sample(self):
        detector = SpikeDetector()
        feed(detector, [(0, 20), (5, 30)])
        detector.update_config(MonitorConfig(cpu_spike_threshold_percent=10, cpu_spike_sustained_seconds=5))
        spikes = feed(detector, [(10, 30)])
        assert len(spikes) == 1

    def test_metrics_are_independent(self):
        detector = SpikeDetector()
        spikes = []
        for seconds in (0, 5, 10, 15, 20):
            memory = 30 if seconds == 0 else 60
            spikes.extend(detector.process_metric(sample(seconds, cpu=20, memory=memory)))
        assert [s.metric_type for s in spikes] == [MetricType.MEMORY]

    def test_stats_and_reset(self):
        detector = SpikeDetector()
        feed(detector, [(0, 20), (5, 40)])
        stats = detector.get_stats()
        assert stats['samples_seen'] == 2
        assert stats['active_episodes'] == ['cpu']

        detector.reset()
        stats = detector.get_stats()
        assert stats['samples_seen'] == 0
        assert stats['active_episodes'] == []
