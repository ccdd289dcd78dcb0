"""Tests for the CpuMonitor class."""

import logging
from queue import Queue

import pytest

from cpuprobe.config import ProbeConfig
from cpuprobe.errors import ProbeIOError, UnexpectedContentError
from cpuprobe.models import CpuMeasurement, CpuStat, CpuStatPercentages, CpuTimes
from cpuprobe.monitor import CpuMonitor, CpuSample

SECOND = 1_000_000_000


class ScriptedReader:
    """Returns queued measurements or raises queued errors, in order."""

    def __init__(self, *results):
        self._results = list(results)
        self.calls = 0

    def __call__(self) -> CpuMeasurement:
        self.calls += 1
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class TickingReader:
    """Produces a steadily increasing measurement on every call."""

    def __init__(self):
        self.calls = 0

    def __call__(self) -> CpuMeasurement:
        self.calls += 1
        return measurement(self.calls, user=10 * self.calls, idle=30 * self.calls)


def measurement(seconds: int, **counters: int) -> CpuMeasurement:
    return CpuMeasurement(precise_time_ns=seconds * SECOND, stat=CpuTimes(**counters))


class TestCpuSample:
    """Tests for CpuSample dataclass."""

    def test_sample_uses_slots(self):
        """Test CpuSample uses __slots__ for memory efficiency."""
        sample = CpuSample(stat=CpuStat(), percentages=CpuStatPercentages(), measured_at_ns=0)
        assert not hasattr(sample, "__dict__")


class TestPollOnce:
    """Tests for a single sampling step."""

    def test_first_poll_takes_baseline(self):
        """Test the first measurement only sets the baseline."""
        monitor = CpuMonitor(Queue(), reader=ScriptedReader(measurement(60, user=100)))

        assert monitor.poll_once() is None

    def test_second_poll_yields_sample(self):
        """Test the second measurement is compared with the first."""
        reader = ScriptedReader(
            measurement(60, user=100, idle=100),
            measurement(90, user=110, idle=140),
        )
        monitor = CpuMonitor(Queue(), reader=reader)

        monitor.poll_once()
        sample = monitor.poll_once()

        assert sample is not None
        assert sample.stat == CpuStat(user=20, idle=80)
        assert sample.percentages.user == 20.0
        assert sample.percentages.idle == 80.0
        assert sample.measured_at_ns == 90 * SECOND

    def test_reference_interval_from_config(self):
        """Test the configured reference interval is used for scaling."""
        reader = ScriptedReader(measurement(60, user=100), measurement(120, user=160))
        monitor = CpuMonitor(Queue(), config=ProbeConfig(reference_interval_s=1.0), reader=reader)

        monitor.poll_once()
        assert monitor.poll_once().stat.user == 1

    def test_failed_read_is_skipped(self, caplog):
        """Test a failed read is logged and the baseline kept."""
        reader = ScriptedReader(
            measurement(60, user=100),
            ProbeIOError("/proc/stat", PermissionError("denied")),
            measurement(120, user=160),
        )
        monitor = CpuMonitor(Queue(), reader=reader)

        monitor.poll_once()
        with caplog.at_level(logging.WARNING, logger="cpuprobe.monitor"):
            assert monitor.poll_once() is None
        sample = monitor.poll_once()

        assert "Skipping interval" in caplog.text
        assert sample.stat.user == 60

    def test_unexpected_content_is_skipped(self):
        reader = ScriptedReader(UnexpectedContentError("Incorrect number of stats"), measurement(60))
        monitor = CpuMonitor(Queue(), reader=reader)

        assert monitor.poll_once() is None
        assert monitor.poll_once() is None  # baseline

    def test_counter_reset_starts_new_baseline(self, caplog):
        """Test a counter regression discards the pair and rebases."""
        reader = ScriptedReader(
            measurement(60, user=1000),
            measurement(120, user=10),
            measurement(180, user=70),
        )
        monitor = CpuMonitor(Queue(), reader=reader)

        monitor.poll_once()
        with caplog.at_level(logging.WARNING, logger="cpuprobe.monitor"):
            assert monitor.poll_once() is None
        sample = monitor.poll_once()

        assert "new baseline" in caplog.text
        assert sample.stat.user == 60

    def test_clock_going_backwards_starts_new_baseline(self):
        reader = ScriptedReader(
            measurement(120, user=10),
            measurement(60, user=20),
            measurement(120, user=80),
        )
        monitor = CpuMonitor(Queue(), reader=reader)

        monitor.poll_once()
        assert monitor.poll_once() is None
        assert monitor.poll_once().stat.user == 60

    def test_unexpected_exception_propagates(self):
        """Test errors that are not probe errors are not swallowed."""
        monitor = CpuMonitor(Queue(), reader=ScriptedReader(RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            monitor.poll_once()


class TestCpuMonitor:
    """Tests for CpuMonitor threading."""

    def test_monitor_creation(self):
        """Test CpuMonitor can be instantiated."""
        monitor = CpuMonitor(Queue(), reader=TickingReader())

        assert monitor.poll_rate == 2.0
        assert not monitor.is_running

    def test_monitor_poll_rate_from_config(self):
        monitor = CpuMonitor(Queue(), config=ProbeConfig(poll_interval_s=1.0), reader=TickingReader())

        assert monitor.poll_rate == 1.0

    def test_poll_rate_minimum(self):
        """Test poll rate has a minimum value."""
        monitor = CpuMonitor(Queue(), reader=TickingReader())

        monitor.poll_rate = 0.01  # Very small value
        assert monitor.poll_rate >= 0.1  # Should be clamped to minimum

    def test_monitor_start_stop(self):
        """Test CpuMonitor can be started and stopped."""
        monitor = CpuMonitor(Queue(), config=ProbeConfig(poll_interval_s=0.1), reader=TickingReader())

        monitor.start()
        assert monitor.is_running

        monitor.stop()
        assert not monitor.is_running

    def test_monitor_start_idempotent(self):
        """Test starting an already running monitor is safe."""
        monitor = CpuMonitor(Queue(), config=ProbeConfig(poll_interval_s=0.1), reader=TickingReader())

        monitor.start()
        thread1 = monitor._thread

        monitor.start()  # Should not create a new thread
        thread2 = monitor._thread

        assert thread1 is thread2
        monitor.stop()

    def test_monitor_publishes_samples(self):
        """Test CpuMonitor collects and queues samples."""
        queue: Queue[CpuSample] = Queue()
        monitor = CpuMonitor(queue, config=ProbeConfig(poll_interval_s=0.1), reader=TickingReader())

        monitor.start()

        try:
            sample1 = queue.get(timeout=2.0)
            sample2 = queue.get(timeout=2.0)

            # 10 user and 30 idle ticks per second, scaled to a minute
            assert sample1.stat == CpuStat(user=600, idle=1800)
            assert sample1.percentages.user == 25.0
            assert sample2.measured_at_ns > sample1.measured_at_ns
        finally:
            monitor.stop()

    def test_monitor_survives_failures(self):
        """Test the loop keeps running after a failed measurement."""
        queue: Queue[CpuSample] = Queue()
        reader = ScriptedReader(
            measurement(1, user=10),
            ProbeIOError("/proc/stat", FileNotFoundError("gone")),
            measurement(3, user=30),
            *[measurement(3 + i, user=30 + i) for i in range(1, 50)],
        )
        monitor = CpuMonitor(queue, config=ProbeConfig(poll_interval_s=0.1), reader=reader)

        monitor.start()

        try:
            sample = queue.get(timeout=2.0)
            assert sample.stat.user == 600
            assert monitor.is_running
        finally:
            monitor.stop()

    def test_monitor_reads_real_source(self):
        """Test sampling the host through psutil."""
        queue: Queue[CpuSample] = Queue()
        monitor = CpuMonitor(queue, config=ProbeConfig(source="psutil", poll_interval_s=0.1))

        monitor.start()

        try:
            sample = queue.get(timeout=2.0)
            assert isinstance(sample, CpuSample)
            assert sample.percentages.total == 0.0 or 99.9 < sample.percentages.total < 100.1
        finally:
            monitor.stop()

    def test_daemon_thread(self):
        """Test monitor thread is a daemon thread."""
        monitor = CpuMonitor(Queue(), config=ProbeConfig(poll_interval_s=0.1), reader=TickingReader())

        monitor.start()

        try:
            assert monitor._thread is not None
            assert monitor._thread.daemon is True
            assert monitor._thread.name == "CpuMonitor"
        finally:
            monitor.stop()

    def test_monitor_survives_unexpected_errors(self, caplog):
        """Test the thread keeps sampling after an error that is not a probe error."""
        queue: Queue[CpuSample] = Queue()
        reader = ScriptedReader(
            measurement(1, user=10),
            OSError("transient psutil failure"),
            *[measurement(1 + i, user=10 + 10 * i) for i in range(1, 50)],
        )
        monitor = CpuMonitor(queue, config=ProbeConfig(poll_interval_s=0.1), reader=reader)

        with caplog.at_level(logging.ERROR, logger="cpuprobe.monitor"):
            monitor.start()
            try:
                sample = queue.get(timeout=2.0)

                assert monitor.is_running
                assert sample.stat.user == 600
            finally:
                monitor.stop()

        assert "Unexpected error while sampling" in caplog.text

    def test_poll_rate_from_config_is_clamped(self):
        """Test a tiny configured interval still respects the minimum poll rate."""
        monitor = CpuMonitor(Queue(), config=ProbeConfig(poll_interval_s=0.001), reader=TickingReader())

        assert monitor.poll_rate == 0.1
