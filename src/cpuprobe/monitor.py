"""Periodic CPU sampling for cpuprobe."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from queue import Queue

from cpuprobe import sources
from cpuprobe.config import ProbeConfig
from cpuprobe.engine import calculate_interval, to_percentages
from cpuprobe.errors import CounterRegressionError, InvalidInputError, ProbeError
from cpuprobe.models import CpuMeasurement, CpuStat, CpuStatPercentages

logger = logging.getLogger(__name__)

Reader = Callable[[], CpuMeasurement]


@dataclass(slots=True, frozen=True)
class CpuSample:
    """Result of one sampling interval."""

    stat: CpuStat
    percentages: CpuStatPercentages
    measured_at_ns: int


class CpuMonitor:
    """
    Samples CPU counters on a fixed period and publishes interval results.

    Runs in a separate daemon thread and pushes a CpuSample to a thread-safe
    Queue each time two consecutive measurements could be compared. A failed
    measurement is logged and skipped; a counter reset starts a new baseline.
    """

    def __init__(
        self,
        update_queue: Queue[CpuSample],
        config: ProbeConfig | None = None,
        reader: Reader | None = None,
    ) -> None:
        """
        Initialize the CpuMonitor.

        Args:
            update_queue: Thread-safe queue to push samples to.
            config: Source and interval settings. Defaults when omitted.
            reader: Callable returning a fresh measurement. Defaults to the
                source named in ``config``.
        """
        self._queue = update_queue
        self._config = config or ProbeConfig()
        self._reader = reader or partial(sources.read, self._config.source, self._config)
        self.poll_rate = self._config.poll_interval_s
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._baseline: CpuMeasurement | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="CpuMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                sample = self.poll_once()
                if sample is not None:
                    self._queue.put(sample)
            except Exception:
                # Keep sampling, the next interval may succeed
                logger.exception("Unexpected error while sampling CPU counters")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    def poll_once(self) -> CpuSample | None:
        """
        Take one measurement and compare it with the previous one.

        Returns None for the first measurement, after a reset, and whenever
        the measurement failed.
        """
        try:
            measurement = self._reader()
        except ProbeError as e:
            logger.warning(f"Skipping interval, reading CPU counters failed: {e}")
            return None

        baseline, self._baseline = self._baseline, measurement
        if baseline is None:
            logger.debug("Took baseline CPU measurement")
            return None

        try:
            stat = calculate_interval(baseline, measurement, self._config.reference_interval_ns)
        except (CounterRegressionError, InvalidInputError) as e:
            logger.warning(f"Discarding CPU measurement pair and starting a new baseline: {e}")
            return None

        return CpuSample(
            stat=stat,
            percentages=to_percentages(stat),
            measured_at_ns=measurement.precise_time_ns,
        )
