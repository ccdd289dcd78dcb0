"""Interval and percentage calculations over CPU measurements.

All functions here are pure: they never touch the filesystem or the clock
and keep no state between calls, so they can be used from any thread.
"""

import ctypes

from cpuprobe.errors import CounterRegressionError, InvalidInputError
from cpuprobe.models import CPU_TIME_FIELDS, CpuMeasurement, CpuStat, CpuStatPercentages

NANOS_PER_SECOND = 1_000_000_000
DEFAULT_REFERENCE_INTERVAL_NS = 60 * NANOS_PER_SECOND


def calculate_time_difference(earlier_ns: int, later_ns: int) -> int:
    """
    Return the elapsed nanoseconds between two monotonic timestamps.

    Raises:
        InvalidInputError: If ``later_ns`` is not strictly after ``earlier_ns``.
    """
    if later_ns <= earlier_ns:
        raise InvalidInputError(
            f"Time of the later measurement ({later_ns}) is not after the "
            f"earlier one ({earlier_ns})"
        )
    return later_ns - earlier_ns


def time_adjusted(
    later_value: int,
    earlier_value: int,
    elapsed_ns: int,
    reference_interval_ns: int = DEFAULT_REFERENCE_INTERVAL_NS,
) -> int:
    """Scale the increase of one counter to the reference interval.

    ``later_value`` must not be smaller than ``earlier_value``.
    """
    # Multiply before dividing to keep the integer precision
    return (later_value - earlier_value) * reference_interval_ns // elapsed_ns


def calculate_interval(
    earlier: CpuMeasurement,
    later: CpuMeasurement,
    reference_interval_ns: int = DEFAULT_REFERENCE_INTERVAL_NS,
) -> CpuStat:
    """
    Calculate the counter increase between two measurements.

    The increase is scaled from the real elapsed time to
    ``reference_interval_ns``, so a pair taken 30 seconds apart and scaled to
    a minute yields twice its raw deltas.

    Args:
        earlier: The baseline measurement.
        later: A measurement taken after ``earlier`` from the same source.
        reference_interval_ns: Length of the interval the result describes.

    Returns:
        A new CpuStat for one reference interval.

    Raises:
        InvalidInputError: If the measurements are out of order or the
            reference interval is not positive.
        CounterRegressionError: If any counter decreased between the two.
    """
    if reference_interval_ns <= 0:
        raise InvalidInputError(f"Reference interval must be positive, got {reference_interval_ns}")

    elapsed_ns = calculate_time_difference(earlier.precise_time_ns, later.precise_time_ns)

    # Every field is checked before any is scaled
    for name in CPU_TIME_FIELDS:
        earlier_value = getattr(earlier.stat, name)
        later_value = getattr(later.stat, name)
        if later_value < earlier_value:
            raise CounterRegressionError(name, earlier_value, later_value)

    return CpuStat(
        **{
            name: time_adjusted(
                getattr(later.stat, name),
                getattr(earlier.stat, name),
                elapsed_ns,
                reference_interval_ns,
            )
            for name in CPU_TIME_FIELDS
        }
    )


def _to_single(value: float) -> float:
    """Narrow a double to IEEE single precision."""
    return ctypes.c_float(value).value


def percentage_of_total(value: int, total: int) -> float:
    """Return ``value`` as a single precision percentage of ``total``."""
    if total == 0:
        return 0.0
    return _to_single(value / total * 100.0)


def to_percentages(stat: CpuStat) -> CpuStatPercentages:
    """
    Calculate the weight of each category in a CpuStat.

    A stat whose total is zero (nothing happened in the interval) yields
    all-zero percentages.
    """
    total = stat.total
    return CpuStatPercentages(
        **{name: percentage_of_total(getattr(stat, name), total) for name in CPU_TIME_FIELDS}
    )
