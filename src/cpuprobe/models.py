"""Data models for cpuprobe."""

from dataclasses import dataclass, fields

# Column order of the aggregate line in /proc/stat
CPU_TIME_FIELDS = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guestnice",
)


@dataclass(slots=True, frozen=True)
class CpuTimes:
    """Ten CPU-time categories, in USER_HZ ticks.

    ``user`` and ``nice`` are net of ``guest`` and ``guestnice``.
    """

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    guestnice: int = 0

    @property
    def idle_all(self) -> int:
        return self.idle + self.iowait

    @property
    def system_all(self) -> int:
        return self.system + self.irq + self.softirq

    @property
    def virtual_time(self) -> int:
        return self.guest + self.guestnice

    @property
    def total(self) -> int:
        """Grand total over all categories."""
        return (
            self.user
            + self.nice
            + self.system_all
            + self.idle_all
            + self.steal
            + self.virtual_time
        )

    def as_dict(self) -> dict[str, int]:
        """Return the ten counters keyed by field name."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(slots=True, frozen=True)
class CpuStat(CpuTimes):
    """Counter increase over one reference interval (typically a minute)."""

    def in_percentages(self) -> "CpuStatPercentages":
        """Calculate the weight of each category as a percentage of the total."""
        from cpuprobe.engine import to_percentages

        return to_percentages(self)


@dataclass(slots=True, frozen=True)
class CpuMeasurement:
    """Cumulative CPU counters read at a point in time."""

    precise_time_ns: int  # monotonic clock, only meaningful within one process
    stat: CpuTimes
    reported_total: int | None = None  # cpuacct.usage in ticks, cgroup origin only

    def calculate_per_minute(self, next_measurement: "CpuMeasurement") -> CpuStat:
        """
        Calculate the CPU stats between this measurement and a later one.

        Taking the next measurement roughly a minute after this one gives
        the most reliable result.
        """
        from cpuprobe.engine import calculate_interval

        return calculate_interval(self, next_measurement)


@dataclass(slots=True, frozen=True)
class CpuStatPercentages:
    """Share of each category in the total, 0.0 - 100.0, single precision."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guestnice: float = 0.0

    @property
    def total(self) -> float:
        # Not normalised, expect a little rounding slack around 100.0
        return sum(getattr(self, name) for name in CPU_TIME_FIELDS)

    def as_dict(self) -> dict[str, float]:
        """Return the ten percentages keyed by field name."""
        return {name: getattr(self, name) for name in CPU_TIME_FIELDS}
