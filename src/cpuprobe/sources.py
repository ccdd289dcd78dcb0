"""Counter sources producing CpuMeasurements.

Three origins are supported:

* the aggregate ``cpu`` line of ``/proc/stat`` on the host,
* the cgroup v1 ``cpuacct`` directory when running inside a container,
* ``psutil.cpu_times()`` as a portable fallback.

Each read opens its source fresh and closes it on every exit path.
"""

import logging
import os
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

import psutil

from cpuprobe.config import ProbeConfig
from cpuprobe.errors import (
    InvalidInputError,
    ParseError,
    ProbeError,
    ProbeIOError,
    UnexpectedContentError,
)
from cpuprobe.models import CPU_TIME_FIELDS, CpuMeasurement, CpuTimes

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

PROC_STAT_PATH = "/proc/stat"
CPUACCT_PATH = "/sys/fs/cgroup/cpuacct"

# CPU times are expressed in USER_HZ ticks of 1/100th of a second.
# cpuacct.usage is in nanoseconds, so it is divided down to the same unit.
USER_HZ = 100
NANOS_PER_TICK = 10_000_000

MIN_PROC_STAT_FIELDS = 5
CPUACCT_REQUIRED_KEYS = frozenset({"user", "system"})
CONTAINER_MARKERS = ("docker", "kubepods", "lxc", "containerd")

U64_MAX = 2**64 - 1


def parse_u64(token: str) -> int:
    """Parse a base-10 unsigned 64-bit integer."""
    if not token.isascii() or not token.isdigit():
        raise ParseError(token)
    value = int(token)
    if value > U64_MAX:
        raise ParseError(token)
    return value


def parse_u64_or_default(tokens: Sequence[str], index: int, default: int = 0) -> int:
    """Parse ``tokens[index]``, or return ``default`` if the token is absent."""
    if index >= len(tokens):
        return default
    return parse_u64(tokens[index])


def _subtract_guest(field: str, value: int, guest: int) -> int:
    # The kernel also counts guest time in user/nice
    if guest > value:
        raise UnexpectedContentError(f"Guest time {guest} exceeds {field} time {value}")
    return value - guest


def parse_proc_stat_line(line: str, precise_time_ns: int) -> CpuMeasurement:
    """
    Parse a ``cpu`` line of /proc/stat.

    The first token is a label and is ignored. At least five numeric
    columns (user..iowait) are required; irq..guestnice default to zero
    when the kernel does not report them.
    """
    stats = line.split()[1:]
    if len(stats) < MIN_PROC_STAT_FIELDS:
        raise UnexpectedContentError(
            f"Incorrect number of stats: expected at least {MIN_PROC_STAT_FIELDS}, got {len(stats)}"
        )

    values = {name: parse_u64_or_default(stats, index) for index, name in enumerate(CPU_TIME_FIELDS)}
    values["user"] = _subtract_guest("user", values["user"], values["guest"])
    values["nice"] = _subtract_guest("nice", values["nice"], values["guestnice"])

    return CpuMeasurement(precise_time_ns=precise_time_ns, stat=CpuTimes(**values))


def read_proc_stat(path: str | Path = PROC_STAT_PATH, clock: Clock = time.monotonic_ns) -> CpuMeasurement:
    """Read a measurement from the first line of /proc/stat."""
    try:
        with open(path) as f:
            precise_time_ns = clock()
            line = f.readline()
    except OSError as e:
        raise ProbeIOError(path, e) from e

    return parse_proc_stat_line(line, precise_time_ns)


def nanos_to_ticks(value: int, nanos_per_tick: int = NANOS_PER_TICK) -> int:
    """Convert nanoseconds to USER_HZ ticks, truncating."""
    if nanos_per_tick <= 0:
        raise InvalidInputError(f"nanos_per_tick must be positive, got {nanos_per_tick}")
    return value // nanos_per_tick


def parse_cpuacct_stat(lines: Iterable[str]) -> dict[str, int]:
    """
    Extract ``user`` and ``system`` from the lines of a cpuacct.stat file.

    Stops reading as soon as both have been seen.
    """
    found: dict[str, int] = {}
    for line in lines:
        segments = line.split()
        if not segments:
            continue
        if len(segments) < 2:
            raise UnexpectedContentError(f"No value for {segments[0]!r} in cpuacct.stat")
        key = segments[0]
        if key in CPUACCT_REQUIRED_KEYS:
            found[key] = parse_u64(segments[1])
            if len(found) == len(CPUACCT_REQUIRED_KEYS):
                break

    if len(found) != len(CPUACCT_REQUIRED_KEYS):
        missing = ", ".join(sorted(CPUACCT_REQUIRED_KEYS - found.keys()))
        raise UnexpectedContentError(f"Did not encounter all expected fields, missing: {missing}")
    return found


def read_file_value_as_u64(path: Path) -> int:
    try:
        with open(path) as f:
            content = f.read()
    except OSError as e:
        raise ProbeIOError(path, e) from e
    return parse_u64(content.strip())


def read_cpuacct(
    directory: str | Path = CPUACCT_PATH,
    clock: Clock = time.monotonic_ns,
    nanos_per_tick: int = NANOS_PER_TICK,
) -> CpuMeasurement:
    """
    Read a measurement from a cgroup v1 cpuacct directory.

    Only user and system time are accounted there; every other category is
    reported as zero.
    """
    directory = Path(directory)
    precise_time_ns = clock()
    stat_path = directory / "cpuacct.stat"
    try:
        with open(stat_path) as f:
            values = parse_cpuacct_stat(f)
    except OSError as e:
        raise ProbeIOError(stat_path, e) from e

    usage = nanos_to_ticks(read_file_value_as_u64(directory / "cpuacct.usage"), nanos_per_tick)

    return CpuMeasurement(
        precise_time_ns=precise_time_ns,
        stat=CpuTimes(user=values["user"], system=values["system"]),
        reported_total=usage,
    )


def read_psutil(clock: Clock = time.monotonic_ns, ticks_per_second: int = USER_HZ) -> CpuMeasurement:
    """Read a measurement through psutil, for platforms without /proc/stat."""
    precise_time_ns = clock()
    try:
        times = psutil.cpu_times()
    except OSError as e:
        raise ProbeIOError(e.filename or PROC_STAT_PATH, e) from e
    except psutil.Error as e:
        raise ProbeError(f"psutil could not read CPU times: {e}") from e
    # psutil names the last column guest_nice and omits those it can't report
    seconds = {
        name: getattr(times, "guest_nice" if name == "guestnice" else name, 0.0)
        for name in CPU_TIME_FIELDS
    }
    values = {name: round(value * ticks_per_second) for name, value in seconds.items()}
    values["user"] = _subtract_guest("user", values["user"], values["guest"])
    values["nice"] = _subtract_guest("nice", values["nice"], values["guestnice"])

    return CpuMeasurement(precise_time_ns=precise_time_ns, stat=CpuTimes(**values))


def in_container(cgroup_path: str | Path = "/proc/1/cgroup", dockerenv: str | Path = "/.dockerenv") -> bool:
    """Best-effort check whether we are running inside a container."""
    if os.path.exists(dockerenv):
        return True
    try:
        with open(cgroup_path) as f:
            content = f.read()
    except OSError:
        # Not on Linux, or /proc is not mounted
        return False
    return any(marker in content for marker in CONTAINER_MARKERS)


def read(source: str = "auto", config: ProbeConfig | None = None, clock: Clock = time.monotonic_ns) -> CpuMeasurement:
    """
    Read a measurement from the named source.

    Args:
        source: One of ``auto``, ``proc``, ``cgroup`` or ``psutil``. ``auto``
            reads the cgroup inside a container and /proc/stat otherwise.
        config: Paths and unit settings. Defaults are used when omitted.
        clock: Monotonic nanosecond clock.
    """
    config = config or ProbeConfig()
    if source == "auto":
        source = "cgroup" if in_container() else "proc"
        logger.debug(f"Auto-detected counter source: {source}")

    if source == "proc":
        return read_proc_stat(config.proc_stat_path, clock)
    if source == "cgroup":
        return read_cpuacct(config.cpuacct_path, clock, config.nanos_per_tick)
    if source == "psutil":
        return read_psutil(clock)
    raise InvalidInputError(f"Unknown counter source: {source!r}")
