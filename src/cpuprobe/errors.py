"""
Exception types raised while reading and processing CPU counters.

Every failure is terminal for the single measurement attempt. Callers that
sample periodically are expected to log the error and try again on the next
interval.
"""

from pathlib import Path


class ProbeError(Exception):
    """Base class for all cpuprobe errors."""


class ProbeIOError(ProbeError):
    """Reading a counter source failed (missing file, permissions, ...)."""

    def __init__(self, path: str | Path, error: OSError):
        super().__init__(f"Could not read {path}: {error}")
        self.path = Path(path)
        self.error = error


class ParseError(ProbeError):
    """A token that should be an unsigned 64-bit integer was not."""

    def __init__(self, token: str):
        super().__init__(f"Could not parse {token!r} as an unsigned integer")
        self.token = token


class UnexpectedContentError(ProbeError):
    """The source was readable but did not contain what was expected."""


class CounterRegressionError(UnexpectedContentError):
    """
    A counter in the later measurement is smaller than in the earlier one.

    Usually caused by the source resetting (host reboot, cgroup recreated).
    The pair cannot be used and a new baseline has to be taken.
    """

    def __init__(self, field: str, earlier: int, later: int):
        super().__init__(f"Value for {field} is lower than before ({later} < {earlier})")
        self.field = field
        self.earlier = earlier
        self.later = later


class InvalidInputError(ProbeError, ValueError):
    """The caller passed arguments that cannot be used, e.g. out-of-order measurements."""
