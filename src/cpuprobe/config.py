"""
Configuration loading for cpuprobe.

Settings live in the ``[probe]`` table of a TOML file. Everything has a
default, so a config file is optional.
"""

import logging
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from cpuprobe.errors import InvalidInputError, ProbeIOError

logger = logging.getLogger(__name__)

SOURCES = ("auto", "proc", "cgroup", "psutil")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True, frozen=True)
class ProbeConfig:
    """Settings for reading counters and sampling them."""

    source: str = "auto"
    proc_stat_path: str = "/proc/stat"
    cpuacct_path: str = "/sys/fs/cgroup/cpuacct"
    reference_interval_s: float = 60.0
    poll_interval_s: float = 2.0
    nanos_per_tick: int = 10_000_000
    log_level: str = "WARNING"
    log_file: str | None = None

    def __post_init__(self) -> None:
        validate_config(self)

    @property
    def reference_interval_ns(self) -> int:
        return int(self.reference_interval_s * 1_000_000_000)

    def with_overrides(self, **overrides: Any) -> "ProbeConfig":
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def validate_config(config: ProbeConfig) -> None:
    """Raise InvalidInputError if any setting is out of range."""
    if config.source not in SOURCES:
        raise InvalidInputError(f"source must be one of {', '.join(SOURCES)}, got {config.source!r}")
    if config.reference_interval_s <= 0:
        raise InvalidInputError(f"reference_interval_s must be positive, got {config.reference_interval_s}")
    if config.poll_interval_s <= 0:
        raise InvalidInputError(f"poll_interval_s must be positive, got {config.poll_interval_s}")
    if config.nanos_per_tick <= 0:
        raise InvalidInputError(f"nanos_per_tick must be positive, got {config.nanos_per_tick}")
    if not isinstance(logging.getLevelName(config.log_level.upper()), int):
        raise InvalidInputError(f"Unknown log level: {config.log_level!r}")


def load_config(path: str | Path) -> ProbeConfig:
    """
    Load a ProbeConfig from a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        The configuration, with defaults for anything the file leaves out.

    Raises:
        ProbeIOError: If the file cannot be read.
        InvalidInputError: If the file is malformed or holds bad values.
    """
    path = Path(path)
    logger.info(f"Loading configuration from: {path}")
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ProbeIOError(path, e) from e
    except tomllib.TOMLDecodeError as e:
        raise InvalidInputError(f"Could not parse {path}: {e}") from e

    table = data.get("probe", {})
    known = {f.name for f in fields(ProbeConfig)}
    for key in table.keys() - known:
        logger.warning(f"Ignoring unknown setting '{key}' in {path}")

    try:
        return ProbeConfig(**{k: v for k, v in table.items() if k in known})
    except (TypeError, AttributeError) as e:
        raise InvalidInputError(f"Invalid configuration in {path}: {e}") from e


def configure_logging(config: ProbeConfig) -> None:
    """Set up the root logger from the configuration."""
    level = logging.getLevelName(config.log_level.upper())
    if config.log_file:
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=config.log_file)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)
