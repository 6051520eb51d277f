"""Aggregator configuration: intervals, threshold and ranking sizes.

Loaded from YAML (``config/aggregator.yml``) and/or CLI flags.  Everything
is validated up front so a bad value fails at start, never mid-cycle.
"""

import math
import numbers
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from aggregator.errors import InvalidConfiguration

_REQUIRED_FIELDS = ("alarm_interval_ms", "reporting_interval_ms", "threshold")


def _positive_int(name: str, value) -> int:
    # bool is an Integral; True would otherwise pass as 1.
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidConfiguration(f"{name} must be an int, got {value!r}")
    if value <= 0:
        raise InvalidConfiguration(f"{name} must be > 0, got {value}")
    return int(value)


def validate_intervals(alarm_interval_ms, reporting_interval_ms, threshold) -> int:
    """Check intervals and threshold; return the window size N."""
    alarm_interval_ms = _positive_int("alarm_interval_ms", alarm_interval_ms)
    reporting_interval_ms = _positive_int("reporting_interval_ms", reporting_interval_ms)
    if alarm_interval_ms % reporting_interval_ms != 0:
        raise InvalidConfiguration(
            f"alarm_interval_ms ({alarm_interval_ms}) must be a multiple of "
            f"reporting_interval_ms ({reporting_interval_ms})"
        )
    if isinstance(threshold, bool) or not isinstance(threshold, numbers.Real):
        raise InvalidConfiguration(f"threshold must be a real number, got {threshold!r}")
    try:
        finite = math.isfinite(threshold)
    except OverflowError:
        finite = False
    if not finite:
        raise InvalidConfiguration(f"threshold must be finite, got {threshold}")
    return alarm_interval_ms // reporting_interval_ms


@dataclass
class AggregatorConfig:
    alarm_interval_ms: int
    reporting_interval_ms: int
    threshold: float
    top_k: int = 10
    breakdown_k: int = 10

    @property
    def window_size(self) -> int:
        return self.alarm_interval_ms // self.reporting_interval_ms

    def validate(self) -> "AggregatorConfig":
        validate_intervals(self.alarm_interval_ms, self.reporting_interval_ms, self.threshold)
        _positive_int("top_k", self.top_k)
        _positive_int("breakdown_k", self.breakdown_k)
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "AggregatorConfig":
        if not isinstance(data, dict):
            raise InvalidConfiguration("Aggregator config must be a mapping")
        known = {f.name for f in fields(cls)}
        extra = set(data) - known
        if extra:
            raise InvalidConfiguration(f"Unknown config key(s): {sorted(extra)}")
        for field in _REQUIRED_FIELDS:
            if field not in data:
                raise InvalidConfiguration(f"Missing required config field '{field}'")
        return cls(**data).validate()


def load_config(path: str | Path, overrides: dict | None = None) -> AggregatorConfig:
    """Read a YAML config file; non-None ``overrides`` win over file values."""
    path = Path(path)
    if not path.is_file():
        raise InvalidConfiguration(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"{path.name}: config must be a mapping at top level")

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return AggregatorConfig.from_dict(data)
