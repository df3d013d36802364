# src/early_r/config.py
"""Settings shared by estimation and projection."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import numpy as np

from .analytic.likelihood import DEFAULT_GRID_STEP, DEFAULT_LEVEL, DEFAULT_R_MAX, make_r_grid
from .errors import InvalidParameterError
from .simulate.calculate_serial_weights import SerialIntervalDistribution, build

logger = logging.getLogger(__name__)

# Ebola serial interval (WHO Ebola Response Team, 2014)
MEAN_SI_DAYS = 15.3
SD_SI_DAYS = 9.3


# Field types checked before any value comparison
_FLOAT_FIELDS = ("si_mean", "si_sd", "r_max", "grid_step", "level")
_INT_FIELDS = ("start", "n_days", "n_replicates")
_OPTIONAL_INT_FIELDS = ("max_days", "seed")


def _is_number(value) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def _is_whole(value) -> bool:
    if isinstance(value, (int, np.integer)):
        return not isinstance(value, bool)
    return isinstance(value, (float, np.floating)) and float(value).is_integer()


@dataclass(frozen=True)
class EstimationConfig:
    si_mean: float = MEAN_SI_DAYS
    si_sd: float = SD_SI_DAYS
    max_days: Optional[int] = None
    r_max: float = DEFAULT_R_MAX
    grid_step: float = DEFAULT_GRID_STEP
    level: float = DEFAULT_LEVEL
    start: int = 0
    n_days: int = 30
    n_replicates: int = 1000
    seed: Optional[int] = None

    def validate(self) -> "EstimationConfig":
        """Check every field and return a copy with integer fields as int.

        Raises InvalidParameterError on the first failure.
        """
        for name in _FLOAT_FIELDS:
            value = getattr(self, name)
            if not _is_number(value):
                raise InvalidParameterError(name, f"must be a number, got {value!r}")
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if not _is_whole(value):
                raise InvalidParameterError(name, f"must be an integer, got {value!r}")
        for name in _OPTIONAL_INT_FIELDS:
            value = getattr(self, name)
            if value is not None and not _is_whole(value):
                raise InvalidParameterError(name, f"must be an integer or null, got {value!r}")

        if not self.si_mean > 0:
            raise InvalidParameterError("si_mean", f"must be > 0, got {self.si_mean}")
        if not self.si_sd > 0:
            raise InvalidParameterError("si_sd", f"must be > 0, got {self.si_sd}")
        if self.max_days is not None and self.max_days < 1:
            raise InvalidParameterError("max_days", f"must be an integer >= 1, got {self.max_days}")
        make_r_grid(self.r_max, self.grid_step)
        if not 0 < self.level < 1:
            raise InvalidParameterError("level", f"must lie in (0, 1), got {self.level}")
        if self.start < 0:
            raise InvalidParameterError("start", f"must be a non-negative integer, got {self.start}")
        for name in ("n_days", "n_replicates"):
            value = getattr(self, name)
            if value < 1:
                raise InvalidParameterError(name, f"must be an integer >= 1, got {value}")
        whole = {
            name: int(getattr(self, name))
            for name in _INT_FIELDS + _OPTIONAL_INT_FIELDS
            if getattr(self, name) is not None
        }
        return replace(self, **whole)

    def r_grid(self) -> np.ndarray:
        return make_r_grid(self.r_max, self.grid_step)

    def serial_interval(self) -> SerialIntervalDistribution:
        return build(self.si_mean, self.si_sd, self.max_days)

    def updated(self, **overrides) -> "EstimationConfig":
        """Copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: dict) -> "EstimationConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidParameterError("config", f"unknown key(s) {unknown}")
        return cls(**data)

    @classmethod
    def from_json(cls, path) -> "EstimationConfig":
        try:
            with Path(path).open() as fh:
                data = json.load(fh)
        except OSError as exc:
            raise InvalidParameterError("config", f"cannot read {path}: {exc.strerror or exc}") from exc
        except ValueError as exc:
            # json.JSONDecodeError and UnicodeDecodeError
            raise InvalidParameterError("config", f"{path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidParameterError("config", f"{path} must contain a JSON object")
        logger.debug("Loaded config overrides from %s: %s", path, sorted(data))
        return cls.from_dict(data)
