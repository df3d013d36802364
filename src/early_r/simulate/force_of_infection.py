# src/early_r/simulate/force_of_infection.py
"""
Force of infection under the renewal model.

For day t (1-indexed) the unscaled infectivity is

    s_t = sum_{k=1}^{min(t-1, K)} y_{t-k} w(k)

and the Poisson rate of new cases is lambda_t = R * s_t. Days before the
start of the series contribute nothing.
"""

from __future__ import annotations

import logging

import numpy as np

from ..errors import InvalidParameterError
from ..incidence import IncidenceSeries
from .calculate_serial_weights import SerialIntervalDistribution

logger = logging.getLogger(__name__)


def infectivity_from_counts(counts, w_arr) -> np.ndarray:
    """Convolve a raw count array with raw weights; s[0] is always 0."""
    y = np.asarray(counts, dtype=float)
    w_arr = np.asarray(w_arr, dtype=float)
    T = y.size
    if T == 0:
        return np.zeros(0, dtype=float)
    # Prepend w(0) = 0 so that y_t never feeds its own day
    kernel = np.concatenate(([0.0], w_arr))
    return np.convolve(y, kernel)[:T]


def unscaled_infectivity(
    incidence: IncidenceSeries, w: SerialIntervalDistribution
) -> np.ndarray:
    """Per-day infectivity s_t of the observed series, one value per day."""
    s = infectivity_from_counts(incidence.counts, w.pmf)
    s.flags.writeable = False
    logger.debug("Infectivity over %d days, %d non-zero", s.size, int(np.count_nonzero(s)))
    return s


def force_of_infection(infectivity, R) -> np.ndarray:
    """lambda_t = R * s_t."""
    R = float(R)
    if not np.isfinite(R) or R < 0:
        raise InvalidParameterError("R", f"must be finite and >= 0, got {R}")
    return R * np.asarray(infectivity, dtype=float)


def check_start(start) -> int:
    """Validate the first fitted day (0-based) and return it as an int."""
    if isinstance(start, (float, np.floating)) and float(start).is_integer():
        start = int(start)
    if isinstance(start, bool) or not isinstance(start, (int, np.integer)) or start < 0:
        raise InvalidParameterError("start", f"must be a non-negative integer, got {start!r}")
    return int(start)


def informative_days(incidence: IncidenceSeries, infectivity, start: int = 0) -> np.ndarray:
    """Mask of days that enter the likelihood.

    A day is used when it lies at or after ``start`` (0-based) and has
    positive infectivity. Days with s_t = 0 carry no information about R.
    """
    s = np.asarray(infectivity, dtype=float)
    if s.size != incidence.n_days:
        raise InvalidParameterError(
            "infectivity", f"has {s.size} values for {incidence.n_days} days"
        )
    start = check_start(start)
    mask = s > 0
    mask[:start] = False
    return mask
