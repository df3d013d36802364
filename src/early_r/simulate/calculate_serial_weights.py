# src/early_r/simulate/calculate_serial_weights.py
# This will compute discrete-time serial interval weights w_k
# from a continuous gamma distribution g(u)
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence

import numpy as np
from scipy.stats import gamma

from ..errors import InvalidParameterError

logger = logging.getLogger(__name__)

# Probability mass allowed beyond the last day of the support
TAIL_MASS = 1e-4


@dataclass(frozen=True, eq=False)
class SerialIntervalDistribution:
    """Discretised serial interval.

    pmf[k - 1] is the probability that the serial interval is k days, for
    k = 1..max_days. The weights are non-negative and sum to one.
    """

    pmf: np.ndarray
    mean: Optional[float] = None
    sd: Optional[float] = None

    @property
    def max_days(self) -> int:
        return self.pmf.size

    def weight(self, k: int) -> float:
        """w(k), zero outside 1..max_days."""
        if 1 <= k <= self.max_days:
            return float(self.pmf[k - 1])
        return 0.0

    @classmethod
    def from_pmf(cls, weights: Sequence[float]) -> "SerialIntervalDistribution":
        """Use explicit weights for days 1, 2, ... (renormalised to sum to one)."""
        w = np.array(weights, dtype=float)
        if w.ndim != 1 or w.size == 0:
            raise InvalidParameterError("weights", "must be a non-empty 1D sequence")
        if not np.all(np.isfinite(w)) or np.any(w < 0):
            raise InvalidParameterError("weights", "must be finite and non-negative")
        total = float(w.sum())
        if total <= 0:
            raise InvalidParameterError("weights", "must have positive total mass")
        w = w / total
        w.flags.writeable = False
        return cls(pmf=w)


def default_max_days(mean: float, std: float) -> int:
    """Support length leaving less than TAIL_MASS in the continuous tail."""
    shape = (mean / std) ** 2
    scale = std ** 2 / mean
    tail_day = gamma(a=shape, scale=scale).isf(TAIL_MASS)
    return int(max(math.ceil(mean + 10 * std), math.ceil(tail_day)))


# Weights are reused across estimates and projections for the same disease
@lru_cache(maxsize=64)
def compute_serial_weights(mean, std, k_max):
    """Calculates daily weights
    This function takes the mean and std of the serial interval, fits a gamma
    distribution by moment matching and integrates it over one-day bins
    centred on each whole day.
    Args:
        mean (float): serial interval mean in days
        std (float): serial interval standard deviation in days
        k_max (int): maximum number of days
    Returns:
        w (nparray(k_max,)): read-only array with weights that sum to one
    Raises:
        InvalidParameterError
    """
    if not mean > 0:
        raise InvalidParameterError("mean", f"must be > 0, got {mean}")
    if not std > 0:
        raise InvalidParameterError("standard_deviation", f"must be > 0, got {std}")
    if k_max < 1:
        raise InvalidParameterError("max_days", f"must be >= 1, got {k_max}")

    # shape = mean^2 / sd^2, rate = mean / sd^2
    alpha = (mean / std) ** 2
    theta = std ** 2 / mean
    g = gamma(a=alpha, scale=theta)

    # w_k = G(k + 0.5) - G(k - 0.5); mass below half a day is dropped
    edges = np.arange(k_max + 1, dtype=float) + 0.5
    cdf = g.cdf(edges)
    w = np.diff(cdf)

    total = float(w.sum())
    if total <= 0:
        raise InvalidParameterError(
            "mean", "serial interval puts no mass on days 1..max_days"
        )
    # Normalize w proportionally so that they sum to 1
    w = w / total
    w.flags.writeable = False
    logger.debug(
        "Serial weights mean=%s sd=%s: %d days, %.3g of mass renormalised",
        mean, std, k_max, 1.0 - total,
    )
    return w


def build(mean, standard_deviation, max_days=None) -> SerialIntervalDistribution:
    """Discretised gamma serial interval with the given mean and sd (days)."""
    if not mean > 0:
        raise InvalidParameterError("mean", f"must be > 0, got {mean}")
    if not standard_deviation > 0:
        raise InvalidParameterError(
            "standard_deviation", f"must be > 0, got {standard_deviation}"
        )
    if max_days is None:
        max_days = default_max_days(mean, standard_deviation)
    elif isinstance(max_days, bool) or int(max_days) != max_days:
        raise InvalidParameterError("max_days", f"must be an integer, got {max_days!r}")

    w = compute_serial_weights(float(mean), float(standard_deviation), int(max_days))
    return SerialIntervalDistribution(pmf=w, mean=float(mean), sd=float(standard_deviation))
