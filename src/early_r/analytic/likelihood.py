#!/usr/bin/env python3
# src/early_r/analytic/likelihood.py
"""
Poisson branching-process likelihood for a constant reproduction number.

The log-likelihood of the observed incidence given R is evaluated on a
regular grid of candidate values. The unscaled infectivity is computed once
and reused for every grid point.
"""

# Store type annotations as strings instead of evaluating them immediately.
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.special import gammaln, xlogy
from scipy.stats import chi2

from ..errors import DegenerateLikelihoodError, EmptyProfileError, InvalidParameterError
from ..incidence import IncidenceSeries
from ..simulate.calculate_serial_weights import SerialIntervalDistribution
from ..simulate.force_of_infection import check_start, informative_days, unscaled_infectivity

logger = logging.getLogger(__name__)

DEFAULT_R_MAX = 10.0
DEFAULT_GRID_STEP = 0.01
DEFAULT_LEVEL = 0.95
MIN_INFORMATIVE_DAYS = 2

# Relative tolerance for "grid_step divides r_max"
GRID_TOL = 1e-9
# Relative tolerance on the steps of an explicit grid
SPACING_TOL = 1e-6
# Fewest points an explicit grid may have
MIN_GRID_POINTS = 2


def make_r_grid(r_max: float = DEFAULT_R_MAX, grid_step: float = DEFAULT_GRID_STEP) -> np.ndarray:
    """Candidate R values 0, grid_step, ..., r_max.

    Raises:
        InvalidParameterError: r_max or grid_step not > 0, or grid_step
            does not divide r_max evenly
    """
    r_max = float(r_max)
    grid_step = float(grid_step)
    if not (np.isfinite(r_max) and r_max > 0):
        raise InvalidParameterError("r_max", f"must be > 0, got {r_max}")
    if not (np.isfinite(grid_step) and grid_step > 0):
        raise InvalidParameterError("grid_step", f"must be > 0, got {grid_step}")

    n_steps = r_max / grid_step
    n_int = int(round(n_steps))
    if n_int < 1 or abs(n_steps - n_int) > GRID_TOL * max(1.0, n_steps):
        raise InvalidParameterError(
            "grid_step", f"{grid_step} does not evenly divide r_max={r_max}"
        )
    return np.arange(n_int + 1, dtype=float) * grid_step


def _check_r_grid(r_grid) -> np.ndarray:
    grid = np.array(r_grid, dtype=float)
    if grid.ndim != 1 or grid.size < MIN_GRID_POINTS:
        raise InvalidParameterError(
            "r_grid", f"must be a 1D sequence of at least {MIN_GRID_POINTS} values, got shape {grid.shape}"
        )
    if not np.all(np.isfinite(grid)) or np.any(grid < 0):
        raise InvalidParameterError("r_grid", "values must be finite and >= 0")
    steps = np.diff(grid)
    if np.any(steps <= 0):
        raise InvalidParameterError("r_grid", "values must be strictly increasing")
    if np.any(np.abs(steps - steps[0]) > SPACING_TOL * steps[0]):
        raise InvalidParameterError("r_grid", "values must be equally spaced")
    grid.flags.writeable = False
    return grid


def poisson_log_likelihood(counts, infectivity, R: float) -> float:
    """Sum of log Poisson(y_t | R s_t) over the days passed in.

    Raises:
        DegenerateLikelihoodError: a day has s_t = 0 but y_t > 0
    """
    y = np.asarray(counts, dtype=float)
    s = np.asarray(infectivity, dtype=float)
    if np.any((s <= 0) & (y > 0)):
        raise DegenerateLikelihoodError(
            "positive count on a day with zero infectivity; exclude it from the fit"
        )
    lam = R * s
    # xlogy gives 0 for y = 0 and -inf for y > 0, lam = 0 (R = 0)
    with np.errstate(divide="ignore"):
        terms = xlogy(y, lam) - lam - gammaln(y + 1.0)
    return float(np.sum(terms))


def _grid_log_likelihood(y: np.ndarray, s: np.ndarray, grid: np.ndarray) -> np.ndarray:
    """Log-likelihood for every R in grid; y and s hold only the fitted days."""
    # log(R s) = log R + log s, so split the sum to avoid a (grid x days) matrix
    sum_y = float(y.sum())
    sum_s = float(s.sum())
    const = float(np.sum(xlogy(y, s) - gammaln(y + 1.0)))
    # y * log R with y = 0 is 0 even at R = 0
    with np.errstate(divide="ignore", invalid="ignore"):
        y_log_r = np.where(grid > 0, sum_y * np.log(grid), 0.0 if sum_y == 0 else -np.inf)
    return y_log_r - grid * sum_s + const


@dataclass(frozen=True, eq=False)
class LikelihoodProfile:
    """Log-likelihood of the observed incidence over a grid of R values."""

    r_grid: np.ndarray
    log_likelihood: np.ndarray
    infectivity: np.ndarray
    included: np.ndarray
    incidence: IncidenceSeries

    @property
    def n_informative_days(self) -> int:
        return int(np.count_nonzero(self.included))

    @property
    def max_log_likelihood(self) -> float:
        return float(self.log_likelihood[self._argmax()])

    def _argmax(self) -> int:
        # np.argmax returns the first (smallest R) index on ties
        return int(np.argmax(self.log_likelihood))

    def point_estimate(self) -> float:
        """Maximum-likelihood R on the grid."""
        return float(self.r_grid[self._argmax()])

    def confidence_interval(self, level: float = DEFAULT_LEVEL) -> Tuple[float, float]:
        """Likelihood-ratio interval (lower, upper) on the grid.

        The interval is the contiguous run of grid points around the point
        estimate whose log-likelihood is within 0.5 * chi2_1(level) of the
        maximum.
        """
        if not 0 < level < 1:
            raise InvalidParameterError("level", f"must lie in (0, 1), got {level}")
        if self.n_informative_days < MIN_INFORMATIVE_DAYS:
            raise EmptyProfileError(
                f"{self.n_informative_days} informative day(s); need {MIN_INFORMATIVE_DAYS}"
            )
        threshold = self.max_log_likelihood - 0.5 * chi2.ppf(level, df=1)
        inside = self.log_likelihood >= threshold

        i_max = self._argmax()
        lo = i_max
        while lo > 0 and inside[lo - 1]:
            lo -= 1
        hi = i_max
        while hi < inside.size - 1 and inside[hi + 1]:
            hi += 1
        return float(self.r_grid[lo]), float(self.r_grid[hi])

    def relative_likelihood(self) -> np.ndarray:
        """Likelihood scaled so that its maximum is 1."""
        return np.exp(self.log_likelihood - self.max_log_likelihood)

    def force_of_infection(self, R: Optional[float] = None) -> np.ndarray:
        """lambda_t for every observed day, at R or at the point estimate."""
        if R is None:
            R = self.point_estimate()
        if not np.isfinite(R) or R < 0:
            raise InvalidParameterError("R", f"must be finite and >= 0, got {R}")
        return float(R) * self.infectivity

    def sample_r(self, n: int, seed=None) -> np.ndarray:
        """Draw n values of R from the grid, weighted by likelihood."""
        if isinstance(n, bool) or int(n) != n or n < 1:
            raise InvalidParameterError("n", f"must be a positive integer, got {n!r}")
        rng = np.random.default_rng(seed)
        weights = self.relative_likelihood()
        return rng.choice(self.r_grid, size=int(n), replace=True, p=weights / weights.sum())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"R": self.r_grid, "log_likelihood": self.log_likelihood})

    def summary(self, level: float = DEFAULT_LEVEL) -> Dict:
        lower, upper = self.confidence_interval(level)
        return {
            "R": self.point_estimate(),
            "lower": lower,
            "upper": upper,
            "level": float(level),
            "max_log_likelihood": self.max_log_likelihood,
            "informative_days": self.n_informative_days,
            "n_days": self.incidence.n_days,
            "grid_min": float(self.r_grid[0]),
            "grid_max": float(self.r_grid[-1]),
        }


def estimate(
    incidence: IncidenceSeries,
    w: SerialIntervalDistribution,
    r_grid=None,
    start: int = 0,
) -> LikelihoodProfile:
    """Evaluate the Poisson renewal log-likelihood over r_grid.

    Args:
        incidence: observed daily counts
        w: discretised serial interval
        r_grid: candidate R values; defaults to make_r_grid()
        start: first day (0-based) allowed into the fit
    Returns:
        LikelihoodProfile
    Raises:
        InvalidParameterError: malformed grid or start
        EmptyProfileError: fewer than 2 days with positive infectivity
    """
    grid = make_r_grid() if r_grid is None else _check_r_grid(r_grid)
    start = check_start(start)

    s = unscaled_infectivity(incidence, w)
    mask = informative_days(incidence, s, start=start)
    n_used = int(np.count_nonzero(mask))
    if n_used < MIN_INFORMATIVE_DAYS:
        raise EmptyProfileError(
            f"only {n_used} of {incidence.n_days} day(s) have positive infectivity; "
            f"need at least {MIN_INFORMATIVE_DAYS} to estimate R"
        )

    y = incidence.counts[mask].astype(float)
    loglik = _grid_log_likelihood(y, s[mask], grid)
    loglik.flags.writeable = False
    mask.flags.writeable = False

    profile = LikelihoodProfile(
        r_grid=grid,
        log_likelihood=loglik,
        infectivity=s,
        included=mask,
        incidence=incidence,
    )
    logger.info(
        "R = %.4g from %d informative days (grid %.4g..%.4g, %d points)",
        profile.point_estimate(), n_used, grid[0], grid[-1], grid.size,
    )
    return profile
