# src/early_r/simulate/project.py
# Forward projection of daily incidence with the renewal method.
#
# Each replicate continues the observed series: the force of infection on a
# future day is built from the observed counts followed by that replicate's
# own simulated counts, and new cases are Poisson(R * s_t).

from __future__ import annotations

import csv
import logging
import tempfile
from pathlib import Path
from typing import Optional

import numpy as np
from numpy.random import default_rng

from ..errors import InvalidParameterError
from ..incidence import IncidenceSeries
from .calculate_serial_weights import SerialIntervalDistribution

logger = logging.getLogger(__name__)

# Largest daily Poisson rate drawn; numpy rejects rates near the int64 range
MAX_DAILY_RATE = 1e15


def _replicate_r(R, n_replicates: int) -> np.ndarray:
    """Broadcast R to one value per replicate."""
    r_arr = np.asarray(R, dtype=float)
    if r_arr.ndim == 0:
        r_arr = np.full(n_replicates, float(r_arr))
    elif r_arr.shape != (n_replicates,):
        raise InvalidParameterError(
            "R", f"expected a scalar or {n_replicates} values, got shape {r_arr.shape}"
        )
    if not np.all(np.isfinite(r_arr)) or np.any(r_arr < 0):
        raise InvalidParameterError("R", "must be finite and >= 0")
    return r_arr


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or int(value) != value or value < 1:
        raise InvalidParameterError(name, f"must be an integer >= 1, got {value!r}")
    return int(value)


def simulate_forward(
    incidence: IncidenceSeries,
    w: SerialIntervalDistribution,
    R,
    n_days: int,
    n_replicates: int,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Simulate n_replicates incidence trajectories for n_days after the series.

    Args:
        incidence: observed daily counts (the history every replicate starts from)
        w: discretised serial interval
        R: reproduction number, a scalar or one value per replicate
        n_days: number of days to project
        n_replicates: number of independent trajectories
        seed: seed for numpy's default_rng
    Returns:
        int array of shape (n_replicates, n_days)
    Raises:
        InvalidParameterError: bad arguments, or a daily rate above MAX_DAILY_RATE
    """
    n_days = _positive_int(n_days, "n_days")
    n_replicates = _positive_int(n_replicates, "n_replicates")
    r_arr = _replicate_r(R, n_replicates)

    rng = default_rng(seed)
    w_arr = w.pmf
    k_support = w_arr.size
    T = incidence.n_days

    # Observed history followed by the projected days, one row per replicate
    history = np.zeros((n_replicates, T + n_days), dtype=np.int64)
    history[:, :T] = incidence.counts

    for t in range(T, T + n_days):
        max_lag = min(k_support, t)
        past = history[:, t - max_lag: t]          # I_{t-max_lag}..I_{t-1}
        ws = w_arr[:max_lag]                        # w_1..w_maxlag
        lam_base = past[:, ::-1] @ ws               # align w_s with I_{t-s}
        lam = r_arr * lam_base
        too_big = lam > MAX_DAILY_RATE
        if np.any(too_big):
            i = int(np.argmax(too_big))
            raise InvalidParameterError(
                "R",
                f"R={r_arr[i]:g} pushes the daily rate to {lam[i]:.3g} on projected day "
                f"{t - T + 1} (limit {MAX_DAILY_RATE:.0e}); lower R or n_days",
            )
        history[:, t] = rng.poisson(lam)

    projected = history[:, T:]
    logger.debug(
        "Projected %d replicates over %d days; mean final-day incidence %.3g",
        n_replicates, n_days, float(projected[:, -1].mean()),
    )
    return projected


def default_csv_path(use_tempfile=True):
    """Define the filepath of csv"""
    if use_tempfile:
        tf = tempfile.NamedTemporaryFile(prefix="projected_cases_", suffix=".csv")
        p = Path(tf.name)
        tf.close()
        return p
    return Path("projected_cases.csv")


def write_projections_csv(
    trajectories,
    R,
    out_path=None,
    use_tempfile=True,
    start_date=None,
):
    """Write one row per replicate: sim_id, R_draw, day columns, cumulative_cases.

    Day columns are named day_1..day_n, or by ISO date when start_date (the
    first projected day) is given.
    """
    traj = np.asarray(trajectories)
    if traj.ndim != 2:
        raise InvalidParameterError("trajectories", "must be a 2D array (replicates x days)")
    n_rep, n_days = traj.shape
    r_arr = _replicate_r(R, n_rep)

    if out_path is None:
        csv_path = default_csv_path(use_tempfile=use_tempfile)
    else:
        csv_path = Path(out_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    if start_date is None:
        day_cols = [f"day_{d}" for d in range(1, n_days + 1)]
    else:
        future = IncidenceSeries.from_counts(np.zeros(n_days, dtype=int), start_date)
        day_cols = [d.isoformat() for d in future.dates]
    header = ["sim_id", "R_draw"] + day_cols + ["cumulative_cases"]

    with csv_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        for sim_id in range(1, n_rep + 1):
            row = traj[sim_id - 1]
            writer.writerow([sim_id, float(r_arr[sim_id - 1]), *row.tolist(), int(row.sum())])

    logger.info("Wrote %d projected trajectories to %s", n_rep, csv_path)
    return csv_path
