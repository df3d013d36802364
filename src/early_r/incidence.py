# src/early_r/incidence.py
"""
Daily incidence container.

An IncidenceSeries holds one count per calendar day with no gaps. It is
built once, either from raw onset dates plus an explicit end date (so the
series is not cut short at the last observed case) or from counts that are
already daily, and never changes afterwards.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InvalidParameterError

logger = logging.getLogger(__name__)

ONE_DAY = dt.timedelta(days=1)


def _as_date(value, name: str) -> dt.date:
    """Coerce strings, datetimes and pandas timestamps to a plain date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return pd.Timestamp(value).date()
    except (TypeError, ValueError) as exc:
        raise InvalidParameterError(name, f"cannot interpret {value!r} as a date") from exc


@dataclass(frozen=True, eq=False)
class IncidenceSeries:
    """Counts of new cases per day, one entry per consecutive calendar day."""

    dates: Tuple[dt.date, ...]
    counts: np.ndarray

    def __post_init__(self):
        dates = tuple(_as_date(d, "dates") for d in self.dates)
        counts = np.asarray(self.counts)

        if counts.ndim != 1:
            raise InvalidParameterError("counts", "must be a 1D sequence")
        if len(dates) == 0:
            raise InvalidParameterError("dates", "series must cover at least one day")
        if len(dates) != counts.size:
            raise InvalidParameterError(
                "counts", f"got {counts.size} counts for {len(dates)} dates"
            )
        if counts.dtype.kind == "f":
            if not np.all(np.isfinite(counts)) or np.any(counts != np.round(counts)):
                raise InvalidParameterError("counts", "must be whole numbers")
        elif counts.dtype.kind not in "iu":
            raise InvalidParameterError("counts", f"unsupported dtype {counts.dtype}")
        if np.any(counts < 0):
            raise InvalidParameterError("counts", "must be non-negative")

        # Consecutive days only; gaps must already be filled with zeros
        for prev, nxt in zip(dates[:-1], dates[1:]):
            if nxt - prev != ONE_DAY:
                raise InvalidParameterError(
                    "dates", f"{prev} is followed by {nxt}; days must be consecutive"
                )

        counts = counts.astype(np.int64)
        counts.flags.writeable = False
        object.__setattr__(self, "dates", dates)
        object.__setattr__(self, "counts", counts)

    # ---------- constructors ----------

    @classmethod
    def from_dates(
        cls,
        onset_dates: Iterable,
        end_date,
        start_date=None,
    ) -> "IncidenceSeries":
        """Count onsets per day between start_date and end_date (inclusive).

        Args:
            onset_dates: one entry per case, anything pandas can read as a date
            end_date: last day of the observation window
            start_date: first day of the window; defaults to the earliest onset
        Returns:
            IncidenceSeries with zero-count days materialised
        Raises:
            InvalidParameterError
        """
        end = _as_date(end_date, "end_date")
        onsets = [_as_date(d, "onset_dates") for d in onset_dates]

        if start_date is None:
            if not onsets:
                raise InvalidParameterError(
                    "start_date", "required when there are no onset dates"
                )
            start = min(onsets)
        else:
            start = _as_date(start_date, "start_date")

        if start > end:
            raise InvalidParameterError("end_date", f"{end} is before start date {start}")
        late = [d for d in onsets if d > end]
        if late:
            raise InvalidParameterError(
                "onset_dates", f"{len(late)} onset(s) after end date {end}, e.g. {late[0]}"
            )
        early = [d for d in onsets if d < start]
        if early:
            raise InvalidParameterError(
                "onset_dates", f"{len(early)} onset(s) before start date {start}, e.g. {early[0]}"
            )

        days = pd.date_range(start, end, freq="D")
        per_day = (
            pd.Series(pd.to_datetime(onsets), dtype="datetime64[ns]")
            .value_counts()
            .reindex(days, fill_value=0)
        )
        logger.debug(
            "Built incidence from %d onsets over %d days", len(onsets), len(days)
        )
        return cls(
            dates=tuple(d.date() for d in days),
            counts=per_day.to_numpy(dtype=np.int64),
        )

    @classmethod
    def from_counts(cls, counts: Sequence, start_date) -> "IncidenceSeries":
        """Wrap daily counts that start on start_date."""
        start = _as_date(start_date, "start_date")
        arr = np.asarray(counts)
        dates = tuple(start + i * ONE_DAY for i in range(arr.size))
        return cls(dates=dates, counts=arr)

    @classmethod
    def from_csv(
        cls,
        path,
        date_column: str = "onset",
        end_date=None,
        start_date=None,
    ) -> "IncidenceSeries":
        """Read one onset date per row from a CSV file.

        Rows with an empty date are dropped. end_date defaults to the latest
        onset in the file.
        """
        try:
            df = pd.read_csv(path)
        except OSError as exc:
            raise InvalidParameterError("onsets", f"cannot read {path}: {exc.strerror or exc}") from exc
        except ValueError as exc:
            # pandas EmptyDataError and ParserError
            raise InvalidParameterError("onsets", f"cannot parse {path}: {exc}") from exc
        if date_column not in df.columns:
            raise InvalidParameterError(
                "date_column", f"{date_column!r} not in columns {list(df.columns)}"
            )
        try:
            onsets = pd.to_datetime(df[date_column].dropna())
        except (ValueError, TypeError) as exc:
            raise InvalidParameterError("onsets", f"unparseable date in column {date_column!r}: {exc}") from exc
        if end_date is None:
            if onsets.empty:
                raise InvalidParameterError("end_date", "required when the file has no onsets")
            end_date = onsets.max()
        return cls.from_dates(onsets, end_date=end_date, start_date=start_date)

    # ---------- accessors ----------

    def __len__(self):
        return self.counts.size

    @property
    def n_days(self) -> int:
        return self.counts.size

    @property
    def start_date(self) -> dt.date:
        return self.dates[0]

    @property
    def end_date(self) -> dt.date:
        return self.dates[-1]

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def scaled(self, factor: int) -> "IncidenceSeries":
        """Multiply every count by a whole-number factor."""
        if int(factor) != factor or factor < 0:
            raise InvalidParameterError("factor", "must be a non-negative integer")
        return IncidenceSeries(dates=self.dates, counts=self.counts * int(factor))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"date": pd.to_datetime(self.dates), "count": self.counts})

    def future_dates(self, n_days: int) -> Tuple[dt.date, ...]:
        """The n_days calendar days following the end of the series."""
        return tuple(self.end_date + (i + 1) * ONE_DAY for i in range(n_days))


def parse_counts(s: Optional[str]):
    """Parse '1,0 2;3' into [1, 0, 2, 3]."""
    if not s:
        return []
    try:
        return [int(t) for t in re.split(r"[,\s;]+", s.strip()) if t]
    except ValueError as exc:
        raise InvalidParameterError("counts", f"expected whole numbers in {s!r}") from exc
