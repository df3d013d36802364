import numpy as np
import pandas as pd
import pytest

from early_r.analytic.likelihood import (
    SPACING_TOL,
    LikelihoodProfile,
    estimate,
    make_r_grid,
    poisson_log_likelihood,
)
from early_r.errors import (
    DegenerateLikelihoodError,
    EmptyProfileError,
    InvalidParameterError,
)
from early_r.incidence import IncidenceSeries
from early_r.simulate.calculate_serial_weights import SerialIntervalDistribution, build
from early_r.simulate.force_of_infection import unscaled_infectivity

EARLY_COUNTS = [1, 0, 1, 2, 1, 3, 2, 4, 3, 5]


@pytest.fixture
def si():
    return build(15.3, 9.3)


@pytest.fixture
def incidence():
    return IncidenceSeries.from_counts(EARLY_COUNTS, start_date="2014-05-01")


def closed_form_mle(incidence, si):
    """Continuous MLE: sum(y) / sum(s) over days with positive infectivity."""
    s = unscaled_infectivity(incidence, si)
    used = s > 0
    return incidence.counts[used].sum() / s[used].sum()


# ---------- grid ----------

def test_make_r_grid():
    grid = make_r_grid(5.0, 0.1)
    assert grid.size == 51
    assert grid[0] == 0.0
    assert grid[-1] == pytest.approx(5.0)
    assert np.allclose(np.diff(grid), 0.1)

    assert make_r_grid().size == 1001


def test_make_r_grid_invalid():
    with pytest.raises(InvalidParameterError):
        make_r_grid(0.0, 0.1)
    with pytest.raises(InvalidParameterError):
        make_r_grid(-5.0, 0.1)
    with pytest.raises(InvalidParameterError):
        make_r_grid(5.0, 0.0)
    with pytest.raises(InvalidParameterError):
        make_r_grid(5.0, 0.3)
    with pytest.raises(InvalidParameterError):
        make_r_grid(5.0, 10.0)


def test_estimate_rejects_bad_grid(incidence, si):
    with pytest.raises(InvalidParameterError):
        estimate(incidence, si, [0.0, 0.2, 0.1])
    with pytest.raises(InvalidParameterError):
        estimate(incidence, si, [0.0, 0.1, 0.3])
    with pytest.raises(InvalidParameterError):
        estimate(incidence, si, [-0.1, 0.0, 0.1])
    with pytest.raises(InvalidParameterError):
        estimate(incidence, si, [])


def test_estimate_rejects_single_point_grid(incidence, si):
    """
    One grid point leaves nothing to normalise the relative likelihood or
    draw from; it is refused up front.
    """
    with pytest.raises(InvalidParameterError) as excinfo:
        estimate(incidence, si, [0.0])
    assert excinfo.value.parameter == "r_grid"
    with pytest.raises(InvalidParameterError):
        estimate(incidence, si, [1.5])
    profile = estimate(incidence, si, [1.0, 2.0])
    assert profile.relative_likelihood().max() == pytest.approx(1.0)


def test_grid_spacing_tolerance(incidence, si):
    step = 0.1
    jitter = 0.5 * SPACING_TOL * step
    estimate(incidence, si, [0.0, step, 2 * step + jitter])
    with pytest.raises(InvalidParameterError):
        estimate(incidence, si, [0.0, step, 2 * step + 4 * SPACING_TOL * step])


def test_start_is_checked_before_any_work(incidence, si, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("infectivity computed before start was validated")

    monkeypatch.setattr("early_r.analytic.likelihood.unscaled_infectivity", fail)
    for bad in (-1, 1.5, "2", True):
        with pytest.raises(InvalidParameterError) as excinfo:
            estimate(incidence, si, make_r_grid(5.0, 0.1), start=bad)
        assert excinfo.value.parameter == "start"


# ---------- empty profiles ----------

def test_all_zero_incidence_raises(si):
    inc = IncidenceSeries.from_counts([0] * 10, start_date="2014-05-01")
    with pytest.raises(EmptyProfileError):
        estimate(inc, si, make_r_grid(5.0, 0.1))


def test_single_case_on_last_day_raises(si):
    """
    The only case has no preceding incidence, so its day is excluded and
    nothing is left to fit.
    """
    inc = IncidenceSeries.from_counts([0, 0, 0, 0, 4], start_date="2014-05-01")
    with pytest.raises(EmptyProfileError):
        estimate(inc, si, make_r_grid(5.0, 0.1))


def test_one_informative_day_raises(si):
    inc = IncidenceSeries.from_counts([0, 0, 0, 3, 0], start_date="2014-05-01")
    with pytest.raises(EmptyProfileError):
        estimate(inc, si, make_r_grid(5.0, 0.1))


def test_start_offset_can_empty_the_fit(incidence, si):
    with pytest.raises(EmptyProfileError):
        estimate(incidence, si, make_r_grid(5.0, 0.1), start=9)
    profile = estimate(incidence, si, make_r_grid(5.0, 0.1), start=8)
    assert profile.n_informative_days == 2


# ---------- likelihood values ----------

def test_grid_matches_direct_likelihood(incidence, si):
    grid = make_r_grid(20.0, 0.5)
    profile = estimate(incidence, si, grid)
    y = incidence.counts[profile.included]
    s = profile.infectivity[profile.included]

    for i in (1, 7, 20, 40):
        direct = poisson_log_likelihood(y, s, grid[i])
        assert profile.log_likelihood[i] == pytest.approx(direct, rel=1e-10)


def test_zero_r_with_cases_is_minus_infinity(incidence, si):
    profile = estimate(incidence, si, make_r_grid(5.0, 0.1))
    assert profile.log_likelihood[0] == -np.inf
    assert np.all(np.isfinite(profile.log_likelihood[1:]))


def test_degenerate_day_raises():
    with pytest.raises(DegenerateLikelihoodError):
        poisson_log_likelihood([1, 2], [0.0, 1.0], 1.5)
    # zero count on a zero-rate day is fine
    assert poisson_log_likelihood([0, 2], [0.0, 1.0], 1.0) == pytest.approx(2 * np.log(1.0) - 1.0 - np.log(2.0))


def test_estimate_is_deterministic(incidence, si):
    grid = make_r_grid(10.0, 0.01)
    a = estimate(incidence, si, grid)
    b = estimate(incidence, si, grid)
    assert np.array_equal(a.log_likelihood, b.log_likelihood)
    assert a.point_estimate() == b.point_estimate()


# ---------- early outbreak scenario ----------

def test_early_outbreak_narrow_grid_peaks_at_upper_bound(incidence, si):
    """
    On [0, 5] the likelihood is still rising at the edge: this series grows
    faster than any R <= 5 explains with a 15-day serial interval.
    """
    assert closed_form_mle(incidence, si) > 5.0
    profile = estimate(incidence, si, make_r_grid(5.0, 0.1))
    assert np.all(np.diff(profile.log_likelihood) > 0)
    assert profile.point_estimate() == pytest.approx(5.0)


def test_early_outbreak_interior_maximum(incidence, si):
    grid = make_r_grid(40.0, 0.1)
    profile = estimate(incidence, si, grid)
    ll = profile.log_likelihood

    i_max = int(np.argmax(ll))
    assert 0 < i_max < grid.size - 1
    # unimodal: rises up to the maximum, falls after it
    d = np.diff(ll)
    assert np.all(d[:i_max] > 0)
    assert np.all(d[i_max:] < 0)

    assert abs(profile.point_estimate() - closed_form_mle(incidence, si)) <= 0.1
    assert profile.n_informative_days == 9


def test_confidence_interval_contains_estimate(incidence, si):
    profile = estimate(incidence, si, make_r_grid(40.0, 0.1))
    r_hat = profile.point_estimate()
    lower, upper = profile.confidence_interval(0.95)
    assert 0 < lower < r_hat < upper < 40.0

    # log-likelihood does not increase moving away from the estimate
    inside = (profile.r_grid >= lower) & (profile.r_grid <= upper)
    ll = profile.log_likelihood[inside]
    i_max = int(np.argmax(ll))
    assert np.all(np.diff(ll[: i_max + 1]) >= 0)
    assert np.all(np.diff(ll[i_max:]) <= 0)

    narrower = profile.confidence_interval(0.5)
    assert lower <= narrower[0] and narrower[1] <= upper


def test_confidence_interval_threshold(incidence, si):
    from scipy.stats import chi2

    profile = estimate(incidence, si, make_r_grid(40.0, 0.1))
    lower, upper = profile.confidence_interval(0.95)
    cut = profile.max_log_likelihood - 0.5 * chi2.ppf(0.95, 1)
    grid, ll = profile.r_grid, profile.log_likelihood

    assert np.all(ll[(grid >= lower - 1e-9) & (grid <= upper + 1e-9)] >= cut)
    i_lo = int(np.argmin(np.abs(grid - lower)))
    i_hi = int(np.argmin(np.abs(grid - upper)))
    assert ll[i_lo - 1] < cut
    assert ll[i_hi + 1] < cut


def test_invalid_level(incidence, si):
    profile = estimate(incidence, si, make_r_grid(10.0, 0.1))
    with pytest.raises(InvalidParameterError):
        profile.confidence_interval(1.0)
    with pytest.raises(InvalidParameterError):
        profile.confidence_interval(0.0)


def test_doubling_counts_keeps_estimate_and_narrows_interval(incidence, si):
    """
    Doubling every count doubles both sum(y) and sum(s), so the MLE is
    unchanged while the interval shrinks.
    """
    grid = make_r_grid(40.0, 0.1)
    single = estimate(incidence, si, grid)
    double = estimate(incidence.scaled(2), si, grid)

    assert double.point_estimate() == single.point_estimate()
    lo1, hi1 = single.confidence_interval()
    lo2, hi2 = double.confidence_interval()
    assert (hi2 - lo2) < (hi1 - lo1)
    assert lo1 <= lo2 and hi2 <= hi1


def test_no_growth_gives_zero_estimate(si):
    """Cases seed the series but nothing follows: R = 0 is most likely."""
    inc = IncidenceSeries.from_counts([3, 0, 0, 0, 0], start_date="2014-05-01")
    profile = estimate(inc, si, make_r_grid(5.0, 0.1))
    assert profile.point_estimate() == 0.0
    assert profile.confidence_interval()[0] == 0.0


def test_ties_resolve_to_smallest_r(incidence):
    w = SerialIntervalDistribution.from_pmf([1.0])
    s = unscaled_infectivity(incidence, w)
    profile = LikelihoodProfile(
        r_grid=np.array([0.0, 0.1, 0.2, 0.3]),
        log_likelihood=np.array([-3.0, -1.0, -1.0, -2.0]),
        infectivity=s,
        included=s > 0,
        incidence=incidence,
    )
    assert profile.point_estimate() == pytest.approx(0.1)


# ---------- outputs ----------

def test_force_of_infection_at_estimate(incidence, si):
    profile = estimate(incidence, si, make_r_grid(40.0, 0.1))
    lam = profile.force_of_infection()
    assert lam.shape == (incidence.n_days,)
    assert np.allclose(lam, profile.point_estimate() * profile.infectivity)
    assert np.allclose(profile.force_of_infection(1.0), profile.infectivity)


def test_relative_likelihood(incidence, si):
    profile = estimate(incidence, si, make_r_grid(40.0, 0.1))
    rel = profile.relative_likelihood()
    assert rel.max() == pytest.approx(1.0)
    assert rel[0] == 0.0


def test_sample_r(incidence, si):
    profile = estimate(incidence, si, make_r_grid(40.0, 0.1))
    draws = profile.sample_r(2000, seed=1)
    assert draws.shape == (2000,)
    assert np.array_equal(draws, profile.sample_r(2000, seed=1))
    assert np.all(np.isin(draws, profile.r_grid))

    lower, upper = profile.confidence_interval(0.95)
    share_inside = np.mean((draws >= lower) & (draws <= upper))
    assert share_inside > 0.85

    with pytest.raises(InvalidParameterError):
        profile.sample_r(0)


def test_summary_and_frame(incidence, si):
    profile = estimate(incidence, si, make_r_grid(40.0, 0.1))
    summary = profile.summary(0.9)
    assert summary["R"] == profile.point_estimate()
    assert (summary["lower"], summary["upper"]) == profile.confidence_interval(0.9)
    assert summary["informative_days"] == 9
    assert summary["n_days"] == 10

    df = profile.to_frame()
    assert isinstance(df, pd.DataFrame)
    assert list(df.columns) == ["R", "log_likelihood"]
    assert len(df) == 401
