#!/usr/bin/env python3
# src/early_r/runner.py: command line runner
"""
Run examples:
  PYTHONPATH=src python -m early_r.runner estimate --counts 1,0,1,2,1,3 --start-date 2014-05-01
  PYTHONPATH=src python -m early_r.runner estimate --onsets data/onsets.csv --end-date 2014-06-01 --json
  PYTHONPATH=src python -m early_r.runner project --counts 1,0,1,2 --start-date 2014-05-01 --sample-r --n-sim 500
"""

import argparse
import json
import logging
import sys
import time

from .analytic.likelihood import estimate
from .config import EstimationConfig
from .errors import EarlyRError, InvalidParameterError
from .incidence import IncidenceSeries, parse_counts
from .simulate.project import simulate_forward, write_projections_csv

logger = logging.getLogger(__name__)


def add_common_arguments(p):
    src = p.add_argument_group("incidence")
    src.add_argument("--counts", type=str, default=None, metavar="LIST",
                     help="Daily case counts (comma/space separated)")
    src.add_argument("--start-date", default=None, metavar="DATE",
                     help="Date of the first count, or first day of the window for --onsets")
    src.add_argument("--onsets", default=None, metavar="PATH",
                     help="CSV with one onset date per row")
    src.add_argument("--date-column", default="onset", metavar="COL",
                     help="Onset date column in --onsets (default: onset)")
    src.add_argument("--end-date", default=None, metavar="DATE",
                     help="Last day of observation (default: latest onset)")

    model = p.add_argument_group("model")
    model.add_argument("--config", default=None, metavar="PATH",
                       help="JSON file with settings; command line flags take precedence")
    model.add_argument("--si-mean", type=float, default=None, metavar="DAYS",
                       help="Serial interval mean (default: 15.3)")
    model.add_argument("--si-sd", type=float, default=None, metavar="DAYS",
                       help="Serial interval standard deviation (default: 9.3)")
    model.add_argument("--max-days", type=int, default=None, metavar="DAYS",
                       help="Serial interval support in days (default: tail mass < 1e-4)")
    model.add_argument("--r-max", type=float, default=None, metavar="R_MAX",
                       help="Maximum R value (default: 10.0)")
    model.add_argument("--grid-step", type=float, default=None, metavar="STEP",
                       help="Spacing of the R grid (default: 0.01)")
    model.add_argument("--start", type=int, default=None, metavar="DAY",
                       help="First day (0-based) used in the fit (default: 0)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def load_config(args) -> EstimationConfig:
    cfg = EstimationConfig.from_json(args.config) if args.config else EstimationConfig()
    cfg = cfg.updated(
        si_mean=args.si_mean,
        si_sd=args.si_sd,
        max_days=args.max_days,
        r_max=args.r_max,
        grid_step=args.grid_step,
        start=args.start,
        level=getattr(args, "level", None),
        n_days=getattr(args, "n_days", None),
        n_replicates=getattr(args, "n_sim", None),
        seed=getattr(args, "seed", None),
    )
    return cfg.validate()


def load_incidence(args) -> IncidenceSeries:
    if args.counts and args.onsets:
        raise InvalidParameterError("incidence", "give either --counts or --onsets, not both")
    if args.counts:
        if args.start_date is None:
            raise InvalidParameterError("start_date", "required with --counts")
        return IncidenceSeries.from_counts(parse_counts(args.counts), args.start_date)
    if args.onsets:
        return IncidenceSeries.from_csv(
            args.onsets,
            date_column=args.date_column,
            end_date=args.end_date,
            start_date=args.start_date,
        )
    raise InvalidParameterError("incidence", "one of --counts or --onsets is required")


def run_estimate(args):
    cfg = load_config(args)
    incidence = load_incidence(args)
    profile = estimate(incidence, cfg.serial_interval(), cfg.r_grid(), start=cfg.start)
    result = profile.summary(cfg.level)

    if args.profile_out:
        profile.to_frame().to_csv(args.profile_out, index=False)
        logger.info("Likelihood profile written to %s", args.profile_out)

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        pct = int(round(100 * cfg.level))
        print(f"R = {result['R']:.4g} ({pct}% CI {result['lower']:.4g} - {result['upper']:.4g})")
        print(f"Informative days: {result['informative_days']} of {result['n_days']}")
        if result["R"] >= result["grid_max"]:
            print("Warning: estimate is at the top of the grid; increase --r-max")
    return result


def run_project(args):
    cfg = load_config(args)
    incidence = load_incidence(args)
    w = cfg.serial_interval()

    if args.sample_r:
        profile = estimate(incidence, w, cfg.r_grid(), start=cfg.start)
        R = profile.sample_r(cfg.n_replicates, seed=cfg.seed)
    elif args.R is not None:
        R = args.R
    else:
        raise InvalidParameterError("R", "give --R or --sample-r")

    trajectories = simulate_forward(
        incidence, w, R, n_days=cfg.n_days, n_replicates=cfg.n_replicates, seed=cfg.seed
    )
    csv_path = write_projections_csv(
        trajectories,
        R,
        out_path=args.out,
        use_tempfile=args.out is None,
        start_date=incidence.future_dates(1)[0],
    )
    print("Projections ->", csv_path)
    return trajectories, csv_path


def main(argv=None):
    p = argparse.ArgumentParser(description="Estimate R from early outbreak incidence")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- estimate ----------
    est_p = sub.add_parser("estimate", help="Maximum-likelihood R and confidence interval")
    add_common_arguments(est_p)
    est_p.add_argument("--level", type=float, default=None, metavar="LEVEL",
                       help="Confidence level (default: 0.95)")
    est_p.add_argument("--profile-out", default=None, metavar="PATH",
                       help="Write the likelihood profile to this CSV")
    est_p.add_argument("--json", action="store_true", help="Print the result as JSON")

    # ---------- project ----------
    proj_p = sub.add_parser("project", help="Simulate future incidence")
    add_common_arguments(proj_p)
    r_src = proj_p.add_mutually_exclusive_group()
    r_src.add_argument("--R", dest="R", type=float, default=None, metavar="R",
                       help="Reproduction number used for every replicate")
    r_src.add_argument("--sample-r", action="store_true",
                       help="Draw R per replicate from the likelihood profile")
    proj_p.add_argument("--n-days", type=int, default=None, metavar="DAYS",
                        help="Days to project (default: 30)")
    proj_p.add_argument("-N", "--n-sim", dest="n_sim", type=int, default=None, metavar="N",
                        help="Number of trajectories (default: 1000)")
    proj_p.add_argument("--seed", type=int, default=None, metavar="SEED",
                        help="RNG seed for reproducibility")
    proj_p.add_argument("--out", default=None, metavar="PATH",
                        help="Output CSV path (default: a temporary file)")

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    t0 = time.perf_counter()

    try:
        if args.cmd == "estimate":
            run_estimate(args)
        elif args.cmd == "project":
            run_project(args)
    except (EarlyRError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    logger.info("Done in %.2fs", time.perf_counter() - t0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
