"""
Command line entrypoint: ``python -m olistmetrics --data-dir olist_data --out-dir out``.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .pipeline import ProjectConfig, run_all


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="olistmetrics",
        description="Compute GMV, profitability, RFM, LTV and cohort reports from the Olist CSV tables.",
    )
    parser.add_argument("--data-dir", default="olist_data", help="directory holding the Olist CSV files")
    parser.add_argument("--out-dir", default="out", help="directory for CSV / PNG outputs")
    parser.add_argument("--commission-rate", type=float, default=0.05)
    parser.add_argument("--return-cost-rate", type=float, default=0.25)
    parser.add_argument("--as-of-date", default="2018-12-31", help="reference date for recency")
    parser.add_argument("--window-start", default="2017-01-01")
    parser.add_argument("--window-end", default="2018-12-31")
    parser.add_argument("--cohort-window-months", type=int, default=12)
    parser.add_argument("--snapshot-cohort", default="2018-01", help="acquisition month (YYYY-MM) to break down")
    parser.add_argument("--no-plots", action="store_true", help="skip PNG charts")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    config = ProjectConfig(
        data_dir=args.data_dir,
        out_dir=args.out_dir,
        save_plots=not args.no_plots,
        commission_rate=args.commission_rate,
        return_cost_rate=args.return_cost_rate,
        as_of_date=args.as_of_date,
        window_start=args.window_start or None,
        window_end=args.window_end or None,
        cohort_window_months=args.cohort_window_months,
        snapshot_cohort=args.snapshot_cohort,
    )
    run_all(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
