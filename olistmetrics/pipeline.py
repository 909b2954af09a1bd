"""
olistmetrics.pipeline

Main entrypoint:
    from olistmetrics import run_all, ProjectConfig
    run_all(ProjectConfig(data_dir="olist_data", out_dir="out"))

This will:
    - load the eight Olist CSV tables
    - filter them down to valid, joinable records
    - build the master dataset (one row per order item)
    - compute GMV / profitability / return-proxy / logistics reports
    - build RFM segments and LTV quartiles
    - build cohort retention & cumulative LTV, and CAC:LTV scenarios
    - write all outputs to <out_dir> as CSVs and PNGs
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import pandas as pd
import matplotlib.pyplot as plt

from . import cohorts, metrics, scoring
from .master import build_master_dataset, select_analysis_rows
from .normalize import DEFAULT_REJECT_STATUSES, data_quality_report, normalize_tables
from .utils import (
    coerce_datetimes_inplace,
    find_datetime_cols,
    finish_fig,
    standardize_columns,
    trim_strings,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

TABLE_FILES: Dict[str, str] = {
    "orders": "olist_orders_dataset.csv",
    "order_items": "olist_order_items_dataset.csv",
    "products": "olist_products_dataset.csv",
    "category_translation": "product_category_name_translation.csv",
    "customers": "olist_customers_dataset.csv",
    "payments": "olist_order_payments_dataset.csv",
    "reviews": "olist_order_reviews_dataset.csv",
    "sellers": "olist_sellers_dataset.csv",
}

# identifiers must stay strings (zip prefixes keep their leading zeros)
STRING_COLUMNS = (
    "order_id", "customer_id", "customer_unique_id", "product_id", "seller_id",
    "review_id", "customer_zip_code_prefix", "seller_zip_code_prefix",
)


@dataclass
class ProjectConfig:
    """
    Configuration for the pipeline.

    Attributes
    ----------
    data_dir : Path
        Directory containing the Olist CSV files (see ``TABLE_FILES``).
    out_dir : Path
        Directory where all derived CSVs and plots will be written.
    show_plots : bool
        Whether to display plots (useful in notebooks).
    save_plots : bool
        Whether to save plots as PNGs under out_dir.
    commission_rate : float
        Platform commission charged on item price.
    return_cost_rate : float
        Share of item price booked as return cost for poorly reviewed items.
    rfm_thresholds : RfmThresholds
        Score bands for recency / frequency / monetary.
    ltv_quantiles : int
        Number of equal-population LTV buckets.
    cohort_window_months : int
        Last elapsed month tracked per cohort.
    days_per_month : float
        Average month length used to convert elapsed time into months.
    as_of_date : str
        Reference date for recency.
    window_start, window_end : str or None
        Observation window on purchase timestamp (inclusive).
    qualifying_statuses : tuple
        Order statuses that count as completed purchases.
    reject_statuses : tuple
        Order statuses removed during normalization.
    seller_min_orders : int
        Sellers with fewer orders are left out of the seller report.
    cac_scenarios : tuple
        (name, simulated CAC) pairs.
    snapshot_cohort : str
        Acquisition month ("YYYY-MM") broken down in the cohort snapshot.
    top_category_count : int
        Categories kept in the GMV-ranked category dashboard.
    """
    data_dir: Path = Path("olist_data")
    out_dir: Path = Path("out")
    show_plots: bool = False
    save_plots: bool = True

    commission_rate: float = metrics.DEFAULT_COMMISSION_RATE
    return_cost_rate: float = metrics.DEFAULT_RETURN_COST_RATE
    rfm_thresholds: scoring.RfmThresholds = field(default_factory=scoring.RfmThresholds)
    ltv_quantiles: int = 4
    cohort_window_months: int = 12
    days_per_month: float = cohorts.DAYS_PER_MONTH
    as_of_date: str = "2018-12-31"
    window_start: Optional[str] = "2017-01-01"
    window_end: Optional[str] = "2018-12-31"
    qualifying_statuses: Tuple[str, ...] = ("delivered",)
    reject_statuses: Tuple[str, ...] = DEFAULT_REJECT_STATUSES
    seller_min_orders: int = 5
    cac_scenarios: Tuple[Tuple[str, float], ...] = cohorts.DEFAULT_CAC_SCENARIOS
    snapshot_cohort: str = "2018-01"
    top_category_count: int = 10

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        self.out_dir = Path(self.out_dir)
        if not 0 <= self.commission_rate <= 1:
            raise ValueError(f"commission_rate must be in [0, 1], got {self.commission_rate}")
        if not 0 <= self.return_cost_rate <= 1:
            raise ValueError(f"return_cost_rate must be in [0, 1], got {self.return_cost_rate}")
        if self.days_per_month <= 0:
            raise ValueError(f"days_per_month must be positive, got {self.days_per_month}")

    def table_path(self, name: str) -> Path:
        return self.data_dir / TABLE_FILES[name]


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def prepare_table(raw: pd.DataFrame) -> pd.DataFrame:
    """Standardize names, trim strings and parse datetime-like columns."""
    df = standardize_columns(raw)
    df = trim_strings(df)
    coerce_datetimes_inplace(df, find_datetime_cols(df))
    return df


def load_table(config: ProjectConfig, name: str) -> pd.DataFrame:
    path = config.table_path(name)
    if not path.exists():
        raise FileNotFoundError(f"Input table '{name}' not found: {path}")
    raw = pd.read_csv(path, dtype={c: str for c in STRING_COLUMNS}, low_memory=False)
    df = prepare_table(raw)
    log.info("loaded %s: %d rows", path.name, len(df))
    return df


def load_tables(config: ProjectConfig) -> Dict[str, pd.DataFrame]:
    """Load all eight Olist tables, keyed as in ``TABLE_FILES``."""
    return {name: load_table(config, name) for name in TABLE_FILES}


# ---------------------------------------------------------------------------
# Charts
# ---------------------------------------------------------------------------

def plot_segment_counts(summary: pd.DataFrame, config: ProjectConfig) -> None:
    fig, ax = plt.subplots(figsize=(9, 4))
    ax.bar(summary["customer_segment"], summary["customers"])
    ax.set_xlabel("Segment")
    ax.set_ylabel("Customers")
    ax.set_title("Customers by RFM Segment")
    plt.setp(ax.get_xticklabels(), rotation=45, ha="right")
    finish_fig(fig, "rfm_segment_counts.png", out_dir=config.out_dir,
               show=config.show_plots, save=config.save_plots)


def plot_monthly_gmv(monthly: pd.DataFrame, config: ProjectConfig) -> None:
    fig, ax = plt.subplots(figsize=(10, 4))
    ax.bar(monthly["order_period"], monthly["total_gmv"])
    ax.set_xlabel("Month")
    ax.set_ylabel("GMV")
    ax.set_title("Monthly GMV")
    plt.setp(ax.get_xticklabels(), rotation=45, ha="right")
    finish_fig(fig, "monthly_gmv.png", out_dir=config.out_dir,
               show=config.show_plots, save=config.save_plots)


def plot_retention_heatmap(matrix: pd.DataFrame, config: ProjectConfig) -> None:
    fig, ax = plt.subplots(figsize=(10, max(3, 0.35 * len(matrix))))
    im = ax.imshow(matrix.to_numpy(dtype=float), aspect="auto", cmap="Blues", vmin=0, vmax=100)
    ax.set_xticks(range(len(matrix.columns)))
    ax.set_xticklabels([str(c) for c in matrix.columns])
    ax.set_yticks(range(len(matrix.index)))
    ax.set_yticklabels([pd.Timestamp(i).strftime("%Y-%m") for i in matrix.index])
    ax.set_xlabel("Months since first purchase")
    ax.set_ylabel("Cohort")
    ax.set_title("Cohort Retention (%)")
    fig.colorbar(im, ax=ax)
    finish_fig(fig, "cohort_retention_heatmap.png", out_dir=config.out_dir,
               show=config.show_plots, save=config.save_plots)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def build_reports(master: pd.DataFrame, config: ProjectConfig) -> Dict[str, pd.DataFrame]:
    """
    Every report table for an already-built master dataset.

    The master rows are first restricted to qualifying statuses inside the
    observation window; each report then runs independently on that slice.
    """
    rows = select_analysis_rows(master, config.qualifying_statuses, config.window_start, config.window_end)
    log.info("analysis rows: %d of %d", len(rows), len(master))
    rates = {"commission_rate": config.commission_rate, "return_cost_rate": config.return_cost_rate}

    reports: Dict[str, pd.DataFrame] = {}
    reports["executive_summary"] = metrics.executive_summary(rows)
    reports["monthly_gmv"] = metrics.monthly_gmv(rows, **rates)
    reports["seller_profitability"] = metrics.seller_profitability(rows, min_orders=config.seller_min_orders, **rates)
    reports["category_profitability"] = metrics.category_profitability(rows, **rates)
    reports["region_profitability"] = metrics.region_profitability(rows, **rates)
    reports["loss_making_sellers"] = metrics.loss_making_alerts(rows, **rates)
    reports["loss_making_categories"] = metrics.loss_making_category_alerts(rows, **rates)
    reports["top_categories"] = metrics.top_categories(rows, config.top_category_count)
    reports["shipping_type_logistics"] = metrics.shipping_type_logistics(rows)
    reports["logistics_leakage"] = metrics.logistics_leakage_by_category(rows)
    reports["return_rate_by_category"] = metrics.return_rate_by_category(rows)

    profiles = scoring.build_customer_profiles(rows, config.as_of_date)
    rfm = scoring.score_rfm(profiles, config.rfm_thresholds)
    reports["rfm_customers"] = rfm
    reports["rfm_segment_summary"] = scoring.rfm_segment_summary(rfm)

    ltv = scoring.ltv_segmentation(rows, config.ltv_quantiles)
    reports["ltv_customers"] = ltv
    reports["ltv_segment_summary"] = scoring.ltv_segment_summary(ltv)
    reports["top_customer_tiers"] = scoring.top_customer_tiers(ltv)
    reports["ltv_by_state"] = scoring.ltv_by_state(ltv)
    reports["ltv_category_preferences"] = scoring.ltv_category_preferences(ltv, rows)
    reports["ltv_acquisition"] = scoring.ltv_acquisition(ltv)
    reports["customer_value_bands"] = scoring.customer_value_bands(ltv)

    reports["cohort_ltv"] = cohorts.cohort_ltv(rows, config.cohort_window_months, config.days_per_month)
    reports["cohort_snapshot"] = cohorts.cohort_snapshot(rows, config.snapshot_cohort, config.as_of_date)
    reports["cac_ltv_scenarios"] = cohorts.cac_ltv_scenarios(rows, config.cac_scenarios)
    return reports


def write_reports(reports: Dict[str, pd.DataFrame], out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for name, frame in reports.items():
        frame.to_csv(out_dir / f"{name}.csv", index=False)


# ---------------------------------------------------------------------------
# Main entrypoint
# ---------------------------------------------------------------------------

def run_all(config: ProjectConfig) -> Dict[str, pd.DataFrame]:
    """
    Run the full pipeline with the given configuration.

    Returns every written table keyed by its CSV stem.
    """
    config.out_dir.mkdir(parents=True, exist_ok=True)

    # 1) Load & normalize
    raw = load_tables(config)
    clean = normalize_tables(raw, config.reject_statuses)

    # 2) Master dataset
    master = build_master_dataset(clean)

    # 3) Reports
    reports = {"data_quality": data_quality_report(raw, clean)}
    reports.update(build_reports(master, config))
    write_reports(reports, config.out_dir)

    # 4) Charts
    if config.save_plots or config.show_plots:
        plot_segment_counts(reports["rfm_segment_summary"], config)
        if not reports["monthly_gmv"].empty:
            plot_monthly_gmv(reports["monthly_gmv"], config)
        if not reports["cohort_ltv"].empty:
            plot_retention_heatmap(cohorts.retention_matrix(reports["cohort_ltv"]), config)

    log.info("Pipeline completed. Outputs written to: %s", config.out_dir)
    return reports
