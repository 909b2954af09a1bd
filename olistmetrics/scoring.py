"""
olistmetrics.scoring

Two independent customer segmentations over the master dataset:

- RFM: fixed threshold bands → (R, F, M) scores 1..5 → one of ten segments
  by first-match rules.
- LTV: equal-population quartiles of order-level payment totals → value tier.

The two are never reconciled; they answer different questions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from .master import order_level
from .metrics import POOR_REVIEW_MAX
from .utils import ntile, percent_rank, safe_div

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RfmThresholds:
    """
    Score bands for RFM.

    Attributes
    ----------
    recency_days : tuple
        Upper bounds (inclusive) for scores 5, 4, 3, 2; anything above the
        last bound scores 1.
    frequency : tuple
        Lower bounds (inclusive) for scores 2, 3, 4, 5 on distinct order count.
    monetary : tuple
        Lower bounds (inclusive) for scores 2, 3, 4, 5 on summed item price.
    """
    recency_days: Tuple[float, ...] = (30, 90, 180, 365)
    frequency: Tuple[float, ...] = (1, 2, 3, 5)
    monetary: Tuple[float, ...] = (100, 200, 500, 1000)

    def __post_init__(self) -> None:
        for name in ("recency_days", "frequency", "monetary"):
            bounds = getattr(self, name)
            if len(bounds) != 4:
                raise ValueError(f"{name} needs 4 bounds, got {len(bounds)}")
            if any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
                raise ValueError(f"{name} bounds must be strictly increasing: {bounds}")


def score_lower_is_better(values: pd.Series, bounds: Sequence[float]) -> pd.Series:
    """≤ bounds[0] → 5, ≤ bounds[1] → 4, ... , above the last bound → 1."""
    top = len(bounds) + 1
    return pd.Series(
        np.select([values <= b for b in bounds], list(range(top, 1, -1)), default=1),
        index=values.index,
    ).astype("int64")


def score_higher_is_better(values: pd.Series, bounds: Sequence[float]) -> pd.Series:
    """≥ bounds[-1] → 5, ≥ bounds[-2] → 4, ... , below bounds[0] → 1."""
    top = len(bounds) + 1
    return pd.Series(
        np.select([values >= b for b in reversed(bounds)], list(range(top, 1, -1)), default=1),
        index=values.index,
    ).astype("int64")


# ---------------------------------------------------------------------------
# RFM segments
# ---------------------------------------------------------------------------

SegmentRule = Tuple[str, Callable[[int, int, int], bool]]

RFM_SEGMENT_RULES: Tuple[SegmentRule, ...] = (
    ("Champions",          lambda r, f, m: r >= 4 and f >= 4 and m >= 4),
    ("Loyal",              lambda r, f, m: r >= 3 and f >= 3 and m >= 4),
    ("Potential Loyalist", lambda r, f, m: r >= 4 and f <= 2 and m >= 3),
    ("New",                lambda r, f, m: r >= 4 and f <= 2 and m <= 2),
    ("Promising",          lambda r, f, m: r >= 3 and f >= 2 and m <= 3),
    ("Need Attention",     lambda r, f, m: r <= 2 and f >= 3 and m >= 3),
    ("About to Sleep",     lambda r, f, m: r <= 2 and f >= 2 and m <= 2),
    ("At Risk",            lambda r, f, m: r >= 3 and f <= 2 and m <= 2),
    ("Cannot Lose Them",   lambda r, f, m: r <= 2 and f <= 2 and m >= 3),
)
DEFAULT_SEGMENT = "Lost"
RFM_SEGMENTS: List[str] = [label for label, _ in RFM_SEGMENT_RULES] + [DEFAULT_SEGMENT]


def assign_rfm_segment(r: int, f: int, m: int) -> str:
    """First matching rule wins; anything unmatched is Lost."""
    for label, rule in RFM_SEGMENT_RULES:
        if rule(r, f, m):
            return label
    return DEFAULT_SEGMENT


def build_customer_profiles(master: pd.DataFrame, as_of: str | pd.Timestamp) -> pd.DataFrame:
    """
    Recency / frequency / monetary inputs per customer.

    ``recency_days`` counts calendar days from the last purchase date to
    ``as_of``.
    """
    as_of = pd.Timestamp(as_of).normalize()
    grouped = master.groupby("customer_id", as_index=False).agg(
        customer_state=("customer_state", "first"),
        last_purchase=("order_purchase_timestamp", "max"),
        frequency_orders=("order_id", "nunique"),
        monetary_value=("price", "sum"),
        avg_item_value=("price", "mean"),
        avg_satisfaction=("review_score", "mean"),
    )
    grouped["recency_days"] = (as_of - grouped["last_purchase"].dt.normalize()).dt.days
    grouped[["monetary_value", "avg_item_value", "avg_satisfaction"]] = (
        grouped[["monetary_value", "avg_item_value", "avg_satisfaction"]].round(2)
    )
    return grouped[["customer_id", "customer_state", "recency_days", "frequency_orders",
                    "monetary_value", "avg_item_value", "avg_satisfaction"]]


def score_rfm(profiles: pd.DataFrame, thresholds: RfmThresholds = RfmThresholds()) -> pd.DataFrame:
    """Add R/F/M scores, total score and segment label to customer profiles."""
    rfm = profiles.copy()
    rfm["recency_score"] = score_lower_is_better(rfm["recency_days"], thresholds.recency_days)
    rfm["frequency_score"] = score_higher_is_better(rfm["frequency_orders"], thresholds.frequency)
    rfm["monetary_score"] = score_higher_is_better(rfm["monetary_value"], thresholds.monetary)
    rfm["total_rfm_score"] = rfm["recency_score"] + rfm["frequency_score"] + rfm["monetary_score"]
    rfm["customer_segment"] = [
        assign_rfm_segment(r, f, m)
        for r, f, m in zip(rfm["recency_score"], rfm["frequency_score"], rfm["monetary_score"])
    ]
    return rfm.sort_values(
        ["total_rfm_score", "monetary_value"], ascending=False, kind="mergesort"
    ).reset_index(drop=True)


def rfm_segment_summary(scored: pd.DataFrame) -> pd.DataFrame:
    """Population and value per segment; every label is listed, even empty ones."""
    grp = scored.groupby("customer_segment")
    out = pd.DataFrame(
        {
            "customers": grp.size(),
            "avg_recency_days": grp["recency_days"].mean(),
            "avg_frequency": grp["frequency_orders"].mean(),
            "avg_monetary_value": grp["monetary_value"].mean(),
            "total_monetary_value": grp["monetary_value"].sum(),
        }
    ).reindex(RFM_SEGMENTS)
    out["customers"] = out["customers"].fillna(0).astype("int64")
    out["total_monetary_value"] = out["total_monetary_value"].fillna(0.0).round(2)
    out["pct_customers"] = (safe_div(out["customers"] * 100.0, out["customers"].sum())).round(1)
    out[["avg_recency_days", "avg_frequency"]] = out[["avg_recency_days", "avg_frequency"]].round(1)
    out["avg_monetary_value"] = out["avg_monetary_value"].round(2)
    out = out.rename_axis("customer_segment").reset_index()
    return out[["customer_segment", "customers", "pct_customers", "avg_recency_days",
                "avg_frequency", "avg_monetary_value", "total_monetary_value"]]


# ---------------------------------------------------------------------------
# LTV quartiles
# ---------------------------------------------------------------------------

# best bucket first; every bucket past the last label is Low-Value
LTV_SEGMENTS = ["Champions", "Loyal", "Potential", "Low-Value"]

VALUE_BANDS: Tuple[Tuple[float, str], ...] = (
    (1000, "High Value (>1000)"),
    (500, "Medium Value (500-1000)"),
    (100, "Low Value (100-500)"),
)
DEFAULT_VALUE_BAND = "Very Low Value (<=100)"


def ltv_segment_label(quantile: int, n_quantiles: int) -> str:
    from_top = n_quantiles - quantile
    return LTV_SEGMENTS[min(from_top, len(LTV_SEGMENTS) - 1)]


def _segment_rank(segments: pd.Series) -> pd.Series:
    return segments.map({label: i for i, label in enumerate(LTV_SEGMENTS)})


def ltv_segmentation(master: pd.DataFrame, n_quantiles: int = 4) -> pd.DataFrame:
    """
    Customer lifetime value with equal-population quantile buckets.

    Parameters
    ----------
    master : pd.DataFrame
        Master rows for the analysis window.
    n_quantiles : int
        Number of buckets over ascending ``total_ltv`` (4 → quartiles).

    Returns
    -------
    pd.DataFrame
        One row per customer with ``total_ltv > 0``, ordered by ascending LTV,
        with ``ltv_quartile`` (1 = lowest), ``ltv_percentile`` and ``ltv_segment``.
    """
    if n_quantiles < 1:
        raise ValueError(f"n_quantiles must be positive, got {n_quantiles}")

    orders = order_level(master)
    order_values = orders.groupby("customer_id").agg(
        total_ltv=("payment_value", "sum"),
        avg_order_value=("payment_value", "mean"),
    )

    df = master.assign(poor_review=(master["review_score"] <= POOR_REVIEW_MAX).astype("int64"))
    items = df.groupby("customer_id").agg(
        customer_state=("customer_state", "first"),
        total_orders=("order_id", "nunique"),
        total_items_purchased=("order_id", "size"),
        first_order_date=("order_purchase_timestamp", "min"),
        last_order_date=("order_purchase_timestamp", "max"),
        total_product_spending=("price", "sum"),
        total_freight_spending=("freight_value", "sum"),
        avg_satisfaction=("review_score", "mean"),
        total_poor_reviews=("poor_review", "sum"),
        category_diversity=("category_english", "nunique"),
    )
    ltv = items.join(order_values, how="left").reset_index()
    ltv["customer_lifecycle_days"] = (ltv["last_order_date"] - ltv["first_order_date"]).dt.days
    ltv = ltv[ltv["total_ltv"] > 0]

    ltv = ltv.sort_values(["total_ltv", "customer_id"], kind="mergesort").reset_index(drop=True)
    ltv["ltv_quartile"] = ntile(ltv["total_ltv"], n_quantiles)
    ltv["ltv_percentile"] = percent_rank(ltv["total_ltv"]).round(4)
    ltv["ltv_segment"] = [ltv_segment_label(q, n_quantiles) for q in ltv["ltv_quartile"]]

    money = ["total_ltv", "avg_order_value", "total_product_spending", "total_freight_spending"]
    ltv[money] = ltv[money].round(2)
    ltv["avg_satisfaction"] = ltv["avg_satisfaction"].round(2)
    log.info("ltv segmentation: %d customers in %d buckets", len(ltv), n_quantiles)
    return ltv


def ltv_segment_summary(ltv: pd.DataFrame) -> pd.DataFrame:
    """Size, value and behaviour per LTV segment."""
    grp = ltv.groupby("ltv_segment", as_index=False)
    out = grp.agg(
        customer_count=("customer_id", "size"),
        segment_total_ltv=("total_ltv", "sum"),
        segment_avg_ltv=("total_ltv", "mean"),
        segment_min_ltv=("total_ltv", "min"),
        segment_max_ltv=("total_ltv", "max"),
        avg_orders_per_customer=("total_orders", "mean"),
        avg_items_per_customer=("total_items_purchased", "mean"),
        avg_order_value_segment=("avg_order_value", "mean"),
        segment_avg_satisfaction=("avg_satisfaction", "mean"),
        avg_poor_reviews_per_customer=("total_poor_reviews", "mean"),
        avg_lifecycle_days=("customer_lifecycle_days", "mean"),
        avg_categories_per_customer=("category_diversity", "mean"),
    )
    out["segment_percentage"] = (safe_div(out["customer_count"] * 100.0, out["customer_count"].sum())).round(2)
    out["revenue_contribution_percentage"] = (
        safe_div(out["segment_total_ltv"] * 100.0, out["segment_total_ltv"].sum())
    ).round(2)
    two_dp = [c for c in out.columns if c.startswith(("segment_", "avg_")) and c != "avg_lifecycle_days"]
    out[two_dp] = out[two_dp].round(2)
    out["avg_lifecycle_days"] = out["avg_lifecycle_days"].round(0)
    return out.sort_values("segment_avg_ltv", ascending=False, kind="mergesort").reset_index(drop=True)


def top_customer_tiers(ltv: pd.DataFrame) -> pd.DataFrame:
    """
    Top-bucket customers split by the 95th / 90th LTV percentile of the whole
    customer base.
    """
    if ltv.empty:
        return ltv.assign(value_tier=pd.Series(dtype=object))
    p95 = ltv["total_ltv"].quantile(0.95)
    p90 = ltv["total_ltv"].quantile(0.90)
    top = ltv[ltv["ltv_quartile"] == ltv["ltv_quartile"].max()].copy()
    top["value_tier"] = np.select(
        [top["total_ltv"] > p95, top["total_ltv"] > p90],
        ["VIP (Top 5%)", "Premium (Top 10%)"],
        default="High Value (Top 25%)",
    )
    return top.sort_values("total_ltv", ascending=False, kind="mergesort").reset_index(drop=True)


def ltv_by_state(ltv: pd.DataFrame) -> pd.DataFrame:
    """LTV segment x customer state; customers without a state are left out."""
    df = ltv[ltv["customer_state"].notna()]
    out = df.groupby(["ltv_segment", "customer_state"], as_index=False).agg(
        customers_in_state=("customer_id", "size"),
        avg_ltv_in_state=("total_ltv", "mean"),
        avg_orders_in_state=("total_orders", "mean"),
        avg_satisfaction_in_state=("avg_satisfaction", "mean"),
    )
    avgs = ["avg_ltv_in_state", "avg_orders_in_state", "avg_satisfaction_in_state"]
    out[avgs] = out[avgs].round(2)
    out["segment_rank"] = _segment_rank(out["ltv_segment"])
    out = out.sort_values(["segment_rank", "avg_ltv_in_state"], ascending=[True, False], kind="mergesort")
    return out.drop(columns="segment_rank").reset_index(drop=True)


def ltv_category_preferences(ltv: pd.DataFrame, master: pd.DataFrame) -> pd.DataFrame:
    """
    What each LTV segment buys: item count and revenue (summed item price)
    per category, their share within the segment, and the category's revenue
    rank inside the segment (1 = biggest).
    """
    df = master.merge(ltv[["customer_id", "ltv_segment"]], on="customer_id", how="inner")
    out = df.groupby(["ltv_segment", "category_english"], as_index=False).agg(
        category_purchases=("order_id", "size"),
        category_revenue=("price", "sum"),
        unique_customers=("customer_id", "nunique"),
        avg_spend_per_purchase=("price", "mean"),
    )
    totals = out.groupby("ltv_segment")
    out["category_purchase_percentage"] = safe_div(
        out["category_purchases"] * 100.0, totals["category_purchases"].transform("sum")
    ).round(2)
    out["category_revenue_percentage"] = safe_div(
        out["category_revenue"] * 100.0, totals["category_revenue"].transform("sum")
    ).round(2)
    out[["category_revenue", "avg_spend_per_purchase"]] = out[["category_revenue", "avg_spend_per_purchase"]].round(2)

    out["segment_rank"] = _segment_rank(out["ltv_segment"])
    out = out.sort_values(
        ["segment_rank", "category_revenue", "category_english"],
        ascending=[True, False, True],
        kind="mergesort",
    ).drop(columns="segment_rank").reset_index(drop=True)
    out["category_rank_in_segment"] = out.groupby("ltv_segment").cumcount() + 1
    return out


def ltv_acquisition(ltv: pd.DataFrame) -> pd.DataFrame:
    """Customers per LTV segment by the year/month of their first order."""
    df = ltv.assign(
        acquisition_year=ltv["first_order_date"].dt.year,
        acquisition_month=ltv["first_order_date"].dt.month,
    )
    out = df.groupby(["ltv_segment", "acquisition_year", "acquisition_month"], as_index=False).agg(
        customers_acquired=("customer_id", "size"),
        avg_ltv_for_cohort=("total_ltv", "mean"),
        avg_orders_for_cohort=("total_orders", "mean"),
        avg_lifecycle_for_cohort=("customer_lifecycle_days", "mean"),
    )
    out[["avg_ltv_for_cohort", "avg_orders_for_cohort"]] = out[["avg_ltv_for_cohort", "avg_orders_for_cohort"]].round(2)
    out["avg_lifecycle_for_cohort"] = out["avg_lifecycle_for_cohort"].round(0)
    out["segment_rank"] = _segment_rank(out["ltv_segment"])
    out = out.sort_values(["segment_rank", "acquisition_year", "acquisition_month"], kind="mergesort")
    return out.drop(columns="segment_rank").reset_index(drop=True)


def customer_value_bands(ltv: pd.DataFrame) -> pd.DataFrame:
    """
    Customers grouped by fixed LTV bands (``VALUE_BANDS``, highest first).
    Every band is listed, empty ones with zero counts.
    """
    labels = [label for _, label in VALUE_BANDS] + [DEFAULT_VALUE_BAND]
    band = np.select(
        [ltv["total_ltv"] > bound for bound, _ in VALUE_BANDS],
        [label for _, label in VALUE_BANDS],
        default=DEFAULT_VALUE_BAND,
    )
    grp = ltv.assign(value_band=band).groupby("value_band")
    out = pd.DataFrame(
        {
            "customer_count": grp.size(),
            "segment_revenue": grp["total_ltv"].sum(),
            "avg_ltv": grp["total_ltv"].mean(),
        }
    ).reindex(labels)
    out["customer_count"] = out["customer_count"].fillna(0).astype("int64")
    out["segment_revenue"] = out["segment_revenue"].fillna(0.0).round(2)
    out["avg_ltv"] = out["avg_ltv"].round(2)
    out["customer_percentage"] = safe_div(out["customer_count"] * 100.0, out["customer_count"].sum()).round(2)
    out["revenue_percentage"] = safe_div(out["segment_revenue"] * 100.0, out["segment_revenue"].sum()).round(2)
    return out.rename_axis("value_band").reset_index()
