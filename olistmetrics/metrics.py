"""
olistmetrics.metrics

Grouped GMV / profitability / return-proxy / logistics reports over the
master dataset. All inputs are master rows (one per order item); nothing here
mutates its input.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Union

import numpy as np
import pandas as pd

from .master import order_level
from .utils import safe_div

log = logging.getLogger(__name__)

DEFAULT_COMMISSION_RATE = 0.05
DEFAULT_RETURN_COST_RATE = 0.25
POOR_REVIEW_MAX = 2

MONEY_COLUMNS = [
    "total_gmv", "avg_item_price", "total_shipping_cost", "avg_shipping_cost",
    "total_commission", "estimated_return_cost", "total_costs", "net_profit",
]

GroupKey = Union[str, Sequence[str]]


def _as_list(by: GroupKey) -> List[str]:
    return [by] if isinstance(by, str) else list(by)


def _poor_review(master: pd.DataFrame) -> pd.Series:
    return master["review_score"] <= POOR_REVIEW_MAX


# ---------------------------------------------------------------------------
# Item economics
# ---------------------------------------------------------------------------

def add_item_economics(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
) -> pd.DataFrame:
    """
    Add per-item commission, return-proxy cost and net profit.

    The return proxy charges ``return_cost_rate`` of the price for items whose
    order was reviewed with a score of 2 or lower; unreviewed items cost
    nothing.
    """
    df = master.copy()
    poor = _poor_review(df)
    df["commission"] = df["price"] * commission_rate
    df["return_proxy_cost"] = np.where(poor, df["price"] * return_cost_rate, 0.0)
    df["net_profit"] = df["price"] - df["freight_value"] - df["commission"] - df["return_proxy_cost"]
    df["poor_review"] = poor.astype("int64")
    return df


def aggregate_profitability(
    master: pd.DataFrame,
    by: GroupKey,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
) -> pd.DataFrame:
    """
    GMV, cost and margin metrics for any grouping key(s).

    Parameters
    ----------
    master : pd.DataFrame
        Master rows.
    by : str or list of str
        Grouping column(s), e.g. ``"seller_id"`` or ``["order_period"]``.

    Returns
    -------
    pd.DataFrame
        One row per key. ``profit_margin_pct`` is NaN where GMV is zero.
    """
    keys = _as_list(by)
    econ = add_item_economics(master, commission_rate, return_cost_rate)
    out = econ.groupby(keys, dropna=False, as_index=False).agg(
        total_orders=("order_id", "nunique"),
        total_items=("order_id", "size"),
        total_gmv=("price", "sum"),
        avg_item_price=("price", "mean"),
        total_shipping_cost=("freight_value", "sum"),
        avg_shipping_cost=("freight_value", "mean"),
        total_commission=("commission", "sum"),
        estimated_return_cost=("return_proxy_cost", "sum"),
        net_profit=("net_profit", "sum"),
        avg_review_score=("review_score", "mean"),
        poor_reviews_count=("poor_review", "sum"),
    )
    out["total_costs"] = out["total_shipping_cost"] + out["total_commission"] + out["estimated_return_cost"]
    out["profit_margin_pct"] = (safe_div(out["net_profit"], out["total_gmv"]) * 100).round(1)
    out["freight_to_revenue_pct"] = (safe_div(out["total_shipping_cost"], out["total_gmv"]) * 100).round(2)
    out[MONEY_COLUMNS] = out[MONEY_COLUMNS].round(2)
    out["avg_review_score"] = out["avg_review_score"].round(2)

    ordered = keys + [
        "total_orders", "total_items", "total_gmv", "avg_item_price",
        "total_shipping_cost", "avg_shipping_cost", "total_commission",
        "estimated_return_cost", "total_costs", "net_profit",
        "profit_margin_pct", "freight_to_revenue_pct",
        "avg_review_score", "poor_reviews_count",
    ]
    return out[ordered]


def classify_performance(
    frame: pd.DataFrame,
    top_min_orders: int = 50,
    top_min_review: float = 4.0,
    good_min_orders: int = 20,
    good_min_review: float = 3.5,
) -> pd.Series:
    """
    Tier label per row. Loss-making rows are flagged before any volume tier.
    """
    orders = frame["total_orders"]
    review = frame["avg_review_score"]
    return pd.Series(
        np.select(
            [
                frame["net_profit"] < 0,
                (orders >= top_min_orders) & (review >= top_min_review),
                (orders >= good_min_orders) & (review >= good_min_review),
            ],
            ["LOSS_MAKING", "TOP_PERFORMER", "GOOD_PERFORMER"],
            default="AVERAGE_PERFORMER",
        ),
        index=frame.index,
    )


# ---------------------------------------------------------------------------
# Profitability reports
# ---------------------------------------------------------------------------

def seller_profitability(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
    min_orders: int = 5,
) -> pd.DataFrame:
    out = aggregate_profitability(
        master, ["seller_id", "seller_city", "seller_state"], commission_rate, return_cost_rate
    )
    out["seller_classification"] = classify_performance(out)
    out = out[out["total_orders"] >= min_orders]
    return out.sort_values("net_profit", ascending=False, kind="mergesort").reset_index(drop=True)


def category_profitability(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
    min_orders: int = 0,
) -> pd.DataFrame:
    out = aggregate_profitability(master, "category_english", commission_rate, return_cost_rate)
    out["category_classification"] = classify_performance(out)
    out = out[out["total_orders"] >= min_orders]
    return out.sort_values("net_profit", ascending=False, kind="mergesort").reset_index(drop=True)


def region_profitability(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
    state_col: str = "seller_state",
) -> pd.DataFrame:
    """Profitability by state (seller state by default) with seller counts."""
    out = aggregate_profitability(master, state_col, commission_rate, return_cost_rate)
    sellers = (
        master.groupby(state_col, dropna=False)["seller_id"]
        .nunique()
        .rename("total_sellers")
        .reset_index()
    )
    out = out.merge(sellers, on=state_col, how="left")
    cols = [state_col, "total_sellers"] + [c for c in out.columns if c not in (state_col, "total_sellers")]
    return out[cols].sort_values("net_profit", ascending=False, kind="mergesort").reset_index(drop=True)


def monthly_gmv(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
) -> pd.DataFrame:
    """Calendar-month GMV trend with month-over-month growth."""
    out = aggregate_profitability(master, "order_period", commission_rate, return_cost_rate)
    out = out.sort_values("order_period", kind="mergesort").reset_index(drop=True)
    out["previous_month_gmv"] = out["total_gmv"].shift(1)
    out["gmv_growth_pct"] = (
        safe_div(out["total_gmv"] - out["previous_month_gmv"], out["previous_month_gmv"]) * 100
    ).round(1)
    return out


def loss_making_alerts(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
    min_orders: int = 10,
) -> pd.DataFrame:
    """Sellers losing money over at least ``min_orders`` orders, with a risk level."""
    sellers = aggregate_profitability(master, ["seller_id", "seller_state"], commission_rate, return_cost_rate)
    out = sellers[(sellers["net_profit"] < 0) & (sellers["total_orders"] >= min_orders)].copy()
    out["risk_level"] = np.select(
        [
            (out["net_profit"] < -1000) & (out["avg_review_score"] < 3.0),
            out["net_profit"] < -500,
        ],
        ["HIGH_RISK", "MEDIUM_RISK"],
        default="LOW_RISK",
    )
    out.insert(0, "alert_type", "LOSS_MAKING_SELLERS")
    out["recommended_action"] = "Consider seller coaching or fee adjustment"
    return out.sort_values("net_profit", kind="mergesort").reset_index(drop=True)


def loss_making_category_alerts(
    master: pd.DataFrame,
    commission_rate: float = DEFAULT_COMMISSION_RATE,
    return_cost_rate: float = DEFAULT_RETURN_COST_RATE,
    min_orders: int = 50,
) -> pd.DataFrame:
    """Categories losing money over at least ``min_orders`` orders."""
    cats = aggregate_profitability(master, "category_english", commission_rate, return_cost_rate)
    out = cats[(cats["net_profit"] < 0) & (cats["total_orders"] >= min_orders)].copy()
    out.insert(0, "alert_type", "LOSS_MAKING_CATEGORIES")
    return out.sort_values("net_profit", kind="mergesort").reset_index(drop=True)


def top_categories(master: pd.DataFrame, n: int = 10) -> pd.DataFrame:
    """
    Category dashboard ranked by GMV.

    ``gmv`` sums order payment values once per (category, order); ``revenue``
    is the summed item price. Only the ``n`` best ranked categories are kept.
    """
    df = master.assign(
        poor_review=_poor_review(master).astype("int64"),
        reviewed=master["review_score"].notna().astype("int64"),
    )
    gmv = (
        master.drop_duplicates(["category_english", "order_id"])
        .groupby("category_english")["payment_value"]
        .sum()
        .rename("gmv")
    )
    out = df.groupby("category_english").agg(
        orders=("order_id", "nunique"),
        revenue=("price", "sum"),
        satisfaction=("review_score", "mean"),
        poor_reviews=("poor_review", "sum"),
        reviewed_items=("reviewed", "sum"),
    )
    out = out.join(gmv).reset_index()
    out["return_rate"] = safe_div(out["poor_reviews"] * 100.0, out["reviewed_items"]).round(2)
    out[["gmv", "revenue", "satisfaction"]] = out[["gmv", "revenue", "satisfaction"]].round(2)

    out = out.sort_values(["gmv", "category_english"], ascending=[False, True], kind="mergesort")
    out = out.reset_index(drop=True)
    out["gmv_rank"] = np.arange(1, len(out) + 1)
    cols = ["category_english", "orders", "gmv", "revenue", "satisfaction", "return_rate", "gmv_rank"]
    return out.head(n)[cols]


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------

def shipping_type_logistics(master: pd.DataFrame) -> pd.DataFrame:
    """
    Freight statistics for items shipped within vs across states
    (``ORDER_LEVEL`` rows), followed by one ``SELLER_LEVEL`` row whose
    cost/percent/day figures summarise each seller's own averages.

    ``avg_shipping_days`` runs from purchase to the seller's shipping limit,
    ``avg_delivery_days`` from purchase to customer delivery. Items without
    freight or without both states are left out.
    """
    df = master[(master["freight_value"] > 0)
                & master["seller_state"].notna()
                & master["customer_state"].notna()].copy()
    df["shipping_type"] = np.where(df["seller_state"] == df["customer_state"], "INTRASTATE", "INTERSTATE")
    df["shipping_pct_of_value"] = safe_div(df["freight_value"], df["price"]) * 100
    purchased = df["order_purchase_timestamp"]
    df["shipping_days"] = (pd.to_datetime(df["shipping_limit_date"], errors="coerce") - purchased).dt.days
    df["delivery_days"] = (
        pd.to_datetime(df["order_delivered_customer_date"], errors="coerce") - purchased
    ).dt.total_seconds() / 86400

    by_type = df.groupby("shipping_type", as_index=False).agg(
        total_items=("order_id", "size"),
        total_orders=("order_id", "nunique"),
        total_sellers=("seller_id", "nunique"),
        avg_shipping_cost=("freight_value", "mean"),
        min_shipping_cost=("freight_value", "min"),
        max_shipping_cost=("freight_value", "max"),
        avg_shipping_pct_of_value=("shipping_pct_of_value", "mean"),
        avg_shipping_days=("shipping_days", "mean"),
        avg_delivery_days=("delivery_days", "mean"),
    )
    by_type.insert(0, "analysis_type", "ORDER_LEVEL")

    sellers = df.groupby("seller_id").agg(
        shipping_cost=("freight_value", "mean"),
        shipping_pct=("shipping_pct_of_value", "mean"),
        shipping_days=("shipping_days", "mean"),
        delivery_days=("delivery_days", "mean"),
    )
    seller_row = pd.DataFrame(
        [
            {
                "analysis_type": "SELLER_LEVEL",
                "shipping_type": "ALL",
                "total_items": len(df),
                "total_orders": df["order_id"].nunique(),
                "total_sellers": len(sellers),
                "avg_shipping_cost": sellers["shipping_cost"].mean(),
                "min_shipping_cost": sellers["shipping_cost"].min(),
                "max_shipping_cost": sellers["shipping_cost"].max(),
                "avg_shipping_pct_of_value": sellers["shipping_pct"].mean(),
                "avg_shipping_days": sellers["shipping_days"].mean(),
                "avg_delivery_days": sellers["delivery_days"].mean(),
            }
        ]
    )
    out = seller_row if by_type.empty else pd.concat([by_type, seller_row], ignore_index=True)

    money = ["avg_shipping_cost", "min_shipping_cost", "max_shipping_cost"]
    out[money] = out[money].astype(float).round(2)
    one_dp = ["avg_shipping_pct_of_value", "avg_shipping_days", "avg_delivery_days"]
    out[one_dp] = out[one_dp].astype(float).round(1)
    return out[["analysis_type", "shipping_type", "total_items", "total_orders", "total_sellers",
                "avg_shipping_cost", "min_shipping_cost", "max_shipping_cost",
                "avg_shipping_pct_of_value", "avg_shipping_days", "avg_delivery_days"]]


def _return_columns(master: pd.DataFrame) -> pd.DataFrame:
    df = master.copy()
    poor = _poor_review(df)
    df["likely_return"] = poor.astype("int64")
    df["reviewed"] = df["review_score"].notna().astype("int64")
    df["return_price"] = np.where(poor, df["price"], 0.0)
    df["return_freight"] = np.where(poor, df["freight_value"], 0.0)
    return df


def logistics_leakage_by_category(master: pd.DataFrame) -> pd.DataFrame:
    """Freight spent on likely-returned items, per category."""
    df = _return_columns(master)
    out = df.groupby("category_english", as_index=False).agg(
        total_orders=("order_id", "nunique"),
        total_items=("order_id", "size"),
        total_freight_cost=("freight_value", "sum"),
        avg_freight_per_item=("freight_value", "mean"),
        total_product_value=("price", "sum"),
        return_product_loss=("return_price", "sum"),
        return_freight_loss=("return_freight", "sum"),
        likely_returns=("likely_return", "sum"),
    )
    out["total_return_loss"] = out["return_product_loss"] + out["return_freight_loss"]
    out["freight_to_product_ratio"] = (safe_div(out["total_freight_cost"], out["total_product_value"]) * 100).round(2)
    leakage = safe_div(out["return_freight_loss"], out["total_freight_cost"]) * 100
    out["freight_leakage_pct"] = leakage.round(2)
    out["logistics_efficiency_score"] = (100 - leakage).round(2)
    out["cost_per_successful_delivery"] = safe_div(
        out["total_freight_cost"], out["total_items"] - out["likely_returns"]
    ).round(2)

    eff = out["logistics_efficiency_score"]
    out["logistics_performance_tier"] = np.select(
        [eff >= 95, eff >= 90, eff >= 85, eff >= 80],
        ["Excellent", "Good", "Average", "Below Average"],
        default="Poor",
    )
    loss = out["return_freight_loss"]
    out["improvement_priority"] = np.select(
        [(loss > 1000) & (eff < 85), (loss > 500) & (eff < 90)],
        ["High Priority", "Medium Priority"],
        default="Low Priority",
    )
    money = ["total_freight_cost", "avg_freight_per_item", "total_product_value",
             "return_product_loss", "return_freight_loss", "total_return_loss"]
    out[money] = out[money].round(2)
    return out.sort_values("total_return_loss", ascending=False, kind="mergesort").reset_index(drop=True)


# ---------------------------------------------------------------------------
# Return-rate proxy
# ---------------------------------------------------------------------------

def return_rate_by_category(master: pd.DataFrame) -> pd.DataFrame:
    """
    Review-score based return proxy per category.

    ``return_rate_all_items`` divides by every item; ``return_rate_reviewed_items``
    only by items whose order has a review.
    """
    df = _return_columns(master)
    for k in range(1, 6):
        df[f"score_{k}"] = (df["review_score"] == k).astype("int64")
    df["item_value"] = df["price"] + df["freight_value"]

    out = df.groupby("category_english", as_index=False).agg(
        total_orders=("order_id", "nunique"),
        total_items=("order_id", "size"),
        likely_returns=("likely_return", "sum"),
        reviewed_items=("reviewed", "sum"),
        score_1_count=("score_1", "sum"),
        score_2_count=("score_2", "sum"),
        score_3_count=("score_3", "sum"),
        score_4_count=("score_4", "sum"),
        score_5_count=("score_5", "sum"),
        avg_satisfaction_score=("review_score", "mean"),
        potential_return_revenue_loss=("return_price", "sum"),
        potential_return_freight_loss=("return_freight", "sum"),
        total_item_value=("item_value", "sum"),
    )
    out["no_review_items"] = out["total_items"] - out["reviewed_items"]
    out["return_rate_all_items"] = (safe_div(out["likely_returns"] * 100.0, out["total_items"])).round(2)
    out["return_rate_reviewed_items"] = (safe_div(out["likely_returns"] * 100.0, out["reviewed_items"])).round(2)
    out["return_value_pct"] = (
        safe_div((out["potential_return_revenue_loss"] + out["potential_return_freight_loss"]) * 100.0,
                 out["total_item_value"])
    ).round(2)
    out["avg_satisfaction_score"] = out["avg_satisfaction_score"].round(2)
    out[["potential_return_revenue_loss", "potential_return_freight_loss"]] = (
        out[["potential_return_revenue_loss", "potential_return_freight_loss"]].round(2)
    )

    rate = out["return_rate_reviewed_items"]
    out["return_risk_level"] = np.select(
        [rate > 15, rate > 8, rate > 3],
        ["High Risk", "Medium Risk", "Low Risk"],
        default="Very Low Risk",
    )
    out = out.drop(columns=["total_item_value"])
    return out.sort_values("return_rate_reviewed_items", ascending=False, na_position="last",
                           kind="mergesort").reset_index(drop=True)


# ---------------------------------------------------------------------------
# Executive summary
# ---------------------------------------------------------------------------

def executive_summary(master: pd.DataFrame) -> pd.DataFrame:
    """
    Single-row headline metrics. Payment values are order-level, so AOV and
    payment totals are computed on one row per order.
    """
    orders = order_level(master)
    poor = _poor_review(master)
    reviewed = int(master["review_score"].notna().sum())
    gmv = float(master["price"].sum())
    freight = float(master["freight_value"].sum())
    item_value = gmv + freight
    poor_value = float((master["price"] + master["freight_value"])[poor].sum())

    row = {
        "total_orders": int(master["order_id"].nunique()),
        "total_customers": int(master["customer_id"].nunique()),
        "total_categories": int(master["category_english"].nunique()),
        "total_items_sold": int(len(master)),
        "total_gmv": round(gmv, 2),
        "total_payment_value": round(float(orders["payment_value"].sum()), 2),
        "total_freight": round(freight, 2),
        "avg_order_value": round(float(orders["payment_value"].mean()), 2) if len(orders) else np.nan,
        "overall_satisfaction": round(float(master["review_score"].mean()), 2) if reviewed else np.nan,
        "overall_return_rate": round(safe_div(int(poor.sum()) * 100.0, reviewed), 2),
        "freight_to_revenue_ratio": round(safe_div(freight * 100.0, gmv), 2),
        "total_leakage_rate": round(safe_div(poor_value * 100.0, item_value), 2),
    }
    return pd.DataFrame([row])
