"""
olistmetrics.cohorts

Monthly acquisition cohorts: retention and cumulative LTV per elapsed month,
plus simulated CAC:LTV scenarios.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from .utils import safe_div

log = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.44

DEFAULT_CAC_SCENARIOS: Tuple[Tuple[str, float], ...] = (
    ("Conservative Marketing", 25.0),
    ("Moderate Marketing", 50.0),
    ("Aggressive Marketing", 100.0),
    ("Premium Marketing", 150.0),
)


def customer_cohorts(master: pd.DataFrame) -> pd.DataFrame:
    """First purchase timestamp and its calendar month, per customer."""
    firsts = (
        master.groupby("customer_id", as_index=False)["order_purchase_timestamp"]
        .min()
        .rename(columns={"order_purchase_timestamp": "first_purchase_date"})
    )
    firsts["cohort_month"] = firsts["first_purchase_date"].dt.to_period("M").dt.to_timestamp()
    return firsts[["customer_id", "cohort_month", "first_purchase_date"]]


def cohort_orders(
    master: pd.DataFrame,
    days_per_month: float = DAYS_PER_MONTH,
) -> pd.DataFrame:
    """
    One row per order with its value (sum of item prices), the customer's
    cohort and the fractional months elapsed since the first purchase.
    """
    cohorts = customer_cohorts(master)
    orders = master.groupby(["customer_id", "order_id"], as_index=False).agg(
        order_purchase_timestamp=("order_purchase_timestamp", "min"),
        order_value=("price", "sum"),
    )
    orders = orders.merge(cohorts, on="customer_id", how="inner")
    elapsed = orders["order_purchase_timestamp"] - orders["first_purchase_date"]
    orders["months_since_first_purchase"] = elapsed.dt.total_seconds() / (days_per_month * 86400)
    return orders


def cohort_ltv(
    master: pd.DataFrame,
    window_months: int = 12,
    days_per_month: float = DAYS_PER_MONTH,
) -> pd.DataFrame:
    """
    Retention and cumulative LTV per (cohort_month, month_number).

    ``month_number`` is floor(elapsed / days_per_month), restricted to orders
    with elapsed months in [0, window_months]. Cumulative LTV is the running
    cohort revenue divided by the cohort's initial size, not by the customers
    active in that month.
    """
    columns = [
        "cohort_month", "month_number", "initial_customers", "active_customers",
        "retention_rate_pct", "cohort_revenue", "avg_order_value",
        "cumulative_ltv_per_customer",
    ]
    if master.empty:
        return pd.DataFrame(columns=columns)

    orders = cohort_orders(master, days_per_month)
    elapsed = orders["months_since_first_purchase"]
    orders = orders[(elapsed >= 0) & (elapsed <= window_months)].copy()
    orders["month_number"] = np.floor(orders["months_since_first_purchase"]).astype("int64")

    sizes = (
        customer_cohorts(master)
        .groupby("cohort_month")["customer_id"]
        .nunique()
        .rename("initial_customers")
        .reset_index()
    )

    table = orders.groupby(["cohort_month", "month_number"], as_index=False).agg(
        active_customers=("customer_id", "nunique"),
        cohort_revenue=("order_value", "sum"),
        avg_order_value=("order_value", "mean"),
    )
    table = table.merge(sizes, on="cohort_month", how="inner")
    table = table.sort_values(["cohort_month", "month_number"], kind="mergesort").reset_index(drop=True)

    table["retention_rate_pct"] = (safe_div(table["active_customers"] * 100.0, table["initial_customers"])).round(1)
    running = table.groupby("cohort_month")["cohort_revenue"].cumsum()
    table["cumulative_ltv_per_customer"] = safe_div(running, table["initial_customers"]).round(2)
    table[["cohort_revenue", "avg_order_value"]] = table[["cohort_revenue", "avg_order_value"]].round(2)

    log.info("cohort ltv: %d cohorts, %d cohort-months", table["cohort_month"].nunique(), len(table))
    return table[columns]


def retention_matrix(cohort_table: pd.DataFrame) -> pd.DataFrame:
    """Cohort × month_number pivot of retention_rate_pct (heatmap input)."""
    return (
        cohort_table.pivot(index="cohort_month", columns="month_number", values="retention_rate_pct")
        .sort_index()
    )


def cohort_snapshot(
    master: pd.DataFrame,
    cohort_month: str | pd.Timestamp = "2018-01",
    as_of: str | pd.Timestamp = "2018-12-31",
    high_value_min: float = 200.0,
    active_within_days: int = 90,
) -> pd.DataFrame:
    """
    Single-row behaviour breakdown of one acquisition cohort.

    Members are the customers whose first purchase falls in ``cohort_month``;
    all of their orders count. Spend is summed item price and recency is
    measured in calendar days up to ``as_of``.
    """
    month = pd.Timestamp(cohort_month).to_period("M").to_timestamp()
    as_of = pd.Timestamp(as_of).normalize()

    members = customer_cohorts(master)
    members = members.loc[members["cohort_month"] == month, "customer_id"]
    per_customer = master[master["customer_id"].isin(members)].groupby("customer_id").agg(
        total_orders=("order_id", "nunique"),
        total_spent=("price", "sum"),
        last_purchase=("order_purchase_timestamp", "max"),
    )
    days_since = (as_of - per_customer["last_purchase"].dt.normalize()).dt.days

    row = {
        "cohort_month": month,
        "cohort_size": len(per_customer),
        "avg_orders_per_customer": round(float(per_customer["total_orders"].mean()), 1),
        "avg_ltv": round(float(per_customer["total_spent"].mean()), 2),
        "avg_days_since_last_purchase": round(float(days_since.mean()), 0),
        "one_time_buyers": int((per_customer["total_orders"] == 1).sum()),
        "repeat_buyers": int((per_customer["total_orders"] >= 2).sum()),
        "high_value_customers": int((per_customer["total_spent"] >= high_value_min).sum()),
        "likely_active_customers": int((days_since <= active_within_days).sum()),
    }
    return pd.DataFrame([row])


def cac_health(ratio: float) -> Optional[str]:
    if pd.isna(ratio):
        return None
    if ratio <= 0.25:
        return "EXCELLENT"
    if ratio <= 0.33:
        return "GOOD"
    if ratio <= 0.50:
        return "ACCEPTABLE"
    return "CONCERNING"


def cac_ltv_scenarios(
    master: pd.DataFrame,
    scenarios: Iterable[Tuple[str, float]] = DEFAULT_CAC_SCENARIOS,
) -> pd.DataFrame:
    """
    Compare simulated acquisition costs to the average customer LTV (summed
    item price per customer).
    """
    per_customer = master.groupby("customer_id")["price"].sum()
    avg_ltv = float(per_customer.mean()) if len(per_customer) else np.nan

    rows = []
    for name, cac in scenarios:
        ratio = safe_div(cac, avg_ltv)
        rows.append(
            {
                "scenario": name,
                "cac": round(float(cac), 2),
                "avg_ltv": round(avg_ltv, 2),
                "cac_ltv_ratio": round(ratio, 3),
                "ltv_cac_multiple": round(safe_div(avg_ltv, cac), 1),
                "business_health": cac_health(ratio),
                "net_customer_value": round(avg_ltv - cac, 2),
            }
        )
    out = pd.DataFrame(rows, columns=["scenario", "cac", "avg_ltv", "cac_ltv_ratio", "ltv_cac_multiple",
                                      "business_health", "net_customer_value"])
    return out.sort_values("cac_ltv_ratio", kind="mergesort", na_position="last").reset_index(drop=True)
