"""
olistmetrics.master

Builds the denormalized master dataset: one row per (order, item) pair with
category, payment, review, customer and seller context attached.

Order-level columns (payment_*, review_score, customer_*) are repeated on
every item row of the same order. Use ``order_level`` before summing them.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd

log = logging.getLogger(__name__)

MASTER_COLUMNS = [
    # order
    "order_id", "order_item_id", "customer_id", "seller_id", "product_id",
    "order_status", "order_purchase_timestamp", "order_delivered_customer_date",
    "shipping_limit_date",
    "order_date", "order_year", "order_month", "order_period",
    # product
    "product_category_name", "category_english",
    # money
    "price", "freight_value", "payment_value", "payment_type", "payment_installments",
    # satisfaction
    "review_score", "satisfaction_level",
    # location
    "customer_city", "customer_state", "seller_city", "seller_state",
    # derived
    "total_item_cost", "is_return_proxy", "customer_order_sequence",
]


def collapse_payments(payments: pd.DataFrame) -> pd.DataFrame:
    """
    One payment row per order: total value, the type of the first payment in
    sequence and the largest installment count.
    """
    pay = payments.copy()
    if "payment_sequential" in pay.columns:
        pay = pay.sort_values(["order_id", "payment_sequential"], kind="mergesort")
    return (
        pay.groupby("order_id", as_index=False, sort=False)
        .agg(
            payment_value=("payment_value", "sum"),
            payment_type=("payment_type", "first"),
            payment_installments=("payment_installments", "max"),
        )
    )


def satisfaction_level(review_score: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [review_score <= 2, review_score == 3, review_score >= 4],
            ["Unsatisfied", "Neutral", "Satisfied"],
            default="No Review",
        ),
        index=review_score.index,
    )


def build_master_dataset(tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Join normalized tables into the master dataset.

    Parameters
    ----------
    tables : dict
        Output of ``normalize.normalize_tables``.

    Returns
    -------
    pd.DataFrame
        Columns ``MASTER_COLUMNS``, newest purchase first.
    """
    orders = tables["orders"]
    order_cols = [c for c in ["order_id", "customer_id", "order_status",
                              "order_purchase_timestamp", "order_delivered_customer_date"]
                  if c in orders.columns]
    df = orders[order_cols].copy()
    if "order_delivered_customer_date" not in df.columns:
        df["order_delivered_customer_date"] = pd.NaT

    items = tables["order_items"]
    item_cols = ["order_id", "order_item_id", "product_id", "seller_id", "price", "freight_value"]
    if "shipping_limit_date" in items.columns:
        item_cols.append("shipping_limit_date")
    df = df.merge(items[item_cols], on="order_id", how="inner")
    if "shipping_limit_date" not in df.columns:
        df["shipping_limit_date"] = pd.NaT

    products = tables["products"][["product_id", "product_category_name"]]
    df = df.merge(products, on="product_id", how="inner")

    translation = tables["category_translation"][["product_category_name", "product_category_name_english"]]
    df = df.merge(translation, on="product_category_name", how="left")
    df["category_english"] = (
        df["product_category_name_english"]
        .fillna(df["product_category_name"])
        .fillna("Unknown")
    )

    df = df.merge(collapse_payments(tables["payments"]), on="order_id", how="inner")

    reviews = tables["reviews"][["order_id", "review_score"]]
    df = df.merge(reviews, on="order_id", how="left")
    df["review_score"] = df["review_score"].astype(float)

    customers = tables["customers"][["customer_id", "customer_city", "customer_state"]]
    df = df.merge(customers, on="customer_id", how="left")

    sellers = tables["sellers"]
    seller_cols = [c for c in ["seller_id", "seller_city", "seller_state"] if c in sellers.columns]
    df = df.merge(sellers[seller_cols], on="seller_id", how="left")
    for c in ("seller_city", "seller_state"):
        if c not in df.columns:
            df[c] = np.nan

    ts = df["order_purchase_timestamp"]
    df["order_date"] = ts.dt.normalize()
    df["order_year"] = ts.dt.year
    df["order_month"] = ts.dt.month
    df["order_period"] = ts.dt.strftime("%Y-%m")

    df["satisfaction_level"] = satisfaction_level(df["review_score"])
    df["total_item_cost"] = df["price"] + df["freight_value"]
    df["is_return_proxy"] = (df["review_score"] <= 2).fillna(False).astype("int64")

    df = df.sort_values(["order_purchase_timestamp", "order_id", "order_item_id"], kind="mergesort")
    df["customer_order_sequence"] = df.groupby("customer_id").cumcount() + 1

    df = df.sort_values("order_purchase_timestamp", ascending=False, kind="mergesort").reset_index(drop=True)
    log.info("master dataset: %d item rows, %d orders", len(df), df["order_id"].nunique())
    return df[MASTER_COLUMNS]


def order_level(master: pd.DataFrame) -> pd.DataFrame:
    """One row per order (order-level columns are identical across its items)."""
    return master.drop_duplicates(subset="order_id", keep="first")


def select_analysis_rows(
    master: pd.DataFrame,
    statuses: Optional[Iterable[str]] = ("delivered",),
    start: Optional[str | pd.Timestamp] = None,
    end: Optional[str | pd.Timestamp] = None,
) -> pd.DataFrame:
    """
    Rows with a qualifying status and a purchase timestamp inside
    [start, end]. A date-only ``end`` includes that whole day.
    """
    keep = pd.Series(True, index=master.index)
    if statuses is not None:
        keep &= master["order_status"].isin(list(statuses))
    ts = master["order_purchase_timestamp"]
    if start is not None:
        keep &= ts >= pd.Timestamp(start)
    if end is not None:
        end_ts = pd.Timestamp(end)
        if end_ts == end_ts.normalize():
            end_ts = end_ts + pd.Timedelta(days=1)
            keep &= ts < end_ts
        else:
            keep &= ts <= end_ts
    return master.loc[keep].copy()
