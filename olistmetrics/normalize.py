"""
olistmetrics.normalize

Row-level validity filters for the raw Olist tables. Every function returns a
filtered copy; rejected rows are dropped silently (counts go to the log).
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable

import numpy as np
import pandas as pd

from .utils import numericize, require_columns, safe_div

log = logging.getLogger(__name__)

DEFAULT_REJECT_STATUSES = ("canceled", "unavailable")


def _log_dropped(table: str, before: int, after: int) -> None:
    if before != after:
        log.info("%s: dropped %d of %d rows", table, before - after, before)


def normalize_orders(
    orders: pd.DataFrame,
    reject_statuses: Iterable[str] = DEFAULT_REJECT_STATUSES,
) -> pd.DataFrame:
    """
    Keep orders with an id, a status, a purchase timestamp and a status not in
    ``reject_statuses`` (case-insensitive).
    """
    require_columns(orders, ["order_id", "customer_id", "order_status", "order_purchase_timestamp"], "orders")
    df = orders.copy()
    df["order_purchase_timestamp"] = pd.to_datetime(df["order_purchase_timestamp"], errors="coerce")
    rejected = {s.lower() for s in reject_statuses}
    status = df["order_status"].astype("string").str.strip().str.lower()
    keep = (
        df["order_id"].notna()
        & df["customer_id"].notna()
        & df["order_status"].notna()
        & df["order_purchase_timestamp"].notna()
        & ~status.isin(rejected).fillna(False)
    )
    out = df.loc[keep].copy()
    out["order_status"] = status[keep].astype(object)
    _log_dropped("orders", len(df), len(out))
    return out


def normalize_order_items(items: pd.DataFrame) -> pd.DataFrame:
    """Reject items with price <= 0, freight < 0 or no product reference."""
    require_columns(items, ["order_id", "order_item_id", "product_id", "seller_id", "price", "freight_value"], "order_items")
    df = items.copy()
    numericize(df, ["price", "freight_value", "order_item_id"])
    keep = (
        df["order_id"].notna()
        & df["product_id"].notna()
        & (df["price"] > 0)
        & (df["freight_value"] >= 0)
    )
    out = df.loc[keep].copy()
    _log_dropped("order_items", len(df), len(out))
    return out


def normalize_products(products: pd.DataFrame) -> pd.DataFrame:
    """Products need an id and a (raw) category name."""
    require_columns(products, ["product_id", "product_category_name"], "products")
    keep = products["product_id"].notna() & products["product_category_name"].notna()
    out = products.loc[keep].copy()
    _log_dropped("products", len(products), len(out))
    return out


def normalize_payments(payments: pd.DataFrame) -> pd.DataFrame:
    """Reject zero-value payments and non-positive installment counts."""
    require_columns(payments, ["order_id", "payment_type", "payment_installments", "payment_value"], "payments")
    df = payments.copy()
    numericize(df, ["payment_value", "payment_installments", "payment_sequential"])
    keep = df["order_id"].notna() & (df["payment_value"] > 0) & (df["payment_installments"] > 0)
    out = df.loc[keep].copy()
    _log_dropped("payments", len(df), len(out))
    return out


def normalize_reviews(reviews: pd.DataFrame) -> pd.DataFrame:
    """
    Keep reviews scored 1..5. When an order carries several reviews only the
    most recent one (by review_creation_date) survives, so every order has at
    most one review.
    """
    require_columns(reviews, ["order_id", "review_score"], "reviews")
    df = reviews.copy()
    numericize(df, ["review_score"])
    keep = df["order_id"].notna() & df["review_score"].between(1, 5)
    out = df.loc[keep].copy()
    out["review_score"] = out["review_score"].round().astype("int64")

    if "review_creation_date" in out.columns:
        out["review_creation_date"] = pd.to_datetime(out["review_creation_date"], errors="coerce")
        out = out.sort_values("review_creation_date", ascending=False, na_position="last", kind="mergesort")
    out = out.drop_duplicates(subset="order_id", keep="first")
    _log_dropped("reviews", len(df), len(out))
    return out


def normalize_customers(customers: pd.DataFrame) -> pd.DataFrame:
    """Deduplicate on customer_id; customers without a state are dropped."""
    require_columns(customers, ["customer_id", "customer_state"], "customers")
    keep = customers["customer_id"].notna() & customers["customer_state"].notna()
    out = customers.loc[keep].drop_duplicates(subset="customer_id", keep="first").copy()
    _log_dropped("customers", len(customers), len(out))
    return out


def normalize_sellers(sellers: pd.DataFrame) -> pd.DataFrame:
    require_columns(sellers, ["seller_id"], "sellers")
    out = sellers.loc[sellers["seller_id"].notna()].drop_duplicates(subset="seller_id", keep="first").copy()
    _log_dropped("sellers", len(sellers), len(out))
    return out


def normalize_translation(translation: pd.DataFrame) -> pd.DataFrame:
    require_columns(translation, ["product_category_name", "product_category_name_english"], "category_translation")
    out = (
        translation.dropna(subset=["product_category_name", "product_category_name_english"])
        .drop_duplicates(subset="product_category_name", keep="first")
        .copy()
    )
    return out


def normalize_tables(
    tables: Dict[str, pd.DataFrame],
    reject_statuses: Iterable[str] = DEFAULT_REJECT_STATUSES,
) -> Dict[str, pd.DataFrame]:
    """
    Apply every table filter. ``tables`` is keyed by orders, order_items,
    products, category_translation, customers, payments, reviews, sellers.
    """
    return {
        "orders": normalize_orders(tables["orders"], reject_statuses),
        "order_items": normalize_order_items(tables["order_items"]),
        "products": normalize_products(tables["products"]),
        "category_translation": normalize_translation(tables["category_translation"]),
        "customers": normalize_customers(tables["customers"]),
        "payments": normalize_payments(tables["payments"]),
        "reviews": normalize_reviews(tables["reviews"]),
        "sellers": normalize_sellers(tables["sellers"]),
    }


def data_quality_report(raw: Dict[str, pd.DataFrame], clean: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """How many rows of each table survived normalization."""
    rows = []
    for name, df in clean.items():
        original = len(raw[name]) if name in raw else np.nan
        rows.append(
            {
                "table_name": name,
                "clean_records": len(df),
                "original_records": original,
                "retention_rate": round(safe_div(len(df) * 100.0, original), 2),
            }
        )
    return pd.DataFrame(rows, columns=["table_name", "clean_records", "original_records", "retention_rate"])
