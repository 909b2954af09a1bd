import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from olistmetrics.master import build_master_dataset, select_analysis_rows
from olistmetrics.normalize import normalize_tables


def _ts(s):
    return pd.Timestamp(s)


@pytest.fixture
def raw_tables():
    """
    Small Olist-shaped snapshot.

    Valid delivered orders: o1 (c1, 2 items), o2 (c1), o3 (c2), o6 (c2).
    o5 is shipped (kept by normalization, not a qualifying purchase).
    o4 / o8 are canceled / unavailable and o7 has no status.
    """
    orders = pd.DataFrame(
        [
            ("o1", "c1", "delivered", _ts("2018-01-05 10:00"), _ts("2018-01-12 10:00")),
            ("o2", "c1", "delivered", _ts("2018-02-10 10:00"), _ts("2018-02-15 10:00")),
            ("o3", "c2", "delivered", _ts("2018-01-20 09:00"), _ts("2018-01-30 09:00")),
            ("o4", "c3", "canceled", _ts("2018-01-21 09:00"), pd.NaT),
            ("o5", "c4", "shipped", _ts("2018-03-01 09:00"), pd.NaT),
            ("o6", "c2", "delivered", _ts("2018-12-15 09:00"), _ts("2018-12-20 09:00")),
            ("o7", "c3", None, _ts("2018-03-02 09:00"), pd.NaT),
            ("o8", "c3", "Unavailable", _ts("2018-03-03 09:00"), pd.NaT),
        ],
        columns=["order_id", "customer_id", "order_status",
                 "order_purchase_timestamp", "order_delivered_customer_date"],
    )
    order_items = pd.DataFrame(
        [
            ("o1", 1, "p1", "s1", 100.0, 15.0, _ts("2018-01-09 10:00")),
            ("o1", 2, "p2", "s2", 50.0, 5.0, _ts("2018-01-09 10:00")),
            ("o1", 3, "p1", "s1", 0.0, 1.0, _ts("2018-01-09 10:00")),     # zero price
            ("o2", 1, "p3", "s1", 200.0, 10.0, _ts("2018-02-13 10:00")),
            ("o3", 1, "p1", "s2", 80.0, 0.0, _ts("2018-01-22 09:00")),
            ("o3", 2, "p4", "s2", 20.0, 2.0, _ts("2018-01-22 09:00")),    # product without category
            ("o4", 1, "p1", "s1", 30.0, 3.0, _ts("2018-01-23 09:00")),
            ("o5", 1, "p2", "s1", 60.0, 6.0, _ts("2018-03-03 09:00")),
            ("o6", 1, "p2", "s2", 40.0, 4.0, _ts("2018-12-20 09:00")),
            ("o6", 2, "p2", "s2", 40.0, -1.0, _ts("2018-12-20 09:00")),   # negative freight
            ("o6", 3, None, "s2", 40.0, 1.0, _ts("2018-12-20 09:00")),    # no product
        ],
        columns=["order_id", "order_item_id", "product_id", "seller_id", "price", "freight_value",
                 "shipping_limit_date"],
    )
    products = pd.DataFrame(
        [("p1", "cat_a"), ("p2", "cat_b"), ("p3", "cat_c"), ("p4", None)],
        columns=["product_id", "product_category_name"],
    )
    translation = pd.DataFrame(
        [("cat_a", "alpha"), ("cat_b", "beta")],
        columns=["product_category_name", "product_category_name_english"],
    )
    customers = pd.DataFrame(
        [
            ("c1", "u1", "sao paulo", "SP"),
            ("c1", "u1", "sao paulo", "SP"),
            ("c2", "u2", "rio de janeiro", "RJ"),
            ("c3", "u3", "sao paulo", "SP"),
            ("c4", "u4", "belo horizonte", "MG"),
            ("c5", "u5", "nowhere", None),
        ],
        columns=["customer_id", "customer_unique_id", "customer_city", "customer_state"],
    )
    payments = pd.DataFrame(
        [
            ("o1", 1, "credit_card", 3, 100.0),
            ("o1", 2, "voucher", 1, 65.0),
            ("o2", 1, "boleto", 1, 210.0),
            ("o3", 1, "credit_card", 2, 80.0),
            ("o4", 1, "credit_card", 1, 33.0),
            ("o5", 1, "credit_card", 1, 66.0),
            ("o6", 1, "debit_card", 1, 44.0),
            ("o6", 2, "voucher", 1, 0.0),        # zero value
            ("o2", 2, "voucher", 0, 10.0),       # zero installments
        ],
        columns=["order_id", "payment_sequential", "payment_type", "payment_installments", "payment_value"],
    )
    reviews = pd.DataFrame(
        [
            ("r1", "o1", 1, _ts("2018-01-13")),
            ("r2", "o2", 5, _ts("2018-02-16")),
            ("r3", "o3", 2, _ts("2018-01-31")),
            ("r4", "o3", 4, _ts("2018-02-02")),  # newer review wins
            ("r5", "o5", 3, _ts("2018-03-10")),
            ("r6", "o2", 7, _ts("2018-02-17")),  # out of range
        ],
        columns=["review_id", "order_id", "review_score", "review_creation_date"],
    )
    sellers = pd.DataFrame(
        [("s1", "sao paulo", "SP"), ("s2", "rio de janeiro", "RJ"), ("s2", "rio de janeiro", "RJ")],
        columns=["seller_id", "seller_city", "seller_state"],
    )
    return {
        "orders": orders,
        "order_items": order_items,
        "products": products,
        "category_translation": translation,
        "customers": customers,
        "payments": payments,
        "reviews": reviews,
        "sellers": sellers,
    }


@pytest.fixture
def clean_tables(raw_tables):
    return normalize_tables(raw_tables)


@pytest.fixture
def master(clean_tables):
    return build_master_dataset(clean_tables)


@pytest.fixture
def analysis_rows(master):
    return select_analysis_rows(master, ("delivered",), "2017-01-01", "2018-12-31")


def make_items(rows, columns=("order_id", "customer_id", "category_english", "price", "freight_value", "review_score")):
    """Minimal master-like frame for formula tests."""
    df = pd.DataFrame(rows, columns=list(columns))
    if "review_score" in df.columns:
        df["review_score"] = df["review_score"].astype(float)
    return df


@pytest.fixture
def items_factory():
    return make_items
