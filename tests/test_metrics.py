import numpy as np
import pandas as pd
import pytest

from olistmetrics import metrics


def test_item_economics_worked_example(items_factory):
    df = items_factory([("o1", "c1", "toys", 100.0, 15.0, 1)])
    econ = metrics.add_item_economics(df, commission_rate=0.05, return_cost_rate=0.25)
    row = econ.iloc[0]
    assert row["commission"] == pytest.approx(5.0)
    assert row["return_proxy_cost"] == pytest.approx(25.0)
    assert row["net_profit"] == pytest.approx(55.0)

    agg = metrics.aggregate_profitability(df, "category_english").iloc[0]
    assert agg["net_profit"] == 55.0
    assert agg["profit_margin_pct"] == 55.0
    assert agg["total_costs"] == 45.0


def test_return_proxy_only_for_poor_reviews(items_factory):
    df = items_factory(
        [
            ("o1", "c1", "toys", 100.0, 0.0, 2),
            ("o2", "c1", "toys", 100.0, 0.0, 3),
            ("o3", "c1", "toys", 100.0, 0.0, None),
        ]
    )
    econ = metrics.add_item_economics(df, return_cost_rate=0.30)
    assert econ["return_proxy_cost"].tolist() == pytest.approx([30.0, 0.0, 0.0])


def test_zero_revenue_margin_is_null(items_factory):
    df = items_factory([("o1", "c1", "freebies", 0.0, 0.0, 5), ("o2", "c1", "toys", 10.0, 1.0, 5)])
    out = metrics.aggregate_profitability(df, "category_english").set_index("category_english")
    assert pd.isna(out.loc["freebies", "profit_margin_pct"])
    assert pd.isna(out.loc["freebies", "freight_to_revenue_pct"])
    assert out.loc["toys", "profit_margin_pct"] == 85.0
    assert np.isfinite(out["net_profit"]).all()


def test_distinct_orders_vs_items(items_factory):
    df = items_factory([("o1", "c1", "toys", 10.0, 1.0, 5), ("o1", "c1", "toys", 20.0, 1.0, 5)])
    out = metrics.aggregate_profitability(df, "category_english").iloc[0]
    assert out["total_orders"] == 1
    assert out["total_items"] == 2
    assert out["total_gmv"] == 30.0


def test_classification_loss_making_first():
    frame = pd.DataFrame(
        {
            "net_profit": [-1.0, 100.0, 100.0, 100.0, 100.0],
            "total_orders": [500, 60, 25, 60, 5],
            "avg_review_score": [5.0, 4.2, 3.6, 3.9, np.nan],
        }
    )
    assert metrics.classify_performance(frame).tolist() == [
        "LOSS_MAKING", "TOP_PERFORMER", "GOOD_PERFORMER", "GOOD_PERFORMER", "AVERAGE_PERFORMER",
    ]


def test_seller_profitability(analysis_rows):
    out = metrics.seller_profitability(analysis_rows, min_orders=1).set_index("seller_id")
    assert out.loc["s1", "total_gmv"] == 300.0
    assert out.loc["s1", "net_profit"] == 235.0
    assert out.loc["s1", "profit_margin_pct"] == 78.3
    assert out.loc["s2", "net_profit"] == 140.0
    assert out.loc["s2", "total_orders"] == 3
    assert set(out["seller_classification"]) == {"AVERAGE_PERFORMER"}
    assert list(out.index) == ["s1", "s2"]

    assert metrics.seller_profitability(analysis_rows).empty


def test_category_profitability(analysis_rows):
    out = metrics.category_profitability(analysis_rows).set_index("category_english")
    assert out.loc["alpha", "net_profit"] == 131.0
    assert out.loc["beta", "net_profit"] == 64.0
    assert out.loc["cat_c", "net_profit"] == 180.0
    assert out.loc["alpha", "poor_reviews_count"] == 1


def test_region_profitability(analysis_rows):
    out = metrics.region_profitability(analysis_rows).set_index("seller_state")
    assert out.loc["SP", "total_sellers"] == 1
    assert out.loc["RJ", "total_gmv"] == 170.0


def test_monthly_gmv(analysis_rows):
    out = metrics.monthly_gmv(analysis_rows)
    assert out["order_period"].tolist() == ["2018-01", "2018-02", "2018-12"]
    assert out["total_gmv"].tolist() == [230.0, 200.0, 40.0]
    assert pd.isna(out.loc[0, "gmv_growth_pct"])
    assert out.loc[1, "gmv_growth_pct"] == -13.0
    assert out.loc[2, "total_orders"] == 1


def test_loss_making_alerts(items_factory):
    rows = [(f"o{i}", "c1", "toys", 10.0, 200.0, 1) for i in range(12)]
    df = items_factory(rows)
    df["seller_id"] = "s9"
    df["seller_state"] = "SP"
    out = metrics.loss_making_alerts(df)
    assert len(out) == 1
    assert out.loc[0, "risk_level"] == "HIGH_RISK"
    assert out.loc[0, "alert_type"] == "LOSS_MAKING_SELLERS"
    assert out.loc[0, "recommended_action"] == "Consider seller coaching or fee adjustment"
    assert metrics.loss_making_alerts(df, min_orders=13).empty


def test_loss_making_category_alerts(items_factory):
    rows = [(f"o{i}", "c1", "toys", 10.0, 20.0, 5) for i in range(50)]
    rows += [(f"p{i}", "c1", "books", 100.0, 1.0, 5) for i in range(60)]
    df = items_factory(rows)
    out = metrics.loss_making_category_alerts(df)
    assert out["category_english"].tolist() == ["toys"]
    assert out.loc[0, "alert_type"] == "LOSS_MAKING_CATEGORIES"
    assert out.loc[0, "total_orders"] == 50
    assert out.loc[0, "profit_margin_pct"] == -105.0
    assert metrics.loss_making_category_alerts(df, min_orders=51).empty


def test_top_categories(analysis_rows):
    out = metrics.top_categories(analysis_rows)
    assert out["category_english"].tolist() == ["alpha", "cat_c", "beta"]
    assert out["gmv_rank"].tolist() == [1, 2, 3]
    by_cat = out.set_index("category_english")
    # o1 payment counted once for each of its two categories
    assert by_cat.loc["alpha", "gmv"] == 245.0
    assert by_cat.loc["beta", "gmv"] == 209.0
    assert by_cat.loc["alpha", "revenue"] == 180.0
    assert by_cat.loc["alpha", "satisfaction"] == 2.5
    assert by_cat.loc["beta", "return_rate"] == 100.0
    assert by_cat.loc["cat_c", "orders"] == 1

    assert metrics.top_categories(analysis_rows, n=2)["category_english"].tolist() == ["alpha", "cat_c"]


def test_shipping_type_logistics(analysis_rows):
    out = metrics.shipping_type_logistics(analysis_rows)
    assert out["analysis_type"].tolist() == ["ORDER_LEVEL", "ORDER_LEVEL", "SELLER_LEVEL"]
    out = out.set_index("shipping_type")
    assert out.loc["INTRASTATE", "total_items"] == 3
    assert out.loc["INTERSTATE", "total_items"] == 1
    assert out.loc["INTERSTATE", "avg_shipping_pct_of_value"] == 10.0
    assert out.loc["INTRASTATE", "max_shipping_cost"] == 15.0
    # purchase -> shipping limit: o1 4 days, o2 3 days, o6 5 days
    assert out.loc["INTRASTATE", "avg_shipping_days"] == 4.0
    assert out.loc["INTERSTATE", "avg_shipping_days"] == 4.0


def test_shipping_seller_level_row(analysis_rows):
    row = metrics.shipping_type_logistics(analysis_rows).set_index("shipping_type").loc["ALL"]
    # s1 averages 12.5 freight over 3.5 days, s2 4.5 freight over 4.5 days
    assert row["total_sellers"] == 2
    assert row["total_items"] == 4
    assert row["avg_shipping_cost"] == 8.5
    assert row["min_shipping_cost"] == 4.5
    assert row["max_shipping_cost"] == 12.5
    assert row["avg_shipping_pct_of_value"] == 10.0
    assert row["avg_shipping_days"] == 4.0


def test_shipping_logistics_without_rows(analysis_rows):
    out = metrics.shipping_type_logistics(analysis_rows.iloc[0:0])
    assert out["analysis_type"].tolist() == ["SELLER_LEVEL"]
    assert out.loc[0, "total_sellers"] == 0
    assert pd.isna(out.loc[0, "avg_shipping_cost"])


def test_return_rate_by_category(analysis_rows):
    out = metrics.return_rate_by_category(analysis_rows).set_index("category_english")
    assert out.loc["alpha", "likely_returns"] == 1
    assert out.loc["alpha", "return_rate_reviewed_items"] == 50.0
    assert out.loc["alpha", "return_risk_level"] == "High Risk"
    assert out.loc["beta", "no_review_items"] == 1
    assert out.loc["beta", "return_rate_all_items"] == 50.0
    assert out.loc["beta", "return_rate_reviewed_items"] == 100.0
    assert out.loc["cat_c", "return_rate_reviewed_items"] == 0.0
    assert out.loc["cat_c", "return_risk_level"] == "Very Low Risk"
    assert out.loc["cat_c", "score_5_count"] == 1


def test_return_rate_without_reviews_is_null(items_factory):
    df = items_factory([("o1", "c1", "toys", 10.0, 1.0, None)])
    out = metrics.return_rate_by_category(df).iloc[0]
    assert pd.isna(out["return_rate_reviewed_items"])
    assert out["return_rate_all_items"] == 0.0
    assert out["return_risk_level"] == "Very Low Risk"


def test_logistics_leakage(analysis_rows):
    out = metrics.logistics_leakage_by_category(analysis_rows).set_index("category_english")
    # alpha: freight 15 (poor review) + 0
    assert out.loc["alpha", "freight_leakage_pct"] == 100.0
    assert out.loc["alpha", "logistics_efficiency_score"] == 0.0
    assert out.loc["alpha", "logistics_performance_tier"] == "Poor"
    assert out.loc["alpha", "cost_per_successful_delivery"] == 15.0
    assert out.loc["cat_c", "logistics_efficiency_score"] == 100.0
    assert out.loc["cat_c", "logistics_performance_tier"] == "Excellent"
    assert set(out["improvement_priority"]) == {"Low Priority"}


def test_executive_summary(analysis_rows):
    row = metrics.executive_summary(analysis_rows).iloc[0]
    assert row["total_orders"] == 4
    assert row["total_customers"] == 2
    assert row["total_items_sold"] == 5
    assert row["total_gmv"] == 470.0
    assert row["total_payment_value"] == 499.0
    assert row["avg_order_value"] == 124.75
    assert row["overall_return_rate"] == 50.0


def test_executive_summary_empty(analysis_rows):
    row = metrics.executive_summary(analysis_rows.iloc[0:0]).iloc[0]
    assert row["total_orders"] == 0
    assert pd.isna(row["overall_return_rate"])
    assert pd.isna(row["freight_to_revenue_ratio"])
