from datetime import date

import pytest

from mis_finsight.categories import CategoryId, Channel
from mis_finsight.classifier import classify_entries, classify_manually
from mis_finsight.engine import assemble_mis_record
from mis_finsight.models import LedgerEntry
from mis_finsight.oracle import OracleSuggestion
from mis_finsight.periods import MISPeriod
from mis_finsight.revenue import aggregate_revenue, build_line_item
from mis_finsight.rules import RuleBook
from mis_finsight.views import (
    STATEMENT_COLUMNS,
    TRANSACTION_COLUMNS,
    mis_statement_dataframe,
    review_queue_dataframe,
    revenue_by_channel_dataframe,
    stock_transfers_dataframe,
    transactions_dataframe,
)

D = date(2024, 4, 10)


def make_record():
    entries = [
        classify_manually(LedgerEntry(D, "V1", "Raw", debit=400), CategoryId.COGM,
                          "Raw Materials & Inventory"),
        classify_manually(LedgerEntry(D, "V2", "Google", debit=150),
                          CategoryId.SALES_MARKETING, "Google Ads"),
        classify_manually(LedgerEntry(D, "V3", "Meta", debit=50),
                          CategoryId.SALES_MARKETING, "Facebook Ads"),
    ]
    revenue = aggregate_revenue(
        [
            build_line_item("AMAZON SELLER SERVICES", 800, self_keyword="heatronics"),
            build_line_item("Retail Counter", 200, self_keyword="heatronics"),
            build_line_item("HEATRONICS PUNE", 100, self_keyword="heatronics",
                            state="Karnataka"),
        ]
    )
    return assemble_mis_record(MISPeriod(2024, 4), entries, revenue)


def test_simplified_view_only_has_margin_lines():
    df = mis_statement_dataframe(make_record(), view="simplified")

    assert list(df.columns) == STATEMENT_COLUMNS
    assert list(df["key"]) == [
        "net_revenue",
        "gross_margin",
        "cm1",
        "cm2",
        "cm3",
        "ebitda",
        "ebt",
        "net_income",
    ]
    assert list(df["display_order"]) == [10, 20, 30, 40, 50, 60, 70, 80]
    assert df.iloc[0]["amount"] == 900
    assert df.iloc[0]["percent_of_net_revenue"] == 100.0


def test_regular_view_keeps_cost_heads_in_order():
    df = mis_statement_dataframe(make_record(), view="regular")

    keys = list(df["key"])
    assert set(df["level"]) == {0, 1}
    assert keys.index("stock_transfers") < keys.index("net_revenue")
    assert keys.index("cogs") < keys.index("gross_margin") < keys.index("marketing")
    assert keys.index("marketing") < keys.index("cm2")
    marketing = df[df["key"] == "marketing"].iloc[0]
    assert marketing["amount"] == 200
    assert marketing["percent_of_net_revenue"] == pytest.approx(22.22)


def test_detailed_view_lists_channels_and_subcategories():
    df = mis_statement_dataframe(make_record(), view="detailed", decimals=0)

    names = list(df["name"])
    assert "Google Ads" in names
    assert "Facebook Ads" in names
    assert "Raw Materials (journal)" in names
    amazon = df[df["key"] == "gross_sales.amazon"].iloc[0]
    assert amazon["amount"] == 800
    assert amazon["level"] == 2


def test_unknown_view():
    with pytest.raises(ValueError, match="Unknown view"):
        mis_statement_dataframe(make_record(), view="fancy")


def test_revenue_by_channel_dataframe():
    df = revenue_by_channel_dataframe(make_record().revenue)

    assert list(df["channel"]) == [c.value for c in Channel] + ["Total"]
    total = df[df["channel"] == "Total"].iloc[0]
    assert total["gross_sales"] == 1000
    # transfers only reduce the total row
    assert total["net_revenue"] == 900
    amazon = df[df["channel"] == "Amazon"].iloc[0]
    assert amazon["net_revenue"] == 800


def test_stock_transfers_dataframe():
    df = stock_transfers_dataframe(make_record().revenue)

    assert list(df.columns) == ["from_state", "to_state", "amount"]
    assert df.iloc[0]["from_state"] == "Karnataka"
    assert df.iloc[0]["to_state"] == "Maharashtra"
    assert df.iloc[0]["amount"] == 100


def test_transactions_dataframe():
    df = transactions_dataframe(make_record().transactions)

    assert list(df.columns) == TRANSACTION_COLUMNS
    assert len(df) == 3
    assert df.iloc[0]["category"] == "E. COGM"
    assert df.iloc[0]["origin"] == "manual"
    assert df.iloc[0]["status"] == "classified"
    assert not df.iloc[0]["needs_review"]


def test_review_queue_dataframe_shows_suggestions():
    class Oracle:
        def classify_batch(self, batch, categories):
            return [OracleSuggestion("Odd", "H. Platform Costs", "Wati Subscription", 60)]

    run = classify_entries(
        [LedgerEntry(D, "V1", "Odd", debit=5), LedgerEntry(D, "V2", "WAGES", debit=1)],
        RuleBook.defaults(),
        oracle=Oracle(),
    )

    df = review_queue_dataframe(run.entries)

    assert len(df) == 1
    row = df.iloc[0]
    assert row["account_name"] == "Odd"
    assert row["suggestion"] == "H. Platform Costs / Wati Subscription"
    assert row["ai_confidence"] == 60
