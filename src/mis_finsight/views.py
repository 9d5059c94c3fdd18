# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for MIS FinSight.

This module turns MIS records into pandas DataFrames ready for display or
CSV export. It contains no financial logic: every amount is read from the
record built by ``engine``.

The MIS statement is a hierarchy of lines:

- level 0: margin lines (Net Revenue, Gross Margin, CM1, ..., Net Income),
- level 1: revenue components and cost heads (COGS, Channel & Fulfillment,
  Sales & Marketing, ...),
- level 2: channels under revenue components and subcategories under cost
  heads.

Detail levels:

- simplified: level 0 only,
- regular:    levels 0-1,
- detailed:   all levels.

Rows keep their statement order; ``display_order`` is renumbered to
10, 20, 30, ... after filtering.
"""

from collections.abc import Iterable

import pandas as pd

from .categories import CHANNELS, CategoryId, category_label
from .engine import MISRecord
from .models import LedgerEntry
from .revenue import RevenueTotals

STATEMENT_COLUMNS = [
    "display_order",
    "key",
    "level",
    "name",
    "type",
    "amount",
    "percent_of_net_revenue",
]

_VIEW_MAX_LEVEL = {"simplified": 0, "regular": 1}


def _renumber_display_order(
    df: pd.DataFrame, start: int = 10, step: int = 10
) -> pd.DataFrame:
    """Reassign display_order to be strictly sequential: start, start+step, ...
    Preserves the current order of the lines (as it appears in df).
    """
    df = df.reset_index(drop=True)
    df["display_order"] = [start + i * step for i in range(len(df))]
    return df


def _cost_section(
    rows: list[dict[str, object]],
    key: str,
    name: str,
    total: float,
    breakdown: dict[str, float],
) -> None:
    rows.append({"key": key, "level": 1, "name": name, "type": "cost", "amount": total})
    for sub, amount in sorted(breakdown.items()):
        rows.append(
            {
                "key": f"{key}.{sub}",
                "level": 2,
                "name": sub,
                "type": "cost",
                "amount": amount,
            }
        )


def _margin(rows: list[dict[str, object]], key: str, name: str, amount: float) -> None:
    rows.append({"key": key, "level": 0, "name": name, "type": "margin", "amount": amount})


def mis_statement_rows(record: MISRecord) -> list[dict[str, object]]:
    """Every statement line of ``record``, in statement order, unrounded."""
    wf = record.waterfall
    rev = record.revenue
    breakdown = record.cost_breakdown()
    rows: list[dict[str, object]] = []

    # Revenue section
    revenue_parts = (
        ("gross_sales", "Gross Sales", rev.gross_sales, rev.gross_sales_by_channel),
        ("returns", "Returns", rev.returns, rev.returns_by_channel),
        ("taxes", "Taxes", rev.taxes, rev.taxes_by_channel),
        ("discounts", "Discounts", rev.discounts, rev.discounts_by_channel),
    )
    for key, name, total, by_channel in revenue_parts:
        rows.append({"key": key, "level": 1, "name": name, "type": "revenue", "amount": total})
        for channel in CHANNELS:
            rows.append(
                {
                    "key": f"{key}.{channel.name.lower()}",
                    "level": 2,
                    "name": channel.value,
                    "type": "revenue",
                    "amount": by_channel[channel],
                }
            )
    rows.append(
        {
            "key": "stock_transfers",
            "level": 1,
            "name": "Stock Transfers",
            "type": "revenue",
            "amount": rev.transfers,
        }
    )
    _margin(rows, "net_revenue", "Net Revenue", wf.net_revenue)

    cogs_breakdown = {
        f"Raw Materials ({record.cogs.source.value})": record.cogs.raw_materials.value,
        **record.cogs.other,
    }
    _cost_section(rows, "cogs", category_label(CategoryId.COGM), wf.cogs, cogs_breakdown)
    _margin(rows, "gross_margin", "Gross Margin", wf.gross_margin)

    costs = wf.costs
    # (cost key, category, margin key, margin label)
    steps = (
        ("channel_fulfillment", CategoryId.CHANNEL_FULFILLMENT, "cm1", "CM1"),
        ("marketing", CategoryId.SALES_MARKETING, "cm2", "CM2"),
        ("platform", CategoryId.PLATFORM, "cm3", "CM3"),
        ("operating_expenses", CategoryId.OPERATING_EXPENSES, "ebitda", "EBITDA"),
    )
    for key, category, margin_key, margin_name in steps:
        _cost_section(
            rows,
            key,
            category_label(category),
            getattr(costs, key),
            breakdown.get(category, {}),
        )
        _margin(rows, margin_key, margin_name, getattr(wf, margin_key))

    for key, name, amount in (
        ("interest", "Interest", costs.interest),
        ("depreciation", "Depreciation", costs.depreciation),
        ("amortization", "Amortization", costs.amortization),
        ("other_non_operating", "Other Non-Operating", costs.other_non_operating),
    ):
        rows.append({"key": key, "level": 1, "name": name, "type": "cost", "amount": amount})
    _margin(rows, "ebt", "EBT", wf.ebt)

    rows.append(
        {
            "key": "income_tax",
            "level": 1,
            "name": "Income Tax",
            "type": "cost",
            "amount": costs.income_tax,
        }
    )
    _margin(rows, "net_income", "Net Income", wf.net_income)

    for row in rows:
        row["percent_of_net_revenue"] = wf.percent(float(row["amount"]))
    return rows


def mis_statement_dataframe(
    record: MISRecord, view: str = "regular", decimals: int = 2
) -> pd.DataFrame:
    """
    Return the MIS statement of ``record`` as a DataFrame.

    Steps:
      1) build every statement line in order,
      2) filter by view ("simplified", "regular" or "detailed"),
      3) round amounts and percentages,
      4) renumber display_order to 10, 20, 30, ...

    Raises
    ------
    ValueError
        If ``view`` is unknown.
    """
    if view not in {"simplified", "regular", "detailed"}:
        raise ValueError(
            f"Unknown view {view!r}, expected simplified, regular or detailed."
        )

    df = pd.DataFrame(mis_statement_rows(record))
    max_level = _VIEW_MAX_LEVEL.get(view)
    if max_level is not None:
        df = df[df["level"] <= max_level].copy()

    df["amount"] = df["amount"].astype(float).round(decimals)
    df["percent_of_net_revenue"] = (
        df["percent_of_net_revenue"].astype(float).round(decimals)
    )
    df = _renumber_display_order(df)
    return df[STATEMENT_COLUMNS]


def revenue_by_channel_dataframe(
    revenue: RevenueTotals, decimals: int = 2
) -> pd.DataFrame:
    """
    One row per channel plus a "Total" row.

    Columns: channel, gross_sales, returns, taxes, discounts, net_revenue.
    Channel rows do not include stock transfers, which only appear on the
    total row (they are not attributed to a channel).
    """
    net_by_channel = revenue.net_revenue_by_channel()
    rows: list[dict[str, object]] = [
        {
            "channel": channel.value,
            "gross_sales": revenue.gross_sales_by_channel[channel],
            "returns": revenue.returns_by_channel[channel],
            "taxes": revenue.taxes_by_channel[channel],
            "discounts": revenue.discounts_by_channel[channel],
            "net_revenue": net_by_channel[channel],
        }
        for channel in CHANNELS
    ]
    rows.append(
        {
            "channel": "Total",
            "gross_sales": revenue.gross_sales,
            "returns": revenue.returns,
            "taxes": revenue.taxes,
            "discounts": revenue.discounts,
            "net_revenue": revenue.net_revenue,
        }
    )
    df = pd.DataFrame(rows)
    numeric = ["gross_sales", "returns", "taxes", "discounts", "net_revenue"]
    df[numeric] = df[numeric].astype(float).round(decimals)
    return df


def stock_transfers_dataframe(revenue: RevenueTotals, decimals: int = 2) -> pd.DataFrame:
    columns = ["from_state", "to_state", "amount"]
    rows = [
        {"from_state": t.from_state, "to_state": t.to_state, "amount": round(t.amount, decimals)}
        for t in revenue.stock_transfers
    ]
    return pd.DataFrame(rows, columns=columns)


TRANSACTION_COLUMNS = [
    "date",
    "voucher_id",
    "account_name",
    "region",
    "debit",
    "credit",
    "category",
    "subcategory",
    "origin",
    "confidence",
    "status",
    "needs_review",
    "reason",
]


def transactions_dataframe(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    """Flat view of classified ledger entries, one row per entry."""
    rows = []
    for e in entries:
        c = e.classification
        rows.append(
            {
                "date": e.date.isoformat(),
                "voucher_id": e.voucher_id,
                "account_name": e.account_name,
                "region": e.region,
                "debit": e.debit,
                "credit": e.credit,
                "category": category_label(c.category) if c and c.category else "",
                "subcategory": e.subcategory,
                "origin": c.origin.value if c else "",
                "confidence": c.confidence_tier.value if c else "",
                "status": e.status.value,
                "needs_review": e.needs_review,
                "reason": c.reason if c else "",
            }
        )
    return pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)


def review_queue_dataframe(entries: Iterable[LedgerEntry]) -> pd.DataFrame:
    """
    Entries that need a human decision, with any AI suggestion attached.

    Columns: date, voucher_id, account_name, debit, credit, suggestion,
    ai_confidence, reason.
    """
    columns = [
        "date",
        "voucher_id",
        "account_name",
        "debit",
        "credit",
        "suggestion",
        "ai_confidence",
        "reason",
    ]
    rows = []
    for e in entries:
        if not e.needs_review:
            continue
        c = e.classification
        suggestion = ""
        if c is not None and c.suggestion is not None:
            category, subcategory = c.suggestion
            suggestion = f"{category_label(category)} / {subcategory}"
        rows.append(
            {
                "date": e.date.isoformat(),
                "voucher_id": e.voucher_id,
                "account_name": e.account_name,
                "debit": e.debit,
                "credit": e.credit,
                "suggestion": suggestion,
                "ai_confidence": c.ai_confidence if c is not None else None,
                "reason": c.reason if c is not None else "",
            }
        )
    return pd.DataFrame(rows, columns=columns)
