# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Multi-period aggregation for MIS FinSight.

This module combines monthly MIS records into a single record covering a
longer range (a quarter, a fiscal year), and exposes the per-period figures
as a long-format DataFrame for trend views.

Combination rules
-----------------
- zero records  -> ValueError,
- one record    -> returned unchanged,
- several       -> records are sorted by period key, then every revenue,
  cost and margin figure is summed field by field. Percentages are never
  summed: they are recomputed from the combined net revenue.

Balance-sheet snapshots are stock figures, not flows. When combining periods,
the opening stock comes from the earliest snapshot, the closing stock from
the latest one, and purchases, net sales and net profit/loss are summed.
The implied COGS is recomputed from the combined snapshot.

When combining states for the same period (``combine_state_snapshots``),
every field is summed: stock balances of separate entities at the same date
add up.
"""

from collections.abc import Sequence
from typing import Optional

import pandas as pd

from .aggregation import aggregate_by_category
from .categories import CHANNELS
from .engine import MISRecord, journal_cogs_total
from .models import AuthoritativeSnapshot
from .revenue import sum_revenue
from .waterfall import CogsBreakdown, DataSource, SourcedValue


def combine_snapshots(
    snapshots: Sequence[AuthoritativeSnapshot],
) -> Optional[AuthoritativeSnapshot]:
    """
    Combine chronologically ordered snapshots of consecutive periods.

    Returns None when ``snapshots`` is empty.
    """
    if not snapshots:
        return None
    return AuthoritativeSnapshot(
        opening_stock=snapshots[0].opening_stock,
        closing_stock=snapshots[-1].closing_stock,
        purchases=sum(s.purchases for s in snapshots),
        net_sales=sum(s.net_sales for s in snapshots),
        net_profit_loss=sum(s.net_profit_loss for s in snapshots),
    )


def combine_state_snapshots(
    snapshots: Sequence[AuthoritativeSnapshot],
) -> Optional[AuthoritativeSnapshot]:
    """Sum same-period snapshots of several states field by field."""
    if not snapshots:
        return None
    return AuthoritativeSnapshot(
        opening_stock=sum(s.opening_stock for s in snapshots),
        closing_stock=sum(s.closing_stock for s in snapshots),
        purchases=sum(s.purchases for s in snapshots),
        net_sales=sum(s.net_sales for s in snapshots),
        net_profit_loss=sum(s.net_profit_loss for s in snapshots),
    )


def _combine_cogs(parts: Sequence[CogsBreakdown]) -> CogsBreakdown:
    sources = {p.source for p in parts}
    source = sources.pop() if len(sources) == 1 else DataSource.MIXED
    other: dict[str, float] = {}
    for p in parts:
        for sub, amount in p.other.items():
            other[sub] = other.get(sub, 0.0) + amount
    return CogsBreakdown(
        raw_materials=SourcedValue(sum(p.raw_materials.value for p in parts), source),
        other=other,
    )


def combine(records: Sequence[MISRecord]) -> MISRecord:
    """
    Combine several MIS records into one.

    Parameters
    ----------
    records:
        Records to combine, in any order.

    Returns
    -------
    MISRecord
        The single record itself when only one is given; otherwise a new
        record covering every period of the inputs.

    Raises
    ------
    ValueError
        If ``records`` is empty.
    """
    if not records:
        raise ValueError("combine() requires at least one MISRecord.")
    if len(records) == 1:
        return records[0]

    ordered = sorted(records, key=lambda r: r.period_keys[0])

    waterfall = ordered[0].waterfall
    for record in ordered[1:]:
        waterfall = waterfall + record.waterfall

    transactions = tuple(e for r in ordered for e in r.transactions)
    # derived from the concatenated ledger, same as a single period
    totals = aggregate_by_category(transactions)

    states: list[str] = []
    for record in ordered:
        states.extend(s for s in record.states if s not in states)

    rule_hits: dict[int, int] = {}
    for record in ordered:
        for rule_id, count in record.rule_hits.items():
            rule_hits[rule_id] = rule_hits.get(rule_id, 0) + count

    snapshots = [r.snapshot for r in ordered if r.snapshot is not None]

    return MISRecord(
        period_keys=tuple(k for r in ordered for k in r.period_keys),
        states=tuple(states),
        revenue=sum_revenue([r.revenue for r in ordered]),
        cogs=_combine_cogs([r.cogs for r in ordered]),
        journal_cogs=journal_cogs_total(totals),
        waterfall=waterfall,
        transactions=transactions,
        category_totals=tuple(totals),
        snapshot=combine_snapshots(snapshots),
        diagnostics=tuple(d for r in ordered for d in r.diagnostics),
        rule_hits=rule_hits,
    )


def records_to_long_dataframe(records: Sequence[MISRecord]) -> pd.DataFrame:
    """
    Long-format view of several records, one row per (period, metric).

    Columns: period_key, period_label, metric, amount, percent_of_net_revenue.
    Channel revenue lines come first, followed by the waterfall lines.
    """
    rows = []
    for record in sorted(records, key=lambda r: r.period_keys[0]):
        base = {"period_key": record.period_key, "period_label": record.label}
        wf = record.waterfall
        net_by_channel = record.revenue.net_revenue_by_channel()
        for channel in CHANNELS:
            value = net_by_channel[channel]
            rows.append(
                {
                    **base,
                    "metric": f"Net Revenue - {channel.value}",
                    "amount": round(value, 2),
                    "percent_of_net_revenue": round(wf.percent(value), 2),
                }
            )
        for line in wf.lines():
            rows.append(
                {
                    **base,
                    "metric": line.label,
                    "amount": round(line.amount, 2),
                    "percent_of_net_revenue": round(line.percent_of_net_revenue, 2),
                }
            )
    columns = ["period_key", "period_label", "metric", "amount", "percent_of_net_revenue"]
    return pd.DataFrame(rows, columns=columns)

