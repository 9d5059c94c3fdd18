# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Category aggregation for MIS FinSight.

Groups classified ledger entries by (category, subcategory) and sums their
debits and credits. The result is purely derived from the entries and is
recomputed on every run; it doubles as the flat audit view of the MIS.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .categories import CategoryId, category_label
from .models import LedgerEntry


@dataclass(frozen=True)
class CategoryTotal:
    category: CategoryId
    subcategory: str
    debit_total: float
    credit_total: float
    count: int

    @property
    def net(self) -> float:
        return self.debit_total - self.credit_total


def aggregate_by_category(entries: Iterable[LedgerEntry]) -> list[CategoryTotal]:
    """
    Aggregate classified entries by (category, subcategory).

    Entries without a category (unclassified / needs review) are not
    grouped. The result is sorted by category label, then subcategory.
    """
    groups: dict[tuple[CategoryId, str], list[float]] = {}
    for entry in entries:
        category = entry.category
        if category is None:
            continue
        key = (category, entry.subcategory)
        acc = groups.setdefault(key, [0.0, 0.0, 0])
        acc[0] += entry.debit
        acc[1] += entry.credit
        acc[2] += 1

    totals = [
        CategoryTotal(
            category=cat,
            subcategory=sub,
            debit_total=round(debit, 2),
            credit_total=round(credit, 2),
            count=int(count),
        )
        for (cat, sub), (debit, credit, count) in groups.items()
    ]
    totals.sort(key=lambda t: (category_label(t.category), t.subcategory))
    return totals


def category_debit_total(
    totals: Sequence[CategoryTotal],
    category: CategoryId,
    subcategory: Optional[str] = None,
) -> float:
    """Sum of debit totals for a category (optionally one subcategory)."""
    return sum(
        t.debit_total
        for t in totals
        if t.category is category
        and (subcategory is None or t.subcategory == subcategory)
    )


def subcategory_breakdown(
    totals: Sequence[CategoryTotal], category: CategoryId
) -> dict[str, float]:
    """Absolute debit total per subcategory of one category."""
    return {
        t.subcategory: abs(t.debit_total) for t in totals if t.category is category
    }


def category_totals_to_dataframe(totals: Sequence[CategoryTotal]) -> pd.DataFrame:
    """
    Convert category totals to a DataFrame.

    Columns: category, subcategory, debit_total, credit_total, net, count.
    """
    rows = [
        {
            "category": category_label(t.category),
            "subcategory": t.subcategory,
            "debit_total": t.debit_total,
            "credit_total": t.credit_total,
            "net": round(t.net, 2),
            "count": t.count,
        }
        for t in totals
    ]
    columns = ["category", "subcategory", "debit_total", "credit_total", "net", "count"]
    return pd.DataFrame(rows, columns=columns)
