# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Margin waterfall for MIS FinSight.

Starting from net revenue, each margin layer subtracts one group of costs:

    Gross Margin = Net Revenue  - COGS
    CM1          = Gross Margin - Channel & Fulfillment
    CM2          = CM1          - Sales & Marketing
    CM3          = CM2          - Platform Costs
    EBITDA       = CM3          - Operating Expenses
    EBT          = EBITDA       - (Interest + Depreciation + Amortization)
    Net Income   = EBT          - Income Tax

Each cost is the absolute value of the debit total of its category, taken
from the category aggregation. Non-operating subcategories are routed by
keyword (interest, depreciation, amortization, income tax); any other
non-operating subcategory is deducted at the EBT line.

Every figure is also expressed as a percentage of net revenue. When net
revenue is zero the percentages are reported as 0.0 and
``percentages_defined`` is False.

Source precedence
-----------------
Some figures exist both in the balance sheet (authoritative) and in the
journal (derived). ``resolve_preferred`` implements the precedence rule:
the authoritative value wins when present, otherwise the derived value is
used. The COGS raw-materials line is resolved this way.
"""

from collections.abc import Sequence
from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional

from .aggregation import CategoryTotal, subcategory_breakdown
from .categories import SUB_RAW_MATERIALS, CategoryId
from .models import AuthoritativeSnapshot


class DataSource(str, Enum):
    BALANCE_SHEET = "balance-sheet"
    JOURNAL = "journal"
    MIXED = "mixed"


@dataclass(frozen=True)
class SourcedValue:
    value: float
    source: DataSource


def resolve_preferred(authoritative: Optional[float], derived: float) -> SourcedValue:
    """
    Pick a figure according to source precedence.

    authoritative snapshot > derived from transactions.
    """
    if authoritative is not None:
        return SourcedValue(float(authoritative), DataSource.BALANCE_SHEET)
    return SourcedValue(float(derived), DataSource.JOURNAL)


# ---------------------------------------------------------------------------
# Cost inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CogsBreakdown:
    """COGS with the raw-materials line resolved by source precedence."""

    raw_materials: SourcedValue
    other: dict[str, float]

    @property
    def total(self) -> float:
        return self.raw_materials.value + sum(self.other.values())

    @property
    def source(self) -> DataSource:
        return self.raw_materials.source


def resolve_cogs(
    totals: Sequence[CategoryTotal], snapshot: Optional[AuthoritativeSnapshot] = None
) -> CogsBreakdown:
    """
    Build the COGS breakdown.

    Raw materials come from the snapshot (opening stock + purchases -
    closing stock) when one is available, otherwise from the journal's
    "Raw Materials & Inventory" subcategory. The other COGM subcategories
    always come from the journal.
    """
    by_sub = subcategory_breakdown(totals, CategoryId.COGM)
    journal_raw = by_sub.pop(SUB_RAW_MATERIALS, 0.0)
    raw = resolve_preferred(
        snapshot.implied_cogs if snapshot is not None else None, journal_raw
    )
    return CogsBreakdown(raw_materials=raw, other=by_sub)


def _non_operating_bucket(subcategory: str) -> str:
    sub = subcategory.lower()
    if "interest" in sub:
        return "interest"
    if "depreciat" in sub:
        return "depreciation"
    if "amorti" in sub:
        return "amortization"
    if "tax" in sub:
        return "income_tax"
    return "other_non_operating"


@dataclass(frozen=True)
class CostBreakdown:
    """Cost inputs of the waterfall, below COGS."""

    channel_fulfillment: float = 0.0
    marketing: float = 0.0
    platform: float = 0.0
    operating_expenses: float = 0.0
    interest: float = 0.0
    depreciation: float = 0.0
    amortization: float = 0.0
    other_non_operating: float = 0.0
    income_tax: float = 0.0

    @property
    def non_operating_before_tax(self) -> float:
        return (
            self.interest + self.depreciation + self.amortization + self.other_non_operating
        )

    @classmethod
    def from_category_totals(cls, totals: Sequence[CategoryTotal]) -> "CostBreakdown":
        def _total(category: CategoryId) -> float:
            return abs(sum(t.debit_total for t in totals if t.category is category))

        non_op = {
            "interest": 0.0,
            "depreciation": 0.0,
            "amortization": 0.0,
            "income_tax": 0.0,
            "other_non_operating": 0.0,
        }
        for t in totals:
            if t.category is CategoryId.NON_OPERATING:
                non_op[_non_operating_bucket(t.subcategory)] += t.debit_total

        return cls(
            channel_fulfillment=_total(CategoryId.CHANNEL_FULFILLMENT),
            marketing=_total(CategoryId.SALES_MARKETING),
            platform=_total(CategoryId.PLATFORM),
            operating_expenses=_total(CategoryId.OPERATING_EXPENSES),
            **{k: abs(v) for k, v in non_op.items()},
        )

    def __add__(self, other: "CostBreakdown") -> "CostBreakdown":
        return CostBreakdown(
            **{
                f.name: getattr(self, f.name) + getattr(other, f.name)
                for f in fields(self)
            }
        )


# ---------------------------------------------------------------------------
# Waterfall
# ---------------------------------------------------------------------------

MARGIN_LINES: tuple[tuple[str, str], ...] = (
    ("net_revenue", "Net Revenue"),
    ("cogs", "COGS"),
    ("gross_margin", "Gross Margin"),
    ("cm1", "CM1"),
    ("cm2", "CM2"),
    ("cm3", "CM3"),
    ("ebitda", "EBITDA"),
    ("ebt", "EBT"),
    ("net_income", "Net Income"),
)


@dataclass(frozen=True)
class MarginLine:
    key: str
    label: str
    amount: float
    percent_of_net_revenue: float


@dataclass(frozen=True)
class WaterfallResult:
    """
    The seven margin figures of one MIS record.

    Percentages are derived from ``net_revenue`` on access, so a combined
    result built from summed amounts always carries recomputed percentages.
    """

    net_revenue: float
    cogs: float
    costs: CostBreakdown
    gross_margin: float
    cm1: float
    cm2: float
    cm3: float
    ebitda: float
    ebt: float
    net_income: float

    @property
    def percentages_defined(self) -> bool:
        return self.net_revenue != 0

    def percent(self, value: float) -> float:
        """``value`` as a percentage of net revenue (0.0 when undefined)."""
        if not self.percentages_defined:
            return 0.0
        return value / self.net_revenue * 100

    @property
    def gross_margin_pct(self) -> float:
        return self.percent(self.gross_margin)

    @property
    def cm1_pct(self) -> float:
        return self.percent(self.cm1)

    @property
    def cm2_pct(self) -> float:
        return self.percent(self.cm2)

    @property
    def cm3_pct(self) -> float:
        return self.percent(self.cm3)

    @property
    def ebitda_pct(self) -> float:
        return self.percent(self.ebitda)

    @property
    def ebt_pct(self) -> float:
        return self.percent(self.ebt)

    @property
    def net_income_pct(self) -> float:
        return self.percent(self.net_income)

    def lines(self) -> list[MarginLine]:
        return [
            MarginLine(key, label, getattr(self, key), self.percent(getattr(self, key)))
            for key, label in MARGIN_LINES
        ]

    def __add__(self, other: "WaterfallResult") -> "WaterfallResult":
        """Field-by-field sum."""
        return WaterfallResult(
            costs=self.costs + other.costs,
            **{
                key: getattr(self, key) + getattr(other, key)
                for key, _ in MARGIN_LINES
            },
        )


def compute_waterfall(
    net_revenue: float,
    cogs: float,
    category_totals: Sequence[CategoryTotal] = (),
    costs: Optional[CostBreakdown] = None,
) -> WaterfallResult:
    """
    Compute the margin waterfall.

    Parameters
    ----------
    net_revenue:
        Net revenue of the period.
    cogs:
        Cost of goods sold of the period.
    category_totals:
        Category aggregation of the ledger; used to build the cost inputs
        when ``costs`` is not given.
    costs:
        Pre-computed cost inputs.

    Returns
    -------
    WaterfallResult
    """
    if costs is None:
        costs = CostBreakdown.from_category_totals(category_totals)

    gross_margin = net_revenue - cogs
    cm1 = gross_margin - costs.channel_fulfillment
    cm2 = cm1 - costs.marketing
    cm3 = cm2 - costs.platform
    ebitda = cm3 - costs.operating_expenses
    ebt = ebitda - costs.non_operating_before_tax
    net_income = ebt - costs.income_tax

    return WaterfallResult(
        net_revenue=net_revenue,
        cogs=cogs,
        costs=costs,
        gross_margin=gross_margin,
        cm1=cm1,
        cm2=cm2,
        cm3=cm3,
        ebitda=ebitda,
        ebt=ebt,
        net_income=net_income,
    )
