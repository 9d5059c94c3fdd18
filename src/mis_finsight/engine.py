# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Core MIS engine for MIS FinSight.

This module wires the building blocks together into one MIS record per
period:

1) classification of the ledger (offset resolution, rules, optional AI),
2) revenue aggregation per state and channel, combined across states,
3) category aggregation of the classified ledger,
4) COGS resolution (balance sheet preferred over journal),
5) the margin waterfall.

The engine contains no presentation logic: it returns ``MISRecord`` value
objects that are rendered by ``views`` and combined by ``multi_periods``.

Records are derived data. After a user edits classifications, the record
is rebuilt from the edited transactions with ``rebuild_mis_record``; a
record is never patched in place.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from .aggregation import CategoryTotal, aggregate_by_category, subcategory_breakdown
from .categories import CategoryId
from .classifier import classify_entries, review_diagnostics
from .detectors import DEFAULT_SELF_ADJUSTMENT_PATTERNS
from .models import (
    AuthoritativeSnapshot,
    ClassificationOrigin,
    Diagnostic,
    DiagnosticKind,
    LedgerEntry,
    SalesLineItem,
)
from .oracle import AUTO_ACCEPT_THRESHOLD, ClassificationOracle
from .periods import MISPeriod
from .revenue import RevenueTotals, aggregate_revenue, combine_state_revenue
from .rules import RuleBook
from .waterfall import CogsBreakdown, WaterfallResult, compute_waterfall, resolve_cogs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSettings:
    """
    Company-level settings used when building a record.

    Attributes
    ----------
    self_entity_keyword:
        Keyword identifying the business itself in party names; sales to
        such parties are stock transfers.
    hub_state:
        The only state whose stock transfers are counted.
    auto_accept_threshold:
        Minimum AI confidence for automatic acceptance.
    offset_tolerance:
        Amount tolerance of the offset-entry resolver.
    self_adjustment_patterns:
        Regular expressions identifying self-adjustment accounts.
    """

    self_entity_keyword: str = ""
    hub_state: Optional[str] = None
    auto_accept_threshold: float = AUTO_ACCEPT_THRESHOLD
    offset_tolerance: float = 0.01
    self_adjustment_patterns: tuple[str, ...] = DEFAULT_SELF_ADJUSTMENT_PATTERNS


@dataclass(frozen=True)
class MISRecord:
    """
    The MIS of one period (or of a combination of periods).

    Attributes
    ----------
    period_keys:
        Sorted 'YYYY-MM' keys of the months covered.
    states:
        States whose data went into the record.
    revenue:
        Revenue breakdown by channel.
    cogs:
        COGS breakdown (raw materials resolved by source precedence).
    journal_cogs:
        COGM total as aggregated from the classified ledger.
    waterfall:
        Margin figures and percentages.
    transactions:
        Classified ledger entries.
    category_totals:
        Category aggregation of ``transactions``.
    snapshot:
        Authoritative balance-sheet figures, when available.
    diagnostics:
        Non-fatal problems found while building the record.
    rule_hits:
        Number of matches per stored rule id.
    """

    period_keys: tuple[str, ...]
    states: tuple[str, ...]
    revenue: RevenueTotals
    cogs: CogsBreakdown
    journal_cogs: float
    waterfall: WaterfallResult
    transactions: tuple[LedgerEntry, ...] = ()
    category_totals: tuple[CategoryTotal, ...] = ()
    snapshot: Optional[AuthoritativeSnapshot] = None
    diagnostics: tuple[Diagnostic, ...] = ()
    rule_hits: dict[int, int] = field(default_factory=dict)

    @property
    def period_key(self) -> str:
        if len(self.period_keys) == 1:
            return self.period_keys[0]
        return f"{self.period_keys[0]}..{self.period_keys[-1]}"

    @property
    def label(self) -> str:
        first = MISPeriod.from_key(self.period_keys[0]).label
        if len(self.period_keys) == 1:
            return first
        return f"{first} - {MISPeriod.from_key(self.period_keys[-1]).label}"

    @property
    def net_revenue(self) -> float:
        return self.waterfall.net_revenue

    @property
    def net_income(self) -> float:
        return self.waterfall.net_income

    @property
    def unclassified_count(self) -> int:
        return sum(1 for e in self.transactions if e.category is None)

    @property
    def needs_review_count(self) -> int:
        return sum(1 for e in self.transactions if e.needs_review)

    @property
    def auto_ignored_count(self) -> int:
        return sum(
            1
            for e in self.transactions
            if e.classification is not None
            and e.classification.origin is ClassificationOrigin.AUTO_IGNORE
        )

    def cost_breakdown(self) -> dict[CategoryId, dict[str, float]]:
        """Absolute debit total per subcategory, for every category present."""
        categories = dict.fromkeys(t.category for t in self.category_totals)
        return {
            cat: subcategory_breakdown(self.category_totals, cat) for cat in categories
        }


def journal_cogs_total(totals: Sequence[CategoryTotal]) -> float:
    return abs(sum(t.debit_total for t in totals if t.category is CategoryId.COGM))


def assemble_mis_record(
    period: MISPeriod,
    transactions: Sequence[LedgerEntry],
    revenue: RevenueTotals,
    snapshot: Optional[AuthoritativeSnapshot] = None,
    *,
    states: Sequence[str] = (),
    diagnostics: Sequence[Diagnostic] = (),
    rule_hits: Optional[Mapping[int, int]] = None,
) -> MISRecord:
    """
    Build a record from already-classified transactions.

    No classification happens here: the function only aggregates and runs
    the waterfall.
    """
    totals = aggregate_by_category(transactions)
    cogs = resolve_cogs(totals, snapshot)
    waterfall = compute_waterfall(revenue.net_revenue, cogs.total, totals)
    if not waterfall.percentages_defined:
        logger.info(
            "Net revenue is zero for %s; margin percentages are not defined.",
            period.label,
        )

    return MISRecord(
        period_keys=(period.key,),
        states=tuple(states),
        revenue=revenue,
        cogs=cogs,
        journal_cogs=journal_cogs_total(totals),
        waterfall=waterfall,
        transactions=tuple(transactions),
        category_totals=tuple(totals),
        snapshot=snapshot,
        diagnostics=tuple(diagnostics),
        rule_hits=dict(rule_hits or {}),
    )


def build_mis_record(
    period: MISPeriod,
    ledger_entries: Sequence[LedgerEntry],
    sales_by_state: Mapping[str, Sequence[SalesLineItem]],
    rule_book: RuleBook,
    *,
    snapshot: Optional[AuthoritativeSnapshot] = None,
    settings: EngineSettings = EngineSettings(),
    oracle: Optional[ClassificationOracle] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> MISRecord:
    """
    Build the MIS record of one period.

    Parameters
    ----------
    period:
        Month covered by the inputs.
    ledger_entries:
        Journal rows of every state for the period.
    sales_by_state:
        Sales-register lines, keyed by state.
    rule_book:
        Classification and auto-ignore rules.
    snapshot:
        Balance-sheet figures for the period (already combined across
        states), if available.
    settings:
        Company-level settings.
    oracle:
        Optional AI oracle.
    should_cancel:
        Cancellation hook for the AI call.

    Returns
    -------
    MISRecord
    """
    run = classify_entries(
        ledger_entries,
        rule_book,
        oracle=oracle,
        auto_accept_threshold=settings.auto_accept_threshold,
        self_adjustment_patterns=settings.self_adjustment_patterns,
        offset_tolerance=settings.offset_tolerance,
        should_cancel=should_cancel,
    )

    per_state = {
        state: aggregate_revenue(items, state) for state, items in sales_by_state.items()
    }
    revenue = combine_state_revenue(per_state, settings.hub_state)

    states = list(sales_by_state)
    for entry in ledger_entries:
        if entry.region and entry.region not in states:
            states.append(entry.region)

    return assemble_mis_record(
        period,
        run.entries,
        revenue,
        snapshot,
        states=states,
        diagnostics=run.diagnostics,
        rule_hits=run.rule_hits,
    )


def rebuild_mis_record(
    record: MISRecord, transactions: Sequence[LedgerEntry]
) -> MISRecord:
    """
    Rebuild a single-period record after its transactions were edited.

    Revenue and snapshot are kept; everything derived from the ledger is
    recomputed from ``transactions``.

    Raises
    ------
    ValueError
        If ``record`` spans several periods.
    """
    if len(record.period_keys) != 1:
        raise ValueError("Only single-period records can be rebuilt.")
    return assemble_mis_record(
        MISPeriod.from_key(record.period_keys[0]),
        transactions,
        record.revenue,
        record.snapshot,
        states=record.states,
        diagnostics=[
            *(d for d in record.diagnostics if d.kind is not DiagnosticKind.NEEDS_REVIEW),
            *review_diagnostics(transactions),
        ],
        rule_hits=record.rule_hits,
    )
