# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Balance-sheet reconciliation for MIS FinSight.

Compares three MIS figures against the authoritative snapshot:

    ==================  ==========================
    MIS figure          Snapshot figure
    ==================  ==========================
    net revenue         net sales
    COGS (journal)      implied COGS
    net income          net profit / loss
    ==================  ==========================

For each pair:

    variance_pct = (mis - snapshot) / snapshot * 100

A pair matches when ``|variance_pct| < threshold`` (5 % by default). When
the snapshot value is zero the variance is undefined and the pair is
reported as ``not-applicable`` rather than dividing by zero.

The COGS comparison uses the category-aggregated COGM of the ledger, not
the balance-sheet-resolved COGS used by the waterfall: comparing the
snapshot with itself would always match.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import pandas as pd

from .engine import MISRecord
from .models import AuthoritativeSnapshot, Diagnostic, DiagnosticKind

DEFAULT_THRESHOLD_PCT = 5.0


class ReconciliationStatus(str, Enum):
    MATCH = "match"
    REVIEW_REQUIRED = "review-required"
    NOT_APPLICABLE = "not-applicable"


@dataclass(frozen=True)
class MetricReconciliation:
    metric: str
    mis_value: float
    snapshot_value: float
    variance: float
    variance_pct: Optional[float]
    status: ReconciliationStatus


@dataclass(frozen=True)
class ReconciliationResult:
    items: tuple[MetricReconciliation, ...]
    threshold_pct: float = DEFAULT_THRESHOLD_PCT

    @property
    def all_matched(self) -> bool:
        return all(i.status is ReconciliationStatus.MATCH for i in self.items)

    def get(self, metric: str) -> MetricReconciliation:
        for item in self.items:
            if item.metric == metric:
                return item
        raise KeyError(metric)

    def diagnostics(self) -> list[Diagnostic]:
        """One diagnostic per metric whose variance is undefined."""
        return [
            Diagnostic(
                DiagnosticKind.RECONCILIATION_UNDEFINED,
                f"Cannot reconcile {i.metric}: snapshot value is zero.",
                "reconciliation",
            )
            for i in self.items
            if i.status is ReconciliationStatus.NOT_APPLICABLE
        ]

    def to_dataframe(self, decimals: int = 2) -> pd.DataFrame:
        rows = [
            {
                "metric": i.metric,
                "mis_value": round(i.mis_value, decimals),
                "snapshot_value": round(i.snapshot_value, decimals),
                "variance": round(i.variance, decimals),
                "variance_pct": None
                if i.variance_pct is None
                else round(i.variance_pct, decimals),
                "status": i.status.value,
            }
            for i in self.items
        ]
        columns = [
            "metric",
            "mis_value",
            "snapshot_value",
            "variance",
            "variance_pct",
            "status",
        ]
        return pd.DataFrame(rows, columns=columns)


def reconcile_metric(
    metric: str,
    mis_value: float,
    snapshot_value: float,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
) -> MetricReconciliation:
    """Reconcile one figure against its snapshot counterpart."""
    variance = mis_value - snapshot_value
    if snapshot_value == 0:
        return MetricReconciliation(
            metric, mis_value, snapshot_value, variance, None,
            ReconciliationStatus.NOT_APPLICABLE,
        )
    variance_pct = variance / snapshot_value * 100
    status = (
        ReconciliationStatus.MATCH
        if abs(variance_pct) < threshold_pct
        else ReconciliationStatus.REVIEW_REQUIRED
    )
    return MetricReconciliation(
        metric, mis_value, snapshot_value, variance, variance_pct, status
    )


def reconcile(
    record: MISRecord,
    snapshot: Optional[AuthoritativeSnapshot] = None,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
) -> ReconciliationResult:
    """
    Reconcile an MIS record against a snapshot.

    Parameters
    ----------
    record:
        The MIS record.
    snapshot:
        Snapshot to compare with; defaults to the record's own snapshot.
    threshold_pct:
        Maximum absolute variance (in percent) for a match.

    Raises
    ------
    ValueError
        If no snapshot is available.
    """
    snapshot = snapshot if snapshot is not None else record.snapshot
    if snapshot is None:
        raise ValueError(
            f"No balance-sheet snapshot available to reconcile {record.label}."
        )
    items = (
        reconcile_metric(
            "net_revenue", record.net_revenue, snapshot.net_sales, threshold_pct
        ),
        reconcile_metric(
            "cogs", record.journal_cogs, snapshot.implied_cogs, threshold_pct
        ),
        reconcile_metric(
            "net_income", record.net_income, snapshot.net_profit_loss, threshold_pct
        ),
    )
    return ReconciliationResult(items=items, threshold_pct=threshold_pct)
