import pytest

from mis_finsight.engine import assemble_mis_record
from mis_finsight.models import AuthoritativeSnapshot, DiagnosticKind
from mis_finsight.periods import MISPeriod
from mis_finsight.reconciliation import (
    ReconciliationStatus,
    reconcile,
    reconcile_metric,
)
from mis_finsight.revenue import aggregate_revenue, build_line_item


def make_record(revenue, snapshot=None):
    totals = aggregate_revenue(
        [build_line_item("Retail Counter", revenue, self_keyword="heatronics")]
    )
    return assemble_mis_record(MISPeriod(2024, 4), [], totals, snapshot)


def test_reconcile_metric_match_and_review():
    match = reconcile_metric("net_revenue", 102, 100)
    review = reconcile_metric("net_revenue", 106, 100)

    assert match.status is ReconciliationStatus.MATCH
    assert match.variance == 2
    assert match.variance_pct == pytest.approx(2.0)
    assert review.status is ReconciliationStatus.REVIEW_REQUIRED
    assert review.variance_pct == pytest.approx(6.0)


def test_reconcile_metric_threshold_is_strict():
    assert reconcile_metric("x", 105, 100).status is ReconciliationStatus.REVIEW_REQUIRED
    assert reconcile_metric("x", 95.5, 100).status is ReconciliationStatus.MATCH


def test_reconcile_metric_zero_snapshot_is_not_applicable():
    item = reconcile_metric("net_income", 50, 0)

    assert item.status is ReconciliationStatus.NOT_APPLICABLE
    assert item.variance_pct is None
    assert item.variance == 50


def test_reconcile_record_against_snapshot():
    snapshot = AuthoritativeSnapshot(
        opening_stock=0, closing_stock=0, purchases=0, net_sales=1000, net_profit_loss=0
    )
    record = make_record(1010, snapshot)

    result = reconcile(record)

    assert [i.metric for i in result.items] == ["net_revenue", "cogs", "net_income"]
    assert result.get("net_revenue").status is ReconciliationStatus.MATCH
    assert result.get("cogs").status is ReconciliationStatus.NOT_APPLICABLE
    assert not result.all_matched
    diagnostics = result.diagnostics()
    assert len(diagnostics) == 2
    assert all(d.kind is DiagnosticKind.RECONCILIATION_UNDEFINED for d in diagnostics)
    with pytest.raises(KeyError):
        result.get("ebitda")


def test_reconcile_uses_explicit_snapshot_and_threshold():
    record = make_record(1100)
    snapshot = AuthoritativeSnapshot(net_sales=1000, purchases=10, net_profit_loss=1100)

    strict = reconcile(record, snapshot)
    loose = reconcile(record, snapshot, threshold_pct=15)

    assert strict.get("net_revenue").status is ReconciliationStatus.REVIEW_REQUIRED
    assert loose.get("net_revenue").status is ReconciliationStatus.MATCH
    assert loose.threshold_pct == 15


def test_reconcile_without_snapshot_raises():
    with pytest.raises(ValueError, match="No balance-sheet snapshot"):
        reconcile(make_record(1000))


def test_reconciliation_dataframe():
    record = make_record(1000, AuthoritativeSnapshot(net_sales=1000))

    df = reconcile(record).to_dataframe()

    assert list(df["status"]) == ["match", "not-applicable", "not-applicable"]
    assert df.iloc[0]["variance_pct"] == 0.0
