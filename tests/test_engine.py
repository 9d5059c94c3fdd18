from datetime import date

import pytest

from mis_finsight.categories import CategoryId, Channel
from mis_finsight.classifier import classify_manually
from mis_finsight.engine import EngineSettings, build_mis_record, rebuild_mis_record
from mis_finsight.models import AuthoritativeSnapshot, DiagnosticKind, LedgerEntry
from mis_finsight.periods import MISPeriod
from mis_finsight.revenue import build_line_item
from mis_finsight.rules import RuleBook
from mis_finsight.waterfall import DataSource

PERIOD = MISPeriod(2024, 4)
SETTINGS = EngineSettings(self_entity_keyword="heatronics", hub_state="Maharashtra")


def ledger():
    d = date(2024, 4, 15)
    rows = [
        ("RAW MATERIAL PURCHASE", 400, 0),
        ("AMAZON LOGISTICS FEE", 100, 0),
        ("GOOGLE INDIA PVT LTD", 150, 0),
        ("SHOPIFY COMMERCE", 50, 0),
        ("Salary", 200, 0),
        ("INTEREST ON OD", 10, 0),
        ("DEPRECIATION", 20, 0),
        ("INCOME TAX PROVISION", 5, 0),
        ("HDFC BANK", 0, 935),
    ]
    return [
        LedgerEntry(d, f"V{i}", name, debit=debit, credit=credit, region="Maharashtra")
        for i, (name, debit, credit) in enumerate(rows, start=1)
    ]


def sales():
    return {
        "Maharashtra": [
            build_line_item("Sharma Medical Store", 1000, self_keyword="heatronics"),
            build_line_item("HEATRONICS BENGALURU", 300, self_keyword="heatronics"),
        ]
    }


def test_build_mis_record_end_to_end():
    record = build_mis_record(PERIOD, ledger(), sales(), RuleBook.defaults(),
                              settings=SETTINGS)

    assert record.period_key == "2024-04"
    assert record.label == "Apr 2024"
    assert record.states == ("Maharashtra",)
    assert record.revenue.gross_sales_by_channel[Channel.OFFLINE] == 1000
    assert record.revenue.transfers == 300
    # net revenue deducts transfers as well
    assert record.net_revenue == pytest.approx(700)

    wf = record.waterfall
    assert record.cogs.total == pytest.approx(400)
    assert record.cogs.source is DataSource.JOURNAL
    assert record.journal_cogs == pytest.approx(400)
    assert wf.gross_margin == pytest.approx(300)
    assert wf.cm1 == pytest.approx(200)
    assert wf.cm2 == pytest.approx(50)
    assert wf.cm3 == pytest.approx(0)
    assert wf.ebitda == pytest.approx(-200)
    assert wf.ebt == pytest.approx(-230)
    assert wf.net_income == pytest.approx(-235)

    assert record.unclassified_count == 0
    assert record.auto_ignored_count == 1
    breakdown = record.cost_breakdown()
    assert breakdown[CategoryId.SALES_MARKETING] == {"Google Ads": 150}


def test_build_mis_record_without_transfers_matches_worked_example():
    only_sales = {"Maharashtra": sales()["Maharashtra"][:1]}

    record = build_mis_record(PERIOD, ledger(), only_sales, RuleBook.defaults(),
                              settings=SETTINGS)

    wf = record.waterfall
    assert wf.gross_margin_pct == pytest.approx(60.0)
    assert wf.ebitda == pytest.approx(100)
    assert wf.ebitda_pct == pytest.approx(10.0)
    assert wf.ebt == pytest.approx(70)
    assert wf.net_income == pytest.approx(65)
    assert wf.net_income_pct == pytest.approx(6.5)


def test_build_mis_record_prefers_snapshot_cogs():
    snapshot = AuthoritativeSnapshot(opening_stock=100, purchases=1100, closing_stock=200)

    record = build_mis_record(PERIOD, ledger(), sales(), RuleBook.defaults(),
                              snapshot=snapshot, settings=SETTINGS)

    assert record.cogs.raw_materials.value == pytest.approx(1000)
    assert record.cogs.source is DataSource.BALANCE_SHEET
    # journal figure is kept for reconciliation
    assert record.journal_cogs == pytest.approx(400)
    assert record.snapshot == snapshot


def test_build_mis_record_flags_unclassified_entries():
    entries = ledger() + [LedgerEntry(date(2024, 4, 20), "V99", "Mystery Vendor", debit=80)]

    record = build_mis_record(PERIOD, entries, sales(), RuleBook.defaults(),
                              settings=SETTINGS)

    assert record.unclassified_count == 1
    assert DiagnosticKind.NEEDS_REVIEW in [d.kind for d in record.diagnostics]
    # unclassified amounts never reach the waterfall
    assert record.waterfall.net_income == pytest.approx(-235)


def test_rebuild_mis_record_after_manual_edit():
    record = build_mis_record(PERIOD, ledger(), sales(), RuleBook.defaults(),
                              settings=SETTINGS)
    edited = list(record.transactions)
    edited[2] = classify_manually(edited[2], CategoryId.PLATFORM, "Wati Subscription")

    rebuilt = rebuild_mis_record(record, edited)

    assert rebuilt.waterfall.cm2 == pytest.approx(200)
    assert rebuilt.waterfall.cm3 == pytest.approx(0)
    assert rebuilt.net_income == pytest.approx(record.net_income)
    assert rebuilt.revenue is record.revenue
    # the original record is untouched
    assert record.waterfall.cm2 == pytest.approx(50)


def test_rebuild_mis_record_refreshes_review_diagnostics():
    entries = ledger() + [LedgerEntry(date(2024, 4, 20), "V99", "Mystery Vendor", debit=80)]
    record = build_mis_record(PERIOD, entries, sales(), RuleBook.defaults(),
                              settings=SETTINGS)
    edited = list(record.transactions)
    edited[-1] = classify_manually(edited[-1], CategoryId.OPERATING_EXPENSES,
                                   "Office & Admin")

    rebuilt = rebuild_mis_record(record, edited)

    assert rebuilt.unclassified_count == 0
    assert DiagnosticKind.NEEDS_REVIEW not in [d.kind for d in rebuilt.diagnostics]
    assert rebuilt.waterfall.ebitda == pytest.approx(record.waterfall.ebitda - 80)
