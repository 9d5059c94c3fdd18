from datetime import date

import pytest

from mis_finsight.categories import Channel, Region
from mis_finsight.io import read_ledger_entries, read_sales_register, read_snapshot
from mis_finsight.models import DiagnosticKind


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def test_read_ledger_entries_basic(tmp_path):
    path = write(
        tmp_path,
        "ledger.csv",
        "Date,Voucher No,Particulars,Debit,Credit,Narration\n"
        '2024-04-02,J1,GOOGLE INDIA PVT LTD,"1,180.00",,Ads April\n'
        "2024-04-03,J2,HDFC BANK,,1180\n",
    )

    entries, diagnostics = read_ledger_entries(path, region="Maharashtra")

    assert diagnostics == []
    assert len(entries) == 2
    first = entries[0]
    assert first.date == date(2024, 4, 2)
    assert first.voucher_id == "J1"
    assert first.account_name == "GOOGLE INDIA PVT LTD"
    assert first.debit == 1180.0
    assert first.credit == 0.0
    assert first.notes == "Ads April"
    assert first.region == "Maharashtra"
    assert entries[1].side == "credit"


def test_read_ledger_entries_skips_bad_rows_with_diagnostics(tmp_path):
    path = write(
        tmp_path,
        "ledger.csv",
        "date,account,debit,credit\n"
        "2024-04-02,WAGES,100,\n"
        "not a date,WAGES,100,\n"
        "2024-04-03,WAGES,abc,\n"
        "2024-04-04,WAGES,-5,\n"
        "2024-04-05,,10,\n"
        "2024-04-06,Total,999,999\n",
    )

    entries, diagnostics = read_ledger_entries(path)

    assert len(entries) == 1
    assert entries[0].voucher_id == "L2"
    assert len(diagnostics) == 3
    assert all(d.kind is DiagnosticKind.PARSE_SHAPE for d in diagnostics)
    assert "Line 3" in diagnostics[0].message


@pytest.mark.parametrize("cell", ["n/a", "N/A", "NA", "null", "NaN", "inf"])
def test_read_ledger_entries_rejects_placeholder_amounts(tmp_path, cell):
    path = write(
        tmp_path,
        "ledger.csv",
        f"date,account,debit,credit\n2024-04-02,WAGES,{cell},\n2024-04-03,NA,10,\n",
    )

    entries, diagnostics = read_ledger_entries(path)

    # an account literally named NA is still a real row
    assert [e.account_name for e in entries] == ["NA"]
    assert [d.kind for d in diagnostics] == [DiagnosticKind.PARSE_SHAPE]
    assert "Line 2" in diagnostics[0].message


def test_read_ledger_entries_accounting_negatives(tmp_path):
    path = write(
        tmp_path,
        "ledger.csv",
        "date,account,debit,credit\n2024-04-02,Adjustment,(50.00),\n",
    )

    entries, diagnostics = read_ledger_entries(path)

    assert entries == []
    assert len(diagnostics) == 1


def test_read_ledger_entries_missing_columns(tmp_path):
    path = write(tmp_path, "ledger.csv", "date,account,amount\n2024-04-02,X,1\n")

    with pytest.raises(ValueError, match="debit"):
        read_ledger_entries(path)


# ---------------------------------------------------------------------------
# Sales register
# ---------------------------------------------------------------------------


def test_read_sales_register(tmp_path):
    path = write(
        tmp_path,
        "sales.csv",
        "Date,Vch/Bill No,Party Name,Taxable Amount,IGST,CGST,SGST,Type\n"
        "2024-04-02,S1,AMAZON SELLER SERVICES,1000,180,,,Sales\n"
        "2024-04-03,S2,SHIPROCKET PVT LTD,-200,,-18,-18,Credit Note\n"
        "2024-04-04,S3,HEATRONICS MEDICAL DEVICES - PUNE,500,,,,Sales\n"
        "2024-04-05,S4,Sharma Medical Store,300,,,,Cancelled\n"
        "2024-04-06,S5,Retail (cancelled),300,,,,Sales\n"
        "2024-04-07,S6,Zero Value Party,0,,,,Sales\n"
        ",,Grand Total,1600,180,,,\n",
    )

    items, diagnostics = read_sales_register(
        path, state="Karnataka", self_keyword="heatronics"
    )

    assert diagnostics == []
    assert [i.invoice_no for i in items] == ["S1", "S2", "S3"]
    amazon, ret, transfer = items
    assert amazon.channel is Channel.AMAZON
    assert amazon.tax_amount == 180
    assert amazon.date == date(2024, 4, 2)
    assert ret.is_return
    assert ret.tax_amount == -36
    assert transfer.is_transfer
    assert transfer.destination_region is Region.MAHARASHTRA
    assert all(i.state == "Karnataka" for i in items)


def test_read_sales_register_explicit_tax_and_bad_amount(tmp_path):
    path = write(
        tmp_path,
        "sales.csv",
        "party,amount,tax\nBLINK COMMERCE PVT LTD,250,30\nBroken Row,n/a,0\n",
    )

    items, diagnostics = read_sales_register(path)

    assert len(items) == 1
    assert items[0].channel is Channel.BLINKIT
    assert items[0].tax_amount == 30
    assert items[0].date is None
    assert [d.kind for d in diagnostics] == [DiagnosticKind.PARSE_SHAPE]


def test_read_sales_register_missing_columns(tmp_path):
    path = write(tmp_path, "sales.csv", "party,total\nX,1\n")

    with pytest.raises(ValueError, match="amount"):
        read_sales_register(path)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def test_read_snapshot(tmp_path):
    path = write(
        tmp_path,
        "snapshot.csv",
        "Item,Amount\n"
        "Opening Stock,100\n"
        "Purchase Accounts,\"1,100\"\n"
        "Closing Stock,200\n"
        "Sales Accounts,5000\n"
        "Nett Loss,250\n"
        "Direct Expenses,40\n",
    )

    snapshot = read_snapshot(path)

    assert snapshot.opening_stock == 100
    assert snapshot.purchases == 1100
    assert snapshot.closing_stock == 200
    assert snapshot.net_sales == 5000
    assert snapshot.net_profit_loss == -250
    assert snapshot.implied_cogs == 1000


def test_read_snapshot_errors(tmp_path):
    with pytest.raises(ValueError, match="missing required column"):
        read_snapshot(write(tmp_path, "a.csv", "name,value\nx,1\n"))
    with pytest.raises(ValueError, match="Invalid amount"):
        read_snapshot(write(tmp_path, "b.csv", "item,amount\nOpening Stock,lots\n"))
