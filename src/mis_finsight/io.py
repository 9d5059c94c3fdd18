# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for MIS FinSight.

This module reads the three kinds of input files exported from the
accounting software and normalizes them into the value objects used by the
engine. Column names are case-insensitive and a few common aliases are
accepted for each column.

Expected input formats
----------------------

1) Ledger / journal
   ----------------
       date, voucher, account, debit, credit[, notes]

   Aliases: ``voucher_id`` / ``voucher no`` / ``vch no`` for ``voucher``;
   ``account_name`` / ``particulars`` / ``ledger`` for ``account``;
   ``narration`` / ``description`` for ``notes``.

2) Sales register
   --------------
       [date,] [invoice,] party, amount[, tax | igst, cgst, sgst][, type]

   Aliases: ``account`` / ``particulars`` / ``party name`` / ``customer``
   for ``party``; ``sale amount`` / ``taxable amount`` / ``total amount``
   for ``amount``; ``vch/bill no`` / ``voucher`` for ``invoice``.

   Total rows, cancelled invoices and zero-amount rows are skipped. The tax
   of a row is the explicit ``tax`` column when present, otherwise the sum
   of ``igst``, ``cgst`` and ``sgst`` (signed, so that credit notes reduce
   the tax total).

3) Balance-sheet snapshot
   ----------------------
       item, amount

   One row per trading-account figure: opening stock, closing stock,
   purchases, sales, net profit and/or net loss. Unknown items are ignored.

Row-level problems (unparseable date, non-numeric amount, negative debit)
never abort a read: the row is skipped, a warning is logged and a
``parse-shape`` diagnostic is returned alongside the parsed rows. A file
without the required columns raises ``ValueError``.
"""

import logging
import math
import os
import re
from collections.abc import Sequence
from typing import Optional, Union

import pandas as pd

from .models import (
    AuthoritativeSnapshot,
    Diagnostic,
    DiagnosticKind,
    LedgerEntry,
    SalesLineItem,
)
from .revenue import build_line_item

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

LEDGER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date", "voucher date"),
    "voucher": ("voucher", "voucher_id", "voucher no", "vch no", "vch/bill no"),
    "account": ("account", "account_name", "account name", "particulars", "ledger"),
    "debit": ("debit", "dr"),
    "credit": ("credit", "cr"),
    "notes": ("notes", "narration", "description"),
}

SALES_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date", "invoice date"),
    "invoice": ("invoice", "invoice_no", "invoice no", "vch/bill no", "voucher"),
    "party": ("party", "party name", "account", "particulars", "customer"),
    "amount": ("amount", "sale amount", "taxable amount", "taxable amt", "total amount"),
    "type": ("type", "status"),
}

_TOTAL_LABELS = {"total", "grand total"}


def _read_csv(path: PathLike) -> pd.DataFrame:
    """Read a CSV as text with normalized (lowercase, stripped) column names."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [str(c).lower().strip() for c in df.columns]
    return df.fillna("")


def _resolve_columns(
    df: pd.DataFrame,
    aliases: dict[str, tuple[str, ...]],
    required: Sequence[str],
    path: PathLike,
) -> dict[str, Optional[str]]:
    """
    Map canonical column names to the first matching alias in ``df``.

    Raises
    ------
    ValueError
        If a required column has no match.
    """
    cols = set(df.columns)
    resolved: dict[str, Optional[str]] = {}
    for canonical, candidates in aliases.items():
        resolved[canonical] = next((c for c in candidates if c in cols), None)

    missing = [c for c in required if resolved[c] is None]
    if missing:
        raise ValueError(
            f"File {path} is missing required column(s): {', '.join(missing)}"
        )
    return resolved


def _to_amount(raw: str) -> float:
    """Parse an amount cell, tolerating thousands separators and blanks."""
    text = str(raw).replace(",", "").strip()
    if not text:
        return 0.0
    # accounting negatives: (1,234.00)
    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Not a finite amount: {raw!r}")
    return value


def _parse_shape(message: str, source: str) -> Diagnostic:
    logger.warning("%s (%s)", message, source)
    return Diagnostic(DiagnosticKind.PARSE_SHAPE, message, source)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def read_ledger_entries(
    path: PathLike, region: str = ""
) -> tuple[list[LedgerEntry], list[Diagnostic]]:
    """
    Read journal rows from a CSV file.

    Parameters
    ----------
    path:
        Path to the ledger CSV file.
    region:
        State the ledger belongs to, stored on every entry.

    Returns
    -------
    tuple[list[LedgerEntry], list[Diagnostic]]
        Parsed entries (in file order) and one diagnostic per skipped row.

    Raises
    ------
    ValueError
        If the file lacks the date, account, debit or credit column.
    """
    df = _read_csv(path)
    cols = _resolve_columns(
        df, LEDGER_ALIASES, ("date", "account", "debit", "credit"), path
    )
    source = os.fspath(path)

    dates = pd.to_datetime(df[cols["date"]], errors="coerce", format="mixed")

    entries: list[LedgerEntry] = []
    diagnostics: list[Diagnostic] = []
    for pos, row in enumerate(df.to_dict(orient="records")):
        line_no = pos + 2
        account = str(row[cols["account"]]).strip()
        if not account or account.lower() in _TOTAL_LABELS:
            continue

        day = dates.iloc[pos]
        if pd.isna(day):
            diagnostics.append(
                _parse_shape(
                    f"Line {line_no}: invalid date {row[cols['date']]!r}", source
                )
            )
            continue

        try:
            debit = _to_amount(row[cols["debit"]])
            credit = _to_amount(row[cols["credit"]])
            entry = LedgerEntry(
                date=day.date(),
                voucher_id=str(row[cols["voucher"]]).strip()
                if cols["voucher"]
                else f"L{line_no}",
                account_name=account,
                debit=debit,
                credit=credit,
                notes=str(row[cols["notes"]]).strip() if cols["notes"] else "",
                region=region,
            )
        except ValueError as exc:
            diagnostics.append(_parse_shape(f"Line {line_no}: {exc}", source))
            continue

        entries.append(entry)

    return entries, diagnostics


# ---------------------------------------------------------------------------
# Sales register
# ---------------------------------------------------------------------------


def _row_tax(row: dict, cols: set[str]) -> float:
    if "tax" in cols:
        return _to_amount(row["tax"])
    return sum(_to_amount(row[c]) for c in ("igst", "cgst", "sgst") if c in cols)


def read_sales_register(
    path: PathLike, state: str = "", self_keyword: str = ""
) -> tuple[list[SalesLineItem], list[Diagnostic]]:
    """
    Read a sales register from a CSV file.

    Parameters
    ----------
    path:
        Path to the sales-register CSV file.
    state:
        State whose register this is.
    self_keyword:
        Keyword identifying the business itself in party names. Sales to
        such parties are stock transfers.

    Returns
    -------
    tuple[list[SalesLineItem], list[Diagnostic]]

    Raises
    ------
    ValueError
        If the file lacks a party or amount column.
    """
    df = _read_csv(path)
    cols = _resolve_columns(df, SALES_ALIASES, ("party", "amount"), path)
    present = set(df.columns)
    source = os.fspath(path)

    dates = (
        pd.to_datetime(df[cols["date"]], errors="coerce", format="mixed")
        if cols["date"]
        else None
    )

    items: list[SalesLineItem] = []
    diagnostics: list[Diagnostic] = []
    for pos, row in enumerate(df.to_dict(orient="records")):
        line_no = pos + 2
        party = str(row[cols["party"]]).strip()
        if not party or party.lower() in _TOTAL_LABELS:
            continue
        row_type = str(row[cols["type"]]).lower() if cols["type"] else ""
        if "cancel" in row_type or "(cancelled)" in party.lower():
            continue

        try:
            amount = _to_amount(row[cols["amount"]])
            tax = _row_tax(row, present)
        except ValueError:
            diagnostics.append(
                _parse_shape(
                    f"Line {line_no}: non-numeric amount for party {party!r}", source
                )
            )
            continue
        if amount == 0:
            continue

        line_date = None
        if dates is not None and not pd.isna(dates.iloc[pos]):
            line_date = dates.iloc[pos].date()

        items.append(
            build_line_item(
                party,
                amount,
                self_keyword=self_keyword,
                tax_amount=tax,
                state=state,
                invoice_no=str(row[cols["invoice"]]).strip() if cols["invoice"] else "",
                line_date=line_date,
            )
        )

    return items, diagnostics


# ---------------------------------------------------------------------------
# Balance-sheet snapshot
# ---------------------------------------------------------------------------

SNAPSHOT_ITEMS: tuple[tuple[str, str], ...] = (
    (r"opening\s*stock", "opening_stock"),
    (r"closing\s*stock", "closing_stock"),
    (r"purchases?(\s+accounts?)?", "purchases"),
    (r"(net\s+)?sales?(\s+accounts?)?", "net_sales"),
    (r"nett?\s*profit", "net_profit"),
    (r"nett?\s*loss", "net_loss"),
)


def _snapshot_key(item: str) -> Optional[str]:
    text = item.strip().lower()
    for pattern, key in SNAPSHOT_ITEMS:
        if re.fullmatch(pattern, text):
            return key
    return None


def read_snapshot(path: PathLike) -> AuthoritativeSnapshot:
    """
    Read a balance-sheet snapshot from a two-column ``item,amount`` CSV.

    ``net_profit_loss`` is computed as net profit minus net loss, so a file
    reporting a loss yields a negative figure.

    Raises
    ------
    ValueError
        If the columns are missing or an amount is not numeric.
    """
    df = _read_csv(path)
    missing = {"item", "amount"} - set(df.columns)
    if missing:
        raise ValueError(
            f"Snapshot file {path} is missing required column(s): "
            f"{', '.join(sorted(missing))}"
        )

    values = {key: 0.0 for _, key in SNAPSHOT_ITEMS}
    for row in df.to_dict(orient="records"):
        key = _snapshot_key(row["item"])
        if key is None:
            logger.debug("Ignoring snapshot item %r in %s", row["item"], path)
            continue
        try:
            values[key] += _to_amount(row["amount"])
        except ValueError as exc:
            raise ValueError(
                f"Invalid amount {row['amount']!r} for {row['item']!r} in {path}."
            ) from exc

    return AuthoritativeSnapshot(
        opening_stock=values["opening_stock"],
        closing_stock=values["closing_stock"],
        purchases=values["purchases"],
        net_sales=values["net_sales"],
        net_profit_loss=values["net_profit"] - values["net_loss"],
    )
