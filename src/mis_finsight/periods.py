# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for MIS FinSight.

MIS reports are monthly. This module defines the MISPeriod value object
(a calendar month identified by a sortable "YYYY-MM" key) and helpers to
build month ranges and Indian fiscal years (April to March).
"""

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from .models import LedgerEntry


@dataclass(frozen=True, order=True)
class MISPeriod:
    """A calendar month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month {self.month}, expected 1-12.")

    @property
    def key(self) -> str:
        """Sortable key, e.g. '2024-04'."""
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def label(self) -> str:
        """Human-readable label, e.g. 'Apr 2024'."""
        return f"{calendar.month_abbr[self.month]} {self.year}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def contains(self, day: date) -> bool:
        return day.year == self.year and day.month == self.month

    def next(self) -> "MISPeriod":
        if self.month == 12:
            return MISPeriod(self.year + 1, 1)
        return MISPeriod(self.year, self.month + 1)

    @classmethod
    def from_key(cls, key: str) -> "MISPeriod":
        """
        Parse a 'YYYY-MM' key.

        Raises
        ------
        ValueError
            If the key is not in YYYY-MM format.
        """
        try:
            year_raw, month_raw = str(key).strip().split("-")
            return cls(int(year_raw), int(month_raw))
        except ValueError as exc:
            raise ValueError(
                f"Invalid period {key!r}, expected YYYY-MM format."
            ) from exc

    @classmethod
    def from_date(cls, day: date) -> "MISPeriod":
        return cls(day.year, day.month)


def month_range(start: MISPeriod, end: MISPeriod) -> list[MISPeriod]:
    """All months from ``start`` to ``end`` inclusive."""
    if end < start:
        raise ValueError("Period range end cannot be before start.")
    months = [start]
    while months[-1] < end:
        months.append(months[-1].next())
    return months


def fiscal_year_months(start_year: int) -> list[MISPeriod]:
    """The twelve months of the fiscal year starting in April ``start_year``."""
    return month_range(MISPeriod(start_year, 4), MISPeriod(start_year + 1, 3))


def fiscal_year_label(start_year: int) -> str:
    """E.g. 'FY 2024-25'."""
    return f"FY {start_year}-{(start_year + 1) % 100:02d}"


def filter_entries_by_period(
    entries: Iterable[LedgerEntry], period: MISPeriod
) -> list[LedgerEntry]:
    """Keep only the entries dated within ``period``."""
    return [e for e in entries if period.contains(e.date)]
