# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
MIS category catalogue for MIS FinSight.

This module defines the stable identifiers used throughout the engine for
MIS heads (categories), separately from the human-readable labels shown in
reports. Keeping identifiers and labels apart means a label can be renamed
("F. Channel & Fulfillment" -> "F. Fulfilment") without touching any rule
or aggregated figure.

It also defines the sales channels and the regions (states) that the
revenue side of the engine works with.

Category kinds
--------------
Each category has a kind:

- ``revenue``: feeds the revenue section of the MIS,
- ``expense``: feeds one of the margin layers of the waterfall,
- ``ignore``:  non-P&L rows (GST, bank transfers, personal expenses) that are
  kept for audit purposes but never enter a margin sum.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class CategoryId(str, Enum):
    """Stable identifier of an MIS head."""

    REVENUE = "revenue"
    RETURNS = "returns"
    DISCOUNTS = "discounts"
    TAXES = "taxes"
    COGM = "cogm"
    CHANNEL_FULFILLMENT = "channel_fulfillment"
    SALES_MARKETING = "sales_marketing"
    PLATFORM = "platform"
    OPERATING_EXPENSES = "operating_expenses"
    NON_OPERATING = "non_operating"
    EXCLUDE = "exclude"
    IGNORE = "ignore"


class CategoryKind(str, Enum):
    REVENUE = "revenue"
    EXPENSE = "expense"
    IGNORE = "ignore"


class Channel(str, Enum):
    """Sales channel of a sales line item."""

    WEBSITE = "Website"
    AMAZON = "Amazon"
    BLINKIT = "Blinkit"
    OFFLINE = "Offline & OEM"


class Region(str, Enum):
    """States the business operates (and transfers stock) in."""

    UP = "UP"
    MAHARASHTRA = "Maharashtra"
    TELANGANA = "Telangana"
    KARNATAKA = "Karnataka"
    HARYANA = "Haryana"


CHANNELS: tuple[Channel, ...] = tuple(Channel)


@dataclass(frozen=True)
class CategoryDef:
    """
    Definition of an MIS head.

    Attributes
    ----------
    id:
        Stable identifier.
    label:
        Display label used in reports and in AI prompts.
    kind:
        revenue / expense / ignore.
    subcategories:
        Canonical subheads. Rules may use other subcategory names; the list
        is used for prompts and for the review workflow.
    """

    id: CategoryId
    label: str
    kind: CategoryKind
    subcategories: tuple[str, ...]


_CHANNEL_SUBHEADS = tuple(c.value for c in Channel)

# Non-operating subheads, matched by keyword in the waterfall.
SUB_INTEREST = "Interest Expense"
SUB_DEPRECIATION = "Depreciation"
SUB_AMORTIZATION = "Amortization"
SUB_INCOME_TAX = "Income Tax"

SUB_RAW_MATERIALS = "Raw Materials & Inventory"


CATEGORIES: dict[CategoryId, CategoryDef] = {
    CategoryId.REVENUE: CategoryDef(
        CategoryId.REVENUE, "A. Revenue", CategoryKind.REVENUE, _CHANNEL_SUBHEADS
    ),
    CategoryId.RETURNS: CategoryDef(
        CategoryId.RETURNS, "B. Returns", CategoryKind.EXPENSE, _CHANNEL_SUBHEADS
    ),
    CategoryId.DISCOUNTS: CategoryDef(
        CategoryId.DISCOUNTS, "C. Discounts", CategoryKind.EXPENSE, _CHANNEL_SUBHEADS
    ),
    CategoryId.TAXES: CategoryDef(
        CategoryId.TAXES, "D. Taxes", CategoryKind.EXPENSE, _CHANNEL_SUBHEADS
    ),
    CategoryId.COGM: CategoryDef(
        CategoryId.COGM,
        "E. COGM",
        CategoryKind.EXPENSE,
        (
            SUB_RAW_MATERIALS,
            "Manufacturing Wages",
            "Contract Wages (Mfg)",
            "Inbound Transport",
            "Factory Rent",
            "Factory Electricity",
            "Factory Maintenance",
            "Job Work",
        ),
    ),
    CategoryId.CHANNEL_FULFILLMENT: CategoryDef(
        CategoryId.CHANNEL_FULFILLMENT,
        "F. Channel & Fulfillment",
        CategoryKind.EXPENSE,
        ("Amazon Fees", "Blinkit Fees", "D2C Fees"),
    ),
    CategoryId.SALES_MARKETING: CategoryDef(
        CategoryId.SALES_MARKETING,
        "G. Sales & Marketing",
        CategoryKind.EXPENSE,
        ("Facebook Ads", "Google Ads", "Amazon Ads", "Blinkit Ads", "Agency Fees"),
    ),
    CategoryId.PLATFORM: CategoryDef(
        CategoryId.PLATFORM,
        "H. Platform Costs",
        CategoryKind.EXPENSE,
        ("Shopify Subscription", "Wati Subscription", "Shopflo Subscription"),
    ),
    CategoryId.OPERATING_EXPENSES: CategoryDef(
        CategoryId.OPERATING_EXPENSES,
        "I. Operating Expenses",
        CategoryKind.EXPENSE,
        (
            "Salaries (Admin, Mgmt)",
            "Miscellaneous (Travel, insurance)",
            "Legal & CA expenses",
            "Platform Costs (CRM, inventory softwares)",
            "Administrative Expenses",
        ),
    ),
    CategoryId.NON_OPERATING: CategoryDef(
        CategoryId.NON_OPERATING,
        "J. Non-Operating",
        CategoryKind.EXPENSE,
        (SUB_INTEREST, SUB_DEPRECIATION, SUB_AMORTIZATION, SUB_INCOME_TAX),
    ),
    CategoryId.EXCLUDE: CategoryDef(
        CategoryId.EXCLUDE,
        "X. Exclude (Personal)",
        CategoryKind.IGNORE,
        ("Personal Expenses", "Owner Withdrawals"),
    ),
    CategoryId.IGNORE: CategoryDef(
        CategoryId.IGNORE,
        "Z. Ignore (Non-P&L)",
        CategoryKind.IGNORE,
        ("GST Input/Output", "TDS", "Bank Transfers", "Inter-company"),
    ),
}


def category_label(category: CategoryId) -> str:
    """Return the display label of a category."""
    return CATEGORIES[category].label


def category_kind(category: CategoryId) -> CategoryKind:
    return CATEGORIES[category].kind


def _normalize_label(text: str) -> str:
    return " ".join(text.lower().replace("&", "and").split())


def parse_category(value: str) -> Optional[CategoryId]:
    """
    Resolve a category from an identifier or a display label.

    Accepts the stable identifier ("channel_fulfillment"), the full display
    label ("F. Channel & Fulfillment"), the label without its letter prefix
    ("Channel & Fulfillment") or the bare letter prefix ("F"). Matching is
    case-insensitive.

    Returns None when the value does not designate a known category.
    """
    if not value:
        return None
    raw = str(value).strip()
    try:
        return CategoryId(raw.lower())
    except ValueError:
        pass

    wanted = _normalize_label(raw)
    for cat in CATEGORIES.values():
        label = _normalize_label(cat.label)
        prefix, _, rest = label.partition(". ")
        # "Z. Ignore (Non-P&L)" also answers to "Z. Ignore"
        short = rest.split(" (")[0]
        if wanted in {label, rest, short, prefix, f"{prefix}. {short}"}:
            return cat.id
    return None


def category_choices() -> list[tuple[str, tuple[str, ...]]]:
    """Return (label, subcategories) pairs, in report order."""
    return [(c.label, c.subcategories) for c in CATEGORIES.values()]
