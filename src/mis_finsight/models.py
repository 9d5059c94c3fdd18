# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Core value objects for MIS FinSight.

This module defines the data model shared by the classifier, the
aggregators and the reporting layer:

- ``LedgerEntry``:          one journal row, with its classification,
- ``ClassificationResult``: the outcome of classifying one account name,
- ``SalesLineItem``:        one sales-register row,
- ``AuthoritativeSnapshot``: balance-sheet / trading-account figures
  for a period,
- ``Diagnostic``:           a non-fatal problem reported alongside results.

All objects are immutable. Classification never edits an entry in place:
it returns a new entry built with ``dataclasses.replace``.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from .categories import CategoryId, Channel, Region


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    NONE = "none"


class ClassificationOrigin(str, Enum):
    """Where a classification came from."""

    USER_RULE = "user-rule"
    SYSTEM_RULE = "system-rule"
    AI = "ai"
    AUTO_IGNORE = "auto-ignore"
    UNCLASSIFIED = "unclassified"
    MANUAL = "manual"


class EntryStatus(str, Enum):
    """
    Review status of a ledger entry.

    ``suggested`` results are recomputed on every run. ``classified``
    entries (manual classification or an accepted suggestion) are locked
    and only change through an explicit caller action.
    """

    UNCLASSIFIED = "unclassified"
    SUGGESTED = "suggested"
    CLASSIFIED = "classified"
    IGNORED = "ignored"


class DiagnosticKind(str, Enum):
    PARSE_SHAPE = "parse-shape"
    RULE_COMPILE = "rule-compile"
    NEEDS_REVIEW = "needs-review"
    RECONCILIATION_UNDEFINED = "reconciliation-undefined"
    ORACLE_FAILURE = "oracle-failure"


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal problem, reported to the caller rather than raised."""

    kind: DiagnosticKind
    message: str
    source: str = ""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassificationResult:
    """
    Outcome of classifying one account name.

    Attributes
    ----------
    category / subcategory:
        Assigned MIS head and subhead. Empty for unclassified results.
    confidence_tier:
        high (user rule, manual), medium (system rule, AI), none.
    origin:
        Which stage produced the result.
    needs_review:
        True when a human should look at the entry.
    reason:
        Human-readable explanation (ignore reason, offset partner, AI
        reasoning, failure cause).
    matched_pattern:
        Rule pattern that matched, when a rule was involved.
    ai_confidence:
        Numeric confidence (0-100) reported by the AI oracle.
    suggestion:
        Low-confidence AI suggestion kept for the review queue. It never
        feeds any total.

    Raises
    ------
    ValueError
        If an unclassified result carries a category or is not flagged for
        review.
    """

    category: Optional[CategoryId]
    subcategory: str
    confidence_tier: ConfidenceTier
    origin: ClassificationOrigin
    needs_review: bool = False
    reason: str = ""
    matched_pattern: Optional[str] = None
    ai_confidence: Optional[float] = None
    suggestion: Optional[tuple[CategoryId, str]] = None

    def __post_init__(self) -> None:
        if self.origin is ClassificationOrigin.UNCLASSIFIED:
            if self.category is not None or self.subcategory:
                raise ValueError("Unclassified results cannot carry a category.")
            if not self.needs_review:
                raise ValueError("Unclassified results must be flagged for review.")
        elif self.category is None:
            raise ValueError(
                f"Classification with origin '{self.origin.value}' requires a category."
            )

    @classmethod
    def unclassified(cls, reason: str = "", **kwargs) -> "ClassificationResult":
        return cls(
            category=None,
            subcategory="",
            confidence_tier=ConfidenceTier.NONE,
            origin=ClassificationOrigin.UNCLASSIFIED,
            needs_review=True,
            reason=reason,
            **kwargs,
        )

    @classmethod
    def auto_ignore(cls, reason: str) -> "ClassificationResult":
        return cls(
            category=CategoryId.IGNORE,
            subcategory=reason,
            confidence_tier=ConfidenceTier.HIGH,
            origin=ClassificationOrigin.AUTO_IGNORE,
            reason=reason,
        )

    @property
    def is_classified(self) -> bool:
        return self.category is not None


@dataclass(frozen=True)
class LedgerEntry:
    """
    One journal / ledger row.

    ``debit`` and ``credit`` are non-negative; rows where both are zero or
    both are non-zero are tolerated and handled through the net amount.
    """

    date: date
    voucher_id: str
    account_name: str
    debit: float = 0.0
    credit: float = 0.0
    notes: str = ""
    region: str = ""
    classification: Optional[ClassificationResult] = None
    status: EntryStatus = EntryStatus.UNCLASSIFIED

    def __post_init__(self) -> None:
        if self.debit < 0 or self.credit < 0:
            raise ValueError(
                f"Debit and credit must be non-negative (voucher {self.voucher_id!r})."
            )

    @property
    def net(self) -> float:
        """Signed net amount (debit - credit)."""
        return self.debit - self.credit

    @property
    def side(self) -> Optional[str]:
        """'debit', 'credit' or None when the row nets to zero."""
        if self.net > 0:
            return "debit"
        if self.net < 0:
            return "credit"
        return None

    @property
    def is_locked(self) -> bool:
        return self.status is EntryStatus.CLASSIFIED

    @property
    def category(self) -> Optional[CategoryId]:
        return self.classification.category if self.classification else None

    @property
    def subcategory(self) -> str:
        return self.classification.subcategory if self.classification else ""

    @property
    def needs_review(self) -> bool:
        return self.classification is None or self.classification.needs_review


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SalesLineItem:
    """
    One sales-register row.

    ``amount`` keeps the sign found in the register: negative amounts are
    returns (credit notes). ``tax_amount`` is signed as well. A line can be a
    return or a stock transfer, never both.
    """

    party: str
    amount: float
    channel: Optional[Channel]
    is_return: bool = False
    is_transfer: bool = False
    destination_region: Optional[Region] = None
    tax_amount: float = 0.0
    date: Optional[date] = None
    invoice_no: str = ""
    state: str = ""

    def __post_init__(self) -> None:
        if self.is_return and self.is_transfer:
            raise ValueError(
                f"Sales line {self.invoice_no or self.party!r} cannot be both a "
                "return and a stock transfer."
            )


# ---------------------------------------------------------------------------
# Balance sheet
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthoritativeSnapshot:
    """
    Balance-sheet / trading-account figures for a period.

    ``implied_cogs`` is the cost of goods implied by the stock movement:
    opening stock + purchases - closing stock.
    """

    opening_stock: float = 0.0
    closing_stock: float = 0.0
    purchases: float = 0.0
    net_sales: float = 0.0
    net_profit_loss: float = 0.0

    @property
    def implied_cogs(self) -> float:
        return self.opening_stock + self.purchases - self.closing_stock
