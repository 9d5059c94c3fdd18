# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Classification rules for MIS FinSight.

A rule maps an account-name pattern to an MIS category and subcategory.
Rules come from three origins, evaluated in a single explicit total order:

    user  <  system  <  ai-learned

Within one origin, rules are evaluated by ascending ``priority`` and then in
insertion order. The first matching rule wins, so a user rule always beats a
system rule for the same account.

Patterns support three match kinds:

- ``exact``:     normalized account name equality (see
  ``detectors.normalize_account_name``),
- ``substring``: case-insensitive containment,
- ``regex``:     case-insensitive ``re.search``.

Invalid regular expressions are skipped: ``RuleSet`` logs a warning and
keeps the problem in ``RuleSet.errors`` so that the caller can surface it as
a diagnostic.

Ignore rules are a separate, category-less set: a match means the account is
not a P&L account (GST, TDS, bank, capital...) and carries a human-readable
reason.

Default rules
-------------
``DEFAULT_SYSTEM_RULES`` and ``DEFAULT_IGNORE_RULES`` are the bundled data
sets. They are data, not logic: they can be replaced through CSV files
(``load_rules_csv`` / ``load_ignore_rules_csv``) or the SQLite rule store.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from .categories import CategoryId, parse_category
from .detectors import normalize_account_name

logger = logging.getLogger(__name__)


class RuleOrigin(str, Enum):
    USER = "user"
    SYSTEM = "system"
    AI_LEARNED = "ai-learned"

    @property
    def rank(self) -> int:
        """Position in the evaluation order (lower is evaluated first)."""
        return _ORIGIN_RANK[self]


_ORIGIN_RANK = {
    RuleOrigin.USER: 0,
    RuleOrigin.SYSTEM: 1,
    RuleOrigin.AI_LEARNED: 2,
}


class MatchKind(str, Enum):
    EXACT = "exact"
    SUBSTRING = "substring"
    REGEX = "regex"


@dataclass(frozen=True)
class Rule:
    """
    Classification rule.

    Attributes
    ----------
    pattern:
        Exact name, substring or regular expression (see ``match_kind``).
    category / subcategory:
        MIS head and subhead assigned on match.
    origin:
        user / system / ai-learned.
    match_kind:
        How ``pattern`` is matched against the account name.
    priority:
        Lower values are evaluated first within an origin.
    confidence:
        Informational confidence (0-100) kept with the rule.
    rule_id:
        Identifier in the rule store, None for bundled rules.
    times_used:
        Informational usage counter; never affects matching.
    """

    pattern: str
    category: CategoryId
    subcategory: str
    origin: RuleOrigin = RuleOrigin.SYSTEM
    match_kind: MatchKind = MatchKind.REGEX
    priority: int = 100
    confidence: float = 100.0
    rule_id: Optional[int] = None
    times_used: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class IgnoreRule:
    """Auto-ignore rule: a regular expression and a human-readable reason."""

    pattern: str
    reason: str
    rule_id: Optional[int] = None


@dataclass(frozen=True)
class RuleError:
    """A rule that could not be compiled."""

    pattern: str
    message: str


def sort_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Return rules in evaluation order: origin rank, priority, insertion."""
    indexed = list(enumerate(rules))
    indexed.sort(key=lambda pair: (pair[1].origin.rank, pair[1].priority, pair[0]))
    return [rule for _, rule in indexed]


def _compile_regex(pattern: str) -> re.Pattern:
    return re.compile(pattern, flags=re.IGNORECASE)


class RuleSet:
    """
    An ordered, pre-compiled set of classification rules.

    Building a RuleSet compiles every regex once. Rules whose pattern does
    not compile (or is blank) are skipped with a warning and recorded in
    ``errors``.
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self.rules: list[Rule] = []
        self.errors: list[RuleError] = []
        self._matchers: list[tuple[Rule, object]] = []

        for rule in sort_rules(rules):
            if not rule.pattern or not rule.pattern.strip():
                self._skip(rule.pattern, "empty pattern")
                continue
            if rule.match_kind is MatchKind.REGEX:
                try:
                    matcher: object = _compile_regex(rule.pattern)
                except re.error as exc:
                    self._skip(rule.pattern, f"invalid regular expression: {exc}")
                    continue
            elif rule.match_kind is MatchKind.EXACT:
                matcher = normalize_account_name(rule.pattern)
            else:
                matcher = rule.pattern.lower()
            self.rules.append(rule)
            self._matchers.append((rule, matcher))

    def _skip(self, pattern: str, message: str) -> None:
        logger.warning("Skipping classification rule %r: %s", pattern, message)
        self.errors.append(RuleError(pattern=pattern, message=message))

    def __len__(self) -> int:
        return len(self.rules)

    def match(self, account_name: str) -> Optional[Rule]:
        """Return the first rule matching ``account_name``, or None."""
        if not account_name or not account_name.strip():
            return None
        lowered = account_name.lower()
        normalized: Optional[str] = None

        for rule, matcher in self._matchers:
            if rule.match_kind is MatchKind.REGEX:
                if matcher.search(account_name):  # type: ignore[attr-defined]
                    return rule
            elif rule.match_kind is MatchKind.EXACT:
                if normalized is None:
                    normalized = normalize_account_name(account_name)
                if normalized == matcher:
                    return rule
            elif matcher in lowered:  # type: ignore[operator]
                return rule
        return None


class IgnoreRuleSet:
    """Pre-compiled auto-ignore rules, evaluated in order."""

    def __init__(self, rules: Iterable[IgnoreRule] = ()) -> None:
        self.rules: list[IgnoreRule] = []
        self.errors: list[RuleError] = []
        self._compiled: list[tuple[IgnoreRule, re.Pattern]] = []

        for rule in rules:
            try:
                compiled = _compile_regex(rule.pattern)
            except re.error as exc:
                logger.warning("Skipping ignore rule %r: %s", rule.pattern, exc)
                self.errors.append(
                    RuleError(rule.pattern, f"invalid regular expression: {exc}")
                )
                continue
            self.rules.append(rule)
            self._compiled.append((rule, compiled))

    def __len__(self) -> int:
        return len(self.rules)

    def match(self, account_name: str) -> Optional[IgnoreRule]:
        if not account_name:
            return None
        for rule, compiled in self._compiled:
            if compiled.search(account_name):
                return rule
        return None


# ---------------------------------------------------------------------------
# CSV loaders
# ---------------------------------------------------------------------------


def _read_csv_normalized(path: Union[str, Path]) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df.fillna("")


def load_rules_csv(
    path: Union[str, Path], origin: RuleOrigin = RuleOrigin.SYSTEM
) -> list[Rule]:
    """
    Load classification rules from a CSV file.

    Expected columns (case-insensitive): ``pattern``, ``category``,
    ``subcategory``. Optional: ``match_kind`` (default regex), ``priority``
    (default 100), ``confidence`` (default 100).

    ``category`` accepts either a stable identifier ("cogm") or a display
    label ("E. COGM").

    Raises
    ------
    ValueError
        If required columns are missing or a row has an unknown category,
        match kind or a non-numeric priority.
    """
    df = _read_csv_normalized(path)
    required = {"pattern", "category", "subcategory"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(
            f"Rules file {path} is missing required columns: {sorted(missing)}"
        )

    rules: list[Rule] = []
    for line_no, row in enumerate(df.to_dict(orient="records"), start=2):
        category = parse_category(row["category"])
        if category is None:
            raise ValueError(
                f"Unknown category {row['category']!r} in {path} (line {line_no})."
            )
        try:
            kind = MatchKind((row.get("match_kind") or "regex").strip().lower())
            priority = int(row.get("priority") or 100)
            confidence = float(row.get("confidence") or 100)
        except ValueError as exc:
            raise ValueError(f"Invalid rule in {path} (line {line_no}): {exc}") from exc

        rules.append(
            Rule(
                pattern=row["pattern"],
                category=category,
                subcategory=row["subcategory"].strip(),
                origin=origin,
                match_kind=kind,
                priority=priority,
                confidence=confidence,
            )
        )
    return rules


def load_ignore_rules_csv(path: Union[str, Path]) -> list[IgnoreRule]:
    """Load auto-ignore rules from a CSV file with ``pattern`` and ``reason``."""
    df = _read_csv_normalized(path)
    missing = {"pattern", "reason"} - set(df.columns)
    if missing:
        raise ValueError(
            f"Ignore rules file {path} is missing required columns: {sorted(missing)}"
        )
    return [
        IgnoreRule(pattern=row["pattern"], reason=row["reason"].strip())
        for row in df.to_dict(orient="records")
        if row["pattern"]
    ]


# ---------------------------------------------------------------------------
# Bundled defaults
# ---------------------------------------------------------------------------


def _system(
    pattern: str, category: CategoryId, subcategory: str, priority: int = 100
) -> Rule:
    return Rule(
        pattern=pattern,
        category=category,
        subcategory=subcategory,
        origin=RuleOrigin.SYSTEM,
        priority=priority,
        confidence=90.0,
    )


_C = CategoryId

DEFAULT_SYSTEM_RULES: tuple[Rule, ...] = (
    # Channel & fulfillment
    _system(r"AMAZON.*LOGISTICS", _C.CHANNEL_FULFILLMENT, "Amazon Fees"),
    _system(
        r"Storage Fee|SHIPPING FEE|Return Fee|Commission Income",
        _C.CHANNEL_FULFILLMENT,
        "Amazon Fees",
    ),
    _system(r"PLATFORM FEE", _C.CHANNEL_FULFILLMENT, "Amazon Fees"),
    _system(r"AMAZON SELLER SERVICES", _C.CHANNEL_FULFILLMENT, "Amazon Fees"),
    _system(r"BLINKIT.*(FEE|COMMISSION)", _C.CHANNEL_FULFILLMENT, "Blinkit Fees"),
    _system(r"SHIPROCKET PRIVATE LIMITED", _C.CHANNEL_FULFILLMENT, "D2C Fees"),
    _system(r"EASEBUZZ|RAZORPAY", _C.CHANNEL_FULFILLMENT, "D2C Fees"),
    # Sales & marketing
    _system(r"FACEBOOK|\bMETA\b", _C.SALES_MARKETING, "Facebook Ads"),
    _system(r"GOOGLE INDIA", _C.SALES_MARKETING, "Google Ads"),
    _system(r"Advertisement.*Publicity", _C.SALES_MARKETING, "Amazon Ads"),
    _system(r"SOCIAL MEDIA MARKETING", _C.SALES_MARKETING, "Agency Fees"),
    _system(r"Branding.*Packaging", _C.SALES_MARKETING, "Agency Fees"),
    # Cost of goods manufactured
    _system(r"PURCHASE|RAW MATERIAL", _C.COGM, "Raw Materials & Inventory"),
    _system(r"JOB WORK", _C.COGM, "Job Work"),
    _system(r"FREIGHT|CARTAGE|PORTER", _C.COGM, "Inbound Transport"),
    _system(r"FACTORY RENT", _C.COGM, "Factory Rent"),
    _system(r"Electricity", _C.COGM, "Factory Electricity"),
    _system(r"POWER BACKUP|MAINTENANCE|CONSUMABLE", _C.COGM, "Factory Maintenance"),
    _system(r"WAGES", _C.COGM, "Manufacturing Wages"),
    # Platform costs
    _system(r"SHOPIFY", _C.PLATFORM, "Shopify Subscription"),
    _system(r"WATI", _C.PLATFORM, "Wati Subscription"),
    _system(r"SHOPFLO", _C.PLATFORM, "Shopflo Subscription"),
    # Operating expenses
    _system(r"Salary|ESI.*EMPLOYER", _C.OPERATING_EXPENSES, "Salaries (Admin, Mgmt)"),
    _system(
        r"Travelling|Miscellaneous|STAFF WELFARE|INSURANCE",
        _C.OPERATING_EXPENSES,
        "Miscellaneous (Travel, insurance)",
    ),
    _system(
        r"LEGAL.*PROFESSIONAL|ACCOUNTING.*RETURN|AUDIT FEE",
        _C.OPERATING_EXPENSES,
        "Legal & CA expenses",
    ),
    _system(
        r"OFFICE EXPENSE|OFFICE RENT|Printing.*Stationery|Bank Charge|COMMUNICATION|COURIER",
        _C.OPERATING_EXPENSES,
        "Administrative Expenses",
    ),
    # Non-operating
    _system(r"INTEREST", _C.NON_OPERATING, "Interest Expense", priority=110),
    _system(r"(?<!ACCUMULATED )DEPRECIATION", _C.NON_OPERATING, "Depreciation"),
    _system(r"AMORTI[SZ]ATION", _C.NON_OPERATING, "Amortization"),
    _system(r"INCOME TAX", _C.NON_OPERATING, "Income Tax"),
    # Non-P&L
    _system(r"GST.*INPUT|GST.*OUTPUT|CGST|SGST|IGST", _C.IGNORE, "GST Input/Output", 50),
    _system(r"\bTDS\b", _C.IGNORE, "TDS", 50),
    _system(r"\bTCS\b", _C.IGNORE, "GST Input/Output", 50),
    _system(r"DIRECTOR LOAN", _C.IGNORE, "Inter-company", 50),
    # Personal
    _system(r"DIWALI EXP", _C.EXCLUDE, "Personal Expenses"),
)


DEFAULT_IGNORE_RULES: tuple[IgnoreRule, ...] = (
    IgnoreRule(r"AMAZON.*CASH.*SALE", "Amazon Cash Sale Adjustment"),
    IgnoreRule(r"GST.*INPUT", "GST Input Credit"),
    IgnoreRule(r"DEFERRED INPUT", "Deferred GST"),
    IgnoreRule(r"GST.*OUTPUT|GST PAYABLE", "GST Output Liability"),
    IgnoreRule(r"TCS \((C|S|I)GST\)", "TCS Collected"),
    IgnoreRule(r"TDS.*(Professional|Rent|Contract|Commission|Interest)", "TDS Deducted"),
    IgnoreRule(r"^Cash$", "Cash Account"),
    IgnoreRule(
        r"CENTRAL BANK|HDFC BANK|AXIS BANK|ICICI BANK|STATE BANK|BANK OF BARODA"
        r"|KOTAK.*BANK|YES BANK",
        "Bank Account",
    ),
    IgnoreRule(r"DIRECTOR LOAN|UNSECURED LOAN|\bLOAN\b", "Loan Account"),
    IgnoreRule(r"SHARE CAPITAL|CAPITAL ACCOUNT", "Capital Account"),
    IgnoreRule(r"RESERVE.*SURPLUS", "Reserve Account"),
    IgnoreRule(
        r"PLANT.*MACHINERY|FURNITURE.*FIXTURE|COMPUTER.*EQUIPMENT|OFFICE EQUIPMENT",
        "Fixed Asset",
    ),
    IgnoreRule(r"ACCUMULATED DEPRECIATION", "Depreciation Account"),
    IgnoreRule(r"SUSPENSE", "Suspense Account"),
    IgnoreRule(r"CLEARING", "Clearing Account"),
    IgnoreRule(r"OPENING BALANCE", "Opening Balance Entry"),
    IgnoreRule(r"CLOSING BALANCE", "Closing Balance Entry"),
    IgnoreRule(r"STOCK.*TRADE", "Stock Account"),
    IgnoreRule(r"INVENTORY", "Inventory Account"),
)


@dataclass
class RuleBook:
    """
    The two rule sets used by one classification run.

    ``errors`` gathers compile problems from both sets.
    """

    rules: RuleSet
    ignore_rules: IgnoreRuleSet
    errors: list[RuleError] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        rules: Iterable[Rule],
        ignore_rules: Iterable[IgnoreRule] = (),
    ) -> "RuleBook":
        rule_set = RuleSet(rules)
        ignore_set = IgnoreRuleSet(ignore_rules)
        return cls(rule_set, ignore_set, [*rule_set.errors, *ignore_set.errors])

    @classmethod
    def defaults(cls, extra_rules: Sequence[Rule] = ()) -> "RuleBook":
        return cls.build([*extra_rules, *DEFAULT_SYSTEM_RULES], DEFAULT_IGNORE_RULES)
