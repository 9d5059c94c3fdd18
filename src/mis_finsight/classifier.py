# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Ledger classification for MIS FinSight.

This module assigns an MIS category and subcategory to every ledger entry.

Single account
--------------
``classify(account_name, rules, ignore_rules)`` is a pure function:

1) blank name                        -> unclassified (needs review),
2) first matching classification rule -> user-rule (high) / system-rule
   (medium) / ai (medium, for ai-learned rules),
3) first matching auto-ignore rule    -> auto-ignore with its reason,
4) otherwise                          -> unclassified (needs review).

Classification run
------------------
``classify_entries`` classifies a whole ledger:

1) entries locked by a manual action (status ``classified``) are kept as is,
2) the offset-entry resolver pairs self-adjustment entries,
3) every remaining entry goes through ``classify``,
4) optionally, the still-unclassified account names are sent to the AI
   oracle in a single batch.

The run is a pure transformation: entries are never mutated, and running it
again on its own output gives the same result. Rule usage counters are
returned as ``ClassificationRun.rule_hits`` so that the caller can persist
them.

Manual actions
--------------
``classify_manually``, ``accept_suggestion`` and ``reset_classification``
are the explicit caller actions that lock or unlock an entry. ``learn_rules``
turns manual classifications into exact-match user rules.
"""

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Union

from .categories import CategoryId, CategoryKind, category_kind
from .detectors import DEFAULT_SELF_ADJUSTMENT_PATTERNS, normalize_account_name
from .models import (
    ClassificationOrigin,
    ClassificationResult,
    ConfidenceTier,
    Diagnostic,
    DiagnosticKind,
    EntryStatus,
    LedgerEntry,
)
from .offsets import DEFAULT_TOLERANCE, OffsetPair, resolve_offsets
from .oracle import (
    AUTO_ACCEPT_THRESHOLD,
    CategoryChoices,
    ClassificationOracle,
    OracleRequest,
    resolve_with_oracle,
)
from .rules import IgnoreRule, IgnoreRuleSet, MatchKind, Rule, RuleBook, RuleOrigin, RuleSet

logger = logging.getLogger(__name__)

_ORIGIN_MAP = {
    RuleOrigin.USER: (ClassificationOrigin.USER_RULE, ConfidenceTier.HIGH),
    RuleOrigin.SYSTEM: (ClassificationOrigin.SYSTEM_RULE, ConfidenceTier.MEDIUM),
    RuleOrigin.AI_LEARNED: (ClassificationOrigin.AI, ConfidenceTier.MEDIUM),
}


def _as_rule_set(rules: Union[RuleSet, RuleBook, Iterable[Rule]]) -> RuleSet:
    if isinstance(rules, RuleBook):
        return rules.rules
    if isinstance(rules, RuleSet):
        return rules
    return RuleSet(rules)


def _as_ignore_set(
    ignore_rules: Union[IgnoreRuleSet, Iterable[IgnoreRule], None],
) -> Optional[IgnoreRuleSet]:
    if ignore_rules is None or isinstance(ignore_rules, IgnoreRuleSet):
        return ignore_rules
    return IgnoreRuleSet(ignore_rules)


def _match_rule(
    account_name: str, rule_set: RuleSet, ignore_set: Optional[IgnoreRuleSet]
) -> tuple[ClassificationResult, Optional[Rule]]:
    if not account_name or not account_name.strip():
        return ClassificationResult.unclassified(reason="Blank account name"), None

    rule = rule_set.match(account_name)
    if rule is not None:
        origin, tier = _ORIGIN_MAP[rule.origin]
        result = ClassificationResult(
            category=rule.category,
            subcategory=rule.subcategory,
            confidence_tier=tier,
            origin=origin,
            matched_pattern=rule.pattern,
        )
        return result, rule

    if ignore_set is not None:
        ignore = ignore_set.match(account_name)
        if ignore is not None:
            return ClassificationResult.auto_ignore(ignore.reason), None

    return ClassificationResult.unclassified(reason="No matching rule"), None


def classify(
    account_name: str,
    rules: Union[RuleSet, RuleBook, Iterable[Rule]],
    ignore_rules: Union[IgnoreRuleSet, Iterable[IgnoreRule], None] = None,
) -> ClassificationResult:
    """
    Classify a single account name.

    Parameters
    ----------
    account_name:
        Ledger account or party name.
    rules:
        Classification rules, as a RuleSet / RuleBook or a plain iterable
        (compiled on the fly).
    ignore_rules:
        Auto-ignore rules. When ``rules`` is a RuleBook and this is None,
        the RuleBook's ignore rules are used.

    Returns
    -------
    ClassificationResult
    """
    if ignore_rules is None and isinstance(rules, RuleBook):
        ignore_rules = rules.ignore_rules
    result, _ = _match_rule(account_name, _as_rule_set(rules), _as_ignore_set(ignore_rules))
    return result


def _status_for(result: ClassificationResult) -> EntryStatus:
    if result.category is None:
        return EntryStatus.UNCLASSIFIED
    if category_kind(result.category) is CategoryKind.IGNORE:
        return EntryStatus.IGNORED
    return EntryStatus.SUGGESTED


@dataclass(frozen=True)
class ClassificationRun:
    """Output of ``classify_entries``."""

    entries: tuple[LedgerEntry, ...]
    diagnostics: tuple[Diagnostic, ...] = ()
    rule_hits: dict[int, int] = field(default_factory=dict)
    offset_pairs: tuple[OffsetPair, ...] = ()

    @property
    def unclassified_count(self) -> int:
        return sum(1 for e in self.entries if e.category is None)

    @property
    def needs_review_count(self) -> int:
        return sum(1 for e in self.entries if e.needs_review)

    @property
    def auto_ignored_count(self) -> int:
        return sum(
            1
            for e in self.entries
            if e.classification is not None
            and e.classification.origin is ClassificationOrigin.AUTO_IGNORE
        )

    def review_queue(self) -> list[LedgerEntry]:
        return [e for e in self.entries if e.needs_review]


def review_diagnostics(entries: Iterable[LedgerEntry]) -> list[Diagnostic]:
    """One needs-review diagnostic per account name still awaiting review."""
    review = Counter(e.account_name for e in entries if e.needs_review)
    diagnostics = []
    for name, count in review.items():
        label = name.strip() or "<blank account name>"
        diagnostics.append(
            Diagnostic(
                DiagnosticKind.NEEDS_REVIEW,
                f"Account {label!r} needs review ({count} entr{'y' if count == 1 else 'ies'}).",
                "classifier",
            )
        )
    return diagnostics


def classify_entries(
    entries: Sequence[LedgerEntry],
    rule_book: RuleBook,
    *,
    oracle: Optional[ClassificationOracle] = None,
    categories: Optional[CategoryChoices] = None,
    auto_accept_threshold: float = AUTO_ACCEPT_THRESHOLD,
    self_adjustment_patterns: Sequence[str] = DEFAULT_SELF_ADJUSTMENT_PATTERNS,
    offset_tolerance: float = DEFAULT_TOLERANCE,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> ClassificationRun:
    """
    Classify a ledger.

    Parameters
    ----------
    entries:
        Ledger entries, in input order. Entries with status ``classified``
        are left untouched.
    rule_book:
        Classification and auto-ignore rules.
    oracle:
        Optional AI oracle for accounts no rule matches.
    categories:
        Category list offered to the oracle (defaults to every head).
    auto_accept_threshold:
        Minimum AI confidence for a suggestion to be applied.
    self_adjustment_patterns / offset_tolerance:
        Offset-entry resolver settings.
    should_cancel:
        Callable polled before and after the oracle call; returning True
        abandons the AI step (accounts stay in the review queue). A request
        already in flight is not interrupted, only bounded by the oracle
        timeout.

    Returns
    -------
    ClassificationRun
    """
    diagnostics: list[Diagnostic] = [
        Diagnostic(DiagnosticKind.RULE_COMPILE, f"{err.pattern!r}: {err.message}", "rules")
        for err in rule_book.errors
    ]

    offsets = resolve_offsets(
        entries,
        rule_book.ignore_rules,
        patterns=self_adjustment_patterns,
        tolerance=offset_tolerance,
    )
    resolved = offsets.resolved_indices
    out = list(offsets.entries)
    hits: Counter = Counter()

    for i, entry in enumerate(out):
        if entry.is_locked or i in resolved:
            continue
        result, rule = _match_rule(
            entry.account_name, rule_book.rules, rule_book.ignore_rules
        )
        if rule is not None and rule.rule_id is not None:
            hits[rule.rule_id] += 1
        out[i] = replace(entry, classification=result, status=_status_for(result))

    pending = [
        i
        for i, e in enumerate(out)
        if not e.is_locked and e.category is None and e.account_name.strip()
    ]

    if oracle is not None and pending:
        batch: dict[str, OracleRequest] = {}
        for i in pending:
            e = out[i]
            batch.setdefault(
                e.account_name,
                OracleRequest(name=e.account_name, amount=round(e.net, 2), context=e.notes),
            )
        results, oracle_diags = resolve_with_oracle(
            list(batch.values()),
            oracle,
            categories,
            threshold=auto_accept_threshold,
            should_cancel=should_cancel,
        )
        diagnostics.extend(oracle_diags)
        for i in pending:
            result = results.get(out[i].account_name)
            if result is not None:
                out[i] = replace(out[i], classification=result, status=_status_for(result))

    diagnostics.extend(review_diagnostics(out))

    return ClassificationRun(
        entries=tuple(out),
        diagnostics=tuple(diagnostics),
        rule_hits=dict(hits),
        offset_pairs=offsets.pairs,
    )


# ---------------------------------------------------------------------------
# Explicit caller actions
# ---------------------------------------------------------------------------


def classify_manually(
    entry: LedgerEntry, category: CategoryId, subcategory: str, note: str = ""
) -> LedgerEntry:
    """
    Return a copy of ``entry`` classified by hand and locked.

    Raises
    ------
    ValueError
        If ``category`` is not a CategoryId or ``subcategory`` is blank.
    """
    if not isinstance(category, CategoryId):
        raise ValueError(f"Unknown category: {category!r}")
    if not subcategory or not subcategory.strip():
        raise ValueError("A subcategory is required for manual classification.")
    result = ClassificationResult(
        category=category,
        subcategory=subcategory.strip(),
        confidence_tier=ConfidenceTier.HIGH,
        origin=ClassificationOrigin.MANUAL,
        reason=note,
    )
    return replace(entry, classification=result, status=EntryStatus.CLASSIFIED)


def accept_suggestion(entry: LedgerEntry) -> LedgerEntry:
    """
    Lock the current classification of ``entry``.

    A low-confidence AI suggestion attached to an unclassified entry is
    promoted to an AI classification.

    Raises
    ------
    ValueError
        If the entry has neither a classification nor a suggestion.
    """
    current = entry.classification
    if current is None:
        raise ValueError(f"Entry {entry.voucher_id!r} has nothing to accept.")
    if current.category is not None:
        accepted = replace(current, needs_review=False)
    elif current.suggestion is not None:
        category, subcategory = current.suggestion
        accepted = ClassificationResult(
            category=category,
            subcategory=subcategory,
            confidence_tier=ConfidenceTier.MEDIUM,
            origin=ClassificationOrigin.AI,
            reason=current.reason,
            ai_confidence=current.ai_confidence,
        )
    else:
        raise ValueError(f"Entry {entry.voucher_id!r} has nothing to accept.")
    return replace(entry, classification=accepted, status=EntryStatus.CLASSIFIED)


def reset_classification(entry: LedgerEntry) -> LedgerEntry:
    """Unlock an entry so that the next run classifies it again."""
    return replace(entry, classification=None, status=EntryStatus.UNCLASSIFIED)


def learn_rules(
    entries: Iterable[LedgerEntry], existing: Iterable[Rule] = ()
) -> list[Rule]:
    """
    Derive exact-match user rules from manually classified entries.

    One rule per distinct normalized account name; names already covered by
    an exact rule in ``existing`` are skipped.

    Library-only: the CLI reads ledgers without manual classifications, so
    it has nothing to learn from. Callers that apply manual actions persist
    the returned rules themselves with ``db.add_rule``.
    """
    known = {
        normalize_account_name(r.pattern)
        for r in existing
        if r.match_kind is MatchKind.EXACT
    }
    learned: list[Rule] = []
    now = datetime.now(timezone.utc)
    for entry in entries:
        result = entry.classification
        if (
            entry.status is not EntryStatus.CLASSIFIED
            or result is None
            or result.category is None
            or result.origin is not ClassificationOrigin.MANUAL
        ):
            continue
        key = normalize_account_name(entry.account_name)
        if not key or key in known:
            continue
        known.add(key)
        learned.append(
            Rule(
                pattern=entry.account_name.strip(),
                category=result.category,
                subcategory=result.subcategory,
                origin=RuleOrigin.USER,
                match_kind=MatchKind.EXACT,
                priority=10,
                confidence=100.0,
                created_at=now,
            )
        )
    return learned
