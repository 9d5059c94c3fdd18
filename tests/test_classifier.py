from datetime import date

import pytest
import requests

from mis_finsight.categories import CategoryId
from mis_finsight.classifier import (
    accept_suggestion,
    classify,
    classify_entries,
    classify_manually,
    learn_rules,
    reset_classification,
)
from mis_finsight.models import (
    ClassificationOrigin,
    ConfidenceTier,
    DiagnosticKind,
    EntryStatus,
    LedgerEntry,
)
from mis_finsight.oracle import OracleError, OracleSuggestion
from mis_finsight.rules import IgnoreRule, MatchKind, Rule, RuleBook, RuleOrigin

D = date(2024, 4, 10)


def entry(name, debit=0.0, credit=0.0, voucher="V1", day=D):
    return LedgerEntry(
        date=day, voucher_id=voucher, account_name=name, debit=debit, credit=credit
    )


class StubOracle:
    """Oracle returning canned suggestions and recording its calls."""

    def __init__(self, suggestions=None, error=None):
        self.suggestions = suggestions or []
        self.error = error
        self.calls = []

    def classify_batch(self, batch, categories):
        self.calls.append([r.name for r in batch])
        if self.error is not None:
            raise self.error
        return self.suggestions


# ---------------------------------------------------------------------------
# Single account
# ---------------------------------------------------------------------------


def test_classify_user_rule_wins_over_system_rule():
    user = Rule("SHIPROCKET", CategoryId.SALES_MARKETING, "Agency Fees",
                origin=RuleOrigin.USER, priority=99)
    book = RuleBook.defaults(extra_rules=[user])

    result = classify("SHIPROCKET PRIVATE LIMITED", book)

    assert result.origin is ClassificationOrigin.USER_RULE
    assert result.confidence_tier is ConfidenceTier.HIGH
    assert (result.category, result.subcategory) == (
        CategoryId.SALES_MARKETING,
        "Agency Fees",
    )


def test_classify_system_rule_is_medium_confidence():
    result = classify("AMAZON LOGISTICS FEE", RuleBook.defaults())

    assert result.origin is ClassificationOrigin.SYSTEM_RULE
    assert result.confidence_tier is ConfidenceTier.MEDIUM
    assert result.category is CategoryId.CHANNEL_FULFILLMENT
    assert result.subcategory == "Amazon Fees"
    assert not result.needs_review


def test_classify_ai_learned_rule_reports_ai_origin():
    learned = Rule("WIDGET", CategoryId.COGM, "Job Work", origin=RuleOrigin.AI_LEARNED)
    result = classify("WIDGET ASSEMBLY", [learned])
    assert result.origin is ClassificationOrigin.AI
    assert result.confidence_tier is ConfidenceTier.MEDIUM


def test_classify_falls_back_to_ignore_rules():
    result = classify("HDFC BANK CA 1234", [], [IgnoreRule("HDFC BANK", "Bank Account")])

    assert result.origin is ClassificationOrigin.AUTO_IGNORE
    assert result.category is CategoryId.IGNORE
    assert result.reason == "Bank Account"


def test_classify_unmatched_and_blank_names_need_review():
    for name in ("Mystery Vendor", "", "   "):
        result = classify(name, RuleBook.defaults())
        assert result.origin is ClassificationOrigin.UNCLASSIFIED
        assert result.category is None
        assert result.needs_review


def test_classify_is_idempotent():
    book = RuleBook.defaults()
    assert classify("GOOGLE INDIA PVT LTD", book) == classify("GOOGLE INDIA PVT LTD", book)


# ---------------------------------------------------------------------------
# Classification run
# ---------------------------------------------------------------------------


def test_classify_entries_statuses_and_counts():
    entries = [
        entry("AMAZON LOGISTICS FEE", debit=50),
        entry("HDFC BANK", credit=50),
        entry("Mystery Vendor", debit=10),
    ]

    run = classify_entries(entries, RuleBook.defaults())

    statuses = [e.status for e in run.entries]
    assert statuses == [
        EntryStatus.SUGGESTED,
        EntryStatus.IGNORED,
        EntryStatus.UNCLASSIFIED,
    ]
    assert run.unclassified_count == 1
    assert run.needs_review_count == 1
    assert run.auto_ignored_count == 1
    assert [e.account_name for e in run.review_queue()] == ["Mystery Vendor"]
    assert [d.kind for d in run.diagnostics] == [DiagnosticKind.NEEDS_REVIEW]


def test_classify_entries_does_not_mutate_input_and_is_repeatable():
    entries = [entry("WAGES", debit=100), entry("Mystery", debit=5)]

    first = classify_entries(entries, RuleBook.defaults())
    second = classify_entries(first.entries, RuleBook.defaults())

    assert all(e.classification is None for e in entries)
    assert first.entries == second.entries


def test_classify_entries_keeps_locked_entries():
    locked = classify_manually(entry("WAGES", debit=100), CategoryId.OPERATING_EXPENSES,
                               "Salaries (Admin, Mgmt)")

    run = classify_entries([locked], RuleBook.defaults())

    assert run.entries[0] == locked


def test_classify_entries_counts_rule_hits_by_id():
    rule = Rule("WAGES", CategoryId.COGM, "Manufacturing Wages", rule_id=7)
    book = RuleBook.build([rule])

    run = classify_entries(
        [entry("WAGES", debit=1), entry("FACTORY WAGES", debit=2), entry("X", debit=3)],
        book,
    )

    assert run.rule_hits == {7: 2}


def test_classify_entries_reports_rule_compile_errors():
    book = RuleBook.build([Rule("(bad", CategoryId.COGM, "Job Work")])

    run = classify_entries([entry("WAGES", debit=1)], book)

    assert DiagnosticKind.RULE_COMPILE in [d.kind for d in run.diagnostics]


def test_classify_entries_resolves_offsets_before_rules():
    """The counter-entry of a self-adjustment is not claimed by a rule."""
    entries = [
        entry("AMAZON SALE (CASH SALE) DELHI", debit=1180, voucher="J1"),
        entry("SHIPROCKET PRIVATE LIMITED", credit=1180, voucher="J1"),
    ]

    run = classify_entries(entries, RuleBook.defaults())

    assert all(e.status is EntryStatus.IGNORED for e in run.entries)
    assert all(
        e.classification.origin is ClassificationOrigin.AUTO_IGNORE for e in run.entries
    )
    assert len(run.offset_pairs) == 1


def test_classify_entries_sends_one_batch_to_oracle():
    oracle = StubOracle(
        [
            OracleSuggestion("Mystery Vendor", "E. COGM", "Job Work", confidence=92),
            OracleSuggestion("Odd Account", "G. Sales & Marketing", "Google Ads",
                             confidence=40),
        ]
    )
    entries = [
        entry("Mystery Vendor", debit=10),
        entry("Mystery Vendor", debit=20, voucher="V2"),
        entry("Odd Account", debit=5),
        entry("WAGES", debit=100),
    ]

    run = classify_entries(entries, RuleBook.defaults(), oracle=oracle)

    # one call, deduplicated names, rule-matched names excluded
    assert oracle.calls == [["Mystery Vendor", "Odd Account"]]
    first, second, odd, _ = run.entries
    assert first.classification.origin is ClassificationOrigin.AI
    assert first.status is EntryStatus.SUGGESTED
    assert second.category is CategoryId.COGM
    assert odd.category is None
    assert odd.needs_review
    assert odd.classification.suggestion == (CategoryId.SALES_MARKETING, "Google Ads")


def test_classify_entries_survives_oracle_failure():
    oracle = StubOracle(error=OracleError("connection refused"))
    entries = [entry("Mystery Vendor", debit=10), entry("WAGES", debit=100)]

    run = classify_entries(entries, RuleBook.defaults(), oracle=oracle)

    assert run.entries[0].needs_review
    assert "AI classification failed" in run.entries[0].classification.reason
    assert run.entries[1].category is CategoryId.COGM
    kinds = [d.kind for d in run.diagnostics]
    assert kinds.count(DiagnosticKind.ORACLE_FAILURE) == 1


@pytest.mark.parametrize(
    "error", [requests.exceptions.ReadTimeout("read timed out"), KeyError("response")]
)
def test_classify_entries_survives_unexpected_oracle_errors(error):
    oracle = StubOracle(error=error)
    entries = [entry("Mystery Vendor", debit=10), entry("WAGES", debit=100)]

    run = classify_entries(entries, RuleBook.defaults(), oracle=oracle)

    assert run.entries[0].needs_review
    assert run.entries[0].category is None
    assert run.entries[1].category is CategoryId.COGM
    assert [d.kind for d in run.diagnostics].count(DiagnosticKind.ORACLE_FAILURE) == 1


def test_classify_entries_cancelled_oracle_call():
    oracle = StubOracle([OracleSuggestion("Mystery", "E. COGM", "Job Work", 99)])

    run = classify_entries(
        [entry("Mystery", debit=1)],
        RuleBook.defaults(),
        oracle=oracle,
        should_cancel=lambda: True,
    )

    assert oracle.calls == []
    assert run.entries[0].needs_review


# ---------------------------------------------------------------------------
# Manual actions
# ---------------------------------------------------------------------------


def test_classify_manually_locks_entry():
    result = classify_manually(entry("Mystery", debit=5), CategoryId.PLATFORM,
                               "Wati Subscription", note="checked invoice")

    assert result.status is EntryStatus.CLASSIFIED
    assert result.is_locked
    assert result.classification.origin is ClassificationOrigin.MANUAL
    assert result.classification.confidence_tier is ConfidenceTier.HIGH


def test_classify_manually_validates_input():
    with pytest.raises(ValueError):
        classify_manually(entry("Mystery"), "platform", "Wati Subscription")
    with pytest.raises(ValueError):
        classify_manually(entry("Mystery"), CategoryId.PLATFORM, "  ")


def test_accept_suggestion_promotes_low_confidence_ai_suggestion():
    oracle = StubOracle([OracleSuggestion("Odd", "H. Platform Costs", "Wati Subscription", 50)])
    run = classify_entries([entry("Odd", debit=5)], RuleBook.defaults(), oracle=oracle)

    accepted = accept_suggestion(run.entries[0])

    assert accepted.status is EntryStatus.CLASSIFIED
    assert accepted.category is CategoryId.PLATFORM
    assert accepted.classification.origin is ClassificationOrigin.AI
    assert not accepted.needs_review


def test_accept_suggestion_without_anything_to_accept():
    run = classify_entries([entry("Mystery", debit=5)], RuleBook.defaults())
    with pytest.raises(ValueError):
        accept_suggestion(run.entries[0])


def test_reset_classification_unlocks():
    locked = classify_manually(entry("Mystery"), CategoryId.PLATFORM, "Wati Subscription")
    reset = reset_classification(locked)
    assert reset.status is EntryStatus.UNCLASSIFIED
    assert reset.classification is None


def test_learn_rules_from_manual_classifications():
    manual = classify_manually(entry("Mystery Vendor"), CategoryId.PLATFORM,
                               "Wati Subscription")
    duplicate = classify_manually(entry("MYSTERY  VENDOR", voucher="V2"),
                                  CategoryId.PLATFORM, "Wati Subscription")
    known = classify_manually(entry("Known"), CategoryId.COGM, "Job Work")
    existing = [Rule("known", CategoryId.COGM, "Job Work", origin=RuleOrigin.USER,
                     match_kind=MatchKind.EXACT)]

    learned = learn_rules([manual, duplicate, known, entry("Unlocked")], existing)

    assert len(learned) == 1
    rule = learned[0]
    assert rule.pattern == "Mystery Vendor"
    assert rule.origin is RuleOrigin.USER
    assert rule.match_kind is MatchKind.EXACT
    assert classify("mystery vendor", learned).category is CategoryId.PLATFORM
