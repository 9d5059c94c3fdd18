from datetime import date

from mis_finsight.categories import CategoryId
from mis_finsight.classifier import classify_manually
from mis_finsight.models import ClassificationOrigin, EntryStatus, LedgerEntry
from mis_finsight.offsets import (
    OFFSET_COUNTER_REASON,
    OFFSET_SOURCE_REASON,
    resolve_offsets,
)
from mis_finsight.rules import IgnoreRule, IgnoreRuleSet

D = date(2024, 5, 2)
ADJ = "AMAZON SALE (CASH SALE) DELHI"


def entry(name, debit=0.0, credit=0.0, voucher="J1", day=D):
    return LedgerEntry(
        date=day, voucher_id=voucher, account_name=name, debit=debit, credit=credit
    )


def test_pairs_source_with_opposite_side_counter_entry():
    entries = [
        entry(ADJ, debit=1180),
        entry("SHIPROCKET PRIVATE LIMITED", credit=1180),
    ]

    resolution = resolve_offsets(entries)

    assert len(resolution.pairs) == 1
    pair = resolution.pairs[0]
    assert (pair.source_index, pair.counter_index, pair.amount) == (0, 1, 1180)
    source, counter = resolution.entries
    assert source.status is EntryStatus.IGNORED
    assert source.classification.origin is ClassificationOrigin.AUTO_IGNORE
    assert source.classification.reason.startswith(OFFSET_SOURCE_REASON)
    assert counter.classification.reason.startswith(OFFSET_COUNTER_REASON)
    assert "SHIPROCKET PRIVATE LIMITED" in source.classification.reason
    assert source.classification.reason != counter.classification.reason
    assert resolution.resolved_indices == frozenset({0, 1})


def test_never_pairs_entry_with_itself_or_same_side():
    entries = [entry(ADJ, debit=500), entry("Some Vendor", debit=500)]

    resolution = resolve_offsets(entries)

    assert resolution.pairs == ()
    assert resolution.unmatched_sources == (0,)
    assert resolution.entries == tuple(entries)


def test_requires_same_date():
    entries = [
        entry(ADJ, debit=500),
        entry("Some Vendor", credit=500, day=date(2024, 5, 3)),
    ]

    assert resolve_offsets(entries).pairs == ()


def test_amount_tolerance():
    entries = [entry(ADJ, debit=100.00), entry("Some Vendor", credit=100.01)]
    assert len(resolve_offsets(entries).pairs) == 1

    entries = [entry(ADJ, debit=100.00), entry("Some Vendor", credit=100.05)]
    assert resolve_offsets(entries).pairs == ()
    assert len(resolve_offsets(entries, tolerance=0.1).pairs) == 1


def test_each_counter_entry_is_used_once():
    """Two sources compete for one counter-entry: only the first gets it."""
    entries = [
        entry(ADJ, debit=300, voucher="J1"),
        entry(ADJ, debit=300, voucher="J2"),
        entry("Some Vendor", credit=300, voucher="J3"),
    ]

    resolution = resolve_offsets(entries)

    assert [(p.source_index, p.counter_index) for p in resolution.pairs] == [(0, 2)]
    assert resolution.unmatched_sources == (1,)
    assert resolution.entries[1].classification is None


def test_first_candidate_in_input_order_wins():
    entries = [
        entry("Vendor A", credit=250, voucher="J1"),
        entry(ADJ, debit=250, voucher="J2"),
        entry("Vendor B", credit=250, voucher="J3"),
    ]

    resolution = resolve_offsets(entries)

    assert resolution.pairs[0].counter_index == 0
    assert resolution.entries[2].classification is None


def test_ignore_rule_matches_are_not_counter_entries():
    ignore = IgnoreRuleSet([IgnoreRule("HDFC BANK", "Bank Account")])
    entries = [
        entry(ADJ, debit=750),
        entry("HDFC BANK CA", credit=750),
        entry("Retail Customer", credit=750),
    ]

    resolution = resolve_offsets(entries, ignore)

    assert resolution.pairs[0].counter_index == 2
    assert resolution.entries[1].classification is None


def test_locked_entries_are_skipped():
    locked = classify_manually(
        entry("Retail Customer", credit=750), CategoryId.REVENUE, "Offline Sales"
    )
    entries = [entry(ADJ, debit=750), locked]

    resolution = resolve_offsets(entries)

    assert resolution.pairs == ()
    assert resolution.entries[1] == locked


def test_custom_patterns():
    entries = [entry("CASH ADJUSTMENT", debit=40), entry("Petty Cash", credit=40)]

    assert resolve_offsets(entries).pairs == ()
    assert len(resolve_offsets(entries, patterns=[r"CASH ADJ"]).pairs) == 1
