# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Offset-entry resolution for MIS FinSight.

Marketplace cash sales are sometimes booked through a B2B ledger: an
adjustment entry such as "AMAZON SALE (CASH SALE) DELHI" is posted together
with a counter-entry of the same amount on the opposite side, usually
against a party account that would otherwise look like a normal expense or
income. Both rows must be kept out of the P&L.

Algorithm
---------
For every self-adjustment entry (``detectors.is_self_adjustment``), in input
order, pick the first other entry that:

- has the same date,
- sits on the opposite debit/credit side,
- has the same absolute amount within ``tolerance`` (default 0.01),
- is not itself a self-adjustment,
- does not match an auto-ignore rule,
- has not already been used as a counter-entry,
- is not locked by a manual classification.

Both entries are marked ``auto-ignore`` with distinct reasons naming their
partner. An entry is never paired with itself and a source gets at most one
counter-entry. When several candidates qualify, the first in input order
wins; this is logged at debug level.

The resolver runs before the rule-based classifier so that a counter-entry
is not first claimed by an ordinary rule.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from .categories import CategoryId
from .detectors import DEFAULT_SELF_ADJUSTMENT_PATTERNS, is_self_adjustment
from .models import (
    ClassificationOrigin,
    ClassificationResult,
    ConfidenceTier,
    EntryStatus,
    LedgerEntry,
)
from .rules import IgnoreRuleSet

logger = logging.getLogger(__name__)

OFFSET_SUBCATEGORY = "Self-adjustment offsets"
OFFSET_SOURCE_REASON = "Offset source"
OFFSET_COUNTER_REASON = "Offset counter-entry"
DEFAULT_TOLERANCE = 0.01


@dataclass(frozen=True)
class OffsetPair:
    """A self-adjustment entry and its counter-entry, by input position."""

    source_index: int
    counter_index: int
    amount: float
    date: date


@dataclass(frozen=True)
class OffsetResolution:
    entries: tuple[LedgerEntry, ...]
    pairs: tuple[OffsetPair, ...]
    unmatched_sources: tuple[int, ...]

    @property
    def resolved_indices(self) -> frozenset[int]:
        return frozenset(
            i for p in self.pairs for i in (p.source_index, p.counter_index)
        )


def _label(entry: LedgerEntry, index: int) -> str:
    ref = entry.voucher_id or f"row {index + 1}"
    return f"{entry.account_name} ({ref})"


def _offset_result(reason: str) -> ClassificationResult:
    return ClassificationResult(
        category=CategoryId.IGNORE,
        subcategory=OFFSET_SUBCATEGORY,
        confidence_tier=ConfidenceTier.HIGH,
        origin=ClassificationOrigin.AUTO_IGNORE,
        reason=reason,
    )


def resolve_offsets(
    entries: Sequence[LedgerEntry],
    ignore_rules: Optional[IgnoreRuleSet] = None,
    *,
    patterns: Sequence[str] = DEFAULT_SELF_ADJUSTMENT_PATTERNS,
    tolerance: float = DEFAULT_TOLERANCE,
) -> OffsetResolution:
    """
    Pair self-adjustment entries with their counter-entries.

    Parameters
    ----------
    entries:
        Ledger entries in input order.
    ignore_rules:
        Auto-ignore rules; entries matching one are never used as
        counter-entries.
    patterns:
        Regular expressions identifying self-adjustment accounts.
    tolerance:
        Maximum absolute difference between the two amounts.

    Returns
    -------
    OffsetResolution
        New entries (paired ones classified as auto-ignore, the others
        untouched), the pairs, and the positions of self-adjustment entries
        for which no counter-entry was found.
    """
    result = list(entries)
    adjustments = [
        i
        for i, e in enumerate(entries)
        if not e.is_locked and is_self_adjustment(e.account_name, patterns)
    ]
    adjustment_set = set(adjustments)

    def _eligible(j: int, entry: LedgerEntry) -> bool:
        if j in adjustment_set or entry.is_locked or entry.side is None:
            return False
        if ignore_rules is not None and ignore_rules.match(entry.account_name):
            return False
        return True

    used: set[int] = set()
    pairs: list[OffsetPair] = []
    unmatched: list[int] = []

    for i in adjustments:
        source = entries[i]
        if source.side is None:
            unmatched.append(i)
            continue
        amount = abs(source.net)
        candidates = [
            j
            for j, other in enumerate(entries)
            if j != i
            and j not in used
            and other.date == source.date
            and other.side is not None
            and other.side != source.side
            and abs(abs(other.net) - amount) <= tolerance + 1e-9
            and _eligible(j, other)
        ]
        if not candidates:
            unmatched.append(i)
            continue
        if len(candidates) > 1:
            logger.debug(
                "Offset source %s has %d candidate counter-entries; using the first.",
                _label(source, i),
                len(candidates),
            )

        j = candidates[0]
        used.add(j)
        counter = entries[j]
        result[i] = replace(
            source,
            classification=_offset_result(
                f"{OFFSET_SOURCE_REASON}: offset by {_label(counter, j)}"
            ),
            status=EntryStatus.IGNORED,
        )
        result[j] = replace(
            counter,
            classification=_offset_result(
                f"{OFFSET_COUNTER_REASON}: offsets {_label(source, i)}"
            ),
            status=EntryStatus.IGNORED,
        )
        pairs.append(OffsetPair(i, j, round(amount, 2), source.date))

    return OffsetResolution(tuple(result), tuple(pairs), tuple(unmatched))
