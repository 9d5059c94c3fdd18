# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Name-based detectors for MIS FinSight.

All functions in this module are total: they never raise and have no side
effects. They inspect a party or account name (as exported by the
accounting software) and return:

- the sales channel of a sales-register party (``detect_channel``),
- whether a sales-register row is an internal stock transfer
  (``detect_transfer``) and, if so, its destination region
  (``detect_destination_region``),
- whether a ledger account is a self-adjusting marketplace entry
  (``is_self_adjustment``), used by the offset-entry resolver,
- a normalized form of an account name (``normalize_account_name``).

Keyword tables are ordered: the first matching entry wins. Marketplace
keywords come before payment-gateway / logistics keywords so that a party
such as "BLINKIT VIA SHIPROCKET" is attributed to the marketplace.
"""

import re
from collections.abc import Sequence
from typing import Optional

from .categories import Channel, Region

# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

CHANNEL_KEYWORDS: tuple[tuple[Channel, tuple[str, ...]], ...] = (
    (Channel.BLINKIT, ("blinkit", "grofers", "blink commerce")),
    (Channel.AMAZON, ("amazon",)),
    (Channel.WEBSITE, ("shiprocket", "ship rocket")),
)

DEFAULT_CHANNEL = Channel.OFFLINE

REGION_KEYWORDS: tuple[tuple[Region, tuple[str, ...]], ...] = (
    (Region.MAHARASHTRA, ("maharashtra", "mumbai", "pune")),
    (Region.TELANGANA, ("telangana", "hyderabad")),
    (Region.KARNATAKA, ("karnataka", "bangalore", "bengaluru")),
    (Region.HARYANA, ("haryana", "gurugram", "gurgaon")),
    (Region.UP, ("uttar pradesh", " up ", "noida", "lucknow")),
)

DEFAULT_SELF_ADJUSTMENT_PATTERNS: tuple[str, ...] = (
    r"AMAZON.*SALE.*CASH.*SALE",
    r"AMAZON.*CASH.*SALE",
)


def _lower(name: Optional[str]) -> str:
    return (name or "").lower()


# ---------------------------------------------------------------------------
# Channel / transfer detection
# ---------------------------------------------------------------------------


def detect_channel(name: Optional[str]) -> Channel:
    """
    Return the sales channel for a sales-register party name.

    Matching is a case-insensitive substring test against
    ``CHANNEL_KEYWORDS``, in order. Names that match nothing (including
    blank names) fall back to ``Channel.OFFLINE``.
    """
    text = _lower(name)
    for channel, keywords in CHANNEL_KEYWORDS:
        if any(k in text for k in keywords):
            return channel
    return DEFAULT_CHANNEL


def detect_transfer(name: Optional[str], self_keyword: str) -> bool:
    """
    Return True when the party name designates the business itself.

    A sale to a party whose name carries the self-entity keyword (for
    example "HEATRONICS MEDICAL DEVICES - PUNE") is an inter-state stock
    transfer, not revenue. An empty keyword never matches.
    """
    keyword = _lower(self_keyword).strip()
    if not keyword:
        return False
    return keyword in _lower(name)


def detect_destination_region(
    name: Optional[str], self_keyword: str
) -> Optional[Region]:
    """
    Return the destination region of a stock transfer, or None.

    Only evaluated when the self-entity keyword is present in the name.
    The name is padded with spaces so that the short " up " keyword also
    matches at either end of the name.
    """
    if not detect_transfer(name, self_keyword):
        return None
    text = f" {_lower(name)} "
    for region, keywords in REGION_KEYWORDS:
        if any(k in text for k in keywords):
            return region
    return None


# ---------------------------------------------------------------------------
# Ledger-side helpers
# ---------------------------------------------------------------------------


def is_self_adjustment(
    name: Optional[str],
    patterns: Sequence[str] = DEFAULT_SELF_ADJUSTMENT_PATTERNS,
) -> bool:
    """
    Return True when a ledger account is a self-adjusting marketplace entry.

    These entries (e.g. "AMAZON SALE (CASH SALE) DELHI") are internal
    adjustments booked through a B2B ledger; they come with a counter-entry
    of the same amount and must not reach the P&L. Patterns are
    case-insensitive regular expressions; invalid patterns never match.
    """
    text = name or ""
    for pattern in patterns:
        try:
            if re.search(pattern, text, flags=re.IGNORECASE):
                return True
        except re.error:
            continue
    return False


_PERCENT_RE = re.compile(r"@\d+%?")
_SPACES_RE = re.compile(r"\s+")
_AMP_RE = re.compile(r"\s*&\s*")


def normalize_account_name(name: Optional[str]) -> str:
    """
    Normalize an account name for exact matching.

    Lowercases, collapses whitespace, drops GST rate suffixes ("@18%") and
    parentheses, and normalizes the spacing around "&".

    Examples
    --------
    >>> normalize_account_name("  Freight  Inward @18% (Local) ")
    'freight inward local'
    >>> normalize_account_name("Legal&Professional")
    'legal & professional'
    """
    text = _lower(name).strip()
    text = _SPACES_RE.sub(" ", text)
    text = _PERCENT_RE.sub("", text)
    text = text.replace("(", "").replace(")", "")
    text = _AMP_RE.sub(" & ", text)
    return _SPACES_RE.sub(" ", text).strip()
