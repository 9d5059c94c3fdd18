# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Revenue aggregation for MIS FinSight.

Revenue comes from the sales registers of each state. Every sales line is
attributed to a channel (Website, Amazon, Blinkit, Offline & OEM) and
falls in exactly one bucket:

- stock transfer  -> ``transfers`` only (never sales, never returns),
- return          -> ``returns[channel]`` (absolute amount), tax to
  ``taxes[channel]``,
- sale            -> ``gross_sales[channel]``, tax to ``taxes[channel]``.

Grand totals are always the sum of the per-channel figures, so channel
totals and grand totals cannot drift apart.

Net revenue
-----------
    net_revenue = gross_sales - transfers - returns - taxes - discounts

Discounts are reserved and currently always zero.

Multiple states
---------------
``combine_state_revenue`` sums every field across states except
``transfers``, which are only taken from the designated hub state (the
state that ships stock to the others); transfers booked in other states
are dropped to avoid counting the same movement twice.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from .categories import CHANNELS, Channel, Region
from .detectors import detect_channel, detect_destination_region, detect_transfer
from .models import SalesLineItem

logger = logging.getLogger(__name__)


def _zero_channels() -> dict[Channel, float]:
    return {c: 0.0 for c in CHANNELS}


@dataclass(frozen=True)
class StockTransfer:
    from_state: str
    to_state: str
    amount: float


@dataclass
class RevenueTotals:
    """Revenue breakdown by channel for one state (or a combination)."""

    gross_sales_by_channel: dict[Channel, float] = field(default_factory=_zero_channels)
    returns_by_channel: dict[Channel, float] = field(default_factory=_zero_channels)
    taxes_by_channel: dict[Channel, float] = field(default_factory=_zero_channels)
    discounts_by_channel: dict[Channel, float] = field(default_factory=_zero_channels)
    transfers: float = 0.0
    stock_transfers: list[StockTransfer] = field(default_factory=list)

    @property
    def gross_sales(self) -> float:
        return sum(self.gross_sales_by_channel.values())

    @property
    def returns(self) -> float:
        return sum(self.returns_by_channel.values())

    @property
    def taxes(self) -> float:
        return sum(self.taxes_by_channel.values())

    @property
    def discounts(self) -> float:
        return sum(self.discounts_by_channel.values())

    @property
    def total_revenue(self) -> float:
        """Gross sales net of returns and discounts, before taxes."""
        return self.gross_sales - self.returns - self.discounts

    @property
    def net_revenue(self) -> float:
        return self.gross_sales - self.transfers - self.returns - self.taxes - self.discounts

    def net_revenue_by_channel(self) -> dict[Channel, float]:
        return {
            c: self.gross_sales_by_channel[c]
            - self.returns_by_channel[c]
            - self.taxes_by_channel[c]
            - self.discounts_by_channel[c]
            for c in CHANNELS
        }


def aggregate_revenue(
    line_items: Iterable[SalesLineItem], state: str = ""
) -> RevenueTotals:
    """
    Aggregate sales lines into a RevenueTotals.

    Parameters
    ----------
    line_items:
        Sales lines of one state.
    state:
        Source state, recorded on stock transfers.
    """
    totals = RevenueTotals()
    for item in line_items:
        if item.is_transfer:
            amount = abs(item.amount)
            totals.transfers += amount
            totals.stock_transfers.append(
                StockTransfer(
                    from_state=item.state or state,
                    to_state=item.destination_region.value
                    if item.destination_region
                    else "Unknown",
                    amount=amount,
                )
            )
            continue

        channel = item.channel or detect_channel(item.party)
        if item.is_return:
            totals.returns_by_channel[channel] += abs(item.amount)
        else:
            totals.gross_sales_by_channel[channel] += item.amount
        totals.taxes_by_channel[channel] += item.tax_amount
    return totals


def combine_state_revenue(
    per_state: Mapping[str, RevenueTotals], hub_state: Optional[str]
) -> RevenueTotals:
    """
    Combine per-state revenue into a single breakdown.

    Channel figures are summed across states; transfers (and the stock
    transfer details) are only taken from ``hub_state``.
    """
    combined = RevenueTotals()
    for state, totals in per_state.items():
        for c in CHANNELS:
            combined.gross_sales_by_channel[c] += totals.gross_sales_by_channel[c]
            combined.returns_by_channel[c] += totals.returns_by_channel[c]
            combined.taxes_by_channel[c] += totals.taxes_by_channel[c]
            combined.discounts_by_channel[c] += totals.discounts_by_channel[c]
        if state == hub_state:
            combined.transfers += totals.transfers
            combined.stock_transfers.extend(totals.stock_transfers)
        elif totals.transfers:
            logger.info(
                "Ignoring %.2f of stock transfers booked in %s (hub state is %s).",
                totals.transfers,
                state,
                hub_state,
            )
    return combined


def sum_revenue(parts: Sequence[RevenueTotals]) -> RevenueTotals:
    """Field-by-field sum, transfers included (used across periods)."""
    combined = RevenueTotals()
    for totals in parts:
        for c in CHANNELS:
            combined.gross_sales_by_channel[c] += totals.gross_sales_by_channel[c]
            combined.returns_by_channel[c] += totals.returns_by_channel[c]
            combined.taxes_by_channel[c] += totals.taxes_by_channel[c]
            combined.discounts_by_channel[c] += totals.discounts_by_channel[c]
        combined.transfers += totals.transfers
        combined.stock_transfers.extend(totals.stock_transfers)
    return combined


def build_line_item(
    party: str,
    amount: float,
    *,
    self_keyword: str,
    tax_amount: float = 0.0,
    state: str = "",
    invoice_no: str = "",
    line_date: Optional[date] = None,
) -> SalesLineItem:
    """
    Build a SalesLineItem from a raw sales-register row.

    A row whose party carries the self-entity keyword is a stock transfer
    (and never a return); otherwise negative amounts are returns and the
    channel is detected from the party name.
    """
    is_transfer = detect_transfer(party, self_keyword)
    destination: Optional[Region] = (
        detect_destination_region(party, self_keyword) if is_transfer else None
    )
    return SalesLineItem(
        party=party,
        amount=amount,
        channel=None if is_transfer else detect_channel(party),
        is_return=amount < 0 and not is_transfer,
        is_transfer=is_transfer,
        destination_region=destination,
        tax_amount=tax_amount,
        date=line_date,
        invoice_no=invoice_no,
        state=state,
    )
