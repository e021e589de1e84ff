"""Auction clock.

Pure functions of time and listing parameters. Nothing here touches the store or
holds state, so prices and end times can be evaluated anywhere, including on
read paths that must never mutate a listing.
"""
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from models import Bid, BidStatus, Listing, ListingType, utcnow

PRICE_QUANTUM = Decimal('0.00000001')
BPS_DENOMINATOR = Decimal(10000)
DEFAULT_MIN_BID_INCREMENT_BPS = 500


def quantize(amount: Decimal) -> Decimal:
    """Round a money amount to 8 decimal places."""
    return Decimal(amount).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def min_next_bid(
    listing: Listing,
    highest: Optional[Decimal] = None,
    increment_bps: int = DEFAULT_MIN_BID_INCREMENT_BPS
) -> Decimal:
    """Threshold a new English bid must strictly exceed.

    The base is the larger of the standing bid and the starting price, so the
    opening bid also has to clear the increment over the starting price.
    """
    base = max(highest or Decimal(0), listing.starting_price or Decimal(0))
    return quantize(base * (BPS_DENOMINATOR + increment_bps) / BPS_DENOMINATOR)


def dutch_price(listing: Listing, at: datetime) -> Decimal:
    """Current price of a Dutch auction at ``at``.

    Price falls linearly from starting_price at created_at to ending_price at
    ends_at, evaluated at the last price_drop_interval boundary. When the
    duration is not a whole number of intervals the final drop is partial.
    """
    start = listing.starting_price
    end = listing.ending_price
    if at >= listing.ends_at:
        return quantize(end)

    interval = (listing.price_drop_interval or 0) * 60
    duration = (listing.ends_at - listing.created_at).total_seconds()
    elapsed = max((at - listing.created_at).total_seconds(), 0)
    if interval <= 0 or duration <= 0:
        return quantize(start)

    stepped = min(math.floor(elapsed / interval) * interval, duration)
    price = start - (start - end) * Decimal(stepped) / Decimal(duration)
    return min(max(quantize(price), end), start)


def current_price(
    listing: Listing,
    highest: Optional[Decimal] = None,
    at: Optional[datetime] = None
) -> Optional[Decimal]:
    """Display price for any listing type."""
    at = at or utcnow()
    if listing.type == ListingType.FIXED:
        return listing.price
    if listing.type == ListingType.DUTCH:
        return dutch_price(listing, at)
    return highest if highest is not None else listing.starting_price


def is_ended(listing: Listing, at: datetime) -> bool:
    return listing.is_auction and listing.ends_at is not None and at >= listing.ends_at


def winning_bid(bids: Iterable[Bid]) -> Optional[Bid]:
    """Highest active bid; ties go to the earliest bid."""
    active = [bid for bid in bids if bid.status == BidStatus.ACTIVE]
    if not active:
        return None
    return min(active, key=lambda bid: (-bid.amount, bid.placed_at))


def reserve_met(listing: Listing, bid: Optional[Bid]) -> bool:
    if bid is None:
        return False
    return listing.reserve_price is None or bid.amount >= listing.reserve_price


__all__ = [
    'quantize',
    'min_next_bid',
    'dutch_price',
    'current_price',
    'is_ended',
    'winning_bid',
    'reserve_met',
    'DEFAULT_MIN_BID_INCREMENT_BPS',
]
