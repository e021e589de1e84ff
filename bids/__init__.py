"""Bid and offer ledger.

Bids belong to auction listings; offers belong to assets and can be accepted by
the asset's owner whether or not it is listed. English bids are appended under
the asset lock and the standing winner is always derived from the bid list.
Dutch bids hand off to the settlement coordinator, which records the bid and
sells the listing in one transaction.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

import auctions
from config import settings_conf
from errors import (
    AuctionEnded, BidTooLow, ConflictError, ListingNotFoundError,
    OfferNotFoundError, OfferNotOpen, UnauthorizedError, ValidationError
)
from models import (
    Bid, BidPlacement, Currency, ListingType, Offer, OfferStatus, utcnow
)
from settlement import require_active

logger = logging.getLogger(__name__)


def _amount(value: Any, field: str = 'amount') -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return amount


class BidManager:
    """Manages bids on auctions and offers on assets."""

    def __init__(
        self,
        store,
        settlement,
        settings: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        settings = settings or settings_conf
        self.store = store
        self.settlement = settlement
        self.clock = clock
        self.increment_bps = settings['min_bid_increment_bps']
        self.offer_duration_hours = settings['offer_duration_hours']

    async def place_bid(
        self,
        listing_id: str,
        bidder_address: str,
        amount: Any,
        bidder_name: Optional[str] = None
    ) -> BidPlacement:
        """Place a bid on an auction listing.

        English bids must strictly exceed the minimum next bid. Dutch bids must
        be at least the current price and immediately buy the listing.

        Raises:
            ListingNotFoundError: If the listing does not exist
            ValidationError: If the amount is invalid or the bidder is the seller
            BidTooLow: If the bid does not clear the threshold
            ConflictError: If the listing is fixed price, inactive or ended
        """
        amount = _amount(amount)
        if not bidder_address:
            raise ValidationError("bidder_address is required")

        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        if listing.seller_address == bidder_address:
            raise ValidationError("Sellers cannot bid on their own listing")
        if listing.type == ListingType.FIXED:
            raise ConflictError("Fixed price listings do not accept bids")
        if listing.type == ListingType.DUTCH:
            return await self.settlement.buy_with_bid(listing_id, bidder_address, amount, bidder_name)

        now = self.clock()
        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            require_active(listing)
            if auctions.is_ended(listing, now):
                raise AuctionEnded(f"Auction {listing.id} has ended")

            highest = auctions.winning_bid(await tx.get_bids(listing.id))
            minimum = auctions.min_next_bid(
                listing, highest.amount if highest else None, self.increment_bps
            )
            if amount <= minimum:
                raise BidTooLow(amount, minimum)

            bid = Bid(
                listing_id=listing.id,
                bidder_address=bidder_address,
                amount=amount,
                currency=listing.currency,
                placed_at=now,
                bidder_name=bidder_name
            )
            await tx.save_bid(bid)

        logger.info(f"Bid {bid.id} of {amount} placed on {listing.id} by {bidder_address}")
        return BidPlacement(bid=bid)

    async def list_bids(self, listing_id: str) -> List[Bid]:
        """Bids on a listing, highest first."""
        if await self.store.get_listing(listing_id) is None:
            raise ListingNotFoundError(listing_id)
        bids = await self.store.get_bids(listing_id)
        return sorted(bids, key=lambda bid: (-bid.amount, bid.placed_at))

    async def make_offer(
        self,
        asset_id: str,
        buyer_address: str,
        amount: Any,
        currency: Currency = Currency.USDC,
        duration_hours: Optional[int] = None,
        buyer_name: Optional[str] = None
    ) -> Offer:
        """Make an offer on an asset, listed or not.

        A buyer may hold several open offers on the same asset.
        """
        amount = _amount(amount)
        if not asset_id:
            raise ValidationError("asset_id is required")
        if not buyer_address:
            raise ValidationError("buyer_address is required")
        duration_hours = duration_hours or self.offer_duration_hours
        if duration_hours <= 0:
            raise ValidationError("duration_hours must be positive")

        now = self.clock()
        async with self.store.transaction(asset_id) as tx:
            listing = await tx.get_active_listing(asset_id)
            owner = listing.seller_address if listing else await tx.get_owner(asset_id)
            if owner == buyer_address:
                raise ValidationError("Owners cannot make offers on their own asset")

            offer = Offer(
                asset_id=asset_id,
                buyer_address=buyer_address,
                amount=amount,
                currency=currency,
                created_at=now,
                expires_at=now + timedelta(hours=duration_hours),
                buyer_name=buyer_name
            )
            await tx.save_offer(offer)

        logger.info(f"Offer {offer.id} of {amount} {currency.value} made on {asset_id} by {buyer_address}")
        return offer

    async def withdraw_offer(self, offer_id: str, buyer_address: str) -> Offer:
        """Withdraw an open offer. Only the offer's buyer may withdraw it."""
        offer = await self.store.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        now = self.clock()

        async with self.store.transaction(offer.asset_id) as tx:
            offer = await tx.get_offer(offer_id)
            if offer.buyer_address != buyer_address:
                raise UnauthorizedError("Only the buyer can withdraw this offer")
            if offer.status != OfferStatus.OPEN:
                raise OfferNotOpen(f"Offer {offer.id} is {offer.status.value}")
            if offer.expires_at <= now:
                raise OfferNotOpen(f"Offer {offer.id} has expired")
            offer.status = OfferStatus.WITHDRAWN
            await tx.save_offer(offer)

        logger.info(f"Offer {offer.id} withdrawn by {buyer_address}")
        return offer

    def _effective(self, offer: Offer, now: datetime) -> Offer:
        """Report open offers past their expiry as expired without writing."""
        if offer.status == OfferStatus.OPEN and offer.expires_at <= now:
            return offer.model_copy(update={'status': OfferStatus.EXPIRED})
        return offer

    async def get_offer(self, offer_id: str) -> Offer:
        offer = await self.store.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return self._effective(offer, self.clock())

    async def list_offers(
        self,
        asset_id: Optional[str] = None,
        buyer_address: Optional[str] = None,
        status: Optional[OfferStatus] = None
    ) -> List[Offer]:
        """Offers matching the filters, newest first."""
        now = self.clock()
        offers = [
            self._effective(offer, now)
            for offer in await self.store.find_offers(asset_id=asset_id, buyer_address=buyer_address)
        ]
        if status is not None:
            offers = [offer for offer in offers if offer.status == status]
        return sorted(offers, key=lambda offer: offer.created_at, reverse=True)

    async def expire_offers(self) -> int:
        """Mark open offers past their expiry as expired.

        Returns:
            Number of offers expired
        """
        now = self.clock()
        expired = 0
        for offer in await self.store.find_offers(status=OfferStatus.OPEN):
            if offer.expires_at > now:
                continue
            async with self.store.transaction(offer.asset_id) as tx:
                current = await tx.get_offer(offer.id)
                if current.status != OfferStatus.OPEN or current.expires_at > now:
                    continue
                current.status = OfferStatus.EXPIRED
                await tx.save_offer(current)
                expired += 1
        if expired:
            logger.info(f"Expired {expired} offers")
        return expired


__all__ = ['BidManager']
