"""Settlement coordinator.

This module is the only writer of listing status, Sale records and stored
activity events. It provides:
- Buy-now for fixed price listings, English buy-now and Dutch auctions
- Accepting the highest English bid or an open offer
- Settling and expiring ended auctions
- Cancelling listings on behalf of their seller
- Post-commit transfer dispatch through the payment executor

Every settlement runs inside one store transaction keyed by the asset id, so a
second concurrent settlement of the same listing observes the sold status and
fails with ListingAlreadySettled. Collaborator calls happen only after commit;
their failure is recorded on the Sale and never rolls the settlement back.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import auctions
from config import settings_conf
from errors import (
    AuctionEnded, AuctionNotEnded, BidTooLow, ConflictError, DependencyError,
    ListingAlreadySettled, ListingNotActive, ListingNotFoundError, MarketError,
    NoQualifyingBid, OfferNotFoundError, OfferNotOpen, ReserveNotMet,
    UnauthorizedError, ValidationError
)
from models import (
    Activity, ActivityType, Bid, BidPlacement, BidStatus, Currency, Listing,
    ListingStatus, ListingType, Offer, OfferStatus, Sale, SaleStatus, utcnow
)
from .payouts import PayoutManager

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = Decimal(10000)

Subscriber = Callable[[Activity, Optional[Sale]], Any]


def compute_fees(
    sale_price: Decimal,
    royalty_bps: int,
    platform_fee_bps: int
) -> Tuple[Decimal, Decimal, Decimal]:
    """Split a sale price into royalty, platform fee and seller proceeds."""
    royalty = auctions.quantize(sale_price * royalty_bps / BPS_DENOMINATOR)
    platform_fee = auctions.quantize(sale_price * platform_fee_bps / BPS_DENOMINATOR)
    return royalty, platform_fee, sale_price - royalty - platform_fee


def require_active(listing: Listing) -> None:
    """Raise the conflict matching a listing's terminal status."""
    if listing.status == ListingStatus.SOLD:
        raise ListingAlreadySettled(f"Listing {listing.id} has already been sold")
    if listing.status != ListingStatus.ACTIVE:
        raise ListingNotActive(f"Listing {listing.id} is {listing.status.value}")


class SettlementManager:
    """Coordinates every listing status transition."""

    def __init__(
        self,
        store,
        settings: Optional[Dict[str, Any]] = None,
        payments=None,
        collections=None,
        creators=None,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize the coordinator.

        Args:
            store: MarketStore holding listings, bids, offers and sales
            settings: Validated settings, defaults to settings_conf
            payments: Payment executor exposing transfer_funds()
            collections: Collection registry exposing record_sale()
            creators: Creator registry exposing record_sale()
            clock: Callable returning the current UTC time
        """
        settings = settings or settings_conf
        self.store = store
        self.payments = payments
        self.collections = collections
        self.creators = creators
        self.clock = clock
        self.platform_fee_bps = settings['platform_fee_bps']
        self.default_royalty_bps = settings['default_royalty_bps']
        self.royalty_address = settings.get('royalty_address') or None
        self.timeout = float(settings['collaborator_timeout'])
        self.max_transfer_attempts = settings['max_transfer_attempts']
        self.transfer_retry_delay = timedelta(seconds=settings['transfer_retry_delay'])
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback invoked with every committed activity event."""
        self._subscribers.append(callback)

    def _publish(self, activity: Activity, sale: Optional[Sale] = None) -> None:
        for callback in self._subscribers:
            try:
                callback(activity, sale)
            except Exception as e:
                logger.error(f"Activity subscriber failed for {activity.id}: {e}")

    async def _load_listing(self, listing_id: str) -> Listing:
        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    async def buy_now(self, listing_id: str, buyer_address: str) -> Sale:
        """Buy a listing at its current buy-now price."""
        sale, _ = await self._buy(listing_id, buyer_address)
        return sale

    async def buy_with_bid(
        self,
        listing_id: str,
        bidder_address: str,
        amount: Decimal,
        bidder_name: Optional[str] = None
    ) -> BidPlacement:
        """Record a Dutch auction bid and settle the listing in the same transaction.

        The bid must be at least the current decayed price; the sale closes at
        that price.
        """
        sale, bid = await self._buy(listing_id, bidder_address, amount, bidder_name)
        return BidPlacement(bid=bid, sale=sale)

    async def _buy(
        self,
        listing_id: str,
        buyer_address: str,
        bid_amount: Optional[Decimal] = None,
        bidder_name: Optional[str] = None
    ) -> Tuple[Sale, Optional[Bid]]:
        if not buyer_address:
            raise ValidationError("buyer_address is required")
        listing = await self._load_listing(listing_id)
        now = self.clock()

        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            require_active(listing)
            if auctions.is_ended(listing, now):
                raise AuctionEnded(f"Auction {listing.id} ended at {listing.ends_at.isoformat()}")
            if listing.seller_address == buyer_address:
                raise ValidationError("Sellers cannot buy their own listing")

            if listing.type == ListingType.FIXED:
                price = listing.price
            elif listing.type == ListingType.ENGLISH:
                if listing.buy_now_price is None:
                    raise ValidationError(f"Auction {listing.id} has no buy now price")
                price = listing.buy_now_price
            else:
                price = auctions.dutch_price(listing, now)

            bid = None
            if bid_amount is not None:
                if bid_amount < price:
                    raise BidTooLow(bid_amount, price, inclusive=True)
                bid = Bid(
                    listing_id=listing.id,
                    bidder_address=buyer_address,
                    amount=bid_amount,
                    currency=listing.currency,
                    placed_at=now,
                    bidder_name=bidder_name
                )

            sale, activity = await self._settle(
                tx,
                asset_id=listing.asset_id,
                seller_address=listing.seller_address,
                buyer_address=buyer_address,
                price=price,
                currency=listing.currency,
                royalty_bps=listing.royalty_bps,
                now=now,
                listing=listing,
                bid=bid
            )

        return await self._after_commit(sale, activity), bid

    async def accept_bid(self, listing_id: str, seller_address: str) -> Sale:
        """Sell an English auction to its highest bidder before it ends."""
        listing = await self._load_listing(listing_id)
        now = self.clock()

        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            if listing.seller_address != seller_address:
                raise UnauthorizedError("Only the seller can accept bids")
            require_active(listing)
            if listing.type != ListingType.ENGLISH:
                raise ConflictError("Only English auctions accept bids")
            if auctions.is_ended(listing, now):
                raise AuctionEnded(f"Auction {listing.id} has ended")

            winner = await self._qualifying_bid(tx, listing)
            sale, activity = await self._settle(
                tx,
                asset_id=listing.asset_id,
                seller_address=listing.seller_address,
                buyer_address=winner.bidder_address,
                price=winner.amount,
                currency=listing.currency,
                royalty_bps=listing.royalty_bps,
                now=now,
                listing=listing,
                bid=winner
            )

        return await self._after_commit(sale, activity)

    async def settle_ended_auction(self, listing_id: str) -> Sale:
        """Sell an ended English auction to its reserve-meeting highest bidder."""
        listing = await self._load_listing(listing_id)
        now = self.clock()

        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            require_active(listing)
            if listing.type != ListingType.ENGLISH:
                raise ConflictError("Only English auctions settle to the highest bidder")
            if not auctions.is_ended(listing, now):
                raise AuctionNotEnded(f"Auction {listing.id} ends at {listing.ends_at.isoformat()}")

            winner = await self._qualifying_bid(tx, listing)
            sale, activity = await self._settle(
                tx,
                asset_id=listing.asset_id,
                seller_address=listing.seller_address,
                buyer_address=winner.bidder_address,
                price=winner.amount,
                currency=listing.currency,
                royalty_bps=listing.royalty_bps,
                now=now,
                listing=listing,
                bid=winner
            )

        return await self._after_commit(sale, activity)

    async def _qualifying_bid(self, tx, listing: Listing) -> Bid:
        winner = auctions.winning_bid(await tx.get_bids(listing.id))
        if winner is None:
            raise NoQualifyingBid(f"Auction {listing.id} has no bids")
        if not auctions.reserve_met(listing, winner):
            raise ReserveNotMet(
                f"Highest bid {winner.amount} does not meet reserve {listing.reserve_price}"
            )
        return winner

    async def accept_offer(self, offer_id: str, seller_address: str) -> Sale:
        """Sell an asset to an open offer. Only the asset's current owner may accept."""
        offer = await self.store.get_offer(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        now = self.clock()

        async with self.store.transaction(offer.asset_id) as tx:
            offer = await tx.get_offer(offer_id)
            if offer.status != OfferStatus.OPEN:
                raise OfferNotOpen(f"Offer {offer.id} is {offer.status.value}")
            if offer.expires_at <= now:
                raise OfferNotOpen(f"Offer {offer.id} has expired")

            listing = await tx.get_active_listing(offer.asset_id)
            owner = listing.seller_address if listing else await tx.get_owner(offer.asset_id)
            if owner is None:
                raise UnauthorizedError(f"Asset {offer.asset_id} has no owner of record")
            if owner != seller_address:
                raise UnauthorizedError("Only the asset owner can accept offers")
            if offer.buyer_address == owner:
                raise ValidationError("Owners cannot accept their own offer")
            if listing is not None and auctions.is_ended(listing, now):
                raise AuctionEnded(f"Auction {listing.id} has ended")

            previous = await tx.last_sale(offer.asset_id)
            if listing is not None:
                royalty_bps = listing.royalty_bps
                collection_id = listing.collection_id
                creator_address = listing.creator_address
            elif previous is not None:
                royalty_bps = previous.royalty_bps
                collection_id = previous.collection_id
                creator_address = previous.creator_address
            else:
                royalty_bps = self.default_royalty_bps
                collection_id = None
                creator_address = None

            sale, activity = await self._settle(
                tx,
                asset_id=offer.asset_id,
                seller_address=owner,
                buyer_address=offer.buyer_address,
                price=offer.amount,
                currency=offer.currency,
                royalty_bps=royalty_bps,
                now=now,
                listing=listing,
                offer=offer,
                collection_id=collection_id,
                creator_address=creator_address
            )

        return await self._after_commit(sale, activity)

    async def close_expired_auction(self, listing_id: str) -> Optional[Listing]:
        """Expire an ended auction that has no qualifying bid.

        An ended English auction whose highest bid meets the reserve raises
        ConflictError; it is resolved by settle_ended_auction() instead.

        Returns the expired listing, or None when the listing was already
        terminal, in which case nothing is written.
        """
        listing = await self._load_listing(listing_id)
        now = self.clock()

        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            if listing.is_terminal:
                logger.debug(f"Listing {listing.id} already {listing.status.value}")
                return None
            if not auctions.is_ended(listing, now):
                raise AuctionNotEnded(f"Listing {listing.id} has not ended")
            if listing.type == ListingType.ENGLISH:
                winner = auctions.winning_bid(await tx.get_bids(listing.id))
                if auctions.reserve_met(listing, winner):
                    raise ConflictError(
                        f"Auction {listing.id} has a qualifying bid and must be settled"
                    )

            listing.status = ListingStatus.EXPIRED
            listing.closed_at = now
            listing.updated_at = now
            listing.version += 1
            await tx.save_listing(listing)
            await self._void_bids(tx, listing.id)

            activity = Activity(
                type=ActivityType.EXPIRE,
                asset_id=listing.asset_id,
                collection_id=listing.collection_id,
                listing_id=listing.id,
                from_address=listing.seller_address,
                currency=listing.currency,
                created_at=now
            )
            await tx.add_activity(activity)

        logger.info(f"Expired auction {listing.id}")
        self._publish(activity)
        return listing

    async def cancel(self, listing_id: str, requester: str) -> Listing:
        """Cancel an active listing on behalf of its seller. Active bids become void."""
        listing = await self._load_listing(listing_id)
        now = self.clock()

        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            if listing.seller_address != requester:
                raise UnauthorizedError("Only the seller can cancel this listing")
            require_active(listing)

            listing.status = ListingStatus.CANCELLED
            listing.closed_at = now
            listing.updated_at = now
            listing.version += 1
            await tx.save_listing(listing)
            await self._void_bids(tx, listing.id)

            activity = Activity(
                type=ActivityType.CANCEL,
                asset_id=listing.asset_id,
                collection_id=listing.collection_id,
                listing_id=listing.id,
                from_address=listing.seller_address,
                currency=listing.currency,
                created_at=now
            )
            await tx.add_activity(activity)

        logger.info(f"Cancelled listing {listing.id}")
        self._publish(activity)
        return listing

    async def _void_bids(self, tx, listing_id: str) -> None:
        for bid in await tx.get_bids(listing_id):
            if bid.status == BidStatus.ACTIVE:
                bid.status = BidStatus.VOID
                await tx.save_bid(bid)

    async def _settle(
        self,
        tx,
        *,
        asset_id: str,
        seller_address: str,
        buyer_address: str,
        price: Decimal,
        currency: Currency,
        royalty_bps: int,
        now: datetime,
        listing: Optional[Listing] = None,
        bid: Optional[Bid] = None,
        offer: Optional[Offer] = None,
        collection_id: Optional[str] = None,
        creator_address: Optional[str] = None
    ) -> Tuple[Sale, Activity]:
        """Write every record of a sale inside the caller's transaction."""
        if listing is not None:
            collection_id = listing.collection_id
            creator_address = listing.creator_address
            listing.status = ListingStatus.SOLD
            listing.closed_at = now
            listing.updated_at = now
            listing.version += 1
            await tx.save_listing(listing)

            for other in await tx.get_bids(listing.id):
                if bid is not None and other.id == bid.id:
                    continue
                if other.status == BidStatus.ACTIVE:
                    other.status = BidStatus.SUPERSEDED
                    await tx.save_bid(other)

        if bid is not None:
            bid.status = BidStatus.ACCEPTED
            await tx.save_bid(bid)

        for other in await tx.get_open_offers(asset_id):
            if offer is not None and other.id == offer.id:
                continue
            other.status = OfferStatus.SUPERSEDED
            await tx.save_offer(other)

        if offer is not None:
            offer.status = OfferStatus.ACCEPTED
            await tx.save_offer(offer)

        royalty_amount, platform_fee, proceeds = compute_fees(
            price, royalty_bps, self.platform_fee_bps
        )
        sale = Sale(
            listing_id=listing.id if listing else None,
            offer_id=offer.id if offer else None,
            bid_id=bid.id if bid else None,
            asset_id=asset_id,
            buyer_address=buyer_address,
            seller_address=seller_address,
            sale_price=price,
            currency=currency,
            collection_id=collection_id,
            creator_address=creator_address or self.royalty_address,
            royalty_bps=royalty_bps,
            royalty_amount=royalty_amount,
            platform_fee=platform_fee,
            seller_proceeds=proceeds,
            settled_at=now
        )
        if self.payments is not None:
            # Claimed for the post-commit transfer of this request
            sale.transfer_attempts = 1
            sale.last_transfer_attempt = now
        await tx.save_sale(sale)
        await tx.set_owner(asset_id, buyer_address)

        activity = Activity(
            type=ActivityType.SALE,
            asset_id=asset_id,
            collection_id=collection_id,
            listing_id=sale.listing_id,
            from_address=seller_address,
            to_address=buyer_address,
            price=price,
            currency=currency,
            created_at=now
        )
        await tx.add_activity(activity)

        logger.info(
            f"Settled sale {sale.id} of {asset_id}: {price} {currency.value} "
            f"from {seller_address} to {buyer_address}"
        )
        return sale, activity

    async def _after_commit(self, sale: Sale, activity: Activity) -> Sale:
        self._publish(activity, sale)
        if self.payments is None:
            logger.warning(f"No payment executor configured; sale {sale.id} left pending")
        else:
            sale = await self._transfer(sale)
        await self._record_registries(sale)
        return sale

    async def _call(self, func: Callable, *args) -> Any:
        """Run a blocking collaborator call in a worker thread with a timeout."""
        name = getattr(func, '__name__', 'collaborator')
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise DependencyError(f"{name} timed out after {self.timeout}s") from e
        except MarketError:
            raise
        except Exception as e:
            raise DependencyError(f"{name} failed: {e}") from e

    async def dispatch_transfer(self, sale: Sale) -> Optional[Sale]:
        """Claim a pending sale and retry its payment transfer.

        Returns the updated Sale, or None when the sale is not due: already
        settled, out of attempts, or claimed by another dispatcher within the
        retry delay. A failed transfer leaves the Sale in
        settled_pending_transfer with the error recorded.
        """
        if self.payments is None:
            logger.warning(f"No payment executor configured; sale {sale.id} left pending")
            return None

        claimed = await self._claim_transfer(sale)
        if claimed is None:
            return None
        return await self._transfer(claimed)

    async def _claim_transfer(self, sale: Sale) -> Optional[Sale]:
        now = self.clock()
        async with self.store.transaction(sale.asset_id) as tx:
            current = await tx.get_sale(sale.id)
            if current.status == SaleStatus.SETTLED:
                return None
            if current.transfer_attempts >= self.max_transfer_attempts:
                return None
            last = current.last_transfer_attempt
            if last is not None and now - last < self.transfer_retry_delay:
                return None

            current.transfer_attempts += 1
            current.last_transfer_attempt = now
            await tx.save_sale(current)
        return current

    async def _transfer(self, sale: Sale) -> Sale:
        """Call the payment executor for a claimed sale and record the outcome.

        The sale id is the executor's idempotency key, so a retry after a call
        that timed out but still landed cannot move the funds twice.
        """
        signature = None
        error = None
        try:
            result = await self._call(
                self.payments.transfer_funds,
                sale.buyer_address,
                sale.seller_address,
                sale.seller_proceeds,
                sale.currency.value,
                sale.id
            )
            signature = result.get('signature') if isinstance(result, dict) else result
            if not signature:
                error = "Payment executor returned no signature"
        except DependencyError as e:
            error = str(e)

        async with self.store.transaction(sale.asset_id) as tx:
            current = await tx.get_sale(sale.id)
            if current.status != SaleStatus.SETTLED:
                if error is None:
                    current.status = SaleStatus.SETTLED
                    current.transfer_signature = str(signature)
                    current.transfer_error = None
                else:
                    current.transfer_error = error
                await tx.save_sale(current)

        if error is None:
            logger.info(f"Transfer for sale {sale.id} completed: {signature}")
        else:
            logger.error(
                f"Transfer for sale {sale.id} failed "
                f"(attempt {current.transfer_attempts}): {error}"
            )
        return current

    async def _record_registries(self, sale: Sale) -> None:
        try:
            if self.collections is not None and sale.collection_id:
                await self._call(
                    self.collections.record_sale,
                    sale.collection_id, sale.sale_price, sale.currency.value
                )
            if self.creators is not None and sale.creator_address:
                await self._call(
                    self.creators.record_sale,
                    sale.creator_address, sale.royalty_amount
                )
        except DependencyError as e:
            logger.warning(f"Registry update for sale {sale.id} failed: {e}")


__all__ = ['SettlementManager', 'PayoutManager', 'compute_fees', 'require_active']
