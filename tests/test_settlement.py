"""Tests for the settlement coordinator and payout reconciliation."""

import asyncio
from decimal import Decimal

import pytest

from database import MemoryStore
from errors import (
    ConflictError, ListingAlreadySettled, ListingNotActive, NoQualifyingBid, OfferNotOpen,
    ReserveNotMet, UnauthorizedError, ValidationError
)
from marketplace import Marketplace
from models import ActivityType, BidStatus, ListingStatus, OfferStatus, SaleStatus
from settlement import compute_fees
from workers import ExpirySweeper

from conftest import BIDDER, BUYER, OTHER, SELLER, english_spec, fixed_spec


def test_compute_fees():
    royalty, fee, proceeds = compute_fees(Decimal("100"), 500, 250)
    assert royalty == Decimal("5")
    assert fee == Decimal("2.5")
    assert proceeds == Decimal("92.5")
    assert royalty + fee + proceeds == Decimal("100")


@pytest.mark.asyncio
async def test_buy_fixed_listing(market, payments):
    listing = await market.listings.create(fixed_spec(collection_id="COLL-1", creator_address=OTHER))

    sale = await market.settlement.buy_now(listing.id, BUYER)

    assert sale.sale_price == Decimal("100")
    assert sale.royalty_amount == Decimal("5")
    assert sale.platform_fee == Decimal("2.5")
    assert sale.seller_proceeds == Decimal("92.5")
    assert sale.status == SaleStatus.SETTLED
    assert sale.transfer_signature == "sig_1"
    assert payments.transfers == [(BUYER, SELLER, Decimal("92.5"), "USDC")]

    stored = await market.store.get_listing(listing.id)
    assert stored.status == ListingStatus.SOLD
    assert await market.store.get_owner("ASSET-1") == BUYER
    assert market.collections.get("COLL-1")["sales_count"] == 1
    assert market.creators.get(OTHER)["royalties"] == Decimal("5")


@pytest.mark.asyncio
async def test_seller_cannot_buy_own_listing(market):
    listing = await market.listings.create(fixed_spec())
    with pytest.raises(ValidationError):
        await market.settlement.buy_now(listing.id, SELLER)


@pytest.mark.asyncio
async def test_concurrent_buys_settle_once(market):
    listing = await market.listings.create(fixed_spec())

    results = await asyncio.gather(
        market.settlement.buy_now(listing.id, BUYER),
        market.settlement.buy_now(listing.id, OTHER),
        return_exceptions=True
    )

    sales = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(sales) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ListingAlreadySettled)
    assert len(await market.store.find_sales()) == 1


@pytest.mark.asyncio
async def test_english_auction_settles_after_reserve_met(market, clock):
    listing = await market.listings.create(english_spec(reserve_price=Decimal("50"), hours=1))
    await market.bids.place_bid(listing.id, BIDDER, "30")
    await market.bids.place_bid(listing.id, OTHER, "60")

    clock.advance(hours=1)
    counts = await ExpirySweeper(market).sweep_once()
    assert counts["settled"] == 1

    sales = await market.store.find_sales()
    assert len(sales) == 1
    assert sales[0].buyer_address == OTHER
    assert sales[0].sale_price == Decimal("60")

    bids = {bid.bidder_address: bid.status for bid in await market.store.get_bids(listing.id)}
    assert bids == {OTHER: BidStatus.ACCEPTED, BIDDER: BidStatus.SUPERSEDED}


@pytest.mark.asyncio
async def test_english_auction_below_reserve_expires(market, clock):
    listing = await market.listings.create(english_spec(reserve_price=Decimal("50"), hours=1))
    await market.bids.place_bid(listing.id, BIDDER, "30")

    with pytest.raises(ReserveNotMet):
        await market.settlement.accept_bid(listing.id, SELLER)

    clock.advance(hours=1)
    counts = await ExpirySweeper(market).sweep_once()
    assert counts == {"settled": 0, "expired": 1, "offers_expired": 0, "errors": 0}

    stored = await market.store.get_listing(listing.id)
    assert stored.status == ListingStatus.EXPIRED
    assert await market.store.find_sales() == []
    assert [bid.status for bid in await market.store.get_bids(listing.id)] == [BidStatus.VOID]


@pytest.mark.asyncio
async def test_accept_bid_before_end(market):
    listing = await market.listings.create(english_spec())

    with pytest.raises(NoQualifyingBid):
        await market.settlement.accept_bid(listing.id, SELLER)

    await market.bids.place_bid(listing.id, BIDDER, "20")
    with pytest.raises(UnauthorizedError):
        await market.settlement.accept_bid(listing.id, BIDDER)

    sale = await market.settlement.accept_bid(listing.id, SELLER)
    assert sale.buyer_address == BIDDER
    assert sale.sale_price == Decimal("20")


@pytest.mark.asyncio
async def test_english_buy_now(market):
    listing = await market.listings.create(english_spec(buy_now_price=Decimal("500")))
    await market.bids.place_bid(listing.id, BIDDER, "20")

    sale = await market.settlement.buy_now(listing.id, BUYER)
    assert sale.sale_price == Decimal("500")
    bids = await market.store.get_bids(listing.id)
    assert [bid.status for bid in bids] == [BidStatus.SUPERSEDED]


@pytest.mark.asyncio
async def test_close_expired_auction_is_idempotent(market, clock):
    listing = await market.listings.create(english_spec(hours=1))
    clock.advance(hours=2)

    first = await market.settlement.close_expired_auction(listing.id)
    second = await market.settlement.close_expired_auction(listing.id)

    assert first.status == ListingStatus.EXPIRED
    assert second is None
    expires = [a for a in await market.store.find_activities() if a.type == ActivityType.EXPIRE]
    assert len(expires) == 1


@pytest.mark.asyncio
async def test_close_expired_auction_leaves_qualifying_bid_for_settlement(market, clock):
    listing = await market.listings.create(english_spec(reserve_price=Decimal("50"), hours=1))
    await market.bids.place_bid(listing.id, BIDDER, "60")
    clock.advance(hours=25)

    with pytest.raises(ConflictError):
        await market.settlement.close_expired_auction(listing.id)

    assert (await market.store.get_listing(listing.id)).status == ListingStatus.ACTIVE
    assert [bid.status for bid in await market.store.get_bids(listing.id)] == [BidStatus.ACTIVE]

    sale = await market.settlement.settle_ended_auction(listing.id)
    assert sale.buyer_address == BIDDER
    assert sale.sale_price == Decimal("60")


@pytest.mark.asyncio
async def test_cancel_voids_bids(market):
    listing = await market.listings.create(english_spec())
    await market.bids.place_bid(listing.id, BIDDER, "20")

    cancelled = await market.listings.cancel(listing.id, SELLER)
    assert cancelled.status == ListingStatus.CANCELLED
    assert [bid.status for bid in await market.store.get_bids(listing.id)] == [BidStatus.VOID]

    with pytest.raises(ListingNotActive):
        await market.settlement.buy_now(listing.id, BUYER)


@pytest.mark.asyncio
async def test_transfer_failure_leaves_sale_pending(market, payments, clock):
    listing = await market.listings.create(fixed_spec())
    payments.fail = True

    sale = await market.settlement.buy_now(listing.id, BUYER)
    assert sale.status == SaleStatus.PENDING_TRANSFER
    assert sale.transfer_attempts == 1
    assert "unreachable" in sale.transfer_error

    # The sale itself is committed
    assert (await market.store.get_listing(listing.id)).status == ListingStatus.SOLD
    assert [s.id for s in await market.payouts.pending_transfers()] == [sale.id]

    # Not yet due for a retry
    counts = await market.payouts.reconcile_pending()
    assert counts["retried"] == 0

    payments.fail = False
    clock.advance(minutes=10)
    counts = await market.payouts.reconcile_pending()
    assert counts == {"retried": 1, "settled": 1, "failed": 0, "exhausted": 0}

    settled = await market.store.get_sale(sale.id)
    assert settled.status == SaleStatus.SETTLED
    assert settled.transfer_attempts == 2
    assert await market.payouts.pending_transfers() == []


@pytest.mark.asyncio
async def test_transfer_retries_are_bounded(market, payments, clock):
    listing = await market.listings.create(fixed_spec())
    payments.fail = True
    await market.settlement.buy_now(listing.id, BUYER)

    for _ in range(5):
        clock.advance(minutes=10)
        await market.payouts.reconcile_pending()

    [sale] = await market.payouts.pending_transfers()
    assert sale.transfer_attempts == 3
    counts = await market.payouts.reconcile_pending()
    assert counts["exhausted"] == 1


@pytest.mark.asyncio
async def test_accept_offer_requires_owner_of_record(market):
    offer = await market.bids.make_offer("UNLISTED", BUYER, "10")
    with pytest.raises(UnauthorizedError):
        await market.settlement.accept_offer(offer.id, SELLER)


@pytest.mark.asyncio
async def test_accept_offer_on_listed_asset(market):
    listing = await market.listings.create(fixed_spec(royalty_bps=1000))
    offer = await market.bids.make_offer("ASSET-1", BUYER, "80")
    rival = await market.bids.make_offer("ASSET-1", OTHER, "70")

    with pytest.raises(UnauthorizedError):
        await market.settlement.accept_offer(offer.id, OTHER)

    sale = await market.settlement.accept_offer(offer.id, SELLER)
    assert sale.offer_id == offer.id
    assert sale.listing_id == listing.id
    assert sale.royalty_amount == Decimal("8")

    assert (await market.store.get_listing(listing.id)).status == ListingStatus.SOLD
    assert (await market.store.get_offer(offer.id)).status == OfferStatus.ACCEPTED
    assert (await market.store.get_offer(rival.id)).status == OfferStatus.SUPERSEDED

    with pytest.raises(OfferNotOpen):
        await market.settlement.accept_offer(rival.id, SELLER)


@pytest.mark.asyncio
async def test_accept_offer_after_resale_uses_previous_royalty(market):
    listing = await market.listings.create(fixed_spec(royalty_bps=1000, collection_id="COLL-1"))
    await market.settlement.buy_now(listing.id, BUYER)

    offer = await market.bids.make_offer("ASSET-1", OTHER, "200")
    sale = await market.settlement.accept_offer(offer.id, BUYER)

    assert sale.listing_id is None
    assert sale.seller_address == BUYER
    assert sale.royalty_bps == 1000
    assert sale.collection_id == "COLL-1"
    assert await market.store.get_owner("ASSET-1") == OTHER


@pytest.mark.asyncio
async def test_accept_bid_waits_for_reserve(market):
    listing = await market.listings.create(english_spec(reserve_price=Decimal("50")))

    await market.bids.place_bid(listing.id, BIDDER, "30")
    with pytest.raises(ReserveNotMet):
        await market.settlement.accept_bid(listing.id, SELLER)

    await market.bids.place_bid(listing.id, OTHER, "60")
    sale = await market.settlement.accept_bid(listing.id, SELLER)
    assert sale.sale_price == Decimal("60")
    assert sale.buyer_address == OTHER


@pytest.mark.asyncio
async def test_accept_bid_races_buy_now(market, payments):
    listing = await market.listings.create(english_spec(buy_now_price=Decimal("500")))
    await market.bids.place_bid(listing.id, BIDDER, "20")

    results = await asyncio.gather(
        market.settlement.accept_bid(listing.id, SELLER),
        market.settlement.buy_now(listing.id, BUYER),
        return_exceptions=True
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], ListingAlreadySettled)
    assert len(await market.store.find_sales()) == 1
    assert len(payments.transfers) == 1


@pytest.mark.asyncio
async def test_accept_offer_races_buy_now(market, payments):
    listing = await market.listings.create(fixed_spec())
    offer = await market.bids.make_offer("ASSET-1", OTHER, "80")

    results = await asyncio.gather(
        market.settlement.accept_offer(offer.id, SELLER),
        market.settlement.buy_now(listing.id, BUYER),
        return_exceptions=True
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    # buy_now loses on the sold listing, accept_offer on the superseded offer
    assert isinstance(errors[0], (ListingAlreadySettled, OfferNotOpen))
    assert len(await market.store.find_sales()) == 1
    assert len(payments.transfers) == 1


@pytest.mark.asyncio
async def test_reconcile_skips_transfer_in_flight(market, payments):
    listing = await market.listings.create(fixed_spec())
    payments.delay = 0.3

    buying = asyncio.create_task(market.settlement.buy_now(listing.id, BUYER))
    await asyncio.sleep(0.05)
    counts = await market.payouts.reconcile_pending()
    assert counts["retried"] == 0

    sale = await buying
    assert sale.status == SaleStatus.SETTLED
    assert payments.transfers == [(BUYER, SELLER, Decimal("92.5"), "USDC")]


@pytest.mark.asyncio
async def test_overdue_retry_of_transfer_in_flight_pays_once(market, payments, clock):
    listing = await market.listings.create(fixed_spec())
    payments.delay = 0.3

    buying = asyncio.create_task(market.settlement.buy_now(listing.id, BUYER))
    await asyncio.sleep(0.05)
    clock.advance(minutes=10)
    counts = await market.payouts.reconcile_pending()
    sale = await buying

    assert counts["settled"] == 1
    assert sale.status == SaleStatus.SETTLED
    assert len(payments.transfers) == 1
    assert (await market.store.get_sale(sale.id)).transfer_attempts == 2


@pytest.mark.asyncio
async def test_timed_out_transfer_that_landed_is_not_paid_again(settings, payments, clock):
    settings = dict(settings, collaborator_timeout=Decimal("0.1"))
    market = Marketplace(store=MemoryStore(), settings=settings, payments=payments, clock=clock)
    listing = await market.listings.create(fixed_spec())
    payments.delay = 0.3

    sale = await market.settlement.buy_now(listing.id, BUYER)
    assert sale.status == SaleStatus.PENDING_TRANSFER
    assert "timed out" in sale.transfer_error

    # The abandoned call still completes at the executor
    await asyncio.sleep(0.4)
    assert len(payments.transfers) == 1

    clock.advance(hours=1)
    counts = await market.payouts.reconcile_pending()
    assert counts["settled"] == 1

    settled = await market.store.get_sale(sale.id)
    assert settled.transfer_signature == "sig_1"
    assert len(payments.transfers) == 1
