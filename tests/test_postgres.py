"""Tests for the PostgreSQL store. Requires MARKET_TEST_DB_URL."""

import asyncio
import os
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio

from database import PostgresStore, close as close_db, create_store
from errors import ListingAlreadySettled
from marketplace import Marketplace
from models import BidStatus, ListingStatus, SaleStatus

from conftest import BIDDER, BUYER, OTHER, english_spec, fixed_spec

DB_URL = os.environ.get("MARKET_TEST_DB_URL")

pytestmark = pytest.mark.skipif(not DB_URL, reason="MARKET_TEST_DB_URL not set")


@pytest_asyncio.fixture
async def pg_market(settings, payments, clock):
    """Create a marketplace on a PostgresStore."""
    store = PostgresStore(db_url=DB_URL)
    market = Marketplace(store=store, settings=settings, payments=payments, clock=clock)
    await market.start()
    yield market
    await close_db()


def asset_id():
    return f"PG-{uuid.uuid4().hex[:12]}"


def test_create_store_selects_backend(settings):
    settings = dict(settings, store_backend="postgres", db_url=DB_URL)
    assert isinstance(create_store(settings), PostgresStore)


@pytest.mark.asyncio
async def test_listing_round_trip(pg_market):
    listing = await pg_market.listings.create(fixed_spec(asset_id=asset_id(), collection_id="PG"))
    await pg_market.listings.toggle_favorite(listing.id, OTHER)

    stored = await pg_market.store.get_listing(listing.id)
    assert stored.price == Decimal("100")
    assert stored.favorited_by == {OTHER}
    assert stored.status == ListingStatus.ACTIVE


@pytest.mark.asyncio
async def test_concurrent_buys_settle_once(pg_market):
    listing = await pg_market.listings.create(fixed_spec(asset_id=asset_id()))

    results = await asyncio.gather(
        pg_market.settlement.buy_now(listing.id, BUYER),
        pg_market.settlement.buy_now(listing.id, OTHER),
        return_exceptions=True
    )

    assert sum(1 for r in results if isinstance(r, ListingAlreadySettled)) == 1
    sales = await pg_market.store.find_sales(asset_id=listing.asset_id)
    assert len(sales) == 1
    assert sales[0].status == SaleStatus.SETTLED


@pytest.mark.asyncio
async def test_bids_and_settlement(pg_market):
    listing = await pg_market.listings.create(english_spec(asset_id=asset_id()))
    await pg_market.bids.place_bid(listing.id, BIDDER, "20")
    await pg_market.bids.place_bid(listing.id, OTHER, "30")

    sale = await pg_market.settlement.accept_bid(listing.id, listing.seller_address)
    assert sale.buyer_address == OTHER

    statuses = {bid.bidder_address: bid.status for bid in await pg_market.store.get_bids(listing.id)}
    assert statuses == {OTHER: BidStatus.ACCEPTED, BIDDER: BidStatus.SUPERSEDED}
    assert await pg_market.store.get_owner(listing.asset_id) == OTHER
