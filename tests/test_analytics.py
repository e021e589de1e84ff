"""Tests for activity and analytics projections."""

from decimal import Decimal

import pytest

from analytics import ActivityProjector
from marketplace import Marketplace
from errors import ValidationError
from models import ActivityType

from conftest import BIDDER, BUYER, OTHER, english_spec, fixed_spec


async def sell(market, asset_id, price, collection_id="COLL-1", buyer=BUYER):
    listing = await market.listings.create(
        fixed_spec(asset_id=asset_id, price=price, collection_id=collection_id)
    )
    return await market.settlement.buy_now(listing.id, buyer)


@pytest.mark.asyncio
async def test_stats(market, clock):
    await sell(market, "A-1", "100")
    await sell(market, "A-2", "50", buyer=OTHER)
    await market.listings.create(fixed_spec(asset_id="A-3", price="10"))

    clock.advance(days=2)
    await sell(market, "A-4", "30")

    stats = await market.analytics.stats()
    assert stats["active_listings"] == 1
    assert stats["total_sales"] == 3
    assert stats["sales_24h"] == 1
    assert Decimal(stats["volume"]["24h"]["USDC"]) == Decimal("30")
    assert Decimal(stats["volume"]["7d"]["USDC"]) == Decimal("180")
    assert Decimal(stats["avg_sale_price"]["USDC"]) == Decimal("60")
    assert stats["total_users"] == 3
    assert stats["pending_transfers"] == 0


@pytest.mark.asyncio
async def test_trending_collections(market):
    await sell(market, "A-1", "10", collection_id="SMALL")
    await sell(market, "A-2", "100", collection_id="BIG")
    await sell(market, "A-3", "5", collection_id="SMALL")

    trending = await market.analytics.trending_collections(limit=5)
    assert [item["collection_id"] for item in trending] == ["BIG", "SMALL"]
    # 100 x 10 + 1 x 5
    assert Decimal(trending[0]["trending_score"]) == Decimal("1005")
    assert trending[1]["sales_24h"] == 2

    top = await market.analytics.top_collections(period="all", limit=1)
    assert len(top) == 1
    assert top[0]["collection_id"] == "BIG"

    with pytest.raises(ValidationError):
        await market.analytics.top_collections(period="1y")


@pytest.mark.asyncio
async def test_price_history(market, clock):
    first = await market.listings.create(fixed_spec(asset_id="A-1", price="100"))
    await market.settlement.buy_now(first.id, BUYER)

    clock.advance(days=40)
    relist = await market.listings.create(fixed_spec(asset_id="A-1", price="150", seller_address=BUYER))
    await market.settlement.buy_now(relist.id, OTHER)

    recent = await market.analytics.price_history("A-1")
    assert [point.price for point in recent] == [Decimal("150")]

    everything = await market.analytics.price_history("A-1", days=60)
    assert [point.price for point in everything] == [Decimal("100"), Decimal("150")]

    with pytest.raises(ValidationError):
        await market.analytics.price_history("A-1", days=0)


@pytest.mark.asyncio
async def test_activity_feed(market, clock):
    auction = await market.listings.create(english_spec(asset_id="A-E"))
    clock.advance(minutes=1)
    await market.bids.place_bid(auction.id, BIDDER, "20")
    clock.advance(minutes=1)
    await sell(market, "A-1", "100")

    feed = await market.analytics.activity()
    types = [event["type"] for event in feed["activities"]]
    assert types[0] == "sale"
    assert set(types) == {"listing", "bid", "sale"}
    assert feed["total"] == 4

    bids = await market.analytics.activity(type=ActivityType.BID)
    assert bids["total"] == 1
    assert bids["activities"][0]["from_address"] == BIDDER

    mine = await market.analytics.activity(address=BUYER)
    assert [event["type"] for event in mine["activities"]] == ["sale"]


@pytest.mark.asyncio
async def test_rebuild_matches_live_projection(market):
    await sell(market, "A-1", "100")
    await sell(market, "A-2", "40")
    live = await market.analytics.stats()

    fresh = ActivityProjector(market.store, clock=market.clock)
    await fresh.rebuild()
    assert await fresh.stats() == live


@pytest.mark.asyncio
async def test_sales_from_another_process_appear_after_refresh(market, settings, payments, clock):
    # Two engines sharing one store, as two API processes share a database
    other = Marketplace(store=market.store, settings=settings, payments=payments, clock=clock)
    await market.analytics.rebuild()
    await sell(other, "A-1", "100")

    assert (await market.analytics.stats())["total_sales"] == 0

    clock.advance(seconds=settings["analytics_refresh_interval"])
    assert (await market.analytics.stats())["total_sales"] == 1
    assert [point.price for point in await market.analytics.price_history("A-1")] == [Decimal("100")]
