"""Market data endpoints for activity, price history, statistics and collections."""

from typing import Optional

from fastapi import APIRouter, Depends

from models import ActivityType
from ..responses import envelope, get_market

# Create router
router = APIRouter(tags=["Market"])


@router.get("/activity")
async def get_activity(
    asset_id: Optional[str] = None,
    collection_id: Optional[str] = None,
    address: Optional[str] = None,
    type: Optional[ActivityType] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    market=Depends(get_market)
):
    """Activity feed, newest first."""
    limit = min(limit or market.settings['default_page_size'], market.settings['max_page_size'])
    return envelope(await market.analytics.activity(
        asset_id=asset_id,
        collection_id=collection_id,
        address=address,
        type=type,
        limit=limit,
        offset=offset
    ))


@router.get("/price-history/{asset_id}")
async def get_price_history(asset_id: str, days: int = 30, market=Depends(get_market)):
    """Sale prices of an asset over the last ``days`` days."""
    return envelope(await market.analytics.price_history(asset_id, days=days))


@router.get("/stats")
async def get_stats(market=Depends(get_market)):
    """Marketplace-wide statistics."""
    return envelope(await market.analytics.stats())


@router.get("/collections/trending")
async def get_trending_collections(limit: int = 10, market=Depends(get_market)):
    return envelope(await market.analytics.trending_collections(limit=limit))


@router.get("/collections/top")
async def get_top_collections(period: str = '24h', limit: int = 10, market=Depends(get_market)):
    return envelope(await market.analytics.top_collections(period=period, limit=limit))


@router.get("/sales/pending")
async def get_pending_sales(market=Depends(get_market)):
    """Sales whose payment transfer has not completed."""
    return envelope(await market.payouts.pending_transfers())
