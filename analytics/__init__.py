"""Activity and analytics projections.

The projector subscribes to the settlement coordinator's events and keeps
rebuildable aggregates: sale history per asset and per collection. It never
writes to the store; ``rebuild()`` regenerates every aggregate from stored
sales, so discarding the projector loses nothing.

The activity feed merges the coordinator's stored events (sale, cancel, expire)
with listing, bid and offer entries derived from live store state.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import auctions
from errors import ValidationError
from models import (
    Activity, ActivityType, Currency, ListingStatus, PricePoint, Sale,
    SaleStatus, utcnow
)

logger = logging.getLogger(__name__)

PERIODS = {
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
    'all': None,
}

TRENDING_VOLUME_WEIGHT = 10
TRENDING_SALES_WEIGHT = 5


def _money(value: Decimal) -> str:
    return str(auctions.quantize(value))


class ActivityProjector:
    """Read-side projections over listings, bids, offers and sales.

    Sales settled by this process arrive through apply(). Sales committed by
    other processes sharing the store are picked up by a full rebuild once the
    aggregates are older than ``refresh_interval`` seconds.
    """

    def __init__(
        self,
        store,
        clock: Callable[[], datetime] = utcnow,
        refresh_interval: Optional[int] = None
    ):
        self.store = store
        self.clock = clock
        self.refresh_interval = (
            timedelta(seconds=refresh_interval) if refresh_interval is not None else None
        )
        self._sales: Dict[str, Sale] = {}
        self._by_asset: Dict[str, List[Sale]] = defaultdict(list)
        self._by_collection: Dict[str, List[Sale]] = defaultdict(list)
        self._built_at: Optional[datetime] = None

    def apply(self, activity: Activity, sale: Optional[Sale] = None) -> None:
        """Fold a committed coordinator event into the aggregates."""
        if sale is None or sale.id in self._sales:
            return
        self._sales[sale.id] = sale
        self._by_asset[sale.asset_id].append(sale)
        if sale.collection_id:
            self._by_collection[sale.collection_id].append(sale)

    async def rebuild(self) -> None:
        """Discard the aggregates and regenerate them from stored sales."""
        sales = sorted(await self.store.find_sales(), key=lambda s: s.settled_at)
        self._sales.clear()
        self._by_asset.clear()
        self._by_collection.clear()
        for sale in sales:
            self.apply(None, sale)
        self._built_at = self.clock()
        logger.debug(f"Rebuilt analytics from {len(self._sales)} sales")

    def is_stale(self) -> bool:
        if self._built_at is None:
            return True
        if self.refresh_interval is None:
            return False
        return self.clock() - self._built_at >= self.refresh_interval

    async def _ensure_built(self) -> None:
        if self.is_stale():
            await self.rebuild()

    async def activity(
        self,
        asset_id: Optional[str] = None,
        collection_id: Optional[str] = None,
        address: Optional[str] = None,
        type: Optional[ActivityType] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Dict[str, Any]:
        """Activity feed, newest first.

        Args:
            asset_id: Only events for this asset
            collection_id: Only events in this collection
            address: Only events where the address is sender or recipient
            type: Only events of this type
            limit: Maximum number of events to return
            offset: Number of events to skip
        """
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")

        events = await self.store.find_activities()
        events.extend(await self._derived_events())

        def keep(event: Activity) -> bool:
            if asset_id is not None and event.asset_id != asset_id:
                return False
            if collection_id is not None and event.collection_id != collection_id:
                return False
            if address is not None and address not in (event.from_address, event.to_address):
                return False
            if type is not None and event.type != type:
                return False
            return True

        events = sorted(filter(keep, events), key=lambda e: e.created_at, reverse=True)
        page = events[offset:offset + limit]
        return {
            'activities': [event.model_dump(mode='json') for event in page],
            'total': len(events),
            'limit': limit,
            'offset': offset,
            'has_more': offset + len(page) < len(events),
        }

    async def _derived_events(self) -> List[Activity]:
        events = []
        listings = {listing.id: listing for listing in await self.store.find_listings()}

        for listing in listings.values():
            events.append(Activity(
                id=f"ACT_{listing.id}",
                type=ActivityType.LISTING,
                asset_id=listing.asset_id,
                collection_id=listing.collection_id,
                listing_id=listing.id,
                from_address=listing.seller_address,
                price=listing.price if listing.price is not None else listing.starting_price,
                currency=listing.currency,
                created_at=listing.created_at
            ))

        for bid in await self.store.find_bids():
            listing = listings.get(bid.listing_id)
            if listing is None:
                continue
            events.append(Activity(
                id=f"ACT_{bid.id}",
                type=ActivityType.BID,
                asset_id=listing.asset_id,
                collection_id=listing.collection_id,
                listing_id=listing.id,
                from_address=bid.bidder_address,
                to_address=listing.seller_address,
                price=bid.amount,
                currency=bid.currency,
                created_at=bid.placed_at
            ))

        for offer in await self.store.find_offers():
            events.append(Activity(
                id=f"ACT_{offer.id}",
                type=ActivityType.OFFER,
                asset_id=offer.asset_id,
                from_address=offer.buyer_address,
                price=offer.amount,
                currency=offer.currency,
                created_at=offer.created_at
            ))

        return events

    async def price_history(self, asset_id: str, days: Optional[int] = 30) -> List[PricePoint]:
        """Chronological sale prices of an asset over the last ``days`` days."""
        if days is not None and days <= 0:
            raise ValidationError("days must be positive")
        await self._ensure_built()
        since = self.clock() - timedelta(days=days) if days is not None else None
        return [
            PricePoint(
                price=sale.sale_price,
                currency=sale.currency,
                timestamp=sale.settled_at,
                sale_id=sale.id
            )
            for sale in sorted(self._by_asset.get(asset_id, []), key=lambda s: s.settled_at)
            if since is None or sale.settled_at >= since
        ]

    def _window(self, sales: List[Sale], period: Optional[timedelta], now: datetime) -> List[Sale]:
        if period is None:
            return list(sales)
        return [sale for sale in sales if sale.settled_at >= now - period]

    async def stats(self) -> Dict[str, Any]:
        """Marketplace-wide statistics."""
        await self._ensure_built()
        now = self.clock()
        sales = list(self._sales.values())

        active = [
            listing for listing in await self.store.find_listings(status=ListingStatus.ACTIVE)
            if not auctions.is_ended(listing, now)
        ]

        volume: Dict[str, Dict[str, str]] = {}
        for name, period in PERIODS.items():
            totals: Dict[str, Decimal] = defaultdict(Decimal)
            for sale in self._window(sales, period, now):
                totals[sale.currency.value] += sale.sale_price
            volume[name] = {currency: _money(total) for currency, total in totals.items()}

        average: Dict[str, str] = {}
        for currency in Currency:
            prices = [sale.sale_price for sale in sales if sale.currency == currency]
            if prices:
                average[currency.value] = _money(sum(prices) / len(prices))

        users = set()
        for listing in await self.store.find_listings():
            users.add(listing.seller_address)
        for sale in sales:
            users.add(sale.buyer_address)
            users.add(sale.seller_address)
        for bid in await self.store.find_bids():
            users.add(bid.bidder_address)
        for offer in await self.store.find_offers():
            users.add(offer.buyer_address)

        pending = await self.store.find_sales(status=SaleStatus.PENDING_TRANSFER)

        return {
            'active_listings': len(active),
            'total_sales': len(sales),
            'sales_24h': len(self._window(sales, PERIODS['24h'], now)),
            'volume': volume,
            'avg_sale_price': average,
            'total_users': len(users),
            'pending_transfers': len(pending),
        }

    def _collection_stats(self, collection_id: str, period: Optional[timedelta], now: datetime) -> Dict[str, Any]:
        sales = self._window(self._by_collection.get(collection_id, []), period, now)
        volume = sum((sale.sale_price for sale in sales), Decimal(0))
        return {
            'collection_id': collection_id,
            'volume': volume,
            'sales': len(sales),
            'floor_price': min((sale.sale_price for sale in sales), default=None),
        }

    async def trending_collections(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Collections ranked by volume_24h x 10 + sales_24h x 5."""
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        await self._ensure_built()
        now = self.clock()

        results = []
        for collection_id in self._by_collection:
            stats = self._collection_stats(collection_id, PERIODS['24h'], now)
            score = stats['volume'] * TRENDING_VOLUME_WEIGHT + stats['sales'] * TRENDING_SALES_WEIGHT
            results.append({
                'collection_id': collection_id,
                'volume_24h': _money(stats['volume']),
                'sales_24h': stats['sales'],
                'trending_score': _money(score),
                '_score': score,
            })

        results.sort(key=lambda item: item['_score'], reverse=True)
        for item in results:
            del item['_score']
        return results[:limit]

    async def top_collections(self, period: str = '24h', limit: int = 10) -> List[Dict[str, Any]]:
        """Collections ranked by sale volume in ``period`` (24h, 7d, 30d or all)."""
        if period not in PERIODS:
            raise ValidationError(f"period must be one of {', '.join(PERIODS)}")
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        await self._ensure_built()
        now = self.clock()

        results = [
            self._collection_stats(collection_id, PERIODS[period], now)
            for collection_id in self._by_collection
        ]
        results = [item for item in results if item['sales'] > 0]
        results.sort(key=lambda item: item['volume'], reverse=True)
        return [
            {
                'collection_id': item['collection_id'],
                'period': period,
                'volume': _money(item['volume']),
                'sales': item['sales'],
                'floor_price': _money(item['floor_price']) if item['floor_price'] is not None else None,
            }
            for item in results[:limit]
        ]


__all__ = ['ActivityProjector', 'PERIODS']
