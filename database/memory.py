"""In-process store backed by dictionaries.

Writers on the same asset are serialized with one ``asyncio.Lock`` per asset.
A transaction stages its writes and applies them in a single synchronous step at
commit, so no other coroutine can observe a partial settlement.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, Iterable, List, Optional, TypeVar

from pydantic import BaseModel

from models import (
    Activity, Bid, BidStatus, Currency, Listing, ListingStatus, ListingType,
    Offer, OfferStatus, Sale, SaleStatus
)
from .store import MarketStore, StoreTransaction

logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)


def _copy(record: Optional[M]) -> Optional[M]:
    return record.model_copy(deep=True) if record is not None else None


class MemoryTransaction(StoreTransaction):
    """Staged writes over a MemoryStore."""

    def __init__(self, store: 'MemoryStore'):
        self._store = store
        self._listings: Dict[str, Listing] = {}
        self._bids: Dict[str, Bid] = {}
        self._offers: Dict[str, Offer] = {}
        self._sales: Dict[str, Sale] = {}
        self._activities: List[Activity] = []
        self._owners: Dict[str, str] = {}

    def _merged(self, committed: Dict[str, M], staged: Dict[str, M]) -> Dict[str, M]:
        merged = dict(committed)
        merged.update(staged)
        return merged

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return _copy(self._merged(self._store._listings, self._listings).get(listing_id))

    async def get_active_listing(self, asset_id: str) -> Optional[Listing]:
        for listing in self._merged(self._store._listings, self._listings).values():
            if listing.asset_id == asset_id and listing.status == ListingStatus.ACTIVE:
                return _copy(listing)
        return None

    async def get_bids(self, listing_id: str) -> List[Bid]:
        bids = self._merged(self._store._bids, self._bids).values()
        return [_copy(bid) for bid in bids if bid.listing_id == listing_id]

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        return _copy(self._merged(self._store._offers, self._offers).get(offer_id))

    async def get_open_offers(self, asset_id: str) -> List[Offer]:
        offers = self._merged(self._store._offers, self._offers).values()
        return [
            _copy(offer) for offer in offers
            if offer.asset_id == asset_id and offer.status == OfferStatus.OPEN
        ]

    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        return _copy(self._merged(self._store._sales, self._sales).get(sale_id))

    async def get_owner(self, asset_id: str) -> Optional[str]:
        return self._owners.get(asset_id, self._store._owners.get(asset_id))

    async def last_sale(self, asset_id: str) -> Optional[Sale]:
        sales = [
            sale for sale in self._merged(self._store._sales, self._sales).values()
            if sale.asset_id == asset_id
        ]
        if not sales:
            return None
        return _copy(max(sales, key=lambda sale: sale.settled_at))

    async def save_listing(self, listing: Listing) -> None:
        self._listings[listing.id] = _copy(listing)

    async def save_bid(self, bid: Bid) -> None:
        self._bids[bid.id] = _copy(bid)

    async def save_offer(self, offer: Offer) -> None:
        self._offers[offer.id] = _copy(offer)

    async def save_sale(self, sale: Sale) -> None:
        self._sales[sale.id] = _copy(sale)

    async def add_activity(self, activity: Activity) -> None:
        self._activities.append(_copy(activity))

    async def set_owner(self, asset_id: str, address: str) -> None:
        self._owners[asset_id] = address

    def commit(self) -> None:
        """Apply every staged write. Must not await."""
        self._store._listings.update(self._listings)
        self._store._bids.update(self._bids)
        self._store._offers.update(self._offers)
        self._store._sales.update(self._sales)
        self._store._activities.extend(self._activities)
        self._store._owners.update(self._owners)


class MemoryStore(MarketStore):
    """Dictionary-backed MarketStore for single-process deployments and tests."""

    def __init__(self):
        self._listings: Dict[str, Listing] = {}
        self._bids: Dict[str, Bid] = {}
        self._offers: Dict[str, Offer] = {}
        self._sales: Dict[str, Sale] = {}
        self._activities: List[Activity] = []
        self._owners: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def transaction(self, key: str) -> AsyncIterator[MemoryTransaction]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            tx = MemoryTransaction(self)
            yield tx
            tx.commit()

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return _copy(self._listings.get(listing_id))

    async def find_listings(
        self,
        status: Optional[ListingStatus] = None,
        type: Optional[ListingType] = None,
        collection_id: Optional[str] = None,
        seller_address: Optional[str] = None,
        currency: Optional[Currency] = None,
        asset_id: Optional[str] = None
    ) -> List[Listing]:
        results = []
        for listing in self._listings.values():
            if status is not None and listing.status != status:
                continue
            if type is not None and listing.type != type:
                continue
            if collection_id is not None and listing.collection_id != collection_id:
                continue
            if seller_address is not None and listing.seller_address != seller_address:
                continue
            if currency is not None and listing.currency != currency:
                continue
            if asset_id is not None and listing.asset_id != asset_id:
                continue
            results.append(_copy(listing))
        return results

    async def get_bids(self, listing_id: str) -> List[Bid]:
        return [_copy(bid) for bid in self._bids.values() if bid.listing_id == listing_id]

    async def find_bids(
        self,
        bidder_address: Optional[str] = None,
        status: Optional[BidStatus] = None
    ) -> List[Bid]:
        return [
            _copy(bid) for bid in self._bids.values()
            if (bidder_address is None or bid.bidder_address == bidder_address)
            and (status is None or bid.status == status)
        ]

    async def highest_bids(self, listing_ids: Iterable[str]) -> Dict[str, Decimal]:
        wanted = set(listing_ids)
        highest: Dict[str, Decimal] = {}
        for bid in self._bids.values():
            if bid.listing_id not in wanted or bid.status != BidStatus.ACTIVE:
                continue
            if bid.amount > highest.get(bid.listing_id, Decimal(0)):
                highest[bid.listing_id] = bid.amount
        return highest

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        return _copy(self._offers.get(offer_id))

    async def find_offers(
        self,
        asset_id: Optional[str] = None,
        buyer_address: Optional[str] = None,
        status: Optional[OfferStatus] = None
    ) -> List[Offer]:
        return [
            _copy(offer) for offer in self._offers.values()
            if (asset_id is None or offer.asset_id == asset_id)
            and (buyer_address is None or offer.buyer_address == buyer_address)
            and (status is None or offer.status == status)
        ]

    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        return _copy(self._sales.get(sale_id))

    async def find_sales(
        self,
        status: Optional[SaleStatus] = None,
        asset_id: Optional[str] = None
    ) -> List[Sale]:
        return [
            _copy(sale) for sale in self._sales.values()
            if (status is None or sale.status == status)
            and (asset_id is None or sale.asset_id == asset_id)
        ]

    async def find_activities(self) -> List[Activity]:
        return [_copy(activity) for activity in self._activities]

    async def get_owner(self, asset_id: str) -> Optional[str]:
        return self._owners.get(asset_id)
