"""Storage interface for the marketplace engine.

A ``MarketStore`` exposes plain reads plus ``transaction(key)``, an async context
manager that serializes writers on ``key`` (an asset id) and hands out a
``StoreTransaction``. Everything written through the transaction becomes visible
together when the block exits cleanly and is discarded if it raises, so readers
never observe a half-applied settlement.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import AsyncContextManager, Dict, Iterable, List, Optional

from models import (
    Activity, Bid, BidStatus, Currency, Listing, ListingStatus, ListingType,
    Offer, OfferStatus, Sale, SaleStatus
)


class StoreTransaction(ABC):
    """Locked unit of work. Reads see this transaction's own pending writes."""

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]: ...

    @abstractmethod
    async def get_active_listing(self, asset_id: str) -> Optional[Listing]: ...

    @abstractmethod
    async def get_bids(self, listing_id: str) -> List[Bid]: ...

    @abstractmethod
    async def get_offer(self, offer_id: str) -> Optional[Offer]: ...

    @abstractmethod
    async def get_open_offers(self, asset_id: str) -> List[Offer]: ...

    @abstractmethod
    async def get_sale(self, sale_id: str) -> Optional[Sale]: ...

    @abstractmethod
    async def get_owner(self, asset_id: str) -> Optional[str]: ...

    @abstractmethod
    async def last_sale(self, asset_id: str) -> Optional[Sale]: ...

    @abstractmethod
    async def save_listing(self, listing: Listing) -> None: ...

    @abstractmethod
    async def save_bid(self, bid: Bid) -> None: ...

    @abstractmethod
    async def save_offer(self, offer: Offer) -> None: ...

    @abstractmethod
    async def save_sale(self, sale: Sale) -> None: ...

    @abstractmethod
    async def add_activity(self, activity: Activity) -> None: ...

    @abstractmethod
    async def set_owner(self, asset_id: str, address: str) -> None: ...


class MarketStore(ABC):
    """Persistent home of listings, bids, offers, sales, activity and asset owners."""

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    def transaction(self, key: str) -> AsyncContextManager[StoreTransaction]:
        """Lock ``key`` and open a unit of work that commits on clean exit."""

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]: ...

    @abstractmethod
    async def find_listings(
        self,
        status: Optional[ListingStatus] = None,
        type: Optional[ListingType] = None,
        collection_id: Optional[str] = None,
        seller_address: Optional[str] = None,
        currency: Optional[Currency] = None,
        asset_id: Optional[str] = None
    ) -> List[Listing]: ...

    @abstractmethod
    async def get_bids(self, listing_id: str) -> List[Bid]: ...

    @abstractmethod
    async def find_bids(
        self,
        bidder_address: Optional[str] = None,
        status: Optional[BidStatus] = None
    ) -> List[Bid]: ...

    @abstractmethod
    async def highest_bids(self, listing_ids: Iterable[str]) -> Dict[str, Decimal]:
        """Map listing id to its highest active bid amount."""

    @abstractmethod
    async def get_offer(self, offer_id: str) -> Optional[Offer]: ...

    @abstractmethod
    async def find_offers(
        self,
        asset_id: Optional[str] = None,
        buyer_address: Optional[str] = None,
        status: Optional[OfferStatus] = None
    ) -> List[Offer]: ...

    @abstractmethod
    async def get_sale(self, sale_id: str) -> Optional[Sale]: ...

    @abstractmethod
    async def find_sales(
        self,
        status: Optional[SaleStatus] = None,
        asset_id: Optional[str] = None
    ) -> List[Sale]: ...

    @abstractmethod
    async def find_activities(self) -> List[Activity]: ...

    @abstractmethod
    async def get_owner(self, asset_id: str) -> Optional[str]: ...
