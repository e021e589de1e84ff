"""Domain models for the marketplace engine.

All money values are Decimal and all timestamps are timezone-aware UTC datetimes.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate an opaque record id such as ``LST_3f9c...``."""
    return f"{prefix}_{uuid.uuid4().hex[:20].upper()}"


class ListingType(str, Enum):
    FIXED = 'fixed'
    ENGLISH = 'english_auction'
    DUTCH = 'dutch_auction'


class Currency(str, Enum):
    USDC = 'USDC'
    TOLA = 'TOLA'


class ListingStatus(str, Enum):
    ACTIVE = 'active'
    SOLD = 'sold'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


class BidStatus(str, Enum):
    ACTIVE = 'active'
    ACCEPTED = 'accepted'
    SUPERSEDED = 'superseded'
    VOID = 'void'


class OfferStatus(str, Enum):
    OPEN = 'open'
    ACCEPTED = 'accepted'
    EXPIRED = 'expired'
    WITHDRAWN = 'withdrawn'
    SUPERSEDED = 'superseded'


class SaleStatus(str, Enum):
    PENDING_TRANSFER = 'settled_pending_transfer'
    SETTLED = 'settled'


class ActivityType(str, Enum):
    LISTING = 'listing'
    BID = 'bid'
    OFFER = 'offer'
    SALE = 'sale'
    CANCEL = 'cancel'
    EXPIRE = 'expire'


TERMINAL_STATUSES = (ListingStatus.SOLD, ListingStatus.CANCELLED, ListingStatus.EXPIRED)
AUCTION_TYPES = (ListingType.ENGLISH, ListingType.DUTCH)


class ListingSpec(BaseModel):
    """Input for creating a listing. Business rules are checked by ListingManager."""
    asset_id: str
    seller_address: str
    type: ListingType = ListingType.FIXED
    currency: Currency = Currency.USDC
    price: Optional[Decimal] = None
    starting_price: Optional[Decimal] = None
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None
    ending_price: Optional[Decimal] = None
    price_drop_interval: Optional[int] = None
    ends_at: Optional[datetime] = None
    duration_hours: Optional[int] = None
    collection_id: Optional[str] = None
    royalty_bps: Optional[int] = None
    creator_address: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None


class Listing(BaseModel):
    id: str = Field(default_factory=lambda: new_id('LST'))
    asset_id: str
    seller_address: str
    type: ListingType
    currency: Currency = Currency.USDC
    status: ListingStatus = ListingStatus.ACTIVE
    price: Optional[Decimal] = None
    starting_price: Optional[Decimal] = None
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None
    ending_price: Optional[Decimal] = None
    price_drop_interval: Optional[int] = None  # minutes
    ends_at: Optional[datetime] = None
    collection_id: Optional[str] = None
    royalty_bps: int = 0
    creator_address: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None
    favorited_by: Set[str] = Field(default_factory=set)
    version: int = 0

    @property
    def is_auction(self) -> bool:
        return self.type in AUCTION_TYPES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Bid(BaseModel):
    id: str = Field(default_factory=lambda: new_id('BID'))
    listing_id: str
    bidder_address: str
    amount: Decimal
    currency: Currency = Currency.USDC
    placed_at: datetime = Field(default_factory=utcnow)
    bidder_name: Optional[str] = None
    status: BidStatus = BidStatus.ACTIVE


class Offer(BaseModel):
    id: str = Field(default_factory=lambda: new_id('OFR'))
    asset_id: str
    buyer_address: str
    amount: Decimal
    currency: Currency = Currency.USDC
    status: OfferStatus = OfferStatus.OPEN
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    buyer_name: Optional[str] = None


class Sale(BaseModel):
    id: str = Field(default_factory=lambda: new_id('SALE'))
    listing_id: Optional[str] = None
    offer_id: Optional[str] = None
    bid_id: Optional[str] = None
    asset_id: str
    buyer_address: str
    seller_address: str
    sale_price: Decimal
    currency: Currency
    collection_id: Optional[str] = None
    creator_address: Optional[str] = None
    royalty_bps: int
    royalty_amount: Decimal
    platform_fee: Decimal
    seller_proceeds: Decimal
    settled_at: datetime = Field(default_factory=utcnow)
    status: SaleStatus = SaleStatus.PENDING_TRANSFER
    transfer_signature: Optional[str] = None
    transfer_attempts: int = 0
    transfer_error: Optional[str] = None
    last_transfer_attempt: Optional[datetime] = None


class Activity(BaseModel):
    id: str = Field(default_factory=lambda: new_id('ACT'))
    type: ActivityType
    asset_id: str
    collection_id: Optional[str] = None
    listing_id: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[Currency] = None
    created_at: datetime = Field(default_factory=utcnow)


class PricePoint(BaseModel):
    price: Decimal
    currency: Currency
    timestamp: datetime
    sale_id: str


class Asset(BaseModel):
    """Storefront catalog entry used to decorate listings."""
    id: str
    name: str
    image: Optional[str] = None
    price: Optional[Decimal] = None
    collection_id: Optional[str] = None
    permalink: Optional[str] = None
    placeholder: bool = False


class BidPlacement(BaseModel):
    """Result of placing a bid. Dutch bids settle immediately and carry the sale."""
    bid: Bid
    sale: Optional[Sale] = None


__all__ = [
    'utcnow', 'new_id',
    'ListingType', 'Currency', 'ListingStatus', 'BidStatus', 'OfferStatus',
    'SaleStatus', 'ActivityType', 'TERMINAL_STATUSES', 'AUCTION_TYPES',
    'ListingSpec', 'Listing', 'Bid', 'Offer', 'Sale', 'Activity', 'PricePoint',
    'Asset', 'BidPlacement',
]
