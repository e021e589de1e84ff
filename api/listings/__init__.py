"""Listing endpoints: create, browse, cancel, bid, buy and favorite."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel

from errors import ValidationError
from models import Currency, ListingSpec, ListingStatus, ListingType
from ..responses import envelope, get_market

# Create router
router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)


class BidRequest(BaseModel):
    """Request model for placing a bid."""
    bidder_address: str
    amount: Decimal
    bidder_name: Optional[str] = None


class BuyRequest(BaseModel):
    """Request model for buying a listing."""
    buyer_address: str


class SellerRequest(BaseModel):
    """Request model for seller actions."""
    seller_address: str


class FavoriteRequest(BaseModel):
    """Request model for toggling a favorite."""
    address: str


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_listing(spec: ListingSpec, market=Depends(get_market)):
    """Create a fixed price, English auction or Dutch auction listing."""
    listing = await market.listings.create(spec)
    return envelope(await market.listings.view(listing))


@router.get("")
async def get_listings(
    status: Optional[ListingStatus] = None,
    type: Optional[ListingType] = None,
    collection_id: Optional[str] = None,
    seller_address: Optional[str] = None,
    currency: Optional[Currency] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    sort_by: str = Query('created', description="price, created or ending"),
    sort_order: Optional[str] = Query(None, description="asc or desc"),
    limit: Optional[int] = None,
    offset: int = 0,
    market=Depends(get_market)
):
    """Browse listings with filters, sorting and pagination."""
    return envelope(await market.listings.list(
        status=status,
        type=type,
        collection_id=collection_id,
        seller_address=seller_address,
        currency=currency,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset
    ))


@router.get("/{listing_id}")
async def get_listing(listing_id: str, market=Depends(get_market)):
    """Get a listing, decorated with storefront metadata when available."""
    listing = await market.listings.get(listing_id)
    view = await market.listings.view(listing)
    if market.catalog is not None:
        view['asset'] = await market.catalog.lookup(listing.asset_id)
    return envelope(view)


@router.delete("/{listing_id}")
async def cancel_listing(
    listing_id: str,
    seller_address: Optional[str] = None,
    body: Optional[SellerRequest] = Body(None),
    market=Depends(get_market)
):
    """Cancel a listing. The seller address may come from the body or query."""
    requester = body.seller_address if body is not None else seller_address
    if not requester:
        raise ValidationError("seller_address is required")
    listing = await market.listings.cancel(listing_id, requester)
    return envelope(await market.listings.view(listing))


@router.post("/{listing_id}/bid")
async def place_bid(listing_id: str, request: BidRequest, market=Depends(get_market)):
    """Place a bid. Dutch auction bids buy the listing immediately."""
    return envelope(await market.bids.place_bid(
        listing_id,
        request.bidder_address,
        request.amount,
        bidder_name=request.bidder_name
    ))


@router.post("/{listing_id}/buy")
async def buy_listing(listing_id: str, request: BuyRequest, market=Depends(get_market)):
    """Buy a listing at its buy-now price."""
    return envelope(await market.settlement.buy_now(listing_id, request.buyer_address))


@router.post("/{listing_id}/accept-bid")
async def accept_bid(listing_id: str, request: SellerRequest, market=Depends(get_market)):
    """Accept the highest bid on an English auction."""
    return envelope(await market.settlement.accept_bid(listing_id, request.seller_address))


@router.post("/{listing_id}/favorite")
async def toggle_favorite(listing_id: str, request: FavoriteRequest, market=Depends(get_market)):
    """Toggle a favorite for the given address."""
    return envelope(await market.listings.toggle_favorite(listing_id, request.address))


@router.get("/{listing_id}/bids")
async def get_bids(listing_id: str, market=Depends(get_market)):
    """Bids on a listing, highest first."""
    return envelope(await market.bids.list_bids(listing_id))
