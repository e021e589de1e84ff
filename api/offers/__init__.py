"""Offer endpoints."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from models import Currency, OfferStatus
from ..responses import envelope, get_market

# Create router
router = APIRouter(
    prefix="/offers",
    tags=["Offers"]
)


class MakeOfferRequest(BaseModel):
    """Request model for making an offer."""
    asset_id: str
    buyer_address: str
    amount: Decimal
    currency: Currency = Currency.USDC
    duration_hours: Optional[int] = None
    buyer_name: Optional[str] = None


class AcceptOfferRequest(BaseModel):
    seller_address: str


class WithdrawOfferRequest(BaseModel):
    buyer_address: str


@router.post("", status_code=status.HTTP_201_CREATED)
async def make_offer(request: MakeOfferRequest, market=Depends(get_market)):
    """Make an offer on an asset, listed or not."""
    return envelope(await market.bids.make_offer(
        request.asset_id,
        request.buyer_address,
        request.amount,
        currency=request.currency,
        duration_hours=request.duration_hours,
        buyer_name=request.buyer_name
    ))


@router.get("")
async def list_offers(
    asset_id: Optional[str] = None,
    buyer_address: Optional[str] = None,
    status: Optional[OfferStatus] = None,
    market=Depends(get_market)
):
    return envelope(await market.bids.list_offers(
        asset_id=asset_id, buyer_address=buyer_address, status=status
    ))


@router.get("/{offer_id}")
async def get_offer(offer_id: str, market=Depends(get_market)):
    return envelope(await market.bids.get_offer(offer_id))


@router.post("/{offer_id}/accept")
async def accept_offer(offer_id: str, request: AcceptOfferRequest, market=Depends(get_market)):
    """Accept an offer as the asset's current owner."""
    return envelope(await market.settlement.accept_offer(offer_id, request.seller_address))


@router.post("/{offer_id}/withdraw")
async def withdraw_offer(offer_id: str, request: WithdrawOfferRequest, market=Depends(get_market)):
    return envelope(await market.bids.withdraw_offer(offer_id, request.buyer_address))
