"""System health endpoint."""

from fastapi import APIRouter, Depends

from models import ListingStatus
from ..responses import envelope, get_market

# Create router
router = APIRouter(tags=["System"])


@router.get("/health")
async def health(market=Depends(get_market)):
    """Report that the engine is up and which store backs it."""
    active = await market.store.find_listings(status=ListingStatus.ACTIVE)
    pending = await market.payouts.pending_transfers()
    return envelope({
        'status': 'healthy',
        'store': market.settings['store_backend'],
        'active_listings': len(active),
        'pending_transfers': len(pending),
    })
