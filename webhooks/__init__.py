"""Storefront webhook ingestion.

Incoming events are validated at the boundary as a tagged union keyed by
``type`` and dispatched into the engine:
- ``product.listed``: create a fixed price listing
- ``order.paid``: buy a listing for the paying customer
- ``offer.created``: record an offer on an asset
- ``product.published``: invalidate the storefront catalog cache
"""
import logging
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Deque, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from models import Currency, ListingSpec, ListingType, utcnow

logger = logging.getLogger(__name__)

EVENT_LOG_SIZE = 500


class ProductListedData(BaseModel):
    asset_id: str
    seller_address: str
    price: Decimal
    currency: Currency = Currency.USDC
    collection_id: Optional[str] = None
    royalty_bps: Optional[int] = None
    creator_address: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None


class OrderPaidData(BaseModel):
    listing_id: str
    buyer_address: str
    order_id: Optional[str] = None


class OfferCreatedData(BaseModel):
    asset_id: str
    buyer_address: str
    amount: Decimal
    currency: Currency = Currency.USDC
    duration_hours: Optional[int] = None
    buyer_name: Optional[str] = None


class ProductPublishedData(BaseModel):
    product_id: Optional[str] = None


class _Event(BaseModel):
    id: Optional[str] = None
    timestamp: Optional[datetime] = None


class ProductListed(_Event):
    type: Literal['product.listed']
    data: ProductListedData


class OrderPaid(_Event):
    type: Literal['order.paid']
    data: OrderPaidData


class OfferCreated(_Event):
    type: Literal['offer.created']
    data: OfferCreatedData


class ProductPublished(_Event):
    type: Literal['product.published']
    data: ProductPublishedData = Field(default_factory=ProductPublishedData)


WebhookEvent = Annotated[
    Union[ProductListed, OrderPaid, OfferCreated, ProductPublished],
    Field(discriminator='type')
]

_event_adapter = TypeAdapter(WebhookEvent)


def parse_event(payload: Any) -> WebhookEvent:
    """Validate a raw payload into one of the webhook event variants.

    Raises:
        ValidationError: If the type is unknown or the payload is malformed
    """
    try:
        return _event_adapter.validate_python(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = '.'.join(str(part) for part in first['loc'])
        raise ValidationError(f"Invalid webhook event at {location or 'payload'}: {first['msg']}") from e


class WebhookProcessor:
    """Dispatches validated webhook events into the marketplace."""

    def __init__(self, market):
        self.market = market
        self.events: Deque[Dict[str, Any]] = deque(maxlen=EVENT_LOG_SIZE)

    async def handle(self, payload: Any) -> Dict[str, Any]:
        """Validate and process one event.

        Returns:
            Dict with the event type, the action taken and its result data
        """
        event = parse_event(payload)

        if isinstance(event, ProductListed):
            data = event.data
            listing = await self.market.listings.create(ListingSpec(
                asset_id=data.asset_id,
                seller_address=data.seller_address,
                type=ListingType.FIXED,
                currency=data.currency,
                price=data.price,
                collection_id=data.collection_id,
                royalty_bps=data.royalty_bps,
                creator_address=data.creator_address,
                name=data.name,
                image=data.image
            ))
            result = {'action_taken': 'listing_created', 'data': listing.model_dump(mode='json')}

        elif isinstance(event, OrderPaid):
            sale = await self.market.settlement.buy_now(event.data.listing_id, event.data.buyer_address)
            result = {'action_taken': 'listing_sold', 'data': sale.model_dump(mode='json')}

        elif isinstance(event, OfferCreated):
            data = event.data
            offer = await self.market.bids.make_offer(
                data.asset_id,
                data.buyer_address,
                data.amount,
                currency=data.currency,
                duration_hours=data.duration_hours,
                buyer_name=data.buyer_name
            )
            result = {'action_taken': 'offer_created', 'data': offer.model_dump(mode='json')}

        else:
            if self.market.catalog is not None:
                self.market.catalog.invalidate()
            result = {'action_taken': 'catalog_invalidated', 'data': {'product_id': event.data.product_id}}

        logger.info(f"Processed webhook {event.type} ({event.id or 'no id'}): {result['action_taken']}")
        self.events.append({
            'id': event.id,
            'type': event.type,
            'action_taken': result['action_taken'],
            'processed_at': utcnow().isoformat(),
        })
        return {'event': event.type, **result}


__all__ = [
    'WebhookEvent', 'WebhookProcessor', 'parse_event',
    'ProductListed', 'OrderPaid', 'OfferCreated', 'ProductPublished',
]
