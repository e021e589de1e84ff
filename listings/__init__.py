"""Listings module for managing marketplace listings.

This module provides functionality for:
- Creating fixed price, English auction and Dutch auction listings
- Looking up and searching listings
- Cancelling listings through the settlement coordinator
- Toggling favorites
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from config import settings_conf
from errors import (
    AssetAlreadyListed, ListingNotFoundError, UnauthorizedError, ValidationError
)
from models import (
    Currency, Listing, ListingSpec, ListingStatus, ListingType, utcnow
)
from .search import search
from .views import listing_view

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(
        self,
        store,
        settlement,
        settings: Optional[Dict[str, Any]] = None,
        catalog=None,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize the listing manager.

        Args:
            store: MarketStore holding the listings
            settlement: SettlementManager performing status transitions
            settings: Validated settings, defaults to settings_conf
            catalog: Optional StorefrontCatalog used to fill in asset metadata
            clock: Callable returning the current UTC time
        """
        settings = settings or settings_conf
        self.store = store
        self.settlement = settlement
        self.catalog = catalog
        self.clock = clock
        self.platform_fee_bps = settings['platform_fee_bps']
        self.default_royalty_bps = settings['default_royalty_bps']
        self.increment_bps = settings['min_bid_increment_bps']
        self.default_page_size = settings['default_page_size']
        self.max_page_size = settings['max_page_size']

    async def create(self, spec: Union[ListingSpec, Dict[str, Any]]) -> Listing:
        """Create a new active listing.

        Args:
            spec: Listing fields; see ListingSpec

        Returns:
            The created listing

        Raises:
            ValidationError: If required fields are missing or prices are invalid
            AssetAlreadyListed: If the asset already has an active listing
            UnauthorizedError: If the seller is not the asset's owner of record
        """
        if not isinstance(spec, ListingSpec):
            try:
                spec = ListingSpec(**spec)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid listing: {e.errors()[0]['msg']}") from e
        now = self.clock()
        listing = self._build(spec, now)

        if self.catalog is not None and (listing.name is None or listing.image is None):
            asset = await self.catalog.lookup(listing.asset_id)
            if not asset.placeholder:
                listing.name = listing.name or asset.name
                listing.image = listing.image or asset.image
                listing.collection_id = listing.collection_id or asset.collection_id

        async with self.store.transaction(listing.asset_id) as tx:
            existing = await tx.get_active_listing(listing.asset_id)
            if existing is not None:
                raise AssetAlreadyListed(
                    f"Asset {listing.asset_id} already has active listing {existing.id}"
                )
            owner = await tx.get_owner(listing.asset_id)
            if owner is not None and owner != listing.seller_address:
                raise UnauthorizedError(f"{listing.seller_address} does not own {listing.asset_id}")
            if owner is None:
                await tx.set_owner(listing.asset_id, listing.seller_address)
            await tx.save_listing(listing)

        logger.info(
            f"Created {listing.type.value} listing {listing.id} for {listing.asset_id} "
            f"by {listing.seller_address}"
        )
        return listing

    def _build(self, spec: ListingSpec, now: datetime) -> Listing:
        """Validate a ListingSpec and build the listing it describes."""
        if not spec.asset_id or not spec.asset_id.strip():
            raise ValidationError("asset_id is required")
        if not spec.seller_address or not spec.seller_address.strip():
            raise ValidationError("seller_address is required")

        for field in ('price', 'starting_price', 'reserve_price', 'buy_now_price', 'ending_price'):
            value = getattr(spec, field)
            if value is not None and value < 0:
                raise ValidationError(f"{field} cannot be negative")

        royalty_bps = self.default_royalty_bps if spec.royalty_bps is None else spec.royalty_bps
        if royalty_bps < 0 or royalty_bps + self.platform_fee_bps > 10000:
            raise ValidationError(
                f"royalty_bps must be between 0 and {10000 - self.platform_fee_bps}"
            )

        fields: Dict[str, Any] = {
            'asset_id': spec.asset_id,
            'seller_address': spec.seller_address,
            'type': spec.type,
            'currency': spec.currency,
            'collection_id': spec.collection_id,
            'royalty_bps': royalty_bps,
            'creator_address': spec.creator_address,
            'name': spec.name,
            'image': spec.image,
            'created_at': now,
            'updated_at': now,
        }

        if spec.type == ListingType.FIXED:
            if spec.price is None or spec.price <= 0:
                raise ValidationError("Fixed price listings require a price greater than 0")
            fields['price'] = spec.price
            return Listing(**fields)

        if spec.starting_price is None or spec.starting_price <= 0:
            raise ValidationError("Auctions require a starting_price greater than 0")

        ends_at = _aware(spec.ends_at)
        if ends_at is None and spec.duration_hours is not None:
            if spec.duration_hours <= 0:
                raise ValidationError("duration_hours must be positive")
            ends_at = now + timedelta(hours=spec.duration_hours)
        if ends_at is None:
            raise ValidationError("Auctions require ends_at")
        if ends_at <= now:
            raise ValidationError("ends_at must be in the future")

        fields['starting_price'] = spec.starting_price
        fields['ends_at'] = ends_at

        if spec.type == ListingType.ENGLISH:
            if spec.buy_now_price is not None and spec.buy_now_price <= spec.starting_price:
                raise ValidationError("buy_now_price must exceed starting_price")
            fields['reserve_price'] = spec.reserve_price
            fields['buy_now_price'] = spec.buy_now_price
            return Listing(**fields)

        if spec.ending_price is None:
            raise ValidationError("Dutch auctions require ending_price")
        if spec.ending_price > spec.starting_price:
            raise ValidationError("ending_price cannot exceed starting_price")
        if spec.price_drop_interval is None or spec.price_drop_interval <= 0:
            raise ValidationError("Dutch auctions require a positive price_drop_interval in minutes")
        fields['ending_price'] = spec.ending_price
        fields['price_drop_interval'] = spec.price_drop_interval
        return Listing(**fields)

    async def get(self, listing_id: str) -> Listing:
        """Get a listing by ID.

        Raises:
            ListingNotFoundError: If listing not found
        """
        listing = await self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    async def view(self, listing: Listing) -> Dict[str, Any]:
        """Listing with its current price, highest bid and favorite count."""
        highest = await self.store.highest_bids([listing.id])
        return listing_view(listing, highest.get(listing.id), self.clock(), self.increment_bps)

    async def list(
        self,
        status: Optional[ListingStatus] = None,
        type: Optional[ListingType] = None,
        collection_id: Optional[str] = None,
        seller_address: Optional[str] = None,
        currency: Optional[Currency] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        sort_by: str = 'created',
        sort_order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Dict[str, Any]:
        """List listings; the page size is capped at max_page_size."""
        if limit is None:
            limit = self.default_page_size
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if offset < 0:
            raise ValidationError("offset cannot be negative")

        return await search(
            self.store,
            self.clock(),
            status=status,
            type=type,
            collection_id=collection_id,
            seller_address=seller_address,
            currency=currency,
            min_price=min_price,
            max_price=max_price,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=min(limit, self.max_page_size),
            offset=offset,
            increment_bps=self.increment_bps
        )

    async def cancel(self, listing_id: str, requester: str) -> Listing:
        """Cancel a listing. Only the seller may cancel an active listing."""
        if not requester:
            raise ValidationError("seller_address is required")
        return await self.settlement.cancel(listing_id, requester)

    async def toggle_favorite(self, listing_id: str, address: str) -> Dict[str, Any]:
        """Flip the favorite flag for (listing, address).

        Returns:
            Dict with the new ``favorited`` flag and ``favorite_count``
        """
        if not address:
            raise ValidationError("address is required")
        listing = await self.get(listing_id)

        async with self.store.transaction(listing.asset_id) as tx:
            listing = await tx.get_listing(listing_id)
            if address in listing.favorited_by:
                listing.favorited_by.discard(address)
                favorited = False
            else:
                listing.favorited_by.add(address)
                favorited = True
            listing.version += 1
            await tx.save_listing(listing)

        return {
            'listing_id': listing.id,
            'favorited': favorited,
            'favorite_count': len(listing.favorited_by),
        }


__all__ = ['ListingManager', 'listing_view', 'search']
