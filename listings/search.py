""" Search listings in the store """
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any
import logging

import auctions
from errors import ValidationError
from models import Currency, ListingStatus, ListingType
from .views import listing_view

logger = logging.getLogger(__name__)

SORT_FIELDS = ('price', 'created', 'ending')
DEFAULT_ORDER = {'price': 'asc', 'created': 'desc', 'ending': 'asc'}


async def search(
        store,
        now: datetime,
        status: Optional[ListingStatus] = None,
        type: Optional[ListingType] = None,
        collection_id: Optional[str] = None,
        seller_address: Optional[str] = None,
        currency: Optional[Currency] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        sort_by: str = 'created',
        sort_order: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        increment_bps: int = auctions.DEFAULT_MIN_BID_INCREMENT_BPS
    ) -> Dict[str, Any]:
        """Search listings with filters, sorting and pagination.

        Args:
            store: MarketStore to read from
            now: Time used for current prices and ended-auction checks
            status: Optional listing status. ``active`` excludes auctions past their end
            type: Optional listing type
            collection_id: Optional collection to filter by
            seller_address: Optional seller address to filter by
            currency: Optional currency
            min_price: Optional minimum current display price
            max_price: Optional maximum current display price
            sort_by: One of ``price``, ``created`` or ``ending``
            sort_order: ``asc`` or ``desc``; defaults per sort field
            limit: Maximum number of results to return
            offset: Number of results to skip

        Returns:
            Dict containing:
                - listings: Page of listing views
                - total: Number of listings matching the filters
                - limit, offset: Effective pagination
                - has_more: Whether more results follow this page
        """
        if sort_by not in SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        sort_order = sort_order or DEFAULT_ORDER[sort_by]
        if sort_order not in ('asc', 'desc'):
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError("min_price cannot exceed max_price")

        listings = await store.find_listings(
            status=status,
            type=type,
            collection_id=collection_id,
            seller_address=seller_address,
            currency=currency
        )
        if status == ListingStatus.ACTIVE:
            listings = [listing for listing in listings if not auctions.is_ended(listing, now)]

        highest = await store.highest_bids(
            listing.id for listing in listings if listing.type == ListingType.ENGLISH
        )
        priced = [
            (listing, auctions.current_price(listing, highest.get(listing.id), now))
            for listing in listings
        ]
        if min_price is not None:
            priced = [(l, p) for l, p in priced if p is not None and p >= min_price]
        if max_price is not None:
            priced = [(l, p) for l, p in priced if p is not None and p <= max_price]

        reverse = sort_order == 'desc'
        if sort_by == 'price':
            priced.sort(key=lambda item: (item[1] or Decimal(0), item[0].created_at), reverse=reverse)
        elif sort_by == 'ending':
            # Listings without an end time always sort last
            with_end = [item for item in priced if item[0].ends_at is not None]
            without_end = [item for item in priced if item[0].ends_at is None]
            with_end.sort(key=lambda item: item[0].ends_at, reverse=reverse)
            without_end.sort(key=lambda item: item[0].created_at, reverse=True)
            priced = with_end + without_end
        else:
            priced.sort(key=lambda item: item[0].created_at, reverse=reverse)

        total = len(priced)
        page = priced[offset:offset + limit]

        return {
            'listings': [
                listing_view(listing, highest.get(listing.id), now, increment_bps)
                for listing, _ in page
            ],
            'total': total,
            'limit': limit,
            'offset': offset,
            'has_more': offset + len(page) < total,
        }
