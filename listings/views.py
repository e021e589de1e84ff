"""Serialize listings for API responses."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import auctions
from models import Listing, ListingType


def listing_view(
    listing: Listing,
    highest_bid: Optional[Decimal],
    now: datetime,
    increment_bps: int = auctions.DEFAULT_MIN_BID_INCREMENT_BPS
) -> Dict[str, Any]:
    """Listing fields plus values derived at read time.

    The favorited_by set is reduced to a count.
    """
    view = listing.model_dump(mode='json', exclude={'favorited_by'})
    price = auctions.current_price(listing, highest_bid, now)
    view['current_price'] = str(price) if price is not None else None
    view['highest_bid'] = str(highest_bid) if highest_bid is not None else None
    view['favorite_count'] = len(listing.favorited_by)
    view['is_ended'] = auctions.is_ended(listing, now)
    if listing.type == ListingType.ENGLISH:
        view['min_next_bid'] = str(auctions.min_next_bid(listing, highest_bid, increment_bps))
    return view
