"""Marketplace error taxonomy.

Every error raised by the engine derives from MarketError and carries a stable
``code`` plus the HTTP ``status_code`` the API layer answers with. Validation and
conflict errors are always raised before any state is written.
"""
from typing import Optional


class MarketError(Exception):
    """Base class for marketplace errors."""
    code = 'market_error'
    status_code = 400

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class ValidationError(MarketError):
    """Request is malformed or missing required input."""
    code = 'validation_error'


class ConflictError(MarketError):
    """Request conflicts with the current listing, bid or offer state."""
    code = 'conflict'


class BidTooLow(ConflictError):
    """Bid does not clear the minimum next bid."""
    code = 'bid_too_low'

    def __init__(self, amount, minimum, inclusive: bool = False):
        self.amount = amount
        self.minimum = minimum
        relation = 'at least' if inclusive else 'greater than'
        super().__init__(f"Bid {amount} too low: must be {relation} {minimum}")


class ListingAlreadySettled(ConflictError):
    """Listing has already been sold."""
    code = 'listing_already_settled'


class ListingNotActive(ConflictError):
    """Listing is not active."""
    code = 'listing_not_active'


class ReserveNotMet(ConflictError):
    """Highest bid does not meet the reserve price."""
    code = 'reserve_not_met'


class NoQualifyingBid(ConflictError):
    """Auction has no active bids."""
    code = 'no_qualifying_bid'


class AuctionEnded(ConflictError):
    """Auction has already ended."""
    code = 'auction_ended'


class AuctionNotEnded(ConflictError):
    """Auction has not ended yet."""
    code = 'auction_not_ended'


class AssetAlreadyListed(ConflictError):
    """Asset already has an active listing."""
    code = 'asset_already_listed'


class OfferNotOpen(ConflictError):
    """Offer is no longer open."""
    code = 'offer_not_open'


class NotFoundError(MarketError):
    """Requested record does not exist."""
    code = 'not_found'
    status_code = 404


class ListingNotFoundError(NotFoundError):
    """Raised when a listing cannot be found."""
    code = 'listing_not_found'

    def __init__(self, listing_id: str):
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id} not found")


class OfferNotFoundError(NotFoundError):
    """Raised when an offer cannot be found."""
    code = 'offer_not_found'

    def __init__(self, offer_id: str):
        self.offer_id = offer_id
        super().__init__(f"Offer {offer_id} not found")


class UnauthorizedError(MarketError):
    """Requester is not the seller, buyer or owner of record."""
    code = 'unauthorized'


class DependencyError(MarketError):
    """An external collaborator failed."""
    code = 'dependency_error'
    status_code = 502


__all__ = [
    'MarketError',
    'ValidationError',
    'ConflictError',
    'BidTooLow',
    'ListingAlreadySettled',
    'ListingNotActive',
    'ReserveNotMet',
    'NoQualifyingBid',
    'AuctionEnded',
    'AuctionNotEnded',
    'AssetAlreadyListed',
    'OfferNotOpen',
    'NotFoundError',
    'ListingNotFoundError',
    'OfferNotFoundError',
    'UnauthorizedError',
    'DependencyError',
]
