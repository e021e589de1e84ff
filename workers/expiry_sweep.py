"""Worker that resolves auctions past their end time and expires stale offers."""

import asyncio
import logging
from typing import Dict, Optional

import auctions
from errors import MarketError
from models import ListingStatus, ListingType

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodically settles or expires ended auctions.

    An ended English auction whose highest bid meets the reserve is sold to
    that bidder; every other ended auction is expired. Both paths are safe to
    run concurrently with each other and with user requests.
    """

    def __init__(self, market, interval: Optional[int] = None):
        self.market = market
        self.interval = interval or market.settings['expiry_sweep_interval']
        self._stop_requested = False

    def stop(self):
        """Signal the sweep loop to stop."""
        self._stop_requested = True

    async def sweep_once(self) -> Dict[str, int]:
        """Resolve every ended auction once.

        Returns:
            Counts of settled and expired auctions, expired offers and errors
        """
        store = self.market.store
        now = self.market.clock()
        counts = {'settled': 0, 'expired': 0, 'offers_expired': 0, 'errors': 0}

        for listing in await store.find_listings(status=ListingStatus.ACTIVE):
            if not auctions.is_ended(listing, now):
                continue
            try:
                if listing.type == ListingType.ENGLISH:
                    winner = auctions.winning_bid(await store.get_bids(listing.id))
                    if auctions.reserve_met(listing, winner):
                        await self.market.settlement.settle_ended_auction(listing.id)
                        counts['settled'] += 1
                        continue
                if await self.market.settlement.close_expired_auction(listing.id) is not None:
                    counts['expired'] += 1
            except MarketError as e:
                # Another worker or request resolved it first
                counts['errors'] += 1
                logger.warning(f"Could not resolve ended auction {listing.id}: {e}")

        counts['offers_expired'] = await self.market.bids.expire_offers()

        if counts['settled'] or counts['expired']:
            logger.info(
                f"Expiry sweep settled {counts['settled']} and expired {counts['expired']} auctions"
            )
        return counts

    async def run(self):
        """Main sweep loop."""
        logger.info(f"Starting expiry sweep every {self.interval}s")
        while not self._stop_requested:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Error in expiry sweep: {e}")
            await asyncio.sleep(self.interval)
