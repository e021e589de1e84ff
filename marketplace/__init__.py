"""Marketplace engine wiring.

``Marketplace`` builds every component around a single store so the API,
webhooks and background workers share one coordinator and one projector.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from analytics import ActivityProjector
from bids import BidManager
from config import settings_conf
from database import MarketStore, create_store
from listings import ListingManager
from models import utcnow
from rpc import PaymentRPC
from rpc.registries import CollectionRegistry, CreatorRegistry
from rpc.storefront import StorefrontCatalog, StorefrontClient
from settlement import PayoutManager, SettlementManager

logger = logging.getLogger(__name__)


class Marketplace:
    """All engine components sharing one store, coordinator and projector."""

    def __init__(
        self,
        store: Optional[MarketStore] = None,
        settings: Optional[Dict[str, Any]] = None,
        payments=None,
        catalog=None,
        collections=None,
        creators=None,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize the marketplace.

        Args:
            store: MarketStore to use, defaults to the configured backend
            settings: Validated settings, defaults to settings_conf
            payments: Payment executor, defaults to PaymentRPC
            catalog: Storefront catalog, defaults to a StorefrontCatalog when
                storefront_url is configured
            collections: Collection registry
            creators: Creator registry
            clock: Callable returning the current UTC time
        """
        self.settings = settings or settings_conf
        self.clock = clock
        self.store = store if store is not None else create_store(self.settings)

        if payments is None:
            payments = PaymentRPC(
                url=self.settings['payment_rpc_url'],
                user=self.settings['payment_rpc_user'],
                password=self.settings['payment_rpc_password'],
                timeout=float(self.settings['collaborator_timeout'])
            )
        if catalog is None and self.settings.get('storefront_url'):
            catalog = StorefrontCatalog(
                StorefrontClient(
                    self.settings['storefront_url'],
                    self.settings['storefront_key'],
                    self.settings['storefront_secret'],
                    timeout=float(self.settings['collaborator_timeout'])
                ),
                ttl=self.settings['catalog_cache_ttl'],
                timeout=float(self.settings['collaborator_timeout'])
            )

        self.payments = payments
        self.catalog = catalog
        self.collections = collections if collections is not None else CollectionRegistry()
        self.creators = creators if creators is not None else CreatorRegistry()

        self.settlement = SettlementManager(
            self.store,
            self.settings,
            payments=self.payments,
            collections=self.collections,
            creators=self.creators,
            clock=clock
        )
        self.listings = ListingManager(
            self.store, self.settlement, self.settings, catalog=self.catalog, clock=clock
        )
        self.bids = BidManager(self.store, self.settlement, self.settings, clock=clock)
        self.payouts = PayoutManager(self.store, self.settlement, self.settings, clock=clock)
        self.analytics = ActivityProjector(
            self.store,
            clock=clock,
            refresh_interval=self.settings['analytics_refresh_interval']
        )
        self.settlement.subscribe(self.analytics.apply)

    async def start(self) -> None:
        """Open the store and build the analytics projections."""
        await self.store.initialize()
        await self.analytics.rebuild()
        logger.info("Marketplace engine started")

    async def close(self) -> None:
        self.payouts.stop()
        await self.store.close()
        logger.info("Marketplace engine stopped")


__all__ = ['Marketplace']
