"""WooCommerce storefront catalog client.

StorefrontClient pages through ``wp-json/wc/v3/products`` with the consumer
key and secret. StorefrontCatalog caches the result for ``catalog_cache_ttl``
seconds and answers lookups from the cache, falling back to the last good
catalog (or a placeholder asset) when the storefront is unreachable.
"""
import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

import requests

from config import settings_conf
from models import Asset

logger = logging.getLogger(__name__)

PRODUCTS_PATH = '/wp-json/wc/v3/products'
PAGE_SIZE = 100
MAX_PAGES = 50


class StorefrontError(Exception):
    """Raised when the storefront cannot be queried."""
    pass


def _to_asset(product: Dict[str, Any]) -> Asset:
    images = product.get('images') or []
    categories = product.get('categories') or []
    try:
        price = Decimal(str(product['price'])) if product.get('price') not in (None, '') else None
    except InvalidOperation:
        price = None
    return Asset(
        id=str(product['id']),
        name=product.get('name') or f"Product {product['id']}",
        image=images[0].get('src') if images else None,
        price=price,
        collection_id=str(categories[0]['id']) if categories else None,
        permalink=product.get('permalink')
    )


def placeholder_asset(asset_id: str) -> Asset:
    return Asset(id=asset_id, name=f"Asset {asset_id}", placeholder=True)


class StorefrontClient:
    """Blocking WooCommerce REST client."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.base_url = (base_url if base_url is not None else settings_conf['storefront_url']).rstrip('/')
        self.timeout = float(timeout or settings_conf['collaborator_timeout'])
        self.session = requests.Session()
        key = consumer_key if consumer_key is not None else settings_conf['storefront_key']
        secret = consumer_secret if consumer_secret is not None else settings_conf['storefront_secret']
        if key:
            self.session.auth = (key, secret)

    def fetch_catalog(self) -> List[Asset]:
        """Fetch every published product.

        Raises:
            StorefrontError: If the storefront is not configured or a request fails
        """
        if not self.base_url:
            raise StorefrontError("storefront_url is not configured")

        assets: List[Asset] = []
        for page in range(1, MAX_PAGES + 1):
            try:
                response = self.session.get(
                    f"{self.base_url}{PRODUCTS_PATH}",
                    params={'per_page': PAGE_SIZE, 'page': page, 'status': 'publish'},
                    timeout=self.timeout
                )
                response.raise_for_status()
                products = response.json()
            except requests.exceptions.RequestException as e:
                raise StorefrontError(f"Storefront request failed: {e}") from e
            except ValueError as e:
                raise StorefrontError(f"Invalid storefront response: {e}") from e

            assets.extend(_to_asset(product) for product in products)
            if len(products) < PAGE_SIZE:
                break
        return assets


class StorefrontCatalog:
    """TTL cache in front of a storefront client."""

    def __init__(
        self,
        client,
        ttl: Optional[int] = None,
        timeout: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.ttl = settings_conf['catalog_cache_ttl'] if ttl is None else ttl
        self.timeout = float(timeout or settings_conf['collaborator_timeout'])
        self._monotonic = monotonic
        self._assets: Dict[str, Asset] = {}
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        """Force the next lookup to refetch the catalog."""
        self._fetched_at = None
        logger.info("Storefront catalog cache invalidated")

    def _fresh(self) -> bool:
        return self._fetched_at is not None and self._monotonic() - self._fetched_at < self.ttl

    async def get_catalog(self) -> List[Asset]:
        """Cached catalog, refreshed when older than the TTL.

        Failures are logged and answered from the previous catalog.
        """
        async with self._lock:
            if self._fresh():
                return list(self._assets.values())
            try:
                assets = await asyncio.wait_for(
                    asyncio.to_thread(self.client.fetch_catalog), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Storefront catalog fetch timed out after {self.timeout}s")
                return list(self._assets.values())
            except StorefrontError as e:
                logger.warning(f"Storefront catalog fetch failed: {e}")
                return list(self._assets.values())

            self._assets = {asset.id: asset for asset in assets}
            self._fetched_at = self._monotonic()
            logger.info(f"Loaded {len(self._assets)} storefront products")
            return assets

    async def lookup(self, asset_id: str) -> Asset:
        """Asset metadata, or a placeholder when the asset is unknown."""
        await self.get_catalog()
        return self._assets.get(asset_id) or placeholder_asset(asset_id)
