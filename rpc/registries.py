"""In-process collection and creator registries.

Both registries are updated best-effort after a sale commits; losing an update
never affects the sale itself.
"""
import logging
import threading
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class CollectionRegistry:
    """Running sale counters per collection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._collections: Dict[str, Dict[str, Any]] = {}

    def record_sale(self, collection_id: str, price: Decimal, currency: str) -> Dict[str, Any]:
        with self._lock:
            entry = self._collections.setdefault(collection_id, {
                'collection_id': collection_id,
                'sales_count': 0,
                'volume': defaultdict(Decimal),
                'floor_price': {},
            })
            entry['sales_count'] += 1
            entry['volume'][currency] += Decimal(price)
            floor = entry['floor_price'].get(currency)
            if floor is None or price < floor:
                entry['floor_price'][currency] = Decimal(price)
            logger.debug(f"Collection {collection_id} now has {entry['sales_count']} sales")
            return self._snapshot(entry)

    def get(self, collection_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._collections.get(collection_id)
            return self._snapshot(entry) if entry else None

    def _snapshot(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'collection_id': entry['collection_id'],
            'sales_count': entry['sales_count'],
            'volume': dict(entry['volume']),
            'floor_price': dict(entry['floor_price']),
        }


class CreatorRegistry:
    """Royalty earnings per creator address."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sales: Dict[str, int] = defaultdict(int)
        self._royalties: Dict[str, Decimal] = defaultdict(Decimal)

    def record_sale(self, address: str, amount: Decimal) -> Dict[str, Any]:
        with self._lock:
            self._sales[address] += 1
            self._royalties[address] += Decimal(amount)
            return {
                'address': address,
                'sales': self._sales[address],
                'royalties': self._royalties[address],
            }

    def get(self, address: str) -> Dict[str, Any]:
        with self._lock:
            return {
                'address': address,
                'sales': self._sales.get(address, 0),
                'royalties': self._royalties.get(address, Decimal(0)),
            }
