"""PostgreSQL store built on the shared asyncpg pool.

Each ``transaction(key)`` runs inside one database transaction that first takes
``pg_advisory_xact_lock`` on the key, so writers on the same asset are
serialized across processes. Rows read for update are additionally locked with
``SELECT ... FOR UPDATE``.
"""
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Type, TypeVar

from asyncpg.pool import Pool
from pydantic import BaseModel

from models import (
    Activity, Bid, BidStatus, Currency, Listing, ListingStatus, ListingType,
    Offer, OfferStatus, Sale, SaleStatus, utcnow
)
from .store import MarketStore, StoreTransaction

logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)


def _to_row(record: BaseModel) -> Dict[str, Any]:
    """Flatten a model into column values asyncpg can encode."""
    row = {}
    for key, value in record.model_dump().items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, set):
            value = sorted(value)
        row[key] = value
    return row


def _from_row(model: Type[M], row) -> Optional[M]:
    if row is None:
        return None
    return model(**dict(row))


def _where(filters: Dict[str, Any]):
    """Build a WHERE clause from non-None filters."""
    clauses = []
    args = []
    for column, value in filters.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        args.append(value)
        clauses.append(f"{column} = ${len(args)}")
    sql = f" WHERE {' AND '.join(clauses)}" if clauses else ''
    return sql, args


async def _upsert(conn, table: str, record: BaseModel) -> None:
    row = _to_row(record)
    columns = list(row)
    placeholders = ', '.join(f'${i}' for i in range(1, len(columns) + 1))
    updates = ', '.join(f'{col} = EXCLUDED.{col}' for col in columns if col != 'id')
    await conn.execute(
        f'''
        INSERT INTO {table} ({', '.join(columns)})
        VALUES ({placeholders})
        ON CONFLICT (id) DO UPDATE SET {updates}
        ''',
        *row.values()
    )


class PostgresTransaction(StoreTransaction):
    """Unit of work bound to one connection inside an open transaction."""

    def __init__(self, conn):
        self.conn = conn

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        row = await self.conn.fetchrow(
            'SELECT * FROM listings WHERE id = $1 FOR UPDATE', listing_id
        )
        return _from_row(Listing, row)

    async def get_active_listing(self, asset_id: str) -> Optional[Listing]:
        row = await self.conn.fetchrow(
            '''
            SELECT * FROM listings
            WHERE asset_id = $1 AND status = 'active'
            FOR UPDATE
            ''',
            asset_id
        )
        return _from_row(Listing, row)

    async def get_bids(self, listing_id: str) -> List[Bid]:
        rows = await self.conn.fetch(
            'SELECT * FROM bids WHERE listing_id = $1 ORDER BY placed_at FOR UPDATE',
            listing_id
        )
        return [_from_row(Bid, row) for row in rows]

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        row = await self.conn.fetchrow(
            'SELECT * FROM offers WHERE id = $1 FOR UPDATE', offer_id
        )
        return _from_row(Offer, row)

    async def get_open_offers(self, asset_id: str) -> List[Offer]:
        rows = await self.conn.fetch(
            '''
            SELECT * FROM offers
            WHERE asset_id = $1 AND status = 'open'
            FOR UPDATE
            ''',
            asset_id
        )
        return [_from_row(Offer, row) for row in rows]

    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        row = await self.conn.fetchrow(
            'SELECT * FROM sales WHERE id = $1 FOR UPDATE', sale_id
        )
        return _from_row(Sale, row)

    async def get_owner(self, asset_id: str) -> Optional[str]:
        return await self.conn.fetchval(
            'SELECT owner_address FROM asset_owners WHERE asset_id = $1', asset_id
        )

    async def last_sale(self, asset_id: str) -> Optional[Sale]:
        row = await self.conn.fetchrow(
            '''
            SELECT * FROM sales
            WHERE asset_id = $1
            ORDER BY settled_at DESC
            LIMIT 1
            ''',
            asset_id
        )
        return _from_row(Sale, row)

    async def save_listing(self, listing: Listing) -> None:
        await _upsert(self.conn, 'listings', listing)

    async def save_bid(self, bid: Bid) -> None:
        await _upsert(self.conn, 'bids', bid)

    async def save_offer(self, offer: Offer) -> None:
        await _upsert(self.conn, 'offers', offer)

    async def save_sale(self, sale: Sale) -> None:
        await _upsert(self.conn, 'sales', sale)

    async def add_activity(self, activity: Activity) -> None:
        await _upsert(self.conn, 'activities', activity)

    async def set_owner(self, asset_id: str, address: str) -> None:
        await self.conn.execute(
            '''
            INSERT INTO asset_owners (asset_id, owner_address, updated_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (asset_id) DO UPDATE
            SET owner_address = EXCLUDED.owner_address,
                updated_at = EXCLUDED.updated_at
            ''',
            asset_id, address, utcnow()
        )


class PostgresStore(MarketStore):
    """MarketStore persisted in PostgreSQL through asyncpg."""

    def __init__(self, pool: Optional[Pool] = None, db_url: Optional[str] = None):
        """Initialize the store.

        Args:
            pool: Optional database connection pool
            db_url: Database URL used when the shared pool must be created
        """
        self.pool = pool
        self.db_url = db_url

    async def initialize(self) -> None:
        await self.ensure_pool()

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            from . import init_db, get_pool
            await init_db(self.db_url)
            self.pool = await get_pool()

    async def close(self) -> None:
        from . import close
        await close()
        self.pool = None

    @asynccontextmanager
    async def transaction(self, key: str) -> AsyncIterator[PostgresTransaction]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute('SELECT pg_advisory_xact_lock(hashtext($1))', key)
                yield PostgresTransaction(conn)

    async def _fetch(self, model: Type[M], query: str, *args) -> List[M]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [_from_row(model, row) for row in rows]

    async def _fetch_one(self, model: Type[M], query: str, *args) -> Optional[M]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
        return _from_row(model, row)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return await self._fetch_one(Listing, 'SELECT * FROM listings WHERE id = $1', listing_id)

    async def find_listings(
        self,
        status: Optional[ListingStatus] = None,
        type: Optional[ListingType] = None,
        collection_id: Optional[str] = None,
        seller_address: Optional[str] = None,
        currency: Optional[Currency] = None,
        asset_id: Optional[str] = None
    ) -> List[Listing]:
        where, args = _where({
            'status': status,
            'type': type,
            'collection_id': collection_id,
            'seller_address': seller_address,
            'currency': currency,
            'asset_id': asset_id,
        })
        return await self._fetch(Listing, f'SELECT * FROM listings{where}', *args)

    async def get_bids(self, listing_id: str) -> List[Bid]:
        return await self._fetch(
            Bid, 'SELECT * FROM bids WHERE listing_id = $1 ORDER BY placed_at', listing_id
        )

    async def find_bids(
        self,
        bidder_address: Optional[str] = None,
        status: Optional[BidStatus] = None
    ) -> List[Bid]:
        where, args = _where({'bidder_address': bidder_address, 'status': status})
        return await self._fetch(Bid, f'SELECT * FROM bids{where}', *args)

    async def highest_bids(self, listing_ids: Iterable[str]) -> Dict[str, Decimal]:
        ids = list(listing_ids)
        if not ids:
            return {}
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT listing_id, MAX(amount) AS amount
                FROM bids
                WHERE status = 'active' AND listing_id = ANY($1::text[])
                GROUP BY listing_id
                ''',
                ids
            )
        return {row['listing_id']: row['amount'] for row in rows}

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        return await self._fetch_one(Offer, 'SELECT * FROM offers WHERE id = $1', offer_id)

    async def find_offers(
        self,
        asset_id: Optional[str] = None,
        buyer_address: Optional[str] = None,
        status: Optional[OfferStatus] = None
    ) -> List[Offer]:
        where, args = _where({
            'asset_id': asset_id,
            'buyer_address': buyer_address,
            'status': status,
        })
        return await self._fetch(Offer, f'SELECT * FROM offers{where}', *args)

    async def get_sale(self, sale_id: str) -> Optional[Sale]:
        return await self._fetch_one(Sale, 'SELECT * FROM sales WHERE id = $1', sale_id)

    async def find_sales(
        self,
        status: Optional[SaleStatus] = None,
        asset_id: Optional[str] = None
    ) -> List[Sale]:
        where, args = _where({'status': status, 'asset_id': asset_id})
        return await self._fetch(Sale, f'SELECT * FROM sales{where}', *args)

    async def find_activities(self) -> List[Activity]:
        return await self._fetch(Activity, 'SELECT * FROM activities')

    async def get_owner(self, asset_id: str) -> Optional[str]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT owner_address FROM asset_owners WHERE asset_id = $1', asset_id
            )
