"""Database module for the marketplace stores.

This module handles:
- PostgreSQL connection pool initialization
- Schema management
- Connection lifecycle
- Choosing the configured MarketStore backend
"""

import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

import backoff
import asyncpg

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager
from .store import MarketStore, StoreTransaction
from .memory import MemoryStore
from .postgres import PostgresStore

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

CONNECT_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionRefusedError,
)


def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }

    sslmode = params.get('sslmode', ['prefer'])[0]
    if sslmode in ('require', 'verify-ca', 'verify-full'):
        ssl_context = ssl.create_default_context()
        if sslmode == 'require':
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        kwargs['ssl'] = ssl_context
    elif sslmode == 'disable':
        kwargs['ssl'] = False

    return kwargs


@backoff.on_exception(backoff.expo, CONNECT_ERRORS, max_tries=5)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database named in ``db_url`` if it doesn't exist.

    Args:
        db_url: Database connection URL
    """
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/')
    if not db_name:
        return

    base_url = parsed._replace(path='/postgres').geturl()
    logger.info(f"Connecting to postgres to create {db_name} if needed")
    conn = await asyncpg.connect(base_url, **_get_connection_kwargs(base_url))
    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)', db_name
        )
        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")
    finally:
        await conn.close()


@backoff.on_exception(backoff.expo, CONNECT_ERRORS, max_tries=5)
async def init_db(db_url: Optional[str] = None) -> None:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Raises:
        ValueError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager

    if _pool is not None:
        return

    try:
        # Import here to avoid circular imports
        from config import settings_conf

        url = db_url or settings_conf.get('db_url')
        if not url:
            raise ValueError("Database URL not provided")

        await create_database_if_not_exists(url)

        _pool = await asyncpg.create_pool(
            url,
            min_size=2,
            max_size=20,
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=60.0,
            **_get_connection_kwargs(url)
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize()
        logger.info("Database initialized")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool


async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None


def create_store(settings: Dict[str, Any]) -> MarketStore:
    """Build the MarketStore selected by ``store_backend``."""
    backend = settings.get('store_backend', 'memory')
    if backend == 'postgres':
        logger.info("Using PostgreSQL store")
        return PostgresStore(db_url=settings.get('db_url'))
    logger.info("Using in-memory store")
    return MemoryStore()


# Export public interface
__all__ = [
    'init_db', 'get_pool', 'close', 'create_store',
    'MarketStore', 'StoreTransaction', 'MemoryStore', 'PostgresStore',
    'DatabaseError', 'DatabaseSchemaError',
]
