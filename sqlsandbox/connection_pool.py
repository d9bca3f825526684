"""
Pooled connections to the schema store.

The engine only ever touches store connections through `ConnectionPool`, so
tests can substitute a fake pool.
"""
import abc
import logging
from typing import Any, Optional

import asyncpg
from sqlalchemy.engine.url import make_url

from .config import Config

logger = logging.getLogger(__name__)


class ConnectionPool(abc.ABC):
    """Acquire/release capability over a bounded set of store connections"""

    @abc.abstractmethod
    async def acquire(self) -> Any:
        """Check out a connection; blocks while the pool is exhausted"""

    @abc.abstractmethod
    async def release(self, connection: Any, discard: bool = False) -> None:
        """Return a connection; `discard` closes it instead of reusing it"""

    async def close(self) -> None:
        pass


def to_asyncpg_dsn(database_url: str) -> str:
    """Strip any SQLAlchemy driver suffix (postgresql+psycopg2://...)"""
    url = make_url(database_url).set(drivername="postgresql")
    return url.render_as_string(hide_password=False)


class AsyncpgConnectionPool(ConnectionPool):
    """asyncpg-backed pool for sandbox provisioning and query execution"""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @classmethod
    async def create(cls,
                     database_url: Optional[str] = None,
                     min_size: Optional[int] = None,
                     max_size: Optional[int] = None) -> "AsyncpgConnectionPool":
        """Open the pool against DATABASE_URL"""
        url = database_url or Config.DATABASE_URL
        if not url:
            raise ValueError("DATABASE_URL environment variable is required")

        try:
            pool = await asyncpg.create_pool(
                to_asyncpg_dsn(url),
                min_size=Config.DB_POOL_MIN_SIZE if min_size is None else min_size,
                max_size=Config.DB_POOL_MAX_SIZE if max_size is None else max_size,
                server_settings={
                    'idle_in_transaction_session_timeout': str(Config.DB_IDLE_IN_TRANSACTION_TIMEOUT_MS),
                    'application_name': 'sqlsandbox'
                }
            )
        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise

        logger.info(f"Created sandbox connection pool (max {pool.get_max_size()} connections)")
        return cls(pool)

    async def acquire(self) -> asyncpg.Connection:
        return await self._pool.acquire()

    async def release(self, connection: asyncpg.Connection, discard: bool = False) -> None:
        if discard and not connection.is_closed():
            # Closing the socket ends the backend along with whatever it was running
            connection.terminate()
            logger.warning("Discarded sandbox connection after an abandoned statement")
        await self._pool.release(connection)

    async def close(self) -> None:
        await self._pool.close()
        logger.info("Closed sandbox connection pool")
