"""
PostgreSQL connection handling shared by the asset, ledger and user stores.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from config import Config

logger = logging.getLogger(__name__)


def is_valid_id(value: Optional[str]) -> bool:
    """Ids are UUIDs; anything else can never match a row."""
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def new_id() -> str:
    return str(uuid.uuid4())


class Database:
    """
    Lazily created asyncpg pool.

    Stores take an optional ``conn`` on their write methods so several writes
    can share one transaction (see ``transaction``).
    """

    def __init__(self, database_url: Optional[str] = None):
        database_url = database_url or Config.DATABASE_URL
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set for asset storage")

        self.database_url = database_url
        self._pool: Optional[asyncpg.Pool] = None

    async def get_pool(self) -> asyncpg.Pool:
        """Get or create database connection pool."""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=1,
                max_size=10,
                command_timeout=60
            )
            logger.info("Created PostgreSQL connection pool")
        return self._pool

    @asynccontextmanager
    async def connection(self, conn: Optional[asyncpg.Connection] = None) -> AsyncIterator[asyncpg.Connection]:
        """Reuse ``conn`` when given, otherwise borrow one from the pool."""
        if conn is not None:
            yield conn
            return
        pool = await self.get_pool()
        async with pool.acquire() as acquired:
            yield acquired

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def ping(self) -> bool:
        async with self.connection() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def close(self):
        """Close database connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PostgreSQL connection pool")
