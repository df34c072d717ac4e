from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import asyncpg

logger = logging.getLogger(__name__)


async def create_pool(dsn: str, *, min_size: int = 1, max_size: int = 5) -> asyncpg.Pool:
    """Open the shared pool used by the ticket and guild settings stores."""

    pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
    logger.info("Connected to PostgreSQL (pool size %d-%d)", min_size, max_size)
    return pool


@dataclass(slots=True)
class PostgresConnectionTester:
    """Health check for PostgreSQL, reusing a pool when one is supplied."""

    dsn: str
    _pool: asyncpg.Pool | None = None
    _owns_pool: bool = False

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self.dsn, min_size=1, max_size=1)
            self._owns_pool = True
        return self._pool

    async def test_connection(self) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as connection:
            await connection.execute("SELECT 1")
        return True

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
        self._pool = None
        self._owns_pool = False

    def test_connection_sync(self, timeout: float = 5.0) -> bool:
        """Blocking helper that can be used from synchronous contexts."""

        return asyncio.run(asyncio.wait_for(self.test_connection(), timeout=timeout))
