"""
PostgreSQL Client Wrapper

asyncpg connection pool with the small query surface the repositories use.

Usage:
    from core.postgres_client import PostgresClient

    db = PostgresClient("inventory_service", dsn=infra.postgres_dsn)
    await db.connect()

    rows = await db.query("SELECT * FROM inventory.stock_records WHERE product_id = $1", [product_id])

    async with db.transaction() as conn:
        await conn.execute(...)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg

logger = logging.getLogger(__name__)


class PostgresClient:
    """asyncpg pool wrapper"""

    def __init__(
        self,
        service_name: str,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: Optional[float] = None,
    ):
        self.service_name = service_name
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError(f"PostgresClient for {self.service_name} is not connected")
        return self._pool

    async def connect(self):
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
            )
            logger.info(f"PostgreSQL pool ready for {self.service_name}")

    async def close(self):
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return {"healthy": True}
        except Exception as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return {"healthy": False, "error": str(e)}

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, *(params or []))
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(sql, *(params or []))

    @asynccontextmanager
    async def transaction(self):
        """Connection with an open transaction; rolled back on error"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn
