# shiftdesk/infra/db_async.py
"""
Async database connection using asyncpg.
"""
from __future__ import annotations
from typing import AsyncContextManager
from contextlib import asynccontextmanager

import asyncpg
from shiftdesk.config import settings
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    """Initialize connection pool on startup"""
    global _pool

    if _pool is not None:
        return

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        server_settings={
            'application_name': 'shiftdesk',
            'statement_timeout': str(settings.pg_statement_timeout_ms),
        }
    )

    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None
    logger.info("Connection pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncContextManager[asyncpg.Connection]:
    """
    Get database connection from pool (async).

    Usage:
        async with db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM profiles WHERE id = $1", worker_id)

    Args:
        autocommit: If True (default), commits automatically. If False, the block
            runs in a transaction that is rolled back on error.

    Yields:
        asyncpg.Connection
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    conn = await _pool.acquire()

    try:
        if not autocommit:
            transaction = conn.transaction()
            await transaction.start()

            try:
                yield conn
                await transaction.commit()
            except Exception:
                await transaction.rollback()
                raise
        else:
            yield conn
    finally:
        await _pool.release(conn)
