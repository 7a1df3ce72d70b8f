"""Database connection pool factory and health check."""

import asyncio
import logging
from typing import Optional

import asyncpg

from guied.config import get_config

logger = logging.getLogger(__name__)


_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """
    Get or create the database connection pool.

    The first call creates the pool (bounded by a 5 second timeout) and
    verifies it with ``SELECT 1``. Later calls return the same pool.

    Returns:
        asyncpg.Pool: Initialized database connection pool

    Raises:
        asyncio.TimeoutError: If the pool cannot be created within 5 seconds
        RuntimeError: If the health check fails
    """
    global _pool

    if _pool is not None:
        return _pool

    config = get_config()

    try:
        _pool = await asyncio.wait_for(
            asyncpg.create_pool(
                str(config.db_dsn),
                min_size=config.db_pool_min,
                max_size=config.db_pool_max,
            ),
            timeout=5.0,
        )
    except asyncio.TimeoutError:
        raise asyncio.TimeoutError(
            "Database connection timed out after 5 seconds. "
            "Check DB_DSN and that PostgreSQL accepts connections."
        )

    if _pool is None:
        raise RuntimeError("Failed to create database pool")

    try:
        async with _pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            if result != 1:
                raise RuntimeError(f"Health check failed: expected 1, got {result}")
    except Exception as e:
        await _pool.close()
        _pool = None
        raise RuntimeError(f"Database health check failed: {e}") from e

    logger.info(
        f"Database pool ready: min={config.db_pool_min}, max={config.db_pool_max}"
    )
    return _pool


async def close_pool() -> None:
    """
    Close the database connection pool if it exists.

    Waits up to 5 seconds for a graceful close, then terminates the pool so
    shutdown never hangs on a leaked connection.
    """
    global _pool
    if _pool is not None:
        try:
            await asyncio.wait_for(_pool.close(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning(
                "Pool close timed out after 5 seconds, terminating connections"
            )
            _pool.terminate()
        finally:
            _pool = None
