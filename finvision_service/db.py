"""Async database connection pool with an in-memory fallback mode.

When no database is configured, or the first connection attempt fails, the
service keeps running with the stores' in-memory tables (data is lost on
restart). ``is_db_connected()`` tells the stores which mode is active.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


class DatabaseConfig:
    """Builds connection strings based on detected environment."""

    @staticmethod
    def get_connection_string() -> str | None:
        # Priority 1: Explicit override
        if url := os.environ.get("DATABASE_URL"):
            return url

        # Priority 2: Discrete settings, only when a host is configured
        host = os.environ.get("DB_HOST")
        if not host:
            return None
        sslmode = os.environ.get("DB_SSLMODE", "disable")
        return (
            f"postgresql://{os.environ.get('DB_USER', 'finvision')}:"
            f"{os.environ.get('DB_PASSWORD', 'finvision')}@"
            f"{host}:"
            f"{os.environ.get('DB_PORT', '5432')}/"
            f"{os.environ.get('DB_NAME', 'finvision')}?sslmode={sslmode}"
        )

    @classmethod
    def get_migration_url(cls) -> str:
        """Connection string for Alembic's sync psycopg2 engine."""
        url = cls.get_connection_string()
        if url is None:
            raise RuntimeError("Set DATABASE_URL or DB_HOST before running migrations")
        for prefix in ("postgresql://", "postgres://"):
            if url.startswith(prefix):
                return "postgresql+psycopg2://" + url[len(prefix):]
        return url


async def init_db() -> bool:
    """Create the pool if a database is configured. Returns True when connected."""
    global _pool  # noqa: PLW0603
    if _pool is not None:
        return True

    dsn = DatabaseConfig.get_connection_string()
    if dsn is None:
        logger.info("No database configured; using in-memory store")
        return False

    logger.info("Creating database pool (host hidden for security)")
    try:
        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=int(os.environ.get("DB_POOL_MAX", "5")),
            command_timeout=30,
        )
    except (OSError, asyncpg.PostgresError) as e:
        logger.error("Database connection failed, using in-memory store: %s", e)
        _pool = None
        return False
    return True


def is_db_connected() -> bool:
    return _pool is not None


async def close_pool() -> None:
    """Gracefully close the connection pool."""
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


async def check_db_connection() -> bool:
    """Health check: returns True if the database is reachable."""
    if _pool is None:
        return False
    try:
        async with _pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False


@asynccontextmanager
async def connection(conn: asyncpg.Connection | None = None) -> AsyncIterator[asyncpg.Connection]:
    """Acquire a pooled connection wrapped in a transaction.

    When ``conn`` is given it is yielded as-is, so several store calls can
    share the caller's transaction.
    """
    if conn is not None:
        yield conn
        return
    if _pool is None:
        raise RuntimeError("Database pool is not initialized")
    async with _pool.acquire() as conn, conn.transaction():
        yield conn
