# caredispatch/infra/db_async.py
"""
asyncpg pool shared by the Postgres volunteer directory and dispatch store.

The FastAPI lifespan (or the migrate CLI) owns the pool through
init_pool / close_pool. Repositories borrow connections with db_conn();
nothing under caredispatch.core imports this module.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from caredispatch.config import settings
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


def _server_settings() -> dict[str, str]:
    # Bounds a stuck dispatch transaction so it cannot hold row locks
    # on a complaint's slots indefinitely
    return {
        "application_name": "caredispatch",
        "statement_timeout": str(settings.pg_statement_timeout_ms),
        "idle_in_transaction_session_timeout": str(settings.pg_idle_in_tx_timeout_ms),
    }


async def init_pool() -> None:
    """Create the pool once; repeated calls are no-ops."""
    global _pool

    if _pool is not None:
        return

    logger.info(
        f"Opening asyncpg pool to {settings.pghost if not settings.database_url else 'DATABASE_URL'} "
        f"(min={settings.pg_pool_min}, max={settings.pg_pool_max})"
    )
    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        server_settings=_server_settings(),
    )


async def close_pool() -> None:
    global _pool

    if _pool is None:
        return

    pool, _pool = _pool, None
    await pool.close()
    logger.info("asyncpg pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection.

    With ``autocommit=False`` the whole block is one transaction: intake
    writes the complaint and its dispatch together, and a slot transition
    rewrites the complaint status in the same unit of work.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    async with _pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
