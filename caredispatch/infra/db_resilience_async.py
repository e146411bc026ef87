# caredispatch/infra/db_resilience_async.py
"""
Async database resilience utilities.

Retry on transient connection errors and translation of asyncpg failures
into the dispatch ``StorageError``.
"""
from __future__ import annotations
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager

import asyncpg
from caredispatch.core.dispatch.errors import StorageError
from caredispatch.infra.db_async import db_conn
from caredispatch.infra.logging_config import get_logger
from caredispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


_TRANSIENT_TYPES = (
    asyncpg.PostgresConnectionError,
    asyncpg.TooManyConnectionsError,
    asyncpg.DeadlockDetectedError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)

# Messages seen from poolers and dropped sockets that surface as plain exceptions
_TRANSIENT_MESSAGES = ("connection reset", "server closed", "too many connections")


def is_transient_error(exc: Exception) -> bool:
    """True when acquiring a connection again may succeed (network, pool pressure, deadlock)."""
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    # Constraint violations and bad SQL never heal on retry
    if isinstance(exc, asyncpg.PostgresError):
        return False
    message = str(exc).lower()
    return any(pattern in message for pattern in _TRANSIENT_MESSAGES)


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True):
    """
    Database connection with retry on transient errors while acquiring it.

    Usage:
        async with safe_db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM volunteers WHERE category = $1", "LEGAL")

    Only connection acquisition is retried; once the body has started,
    errors propagate unchanged (a half-run transaction is rolled back by
    db_conn and must not be replayed blindly).
    """
    max_retries = 3
    delay = 0.1

    async with AsyncExitStack() as stack:
        for attempt in range(max_retries + 1):
            try:
                conn = await stack.enter_async_context(db_conn(autocommit=autocommit))
                break
            except Exception as exc:
                if not is_transient_error(exc):
                    raise

                if attempt >= max_retries:
                    logger.error(f"Max retries ({max_retries}) exceeded getting connection")
                    raise

                logger.warning(
                    f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2.0, 5.0)

        yield conn


@asynccontextmanager
async def storage_errors(operation: str):
    """
    Translate database failures into ``StorageError``.

    Usage:
        async with storage_errors("create_dispatch"):
            async with safe_db_conn(autocommit=False) as conn:
                ...
    """
    try:
        yield
    except StorageError:
        raise
    except asyncpg.UniqueViolationError as exc:
        DispatchMetrics.database_error(operation)
        logger.error(f"Constraint violation in {operation}: {exc}")
        raise StorageError(f"Duplicate record in {operation}") from exc
    except asyncpg.IntegrityConstraintViolationError as exc:
        DispatchMetrics.database_error(operation)
        logger.error(f"Integrity violation in {operation}: {exc}")
        raise StorageError(f"Constraint violation in {operation}") from exc
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
        DispatchMetrics.database_error(operation)
        logger.error(f"Database error in {operation}: {exc.__class__.__name__}", exc_info=True)
        raise StorageError(f"Storage unavailable during {operation}") from exc
    except RuntimeError as exc:
        # db_conn raises RuntimeError when the pool is not initialized
        DispatchMetrics.database_error(operation)
        logger.error(f"Database not ready in {operation}: {exc}")
        raise StorageError(f"Storage unavailable during {operation}") from exc
