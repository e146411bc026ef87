# caredispatch/infra/schema_validator.py
"""
Startup guard for the Postgres backend.

The dispatch store writes per-category slot columns directly, so running
against an older or newer schema fails late and confusingly. Refuse to start
instead.
"""
from __future__ import annotations
from caredispatch.config import settings
from caredispatch.infra.db_async import db_conn
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_MIGRATE_HINT = "Run migrations first: python -m caredispatch.infra.migrate"


def _fail(reason: str) -> None:
    logger.critical(reason)
    raise RuntimeError(f"{reason}. {_MIGRATE_HINT}")


async def validate_schema_version() -> str:
    """Return the applied schema version, or raise RuntimeError if it is not the expected one."""
    async with db_conn() as conn:
        if not await conn.fetchval("SELECT to_regclass('schema_migrations') IS NOT NULL"):
            _fail("Schema migrations table not found")
        # NNN_ prefixes make the lexical max the newest file
        current = await conn.fetchval("SELECT max(version) FROM schema_migrations")

    if current is None:
        _fail("No migrations have been applied")

    if current != settings.expected_schema_version:
        _fail(f"Schema version mismatch: expected {settings.expected_schema_version}, found {current}")

    logger.info(f"Schema version validated: {current}")
    return current
