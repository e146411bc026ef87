# caredispatch/infra/migrations_async.py
"""
Forward-only SQL migrations for the complaints / volunteers / dispatches schema.

Each ``caredispatch/infra/sql/NNN_name.sql`` file runs once; its filename is
recorded in ``schema_migrations``. A run is one transaction, so a failing
file leaves the schema exactly as it was.
"""
from __future__ import annotations
from pathlib import Path

import asyncpg

from caredispatch.infra.db_async import db_conn
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

_CREATE_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations(
  version text PRIMARY KEY,
  applied_at timestamptz NOT NULL DEFAULT now()
)
"""


def migration_files() -> list[Path]:
    """Every migration shipped with the package, oldest first."""
    return sorted(p for p in SQL_DIR.glob("*.sql") if p.is_file())


def pending_migrations(applied: set[str]) -> list[Path]:
    return [p for p in migration_files() if p.name not in applied]


async def applied_versions(conn: asyncpg.Connection) -> set[str]:
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def apply_migrations(dry_run: bool = False) -> list[str]:
    """
    Apply pending migrations and return their filenames.

    With ``dry_run`` nothing is executed; the pending list is returned as is.
    """
    async with db_conn(autocommit=False) as conn:
        await conn.execute(_CREATE_TRACKING_TABLE)
        pending = pending_migrations(await applied_versions(conn))

        if dry_run:
            return [p.name for p in pending]

        for path in pending:
            logger.info(f"Applying migration {path.name}")
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", path.name)

    logger.info(f"Migrations complete: {len(pending)} applied")
    return [p.name for p in pending]
