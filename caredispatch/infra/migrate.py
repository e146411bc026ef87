#!/usr/bin/env python3
# caredispatch/infra/migrate.py
"""
Apply the caredispatch schema to PostgreSQL.

    python -m caredispatch.infra.migrate            # apply pending files
    python -m caredispatch.infra.migrate --dry-run  # list them only

The API validates the schema version on startup but never migrates, so this
runs first (deploy step or init container).
"""
import argparse
import asyncio
import sys

from caredispatch.config import settings
from caredispatch.infra.db_async import close_pool, init_pool
from caredispatch.infra.logging_config import get_logger, setup_logging
from caredispatch.infra.migrations_async import apply_migrations

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def run(dry_run: bool) -> int:
    logger.info(f"Migrating {settings.app_env} database {settings.pghost}:{settings.pgport}/{settings.pgdatabase}")

    try:
        await init_pool()
        versions = await apply_migrations(dry_run=dry_run)
    except Exception as exc:
        logger.critical(f"Migration failed, schema unchanged: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    verb = "pending" if dry_run else "applied"
    if not versions:
        logger.info("Schema is up to date")
    for version in versions:
        logger.info(f"  {verb}: {version}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations without applying them")
    args = parser.parse_args()
    return asyncio.run(run(args.dry_run))


if __name__ == "__main__":
    sys.exit(main())
