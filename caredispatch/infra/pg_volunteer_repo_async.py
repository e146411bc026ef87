# caredispatch/infra/pg_volunteer_repo_async.py
"""
Async PostgreSQL volunteer directory (asyncpg).

Read side used by matching and status updates, plus the bulk insert/delete
used by the development seeding endpoints. Registration and admin approval
own the table otherwise.
"""
from __future__ import annotations

from typing import Optional, Sequence

from caredispatch.core.dispatch.domain import ActivationState, Volunteer, VolunteerCategory
from caredispatch.core.dispatch.errors import StorageError, ValidationError
from caredispatch.core.dispatch.geo import format_location, parse_location
from caredispatch.core.dispatch.ports import AsyncVolunteerDirectory
from caredispatch.infra.db_resilience_async import safe_db_conn, storage_errors
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_COLUMNS = "id, name, email, category, activation_state, location"


def _row_to_volunteer(row) -> Optional[Volunteer]:
    """Map a volunteers row; rows with an unparseable location are skipped."""
    try:
        location = parse_location(row["location"])
    except ValidationError as exc:
        logger.warning(
            f"Skipping volunteer with invalid location: {exc.detail}",
            extra={"volunteer_id": row["id"]},
        )
        return None

    return Volunteer(
        id=row["id"],
        name=row["name"] or "",
        email=row["email"],
        category=VolunteerCategory(row["category"]),
        activation_state=ActivationState(row["activation_state"]),
        location=location,
    )


class AsyncPostgresVolunteerDirectory(AsyncVolunteerDirectory):
    """Async PostgreSQL implementation of the volunteer directory."""

    async def find_active_by_category(self, category: VolunteerCategory) -> list[Volunteer]:
        """
        ACTIVE volunteers of ``category``.

        Ordered by id so nearest-match tie-breaking is reproducible.
        """
        async with storage_errors("find_active_by_category"):
            async with safe_db_conn() as conn:
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM volunteers "
                    "WHERE category = $1 AND activation_state = $2 "
                    "ORDER BY id",
                    category.value,
                    ActivationState.ACTIVE.value,
                )

        volunteers = [v for v in (_row_to_volunteer(r) for r in rows) if v is not None]
        logger.debug(f"Directory scan: {len(volunteers)} active {category.value} volunteers")
        return volunteers

    async def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]:
        async with storage_errors("get_volunteer"):
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM volunteers WHERE id = $1",
                    volunteer_id,
                )
        if not row:
            return None

        volunteer = _row_to_volunteer(row)
        if volunteer is None:
            # Row exists; a bad location is a data fault, not a missing volunteer
            raise StorageError(f"Volunteer '{volunteer_id}' has an unreadable location")
        return volunteer

    async def get_volunteers(self, volunteer_ids: Sequence[str]) -> dict[str, Volunteer]:
        ids = list(dict.fromkeys(volunteer_ids))
        if not ids:
            return {}

        async with storage_errors("get_volunteers"):
            async with safe_db_conn() as conn:
                rows = await conn.fetch(
                    f"SELECT {_COLUMNS} FROM volunteers WHERE id = ANY($1::text[]) ORDER BY id",
                    ids,
                )

        result = {}
        for row in rows:
            volunteer = _row_to_volunteer(row)
            if volunteer is not None:
                result[volunteer.id] = volunteer
        return result

    async def add_volunteers(self, volunteers: Sequence[Volunteer]) -> int:
        """Insert volunteers in one transaction. Returns the number inserted."""
        if not volunteers:
            return 0

        async with storage_errors("add_volunteers"):
            async with safe_db_conn(autocommit=False) as conn:
                await conn.executemany(
                    """
                    INSERT INTO volunteers (id, name, email, category, activation_state, location)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    [
                        (
                            v.id,
                            v.name,
                            v.email,
                            v.category.value,
                            v.activation_state.value,
                            format_location(v.location),
                        )
                        for v in volunteers
                    ],
                )

        logger.info(f"Inserted {len(volunteers)} volunteers")
        return len(volunteers)

    async def delete_volunteers(self, volunteer_ids: Sequence[str] | None = None) -> int:
        """Delete the given ids, or every volunteer when ``None``."""
        async with storage_errors("delete_volunteers"):
            async with safe_db_conn() as conn:
                if volunteer_ids is None:
                    result = await conn.execute("DELETE FROM volunteers")
                else:
                    result = await conn.execute(
                        "DELETE FROM volunteers WHERE id = ANY($1::text[])",
                        list(volunteer_ids),
                    )

        # asyncpg returns "DELETE N"
        deleted = int(result.split()[-1]) if result and result.startswith("DELETE") else 0
        logger.info(f"Deleted {deleted} volunteers")
        return deleted
