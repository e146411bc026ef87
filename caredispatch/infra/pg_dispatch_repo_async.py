# caredispatch/infra/pg_dispatch_repo_async.py
"""
Async PostgreSQL dispatch store (asyncpg).

Each role-slot is a pair of columns on ``dispatches``
(``<category>_volunteer_id``, ``<category>_volunteer_status``). Updates touch
only the caller's pair and are conditional on the status the caller last
saw, so concurrent updates to different slots never overwrite each other
and a lost race on the same slot is reported instead of applied.
"""
from __future__ import annotations

from typing import Optional

from caredispatch.core.dispatch.domain import (
    CATEGORY_ORDER,
    Complaint,
    ComplaintStatus,
    DispatchRecord,
    RoleSlot,
    SlotStatus,
    VolunteerCategory,
    derive_aggregate_status,
)
from caredispatch.core.dispatch.geo import format_location, parse_location
from caredispatch.core.dispatch.ports import AsyncDispatchStore
from caredispatch.infra.db_resilience_async import safe_db_conn, storage_errors
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


# Fixed column names per category; the only identifiers ever interpolated into SQL
_SLOT_COLUMNS: dict[VolunteerCategory, tuple[str, str]] = {
    VolunteerCategory.LEGAL: ("legal_volunteer_id", "legal_volunteer_status"),
    VolunteerCategory.POLICE: ("police_volunteer_id", "police_volunteer_status"),
    VolunteerCategory.MENTAL: ("mental_volunteer_id", "mental_volunteer_status"),
}

_DISPATCH_COLUMNS = ", ".join(
    ["id", "complaint_id"]
    + [col for c in CATEGORY_ORDER for col in _SLOT_COLUMNS[c]]
    + ["created_at"]
)

_COMPLAINT_COLUMNS = "id, phone_no, name, type, description, location, status, reported_at"


def _row_to_dispatch(row) -> DispatchRecord:
    slots = {}
    for category in CATEGORY_ORDER:
        id_col, status_col = _SLOT_COLUMNS[category]
        volunteer_id = row[id_col]
        status = row[status_col]
        slots[category] = RoleSlot(
            volunteer_id=volunteer_id,
            status=SlotStatus(status) if status else None,
        )
    return DispatchRecord(
        id=row["id"],
        complaint_id=row["complaint_id"],
        slots=slots,
        created_at=row["created_at"],
    )


def _row_to_complaint(row) -> Complaint:
    return Complaint(
        id=row["id"],
        phone_no=row["phone_no"],
        name=row["name"],
        type=row["type"],
        description=row["description"],
        location=parse_location(row["location"]),
        status=ComplaintStatus(row["status"]),
        reported_at=row["reported_at"],
    )


def _slot_values(record: DispatchRecord) -> list:
    values = []
    for category in CATEGORY_ORDER:
        slot = record.slot(category)
        values.append(slot.volunteer_id)
        values.append(slot.status.value if slot.status else None)
    return values


class AsyncPostgresDispatchStore(AsyncDispatchStore):
    """Async PostgreSQL implementation of the dispatch store."""

    async def create_complaint_with_dispatch(
        self, complaint: Complaint, record: DispatchRecord
    ) -> None:
        """
        Insert the complaint and its dispatch record in one transaction.

        Raises:
            StorageError: duplicate id, constraint violation, or database unavailable.
                Nothing is written in that case.
        """
        async with storage_errors("create_complaint_with_dispatch"):
            async with safe_db_conn(autocommit=False) as conn:
                await conn.execute(
                    f"""
                    INSERT INTO complaints ({_COMPLAINT_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    complaint.id,
                    complaint.phone_no,
                    complaint.name,
                    complaint.type,
                    complaint.description,
                    format_location(complaint.location),
                    complaint.status.value,
                    complaint.reported_at,
                )
                await conn.execute(
                    f"""
                    INSERT INTO dispatches ({_DISPATCH_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    record.id,
                    record.complaint_id,
                    *_slot_values(record),
                    record.created_at,
                )

        logger.debug(
            "Complaint and dispatch persisted",
            extra={"complaint_id": complaint.id, "dispatch_id": record.id},
        )

    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        async with storage_errors("get_complaint"):
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_COMPLAINT_COLUMNS} FROM complaints WHERE id = $1",
                    complaint_id,
                )
        return _row_to_complaint(row) if row else None

    async def list_dispatches_for_complaint(self, complaint_id: str) -> list[DispatchRecord]:
        async with storage_errors("list_dispatches_for_complaint"):
            async with safe_db_conn() as conn:
                rows = await conn.fetch(
                    f"SELECT {_DISPATCH_COLUMNS} FROM dispatches "
                    "WHERE complaint_id = $1 ORDER BY created_at, id",
                    complaint_id,
                )
        return [_row_to_dispatch(r) for r in rows]

    async def get_dispatch(self, dispatch_id: str) -> Optional[DispatchRecord]:
        async with storage_errors("get_dispatch"):
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_DISPATCH_COLUMNS} FROM dispatches WHERE id = $1",
                    dispatch_id,
                )
        return _row_to_dispatch(row) if row else None

    async def list_dispatches_for_volunteer(
        self, category: VolunteerCategory, volunteer_id: str
    ) -> list[DispatchRecord]:
        id_col, _ = _SLOT_COLUMNS[category]
        async with storage_errors("list_dispatches_for_volunteer"):
            async with safe_db_conn() as conn:
                rows = await conn.fetch(
                    f"SELECT {_DISPATCH_COLUMNS} FROM dispatches "
                    f"WHERE {id_col} = $1 ORDER BY created_at DESC, id",
                    volunteer_id,
                )
        return [_row_to_dispatch(r) for r in rows]

    async def update_slot_status(
        self,
        dispatch_id: str,
        category: VolunteerCategory,
        volunteer_id: str,
        expected: SlotStatus,
        new: SlotStatus,
    ) -> Optional[DispatchRecord]:
        """
        Conditional single-slot update plus complaint status refresh.

        Returns None (and changes nothing) when the slot no longer
        references ``volunteer_id`` or no longer holds ``expected``.
        """
        id_col, status_col = _SLOT_COLUMNS[category]

        async with storage_errors("update_slot_status"):
            async with safe_db_conn(autocommit=False) as conn:
                row = await conn.fetchrow(
                    f"""
                    UPDATE dispatches
                    SET {status_col} = $4
                    WHERE id = $1 AND {id_col} = $2 AND {status_col} = $3
                    RETURNING {_DISPATCH_COLUMNS}
                    """,
                    dispatch_id,
                    volunteer_id,
                    expected.value,
                    new.value,
                )
                if row is None:
                    return None

                record = _row_to_dispatch(row)

                sibling_rows = await conn.fetch(
                    f"SELECT {_DISPATCH_COLUMNS} FROM dispatches WHERE complaint_id = $1",
                    record.complaint_id,
                )
                slots = [
                    slot
                    for r in sibling_rows
                    for slot in _row_to_dispatch(r).slots.values()
                ]
                aggregate = derive_aggregate_status(slots)

                await conn.execute(
                    "UPDATE complaints SET status = $2 WHERE id = $1",
                    record.complaint_id,
                    aggregate.value,
                )

        logger.debug(
            f"{category.value} slot {expected.value} -> {new.value}; complaint {aggregate.value}",
            extra={"dispatch_id": dispatch_id, "volunteer_id": volunteer_id},
        )
        return record

    async def ping(self) -> bool:
        async with storage_errors("ping"):
            async with safe_db_conn() as conn:
                await conn.fetchval("SELECT 1")
        return True
