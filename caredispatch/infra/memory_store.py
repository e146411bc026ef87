# caredispatch/infra/memory_store.py
"""
In-memory volunteer directory and dispatch store.

Used with ``STORAGE_BACKEND=memory`` for local runs and by the HTTP tests.
State lives only in this process. One ``asyncio.Lock`` per store guards
every write, which gives the same compare-and-set guarantee the
conditional UPDATE gives in Postgres.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Optional, Sequence

from caredispatch.core.dispatch.domain import (
    Complaint,
    DispatchRecord,
    SlotStatus,
    Volunteer,
    VolunteerCategory,
    derive_aggregate_status,
)
from caredispatch.core.dispatch.errors import StorageError
from caredispatch.core.dispatch.ports import AsyncDispatchStore, AsyncVolunteerDirectory
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryVolunteerDirectory(AsyncVolunteerDirectory):
    def __init__(self, volunteers: Sequence[Volunteer] = ()):
        self._volunteers: dict[str, Volunteer] = {v.id: v for v in volunteers}
        self._lock = asyncio.Lock()

    async def find_active_by_category(self, category: VolunteerCategory) -> list[Volunteer]:
        return sorted(
            (v for v in self._volunteers.values() if v.category == category and v.is_active),
            key=lambda v: v.id,
        )

    async def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]:
        return self._volunteers.get(volunteer_id)

    async def get_volunteers(self, volunteer_ids: Sequence[str]) -> dict[str, Volunteer]:
        return {vid: self._volunteers[vid] for vid in volunteer_ids if vid in self._volunteers}

    async def add_volunteers(self, volunteers: Sequence[Volunteer]) -> int:
        async with self._lock:
            duplicates = [v.id for v in volunteers if v.id in self._volunteers]
            if duplicates:
                raise StorageError(f"Duplicate record in add_volunteers: {', '.join(duplicates)}")
            for v in volunteers:
                self._volunteers[v.id] = v
        return len(volunteers)

    async def delete_volunteers(self, volunteer_ids: Sequence[str] | None = None) -> int:
        async with self._lock:
            if volunteer_ids is None:
                deleted = len(self._volunteers)
                self._volunteers.clear()
                return deleted

            deleted = 0
            for vid in volunteer_ids:
                if self._volunteers.pop(vid, None) is not None:
                    deleted += 1
            return deleted


class InMemoryDispatchStore(AsyncDispatchStore):
    def __init__(self):
        self._complaints: dict[str, Complaint] = {}
        self._dispatches: dict[str, DispatchRecord] = {}
        self._lock = asyncio.Lock()

    async def create_complaint_with_dispatch(
        self, complaint: Complaint, record: DispatchRecord
    ) -> None:
        async with self._lock:
            if complaint.id in self._complaints:
                raise StorageError(f"Duplicate complaint id '{complaint.id}'")
            if record.id in self._dispatches:
                raise StorageError(f"Duplicate dispatch id '{record.id}'")
            if record.complaint_id != complaint.id:
                raise StorageError("Dispatch record does not reference the complaint being stored")

            self._complaints[complaint.id] = replace(complaint)
            self._dispatches[record.id] = record

    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        complaint = self._complaints.get(complaint_id)
        # Callers get a snapshot; transitions must not reach into objects they hold
        return replace(complaint) if complaint is not None else None

    async def list_dispatches_for_complaint(self, complaint_id: str) -> list[DispatchRecord]:
        records = [r for r in self._dispatches.values() if r.complaint_id == complaint_id]
        return sorted(records, key=lambda r: (r.created_at, r.id))

    async def get_dispatch(self, dispatch_id: str) -> Optional[DispatchRecord]:
        return self._dispatches.get(dispatch_id)

    async def list_dispatches_for_volunteer(
        self, category: VolunteerCategory, volunteer_id: str
    ) -> list[DispatchRecord]:
        records = [
            r for r in self._dispatches.values()
            if r.slot(category).volunteer_id == volunteer_id
        ]
        # newest first, id ascending within the same timestamp
        records.sort(key=lambda r: r.id)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def update_slot_status(
        self,
        dispatch_id: str,
        category: VolunteerCategory,
        volunteer_id: str,
        expected: SlotStatus,
        new: SlotStatus,
    ) -> Optional[DispatchRecord]:
        async with self._lock:
            record = self._dispatches.get(dispatch_id)
            if record is None:
                return None

            slot = record.slot(category)
            if slot.volunteer_id != volunteer_id or slot.status != expected:
                return None

            updated = record.with_slot(category, slot.with_status(new))
            self._dispatches[dispatch_id] = updated

            complaint = self._complaints.get(updated.complaint_id)
            if complaint is not None:
                slots = [
                    s
                    for r in self._dispatches.values()
                    if r.complaint_id == updated.complaint_id
                    for s in r.slots.values()
                ]
                self._complaints[complaint.id] = replace(complaint, status=derive_aggregate_status(slots))

            return updated

    async def ping(self) -> bool:
        return True
