# caredispatch/core/dispatch/ports.py
from __future__ import annotations
from typing import Protocol, Optional, Sequence

from caredispatch.core.dispatch.domain import (
    Complaint,
    DispatchRecord,
    IntakeResult,
    SlotStatus,
    Volunteer,
    VolunteerCategory,
)


# ============================================================================
# ASYNC PROTOCOLS (implemented by asyncpg and in-memory adapters)
# ============================================================================

class AsyncVolunteerDirectory(Protocol):
    async def find_active_by_category(self, category: VolunteerCategory) -> list[Volunteer]:
        """ACTIVE volunteers of ``category`` ordered by id. Empty list when none."""
        ...

    async def get_volunteer(self, volunteer_id: str) -> Optional[Volunteer]: ...

    async def get_volunteers(self, volunteer_ids: Sequence[str]) -> dict[str, Volunteer]: ...

    async def add_volunteers(self, volunteers: Sequence[Volunteer]) -> int: ...

    async def delete_volunteers(self, volunteer_ids: Sequence[str] | None = None) -> int:
        """Delete the given ids, or every volunteer when ``None``."""
        ...


class AsyncDispatchStore(Protocol):
    async def create_complaint_with_dispatch(
        self, complaint: Complaint, record: DispatchRecord
    ) -> None:
        """
        Persist the complaint and its dispatch record atomically.

        Either both rows exist afterwards or neither does.
        Raises StorageError on duplicate ids or unavailable storage.
        """
        ...

    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]: ...

    async def list_dispatches_for_complaint(self, complaint_id: str) -> list[DispatchRecord]: ...

    async def get_dispatch(self, dispatch_id: str) -> Optional[DispatchRecord]: ...

    async def list_dispatches_for_volunteer(
        self, category: VolunteerCategory, volunteer_id: str
    ) -> list[DispatchRecord]:
        """Dispatches whose ``category`` slot references ``volunteer_id``, newest first."""
        ...

    async def update_slot_status(
        self,
        dispatch_id: str,
        category: VolunteerCategory,
        volunteer_id: str,
        expected: SlotStatus,
        new: SlotStatus,
    ) -> Optional[DispatchRecord]:
        """
        Compare-and-set one role-slot's status.

        Writes ``new`` only if the slot still references ``volunteer_id`` and
        still holds ``expected``; in the same unit of work the owning
        complaint's aggregate status is recomputed from the updated slots.
        Returns the updated record, or None when the condition did not hold.
        """
        ...

    async def ping(self) -> bool: ...


class VolunteerNotifier(Protocol):
    async def notify(self, result: IntakeResult) -> None:
        """Tell each matched volunteer about the new dispatch."""
        ...
