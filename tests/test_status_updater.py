# tests/test_status_updater.py
"""Tests for volunteer-scoped slot transitions"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from caredispatch.core.dispatch.coordinator import DispatchCoordinator
from caredispatch.core.dispatch.domain import (
    CallerIdentity,
    ComplaintStatus,
    SlotStatus,
    VolunteerCategory,
)
from caredispatch.core.dispatch.errors import ConflictError, NotFoundError, ValidationError
from caredispatch.core.dispatch.status_updater import StatusUpdater, parse_slot_status
from caredispatch.infra.memory_store import InMemoryVolunteerDirectory
from caredispatch.infra.metrics import get_metrics_collector

LEGAL = CallerIdentity("legal-a", VolunteerCategory.LEGAL)
POLICE = CallerIdentity("police-a", VolunteerCategory.POLICE)
MENTAL = CallerIdentity("mental-a", VolunteerCategory.MENTAL)


class TestParseSlotStatus:
    def test_case_insensitive(self):
        assert parse_slot_status("in_progress") == SlotStatus.IN_PROGRESS

    def test_enum_passthrough(self):
        assert parse_slot_status(SlotStatus.RESOLVED) == SlotStatus.RESOLVED

    @pytest.mark.parametrize("raw", [None, "", "DONE", "CLOSED"])
    def test_unknown_values_rejected(self, raw):
        with pytest.raises(ValidationError):
            parse_slot_status(raw)


class TestStatusUpdater:
    @pytest.fixture(autouse=True)
    def _setup(self, directory, store, fixed_now):
        self.directory = directory
        self.store = store
        self.now = fixed_now
        self.counter = 0

        def next_id():
            self.counter += 1
            return f"id-{self.counter}"

        self.coordinator = DispatchCoordinator(
            directory=directory,
            store=store,
            id_factory=next_id,
            clock=lambda: self.now,
        )
        self.updater = StatusUpdater(directory=directory, store=store)

    async def _file(self, location: str = "12.01,12.01"):
        return await self.coordinator.file_complaint(
            phone_no="+919876543210",
            complaint_type="PHYSICAL",
            location=location,
        )

    # ------------------------------------------------------------------
    # Happy path
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_owner_moves_own_slot_only(self):
        result = await self._file()

        updated = await self.updater.update_status(LEGAL, "RESOLVED", dispatch_id=result.dispatch.id)

        assert updated.slot(VolunteerCategory.LEGAL).status == SlotStatus.RESOLVED
        assert updated.slot(VolunteerCategory.POLICE) == result.dispatch.slot(VolunteerCategory.POLICE)
        assert updated.slot(VolunteerCategory.MENTAL) == result.dispatch.slot(VolunteerCategory.MENTAL)

        complaint = await self.store.get_complaint(result.complaint.id)
        assert complaint.status == ComplaintStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_forward_chain_then_terminal(self):
        result = await self._file()
        dispatch_id = result.dispatch.id

        record = await self.updater.update_status(POLICE, "IN_PROGRESS", dispatch_id)
        assert record.slot(VolunteerCategory.POLICE).status == SlotStatus.IN_PROGRESS

        record = await self.updater.update_status(POLICE, "RESOLVED", dispatch_id)
        assert record.slot(VolunteerCategory.POLICE).status == SlotStatus.RESOLVED

        with pytest.raises(ConflictError, match="already RESOLVED"):
            await self.updater.update_status(POLICE, "RESOLVED", dispatch_id)

    @pytest.mark.asyncio
    async def test_last_assigned_slot_resolves_complaint(self):
        result = await self._file()
        dispatch_id = result.dispatch.id

        await self.updater.update_status(LEGAL, "RESOLVED", dispatch_id)
        await self.updater.update_status(POLICE, "IN_PROGRESS", dispatch_id)
        await self.updater.update_status(POLICE, "RESOLVED", dispatch_id)
        assert (await self.store.get_complaint(result.complaint.id)).status == ComplaintStatus.DISPATCHED

        record = await self.updater.update_status(MENTAL, "RESOLVED", dispatch_id)

        assert record.aggregate_status == ComplaintStatus.RESOLVED
        assert (await self.store.get_complaint(result.complaint.id)).status == ComplaintStatus.RESOLVED
        assert get_metrics_collector().get_counter("complaints_resolved_total") == 1

    @pytest.mark.asyncio
    async def test_resolution_leaves_intake_result_untouched(self):
        result = await self._file()
        dispatch_id = result.dispatch.id

        await self.updater.update_status(LEGAL, "RESOLVED", dispatch_id)
        await self.updater.update_status(POLICE, "RESOLVED", dispatch_id)
        await self.updater.update_status(MENTAL, "RESOLVED", dispatch_id)

        assert result.complaint.status == ComplaintStatus.DISPATCHED
        stored = await self.store.get_complaint(result.complaint.id)
        assert stored.status == ComplaintStatus.RESOLVED

        stored.status = ComplaintStatus.DISPATCHED
        assert (await self.store.get_complaint(result.complaint.id)).status == ComplaintStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_null_slots_do_not_block_resolution(self, make_volunteer, store):
        directory = InMemoryVolunteerDirectory([
            make_volunteer("legal-a", VolunteerCategory.LEGAL, 12.0, 12.0),
        ])
        coordinator = DispatchCoordinator(directory=directory, store=store)
        updater = StatusUpdater(directory=directory, store=store)
        result = await coordinator.file_complaint(
            phone_no="+919876543210", complaint_type="PHYSICAL", location="12,12"
        )

        record = await updater.update_status(LEGAL, "RESOLVED", result.dispatch.id)

        assert record.slot(VolunteerCategory.POLICE).volunteer_id is None
        assert (await store.get_complaint(result.complaint.id)).status == ComplaintStatus.RESOLVED

    # ------------------------------------------------------------------
    # Rejections
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_backward_transition_rejected(self):
        result = await self._file()
        await self.updater.update_status(LEGAL, "IN_PROGRESS", result.dispatch.id)

        with pytest.raises(ConflictError, match="Illegal transition"):
            await self.updater.update_status(LEGAL, "AUTO_DISPATCHED", result.dispatch.id)

        record = await self.store.get_dispatch(result.dispatch.id)
        assert record.slot(VolunteerCategory.LEGAL).status == SlotStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_same_status_rejected(self):
        result = await self._file()
        await self.updater.update_status(LEGAL, "IN_PROGRESS", result.dispatch.id)

        with pytest.raises(ConflictError):
            await self.updater.update_status(LEGAL, "IN_PROGRESS", result.dispatch.id)

    @pytest.mark.asyncio
    async def test_unknown_status_rejected_before_lookup(self):
        with pytest.raises(ValidationError):
            await self.updater.update_status(LEGAL, "FINISHED", dispatch_id="does-not-matter")

        assert get_metrics_collector().get_counter(
            "slot_transitions_rejected_total", {"reason": "ValidationError"}
        ) == 1

    @pytest.mark.asyncio
    async def test_other_volunteer_cannot_touch_slot(self):
        result = await self._file()

        # legal-b is a real LEGAL volunteer, just not the one assigned
        with pytest.raises(NotFoundError):
            await self.updater.update_status(
                CallerIdentity("legal-b", VolunteerCategory.LEGAL), "RESOLVED", result.dispatch.id
            )

        record = await self.store.get_dispatch(result.dispatch.id)
        assert record.slot(VolunteerCategory.LEGAL).status == SlotStatus.AUTO_DISPATCHED

    @pytest.mark.asyncio
    async def test_unknown_volunteer_not_found(self):
        result = await self._file()

        with pytest.raises(NotFoundError, match="Volunteer"):
            await self.updater.update_status(
                CallerIdentity("ghost", VolunteerCategory.LEGAL), "RESOLVED", result.dispatch.id
            )

    @pytest.mark.asyncio
    async def test_category_mismatch_rejected(self):
        result = await self._file()

        with pytest.raises(ConflictError, match="does not match"):
            await self.updater.update_status(
                CallerIdentity("legal-a", VolunteerCategory.POLICE), "RESOLVED", result.dispatch.id
            )

    @pytest.mark.asyncio
    async def test_unknown_dispatch_not_found(self):
        with pytest.raises(NotFoundError, match="Dispatch"):
            await self.updater.update_status(LEGAL, "RESOLVED", dispatch_id="missing")

    @pytest.mark.asyncio
    async def test_null_slot_is_not_transitionable(self, make_volunteer, store):
        directory = InMemoryVolunteerDirectory([
            make_volunteer("legal-a", VolunteerCategory.LEGAL, 12.0, 12.0),
            make_volunteer("police-late", VolunteerCategory.POLICE, 50.0, 50.0),
        ])
        coordinator = DispatchCoordinator(directory=InMemoryVolunteerDirectory([
            make_volunteer("legal-a", VolunteerCategory.LEGAL, 12.0, 12.0),
        ]), store=store)
        updater = StatusUpdater(directory=directory, store=store)
        result = await coordinator.file_complaint(
            phone_no="+919876543210", complaint_type="PHYSICAL", location="12,12"
        )

        with pytest.raises(ConflictError, match="unassigned"):
            await updater.update_status(
                CallerIdentity("police-late", VolunteerCategory.POLICE), "IN_PROGRESS", result.dispatch.id
            )

        record = await store.get_dispatch(result.dispatch.id)
        assert record.slot(VolunteerCategory.POLICE).status is None

    # ------------------------------------------------------------------
    # Identity-only lookup
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_identity_only_single_open_assignment(self):
        result = await self._file()

        record = await self.updater.update_status(MENTAL, "IN_PROGRESS")

        assert record.id == result.dispatch.id
        assert record.slot(VolunteerCategory.MENTAL).status == SlotStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_identity_only_without_assignment(self):
        with pytest.raises(NotFoundError, match="No active assignment"):
            await self.updater.update_status(LEGAL, "RESOLVED")

    @pytest.mark.asyncio
    async def test_identity_only_ambiguous(self):
        await self._file()
        self.now = self.now + timedelta(minutes=5)
        await self._file()

        with pytest.raises(ConflictError, match="Multiple active assignments"):
            await self.updater.update_status(LEGAL, "RESOLVED")

    @pytest.mark.asyncio
    async def test_identity_only_skips_resolved(self):
        first = await self._file()
        await self.updater.update_status(LEGAL, "RESOLVED", first.dispatch.id)
        self.now = self.now + timedelta(minutes=5)
        second = await self._file()

        record = await self.updater.update_status(LEGAL, "IN_PROGRESS")

        assert record.id == second.dispatch.id

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------

    @pytest.mark.asyncio
    async def test_concurrent_updates_on_different_slots_both_apply(self):
        result = await self._file()
        dispatch_id = result.dispatch.id

        await asyncio.gather(
            self.updater.update_status(LEGAL, "RESOLVED", dispatch_id),
            self.updater.update_status(POLICE, "IN_PROGRESS", dispatch_id),
            self.updater.update_status(MENTAL, "RESOLVED", dispatch_id),
        )

        record = await self.store.get_dispatch(dispatch_id)
        assert record.slot(VolunteerCategory.LEGAL).status == SlotStatus.RESOLVED
        assert record.slot(VolunteerCategory.POLICE).status == SlotStatus.IN_PROGRESS
        assert record.slot(VolunteerCategory.MENTAL).status == SlotStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_lost_compare_and_set_is_conflict(self):
        result = await self._file()
        record = result.dispatch
        moved = record.with_slot(
            VolunteerCategory.LEGAL,
            record.slot(VolunteerCategory.LEGAL).with_status(SlotStatus.RESOLVED),
        )

        store = AsyncMock()
        store.get_dispatch.side_effect = [record, moved]
        store.update_slot_status.return_value = None
        updater = StatusUpdater(directory=self.directory, store=store)

        with pytest.raises(ConflictError, match="changed concurrently"):
            await updater.update_status(LEGAL, "IN_PROGRESS", record.id)

        store.update_slot_status.assert_awaited_once_with(
            record.id,
            VolunteerCategory.LEGAL,
            "legal-a",
            SlotStatus.AUTO_DISPATCHED,
            SlotStatus.IN_PROGRESS,
        )


class TestListAssignments:
    @pytest.mark.asyncio
    async def test_lists_open_assignments_newest_first(self, directory, store, fixed_now):
        times = iter([fixed_now, fixed_now, fixed_now + timedelta(hours=1), fixed_now + timedelta(hours=1)])
        coordinator = DispatchCoordinator(directory=directory, store=store, clock=lambda: next(times))
        updater = StatusUpdater(directory=directory, store=store)

        older = await coordinator.file_complaint(
            phone_no="+911111111111", complaint_type="PHYSICAL", location="12,12"
        )
        newer = await coordinator.file_complaint(
            phone_no="+912222222222", complaint_type="CYBER", location="12,12"
        )

        assignments = await updater.list_assignments(LEGAL)

        assert [a.dispatch.id for a in assignments] == [newer.dispatch.id, older.dispatch.id]
        assert assignments[0].complaint.type == "CYBER"
        assert all(a.status == SlotStatus.AUTO_DISPATCHED for a in assignments)

    @pytest.mark.asyncio
    async def test_resolved_hidden_unless_requested(self, directory, store):
        coordinator = DispatchCoordinator(directory=directory, store=store)
        updater = StatusUpdater(directory=directory, store=store)
        result = await coordinator.file_complaint(
            phone_no="+911111111111", complaint_type="PHYSICAL", location="12,12"
        )
        await updater.update_status(LEGAL, "RESOLVED", result.dispatch.id)

        assert await updater.list_assignments(LEGAL) == []
        resolved = await updater.list_assignments(LEGAL, include_resolved=True)
        assert [a.status for a in resolved] == [SlotStatus.RESOLVED]

    @pytest.mark.asyncio
    async def test_unknown_caller_not_found(self, directory, store):
        updater = StatusUpdater(directory=directory, store=store)

        with pytest.raises(NotFoundError):
            await updater.list_assignments(CallerIdentity("ghost", VolunteerCategory.MENTAL))
