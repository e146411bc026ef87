# caredispatch/core/dispatch/coordinator.py
"""
Complaint intake: match one volunteer per category and record the dispatch.

Workflow: validate -> match (directory + nearest, per category) ->
persist complaint and dispatch atomically -> notify matched volunteers.

The coordinator owns no storage handle of its own; the directory, store
and notifier are injected by the application bootstrap.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from caredispatch.core.dispatch.domain import (
    CATEGORY_ORDER,
    Complaint,
    ComplaintDetails,
    ComplaintStatus,
    ComplaintType,
    DispatchDetails,
    DispatchRecord,
    IntakeResult,
    RoleSlot,
    SlotView,
    Volunteer,
    VolunteerCategory,
    derive_aggregate_status,
)
from caredispatch.core.dispatch.errors import NotFoundError, StorageError, ValidationError
from caredispatch.core.dispatch.geo import nearest, parse_location
from caredispatch.core.dispatch.ports import (
    AsyncDispatchStore,
    AsyncVolunteerDirectory,
    VolunteerNotifier,
)
from caredispatch.core.dispatch.services import notify_assigned_volunteers
from caredispatch.infra.audit_log import audit_dispatch_created
from caredispatch.infra.logging_config import LogContext, get_logger, mask_coordinates, mask_phone
from caredispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchCoordinator:
    """
    Application service for complaint intake and the complaint status page.

    Stateless apart from its injected collaborators; one instance serves
    every request.
    """

    def __init__(
        self,
        *,
        directory: AsyncVolunteerDirectory,
        store: AsyncDispatchStore,
        notifier: VolunteerNotifier | None = None,
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.directory = directory
        self.store = store
        self.notifier = notifier
        self._new_id = id_factory
        self._now = clock

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def file_complaint(
        self,
        *,
        phone_no: str | None,
        complaint_type: str | ComplaintType | None,
        location: str | None,
        name: str | None = None,
        description: str | None = None,
    ) -> IntakeResult:
        """
        Validate raw intake fields, dispatch, and notify.

        Raises:
            ValidationError: phone, type or location missing / malformed
            StorageError: complaint and dispatch could not be persisted
        """
        phone = (phone_no or "").strip()
        if not phone:
            raise ValidationError("phoneNo is required")

        if isinstance(complaint_type, ComplaintType):
            kind = complaint_type.value
        else:
            kind = (complaint_type or "").strip()
        if not kind:
            raise ValidationError("type is required")

        coord = parse_location(location)

        complaint = Complaint(
            id=self._new_id(),
            phone_no=phone,
            name=(name or "").strip() or None,
            type=kind,
            description=(description or "").strip() or None,
            location=coord,
            reported_at=self._now(),
        )

        record, matched = await self._match_and_persist(complaint)
        result = IntakeResult(complaint=complaint, dispatch=record, assigned_volunteers=matched)

        if self.notifier is not None:
            await notify_assigned_volunteers(self.notifier, result)

        return result

    async def dispatch(self, complaint: Complaint) -> DispatchRecord:
        """
        Pick the nearest ACTIVE volunteer per category and record the dispatch.

        A category with no candidates yields an unassigned slot; that is not
        an error. The complaint and the record are written in one atomic
        storage call with the complaint marked DISPATCHED.
        """
        record, _ = await self._match_and_persist(complaint)
        return record

    async def _match_and_persist(
        self, complaint: Complaint
    ) -> tuple[DispatchRecord, dict[VolunteerCategory, Optional[Volunteer]]]:
        log = LogContext(logger, complaint_id=complaint.id)
        coord = complaint.location

        matched: dict[VolunteerCategory, Optional[Volunteer]] = {}
        with DispatchMetrics.track_matching_time():
            for category in CATEGORY_ORDER:
                matched[category] = await self._nearest_volunteer(category, complaint)

        slots = {
            category: RoleSlot.assigned(v.id) if v is not None else RoleSlot.unassigned()
            for category, v in matched.items()
        }
        record = DispatchRecord(
            id=self._new_id(),
            complaint_id=complaint.id,
            slots=slots,
            created_at=self._now(),
        )
        complaint.status = ComplaintStatus.DISPATCHED

        try:
            await self.store.create_complaint_with_dispatch(complaint, record)
        except StorageError:
            log.error(
                f"Dispatch aborted, nothing persisted: phone={mask_phone(complaint.phone_no)}",
                exc_info=True,
            )
            raise

        assigned = record.assigned_slots()
        for category in CATEGORY_ORDER:
            if category not in assigned:
                DispatchMetrics.slot_unassigned(category.value)
        DispatchMetrics.complaint_dispatched(len(assigned))

        summary = ", ".join(
            f"{c.value}={s.volunteer_id or '-'}" for c, s in record.slots.items()
        )
        log.bind(dispatch_id=record.id).info(
            f"Complaint dispatched near {mask_coordinates(coord.latitude, coord.longitude)}: {summary}"
        )
        audit_dispatch_created(record)
        return record, matched

    async def _nearest_volunteer(
        self, category: VolunteerCategory, complaint: Complaint
    ) -> Optional[Volunteer]:
        candidates = await self.directory.find_active_by_category(category)
        if not candidates:
            logger.warning(
                f"No ACTIVE {category.value} volunteer available",
                extra={"complaint_id": complaint.id, "category": category.value},
            )
            return None

        by_id = {v.id: v for v in candidates}
        winner = nearest(complaint.location, [(v.id, v.location) for v in candidates])
        return by_id[winner] if winner is not None else None

    # ------------------------------------------------------------------
    # Status page
    # ------------------------------------------------------------------

    async def get_complaint_details(self, complaint_id: str) -> ComplaintDetails:
        """
        Complaint with its dispatches, the volunteer behind every slot, and
        an aggregate status re-derived from the current slot states.

        Raises NotFoundError for an unknown complaint.
        """
        complaint = await self.store.get_complaint(complaint_id)
        if complaint is None:
            raise NotFoundError(f"Complaint '{complaint_id}' not found")

        records = await self.store.list_dispatches_for_complaint(complaint_id)

        volunteer_ids = sorted({
            slot.volunteer_id
            for r in records
            for slot in r.slots.values()
            if slot.volunteer_id is not None
        })
        volunteers = await self.directory.get_volunteers(volunteer_ids) if volunteer_ids else {}

        dispatches = [
            DispatchDetails(
                dispatch=r,
                slots=[
                    SlotView(
                        category=category,
                        slot=r.slot(category),
                        volunteer=volunteers.get(r.slot(category).volunteer_id or ""),
                    )
                    for category in CATEGORY_ORDER
                ],
            )
            for r in records
        ]

        if records:
            aggregate = derive_aggregate_status(
                slot for r in records for slot in r.slots.values()
            )
        else:
            aggregate = complaint.status

        return ComplaintDetails(
            complaint=complaint,
            dispatches=dispatches,
            aggregate_status=aggregate,
        )
