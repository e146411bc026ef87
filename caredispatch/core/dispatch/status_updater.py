# caredispatch/core/dispatch/status_updater.py
"""
Volunteer-side status tracking.

A volunteer may only move the one role-slot that references them, only
forward through the slot lifecycle, and only while the slot has not been
resolved. Every rejected call raises a typed error with the reason.
"""
from __future__ import annotations

from caredispatch.core.dispatch.domain import (
    Assignment,
    CallerIdentity,
    ComplaintStatus,
    DispatchRecord,
    SlotStatus,
    Volunteer,
    is_valid_transition,
)
from caredispatch.core.dispatch.errors import (
    ConflictError,
    DispatchError,
    NotFoundError,
    ValidationError,
)
from caredispatch.core.dispatch.ports import AsyncDispatchStore, AsyncVolunteerDirectory
from caredispatch.infra.audit_log import audit_slot_transition
from caredispatch.infra.logging_config import LogContext, get_logger
from caredispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


def parse_slot_status(raw: str | SlotStatus | None) -> SlotStatus:
    """Map a requested status onto the slot lifecycle, or raise ValidationError."""
    if isinstance(raw, SlotStatus):
        return raw
    if not raw:
        raise ValidationError("newStatus is required")
    try:
        return SlotStatus(str(raw).strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in SlotStatus)
        raise ValidationError(f"Invalid status value '{raw}'. Expected one of: {allowed}")


class StatusUpdater:
    """Applies caller-scoped transitions to role-slots."""

    def __init__(
        self,
        *,
        directory: AsyncVolunteerDirectory,
        store: AsyncDispatchStore,
    ) -> None:
        self.directory = directory
        self.store = store

    async def update_status(
        self,
        caller: CallerIdentity,
        requested_status: str | SlotStatus,
        dispatch_id: str | None = None,
    ) -> DispatchRecord:
        """
        Move the caller's own slot to ``requested_status``.

        With ``dispatch_id`` the caller's slot on that dispatch is targeted.
        Without it, the caller must hold exactly one open assignment.

        Raises:
            ValidationError: requested status is not a slot status
            NotFoundError: unknown volunteer / dispatch, or caller holds no slot on it
            ConflictError: slot unassigned or resolved, illegal transition,
                ambiguous lookup, or the slot changed concurrently
        """
        try:
            return await self._update_status(caller, requested_status, dispatch_id)
        except DispatchError as exc:
            DispatchMetrics.status_rejected(type(exc).__name__)
            logger.info(
                f"Status update rejected: {exc.detail}",
                extra={"volunteer_id": caller.volunteer_id, "dispatch_id": dispatch_id or "-"},
            )
            raise

    async def _update_status(
        self,
        caller: CallerIdentity,
        requested_status: str | SlotStatus,
        dispatch_id: str | None,
    ) -> DispatchRecord:
        requested = parse_slot_status(requested_status)
        volunteer = await self._resolve_caller(caller)
        category = volunteer.category

        if dispatch_id is not None:
            record = await self._owned_dispatch(dispatch_id, volunteer)
        else:
            record = await self._single_open_dispatch(volunteer)

        slot = record.slot(category)
        if slot.status == SlotStatus.RESOLVED:
            raise ConflictError(
                f"No active assignment: {category.value} slot of dispatch '{record.id}' is already RESOLVED"
            )
        if not is_valid_transition(slot.status, requested):
            raise ConflictError(
                f"Illegal transition {slot.status.value} -> {requested.value} "
                f"for {category.value} slot of dispatch '{record.id}'"
            )

        updated = await self.store.update_slot_status(
            record.id, category, volunteer.id, slot.status, requested
        )
        if updated is None:
            current = await self.store.get_dispatch(record.id)
            now = current.slot(category).status if current else None
            raise ConflictError(
                f"{category.value} slot of dispatch '{record.id}' changed concurrently "
                f"(now {now.value if now else 'unknown'}); reload and retry"
            )

        log = LogContext(
            logger,
            complaint_id=updated.complaint_id,
            dispatch_id=updated.id,
            volunteer_id=volunteer.id,
        )
        log.info(f"{category.value} slot {slot.status.value} -> {requested.value}")
        audit_slot_transition(updated, category, volunteer.id, slot.status, requested)
        DispatchMetrics.status_updated(category.value, requested.value)

        if (
            record.aggregate_status != ComplaintStatus.RESOLVED
            and updated.aggregate_status == ComplaintStatus.RESOLVED
        ):
            log.info("Complaint resolved: every assigned slot is RESOLVED")
            DispatchMetrics.complaint_resolved()

        return updated

    async def list_assignments(
        self,
        caller: CallerIdentity,
        include_resolved: bool = False,
    ) -> list[Assignment]:
        """Dispatches the caller holds a slot in, newest first."""
        volunteer = await self._resolve_caller(caller)
        records = await self.store.list_dispatches_for_volunteer(volunteer.category, volunteer.id)

        assignments: list[Assignment] = []
        for record in records:
            status = record.slot(volunteer.category).status
            if status == SlotStatus.RESOLVED and not include_resolved:
                continue
            complaint = await self.store.get_complaint(record.complaint_id)
            if complaint is None:
                logger.warning(
                    f"Dispatch references missing complaint '{record.complaint_id}'",
                    extra={"dispatch_id": record.id},
                )
                continue
            assignments.append(
                Assignment(
                    dispatch=record,
                    complaint=complaint,
                    category=volunteer.category,
                    status=status,
                )
            )
        return assignments

    # ------------------------------------------------------------------
    # Resolution helpers
    # ------------------------------------------------------------------

    async def _resolve_caller(self, caller: CallerIdentity) -> Volunteer:
        volunteer = await self.directory.get_volunteer(caller.volunteer_id)
        if volunteer is None:
            raise NotFoundError(f"Volunteer '{caller.volunteer_id}' not found")
        if volunteer.category != caller.category:
            raise ConflictError(
                f"Caller category {caller.category.value} does not match "
                f"volunteer record ({volunteer.category.value})"
            )
        return volunteer

    async def _owned_dispatch(self, dispatch_id: str, volunteer: Volunteer) -> DispatchRecord:
        record = await self.store.get_dispatch(dispatch_id)
        if record is None:
            raise NotFoundError(f"Dispatch '{dispatch_id}' not found")

        slot = record.slot(volunteer.category)
        if not slot.is_assigned:
            raise ConflictError(
                f"No active assignment: {volunteer.category.value} slot of dispatch "
                f"'{dispatch_id}' is unassigned"
            )
        if slot.volunteer_id != volunteer.id:
            raise NotFoundError(
                f"No {volunteer.category.value} assignment for this volunteer on dispatch '{dispatch_id}'"
            )
        return record

    async def _single_open_dispatch(self, volunteer: Volunteer) -> DispatchRecord:
        records = await self.store.list_dispatches_for_volunteer(volunteer.category, volunteer.id)
        open_records = [
            r for r in records if r.slot(volunteer.category).status != SlotStatus.RESOLVED
        ]

        if not open_records:
            raise NotFoundError("No active assignment for this volunteer")
        if len(open_records) > 1:
            ids = ", ".join(r.id for r in open_records)
            raise ConflictError(
                f"Multiple active assignments ({ids}); pass the dispatch id to choose one"
            )
        return open_records[0]
