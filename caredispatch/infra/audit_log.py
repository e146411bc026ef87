# caredispatch/infra/audit_log.py
"""
Audit trail for dispatch decisions.

Two kinds of event matter after the fact: which volunteers a complaint was
assigned to, and every slot transition a volunteer made. Both go to the
"audit" logger, separate from the application log, so they can be routed to
their own sink via logging configuration.

Reporter phone numbers and locations are never written here; the complaint
id is the join key.
"""
from __future__ import annotations

import logging

from caredispatch.core.dispatch.domain import DispatchRecord, SlotStatus, VolunteerCategory

_audit_logger = logging.getLogger("audit")


def _emit(action: str, record: DispatchRecord, message: str, **fields) -> None:
    _audit_logger.info(
        f"AUDIT: {action} complaint={record.complaint_id} dispatch={record.id} {message}",
        extra={
            "audit_action": action,
            "complaint_id": record.complaint_id,
            "dispatch_id": record.id,
            **fields,
        },
    )


def audit_dispatch_created(record: DispatchRecord) -> None:
    """One event per intake, listing the volunteer (or none) chosen for each category."""
    assignment = {c.value: s.volunteer_id for c, s in record.slots.items()}
    _emit(
        "complaint.dispatched",
        record,
        " ".join(f"{c}={v or '-'}" for c, v in assignment.items()),
        assignment=assignment,
    )


def audit_slot_transition(
    record: DispatchRecord,
    category: VolunteerCategory,
    volunteer_id: str,
    previous: SlotStatus,
    new: SlotStatus,
) -> None:
    _emit(
        "slot.transition",
        record,
        f"volunteer={volunteer_id} {category.value} {previous.value}->{new.value}",
        volunteer_id=volunteer_id,
        category=category.value,
        previous_status=previous.value,
        new_status=new.value,
    )
