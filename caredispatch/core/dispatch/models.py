# caredispatch/core/dispatch/models.py
"""
Pydantic request/response models for the dispatch API.

These live *outside* the transport layer so services and tests can
build responses without depending on FastAPI.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from caredispatch.core.dispatch.domain import (
    Assignment,
    CATEGORY_ORDER,
    Complaint,
    ComplaintDetails,
    ComplaintType,
    DispatchRecord,
    IntakeResult,
    Volunteer,
)
from caredispatch.core.dispatch.geo import format_location


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CreateComplaintRequest(BaseModel):
    """File a complaint. Field names follow the public intake form."""

    model_config = ConfigDict(populate_by_name=True)

    phone_no: str = Field(..., alias="phoneNo", min_length=1, max_length=32)
    type: ComplaintType
    location: str = Field(..., min_length=3, description="'lat,lon' in decimal degrees")
    name: str | None = Field(default=None, max_length=256)
    description: str | None = Field(default=None, max_length=4000)

    @field_validator("phone_no")
    @classmethod
    def phone_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("phoneNo must not be blank")
        return v.strip()


class UpdateStatusRequest(BaseModel):
    """Advance the caller's own slot."""

    model_config = ConfigDict(populate_by_name=True)

    new_status: str = Field(..., alias="newStatus", min_length=1)
    dispatch_id: str | None = Field(default=None, alias="dispatchId")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class VolunteerOut(BaseModel):
    id: str
    name: str
    category: str
    location: str

    @classmethod
    def from_domain(cls, v: Volunteer) -> "VolunteerOut":
        return cls(id=v.id, name=v.name, category=v.category.value, location=format_location(v.location))


class ComplaintOut(BaseModel):
    id: str
    phone_no: str = Field(serialization_alias="phoneNo")
    name: str | None = None
    type: str
    description: str | None = None
    location: str
    status: str
    reported_at: datetime = Field(serialization_alias="reportedAt")

    @classmethod
    def from_domain(cls, c: Complaint) -> "ComplaintOut":
        return cls(
            id=c.id,
            phone_no=c.phone_no,
            name=c.name,
            type=c.type,
            description=c.description,
            location=format_location(c.location),
            status=c.status.value,
            reported_at=c.reported_at,
        )


class SlotOut(BaseModel):
    volunteer_id: str | None = Field(default=None, serialization_alias="volunteerId")
    status: str | None = None
    volunteer: VolunteerOut | None = None


class DispatchOut(BaseModel):
    """Dispatch record; ``slots`` is keyed by category (LEGAL / POLICE / MENTAL)."""

    id: str
    complaint_id: str = Field(serialization_alias="complaintId")
    slots: dict[str, SlotOut]
    aggregate_status: str = Field(serialization_alias="aggregateStatus")
    created_at: datetime = Field(serialization_alias="createdAt")

    @classmethod
    def from_domain(
        cls,
        r: DispatchRecord,
        volunteers: dict[str, Volunteer] | None = None,
    ) -> "DispatchOut":
        volunteers = volunteers or {}
        slots = {}
        for category in CATEGORY_ORDER:
            slot = r.slot(category)
            v = volunteers.get(slot.volunteer_id) if slot.volunteer_id else None
            slots[category.value] = SlotOut(
                volunteer_id=slot.volunteer_id,
                status=slot.status.value if slot.status else None,
                volunteer=VolunteerOut.from_domain(v) if v else None,
            )
        return cls(
            id=r.id,
            complaint_id=r.complaint_id,
            slots=slots,
            aggregate_status=r.aggregate_status.value,
            created_at=r.created_at,
        )


class IntakeResponse(BaseModel):
    message: str = "Complaint filed and volunteers dispatched."
    complaint: ComplaintOut
    dispatch: DispatchOut

    @classmethod
    def from_domain(cls, result: IntakeResult) -> "IntakeResponse":
        volunteers = {v.id: v for v in result.assigned_volunteers.values() if v is not None}
        return cls(
            complaint=ComplaintOut.from_domain(result.complaint),
            dispatch=DispatchOut.from_domain(result.dispatch, volunteers),
        )


class ComplaintDetailsResponse(BaseModel):
    complaint: ComplaintOut
    aggregate_status: str = Field(serialization_alias="aggregateStatus")
    dispatches: list[DispatchOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, details: ComplaintDetails) -> "ComplaintDetailsResponse":
        dispatches = []
        for d in details.dispatches:
            volunteers = {sv.volunteer.id: sv.volunteer for sv in d.slots if sv.volunteer is not None}
            dispatches.append(DispatchOut.from_domain(d.dispatch, volunteers))
        return cls(
            complaint=ComplaintOut.from_domain(details.complaint),
            aggregate_status=details.aggregate_status.value,
            dispatches=dispatches,
        )


class AssignmentOut(BaseModel):
    dispatch_id: str = Field(serialization_alias="dispatchId")
    category: str
    status: str
    complaint: ComplaintOut

    @classmethod
    def from_domain(cls, a: Assignment) -> "AssignmentOut":
        return cls(
            dispatch_id=a.dispatch.id,
            category=a.category.value,
            status=a.status.value,
            complaint=ComplaintOut.from_domain(a.complaint),
        )


class StatusUpdateResponse(BaseModel):
    message: str
    dispatch: DispatchOut
