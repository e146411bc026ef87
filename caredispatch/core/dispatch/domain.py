# caredispatch/core/dispatch/domain.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


# ============================================================================
# ENUMS
# ============================================================================

class VolunteerCategory(str, Enum):
    """Support category a volunteer serves. Exactly one per volunteer."""
    LEGAL = "LEGAL"
    POLICE = "POLICE"
    MENTAL = "MENTAL"


# Matching and slot order for every dispatch
CATEGORY_ORDER: tuple[VolunteerCategory, ...] = (
    VolunteerCategory.LEGAL,
    VolunteerCategory.POLICE,
    VolunteerCategory.MENTAL,
)


class ActivationState(str, Enum):
    """Account state owned by the registration / admin-approval flow."""
    PENDING = "PENDING"
    EMAIL_SENT = "EMAIL_SENT"
    ACTIVE = "ACTIVE"
    BANNED = "BANNED"


class ComplaintType(str, Enum):
    PHYSICAL = "PHYSICAL"
    EMOTIONAL = "EMOTIONAL"
    SEXUAL = "SEXUAL"
    FINANCIAL = "FINANCIAL"
    CYBER = "CYBER"
    DOWRY = "DOWRY"
    OTHER = "OTHER"


class ComplaintStatus(str, Enum):
    """Complaint-level status, derived from the role-slots."""
    DISPATCHED = "DISPATCHED"
    RESOLVED = "RESOLVED"


class SlotStatus(str, Enum):
    """
    Per-slot lifecycle:

        AUTO_DISPATCHED -> IN_PROGRESS -> RESOLVED
        AUTO_DISPATCHED -> RESOLVED
    """
    AUTO_DISPATCHED = "AUTO_DISPATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"


ALLOWED_TRANSITIONS: dict[SlotStatus, frozenset[SlotStatus]] = {
    SlotStatus.AUTO_DISPATCHED: frozenset({SlotStatus.IN_PROGRESS, SlotStatus.RESOLVED}),
    SlotStatus.IN_PROGRESS: frozenset({SlotStatus.RESOLVED}),
    SlotStatus.RESOLVED: frozenset(),
}


def is_valid_transition(current: SlotStatus, requested: SlotStatus) -> bool:
    """Forward-only check. Re-applying the current status is not a transition."""
    return requested in ALLOWED_TRANSITIONS[current]


# ============================================================================
# VALUE OBJECTS / ENTITIES
# ============================================================================

@dataclass(frozen=True)
class Coordinate:
    """Latitude/longitude in decimal degrees. No range validation."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Volunteer:
    id: str
    category: VolunteerCategory
    activation_state: ActivationState
    location: Coordinate
    name: str = ""
    email: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.activation_state == ActivationState.ACTIVE


@dataclass
class Complaint:
    id: str
    phone_no: str
    type: str
    location: Coordinate
    reported_at: datetime
    name: Optional[str] = None
    description: Optional[str] = None
    status: ComplaintStatus = ComplaintStatus.DISPATCHED


@dataclass(frozen=True)
class RoleSlot:
    """
    One category's assignment inside a dispatch.

    ``volunteer_id=None`` means no ACTIVE volunteer of that category existed
    at dispatch time; such a slot carries no status and never transitions.
    """
    volunteer_id: Optional[str] = None
    status: Optional[SlotStatus] = None

    def __post_init__(self):
        if self.volunteer_id is None and self.status is not None:
            raise ValueError("Unassigned role-slot cannot carry a status")
        if self.volunteer_id is not None and self.status is None:
            raise ValueError("Assigned role-slot requires a status")

    @classmethod
    def assigned(cls, volunteer_id: str) -> "RoleSlot":
        return cls(volunteer_id=volunteer_id, status=SlotStatus.AUTO_DISPATCHED)

    @classmethod
    def unassigned(cls) -> "RoleSlot":
        return cls()

    @property
    def is_assigned(self) -> bool:
        return self.volunteer_id is not None

    @property
    def is_terminal(self) -> bool:
        return not self.is_assigned or self.status == SlotStatus.RESOLVED

    def with_status(self, status: SlotStatus) -> "RoleSlot":
        if not self.is_assigned:
            raise ValueError("Unassigned role-slot cannot transition")
        return replace(self, status=status)


@dataclass(frozen=True)
class DispatchRecord:
    """
    Binds one complaint to the three role-slots chosen at intake.

    Slots are keyed by category so "find the caller's slot" is the same
    lookup for every category.
    """
    id: str
    complaint_id: str
    slots: dict[VolunteerCategory, RoleSlot]
    created_at: datetime

    def __post_init__(self):
        if set(self.slots) != set(CATEGORY_ORDER):
            raise ValueError(
                f"DispatchRecord requires exactly the slots {[c.value for c in CATEGORY_ORDER]}"
            )

    def slot(self, category: VolunteerCategory) -> RoleSlot:
        return self.slots[category]

    def with_slot(self, category: VolunteerCategory, slot: RoleSlot) -> "DispatchRecord":
        """Copy of this record with only ``category``'s slot replaced."""
        slots = dict(self.slots)
        slots[category] = slot
        return replace(self, slots=slots)

    def assigned_slots(self) -> dict[VolunteerCategory, RoleSlot]:
        return {c: s for c, s in self.slots.items() if s.is_assigned}

    @property
    def aggregate_status(self) -> ComplaintStatus:
        return derive_aggregate_status(self.slots.values())


def derive_aggregate_status(slots) -> ComplaintStatus:
    """
    RESOLVED only when every assigned slot is RESOLVED.

    A dispatch with no assigned slot stays DISPATCHED: nobody has
    resolved anything yet.
    """
    assigned = [s for s in slots if s.is_assigned]
    if assigned and all(s.status == SlotStatus.RESOLVED for s in assigned):
        return ComplaintStatus.RESOLVED
    return ComplaintStatus.DISPATCHED


@dataclass(frozen=True)
class CallerIdentity:
    """Verified ``(volunteer_id, category)`` pair from the auth collaborator."""
    volunteer_id: str
    category: VolunteerCategory


@dataclass
class IntakeResult:
    complaint: Complaint
    dispatch: DispatchRecord
    assigned_volunteers: dict[VolunteerCategory, Optional[Volunteer]] = field(default_factory=dict)


@dataclass
class SlotView:
    """Role-slot enriched with the referenced volunteer (for status pages)."""
    category: VolunteerCategory
    slot: RoleSlot
    volunteer: Optional[Volunteer] = None


@dataclass
class DispatchDetails:
    dispatch: DispatchRecord
    slots: list[SlotView]


@dataclass
class ComplaintDetails:
    complaint: Complaint
    dispatches: list[DispatchDetails]
    aggregate_status: ComplaintStatus


@dataclass
class Assignment:
    """A volunteer's own view of one dispatch they hold a slot in."""
    dispatch: DispatchRecord
    complaint: Complaint
    category: VolunteerCategory
    status: SlotStatus
