"""Service appointment domain models."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from core.models.vendor import Vendor


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def blocks_calendar(self) -> bool:
        """Whether an appointment in this status occupies the vendor's time."""
        return self in BLOCKING_STATUSES


BLOCKING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
})

# Allowed moves. Anything absent is an invalid transition.
APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


class Appointment(BaseModel):
    """Full appointment entity as stored."""

    id: UUID
    ticket_id: UUID
    vendor_id: UUID
    scheduled_start: datetime
    scheduled_end: datetime
    status: AppointmentStatus
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class VendorAvailability(BaseModel):
    """Derived view of a vendor's commitments on one calendar day."""

    vendor_id: UUID
    day: date
    appointments: list[Appointment]
    active_ticket_count: int
    is_available: bool


class AvailableVendor(BaseModel):
    """An active vendor with whatever already blocks their calendar on one day."""

    vendor: Vendor
    day: date
    appointments: list[Appointment]
    is_available: bool
