"""
Domain events for maintenance workflows.

Immutable event objects that represent committed state changes. A service
publishes what happened, and handlers react without the publisher knowing
who's listening.

Event Categories:
- TicketEvent: Ticket lifecycle (assign, accept, reject, schedule, complete, cancel)
- AppointmentEvent: Appointment status changes and reschedules
- InvoiceEvent: Invoice lifecycle (submit, approve, reject, paid)

Events carry the full domain object so handlers don't need to re-fetch state.
They are published only after the store transaction commits, so a handler
never observes a change that was later rolled back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class MaintenanceEvent:
    """Base class for all maintenance domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# TICKET EVENTS
# =============================================================================


@dataclass(frozen=True)
class TicketEvent(MaintenanceEvent):
    """Events related to ticket lifecycle."""
    ticket: Any = None  # Ticket; Any avoids a circular import

    @classmethod
    def create(cls, ticket: Any) -> "TicketEvent":
        return cls(ticket=ticket)


@dataclass(frozen=True)
class TicketAssigned(TicketEvent):
    """A vendor was asked to take the ticket."""


@dataclass(frozen=True)
class TicketAccepted(TicketEvent):
    """The assigned vendor accepted the job."""


@dataclass(frozen=True)
class TicketRejected(TicketEvent):
    """The assigned vendor declined; the ticket is open again."""
    reason: str | None = None

    @classmethod
    def create(cls, ticket: Any, reason: str | None = None) -> "TicketRejected":
        return cls(ticket=ticket, reason=reason)


@dataclass(frozen=True)
class TicketScheduled(TicketEvent):
    """An appointment was booked for the ticket."""
    appointment: Any = None

    @classmethod
    def create(cls, ticket: Any, appointment: Any = None) -> "TicketScheduled":
        return cls(ticket=ticket, appointment=appointment)


@dataclass(frozen=True)
class TicketCompleted(TicketEvent):
    """Work finished; the ticket is now invoiceable."""


@dataclass(frozen=True)
class TicketCancelled(TicketEvent):
    """Ticket was cancelled."""


# =============================================================================
# APPOINTMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class AppointmentUpdated(MaintenanceEvent):
    """An appointment moved to a new status."""
    appointment: Any = None
    previous_status: str | None = None

    @classmethod
    def create(cls, appointment: Any, previous_status: str | None = None) -> "AppointmentUpdated":
        return cls(appointment=appointment, previous_status=previous_status)


@dataclass(frozen=True)
class AppointmentRescheduled(MaintenanceEvent):
    """An appointment moved to a new time window."""
    appointment: Any = None
    previous_start: datetime | None = None
    previous_end: datetime | None = None

    @classmethod
    def create(cls, appointment: Any, previous_start: datetime, previous_end: datetime) -> "AppointmentRescheduled":
        return cls(appointment=appointment, previous_start=previous_start, previous_end=previous_end)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(MaintenanceEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceEvent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSubmitted(InvoiceEvent):
    """Vendor submitted an invoice for review."""


@dataclass(frozen=True)
class InvoiceApproved(InvoiceEvent):
    """Landlord approved the invoice for payment."""


@dataclass(frozen=True)
class InvoiceRejected(InvoiceEvent):
    """Landlord rejected the invoice."""


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Payment was captured for the invoice."""
