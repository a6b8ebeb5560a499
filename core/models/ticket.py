"""Maintenance ticket domain models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class TicketStatus(str, Enum):
    """Ticket lifecycle status."""

    OPEN = "open"
    WAITING_VENDOR = "waiting_vendor"
    IN_PROGRESS = "in_progress"
    WAITING_PARTS = "waiting_parts"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CANCELLED)


# Statuses in which a ticket must carry a vendor assignment.
ASSIGNED_STATUSES = frozenset({
    TicketStatus.WAITING_VENDOR,
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_PARTS,
    TicketStatus.SCHEDULED,
    TicketStatus.COMPLETED,
})

# Statuses counted as the vendor's active workload.
ACTIVE_WORK_STATUSES = frozenset({
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_PARTS,
    TicketStatus.SCHEDULED,
})


class TicketPriority(str, Enum):
    """How urgently the work is needed."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketCreate(BaseModel):
    """Data required to open a ticket."""

    property_id: UUID
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    category: str = Field(..., min_length=1, max_length=100)
    priority: TicketPriority = TicketPriority.MEDIUM
    location: str | None = Field(None, max_length=200)


class Ticket(BaseModel):
    """Full ticket entity as stored."""

    id: UUID
    property_id: UUID
    created_by_id: UUID
    title: str
    description: str
    category: str
    priority: TicketPriority
    location: str | None = None
    status: TicketStatus
    vendor_id: UUID | None = None
    assigned_to_id: UUID | None = None
    scheduled_date: datetime | None = None
    estimated_cost_cents: int | None = None
    notes: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_terminal(self) -> bool:
        """Whether the ticket reached COMPLETED or CANCELLED."""
        return self.status.is_terminal


class TicketStatistics(BaseModel):
    """Aggregate ticket counts for a dashboard."""

    total: int
    open: int
    in_progress: int
    completed: int
    urgent: int
    completion_rate: float


class TicketCommentCreate(BaseModel):
    """A message added to a ticket's timeline."""

    message: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False


class TicketComment(BaseModel):
    """
    One timeline entry on a ticket.

    Internal comments are for the property side and the assigned vendor;
    the requester never sees them.
    """

    id: UUID
    ticket_id: UUID
    author_id: UUID
    message: str
    is_internal: bool = False
    created_at: datetime

    model_config = {"from_attributes": True}
