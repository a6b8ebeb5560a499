"""Audit and notification trigger records.

Both are append-only rows written inside the same transaction as the
entity change they describe. Delivery and presentation belong to
downstream collaborators.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ActivityType(str, Enum):
    """Kind of action recorded in the activity log."""

    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TICKET_COMMENTED = "ticket_commented"
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_ACCEPTED = "ticket_accepted"
    TICKET_REJECTED = "ticket_rejected"
    TICKET_SCHEDULED = "ticket_scheduled"
    TICKET_COMPLETED = "ticket_completed"
    TICKET_CANCELLED = "ticket_cancelled"
    TICKET_DELETED = "ticket_deleted"
    APPOINTMENT_UPDATED = "appointment_updated"
    INVOICE_SUBMITTED = "invoice_submitted"
    INVOICE_UPDATED = "invoice_updated"
    VENDOR_CREATED = "vendor_created"
    VENDOR_UPDATED = "vendor_updated"


class NotificationType(str, Enum):
    """Notification category, used by delivery channels for routing."""

    MAINTENANCE_REQUEST = "maintenance_request"
    MAINTENANCE_ASSIGNED = "maintenance_assigned"
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"
    MAINTENANCE_COMPLETED = "maintenance_completed"
    MAINTENANCE_UPDATED = "maintenance_updated"
    INVOICE_UPDATED = "invoice_updated"


class ActivityEntry(BaseModel):
    """One audit-log row."""

    id: UUID
    user_id: UUID
    type: ActivityType
    action: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class Notification(BaseModel):
    """One queued notification for a user."""

    id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    action_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}
