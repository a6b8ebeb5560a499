"""Core domain models."""

from core.models.ticket import (
    Ticket, TicketCreate, TicketStatus, TicketPriority, TicketStatistics,
    TicketComment, TicketCommentCreate,
    ASSIGNED_STATUSES, ACTIVE_WORK_STATUSES,
)
from core.models.vendor import Vendor, VendorCreate, VendorUpdate
from core.models.appointment import (
    Appointment, AppointmentStatus, AvailableVendor, VendorAvailability,
    BLOCKING_STATUSES, APPOINTMENT_TRANSITIONS,
)
from core.models.invoice import (
    Invoice, InvoiceItem, InvoiceItemInput, InvoiceSubmit, InvoiceStatus,
    InvoiceStatistics, OPEN_INVOICE_STATUSES,
)
from core.models.activity import ActivityEntry, ActivityType, Notification, NotificationType

__all__ = [
    # Ticket
    "Ticket", "TicketCreate", "TicketStatus", "TicketPriority", "TicketStatistics",
    "TicketComment", "TicketCommentCreate",
    "ASSIGNED_STATUSES", "ACTIVE_WORK_STATUSES",
    # Vendor
    "Vendor", "VendorCreate", "VendorUpdate",
    # Appointment
    "Appointment", "AppointmentStatus", "AvailableVendor", "VendorAvailability",
    "BLOCKING_STATUSES", "APPOINTMENT_TRANSITIONS",
    # Invoice
    "Invoice", "InvoiceItem", "InvoiceItemInput", "InvoiceSubmit", "InvoiceStatus",
    "InvoiceStatistics", "OPEN_INVOICE_STATUSES",
    # Activity
    "ActivityEntry", "ActivityType", "Notification", "NotificationType",
]
