"""
Persistence collaborator contract.

A MaintenanceStore hands out StoreTransaction objects. Everything a service
does for one operation (guard reads, entity writes, the activity-log row and
the notification row) goes through a single transaction, so either all of it
becomes visible or none of it does.

Row-lock semantics: reads with for_update=True and lock_vendor_schedule()
hold their lock until the transaction ends, and so does max_invoice_sequence()
for invoice-number allocation. Services always lock a ticket
before its vendor's schedule.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Iterable, Protocol
from uuid import UUID

from core.models import (
    ActivityEntry, Appointment, AppointmentStatus, Invoice, InvoiceStatus,
    Notification, Ticket, TicketComment, TicketStatus, Vendor,
)


class StoreError(Exception):
    """Persistence failed (connection loss, constraint violation). Transaction rolled back."""


class StoreTransaction(Protocol):
    """Transactional reads and writes for the maintenance entities."""

    # Tickets
    def get_ticket(self, ticket_id: UUID, for_update: bool = False) -> Ticket | None: ...
    def insert_ticket(self, ticket: Ticket) -> None: ...
    def update_ticket(self, ticket: Ticket) -> None: ...
    def list_tickets(
        self,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[TicketStatus] | None = None,
        limit: int = 100,
    ) -> list[Ticket]: ...
    def count_tickets(
        self,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[TicketStatus] | None = None,
    ) -> int: ...

    # Vendors
    def get_vendor(self, vendor_id: UUID) -> Vendor | None: ...
    def insert_vendor(self, vendor: Vendor) -> None: ...
    def update_vendor(self, vendor: Vendor) -> None: ...
    def list_vendors(self, category: str | None = None, active_only: bool = True) -> list[Vendor]: ...
    def lock_vendor_schedule(self, vendor_id: UUID) -> None: ...

    # Appointments
    def get_appointment(self, appointment_id: UUID, for_update: bool = False) -> Appointment | None: ...
    def insert_appointment(self, appointment: Appointment) -> None: ...
    def update_appointment(self, appointment: Appointment) -> None: ...
    def list_appointments(
        self,
        vendor_id: UUID | None = None,
        ticket_id: UUID | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        overlapping: tuple[datetime, datetime] | None = None,
    ) -> list[Appointment]: ...

    # Invoices
    def get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Invoice | None: ...
    def insert_invoice(self, invoice: Invoice) -> None: ...
    def update_invoice(self, invoice: Invoice) -> None: ...
    def list_invoices(
        self,
        ticket_id: UUID | None = None,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[InvoiceStatus] | None = None,
    ) -> list[Invoice]: ...
    def max_invoice_sequence(self, prefix: str) -> int: ...

    # Ticket timeline
    def insert_ticket_comment(self, comment: TicketComment) -> None: ...
    def list_ticket_comments(self, ticket_id: UUID, include_internal: bool = True) -> list[TicketComment]: ...

    # Side-effect triggers
    def insert_activity(self, entry: ActivityEntry) -> None: ...
    def insert_notification(self, notification: Notification) -> None: ...
    def list_activity(self, user_id: UUID | None = None, limit: int = 100) -> list[ActivityEntry]: ...
    def list_notifications(self, user_id: UUID | None = None, limit: int = 100) -> list[Notification]: ...


class MaintenanceStore(Protocol):
    """Source of transactions."""

    def transaction(self) -> AbstractContextManager[StoreTransaction]: ...
