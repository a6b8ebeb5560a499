"""
Public operation surface of the maintenance coordinator.

Wires the services around one store, authority collaborator and event bus,
and turns every outcome into an OperationResult. Rejections raised inside a
service have already rolled back their transaction by the time they are
converted here; no exception crosses this boundary.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable
from uuid import UUID

from pydantic import ValidationError

from core.audit import AuditLogger
from core.authority import PropertyAuthority
from core.config import MaintenanceConfig
from core.errors import ErrorKind, MaintenanceError, OperationResult
from core.event_bus import EventBus
from core.models import (
    AppointmentStatus, InvoiceSubmit, TicketCommentCreate, TicketCreate, TicketStatus,
    VendorCreate, VendorUpdate,
)
from core.notifications import Notifier
from core.services.appointment_service import AppointmentService
from core.services.assignment_service import AssignmentService
from core.services.invoice_service import InvoiceService
from core.services.ticket_service import TicketService
from core.services.vendor_service import VendorService
from core.stores import MaintenanceStore, StoreError

logger = logging.getLogger(__name__)


def _is_item_error(error: ValidationError) -> bool:
    return any(detail["loc"] and detail["loc"][0] == "items" for detail in error.errors())


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(parts)


class MaintenanceCoordinator:
    """
    Structured-result facade over the maintenance services.

    Usage:
        coordinator = MaintenanceCoordinator(store, authority)

        with actor_context(landlord):
            result = coordinator.assign_vendor(ticket_id, vendor_id)

        if not result.success:
            print(result.error.kind, result.error.message)
    """

    def __init__(
        self,
        store: MaintenanceStore,
        authority: PropertyAuthority,
        config: MaintenanceConfig | None = None,
        event_bus: EventBus | None = None
    ):
        self.store = store
        self.authority = authority
        self.config = config or MaintenanceConfig()
        self.event_bus = event_bus or EventBus()
        self.audit = AuditLogger()
        self.notifier = Notifier(self.config)

        self.tickets = TicketService(store, authority, self.audit, self.notifier, self.event_bus)
        self.assignments = AssignmentService(store, authority, self.audit, self.notifier, self.event_bus)
        self.appointments = AppointmentService(
            store, authority, self.audit, self.notifier, self.event_bus, self.tickets, self.config
        )
        self.invoices = InvoiceService(
            store, authority, self.audit, self.notifier, self.event_bus, self.config
        )
        self.vendors = VendorService(store, self.audit)

    def _run(self, operation: str, fn: Callable[[], Any], items: bool = False) -> OperationResult:
        try:
            return OperationResult.ok(fn())
        except MaintenanceError as e:
            logger.warning(f"{operation} rejected ({e.kind.value}): {e.message}")
            return OperationResult.fail(e.kind, e.message)
        except ValidationError as e:
            kind = ErrorKind.INVALID_ITEMS if items and _is_item_error(e) else ErrorKind.VALIDATION_ERROR
            message = _format_validation_error(e)
            logger.warning(f"{operation} rejected ({kind.value}): {message}")
            return OperationResult.fail(kind, message)
        except StoreError:
            logger.exception(f"{operation} failed in the store")
            return OperationResult.fail(ErrorKind.INTERNAL_ERROR, "Persistence failure; nothing was changed")
        except ValueError as e:
            logger.warning(f"{operation} rejected (VALIDATION_ERROR): {e}")
            return OperationResult.fail(ErrorKind.VALIDATION_ERROR, str(e))

    # -------------------------------------------------------------------------
    # Tickets
    # -------------------------------------------------------------------------

    def create_ticket(self, data: TicketCreate | dict) -> OperationResult:
        return self._run(
            "create_ticket",
            lambda: self.tickets.create(TicketCreate.model_validate(data)),
        )

    def get_ticket(self, ticket_id: UUID) -> OperationResult:
        return self._run("get_ticket", lambda: self.tickets.get_by_id(ticket_id))

    def list_tickets_for_vendor(self, vendor_id: UUID, statuses: list[TicketStatus] | None = None) -> OperationResult:
        return self._run(
            "list_tickets_for_vendor",
            lambda: self.tickets.list_for_vendor(vendor_id, statuses, limit=self.config.default_page_size),
        )

    def list_tickets_for_property(self, property_id: UUID, statuses: list[TicketStatus] | None = None) -> OperationResult:
        return self._run(
            "list_tickets_for_property",
            lambda: self.tickets.list_for_property(property_id, statuses, limit=self.config.default_page_size),
        )

    def assign_vendor(self, ticket_id: UUID, vendor_id: UUID) -> OperationResult:
        """Ticket | NOT_FOUND, UNAUTHORIZED, INVALID_VENDOR, WRONG_STATE"""
        return self._run("assign_vendor", lambda: self.assignments.assign_vendor(ticket_id, vendor_id))

    def respond_to_assignment(
        self,
        ticket_id: UUID,
        accept: bool,
        estimated_cost_cents: int | None = None,
        notes: str | None = None,
        reason: str | None = None
    ) -> OperationResult:
        """Ticket | NOT_FOUND, UNAUTHORIZED, WRONG_STATE"""
        return self._run(
            "respond_to_assignment",
            lambda: self.assignments.respond(ticket_id, accept, estimated_cost_cents, notes, reason),
        )

    def await_parts(self, ticket_id: UUID, notes: str | None = None) -> OperationResult:
        return self._run("await_parts", lambda: self.tickets.await_parts(ticket_id, notes))

    def parts_arrived(self, ticket_id: UUID, notes: str | None = None) -> OperationResult:
        return self._run("parts_arrived", lambda: self.tickets.parts_arrived(ticket_id, notes))

    def cancel_ticket(self, ticket_id: UUID, reason: str | None = None) -> OperationResult:
        return self._run("cancel_ticket", lambda: self.tickets.cancel(ticket_id, reason))

    def delete_ticket(self, ticket_id: UUID) -> OperationResult:
        return self._run("delete_ticket", lambda: self.tickets.delete(ticket_id))

    def ticket_statistics(self, property_id: UUID | None = None) -> OperationResult:
        return self._run("ticket_statistics", lambda: self.tickets.statistics(property_id))

    def add_ticket_comment(self, ticket_id: UUID, data: TicketCommentCreate | dict) -> OperationResult:
        """TicketComment | NOT_FOUND, UNAUTHORIZED, VALIDATION_ERROR"""
        return self._run(
            "add_ticket_comment",
            lambda: self.tickets.add_comment(ticket_id, TicketCommentCreate.model_validate(data)),
        )

    def list_ticket_comments(self, ticket_id: UUID) -> OperationResult:
        return self._run("list_ticket_comments", lambda: self.tickets.list_comments(ticket_id))

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    def schedule_appointment(
        self,
        ticket_id: UUID,
        start: datetime,
        end: datetime,
        notes: str | None = None,
        vendor_id: UUID | None = None
    ) -> OperationResult:
        """Appointment | NOT_FOUND, UNAUTHORIZED, NO_VENDOR, INVALID_INTERVAL, CONFLICT, WRONG_STATE"""
        return self._run(
            "schedule_appointment",
            lambda: self.appointments.schedule(ticket_id, start, end, notes, vendor_id),
        )

    def update_appointment_status(
        self,
        appointment_id: UUID,
        new_status: AppointmentStatus | str,
        notes: str | None = None
    ) -> OperationResult:
        """
        Appointment | NOT_FOUND, UNAUTHORIZED, INVALID_TRANSITION

        new_status may be an AppointmentStatus or its name in any case.
        """
        try:
            if isinstance(new_status, AppointmentStatus):
                status = new_status
            else:
                status = AppointmentStatus(str(new_status).lower())
        except ValueError:
            return OperationResult.fail(
                ErrorKind.INVALID_TRANSITION, f"Unknown appointment status: {new_status}"
            )
        return self._run(
            "update_appointment_status",
            lambda: self.appointments.update_status(appointment_id, status, notes),
        )

    def reschedule_appointment(
        self,
        appointment_id: UUID,
        start: datetime,
        end: datetime,
        notes: str | None = None
    ) -> OperationResult:
        """Appointment | NOT_FOUND, UNAUTHORIZED, WRONG_STATE, INVALID_INTERVAL, CONFLICT"""
        return self._run(
            "reschedule_appointment",
            lambda: self.appointments.reschedule(appointment_id, start, end, notes),
        )

    def get_appointment(self, appointment_id: UUID) -> OperationResult:
        return self._run("get_appointment", lambda: self.appointments.get_by_id(appointment_id))

    def list_appointments_for_ticket(self, ticket_id: UUID) -> OperationResult:
        return self._run("list_appointments_for_ticket", lambda: self.appointments.list_for_ticket(ticket_id))

    def list_appointments_for_vendor(
        self,
        vendor_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None
    ) -> OperationResult:
        return self._run(
            "list_appointments_for_vendor",
            lambda: self.appointments.list_for_vendor(vendor_id, start, end),
        )

    def get_vendor_availability(self, vendor_id: UUID, day: date, tz_name: str | None = None) -> OperationResult:
        """VendorAvailability | NOT_FOUND"""
        return self._run(
            "get_vendor_availability",
            lambda: self.appointments.get_vendor_availability(vendor_id, day, tz_name),
        )

    def list_available_vendors(
        self,
        day: date,
        category: str | None = None,
        tz_name: str | None = None
    ) -> OperationResult:
        """list[AvailableVendor] | UNAUTHORIZED"""
        return self._run(
            "list_available_vendors",
            lambda: self.appointments.list_available_vendors(day, category, tz_name),
        )

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def submit_invoice(
        self,
        ticket_id: UUID,
        items: list[dict],
        tax_cents: int = 0,
        discount_cents: int = 0,
        notes: str | None = None,
        due_date: date | None = None,
        as_draft: bool = False,
        **client_totals
    ) -> OperationResult:
        """
        Invoice | NOT_FOUND, UNAUTHORIZED, TICKET_NOT_COMPLETED, INVALID_ITEMS, WRONG_STATE

        client_totals (subtotal_cents, total_cents) are accepted and ignored.
        """
        def submit():
            data = InvoiceSubmit.model_validate({
                "ticket_id": ticket_id,
                "items": items,
                "tax_cents": tax_cents,
                "discount_cents": discount_cents,
                "notes": notes,
                "due_date": due_date,
                **client_totals,
            })
            return self.invoices.submit(data, as_draft=as_draft)

        return self._run("submit_invoice", submit, items=True)

    def submit_draft_invoice(self, invoice_id: UUID) -> OperationResult:
        return self._run("submit_draft_invoice", lambda: self.invoices.submit_draft(invoice_id))

    def decide_invoice(self, invoice_id: UUID, approve: bool, reason: str | None = None) -> OperationResult:
        """Invoice | NOT_FOUND, UNAUTHORIZED, WRONG_STATE"""
        return self._run("decide_invoice", lambda: self.invoices.decide(invoice_id, approve, reason))

    def mark_invoice_paid(self, invoice_id: UUID, payment_reference: str | None = None) -> OperationResult:
        return self._run("mark_invoice_paid", lambda: self.invoices.mark_paid(invoice_id, payment_reference))

    def cancel_invoice(self, invoice_id: UUID) -> OperationResult:
        return self._run("cancel_invoice", lambda: self.invoices.cancel(invoice_id))

    def get_invoice(self, invoice_id: UUID) -> OperationResult:
        return self._run("get_invoice", lambda: self.invoices.get_by_id(invoice_id))

    def list_invoices_for_ticket(self, ticket_id: UUID) -> OperationResult:
        return self._run("list_invoices_for_ticket", lambda: self.invoices.list_for_ticket(ticket_id))

    def list_invoiceable_tickets(self, vendor_id: UUID | None = None) -> OperationResult:
        return self._run("list_invoiceable_tickets", lambda: self.invoices.list_invoiceable_tickets(vendor_id))

    def invoice_statistics(self, vendor_id: UUID | None = None, property_id: UUID | None = None) -> OperationResult:
        return self._run("invoice_statistics", lambda: self.invoices.statistics(vendor_id, property_id))

    # -------------------------------------------------------------------------
    # Vendors
    # -------------------------------------------------------------------------

    def create_vendor(self, data: VendorCreate | dict) -> OperationResult:
        return self._run("create_vendor", lambda: self.vendors.create(VendorCreate.model_validate(data)))

    def update_vendor(self, vendor_id: UUID, data: VendorUpdate | dict) -> OperationResult:
        return self._run(
            "update_vendor",
            lambda: self.vendors.update(vendor_id, VendorUpdate.model_validate(data)),
        )

    def deactivate_vendor(self, vendor_id: UUID) -> OperationResult:
        return self._run("deactivate_vendor", lambda: self.vendors.deactivate(vendor_id))

    def get_vendor(self, vendor_id: UUID) -> OperationResult:
        return self._run("get_vendor", lambda: self.vendors.get_by_id(vendor_id))

    def list_vendors(self, category: str | None = None) -> OperationResult:
        return self._run("list_vendors", lambda: self.vendors.list_active(category))
