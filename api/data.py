"""GET /api/data: unified read endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.errors import operation_response
from core.coordinator import MaintenanceCoordinator
from core.models import TicketStatus
from utils.timezone import parse_iso


VALID_TYPES = {
    "tickets", "comments", "appointments", "invoices", "vendors", "availability",
    "available_vendors", "statistics",
}


def create_data_router(coordinator: MaintenanceCoordinator) -> APIRouter:
    router = APIRouter()

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        ticket_id: str | None = Query(None),
        vendor_id: str | None = Query(None),
        property_id: str | None = Query(None),
        status: str | None = Query(None),
        category: str | None = Query(None),
        filter: str | None = Query(None),
        day: str | None = Query(None, alias="date"),
        tz: str | None = Query(None),
        start: str | None = Query(None),
        end: str | None = Query(None),
        scope: str | None = Query(None),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        if type == "tickets":
            result = _handle_tickets(coordinator, id, vendor_id, property_id, status)
        elif type == "comments":
            result = _handle_comments(coordinator, ticket_id)
        elif type == "appointments":
            result = _handle_appointments(coordinator, id, ticket_id, vendor_id, start, end)
        elif type == "invoices":
            result = _handle_invoices(coordinator, id, ticket_id, vendor_id, filter)
        elif type == "vendors":
            result = _handle_vendors(coordinator, id, category)
        elif type == "availability":
            result = _handle_availability(coordinator, vendor_id, day, tz)
        elif type == "available_vendors":
            result = _handle_available_vendors(coordinator, day, category, tz)
        else:
            result = _handle_statistics(coordinator, scope, vendor_id, property_id)

        return operation_response(request, result)

    return router


def _statuses(status: str | None) -> list[TicketStatus] | None:
    if not status:
        return None
    return [TicketStatus(s.strip()) for s in status.split(",")]


def _handle_tickets(coordinator, id, vendor_id, property_id, status):
    if id:
        return coordinator.get_ticket(UUID(id))

    if vendor_id:
        return coordinator.list_tickets_for_vendor(UUID(vendor_id), _statuses(status))

    if property_id:
        return coordinator.list_tickets_for_property(UUID(property_id), _statuses(status))

    raise ValueError("'tickets' type requires 'id', 'vendor_id' or 'property_id' parameter")


def _handle_comments(coordinator, ticket_id):
    if not ticket_id:
        raise ValueError("'comments' type requires 'ticket_id' parameter")

    return coordinator.list_ticket_comments(UUID(ticket_id))


def _handle_appointments(coordinator, id, ticket_id, vendor_id, start, end):
    if id:
        return coordinator.get_appointment(UUID(id))

    if ticket_id:
        return coordinator.list_appointments_for_ticket(UUID(ticket_id))

    if vendor_id:
        return coordinator.list_appointments_for_vendor(
            UUID(vendor_id),
            parse_iso(start) if start else None,
            parse_iso(end) if end else None,
        )

    raise ValueError("'appointments' type requires 'id', 'ticket_id' or 'vendor_id' parameter")


def _handle_invoices(coordinator, id, ticket_id, vendor_id, filter):
    if id:
        return coordinator.get_invoice(UUID(id))

    if ticket_id:
        return coordinator.list_invoices_for_ticket(UUID(ticket_id))

    if filter == "invoiceable":
        return coordinator.list_invoiceable_tickets(UUID(vendor_id) if vendor_id else None)

    raise ValueError("'invoices' type requires 'id', 'ticket_id' or filter=invoiceable")


def _handle_vendors(coordinator, id, category):
    if id:
        return coordinator.get_vendor(UUID(id))

    return coordinator.list_vendors(category)


def _handle_availability(coordinator, vendor_id, day, tz):
    if not vendor_id or not day:
        raise ValueError("'availability' type requires 'vendor_id' and 'date' parameters")

    return coordinator.get_vendor_availability(UUID(vendor_id), date.fromisoformat(day), tz)


def _handle_available_vendors(coordinator, day, category, tz):
    if not day:
        raise ValueError("'available_vendors' type requires 'date' parameter")

    return coordinator.list_available_vendors(date.fromisoformat(day), category, tz)


def _handle_statistics(coordinator, scope, vendor_id, property_id):
    if scope == "tickets":
        return coordinator.ticket_statistics(UUID(property_id) if property_id else None)

    if scope == "invoices":
        return coordinator.invoice_statistics(
            UUID(vendor_id) if vendor_id else None,
            UUID(property_id) if property_id else None,
        )

    raise ValueError("'statistics' type requires scope=tickets or scope=invoices")
