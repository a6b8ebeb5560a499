"""POST /api/actions: unified mutation endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.errors import operation_response
from core.coordinator import MaintenanceCoordinator
from core.errors import OperationResult
from utils.timezone import parse_iso


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(coordinator: MaintenanceCoordinator) -> APIRouter:
    router = APIRouter()

    handlers = {
        "ticket": TicketHandler(coordinator),
        "appointment": AppointmentHandler(coordinator),
        "invoice": InvoiceHandler(coordinator),
        "vendor": VendorHandler(coordinator),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result: OperationResult = method(body.data)
        return operation_response(request, result)

    return router


def _required(data: dict, key: str):
    if key not in data or data[key] is None:
        raise ValueError(f"'{key}' is required")
    return data[key]


def _uuid(data: dict, key: str = "id") -> UUID:
    return UUID(str(_required(data, key)))


def _bool(data: dict, key: str, default: bool | None = None) -> bool:
    """A real JSON boolean; "false" and 0 are rejected rather than coerced."""
    if key not in data or data[key] is None:
        if default is None:
            raise ValueError(f"'{key}' is required")
        return default
    value = data[key]
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be true or false")
    return value


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class TicketHandler:
    ALLOWED_ACTIONS = {
        "create", "assign", "respond", "await_parts", "parts_arrived", "cancel", "delete", "comment",
    }

    def __init__(self, coordinator: MaintenanceCoordinator):
        self.coordinator = coordinator

    def _handle_create(self, data: dict):
        return self.coordinator.create_ticket(data)

    def _handle_assign(self, data: dict):
        return self.coordinator.assign_vendor(_uuid(data), _uuid(data, "vendor_id"))

    def _handle_respond(self, data: dict):
        return self.coordinator.respond_to_assignment(
            _uuid(data),
            accept=_bool(data, "accept"),
            estimated_cost_cents=data.get("estimated_cost_cents"),
            notes=data.get("notes"),
            reason=data.get("reason"),
        )

    def _handle_await_parts(self, data: dict):
        return self.coordinator.await_parts(_uuid(data), data.get("notes"))

    def _handle_parts_arrived(self, data: dict):
        return self.coordinator.parts_arrived(_uuid(data), data.get("notes"))

    def _handle_cancel(self, data: dict):
        return self.coordinator.cancel_ticket(_uuid(data), data.get("reason"))

    def _handle_delete(self, data: dict):
        return self.coordinator.delete_ticket(_uuid(data))

    def _handle_comment(self, data: dict):
        return self.coordinator.add_ticket_comment(_uuid(data), {
            "message": _required(data, "message"),
            "is_internal": _bool(data, "is_internal", default=False),
        })


class AppointmentHandler:
    ALLOWED_ACTIONS = {"schedule", "update_status", "reschedule"}

    def __init__(self, coordinator: MaintenanceCoordinator):
        self.coordinator = coordinator

    def _handle_schedule(self, data: dict):
        vendor_id = data.get("vendor_id")
        return self.coordinator.schedule_appointment(
            _uuid(data, "ticket_id"),
            start=parse_iso(_required(data, "scheduled_start")),
            end=parse_iso(_required(data, "scheduled_end")),
            notes=data.get("notes"),
            vendor_id=UUID(vendor_id) if vendor_id else None,
        )

    def _handle_update_status(self, data: dict):
        return self.coordinator.update_appointment_status(
            _uuid(data),
            _required(data, "status"),
            notes=data.get("notes"),
        )

    def _handle_reschedule(self, data: dict):
        return self.coordinator.reschedule_appointment(
            _uuid(data),
            start=parse_iso(_required(data, "scheduled_start")),
            end=parse_iso(_required(data, "scheduled_end")),
            notes=data.get("notes"),
        )


class InvoiceHandler:
    ALLOWED_ACTIONS = {"submit", "submit_draft", "decide", "mark_paid", "cancel"}

    def __init__(self, coordinator: MaintenanceCoordinator):
        self.coordinator = coordinator

    def _handle_submit(self, data: dict):
        due_date = data.get("due_date")
        return self.coordinator.submit_invoice(
            _uuid(data, "ticket_id"),
            items=data.get("items") or [],
            tax_cents=data.get("tax_cents", 0),
            discount_cents=data.get("discount_cents", 0),
            notes=data.get("notes"),
            due_date=date.fromisoformat(due_date) if due_date else None,
            as_draft=_bool(data, "as_draft", default=False),
            subtotal_cents=data.get("subtotal_cents"),
            total_cents=data.get("total_cents"),
        )

    def _handle_submit_draft(self, data: dict):
        return self.coordinator.submit_draft_invoice(_uuid(data))

    def _handle_decide(self, data: dict):
        return self.coordinator.decide_invoice(
            _uuid(data),
            approve=_bool(data, "approve"),
            reason=data.get("reason"),
        )

    def _handle_mark_paid(self, data: dict):
        return self.coordinator.mark_invoice_paid(_uuid(data), data.get("payment_reference"))

    def _handle_cancel(self, data: dict):
        return self.coordinator.cancel_invoice(_uuid(data))


class VendorHandler:
    ALLOWED_ACTIONS = {"create", "update", "deactivate"}

    def __init__(self, coordinator: MaintenanceCoordinator):
        self.coordinator = coordinator

    def _handle_create(self, data: dict):
        return self.coordinator.create_vendor(data)

    def _handle_update(self, data: dict):
        vendor_id = _uuid(data)
        fields = {k: v for k, v in data.items() if k != "id"}
        return self.coordinator.update_vendor(vendor_id, fields)

    def _handle_deactivate(self, data: dict):
        return self.coordinator.deactivate_vendor(_uuid(data))
