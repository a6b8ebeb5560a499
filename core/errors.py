"""
Typed errors and the structured result envelope for maintenance operations.

Services raise MaintenanceError subclasses from inside a store transaction so
the whole unit rolls back. The coordinator converts them into OperationResult
values; callers never see these exceptions.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Machine-readable failure category."""

    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    WRONG_STATE = "WRONG_STATE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_VENDOR = "INVALID_VENDOR"
    NO_VENDOR = "NO_VENDOR"
    INVALID_INTERVAL = "INVALID_INTERVAL"
    CONFLICT = "CONFLICT"
    INVALID_ITEMS = "INVALID_ITEMS"
    TICKET_NOT_COMPLETED = "TICKET_NOT_COMPLETED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class MaintenanceError(Exception):
    """Base class for rejected maintenance operations."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(MaintenanceError):
    """Entity missing or soft-deleted."""

    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(MaintenanceError):
    """Actor lacks authority over the entity."""

    kind = ErrorKind.UNAUTHORIZED


class WrongStateError(MaintenanceError):
    """Entity is not in a state that permits the requested action."""

    kind = ErrorKind.WRONG_STATE


class InvalidTransitionError(MaintenanceError):
    """Requested status move is outside the state machine."""

    kind = ErrorKind.INVALID_TRANSITION


class InvalidVendorError(MaintenanceError):
    """Vendor does not exist or is inactive."""

    kind = ErrorKind.INVALID_VENDOR


class NoVendorError(MaintenanceError):
    """Ticket has no assigned vendor, or a different one."""

    kind = ErrorKind.NO_VENDOR


class InvalidIntervalError(MaintenanceError):
    """Appointment start is not strictly before its end."""

    kind = ErrorKind.INVALID_INTERVAL


class ConflictError(MaintenanceError):
    """Vendor already has an overlapping active appointment."""

    kind = ErrorKind.CONFLICT


class InvalidItemsError(MaintenanceError):
    """Invoice line items are empty or malformed."""

    kind = ErrorKind.INVALID_ITEMS


class TicketNotCompletedError(MaintenanceError):
    """Invoice submitted against a ticket that is not COMPLETED."""

    kind = ErrorKind.TICKET_NOT_COMPLETED


class ValidationFailedError(MaintenanceError):
    """Input shape or constraint violation."""

    kind = ErrorKind.VALIDATION_ERROR


class OperationError(BaseModel):
    """Failure details in an operation result."""

    kind: ErrorKind
    message: str


class OperationResult(BaseModel):
    """
    Outcome of a public maintenance operation.

    Exactly one of data/error is meaningful, selected by success.
    """

    success: bool
    data: Any | None = None
    error: OperationError | None = None

    @classmethod
    def ok(cls, data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "OperationResult":
        return cls(success=False, error=OperationError(kind=kind, message=message))

    @property
    def kind(self) -> ErrorKind | None:
        """Error kind for failed results, None on success."""
        return self.error.kind if self.error else None
