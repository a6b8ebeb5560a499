"""Unified API response format and error handling."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Unique request identifier for tracing")


class APIResponse(BaseModel):
    """
    Unified response format for all API endpoints.

    Every endpoint returns this structure, making client parsing predictable.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def to_json(data: Any) -> Any:
    """Pydantic models (and lists of them) to JSON-compatible values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [to_json(item) for item in data]
    return data


def success_response(data: Any, request_id: str | None = None) -> APIResponse:
    """Create a success response."""
    return APIResponse(
        success=True,
        data=to_json(data),
        error=None,
        meta=APIMeta(
            timestamp=now_utc(),
            request_id=request_id or str(uuid4()),
        ),
    )


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    """Create an error response."""
    return APIResponse(
        success=False,
        data=None,
        error=APIError(code=code, message=message),
        meta=APIMeta(
            timestamp=now_utc(),
            request_id=request_id or str(uuid4()),
        ),
    )


class ErrorCodes:
    """
    Standard error codes for consistent error handling.

    Operation failures reuse the ErrorKind values of core.errors verbatim so
    clients can switch on one vocabulary.
    """

    # Authentication & Authorization
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_INTERVAL = "INVALID_INTERVAL"
    INVALID_ITEMS = "INVALID_ITEMS"
    INVALID_VENDOR = "INVALID_VENDOR"

    # Lifecycle
    WRONG_STATE = "WRONG_STATE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NO_VENDOR = "NO_VENDOR"
    TICKET_NOT_COMPLETED = "TICKET_NOT_COMPLETED"

    # Scheduling
    CONFLICT = "CONFLICT"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
