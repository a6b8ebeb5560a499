"""Global exception handlers and operation-result mapping for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, success_response, ErrorCodes
from core.errors import ErrorKind, OperationResult

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.WRONG_STATE: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.NO_VENDOR: 409,
    ErrorKind.TICKET_NOT_COMPLETED: 409,
    ErrorKind.INVALID_VENDOR: 422,
    ErrorKind.INVALID_INTERVAL: 422,
    ErrorKind.INVALID_ITEMS: 422,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.INTERNAL_ERROR: 500,
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def operation_response(request: Request, result: OperationResult) -> JSONResponse:
    """Render an OperationResult in the unified envelope with a matching status code."""
    if result.success:
        return JSONResponse(
            status_code=200,
            content=success_response(result.data, _request_id(request)).model_dump(mode="json"),
        )

    return JSONResponse(
        status_code=STATUS_BY_KIND.get(result.error.kind, 400),
        content=error_response(
            result.error.kind.value,
            result.error.message,
            _request_id(request),
        ).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.INVALID_REQUEST, str(exc), _request_id(request)
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                _request_id(request),
            ).model_dump(mode="json"),
        )
