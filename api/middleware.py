"""Request-scoped middleware for API requests."""

from typing import Callable
from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.authority import Actor, Role
from utils.user_context import set_current_actor, clear_current_actor

ActorResolver = Callable[[Request], "Actor | None"]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def resolve_actor_from_headers(request: Request) -> Actor | None:
    """
    Build the actor from identity headers set by an authenticating gateway.

    Expects X-User-Id and X-User-Role, plus X-Vendor-Id for vendors. Only
    deploy behind a proxy that strips these headers from client traffic.
    """
    user_id = request.headers.get("X-User-Id")
    role = request.headers.get("X-User-Role")
    if not user_id or not role:
        return None

    try:
        vendor_id = request.headers.get("X-Vendor-Id")
        return Actor(
            user_id=UUID(user_id),
            role=Role(role.lower()),
            vendor_id=UUID(vendor_id) if vendor_id else None,
        )
    except ValueError:
        return None


class ActorMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the acting principal and sets actor context.

    For protected routes:
    1. Asks the identity collaborator (resolver) for the Actor
    2. Sets it in request.state and the actor context
    3. Clears context after request completes

    Public paths bypass resolution entirely.
    """

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, resolver: ActorResolver):
        super().__init__(app)
        self._resolver = resolver

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        actor = self._resolver(request)
        if actor is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )

        set_current_actor(actor)
        request.state.actor = actor

        try:
            return await call_next(request)
        finally:
            # Always clear context
            clear_current_actor()
