"""FastAPI application factory."""

from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import ActorMiddleware, ActorResolver, RequestIDMiddleware, resolve_actor_from_headers
from core.coordinator import MaintenanceCoordinator


def create_app(
    coordinator: MaintenanceCoordinator,
    resolver: ActorResolver = resolve_actor_from_headers
) -> FastAPI:
    """
    FastAPI app with actor middleware, error handlers, and data/actions routes.

    Args:
        coordinator: Wired MaintenanceCoordinator
        resolver: Identity collaborator turning a request into an Actor
    """
    app = FastAPI(title="Maintenance Coordinator")
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(ActorMiddleware, resolver=resolver)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    app.include_router(create_data_router(coordinator), prefix="/api")
    app.include_router(create_actions_router(coordinator), prefix="/api")

    return app
