"""API test fixtures - TestClient over the app factory with an in-memory coordinator."""

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from core.authority import Actor


def actor_headers(actor: Actor) -> dict[str, str]:
    """Identity headers an authenticating gateway would set for this actor."""
    headers = {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role.value}
    if actor.vendor_id is not None:
        headers["X-Vendor-Id"] = str(actor.vendor_id)
    return headers


@pytest.fixture
def app(coordinator):
    """Full application: actor middleware, error handlers, data/actions routes."""
    return create_app(coordinator)


@pytest.fixture
def client(app):
    """Unauthenticated test client; pass headers=as_(actor) per request."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def as_():
    return actor_headers


@pytest.fixture
def action(client, as_):
    """POST /api/actions as the given actor."""

    def post(actor, domain, name, data):
        return client.post(
            "/api/actions",
            json={"domain": domain, "action": name, "data": data},
            headers=as_(actor),
        )

    return post
