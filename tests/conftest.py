"""Shared test fixtures for the maintenance coordinator test suite."""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Drop any secrets cached before the .env values were loaded
import clients.vault_client as vault_module
vault_module.secret_cache.clear()

from core.authority import Actor, Role, StaticPropertyAuthority
from core.coordinator import MaintenanceCoordinator
from core.event_bus import EventBus
from core.models import VendorCreate
from core.stores.memory import InMemoryStore
from utils.user_context import actor_context, clear_current_actor


# =============================================================================
# TEST PRINCIPAL CONSTANTS
# =============================================================================

PROPERTY_ID = UUID("10000000-0000-0000-0000-000000000001")
OTHER_PROPERTY_ID = UUID("10000000-0000-0000-0000-000000000002")

LANDLORD_ID = UUID("00000000-0000-0000-0000-000000000001")
OTHER_LANDLORD_ID = UUID("00000000-0000-0000-0000-000000000002")
TENANT_ID = UUID("00000000-0000-0000-0000-000000000003")
ADMIN_ID = UUID("00000000-0000-0000-0000-000000000004")
VENDOR_USER_ID = UUID("00000000-0000-0000-0000-000000000005")
VENDOR_B_USER_ID = UUID("00000000-0000-0000-0000-000000000006")

# Monday, well in the future so nothing collides with "now"
SLOT_START = datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)
SLOT_END = SLOT_START + timedelta(hours=2)


# =============================================================================
# ACTOR CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_actor_context():
    """Ensure clean actor context before and after each test."""
    clear_current_actor()
    yield
    clear_current_actor()


@pytest.fixture
def landlord() -> Actor:
    """Landlord who owns PROPERTY_ID."""
    return Actor(user_id=LANDLORD_ID, role=Role.LANDLORD)


@pytest.fixture
def other_landlord() -> Actor:
    """Landlord who owns OTHER_PROPERTY_ID only."""
    return Actor(user_id=OTHER_LANDLORD_ID, role=Role.LANDLORD)


@pytest.fixture
def tenant() -> Actor:
    return Actor(user_id=TENANT_ID, role=Role.TENANT)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, role=Role.ADMIN)


@pytest.fixture
def as_landlord(landlord):
    """Run the test body as the property's landlord."""
    with actor_context(landlord):
        yield landlord


@pytest.fixture
def as_admin(admin):
    with actor_context(admin):
        yield admin


# =============================================================================
# WIRING FIXTURES
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def authority() -> StaticPropertyAuthority:
    return StaticPropertyAuthority({
        PROPERTY_ID: LANDLORD_ID,
        OTHER_PROPERTY_ID: OTHER_LANDLORD_ID,
    })


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    for name in (
        "TicketAssigned", "TicketAccepted", "TicketRejected", "TicketScheduled",
        "TicketCompleted", "TicketCancelled", "AppointmentUpdated", "AppointmentRescheduled",
        "InvoiceSubmitted", "InvoiceApproved", "InvoiceRejected", "InvoicePaid",
    ):
        event_bus.subscribe(name, events.append)
    return events


@pytest.fixture
def coordinator(store, authority, event_bus) -> MaintenanceCoordinator:
    return MaintenanceCoordinator(store, authority, event_bus=event_bus)


# =============================================================================
# VENDOR FIXTURES
# =============================================================================


def _register_vendor(coordinator, admin, user_id, business_name, category="plumbing"):
    with actor_context(admin):
        return coordinator.vendors.create(VendorCreate(
            user_id=user_id,
            business_name=business_name,
            category=category,
            phone="555-0100",
        ))


@pytest.fixture
def vendor(coordinator, admin):
    """Active plumbing vendor."""
    return _register_vendor(coordinator, admin, VENDOR_USER_ID, "Acme Plumbing")


@pytest.fixture
def vendor_b(coordinator, admin):
    """Second active plumbing vendor."""
    return _register_vendor(coordinator, admin, VENDOR_B_USER_ID, "Brightside Pipes")


@pytest.fixture
def vendor_actor(vendor) -> Actor:
    return Actor(user_id=vendor.user_id, role=Role.VENDOR, vendor_id=vendor.id)


@pytest.fixture
def vendor_b_actor(vendor_b) -> Actor:
    return Actor(user_id=vendor_b.user_id, role=Role.VENDOR, vendor_id=vendor_b.id)


# =============================================================================
# WORKFLOW HELPERS
# =============================================================================


class Workflow:
    """
    Drives entities through the lifecycle via the coordinator.

    Each step acts as the principal who would normally perform it and
    fails the test immediately if the operation is rejected.
    """

    def __init__(self, coordinator, landlord, tenant, admin):
        self.coordinator = coordinator
        self.landlord = landlord
        self.tenant = tenant
        self.admin = admin

    @staticmethod
    def _ok(result):
        assert result.success, f"{result.error.kind}: {result.error.message}"
        return result.data

    def open_ticket(self, title="Leaking kitchen faucet", property_id=PROPERTY_ID, **overrides):
        data = {
            "property_id": property_id,
            "title": title,
            "description": "Water drips constantly from the kitchen faucet.",
            "category": "plumbing",
            **overrides,
        }
        with actor_context(self.tenant):
            return self._ok(self.coordinator.create_ticket(data))

    def assign(self, ticket, vendor):
        with actor_context(self.landlord):
            return self._ok(self.coordinator.assign_vendor(ticket.id, vendor.id))

    def accept(self, ticket, vendor_actor, estimated_cost_cents=15000):
        with actor_context(vendor_actor):
            return self._ok(self.coordinator.respond_to_assignment(
                ticket.id, accept=True, estimated_cost_cents=estimated_cost_cents,
            ))

    def schedule(self, ticket, vendor_actor, start=SLOT_START, end=SLOT_END):
        with actor_context(vendor_actor):
            return self._ok(self.coordinator.schedule_appointment(ticket.id, start, end))

    def complete(self, appointment, vendor_actor):
        with actor_context(vendor_actor):
            for status in ("confirmed", "in_progress", "completed"):
                appointment = self._ok(
                    self.coordinator.update_appointment_status(appointment.id, status)
                )
        return appointment

    def accepted_ticket(self, vendor, vendor_actor, **overrides):
        ticket = self.open_ticket(**overrides)
        self.assign(ticket, vendor)
        return self.accept(ticket, vendor_actor)

    def completed_ticket(self, vendor, vendor_actor, start=SLOT_START, end=SLOT_END, **overrides):
        ticket = self.accepted_ticket(vendor, vendor_actor, **overrides)
        appointment = self.schedule(ticket, vendor_actor, start, end)
        self.complete(appointment, vendor_actor)
        with actor_context(self.admin):
            return self._ok(self.coordinator.get_ticket(ticket.id))


@pytest.fixture
def workflow(coordinator, landlord, tenant, admin) -> Workflow:
    return Workflow(coordinator, landlord, tenant, admin)


@pytest.fixture
def property_id() -> UUID:
    """Property owned by the landlord fixture."""
    return PROPERTY_ID


@pytest.fixture
def other_property_id() -> UUID:
    """Property owned by the other_landlord fixture."""
    return OTHER_PROPERTY_ID


@pytest.fixture
def slot() -> tuple[datetime, datetime]:
    """Default two-hour appointment window used by the workflow helper."""
    return SLOT_START, SLOT_END


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient with the schema applied; skipped without a database."""
    if not os.getenv("DATABASE_URL") and not os.getenv("VAULT_ADDR"):
        pytest.skip("DATABASE_URL or VAULT_ADDR required for PostgreSQL tests")

    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url

    client = PostgresClient(get_database_url())
    schema = (Path(__file__).parent.parent / "db" / "schema.sql").read_text()
    with client.transaction() as tx:
        tx.execute(schema)
    yield client
    client.close()


@pytest.fixture
def postgres_store(db):
    """PostgresStore over emptied tables."""
    from core.stores.postgres import PostgresStore

    db.execute(
        "TRUNCATE ticket_comments, activity_log, notifications, invoices, appointments, tickets, vendors CASCADE"
    )
    return PostgresStore(db)
