"""Tests for AssignmentService - vendor assignment and responses."""

import pytest
from uuid import uuid4

from core.errors import (
    InvalidVendorError, NotFoundError, UnauthorizedError, ValidationFailedError, WrongStateError,
)
from core.models import ActivityType, NotificationType, TicketStatus
from utils.user_context import actor_context


def _activity(store):
    with store.transaction() as tx:
        return tx.list_activity(limit=1000)


def _notifications(store):
    with store.transaction() as tx:
        return tx.list_notifications(limit=1000)


@pytest.fixture
def assignments(coordinator):
    return coordinator.assignments


class TestAssignVendor:
    """Tests for AssignmentService.assign_vendor."""

    def test_moves_open_ticket_to_waiting_vendor(self, assignments, workflow, vendor, landlord):
        ticket = workflow.open_ticket()

        with actor_context(landlord):
            assigned = assignments.assign_vendor(ticket.id, vendor.id)

        assert assigned.status == TicketStatus.WAITING_VENDOR
        assert assigned.vendor_id == vendor.id
        assert assigned.assigned_to_id == vendor.user_id

    def test_one_activity_and_one_notification(self, assignments, workflow, store, vendor, landlord, published):
        ticket = workflow.open_ticket()
        activity_before = len(_activity(store))
        notifications_before = len(_notifications(store))

        with actor_context(landlord):
            assignments.assign_vendor(ticket.id, vendor.id)

        activity = _activity(store)
        notifications = _notifications(store)
        assert len(activity) == activity_before + 1
        assert len(notifications) == notifications_before + 1

        assert activity[0].type == ActivityType.TICKET_ASSIGNED
        assert activity[0].user_id == landlord.user_id
        assert notifications[0].user_id == vendor.user_id
        assert notifications[0].type == NotificationType.MAINTENANCE_ASSIGNED
        assert notifications[0].metadata["requires_action"] is True

        assert [type(e).__name__ for e in published] == ["TicketAssigned"]

    def test_repeat_assignment_is_idempotent(self, assignments, workflow, store, vendor, landlord, published):
        """Same vendor twice: no second activity, notification or event."""
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)
        activity_before = len(_activity(store))

        with actor_context(landlord):
            again = assignments.assign_vendor(ticket.id, vendor.id)

        assert again.status == TicketStatus.WAITING_VENDOR
        assert len(_activity(store)) == activity_before
        assert len(published) == 1

    def test_different_vendor_while_waiting_is_wrong_state(self, assignments, workflow, vendor, vendor_b, landlord):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)

        with actor_context(landlord):
            with pytest.raises(WrongStateError):
                assignments.assign_vendor(ticket.id, vendor_b.id)

    def test_inactive_vendor_rejected(self, assignments, workflow, vendor, landlord, admin, coordinator):
        ticket = workflow.open_ticket()
        with actor_context(admin):
            coordinator.vendors.deactivate(vendor.id)

        with actor_context(landlord):
            with pytest.raises(InvalidVendorError):
                assignments.assign_vendor(ticket.id, vendor.id)

    def test_unknown_vendor_rejected(self, assignments, workflow, landlord):
        ticket = workflow.open_ticket()

        with actor_context(landlord):
            with pytest.raises(InvalidVendorError):
                assignments.assign_vendor(ticket.id, uuid4())

    def test_unknown_ticket_not_found(self, assignments, vendor, as_landlord):
        with pytest.raises(NotFoundError):
            assignments.assign_vendor(uuid4(), vendor.id)

    def test_requires_property_authority(self, assignments, workflow, store, vendor, tenant, other_landlord):
        ticket = workflow.open_ticket()
        activity_before = len(_activity(store))

        for actor in (tenant, other_landlord):
            with actor_context(actor):
                with pytest.raises(UnauthorizedError):
                    assignments.assign_vendor(ticket.id, vendor.id)

        assert len(_activity(store)) == activity_before

    def test_admin_may_assign(self, assignments, workflow, vendor, as_admin):
        ticket = workflow.open_ticket()

        assert assignments.assign_vendor(ticket.id, vendor.id).status == TicketStatus.WAITING_VENDOR

    def test_cannot_assign_in_progress_ticket(self, assignments, workflow, vendor, vendor_actor, vendor_b, landlord):
        ticket = workflow.accepted_ticket(vendor, vendor_actor)

        with actor_context(landlord):
            with pytest.raises(WrongStateError):
                assignments.assign_vendor(ticket.id, vendor_b.id)


class TestRespond:
    """Tests for AssignmentService.respond."""

    def test_accept_moves_to_in_progress_with_estimate(self, assignments, workflow, store, vendor, vendor_actor, landlord, published):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)

        with actor_context(vendor_actor):
            accepted = assignments.respond(
                ticket.id, accept=True, estimated_cost_cents=12500, notes="Bringing a new valve",
            )

        assert accepted.status == TicketStatus.IN_PROGRESS
        assert accepted.estimated_cost_cents == 12500
        assert accepted.notes == "Bringing a new valve"
        assert accepted.vendor_id == vendor.id

        assert _activity(store)[0].type == ActivityType.TICKET_ACCEPTED
        notification = _notifications(store)[0]
        assert notification.user_id == landlord.user_id
        assert "$125.00" in notification.message
        assert type(published[-1]).__name__ == "TicketAccepted"

    def test_reject_reopens_and_clears_assignment(self, assignments, workflow, store, vendor, vendor_actor, published):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)

        with actor_context(vendor_actor):
            rejected = assignments.respond(ticket.id, accept=False, reason="Fully booked")

        assert rejected.status == TicketStatus.OPEN
        assert rejected.vendor_id is None
        assert rejected.assigned_to_id is None

        entry = _activity(store)[0]
        assert entry.type == ActivityType.TICKET_REJECTED
        assert entry.metadata["rejected_vendor_id"] == str(vendor.id)
        assert published[-1].reason == "Fully booked"

    def test_rejected_ticket_can_be_reassigned(self, assignments, workflow, vendor, vendor_actor, vendor_b, landlord):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)
        with actor_context(vendor_actor):
            assignments.respond(ticket.id, accept=False)

        with actor_context(landlord):
            reassigned = assignments.assign_vendor(ticket.id, vendor_b.id)

        assert reassigned.vendor_id == vendor_b.id

    def test_only_assigned_vendor_may_respond(self, assignments, workflow, vendor, vendor_b_actor, landlord):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)

        for actor in (vendor_b_actor, landlord):
            with actor_context(actor):
                with pytest.raises(UnauthorizedError):
                    assignments.respond(ticket.id, accept=True)

    def test_second_response_is_wrong_state(self, assignments, workflow, vendor, vendor_actor):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)

        with actor_context(vendor_actor):
            assignments.respond(ticket.id, accept=True)
            with pytest.raises(WrongStateError):
                assignments.respond(ticket.id, accept=True)

    def test_negative_estimate_rejected(self, assignments, workflow, vendor, vendor_actor):
        ticket = workflow.open_ticket()
        workflow.assign(ticket, vendor)

        with actor_context(vendor_actor):
            with pytest.raises(ValidationFailedError):
                assignments.respond(ticket.id, accept=True, estimated_cost_cents=-1)
