"""
Ticket service for the maintenance request lifecycle.

Handles intake, cancellation, the waiting-for-parts detour, soft deletion and
completion (driven by the appointment that finished the work). Assignment
and scheduling live in their own services but share the guards defined
here.

Every transition is one store transaction containing the ticket update,
exactly one activity entry and exactly one notification. Events go out
after commit.
"""

import logging
from uuid import UUID, uuid4

from core.audit import AuditLogger
from core.authority import Actor, PropertyAuthority, Role, has_property_authority, is_vendor_for
from core.errors import NotFoundError, UnauthorizedError, ValidationFailedError, WrongStateError
from core.event_bus import EventBus
from core.events import TicketCancelled
from core.models import (
    ActivityType, Appointment, AppointmentStatus, BLOCKING_STATUSES, NotificationType,
    Ticket, TicketComment, TicketCommentCreate, TicketCreate, TicketPriority, TicketStatistics,
    TicketStatus,
)
from core.notifications import Notifier
from core.stores import MaintenanceStore, StoreTransaction
from utils.timezone import now_utc
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)

# Statuses reported as "in progress" on the dashboard
_IN_FLIGHT_STATUSES = (
    TicketStatus.WAITING_VENDOR,
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_PARTS,
    TicketStatus.SCHEDULED,
)


# =============================================================================
# Shared guards
# =============================================================================


def load_ticket(tx: StoreTransaction, ticket_id: UUID, for_update: bool = True) -> Ticket:
    """
    Read a live ticket, locking it by default.

    Raises:
        NotFoundError: Missing or soft-deleted
    """
    ticket = tx.get_ticket(ticket_id, for_update=for_update)
    if ticket is None or ticket.is_deleted:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def guard_vendor_waiting(actor: Actor, ticket: Ticket) -> None:
    """An assigned vendor may only respond while the ticket awaits their answer."""
    if ticket.status == TicketStatus.WAITING_VENDOR and is_vendor_for(actor, ticket.vendor_id):
        raise WrongStateError(
            f"Ticket {ticket.id} is awaiting your response; not your ticket to act on yet"
        )


def can_view_ticket(authority: PropertyAuthority, actor: Actor, ticket: Ticket) -> bool:
    return (
        has_property_authority(authority, actor, ticket.property_id)
        or is_vendor_for(actor, ticket.vendor_id)
        or actor.user_id == ticket.created_by_id
    )


def landlord_or_requester(authority: PropertyAuthority, ticket: Ticket) -> UUID:
    """Property-side recipient for vendor-initiated notifications."""
    return authority.landlord_user_id(ticket.property_id) or ticket.created_by_id


def release_appointments(tx: StoreTransaction, ticket: Ticket, now) -> list[str]:
    """Cancel the ticket's blocking appointments; returns their ids."""
    released = []
    for appointment in tx.list_appointments(ticket_id=ticket.id, statuses=BLOCKING_STATUSES):
        tx.update_appointment(appointment.model_copy(update={
            "status": AppointmentStatus.CANCELLED,
            "updated_at": now,
        }))
        released.append(str(appointment.id))
    return released


def ticket_metadata(ticket: Ticket, previous: TicketStatus | None = None, **extra) -> dict:
    """Activity/notification metadata for a ticket transition."""
    metadata = {
        "ticket_id": str(ticket.id),
        "property_id": str(ticket.property_id),
        "vendor_id": str(ticket.vendor_id) if ticket.vendor_id else None,
        "new_status": ticket.status.value,
    }
    if previous is not None:
        metadata["previous_status"] = previous.value
    metadata.update(extra)
    return metadata


class TicketService:
    """Service for ticket lifecycle operations."""

    def __init__(
        self,
        store: MaintenanceStore,
        authority: PropertyAuthority,
        audit: AuditLogger,
        notifier: Notifier,
        event_bus: EventBus
    ):
        self.store = store
        self.authority = authority
        self.audit = audit
        self.notifier = notifier
        self.event_bus = event_bus

    def create(self, data: TicketCreate) -> Ticket:
        """
        Open a new maintenance ticket.

        Tenants and landlords/admins with authority over the property may
        open tickets. The landlord is notified unless they opened it.

        Args:
            data: Ticket creation data

        Returns:
            Created ticket in OPEN status
        """
        actor = get_current_actor()
        if actor.role == Role.VENDOR:
            raise UnauthorizedError("Vendors cannot open maintenance tickets")
        if actor.role == Role.LANDLORD and not self.authority.can_manage(actor, data.property_id):
            raise UnauthorizedError(f"No authority over property {data.property_id}")

        now = now_utc()
        ticket = Ticket(
            id=uuid4(),
            created_by_id=actor.user_id,
            status=TicketStatus.OPEN,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )

        with self.store.transaction() as tx:
            tx.insert_ticket(ticket)

            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_CREATED,
                action=f"Created maintenance ticket: {ticket.title}",
                metadata=ticket_metadata(ticket, priority=ticket.priority.value),
            )

            landlord_id = self.authority.landlord_user_id(ticket.property_id)
            if landlord_id is not None and landlord_id != actor.user_id:
                self.notifier.notify(
                    tx,
                    user_id=landlord_id,
                    type=NotificationType.MAINTENANCE_REQUEST,
                    title="New Maintenance Request",
                    message=f"New maintenance request: {ticket.title}",
                    action_url=self.notifier.ticket_url(ticket.id),
                    metadata={"ticket_id": str(ticket.id)},
                )

        logger.info(f"Ticket {ticket.id} opened on property {ticket.property_id}")
        return ticket

    def get_by_id(self, ticket_id: UUID) -> Ticket:
        """
        Get a ticket visible to the current actor.

        Raises:
            NotFoundError: Missing or soft-deleted
            UnauthorizedError: Actor is not involved with the ticket
        """
        actor = get_current_actor()
        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id, for_update=False)

        if not can_view_ticket(self.authority, actor, ticket):
            raise UnauthorizedError(f"Not authorized to view ticket {ticket_id}")
        return ticket

    def list_for_vendor(
        self,
        vendor_id: UUID,
        statuses: list[TicketStatus] | None = None,
        limit: int = 50
    ) -> list[Ticket]:
        """Tickets assigned to a vendor, newest first. Vendor themself or admin."""
        actor = get_current_actor()
        if actor.role != Role.ADMIN and not is_vendor_for(actor, vendor_id):
            raise UnauthorizedError(f"Not authorized to list tickets for vendor {vendor_id}")

        with self.store.transaction() as tx:
            return tx.list_tickets(vendor_id=vendor_id, statuses=statuses, limit=limit)

    def list_for_property(
        self,
        property_id: UUID,
        statuses: list[TicketStatus] | None = None,
        limit: int = 50
    ) -> list[Ticket]:
        """Tickets on a property, newest first. Requires property authority."""
        actor = get_current_actor()
        if not has_property_authority(self.authority, actor, property_id):
            raise UnauthorizedError(f"No authority over property {property_id}")

        with self.store.transaction() as tx:
            return tx.list_tickets(property_id=property_id, statuses=statuses, limit=limit)

    def _sees_internal(self, actor: Actor, ticket: Ticket) -> bool:
        return (
            has_property_authority(self.authority, actor, ticket.property_id)
            or is_vendor_for(actor, ticket.vendor_id)
            or actor.user_id == ticket.assigned_to_id
        )

    def add_comment(self, ticket_id: UUID, data: TicketCommentCreate) -> TicketComment:
        """
        Add a message to the ticket's timeline.

        The property's landlord, the requester, the assigned vendor and admins
        may write. Only those who can read internal comments may post one.
        Comments are allowed in every status, including terminal ones.

        Raises:
            NotFoundError: Missing or soft-deleted
            UnauthorizedError: Actor is not involved with the ticket
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id, for_update=False)

            staff = self._sees_internal(actor, ticket)
            if not (staff or actor.user_id == ticket.created_by_id):
                raise UnauthorizedError(f"Not authorized to comment on ticket {ticket_id}")
            if data.is_internal and not staff:
                raise UnauthorizedError("Only the property side and the vendor may post internal comments")

            comment = TicketComment(
                id=uuid4(),
                ticket_id=ticket.id,
                author_id=actor.user_id,
                message=data.message,
                is_internal=data.is_internal,
                created_at=now_utc(),
            )
            tx.insert_ticket_comment(comment)

            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_COMMENTED,
                action=f"Commented on maintenance ticket: {ticket.title}",
                metadata=ticket_metadata(
                    ticket, comment_id=str(comment.id), is_internal=comment.is_internal,
                ),
            )

        logger.info(f"Comment {comment.id} added to ticket {ticket_id} (internal={comment.is_internal})")
        return comment

    def list_comments(self, ticket_id: UUID) -> list[TicketComment]:
        """Timeline, oldest first. The requester does not see internal comments."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id, for_update=False)
            if not can_view_ticket(self.authority, actor, ticket):
                raise UnauthorizedError(f"Not authorized to view ticket {ticket_id}")
            return tx.list_ticket_comments(ticket_id, include_internal=self._sees_internal(actor, ticket))

    def cancel(self, ticket_id: UUID, reason: str | None = None) -> Ticket:
        """
        Cancel a non-terminal ticket.

        Active appointments of the ticket are cancelled in the same
        transaction so they stop blocking the vendor's calendar. One activity
        entry lists them.

        Args:
            ticket_id: Ticket UUID
            reason: Optional explanation passed on to the recipient

        Returns:
            Cancelled ticket

        Raises:
            NotFoundError, UnauthorizedError, WrongStateError
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id)
            guard_vendor_waiting(actor, ticket)

            is_requester = actor.user_id == ticket.created_by_id
            if not (has_property_authority(self.authority, actor, ticket.property_id) or is_requester):
                raise UnauthorizedError(f"Not authorized to cancel ticket {ticket_id}")

            if ticket.is_terminal:
                raise WrongStateError(
                    f"Ticket {ticket_id} cannot be cancelled - status is {ticket.status.value}"
                )

            now = now_utc()
            previous = ticket.status
            cancelled_appointments = release_appointments(tx, ticket, now)

            updated = ticket.model_copy(update={
                "status": TicketStatus.CANCELLED,
                "cancelled_at": now,
                "updated_at": now,
            })
            tx.update_ticket(updated)

            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_CANCELLED,
                action=f"Cancelled maintenance ticket: {ticket.title}",
                metadata=ticket_metadata(
                    updated, previous,
                    reason=reason,
                    cancelled_appointments=cancelled_appointments,
                ),
            )

            if ticket.assigned_to_id is not None and ticket.assigned_to_id != actor.user_id:
                recipient = ticket.assigned_to_id
            elif not is_requester:
                recipient = ticket.created_by_id
            else:
                recipient = landlord_or_requester(self.authority, ticket)

            message = f'Ticket "{ticket.title}" was cancelled'
            if reason:
                message += f": {reason}"
            self.notifier.notify(
                tx,
                user_id=recipient,
                type=NotificationType.MAINTENANCE_UPDATED,
                title="Ticket Cancelled",
                message=message,
                action_url=self.notifier.ticket_url(ticket.id),
                metadata=ticket_metadata(updated, previous),
            )

        logger.info(
            f"Ticket {ticket_id} cancelled from {previous.value}, "
            f"{len(cancelled_appointments)} appointment(s) released"
        )
        self.event_bus.publish(TicketCancelled.create(updated))
        return updated

    def await_parts(self, ticket_id: UUID, notes: str | None = None) -> Ticket:
        """Park an in-progress ticket until parts arrive."""
        return self._parts_transition(
            ticket_id,
            expected=TicketStatus.IN_PROGRESS,
            target=TicketStatus.WAITING_PARTS,
            title="Waiting for Parts",
            verb="is waiting for parts",
            notes=notes,
        )

    def parts_arrived(self, ticket_id: UUID, notes: str | None = None) -> Ticket:
        """Resume a ticket that was waiting for parts."""
        return self._parts_transition(
            ticket_id,
            expected=TicketStatus.WAITING_PARTS,
            target=TicketStatus.IN_PROGRESS,
            title="Parts Arrived",
            verb="is back in progress",
            notes=notes,
        )

    def _parts_transition(
        self,
        ticket_id: UUID,
        expected: TicketStatus,
        target: TicketStatus,
        title: str,
        verb: str,
        notes: str | None
    ) -> Ticket:
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id)
            guard_vendor_waiting(actor, ticket)

            acting_vendor = is_vendor_for(actor, ticket.vendor_id)
            if not (acting_vendor or has_property_authority(self.authority, actor, ticket.property_id)):
                raise UnauthorizedError(f"Not authorized to update ticket {ticket_id}")

            if ticket.status != expected:
                raise WrongStateError(
                    f"Ticket {ticket_id} must be {expected.value} - status is {ticket.status.value}"
                )

            update = {"status": target, "updated_at": now_utc()}
            if notes:
                update["notes"] = notes
            updated = ticket.model_copy(update=update)
            tx.update_ticket(updated)

            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_UPDATED,
                action=f'Ticket "{ticket.title}" {verb}',
                metadata=ticket_metadata(updated, expected),
            )

            recipient = (
                landlord_or_requester(self.authority, ticket) if acting_vendor
                else ticket.assigned_to_id
            )
            self.notifier.notify(
                tx,
                user_id=recipient,
                type=NotificationType.MAINTENANCE_UPDATED,
                title=title,
                message=f'Ticket "{ticket.title}" {verb}',
                action_url=self.notifier.ticket_url(ticket.id),
                metadata=ticket_metadata(updated, expected),
            )

        logger.info(f"Ticket {ticket_id} moved {expected.value} -> {target.value}")
        return updated

    def complete_from_appointment(self, tx: StoreTransaction, ticket: Ticket, appointment: Appointment) -> Ticket:
        """
        Complete the ticket whose appointment just finished.

        Runs inside the appointment update's transaction; the caller holds
        the ticket lock and publishes TicketCompleted after commit.

        Raises:
            WrongStateError: Ticket is not SCHEDULED
        """
        if ticket.status != TicketStatus.SCHEDULED:
            raise WrongStateError(
                f"Ticket {ticket.id} cannot complete - status is {ticket.status.value}"
            )

        now = now_utc()
        updated = ticket.model_copy(update={
            "status": TicketStatus.COMPLETED,
            "completed_at": now,
            "updated_at": now,
        })
        tx.update_ticket(updated)

        self.audit.log_activity(
            tx,
            type=ActivityType.TICKET_COMPLETED,
            action=f"Completed maintenance ticket: {ticket.title}",
            metadata=ticket_metadata(
                updated, TicketStatus.SCHEDULED,
                appointment_id=str(appointment.id),
                estimated_cost_cents=ticket.estimated_cost_cents,
            ),
        )

        self.notifier.notify(
            tx,
            user_id=ticket.created_by_id,
            type=NotificationType.MAINTENANCE_COMPLETED,
            title="Maintenance Completed",
            message=f'Work on "{ticket.title}" has been completed',
            action_url=self.notifier.ticket_url(ticket.id),
            metadata=ticket_metadata(updated, TicketStatus.SCHEDULED),
        )

        logger.info(f"Ticket {ticket.id} completed by appointment {appointment.id}")
        return updated

    def delete(self, ticket_id: UUID) -> bool:
        """
        Soft delete a ticket.

        Landlord with authority or admin only. Blocking appointments are
        cancelled in the same transaction; a deleted ticket can no longer be
        reached to release them. Writes an activity entry and no
        notification.

        Returns:
            True once deleted
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id)
            if not has_property_authority(self.authority, actor, ticket.property_id):
                raise UnauthorizedError(f"Not authorized to delete ticket {ticket_id}")

            now = now_utc()
            released = release_appointments(tx, ticket, now)
            tx.update_ticket(ticket.model_copy(update={"deleted_at": now, "updated_at": now}))

            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_DELETED,
                action=f"Deleted maintenance ticket: {ticket.title}",
                metadata={
                    "deleted": ticket.model_dump(mode="json"),
                    "cancelled_appointments": released,
                },
            )

        logger.info(f"Ticket {ticket_id} soft-deleted, {len(released)} appointment(s) released")
        return True

    def statistics(self, property_id: UUID | None = None) -> TicketStatistics:
        """
        Dashboard counts.

        Vendors see their own workload; landlords must name a property they
        manage; admins may query everything.
        """
        actor = get_current_actor()
        vendor_id = None

        if actor.role == Role.VENDOR:
            vendor_id = actor.vendor_id
        elif property_id is not None:
            if not has_property_authority(self.authority, actor, property_id):
                raise UnauthorizedError(f"No authority over property {property_id}")
        elif actor.role != Role.ADMIN:
            raise ValidationFailedError("property_id is required")

        with self.store.transaction() as tx:
            def count(statuses=None) -> int:
                return tx.count_tickets(vendor_id=vendor_id, property_id=property_id, statuses=statuses)

            total = count()
            completed = count([TicketStatus.COMPLETED])
            urgent = sum(
                1 for t in tx.list_tickets(vendor_id=vendor_id, property_id=property_id, limit=total or 1)
                if t.priority == TicketPriority.URGENT and not t.is_terminal
            )
            stats = TicketStatistics(
                total=total,
                open=count([TicketStatus.OPEN]),
                in_progress=count(_IN_FLIGHT_STATUSES),
                completed=completed,
                urgent=urgent,
                completion_rate=round(completed / total * 100, 1) if total else 0.0,
            )

        return stats
