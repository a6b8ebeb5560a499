"""
Vendor assignment: asking a vendor to take a ticket and recording their answer.

OPEN -> WAITING_VENDOR on assignment; WAITING_VENDOR -> IN_PROGRESS on
acceptance or back to OPEN on rejection. A rejected ticket keeps no queue
position; the landlord simply picks another vendor.
"""

import logging
from uuid import UUID

from core.audit import AuditLogger
from core.authority import PropertyAuthority, has_property_authority, is_vendor_for
from core.errors import InvalidVendorError, UnauthorizedError, ValidationFailedError, WrongStateError
from core.event_bus import EventBus
from core.events import TicketAccepted, TicketAssigned, TicketRejected
from core.models import ActivityType, NotificationType, Ticket, TicketStatus
from core.notifications import Notifier
from core.services.ticket_service import landlord_or_requester, load_ticket, ticket_metadata
from core.stores import MaintenanceStore
from utils.timezone import now_utc
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)


class AssignmentService:
    """Service for vendor assignment and vendor responses."""

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

    def assign_vendor(self, ticket_id: UUID, vendor_id: UUID) -> Ticket:
        """
        Offer an open ticket to a vendor.

        Repeating the call for the vendor the ticket is already waiting on
        returns the ticket unchanged.

        Args:
            ticket_id: Ticket UUID
            vendor_id: Vendor to ask

        Returns:
            Ticket in WAITING_VENDOR status

        Raises:
            NotFoundError: Ticket missing or soft-deleted
            UnauthorizedError: Actor is not a landlord of the property or admin
            InvalidVendorError: Vendor unknown or inactive
            WrongStateError: Ticket is not OPEN
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id)

            if not has_property_authority(self.authority, actor, ticket.property_id):
                raise UnauthorizedError(f"Not authorized to assign vendors on ticket {ticket_id}")

            vendor = tx.get_vendor(vendor_id)
            if vendor is None or not vendor.is_active:
                raise InvalidVendorError(f"Vendor {vendor_id} not found or inactive")

            if ticket.status == TicketStatus.WAITING_VENDOR and ticket.vendor_id == vendor_id:
                logger.debug(f"Ticket {ticket_id} already waiting on vendor {vendor_id}")
                return ticket

            if ticket.status != TicketStatus.OPEN:
                raise WrongStateError(
                    f"Ticket {ticket_id} cannot be assigned - status is {ticket.status.value}"
                )

            updated = ticket.model_copy(update={
                "status": TicketStatus.WAITING_VENDOR,
                "vendor_id": vendor.id,
                "assigned_to_id": vendor.user_id,
                "updated_at": now_utc(),
            })
            tx.update_ticket(updated)

            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_ASSIGNED,
                action=f"Assigned {vendor.business_name} to: {ticket.title}",
                metadata=ticket_metadata(updated, ticket.status),
            )

            self.notifier.notify(
                tx,
                user_id=vendor.user_id,
                type=NotificationType.MAINTENANCE_ASSIGNED,
                title="New Job Assignment",
                message=f"You've been assigned to: {ticket.title}. Please accept or decline.",
                action_url=self.notifier.ticket_url(ticket.id),
                metadata={
                    "ticket_id": str(ticket.id),
                    "property_id": str(ticket.property_id),
                    "requires_action": True,
                },
            )

        logger.info(f"Ticket {ticket_id} assigned to vendor {vendor_id}")
        self.event_bus.publish(TicketAssigned.create(updated))
        return updated

    def respond(
        self,
        ticket_id: UUID,
        accept: bool,
        estimated_cost_cents: int | None = None,
        notes: str | None = None,
        reason: str | None = None
    ) -> Ticket:
        """
        Record the assigned vendor's answer.

        Acceptance stores the estimate and notes. Rejection clears the
        assignment and leaves estimate and notes as they were.

        Args:
            ticket_id: Ticket UUID
            accept: True to accept, False to decline
            estimated_cost_cents: Quote for the job (acceptance only)
            notes: Vendor notes (acceptance only)
            reason: Why the job was declined (rejection only)

        Returns:
            Ticket in IN_PROGRESS (accepted) or OPEN (rejected)

        Raises:
            NotFoundError, UnauthorizedError, WrongStateError, ValidationFailedError
        """
        actor = get_current_actor()

        if estimated_cost_cents is not None and estimated_cost_cents < 0:
            raise ValidationFailedError("Estimated cost cannot be negative")

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id)

            if not is_vendor_for(actor, ticket.vendor_id):
                raise UnauthorizedError(f"Only the assigned vendor can respond to ticket {ticket_id}")

            if ticket.status != TicketStatus.WAITING_VENDOR:
                raise WrongStateError(
                    f"Ticket {ticket_id} is not awaiting a response - status is {ticket.status.value}"
                )

            if accept:
                update = {"status": TicketStatus.IN_PROGRESS, "updated_at": now_utc()}
                if estimated_cost_cents is not None:
                    update["estimated_cost_cents"] = estimated_cost_cents
                if notes is not None:
                    update["notes"] = notes
                updated = ticket.model_copy(update=update)
                activity_type = ActivityType.TICKET_ACCEPTED
                action = f"Accepted maintenance job: {ticket.title}"
                title = "Vendor Accepted Job"
                message = f'The vendor accepted "{ticket.title}"'
                if estimated_cost_cents is not None:
                    message += f" with an estimate of ${estimated_cost_cents / 100:.2f}"
                extra = {"estimated_cost_cents": estimated_cost_cents}
            else:
                updated = ticket.model_copy(update={
                    "status": TicketStatus.OPEN,
                    "vendor_id": None,
                    "assigned_to_id": None,
                    "updated_at": now_utc(),
                })
                activity_type = ActivityType.TICKET_REJECTED
                action = f"Declined maintenance job: {ticket.title}"
                title = "Vendor Declined Job"
                message = f'The vendor declined "{ticket.title}"'
                if reason:
                    message += f": {reason}"
                extra = {"rejected_vendor_id": str(ticket.vendor_id), "reason": reason}

            tx.update_ticket(updated)

            metadata = ticket_metadata(updated, ticket.status, **extra)
            self.audit.log_activity(tx, type=activity_type, action=action, metadata=metadata)

            self.notifier.notify(
                tx,
                user_id=landlord_or_requester(self.authority, ticket),
                type=NotificationType.MAINTENANCE_UPDATED,
                title=title,
                message=message,
                action_url=self.notifier.ticket_url(ticket.id),
                metadata=metadata,
            )

        if accept:
            logger.info(f"Vendor {ticket.vendor_id} accepted ticket {ticket_id}")
            self.event_bus.publish(TicketAccepted.create(updated))
        else:
            logger.info(f"Vendor {ticket.vendor_id} declined ticket {ticket_id}")
            self.event_bus.publish(TicketRejected.create(updated, reason=reason))

        return updated
