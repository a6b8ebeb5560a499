"""
Appointment scheduling and execution.

Booking runs under the vendor's schedule lock: the conflict query and the
insert share one transaction, so two overlapping bookings for the same vendor
cannot both succeed. Locks are always taken ticket first, then vendor.
"""

import logging
from datetime import date, datetime
from uuid import UUID, uuid4

from core.audit import AuditLogger
from core.authority import PropertyAuthority, Role, has_property_authority, is_vendor_for
from core.config import MaintenanceConfig
from core.errors import (
    ConflictError, InvalidTransitionError, NoVendorError, NotFoundError,
    UnauthorizedError, WrongStateError,
)
from core.event_bus import EventBus
from core.events import AppointmentRescheduled, AppointmentUpdated, TicketCompleted, TicketScheduled
from core.models import (
    ACTIVE_WORK_STATUSES, APPOINTMENT_TRANSITIONS, BLOCKING_STATUSES, ActivityType,
    Appointment, AppointmentStatus, AvailableVendor, NotificationType, TicketStatus, VendorAvailability,
)
from core.notifications import Notifier
from core.scheduling import day_bounds, find_conflicts, validate_interval
from core.services.ticket_service import (
    TicketService, can_view_ticket, guard_vendor_waiting, landlord_or_requester,
    load_ticket, ticket_metadata,
)
from core.stores import MaintenanceStore
from utils.timezone import format_slot, now_utc, to_utc
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)

_SCHEDULABLE_STATUSES = frozenset({
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_PARTS,
    TicketStatus.SCHEDULED,
})

_RESCHEDULABLE_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
})

# Who may drive each target status besides the assigned vendor
_PROPERTY_SIDE_ALLOWED = {
    AppointmentStatus.CONFIRMED: {Role.ADMIN},
    AppointmentStatus.IN_PROGRESS: {Role.LANDLORD, Role.ADMIN},
    AppointmentStatus.COMPLETED: {Role.LANDLORD, Role.ADMIN},
    AppointmentStatus.CANCELLED: {Role.LANDLORD, Role.ADMIN},
    AppointmentStatus.NO_SHOW: {Role.LANDLORD, Role.ADMIN},
}

# Targets the assigned vendor may not set
_VENDOR_FORBIDDEN = {AppointmentStatus.NO_SHOW}


class AppointmentService:
    """Service for appointment booking, status changes and availability."""

    def __init__(
        self,
        store: MaintenanceStore,
        authority: PropertyAuthority,
        audit: AuditLogger,
        notifier: Notifier,
        event_bus: EventBus,
        tickets: TicketService,
        config: MaintenanceConfig | None = None
    ):
        self.store = store
        self.authority = authority
        self.audit = audit
        self.notifier = notifier
        self.event_bus = event_bus
        self.tickets = tickets
        self.config = config or MaintenanceConfig()

    def schedule(
        self,
        ticket_id: UUID,
        start: datetime,
        end: datetime,
        notes: str | None = None,
        vendor_id: UUID | None = None
    ) -> Appointment:
        """
        Book an appointment for the ticket's vendor.

        Args:
            ticket_id: Ticket UUID
            start: Appointment start (timezone-aware)
            end: Appointment end (timezone-aware, after start)
            notes: Access instructions or other notes
            vendor_id: Expected vendor; must match the ticket's vendor if given

        Returns:
            Created appointment in SCHEDULED status

        Raises:
            NotFoundError: Ticket missing or soft-deleted
            UnauthorizedError: Actor is neither property-side nor the assigned vendor
            WrongStateError: Ticket not schedulable, or already has an active appointment
            InvalidIntervalError: start >= end or naive bounds
            NoVendorError: Ticket has no vendor (or a different one)
            ConflictError: Vendor has an overlapping active appointment
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id)

            acting_vendor = is_vendor_for(actor, ticket.vendor_id)
            if not (acting_vendor or has_property_authority(self.authority, actor, ticket.property_id)):
                raise UnauthorizedError(f"Not authorized to schedule ticket {ticket_id}")

            guard_vendor_waiting(actor, ticket)

            validate_interval(start, end)
            start, end = to_utc(start), to_utc(end)

            if ticket.vendor_id is None:
                raise NoVendorError(f"No vendor assigned to ticket {ticket_id}")
            if vendor_id is not None and vendor_id != ticket.vendor_id:
                raise NoVendorError(f"Vendor {vendor_id} is not assigned to ticket {ticket_id}")

            if ticket.status not in _SCHEDULABLE_STATUSES:
                raise WrongStateError(
                    f"Ticket {ticket_id} cannot be scheduled - status is {ticket.status.value}"
                )

            tx.lock_vendor_schedule(ticket.vendor_id)

            existing = tx.list_appointments(
                vendor_id=ticket.vendor_id,
                statuses=BLOCKING_STATUSES,
                overlapping=(start, end),
            )
            if find_conflicts(start, end, existing):
                raise ConflictError("Vendor has a conflicting appointment at this time")

            if ticket.status == TicketStatus.SCHEDULED and tx.list_appointments(
                ticket_id=ticket.id, statuses=BLOCKING_STATUSES
            ):
                raise WrongStateError(f"Ticket {ticket_id} already has an active appointment")

            now = now_utc()
            appointment = Appointment(
                id=uuid4(),
                ticket_id=ticket.id,
                vendor_id=ticket.vendor_id,
                scheduled_start=start,
                scheduled_end=end,
                status=AppointmentStatus.SCHEDULED,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            tx.insert_appointment(appointment)

            updated = ticket.model_copy(update={
                "status": TicketStatus.SCHEDULED,
                "scheduled_date": start,
                "updated_at": now,
            })
            tx.update_ticket(updated)

            metadata = ticket_metadata(
                updated, ticket.status,
                appointment_id=str(appointment.id),
                scheduled_start=start.isoformat(),
                scheduled_end=end.isoformat(),
            )
            self.audit.log_activity(
                tx,
                type=ActivityType.TICKET_SCHEDULED,
                action=f"Scheduled appointment for: {ticket.title}",
                metadata=metadata,
            )

            slot = format_slot(start, self.config.availability_timezone)
            self.notifier.notify(
                tx,
                user_id=(
                    landlord_or_requester(self.authority, ticket) if acting_vendor
                    else ticket.assigned_to_id
                ),
                type=NotificationType.MAINTENANCE_SCHEDULED,
                title="New Appointment Scheduled",
                message=f'Appointment for "{ticket.title}" on {slot}',
                action_url=self.notifier.schedule_url(),
                metadata=metadata,
            )

        logger.info(
            f"Appointment {appointment.id} booked for ticket {ticket_id} "
            f"with vendor {ticket.vendor_id} at {start.isoformat()}"
        )
        self.event_bus.publish(TicketScheduled.create(updated, appointment))
        return appointment

    def update_status(
        self,
        appointment_id: UUID,
        new_status: AppointmentStatus,
        notes: str | None = None
    ) -> Appointment:
        """
        Move an appointment through its state machine.

        Completing the appointment completes its ticket in the same
        transaction. Cancelling or marking a no-show leaves the ticket
        SCHEDULED so it can be booked again.

        Args:
            appointment_id: Appointment UUID
            new_status: Target status
            notes: Optional notes replacing the current ones

        Returns:
            Updated appointment

        Raises:
            NotFoundError, UnauthorizedError, InvalidTransitionError
        """
        actor = get_current_actor()
        completed_ticket = None

        with self.store.transaction() as tx:
            current = tx.get_appointment(appointment_id)
            if current is None:
                raise NotFoundError(f"Appointment {appointment_id} not found")

            # Ticket before appointment, then re-read under lock
            ticket = load_ticket(tx, current.ticket_id)
            current = tx.get_appointment(appointment_id, for_update=True)

            acting_vendor = is_vendor_for(actor, current.vendor_id)
            property_side = has_property_authority(self.authority, actor, ticket.property_id)
            if not (acting_vendor or property_side):
                raise UnauthorizedError(f"Not authorized to update appointment {appointment_id}")

            if new_status not in APPOINTMENT_TRANSITIONS[current.status]:
                raise InvalidTransitionError(
                    f"Appointment cannot move from {current.status.value} to {new_status.value}"
                )

            if acting_vendor:
                allowed = new_status not in _VENDOR_FORBIDDEN
            else:
                allowed = actor.role in _PROPERTY_SIDE_ALLOWED[new_status]
            if not allowed:
                raise UnauthorizedError(
                    f"{actor.role.value} cannot mark appointment {new_status.value}"
                )

            now = now_utc()
            update = {"status": new_status, "updated_at": now}
            if new_status == AppointmentStatus.IN_PROGRESS:
                update["actual_start"] = now
            elif new_status == AppointmentStatus.COMPLETED:
                update["actual_end"] = now
                if current.actual_start is None:
                    update["actual_start"] = now
            if notes is not None:
                update["notes"] = notes
            appointment = current.model_copy(update=update)
            tx.update_appointment(appointment)

            metadata = {
                "appointment_id": str(appointment.id),
                "ticket_id": str(ticket.id),
                "vendor_id": str(appointment.vendor_id),
                "previous_status": current.status.value,
                "new_status": new_status.value,
            }
            self.audit.log_activity(
                tx,
                type=ActivityType.APPOINTMENT_UPDATED,
                action=f'Appointment for "{ticket.title}" marked {new_status.value}',
                metadata=metadata,
            )

            if acting_vendor:
                recipient = landlord_or_requester(self.authority, ticket)
            else:
                vendor = tx.get_vendor(appointment.vendor_id)
                recipient = vendor.user_id if vendor else ticket.assigned_to_id
            self.notifier.notify(
                tx,
                user_id=recipient,
                type=NotificationType.MAINTENANCE_UPDATED,
                title="Appointment Status Updated",
                message=f'Appointment for "{ticket.title}" is now {new_status.value}',
                action_url=self.notifier.schedule_url(),
                metadata=metadata,
            )

            if new_status == AppointmentStatus.COMPLETED:
                completed_ticket = self.tickets.complete_from_appointment(tx, ticket, appointment)

        logger.info(
            f"Appointment {appointment_id} moved {current.status.value} -> {new_status.value}"
        )
        self.event_bus.publish(AppointmentUpdated.create(appointment, current.status.value))
        if completed_ticket is not None:
            self.event_bus.publish(TicketCompleted.create(completed_ticket))
        return appointment

    def reschedule(
        self,
        appointment_id: UUID,
        start: datetime,
        end: datetime,
        notes: str | None = None
    ) -> Appointment:
        """
        Move an appointment that has not started to a new window.

        Runs the same conflict check as booking, under the vendor's schedule
        lock, ignoring the appointment being moved. The status is kept and
        the ticket's scheduled_date follows the new start.

        Args:
            appointment_id: Appointment UUID
            start: New start (timezone-aware)
            end: New end (timezone-aware, after start)
            notes: Optional notes replacing the current ones

        Returns:
            Updated appointment

        Raises:
            NotFoundError, UnauthorizedError
            WrongStateError: Appointment is no longer SCHEDULED or CONFIRMED
            InvalidIntervalError: start >= end or naive bounds
            ConflictError: Vendor has another overlapping active appointment
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            current = tx.get_appointment(appointment_id)
            if current is None:
                raise NotFoundError(f"Appointment {appointment_id} not found")

            ticket = load_ticket(tx, current.ticket_id)
            current = tx.get_appointment(appointment_id, for_update=True)

            acting_vendor = is_vendor_for(actor, current.vendor_id)
            if not (acting_vendor or has_property_authority(self.authority, actor, ticket.property_id)):
                raise UnauthorizedError(f"Not authorized to reschedule appointment {appointment_id}")

            if current.status not in _RESCHEDULABLE_STATUSES:
                raise WrongStateError(
                    f"Appointment {appointment_id} cannot be rescheduled - status is {current.status.value}"
                )

            validate_interval(start, end)
            start, end = to_utc(start), to_utc(end)

            tx.lock_vendor_schedule(current.vendor_id)

            others = [
                a for a in tx.list_appointments(
                    vendor_id=current.vendor_id,
                    statuses=BLOCKING_STATUSES,
                    overlapping=(start, end),
                )
                if a.id != current.id
            ]
            if find_conflicts(start, end, others):
                raise ConflictError("Vendor has a conflicting appointment at this time")

            now = now_utc()
            update = {"scheduled_start": start, "scheduled_end": end, "updated_at": now}
            if notes is not None:
                update["notes"] = notes
            appointment = current.model_copy(update=update)
            tx.update_appointment(appointment)

            if ticket.status == TicketStatus.SCHEDULED:
                tx.update_ticket(ticket.model_copy(update={"scheduled_date": start, "updated_at": now}))

            metadata = {
                "appointment_id": str(appointment.id),
                "ticket_id": str(ticket.id),
                "vendor_id": str(appointment.vendor_id),
                "previous_start": current.scheduled_start.isoformat(),
                "previous_end": current.scheduled_end.isoformat(),
                "scheduled_start": start.isoformat(),
                "scheduled_end": end.isoformat(),
            }
            self.audit.log_activity(
                tx,
                type=ActivityType.APPOINTMENT_UPDATED,
                action=f'Rescheduled appointment for "{ticket.title}"',
                metadata=metadata,
            )

            if acting_vendor:
                recipient = landlord_or_requester(self.authority, ticket)
            else:
                vendor = tx.get_vendor(appointment.vendor_id)
                recipient = vendor.user_id if vendor else ticket.assigned_to_id
            slot = format_slot(start, self.config.availability_timezone)
            self.notifier.notify(
                tx,
                user_id=recipient,
                type=NotificationType.MAINTENANCE_SCHEDULED,
                title="Appointment Rescheduled",
                message=f'Appointment for "{ticket.title}" moved to {slot}',
                action_url=self.notifier.schedule_url(),
                metadata=metadata,
            )

        logger.info(f"Appointment {appointment_id} rescheduled to {start.isoformat()}")
        self.event_bus.publish(
            AppointmentRescheduled.create(appointment, current.scheduled_start, current.scheduled_end)
        )
        return appointment

    def get_by_id(self, appointment_id: UUID) -> Appointment:
        """Appointment visible to its vendor and the property side."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            appointment = tx.get_appointment(appointment_id)
            if appointment is None:
                raise NotFoundError(f"Appointment {appointment_id} not found")
            ticket = load_ticket(tx, appointment.ticket_id, for_update=False)

        if not (is_vendor_for(actor, appointment.vendor_id) or can_view_ticket(self.authority, actor, ticket)):
            raise UnauthorizedError(f"Not authorized to view appointment {appointment_id}")
        return appointment

    def list_for_ticket(self, ticket_id: UUID) -> list[Appointment]:
        """All appointments of a ticket, earliest first."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id, for_update=False)
            if not can_view_ticket(self.authority, actor, ticket):
                raise UnauthorizedError(f"Not authorized to view ticket {ticket_id}")
            return tx.list_appointments(ticket_id=ticket_id)

    def list_for_vendor(
        self,
        vendor_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: list[AppointmentStatus] | None = None
    ) -> list[Appointment]:
        """
        A vendor's calendar, earliest first.

        With start and end, only appointments intersecting [start, end) are
        returned. Vendor themself or admin.
        """
        actor = get_current_actor()
        if actor.role != Role.ADMIN and not is_vendor_for(actor, vendor_id):
            raise UnauthorizedError(f"Not authorized to view schedule of vendor {vendor_id}")

        overlapping = None
        if start is not None and end is not None:
            validate_interval(start, end)
            overlapping = (to_utc(start), to_utc(end))

        with self.store.transaction() as tx:
            return tx.list_appointments(vendor_id=vendor_id, statuses=statuses, overlapping=overlapping)

    def get_vendor_availability(
        self,
        vendor_id: UUID,
        day: date,
        tz_name: str | None = None
    ) -> VendorAvailability:
        """
        Read-only view of a vendor's commitments on one calendar day.

        Args:
            vendor_id: Vendor UUID
            day: Calendar day
            tz_name: Zone defining the day (defaults to configuration)

        Raises:
            NotFoundError: Vendor unknown
        """
        start, end = day_bounds(day, tz_name or self.config.availability_timezone)

        with self.store.transaction() as tx:
            if tx.get_vendor(vendor_id) is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")

            appointments = tx.list_appointments(
                vendor_id=vendor_id,
                statuses=BLOCKING_STATUSES,
                overlapping=(start, end),
            )
            active_ticket_count = tx.count_tickets(vendor_id=vendor_id, statuses=ACTIVE_WORK_STATUSES)

        return VendorAvailability(
            vendor_id=vendor_id,
            day=day,
            appointments=appointments,
            active_ticket_count=active_ticket_count,
            is_available=not appointments,
        )

    def list_available_vendors(
        self,
        day: date,
        category: str | None = None,
        tz_name: str | None = None
    ) -> list[AvailableVendor]:
        """
        Active vendors, optionally of one category, with their blocking
        appointments on the given day. Free vendors come first, then by name.

        Landlords and admins only; this is the view used to pick a vendor.
        """
        actor = get_current_actor()
        if actor.role not in (Role.LANDLORD, Role.ADMIN):
            raise UnauthorizedError("Only landlords and admins can browse vendor availability")

        start, end = day_bounds(day, tz_name or self.config.availability_timezone)

        with self.store.transaction() as tx:
            results = []
            for vendor in tx.list_vendors(category=category):
                appointments = tx.list_appointments(
                    vendor_id=vendor.id,
                    statuses=BLOCKING_STATUSES,
                    overlapping=(start, end),
                )
                results.append(AvailableVendor(
                    vendor=vendor,
                    day=day,
                    appointments=appointments,
                    is_available=not appointments,
                ))

        # Stable sort keeps list_vendors' name order within each group
        results.sort(key=lambda entry: not entry.is_available)
        return results
