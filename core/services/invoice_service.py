"""
Invoice service for vendor billing.

Invoices are only ever created for completed tickets. Totals are always
computed here from the line items; figures supplied by the client are
discarded. A ticket carries at most one invoice that is not REJECTED or
CANCELLED.
"""

import logging
from uuid import UUID, uuid4

from core.audit import AuditLogger
from core.authority import PropertyAuthority, Role, has_property_authority, is_vendor_for
from core.config import MaintenanceConfig
from core.errors import (
    InvalidItemsError, NotFoundError, TicketNotCompletedError, UnauthorizedError,
    ValidationFailedError, WrongStateError,
)
from core.event_bus import EventBus
from core.events import InvoiceApproved, InvoicePaid, InvoiceRejected, InvoiceSubmitted
from core.models import (
    OPEN_INVOICE_STATUSES, ActivityType, Invoice, InvoiceItem, InvoiceStatistics,
    InvoiceStatus, InvoiceSubmit, NotificationType, Ticket, TicketStatus,
)
from core.notifications import Notifier
from core.services.ticket_service import can_view_ticket, guard_vendor_waiting, load_ticket
from core.stores import MaintenanceStore, StoreTransaction
from utils.timezone import now_utc
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)

_APPROVABLE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PENDING})
_FINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})


def _invoice_metadata(invoice: Invoice, previous: InvoiceStatus | None = None, **extra) -> dict:
    metadata = {
        "invoice_id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "ticket_id": str(invoice.ticket_id),
        "vendor_id": str(invoice.vendor_id),
        "total_cents": invoice.total_cents,
        "new_status": invoice.status.value,
    }
    if previous is not None:
        metadata["previous_status"] = previous.value
    metadata.update(extra)
    return metadata


class InvoiceService:
    """Service for invoice submission and settlement."""

    def __init__(
        self,
        store: MaintenanceStore,
        authority: PropertyAuthority,
        audit: AuditLogger,
        notifier: Notifier,
        event_bus: EventBus,
        config: MaintenanceConfig | None = None
    ):
        self.store = store
        self.authority = authority
        self.audit = audit
        self.notifier = notifier
        self.event_bus = event_bus
        self.config = config or MaintenanceConfig()

    def _generate_invoice_number(self, tx: StoreTransaction) -> str:
        """
        Allocate the next invoice number.

        Format: INV-YYYYMMDD-XXXX where XXXX is a per-day sequence number,
        zero-padded to four digits and allowed to grow past 9999.
        The store serializes allocation until the transaction ends.
        """
        today = now_utc().strftime("%Y%m%d")
        prefix = f"{self.config.invoice_number_prefix}-{today}-"

        sequence = tx.max_invoice_sequence(prefix) + 1
        return f"{prefix}{sequence:04d}"

    def _load_invoice(self, tx: StoreTransaction, invoice_id: UUID) -> Invoice:
        invoice = tx.get_invoice(invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def _vendor_user_id(self, tx: StoreTransaction, invoice: Invoice) -> UUID:
        vendor = tx.get_vendor(invoice.vendor_id)
        if vendor is None:
            raise NotFoundError(f"Vendor {invoice.vendor_id} not found")
        return vendor.user_id

    def _landlord_user_id(self, invoice: Invoice, ticket: Ticket | None = None) -> UUID:
        landlord_id = self.authority.landlord_user_id(invoice.property_id)
        if landlord_id is None and ticket is not None:
            return ticket.created_by_id
        if landlord_id is None:
            raise NotFoundError(f"No landlord on record for property {invoice.property_id}")
        return landlord_id

    def submit(self, data: InvoiceSubmit, as_draft: bool = False) -> Invoice:
        """
        Submit an invoice for a completed ticket.

        Args:
            data: Line items and adjustments (client totals ignored)
            as_draft: Keep the invoice private to the vendor as a DRAFT

        Returns:
            Invoice in PENDING (or DRAFT) status

        Raises:
            NotFoundError: Ticket missing or soft-deleted
            UnauthorizedError: Actor is not the ticket's vendor or admin
            TicketNotCompletedError: Ticket is not COMPLETED
            InvalidItemsError: No line items
            WrongStateError: Ticket already has an active invoice
            ValidationFailedError: Discount exceeds subtotal plus tax
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, data.ticket_id)
            guard_vendor_waiting(actor, ticket)

            if not (is_vendor_for(actor, ticket.vendor_id) or actor.role == Role.ADMIN):
                raise UnauthorizedError(f"Only the ticket's vendor can invoice ticket {ticket.id}")

            if ticket.status != TicketStatus.COMPLETED:
                raise TicketNotCompletedError(
                    f"Ticket {ticket.id} is {ticket.status.value}; only completed tickets can be invoiced"
                )

            if not data.items:
                raise InvalidItemsError("Invoice must have at least one line item")

            if tx.list_invoices(ticket_id=ticket.id, statuses=OPEN_INVOICE_STATUSES):
                raise WrongStateError(f"Ticket {ticket.id} already has an invoice")

            items = [InvoiceItem.from_input(item) for item in data.items]
            subtotal_cents = sum(item.amount_cents for item in items)
            total_cents = subtotal_cents + data.tax_cents - data.discount_cents
            if total_cents < 0:
                raise ValidationFailedError("Invoice total cannot be negative")

            if data.total_cents is not None and data.total_cents != total_cents:
                logger.warning(
                    f"Discarding client total {data.total_cents} for ticket {ticket.id}; "
                    f"computed {total_cents}"
                )

            now = now_utc()
            status = InvoiceStatus.DRAFT if as_draft else InvoiceStatus.PENDING
            invoice = Invoice(
                id=uuid4(),
                invoice_number=self._generate_invoice_number(tx),
                ticket_id=ticket.id,
                vendor_id=ticket.vendor_id,
                property_id=ticket.property_id,
                status=status,
                items=items,
                subtotal_cents=subtotal_cents,
                tax_cents=data.tax_cents,
                discount_cents=data.discount_cents,
                total_cents=total_cents,
                notes=data.notes,
                due_date=data.due_date,
                submitted_at=None if as_draft else now,
                created_at=now,
                updated_at=now,
            )
            tx.insert_invoice(invoice)

            metadata = _invoice_metadata(
                invoice,
                subtotal_cents=subtotal_cents,
                tax_cents=data.tax_cents,
                discount_cents=data.discount_cents,
            )
            self.audit.log_activity(
                tx,
                type=ActivityType.INVOICE_SUBMITTED,
                action=(
                    f"Drafted invoice {invoice.invoice_number}" if as_draft
                    else f"Submitted invoice {invoice.invoice_number}"
                ),
                metadata=metadata,
            )

            # Drafts stay private to the vendor
            if not as_draft:
                self._notify_submitted(tx, invoice, ticket)

        logger.info(
            f"Invoice {invoice.invoice_number} ({status.value}) for ticket {ticket.id}: "
            f"{invoice.total_cents} cents"
        )
        if not as_draft:
            self.event_bus.publish(InvoiceSubmitted.create(invoice))
        return invoice

    def _notify_submitted(self, tx: StoreTransaction, invoice: Invoice, ticket: Ticket) -> None:
        self.notifier.notify(
            tx,
            user_id=self._landlord_user_id(invoice, ticket),
            type=NotificationType.INVOICE_UPDATED,
            title="New Invoice Submitted",
            message=f"Invoice {invoice.invoice_number} for ${invoice.total_dollars:.2f} needs review",
            action_url=self.notifier.invoice_url(invoice.id),
            metadata=_invoice_metadata(invoice),
        )

    def submit_draft(self, invoice_id: UUID) -> Invoice:
        """Send a DRAFT invoice for review (DRAFT -> PENDING)."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            current = self._load_invoice(tx, invoice_id)
            if not (is_vendor_for(actor, current.vendor_id) or actor.role == Role.ADMIN):
                raise UnauthorizedError(f"Not authorized to submit invoice {invoice_id}")

            if current.status != InvoiceStatus.DRAFT:
                raise WrongStateError(
                    f"Invoice {invoice_id} is {current.status.value}; only drafts can be submitted"
                )

            now = now_utc()
            invoice = current.model_copy(update={
                "status": InvoiceStatus.PENDING,
                "submitted_at": now,
                "updated_at": now,
            })
            tx.update_invoice(invoice)

            self.audit.log_activity(
                tx,
                type=ActivityType.INVOICE_SUBMITTED,
                action=f"Submitted invoice {invoice.invoice_number}",
                metadata=_invoice_metadata(invoice, current.status),
            )
            self._notify_submitted(tx, invoice, tx.get_ticket(invoice.ticket_id))

        logger.info(f"Invoice {invoice.invoice_number} submitted for review")
        self.event_bus.publish(InvoiceSubmitted.create(invoice))
        return invoice

    def decide(self, invoice_id: UUID, approve: bool, reason: str | None = None) -> Invoice:
        """
        Approve or reject an invoice.

        Args:
            invoice_id: Invoice UUID
            approve: True to approve (from DRAFT or PENDING), False to reject (PENDING only)
            reason: Required when rejecting

        Returns:
            Invoice in APPROVED or REJECTED status

        Raises:
            NotFoundError, UnauthorizedError, WrongStateError, ValidationFailedError
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            current = self._load_invoice(tx, invoice_id)
            if not has_property_authority(self.authority, actor, current.property_id):
                raise UnauthorizedError(f"Not authorized to review invoice {invoice_id}")

            now = now_utc()
            if approve:
                if current.status not in _APPROVABLE_STATUSES:
                    raise WrongStateError(
                        f"Invoice {invoice_id} cannot be approved - status is {current.status.value}"
                    )
                invoice = current.model_copy(update={
                    "status": InvoiceStatus.APPROVED,
                    "approved_at": now,
                    "updated_at": now,
                })
                title = "Invoice Approved"
                message = f"Invoice {current.invoice_number} has been approved"
            else:
                if current.status != InvoiceStatus.PENDING:
                    raise WrongStateError(
                        f"Invoice {invoice_id} cannot be rejected - status is {current.status.value}"
                    )
                if not reason or not reason.strip():
                    raise ValidationFailedError("A reason is required to reject an invoice")
                invoice = current.model_copy(update={
                    "status": InvoiceStatus.REJECTED,
                    "rejection_reason": reason.strip(),
                    "rejected_at": now,
                    "updated_at": now,
                })
                title = "Invoice Rejected"
                message = f"Invoice {current.invoice_number} was rejected: {reason.strip()}"

            tx.update_invoice(invoice)

            metadata = _invoice_metadata(invoice, current.status, reason=invoice.rejection_reason)
            self.audit.log_activity(
                tx,
                type=ActivityType.INVOICE_UPDATED,
                action=f"{title}: {invoice.invoice_number}",
                metadata=metadata,
            )
            self.notifier.notify(
                tx,
                user_id=self._vendor_user_id(tx, invoice),
                type=NotificationType.INVOICE_UPDATED,
                title=title,
                message=message,
                action_url=self.notifier.invoice_url(invoice.id),
                metadata=metadata,
            )

        logger.info(f"Invoice {invoice.invoice_number} {invoice.status.value}")
        event = InvoiceApproved if approve else InvoiceRejected
        self.event_bus.publish(event.create(invoice))
        return invoice

    def mark_paid(self, invoice_id: UUID, payment_reference: str | None = None) -> Invoice:
        """
        Record that payment was captured (APPROVED -> PAID).

        Called on behalf of the payment collaborator by a landlord or admin.
        """
        actor = get_current_actor()

        with self.store.transaction() as tx:
            current = self._load_invoice(tx, invoice_id)
            if not has_property_authority(self.authority, actor, current.property_id):
                raise UnauthorizedError(f"Not authorized to settle invoice {invoice_id}")

            if current.status != InvoiceStatus.APPROVED:
                raise WrongStateError(
                    f"Invoice {invoice_id} cannot be paid - status is {current.status.value}"
                )

            now = now_utc()
            invoice = current.model_copy(update={
                "status": InvoiceStatus.PAID,
                "payment_reference": payment_reference,
                "paid_at": now,
                "updated_at": now,
            })
            tx.update_invoice(invoice)

            metadata = _invoice_metadata(invoice, current.status, payment_reference=payment_reference)
            self.audit.log_activity(
                tx,
                type=ActivityType.INVOICE_UPDATED,
                action=f"Invoice {invoice.invoice_number} paid",
                metadata=metadata,
            )
            self.notifier.notify(
                tx,
                user_id=self._vendor_user_id(tx, invoice),
                type=NotificationType.INVOICE_UPDATED,
                title="Invoice Paid",
                message=f"Payment of ${invoice.total_dollars:.2f} received for invoice {invoice.invoice_number}",
                action_url=self.notifier.invoice_url(invoice.id),
                metadata=metadata,
            )

        logger.info(f"Invoice {invoice.invoice_number} paid")
        self.event_bus.publish(InvoicePaid.create(invoice))
        return invoice

    def cancel(self, invoice_id: UUID) -> Invoice:
        """Withdraw an invoice that has not been paid."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            current = self._load_invoice(tx, invoice_id)

            acting_vendor = is_vendor_for(actor, current.vendor_id)
            if not (acting_vendor or has_property_authority(self.authority, actor, current.property_id)):
                raise UnauthorizedError(f"Not authorized to cancel invoice {invoice_id}")

            if current.status in _FINAL_STATUSES:
                raise WrongStateError(
                    f"Invoice {invoice_id} cannot be cancelled - status is {current.status.value}"
                )

            now = now_utc()
            invoice = current.model_copy(update={
                "status": InvoiceStatus.CANCELLED,
                "cancelled_at": now,
                "updated_at": now,
            })
            tx.update_invoice(invoice)

            metadata = _invoice_metadata(invoice, current.status)
            self.audit.log_activity(
                tx,
                type=ActivityType.INVOICE_UPDATED,
                action=f"Invoice {invoice.invoice_number} cancelled",
                metadata=metadata,
            )
            recipient = (
                self._landlord_user_id(invoice, tx.get_ticket(invoice.ticket_id)) if acting_vendor
                else self._vendor_user_id(tx, invoice)
            )
            self.notifier.notify(
                tx,
                user_id=recipient,
                type=NotificationType.INVOICE_UPDATED,
                title="Invoice Cancelled",
                message=f"Invoice {invoice.invoice_number} was cancelled",
                action_url=self.notifier.invoice_url(invoice.id),
                metadata=metadata,
            )

        logger.info(f"Invoice {invoice.invoice_number} cancelled from {current.status.value}")
        return invoice

    def get_by_id(self, invoice_id: UUID) -> Invoice:
        """Invoice visible to its vendor and the property side."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            invoice = tx.get_invoice(invoice_id)

        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if not (
            is_vendor_for(actor, invoice.vendor_id)
            or has_property_authority(self.authority, actor, invoice.property_id)
        ):
            raise UnauthorizedError(f"Not authorized to view invoice {invoice_id}")
        return invoice

    def list_for_ticket(self, ticket_id: UUID) -> list[Invoice]:
        """All invoices of a ticket, newest first."""
        actor = get_current_actor()

        with self.store.transaction() as tx:
            ticket = load_ticket(tx, ticket_id, for_update=False)
            if not can_view_ticket(self.authority, actor, ticket):
                raise UnauthorizedError(f"Not authorized to view ticket {ticket_id}")
            return tx.list_invoices(ticket_id=ticket_id)

    def list_invoiceable_tickets(self, vendor_id: UUID | None = None) -> list[Ticket]:
        """
        Completed tickets of a vendor that have no active invoice yet.

        Vendors always see their own; admins must name the vendor.
        """
        actor = get_current_actor()
        if actor.role == Role.VENDOR:
            vendor_id = actor.vendor_id
        elif actor.role != Role.ADMIN:
            raise UnauthorizedError("Only vendors can list invoiceable tickets")
        if vendor_id is None:
            raise ValidationFailedError("vendor_id is required")

        with self.store.transaction() as tx:
            completed = tx.list_tickets(
                vendor_id=vendor_id,
                statuses=[TicketStatus.COMPLETED],
                limit=self.config.default_page_size,
            )
            invoiced = {
                invoice.ticket_id
                for invoice in tx.list_invoices(vendor_id=vendor_id, statuses=OPEN_INVOICE_STATUSES)
            }

        return [ticket for ticket in completed if ticket.id not in invoiced]

    def statistics(self, vendor_id: UUID | None = None, property_id: UUID | None = None) -> InvoiceStatistics:
        """
        Counts per status and amounts.

        Vendors see their own invoices; landlords must name a property they
        manage; admins may query everything.
        """
        actor = get_current_actor()

        if actor.role == Role.VENDOR:
            vendor_id, property_id = actor.vendor_id, None
        elif property_id is not None:
            if not has_property_authority(self.authority, actor, property_id):
                raise UnauthorizedError(f"No authority over property {property_id}")
        elif actor.role != Role.ADMIN:
            raise ValidationFailedError("property_id is required")

        with self.store.transaction() as tx:
            invoices = tx.list_invoices(vendor_id=vendor_id, property_id=property_id)

        def by_status(*statuses: InvoiceStatus) -> list[Invoice]:
            return [i for i in invoices if i.status in statuses]

        return InvoiceStatistics(
            total=len(invoices),
            pending=len(by_status(InvoiceStatus.PENDING)),
            approved=len(by_status(InvoiceStatus.APPROVED)),
            paid=len(by_status(InvoiceStatus.PAID)),
            rejected=len(by_status(InvoiceStatus.REJECTED)),
            total_amount_cents=sum(i.total_cents for i in by_status(*OPEN_INVOICE_STATUSES)),
            paid_amount_cents=sum(i.total_cents for i in by_status(InvoiceStatus.PAID)),
            pending_amount_cents=sum(
                i.total_cents for i in by_status(InvoiceStatus.PENDING, InvoiceStatus.APPROVED)
            ),
        )
