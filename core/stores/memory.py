"""
In-process MaintenanceStore.

Thread-safe, transaction-per-block store for embedding and for the test
suite. Writes are staged on the transaction and applied to the shared
tables only on a clean exit; an exception discards them. Row locks are
per-key mutexes held until the transaction ends, which gives the same
check-then-insert serialization as SELECT ... FOR UPDATE.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Hashable, Iterable, Iterator
from uuid import UUID

from pydantic import BaseModel

from core.models import (
    ActivityEntry, Appointment, AppointmentStatus, Invoice, InvoiceStatus,
    Notification, Ticket, TicketComment, TicketStatus, Vendor,
)
from core.scheduling import intervals_overlap

logger = logging.getLogger(__name__)

_ENTITY_TABLES = ("tickets", "vendors", "appointments", "invoices", "ticket_comments")


class InMemoryStore:
    """
    MaintenanceStore backed by dictionaries.

    Usage:
        store = InMemoryStore()
        with store.transaction() as tx:
            ticket = tx.get_ticket(ticket_id, for_update=True)
            tx.update_ticket(ticket.model_copy(update={"notes": "gate code 1234"}))
    """

    def __init__(self):
        self._tables: dict[str, dict[UUID, BaseModel]] = {name: {} for name in _ENTITY_TABLES}
        self._activity: list[ActivityEntry] = []
        self._notifications: list[Notification] = []
        self._data_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._row_locks: dict[Hashable, threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryTransaction"]:
        """Commit staged writes on clean exit, discard them on exception."""
        tx = InMemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            tx._release_locks()
            logger.debug("In-memory transaction rolled back")
            raise
        try:
            self._apply(tx)
        finally:
            tx._release_locks()

    def _row_lock(self, key: Hashable) -> threading.Lock:
        with self._locks_guard:
            return self._row_locks[key]

    def _apply(self, tx: "InMemoryTransaction") -> None:
        with self._data_lock:
            for table, rows in tx._pending.items():
                self._tables[table].update(rows)
            self._activity.extend(tx._pending_activity)
            self._notifications.extend(tx._pending_notifications)

    def _snapshot(self, table: str) -> dict[UUID, BaseModel]:
        with self._data_lock:
            return dict(self._tables[table])


class InMemoryTransaction:
    """StoreTransaction over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._pending: dict[str, dict[UUID, BaseModel]] = {name: {} for name in _ENTITY_TABLES}
        self._pending_activity: list[ActivityEntry] = []
        self._pending_notifications: list[Notification] = []
        self._held: list[threading.Lock] = []
        self._held_keys: set[Hashable] = set()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock(self, key: Hashable) -> None:
        if key in self._held_keys:
            return
        lock = self._store._row_lock(key)
        lock.acquire()
        self._held.append(lock)
        self._held_keys.add(key)

    def _release_locks(self) -> None:
        for lock in reversed(self._held):
            lock.release()
        self._held.clear()
        self._held_keys.clear()

    def _get(self, table: str, row_id: UUID) -> BaseModel | None:
        row = self._pending[table].get(row_id)
        if row is None:
            row = self._store._snapshot(table).get(row_id)
        return row.model_copy(deep=True) if row is not None else None

    def _put(self, table: str, row: BaseModel) -> None:
        self._pending[table][row.id] = row.model_copy(deep=True)

    def _rows(self, table: str) -> list[BaseModel]:
        merged = self._store._snapshot(table)
        merged.update(self._pending[table])
        return [row.model_copy(deep=True) for row in merged.values()]

    # -------------------------------------------------------------------------
    # Tickets
    # -------------------------------------------------------------------------

    def get_ticket(self, ticket_id: UUID, for_update: bool = False) -> Ticket | None:
        if for_update:
            self._lock(("ticket", ticket_id))
        return self._get("tickets", ticket_id)

    def insert_ticket(self, ticket: Ticket) -> None:
        self._put("tickets", ticket)

    def update_ticket(self, ticket: Ticket) -> None:
        self._put("tickets", ticket)

    def _filter_tickets(self, vendor_id, property_id, statuses) -> list[Ticket]:
        wanted = set(statuses) if statuses is not None else None
        return [
            t for t in self._rows("tickets")
            if t.deleted_at is None
            and (vendor_id is None or t.vendor_id == vendor_id)
            and (property_id is None or t.property_id == property_id)
            and (wanted is None or t.status in wanted)
        ]

    def list_tickets(
        self,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[TicketStatus] | None = None,
        limit: int = 100,
    ) -> list[Ticket]:
        tickets = self._filter_tickets(vendor_id, property_id, statuses)
        tickets.sort(key=lambda t: t.created_at, reverse=True)
        return tickets[:limit]

    def count_tickets(
        self,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[TicketStatus] | None = None,
    ) -> int:
        return len(self._filter_tickets(vendor_id, property_id, statuses))

    # -------------------------------------------------------------------------
    # Vendors
    # -------------------------------------------------------------------------

    def get_vendor(self, vendor_id: UUID) -> Vendor | None:
        return self._get("vendors", vendor_id)

    def insert_vendor(self, vendor: Vendor) -> None:
        self._put("vendors", vendor)

    def update_vendor(self, vendor: Vendor) -> None:
        self._put("vendors", vendor)

    def list_vendors(self, category: str | None = None, active_only: bool = True) -> list[Vendor]:
        vendors = [
            v for v in self._rows("vendors")
            if (category is None or v.category == category)
            and (not active_only or v.is_active)
        ]
        vendors.sort(key=lambda v: v.business_name)
        return vendors

    def lock_vendor_schedule(self, vendor_id: UUID) -> None:
        self._lock(("vendor_schedule", vendor_id))

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    def get_appointment(self, appointment_id: UUID, for_update: bool = False) -> Appointment | None:
        if for_update:
            self._lock(("appointment", appointment_id))
        return self._get("appointments", appointment_id)

    def insert_appointment(self, appointment: Appointment) -> None:
        self._put("appointments", appointment)

    def update_appointment(self, appointment: Appointment) -> None:
        self._put("appointments", appointment)

    def list_appointments(
        self,
        vendor_id: UUID | None = None,
        ticket_id: UUID | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        overlapping: tuple[datetime, datetime] | None = None,
    ) -> list[Appointment]:
        wanted = set(statuses) if statuses is not None else None
        appointments = [
            a for a in self._rows("appointments")
            if (vendor_id is None or a.vendor_id == vendor_id)
            and (ticket_id is None or a.ticket_id == ticket_id)
            and (wanted is None or a.status in wanted)
            and (
                overlapping is None
                or intervals_overlap(overlapping[0], overlapping[1], a.scheduled_start, a.scheduled_end)
            )
        ]
        appointments.sort(key=lambda a: a.scheduled_start)
        return appointments

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Invoice | None:
        if for_update:
            self._lock(("invoice", invoice_id))
        return self._get("invoices", invoice_id)

    def insert_invoice(self, invoice: Invoice) -> None:
        self._put("invoices", invoice)

    def update_invoice(self, invoice: Invoice) -> None:
        self._put("invoices", invoice)

    def list_invoices(
        self,
        ticket_id: UUID | None = None,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[InvoiceStatus] | None = None,
    ) -> list[Invoice]:
        wanted = set(statuses) if statuses is not None else None
        invoices = [
            i for i in self._rows("invoices")
            if (ticket_id is None or i.ticket_id == ticket_id)
            and (vendor_id is None or i.vendor_id == vendor_id)
            and (property_id is None or i.property_id == property_id)
            and (wanted is None or i.status in wanted)
        ]
        invoices.sort(key=lambda i: i.created_at, reverse=True)
        return invoices

    def max_invoice_sequence(self, prefix: str) -> int:
        self._lock(("invoice_number",))
        sequences = [
            int(suffix)
            for suffix in (
                i.invoice_number[len(prefix):] for i in self._rows("invoices")
                if i.invoice_number.startswith(prefix)
            )
            if suffix.isdigit()
        ]
        return max(sequences, default=0)

    # -------------------------------------------------------------------------
    # Ticket timeline
    # -------------------------------------------------------------------------

    def insert_ticket_comment(self, comment: TicketComment) -> None:
        self._put("ticket_comments", comment)

    def list_ticket_comments(self, ticket_id: UUID, include_internal: bool = True) -> list[TicketComment]:
        comments = [
            c for c in self._rows("ticket_comments")
            if c.ticket_id == ticket_id and (include_internal or not c.is_internal)
        ]
        comments.sort(key=lambda c: c.created_at)
        return comments

    # -------------------------------------------------------------------------
    # Activity log and notifications
    # -------------------------------------------------------------------------

    def insert_activity(self, entry: ActivityEntry) -> None:
        self._pending_activity.append(entry)

    def insert_notification(self, notification: Notification) -> None:
        self._pending_notifications.append(notification)

    def list_activity(self, user_id: UUID | None = None, limit: int = 100) -> list[ActivityEntry]:
        with self._store._data_lock:
            entries = list(self._store._activity)
        entries.extend(self._pending_activity)
        entries = [e for e in entries if user_id is None or e.user_id == user_id]
        return list(reversed(entries))[:limit]

    def list_notifications(self, user_id: UUID | None = None, limit: int = 100) -> list[Notification]:
        with self._store._data_lock:
            notifications = list(self._store._notifications)
        notifications.extend(self._pending_notifications)
        notifications = [n for n in notifications if user_id is None or n.user_id == user_id]
        return list(reversed(notifications))[:limit]
