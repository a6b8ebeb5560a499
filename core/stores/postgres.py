"""
PostgreSQL MaintenanceStore.

Maps the domain models onto the tables in db/schema.sql. Guard reads use
SELECT ... FOR UPDATE so that concurrent operations on the same ticket (or
the same vendor's calendar) serialize on row locks for the life of the
transaction. psycopg2 errors surface as StoreError after rollback.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator
from uuid import UUID

import psycopg2
from psycopg2.extras import Json
from pydantic import BaseModel

from clients.postgres_client import PostgresClient, PostgresTransaction
from core.authority import Actor, Role
from core.models import (
    ActivityEntry, Appointment, AppointmentStatus, Invoice, InvoiceStatus,
    Notification, Ticket, TicketComment, TicketStatus, Vendor,
)
from core.stores import StoreError

logger = logging.getLogger(__name__)


def _to_row(model: BaseModel) -> dict[str, Any]:
    """Model -> column values adapted for psycopg2."""
    row = {}
    json_safe = model.model_dump(mode="json")
    for key, value in model.model_dump().items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, (dict, list)):
            value = Json(json_safe[key])
        row[key] = value
    return row


def _values(statuses: Iterable[Enum] | None) -> list[str] | None:
    return [s.value for s in statuses] if statuses is not None else None


class PostgresStore:
    """MaintenanceStore over a PostgresClient connection pool."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @contextmanager
    def transaction(self) -> Iterator["PostgresStoreTransaction"]:
        try:
            with self.postgres.transaction() as tx:
                yield PostgresStoreTransaction(tx)
        except psycopg2.Error as e:
            logger.error(f"Store transaction failed and was rolled back: {e}")
            raise StoreError(str(e)) from e


class PostgresStoreTransaction:
    """StoreTransaction over one PostgresTransaction."""

    def __init__(self, tx: PostgresTransaction):
        self.tx = tx

    # -------------------------------------------------------------------------
    # Generic row helpers
    # -------------------------------------------------------------------------

    def _insert(self, table: str, model: BaseModel) -> None:
        row = _to_row(model)
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        self.tx.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(row.values())
        )

    def _update(self, table: str, model: BaseModel) -> None:
        row = _to_row(model)
        row_id = row.pop("id")
        set_parts = ", ".join(f"{column} = %s" for column in row)
        self.tx.execute(
            f"UPDATE {table} SET {set_parts} WHERE id = %s",
            (*row.values(), row_id)
        )

    def _get(self, table: str, row_id: UUID, for_update: bool) -> dict[str, Any] | None:
        lock = " FOR UPDATE" if for_update else ""
        return self.tx.execute_single(f"SELECT * FROM {table} WHERE id = %s{lock}", (row_id,))

    @staticmethod
    def _where(filters: list[tuple[str, Any]], *fixed: str) -> tuple[str, list[Any]]:
        clauses, params = list(fixed), []
        for clause, value in filters:
            if value is None:
                continue
            clauses.append(clause)
            params.append(value)
        return (" AND ".join(clauses) or "TRUE"), params

    # -------------------------------------------------------------------------
    # Tickets
    # -------------------------------------------------------------------------

    def get_ticket(self, ticket_id: UUID, for_update: bool = False) -> Ticket | None:
        row = self._get("tickets", ticket_id, for_update)
        return Ticket.model_validate(row) if row else None

    def insert_ticket(self, ticket: Ticket) -> None:
        self._insert("tickets", ticket)

    def update_ticket(self, ticket: Ticket) -> None:
        self._update("tickets", ticket)

    def _ticket_filters(self, vendor_id, property_id, statuses):
        return self._where([
            ("vendor_id = %s", vendor_id),
            ("property_id = %s", property_id),
            ("status = ANY(%s)", _values(statuses)),
        ], "deleted_at IS NULL")

    def list_tickets(
        self,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[TicketStatus] | None = None,
        limit: int = 100,
    ) -> list[Ticket]:
        where, params = self._ticket_filters(vendor_id, property_id, statuses)
        rows = self.tx.execute(
            f"SELECT * FROM tickets WHERE {where} ORDER BY created_at DESC LIMIT %s",
            (*params, limit)
        )
        return [Ticket.model_validate(row) for row in rows]

    def count_tickets(
        self,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[TicketStatus] | None = None,
    ) -> int:
        where, params = self._ticket_filters(vendor_id, property_id, statuses)
        return self.tx.execute_scalar(f"SELECT COUNT(*) FROM tickets WHERE {where}", tuple(params)) or 0

    # -------------------------------------------------------------------------
    # Vendors
    # -------------------------------------------------------------------------

    def get_vendor(self, vendor_id: UUID) -> Vendor | None:
        row = self._get("vendors", vendor_id, for_update=False)
        return Vendor.model_validate(row) if row else None

    def insert_vendor(self, vendor: Vendor) -> None:
        self._insert("vendors", vendor)

    def update_vendor(self, vendor: Vendor) -> None:
        self._update("vendors", vendor)

    def list_vendors(self, category: str | None = None, active_only: bool = True) -> list[Vendor]:
        where, params = self._where([
            ("category = %s", category),
            ("is_active = %s", True if active_only else None),
        ])
        rows = self.tx.execute(f"SELECT * FROM vendors WHERE {where} ORDER BY business_name", tuple(params))
        return [Vendor.model_validate(row) for row in rows]

    def lock_vendor_schedule(self, vendor_id: UUID) -> None:
        # The vendor row is the mutex for its calendar
        self.tx.execute("SELECT id FROM vendors WHERE id = %s FOR UPDATE", (vendor_id,))

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    def get_appointment(self, appointment_id: UUID, for_update: bool = False) -> Appointment | None:
        row = self._get("appointments", appointment_id, for_update)
        return Appointment.model_validate(row) if row else None

    def insert_appointment(self, appointment: Appointment) -> None:
        self._insert("appointments", appointment)

    def update_appointment(self, appointment: Appointment) -> None:
        self._update("appointments", appointment)

    def list_appointments(
        self,
        vendor_id: UUID | None = None,
        ticket_id: UUID | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        overlapping: tuple[datetime, datetime] | None = None,
    ) -> list[Appointment]:
        start, end = overlapping if overlapping else (None, None)
        where, params = self._where([
            ("vendor_id = %s", vendor_id),
            ("ticket_id = %s", ticket_id),
            ("status = ANY(%s)", _values(statuses)),
            # Half-open overlap: existing.start < end AND start < existing.end
            ("scheduled_start < %s", end),
            ("scheduled_end > %s", start),
        ])
        rows = self.tx.execute(
            f"SELECT * FROM appointments WHERE {where} ORDER BY scheduled_start ASC",
            tuple(params)
        )
        return [Appointment.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Invoice | None:
        row = self._get("invoices", invoice_id, for_update)
        return Invoice.model_validate(row) if row else None

    def insert_invoice(self, invoice: Invoice) -> None:
        self._insert("invoices", invoice)

    def update_invoice(self, invoice: Invoice) -> None:
        self._update("invoices", invoice)

    def list_invoices(
        self,
        ticket_id: UUID | None = None,
        vendor_id: UUID | None = None,
        property_id: UUID | None = None,
        statuses: Iterable[InvoiceStatus] | None = None,
    ) -> list[Invoice]:
        where, params = self._where([
            ("ticket_id = %s", ticket_id),
            ("vendor_id = %s", vendor_id),
            ("property_id = %s", property_id),
            ("status = ANY(%s)", _values(statuses)),
        ])
        rows = self.tx.execute(
            f"SELECT * FROM invoices WHERE {where} ORDER BY created_at DESC",
            tuple(params)
        )
        return [Invoice.model_validate(row) for row in rows]

    def max_invoice_sequence(self, prefix: str) -> int:
        # Serialize number allocation until commit
        self.tx.execute("SELECT pg_advisory_xact_lock(hashtext('invoice_number'))")
        # Numeric max: text ordering puts -9999 after -10000
        return self.tx.execute_scalar(
            """
            SELECT COALESCE(MAX(CAST(substr(invoice_number, %s) AS BIGINT)), 0)
            FROM invoices
            WHERE starts_with(invoice_number, %s)
              AND substr(invoice_number, %s) ~ '^[0-9]+$'
            """,
            (len(prefix) + 1, prefix, len(prefix) + 1)
        ) or 0

    # -------------------------------------------------------------------------
    # Ticket timeline
    # -------------------------------------------------------------------------

    def insert_ticket_comment(self, comment: TicketComment) -> None:
        self._insert("ticket_comments", comment)

    def list_ticket_comments(self, ticket_id: UUID, include_internal: bool = True) -> list[TicketComment]:
        where, params = self._where([
            ("ticket_id = %s", ticket_id),
            ("is_internal = %s", None if include_internal else False),
        ])
        rows = self.tx.execute(
            f"SELECT * FROM ticket_comments WHERE {where} ORDER BY created_at ASC",
            tuple(params)
        )
        return [TicketComment.model_validate(row) for row in rows]

    # -------------------------------------------------------------------------
    # Activity log and notifications
    # -------------------------------------------------------------------------

    def insert_activity(self, entry: ActivityEntry) -> None:
        self._insert("activity_log", entry)

    def insert_notification(self, notification: Notification) -> None:
        self._insert("notifications", notification)

    def list_activity(self, user_id: UUID | None = None, limit: int = 100) -> list[ActivityEntry]:
        where, params = self._where([("user_id = %s", user_id)])
        rows = self.tx.execute(
            f"SELECT * FROM activity_log WHERE {where} ORDER BY created_at DESC LIMIT %s",
            (*params, limit)
        )
        return [ActivityEntry.model_validate(row) for row in rows]

    def list_notifications(self, user_id: UUID | None = None, limit: int = 100) -> list[Notification]:
        where, params = self._where([("user_id = %s", user_id)])
        rows = self.tx.execute(
            f"SELECT * FROM notifications WHERE {where} ORDER BY created_at DESC LIMIT %s",
            (*params, limit)
        )
        return [Notification.model_validate(row) for row in rows]


class PostgresPropertyAuthority:
    """PropertyAuthority over the property_owners mirror table."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def register(self, property_id: UUID, landlord_user_id: UUID) -> None:
        self.postgres.execute(
            """
            INSERT INTO property_owners (property_id, landlord_user_id)
            VALUES (%s, %s)
            ON CONFLICT (property_id)
            DO UPDATE SET landlord_user_id = EXCLUDED.landlord_user_id, updated_at = now()
            """,
            (property_id, landlord_user_id)
        )

    def can_manage(self, actor: Actor, property_id: UUID) -> bool:
        if actor.role == Role.ADMIN:
            return True
        return actor.role == Role.LANDLORD and self.landlord_user_id(property_id) == actor.user_id

    def landlord_user_id(self, property_id: UUID) -> UUID | None:
        value = self.postgres.execute_scalar(
            "SELECT landlord_user_id FROM property_owners WHERE property_id = %s",
            (property_id,)
        )
        return UUID(str(value)) if value is not None else None
