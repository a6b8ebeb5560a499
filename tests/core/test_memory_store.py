"""Tests for InMemoryStore - staged writes, rollback and row locks."""

import threading
import time
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from core.models import (
    ActivityEntry, ActivityType, Appointment, AppointmentStatus, BLOCKING_STATUSES,
    Invoice, InvoiceStatus, Ticket, TicketComment, TicketPriority, TicketStatus, Vendor,
)
from core.stores.memory import InMemoryStore
from utils.timezone import now_utc

PROPERTY_ID = UUID("10000000-0000-0000-0000-000000000001")
SLOT_START = datetime(2030, 6, 3, 9, 0, tzinfo=timezone.utc)
SLOT_END = SLOT_START + timedelta(hours=2)


def _ticket(**overrides) -> Ticket:
    now = now_utc()
    data = dict(
        id=uuid4(), property_id=PROPERTY_ID, created_by_id=uuid4(),
        title="Broken heater", description="Heater does not turn on at all.",
        category="hvac", priority=TicketPriority.MEDIUM,
        status=TicketStatus.OPEN, created_at=now, updated_at=now,
    )
    data.update(overrides)
    return Ticket(**data)


def _vendor(**overrides) -> Vendor:
    now = now_utc()
    data = dict(
        id=uuid4(), user_id=uuid4(), business_name="Warm Air Co",
        category="hvac", created_at=now, updated_at=now,
    )
    data.update(overrides)
    return Vendor(**data)


def _appointment(vendor_id, start=SLOT_START, end=SLOT_END, status=AppointmentStatus.SCHEDULED) -> Appointment:
    now = now_utc()
    return Appointment(
        id=uuid4(), ticket_id=uuid4(), vendor_id=vendor_id,
        scheduled_start=start, scheduled_end=end, status=status,
        created_at=now, updated_at=now,
    )


class TestTransactions:
    """Commit and rollback semantics."""

    def test_committed_writes_are_visible(self):
        store = InMemoryStore()
        ticket = _ticket()

        with store.transaction() as tx:
            tx.insert_ticket(ticket)

        with store.transaction() as tx:
            assert tx.get_ticket(ticket.id) == ticket

    def test_exception_discards_staged_writes(self):
        """Nothing staged in an aborted transaction reaches the tables."""
        store = InMemoryStore()
        ticket = _ticket()

        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                tx.insert_ticket(ticket)
                tx.insert_activity(ActivityEntry(
                    id=uuid4(), user_id=uuid4(), type=ActivityType.TICKET_CREATED,
                    action="Created", created_at=now_utc(),
                ))
                raise RuntimeError("abort")

        with store.transaction() as tx:
            assert tx.get_ticket(ticket.id) is None
            assert tx.list_activity() == []

    def test_transaction_reads_its_own_writes(self):
        store = InMemoryStore()
        ticket = _ticket()

        with store.transaction() as tx:
            tx.insert_ticket(ticket)
            assert tx.get_ticket(ticket.id) is not None
            assert tx.count_tickets() == 1

    def test_returned_rows_are_copies(self):
        """Mutating a returned model never changes stored state."""
        store = InMemoryStore()
        ticket = _ticket()
        with store.transaction() as tx:
            tx.insert_ticket(ticket)

        with store.transaction() as tx:
            loaded = tx.get_ticket(ticket.id)
            loaded.title = "Changed"

        with store.transaction() as tx:
            assert tx.get_ticket(ticket.id).title == "Broken heater"

    def test_row_lock_blocks_second_transaction_until_commit(self):
        """for_update serializes two transactions on the same ticket."""
        store = InMemoryStore()
        ticket = _ticket()
        with store.transaction() as tx:
            tx.insert_ticket(ticket)

        order = []
        first_has_lock = threading.Event()

        def first():
            with store.transaction() as tx:
                tx.get_ticket(ticket.id, for_update=True)
                first_has_lock.set()
                time.sleep(0.1)
                order.append("first-commit")

        def second():
            first_has_lock.wait()
            with store.transaction() as tx:
                tx.get_ticket(ticket.id, for_update=True)
                order.append("second-locked")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert order == ["first-commit", "second-locked"]

    def test_lock_released_after_rollback(self):
        store = InMemoryStore()
        ticket = _ticket()
        with store.transaction() as tx:
            tx.insert_ticket(ticket)

        with pytest.raises(ValueError):
            with store.transaction() as tx:
                tx.get_ticket(ticket.id, for_update=True)
                raise ValueError("boom")

        acquired = threading.Event()

        def relock():
            with store.transaction() as tx:
                tx.get_ticket(ticket.id, for_update=True)
                acquired.set()

        t = threading.Thread(target=relock)
        t.start()
        t.join(timeout=2)
        assert acquired.is_set()

    def test_relocking_same_row_in_one_transaction_does_not_deadlock(self):
        store = InMemoryStore()
        vendor = _vendor()
        with store.transaction() as tx:
            tx.insert_vendor(vendor)

        with store.transaction() as tx:
            tx.lock_vendor_schedule(vendor.id)
            tx.lock_vendor_schedule(vendor.id)


class TestTicketQueries:
    """Ticket listing and counting."""

    def test_soft_deleted_tickets_are_excluded(self):
        store = InMemoryStore()
        live = _ticket()
        deleted = _ticket(deleted_at=now_utc())
        with store.transaction() as tx:
            tx.insert_ticket(live)
            tx.insert_ticket(deleted)

        with store.transaction() as tx:
            assert [t.id for t in tx.list_tickets()] == [live.id]
            assert tx.count_tickets() == 1

    def test_filters_by_vendor_and_status(self):
        store = InMemoryStore()
        vendor_id = uuid4()
        mine = _ticket(status=TicketStatus.IN_PROGRESS, vendor_id=vendor_id)
        other = _ticket(status=TicketStatus.IN_PROGRESS, vendor_id=uuid4())
        done = _ticket(status=TicketStatus.COMPLETED, vendor_id=vendor_id)
        with store.transaction() as tx:
            for t in (mine, other, done):
                tx.insert_ticket(t)

        with store.transaction() as tx:
            result = tx.list_tickets(vendor_id=vendor_id, statuses=[TicketStatus.IN_PROGRESS])
            assert [t.id for t in result] == [mine.id]
            assert tx.count_tickets(vendor_id=vendor_id) == 2

    def test_newest_first_with_limit(self):
        store = InMemoryStore()
        now = now_utc()
        old = _ticket(created_at=now - timedelta(days=2))
        new = _ticket(created_at=now)
        with store.transaction() as tx:
            tx.insert_ticket(old)
            tx.insert_ticket(new)

        with store.transaction() as tx:
            assert [t.id for t in tx.list_tickets(limit=1)] == [new.id]


class TestAppointmentQueries:
    """Appointment filters used by conflict detection."""

    def test_overlapping_filter_is_half_open(self):
        store = InMemoryStore()
        vendor_id = uuid4()
        booked = _appointment(vendor_id)
        with store.transaction() as tx:
            tx.insert_appointment(booked)

        with store.transaction() as tx:
            touching = tx.list_appointments(vendor_id=vendor_id, overlapping=(SLOT_END, SLOT_END + timedelta(hours=1)))
            inside = tx.list_appointments(
                vendor_id=vendor_id,
                overlapping=(SLOT_START + timedelta(minutes=30), SLOT_END + timedelta(hours=1)),
            )

        assert touching == []
        assert [a.id for a in inside] == [booked.id]

    def test_status_filter(self):
        store = InMemoryStore()
        vendor_id = uuid4()
        active = _appointment(vendor_id)
        cancelled = _appointment(vendor_id, status=AppointmentStatus.CANCELLED)
        with store.transaction() as tx:
            tx.insert_appointment(active)
            tx.insert_appointment(cancelled)

        with store.transaction() as tx:
            result = tx.list_appointments(vendor_id=vendor_id, statuses=BLOCKING_STATUSES)

        assert [a.id for a in result] == [active.id]


class TestVendorQueries:

    def test_list_active_by_category_sorted_by_name(self):
        store = InMemoryStore()
        b = _vendor(business_name="Beta Heating")
        a = _vendor(business_name="Alpha Heating")
        inactive = _vendor(business_name="Gone Heating", is_active=False)
        plumber = _vendor(business_name="Pipes", category="plumbing")
        with store.transaction() as tx:
            for v in (b, a, inactive, plumber):
                tx.insert_vendor(v)

        with store.transaction() as tx:
            names = [v.business_name for v in tx.list_vendors(category="hvac")]
            all_hvac = tx.list_vendors(category="hvac", active_only=False)

        assert names == ["Alpha Heating", "Beta Heating"]
        assert len(all_hvac) == 3


class TestActivityLog:

    def test_list_activity_newest_first_and_by_user(self):
        store = InMemoryStore()
        user_a, user_b = uuid4(), uuid4()
        with store.transaction() as tx:
            for user_id, action in ((user_a, "first"), (user_b, "second"), (user_a, "third")):
                tx.insert_activity(ActivityEntry(
                    id=uuid4(), user_id=user_id, type=ActivityType.TICKET_UPDATED,
                    action=action, created_at=now_utc(),
                ))

        with store.transaction() as tx:
            assert [e.action for e in tx.list_activity()] == ["third", "second", "first"]
            assert [e.action for e in tx.list_activity(user_id=user_a)] == ["third", "first"]


class TestInvoiceNumbers:

    def _invoice(self, number) -> Invoice:
        now = now_utc()
        return Invoice(
            id=uuid4(), invoice_number=number, ticket_id=uuid4(), vendor_id=uuid4(),
            property_id=PROPERTY_ID, status=InvoiceStatus.PENDING, items=[],
            subtotal_cents=0, tax_cents=0, discount_cents=0, total_cents=0,
            created_at=now, updated_at=now,
        )

    def test_max_sequence_is_numeric(self):
        store = InMemoryStore()
        with store.transaction() as tx:
            for number in ("INV-20300603-0002", "INV-20300603-9999", "INV-20300603-10000", "INV-20300604-20000"):
                tx.insert_invoice(self._invoice(number))

        with store.transaction() as tx:
            assert tx.max_invoice_sequence("INV-20300603-") == 10000
            assert tx.max_invoice_sequence("INV-20300605-") == 0


class TestTicketComments:

    def test_oldest_first_and_internal_filter(self):
        store = InMemoryStore()
        ticket_id = uuid4()
        base = now_utc()
        with store.transaction() as tx:
            for offset, internal in ((2, True), (1, False)):
                tx.insert_ticket_comment(TicketComment(
                    id=uuid4(), ticket_id=ticket_id, author_id=uuid4(),
                    message=f"note {offset}", is_internal=internal,
                    created_at=base + timedelta(minutes=offset),
                ))

        with store.transaction() as tx:
            assert [c.message for c in tx.list_ticket_comments(ticket_id)] == ["note 1", "note 2"]
            assert [c.message for c in tx.list_ticket_comments(ticket_id, include_internal=False)] == ["note 1"]
            assert tx.list_ticket_comments(uuid4()) == []
