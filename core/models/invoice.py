"""Vendor invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents. Totals are always derived from line items on the
server; amounts supplied by the client are accepted for compatibility and
then discarded.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class InvoiceStatus(str, Enum):
    """Invoice settlement status."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# Statuses that count as "the ticket already has an invoice".
OPEN_INVOICE_STATUSES = frozenset({
    InvoiceStatus.DRAFT,
    InvoiceStatus.PENDING,
    InvoiceStatus.APPROVED,
    InvoiceStatus.PAID,
})


class InvoiceItemInput(BaseModel):
    """A line item as submitted by the vendor."""

    description: str = Field(..., min_length=1, max_length=500)
    quantity: int = Field(..., ge=1)
    unit_price_cents: int = Field(..., ge=0)
    amount_cents: int | None = None  # ignored, recomputed


class InvoiceItem(BaseModel):
    """A line item as stored, amount computed server-side."""

    description: str
    quantity: int
    unit_price_cents: int
    amount_cents: int

    @classmethod
    def from_input(cls, item: InvoiceItemInput) -> "InvoiceItem":
        return cls(
            description=item.description,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            amount_cents=item.quantity * item.unit_price_cents,
        )


class InvoiceSubmit(BaseModel):
    """Vendor invoice submission for a completed ticket."""

    ticket_id: UUID
    items: list[InvoiceItemInput]
    tax_cents: int = Field(0, ge=0)
    discount_cents: int = Field(0, ge=0)
    notes: str | None = Field(None, max_length=2000)
    due_date: date | None = None
    # Client-side figures are never trusted
    subtotal_cents: int | None = None
    total_cents: int | None = None


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    ticket_id: UUID
    vendor_id: UUID
    property_id: UUID
    status: InvoiceStatus
    items: list[InvoiceItem]
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    notes: str | None = None
    due_date: date | None = None
    rejection_reason: str | None = None
    payment_reference: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def total_dollars(self) -> float:
        """Total amount in dollars for display."""
        return self.total_cents / 100


class InvoiceStatistics(BaseModel):
    """Invoice counts and amounts for a dashboard."""

    total: int
    pending: int
    approved: int
    paid: int
    rejected: int
    total_amount_cents: int
    paid_amount_cents: int
    pending_amount_cents: int
