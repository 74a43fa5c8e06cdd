"""Pydantic schemas for Payments module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from src.shared.schemas.base import BaseSchema, Money
from src.modules.payments.models import PaymentKind, PaymentMethod


class PaymentCreate(BaseSchema):
    """Schema for recording a payment against an invoice."""

    invoice_id: int
    amount: Decimal = Field(gt=0, description="Payment amount (must be positive)")
    payment_method: PaymentMethod
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None


class PaymentReverseRequest(BaseSchema):
    reason: str | None = Field(None, max_length=500)


class InvoiceBalance(BaseSchema):
    """Invoice state after the ledger entry was applied."""

    id: int
    invoice_number: str
    total_amount: Money
    amount_paid: Money
    balance: Money
    status: str


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    payment_number: str
    invoice_id: int
    student_id: int
    kind: str
    amount: Money
    payment_method: str
    reference: str | None
    notes: str | None
    reverses_payment_id: int | None
    recorded_by_id: int
    recorded_at: datetime
    invoice: InvoiceBalance | None = None


class PaymentFilters(BaseSchema):
    """Filters for listing payments."""

    invoice_id: int | None = None
    student_id: int | None = None
    payment_method: PaymentMethod | None = None
    kind: PaymentKind | None = None
    date_from: date | None = None
    date_to: date | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)
