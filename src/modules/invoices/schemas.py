"""Schemas for Invoices module."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from src.modules.invoices.models import InvoiceStatus
from src.shared.schemas.base import Money


# --- Line Items ---


class InvoiceLineItemResponse(BaseModel):
    """Schema for invoice line item response."""

    id: int
    fee_item_id: int | None
    description: str
    amount: Money

    model_config = {"from_attributes": True}


class InvoicePaymentEntry(BaseModel):
    """Ledger entry as shown on the invoice detail."""

    id: int
    payment_number: str
    kind: str
    amount: Money
    payment_method: str
    reference: str | None
    reverses_payment_id: int | None
    recorded_by_id: int
    recorded_at: datetime

    model_config = {"from_attributes": True}


# --- Invoice Schemas ---


class InvoiceCreate(BaseModel):
    """Schema for creating a single invoice directly."""

    student_id: int
    term_id: int
    fee_item_ids: list[int] = Field(..., min_length=1)
    due_date: date | None = None
    invoice_number: str | None = Field(None, min_length=1, max_length=50)
    notes: str | None = None


class InvoiceVoidRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    id: int
    invoice_number: str
    student_id: int
    student_name: str | None = None
    admission_number: str | None = None
    term_id: int
    term_name: str | None = None
    status: str
    is_overdue: bool
    due_date: date | None
    total_amount: Money
    amount_paid: Money
    balance: Money
    notes: str | None
    created_by_id: int
    created_at: datetime
    line_items: list[InvoiceLineItemResponse] = Field(default_factory=list)
    payments: list[InvoicePaymentEntry] = Field(default_factory=list)


class InvoiceSummary(BaseModel):
    """Brief invoice summary for lists."""

    id: int
    invoice_number: str
    student_id: int
    student_name: str | None = None
    term_id: int
    status: str
    is_overdue: bool
    total_amount: Money
    amount_paid: Money
    balance: Money
    due_date: date | None


# --- Batch Generation ---


class InvoiceGenerationRequest(BaseModel):
    """Schema for generating one invoice per student for a term."""

    student_ids: list[int] = Field(default_factory=list)
    term_id: int
    fee_item_ids: list[int] = Field(default_factory=list)
    due_date: date


class InvoiceGenerationFailure(BaseModel):
    student_id: int
    error: str


class InvoiceGenerationResult(BaseModel):
    """Result of a generation batch. Failures do not abort other students."""

    invoices_created: int
    invoice_ids: list[int] = []
    total_amount: Money  # per invoice
    total_students_processed: int
    failures: list[InvoiceGenerationFailure] = []


# --- Filters ---


class InvoiceFilters(BaseModel):
    """Filters for listing invoices."""

    student_id: int | None = None
    term_id: int | None = None
    status: InvoiceStatus | None = None
    overdue: bool | None = None
    search: str | None = None  # invoice number, student name or admission number
    page: int = Field(1, ge=1)
    limit: int = Field(100, ge=1, le=500)
