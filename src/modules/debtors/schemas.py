"""Schemas for the Debtors module."""

from datetime import date

from src.shared.schemas.base import BaseSchema, Money


class DebtorRow(BaseSchema):
    """One student with a positive outstanding balance."""

    student_id: int
    student_name: str
    admission_number: str | None
    total_invoiced: Money
    total_paid: Money
    outstanding: Money
    invoice_count: int
    oldest_due_date: date | None  # earliest due date among unsettled invoices


class DebtorsResponse(BaseSchema):
    rows: list[DebtorRow]
    debtor_count: int
    total_outstanding: Money


class CollectionSummary(BaseSchema):
    """Bursary totals across non-void invoices."""

    term_id: int | None
    total_invoiced: Money
    total_collected: Money
    total_outstanding: Money
    collection_rate_percent: float | None  # 0-100, None if nothing invoiced
    invoice_count: int
    counts_by_status: dict[str, int]
    overdue_count: int
    debtor_count: int
