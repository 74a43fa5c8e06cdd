"""Invoice and InvoiceLineItem models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    case,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK


class InvoiceStatus(StrEnum):
    """Stored settlement status of an invoice."""

    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"


def settlement_status(amount_paid: Decimal, total_amount: Decimal) -> InvoiceStatus:
    """
    Derive the settlement status from the paid and total amounts.

    Void is never derived; it is only set by the void operation.
    """
    if amount_paid <= Decimal("0.00"):
        return InvoiceStatus.UNPAID
    if amount_paid < total_amount:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.PAID


def settlement_status_clause(amount_paid, total_amount):
    """SQL CASE equivalent of settlement_status, for use inside UPDATE."""
    return case(
        (amount_paid <= 0, InvoiceStatus.UNPAID.value),
        (amount_paid < total_amount, InvoiceStatus.PARTIALLY_PAID.value),
        else_=InvoiceStatus.PAID.value,
    )


class Invoice(Base):
    """Invoice for a student for one term."""

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    # Relations
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    term_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("terms.id"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.UNPAID.value, index=True
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    # Amounts (Decimal with 2 decimal places)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False
    )  # sum of line items, frozen at creation
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )  # maintained only by the payment ledger

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    term: Mapped["Term"] = relationship("Term")
    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.id",
    )
    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
    )

    __table_args__ = (
        CheckConstraint(
            "amount_paid >= 0 AND amount_paid <= total_amount",
            name="amount_paid_bounds",
        ),
        CheckConstraint("total_amount > 0", name="total_amount_positive"),
    )

    @property
    def balance(self) -> Decimal:
        return self.total_amount - self.amount_paid

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID.value

    @property
    def can_receive_payment(self) -> bool:
        return self.status in (
            InvoiceStatus.UNPAID.value,
            InvoiceStatus.PARTIALLY_PAID.value,
        )

    @property
    def can_be_voided(self) -> bool:
        """Paid invoices are settled and stay settled; void is terminal."""
        return self.status in (
            InvoiceStatus.UNPAID.value,
            InvoiceStatus.PARTIALLY_PAID.value,
        )

    def is_overdue(self, today: date | None = None) -> bool:
        """
        View-time qualifier, never stored: unsettled and past its due date.
        """
        if self.due_date is None or not self.can_receive_payment:
            return False
        return self.due_date < (today or date.today())


class InvoiceLineItem(Base):
    """Frozen snapshot of one fee item's name and amount on an invoice."""

    __tablename__ = "invoice_line_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Soft reference: the catalog entry may be deleted later
    fee_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_items.id", ondelete="SET NULL"), nullable=True, index=True
    )

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")


# Import at the end to avoid circular imports
from src.modules.payments.models import Payment
from src.modules.students.models import Student
from src.modules.terms.models import Term
