"""Payment ledger model."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK


class PaymentMethod(StrEnum):
    """Payment method options."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    POS = "pos"
    ONLINE = "online"
    OTHER = "other"


class PaymentKind(StrEnum):
    """Ledger entry kind. A reversal offsets exactly one earlier payment."""

    PAYMENT = "payment"
    REVERSAL = "reversal"


class Payment(Base):
    """
    Append-only ledger entry against one invoice.

    Entries are never edited or deleted. A payment is corrected by appending a
    reversal entry that references it; the reversal carries the same positive
    amount and lowers the invoice's amount_paid.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    payment_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id"), nullable=False, index=True
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentKind.PAYMENT.value, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # teller slip, bank reference, POS terminal id
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Unique: a payment can be reversed at most once
    reverses_payment_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("payments.id"), nullable=True, unique=True
    )

    recorded_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")
    student: Mapped["Student"] = relationship("Student")
    reverses: Mapped["Payment | None"] = relationship(
        "Payment", remote_side="Payment.id", foreign_keys=[reverses_payment_id]
    )

    __table_args__ = (CheckConstraint("amount > 0", name="amount_positive"),)

    @property
    def is_reversal(self) -> bool:
        return self.kind == PaymentKind.REVERSAL.value

    @property
    def signed_amount(self) -> Decimal:
        """Effect on the invoice's amount_paid."""
        return -self.amount if self.is_reversal else self.amount


# Import for type hints
from src.modules.invoices.models import Invoice
from src.modules.students.models import Student
