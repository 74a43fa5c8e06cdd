"""Fee catalog models."""

from datetime import date
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class FeeItem(BaseModel):
    """
    Named, priced billable component (tuition, books, uniform...).

    Installments are stored as an ordered JSON list of
    ``{"name": str, "amount": "10000.00", "due_date": "2024-09-30" | null}``.
    Amounts are kept as strings so the schedule sums exactly.
    """

    __tablename__ = "fee_items"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    is_compulsory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_installments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # lower = collected first
    installments: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)

    def installment_schedule(self) -> list[tuple[str, Decimal, date | None]]:
        """Installments as (name, amount, due_date) tuples in stored order."""
        schedule = []
        for inst in self.installments or []:
            due = inst.get("due_date")
            schedule.append(
                (inst["name"], Decimal(str(inst["amount"])), date.fromisoformat(due) if due else None)
            )
        return schedule


# Case-insensitive uniqueness of fee item names
Index("ix_fee_items_name_lower", func.lower(FeeItem.name), unique=True)
