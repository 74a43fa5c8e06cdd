from datetime import date
from enum import StrEnum

from sqlalchemy import Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class TermStatus(StrEnum):
    """Term status enum."""

    DRAFT = "Draft"
    ACTIVE = "Active"
    CLOSED = "Closed"


class Term(BaseModel):
    """
    Academic term, mirrored from the term calendar.

    Only one term is Active at a time. Invoices reference a term; imports
    without an explicit term fall back to the active or most recent one.
    """

    __tablename__ = "terms"

    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    term_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1, 2, or 3
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)  # e.g., "2026-T1"

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TermStatus.DRAFT.value, index=True
    )

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("year", "term_number", name="uq_term_year_number"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TermStatus.ACTIVE.value
