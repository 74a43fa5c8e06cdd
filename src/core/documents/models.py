from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base


class DocumentSequence(Base):
    """
    Counter behind invoice and payment numbers, one row per prefix and year.

    ``last_issued`` is bumped inside the transaction that uses the number, so
    a rolled-back invoice or payment hands its number back.
    """

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)  # INV, PAY
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("prefix", "year", name="uq_document_sequences_prefix_year"),
    )
