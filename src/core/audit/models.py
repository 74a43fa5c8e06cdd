from datetime import datetime

from sqlalchemy import DateTime, Index, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntPK


class AuditLog(Base):
    """
    One ledger state change: fee item edits, invoice creation, generation and
    voiding, payments and reversals, imported invoices.

    ``before`` / ``after`` hold only the fields the action touched, with money
    as strings so no precision is lost in JSON. Rows are never updated.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    actor_id: Mapped[int | None] = mapped_column(BigIntPK, nullable=True)  # X-User-Id of the caller
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    record_type: Mapped[str] = mapped_column(String(100), nullable=False)
    record_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    record_label: Mapped[str | None] = mapped_column(String(200), nullable=True)  # INV-2026-000001, fee name

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (Index("ix_audit_logs_record", "record_type", "record_id"),)
