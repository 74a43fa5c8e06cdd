from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """What happened to a ledger record."""

    FEE_ITEM_CREATE = "fee_item.create"
    FEE_ITEM_UPDATE = "fee_item.update"
    FEE_ITEM_DELETE = "fee_item.delete"
    INVOICE_CREATE = "invoice.create"
    INVOICE_GENERATE = "invoice.generate"
    INVOICE_VOID = "invoice.void"
    INVOICE_IMPORT = "invoice.import"
    PAYMENT_RECORD = "payment.record"
    PAYMENT_REVERSE = "payment.reverse"


class AuditService:
    """
    Writes audit entries inside the caller's transaction.

    Entries are flushed, never committed here: an entry exists exactly when
    the change it describes was committed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: AuditAction,
        record_type: str,
        record_id: int,
        actor_id: int | None = None,
        record_label: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor_id,
            action=action.value,
            record_type=record_type,
            record_id=record_id,
            record_label=record_label,
            before=before,
            after=after,
            reason=reason,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def list_for_record(self, record_type: str, record_id: int) -> list[AuditLog]:
        """Audit entries for one record, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.record_type == record_type, AuditLog.record_id == record_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
