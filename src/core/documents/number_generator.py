"""Invoice and payment numbers in the form PREFIX-YYYY-NNNNNN."""

from datetime import date
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.documents.models import DocumentSequence


class DocumentKind(StrEnum):
    INVOICE = "invoice"
    PAYMENT = "payment"


def document_prefix(kind: DocumentKind) -> str:
    if kind == DocumentKind.INVOICE:
        return settings.invoice_number_prefix
    return settings.payment_number_prefix


def format_document_number(prefix: str, year: int, serial: int) -> str:
    """INV-2026-000042. Serials past six digits widen rather than wrap."""
    return f"{prefix}-{year}-{serial:06d}"


class DocumentNumberGenerator:
    """
    Issues the next serial for a prefix within a calendar year.

    The counter row is read FOR UPDATE, so concurrent writers queue on it
    instead of composing numbers from the clock. The unique index on the
    owning table's number column stays the final guard.
    """

    def __init__(self, session: AsyncSession, today: date | None = None):
        self.session = session
        self.today = today

    async def _locked_counter(self, prefix: str, year: int) -> DocumentSequence:
        stmt = (
            select(DocumentSequence)
            .where(DocumentSequence.prefix == prefix, DocumentSequence.year == year)
            .with_for_update()
        )
        counter = (await self.session.execute(stmt)).scalar_one_or_none()
        if counter is None:
            self.session.add(DocumentSequence(prefix=prefix, year=year, last_issued=0))
            await self.session.flush()
            counter = (await self.session.execute(stmt)).scalar_one()
        return counter

    async def generate(self, prefix: str, year: int | None = None) -> str:
        if year is None:
            year = (self.today or date.today()).year
        counter = await self._locked_counter(prefix, year)
        counter.last_issued += 1
        await self.session.flush()
        return format_document_number(prefix, year, counter.last_issued)

    async def next_number(self, kind: DocumentKind) -> str:
        return await self.generate(document_prefix(kind))

    async def next_invoice_number(self) -> str:
        return await self.next_number(DocumentKind.INVOICE)

    async def next_payment_number(self) -> str:
        return await self.next_number(DocumentKind.PAYMENT)
