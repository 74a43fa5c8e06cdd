"""Read-side aggregation of outstanding balances."""

from datetime import date
from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.shared.utils.money import ZERO, round_money
from src.modules.debtors.schemas import CollectionSummary, DebtorRow
from src.modules.invoices.models import Invoice, InvoiceStatus
from src.modules.invoices.service import OPEN_STATUSES, overdue_condition
from src.modules.students.models import Student


def _money(value) -> Decimal:
    return round_money(Decimal(str(value or 0)))


class DebtorService:
    """Per-student balances and collection totals. Never writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_debtors(self, student_id: int | None = None) -> list[DebtorRow]:
        """
        Students whose non-void invoices leave a positive outstanding balance.

        Sorted by outstanding descending, ties by student id.
        """
        total_invoiced = func.coalesce(func.sum(Invoice.total_amount), 0)
        total_paid = func.coalesce(func.sum(Invoice.amount_paid), 0)
        outstanding = total_invoiced - total_paid
        oldest_due = func.min(
            case((Invoice.status.in_(OPEN_STATUSES), Invoice.due_date))
        )

        query = (
            select(
                Invoice.student_id,
                Student.full_name,
                Student.admission_number,
                total_invoiced.label("total_invoiced"),
                total_paid.label("total_paid"),
                func.count(Invoice.id).label("invoice_count"),
                oldest_due.label("oldest_due"),
            )
            .join(Student, Invoice.student_id == Student.id)
            .where(Invoice.status != InvoiceStatus.VOID.value)
            .group_by(Invoice.student_id, Student.full_name, Student.admission_number)
            .having(outstanding > 0)
            .order_by(outstanding.desc(), Invoice.student_id)
        )
        if student_id is not None:
            query = query.where(Invoice.student_id == student_id)

        result = await self.db.execute(query)
        rows = []
        for r in result.all():
            invoiced = _money(r.total_invoiced)
            paid = _money(r.total_paid)
            rows.append(
                DebtorRow(
                    student_id=r.student_id,
                    student_name=r.full_name,
                    admission_number=r.admission_number,
                    total_invoiced=invoiced,
                    total_paid=paid,
                    outstanding=invoiced - paid,
                    invoice_count=int(r.invoice_count),
                    oldest_due_date=r.oldest_due,
                )
            )
        return rows

    async def get_collection_summary(
        self, term_id: int | None = None, today: date | None = None
    ) -> CollectionSummary:
        today = today or date.today()

        by_status_q = select(
            Invoice.status,
            func.count(Invoice.id).label("cnt"),
            func.coalesce(func.sum(Invoice.total_amount), 0).label("invoiced"),
            func.coalesce(func.sum(Invoice.amount_paid), 0).label("paid"),
        ).group_by(Invoice.status)
        overdue_q = select(func.count(Invoice.id)).where(overdue_condition(today))
        if term_id is not None:
            by_status_q = by_status_q.where(Invoice.term_id == term_id)
            overdue_q = overdue_q.where(Invoice.term_id == term_id)

        counts_by_status = {s.value: 0 for s in InvoiceStatus}
        total_invoiced = ZERO
        total_collected = ZERO
        for r in (await self.db.execute(by_status_q)).all():
            counts_by_status[r.status] = int(r.cnt)
            if r.status == InvoiceStatus.VOID.value:
                continue
            total_invoiced += _money(r.invoiced)
            total_collected += _money(r.paid)

        overdue_count = (await self.db.execute(overdue_q)).scalar() or 0

        debtor_q = (
            select(Invoice.student_id)
            .where(Invoice.status != InvoiceStatus.VOID.value)
            .group_by(Invoice.student_id)
            .having(func.sum(Invoice.total_amount) - func.sum(Invoice.amount_paid) > 0)
        )
        if term_id is not None:
            debtor_q = debtor_q.where(Invoice.term_id == term_id)
        debtor_count = (
            await self.db.execute(select(func.count()).select_from(debtor_q.subquery()))
        ).scalar() or 0

        rate = (
            round(float(total_collected / total_invoiced * 100), 2)
            if total_invoiced > 0
            else None
        )
        return CollectionSummary(
            term_id=term_id,
            total_invoiced=total_invoiced,
            total_collected=total_collected,
            total_outstanding=total_invoiced - total_collected,
            collection_rate_percent=rate,
            invoice_count=sum(c for s, c in counts_by_status.items() if s != InvoiceStatus.VOID.value),
            counts_by_status=counts_by_status,
            overdue_count=int(overdue_count),
            debtor_count=int(debtor_count),
        )
