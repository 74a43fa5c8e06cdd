"""Service for Invoices module."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, not_, or_, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import AuditAction, AuditService
from src.core.documents.number_generator import DocumentNumberGenerator
from src.core.exceptions import ConflictError, IntegrityError, NotFoundError, ValidationError
from src.shared.utils.money import ZERO, round_money
from src.modules.fees.models import FeeItem
from src.modules.fees.service import FeeCatalogService
from src.modules.invoices.models import Invoice, InvoiceLineItem, InvoiceStatus
from src.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceFilters,
    InvoiceGenerationFailure,
    InvoiceGenerationRequest,
    InvoiceGenerationResult,
)
from src.modules.students.models import Student
from src.modules.students.service import StudentDirectory
from src.modules.terms.service import TermCalendar

logger = logging.getLogger(__name__)

OPEN_STATUSES = (InvoiceStatus.UNPAID.value, InvoiceStatus.PARTIALLY_PAID.value)
# Attempts at a sequence number when a concurrent writer takes it first
NUMBER_ATTEMPTS = 3


@dataclass(frozen=True)
class LineSnapshot:
    """Description and amount copied onto an invoice at creation time."""

    description: str
    amount: Decimal
    fee_item_id: int | None = None


def snapshot_fee_items(fee_items: list[FeeItem]) -> list[LineSnapshot]:
    return [
        LineSnapshot(description=item.name, amount=round_money(item.amount), fee_item_id=item.id)
        for item in fee_items
    ]


def overdue_condition(today: date):
    """SQL form of Invoice.is_overdue."""
    return and_(
        Invoice.due_date.is_not(None),
        Invoice.due_date < today,
        Invoice.status.in_(OPEN_STATUSES),
    )


class InvoiceService:
    """Service for generating and querying invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.number_gen = DocumentNumberGenerator(db)

    # --- Unit of work ---

    async def create_invoice_unit(
        self,
        student_id: int,
        term_id: int,
        lines: list[LineSnapshot],
        created_by_id: int,
        due_date: date | None = None,
        invoice_number: str | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Write one invoice together with all of its line items.

        Runs inside a savepoint: if any row fails to write, the invoice, its
        line items and the consumed invoice number are all rolled back and
        IntegrityError is raised. Nothing is committed here.

        Sequence numbers already taken by an explicitly numbered invoice are
        skipped. A caller-supplied number that clashes raises ConflictError.
        """
        if not lines:
            raise ValidationError("An invoice needs at least one line item", field="fee_item_ids")
        total = round_money(sum((line.amount for line in lines), ZERO))
        if total <= ZERO:
            raise ValidationError("Invoice total must be greater than zero", field="total_amount")

        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            try:
                async with self.db.begin_nested():
                    number = invoice_number or await self._next_free_invoice_number()
                    invoice = Invoice(
                        invoice_number=number,
                        student_id=student_id,
                        term_id=term_id,
                        status=InvoiceStatus.UNPAID.value,
                        due_date=due_date,
                        total_amount=total,
                        amount_paid=ZERO,
                        notes=notes,
                        created_by_id=created_by_id,
                    )
                    invoice.line_items = []  # Initialize collection
                    invoice.payments = []
                    self.db.add(invoice)
                    await self.db.flush()

                    await self._write_line_items(invoice, lines)
                return invoice
            except SQLAlchemyError as exc:
                if _is_number_clash(exc):
                    if invoice_number:
                        raise ConflictError("Invoice", "invoice_number", invoice_number) from exc
                    if attempt < NUMBER_ATTEMPTS:
                        logger.warning("Invoice number %s taken concurrently, retrying", number)
                        continue
                logger.warning(
                    "Invoice write for student %s rolled back: %s", student_id, exc.__class__.__name__
                )
                raise IntegrityError(
                    f"Invoice for student {student_id} could not be written; nothing was saved",
                    student_id=student_id,
                ) from exc

    async def _next_free_invoice_number(self) -> str:
        """Next sequence number not already used by an explicitly numbered invoice."""
        while True:
            number = await self.number_gen.next_invoice_number()
            taken = await self.db.execute(
                select(Invoice.id).where(Invoice.invoice_number == number)
            )
            if taken.first() is None:
                return number
            logger.info("Invoice number %s already in use, skipping", number)

    async def _write_line_items(self, invoice: Invoice, lines: list[LineSnapshot]) -> None:
        for line in lines:
            line_item = InvoiceLineItem(
                invoice_id=invoice.id,
                fee_item_id=line.fee_item_id,
                description=line.description,
                amount=line.amount,
            )
            self.db.add(line_item)
            invoice.line_items.append(line_item)
        await self.db.flush()

    # --- Generation ---

    async def generate_invoices(
        self, data: InvoiceGenerationRequest, generated_by_id: int
    ) -> InvoiceGenerationResult:
        """
        Create one invoice per student with one line item per fee item.

        Students are processed in the order given (duplicates ignored). Each
        student's invoice is written as its own unit, so one failure is
        reported in the result without aborting the rest of the batch.
        """
        student_ids = list(dict.fromkeys(data.student_ids))
        fee_item_ids = list(dict.fromkeys(data.fee_item_ids))
        if not student_ids or not fee_item_ids:
            logger.info("Invoice generation skipped: no students or no fee items selected")
            return InvoiceGenerationResult(
                invoices_created=0,
                total_amount=ZERO,
                total_students_processed=0,
            )

        term = await TermCalendar(self.db).get_term(data.term_id)
        fee_items = await FeeCatalogService(self.db).get_fee_items(fee_item_ids)
        lines = snapshot_fee_items(fee_items)
        total = round_money(sum((line.amount for line in lines), ZERO))

        students = await StudentDirectory(self.db).get_students(student_ids)

        invoice_ids: list[int] = []
        failures: list[InvoiceGenerationFailure] = []
        for student_id in student_ids:
            if student_id not in students:
                failures.append(
                    InvoiceGenerationFailure(
                        student_id=student_id, error=f"Student with id={student_id} not found"
                    )
                )
                continue
            try:
                invoice = await self.create_invoice_unit(
                    student_id=student_id,
                    term_id=term.id,
                    lines=lines,
                    created_by_id=generated_by_id,
                    due_date=data.due_date,
                )
            except IntegrityError as exc:
                failures.append(InvoiceGenerationFailure(student_id=student_id, error=exc.message))
                continue
            invoice_ids.append(invoice.id)

        for failure in failures:
            logger.warning("Invoice not generated for student %s: %s", failure.student_id, failure.error)

        await self.audit.log(
            action=AuditAction.INVOICE_GENERATE,
            record_type="Term",
            record_id=term.id,
            record_label=term.display_name,
            actor_id=generated_by_id,
            after={
                "fee_item_ids": fee_item_ids,
                "total_amount": str(total),
                "invoices_created": len(invoice_ids),
                "failed_student_ids": [f.student_id for f in failures],
            },
        )
        await self.db.commit()

        logger.info(
            "Generated %s invoices for term %s (%s failed, total %s each)",
            len(invoice_ids),
            term.id,
            len(failures),
            total,
        )
        return InvoiceGenerationResult(
            invoices_created=len(invoice_ids),
            invoice_ids=invoice_ids,
            total_amount=total,
            total_students_processed=len(student_ids),
            failures=failures,
        )

    async def create_invoice(self, data: InvoiceCreate, created_by_id: int) -> Invoice:
        """Create a single invoice, optionally with a caller-supplied number."""
        await StudentDirectory(self.db).get_student(data.student_id)
        await TermCalendar(self.db).get_term(data.term_id)
        fee_items = await FeeCatalogService(self.db).get_fee_items(
            list(dict.fromkeys(data.fee_item_ids))
        )

        invoice_number = data.invoice_number.strip() if data.invoice_number else None
        if invoice_number and await self.find_by_number(invoice_number):
            raise ConflictError("Invoice", "invoice_number", invoice_number)

        invoice = await self.create_invoice_unit(
            student_id=data.student_id,
            term_id=data.term_id,
            lines=snapshot_fee_items(fee_items),
            created_by_id=created_by_id,
            due_date=data.due_date,
            invoice_number=invoice_number,
            notes=data.notes,
        )

        await self.audit.log(
            action=AuditAction.INVOICE_CREATE,
            record_type="Invoice",
            record_id=invoice.id,
            record_label=invoice.invoice_number,
            actor_id=created_by_id,
            after={
                "student_id": invoice.student_id,
                "term_id": invoice.term_id,
                "total_amount": str(invoice.total_amount),
            },
        )
        await self.db.commit()
        logger.info("Invoice %s created for student %s", invoice.invoice_number, invoice.student_id)
        return await self.get_invoice_by_id(invoice.id)

    # --- Queries ---

    def _detail_query(self):
        return select(Invoice).options(
            selectinload(Invoice.line_items),
            selectinload(Invoice.payments),
            selectinload(Invoice.student),
            selectinload(Invoice.term),
        ).execution_options(populate_existing=True)

    async def get_invoice_by_id(self, invoice_id: int) -> Invoice:
        """Get invoice by ID with line items, payments, student and term loaded."""
        result = await self.db.execute(self._detail_query().where(Invoice.id == invoice_id))
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def find_by_number(self, invoice_number: str) -> Invoice | None:
        result = await self.db.execute(
            self._detail_query().where(Invoice.invoice_number == invoice_number)
        )
        return result.scalar_one_or_none()

    def _filtered_query(self, filters: InvoiceFilters, today: date):
        query = (
            select(Invoice)
            .options(selectinload(Invoice.student), selectinload(Invoice.term))
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )

        if filters.student_id is not None:
            query = query.where(Invoice.student_id == filters.student_id)
        if filters.term_id is not None:
            query = query.where(Invoice.term_id == filters.term_id)
        if filters.status is not None:
            query = query.where(Invoice.status == filters.status.value)
        if filters.overdue is True:
            query = query.where(overdue_condition(today))
        elif filters.overdue is False:
            query = query.where(not_(overdue_condition(today)))
        if filters.search:
            search_term = f"%{filters.search.strip()}%"
            query = query.join(Student, Invoice.student_id == Student.id).where(
                or_(
                    Invoice.invoice_number.ilike(search_term),
                    Student.full_name.ilike(search_term),
                    Student.admission_number.ilike(search_term),
                )
            )
        return query

    async def list_invoices(
        self, filters: InvoiceFilters, today: date | None = None
    ) -> tuple[list[Invoice], int]:
        """List invoices with filters, newest first."""
        query = self._filtered_query(filters, today or date.today())

        # Count total
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Apply pagination
        offset = (filters.page - 1) * filters.limit
        query = query.offset(offset).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def export_invoices(
        self, filters: InvoiceFilters, today: date | None = None
    ) -> list[Invoice]:
        """All invoices matching the filters, unpaginated."""
        result = await self.db.execute(self._filtered_query(filters, today or date.today()))
        return list(result.scalars().all())

    # --- Void ---

    async def void_invoice(
        self, invoice_id: int, voided_by_id: int, reason: str | None = None
    ) -> Invoice:
        """
        Void an unpaid or partially paid invoice.

        The status change is a conditional update so a concurrent payment
        cannot settle the invoice between the check and the write.
        """
        invoice = await self.get_invoice_by_id(invoice_id)
        if not invoice.can_be_voided:
            raise _not_voidable(invoice)
        old_status = invoice.status

        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status.in_(OPEN_STATUSES))
            .values(status=InvoiceStatus.VOID.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            invoice = await self.get_invoice_by_id(invoice_id)
            raise _not_voidable(invoice)

        await self.audit.log(
            action=AuditAction.INVOICE_VOID,
            record_type="Invoice",
            record_id=invoice_id,
            record_label=invoice.invoice_number,
            actor_id=voided_by_id,
            before={"status": old_status, "amount_paid": str(invoice.amount_paid)},
            after={"status": InvoiceStatus.VOID.value},
            reason=reason,
        )
        await self.db.commit()
        logger.info("Invoice %s voided (was %s)", invoice.invoice_number, old_status)
        return await self.get_invoice_by_id(invoice_id)


def _not_voidable(invoice: Invoice) -> ValidationError:
    return ValidationError(
        f"Cannot void invoice with status '{invoice.status}'",
        field="status",
        status=invoice.status,
    )


def _is_number_clash(exc: SQLAlchemyError) -> bool:
    """Unique violation on invoices.invoice_number."""
    if not isinstance(exc, sa_exc.IntegrityError):
        return False
    raw = str(getattr(exc, "orig", exc)).lower()
    return "invoice_number" in raw
