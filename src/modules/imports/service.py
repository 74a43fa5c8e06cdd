"""Merge externally supplied fee items and invoices into the ledger."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditAction, AuditService
from src.core.config import settings
from src.core.exceptions import AppException, IntegrityError, ValidationError
from src.shared.utils.csv_rows import parse_bool, parse_date
from src.shared.utils.money import ZERO, has_cent_precision, parse_money
from src.modules.fees.models import FeeItem
from src.modules.fees.schemas import FeeItemCreate, InstallmentSchema
from src.modules.fees.service import FeeCatalogService
from src.modules.imports.schemas import ImportResult, ImportRowResult, ImportRowStatus
from src.modules.invoices.models import Invoice
from src.modules.invoices.service import InvoiceService, LineSnapshot
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import LedgerService
from src.modules.students.models import Student
from src.modules.students.service import StudentDirectory
from src.modules.terms.service import TermCalendar

logger = logging.getLogger(__name__)

# Normalised CSV header -> row key
FEE_ITEM_COLUMNS = {
    "fee_name": "name",
    "name": "name",
    "amount": "amount",
    "is_compulsory": "is_compulsory",
    "compulsory": "is_compulsory",
    "allow_installments": "allow_installments",
    "priority": "priority",
    "description": "description",
}

INVOICE_COLUMNS = {
    "invoice_number": "invoice_number",
    "student_name": "student_name",
    "admission_number": "admission_number",
    "total_amount": "total_amount",
    "total": "total_amount",
    "amount_paid": "amount_paid",
    "paid": "amount_paid",
    "due_date": "due_date",
    "term": "term_id",
    "term_id": "term_id",
}

IMPORTED_LINE_DESCRIPTION = "Imported balance"


def _text(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_int(raw: dict[str, Any], key: str, errors: list[str]) -> int | None:
    text = _text(raw, key)
    if text is None:
        return None
    try:
        value = int(text)
    except ValueError:
        errors.append(f"{key} must be a whole number, got {text!r}")
        return None
    if value < 1:
        errors.append(f"{key} must be a positive integer")
        return None
    return value


def _amount(raw: dict[str, Any], key: str, errors: list[str], required: bool) -> Decimal | None:
    """Parse a money cell. Missing is an error only when required; never defaulted."""
    text = raw.get(key)
    if text is None or str(text).strip() == "":
        if required:
            errors.append(f"{key} is required")
        return None
    value = parse_money(text)
    if value is None:
        errors.append(f"{key} is not a valid amount: {text!r}")
        return None
    if not has_cent_precision(value):
        errors.append(f"{key} cannot have more than 2 decimal places")
        return None
    return value.quantize(Decimal("0.01"))


class ImportReconciler:
    """
    Update-if-exists, insert-otherwise import of fee items and invoices.

    Every row is applied in its own savepoint. A row that fails validation or
    cannot be written is skipped and reported; the rest of the batch carries on.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.catalog = FeeCatalogService(db)
        self.invoices = InvoiceService(db)
        self.ledger = LedgerService(db)
        self.students = StudentDirectory(db)
        self.terms = TermCalendar(db)

    def _check_size(self, rows: list[dict[str, Any]]) -> None:
        if len(rows) > settings.max_import_rows:
            raise ValidationError(
                f"Import has {len(rows)} rows; the limit is {settings.max_import_rows}",
                field="rows",
                limit=settings.max_import_rows,
            )

    @staticmethod
    def _summarise(results: list[ImportRowResult]) -> ImportResult:
        counts = {status: 0 for status in ImportRowStatus}
        for r in results:
            counts[r.status] += 1
        return ImportResult(
            total_rows=len(results),
            created=counts[ImportRowStatus.CREATED],
            updated=counts[ImportRowStatus.UPDATED],
            unchanged=counts[ImportRowStatus.UNCHANGED],
            skipped=counts[ImportRowStatus.SKIPPED],
            rows=results,
        )

    # --- Fee items ---

    async def import_fee_items(
        self, rows: list[dict[str, Any]], imported_by_id: int, first_row: int = 1
    ) -> ImportResult:
        """Import fee items matched by name, ignoring case."""
        self._check_size(rows)

        results: list[ImportRowResult] = []
        for row_num, raw in enumerate(rows, start=first_row):
            try:
                result = await self._import_fee_row(row_num, raw, imported_by_id)
            except AppException as exc:
                result = ImportRowResult(
                    row=row_num, status=ImportRowStatus.SKIPPED, errors=[exc.message]
                )
            if result.status == ImportRowStatus.SKIPPED:
                logger.warning("Fee item import row %s skipped: %s", row_num, "; ".join(result.errors))
            results.append(result)

        await self.db.commit()
        summary = self._summarise(results)
        logger.info(
            "Fee item import finished: %s created, %s updated, %s unchanged, %s skipped",
            summary.created,
            summary.updated,
            summary.unchanged,
            summary.skipped,
        )
        return summary

    async def _import_fee_row(
        self, row_num: int, raw: dict[str, Any], imported_by_id: int
    ) -> ImportRowResult:
        errors: list[str] = []
        name = _text(raw, "name")
        if not name:
            errors.append("name is required")
        amount = _amount(raw, "amount", errors, required=True)
        if amount is not None and amount <= ZERO:
            errors.append("amount must be greater than zero")

        flags: dict[str, bool | None] = {}
        for key in ("is_compulsory", "allow_installments"):
            try:
                flags[key] = parse_bool(raw.get(key))
            except ValueError as exc:
                errors.append(f"{key}: {exc}")
        priority = _positive_int(raw, "priority", errors)

        if errors:
            return ImportRowResult(row=row_num, status=ImportRowStatus.SKIPPED, errors=errors)

        existing = await self.catalog.find_by_name(name)
        data = self._merge_fee_item(existing, name, amount, flags, priority, _text(raw, "description"))
        if existing is not None and self._fee_item_unchanged(existing, data):
            return ImportRowResult(row=row_num, status=ImportRowStatus.UNCHANGED, id=existing.id)

        try:
            async with self.db.begin_nested():
                item, created = await self.catalog.save_fee_item(data, imported_by_id, commit=False)
        except SQLAlchemyError as exc:
            raise IntegrityError(f"Fee item '{name}' could not be saved", row=row_num) from exc

        return ImportRowResult(
            row=row_num,
            status=ImportRowStatus.CREATED if created else ImportRowStatus.UPDATED,
            id=item.id,
        )

    @staticmethod
    def _merge_fee_item(
        existing: FeeItem | None,
        name: str,
        amount: Decimal,
        flags: dict[str, bool | None],
        priority: int | None,
        description: str | None,
    ) -> FeeItemCreate:
        """
        Blank cells keep the existing item's values. Imports never carry a
        schedule, so an existing schedule is kept and re-validated against the
        imported amount.
        """
        if existing is None:
            return FeeItemCreate(
                name=name,
                description=description,
                amount=amount,
                is_compulsory=True if flags.get("is_compulsory") is None else flags["is_compulsory"],
                allow_installments=bool(flags.get("allow_installments")),
                priority=priority or 1,
                installments=[],
            )

        allow = flags.get("allow_installments")
        return FeeItemCreate(
            name=name,
            description=description if description is not None else existing.description,
            amount=amount,
            is_compulsory=(
                existing.is_compulsory
                if flags.get("is_compulsory") is None
                else flags["is_compulsory"]
            ),
            allow_installments=existing.allow_installments if allow is None else allow,
            priority=priority or existing.priority,
            installments=[
                InstallmentSchema(name=inst_name, amount=inst_amount, due_date=due)
                for inst_name, inst_amount, due in existing.installment_schedule()
            ],
        )

    @staticmethod
    def _fee_item_unchanged(existing: FeeItem, data: FeeItemCreate) -> bool:
        return (
            existing.name == data.name
            and existing.description == data.description
            and existing.amount == data.amount
            and existing.is_compulsory == data.is_compulsory
            and existing.allow_installments == data.allow_installments
            and existing.priority == data.priority
        )

    # --- Invoices ---

    async def import_invoices(
        self,
        rows: list[dict[str, Any]],
        imported_by_id: int,
        first_row: int = 1,
        default_term_id: int | None = None,
    ) -> ImportResult:
        """
        Import invoices matched by invoice number.

        Fails as a whole when no term exists, since rows without a term id
        need a default.
        """
        self._check_size(rows)
        if await self.terms.count_terms() == 0:
            raise ValidationError(
                "No terms exist; create a term before importing invoices", field="term_id"
            )
        if default_term_id is not None:
            default_term = await self.terms.get_term(default_term_id)
        else:
            default_term = await self.terms.get_default_term()

        results: list[ImportRowResult] = []
        for row_num, raw in enumerate(rows, start=first_row):
            try:
                result = await self._import_invoice_row(row_num, raw, default_term.id, imported_by_id)
            except AppException as exc:
                result = ImportRowResult(
                    row=row_num, status=ImportRowStatus.SKIPPED, errors=[exc.message]
                )
            if result.status == ImportRowStatus.SKIPPED:
                logger.warning("Invoice import row %s skipped: %s", row_num, "; ".join(result.errors))
            results.append(result)

        await self.db.commit()
        summary = self._summarise(results)
        logger.info(
            "Invoice import finished: %s created, %s updated, %s unchanged, %s skipped",
            summary.created,
            summary.updated,
            summary.unchanged,
            summary.skipped,
        )
        return summary

    async def _resolve_student(self, admission_number: str | None, name: str | None) -> Student:
        """Admission number first; exact name (ignoring case) only when none is given."""
        if admission_number:
            student = await self.students.find_by_admission_number(admission_number)
            if student is None:
                raise ValidationError(
                    f"No student with admission number {admission_number}",
                    field="admission_number",
                )
            return student

        matches = await self.students.find_by_name(name or "")
        if not matches:
            raise ValidationError(f"No student named '{name}'", field="student_name")
        if len(matches) > 1:
            raise ValidationError(
                f"{len(matches)} students are named '{name}'; use the admission number",
                field="student_name",
            )
        return matches[0]

    async def _import_invoice_row(
        self, row_num: int, raw: dict[str, Any], default_term_id: int, imported_by_id: int
    ) -> ImportRowResult:
        errors: list[str] = []
        invoice_number = _text(raw, "invoice_number")
        admission_number = _text(raw, "admission_number")
        student_name = _text(raw, "student_name")
        if not admission_number and not student_name:
            errors.append("admission_number or student_name is required")

        total = _amount(raw, "total_amount", errors, required=True)
        if total is not None and total <= ZERO:
            errors.append("total_amount must be greater than zero")
        paid = _amount(raw, "amount_paid", errors, required=False)
        if paid is not None and paid < ZERO:
            errors.append("amount_paid cannot be negative")
        if total is not None and paid is not None and paid > total:
            errors.append(f"amount_paid {paid:.2f} exceeds total_amount {total:.2f}")

        due_date: date | None = None
        try:
            due_date = parse_date(raw.get("due_date"))
        except ValueError as exc:
            errors.append(f"due_date: {exc}")
        term_id = _positive_int(raw, "term_id", errors)

        if errors:
            return ImportRowResult(row=row_num, status=ImportRowStatus.SKIPPED, errors=errors)

        student = await self._resolve_student(admission_number, student_name)
        if term_id is not None:
            await self.terms.get_term(term_id)

        existing = await self.invoices.find_by_number(invoice_number) if invoice_number else None
        if existing is not None:
            return await self._update_invoice(
                row_num, existing, student, total, paid, due_date, term_id, imported_by_id
            )

        try:
            async with self.db.begin_nested():
                invoice = await self.invoices.create_invoice_unit(
                    student_id=student.id,
                    term_id=term_id or default_term_id,
                    lines=[LineSnapshot(description=IMPORTED_LINE_DESCRIPTION, amount=total)],
                    created_by_id=imported_by_id,
                    due_date=due_date,
                    invoice_number=invoice_number,
                )
                if paid:
                    await self._record_opening_payment(invoice, paid, row_num, imported_by_id)
                await self.audit.log(
                    action=AuditAction.INVOICE_IMPORT,
                    record_type="Invoice",
                    record_id=invoice.id,
                    record_label=invoice.invoice_number,
                    actor_id=imported_by_id,
                    after={
                        "student_id": student.id,
                        "total_amount": str(total),
                        "amount_paid": str(paid or ZERO),
                        "row": row_num,
                    },
                )
        except SQLAlchemyError as exc:
            raise IntegrityError(f"Invoice on row {row_num} could not be saved", row=row_num) from exc

        return ImportRowResult(row=row_num, status=ImportRowStatus.CREATED, id=invoice.id)

    async def _update_invoice(
        self,
        row_num: int,
        invoice: Invoice,
        student: Student,
        total: Decimal,
        paid: Decimal | None,
        due_date: date | None,
        term_id: int | None,
        imported_by_id: int,
    ) -> ImportRowResult:
        """
        Re-import of a known invoice number. The total is frozen and amount_paid
        only grows through the ledger, so only the positive paid delta is applied.
        """
        number = invoice.invoice_number
        if invoice.is_void:
            raise ValidationError(f"Invoice {number} is void and cannot be updated")
        if invoice.student_id != student.id:
            raise ValidationError(
                f"Invoice {number} belongs to a different student", field="student_name"
            )
        if total != invoice.total_amount:
            raise ValidationError(
                f"Invoice {number} total is {invoice.total_amount:.2f}; "
                f"imported total {total:.2f} cannot change it",
                field="total_amount",
            )
        if paid is not None and paid < invoice.amount_paid:
            raise ValidationError(
                f"Invoice {number} already has {invoice.amount_paid:.2f} paid; "
                f"use a payment reversal to lower it",
                field="amount_paid",
            )

        changes: dict[str, Any] = {}
        if due_date is not None and due_date != invoice.due_date:
            changes["due_date"] = due_date
        if term_id is not None and term_id != invoice.term_id:
            changes["term_id"] = term_id
        delta = paid - invoice.amount_paid if paid is not None else ZERO

        if not changes and delta == ZERO:
            return ImportRowResult(row=row_num, status=ImportRowStatus.UNCHANGED, id=invoice.id)

        old_values = {
            "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
            "term_id": invoice.term_id,
            "amount_paid": str(invoice.amount_paid),
        }
        try:
            async with self.db.begin_nested():
                for key, value in changes.items():
                    setattr(invoice, key, value)
                await self.db.flush()
                if delta > ZERO:
                    await self._record_opening_payment(invoice, delta, row_num, imported_by_id)
                await self.audit.log(
                    action=AuditAction.INVOICE_IMPORT,
                    record_type="Invoice",
                    record_id=invoice.id,
                    record_label=number,
                    actor_id=imported_by_id,
                    before=old_values,
                    after={
                        "due_date": due_date.isoformat() if due_date else old_values["due_date"],
                        "term_id": changes.get("term_id", old_values["term_id"]),
                        "paid_delta": str(delta),
                        "row": row_num,
                    },
                )
        except SQLAlchemyError as exc:
            raise IntegrityError(f"Invoice {number} could not be updated", row=row_num) from exc

        return ImportRowResult(row=row_num, status=ImportRowStatus.UPDATED, id=invoice.id)

    async def _record_opening_payment(
        self, invoice: Invoice, amount: Decimal, row_num: int, imported_by_id: int
    ) -> None:
        await self.ledger.record_payment(
            PaymentCreate(
                invoice_id=invoice.id,
                amount=amount,
                payment_method=PaymentMethod.OTHER,
                reference="Import",
                notes=f"Paid amount from import row {row_num}",
            ),
            imported_by_id,
            commit=False,
        )
