"""Service for Payments module."""

import logging
from datetime import datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import AuditAction, AuditService
from src.core.documents.number_generator import DocumentNumberGenerator
from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.shared.utils.money import ZERO, has_cent_precision, round_money
from src.modules.invoices.models import Invoice, InvoiceStatus, settlement_status_clause
from src.modules.payments.models import Payment, PaymentKind
from src.modules.payments.schemas import PaymentCreate, PaymentFilters

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Records payments and reversals against invoices.

    amount_paid and status are only ever changed here, by a single
    conditional UPDATE that adds the delta and re-derives the status from
    the resulting value. Concurrent writers on the same invoice serialize on
    the row, and a write that would leave amount_paid outside
    [0, total_amount] matches no row and is rejected.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def _get_invoice(self, invoice_id: int) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _apply_delta(self, invoice_id: int, delta: Decimal) -> bool:
        """
        Atomically add delta to amount_paid and re-derive status.

        Returns False when the invoice is void or the new amount would fall
        outside [0, total_amount]; nothing is written in that case.
        """
        new_paid = Invoice.amount_paid + delta
        result = await self.db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.status != InvoiceStatus.VOID.value,
                new_paid >= 0,
                new_paid <= Invoice.total_amount,
            )
            .values(
                amount_paid=new_paid,
                status=settlement_status_clause(new_paid, Invoice.total_amount),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_payment(
        self, data: PaymentCreate, recorded_by_id: int, commit: bool = True
    ) -> Payment:
        """
        Record a payment and update the invoice's amount_paid and status.

        Overpayment is rejected, never capped: the caller must adjust the
        tendered amount. With commit=False the caller owns the transaction.
        """
        amount = data.amount
        if amount is None or amount <= ZERO:
            raise ValidationError("Payment amount must be greater than zero", field="amount")
        if not has_cent_precision(amount):
            raise ValidationError(
                "Payment amount cannot have more than 2 decimal places", field="amount"
            )
        amount = round_money(amount)

        invoice = await self._get_invoice(data.invoice_id)
        self._check_can_pay(invoice, amount)

        if not await self._apply_delta(invoice.id, amount):
            # Lost a race with another writer; report against the current state
            invoice = await self._get_invoice(invoice.id)
            self._check_can_pay(invoice, amount)
            raise ValidationError(
                "Invoice changed while recording the payment; retry", field="invoice_id"
            )

        number_gen = DocumentNumberGenerator(self.db)
        payment = Payment(
            payment_number=await number_gen.next_payment_number(),
            invoice_id=invoice.id,
            student_id=invoice.student_id,
            kind=PaymentKind.PAYMENT.value,
            amount=amount,
            payment_method=data.payment_method.value,
            reference=(data.reference or "").strip() or None,
            notes=data.notes,
            recorded_by_id=recorded_by_id,
        )
        self.db.add(payment)
        await self.db.flush()

        invoice = await self._get_invoice(invoice.id)
        await self.audit.log(
            action=AuditAction.PAYMENT_RECORD,
            record_type="Payment",
            record_id=payment.id,
            record_label=payment.payment_number,
            actor_id=recorded_by_id,
            after={
                "invoice_id": invoice.id,
                "amount": str(amount),
                "payment_method": payment.payment_method,
                "invoice_amount_paid": str(invoice.amount_paid),
                "invoice_status": invoice.status,
            },
        )

        if commit:
            await self.db.commit()
        logger.info(
            "Payment %s of %s recorded on invoice %s (paid %s/%s, %s)",
            payment.payment_number,
            amount,
            invoice.invoice_number,
            invoice.amount_paid,
            invoice.total_amount,
            invoice.status,
        )
        return await self.get_payment_by_id(payment.id)

    @staticmethod
    def _check_can_pay(invoice: Invoice, amount: Decimal) -> None:
        if invoice.is_void:
            raise ValidationError(
                f"Cannot record payment on void invoice {invoice.invoice_number}",
                field="invoice_id",
            )
        balance = invoice.balance
        if amount > balance:
            raise ValidationError(
                f"Payment of {amount:.2f} exceeds invoice balance of {balance:.2f}",
                field="amount",
                balance=balance,
                requested=amount,
            )

    async def reverse_payment(
        self, payment_id: int, reversed_by_id: int, reason: str | None = None
    ) -> Payment:
        """
        Offset a payment by appending a reversal entry.

        The original entry is left untouched. A payment can be reversed once;
        reversal entries themselves cannot be reversed.
        """
        original = await self.get_payment_by_id(payment_id)
        if original.is_reversal:
            raise ValidationError("A reversal entry cannot be reversed", field="payment_id")

        existing = await self.db.execute(
            select(Payment.id).where(Payment.reverses_payment_id == original.id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("Payment reversal", "reverses_payment_id", original.id)

        invoice = await self._get_invoice(original.invoice_id)
        if invoice.is_void:
            raise ValidationError(
                f"Cannot reverse a payment on void invoice {invoice.invoice_number}",
                field="payment_id",
            )

        if not await self._apply_delta(invoice.id, -original.amount):
            invoice = await self._get_invoice(invoice.id)
            raise ValidationError(
                f"Cannot reverse {original.amount:.2f}: invoice {invoice.invoice_number} "
                f"is {invoice.status} with {invoice.amount_paid:.2f} paid",
                field="payment_id",
            )

        number_gen = DocumentNumberGenerator(self.db)
        reversal = Payment(
            payment_number=await number_gen.next_payment_number(),
            invoice_id=invoice.id,
            student_id=original.student_id,
            kind=PaymentKind.REVERSAL.value,
            amount=original.amount,
            payment_method=original.payment_method,
            reference=original.payment_number,
            notes=reason,
            reverses_payment_id=original.id,
            recorded_by_id=reversed_by_id,
        )
        self.db.add(reversal)
        try:
            await self.db.flush()
        except sa_exc.IntegrityError as exc:
            # Concurrent reversal of the same payment hit the unique constraint
            raise ConflictError("Payment reversal", "reverses_payment_id", original.id) from exc

        invoice = await self._get_invoice(invoice.id)
        await self.audit.log(
            action=AuditAction.PAYMENT_REVERSE,
            record_type="Payment",
            record_id=original.id,
            record_label=original.payment_number,
            actor_id=reversed_by_id,
            after={
                "reversal_payment_number": reversal.payment_number,
                "amount": str(original.amount),
                "invoice_amount_paid": str(invoice.amount_paid),
                "invoice_status": invoice.status,
            },
            reason=reason,
        )

        await self.db.commit()
        logger.info(
            "Payment %s reversed by %s on invoice %s (paid %s/%s, %s)",
            original.payment_number,
            reversal.payment_number,
            invoice.invoice_number,
            invoice.amount_paid,
            invoice.total_amount,
            invoice.status,
        )
        return await self.get_payment_by_id(reversal.id)

    async def get_payment_by_id(self, payment_id: int) -> Payment:
        """Get payment by ID with its invoice loaded."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .options(selectinload(Payment.invoice))
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(self, filters: PaymentFilters) -> tuple[list[Payment], int]:
        """List ledger entries with filters, newest first."""
        query = select(Payment).options(selectinload(Payment.invoice))

        if filters.invoice_id:
            query = query.where(Payment.invoice_id == filters.invoice_id)
        if filters.student_id:
            query = query.where(Payment.student_id == filters.student_id)
        if filters.payment_method:
            query = query.where(Payment.payment_method == filters.payment_method.value)
        if filters.kind:
            query = query.where(Payment.kind == filters.kind.value)
        if filters.date_from:
            query = query.where(Payment.recorded_at >= datetime.combine(filters.date_from, time.min))
        if filters.date_to:
            query = query.where(
                Payment.recorded_at < datetime.combine(filters.date_to + timedelta(days=1), time.min)
            )

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Paginate
        query = query.order_by(Payment.recorded_at.desc(), Payment.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total
