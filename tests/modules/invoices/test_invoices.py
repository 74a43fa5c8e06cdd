"""Tests for invoice generation, queries and void."""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog
from src.core.audit.service import AuditService
from src.core.config import settings
from src.core.documents.number_generator import format_document_number
from src.core.exceptions import ConflictError, IntegrityError, NotFoundError, ValidationError
from src.modules.imports.service import ImportReconciler
from src.modules.invoices.models import (
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    settlement_status,
)
from src.modules.invoices.schemas import InvoiceCreate, InvoiceFilters, InvoiceGenerationRequest
from src.modules.invoices.service import InvoiceService, LineSnapshot
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import LedgerService

DUE = date(2024, 9, 30)


def _request(school: dict, **overrides) -> InvoiceGenerationRequest:
    data = {
        "student_ids": [s.id for s in school["students"]],
        "term_id": school["term"].id,
        "fee_item_ids": [f.id for f in school["fee_items"]],
        "due_date": DUE,
    }
    data.update(overrides)
    return InvoiceGenerationRequest(**data)


async def _count(db_session: AsyncSession, model) -> int:
    return (await db_session.execute(select(func.count()).select_from(model))).scalar_one()


class TestSettlementStatus:
    @pytest.mark.parametrize(
        "paid,expected",
        [
            ("0", InvoiceStatus.UNPAID),
            ("0.01", InvoiceStatus.PARTIALLY_PAID),
            ("59999.99", InvoiceStatus.PARTIALLY_PAID),
            ("60000", InvoiceStatus.PAID),
        ],
    )
    def test_derivation(self, paid, expected):
        assert settlement_status(Decimal(paid), Decimal("60000")) == expected

    def test_overdue_is_view_time_only(self):
        invoice = Invoice(
            status=InvoiceStatus.PARTIALLY_PAID.value,
            due_date=DUE,
            total_amount=Decimal("100"),
            amount_paid=Decimal("50"),
        )
        assert invoice.is_overdue(today=DUE + timedelta(days=1)) is True
        assert invoice.is_overdue(today=DUE) is False

        invoice.status = InvoiceStatus.PAID.value
        assert invoice.is_overdue(today=DUE + timedelta(days=1)) is False
        invoice.status = InvoiceStatus.VOID.value
        assert invoice.is_overdue(today=DUE + timedelta(days=1)) is False


class TestInvoiceGeneration:
    async def test_one_invoice_per_student(self, db_session: AsyncSession, school: dict):
        service = InvoiceService(db_session)
        result = await service.generate_invoices(_request(school), generated_by_id=1)

        assert result.invoices_created == 2
        assert result.total_amount == Decimal("60000.00")
        assert result.failures == []

        for invoice_id, student in zip(result.invoice_ids, school["students"]):
            invoice = await service.get_invoice_by_id(invoice_id)
            assert invoice.student_id == student.id
            assert invoice.total_amount == Decimal("60000.00")
            assert invoice.amount_paid == Decimal("0.00")
            assert invoice.status == InvoiceStatus.UNPAID.value
            assert invoice.due_date == DUE
            assert [(li.description, li.amount) for li in invoice.line_items] == [
                ("Tuition", Decimal("50000.00")),
                ("Books", Decimal("10000.00")),
            ]
            assert sum(li.amount for li in invoice.line_items) == invoice.total_amount

    async def test_invoice_numbers_are_unique_sequence(self, db_session: AsyncSession, school: dict):
        service = InvoiceService(db_session)
        first = await service.generate_invoices(_request(school), 1)
        second = await service.generate_invoices(_request(school), 1)

        numbers = (await db_session.execute(select(Invoice.invoice_number))).scalars().all()
        assert len(numbers) == len(set(numbers)) == 4
        assert all(n.startswith("INV-") for n in numbers)
        assert first.invoice_ids[0] != second.invoice_ids[0]

    async def test_line_amounts_are_frozen(self, db_session: AsyncSession, school: dict):
        service = InvoiceService(db_session)
        result = await service.generate_invoices(_request(school), 1)

        tuition = school["fee_items"][0]
        tuition.amount = Decimal("99999.00")
        await db_session.commit()

        invoice = await service.get_invoice_by_id(result.invoice_ids[0])
        assert invoice.total_amount == Decimal("60000.00")
        assert invoice.line_items[0].amount == Decimal("50000.00")

    @pytest.mark.parametrize("field", ["student_ids", "fee_item_ids"])
    async def test_empty_selection_is_noop(self, db_session: AsyncSession, school: dict, field):
        result = await InvoiceService(db_session).generate_invoices(
            _request(school, **{field: []}), 1
        )
        assert result.invoices_created == 0
        assert result.total_students_processed == 0
        assert await _count(db_session, Invoice) == 0

    async def test_duplicate_student_ids_ignored(self, db_session: AsyncSession, school: dict):
        ada = school["students"][0]
        result = await InvoiceService(db_session).generate_invoices(
            _request(school, student_ids=[ada.id, ada.id]), 1
        )
        assert result.invoices_created == 1
        assert result.total_students_processed == 1

    async def test_unknown_student_reported_not_fatal(self, db_session: AsyncSession, school: dict):
        ada = school["students"][0]
        result = await InvoiceService(db_session).generate_invoices(
            _request(school, student_ids=[999, ada.id]), 1
        )
        assert result.invoices_created == 1
        assert [f.student_id for f in result.failures] == [999]

    async def test_unknown_fee_item_or_term_fails_request(self, db_session: AsyncSession, school: dict):
        service = InvoiceService(db_session)
        with pytest.raises(NotFoundError):
            await service.generate_invoices(_request(school, fee_item_ids=[404]), 1)
        with pytest.raises(NotFoundError):
            await service.generate_invoices(_request(school, term_id=404), 1)

    async def test_failed_line_items_roll_back_that_student_only(
        self, db_session: AsyncSession, school: dict, monkeypatch
    ):
        ada, tunde = school["students"]
        original = InvoiceService._write_line_items

        async def flaky_write(self, invoice, lines):
            await original(self, invoice, lines[:1])
            if invoice.student_id == tunde.id:
                raise SQLAlchemyError("disk full")
            await original(self, invoice, lines[1:])

        monkeypatch.setattr(InvoiceService, "_write_line_items", flaky_write)

        result = await InvoiceService(db_session).generate_invoices(_request(school), 1)

        assert result.invoices_created == 1
        assert result.total_students_processed == 2
        assert [f.student_id for f in result.failures] == [tunde.id]
        assert "nothing was saved" in result.failures[0].error

        invoices = (await db_session.execute(select(Invoice))).scalars().all()
        assert [i.student_id for i in invoices] == [ada.id]
        # no orphan line items and no invoice without its lines
        assert await _count(db_session, InvoiceLineItem) == 2

    async def test_unit_raises_integrity_error(self, db_session: AsyncSession, school: dict, monkeypatch):
        async def broken_write(self, invoice, lines):
            raise SQLAlchemyError("constraint")

        monkeypatch.setattr(InvoiceService, "_write_line_items", broken_write)
        with pytest.raises(IntegrityError):
            await InvoiceService(db_session).create_invoice_unit(
                student_id=school["students"][0].id,
                term_id=school["term"].id,
                lines=[LineSnapshot(description="Tuition", amount=Decimal("100.00"))],
                created_by_id=1,
            )
        assert await _count(db_session, Invoice) == 0

    async def test_generation_skips_numbers_taken_by_explicit_invoices(
        self, db_session: AsyncSession, school: dict
    ):
        year = date.today().year
        taken = format_document_number(settings.invoice_number_prefix, year, 1)
        await ImportReconciler(db_session).import_invoices(
            [{"invoice_number": taken, "admission_number": "ADM-001", "total_amount": "100"}], 1
        )

        result = await InvoiceService(db_session).generate_invoices(_request(school), 1)

        assert result.invoices_created == 2
        assert result.failures == []
        numbers = (
            await db_session.execute(
                select(Invoice.invoice_number).where(Invoice.id.in_(result.invoice_ids))
            )
        ).scalars().all()
        assert sorted(numbers) == [
            format_document_number(settings.invoice_number_prefix, year, serial) for serial in (2, 3)
        ]

    async def test_unit_retries_when_number_taken_concurrently(
        self, db_session: AsyncSession, school: dict, monkeypatch
    ):
        service = InvoiceService(db_session)
        await service.create_invoice_unit(
            student_id=school["students"][0].id,
            term_id=school["term"].id,
            lines=[LineSnapshot(description="Old balance", amount=Decimal("5.00"))],
            created_by_id=1,
            invoice_number="RACED-1",
        )
        issued = iter(["RACED-1", "FRESH-1"])

        async def stale_then_fresh():
            return next(issued)

        monkeypatch.setattr(service, "_next_free_invoice_number", stale_then_fresh)
        invoice = await service.create_invoice_unit(
            student_id=school["students"][1].id,
            term_id=school["term"].id,
            lines=[LineSnapshot(description="Tuition", amount=Decimal("10.00"))],
            created_by_id=1,
        )
        assert invoice.invoice_number == "FRESH-1"
        assert await _count(db_session, Invoice) == 2

    async def test_unit_requires_positive_total(self, db_session: AsyncSession, school: dict):
        with pytest.raises(ValidationError):
            await InvoiceService(db_session).create_invoice_unit(
                student_id=school["students"][0].id,
                term_id=school["term"].id,
                lines=[],
                created_by_id=1,
            )

    async def test_generation_is_audited(self, db_session: AsyncSession, school: dict):
        await InvoiceService(db_session).generate_invoices(_request(school), 3)
        log = (await db_session.execute(select(AuditLog))).scalar_one()
        assert log.action == "invoice.generate"
        assert log.record_id == school["term"].id
        assert log.actor_id == 3
        assert log.after["invoices_created"] == 2


class TestDirectInvoiceCreation:
    async def test_explicit_number(self, db_session: AsyncSession, school: dict):
        service = InvoiceService(db_session)
        invoice = await service.create_invoice(
            InvoiceCreate(
                student_id=school["students"][0].id,
                term_id=school["term"].id,
                fee_item_ids=[school["fee_items"][1].id],
                invoice_number="LEGACY-17",
            ),
            created_by_id=1,
        )
        assert invoice.invoice_number == "LEGACY-17"
        assert invoice.total_amount == Decimal("10000.00")

    async def test_duplicate_number_conflicts(self, db_session: AsyncSession, school: dict):
        service = InvoiceService(db_session)
        data = InvoiceCreate(
            student_id=school["students"][0].id,
            term_id=school["term"].id,
            fee_item_ids=[school["fee_items"][1].id],
            invoice_number="LEGACY-17",
        )
        await service.create_invoice(data, 1)
        with pytest.raises(ConflictError):
            await service.create_invoice(data, 1)

    async def test_generated_number_skips_imported_number(self, db_session: AsyncSession, school: dict):
        taken = format_document_number(settings.invoice_number_prefix, date.today().year, 1)
        await ImportReconciler(db_session).import_invoices(
            [{"invoice_number": taken, "admission_number": "ADM-001", "total_amount": "100"}], 1
        )

        invoice = await InvoiceService(db_session).create_invoice(
            InvoiceCreate(
                student_id=school["students"][1].id,
                term_id=school["term"].id,
                fee_item_ids=[school["fee_items"][1].id],
            ),
            created_by_id=1,
        )
        assert invoice.invoice_number != taken
        assert invoice.invoice_number.endswith("-000002")

    async def test_number_taken_after_check_conflicts(
        self, db_session: AsyncSession, school: dict, monkeypatch
    ):
        service = InvoiceService(db_session)
        data = InvoiceCreate(
            student_id=school["students"][0].id,
            term_id=school["term"].id,
            fee_item_ids=[school["fee_items"][1].id],
            invoice_number="LEGACY-17",
        )
        await service.create_invoice(data, 1)

        async def not_found_yet(number):
            return None

        monkeypatch.setattr(service, "find_by_number", not_found_yet)
        with pytest.raises(ConflictError):
            await service.create_invoice(data, 1)
        assert await _count(db_session, Invoice) == 1

    async def test_unknown_student(self, db_session: AsyncSession, school: dict):
        with pytest.raises(NotFoundError):
            await InvoiceService(db_session).create_invoice(
                InvoiceCreate(
                    student_id=404,
                    term_id=school["term"].id,
                    fee_item_ids=[school["fee_items"][0].id],
                ),
                1,
            )


class TestInvoiceQueries:
    async def _generate(self, db_session: AsyncSession, school: dict) -> list[int]:
        result = await InvoiceService(db_session).generate_invoices(_request(school), 1)
        return result.invoice_ids

    async def test_filter_by_status(self, db_session: AsyncSession, school: dict):
        ids = await self._generate(db_session, school)
        await LedgerService(db_session).record_payment(
            PaymentCreate(invoice_id=ids[0], amount=Decimal("100"), payment_method=PaymentMethod.CASH),
            1,
        )
        service = InvoiceService(db_session)

        partial, total = await service.list_invoices(
            InvoiceFilters(status=InvoiceStatus.PARTIALLY_PAID)
        )
        assert total == 1
        assert partial[0].id == ids[0]

        unpaid, total = await service.list_invoices(InvoiceFilters(status=InvoiceStatus.UNPAID))
        assert [i.id for i in unpaid] == [ids[1]]

    @pytest.mark.parametrize("search", ["tunde", "ADM-002", "bello"])
    async def test_search_by_student(self, db_session: AsyncSession, school: dict, search):
        ids = await self._generate(db_session, school)
        invoices, total = await InvoiceService(db_session).list_invoices(InvoiceFilters(search=search))
        assert total == 1
        assert invoices[0].id == ids[1]

    async def test_search_by_invoice_number(self, db_session: AsyncSession, school: dict):
        ids = await self._generate(db_session, school)
        service = InvoiceService(db_session)
        number = (await service.get_invoice_by_id(ids[0])).invoice_number

        invoices, _ = await service.list_invoices(InvoiceFilters(search=number))
        assert [i.id for i in invoices] == [ids[0]]

    async def test_overdue_filter(self, db_session: AsyncSession, school: dict):
        await self._generate(db_session, school)
        service = InvoiceService(db_session)

        _, before_due = await service.list_invoices(InvoiceFilters(overdue=True), today=DUE)
        _, after_due = await service.list_invoices(
            InvoiceFilters(overdue=True), today=DUE + timedelta(days=1)
        )
        _, not_overdue = await service.list_invoices(
            InvoiceFilters(overdue=False), today=DUE + timedelta(days=1)
        )
        assert (before_due, after_due, not_overdue) == (0, 2, 0)

    async def test_pagination(self, db_session: AsyncSession, school: dict):
        await self._generate(db_session, school)
        page, total = await InvoiceService(db_session).list_invoices(InvoiceFilters(page=2, limit=1))
        assert total == 2
        assert len(page) == 1


class TestVoidInvoice:
    async def test_void_unpaid_and_refuse_payments(self, db_session: AsyncSession, school: dict):
        result = await InvoiceService(db_session).generate_invoices(_request(school), 1)
        invoice = await InvoiceService(db_session).void_invoice(result.invoice_ids[0], 1, reason="Left school")
        assert invoice.status == InvoiceStatus.VOID.value

        history = await AuditService(db_session).list_for_record("Invoice", invoice.id)
        assert [(h.action, h.reason) for h in history] == [("invoice.void", "Left school")]

        with pytest.raises(ValidationError, match="void"):
            await LedgerService(db_session).record_payment(
                PaymentCreate(
                    invoice_id=invoice.id, amount=Decimal("10"), payment_method=PaymentMethod.CASH
                ),
                1,
            )

    async def test_void_partially_paid_freezes_amounts(self, db_session: AsyncSession, school: dict):
        result = await InvoiceService(db_session).generate_invoices(_request(school), 1)
        invoice_id = result.invoice_ids[0]
        await LedgerService(db_session).record_payment(
            PaymentCreate(invoice_id=invoice_id, amount=Decimal("20000"), payment_method=PaymentMethod.POS),
            1,
        )
        invoice = await InvoiceService(db_session).void_invoice(invoice_id, 1)
        assert invoice.status == InvoiceStatus.VOID.value
        assert invoice.amount_paid == Decimal("20000.00")

    @pytest.mark.parametrize("settle", [True, False])
    async def test_paid_or_void_cannot_be_voided(self, db_session: AsyncSession, school: dict, settle):
        service = InvoiceService(db_session)
        result = await service.generate_invoices(_request(school), 1)
        invoice_id = result.invoice_ids[0]
        if settle:
            await LedgerService(db_session).record_payment(
                PaymentCreate(
                    invoice_id=invoice_id, amount=Decimal("60000"), payment_method=PaymentMethod.CASH
                ),
                1,
            )
        else:
            await service.void_invoice(invoice_id, 1)

        with pytest.raises(ValidationError, match="Cannot void"):
            await service.void_invoice(invoice_id, 1)


class TestInvoicesAPI:
    async def test_generate_scenario(self, client: AsyncClient, school: dict, staff_headers):
        response = await client.post(
            "/api/v1/invoices/generate",
            json={
                "student_ids": [s.id for s in school["students"]],
                "term_id": school["term"].id,
                "fee_item_ids": [f.id for f in school["fee_items"]],
                "due_date": "2024-09-30",
            },
            headers=staff_headers,
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["invoices_created"] == 2
        assert Decimal(data["total_amount"]) == Decimal("60000")

        detail = await client.get(f"/api/v1/invoices/{data['invoice_ids'][0]}")
        invoice = detail.json()["data"]
        assert invoice["status"] == "unpaid"
        assert Decimal(invoice["amount_paid"]) == Decimal("0")
        assert Decimal(invoice["balance"]) == Decimal("60000")
        assert invoice["student_name"] == "Ada Obi"
        assert invoice["term_name"] == "2024-T1"
        assert invoice["is_overdue"] is True  # due date long past
        assert len(invoice["line_items"]) == 2

    async def test_generate_with_empty_students(self, client: AsyncClient, school: dict, staff_headers):
        response = await client.post(
            "/api/v1/invoices/generate",
            json={
                "student_ids": [],
                "term_id": school["term"].id,
                "fee_item_ids": [f.id for f in school["fee_items"]],
                "due_date": "2024-09-30",
            },
            headers=staff_headers,
        )
        assert response.status_code == 201
        assert response.json()["data"]["invoices_created"] == 0

    async def test_create_conflict_is_409(self, client: AsyncClient, school: dict, staff_headers):
        payload = {
            "student_id": school["students"][0].id,
            "term_id": school["term"].id,
            "fee_item_ids": [school["fee_items"][0].id],
            "invoice_number": "OLD-1",
        }
        first = await client.post("/api/v1/invoices", json=payload, headers=staff_headers)
        second = await client.post("/api/v1/invoices", json=payload, headers=staff_headers)
        assert first.status_code == 201
        assert second.status_code == 409

    async def test_list_and_void(self, client: AsyncClient, school: dict, staff_headers):
        generated = await client.post(
            "/api/v1/invoices/generate",
            json={
                "student_ids": [s.id for s in school["students"]],
                "term_id": school["term"].id,
                "fee_item_ids": [school["fee_items"][0].id],
                "due_date": "2099-01-01",
            },
            headers=staff_headers,
        )
        invoice_id = generated.json()["data"]["invoice_ids"][0]

        voided = await client.post(
            f"/api/v1/invoices/{invoice_id}/void",
            json={"reason": "Duplicate"},
            headers=staff_headers,
        )
        assert voided.status_code == 200
        assert voided.json()["data"]["status"] == "void"

        listing = await client.get("/api/v1/invoices", params={"status": "unpaid"})
        page = listing.json()["data"]
        assert page["total"] == 1
        assert page["items"][0]["is_overdue"] is False

        again = await client.post(f"/api/v1/invoices/{invoice_id}/void", headers=staff_headers)
        assert again.status_code == 422
