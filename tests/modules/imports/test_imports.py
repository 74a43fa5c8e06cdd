"""Tests for the import reconciler."""

from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import ValidationError
from src.modules.fees.models import FeeItem
from src.modules.fees.schemas import FeeItemCreate, InstallmentSchema
from src.modules.fees.service import FeeCatalogService
from src.modules.imports.schemas import ImportRowStatus
from src.modules.imports.service import IMPORTED_LINE_DESCRIPTION, ImportReconciler
from src.modules.invoices.models import Invoice, InvoiceStatus
from src.modules.invoices.service import InvoiceService
from src.modules.payments.models import Payment, PaymentMethod
from src.modules.students.models import Student
from src.modules.terms.models import Term, TermStatus


def _statuses(result) -> list[str]:
    return [r.status.value for r in result.rows]


class TestImportFeeItems:
    async def test_insert_update_skip(self, db_session: AsyncSession):
        result = await ImportReconciler(db_session).import_fee_items(
            [
                {"name": "Tuition", "amount": "50,000", "is_compulsory": "Yes", "priority": "1"},
                {"name": "", "amount": "lots"},
                {"name": "TUITION", "amount": "55000"},
                {"name": "Lunch", "amount": "8000", "is_compulsory": "No", "priority": "2"},
            ],
            imported_by_id=1,
        )

        assert _statuses(result) == ["created", "skipped", "updated", "created"]
        assert (result.created, result.updated, result.skipped) == (2, 1, 1)
        assert result.rows[1].errors == [
            "name is required",
            "amount is not a valid amount: 'lots'",
        ]

        tuition = await FeeCatalogService(db_session).find_by_name("tuition")
        assert tuition.amount == Decimal("55000.00")
        assert tuition.name == "TUITION"
        lunch = await FeeCatalogService(db_session).find_by_name("Lunch")
        assert lunch.is_compulsory is False
        assert lunch.priority == 2

    async def test_reimport_is_unchanged(self, db_session: AsyncSession):
        rows = [{"name": "Books", "amount": "10000", "is_compulsory": "Yes"}]
        reconciler = ImportReconciler(db_session)
        await reconciler.import_fee_items(rows, 1)
        result = await reconciler.import_fee_items(rows, 1)

        assert _statuses(result) == ["unchanged"]
        count = (await db_session.execute(select(func.count()).select_from(FeeItem))).scalar_one()
        assert count == 1

    async def test_missing_amount_never_defaults_to_zero(self, db_session: AsyncSession):
        result = await ImportReconciler(db_session).import_fee_items(
            [{"name": "Trip", "amount": ""}, {"name": "Trip", "amount": "0"}], 1
        )
        assert _statuses(result) == ["skipped", "skipped"]
        assert result.rows[0].errors == ["amount is required"]
        assert result.rows[1].errors == ["amount must be greater than zero"]

    async def test_bad_flag_reported(self, db_session: AsyncSession):
        result = await ImportReconciler(db_session).import_fee_items(
            [{"name": "Trip", "amount": "100", "allow_installments": "sometimes"}], 1
        )
        assert result.rows[0].status == ImportRowStatus.SKIPPED
        assert "allow_installments" in result.rows[0].errors[0]

    async def test_existing_schedule_guards_amount_change(self, db_session: AsyncSession):
        await FeeCatalogService(db_session).save_fee_item(
            FeeItemCreate(
                name="Uniform",
                amount=Decimal("30000"),
                allow_installments=True,
                installments=[
                    InstallmentSchema(name="First", amount=Decimal("15000"), due_date=date(2024, 9, 1)),
                    InstallmentSchema(name="Second", amount=Decimal("15000")),
                ],
            ),
            saved_by_id=1,
        )

        result = await ImportReconciler(db_session).import_fee_items(
            [
                {"name": "uniform", "amount": "35000"},
                {"name": "Uniform", "amount": "30000", "priority": "4"},
            ],
            1,
        )

        assert _statuses(result) == ["skipped", "updated"]
        assert "difference 5000.00" in result.rows[0].errors[0]
        uniform = await FeeCatalogService(db_session).find_by_name("Uniform")
        assert uniform.amount == Decimal("30000.00")
        assert uniform.priority == 4
        assert len(uniform.installments) == 2

    async def test_row_limit(self, db_session: AsyncSession, monkeypatch):
        monkeypatch.setattr(settings, "max_import_rows", 2)
        with pytest.raises(ValidationError, match="limit is 2"):
            await ImportReconciler(db_session).import_fee_items(
                [{"name": f"Item {i}", "amount": "1"} for i in range(3)], 1
            )


class TestImportInvoices:
    async def test_requires_a_term(self, db_session: AsyncSession):
        with pytest.raises(ValidationError, match="No terms exist"):
            await ImportReconciler(db_session).import_invoices(
                [{"student_name": "Ada Obi", "total_amount": "100"}], 1
            )

    async def test_create_with_opening_payment(self, db_session: AsyncSession, school: dict):
        result = await ImportReconciler(db_session).import_invoices(
            [
                {
                    "invoice_number": "OLD-1",
                    "admission_number": "ADM-001",
                    "total_amount": "60000",
                    "amount_paid": "20000",
                    "due_date": "30/09/2024",
                }
            ],
            imported_by_id=1,
        )
        assert _statuses(result) == ["created"]

        invoice = await InvoiceService(db_session).find_by_number("OLD-1")
        assert invoice.student_id == school["students"][0].id
        assert invoice.term_id == school["term"].id
        assert invoice.due_date == date(2024, 9, 30)
        assert invoice.total_amount == Decimal("60000.00")
        assert invoice.amount_paid == Decimal("20000.00")
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID.value
        assert [(li.description, li.amount) for li in invoice.line_items] == [
            (IMPORTED_LINE_DESCRIPTION, Decimal("60000.00"))
        ]
        [payment] = invoice.payments
        assert payment.payment_method == PaymentMethod.OTHER.value
        assert payment.reference == "Import"

    async def test_reimport_is_idempotent(self, db_session: AsyncSession, school: dict):
        rows = [
            {
                "invoice_number": "OLD-1",
                "admission_number": "ADM-001",
                "total_amount": 60000,
                "amount_paid": 20000,
            }
        ]
        reconciler = ImportReconciler(db_session)
        await reconciler.import_invoices(rows, 1)
        result = await reconciler.import_invoices(rows, 1)

        assert _statuses(result) == ["unchanged"]
        invoices = (
            await db_session.execute(select(Invoice).where(Invoice.invoice_number == "OLD-1"))
        ).scalars().all()
        assert len(invoices) == 1
        payments = (await db_session.execute(select(func.count()).select_from(Payment))).scalar_one()
        assert payments == 1

    async def test_reimport_applies_paid_delta(self, db_session: AsyncSession, school: dict):
        reconciler = ImportReconciler(db_session)
        base = {"invoice_number": "OLD-1", "admission_number": "ADM-001", "total_amount": "60000"}
        await reconciler.import_invoices([{**base, "amount_paid": "20000"}], 1)

        result = await reconciler.import_invoices(
            [{**base, "amount_paid": "60000", "due_date": "2024-10-15"}], 1
        )
        assert _statuses(result) == ["updated"]

        invoice = await InvoiceService(db_session).find_by_number("OLD-1")
        assert invoice.amount_paid == Decimal("60000.00")
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.due_date == date(2024, 10, 15)
        assert sorted(p.amount for p in invoice.payments) == [Decimal("20000.00"), Decimal("40000.00")]

    async def test_reimport_rejections(self, db_session: AsyncSession, school: dict):
        reconciler = ImportReconciler(db_session)
        base = {"invoice_number": "OLD-1", "admission_number": "ADM-001"}
        await reconciler.import_invoices([{**base, "total_amount": "60000", "amount_paid": "20000"}], 1)

        result = await reconciler.import_invoices(
            [
                {**base, "total_amount": "65000"},
                {**base, "total_amount": "60000", "amount_paid": "10000"},
                {**base, "admission_number": "ADM-002", "total_amount": "60000"},
            ],
            1,
        )
        assert _statuses(result) == ["skipped", "skipped", "skipped"]
        assert "cannot change it" in result.rows[0].errors[0]
        assert "payment reversal" in result.rows[1].errors[0]
        assert "different student" in result.rows[2].errors[0]

        invoice = await InvoiceService(db_session).find_by_number("OLD-1")
        assert invoice.amount_paid == Decimal("20000.00")

    async def test_void_invoice_not_updated(self, db_session: AsyncSession, school: dict):
        reconciler = ImportReconciler(db_session)
        row = {"invoice_number": "OLD-1", "admission_number": "ADM-001", "total_amount": "100"}
        await reconciler.import_invoices([row], 1)
        invoice = await InvoiceService(db_session).find_by_number("OLD-1")
        await InvoiceService(db_session).void_invoice(invoice.id, 1)

        result = await reconciler.import_invoices([{**row, "amount_paid": "50"}], 1)
        assert "void" in result.rows[0].errors[0]

    async def test_student_resolution(self, db_session: AsyncSession, school: dict):
        db_session.add(Student(admission_number="ADM-009", full_name="Tunde Bello"))
        await db_session.commit()

        result = await ImportReconciler(db_session).import_invoices(
            [
                {"student_name": "ada obi", "total_amount": "100"},
                {"student_name": "Tunde Bello", "total_amount": "100"},
                {"admission_number": "ADM-404", "student_name": "Ada Obi", "total_amount": "100"},
                {"student_name": "Nobody", "total_amount": "100"},
                {"admission_number": "ADM-009", "student_name": "Tunde Bello", "total_amount": "100"},
            ],
            1,
        )
        assert _statuses(result) == ["created", "skipped", "skipped", "skipped", "created"]
        assert "use the admission number" in result.rows[1].errors[0]
        assert "ADM-404" in result.rows[2].errors[0]

        generated = await InvoiceService(db_session).get_invoice_by_id(result.rows[0].id)
        assert generated.invoice_number.startswith("INV-")
        assert generated.student_id == school["students"][0].id

    async def test_row_validation_collects_all_errors(self, db_session: AsyncSession, school: dict):
        result = await ImportReconciler(db_session).import_invoices(
            [
                {"total_amount": "", "amount_paid": "-1", "due_date": "someday", "term_id": "T1"},
                {"student_name": "Ada Obi", "total_amount": "100", "amount_paid": "150"},
            ],
            1,
            first_row=2,
        )
        first, second = result.rows
        assert first.row == 2
        assert first.errors == [
            "admission_number or student_name is required",
            "total_amount is required",
            "amount_paid cannot be negative",
            "due_date: invalid date 'someday'",
            "term_id must be a whole number, got 'T1'",
        ]
        assert second.row == 3
        assert second.errors == ["amount_paid 150.00 exceeds total_amount 100.00"]

    async def test_term_resolution(self, db_session: AsyncSession, school: dict):
        older = Term(year=2023, term_number=3, display_name="2023-T3", status=TermStatus.CLOSED.value)
        db_session.add(older)
        await db_session.commit()

        reconciler = ImportReconciler(db_session)
        result = await reconciler.import_invoices(
            [
                {"student_name": "Ada Obi", "total_amount": "100", "term_id": str(older.id)},
                {"student_name": "Ada Obi", "total_amount": "100", "term_id": "999"},
            ],
            1,
        )
        assert _statuses(result) == ["created", "skipped"]
        invoice = await InvoiceService(db_session).get_invoice_by_id(result.rows[0].id)
        assert invoice.term_id == older.id

        result = await reconciler.import_invoices(
            [{"student_name": "Ada Obi", "total_amount": "100"}], 1, default_term_id=older.id
        )
        invoice = await InvoiceService(db_session).get_invoice_by_id(result.rows[0].id)
        assert invoice.term_id == older.id


class TestImportsAPI:
    async def test_fee_items_csv(self, client: AsyncClient, staff_headers):
        content = (
            "Fee Name,Amount,Is Compulsory,Allow Installments,Priority,Description\n"
            "Tuition,50000,Yes,No,1,Core teaching\n"
            "Books,,Yes,No,2,\n"
        )
        response = await client.post(
            "/api/v1/imports/fee-items/csv",
            files={"file": ("fees.csv", content.encode(), "text/csv")},
            headers=staff_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "1 created, 0 updated, 0 unchanged, 1 skipped"
        assert [r["row"] for r in body["data"]["rows"]] == [2, 3]
        assert body["data"]["rows"][1]["errors"] == ["amount is required"]

    async def test_invoices_csv(self, client: AsyncClient, school: dict, staff_headers):
        content = (
            "Invoice Number,Student Name,Admission Number,Total Amount,Amount Paid,Due Date,Term\n"
            f"OLD-7,Tunde Bello,ADM-002,\"60,000.00\",60000,2024-09-30,{school['term'].id}\n"
        )
        response = await client.post(
            "/api/v1/imports/invoices/csv",
            files={"file": ("invoices.csv", content.encode(), "text/csv")},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["created"] == 1

        listing = await client.get("/api/v1/invoices", params={"search": "OLD-7"})
        item = listing.json()["data"]["items"][0]
        assert item["status"] == "paid"
        assert item["student_name"] == "Tunde Bello"

    async def test_invoices_json_without_terms(self, client: AsyncClient, staff_headers):
        response = await client.post(
            "/api/v1/imports/invoices",
            json={"rows": [{"student_name": "Ada Obi", "total_amount": 100}]},
            headers=staff_headers,
        )
        assert response.status_code == 422
        assert "No terms exist" in response.json()["message"]

    async def test_fee_items_json(self, client: AsyncClient, staff_headers):
        response = await client.post(
            "/api/v1/imports/fee-items",
            json={"rows": [{"name": "Sports", "amount": 2500, "is_compulsory": False}]},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"]["created"] == 1
