"""Flat tabular projections of invoices, debtors and the fee catalog."""

from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.shared.utils.csv_rows import write_csv
from src.shared.utils.money import ZERO
from src.modules.debtors.service import DebtorService
from src.modules.exports.excel_export import build_listing_xlsx
from src.modules.fees.service import FeeCatalogService
from src.modules.invoices.schemas import InvoiceFilters
from src.modules.invoices.service import InvoiceService

INVOICE_HEADERS = [
    "Invoice Number",
    "Student Name",
    "Admission Number",
    "Total",
    "Paid",
    "Balance",
    "Status",
    "Due Date",
]
DEBTOR_HEADERS = [
    "Student Name",
    "Admission Number",
    "Total Invoiced",
    "Total Paid",
    "Outstanding",
    "Invoice Count",
    "Oldest Due Date",
]
# Same labels the fee item CSV import reads
FEE_ITEM_HEADERS = [
    "Fee Name",
    "Amount",
    "Is Compulsory",
    "Allow Installments",
    "Priority",
    "Description",
]


class ExportService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def invoice_rows(self, filters: InvoiceFilters, today: date | None = None) -> list[list[Any]]:
        invoices = await InvoiceService(self.db).export_invoices(filters, today=today)
        return [
            [
                inv.invoice_number,
                inv.student.full_name if inv.student else "",
                inv.student.admission_number if inv.student else "",
                inv.total_amount,
                inv.amount_paid,
                inv.balance,
                inv.status,
                inv.due_date,
            ]
            for inv in invoices
        ]

    async def debtor_rows(self, student_id: int | None = None) -> list[list[Any]]:
        debtors = await DebtorService(self.db).list_debtors(student_id=student_id)
        return [
            [
                d.student_name,
                d.admission_number,
                d.total_invoiced,
                d.total_paid,
                d.outstanding,
                d.invoice_count,
                d.oldest_due_date,
            ]
            for d in debtors
        ]

    async def invoices_csv(self, filters: InvoiceFilters) -> bytes:
        rows = await self.invoice_rows(filters)
        return write_csv(INVOICE_HEADERS, _iso_dates(rows))

    async def invoices_xlsx(self, filters: InvoiceFilters) -> bytes:
        rows = await self.invoice_rows(filters)
        total = sum((r[3] for r in rows), ZERO)
        paid = sum((r[4] for r in rows), ZERO)
        balance = sum((r[5] for r in rows), ZERO)
        return build_listing_xlsx(
            f"Invoices ({settings.currency_code})",
            INVOICE_HEADERS,
            rows,
            totals=["TOTAL", "", "", total, paid, balance, "", ""],
            money_columns=(4, 5, 6),
        )

    async def fee_item_rows(self) -> list[list[Any]]:
        items = await FeeCatalogService(self.db).list_fee_items()
        return [
            [
                item.name,
                item.amount,
                _yes_no(item.is_compulsory),
                _yes_no(item.allow_installments),
                item.priority,
                item.description,
            ]
            for item in items
        ]

    async def fee_items_csv(self) -> bytes:
        return write_csv(FEE_ITEM_HEADERS, await self.fee_item_rows())

    async def fee_items_xlsx(self) -> bytes:
        rows = await self.fee_item_rows()
        return build_listing_xlsx(
            f"Fee Items ({settings.currency_code})",
            FEE_ITEM_HEADERS,
            rows,
            money_columns=(2,),
        )

    async def debtors_csv(self) -> bytes:
        rows = await self.debtor_rows()
        return write_csv(DEBTOR_HEADERS, _iso_dates(rows))

    async def debtors_xlsx(self) -> bytes:
        rows = await self.debtor_rows()
        outstanding = sum((r[4] for r in rows), ZERO)
        return build_listing_xlsx(
            f"Debtors ({settings.currency_code})",
            DEBTOR_HEADERS,
            rows,
            totals=["TOTAL OUTSTANDING", "", "", "", outstanding, "", ""],
            money_columns=(3, 4, 5),
        )


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _iso_dates(rows: list[list[Any]]) -> list[list[Any]]:
    return [[v.isoformat() if isinstance(v, date) else v for v in row] for row in rows]
