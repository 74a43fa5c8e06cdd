"""Download endpoints for invoice, debtor and fee item listings."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.exports.service import ExportService
from src.modules.invoices.models import InvoiceStatus
from src.modules.invoices.schemas import InvoiceFilters

router = APIRouter(prefix="/exports", tags=["Exports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _invoice_filters(
    student_id: int | None = Query(None),
    term_id: int | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    overdue: bool | None = Query(None),
    search: str | None = Query(None),
) -> InvoiceFilters:
    return InvoiceFilters(
        student_id=student_id,
        term_id=term_id,
        status=status,
        overdue=overdue,
        search=search,
    )


@router.get("/invoices.csv")
async def export_invoices_csv(
    filters: InvoiceFilters = Depends(_invoice_filters),
    db: AsyncSession = Depends(get_db),
):
    """Invoices as CSV: number, student, admission number, total, paid, balance, status, due date."""
    content = await ExportService(db).invoices_csv(filters)
    return _attachment(content, "text/csv; charset=utf-8", "invoices.csv")


@router.get("/invoices.xlsx")
async def export_invoices_xlsx(
    filters: InvoiceFilters = Depends(_invoice_filters),
    db: AsyncSession = Depends(get_db),
):
    content = await ExportService(db).invoices_xlsx(filters)
    return _attachment(content, XLSX_MEDIA_TYPE, "invoices.xlsx")


@router.get("/debtors.csv")
async def export_debtors_csv(db: AsyncSession = Depends(get_db)):
    content = await ExportService(db).debtors_csv()
    return _attachment(content, "text/csv; charset=utf-8", "debtors.csv")


@router.get("/debtors.xlsx")
async def export_debtors_xlsx(db: AsyncSession = Depends(get_db)):
    content = await ExportService(db).debtors_xlsx()
    return _attachment(content, XLSX_MEDIA_TYPE, "debtors.xlsx")


@router.get("/fee-items.csv")
async def export_fee_items_csv(db: AsyncSession = Depends(get_db)):
    """Fee catalog in the column layout the fee item CSV import accepts."""
    content = await ExportService(db).fee_items_csv()
    return _attachment(content, "text/csv; charset=utf-8", "fee-items.csv")


@router.get("/fee-items.xlsx")
async def export_fee_items_xlsx(db: AsyncSession = Depends(get_db)):
    content = await ExportService(db).fee_items_xlsx()
    return _attachment(content, XLSX_MEDIA_TYPE, "fee-items.xlsx")
