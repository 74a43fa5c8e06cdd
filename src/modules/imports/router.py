"""API endpoints for fee item and invoice imports."""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.core.identity import CurrentUserId
from src.modules.imports.schemas import FeeItemImportRequest, ImportResult, InvoiceImportRequest
from src.modules.imports.service import FEE_ITEM_COLUMNS, INVOICE_COLUMNS, ImportReconciler
from src.shared.schemas.base import ApiResponse
from src.shared.utils.csv_rows import read_csv_rows

router = APIRouter(prefix="/imports", tags=["Imports"])

# Header is row 1 of an uploaded file
CSV_FIRST_DATA_ROW = 2


def _import_message(result: ImportResult) -> str:
    return (
        f"{result.created} created, {result.updated} updated, "
        f"{result.unchanged} unchanged, {result.skipped} skipped"
    )


@router.post("/fee-items", response_model=ApiResponse[ImportResult])
async def import_fee_items(
    data: FeeItemImportRequest,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Import fee items; existing items are matched by name ignoring case."""
    result = await ImportReconciler(db).import_fee_items(data.rows, current_user_id)
    return ApiResponse(data=result, message=_import_message(result))


@router.post("/fee-items/csv", response_model=ApiResponse[ImportResult])
async def import_fee_items_csv(
    current_user_id: CurrentUserId,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
):
    """
    Import fee items from CSV.

    Columns: Fee Name, Amount, Is Compulsory, Allow Installments, Priority,
    Description. Booleans are Yes/No.
    """
    rows = read_csv_rows(await file.read(), FEE_ITEM_COLUMNS)
    result = await ImportReconciler(db).import_fee_items(
        rows, current_user_id, first_row=CSV_FIRST_DATA_ROW
    )
    return ApiResponse(data=result, message=_import_message(result))


@router.post("/invoices", response_model=ApiResponse[ImportResult])
async def import_invoices(
    data: InvoiceImportRequest,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Import invoices; existing invoices are matched by invoice number."""
    result = await ImportReconciler(db).import_invoices(
        data.rows, current_user_id, default_term_id=data.default_term_id
    )
    return ApiResponse(data=result, message=_import_message(result))


@router.post("/invoices/csv", response_model=ApiResponse[ImportResult])
async def import_invoices_csv(
    current_user_id: CurrentUserId,
    file: UploadFile = File(...),
    default_term_id: int | None = Form(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Import invoices from CSV.

    Columns: Invoice Number, Student Name, Admission Number, Total Amount,
    Amount Paid, Due Date, Term.
    """
    rows = read_csv_rows(await file.read(), INVOICE_COLUMNS)
    result = await ImportReconciler(db).import_invoices(
        rows,
        current_user_id,
        first_row=CSV_FIRST_DATA_ROW,
        default_term_id=default_term_id,
    )
    return ApiResponse(data=result, message=_import_message(result))
