"""API endpoints for Invoices module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.core.identity import CurrentUserId
from src.modules.invoices.models import Invoice, InvoiceStatus
from src.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceFilters,
    InvoiceGenerationRequest,
    InvoiceGenerationResult,
    InvoiceLineItemResponse,
    InvoicePaymentEntry,
    InvoiceResponse,
    InvoiceSummary,
    InvoiceVoidRequest,
)
from src.modules.invoices.service import InvoiceService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def _invoice_to_response(invoice: Invoice, today: date | None = None) -> InvoiceResponse:
    """Convert Invoice model to response schema."""
    return InvoiceResponse(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        admission_number=invoice.student.admission_number if invoice.student else None,
        term_id=invoice.term_id,
        term_name=invoice.term.display_name if invoice.term else None,
        status=invoice.status,
        is_overdue=invoice.is_overdue(today),
        due_date=invoice.due_date,
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
        balance=invoice.balance,
        notes=invoice.notes,
        created_by_id=invoice.created_by_id,
        created_at=invoice.created_at,
        line_items=[InvoiceLineItemResponse.model_validate(line) for line in invoice.line_items],
        payments=[InvoicePaymentEntry.model_validate(p) for p in invoice.payments],
    )


def _invoice_to_summary(invoice: Invoice, today: date | None = None) -> InvoiceSummary:
    """Convert Invoice model to summary schema."""
    return InvoiceSummary(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        term_id=invoice.term_id,
        status=invoice.status,
        is_overdue=invoice.is_overdue(today),
        total_amount=invoice.total_amount,
        amount_paid=invoice.amount_paid,
        balance=invoice.balance,
        due_date=invoice.due_date,
    )


@router.post(
    "/generate",
    response_model=ApiResponse[InvoiceGenerationResult],
    status_code=status.HTTP_201_CREATED,
)
async def generate_invoices(
    data: InvoiceGenerationRequest,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Generate one invoice per student for the selected fee items."""
    service = InvoiceService(db)
    result = await service.generate_invoices(data, current_user_id)
    return ApiResponse(
        data=result,
        message=f"Generated {result.invoices_created} invoices",
    )


@router.post(
    "",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Create a single invoice. A taken invoice number is a conflict."""
    service = InvoiceService(db)
    invoice = await service.create_invoice(data, current_user_id)
    return ApiResponse(
        data=_invoice_to_response(invoice),
        message="Invoice created successfully",
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InvoiceSummary]],
)
async def list_invoices(
    student_id: int | None = Query(None),
    term_id: int | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    overdue: bool | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List invoices with optional filters."""
    service = InvoiceService(db)
    filters = InvoiceFilters(
        student_id=student_id,
        term_id=term_id,
        status=status,
        overdue=overdue,
        search=search,
        page=page,
        limit=limit,
    )
    today = date.today()
    invoices, total = await service.list_invoices(filters, today=today)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[_invoice_to_summary(inv, today) for inv in invoices],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get invoice by ID with line items and ledger entries."""
    service = InvoiceService(db)
    invoice = await service.get_invoice_by_id(invoice_id)
    return ApiResponse(data=_invoice_to_response(invoice))


@router.post(
    "/{invoice_id}/void",
    response_model=ApiResponse[InvoiceResponse],
)
async def void_invoice(
    invoice_id: int,
    current_user_id: CurrentUserId,
    data: InvoiceVoidRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Void an unpaid or partially paid invoice."""
    service = InvoiceService(db)
    invoice = await service.void_invoice(
        invoice_id, current_user_id, reason=data.reason if data else None
    )
    return ApiResponse(
        data=_invoice_to_response(invoice),
        message="Invoice voided",
    )
