"""API endpoints for Payments module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.core.identity import CurrentUserId
from src.modules.payments.models import PaymentKind, PaymentMethod
from src.modules.payments.schemas import (
    PaymentCreate,
    PaymentFilters,
    PaymentResponse,
    PaymentReverseRequest,
)
from src.modules.payments.service import LedgerService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "",
    response_model=ApiResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    data: PaymentCreate,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Record a payment against an invoice. Overpayment is rejected."""
    service = LedgerService(db)
    payment = await service.record_payment(data, current_user_id)
    return ApiResponse(
        data=PaymentResponse.model_validate(payment),
        message="Payment recorded successfully",
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[PaymentResponse]],
)
async def list_payments(
    invoice_id: int | None = Query(None),
    student_id: int | None = Query(None),
    payment_method: PaymentMethod | None = Query(None),
    kind: PaymentKind | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List payments and reversals with optional filters."""
    service = LedgerService(db)
    filters = PaymentFilters(
        invoice_id=invoice_id,
        student_id=student_id,
        payment_method=payment_method,
        kind=kind,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    payments, total = await service.list_payments(filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[PaymentResponse.model_validate(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def get_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get payment by ID."""
    service = LedgerService(db)
    payment = await service.get_payment_by_id(payment_id)
    return ApiResponse(data=PaymentResponse.model_validate(payment))


@router.post(
    "/{payment_id}/reverse",
    response_model=ApiResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def reverse_payment(
    payment_id: int,
    current_user_id: CurrentUserId,
    data: PaymentReverseRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Append a reversal entry that offsets the payment."""
    service = LedgerService(db)
    reversal = await service.reverse_payment(
        payment_id, current_user_id, reason=data.reason if data else None
    )
    return ApiResponse(
        data=PaymentResponse.model_validate(reversal),
        message="Payment reversed",
    )
