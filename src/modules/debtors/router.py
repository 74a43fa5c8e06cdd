"""API endpoints for debtor reporting."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.modules.debtors.schemas import CollectionSummary, DebtorsResponse
from src.modules.debtors.service import DebtorService
from src.shared.schemas.base import ApiResponse
from src.shared.utils.money import ZERO

router = APIRouter(prefix="/debtors", tags=["Debtors"])


@router.get("", response_model=ApiResponse[DebtorsResponse])
async def list_debtors(
    student_id: int | None = Query(None, description="Limit to one student."),
    db: AsyncSession = Depends(get_db),
):
    """Students with a positive outstanding balance, largest first."""
    rows = await DebtorService(db).list_debtors(student_id=student_id)
    return ApiResponse(
        data=DebtorsResponse(
            rows=rows,
            debtor_count=len(rows),
            total_outstanding=sum((r.outstanding for r in rows), ZERO),
        )
    )


@router.get("/summary", response_model=ApiResponse[CollectionSummary])
async def get_collection_summary(
    term_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Invoiced, collected and outstanding totals; void invoices excluded."""
    summary = await DebtorService(db).get_collection_summary(term_id=term_id)
    return ApiResponse(data=summary)
