"""API endpoints for Fee Catalog module."""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database.session import get_db
from src.core.identity import CurrentUserId
from src.modules.fees.schemas import FeeItemCreate, FeeItemResponse
from src.modules.fees.service import FeeCatalogService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/fee-items", tags=["Fee Items"])


@router.get("", response_model=ApiResponse[list[FeeItemResponse]])
async def list_fee_items(
    compulsory_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """List fee items ordered by collection priority."""
    service = FeeCatalogService(db)
    items = await service.list_fee_items(compulsory_only=compulsory_only)
    return ApiResponse(data=[FeeItemResponse.model_validate(i) for i in items])


@router.post("", response_model=ApiResponse[FeeItemResponse])
async def save_fee_item(
    data: FeeItemCreate,
    response: Response,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Create a fee item, or update the existing one with the same name."""
    service = FeeCatalogService(db)
    item, created = await service.save_fee_item(data, current_user_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return ApiResponse(
        data=FeeItemResponse.model_validate(item),
        message="Fee item created" if created else "Fee item updated",
    )


@router.get("/{fee_item_id}", response_model=ApiResponse[FeeItemResponse])
async def get_fee_item(
    fee_item_id: int,
    db: AsyncSession = Depends(get_db),
):
    service = FeeCatalogService(db)
    item = await service.get_fee_item(fee_item_id)
    return ApiResponse(data=FeeItemResponse.model_validate(item))


@router.put("/{fee_item_id}", response_model=ApiResponse[FeeItemResponse])
async def update_fee_item(
    fee_item_id: int,
    data: FeeItemCreate,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    service = FeeCatalogService(db)
    item, _ = await service.save_fee_item(data, current_user_id, fee_item_id=fee_item_id)
    return ApiResponse(data=FeeItemResponse.model_validate(item), message="Fee item updated")


@router.delete("/{fee_item_id}", response_model=ApiResponse[None])
async def delete_fee_item(
    fee_item_id: int,
    current_user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
):
    """Delete a fee item. Invoices already generated keep their line snapshot."""
    service = FeeCatalogService(db)
    await service.delete_fee_item(fee_item_id, current_user_id)
    return ApiResponse(data=None, message="Fee item deleted")
