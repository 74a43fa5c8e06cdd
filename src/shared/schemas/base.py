"""
Response envelope shared by every endpoint.

Success: ``{success: true, data, message}``.
Failure: ``{success: false, data: null, message, errors: [{field, message}], details}``.
"""

from decimal import Decimal
from typing import Annotated, Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, PlainSerializer

from src.shared.utils.money import round_money

T = TypeVar("T")

# Amounts leave the API as strings with exactly two decimals
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: f"{round_money(v):.2f}", return_type=str, when_used="json"),
]


class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class SuccessResponse(BaseSchema, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


ApiResponse = SuccessResponse


class ErrorDetail(BaseSchema):
    """One problem with the request; ``field`` is a dotted path when known."""

    field: str | None = None
    message: str


class ErrorResponse(BaseSchema):
    success: bool = False
    data: None = None
    message: str
    errors: list[ErrorDetail] = []
    details: dict[str, Any] = {}


class PaginatedResponse(BaseSchema, Generic[T]):
    """One page of a listing plus the total across all pages."""

    items: list[T]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, limit: int) -> "PaginatedResponse[T]":
        return cls(items=items, total=total, page=page, limit=limit, pages=-(-total // limit) if limit else 0)
