"""Schemas for Fee Catalog module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from src.shared.schemas.base import Money


class InstallmentSchema(BaseModel):
    """One part of a fee item's payment schedule."""

    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal
    due_date: date | None = None


class FeeItemCreate(BaseModel):
    """
    Schema for creating or updating a fee item.

    Presence and positivity of name/amount and the installment sum are checked
    by the catalog service, so imports and API calls share one rule.
    """

    name: str | None = Field(None, max_length=200)
    description: str | None = None
    amount: Decimal | None = None
    is_compulsory: bool = True
    allow_installments: bool = False
    priority: int = 1
    installments: list[InstallmentSchema] = Field(default_factory=list)


class FeeItemResponse(BaseModel):
    """Schema for fee item response."""

    id: int
    name: str
    description: str | None
    amount: Money
    is_compulsory: bool
    allow_installments: bool
    priority: int
    installments: list[InstallmentSchema]

    model_config = {"from_attributes": True}
