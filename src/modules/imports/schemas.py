"""Schemas for the Imports module."""

from enum import StrEnum
from typing import Any

from pydantic import Field

from src.shared.schemas.base import BaseSchema


class ImportRowStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


class ImportRowResult(BaseSchema):
    """Outcome for one input row. Rows are numbered as the caller sees them."""

    row: int
    status: ImportRowStatus
    id: int | None = None
    errors: list[str] = Field(default_factory=list)


class ImportResult(BaseSchema):
    total_rows: int
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    rows: list[ImportRowResult] = Field(default_factory=list)


class FeeItemImportRequest(BaseSchema):
    """
    Loosely typed fee item rows.

    Keys: name, amount, is_compulsory, allow_installments, priority, description.
    """

    rows: list[dict[str, Any]]


class InvoiceImportRequest(BaseSchema):
    """
    Loosely typed invoice rows.

    Keys: invoice_number, admission_number, student_name, total_amount,
    amount_paid, due_date, term_id.
    """

    rows: list[dict[str, Any]]
    default_term_id: int | None = None
