import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.core.config import settings
from src.core.exceptions import AppException
from src.shared.schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

# Constraint fragments that can still surface past the service checks
# (races, imports with explicit numbers): (fragment, message, field, status)
LEDGER_CONSTRAINTS: list[tuple[str, str, str | None, int]] = [
    ("invoice_number", "Invoice number already exists", "invoice_number", 409),
    ("payment_number", "Payment number already exists", "payment_number", 409),
    ("reverses_payment_id", "Payment has already been reversed", "payment_id", 409),
    ("amount_paid_bounds", "Payment exceeds invoice balance", "amount", 422),
    ("fee_items_name_lower", "Fee item with this name already exists", "name", 409),
]


def _envelope(
    status_code: int,
    message: str,
    errors: list[ErrorDetail],
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    response = ErrorResponse(message=message, errors=errors, details=details or {})
    return JSONResponse(status_code=status_code, content=jsonable_encoder(response.model_dump()))


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Ledger errors carry their own status and details."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    errors = [ErrorDetail(field=exc.details.get("field"), message=exc.message)]
    return _envelope(exc.status_code, exc.message, errors, exc.details)


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    formatted: list[ErrorDetail] = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        formatted.append(
            ErrorDetail(field=".".join(loc) or None, message=error.get("msg", "Invalid value"))
        )
    return formatted


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _envelope(422, "Validation error", _format_validation_errors(exc.errors()))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = str(exc.detail) if exc.detail else "HTTP error"
    return _envelope(exc.status_code, message, [ErrorDetail(message=message)])


def friendly_db_error(exc: Exception) -> tuple[str, str | None, int]:
    """
    Map a database error to (message, field, status).

    Raw driver text is only exposed when debug is on.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if "does not exist" in lower and "column" in lower:
        return ("Database schema is out of date. Run the latest migrations.", None, 500)

    if "unique" in lower or "duplicate" in lower or "check" in lower:
        for fragment, message, field, status_code in LEDGER_CONSTRAINTS:
            if fragment in lower:
                return (message, field, status_code)

    return (raw if settings.debug else "Database error", None, 500)


async def sqlalchemy_db_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    message, field, status_code = friendly_db_error(exc)
    if status_code >= 500:
        logger.exception("Database error on %s %s", request.method, request.url.path)
    else:
        logger.warning("Constraint rejected %s %s: %s", request.method, request.url.path, message)
    return _envelope(status_code, message, [ErrorDetail(field=field, message=message)])
