from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id={identifier} not found"
        super().__init__(
            message=message,
            status_code=404,
            details={"resource": resource, "identifier": identifier},
        )


class ValidationError(AppException):
    """Validation error.

    Extra keyword arguments end up in ``details`` so callers can correct their
    input, e.g. the numeric discrepancy of an installment schedule.
    """

    def __init__(self, message: str, field: str | None = None, **extra: Any):
        details: dict[str, Any] = {"field": field} if field else {}
        details.update(extra)
        super().__init__(message=message, status_code=422, details=details)


class ConflictError(AppException):
    """Resource with the same unique key already exists."""

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})


class IntegrityError(AppException):
    """A multi-row write failed part way and was rolled back."""

    def __init__(self, message: str, **extra: Any):
        super().__init__(message=message, status_code=500, details=dict(extra))


class AuthenticationError(AppException):
    """Caller identity missing or malformed."""

    def __init__(self, message: str = "Caller identity required"):
        super().__init__(message=message, status_code=401)
