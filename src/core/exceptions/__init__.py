from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    ConflictError,
    IntegrityError,
    AuthenticationError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "IntegrityError",
    "AuthenticationError",
]
