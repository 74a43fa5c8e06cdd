from src.shared.schemas.base import (
    ApiResponse,
    BaseSchema,
    ErrorDetail,
    ErrorResponse,
    Money,
    PaginatedResponse,
    SuccessResponse,
)

__all__ = [
    "ApiResponse",
    "BaseSchema",
    "ErrorDetail",
    "ErrorResponse",
    "Money",
    "PaginatedResponse",
    "SuccessResponse",
]
