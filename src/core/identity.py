from typing import Annotated

from fastapi import Depends, Header

from src.core.exceptions import AuthenticationError


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> int:
    """
    Staff member id forwarded by the authenticating gateway.

    Usage:
        @router.post("/payments")
        async def record(user_id: CurrentUserId):
            ...
    """
    if not x_user_id:
        raise AuthenticationError("X-User-Id header required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise AuthenticationError("X-User-Id must be an integer")
    if user_id <= 0:
        raise AuthenticationError("X-User-Id must be positive")
    return user_id


CurrentUserId = Annotated[int, Depends(get_current_user_id)]
