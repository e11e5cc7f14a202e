"""Minimal auth dependency.

Stub implementation that reads the user id from the bearer token or uses a
development default. Real token validation belongs to the auth provider in
front of this service.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status

from backend.app.db.context import RequestContext

DEV_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


async def get_current_context(
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Extract request context from authorization header.

    Accepts:
    - "Bearer <user_id>" where user_id is a UUID
    - no header, which maps to the development user

    Args:
        authorization: Authorization header (e.g., "Bearer <token>")

    Returns:
        RequestContext with user_id

    Raises:
        HTTPException: If authorization is invalid
    """
    if not authorization:
        return RequestContext(user_id=DEV_USER_ID)

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:]  # Strip "Bearer "

    try:
        return RequestContext(user_id=uuid.UUID(token))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token (expected user id)",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
