"""
Courtside — Shared API dependencies.

Authentication happens upstream (gateway); the authenticated player's ID is
forwarded in the ``X-User-Id`` header and trusted here.
"""

from __future__ import annotations

import uuid

from fastapi import Header, HTTPException, status


async def get_current_user_id(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> uuid.UUID:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id is not a valid UUID",
        )
