"""
Request identity supplied by the upstream session layer.
"""

from http import HTTPStatus
from typing import Optional

from fastapi import Header, HTTPException


def get_current_user_id(
    x_user_id: Optional[str] = Header(
        default=None,
        alias="X-User-Id",
        description="Authenticated user identifier set by the session gateway.",
    ),
) -> str:
    """FastAPI dependency returning the caller's user id."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Authentication required.",
        )
    return user_id


__all__ = ["get_current_user_id"]
