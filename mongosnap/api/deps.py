"""
Request-scoped dependencies shared by the routers.
"""

from typing import Annotated

from fastapi import Header, HTTPException


async def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """
    Identity of the caller.

    Authentication happens upstream; the gateway forwards the user id in
    the ``X-User-Id`` header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()
