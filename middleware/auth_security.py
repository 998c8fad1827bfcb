"""
Caller identity for the trade API.

Authentication happens upstream (gateway / session service); by the time a request
reaches the trade routes the authenticated user id is in the X-User-Id header.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> int:
    """FastAPI dependency: authenticated caller id or 401"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        logger.warning(f"AUTH_INVALID_USER_HEADER: {x_user_id!r}")
        raise HTTPException(status_code=401, detail="Invalid user identity")
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Invalid user identity")
    return user_id
