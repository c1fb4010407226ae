from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from woozy.core.config import get_settings
from woozy.core.errors import api_error
from woozy.persistence.db import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


async def get_current_user_id(request: Request) -> str:
    # The upstream auth gateway verifies the token and forwards the user id in a header.
    header = get_settings().auth_user_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise api_error("Authentication required", "UNAUTHORIZED", 401)
    return user_id
