"""Request-scoped dependencies shared by the routers."""

from __future__ import annotations

from typing import AsyncIterator
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from folio.config import AppSettings
from folio.core.errors import NotFound, Unauthorized
from folio.jobs.scheduler import Scheduler
from folio.models import User
from folio.providers.service import MarketDataService
from folio.services.users import get_user


async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.database.session() as session:
        yield session


def get_settings_dependency(request: Request) -> AppSettings:
    return request.app.state.settings


def get_market_data(request: Request) -> MarketDataService:
    return request.app.state.market_data


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Resolve the caller from the ``X-User-Id`` header set by the upstream gateway."""

    if not x_user_id:
        raise Unauthorized("Missing user identity", code="MISSING_IDENTITY")
    try:
        user_id = UUID(x_user_id.strip())
    except ValueError:
        raise Unauthorized("Invalid user identity", code="INVALID_IDENTITY") from None
    try:
        return await get_user(session, user_id)
    except NotFound:
        raise Unauthorized("Unknown user identity", code="UNKNOWN_IDENTITY") from None


__all__ = [
    "get_current_user",
    "get_db_session",
    "get_market_data",
    "get_scheduler",
    "get_settings_dependency",
]
