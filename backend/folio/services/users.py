"""User accounts."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.core.errors import Conflict, NotFound, Unauthorized, ValidationFailed
from folio.models import User
from folio.services.security import hash_password, verify_password

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


async def create_user(session: AsyncSession, *, email: str, name: str, password: str) -> User:
    normalized_email = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized_email):
        raise ValidationFailed("email is not valid", code="INVALID_EMAIL")
    if not name.strip():
        raise ValidationFailed("name is required", code="INVALID_NAME")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"password must be at least {MIN_PASSWORD_LENGTH} characters", code="WEAK_PASSWORD"
        )
    existing = await session.execute(select(User).where(User.email == normalized_email))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("Email is already registered", code="DUPLICATE_EMAIL")

    user = User(name=name.strip(), email=normalized_email, password_hash=hash_password(password))
    session.add(user)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("Email is already registered", code="DUPLICATE_EMAIL") from exc
    await session.refresh(user)
    logger.info("Created user %s", user.id)
    return user


async def get_user(session: AsyncSession, user_id: UUID) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    return user


async def authenticate(session: AsyncSession, *, email: str, password: str) -> User:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        raise Unauthorized("Invalid email or password", code="INVALID_CREDENTIALS")
    user.last_login_at = datetime.now(timezone.utc)
    await session.commit()
    await session.refresh(user)
    return user


__all__ = ["authenticate", "create_user", "get_user"]
