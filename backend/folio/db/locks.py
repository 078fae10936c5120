"""Per-portfolio write serialization.

Every mutation of a portfolio's ledger or derived state runs under
``portfolio_lock``. Inside one process the lock is an ``asyncio.Lock`` keyed
by portfolio id; on PostgreSQL a transaction-scoped advisory lock extends the
guarantee across processes.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_for(key: str) -> asyncio.Lock:
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


def advisory_key(portfolio_id: UUID | str) -> int:
    """Fold a portfolio UUID into the signed 64-bit space of ``pg_advisory_xact_lock``."""

    value = portfolio_id.int if isinstance(portfolio_id, UUID) else UUID(str(portfolio_id)).int
    folded = (value >> 64) ^ (value & 0xFFFFFFFFFFFFFFFF)
    return folded - (1 << 64) if folded >= (1 << 63) else folded


@asynccontextmanager
async def portfolio_lock(session: AsyncSession, portfolio_id: UUID | str) -> AsyncIterator[None]:
    key = str(portfolio_id)
    lock = _lock_for(key)
    async with lock:
        bind = session.get_bind()
        if bind.dialect.name == "postgresql":
            await session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key(key)})
        yield


@asynccontextmanager
async def portfolio_write(session: AsyncSession, portfolio_id: UUID | str) -> AsyncIterator[None]:
    """Run a block as one locked unit of work: commit on success, roll back on any error."""

    async with portfolio_lock(session, portfolio_id):
        try:
            yield
        except BaseException:
            await session.rollback()
            raise
        await session.commit()


__all__ = ["advisory_key", "portfolio_lock", "portfolio_write"]
