"""Daily performance snapshots: immutable per (portfolio, date)."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.config import AppSettings, get_settings
from folio.core.decimals import percent, q10
from folio.core.errors import NotFound, ValidationFailed
from folio.models import PerformanceSnapshot, Portfolio
from folio.providers.service import MarketDataService
from folio.services.ledger import load_entries, projection_options
from folio.services.portfolios import load_owned_portfolio
from folio.services.valuation import PriceBook, value_ledger

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 30


async def _existing(session: AsyncSession, portfolio_id: UUID, day: date) -> PerformanceSnapshot | None:
    result = await session.execute(
        select(PerformanceSnapshot).where(
            PerformanceSnapshot.portfolio_id == portfolio_id, PerformanceSnapshot.date == day
        )
    )
    return result.scalar_one_or_none()


async def _previous(session: AsyncSession, portfolio_id: UUID, day: date) -> PerformanceSnapshot | None:
    result = await session.execute(
        select(PerformanceSnapshot)
        .where(PerformanceSnapshot.portfolio_id == portfolio_id, PerformanceSnapshot.date < day)
        .order_by(PerformanceSnapshot.date.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def snapshot_portfolio(
    session: AsyncSession,
    portfolio: Portfolio,
    market_data: MarketDataService,
    *,
    day: date | None = None,
    settings: AppSettings | None = None,
) -> tuple[PerformanceSnapshot, bool]:
    """Persist the valuation of ``portfolio`` on ``day``.

    An existing snapshot is never rewritten; it is returned with ``False``.
    """

    settings = settings or get_settings()
    day = day or date.today()
    if day > date.today():
        raise ValidationFailed("Cannot snapshot a future date", code="INVALID_DATE")
    portfolio_id = portfolio.id
    existing = await _existing(session, portfolio_id, day)
    if existing is not None:
        return existing, False

    entries = await load_entries(session, portfolio_id)
    book = PriceBook(market_data, fallback_days=settings.price_fallback_days)
    valuation = await value_ledger(entries, day, book, projection_options(portfolio, settings))
    total_value = q10(valuation.total_value)
    cost = q10(valuation.total_cost_basis)
    total_return = q10(total_value - cost)
    previous = await _previous(session, portfolio_id, day)
    day_change = day_change_pct = None
    if previous is not None:
        day_change = q10(total_value - previous.total_value)
        day_change_pct = percent(day_change, previous.total_value)

    snapshot = PerformanceSnapshot(
        portfolio_id=portfolio_id,
        date=day,
        total_value=total_value,
        total_cost_basis=cost,
        total_return=total_return,
        total_return_pct=percent(total_return, cost),
        day_change=day_change,
        day_change_pct=day_change_pct,
    )
    session.add(snapshot)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await _existing(session, portfolio_id, day)
        if existing is None:
            raise
        return existing, False
    await session.refresh(snapshot)
    logger.info("Snapshot for portfolio %s on %s: value %s", portfolio_id, day, total_value)
    return snapshot, True


async def generate_snapshot(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    day: date | None = None,
    settings: AppSettings | None = None,
) -> tuple[PerformanceSnapshot, bool]:
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    return await snapshot_portfolio(session, portfolio, market_data, day=day, settings=settings)


async def list_snapshots(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    start: date | None = None,
    end: date | None = None,
    limit: int | None = DEFAULT_LIST_LIMIT,
) -> list[PerformanceSnapshot]:
    """Snapshots newest first, optionally restricted to ``[start, end]``."""

    await load_owned_portfolio(session, portfolio_id, user_id)
    if start is not None and end is not None and end < start:
        raise ValidationFailed("start date must not be after end date", code="INVALID_DATE_RANGE")
    stmt = select(PerformanceSnapshot).where(PerformanceSnapshot.portfolio_id == portfolio_id)
    if start is not None:
        stmt = stmt.where(PerformanceSnapshot.date >= start)
    if end is not None:
        stmt = stmt.where(PerformanceSnapshot.date <= end)
    stmt = stmt.order_by(PerformanceSnapshot.date.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def latest_snapshot(session: AsyncSession, portfolio_id: UUID, user_id: UUID) -> PerformanceSnapshot:
    snapshots = await list_snapshots(session, portfolio_id, user_id, limit=1)
    if not snapshots:
        raise NotFound("No snapshots for this portfolio", code="SNAPSHOT_NOT_FOUND")
    return snapshots[0]


async def delete_snapshots_before(session: AsyncSession, cutoff: date) -> int:
    result = await session.execute(delete(PerformanceSnapshot).where(PerformanceSnapshot.date < cutoff))
    await session.commit()
    return result.rowcount or 0


def retention_cutoff(retention_days: int, today: date | None = None) -> date:
    return (today or date.today()) - timedelta(days=retention_days)


__all__ = [
    "delete_snapshots_before",
    "generate_snapshot",
    "latest_snapshot",
    "list_snapshots",
    "retention_cutoff",
    "snapshot_portfolio",
]
