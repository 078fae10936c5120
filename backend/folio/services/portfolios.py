"""Portfolio CRUD scoped by owner, plus the ownership check every other service uses."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.enums import CostBasisMethod
from folio.accounting.ledger import normalize_currency
from folio.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from folio.models import Portfolio

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


async def load_owned_portfolio(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    hide_foreign: bool = False,
) -> Portfolio:
    """Return the portfolio when ``user_id`` owns it.

    The owner column is checked before the row is loaded. A foreign
    portfolio raises ``Forbidden`` or, with ``hide_foreign``, the same
    ``NotFound`` a missing one does.
    """

    owner = (
        await session.execute(select(Portfolio.user_id).where(Portfolio.id == portfolio_id))
    ).scalar_one_or_none()
    if owner is None or (hide_foreign and owner != user_id):
        raise NotFound("Portfolio not found", code="PORTFOLIO_NOT_FOUND")
    if owner != user_id:
        raise Forbidden("You do not have access to this portfolio")
    portfolio = await session.get(Portfolio, portfolio_id)
    if portfolio is None:  # pragma: no cover - deleted between the two reads
        raise NotFound("Portfolio not found", code="PORTFOLIO_NOT_FOUND")
    return portfolio


def _normalize_name(name: str | None) -> str:
    normalized = (name or "").strip()
    if not normalized or len(normalized) > MAX_NAME_LENGTH:
        raise ValidationFailed(f"name must be 1-{MAX_NAME_LENGTH} characters", code="INVALID_NAME")
    return normalized


def _normalize_method(method: str | CostBasisMethod | None) -> CostBasisMethod:
    if method is None:
        return CostBasisMethod.FIFO
    try:
        return CostBasisMethod(method)
    except ValueError:
        raise ValidationFailed(
            f"cost basis method must be one of FIFO, LIFO, SPECIFIC_LOT (got {method})",
            code="INVALID_COST_BASIS_METHOD",
        ) from None


async def _ensure_unique_name(
    session: AsyncSession, user_id: UUID, name: str, *, exclude: UUID | None = None
) -> None:
    stmt = select(Portfolio.id).where(Portfolio.user_id == user_id, Portfolio.name == name)
    if exclude is not None:
        stmt = stmt.where(Portfolio.id != exclude)
    if (await session.execute(stmt)).first() is not None:
        raise Conflict(f"A portfolio named {name!r} already exists", code="DUPLICATE_NAME")


async def create_portfolio(
    session: AsyncSession,
    user_id: UUID,
    *,
    name: str,
    description: str | None = None,
    base_currency: str | None = None,
    cost_basis_method: str | CostBasisMethod | None = None,
) -> Portfolio:
    normalized = _normalize_name(name)
    await _ensure_unique_name(session, user_id, normalized)
    portfolio = Portfolio(
        user_id=user_id,
        name=normalized,
        description=description.strip() if description else None,
        base_currency=normalize_currency(base_currency),
        cost_basis_method=_normalize_method(cost_basis_method),
    )
    session.add(portfolio)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict(f"A portfolio named {normalized!r} already exists", code="DUPLICATE_NAME") from exc
    await session.refresh(portfolio)
    logger.info("Created portfolio %s for user %s", portfolio.id, user_id)
    return portfolio


async def list_portfolios(session: AsyncSession, user_id: UUID) -> list[Portfolio]:
    result = await session.execute(
        select(Portfolio).where(Portfolio.user_id == user_id).order_by(Portfolio.created_at, Portfolio.name)
    )
    return list(result.scalars().all())


async def get_portfolio(session: AsyncSession, portfolio_id: UUID, user_id: UUID) -> Portfolio:
    return await load_owned_portfolio(session, portfolio_id, user_id)


async def update_portfolio(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    name: str | None = None,
    description: str | None = None,
    base_currency: str | None = None,
    cost_basis_method: str | CostBasisMethod | None = None,
) -> Portfolio:
    """Update portfolio attributes.

    Changing the cost-basis method only affects SELLs appended afterwards;
    existing SELLs keep the method frozen on them.
    """

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    if name is not None:
        normalized = _normalize_name(name)
        await _ensure_unique_name(session, user_id, normalized, exclude=portfolio.id)
        portfolio.name = normalized
    if description is not None:
        portfolio.description = description.strip() or None
    if base_currency is not None:
        portfolio.base_currency = normalize_currency(base_currency)
    if cost_basis_method is not None:
        portfolio.cost_basis_method = _normalize_method(cost_basis_method)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("A portfolio with this name already exists", code="DUPLICATE_NAME") from exc
    await session.refresh(portfolio)
    return portfolio


async def delete_portfolio(session: AsyncSession, portfolio_id: UUID, user_id: UUID) -> None:
    """Delete the portfolio; the database cascades to its ledger and derived rows."""

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    await session.delete(portfolio)
    await session.commit()
    logger.info("Deleted portfolio %s", portfolio_id)


__all__ = [
    "create_portfolio",
    "delete_portfolio",
    "get_portfolio",
    "list_portfolios",
    "load_owned_portfolio",
    "update_portfolio",
]
