"""Holdings queries, optionally enriched with market prices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.ledger import normalize_symbol
from folio.core.decimals import ZERO, dsum, percent, q10
from folio.core.errors import NotFound
from folio.models import Holding
from folio.providers.service import MarketDataService
from folio.services.portfolios import load_owned_portfolio

logger = logging.getLogger(__name__)


@dataclass
class HoldingView:
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    average_cost: Decimal
    currency: str
    current_price: Decimal | None = None
    market_value: Decimal | None = None
    unrealized_gain: Decimal | None = None
    unrealized_gain_percent: Decimal | None = None

    @classmethod
    def from_row(cls, row: Holding) -> "HoldingView":
        return cls(
            symbol=row.symbol,
            quantity=Decimal(row.quantity),
            cost_basis=Decimal(row.cost_basis),
            average_cost=Decimal(row.average_cost),
            currency=row.currency,
        )

    def enrich(self, price: Decimal) -> None:
        self.current_price = price
        self.market_value = q10(self.quantity * price)
        self.unrealized_gain = q10(self.market_value - self.cost_basis)
        self.unrealized_gain_percent = percent(self.unrealized_gain, self.cost_basis)


@dataclass
class HoldingsSummary:
    holdings: list[HoldingView]
    total_cost_basis: Decimal
    total_market_value: Decimal | None
    total_unrealized_gain: Decimal | None
    total_unrealized_gain_percent: Decimal | None
    priced: bool


async def _holding_rows(session: AsyncSession, portfolio_id: UUID) -> list[Holding]:
    result = await session.execute(
        select(Holding).where(Holding.portfolio_id == portfolio_id).order_by(Holding.symbol)
    )
    return [row for row in result.scalars().all() if row.quantity > ZERO]


async def _enrich(views: list[HoldingView], market_data: MarketDataService | None) -> None:
    if market_data is None or not views:
        return
    prices = await market_data.current_prices(view.symbol for view in views)
    for view in views:
        price = prices.get(view.symbol)
        if price is not None:
            view.enrich(price)


async def list_holdings(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    market_data: MarketDataService | None = None,
) -> list[HoldingView]:
    """Holdings with non-zero quantity; price fields stay empty when no quote is available."""

    await load_owned_portfolio(session, portfolio_id, user_id)
    views = [HoldingView.from_row(row) for row in await _holding_rows(session, portfolio_id)]
    await _enrich(views, market_data)
    return views


async def get_holding(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    symbol: str,
    *,
    market_data: MarketDataService | None = None,
) -> HoldingView:
    await load_owned_portfolio(session, portfolio_id, user_id)
    normalized = normalize_symbol(symbol)
    row = (
        await session.execute(
            select(Holding).where(Holding.portfolio_id == portfolio_id, Holding.symbol == normalized)
        )
    ).scalar_one_or_none()
    if row is None or row.quantity <= ZERO:
        raise NotFound(f"No {normalized} holding in this portfolio", code="HOLDING_NOT_FOUND")
    view = HoldingView.from_row(row)
    await _enrich([view], market_data)
    return view


async def summarize_holdings(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    market_data: MarketDataService | None = None,
) -> HoldingsSummary:
    views = await list_holdings(session, portfolio_id, user_id, market_data=market_data)
    cost = dsum(view.cost_basis for view in views)
    priced = bool(views) and all(view.market_value is not None for view in views)
    if priced:
        value = dsum(view.market_value or ZERO for view in views)
        gain = q10(value - cost)
        gain_pct = percent(gain, cost)
    else:
        value = gain = gain_pct = None
    return HoldingsSummary(
        holdings=views,
        total_cost_basis=cost,
        total_market_value=value,
        total_unrealized_gain=gain,
        total_unrealized_gain_percent=gain_pct,
        priced=priced,
    )


__all__ = ["HoldingView", "HoldingsSummary", "get_holding", "list_holdings", "summarize_holdings"]
