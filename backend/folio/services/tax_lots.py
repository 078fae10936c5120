"""Tax-lot queries, sale allocation preview, tax report and loss harvesting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.enums import CostBasisMethod
from folio.accounting.ledger import LotSelection, normalize_symbol
from folio.accounting.lots import LotState, apportion_commission, is_long_term, plan_allocation
from folio.accounting.tax import HarvestOpportunity, TaxReport, build_tax_report, harvest_opportunities
from folio.core.decimals import ZERO, q10
from folio.core.errors import NotFound, ValidationFailed
from folio.models import RealizedGain, TaxLot
from folio.providers.service import MarketDataService
from folio.services.ledger import project_portfolio
from folio.services.portfolios import load_owned_portfolio

logger = logging.getLogger(__name__)


def lot_state(row: TaxLot) -> LotState:
    return LotState(
        id=row.id,
        symbol=row.symbol,
        acquired_on=row.acquired_on,
        original_quantity=Decimal(row.original_quantity),
        remaining_quantity=Decimal(row.remaining_quantity),
        cost_basis=Decimal(row.cost_basis),
        cost_per_share=Decimal(row.cost_per_share),
        transaction_id=row.transaction_id,
        currency=row.currency,
        position=row.position,
    )


async def list_tax_lots(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    symbol: str | None = None,
    open_only: bool = False,
) -> list[TaxLot]:
    await load_owned_portfolio(session, portfolio_id, user_id)
    stmt = select(TaxLot).where(TaxLot.portfolio_id == portfolio_id)
    if symbol:
        stmt = stmt.where(TaxLot.symbol == normalize_symbol(symbol))
    if open_only:
        stmt = stmt.where(TaxLot.remaining_quantity > 0)
    stmt = stmt.order_by(TaxLot.symbol, TaxLot.acquired_on, TaxLot.position)
    return list((await session.execute(stmt)).scalars().all())


async def get_tax_lot(session: AsyncSession, portfolio_id: UUID, user_id: UUID, lot_id: UUID) -> TaxLot:
    await load_owned_portfolio(session, portfolio_id, user_id)
    lot = await session.get(TaxLot, lot_id)
    if lot is None or lot.portfolio_id != portfolio_id:
        raise NotFound("Tax lot not found", code="TAX_LOT_NOT_FOUND")
    return lot


@dataclass(frozen=True)
class AllocationLine:
    lot_id: UUID
    acquired_on: date
    quantity: Decimal
    cost_per_share: Decimal
    cost_basis: Decimal
    long_term: bool
    proceeds: Decimal | None = None
    gain: Decimal | None = None


@dataclass
class SalePreview:
    symbol: str
    quantity: Decimal
    method: CostBasisMethod
    lines: list[AllocationLine]
    price: Decimal | None = None
    commission: Decimal = ZERO

    @property
    def total_cost_basis(self) -> Decimal:
        return sum((line.cost_basis for line in self.lines), ZERO)

    @property
    def total_proceeds(self) -> Decimal | None:
        if self.price is None:
            return None
        return sum((line.proceeds or ZERO for line in self.lines), ZERO)

    @property
    def total_gain(self) -> Decimal | None:
        proceeds = self.total_proceeds
        if proceeds is None:
            return None
        return q10(proceeds - self.total_cost_basis)


async def allocate_sale(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    symbol: str,
    quantity: Decimal,
    method: CostBasisMethod | None = None,
    selections: Sequence[LotSelection] | None = None,
    price: Decimal | None = None,
    commission: Decimal = ZERO,
    on: date | None = None,
) -> SalePreview:
    """Plan which lots a sale would consume without writing anything."""

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    normalized = normalize_symbol(symbol)
    if quantity is None or quantity <= ZERO:
        raise ValidationFailed("quantity must be greater than zero", code="INVALID_QUANTITY")
    if price is not None and price <= ZERO:
        raise ValidationFailed("price must be positive", code="INVALID_PRICE")
    if commission < ZERO:
        raise ValidationFailed("commission cannot be negative", code="INVALID_COMMISSION")
    effective = method or portfolio.cost_basis_method
    if selections:
        effective = CostBasisMethod.SPECIFIC_LOT
    rows = await list_tax_lots(session, portfolio_id, user_id, symbol=normalized, open_only=True)
    allocations = plan_allocation([lot_state(row) for row in rows], normalized, quantity, effective, selections)
    disposed_on = on or date.today()
    fees = apportion_commission(allocations, commission)
    lines: list[AllocationLine] = []
    for allocation, fee in zip(allocations, fees):
        proceeds = gain = None
        if price is not None:
            proceeds = q10(allocation.quantity * price - fee)
            gain = q10(proceeds - allocation.cost_basis)
        lines.append(
            AllocationLine(
                lot_id=allocation.lot_id,
                acquired_on=allocation.acquired_on,
                quantity=allocation.quantity,
                cost_per_share=allocation.cost_per_share,
                cost_basis=allocation.cost_basis,
                long_term=is_long_term(allocation.acquired_on, disposed_on),
                proceeds=proceeds,
                gain=gain,
            )
        )
    return SalePreview(
        symbol=normalized,
        quantity=quantity,
        method=effective,
        lines=lines,
        price=price,
        commission=commission,
    )


async def list_realized_gains(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    symbol: str | None = None,
    year: int | None = None,
) -> list[RealizedGain]:
    await load_owned_portfolio(session, portfolio_id, user_id)
    stmt = select(RealizedGain).where(RealizedGain.portfolio_id == portfolio_id)
    if symbol:
        stmt = stmt.where(RealizedGain.symbol == normalize_symbol(symbol))
    if year is not None:
        stmt = stmt.where(
            RealizedGain.disposed_on >= date(year, 1, 1), RealizedGain.disposed_on <= date(year, 12, 31)
        )
    stmt = stmt.order_by(RealizedGain.disposed_on, RealizedGain.acquired_on)
    return list((await session.execute(stmt)).scalars().all())


async def tax_report(session: AsyncSession, portfolio_id: UUID, user_id: UUID, year: int) -> TaxReport:
    """Short- and long-term buckets of the gains realized in ``year``, replayed from the ledger."""

    if year < 1900 or year > 9999:
        raise ValidationFailed("year is out of range", code="INVALID_YEAR")
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    projection = await project_portfolio(session, portfolio)
    return build_tax_report(projection.gains, year)


async def harvest(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    min_loss_percent: Decimal = ZERO,
) -> list[HarvestOpportunity]:
    """Open lots below their cost basis at current prices.

    Symbols without a quote are omitted.
    """

    if min_loss_percent < ZERO:
        raise ValidationFailed("min_loss_percent cannot be negative", code="INVALID_THRESHOLD")
    rows = await list_tax_lots(session, portfolio_id, user_id, open_only=True)
    lots = [lot_state(row) for row in rows]
    prices = await market_data.current_prices({lot.symbol for lot in lots})
    opportunities = harvest_opportunities(
        lots, prices, as_of=date.today(), min_loss_percent=min_loss_percent
    )
    logger.debug("Found %d harvesting opportunities in portfolio %s", len(opportunities), portfolio_id)
    return opportunities


__all__ = [
    "AllocationLine",
    "SalePreview",
    "allocate_sale",
    "get_tax_lot",
    "harvest",
    "list_realized_gains",
    "list_tax_lots",
    "lot_state",
    "tax_report",
]
