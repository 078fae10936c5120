"""Holding, tax-lot and tax reporting endpoints."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.ledger import LotSelection
from folio.api.dependencies import get_current_user, get_db_session, get_market_data
from folio.models import User
from folio.providers.service import MarketDataService
from folio.schemas import (
    AllocateSaleRequest,
    HarvestOpportunitySchema,
    HoldingSchema,
    HoldingsSummarySchema,
    RealizedGainSchema,
    SalePreviewSchema,
    TaxLotSchema,
    TaxReportSchema,
)
from folio.services import holdings, tax_lots

router = APIRouter()


@router.get("/{portfolio_id}/holdings", response_model=list[HoldingSchema])
async def get_holdings(
    portfolio_id: UUID,
    enrich: bool = Query(default=True, description="Add market price fields when quotes are available"),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
) -> list[HoldingSchema]:
    views = await holdings.list_holdings(
        session, portfolio_id, current_user.id, market_data=market_data if enrich else None
    )
    return [HoldingSchema.model_validate(view) for view in views]


@router.get("/{portfolio_id}/holdings/summary", response_model=HoldingsSummarySchema)
async def get_holdings_summary(
    portfolio_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
) -> HoldingsSummarySchema:
    summary = await holdings.summarize_holdings(session, portfolio_id, current_user.id, market_data=market_data)
    return HoldingsSummarySchema.model_validate(summary)


@router.get("/{portfolio_id}/holdings/{symbol}", response_model=HoldingSchema)
async def get_holding(
    portfolio_id: UUID,
    symbol: str,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
) -> HoldingSchema:
    view = await holdings.get_holding(session, portfolio_id, current_user.id, symbol, market_data=market_data)
    return HoldingSchema.model_validate(view)


@router.get("/{portfolio_id}/tax-lots", response_model=list[TaxLotSchema])
async def get_tax_lots(
    portfolio_id: UUID,
    symbol: str | None = None,
    open_only: bool = False,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[TaxLotSchema]:
    rows = await tax_lots.list_tax_lots(
        session, portfolio_id, current_user.id, symbol=symbol, open_only=open_only
    )
    return [TaxLotSchema.model_validate(row) for row in rows]


@router.post("/{portfolio_id}/tax-lots/allocate", response_model=SalePreviewSchema)
async def post_allocate_sale(
    portfolio_id: UUID,
    payload: AllocateSaleRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> SalePreviewSchema:
    selections = [LotSelection(lot_id=item.lot_id, quantity=item.quantity) for item in payload.selections or []]
    preview = await tax_lots.allocate_sale(
        session,
        portfolio_id,
        current_user.id,
        symbol=payload.symbol,
        quantity=payload.quantity,
        method=payload.method,
        selections=selections or None,
        price=payload.price,
        commission=payload.commission,
        on=payload.on,
    )
    return SalePreviewSchema.model_validate(preview)


@router.get("/{portfolio_id}/tax-lots/harvest", response_model=list[HarvestOpportunitySchema])
async def get_harvest_opportunities(
    portfolio_id: UUID,
    min_loss_percent: Decimal = Query(default=Decimal("0"), ge=0),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
) -> list[HarvestOpportunitySchema]:
    opportunities = await tax_lots.harvest(
        session, portfolio_id, current_user.id, market_data, min_loss_percent=min_loss_percent
    )
    return [HarvestOpportunitySchema.model_validate(item) for item in opportunities]


@router.get("/{portfolio_id}/tax-lots/{lot_id}", response_model=TaxLotSchema)
async def get_tax_lot(
    portfolio_id: UUID,
    lot_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> TaxLotSchema:
    row = await tax_lots.get_tax_lot(session, portfolio_id, current_user.id, lot_id)
    return TaxLotSchema.model_validate(row)


@router.get("/{portfolio_id}/realized-gains", response_model=list[RealizedGainSchema])
async def get_realized_gains(
    portfolio_id: UUID,
    symbol: str | None = None,
    year: int | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[RealizedGainSchema]:
    rows = await tax_lots.list_realized_gains(session, portfolio_id, current_user.id, symbol=symbol, year=year)
    return [RealizedGainSchema.model_validate(row) for row in rows]


@router.get("/{portfolio_id}/tax-report/{year}", response_model=TaxReportSchema)
async def get_tax_report(
    portfolio_id: UUID,
    year: int,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> TaxReportSchema:
    report = await tax_lots.tax_report(session, portfolio_id, current_user.id, year)
    return TaxReportSchema.model_validate(report)


__all__ = ["router"]
