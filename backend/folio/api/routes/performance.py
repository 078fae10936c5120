"""Performance and snapshot endpoints."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.dependencies import (
    get_current_user,
    get_db_session,
    get_market_data,
    get_settings_dependency,
)
from folio.config import AppSettings
from folio.models import User
from folio.providers.service import MarketDataService
from folio.schemas import (
    AnnualizedReturnSchema,
    BenchmarkSchema,
    MWRSchema,
    PerformanceMetricsSchema,
    SnapshotCreateRequest,
    SnapshotCreateResponse,
    SnapshotSchema,
    TWRSchema,
)
from folio.services import performance, snapshots

router = APIRouter()


@router.get("/{portfolio_id}/performance", response_model=PerformanceMetricsSchema)
async def get_metrics(
    portfolio_id: UUID,
    start: date | None = None,
    end: date | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
    settings: AppSettings = Depends(get_settings_dependency),
) -> PerformanceMetricsSchema:
    metrics = await performance.calculate_metrics(
        session, portfolio_id, current_user.id, market_data, start=start, end=end, settings=settings
    )
    return PerformanceMetricsSchema.model_validate(metrics)


@router.get("/{portfolio_id}/performance/twr", response_model=TWRSchema)
async def get_twr(
    portfolio_id: UUID,
    start: date | None = None,
    end: date | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
    settings: AppSettings = Depends(get_settings_dependency),
) -> TWRSchema:
    result = await performance.calculate_twr(
        session, portfolio_id, current_user.id, market_data, start=start, end=end, settings=settings
    )
    return TWRSchema.model_validate(result)


@router.get("/{portfolio_id}/performance/mwr", response_model=MWRSchema)
async def get_mwr(
    portfolio_id: UUID,
    start: date | None = None,
    end: date | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
    settings: AppSettings = Depends(get_settings_dependency),
) -> MWRSchema:
    result = await performance.calculate_mwr(
        session, portfolio_id, current_user.id, market_data, start=start, end=end, settings=settings
    )
    return MWRSchema.model_validate(result)


@router.get("/{portfolio_id}/performance/annualized", response_model=AnnualizedReturnSchema)
async def get_annualized(
    portfolio_id: UUID,
    start: date | None = None,
    end: date | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
    settings: AppSettings = Depends(get_settings_dependency),
) -> AnnualizedReturnSchema:
    window_start, window_end, start_value, end_value, annualized = await performance.calculate_annualized_return(
        session, portfolio_id, current_user.id, market_data, start=start, end=end, settings=settings
    )
    return AnnualizedReturnSchema(
        start=window_start,
        end=window_end,
        start_value=start_value,
        end_value=end_value,
        annualized_return=annualized,
    )


@router.get("/{portfolio_id}/performance/benchmark", response_model=BenchmarkSchema)
async def get_benchmark(
    portfolio_id: UUID,
    symbol: str = Query(..., min_length=1, max_length=20),
    start: date | None = None,
    end: date | None = None,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
    settings: AppSettings = Depends(get_settings_dependency),
) -> BenchmarkSchema:
    result = await performance.compare_benchmark(
        session,
        portfolio_id,
        current_user.id,
        market_data,
        symbol=symbol,
        start=start,
        end=end,
        settings=settings,
    )
    return BenchmarkSchema.model_validate(result)


@router.get("/{portfolio_id}/snapshots", response_model=list[SnapshotSchema])
async def get_snapshots(
    portfolio_id: UUID,
    start: date | None = None,
    end: date | None = None,
    limit: int = Query(default=snapshots.DEFAULT_LIST_LIMIT, ge=1, le=3660),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[SnapshotSchema]:
    rows = await snapshots.list_snapshots(session, portfolio_id, current_user.id, start=start, end=end, limit=limit)
    return [SnapshotSchema.model_validate(row) for row in rows]


@router.get("/{portfolio_id}/snapshots/latest", response_model=SnapshotSchema)
async def get_latest_snapshot(
    portfolio_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> SnapshotSchema:
    row = await snapshots.latest_snapshot(session, portfolio_id, current_user.id)
    return SnapshotSchema.model_validate(row)


@router.post(
    "/{portfolio_id}/snapshots",
    response_model=SnapshotCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_snapshot(
    portfolio_id: UUID,
    payload: SnapshotCreateRequest | None = Body(default=None),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    market_data: MarketDataService = Depends(get_market_data),
    settings: AppSettings = Depends(get_settings_dependency),
) -> SnapshotCreateResponse:
    snapshot, created = await snapshots.generate_snapshot(
        session,
        portfolio_id,
        current_user.id,
        market_data,
        day=payload.date if payload else None,
        settings=settings,
    )
    return SnapshotCreateResponse(snapshot=SnapshotSchema.model_validate(snapshot), created=created)


__all__ = ["router"]
