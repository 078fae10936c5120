"""Portfolio performance over a closed date window.

Valuations come from a persisted snapshot when one exists for the date and
from replaying the ledger up to that date and pricing it otherwise. The
default window runs from the first transaction date to today.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.ledger import LedgerEntry, normalize_symbol
from folio.accounting.performance import (
    BenchmarkResult,
    CashFlow,
    CashFlowKind,
    MWRResult,
    TWRResult,
    annualized_return,
    cash_flows_from_ledger,
    compare_to_benchmark,
    money_weighted_return,
    net_flows_by_date,
    simple_return,
    span_years,
    time_weighted_return,
)
from folio.config import AppSettings, get_settings
from folio.core.decimals import dsum
from folio.core.errors import NoConvergence, UpstreamUnavailable, ValidationFailed
from folio.models import PerformanceSnapshot, Portfolio
from folio.providers.service import MarketDataService
from folio.services.ledger import load_entries, projection_options
from folio.services.portfolios import load_owned_portfolio
from folio.services.valuation import PriceBook, value_ledger

logger = logging.getLogger(__name__)


class PortfolioEvaluator:
    """Values one portfolio on arbitrary dates inside a window."""

    def __init__(
        self,
        portfolio: Portfolio,
        entries: Sequence[LedgerEntry],
        market_data: MarketDataService,
        *,
        snapshots: dict[date, Decimal] | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.portfolio = portfolio
        self.entries = list(entries)
        self.snapshots = snapshots or {}
        self.options: dict[str, Any] = projection_options(portfolio, settings)
        self.book = PriceBook(market_data, fallback_days=settings.price_fallback_days)
        self._values: dict[date, Decimal] = {}

    @property
    def symbols(self) -> set[str]:
        return {entry.symbol for entry in self.entries} | {
            entry.related_symbol for entry in self.entries if entry.related_symbol
        }

    async def prepare(self, start: date, end: date) -> None:
        await self.book.prefetch(self.symbols, start, end)

    async def value_on(self, day: date) -> Decimal:
        if day in self._values:
            return self._values[day]
        if day in self.snapshots:
            value = self.snapshots[day]
        else:
            value = (await value_ledger(self.entries, day, self.book, self.options)).total_value
        self._values[day] = value
        return value

    async def values_after_flows(self, flows: Sequence[CashFlow], start: date, end: date) -> dict[date, Decimal]:
        values: dict[date, Decimal] = {}
        for flow_date in net_flows_by_date(flows):
            if start < flow_date <= end:
                values[flow_date] = await self.value_on(flow_date)
        return values


@dataclass
class PerformanceMetrics:
    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    total_deposits: Decimal
    total_withdrawals: Decimal
    total_dividends: Decimal
    net_cash_flow: Decimal
    years: float
    sub_periods: int
    twr: Decimal
    annualized_twr: Decimal | None
    mwr: Decimal | None
    annualized_mwr: Decimal | None
    annualized_return: Decimal | None
    total_return: Decimal | None
    mwr_error: str | None = None


async def _evaluator(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    start: date | None,
    end: date | None,
    settings: AppSettings | None,
) -> tuple[PortfolioEvaluator, date, date]:
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    entries = await load_entries(session, portfolio.id)
    end = end or date.today()
    if start is None:
        start = min((entry.trade_date for entry in entries), default=end)
    if end < start:
        raise ValidationFailed("start date must not be after end date", code="INVALID_DATE_RANGE")
    rows = await session.execute(
        select(PerformanceSnapshot.date, PerformanceSnapshot.total_value).where(
            PerformanceSnapshot.portfolio_id == portfolio.id,
            PerformanceSnapshot.date >= start,
            PerformanceSnapshot.date <= end,
        )
    )
    snapshots = {day: Decimal(value) for day, value in rows.all()}
    evaluator = PortfolioEvaluator(portfolio, entries, market_data, snapshots=snapshots, settings=settings)
    await evaluator.prepare(start, end)
    return evaluator, start, end


async def _twr(evaluator: PortfolioEvaluator, start: date, end: date) -> TWRResult:
    flows = cash_flows_from_ledger(evaluator.entries, start, end)
    return time_weighted_return(
        start=start,
        end=end,
        start_value=await evaluator.value_on(start),
        end_value=await evaluator.value_on(end),
        flows=flows,
        values_after_flow=await evaluator.values_after_flows(flows, start, end),
    )


async def _mwr(evaluator: PortfolioEvaluator, start: date, end: date) -> MWRResult:
    return money_weighted_return(
        start=start,
        end=end,
        start_value=await evaluator.value_on(start),
        end_value=await evaluator.value_on(end),
        flows=cash_flows_from_ledger(evaluator.entries, start, end),
    )


async def calculate_twr(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    start: date | None = None,
    end: date | None = None,
    settings: AppSettings | None = None,
) -> TWRResult:
    evaluator, start, end = await _evaluator(session, portfolio_id, user_id, market_data, start, end, settings)
    return await _twr(evaluator, start, end)


async def calculate_mwr(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    start: date | None = None,
    end: date | None = None,
    settings: AppSettings | None = None,
) -> MWRResult:
    evaluator, start, end = await _evaluator(session, portfolio_id, user_id, market_data, start, end, settings)
    return await _mwr(evaluator, start, end)


async def calculate_annualized_return(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    start: date | None = None,
    end: date | None = None,
    settings: AppSettings | None = None,
) -> tuple[date, date, Decimal, Decimal, Decimal | None]:
    """Return ``(start, end, start_value, end_value, annualized)``; ``annualized`` may be undefined."""

    evaluator, start, end = await _evaluator(session, portfolio_id, user_id, market_data, start, end, settings)
    start_value = await evaluator.value_on(start)
    end_value = await evaluator.value_on(end)
    return start, end, start_value, end_value, annualized_return(start_value, end_value, start, end)


async def calculate_metrics(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    start: date | None = None,
    end: date | None = None,
    settings: AppSettings | None = None,
) -> PerformanceMetrics:
    evaluator, start, end = await _evaluator(session, portfolio_id, user_id, market_data, start, end, settings)
    flows = cash_flows_from_ledger(evaluator.entries, start, end)
    twr = await _twr(evaluator, start, end)
    mwr: MWRResult | None = None
    mwr_error = None
    try:
        mwr = await _mwr(evaluator, start, end)
    except NoConvergence as exc:
        logger.warning("MWR did not converge for portfolio %s: %s", portfolio_id, exc)
        mwr_error = exc.code

    def total(kind: CashFlowKind) -> Decimal:
        return abs(dsum(flow.amount for flow in flows if flow.kind == kind))

    return PerformanceMetrics(
        start=start,
        end=end,
        start_value=twr.start_value,
        end_value=twr.end_value,
        total_deposits=total(CashFlowKind.DEPOSIT),
        total_withdrawals=total(CashFlowKind.WITHDRAWAL),
        total_dividends=total(CashFlowKind.DIVIDEND),
        net_cash_flow=dsum(flow.amount for flow in flows),
        years=span_years(start, end),
        sub_periods=len(twr.periods),
        twr=twr.twr,
        annualized_twr=twr.annualized,
        mwr=mwr.period_return if mwr else None,
        annualized_mwr=mwr.annual_rate if mwr else None,
        annualized_return=annualized_return(twr.start_value, twr.end_value, start, end),
        total_return=simple_return(twr.start_value, twr.end_value),
        mwr_error=mwr_error,
    )


async def compare_benchmark(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    market_data: MarketDataService,
    *,
    symbol: str,
    start: date | None = None,
    end: date | None = None,
    settings: AppSettings | None = None,
) -> BenchmarkResult:
    """Portfolio TWR against buying ``symbol`` at the window start and holding it."""

    benchmark = normalize_symbol(symbol, field_name="benchmark")
    evaluator, start, end = await _evaluator(session, portfolio_id, user_id, market_data, start, end, settings)
    twr = await _twr(evaluator, start, end)
    await evaluator.book.prefetch([benchmark], start, end)
    start_price = await evaluator.book.price(benchmark, start)
    end_price = await evaluator.book.price(benchmark, end)
    if start_price is None or end_price is None:
        raise UpstreamUnavailable(
            f"No prices for benchmark {benchmark} over the window",
            code="BENCHMARK_PRICE_UNAVAILABLE",
            details={"symbol": benchmark},
        )
    return compare_to_benchmark(
        symbol=benchmark,
        start=start,
        end=end,
        portfolio_twr=twr.twr,
        benchmark_start_price=start_price,
        benchmark_end_price=end_price,
    )


__all__ = [
    "PerformanceMetrics",
    "PortfolioEvaluator",
    "calculate_annualized_return",
    "calculate_metrics",
    "calculate_mwr",
    "calculate_twr",
    "compare_benchmark",
]
