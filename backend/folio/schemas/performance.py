"""Pydantic schemas for performance metrics, snapshots and background jobs.

Return fields are fractions (``0.1`` is ten percent); each has a
``*_percent`` companion rendered at two decimal places.
"""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from folio.accounting.performance import as_percent


class SubPeriodSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    rate: Decimal


class TWRSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    twr: Decimal
    annualized: Decimal | None = None
    periods: list[SubPeriodSchema] = Field(default_factory=list)

    @computed_field
    @property
    def twr_percent(self) -> Decimal | None:
        return as_percent(self.twr)

    @computed_field
    @property
    def annualized_percent(self) -> Decimal | None:
        return as_percent(self.annualized)


class MWRSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    annual_rate: Decimal
    period_return: Decimal
    iterations: int
    total_cash_flow: Decimal

    @computed_field
    @property
    def annual_rate_percent(self) -> Decimal | None:
        return as_percent(self.annual_rate)

    @computed_field
    @property
    def period_return_percent(self) -> Decimal | None:
        return as_percent(self.period_return)


class AnnualizedReturnSchema(BaseModel):
    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    annualized_return: Decimal | None = None

    @computed_field
    @property
    def annualized_return_percent(self) -> Decimal | None:
        return as_percent(self.annualized_return)


class PerformanceMetricsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    annualized_twr: Decimal | None = None
    mwr: Decimal | None = None
    annualized_mwr: Decimal | None = None
    annualized_return: Decimal | None = None
    total_return: Decimal | None = None
    mwr_error: str | None = None

    @computed_field
    @property
    def twr_percent(self) -> Decimal | None:
        return as_percent(self.twr)

    @computed_field
    @property
    def mwr_percent(self) -> Decimal | None:
        return as_percent(self.mwr)

    @computed_field
    @property
    def annualized_return_percent(self) -> Decimal | None:
        return as_percent(self.annualized_return)

    @computed_field
    @property
    def total_return_percent(self) -> Decimal | None:
        return as_percent(self.total_return)


class BenchmarkSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    portfolio_return: Decimal
    benchmark_return: Decimal
    portfolio_annualized: Decimal | None = None
    benchmark_annualized: Decimal | None = None
    outperformance: Decimal
    alpha: Decimal

    @computed_field
    @property
    def outperformance_percent(self) -> Decimal | None:
        return as_percent(self.outperformance)


class SnapshotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    portfolio_id: UUID
    date: dt.date
    total_value: Decimal
    total_cost_basis: Decimal
    total_return: Decimal
    total_return_pct: Decimal | None = None
    day_change: Decimal | None = None
    day_change_pct: Decimal | None = None
    created_at: datetime


class SnapshotCreateRequest(BaseModel):
    date: dt.date | None = Field(default=None, description="Defaults to today")


class SnapshotCreateResponse(BaseModel):
    snapshot: SnapshotSchema
    created: bool


class JobStatusSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    schedule: str
    next_run: datetime | None = None
    last_started: datetime | None = None
    last_finished: datetime | None = None
    last_duration_seconds: float | None = None
    last_error: str | None = None
    last_result: dict[str, Any] | None = None
    runs: int
    failures: int
    running: bool


__all__ = [
    "AnnualizedReturnSchema",
    "BenchmarkSchema",
    "JobStatusSchema",
    "MWRSchema",
    "PerformanceMetricsSchema",
    "SnapshotCreateRequest",
    "SnapshotCreateResponse",
    "SnapshotSchema",
    "SubPeriodSchema",
    "TWRSchema",
]
