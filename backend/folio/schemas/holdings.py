"""Pydantic schemas for holdings, tax lots, realized gains and tax reporting."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from folio.accounting.enums import CostBasisMethod
from folio.schemas.portfolio import LotSelectionSchema


class HoldingSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    average_cost: Decimal
    currency: str
    current_price: Decimal | None = Field(default=None, description="Omitted when market data is unavailable")
    market_value: Decimal | None = None
    unrealized_gain: Decimal | None = None
    unrealized_gain_percent: Decimal | None = None


class HoldingsSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    holdings: list[HoldingSchema]
    total_cost_basis: Decimal
    total_market_value: Decimal | None = None
    total_unrealized_gain: Decimal | None = None
    total_unrealized_gain_percent: Decimal | None = None
    priced: bool


class TaxLotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    portfolio_id: UUID
    transaction_id: UUID
    symbol: str
    acquired_on: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    cost_basis: Decimal
    cost_per_share: Decimal
    currency: str
    is_open: bool


class AllocateSaleRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    quantity: Decimal = Field(..., gt=0)
    method: CostBasisMethod | None = None
    selections: list[LotSelectionSchema] | None = None
    price: Decimal | None = Field(default=None, ge=0)
    commission: Decimal = Field(default=Decimal("0"), ge=0)
    on: date | None = Field(default=None, description="Disposal date used for the holding period")


class AllocationLineSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lot_id: UUID
    acquired_on: date
    quantity: Decimal
    cost_per_share: Decimal
    cost_basis: Decimal
    long_term: bool
    proceeds: Decimal | None = None
    gain: Decimal | None = None


class SalePreviewSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    quantity: Decimal
    method: CostBasisMethod
    lines: list[AllocationLineSchema]
    price: Decimal | None = None
    commission: Decimal
    total_cost_basis: Decimal
    total_proceeds: Decimal | None = None
    total_gain: Decimal | None = None


class RealizedGainSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sell_transaction_id: UUID
    lot_id: UUID
    symbol: str
    acquired_on: date
    disposed_on: date
    quantity: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    gain: Decimal
    long_term: bool


class TaxReportSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year: int
    short_term: list[RealizedGainSchema]
    long_term: list[RealizedGainSchema]
    total_short_term: Decimal
    total_long_term: Decimal
    total: Decimal
    total_proceeds: Decimal
    total_cost_basis: Decimal


class HarvestOpportunitySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lot_id: UUID
    symbol: str
    acquired_on: date
    quantity: Decimal
    cost_basis: Decimal
    current_price: Decimal
    current_value: Decimal
    unrealized_loss: Decimal
    loss_percent: Decimal
    long_term: bool


__all__ = [
    "AllocateSaleRequest",
    "AllocationLineSchema",
    "HarvestOpportunitySchema",
    "HoldingSchema",
    "HoldingsSummarySchema",
    "RealizedGainSchema",
    "SalePreviewSchema",
    "TaxLotSchema",
    "TaxReportSchema",
]
