"""Pydantic schemas for users, portfolios and ledger transactions."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from folio.accounting.enums import ActionLeg, CostBasisMethod, TransactionType


class UserCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, examples=["ada@example.com"])
    name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


class UserSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str
    created_at: datetime
    last_login_at: datetime | None = None


class PortfolioCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Retirement"])
    description: str | None = None
    base_currency: str | None = Field(default=None, min_length=3, max_length=3)
    cost_basis_method: CostBasisMethod | None = None


class PortfolioUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    base_currency: str | None = Field(default=None, min_length=3, max_length=3)
    cost_basis_method: CostBasisMethod | None = None


class PortfolioSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    description: str | None = None
    base_currency: str
    cost_basis_method: CostBasisMethod
    created_at: datetime
    updated_at: datetime


class LotSelectionSchema(BaseModel):
    lot_id: UUID
    quantity: Decimal = Field(..., gt=0)


class TransactionCreateRequest(BaseModel):
    type: TransactionType
    symbol: str = Field(..., min_length=1, max_length=20, examples=["AAPL"])
    trade_date: date
    quantity: Decimal = Field(..., gt=0)
    price: Decimal | None = Field(default=None, ge=0)
    commission: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None
    ratio: Decimal | None = Field(default=None, gt=0)
    related_symbol: str | None = Field(default=None, max_length=20)
    basis_allocation: Decimal | None = Field(default=None, gt=0, lt=1)
    lot_method: CostBasisMethod | None = Field(
        default=None, description="Disposal method for a SELL; defaults to the portfolio method"
    )
    lot_selections: list[LotSelectionSchema] | None = None


class TransactionUpdateRequest(BaseModel):
    """Partial edit; only the fields sent are changed."""

    type: TransactionType | None = None
    symbol: str | None = Field(default=None, min_length=1, max_length=20)
    trade_date: date | None = None
    quantity: Decimal | None = Field(default=None, gt=0)
    price: Decimal | None = Field(default=None, ge=0)
    commission: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = None
    ratio: Decimal | None = Field(default=None, gt=0)
    related_symbol: str | None = Field(default=None, max_length=20)
    basis_allocation: Decimal | None = Field(default=None, gt=0, lt=1)
    lot_method: CostBasisMethod | None = None
    lot_selections: list[LotSelectionSchema] | None = None


class TransactionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    portfolio_id: UUID
    batch_id: UUID | None = None
    corporate_action_id: UUID | None = None
    type: TransactionType
    symbol: str
    trade_date: date
    quantity: Decimal
    price: Decimal | None = None
    commission: Decimal
    currency: str
    notes: str | None = None
    ratio: Decimal | None = None
    related_symbol: str | None = None
    leg: ActionLeg | None = None
    basis_allocation: Decimal | None = None
    lot_method: CostBasisMethod | None = None
    lot_selections: list[dict[str, Any]] | None = None
    sequence: int
    total_cost: Decimal
    proceeds: Decimal
    created_at: datetime


__all__ = [
    "LotSelectionSchema",
    "PortfolioCreateRequest",
    "PortfolioSchema",
    "PortfolioUpdateRequest",
    "TransactionCreateRequest",
    "TransactionSchema",
    "TransactionUpdateRequest",
    "UserCreateRequest",
    "UserSchema",
]
