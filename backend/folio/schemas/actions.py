"""Pydantic schemas for the corporate-action catalogue and portfolio proposals."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from folio.accounting.enums import CorporateActionType, ProposalStatus


class CorporateActionCreateRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20, examples=["AAPL"])
    type: CorporateActionType
    ex_date: date
    ratio: Decimal | None = Field(default=None, gt=0, description="New shares per old share")
    amount: Decimal | None = Field(default=None, gt=0, description="Cash dividend per share")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    new_symbol: str | None = Field(default=None, max_length=20)
    basis_allocation: Decimal | None = Field(
        default=None, gt=0, lt=1, description="Share of the parent basis carried to a spin-off"
    )
    description: str | None = None


class CorporateActionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    symbol: str
    type: CorporateActionType
    ex_date: date
    ratio: Decimal | None = None
    amount: Decimal | None = None
    currency: str | None = None
    new_symbol: str | None = None
    basis_allocation: Decimal | None = None
    description: str | None = None
    applied: bool
    created_at: datetime


class CorporateActionRegistration(BaseModel):
    action: CorporateActionSchema
    created: bool


class SimulationResponse(BaseModel):
    action: CorporateActionSchema
    created: bool
    proposals_created: int


class DetectionReportSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actions_scanned: int
    proposals_created: int
    failures: list[dict[str, str]]


class PortfolioActionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    portfolio_id: UUID
    corporate_action_id: UUID
    status: ProposalStatus
    affected_symbol: str
    shares_affected: Decimal
    description: str
    detected_at: datetime
    reviewed_at: datetime | None = None
    applied_at: datetime | None = None
    reviewed_by_user_id: UUID | None = None
    notes: str | None = None
    last_error: str | None = None
    corporate_action: CorporateActionSchema


class RejectRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


__all__ = [
    "CorporateActionCreateRequest",
    "CorporateActionRegistration",
    "CorporateActionSchema",
    "DetectionReportSchema",
    "PortfolioActionSchema",
    "RejectRequest",
    "SimulationResponse",
]
