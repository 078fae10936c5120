"""Corporate-action catalogue and per-portfolio proposal endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.enums import ProposalStatus
from folio.api.dependencies import get_current_user, get_db_session, get_settings_dependency
from folio.config import AppSettings
from folio.models import User
from folio.schemas import (
    CorporateActionCreateRequest,
    CorporateActionRegistration,
    CorporateActionSchema,
    DetectionReportSchema,
    PortfolioActionSchema,
    RejectRequest,
    SimulationResponse,
)
from folio.services import corporate_actions

catalogue_router = APIRouter()
router = APIRouter()


@catalogue_router.post("", response_model=CorporateActionRegistration)
async def post_corporate_action(
    payload: CorporateActionCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> CorporateActionRegistration:
    action, created = await corporate_actions.register_action(session, **payload.model_dump())
    return CorporateActionRegistration(action=CorporateActionSchema.model_validate(action), created=created)


@catalogue_router.get("", response_model=list[CorporateActionSchema])
async def get_corporate_actions(
    symbol: str | None = None,
    unapplied_only: bool = False,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[CorporateActionSchema]:
    rows = await corporate_actions.list_actions(session, symbol=symbol, unapplied_only=unapplied_only)
    return [CorporateActionSchema.model_validate(row) for row in rows]


@catalogue_router.post("/detect", response_model=DetectionReportSchema)
async def post_detection(
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> DetectionReportSchema:
    report = await corporate_actions.run_detection(session)
    return DetectionReportSchema.model_validate(report)


@catalogue_router.post("/simulate", response_model=SimulationResponse, status_code=status.HTTP_201_CREATED)
async def post_simulation(
    payload: CorporateActionCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> SimulationResponse:
    """Register an action and immediately propose it to every holder."""

    action, created, proposals = await corporate_actions.simulate_detection(session, **payload.model_dump())
    return SimulationResponse(
        action=CorporateActionSchema.model_validate(action),
        created=created,
        proposals_created=proposals,
    )


@catalogue_router.get("/{action_id}", response_model=CorporateActionSchema)
async def get_corporate_action(
    action_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> CorporateActionSchema:
    action = await corporate_actions.get_action(session, action_id)
    return CorporateActionSchema.model_validate(action)


@router.get("/{portfolio_id}/actions", response_model=list[PortfolioActionSchema])
async def get_portfolio_actions(
    portfolio_id: UUID,
    status_filter: ProposalStatus | None = Query(default=None, alias="status"),
    pending_only: bool = False,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[PortfolioActionSchema]:
    rows = await corporate_actions.list_proposals(
        session, portfolio_id, current_user.id, status=status_filter, pending_only=pending_only
    )
    return [PortfolioActionSchema.model_validate(row) for row in rows]


@router.get("/{portfolio_id}/actions/pending", response_model=list[PortfolioActionSchema])
async def get_pending_actions(
    portfolio_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[PortfolioActionSchema]:
    rows = await corporate_actions.list_proposals(session, portfolio_id, current_user.id, pending_only=True)
    return [PortfolioActionSchema.model_validate(row) for row in rows]


@router.get("/{portfolio_id}/actions/{proposal_id}", response_model=PortfolioActionSchema)
async def get_portfolio_action(
    portfolio_id: UUID,
    proposal_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> PortfolioActionSchema:
    proposal = await corporate_actions.get_proposal(session, portfolio_id, current_user.id, proposal_id)
    return PortfolioActionSchema.model_validate(proposal)


@router.post("/{portfolio_id}/actions/{proposal_id}/approve", response_model=PortfolioActionSchema)
async def post_approve(
    portfolio_id: UUID,
    proposal_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> PortfolioActionSchema:
    proposal = await corporate_actions.approve_proposal(
        session, portfolio_id, current_user.id, proposal_id, settings=settings
    )
    return PortfolioActionSchema.model_validate(proposal)


@router.post("/{portfolio_id}/actions/{proposal_id}/apply", response_model=PortfolioActionSchema)
async def post_apply(
    portfolio_id: UUID,
    proposal_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> PortfolioActionSchema:
    proposal = await corporate_actions.apply_proposal(
        session, portfolio_id, current_user.id, proposal_id, settings=settings
    )
    return PortfolioActionSchema.model_validate(proposal)


@router.post("/{portfolio_id}/actions/{proposal_id}/reject", response_model=PortfolioActionSchema)
async def post_reject(
    portfolio_id: UUID,
    proposal_id: UUID,
    payload: RejectRequest | None = Body(default=None),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> PortfolioActionSchema:
    proposal = await corporate_actions.reject_proposal(
        session, portfolio_id, current_user.id, proposal_id, notes=payload.notes if payload else None
    )
    return PortfolioActionSchema.model_validate(proposal)


__all__ = ["catalogue_router", "router"]
