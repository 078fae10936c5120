"""User, portfolio and transaction endpoints."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.enums import TransactionType
from folio.accounting.ledger import LotSelection
from folio.api.dependencies import get_current_user, get_db_session, get_settings_dependency
from folio.config import AppSettings
from folio.models import User
from folio.schemas import (
    PortfolioCreateRequest,
    PortfolioSchema,
    PortfolioUpdateRequest,
    TransactionCreateRequest,
    TransactionSchema,
    TransactionUpdateRequest,
    UserCreateRequest,
    UserSchema,
)
from folio.services import ledger, portfolios, users

router = APIRouter()


def _selections(payload: list[Any] | None) -> list[LotSelection]:
    return [LotSelection(lot_id=item.lot_id, quantity=item.quantity) for item in payload or []]


@router.post("/users", response_model=UserSchema, status_code=status.HTTP_201_CREATED, tags=["users"])
async def post_user(payload: UserCreateRequest, session: AsyncSession = Depends(get_db_session)) -> UserSchema:
    user = await users.create_user(session, email=payload.email, name=payload.name, password=payload.password)
    return UserSchema.model_validate(user)


@router.get("/users/me", response_model=UserSchema, tags=["users"])
async def get_me(current_user: User = Depends(get_current_user)) -> UserSchema:
    return UserSchema.model_validate(current_user)


@router.get("/portfolios", response_model=list[PortfolioSchema])
async def get_portfolios(
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[PortfolioSchema]:
    rows = await portfolios.list_portfolios(session, current_user.id)
    return [PortfolioSchema.model_validate(row) for row in rows]


@router.post("/portfolios", response_model=PortfolioSchema, status_code=status.HTTP_201_CREATED)
async def post_portfolio(
    payload: PortfolioCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> PortfolioSchema:
    portfolio = await portfolios.create_portfolio(session, current_user.id, **payload.model_dump())
    return PortfolioSchema.model_validate(portfolio)


@router.get("/portfolios/{portfolio_id}", response_model=PortfolioSchema)
async def get_portfolio(
    portfolio_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> PortfolioSchema:
    portfolio = await portfolios.get_portfolio(session, portfolio_id, current_user.id)
    return PortfolioSchema.model_validate(portfolio)


@router.patch("/portfolios/{portfolio_id}", response_model=PortfolioSchema)
async def patch_portfolio(
    portfolio_id: UUID,
    payload: PortfolioUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> PortfolioSchema:
    portfolio = await portfolios.update_portfolio(
        session, portfolio_id, current_user.id, **payload.model_dump(exclude_unset=True)
    )
    return PortfolioSchema.model_validate(portfolio)


@router.delete("/portfolios/{portfolio_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_portfolio(
    portfolio_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> Response:
    await portfolios.delete_portfolio(session, portfolio_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/portfolios/{portfolio_id}/transactions", response_model=list[TransactionSchema])
async def get_transactions(
    portfolio_id: UUID,
    symbol: str | None = None,
    start: date | None = None,
    end: date | None = None,
    type: TransactionType | None = None,
    batch_id: UUID | None = None,
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[TransactionSchema]:
    rows = await ledger.list_transactions(
        session,
        portfolio_id,
        current_user.id,
        symbol=symbol,
        start=start,
        end=end,
        type=type,
        batch_id=batch_id,
        limit=limit,
        offset=offset,
    )
    return [TransactionSchema.model_validate(row) for row in rows]


@router.post(
    "/portfolios/{portfolio_id}/transactions",
    response_model=TransactionSchema,
    status_code=status.HTTP_201_CREATED,
)
async def post_transaction(
    portfolio_id: UUID,
    payload: TransactionCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> TransactionSchema:
    data = payload.model_dump(exclude={"lot_selections"})
    fields = ledger.TransactionFields(**data, lot_selections=_selections(payload.lot_selections))
    tx = await ledger.append_transaction(session, portfolio_id, current_user.id, fields, settings=settings)
    return TransactionSchema.model_validate(tx)


@router.get("/portfolios/{portfolio_id}/transactions/{transaction_id}", response_model=TransactionSchema)
async def get_transaction(
    portfolio_id: UUID,
    transaction_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> TransactionSchema:
    tx = await ledger.get_transaction(session, portfolio_id, current_user.id, transaction_id)
    return TransactionSchema.model_validate(tx)


@router.patch("/portfolios/{portfolio_id}/transactions/{transaction_id}", response_model=TransactionSchema)
async def patch_transaction(
    portfolio_id: UUID,
    transaction_id: UUID,
    payload: TransactionUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> TransactionSchema:
    changes = payload.model_dump(exclude_unset=True, exclude={"lot_selections"})
    if "lot_selections" in payload.model_fields_set:
        changes["lot_selections"] = _selections(payload.lot_selections)
    tx = await ledger.edit_transaction(
        session, portfolio_id, current_user.id, transaction_id, changes, settings=settings
    )
    return TransactionSchema.model_validate(tx)


@router.delete(
    "/portfolios/{portfolio_id}/transactions/{transaction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_transaction(
    portfolio_id: UUID,
    transaction_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> Response:
    await ledger.delete_transaction(session, portfolio_id, current_user.id, transaction_id, settings=settings)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
