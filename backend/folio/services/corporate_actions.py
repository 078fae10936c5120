"""Corporate-action catalogue, per-portfolio detection and proposal review.

Detection turns an unapplied catalogue entry into one PENDING proposal per
portfolio that holds the symbol. Approving a proposal applies it: the
action is written to the ledger as synthesized entries dated on the
ex-date and the affected symbols are re-projected, all in one locked unit
of work. A failed application leaves the proposal APPROVED with the error
recorded so it can be retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.actions import ActionParameters, ProposalEvent, describe, next_status, normalize_parameters
from folio.accounting.enums import (
    NON_TERMINAL_STATUSES,
    ActionLeg,
    CorporateActionType,
    ProposalStatus,
    TransactionType,
)
from folio.accounting.projector import project_ledger
from folio.config import AppSettings
from folio.core.decimals import ZERO, q10
from folio.core.errors import FolioError, InsufficientShares, NotFound
from folio.db.locks import portfolio_write
from folio.models import CorporateAction, Holding, Portfolio, PortfolioAction, Transaction
from folio.services.ledger import load_entries, next_sequence, projection_options, reproject
from folio.services.portfolios import load_owned_portfolio

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parameters_of(action: CorporateAction) -> ActionParameters:
    return ActionParameters(
        symbol=action.symbol,
        type=action.type,
        ex_date=action.ex_date,
        ratio=Decimal(action.ratio) if action.ratio is not None else None,
        amount=Decimal(action.amount) if action.amount is not None else None,
        currency=action.currency,
        new_symbol=action.new_symbol,
        basis_allocation=Decimal(action.basis_allocation) if action.basis_allocation is not None else None,
    )


# Catalogue


async def register_action(
    session: AsyncSession,
    *,
    symbol: str,
    type: CorporateActionType,
    ex_date: date | None,
    ratio: Decimal | None = None,
    amount: Decimal | None = None,
    currency: str | None = None,
    new_symbol: str | None = None,
    basis_allocation: Decimal | None = None,
    description: str | None = None,
) -> tuple[CorporateAction, bool]:
    """Add a catalogue entry unless an identical one exists.

    Returns the entry and whether it was created.
    """

    params = normalize_parameters(
        symbol=symbol,
        type=type,
        ex_date=ex_date,
        ratio=ratio,
        amount=amount,
        currency=currency,
        new_symbol=new_symbol,
        basis_allocation=basis_allocation,
    )
    existing = await _find_by_key(session, params.dedupe_key)
    if existing is not None:
        return existing, False
    action = CorporateAction(
        symbol=params.symbol,
        type=params.type,
        ex_date=params.ex_date,
        ratio=params.ratio,
        amount=params.amount,
        currency=params.currency,
        new_symbol=params.new_symbol,
        basis_allocation=params.basis_allocation,
        description=description or describe(params),
        dedupe_key=params.dedupe_key,
    )
    session.add(action)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await _find_by_key(session, params.dedupe_key)
        if existing is None:
            raise
        return existing, False
    await session.refresh(action)
    logger.info("Registered corporate action %s (%s)", action.id, action.description)
    return action, True


async def _find_by_key(session: AsyncSession, key: str) -> CorporateAction | None:
    result = await session.execute(select(CorporateAction).where(CorporateAction.dedupe_key == key))
    return result.scalar_one_or_none()


async def list_actions(
    session: AsyncSession,
    *,
    symbol: str | None = None,
    unapplied_only: bool = False,
) -> list[CorporateAction]:
    stmt = select(CorporateAction)
    if symbol:
        stmt = stmt.where(CorporateAction.symbol == symbol.strip().upper())
    if unapplied_only:
        stmt = stmt.where(CorporateAction.applied.is_(False))
    stmt = stmt.order_by(CorporateAction.ex_date, CorporateAction.created_at)
    return list((await session.execute(stmt)).scalars().all())


async def get_action(session: AsyncSession, action_id: UUID) -> CorporateAction:
    action = await session.get(CorporateAction, action_id)
    if action is None:
        raise NotFound("Corporate action not found", code="CORPORATE_ACTION_NOT_FOUND")
    return action


# Detection


@dataclass
class DetectionReport:
    actions_scanned: int = 0
    proposals_created: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)


async def detect_for_action(session: AsyncSession, action: CorporateAction) -> int:
    """Create PENDING proposals for every portfolio holding the action's symbol.

    A portfolio that already has a proposal for this action is skipped, so
    re-running detection never duplicates. Returns the number created.
    """

    action_id = action.id
    holders = (
        await session.execute(
            select(Holding.portfolio_id, Holding.quantity).where(
                Holding.symbol == action.symbol, Holding.quantity > 0
            )
        )
    ).all()
    if not holders:
        return 0
    proposed = set(
        (
            await session.execute(
                select(PortfolioAction.portfolio_id).where(PortfolioAction.corporate_action_id == action_id)
            )
        ).scalars()
    )
    params = parameters_of(action)
    created = 0
    for portfolio_id, quantity in holders:
        if portfolio_id in proposed:
            continue
        shares = Decimal(quantity)
        session.add(
            PortfolioAction(
                portfolio_id=portfolio_id,
                corporate_action_id=action_id,
                status=ProposalStatus.PENDING,
                affected_symbol=action.symbol,
                shares_affected=shares,
                description=describe(params, shares),
            )
        )
        created += 1
    if not created:
        return 0
    try:
        await session.commit()
    except IntegrityError:
        # A concurrent run proposed first.
        await session.rollback()
        logger.info("Proposals for action %s were created concurrently", action_id)
        return 0
    logger.info("Created %d proposals for corporate action %s", created, action_id)
    return created


async def run_detection(
    session: AsyncSession,
    *,
    checkpoint: Callable[[], None] | None = None,
) -> DetectionReport:
    """Scan every unapplied catalogue entry; one failing action does not stop the scan.

    ``checkpoint`` is called before each action and may raise to cancel.
    """

    report = DetectionReport()
    action_ids = [action.id for action in await list_actions(session, unapplied_only=True)]
    for action_id in action_ids:
        if checkpoint is not None:
            checkpoint()
        report.actions_scanned += 1
        try:
            action = await get_action(session, action_id)
            report.proposals_created += await detect_for_action(session, action)
        except Exception as exc:
            await session.rollback()
            logger.exception("Detection failed for corporate action %s", action_id)
            report.failures.append({"action_id": str(action_id), "error": str(exc)})
    return report


async def simulate_detection(
    session: AsyncSession,
    **parameters,
) -> tuple[CorporateAction, bool, int]:
    """Register (or find) a catalogue entry and run detection for it alone."""

    action, created = await register_action(session, **parameters)
    proposals = await detect_for_action(session, action)
    await session.refresh(action)
    return action, created, proposals


# Proposals


async def list_proposals(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    status: ProposalStatus | None = None,
    pending_only: bool = False,
) -> list[PortfolioAction]:
    await load_owned_portfolio(session, portfolio_id, user_id)
    stmt = select(PortfolioAction).where(PortfolioAction.portfolio_id == portfolio_id)
    if pending_only:
        stmt = stmt.where(PortfolioAction.status == ProposalStatus.PENDING)
    elif status is not None:
        stmt = stmt.where(PortfolioAction.status == status)
    stmt = stmt.order_by(PortfolioAction.detected_at)
    return list((await session.execute(stmt)).unique().scalars().all())


async def _load_proposal(session: AsyncSession, portfolio_id: UUID, proposal_id: UUID) -> PortfolioAction:
    proposal = await session.get(PortfolioAction, proposal_id)
    if proposal is None or proposal.portfolio_id != portfolio_id:
        raise NotFound("Portfolio action not found", code="PORTFOLIO_ACTION_NOT_FOUND")
    return proposal


async def get_proposal(
    session: AsyncSession, portfolio_id: UUID, user_id: UUID, proposal_id: UUID
) -> PortfolioAction:
    await load_owned_portfolio(session, portfolio_id, user_id)
    return await _load_proposal(session, portfolio_id, proposal_id)


async def approve_proposal(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    proposal_id: UUID,
    *,
    settings: AppSettings | None = None,
) -> PortfolioAction:
    """Approve and apply in one call; approval itself is kept if application fails."""

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    proposal = await _load_proposal(session, portfolio.id, proposal_id)
    async with portfolio_write(session, portfolio.id):
        proposal.status = next_status(proposal.status, ProposalEvent.APPROVE)
        proposal.reviewed_at = _now()
        proposal.reviewed_by_user_id = user_id
    logger.info("Approved portfolio action %s", proposal_id)
    return await _apply(session, portfolio, proposal_id, settings=settings)


async def apply_proposal(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    proposal_id: UUID,
    *,
    settings: AppSettings | None = None,
) -> PortfolioAction:
    """Retry the application of an APPROVED proposal."""

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    await _load_proposal(session, portfolio.id, proposal_id)
    return await _apply(session, portfolio, proposal_id, settings=settings)


async def reject_proposal(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    proposal_id: UUID,
    *,
    notes: str | None = None,
) -> PortfolioAction:
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    proposal = await _load_proposal(session, portfolio.id, proposal_id)
    async with portfolio_write(session, portfolio.id):
        proposal.status = next_status(proposal.status, ProposalEvent.REJECT)
        proposal.reviewed_at = _now()
        proposal.reviewed_by_user_id = user_id
        if notes:
            proposal.notes = notes.strip()
        await session.flush()
        await _settle_catalogue_entry(session, proposal.corporate_action_id)
    await session.refresh(proposal)
    logger.info("Rejected portfolio action %s", proposal_id)
    return proposal


async def _apply(
    session: AsyncSession,
    portfolio: Portfolio,
    proposal_id: UUID,
    *,
    settings: AppSettings | None = None,
) -> PortfolioAction:
    portfolio_id = portfolio.id
    try:
        async with portfolio_write(session, portfolio_id):
            proposal = await _load_proposal(session, portfolio_id, proposal_id)
            status = next_status(proposal.status, ProposalEvent.APPLY)
            action = await get_action(session, proposal.corporate_action_id)
            symbols = await _write_ledger_entries(session, portfolio, action, settings=settings)
            await reproject(session, portfolio, symbols, settings=settings)
            proposal.status = status
            proposal.applied_at = _now()
            proposal.last_error = None
            await session.flush()
            await _settle_catalogue_entry(session, action.id)
    except FolioError as exc:
        if exc.code == "ILLEGAL_TRANSITION":
            raise
        await _record_failure(session, proposal_id, exc)
        raise
    proposal = await _load_proposal(session, portfolio_id, proposal_id)
    await session.refresh(proposal)
    logger.info("Applied portfolio action %s to portfolio %s", proposal_id, portfolio_id)
    return proposal


async def _record_failure(session: AsyncSession, proposal_id: UUID, exc: Exception) -> None:
    proposal = await session.get(PortfolioAction, proposal_id, populate_existing=True)
    if proposal is None:
        return
    proposal.last_error = str(exc)
    await session.commit()
    logger.warning("Application of portfolio action %s failed: %s", proposal_id, exc)


async def _write_ledger_entries(
    session: AsyncSession,
    portfolio: Portfolio,
    action: CorporateAction,
    *,
    settings: AppSettings | None = None,
) -> set[str]:
    """Synthesize the ledger entries recording ``action``; returns the symbols touched."""

    entries = await load_entries(session, portfolio.id)
    as_of = project_ledger(entries, as_of=action.ex_date, **projection_options(portfolio, settings))
    holding = as_of.holdings.get(action.symbol)
    shares = holding.quantity if holding is not None else ZERO
    if shares <= ZERO:
        raise InsufficientShares(
            f"Portfolio holds no {action.symbol} on {action.ex_date}",
            code="NO_POSITION",
            details={"symbol": action.symbol, "ex_date": action.ex_date.isoformat()},
        )
    currency = holding.currency
    params = parameters_of(action)
    sequence = await next_sequence(session, portfolio.id)

    def entry(**values) -> Transaction:
        nonlocal sequence
        tx = Transaction(
            portfolio_id=portfolio.id,
            corporate_action_id=action.id,
            trade_date=action.ex_date,
            commission=ZERO,
            currency=currency,
            notes=describe(params, shares),
            sequence=sequence,
            **values,
        )
        sequence += 1
        session.add(tx)
        return tx

    if action.type == CorporateActionType.SPLIT:
        entry(type=TransactionType.SPLIT, symbol=action.symbol, quantity=shares, ratio=params.ratio)
        return {action.symbol}
    if action.type == CorporateActionType.DIVIDEND:
        entry(
            type=TransactionType.DIVIDEND,
            symbol=action.symbol,
            quantity=shares,
            price=params.amount,
            currency=params.currency or currency,
        )
        return {action.symbol}
    if action.type == CorporateActionType.TICKER_CHANGE:
        entry(
            type=TransactionType.TICKER_CHANGE,
            symbol=action.symbol,
            quantity=shares,
            related_symbol=params.new_symbol,
        )
        return {action.symbol, params.new_symbol}

    kind = TransactionType.MERGER if action.type == CorporateActionType.MERGER else TransactionType.SPINOFF
    ratio = params.ratio or Decimal("1")
    entry(
        type=kind,
        symbol=action.symbol,
        quantity=shares,
        ratio=ratio,
        related_symbol=params.new_symbol,
        leg=ActionLeg.SOURCE,
        basis_allocation=params.basis_allocation,
    )
    entry(
        type=kind,
        symbol=params.new_symbol,
        quantity=q10(shares * ratio),
        ratio=ratio,
        related_symbol=action.symbol,
        leg=ActionLeg.TARGET,
    )
    return {action.symbol, params.new_symbol}


async def _settle_catalogue_entry(session: AsyncSession, action_id: UUID) -> None:
    """Mark a catalogue entry applied once every proposal for it is terminal."""

    statuses = list(
        (
            await session.execute(
                select(PortfolioAction.status).where(PortfolioAction.corporate_action_id == action_id)
            )
        ).scalars()
    )
    if statuses and not any(status in NON_TERMINAL_STATUSES for status in statuses):
        action = await session.get(CorporateAction, action_id)
        if action is not None and not action.applied:
            action.applied = True
            logger.info("Corporate action %s settled for all portfolios", action_id)


__all__ = [
    "DetectionReport",
    "apply_proposal",
    "approve_proposal",
    "detect_for_action",
    "get_action",
    "get_proposal",
    "list_actions",
    "list_proposals",
    "parameters_of",
    "register_action",
    "reject_proposal",
    "run_detection",
    "simulate_detection",
]
