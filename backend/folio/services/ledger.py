"""Transaction ledger store and per-symbol re-projection.

Every write appends, edits or deletes ledger rows and then replays the
affected symbols from scratch, syncing the persisted holdings, tax lots and
realized gains by id. The whole write runs under the portfolio lock in one
database transaction, so a failed projection leaves nothing behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.enums import ActionLeg, CostBasisMethod, TransactionType
from folio.accounting.ledger import (
    LedgerEntry,
    LotSelection,
    normalize_currency,
    normalize_symbol,
    validate_entry_fields,
)
from folio.accounting.projector import HoldingBasisMode, ProjectionResult, linked_symbols, project_ledger
from folio.config import AppSettings, get_settings
from folio.core.decimals import ZERO, q10
from folio.core.errors import Conflict, NotFound, ValidationFailed
from folio.core.telemetry import projections
from folio.db.locks import portfolio_write
from folio.models import Holding, Portfolio, RealizedGain, TaxLot, Transaction
from folio.services.portfolios import load_owned_portfolio

logger = logging.getLogger(__name__)

MAX_FUTURE_DAYS = 1


@dataclass
class TransactionFields:
    """Boundary representation of a transaction to append or of an edit."""

    type: TransactionType | None = None
    symbol: str | None = None
    trade_date: date | None = None
    quantity: Decimal | None = None
    price: Decimal | None = None
    commission: Decimal | None = None
    currency: str | None = None
    notes: str | None = None
    ratio: Decimal | None = None
    related_symbol: str | None = None
    basis_allocation: Decimal | None = None
    lot_method: CostBasisMethod | None = None
    lot_selections: list[LotSelection] = field(default_factory=list)
    raw_data: dict[str, Any] | None = None


def to_entry(tx: Transaction) -> LedgerEntry:
    return LedgerEntry(
        id=tx.id,
        type=tx.type,
        symbol=tx.symbol,
        trade_date=tx.trade_date,
        quantity=Decimal(tx.quantity),
        price=Decimal(tx.price) if tx.price is not None else None,
        commission=Decimal(tx.commission or 0),
        currency=tx.currency,
        sequence=tx.sequence,
        ratio=Decimal(tx.ratio) if tx.ratio is not None else None,
        related_symbol=tx.related_symbol,
        leg=tx.leg,
        basis_allocation=Decimal(tx.basis_allocation) if tx.basis_allocation is not None else None,
        lot_method=tx.lot_method,
        lot_selections=[LotSelection.from_json(item) for item in tx.lot_selections or []],
    )


async def load_entries(session: AsyncSession, portfolio_id: UUID) -> list[LedgerEntry]:
    result = await session.execute(
        select(Transaction)
        .where(Transaction.portfolio_id == portfolio_id)
        .order_by(Transaction.trade_date, Transaction.sequence)
    )
    return [to_entry(tx) for tx in result.scalars().all()]


async def next_sequence(session: AsyncSession, portfolio_id: UUID) -> int:
    current = (
        await session.execute(
            select(func.max(Transaction.sequence)).where(Transaction.portfolio_id == portfolio_id)
        )
    ).scalar_one_or_none()
    return (current or 0) + 1


def projection_options(portfolio: Portfolio, settings: AppSettings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    return {
        "default_method": portfolio.cost_basis_method or CostBasisMethod.FIFO,
        "basis_mode": HoldingBasisMode(settings.holding_basis_method),
        "spinoff_allocation": settings.spinoff_basis_allocation,
    }


async def project_portfolio(
    session: AsyncSession,
    portfolio: Portfolio,
    *,
    as_of: date | None = None,
    settings: AppSettings | None = None,
) -> ProjectionResult:
    """Replay the whole ledger without touching persisted state."""

    entries = await load_entries(session, portfolio.id)
    return project_ledger(entries, as_of=as_of, **projection_options(portfolio, settings))


async def reproject(
    session: AsyncSession,
    portfolio: Portfolio,
    symbols: Iterable[str],
    *,
    settings: AppSettings | None = None,
) -> ProjectionResult:
    """Replay the ledger for ``symbols`` and everything linked to them, then sync rows.

    Raises the projector's accounting errors before any derived row is
    written; the caller's unit of work rolls the ledger write back.
    """

    await session.flush()
    entries = await load_entries(session, portfolio.id)
    closure = linked_symbols(entries, symbols)
    if not closure:
        return ProjectionResult()
    relevant = [
        entry
        for entry in entries
        if entry.symbol in closure or (entry.related_symbol and entry.related_symbol in closure)
    ]
    with projections.track(portfolio.id, closure) as span:
        projections.record_entries(span, len(relevant))
        result = project_ledger(relevant, **projection_options(portfolio, settings))
        await _sync_holdings(session, portfolio, closure, result)
        await _sync_lots(session, portfolio, closure, result)
        await _sync_gains(session, portfolio, closure, result)
        await session.flush()
    logger.debug("Re-projected %s for portfolio %s", sorted(closure), portfolio.id)
    return result


async def _sync_holdings(
    session: AsyncSession, portfolio: Portfolio, closure: set[str], result: ProjectionResult
) -> None:
    existing = {
        row.symbol: row
        for row in (
            await session.execute(
                select(Holding)
                .where(Holding.portfolio_id == portfolio.id, Holding.symbol.in_(closure))
                .execution_options(populate_existing=True)
            )
        ).scalars()
    }
    for symbol, state in result.holdings.items():
        row = existing.pop(symbol, None)
        if row is None:
            row = Holding(portfolio_id=portfolio.id, symbol=symbol)
            session.add(row)
        row.quantity = state.quantity
        row.cost_basis = state.cost_basis
        row.average_cost = state.average_cost
        row.currency = state.currency
    for row in existing.values():
        await session.delete(row)


async def _sync_lots(
    session: AsyncSession, portfolio: Portfolio, closure: set[str], result: ProjectionResult
) -> None:
    projected_ids = [lot.id for lot in result.lots]
    stmt = select(TaxLot).where(TaxLot.portfolio_id == portfolio.id)
    if projected_ids:
        stmt = stmt.where(or_(TaxLot.symbol.in_(closure), TaxLot.id.in_(projected_ids)))
    else:
        stmt = stmt.where(TaxLot.symbol.in_(closure))
    existing = {
        row.id: row for row in (await session.execute(stmt.execution_options(populate_existing=True))).scalars()
    }
    for lot in result.lots:
        row = existing.pop(lot.id, None)
        if row is None:
            row = TaxLot(id=lot.id, portfolio_id=portfolio.id)
            session.add(row)
        row.transaction_id = lot.transaction_id
        row.symbol = lot.symbol
        row.acquired_on = lot.acquired_on
        row.original_quantity = lot.original_quantity
        row.remaining_quantity = lot.remaining_quantity if lot.is_open else ZERO
        row.cost_basis = lot.cost_basis if lot.is_open else ZERO
        row.cost_per_share = lot.cost_per_share
        row.currency = lot.currency
        row.position = lot.position
    for row in existing.values():
        await session.delete(row)


async def _sync_gains(
    session: AsyncSession, portfolio: Portfolio, closure: set[str], result: ProjectionResult
) -> None:
    existing = {
        row.id: row
        for row in (
            await session.execute(
                select(RealizedGain)
                .where(RealizedGain.portfolio_id == portfolio.id, RealizedGain.symbol.in_(closure))
                .execution_options(populate_existing=True)
            )
        ).scalars()
    }
    for gain in result.gains:
        row = existing.pop(gain.id, None)
        if row is None:
            row = RealizedGain(id=gain.id, portfolio_id=portfolio.id)
            session.add(row)
        row.sell_transaction_id = gain.sell_transaction_id
        row.lot_id = gain.lot_id
        row.symbol = gain.symbol
        row.acquired_on = gain.acquired_on
        row.disposed_on = gain.disposed_on
        row.quantity = gain.quantity
        row.cost_basis = gain.cost_basis
        row.proceeds = gain.proceeds
        row.gain = gain.gain
        row.long_term = gain.long_term
    for row in existing.values():
        await session.delete(row)


def validate_fields(fields: TransactionFields, portfolio: Portfolio, *, today: date | None = None) -> TransactionFields:
    """Normalize and validate boundary fields; returns a complete copy."""

    if fields.type is None:
        raise ValidationFailed("transaction type is required", code="INVALID_TRANSACTION_TYPE")
    symbol = normalize_symbol(fields.symbol)
    related = normalize_symbol(fields.related_symbol, field_name="new_symbol") if fields.related_symbol else None
    commission = fields.commission if fields.commission is not None else ZERO
    validate_entry_fields(
        type=fields.type,
        symbol=symbol,
        trade_date=fields.trade_date,
        quantity=fields.quantity,
        price=fields.price,
        commission=commission,
        ratio=fields.ratio,
        related_symbol=related,
        basis_allocation=fields.basis_allocation,
        lot_selections=fields.lot_selections,
        today=today,
        max_future_days=MAX_FUTURE_DAYS,
    )
    lot_method = None
    if fields.type == TransactionType.SELL:
        lot_method = fields.lot_method or portfolio.cost_basis_method
        if fields.lot_selections:
            lot_method = CostBasisMethod.SPECIFIC_LOT
    return TransactionFields(
        type=fields.type,
        symbol=symbol,
        trade_date=fields.trade_date,
        quantity=q10(fields.quantity),
        price=q10(fields.price) if fields.price is not None else None,
        commission=q10(commission),
        currency=normalize_currency(fields.currency, portfolio.base_currency or "USD"),
        notes=fields.notes.strip() if fields.notes else None,
        ratio=fields.ratio,
        related_symbol=related,
        basis_allocation=fields.basis_allocation,
        lot_method=lot_method,
        lot_selections=list(fields.lot_selections or []),
        raw_data=fields.raw_data,
    )


def build_transaction(
    portfolio: Portfolio,
    fields: TransactionFields,
    *,
    sequence: int,
    batch_id: UUID | None = None,
) -> Transaction:
    leg = ActionLeg.SOURCE if fields.type in (TransactionType.MERGER, TransactionType.SPINOFF) else None
    return Transaction(
        portfolio_id=portfolio.id,
        batch_id=batch_id,
        type=fields.type,
        symbol=fields.symbol,
        trade_date=fields.trade_date,
        quantity=fields.quantity,
        price=fields.price,
        commission=fields.commission if fields.commission is not None else ZERO,
        currency=fields.currency or portfolio.base_currency,
        notes=fields.notes,
        ratio=fields.ratio,
        related_symbol=fields.related_symbol,
        leg=leg,
        basis_allocation=fields.basis_allocation,
        lot_method=fields.lot_method,
        lot_selections=[selection.to_json() for selection in fields.lot_selections] or None,
        raw_data=fields.raw_data,
        sequence=sequence,
    )


async def append_transaction(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    fields: TransactionFields,
    *,
    settings: AppSettings | None = None,
) -> Transaction:
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    clean = validate_fields(fields, portfolio)
    async with portfolio_write(session, portfolio.id):
        tx = build_transaction(portfolio, clean, sequence=await next_sequence(session, portfolio.id))
        session.add(tx)
        await reproject(session, portfolio, [tx.symbol], settings=settings)
    await session.refresh(tx)
    logger.info("Appended %s %s %s to portfolio %s", tx.type.value, tx.quantity, tx.symbol, portfolio.id)
    return tx


async def _load_transaction(session: AsyncSession, portfolio_id: UUID, transaction_id: UUID) -> Transaction:
    tx = await session.get(Transaction, transaction_id)
    if tx is None or tx.portfolio_id != portfolio_id:
        raise NotFound("Transaction not found", code="TRANSACTION_NOT_FOUND")
    return tx


def _reject_action_entry(tx: Transaction) -> None:
    """Entries written by an applied corporate action are owned by its proposal."""

    if tx.corporate_action_id is not None:
        raise Conflict(
            "Transaction was recorded by a corporate action and cannot be changed",
            code="CORPORATE_ACTION_ENTRY",
            details={"transaction_id": str(tx.id), "corporate_action_id": str(tx.corporate_action_id)},
        )


async def get_transaction(
    session: AsyncSession, portfolio_id: UUID, user_id: UUID, transaction_id: UUID
) -> Transaction:
    await load_owned_portfolio(session, portfolio_id, user_id)
    return await _load_transaction(session, portfolio_id, transaction_id)


async def list_transactions(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    *,
    symbol: str | None = None,
    start: date | None = None,
    end: date | None = None,
    type: TransactionType | None = None,
    batch_id: UUID | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Transaction]:
    await load_owned_portfolio(session, portfolio_id, user_id)
    stmt = select(Transaction).where(Transaction.portfolio_id == portfolio_id)
    if symbol:
        stmt = stmt.where(Transaction.symbol == normalize_symbol(symbol))
    if start is not None:
        stmt = stmt.where(Transaction.trade_date >= start)
    if end is not None:
        stmt = stmt.where(Transaction.trade_date <= end)
    if type is not None:
        stmt = stmt.where(Transaction.type == type)
    if batch_id is not None:
        stmt = stmt.where(Transaction.batch_id == batch_id)
    stmt = stmt.order_by(Transaction.trade_date, Transaction.sequence).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def edit_transaction(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    transaction_id: UUID,
    changes: dict[str, Any],
    *,
    settings: AppSettings | None = None,
) -> Transaction:
    """Apply ``changes`` and re-project both the old and the new symbols in full."""

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    tx = await _load_transaction(session, portfolio.id, transaction_id)
    _reject_action_entry(tx)
    unknown = set(changes) - set(TransactionFields.__dataclass_fields__)
    if unknown:
        raise ValidationFailed(f"Unknown transaction fields: {', '.join(sorted(unknown))}")
    current = to_entry(tx)
    merged = TransactionFields(
        type=current.type,
        symbol=current.symbol,
        trade_date=current.trade_date,
        quantity=current.quantity,
        price=current.price,
        commission=current.commission,
        currency=current.currency,
        notes=tx.notes,
        ratio=current.ratio,
        related_symbol=current.related_symbol,
        basis_allocation=current.basis_allocation,
        lot_method=current.lot_method,
        lot_selections=current.lot_selections,
        raw_data=tx.raw_data,
    )
    for key, value in changes.items():
        setattr(merged, key, value)
    clean = validate_fields(merged, portfolio)
    previous = {tx.symbol, tx.related_symbol}

    async with portfolio_write(session, portfolio.id):
        tx.type = clean.type
        tx.symbol = clean.symbol
        tx.trade_date = clean.trade_date
        tx.quantity = clean.quantity
        tx.price = clean.price
        tx.commission = clean.commission
        tx.currency = clean.currency
        tx.notes = clean.notes
        tx.ratio = clean.ratio
        tx.related_symbol = clean.related_symbol
        tx.basis_allocation = clean.basis_allocation
        tx.lot_method = clean.lot_method if clean.type == TransactionType.SELL else None
        tx.lot_selections = [s.to_json() for s in clean.lot_selections] or None
        await reproject(
            session,
            portfolio,
            {symbol for symbol in previous | {tx.symbol, tx.related_symbol} if symbol},
            settings=settings,
        )
    await session.refresh(tx)
    logger.info("Edited transaction %s in portfolio %s", tx.id, portfolio.id)
    return tx


async def purge_derived_rows(session: AsyncSession, transaction_ids: Sequence[UUID]) -> None:
    """Drop lots and gains that reference ledger rows about to be deleted."""

    if not transaction_ids:
        return
    await session.execute(
        delete(RealizedGain)
        .where(RealizedGain.sell_transaction_id.in_(transaction_ids))
        .execution_options(synchronize_session="fetch")
    )
    await session.execute(
        delete(TaxLot)
        .where(TaxLot.transaction_id.in_(transaction_ids))
        .execution_options(synchronize_session="fetch")
    )


async def delete_transaction(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    transaction_id: UUID,
    *,
    settings: AppSettings | None = None,
) -> None:
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id)
    tx = await _load_transaction(session, portfolio.id, transaction_id)
    _reject_action_entry(tx)
    symbols = {symbol for symbol in (tx.symbol, tx.related_symbol) if symbol}
    async with portfolio_write(session, portfolio.id):
        await purge_derived_rows(session, [tx.id])
        await session.delete(tx)
        await session.flush()
        await reproject(session, portfolio, symbols, settings=settings)
    logger.info("Deleted transaction %s from portfolio %s", transaction_id, portfolio.id)


__all__ = [
    "MAX_FUTURE_DAYS",
    "TransactionFields",
    "append_transaction",
    "build_transaction",
    "delete_transaction",
    "edit_transaction",
    "get_transaction",
    "list_transactions",
    "load_entries",
    "next_sequence",
    "project_portfolio",
    "projection_options",
    "purge_derived_rows",
    "reproject",
    "to_entry",
    "validate_fields",
]
