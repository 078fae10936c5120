"""Bulk import of normalized records into a batch, and batch management.

Every record is validated first. Without ``skip_invalid`` a single bad row
aborts the import and nothing is written; with it, bad rows and SELLs that
would oversell are skipped and reported. The whole batch is then replayed in
memory before anything is written, so a dry run reports exactly what a real
import would do.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.accounting.enums import ImportFormat
from folio.accounting.ledger import LedgerEntry
from folio.accounting.projector import project_ledger
from folio.config import AppSettings
from folio.core.errors import (
    FolioError,
    InsufficientLots,
    InsufficientShares,
    InvalidAllocation,
    NotFound,
    ValidationFailed,
)
from folio.db.locks import portfolio_write
from folio.ingest.csv import ImportRecord, ImportRowError, parse_csv
from folio.models import ImportBatch, Portfolio, Transaction
from folio.services.ledger import (
    TransactionFields,
    build_transaction,
    load_entries,
    next_sequence,
    projection_options,
    purge_derived_rows,
    reproject,
    validate_fields,
)
from folio.services.portfolios import load_owned_portfolio

logger = logging.getLogger(__name__)

REPLAY_ERRORS = (InsufficientShares, InsufficientLots, InvalidAllocation)


@dataclass
class ImportResult:
    batch_id: UUID | None
    total: int
    success: int
    failed: int
    skipped: int
    errors: list[ImportRowError] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class _Candidate:
    id: UUID
    line: int
    fields: TransactionFields
    raw: str | None


def _format_tag(value: str | ImportFormat | None) -> ImportFormat:
    try:
        return ImportFormat(value or ImportFormat.GENERIC)
    except ValueError:
        raise ValidationFailed(f"Unsupported import format {value!r}", code="INVALID_FORMAT") from None


def _raw(record: ImportRecord) -> str | None:
    if record.raw_data is None:
        return None
    return json.dumps(record.raw_data, default=str, sort_keys=True)


def _fields(record: ImportRecord) -> TransactionFields:
    return TransactionFields(
        type=record.type,
        symbol=record.symbol,
        trade_date=record.date,
        quantity=record.quantity,
        price=record.price,
        commission=record.commission,
        currency=record.currency,
        notes=record.notes,
        raw_data=record.raw_data,
    )


def _error_field(exc: FolioError) -> str:
    code = exc.code
    for name in ("date", "quantity", "price", "commission", "symbol", "currency"):
        if name.upper() in code:
            return name
    return "row"


def _entry(candidate: _Candidate, sequence: int) -> LedgerEntry:
    fields = candidate.fields
    return LedgerEntry(
        id=candidate.id,
        type=fields.type,
        symbol=fields.symbol,
        trade_date=fields.trade_date,
        quantity=fields.quantity,
        price=fields.price,
        commission=fields.commission,
        currency=fields.currency or "USD",
        sequence=sequence,
        lot_method=fields.lot_method,
    )


async def _replay_check(
    session: AsyncSession,
    portfolio: Portfolio,
    candidates: list[_Candidate],
    errors: list[ImportRowError],
    *,
    skip_invalid: bool,
    settings: AppSettings | None,
) -> tuple[list[_Candidate], bool]:
    """Replay the ledger plus ``candidates``; drop offending rows when skipping.

    Returns the surviving candidates and whether the import may proceed.
    """

    existing = await load_entries(session, portfolio.id)
    base = await next_sequence(session, portfolio.id)
    options = projection_options(portfolio, settings)
    remaining = list(candidates)
    while remaining:
        entries = existing + [_entry(c, base + index) for index, c in enumerate(remaining)]
        try:
            project_ledger(entries, **options)
        except REPLAY_ERRORS as exc:
            offending = exc.details.get("transaction_id")
            match = next((c for c in remaining if str(c.id) == offending), None)
            if match is None:
                raise
            errors.append(ImportRowError(line=match.line, field="quantity", message=exc.message, raw_data=match.raw))
            if not skip_invalid:
                return remaining, False
            remaining.remove(match)
            continue
        break
    return remaining, True


async def import_records(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    records: Sequence[ImportRecord],
    *,
    format_tag: str | ImportFormat | None = None,
    dry_run: bool = False,
    skip_invalid: bool = False,
    notes: str | None = None,
    parse_errors: Sequence[ImportRowError] = (),
    settings: AppSettings | None = None,
) -> ImportResult:
    portfolio = await load_owned_portfolio(session, portfolio_id, user_id, hide_foreign=True)
    tag = _format_tag(format_tag)
    errors: list[ImportRowError] = list(parse_errors)
    total = len(records) + len(parse_errors)
    today = date.today()

    candidates: list[_Candidate] = []
    for index, record in enumerate(records):
        line = record.line or index + 1
        try:
            clean = validate_fields(_fields(record), portfolio, today=today)
        except ValidationFailed as exc:
            errors.append(
                ImportRowError(line=line, field=_error_field(exc), message=exc.message, raw_data=_raw(record))
            )
            continue
        candidates.append(_Candidate(id=uuid4(), line=line, fields=clean, raw=_raw(record)))

    def result(batch_id: UUID | None, written: int) -> ImportResult:
        rejected = len(errors)
        return ImportResult(
            batch_id=batch_id,
            total=total,
            success=written,
            failed=0 if skip_invalid else rejected,
            skipped=rejected if skip_invalid else 0,
            errors=sorted(errors, key=lambda e: e.line),
            dry_run=dry_run,
        )

    if errors and not skip_invalid:
        logger.info("Import into portfolio %s rejected: %d invalid rows", portfolio_id, len(errors))
        return result(None, 0)

    if dry_run:
        survivors, ok = await _replay_check(
            session, portfolio, candidates, errors, skip_invalid=skip_invalid, settings=settings
        )
        return result(None, len(survivors) if ok else 0)

    batch_id: UUID | None = None
    written = 0
    async with portfolio_write(session, portfolio.id):
        survivors, ok = await _replay_check(
            session, portfolio, candidates, errors, skip_invalid=skip_invalid, settings=settings
        )
        if ok and survivors:
            batch = ImportBatch(portfolio_id=portfolio.id, format_tag=tag.value, notes=notes)
            session.add(batch)
            await session.flush()
            batch_id = batch.id
            sequence = await next_sequence(session, portfolio.id)
            symbols: set[str] = set()
            for offset, candidate in enumerate(survivors):
                tx = build_transaction(portfolio, candidate.fields, sequence=sequence + offset, batch_id=batch.id)
                tx.id = candidate.id
                session.add(tx)
                symbols.add(tx.symbol)
            await reproject(session, portfolio, symbols, settings=settings)
            written = len(survivors)
    if batch_id is not None:
        logger.info("Imported %d transactions into portfolio %s (batch %s)", written, portfolio_id, batch_id)
    return result(batch_id, written)


async def import_csv(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    text: str,
    *,
    format_tag: str | ImportFormat | None = None,
    dry_run: bool = False,
    skip_invalid: bool = False,
    notes: str | None = None,
    settings: AppSettings | None = None,
) -> ImportResult:
    """Parse a broker CSV export with the layout named by ``format_tag`` and import the records."""

    await load_owned_portfolio(session, portfolio_id, user_id, hide_foreign=True)
    import_format = _format_tag(format_tag)
    parsed = parse_csv(text, import_format)
    return await import_records(
        session,
        portfolio_id,
        user_id,
        parsed.records,
        format_tag=import_format,
        dry_run=dry_run,
        skip_invalid=skip_invalid,
        notes=notes,
        parse_errors=parsed.errors,
        settings=settings,
    )


async def list_batches(
    session: AsyncSession, portfolio_id: UUID, user_id: UUID
) -> list[tuple[ImportBatch, int]]:
    """Batches newest first with their transaction counts."""

    await load_owned_portfolio(session, portfolio_id, user_id, hide_foreign=True)
    counts = (
        select(Transaction.batch_id, func.count(Transaction.id).label("count"))
        .where(Transaction.portfolio_id == portfolio_id, Transaction.batch_id.is_not(None))
        .group_by(Transaction.batch_id)
        .subquery()
    )
    result = await session.execute(
        select(ImportBatch, func.coalesce(counts.c.count, 0))
        .outerjoin(counts, counts.c.batch_id == ImportBatch.id)
        .where(ImportBatch.portfolio_id == portfolio_id)
        .order_by(ImportBatch.imported_at.desc())
    )
    return [(batch, int(count)) for batch, count in result.all()]


async def _load_batch(session: AsyncSession, portfolio_id: UUID, batch_id: UUID) -> ImportBatch:
    batch = await session.get(ImportBatch, batch_id)
    if batch is None or batch.portfolio_id != portfolio_id:
        raise NotFound("Import batch not found", code="BATCH_NOT_FOUND")
    return batch


async def get_batch(session: AsyncSession, portfolio_id: UUID, user_id: UUID, batch_id: UUID) -> ImportBatch:
    await load_owned_portfolio(session, portfolio_id, user_id, hide_foreign=True)
    return await _load_batch(session, portfolio_id, batch_id)


async def delete_batch(
    session: AsyncSession,
    portfolio_id: UUID,
    user_id: UUID,
    batch_id: UUID,
    *,
    settings: AppSettings | None = None,
) -> int:
    """Delete a batch with its transactions and re-project every affected symbol.

    Returns the number of transactions removed.
    """

    portfolio = await load_owned_portfolio(session, portfolio_id, user_id, hide_foreign=True)
    batch = await _load_batch(session, portfolio.id, batch_id)
    rows = (
        await session.execute(
            select(Transaction.id, Transaction.symbol, Transaction.related_symbol).where(
                Transaction.batch_id == batch.id
            )
        )
    ).all()
    transaction_ids = [row.id for row in rows]
    symbols = {symbol for row in rows for symbol in (row.symbol, row.related_symbol) if symbol}
    async with portfolio_write(session, portfolio.id):
        await purge_derived_rows(session, transaction_ids)
        await session.execute(
            delete(Transaction)
            .where(Transaction.batch_id == batch.id)
            .execution_options(synchronize_session="fetch")
        )
        await session.delete(batch)
        await session.flush()
        await reproject(session, portfolio, symbols, settings=settings)
    logger.info("Deleted batch %s (%d transactions) from portfolio %s", batch_id, len(transaction_ids), portfolio_id)
    return len(transaction_ids)


__all__ = [
    "ImportResult",
    "delete_batch",
    "get_batch",
    "import_csv",
    "import_records",
    "list_batches",
]
