"""Bulk import and import-batch endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.dependencies import get_current_user, get_db_session, get_settings_dependency
from folio.config import AppSettings
from folio.ingest.csv import ImportRecord
from folio.models import ImportBatch, User
from folio.schemas import (
    BatchDeleteResponse,
    BulkImportRequest,
    CsvImportRequest,
    ImportBatchSchema,
    ImportResultSchema,
)
from folio.services import imports, ledger

router = APIRouter()


def _batch_schema(batch: ImportBatch, count: int) -> ImportBatchSchema:
    return ImportBatchSchema(
        id=batch.id,
        portfolio_id=batch.portfolio_id,
        format_tag=batch.format_tag,
        imported_at=batch.imported_at,
        notes=batch.notes,
        transaction_count=count,
    )


@router.post("/{portfolio_id}/imports", response_model=ImportResultSchema)
async def post_import(
    portfolio_id: UUID,
    payload: BulkImportRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> ImportResultSchema:
    records = [
        ImportRecord(line=index + 1, **record.model_dump()) for index, record in enumerate(payload.records)
    ]
    result = await imports.import_records(
        session,
        portfolio_id,
        current_user.id,
        records,
        format_tag=payload.format_tag,
        dry_run=payload.dry_run,
        skip_invalid=payload.skip_invalid,
        notes=payload.notes,
        settings=settings,
    )
    return ImportResultSchema.model_validate(result)


@router.post("/{portfolio_id}/imports/csv", response_model=ImportResultSchema)
async def post_csv_import(
    portfolio_id: UUID,
    payload: CsvImportRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> ImportResultSchema:
    result = await imports.import_csv(
        session,
        portfolio_id,
        current_user.id,
        payload.content,
        format_tag=payload.format_tag,
        dry_run=payload.dry_run,
        skip_invalid=payload.skip_invalid,
        notes=payload.notes,
        settings=settings,
    )
    return ImportResultSchema.model_validate(result)


@router.get("/{portfolio_id}/imports", response_model=list[ImportBatchSchema])
async def get_batches(
    portfolio_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> list[ImportBatchSchema]:
    rows = await imports.list_batches(session, portfolio_id, current_user.id)
    return [_batch_schema(batch, count) for batch, count in rows]


@router.get("/{portfolio_id}/imports/{batch_id}", response_model=ImportBatchSchema)
async def get_batch(
    portfolio_id: UUID,
    batch_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
) -> ImportBatchSchema:
    batch = await imports.get_batch(session, portfolio_id, current_user.id, batch_id)
    rows = await ledger.list_transactions(session, portfolio_id, current_user.id, batch_id=batch.id)
    return _batch_schema(batch, len(rows))


@router.delete("/{portfolio_id}/imports/{batch_id}", response_model=BatchDeleteResponse, status_code=status.HTTP_200_OK)
async def delete_batch(
    portfolio_id: UUID,
    batch_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(get_current_user),
    settings: AppSettings = Depends(get_settings_dependency),
) -> BatchDeleteResponse:
    removed = await imports.delete_batch(session, portfolio_id, current_user.id, batch_id, settings=settings)
    return BatchDeleteResponse(batch_id=batch_id, transactions_deleted=removed)


__all__ = ["router"]
