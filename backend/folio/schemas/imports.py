"""Pydantic schemas for bulk imports and import batches."""

from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from folio.accounting.enums import ImportFormat, TransactionType


class ImportRecordSchema(BaseModel):
    """One normalized record; row-level checks happen during the import so they can be reported per line."""

    type: TransactionType
    symbol: str
    date: dt.date
    quantity: Decimal
    price: Decimal | None = None
    commission: Decimal = Decimal("0")
    currency: str = "USD"
    notes: str | None = None
    raw_data: dict[str, Any] | None = None


class BulkImportRequest(BaseModel):
    format_tag: ImportFormat = ImportFormat.GENERIC
    records: list[ImportRecordSchema] = Field(default_factory=list)
    dry_run: bool = False
    skip_invalid: bool = False
    notes: str | None = None


class CsvImportRequest(BaseModel):
    content: str = Field(..., description="CSV text with a header row")
    format_tag: ImportFormat = ImportFormat.GENERIC
    dry_run: bool = False
    skip_invalid: bool = False
    notes: str | None = None


class ImportRowErrorSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line: int
    field: str
    message: str
    raw_data: str | None = None


class ImportResultSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: UUID | None = None
    total: int
    success: int
    failed: int
    skipped: int
    errors: list[ImportRowErrorSchema]
    dry_run: bool


class ImportBatchSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    portfolio_id: UUID
    format_tag: str
    imported_at: datetime
    notes: str | None = None
    transaction_count: int = 0


class BatchDeleteResponse(BaseModel):
    batch_id: UUID
    transactions_deleted: int


__all__ = [
    "BatchDeleteResponse",
    "BulkImportRequest",
    "CsvImportRequest",
    "ImportBatchSchema",
    "ImportRecordSchema",
    "ImportResultSchema",
    "ImportRowErrorSchema",
]
