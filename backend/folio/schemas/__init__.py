"""Pydantic schema exports."""

from .actions import (
    CorporateActionCreateRequest,
    CorporateActionRegistration,
    CorporateActionSchema,
    DetectionReportSchema,
    PortfolioActionSchema,
    RejectRequest,
    SimulationResponse,
)
from .holdings import (
    AllocateSaleRequest,
    AllocationLineSchema,
    HarvestOpportunitySchema,
    HoldingSchema,
    HoldingsSummarySchema,
    RealizedGainSchema,
    SalePreviewSchema,
    TaxLotSchema,
    TaxReportSchema,
)
from .imports import (
    BatchDeleteResponse,
    BulkImportRequest,
    CsvImportRequest,
    ImportBatchSchema,
    ImportRecordSchema,
    ImportResultSchema,
    ImportRowErrorSchema,
)
from .performance import (
    AnnualizedReturnSchema,
    BenchmarkSchema,
    JobStatusSchema,
    MWRSchema,
    PerformanceMetricsSchema,
    SnapshotCreateRequest,
    SnapshotCreateResponse,
    SnapshotSchema,
    SubPeriodSchema,
    TWRSchema,
)
from .portfolio import (
    LotSelectionSchema,
    PortfolioCreateRequest,
    PortfolioSchema,
    PortfolioUpdateRequest,
    TransactionCreateRequest,
    TransactionSchema,
    TransactionUpdateRequest,
    UserCreateRequest,
    UserSchema,
)

__all__ = [
    "AllocateSaleRequest",
    "AllocationLineSchema",
    "AnnualizedReturnSchema",
    "BatchDeleteResponse",
    "BenchmarkSchema",
    "BulkImportRequest",
    "CorporateActionCreateRequest",
    "CorporateActionRegistration",
    "CorporateActionSchema",
    "CsvImportRequest",
    "DetectionReportSchema",
    "HarvestOpportunitySchema",
    "HoldingSchema",
    "HoldingsSummarySchema",
    "ImportBatchSchema",
    "ImportRecordSchema",
    "ImportResultSchema",
    "ImportRowErrorSchema",
    "JobStatusSchema",
    "LotSelectionSchema",
    "MWRSchema",
    "PerformanceMetricsSchema",
    "PortfolioActionSchema",
    "PortfolioCreateRequest",
    "PortfolioSchema",
    "PortfolioUpdateRequest",
    "RealizedGainSchema",
    "RejectRequest",
    "SalePreviewSchema",
    "SimulationResponse",
    "SnapshotCreateRequest",
    "SnapshotCreateResponse",
    "SnapshotSchema",
    "SubPeriodSchema",
    "TWRSchema",
    "TaxLotSchema",
    "TaxReportSchema",
    "TransactionCreateRequest",
    "TransactionSchema",
    "TransactionUpdateRequest",
    "UserCreateRequest",
    "UserSchema",
]
