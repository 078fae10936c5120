"""ORM models for the folio service."""

from .corporate_action import CorporateAction, PortfolioAction
from .performance import PerformanceSnapshot
from .portfolio import Holding, ImportBatch, Portfolio, RealizedGain, TaxLot, Transaction
from .user import PasswordResetToken, RefreshToken, User

__all__ = [
    "CorporateAction",
    "Holding",
    "ImportBatch",
    "PasswordResetToken",
    "PerformanceSnapshot",
    "Portfolio",
    "PortfolioAction",
    "RealizedGain",
    "RefreshToken",
    "TaxLot",
    "Transaction",
    "User",
]
