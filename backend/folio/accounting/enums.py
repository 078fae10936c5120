"""Closed vocabularies shared by the ledger, the engines and the ORM."""

from __future__ import annotations

import enum


class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    SPLIT = "SPLIT"
    MERGER = "MERGER"
    SPINOFF = "SPINOFF"
    TICKER_CHANGE = "TICKER_CHANGE"
    DIVIDEND_REINVEST = "DIVIDEND_REINVEST"

    @property
    def is_acquisition(self) -> bool:
        return self in (TransactionType.BUY, TransactionType.DIVIDEND_REINVEST)

    @property
    def requires_price(self) -> bool:
        return self in (TransactionType.BUY, TransactionType.SELL, TransactionType.DIVIDEND_REINVEST)

    @property
    def is_corporate_action(self) -> bool:
        return self in CORPORATE_TRANSACTION_TYPES


CORPORATE_TRANSACTION_TYPES = frozenset(
    {
        TransactionType.SPLIT,
        TransactionType.MERGER,
        TransactionType.SPINOFF,
        TransactionType.TICKER_CHANGE,
    }
)


class CostBasisMethod(str, enum.Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    SPECIFIC_LOT = "SPECIFIC_LOT"


class ActionLeg(str, enum.Enum):
    """Which side of a two-symbol corporate action a ledger entry records."""

    SOURCE = "SOURCE"
    TARGET = "TARGET"


class CorporateActionType(str, enum.Enum):
    SPLIT = "SPLIT"
    DIVIDEND = "DIVIDEND"
    MERGER = "MERGER"
    SPINOFF = "SPINOFF"
    TICKER_CHANGE = "TICKER_CHANGE"


class ProposalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProposalStatus.REJECTED, ProposalStatus.APPLIED)


NON_TERMINAL_STATUSES = (ProposalStatus.PENDING, ProposalStatus.APPROVED)


class ImportFormat(str, enum.Enum):
    GENERIC = "generic"
    FIDELITY = "fidelity"
    SCHWAB = "schwab"
    TD_AMERITRADE = "td_ameritrade"
    ETRADE = "etrade"
    INTERACTIVE_BROKERS = "interactive_brokers"
    ROBINHOOD = "robinhood"


__all__ = [
    "ActionLeg",
    "CORPORATE_TRANSACTION_TYPES",
    "CorporateActionType",
    "CostBasisMethod",
    "ImportFormat",
    "NON_TERMINAL_STATUSES",
    "ProposalStatus",
    "TransactionType",
]
