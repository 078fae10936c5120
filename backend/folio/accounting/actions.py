"""Corporate-action vocabulary: parameter rules, descriptions and the proposal state machine."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from fractions import Fraction

from folio.accounting.enums import CorporateActionType, ProposalStatus
from folio.accounting.ledger import normalize_currency, normalize_symbol
from folio.core.decimals import ONE, ZERO, q2
from folio.core.errors import Conflict, ValidationFailed


class ProposalEvent(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    APPLY = "APPLY"


TRANSITIONS: dict[tuple[ProposalStatus, ProposalEvent], ProposalStatus] = {
    (ProposalStatus.PENDING, ProposalEvent.APPROVE): ProposalStatus.APPROVED,
    (ProposalStatus.PENDING, ProposalEvent.REJECT): ProposalStatus.REJECTED,
    (ProposalStatus.APPROVED, ProposalEvent.REJECT): ProposalStatus.REJECTED,
    (ProposalStatus.APPROVED, ProposalEvent.APPLY): ProposalStatus.APPLIED,
}


def next_status(current: ProposalStatus, event: ProposalEvent) -> ProposalStatus:
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise Conflict(
            f"Cannot {event.value.lower()} a proposal in state {current.value}",
            code="ILLEGAL_TRANSITION",
            details={"status": current.value, "event": event.value},
        ) from None


@dataclass(frozen=True)
class ActionParameters:
    symbol: str
    type: CorporateActionType
    ex_date: date
    ratio: Decimal | None = None
    amount: Decimal | None = None
    currency: str | None = None
    new_symbol: str | None = None
    basis_allocation: Decimal | None = None

    @property
    def dedupe_key(self) -> str:
        return "|".join(
            [
                self.symbol,
                self.type.value,
                self.ex_date.isoformat(),
                _number(self.ratio) if self.ratio is not None else "",
                _number(self.amount) if self.amount is not None else "",
                self.new_symbol or "",
            ]
        )


def normalize_parameters(
    *,
    symbol: str,
    type: CorporateActionType,
    ex_date: date | None,
    ratio: Decimal | None = None,
    amount: Decimal | None = None,
    currency: str | None = None,
    new_symbol: str | None = None,
    basis_allocation: Decimal | None = None,
) -> ActionParameters:
    """Validate type-discriminated parameters and drop those the type ignores."""

    normalized = normalize_symbol(symbol)
    if ex_date is None:
        raise ValidationFailed("ex-date is required", code="INVALID_DATE")
    target = normalize_symbol(new_symbol, field_name="new_symbol") if new_symbol else None

    if type == CorporateActionType.SPLIT:
        _require_positive(ratio, "SPLIT requires a positive ratio")
        if ratio == ONE:
            raise ValidationFailed("a 1:1 split changes nothing", code="INVALID_RATIO")
        return ActionParameters(normalized, type, ex_date, ratio=ratio)
    if type == CorporateActionType.DIVIDEND:
        if amount is None or amount <= ZERO:
            raise ValidationFailed("DIVIDEND requires a positive amount", code="INVALID_AMOUNT")
        return ActionParameters(normalized, type, ex_date, amount=amount, currency=normalize_currency(currency))
    if type in (CorporateActionType.MERGER, CorporateActionType.SPINOFF):
        _require_positive(ratio, f"{type.value} requires a positive ratio")
        if target is None:
            raise ValidationFailed(f"{type.value} requires a new symbol", code="INVALID_SYMBOL")
        _require_distinct(normalized, target)
        allocation = None
        if type == CorporateActionType.SPINOFF and basis_allocation is not None:
            if not (ZERO < basis_allocation < ONE):
                raise ValidationFailed(
                    "basis allocation must be between 0 and 1", code="INVALID_ALLOCATION_RATIO"
                )
            allocation = basis_allocation
        return ActionParameters(
            normalized, type, ex_date, ratio=ratio, new_symbol=target, basis_allocation=allocation
        )
    if type == CorporateActionType.TICKER_CHANGE:
        if target is None:
            raise ValidationFailed("TICKER_CHANGE requires a new symbol", code="INVALID_SYMBOL")
        _require_distinct(normalized, target)
        return ActionParameters(normalized, type, ex_date, new_symbol=target)
    raise ValidationFailed(f"Unsupported corporate action type {type}", code="INVALID_CORPORATE_ACTION_TYPE")


def _require_positive(value: Decimal | None, message: str) -> None:
    if value is None or value <= ZERO:
        raise ValidationFailed(message, code="INVALID_RATIO")


def _require_distinct(symbol: str, new_symbol: str) -> None:
    if symbol == new_symbol:
        raise ValidationFailed("new symbol must differ from the symbol", code="INVALID_SYMBOL")


def _number(value: Decimal) -> str:
    text = format(value.normalize(), "f")
    return text


def format_ratio(ratio: Decimal) -> str:
    """Render a share ratio the way announcements do: 2 -> ``2:1``, 0.5 -> ``1:2``."""

    fraction = Fraction(ratio).limit_denominator(1000)
    return f"{fraction.numerator}:{fraction.denominator}"


def describe(params: ActionParameters, shares: Decimal | None = None) -> str:
    """Human-readable summary; mentions the affected share count when given."""

    symbol = params.symbol
    if params.type == CorporateActionType.SPLIT:
        text = f"Stock split {format_ratio(params.ratio or ONE)} on {symbol}"
    elif params.type == CorporateActionType.DIVIDEND:
        currency = params.currency or "USD"
        text = f"Dividend of {_number(params.amount or ZERO)} {currency} per share on {symbol}"
    elif params.type == CorporateActionType.MERGER:
        text = (
            f"Merger of {symbol} into {params.new_symbol} at "
            f"{_number(params.ratio or ONE)} shares per share"
        )
    elif params.type == CorporateActionType.SPINOFF:
        text = (
            f"Spinoff of {params.new_symbol} from {symbol} at "
            f"{_number(params.ratio or ONE)} shares per share"
        )
    else:
        text = f"Ticker change from {symbol} to {params.new_symbol}"
    if shares is None:
        return text
    text = f"{text} affects {_number(shares)} shares"
    if params.type == CorporateActionType.DIVIDEND and params.amount is not None:
        total = q2(params.amount * shares)
        text = f"{text} ({total} {params.currency or 'USD'} total)"
    return text


__all__ = [
    "ActionParameters",
    "ProposalEvent",
    "TRANSITIONS",
    "describe",
    "format_ratio",
    "next_status",
    "normalize_parameters",
]
