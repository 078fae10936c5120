"""Ledger entries as plain values plus boundary validation.

The projector and the performance engine work over ``LedgerEntry`` values,
never over ORM rows, so replay stays a pure function of the ledger.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from folio.accounting.enums import ActionLeg, CostBasisMethod, TransactionType
from folio.core.decimals import MAX_MAGNITUDE, ZERO, fits_column, to_decimal
from folio.core.errors import ValidationFailed

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9.\-/]{0,19}$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True)
class LotSelection:
    lot_id: UUID
    quantity: Decimal

    def to_json(self) -> dict[str, str]:
        return {"lot_id": str(self.lot_id), "quantity": str(self.quantity)}

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "LotSelection":
        return cls(lot_id=UUID(str(payload["lot_id"])), quantity=to_decimal(payload["quantity"]))


@dataclass
class LedgerEntry:
    id: UUID
    type: TransactionType
    symbol: str
    trade_date: date
    quantity: Decimal
    price: Decimal | None = None
    commission: Decimal = ZERO
    currency: str = "USD"
    sequence: int = 0
    ratio: Decimal | None = None
    related_symbol: str | None = None
    leg: ActionLeg | None = None
    basis_allocation: Decimal | None = None
    lot_method: CostBasisMethod | None = None
    lot_selections: list[LotSelection] = field(default_factory=list)

    @property
    def sort_key(self) -> tuple[date, int]:
        return (self.trade_date, self.sequence)

    @property
    def total_cost(self) -> Decimal:
        if self.price is None:
            return self.commission
        return self.quantity * self.price + self.commission

    @property
    def proceeds(self) -> Decimal:
        return self.quantity * (self.price or ZERO) - self.commission

    @property
    def is_source_leg(self) -> bool:
        return self.leg is None or self.leg == ActionLeg.SOURCE


def order_entries(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    """Return entries in logical ledger order (trade date, then creation order)."""

    return sorted(entries, key=lambda e: e.sort_key)


def normalize_symbol(raw: str | None, *, field_name: str = "symbol") -> str:
    symbol = (raw or "").strip().upper()
    if not symbol:
        raise ValidationFailed(f"{field_name} is required", code="INVALID_SYMBOL")
    if not SYMBOL_PATTERN.match(symbol):
        raise ValidationFailed(f"{field_name} {raw!r} is not a valid ticker", code="INVALID_SYMBOL")
    return symbol


def normalize_currency(raw: str | None, default: str = "USD") -> str:
    currency = (raw or default).strip().upper()
    if not CURRENCY_PATTERN.match(currency):
        raise ValidationFailed(f"currency {raw!r} must be a 3-letter code", code="INVALID_CURRENCY")
    return currency


def _check_magnitude(value: Decimal | None, name: str, code: str) -> None:
    if value is not None and not fits_column(value):
        raise ValidationFailed(f"{name} must be a finite number below {MAX_MAGNITUDE:,.0f}", code=code)


def validate_entry_fields(
    *,
    type: TransactionType,
    symbol: str,
    trade_date: date | None,
    quantity: Decimal | None,
    price: Decimal | None,
    commission: Decimal | None,
    ratio: Decimal | None = None,
    related_symbol: str | None = None,
    basis_allocation: Decimal | None = None,
    lot_selections: Sequence[LotSelection] | None = None,
    today: date | None = None,
    max_future_days: int | None = None,
) -> None:
    """Raise ``ValidationFailed`` when a transaction violates a boundary rule."""

    if trade_date is None:
        raise ValidationFailed("trade date is required", code="INVALID_DATE")
    if max_future_days is not None:
        limit = (today or date.today()) + timedelta(days=max_future_days)
        if trade_date > limit:
            raise ValidationFailed("trade date cannot be in the future", code="INVALID_DATE")
    _check_magnitude(quantity, "quantity", "INVALID_QUANTITY")
    _check_magnitude(price, "price", "INVALID_PRICE")
    _check_magnitude(commission, "commission", "INVALID_COMMISSION")
    _check_magnitude(ratio, "ratio", "INVALID_RATIO")
    if quantity is None or quantity <= ZERO:
        raise ValidationFailed("quantity must be greater than zero", code="INVALID_QUANTITY")
    if type.requires_price and (price is None or price <= ZERO):
        raise ValidationFailed(f"price is required and must be positive for {type.value}", code="INVALID_PRICE")
    if price is not None and price < ZERO:
        raise ValidationFailed("price cannot be negative", code="INVALID_PRICE")
    if commission is not None and commission < ZERO:
        raise ValidationFailed("commission cannot be negative", code="INVALID_COMMISSION")
    if price is not None:
        _check_magnitude(quantity * price + (commission or ZERO), "quantity * price", "INVALID_PRICE")
    if ratio is not None and ratio <= ZERO:
        raise ValidationFailed("ratio must be positive", code="INVALID_RATIO")
    if type in (TransactionType.MERGER, TransactionType.SPINOFF):
        if ratio is None:
            raise ValidationFailed(f"{type.value} requires a ratio", code="INVALID_RATIO")
        if not related_symbol:
            raise ValidationFailed(f"{type.value} requires a new symbol", code="INVALID_SYMBOL")
    if type == TransactionType.TICKER_CHANGE and not related_symbol:
        raise ValidationFailed("TICKER_CHANGE requires a new symbol", code="INVALID_SYMBOL")
    if related_symbol and related_symbol == symbol:
        raise ValidationFailed("new symbol must differ from the symbol", code="INVALID_SYMBOL")
    if basis_allocation is not None and not (ZERO < basis_allocation < Decimal("1")):
        raise ValidationFailed("basis allocation must be between 0 and 1", code="INVALID_ALLOCATION_RATIO")
    if lot_selections:
        if type != TransactionType.SELL:
            raise ValidationFailed("lot selections only apply to SELL transactions", code="INVALID_LOT_SELECTION")
        for selection in lot_selections:
            if selection.quantity <= ZERO:
                raise ValidationFailed("lot selection quantity must be positive", code="INVALID_LOT_SELECTION")


__all__ = [
    "LedgerEntry",
    "LotSelection",
    "normalize_currency",
    "normalize_symbol",
    "order_entries",
    "validate_entry_fields",
]
