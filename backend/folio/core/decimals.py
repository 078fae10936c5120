"""Fixed-scale decimal helpers.

Intermediate quantities and amounts are kept at scale 10, presentation of
money at scale 2, both with banker's rounding.
"""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, getcontext
from typing import Iterable

getcontext().prec = 28

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
INTERMEDIATE_QUANTUM = Decimal("1e-10")
MONEY_QUANTUM = Decimal("0.01")
EPSILON = Decimal("1e-8")
# Stored columns are Numeric(28, 10), leaving 18 integral digits.
MAX_MAGNITUDE = Decimal("1e18")


def to_decimal(value: Decimal | int | float | str | None, *, default: Decimal | None = None) -> Decimal:
    """Coerce ``value`` to ``Decimal`` going through ``str`` for floats."""

    if value is None:
        if default is None:
            raise ValueError("Decimal value required")
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid decimal value: {value!r}") from exc


def q10(value: Decimal) -> Decimal:
    return value.quantize(INTERMEDIATE_QUANTUM, rounding=ROUND_HALF_EVEN)


def q2(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_EVEN)


def fits_column(value: Decimal) -> bool:
    """True when ``value`` is finite and storable at scale 10."""

    return value.is_finite() and abs(value) < MAX_MAGNITUDE


def is_zero(value: Decimal) -> bool:
    return abs(value) <= EPSILON


def percent(numerator: Decimal, denominator: Decimal) -> Decimal | None:
    """Return ``numerator / denominator * 100`` or ``None`` for a zero denominator."""

    if is_zero(denominator):
        return None
    return q10(numerator / denominator * HUNDRED)


def dsum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def from_float(value: float) -> Decimal:
    """Re-materialize a float computed outside decimal arithmetic."""

    return q10(Decimal(repr(value)))


__all__ = [
    "EPSILON",
    "HUNDRED",
    "MAX_MAGNITUDE",
    "ONE",
    "ZERO",
    "dsum",
    "fits_column",
    "from_float",
    "is_zero",
    "percent",
    "q10",
    "q2",
    "to_decimal",
]
