"""Broker CSV parsing into normalized import records.

Each supported export is described by a ``BrokerLayout``: the header aliases
for every field, the broker's action vocabulary and how signed amounts are
read. ``parse_csv`` applies a layout to CSV text with pandas.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Sequence

import pandas as pd

from folio.accounting.enums import ImportFormat, TransactionType
from folio.core.decimals import ZERO
from folio.core.errors import ValidationFailed

logger = logging.getLogger(__name__)

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d, %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%B %d, %Y",
    "%b %d, %Y",
    "%Y/%m/%d",
    "%Y-%m-%dT%H:%M:%S%z",
)

TYPE_ALIASES: dict[str, TransactionType] = {
    "BUY": TransactionType.BUY,
    "BOUGHT": TransactionType.BUY,
    "PURCHASE": TransactionType.BUY,
    "SELL": TransactionType.SELL,
    "SOLD": TransactionType.SELL,
    "SALE": TransactionType.SELL,
    "DIVIDEND": TransactionType.DIVIDEND,
    "DIV": TransactionType.DIVIDEND,
    "CASH DIVIDEND": TransactionType.DIVIDEND,
    "SPLIT": TransactionType.SPLIT,
    "STOCK SPLIT": TransactionType.SPLIT,
    "MERGER": TransactionType.MERGER,
    "SPINOFF": TransactionType.SPINOFF,
    "SPIN-OFF": TransactionType.SPINOFF,
    "DIVIDEND REINVEST": TransactionType.DIVIDEND_REINVEST,
    "DIVIDEND_REINVEST": TransactionType.DIVIDEND_REINVEST,
    "DRIP": TransactionType.DIVIDEND_REINVEST,
    "REINVEST": TransactionType.DIVIDEND_REINVEST,
    "TICKER CHANGE": TransactionType.TICKER_CHANGE,
    "TICKER_CHANGE": TransactionType.TICKER_CHANGE,
    "SYMBOL CHANGE": TransactionType.TICKER_CHANGE,
}


@dataclass(frozen=True)
class BrokerLayout:
    """Header aliases and action vocabulary of one CSV export format."""

    format: ImportFormat
    columns: Mapping[str, tuple[str, ...]]
    # Each group lists alternatives for one field; at least one must be present.
    required: tuple[tuple[str, ...], ...]
    actions: Mapping[str, TransactionType] = field(default_factory=dict)
    fee_columns: tuple[tuple[str, ...], ...] = ()
    type_field: str = "type"
    match_keywords: bool = False
    describe_fallback: bool = False
    negative_quantity_sells: bool = False
    signed_amounts: bool = True


GENERIC = BrokerLayout(
    format=ImportFormat.GENERIC,
    columns={
        "date": ("date", "trade date", "transaction date"),
        "type": ("type", "transaction type", "action"),
        "symbol": ("symbol", "ticker", "stock symbol"),
        "quantity": ("quantity", "shares", "amount"),
        "price": ("price", "unit price", "share price"),
        "commission": ("commission", "fee", "fees"),
        "currency": ("currency",),
        "notes": ("notes", "description", "memo"),
    },
    required=(("date",), ("type",), ("symbol",), ("quantity",)),
    signed_amounts=False,
)

FIDELITY = BrokerLayout(
    format=ImportFormat.FIDELITY,
    columns={
        "date": ("run date", "trade date", "settlement date"),
        "type": ("action", "transaction type"),
        "symbol": ("symbol",),
        "quantity": ("quantity",),
        "price": ("price",),
        "notes": ("security description", "description"),
    },
    required=(("type",), ("symbol",)),
    actions={
        "YOU BOUGHT": TransactionType.BUY,
        "YOU SOLD": TransactionType.SELL,
        "DIVIDEND RECEIVED": TransactionType.DIVIDEND,
        "CASH DIVIDEND": TransactionType.DIVIDEND,
        "REINVESTMENT": TransactionType.DIVIDEND_REINVEST,
        "DIVIDEND REINVESTMENT": TransactionType.DIVIDEND_REINVEST,
        "STOCK SPLIT": TransactionType.SPLIT,
        "EXCHANGE OR EXERCISE": TransactionType.MERGER,
        "MERGER": TransactionType.MERGER,
        "SPINOFF": TransactionType.SPINOFF,
        "SYMBOL CHANGE": TransactionType.TICKER_CHANGE,
    },
    fee_columns=(("commission",), ("fees",)),
    type_field="action",
    negative_quantity_sells=True,
)

SCHWAB = BrokerLayout(
    format=ImportFormat.SCHWAB,
    columns={
        "date": ("date", "trade date"),
        "type": ("action",),
        "symbol": ("symbol",),
        "quantity": ("quantity",),
        "price": ("price",),
        "notes": ("description",),
    },
    required=(("date",), ("type",)),
    actions={
        "BUY": TransactionType.BUY,
        "SELL": TransactionType.SELL,
        "DIV": TransactionType.DIVIDEND,
        "CASH DIVIDEND": TransactionType.DIVIDEND,
        "REINVEST DIVIDEND": TransactionType.DIVIDEND_REINVEST,
        "REINVEST SHARES": TransactionType.DIVIDEND_REINVEST,
        "STOCK SPLIT": TransactionType.SPLIT,
        "MERGER": TransactionType.MERGER,
        "SPINOFF": TransactionType.SPINOFF,
        "SYMBOL CHANGE": TransactionType.TICKER_CHANGE,
        "NAME CHANGE": TransactionType.TICKER_CHANGE,
    },
    fee_columns=(("fees & comm", "fees", "commission"),),
    type_field="action",
)

TD_AMERITRADE = BrokerLayout(
    format=ImportFormat.TD_AMERITRADE,
    columns={
        "date": ("date",),
        "type": ("description",),
        "symbol": ("symbol",),
        "quantity": ("quantity",),
        "price": ("price",),
        "notes": ("description",),
    },
    required=(("date",), ("type",)),
    actions={
        "BOUGHT": TransactionType.BUY,
        "BUY": TransactionType.BUY,
        "SOLD": TransactionType.SELL,
        "SELL": TransactionType.SELL,
        "DIVIDEND": TransactionType.DIVIDEND,
        "CASH DIVIDEND": TransactionType.DIVIDEND,
        "QUALIFIED DIVIDEND": TransactionType.DIVIDEND,
        "ORDINARY DIVIDEND": TransactionType.DIVIDEND,
        "REINVEST": TransactionType.DIVIDEND_REINVEST,
        "DIVIDEND REINVESTMENT": TransactionType.DIVIDEND_REINVEST,
        "STOCK SPLIT": TransactionType.SPLIT,
        "MERGER": TransactionType.MERGER,
        "ACQUISITION": TransactionType.MERGER,
        "SPINOFF": TransactionType.SPINOFF,
        "SPIN OFF": TransactionType.SPINOFF,
        "SYMBOL CHANGE": TransactionType.TICKER_CHANGE,
        "NAME CHANGE": TransactionType.TICKER_CHANGE,
    },
    fee_columns=(("commission",), ("reg fee",)),
    type_field="description",
    match_keywords=True,
)

ETRADE = BrokerLayout(
    format=ImportFormat.ETRADE,
    columns={
        "date": ("transactiondate", "transaction date"),
        "type": ("transactiontype", "transaction type"),
        "symbol": ("symbol",),
        "quantity": ("quantity",),
        "price": ("price",),
        "notes": ("description",),
    },
    required=(("date",), ("type",)),
    actions={
        "BOUGHT": TransactionType.BUY,
        "SOLD": TransactionType.SELL,
        "DIVIDEND": TransactionType.DIVIDEND,
        "CASH DIVIDEND": TransactionType.DIVIDEND,
        "DIVIDEND REINVESTED": TransactionType.DIVIDEND_REINVEST,
        "REINVEST DIVIDEND": TransactionType.DIVIDEND_REINVEST,
        "STOCK SPLIT": TransactionType.SPLIT,
        "MERGER": TransactionType.MERGER,
        "SPINOFF": TransactionType.SPINOFF,
        "SYMBOL CHANGE": TransactionType.TICKER_CHANGE,
    },
    fee_columns=(("commission",),),
)

INTERACTIVE_BROKERS = BrokerLayout(
    format=ImportFormat.INTERACTIVE_BROKERS,
    columns={
        "date": ("date/time", "date"),
        "type": ("code", "transaction type"),
        "symbol": ("symbol",),
        "quantity": ("quantity",),
        "price": ("t. price", "price"),
        "currency": ("currency",),
        "notes": ("description",),
    },
    required=(("date",), ("symbol",)),
    actions={
        "O": TransactionType.BUY,
        "C": TransactionType.SELL,
        "DIV": TransactionType.DIVIDEND,
        "PL": TransactionType.SPLIT,
        "TC": TransactionType.TICKER_CHANGE,
    },
    fee_columns=(("comm/fee", "commission"),),
    type_field="code",
    describe_fallback=True,
    negative_quantity_sells=True,
)

ROBINHOOD = BrokerLayout(
    format=ImportFormat.ROBINHOOD,
    columns={
        "date": ("activity date", "trans date"),
        "type": ("trans code",),
        "symbol": ("instrument", "symbol"),
        "quantity": ("quantity",),
        "price": ("price",),
        "notes": ("description",),
    },
    required=(("date",), ("type", "notes")),
    actions={
        "BUY": TransactionType.BUY,
        "SELL": TransactionType.SELL,
        "DIV": TransactionType.DIVIDEND,
        "DIVIDEND": TransactionType.DIVIDEND,
        "CDIV": TransactionType.DIVIDEND,
        "SPLIT": TransactionType.SPLIT,
        "SPINOFF": TransactionType.SPINOFF,
        "MERGER": TransactionType.MERGER,
    },
    type_field="trans_code",
    describe_fallback=True,
)

LAYOUTS: dict[ImportFormat, BrokerLayout] = {
    layout.format: layout
    for layout in (GENERIC, FIDELITY, SCHWAB, TD_AMERITRADE, ETRADE, INTERACTIVE_BROKERS, ROBINHOOD)
}


@dataclass
class ImportRecord:
    type: TransactionType
    symbol: str
    date: date
    quantity: Decimal
    price: Decimal | None = None
    commission: Decimal = ZERO
    currency: str = "USD"
    notes: str | None = None
    raw_data: dict[str, Any] | None = None
    line: int | None = None


@dataclass
class ImportRowError:
    line: int
    field: str
    message: str
    raw_data: str | None = None


@dataclass
class ParseResult:
    records: list[ImportRecord] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)


def parse_date(value: str) -> date:
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unable to parse date: {value}")


def parse_decimal(value: str) -> Decimal:
    """Parse broker-formatted numbers: currency symbols, thousands separators, ``(1.00)``."""

    text = value.strip()
    for token in ("$", "€", "£", ","):
        text = text.replace(token, "")
    text = text.strip()
    if text in ("", "-"):
        return ZERO
    if text.startswith("(") and text.endswith(")"):
        text = "-" + text.strip("()")
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"invalid decimal value: {value}") from exc


def _squash(value: str) -> str:
    return " ".join(value.strip().upper().split())


def parse_transaction_type(value: str) -> TransactionType:
    try:
        return TYPE_ALIASES[_squash(value)]
    except KeyError:
        raise ValueError(f"unknown transaction type: {value}") from None


def resolve_action(layout: BrokerLayout, value: str, description: str = "") -> TransactionType:
    """Map a broker action cell to a transaction type using the layout's vocabulary."""

    key = _squash(value)
    if key in layout.actions:
        return layout.actions[key]
    if layout.match_keywords:
        # Longest keyword first so "CASH DIVIDEND" wins over "DIVIDEND".
        for keyword in sorted(layout.actions, key=len, reverse=True):
            if keyword in key:
                return layout.actions[keyword]
    return parse_transaction_type(description if layout.describe_fallback else value)


def normalize_symbol(value: str) -> str:
    symbol = value.strip().upper()
    for suffix in (".O", ".N"):
        if symbol.endswith(suffix):
            symbol = symbol[: -len(suffix)]
    return symbol


def _lookup(headers: Sequence[str]) -> dict[str, str]:
    return {str(header).strip().lower(): header for header in headers}


def _find(lookup: Mapping[str, str], aliases: Sequence[str]) -> str | None:
    return next((lookup[alias] for alias in aliases if alias in lookup), None)


def _cell(row: pd.Series, column: str | None) -> str:
    if column is None:
        return ""
    value = row.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _read_frame(text: str) -> pd.DataFrame:
    if not text.strip():
        raise ValidationFailed("CSV file is empty", code="INVALID_CSV")
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            skipinitialspace=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise ValidationFailed(f"failed to read CSV: {exc}", code="INVALID_CSV") from exc
    if frame.empty:
        raise ValidationFailed("CSV must contain header row and at least one data row", code="INVALID_CSV")
    return frame


def _fees(row: pd.Series, columns: Sequence[str | None]) -> Decimal:
    total = ZERO
    for column in columns:
        cell = _cell(row, column)
        if not cell:
            continue
        try:
            total += abs(parse_decimal(cell))
        except ValueError:
            logger.debug("Ignoring unreadable fee %r", cell)
    return total


def parse_csv(text: str, format_tag: ImportFormat | str = ImportFormat.GENERIC) -> ParseResult:
    """Parse one broker export into records plus per-row errors.

    Raises ``ValidationFailed`` for structural problems (empty file, missing
    required columns); row-level problems are collected as ``ImportRowError``
    with the 1-based file line number.
    """

    layout = LAYOUTS[ImportFormat(format_tag)]
    frame = _read_frame(text)
    lookup = _lookup(list(frame.columns))
    columns = {name: _find(lookup, aliases) for name, aliases in layout.columns.items()}
    for group in layout.required:
        if all(columns.get(name) is None for name in group):
            raise ValidationFailed(
                f"missing required {layout.format.value} column: {' or '.join(group)}", code="INVALID_CSV"
            )
    fee_columns = [_find(lookup, aliases) for aliases in layout.fee_columns]

    result = ParseResult()
    for index, row in frame.iterrows():
        line = int(index) + 2
        cells = [_cell(row, column) for column in frame.columns]
        if not any(cells):
            continue
        raw = ",".join(cells)

        def fail(field_name: str, message: str) -> None:
            result.errors.append(ImportRowError(line=line, field=field_name, message=message, raw_data=raw))

        try:
            trade_date = parse_date(_cell(row, columns.get("date")))
        except ValueError as exc:
            fail("date", str(exc))
            continue
        description = _cell(row, columns.get("notes"))
        try:
            tx_type = resolve_action(layout, _cell(row, columns.get("type")), description)
        except ValueError as exc:
            fail(layout.type_field, str(exc))
            continue
        symbol = normalize_symbol(_cell(row, columns.get("symbol")))
        if not symbol:
            fail("symbol", "symbol is required")
            continue

        names = ("quantity", "price") if layout.signed_amounts else ("quantity", "price", "commission")
        numbers: dict[str, Decimal | None] = {}
        for name in names:
            cell = _cell(row, columns.get(name))
            try:
                numbers[name] = parse_decimal(cell) if cell else None
            except ValueError as exc:
                fail(name, str(exc))
                break
        if len(numbers) < len(names):
            continue
        quantity = numbers["quantity"] or ZERO
        price = numbers["price"]
        if layout.signed_amounts:
            if quantity < ZERO and layout.negative_quantity_sells and tx_type == TransactionType.BUY:
                tx_type = TransactionType.SELL
            quantity = abs(quantity)
            price = abs(price) if price is not None else None
            commission = _fees(row, fee_columns)
        else:
            commission = numbers["commission"] or ZERO

        if quantity <= ZERO:
            fail("quantity", "quantity must be greater than zero")
            continue
        if tx_type.requires_price and (price is None or price <= ZERO):
            fail("price", f"price is required for {tx_type.value} transactions")
            continue
        if commission < ZERO:
            fail("commission", "commission cannot be negative")
            continue

        result.records.append(
            ImportRecord(
                type=tx_type,
                symbol=symbol,
                date=trade_date,
                quantity=quantity,
                price=price,
                commission=commission,
                currency=(_cell(row, columns.get("currency")) or "USD").upper(),
                notes=description or None,
                raw_data={str(column): _cell(row, column) for column in frame.columns},
                line=line,
            )
        )
    logger.debug(
        "Parsed %s %s CSV records with %s errors", len(result.records), layout.format.value, len(result.errors)
    )
    return result


def parse_generic_csv(text: str) -> ParseResult:
    """Parse ``Date,Type,Symbol,Quantity[,Price,Commission,Currency,Notes]`` CSV text."""

    return parse_csv(text, ImportFormat.GENERIC)


__all__ = [
    "LAYOUTS",
    "BrokerLayout",
    "ImportRecord",
    "ImportRowError",
    "ParseResult",
    "parse_csv",
    "parse_date",
    "parse_decimal",
    "parse_generic_csv",
    "parse_transaction_type",
    "resolve_action",
]
