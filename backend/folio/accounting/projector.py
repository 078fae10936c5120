"""Replay of a portfolio ledger into holdings, tax lots and realized gains.

``project_ledger`` is a pure function: given the same entries in the same
logical order it produces identical holdings, lots (with identical ids) and
gain records. Every write path in the service layer re-runs it for the
affected symbols instead of applying deltas.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from folio.accounting.enums import CostBasisMethod, TransactionType
from folio.accounting.ledger import LedgerEntry, order_entries
from folio.accounting.lots import (
    GainRecord,
    LotState,
    lot_id_for,
    open_lots,
    plan_allocation,
    realize,
)
from folio.core.decimals import EPSILON, ZERO, dsum, is_zero, q10
from folio.core.errors import InsufficientShares


DEFAULT_SPINOFF_ALLOCATION = Decimal("0.5")


class HoldingBasisMode(str, enum.Enum):
    """How a SELL reduces the aggregate holding basis.

    ``LOTS`` removes exactly the basis the tax-lot engine consumed, so the
    holding basis always equals the basis of the open lots. ``AVERAGE_COST``
    removes ``quantity * average cost`` regardless of the lots consumed.
    """

    LOTS = "LOTS"
    AVERAGE_COST = "AVERAGE_COST"


@dataclass
class HoldingState:
    symbol: str
    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO
    currency: str = "USD"

    @property
    def average_cost(self) -> Decimal:
        if self.quantity <= EPSILON:
            return ZERO
        return q10(self.cost_basis / self.quantity)

    @property
    def is_empty(self) -> bool:
        return is_zero(self.quantity)


@dataclass
class ProjectionResult:
    holdings: dict[str, HoldingState] = field(default_factory=dict)
    lots: list[LotState] = field(default_factory=list)
    gains: list[GainRecord] = field(default_factory=list)
    symbols: set[str] = field(default_factory=set)

    def open_lots(self, symbol: str | None = None) -> list[LotState]:
        return [lot for lot in self.lots if lot.is_open and (symbol is None or lot.symbol == symbol)]


class LedgerProjector:
    """Fold ledger entries into projected state, one entry at a time."""

    def __init__(
        self,
        *,
        default_method: CostBasisMethod = CostBasisMethod.FIFO,
        basis_mode: HoldingBasisMode = HoldingBasisMode.AVERAGE_COST,
        spinoff_allocation: Decimal = DEFAULT_SPINOFF_ALLOCATION,
        as_of: date | None = None,
    ) -> None:
        self.default_method = default_method
        self.basis_mode = basis_mode
        self.spinoff_allocation = spinoff_allocation
        self.as_of = as_of
        self._result = ProjectionResult()
        self._position = 0

    def run(self, entries: Iterable[LedgerEntry]) -> ProjectionResult:
        for entry in order_entries(entries):
            if self.as_of is not None and entry.trade_date > self.as_of:
                break
            self.apply(entry)
        self._result.holdings = {
            symbol: holding for symbol, holding in self._result.holdings.items() if not holding.is_empty
        }
        return self._result

    def apply(self, entry: LedgerEntry) -> None:
        self._result.symbols.add(entry.symbol)
        if entry.related_symbol:
            self._result.symbols.add(entry.related_symbol)
        handler = {
            TransactionType.BUY: self._acquire,
            TransactionType.DIVIDEND_REINVEST: self._acquire,
            TransactionType.SELL: self._sell,
            TransactionType.DIVIDEND: self._dividend,
            TransactionType.SPLIT: self._split,
            TransactionType.MERGER: self._merger,
            TransactionType.SPINOFF: self._spinoff,
            TransactionType.TICKER_CHANGE: self._ticker_change,
        }[entry.type]
        handler(entry)

    # Helpers

    def _holding(self, symbol: str, currency: str = "USD") -> HoldingState:
        holding = self._result.holdings.get(symbol)
        if holding is None:
            holding = HoldingState(symbol=symbol, currency=currency)
            self._result.holdings[symbol] = holding
        return holding

    def _position_holding(self, entry: LedgerEntry) -> HoldingState:
        holding = self._result.holdings.get(entry.symbol)
        if holding is None or holding.is_empty:
            raise InsufficientShares(
                f"No {entry.symbol} position to apply {entry.type.value} on {entry.trade_date}",
                code="NO_POSITION",
                details={"symbol": entry.symbol, "transaction_id": str(entry.id)},
            )
        return holding

    def _next_position(self) -> int:
        self._position += 1
        return self._position

    def _drop_if_empty(self, holding: HoldingState) -> None:
        if holding.is_empty:
            self._result.holdings.pop(holding.symbol, None)

    # Transaction kinds

    def _acquire(self, entry: LedgerEntry) -> None:
        cost = q10(entry.total_cost)
        holding = self._holding(entry.symbol, entry.currency)
        holding.quantity = q10(holding.quantity + entry.quantity)
        holding.cost_basis = q10(holding.cost_basis + cost)
        self._result.lots.append(
            LotState(
                id=lot_id_for(entry.id),
                symbol=entry.symbol,
                acquired_on=entry.trade_date,
                original_quantity=entry.quantity,
                remaining_quantity=entry.quantity,
                cost_basis=cost,
                cost_per_share=q10(cost / entry.quantity),
                transaction_id=entry.id,
                currency=entry.currency,
                position=self._next_position(),
            )
        )

    def _sell(self, entry: LedgerEntry) -> None:
        holding = self._result.holdings.get(entry.symbol)
        available = holding.quantity if holding else ZERO
        if holding is None or entry.quantity - available > EPSILON:
            raise InsufficientShares(
                f"Insufficient {entry.symbol} shares on {entry.trade_date}: "
                f"holding {available}, selling {entry.quantity}",
                details={
                    "symbol": entry.symbol,
                    "available": str(available),
                    "requested": str(entry.quantity),
                    "transaction_id": str(entry.id),
                },
            )
        method = entry.lot_method or self.default_method
        allocations = plan_allocation(
            self._result.lots, entry.symbol, entry.quantity, method, entry.lot_selections
        )
        gains = realize(
            self._result.lots,
            allocations,
            sell_transaction_id=entry.id,
            disposed_on=entry.trade_date,
            price=entry.price or ZERO,
            commission=entry.commission,
        )
        self._result.gains.extend(gains)
        if self.basis_mode == HoldingBasisMode.AVERAGE_COST:
            reduction = q10(entry.quantity * holding.cost_basis / holding.quantity)
        else:
            reduction = dsum(gain.cost_basis for gain in gains)
        holding.quantity = q10(holding.quantity - entry.quantity)
        holding.cost_basis = q10(holding.cost_basis - reduction)
        if holding.is_empty:
            holding.quantity = ZERO
            holding.cost_basis = ZERO
        self._drop_if_empty(holding)

    def _dividend(self, entry: LedgerEntry) -> None:
        # Cash dividends do not change the position.
        return None

    def _split(self, entry: LedgerEntry) -> None:
        holding = self._position_holding(entry)
        ratio = entry.ratio
        if ratio is None:
            # Manual split entries record the additional shares received.
            ratio = (holding.quantity + entry.quantity) / holding.quantity
        holding.quantity = q10(holding.quantity * ratio)
        for lot in open_lots(self._result.lots, entry.symbol):
            lot.scale(ratio)

    def _merger(self, entry: LedgerEntry) -> None:
        if not entry.is_source_leg:
            return
        source = self._position_holding(entry)
        ratio = entry.ratio or Decimal("1")
        target_symbol = entry.related_symbol or entry.symbol
        for lot in open_lots(self._result.lots, entry.symbol):
            self._result.lots.append(self._derived_lot(entry, lot, target_symbol, ratio, lot.cost_basis))
            lot.remaining_quantity = ZERO
            lot.cost_basis = ZERO
        target = self._holding(target_symbol, source.currency)
        target.quantity = q10(target.quantity + source.quantity * ratio)
        target.cost_basis = q10(target.cost_basis + source.cost_basis)
        self._result.holdings.pop(entry.symbol, None)

    def _spinoff(self, entry: LedgerEntry) -> None:
        if not entry.is_source_leg:
            return
        source = self._position_holding(entry)
        ratio = entry.ratio or Decimal("1")
        fraction = entry.basis_allocation or self.spinoff_allocation
        target_symbol = entry.related_symbol or entry.symbol
        moved_total = ZERO
        for lot in open_lots(self._result.lots, entry.symbol):
            moved = q10(lot.cost_basis * fraction)
            lot.cost_basis = q10(lot.cost_basis - moved)
            lot.reprice()
            moved_total += moved
            self._result.lots.append(self._derived_lot(entry, lot, target_symbol, ratio, moved))
        if self.basis_mode == HoldingBasisMode.AVERAGE_COST:
            moved_total = q10(source.cost_basis * fraction)
        source.cost_basis = q10(source.cost_basis - moved_total)
        target = self._holding(target_symbol, source.currency)
        target.quantity = q10(target.quantity + source.quantity * ratio)
        target.cost_basis = q10(target.cost_basis + moved_total)

    def _ticker_change(self, entry: LedgerEntry) -> None:
        source = self._position_holding(entry)
        target_symbol = entry.related_symbol or entry.symbol
        for lot in open_lots(self._result.lots, entry.symbol):
            lot.symbol = target_symbol
        target = self._holding(target_symbol, source.currency)
        target.quantity = q10(target.quantity + source.quantity)
        target.cost_basis = q10(target.cost_basis + source.cost_basis)
        self._result.holdings.pop(entry.symbol, None)

    def _derived_lot(
        self,
        entry: LedgerEntry,
        parent: LotState,
        symbol: str,
        ratio: Decimal,
        basis: Decimal,
    ) -> LotState:
        remaining = q10(parent.remaining_quantity * ratio)
        return LotState(
            id=lot_id_for(entry.id, parent.id),
            symbol=symbol,
            acquired_on=parent.acquired_on,
            original_quantity=q10(parent.original_quantity * ratio),
            remaining_quantity=remaining,
            cost_basis=basis,
            cost_per_share=q10(basis / remaining) if remaining > EPSILON else ZERO,
            transaction_id=entry.id,
            currency=parent.currency,
            position=self._next_position(),
        )


def project_ledger(
    entries: Iterable[LedgerEntry],
    *,
    default_method: CostBasisMethod = CostBasisMethod.FIFO,
    basis_mode: HoldingBasisMode = HoldingBasisMode.AVERAGE_COST,
    spinoff_allocation: Decimal = DEFAULT_SPINOFF_ALLOCATION,
    as_of: date | None = None,
) -> ProjectionResult:
    """Replay ``entries`` from an empty state and return the projection."""

    projector = LedgerProjector(
        default_method=default_method,
        basis_mode=basis_mode,
        spinoff_allocation=spinoff_allocation,
        as_of=as_of,
    )
    return projector.run(entries)


def linked_symbols(entries: Iterable[LedgerEntry], seeds: Iterable[str]) -> set[str]:
    """Close ``seeds`` over the symbol pairs joined by mergers, spinoffs and ticker changes."""

    edges: dict[str, set[str]] = {}
    for entry in entries:
        if entry.related_symbol:
            edges.setdefault(entry.symbol, set()).add(entry.related_symbol)
            edges.setdefault(entry.related_symbol, set()).add(entry.symbol)
    result: set[str] = set()
    frontier = [symbol for symbol in seeds if symbol]
    while frontier:
        symbol = frontier.pop()
        if symbol in result:
            continue
        result.add(symbol)
        frontier.extend(edges.get(symbol, ()))
    return result


__all__ = [
    "DEFAULT_SPINOFF_ALLOCATION",
    "HoldingBasisMode",
    "HoldingState",
    "LedgerProjector",
    "ProjectionResult",
    "linked_symbols",
    "project_ledger",
]
