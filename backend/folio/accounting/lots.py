"""Tax-lot state and disposal allocation (FIFO, LIFO, specific lot)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import NAMESPACE_URL, UUID, uuid5

from folio.accounting.enums import CostBasisMethod
from folio.accounting.ledger import LotSelection
from folio.core.decimals import EPSILON, ZERO, dsum, is_zero, q10
from folio.core.errors import InsufficientLots, InvalidAllocation

LONG_TERM_DAYS = 365
_LOT_NAMESPACE = uuid5(NAMESPACE_URL, "folio:tax-lot")
_GAIN_NAMESPACE = uuid5(NAMESPACE_URL, "folio:realized-gain")


def lot_id_for(transaction_id: UUID, source_lot_id: UUID | None = None) -> UUID:
    """Deterministic lot identity so replay reproduces the same ids."""

    name = str(transaction_id) if source_lot_id is None else f"{transaction_id}:{source_lot_id}"
    return uuid5(_LOT_NAMESPACE, name)


def gain_id_for(sell_transaction_id: UUID, lot_id: UUID) -> UUID:
    return uuid5(_GAIN_NAMESPACE, f"{sell_transaction_id}:{lot_id}")


def is_long_term(acquired_on: date, disposed_on: date) -> bool:
    return (disposed_on - acquired_on).days >= LONG_TERM_DAYS


@dataclass
class LotState:
    id: UUID
    symbol: str
    acquired_on: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    cost_basis: Decimal
    cost_per_share: Decimal
    transaction_id: UUID
    currency: str = "USD"
    position: int = 0

    @property
    def is_open(self) -> bool:
        return self.remaining_quantity > EPSILON

    def consume(self, quantity: Decimal) -> Decimal:
        """Remove ``quantity`` shares and return the basis they carried."""

        if quantity - self.remaining_quantity > EPSILON:
            raise InsufficientLots(
                f"Lot {self.id} holds {self.remaining_quantity}, cannot consume {quantity}",
                details={"lot_id": str(self.id)},
            )
        if is_zero(self.remaining_quantity - quantity):
            consumed = self.cost_basis
            self.remaining_quantity = ZERO
            self.cost_basis = ZERO
            return consumed
        consumed = q10(self.cost_basis * quantity / self.remaining_quantity)
        self.remaining_quantity = q10(self.remaining_quantity - quantity)
        self.cost_basis = q10(self.cost_basis - consumed)
        return consumed

    def scale(self, ratio: Decimal) -> None:
        """Apply a split: share counts multiply, basis is unchanged."""

        self.original_quantity = q10(self.original_quantity * ratio)
        self.remaining_quantity = q10(self.remaining_quantity * ratio)
        self.cost_per_share = q10(self.cost_per_share / ratio)

    def reprice(self) -> None:
        if self.remaining_quantity > EPSILON:
            self.cost_per_share = q10(self.cost_basis / self.remaining_quantity)


@dataclass(frozen=True)
class Allocation:
    lot_id: UUID
    symbol: str
    acquired_on: date
    quantity: Decimal
    cost_per_share: Decimal
    cost_basis: Decimal


@dataclass(frozen=True)
class GainRecord:
    id: UUID
    sell_transaction_id: UUID
    lot_id: UUID
    symbol: str
    acquired_on: date
    disposed_on: date
    quantity: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    gain: Decimal
    long_term: bool


def open_lots(lots: Iterable[LotState], symbol: str) -> list[LotState]:
    return [lot for lot in lots if lot.symbol == symbol and lot.is_open]


def order_for_method(lots: Sequence[LotState], method: CostBasisMethod) -> list[LotState]:
    ordered = sorted(lots, key=lambda lot: (lot.acquired_on, lot.position))
    if method == CostBasisMethod.LIFO:
        ordered.reverse()
    return ordered


def _basis_for(lot: LotState, quantity: Decimal) -> Decimal:
    if is_zero(lot.remaining_quantity - quantity):
        return lot.cost_basis
    return q10(lot.cost_basis * quantity / lot.remaining_quantity)


def plan_allocation(
    lots: Sequence[LotState],
    symbol: str,
    quantity: Decimal,
    method: CostBasisMethod,
    selections: Sequence[LotSelection] | None = None,
) -> list[Allocation]:
    """Decide which lots a disposal of ``quantity`` shares consumes.

    The lots are not modified. Raises ``InsufficientLots`` when the open
    quantity cannot cover the sale and ``InvalidAllocation`` when specific-lot
    selections are inconsistent.
    """

    candidates = open_lots(lots, symbol)
    if method == CostBasisMethod.SPECIFIC_LOT and selections:
        return _plan_specific(candidates, symbol, quantity, selections)

    available = dsum(lot.remaining_quantity for lot in candidates)
    if quantity - available > EPSILON:
        raise InsufficientLots(
            f"Open lots for {symbol} hold {available}, cannot allocate {quantity}",
            details={"symbol": symbol, "available": str(available), "requested": str(quantity)},
        )
    effective = CostBasisMethod.FIFO if method == CostBasisMethod.SPECIFIC_LOT else method
    allocations: list[Allocation] = []
    remaining = quantity
    for lot in order_for_method(candidates, effective):
        if remaining <= EPSILON:
            break
        take = min(lot.remaining_quantity, remaining)
        allocations.append(
            Allocation(
                lot_id=lot.id,
                symbol=lot.symbol,
                acquired_on=lot.acquired_on,
                quantity=take,
                cost_per_share=lot.cost_per_share,
                cost_basis=_basis_for(lot, take),
            )
        )
        remaining -= take
    return allocations


def _plan_specific(
    candidates: Sequence[LotState],
    symbol: str,
    quantity: Decimal,
    selections: Sequence[LotSelection],
) -> list[Allocation]:
    total = dsum(selection.quantity for selection in selections)
    if not is_zero(total - quantity):
        raise InvalidAllocation(
            f"Specific-lot selections total {total} but the sale is for {quantity}",
            details={"selected": str(total), "requested": str(quantity)},
        )
    by_id = {lot.id: lot for lot in candidates}
    requested: dict[UUID, Decimal] = {}
    for selection in selections:
        requested[selection.lot_id] = requested.get(selection.lot_id, ZERO) + selection.quantity
    allocations: list[Allocation] = []
    for lot_id, wanted in requested.items():
        lot = by_id.get(lot_id)
        if lot is None:
            raise InvalidAllocation(
                f"Lot {lot_id} is not an open {symbol} lot of this portfolio",
                details={"lot_id": str(lot_id)},
            )
        if wanted - lot.remaining_quantity > EPSILON:
            raise InvalidAllocation(
                f"Lot {lot.id} holds {lot.remaining_quantity}, {wanted} requested",
                details={"lot_id": str(lot.id)},
            )
        allocations.append(
            Allocation(
                lot_id=lot.id,
                symbol=lot.symbol,
                acquired_on=lot.acquired_on,
                quantity=wanted,
                cost_per_share=lot.cost_per_share,
                cost_basis=_basis_for(lot, wanted),
            )
        )
    return allocations


def apportion_commission(allocations: Sequence[Allocation], commission: Decimal) -> list[Decimal]:
    """Split a sell commission pro rata over the allocated quantities."""

    if not allocations:
        return []
    total_qty = dsum(a.quantity for a in allocations)
    shares: list[Decimal] = []
    assigned = ZERO
    for index, allocation in enumerate(allocations):
        if index == len(allocations) - 1:
            share = commission - assigned
        else:
            share = q10(commission * allocation.quantity / total_qty)
        assigned += share
        shares.append(share)
    return shares


def realize(
    lots: Sequence[LotState],
    allocations: Sequence[Allocation],
    *,
    sell_transaction_id: UUID,
    disposed_on: date,
    price: Decimal,
    commission: Decimal,
) -> list[GainRecord]:
    """Consume the allocated quantities from ``lots`` and emit realized gains."""

    by_id = {lot.id: lot for lot in lots}
    commissions = apportion_commission(allocations, commission)
    records: list[GainRecord] = []
    for allocation, fee in zip(allocations, commissions):
        lot = by_id[allocation.lot_id]
        basis = lot.consume(allocation.quantity)
        proceeds = q10(allocation.quantity * price - fee)
        records.append(
            GainRecord(
                id=gain_id_for(sell_transaction_id, lot.id),
                sell_transaction_id=sell_transaction_id,
                lot_id=lot.id,
                symbol=lot.symbol,
                acquired_on=lot.acquired_on,
                disposed_on=disposed_on,
                quantity=allocation.quantity,
                cost_basis=basis,
                proceeds=proceeds,
                gain=q10(proceeds - basis),
                long_term=is_long_term(lot.acquired_on, disposed_on),
            )
        )
    return records


__all__ = [
    "Allocation",
    "GainRecord",
    "LONG_TERM_DAYS",
    "LotState",
    "apportion_commission",
    "gain_id_for",
    "is_long_term",
    "lot_id_for",
    "open_lots",
    "order_for_method",
    "plan_allocation",
    "realize",
]
