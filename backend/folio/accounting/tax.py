"""Tax report and tax-loss harvesting over projected lots and gains."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping
from uuid import UUID

from folio.accounting.lots import GainRecord, LotState, is_long_term
from folio.core.decimals import ZERO, dsum, percent, q10


@dataclass
class TaxReport:
    year: int
    short_term: list[GainRecord] = field(default_factory=list)
    long_term: list[GainRecord] = field(default_factory=list)

    @property
    def total_short_term(self) -> Decimal:
        return dsum(record.gain for record in self.short_term)

    @property
    def total_long_term(self) -> Decimal:
        return dsum(record.gain for record in self.long_term)

    @property
    def total(self) -> Decimal:
        return self.total_short_term + self.total_long_term

    @property
    def total_proceeds(self) -> Decimal:
        return dsum(record.proceeds for record in self.short_term + self.long_term)

    @property
    def total_cost_basis(self) -> Decimal:
        return dsum(record.cost_basis for record in self.short_term + self.long_term)


def build_tax_report(gains: Iterable[GainRecord], year: int) -> TaxReport:
    report = TaxReport(year=year)
    for record in sorted(gains, key=lambda g: (g.disposed_on, g.acquired_on, str(g.lot_id))):
        if record.disposed_on.year != year:
            continue
        if record.long_term:
            report.long_term.append(record)
        else:
            report.short_term.append(record)
    return report


@dataclass(frozen=True)
class HarvestOpportunity:
    lot_id: UUID
    symbol: str
    acquired_on: date
    quantity: Decimal
    cost_basis: Decimal
    current_price: Decimal
    current_value: Decimal
    unrealized_loss: Decimal
    loss_percent: Decimal
    long_term: bool


def harvest_opportunities(
    lots: Iterable[LotState],
    prices: Mapping[str, Decimal],
    *,
    as_of: date,
    min_loss_percent: Decimal = ZERO,
) -> list[HarvestOpportunity]:
    """Open lots trading below their basis, largest loss first.

    Symbols without a price in ``prices`` are omitted. The 30-day wash-sale
    disallowance is not evaluated.
    """

    opportunities: list[HarvestOpportunity] = []
    for lot in lots:
        if not lot.is_open:
            continue
        price = prices.get(lot.symbol)
        if price is None:
            continue
        value = q10(lot.remaining_quantity * price)
        if value >= lot.cost_basis:
            continue
        loss = q10(value - lot.cost_basis)
        loss_pct = percent(-loss, lot.cost_basis) or ZERO
        if loss_pct < min_loss_percent:
            continue
        opportunities.append(
            HarvestOpportunity(
                lot_id=lot.id,
                symbol=lot.symbol,
                acquired_on=lot.acquired_on,
                quantity=lot.remaining_quantity,
                cost_basis=lot.cost_basis,
                current_price=price,
                current_value=value,
                unrealized_loss=loss,
                loss_percent=loss_pct,
                long_term=is_long_term(lot.acquired_on, as_of),
            )
        )
    opportunities.sort(key=lambda o: (o.unrealized_loss, o.symbol))
    return opportunities


__all__ = ["HarvestOpportunity", "TaxReport", "build_tax_report", "harvest_opportunities"]
