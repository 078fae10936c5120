"""Point-in-time portfolio valuation.

Value on day ``d`` is the sum over open holdings of quantity on ``d`` times
the price on ``d``. Prices come from a live quote for today and from
historical closes otherwise; a missing close falls back to the latest one
within the fallback window and then to the holding's cost basis.
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Sequence

from folio.accounting.ledger import LedgerEntry
from folio.accounting.projector import project_ledger
from folio.core.decimals import dsum, q10
from folio.providers.service import DEGRADED_ERRORS, MarketDataService

logger = logging.getLogger(__name__)


class PriceBook:
    """Per-request price lookups over a prefetched window of closes."""

    def __init__(
        self,
        market_data: MarketDataService,
        *,
        fallback_days: int = 7,
        today: date | None = None,
    ) -> None:
        self.market_data = market_data
        self.fallback_days = fallback_days
        self.today = today or date.today()
        self._closes: dict[str, tuple[list[date], list[Decimal]]] = {}
        self._quotes: dict[str, Decimal] | None = None

    async def prefetch(self, symbols: Iterable[str], start: date, end: date) -> None:
        window_start = start - timedelta(days=self.fallback_days)
        window_end = min(end, self.today)
        for symbol in sorted(set(symbols)):
            if symbol in self._closes:
                continue
            try:
                history = await self.market_data.get_historical_prices(symbol, window_start, window_end)
            except DEGRADED_ERRORS as exc:
                logger.warning("No price history for %s: %s", symbol, exc)
                history = []
            ordered = sorted(history, key=lambda price: price.date)
            self._closes[symbol] = ([p.date for p in ordered], [p.close for p in ordered])

    async def _live(self, symbol: str, symbols: Iterable[str]) -> Decimal | None:
        if self._quotes is None:
            self._quotes = await self.market_data.current_prices(symbols)
        return self._quotes.get(symbol)

    async def price(self, symbol: str, day: date, *, universe: Iterable[str] = ()) -> Decimal | None:
        if day >= self.today:
            live = await self._live(symbol, set(universe) | {symbol})
            if live is not None:
                return live
        if symbol not in self._closes:
            await self.prefetch([symbol], day, day)
        dates, closes = self._closes[symbol]
        index = bisect_right(dates, day)
        if index == 0:
            return None
        if (day - dates[index - 1]).days > self.fallback_days:
            return None
        return closes[index - 1]


@dataclass
class HoldingValue:
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    price: Decimal | None
    market_value: Decimal

    @property
    def priced(self) -> bool:
        return self.price is not None


@dataclass
class Valuation:
    day: date
    holdings: list[HoldingValue] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return dsum(item.market_value for item in self.holdings)

    @property
    def total_cost_basis(self) -> Decimal:
        return dsum(item.cost_basis for item in self.holdings)

    @property
    def unpriced(self) -> list[str]:
        return [item.symbol for item in self.holdings if not item.priced]


async def value_ledger(
    entries: Sequence[LedgerEntry],
    day: date,
    book: PriceBook,
    projection: dict[str, Any],
) -> Valuation:
    """Value the ledger as of the close of ``day``."""

    result = project_ledger(entries, as_of=day, **projection)
    symbols = list(result.holdings)
    valuation = Valuation(day=day)
    for symbol in sorted(symbols):
        holding = result.holdings[symbol]
        price = await book.price(symbol, day, universe=symbols)
        if price is None:
            market_value = holding.cost_basis
        else:
            market_value = q10(holding.quantity * price)
        valuation.holdings.append(
            HoldingValue(
                symbol=symbol,
                quantity=holding.quantity,
                cost_basis=holding.cost_basis,
                price=price,
                market_value=market_value,
            )
        )
    if valuation.unpriced:
        logger.warning("Valued %s at cost basis on %s", ", ".join(valuation.unpriced), day)
    return valuation


__all__ = ["HoldingValue", "PriceBook", "Valuation", "value_ledger"]
