"""In-process market data used by tests, demos and offline deployments."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence

from folio.core.decimals import ONE, to_decimal
from folio.providers.base import HistoricalPrice, MarketDataError, Quote, SymbolNotFound


class InMemoryMarketDataProvider:
    """Serve quotes, daily closes and FX rates from dictionaries.

    ``fail_with`` makes every call raise the given error, which is how tests
    exercise degraded market data.
    """

    name = "memory"

    def __init__(
        self,
        *,
        quotes: Mapping[str, Decimal | str | float] | None = None,
        closes: Mapping[str, Mapping[date, Decimal | str | float]] | None = None,
        rates: Mapping[tuple[str, str], Decimal | str | float] | None = None,
    ) -> None:
        self._quotes: dict[str, Decimal] = {k.upper(): to_decimal(v) for k, v in (quotes or {}).items()}
        self._closes: dict[str, dict[date, Decimal]] = {
            symbol.upper(): {day: to_decimal(value) for day, value in series.items()}
            for symbol, series in (closes or {}).items()
        }
        self._rates: dict[tuple[str, str], Decimal] = {
            (a.upper(), b.upper()): to_decimal(v) for (a, b), v in (rates or {}).items()
        }
        self.fail_with: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    def is_available(self) -> bool:
        return True

    def set_quote(self, symbol: str, price: Decimal | str | float) -> None:
        self._quotes[symbol.upper()] = to_decimal(price)

    def set_closes(self, symbol: str, closes: Mapping[date, Decimal | str | float]) -> None:
        series = self._closes.setdefault(symbol.upper(), {})
        series.update({day: to_decimal(value) for day, value in closes.items()})

    def set_rate(self, from_currency: str, to_currency: str, rate: Decimal | str | float) -> None:
        self._rates[(from_currency.upper(), to_currency.upper())] = to_decimal(rate)

    def _check(self, operation: str, subject: str) -> None:
        self.calls.append((operation, subject))
        if self.fail_with is not None:
            raise self.fail_with

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        self._check("quote", symbol)
        price = self._quotes.get(symbol)
        if price is None:
            raise SymbolNotFound(f"No quote for {symbol}", details={"symbol": symbol})
        return Quote(symbol=symbol, price=price)

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]:
        result: dict[str, Quote] = {}
        for symbol in symbols:
            try:
                quote = await self.get_quote(symbol)
            except SymbolNotFound:
                continue
            result[quote.symbol] = quote
        return result

    async def get_historical_prices(self, symbol: str, start: date, end: date) -> list[HistoricalPrice]:
        symbol = symbol.upper()
        self._check("history", symbol)
        series = self._closes.get(symbol)
        if series is None:
            raise SymbolNotFound(f"No price history for {symbol}", details={"symbol": symbol})
        return [
            HistoricalPrice(date=day, open=close, high=close, low=close, close=close, adj_close=close)
            for day, close in sorted(series.items())
            if start <= day <= end
        ]

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        pair = (from_currency.upper(), to_currency.upper())
        self._check("fx", f"{pair[0]}/{pair[1]}")
        if pair[0] == pair[1]:
            return ONE
        rate = self._rates.get(pair)
        if rate is not None:
            return rate
        inverse = self._rates.get((pair[1], pair[0]))
        if inverse:
            return ONE / inverse
        raise MarketDataError(f"No exchange rate for {pair[0]}/{pair[1]}", code="RATE_NOT_AVAILABLE")

    async def aclose(self) -> None:
        return None


__all__ = ["InMemoryMarketDataProvider"]
