"""Market-data contract shared by every provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Protocol, Sequence, runtime_checkable

from folio.core.errors import NotFound, RateLimited, UpstreamUnavailable


class MarketDataError(UpstreamUnavailable):
    """Raised when a provider cannot be reached or answers with garbage."""


class SymbolNotFound(NotFound):
    default_code = "SYMBOL_NOT_FOUND"


class ProviderRateLimited(RateLimited):
    pass


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: Decimal
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    previous_close: Decimal | None = None
    change: Decimal | None = None
    change_percent: Decimal | None = None
    volume: int | None = None
    currency: str = "USD"
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class HistoricalPrice:
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int = 0
    adj_close: Decimal | None = None


@runtime_checkable
class MarketDataProvider(Protocol):
    """Operations every market-data backend implements.

    Failures surface as ``SymbolNotFound``, ``ProviderRateLimited`` or
    ``MarketDataError``.
    """

    name: str

    def is_available(self) -> bool: ...

    async def get_quote(self, symbol: str) -> Quote: ...

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]: ...

    async def get_historical_prices(self, symbol: str, start: date, end: date) -> list[HistoricalPrice]: ...

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal: ...

    async def aclose(self) -> None: ...


__all__ = [
    "HistoricalPrice",
    "MarketDataError",
    "MarketDataProvider",
    "ProviderRateLimited",
    "Quote",
    "SymbolNotFound",
]
