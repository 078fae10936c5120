"""Cached market-data facade used by the services and the jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from folio.config import AppSettings
from folio.core.decimals import ONE
from folio.core.errors import NotFound, RateLimited, UpstreamUnavailable
from folio.providers.alpha_vantage import AlphaVantageProvider
from folio.providers.base import HistoricalPrice, MarketDataError, MarketDataProvider, Quote
from folio.providers.memory import InMemoryMarketDataProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEGRADED_ERRORS = (NotFound, RateLimited, UpstreamUnavailable)


@dataclass
class CacheEntry:
    expires_at: float
    payload: Any


class MarketDataService:
    """TTL cache in front of a ``MarketDataProvider``.

    Quotes, historical series and FX rates are cached per key until the TTL
    lapses. Every upstream call runs under a timeout; a timeout surfaces as
    ``MarketDataError`` (UPSTREAM_UNAVAILABLE).
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        *,
        ttl_seconds: float = 900.0,
        quote_timeout_seconds: float = 10.0,
        batch_timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self.quote_timeout_seconds = quote_timeout_seconds
        self.batch_timeout_seconds = batch_timeout_seconds
        self._clock = clock
        self._cache: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    # Cache plumbing

    async def _get_cached(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expires_at <= self._clock():
                self._cache.pop(key, None)
                self.misses += 1
                return None
            self.hits += 1
            return entry.payload

    async def _set_cached(self, key: str, payload: Any) -> None:
        async with self._lock:
            self._cache[key] = CacheEntry(expires_at=self._clock() + self.ttl_seconds, payload=payload)

    async def _call(self, operation: Awaitable[T], timeout: float, what: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MarketDataError(f"Market data request timed out: {what}", code="UPSTREAM_TIMEOUT") from exc

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Market data cache cleared")

    # Contract

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        key = f"quote:{symbol}"
        cached = await self._get_cached(key)
        if cached is not None:
            return cached
        quote = await self._call(self.provider.get_quote(symbol), self.quote_timeout_seconds, f"quote {symbol}")
        await self._set_cached(key, quote)
        return quote

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        result: dict[str, Quote] = {}
        missing: list[str] = []
        for symbol in dict.fromkeys(s.upper() for s in symbols):
            cached = await self._get_cached(f"quote:{symbol}")
            if cached is not None:
                result[symbol] = cached
            else:
                missing.append(symbol)
        if missing:
            fetched = await self._call(
                self.provider.get_quotes(missing), self.batch_timeout_seconds, f"{len(missing)} quotes"
            )
            for symbol, quote in fetched.items():
                await self._set_cached(f"quote:{symbol.upper()}", quote)
                result[symbol.upper()] = quote
        return result

    async def get_historical_prices(self, symbol: str, start: date, end: date) -> list[HistoricalPrice]:
        symbol = symbol.upper()
        key = f"history:{symbol}:{start.isoformat()}:{end.isoformat()}"
        cached = await self._get_cached(key)
        if cached is not None:
            return cached
        prices = await self._call(
            self.provider.get_historical_prices(symbol, start, end),
            self.batch_timeout_seconds,
            f"history {symbol}",
        )
        await self._set_cached(key, prices)
        return prices

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return ONE
        key = f"fx:{source}:{target}"
        cached = await self._get_cached(key)
        if cached is not None:
            return cached
        rate = await self._call(
            self.provider.get_exchange_rate(source, target), self.quote_timeout_seconds, f"fx {source}/{target}"
        )
        await self._set_cached(key, rate)
        return rate

    async def refresh(self, symbol: str) -> Quote:
        """Drop the cached quote for ``symbol`` and fetch it again."""

        symbol = symbol.upper()
        async with self._lock:
            self._cache.pop(f"quote:{symbol}", None)
        return await self.get_quote(symbol)

    # Degrading helpers used by valuation

    async def close_on(self, symbol: str, day: date, fallback_days: int = 7) -> Decimal | None:
        """Latest close on or before ``day`` within ``fallback_days``; ``None`` when unknown."""

        try:
            prices = await self.get_historical_prices(symbol, day - timedelta(days=fallback_days), day)
        except DEGRADED_ERRORS as exc:
            logger.warning("No historical price for %s on %s: %s", symbol, day, exc)
            return None
        eligible = [price for price in prices if price.date <= day]
        if not eligible:
            return None
        return max(eligible, key=lambda price: price.date).close

    async def current_prices(self, symbols: Iterable[str]) -> dict[str, Decimal]:
        """Quote prices for ``symbols``; symbols without a quote are omitted."""

        wanted = list(dict.fromkeys(s.upper() for s in symbols))
        if not wanted:
            return {}
        try:
            quotes = await self.get_quotes(wanted)
        except DEGRADED_ERRORS as exc:
            logger.warning("Market data unavailable for %s: %s", ", ".join(wanted), exc)
            return {}
        return {symbol: quote.price for symbol, quote in quotes.items()}

    async def price_on(self, symbol: str, day: date, *, fallback_days: int = 7) -> Decimal | None:
        """Price for valuation: a live quote for today, a historical close otherwise."""

        if day >= date.today():
            try:
                return (await self.get_quote(symbol)).price
            except DEGRADED_ERRORS as exc:
                logger.warning("Quote for %s unavailable, falling back to closes: %s", symbol, exc)
        return await self.close_on(symbol, day, fallback_days)

    async def aclose(self) -> None:
        await self.provider.aclose()


def build_provider(settings: AppSettings) -> MarketDataProvider:
    if settings.market_data_provider == "alphavantage":
        return AlphaVantageProvider(
            settings.alphavantage_api_key,
            requests_per_minute=settings.alphavantage_requests_per_minute,
            timeout_seconds=settings.market_data_quote_timeout_seconds,
        )
    return InMemoryMarketDataProvider()


def build_market_data_service(settings: AppSettings, provider: MarketDataProvider | None = None) -> MarketDataService:
    return MarketDataService(
        provider or build_provider(settings),
        ttl_seconds=settings.market_data_cache_ttl_seconds,
        quote_timeout_seconds=settings.market_data_quote_timeout_seconds,
        batch_timeout_seconds=settings.market_data_batch_timeout_seconds,
    )


__all__ = [
    "CacheEntry",
    "DEGRADED_ERRORS",
    "MarketDataService",
    "build_market_data_service",
    "build_provider",
]
