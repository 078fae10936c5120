"""Alpha Vantage market-data provider over httpx."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Deque, Sequence

import httpx

from folio.core.decimals import ONE, to_decimal
from folio.providers.base import (
    HistoricalPrice,
    MarketDataError,
    ProviderRateLimited,
    Quote,
    SymbolNotFound,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://www.alphavantage.co/query"


class AlphaVantageProvider:
    """Throttled Alpha Vantage client implementing ``MarketDataProvider``."""

    name = "alphavantage"

    def __init__(
        self,
        api_key: str | None,
        *,
        requests_per_minute: int = 5,
        timeout_seconds: float = 15.0,
        base_url: str = BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._requests_per_minute = max(requests_per_minute, 1)
        self._base_url = base_url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None
        self._calls: Deque[float] = deque()
        self._throttle_lock = asyncio.Lock()

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _throttle(self) -> None:
        async with self._throttle_lock:
            now = time.monotonic()
            while self._calls and now - self._calls[0] >= 60.0:
                self._calls.popleft()
            if len(self._calls) >= self._requests_per_minute:
                wait = 60.0 - (now - self._calls[0])
                logger.debug("Alpha Vantage throttle sleeping %.2fs", wait)
                await asyncio.sleep(wait)
                self._calls.popleft()
            self._calls.append(time.monotonic())

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key:
            raise MarketDataError("Alpha Vantage API key is not configured", code="PROVIDER_NOT_CONFIGURED")
        await self._throttle()
        query = dict(params, apikey=self._api_key)
        try:
            response = await self._client.get(self._base_url, params=query)
        except httpx.HTTPError as exc:  # pragma: no cover - network failure handling
            raise MarketDataError(f"Failed to reach Alpha Vantage: {exc}") from exc

        if response.status_code == 429:
            raise ProviderRateLimited("Alpha Vantage rate limit exceeded")
        if response.status_code >= 400:
            raise MarketDataError(f"Alpha Vantage error {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise MarketDataError("Alpha Vantage returned invalid JSON payload") from exc
        if not isinstance(payload, dict):
            raise MarketDataError("Alpha Vantage response is not an object")
        if "Error Message" in payload:
            raise SymbolNotFound(str(payload["Error Message"]), details={"params": params})
        note = payload.get("Note") or payload.get("Information")
        if note:
            raise ProviderRateLimited(f"Alpha Vantage rate limit exceeded: {note}")
        return payload

    async def get_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        payload = await self._request({"function": "GLOBAL_QUOTE", "symbol": symbol})
        body = payload.get("Global Quote") or {}
        price = body.get("05. price")
        if not body or price in (None, ""):
            raise SymbolNotFound(f"No quote for {symbol}", details={"symbol": symbol})
        change_pct = str(body.get("10. change percent") or "").rstrip("%") or None
        return Quote(
            symbol=symbol,
            price=to_decimal(price),
            open=_optional(body.get("02. open")),
            high=_optional(body.get("03. high")),
            low=_optional(body.get("04. low")),
            previous_close=_optional(body.get("08. previous close")),
            change=_optional(body.get("09. change")),
            change_percent=_optional(change_pct),
            volume=int(body["06. volume"]) if body.get("06. volume") else None,
            last_updated=_trading_day(body.get("07. latest trading day")),
        )

    async def get_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]:
        """Fetch sequentially; symbols the upstream does not know are omitted."""

        result: dict[str, Quote] = {}
        for symbol in symbols:
            try:
                quote = await self.get_quote(symbol)
            except SymbolNotFound:
                logger.warning("Alpha Vantage has no quote for %s", symbol)
                continue
            result[quote.symbol] = quote
        return result

    async def get_historical_prices(self, symbol: str, start: date, end: date) -> list[HistoricalPrice]:
        symbol = symbol.upper()
        output = "compact" if (date.today() - start).days <= 100 else "full"
        payload = await self._request(
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": output}
        )
        series = payload.get("Time Series (Daily)")
        if not isinstance(series, dict):
            raise SymbolNotFound(f"No price history for {symbol}", details={"symbol": symbol})
        prices: list[HistoricalPrice] = []
        for day_str, values in series.items():
            try:
                day = datetime.strptime(day_str, "%Y-%m-%d").date()
            except ValueError:
                continue
            if day < start or day > end:
                continue
            close = values.get("4. close")
            if close is None:
                continue
            prices.append(
                HistoricalPrice(
                    date=day,
                    open=to_decimal(values.get("1. open", close)),
                    high=to_decimal(values.get("2. high", close)),
                    low=to_decimal(values.get("3. low", close)),
                    close=to_decimal(close),
                    volume=int(values.get("5. volume") or 0),
                )
            )
        prices.sort(key=lambda price: price.date)
        return prices

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return ONE
        payload = await self._request(
            {"function": "CURRENCY_EXCHANGE_RATE", "from_currency": source, "to_currency": target}
        )
        body = payload.get("Realtime Currency Exchange Rate") or {}
        rate = body.get("5. Exchange Rate")
        if rate in (None, ""):
            raise MarketDataError(f"No exchange rate for {source}/{target}", code="RATE_NOT_AVAILABLE")
        return to_decimal(rate)


def _optional(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    return to_decimal(value)


def _trading_day(value: Any) -> datetime:
    if value:
        try:
            return datetime.strptime(str(value), "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


__all__ = ["AlphaVantageProvider", "BASE_URL"]
