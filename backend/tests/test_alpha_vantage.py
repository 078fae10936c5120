"""Alpha Vantage provider tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from folio.providers.alpha_vantage import AlphaVantageProvider
from folio.providers.base import MarketDataError, ProviderRateLimited, SymbolNotFound


class StubResponse:
    def __init__(self, payload: dict[str, object], status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self) -> dict[str, object]:
        return self._payload


class StubClient:
    def __init__(self, payload: dict[str, object] | None = None, status_code: int = 200) -> None:
        self.payload = payload or {}
        self.status_code = status_code
        self.calls: list[dict[str, object]] = []

    async def get(self, url: str, params: dict[str, object]) -> StubResponse:
        self.calls.append(params)
        return StubResponse(self.payload, self.status_code)

    async def aclose(self) -> None:  # pragma: no cover - included for interface completeness
        return None


def provider_for(client: StubClient) -> AlphaVantageProvider:
    return AlphaVantageProvider(api_key="test", requests_per_minute=10, client=client)


async def test_quote_injects_api_key_and_parses_fields():
    client = StubClient(
        {
            "Global Quote": {
                "01. symbol": "MSFT",
                "05. price": "410.5000",
                "06. volume": "1200",
                "07. latest trading day": "2024-06-03",
                "08. previous close": "405.00",
                "10. change percent": "1.3580%",
            }
        }
    )

    quote = await provider_for(client).get_quote("msft")

    assert client.calls[0]["apikey"] == "test"
    assert client.calls[0]["symbol"] == "MSFT"
    assert quote.price == Decimal("410.5000")
    assert quote.change_percent == Decimal("1.3580")
    assert quote.volume == 1200
    assert quote.last_updated.date() == date(2024, 6, 3)


async def test_note_is_reported_as_rate_limit():
    provider = provider_for(StubClient({"Note": "limit"}))

    with pytest.raises(ProviderRateLimited):
        await provider.get_quote("MSFT")


async def test_error_message_means_unknown_symbol():
    provider = provider_for(StubClient({"Error Message": "Invalid API call"}))

    with pytest.raises(SymbolNotFound):
        await provider.get_historical_prices("NOPE", date(2024, 1, 1), date(2024, 1, 31))


async def test_history_is_filtered_to_the_window_and_sorted():
    series = {
        "2024-01-03": {"1. open": "10", "4. close": "11", "5. volume": "5"},
        "2024-01-02": {"4. close": "10"},
        "2023-12-29": {"4. close": "9"},
    }
    provider = provider_for(StubClient({"Time Series (Daily)": series}))

    prices = await provider.get_historical_prices("ABC", date(2024, 1, 1), date(2024, 1, 31))

    assert [(price.date, price.close) for price in prices] == [
        (date(2024, 1, 2), Decimal("10")),
        (date(2024, 1, 3), Decimal("11")),
    ]


async def test_missing_key_and_http_errors_raise():
    unconfigured = AlphaVantageProvider(api_key=None, client=StubClient())
    assert unconfigured.is_available() is False
    with pytest.raises(MarketDataError) as excinfo:
        await unconfigured.get_quote("MSFT")
    assert excinfo.value.code == "PROVIDER_NOT_CONFIGURED"

    with pytest.raises(MarketDataError):
        await provider_for(StubClient(status_code=500)).get_quote("MSFT")
    with pytest.raises(ProviderRateLimited):
        await provider_for(StubClient(status_code=429)).get_quote("MSFT")


async def test_same_currency_rate_skips_the_upstream():
    client = StubClient()

    assert await provider_for(client).get_exchange_rate("usd", "USD") == Decimal("1")
    assert client.calls == []
