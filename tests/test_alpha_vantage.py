"""Tests for fxwatch.market.alpha_vantage — Alpha Vantage client with mocked HTTP."""

from datetime import datetime, timezone

import httpx
import pytest

from fxwatch.config import Config, MonitorConfig
from fxwatch.errors import DataProviderError
from fxwatch.market.alpha_vantage import AlphaVantageClient, check_api_error
from fxwatch.market.models import PriceBar, Quote
from fxwatch.market.provider import MarketDataProvider, fetch_series


def _make_config() -> Config:
    return Config(
        alpha_vantage_api_key="test-key",
        monitor=MonitorConfig(),
        db_path=":memory:",
        log_level="INFO",
        api_port=8080,
    )


def _client() -> AlphaVantageClient:
    return AlphaVantageClient(_make_config(), retry_base_delay=0.0)


def _patch_get(monkeypatch, *responses, calls=None):
    """Serve *responses* in order; each is (status, json) or an exception."""
    queue = list(responses)

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        if calls is not None:
            calls.append(params)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)


# ── Mock Alpha Vantage responses ─────────────────────────────────────────

MOCK_QUOTE_RESPONSE = {
    "Realtime Currency Exchange Rate": {
        "1. From_Currency Code": "EUR",
        "2. From_Currency Name": "Euro",
        "3. To_Currency Code": "USD",
        "4. To_Currency Name": "United States Dollar",
        "5. Exchange Rate": "1.08560000",
        "6. Last Refreshed": "2025-01-10 12:00:01",
        "7. Time Zone": "UTC",
        "8. Bid Price": "1.08540000",
        "9. Ask Price": "1.08580000",
    }
}

MOCK_DAILY_RESPONSE = {
    "Meta Data": {"1. Information": "Forex Daily Prices (open, high, low, close)"},
    "Time Series FX (Daily)": {
        "2025-01-11": {"1. open": "1.0930", "2. high": "1.0970", "3. low": "1.0910", "4. close": "1.0960"},
        "2025-01-10": {"1. open": "1.0910", "2. high": "1.0950", "3. low": "1.0890", "4. close": "1.0930"},
    },
}

MOCK_INTRADAY_RESPONSE = {
    "Time Series FX (5min)": {
        "2025-01-10 12:05:00": {"1. open": "1.0856", "2. high": "1.0860", "3. low": "1.0850", "4. close": "1.0858"},
        "2025-01-10 12:00:00": {"1. open": "1.0850", "2. high": "1.0857", "3. low": "1.0849", "4. close": "1.0856"},
    },
}

MOCK_RATE_LIMIT_RESPONSE = {
    "Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute.",
}

MOCK_INFORMATION_LIMIT_RESPONSE = {
    "Information": "Our standard API rate limit is 25 requests per day.",
}

MOCK_BAD_SYMBOL_RESPONSE = {
    "Error Message": "Invalid API call. Please retry or visit the documentation for FX_DAILY.",
}

MOCK_BAD_KEY_RESPONSE = {
    "Error Message": "the parameter apikey is invalid or missing.",
}


# ── Quotes ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_quote(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, (200, MOCK_QUOTE_RESPONSE), calls=calls)

    quote = await _client().get_quote("eur_usd")
    assert isinstance(quote, Quote)
    assert quote.pair == "EUR/USD"
    assert quote.bid == pytest.approx(1.0854)
    assert quote.ask == pytest.approx(1.0858)
    assert quote.spread_pips == pytest.approx(0.4)
    assert quote.timestamp == datetime(2025, 1, 10, 12, 0, 1, tzinfo=timezone.utc)

    params = calls[0]
    assert params["function"] == "CURRENCY_EXCHANGE_RATE"
    assert params["from_currency"] == "EUR"
    assert params["to_currency"] == "USD"
    assert params["apikey"] == "test-key"


@pytest.mark.asyncio
async def test_get_quote_missing_block_is_malformed(monkeypatch):
    _patch_get(monkeypatch, (200, {"unexpected": {}}))
    with pytest.raises(DataProviderError) as exc_info:
        await _client().get_quote("EUR/USD")
    assert exc_info.value.kind == "malformed"


@pytest.mark.asyncio
async def test_get_quote_bad_number_is_malformed(monkeypatch):
    body = {"Realtime Currency Exchange Rate": {"8. Bid Price": "n/a", "9. Ask Price": "1.1"}}
    _patch_get(monkeypatch, (200, body))
    with pytest.raises(DataProviderError) as exc_info:
        await _client().get_quote("EUR/USD")
    assert exc_info.value.kind == "malformed"


# ── Series ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_daily_series_sorted_oldest_first(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, (200, MOCK_DAILY_RESPONSE), calls=calls)

    bars = await _client().get_daily_series("EUR/USD")
    assert len(bars) == 2
    assert all(isinstance(b, PriceBar) for b in bars)
    assert bars[0].timestamp < bars[1].timestamp
    assert bars[0].open == pytest.approx(1.0910)
    assert bars[1].close == pytest.approx(1.0960)
    assert calls[0]["function"] == "FX_DAILY"
    assert calls[0]["outputsize"] == "compact"


@pytest.mark.asyncio
async def test_intraday_series(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, (200, MOCK_INTRADAY_RESPONSE), calls=calls)

    bars = await _client().get_intraday_series("EUR/USD", interval="5min")
    assert [b.close for b in bars] == pytest.approx([1.0856, 1.0858])
    assert bars[1].timestamp == datetime(2025, 1, 10, 12, 5, tzinfo=timezone.utc)
    assert calls[0]["function"] == "FX_INTRADAY"
    assert calls[0]["interval"] == "5min"


@pytest.mark.asyncio
async def test_fetch_series_dispatch(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, (200, MOCK_INTRADAY_RESPONSE), calls=calls)
    client = _client()
    assert isinstance(client, MarketDataProvider)
    await fetch_series(client, "EUR/USD", "5min")
    assert calls[0]["function"] == "FX_INTRADAY"


@pytest.mark.asyncio
async def test_invalid_interval():
    with pytest.raises(ValueError):
        await _client().get_intraday_series("EUR/USD", interval="2min")


@pytest.mark.asyncio
async def test_empty_series_is_not_found(monkeypatch):
    _patch_get(monkeypatch, (200, {"Time Series FX (Daily)": {}}))
    with pytest.raises(DataProviderError) as exc_info:
        await _client().get_daily_series("EUR/USD")
    assert exc_info.value.kind == "not_found"


# ── Error mapping ────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, kind",
    [
        (200, MOCK_RATE_LIMIT_RESPONSE, "rate_limited"),
        (200, MOCK_INFORMATION_LIMIT_RESPONSE, "rate_limited"),
        (200, MOCK_BAD_SYMBOL_RESPONSE, "not_found"),
        (200, MOCK_BAD_KEY_RESPONSE, "auth_failed"),
        (401, {}, "auth_failed"),
        (403, {}, "auth_failed"),
        (404, {}, "not_found"),
        (429, {}, "rate_limited"),
        (400, {}, "network"),
    ],
)
async def test_error_kinds(monkeypatch, status, body, kind):
    _patch_get(monkeypatch, (status, body))
    with pytest.raises(DataProviderError) as exc_info:
        await _client().get_daily_series("EUR/USD")
    assert exc_info.value.kind == kind


@pytest.mark.asyncio
async def test_rate_limit_not_retried(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, (429, {}), calls=calls)
    with pytest.raises(DataProviderError) as exc_info:
        await _client().get_quote("EUR/USD")
    assert exc_info.value.is_rate_limited
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retries_transient_server_error(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, (503, {}), (200, MOCK_QUOTE_RESPONSE), calls=calls)
    quote = await _client().get_quote("EUR/USD")
    assert quote.bid == pytest.approx(1.0854)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_transport_errors_exhaust_retries(monkeypatch):
    calls: list = []
    _patch_get(monkeypatch, httpx.ConnectError("connection refused"), calls=calls)
    with pytest.raises(DataProviderError) as exc_info:
        await _client().get_quote("EUR/USD")
    assert exc_info.value.kind == "network"
    assert len(calls) == 3


class TestCheckApiError:
    def test_clean_payload_passes(self):
        check_api_error(MOCK_QUOTE_RESPONSE, "quote")

    def test_error_str_includes_kind(self):
        with pytest.raises(DataProviderError, match=r"\[rate_limited\]"):
            check_api_error(MOCK_RATE_LIMIT_RESPONSE, "quote")

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            DataProviderError("exploded", "boom")
