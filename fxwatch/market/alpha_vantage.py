"""Alpha Vantage FX REST API async client.

Handles quote and OHLC series retrieval and maps every failure onto a
``DataProviderError`` kind.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from fxwatch.config import Config
from fxwatch.errors import (
    AUTH_FAILED,
    MALFORMED,
    NETWORK,
    NOT_FOUND,
    RATE_LIMITED,
    DataProviderError,
)
from fxwatch.market.models import PriceBar, Quote
from fxwatch.market.pips import split_pair

logger = logging.getLogger("fxwatch.alpha_vantage")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504}

_INTRADAY_INTERVALS = ("1min", "5min", "15min", "30min", "60min")
_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")
_QUOTE_KEY = "Realtime Currency Exchange Rate"


def _parse_timestamp(raw: str) -> datetime:
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(raw.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise DataProviderError(MALFORMED, f"Unrecognised timestamp '{raw}'")


def _parse_float(value, field: str, context: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DataProviderError(
            MALFORMED, f"Invalid {field} '{value}' in {context} response"
        ) from None


def check_api_error(data: dict, context: str) -> None:
    """Raise ``DataProviderError`` if *data* is an Alpha Vantage error body.

    Alpha Vantage reports most failures with HTTP 200 and a message under
    ``Error Message``, ``Note`` or ``Information``.
    """
    for key in ("Note", "Information"):
        message = data.get(key)
        if isinstance(message, str):
            lowered = message.lower()
            if "frequency" in lowered or "rate limit" in lowered:
                raise DataProviderError(
                    RATE_LIMITED, f"Rate limit reached for {context}: {message}"
                )
            if "api key" in lowered or "apikey" in lowered:
                raise DataProviderError(
                    AUTH_FAILED, f"API key rejected for {context}: {message}"
                )

    error = data.get("Error Message")
    if isinstance(error, str):
        lowered = error.lower()
        if "api key" in lowered or "apikey" in lowered:
            raise DataProviderError(AUTH_FAILED, f"API key rejected for {context}: {error}")
        raise DataProviderError(NOT_FOUND, f"Invalid request for {context}: {error}")


class AlphaVantageClient:
    """Async client wrapping the Alpha Vantage FX endpoints.

    Args:
        config: Application configuration (API key, base URL).
        retry_base_delay: First retry delay in seconds; doubles each attempt.
    """

    def __init__(self, config: Config, retry_base_delay: float = _RETRY_BASE_DELAY) -> None:
        self._config = config
        self._base_url = config.alpha_vantage_base_url
        self._api_key = config.alpha_vantage_api_key
        self._retry_base_delay = retry_base_delay

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_json(self, params: dict, context: str) -> dict:
        """GET the query endpoint with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and transport
        errors.  Rate limits are raised immediately so the caller can back
        off instead of hammering the API.
        """
        query = {**params, "apikey": self._api_key}
        last_exc: Optional[DataProviderError] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(self._base_url, params=query, timeout=30.0)
            except httpx.TransportError as exc:
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Alpha Vantage %s transport error (%s) — retry %d/%d in %.1fs",
                    context, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = DataProviderError(NETWORK, f"{context}: {exc}")
                await asyncio.sleep(delay)
                continue

            if resp.status_code in _RETRYABLE_STATUS_CODES:
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Alpha Vantage %s returned %d — retry %d/%d in %.1fs",
                    context, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = DataProviderError(
                    NETWORK, f"{context}: server error {resp.status_code}"
                )
                await asyncio.sleep(delay)
                continue

            self._raise_for_status(resp, context)

            try:
                data = resp.json()
            except ValueError:
                raise DataProviderError(
                    MALFORMED, f"{context}: response is not valid JSON"
                ) from None
            if not isinstance(data, dict):
                raise DataProviderError(MALFORMED, f"{context}: unexpected JSON payload")

            check_api_error(data, context)
            return data

        # Retries exhausted, surface the last error
        raise last_exc  # type: ignore[misc]

    @staticmethod
    def _raise_for_status(resp: httpx.Response, context: str) -> None:
        status = resp.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise DataProviderError(AUTH_FAILED, f"{context}: authentication failed ({status})")
        if status == 404:
            raise DataProviderError(NOT_FOUND, f"{context}: not found")
        if status == 429:
            raise DataProviderError(RATE_LIMITED, f"{context}: too many requests")
        raise DataProviderError(NETWORK, f"{context}: request failed ({status})")

    # ── Quotes ───────────────────────────────────────────────────────────

    async def get_quote(self, pair: str) -> Quote:
        """Fetch the real-time exchange rate with bid/ask for *pair*."""
        base, quote_ccy = split_pair(pair)
        context = f"quote {base}/{quote_ccy}"
        data = await self._get_json(
            {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": base,
                "to_currency": quote_ccy,
            },
            context,
        )

        rate = data.get(_QUOTE_KEY)
        if not isinstance(rate, dict):
            raise DataProviderError(MALFORMED, f"{context}: missing '{_QUOTE_KEY}'")

        bid = _parse_float(rate.get("8. Bid Price"), "bid price", context)
        ask = _parse_float(rate.get("9. Ask Price"), "ask price", context)
        refreshed = rate.get("6. Last Refreshed")
        timestamp = (
            _parse_timestamp(refreshed) if refreshed
            else datetime.now(timezone.utc)
        )
        return Quote(pair=f"{base}/{quote_ccy}", bid=bid, ask=ask, timestamp=timestamp)

    # ── Series ───────────────────────────────────────────────────────────

    async def get_daily_series(
        self,
        pair: str,
        outputsize: str = "compact",
    ) -> list[PriceBar]:
        """Fetch daily OHLC bars.

        Args:
            pair: e.g. ``"EUR/USD"``
            outputsize: ``"compact"`` (last 100 bars) or ``"full"``

        Returns:
            List of ``PriceBar`` objects ordered oldest-first.
        """
        if outputsize not in ("compact", "full"):
            raise ValueError(f"outputsize must be 'compact' or 'full', got '{outputsize}'")
        base, quote_ccy = split_pair(pair)
        context = f"daily series {base}/{quote_ccy}"
        data = await self._get_json(
            {
                "function": "FX_DAILY",
                "from_symbol": base,
                "to_symbol": quote_ccy,
                "outputsize": outputsize,
            },
            context,
        )
        return self._parse_series(data, "Time Series FX (Daily)", context)

    async def get_intraday_series(
        self,
        pair: str,
        interval: str = "5min",
    ) -> list[PriceBar]:
        """Fetch intraday OHLC bars at *interval* (``"1min"`` … ``"60min"``)."""
        if interval not in _INTRADAY_INTERVALS:
            raise ValueError(
                f"interval must be one of {', '.join(_INTRADAY_INTERVALS)}, got '{interval}'"
            )
        base, quote_ccy = split_pair(pair)
        context = f"intraday series {base}/{quote_ccy} ({interval})"
        data = await self._get_json(
            {
                "function": "FX_INTRADAY",
                "from_symbol": base,
                "to_symbol": quote_ccy,
                "interval": interval,
            },
            context,
        )
        return self._parse_series(data, f"Time Series FX ({interval})", context)

    @staticmethod
    def _parse_series(data: dict, key: str, context: str) -> list[PriceBar]:
        series = data.get(key)
        if not isinstance(series, dict):
            raise DataProviderError(MALFORMED, f"{context}: missing '{key}'")
        if not series:
            raise DataProviderError(NOT_FOUND, f"{context}: no data points returned")

        bars: list[PriceBar] = []
        for stamp, values in series.items():
            if not isinstance(values, dict):
                raise DataProviderError(MALFORMED, f"{context}: invalid entry for {stamp}")
            bars.append(
                PriceBar(
                    timestamp=_parse_timestamp(stamp),
                    open=_parse_float(values.get("1. open"), "open", context),
                    high=_parse_float(values.get("2. high"), "high", context),
                    low=_parse_float(values.get("3. low"), "low", context),
                    close=_parse_float(values.get("4. close"), "close", context),
                )
            )

        # Alpha Vantage returns newest first
        bars.sort(key=lambda b: b.timestamp)
        return bars
