"""Market data provider protocol.

Defines the interface the monitoring loop and tools need from a data
source.  Failures are raised as ``DataProviderError`` with a ``kind`` so the
loop can tell rate limits and auth problems from transient errors.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from fxwatch.market.models import PriceBar, Quote


@runtime_checkable
class MarketDataProvider(Protocol):
    """Interface that all market data sources must satisfy."""

    async def get_quote(self, pair: str) -> Quote:
        """Return the latest bid/ask quote for *pair*."""
        ...

    async def get_daily_series(
        self, pair: str, outputsize: str = "compact"
    ) -> list[PriceBar]:
        """Return daily bars for *pair*, oldest first."""
        ...

    async def get_intraday_series(
        self, pair: str, interval: str = "5min"
    ) -> list[PriceBar]:
        """Return intraday bars for *pair*, oldest first."""
        ...


async def fetch_series(
    provider: MarketDataProvider,
    pair: str,
    series_interval: str,
) -> list[PriceBar]:
    """Fetch bars at *series_interval* (``"daily"`` or an intraday interval)."""
    if series_interval == "daily":
        return await provider.get_daily_series(pair)
    return await provider.get_intraday_series(pair, interval=series_interval)
