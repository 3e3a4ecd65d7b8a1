"""Price series store — time-ordered bars and the latest quote per pair.

Bars are append-only: once stored, a bar is never replaced, and each pair's
series stays strictly ascending by timestamp.
"""

import logging
from typing import Optional

from fxwatch.market.models import PriceBar, Quote
from fxwatch.market.pips import normalize_pair

logger = logging.getLogger("fxwatch.series_store")


class PriceSeriesStore:
    """In-memory store of OHLC series and quotes.

    Args:
        max_bars: Bars kept per pair; the oldest are dropped beyond this.
    """

    def __init__(self, max_bars: int = 500) -> None:
        if max_bars <= 0:
            raise ValueError(f"max_bars must be positive, got {max_bars}")
        self._max_bars = max_bars
        self._bars: dict[str, list[PriceBar]] = {}
        self._quotes: dict[str, Quote] = {}

    # ── Bars ─────────────────────────────────────────────────────────────

    def append_bar(self, pair: str, bar: PriceBar) -> None:
        """Append a single bar.

        Raises ``ValueError`` if *bar* is not strictly newer than the last
        stored bar for *pair*.
        """
        key = normalize_pair(pair)
        series = self._bars.setdefault(key, [])
        if series and bar.timestamp <= series[-1].timestamp:
            raise ValueError(
                f"{key}: bar at {bar.timestamp.isoformat()} is not after "
                f"last stored bar at {series[-1].timestamp.isoformat()}"
            )
        series.append(bar)
        if len(series) > self._max_bars:
            del series[: len(series) - self._max_bars]

    def extend(self, pair: str, bars: list[PriceBar]) -> int:
        """Merge a freshly fetched series into the store.

        Bars at or before the last stored timestamp are already known and
        skipped.  The remainder must be strictly ascending.

        Returns:
            Number of bars appended.
        """
        key = normalize_pair(pair)
        series = self._bars.get(key, [])
        last = series[-1].timestamp if series else None
        appended = 0
        for bar in bars:
            if last is not None and bar.timestamp <= last:
                continue
            self.append_bar(key, bar)
            last = bar.timestamp
            appended += 1
        if appended:
            logger.debug("%s: appended %d bar(s)", key, appended)
        return appended

    def bars(self, pair: str, count: Optional[int] = None) -> list[PriceBar]:
        """Return a copy of the stored series, optionally the last *count*."""
        series = self._bars.get(normalize_pair(pair), [])
        if count is not None:
            return list(series[-count:]) if count > 0 else []
        return list(series)

    def bar_count(self, pair: str) -> int:
        return len(self._bars.get(normalize_pair(pair), []))

    # ── Quotes ───────────────────────────────────────────────────────────

    def update_quote(self, quote: Quote) -> Optional[Quote]:
        """Store *quote* as the latest for its pair.

        Returns the previously stored quote (or ``None``).
        """
        previous = self._quotes.get(quote.pair)
        self._quotes[quote.pair] = quote
        return previous

    def latest_quote(self, pair: str) -> Optional[Quote]:
        return self._quotes.get(normalize_pair(pair))

    @property
    def pairs(self) -> list[str]:
        """Pairs with at least one bar or quote."""
        return sorted(set(self._bars) | set(self._quotes))
