"""Market data models — typed representations of price bars and quotes."""

from dataclasses import dataclass
from datetime import datetime

from fxwatch.errors import InvalidQuote
from fxwatch.market.pips import normalize_pair, spread_in_pips


@dataclass(frozen=True)
class PriceBar:
    """A single OHLC bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class Quote:
    """Latest bid/ask for a currency pair.

    ``pair`` is canonicalised to ``"BASE/QUOTE"`` on construction.
    """

    pair: str
    bid: float
    ask: float
    timestamp: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "pair", normalize_pair(self.pair))

    @property
    def mid(self) -> float:
        """Midpoint between bid and ask."""
        return (self.bid + self.ask) / 2.0

    @property
    def spread_pips(self) -> float:
        """Spread expressed in the pair's spread units (see ``pips``)."""
        return spread_in_pips(self.bid, self.ask, self.pair)

    def validate(self) -> None:
        """Raise ``InvalidQuote`` if bid/ask are non-positive or crossed."""
        if self.bid <= 0 or self.ask <= 0:
            raise InvalidQuote(
                f"{self.pair}: bid and ask must be positive "
                f"(bid={self.bid}, ask={self.ask})"
            )
        if self.bid >= self.ask:
            raise InvalidQuote(
                f"{self.pair}: bid must be below ask "
                f"(bid={self.bid}, ask={self.ask})"
            )
