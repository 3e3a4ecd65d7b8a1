"""Strategy data models — typed representations for indicator and signal outputs."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class MACD:
    """MACD line, its 9-period signal line, and the histogram between them."""

    line: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    """Bollinger Bands at the most recent bar."""

    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class IndicatorSet:
    """Indicators for the most recent bar of a pair's series."""

    pair: str
    rsi: float
    macd: MACD
    bollinger: BollingerBands
    sma_20: float
    ema_12: float
    ema_26: float
    atr: float
    close: float
    bar_count: int
    as_of: datetime


# ── Signals ──────────────────────────────────────────────────────────────

BUY = "buy"
SELL = "sell"
HOLD = "hold"

DIRECTIONS = (BUY, SELL, HOLD)


@dataclass(frozen=True)
class TradingSignal:
    """A scored trading decision with entry and exit levels.

    ``strength`` and ``confidence`` are in [0, 100]; ``score`` is the signed
    weighted sum in [-100, 100].  ``reasoning`` lists contributing factors
    in descending weight order.
    """

    pair: str
    direction: str  # "buy", "sell" or "hold"
    strength: float
    confidence: float
    score: float
    entry_price: float
    stop_loss: float
    take_profit: float
    reasoning: tuple[str, ...]
    generated_at: datetime
