"""Technical indicators — SMA, EMA, RSI, MACD, Bollinger Bands, ATR. Pure functions, no I/O."""

import math

from fxwatch.errors import InsufficientData
from fxwatch.market.models import PriceBar
from fxwatch.market.pips import normalize_pair
from fxwatch.strategy.models import MACD, BollingerBands, IndicatorSet

RSI_PERIOD = 14
EMA_FAST = 12
EMA_SLOW = 26
MACD_SIGNAL = 9
BOLLINGER_PERIOD = 20
BOLLINGER_STD = 2.0
SMA_PERIOD = 20
ATR_PERIOD = 14

# The slow EMA needs 26 closes; its first value seeds the MACD line, and the
# signal line needs 9 MACD values on top of that.
MIN_BARS = EMA_SLOW + MACD_SIGNAL - 1


def _require(values: list, needed: int, label: str) -> None:
    if len(values) < needed:
        raise InsufficientData(
            f"Need at least {needed} bars for {label}, got {len(values)}"
        )


def calculate_sma(closes: list[float], period: int) -> float:
    """Simple moving average of the last *period* closes.

    Raises ``InsufficientData`` if fewer than *period* closes are given.
    """
    _require(closes, period, f"SMA({period})")
    window = closes[-period:]
    return sum(window) / period


def calculate_ema(closes: list[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    Uses the standard EMA formula:
        ``EMA_today = close × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``.

    Requires at least *period* closes. The first EMA value is seeded
    with the SMA of the first *period* closes.

    Returns the full EMA series (same length as *closes*). Entries
    before the seed period are set to ``float('nan')``.

    Raises ``InsufficientData`` if fewer than *period* closes are provided.
    """
    _require(closes, period, f"EMA({period})")

    k = 2.0 / (period + 1)
    ema: list[float] = [float("nan")] * len(closes)

    # Seed: SMA of first *period* closes
    ema[period - 1] = sum(closes[:period]) / period

    for i in range(period, len(closes)):
        ema[i] = closes[i] * k + ema[i - 1] * (1 - k)

    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(closes: list[float], period: int = RSI_PERIOD) -> list[float]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = close[i] - close[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = SMA of first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RS = avg_gain / avg_loss
        6. RSI = 100 - 100 / (1 + RS), or 100 when avg_loss == 0

    Requires at least ``period + 1`` closes.

    Returns a list the same length as *closes*.  Entries before the
    seed period are ``float('nan')``.
    """
    _require(closes, period + 1, f"RSI({period})")

    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]

    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    rsi: list[float] = [float("nan")] * len(closes)

    # Seed averages (SMA of first *period* values)
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    def _rsi_from_avgs(ag: float, al: float) -> float:
        if al == 0:
            return 100.0
        rs = ag / al
        return 100.0 - 100.0 / (1.0 + rs)

    rsi[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # Index in rsi is i+1 because deltas are offset by 1
        rsi[i + 1] = _rsi_from_avgs(avg_gain, avg_loss)

    return rsi


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    closes: list[float],
    fast: int = EMA_FAST,
    slow: int = EMA_SLOW,
    signal: int = MACD_SIGNAL,
) -> MACD:
    """MACD at the most recent close.

    line      = EMA(fast) − EMA(slow)
    signal    = EMA(line, *signal*), seeded with the SMA of its first values
    histogram = line − signal

    Requires at least ``slow + signal - 1`` closes.
    """
    _require(closes, slow + signal - 1, f"MACD({fast},{slow},{signal})")

    ema_fast = calculate_ema(closes, fast)
    ema_slow = calculate_ema(closes, slow)
    macd_line = [ema_fast[i] - ema_slow[i] for i in range(slow - 1, len(closes))]
    signal_series = calculate_ema(macd_line, signal)

    line = macd_line[-1]
    signal_value = signal_series[-1]
    return MACD(line=line, signal=signal_value, histogram=line - signal_value)


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    closes: list[float],
    period: int = BOLLINGER_PERIOD,
    std_dev: float = BOLLINGER_STD,
) -> BollingerBands:
    """Calculate Bollinger Bands at the most recent close.

    Middle = SMA(close, *period*)
    Upper  = middle + *std_dev* × σ
    Lower  = middle − *std_dev* × σ

    σ is the population standard deviation over the same window.
    Requires at least *period* closes.
    """
    _require(closes, period, f"Bollinger({period})")

    window = closes[-period:]
    sma = sum(window) / period
    variance = sum((x - sma) ** 2 for x in window) / period
    sigma = math.sqrt(variance)

    return BollingerBands(
        upper=sma + std_dev * sigma,
        middle=sma,
        lower=sma - std_dev * sigma,
    )


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(bars: list[PriceBar], period: int = ATR_PERIOD) -> float:
    """Calculate the Average True Range over *period* bars.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Requires at least ``period + 1`` bars (need a previous close for TR).
    Returns the simple average of the last *period* true ranges.
    """
    _require(bars, period + 1, f"ATR({period})")

    true_ranges: list[float] = []
    for i in range(len(bars) - period, len(bars)):
        high = bars[i].high
        low = bars[i].low
        prev_close = bars[i - 1].close
        true_ranges.append(
            max(high - low, abs(high - prev_close), abs(low - prev_close))
        )
    return sum(true_ranges) / period


# ── Indicator set ────────────────────────────────────────────────────────


def compute_indicator_set(pair: str, bars: list[PriceBar]) -> IndicatorSet:
    """Compute every indicator for the most recent bar of *bars*.

    *bars* must be ordered ascending by timestamp.

    Raises ``InsufficientData`` if fewer than ``MIN_BARS`` bars are given.
    """
    _require(bars, MIN_BARS, "a full indicator set")

    closes = [b.close for b in bars]
    ema_12 = calculate_ema(closes, EMA_FAST)[-1]
    ema_26 = calculate_ema(closes, EMA_SLOW)[-1]

    return IndicatorSet(
        pair=normalize_pair(pair),
        rsi=calculate_rsi(closes, RSI_PERIOD)[-1],
        macd=calculate_macd(closes),
        bollinger=calculate_bollinger(closes),
        sma_20=calculate_sma(closes, SMA_PERIOD),
        ema_12=ema_12,
        ema_26=ema_26,
        atr=calculate_atr(bars, ATR_PERIOD),
        close=closes[-1],
        bar_count=len(bars),
        as_of=bars[-1].timestamp,
    )
