"""Stop-loss and take-profit calculation — pure math, no I/O.

Volatility-anchored approach:
    width = max(ATR, min_stop_pips × pip)
    SL    = entry ∓ stop_mult × width
    TP    = entry ± target_mult × width

The stop is never placed beyond the opposite Bollinger band: a long stop is
raised to the lower band, a short stop lowered to the upper band, whenever
that band sits on the loss side of the entry.
"""

from dataclasses import dataclass

from fxwatch.market.pips import pip_size, price_precision
from fxwatch.strategy.models import BUY, SELL, BollingerBands

DEFAULT_STOP_MULT = 1.5
DEFAULT_TARGET_MULT = 2.5
DEFAULT_MIN_STOP_PIPS = 5.0


@dataclass(frozen=True)
class RiskLevels:
    """Computed stop-loss and take-profit for a trade."""

    sl: float
    tp: float


def calculate_signal_levels(
    pair: str,
    entry_price: float,
    direction: str,
    atr: float,
    bollinger: BollingerBands,
    stop_mult: float = DEFAULT_STOP_MULT,
    target_mult: float = DEFAULT_TARGET_MULT,
    min_stop_pips: float = DEFAULT_MIN_STOP_PIPS,
) -> RiskLevels:
    """Calculate SL and TP around *entry_price*.

    Args:
        pair: Currency pair (drives pip size and rounding).
        entry_price: Trade entry price.
        direction: ``"buy"`` or ``"sell"``.
        atr: Current ATR(14) value.
        bollinger: Current Bollinger Bands; bound the stop.
        stop_mult: Stop distance as a multiple of the volatility width.
        target_mult: Target distance as a multiple of the volatility width.
        min_stop_pips: Floor on the volatility width, in pips.

    Returns:
        ``RiskLevels`` with sl and tp.
    """
    if direction not in (BUY, SELL):
        raise ValueError(f"direction must be 'buy' or 'sell', got '{direction}'")
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    if stop_mult <= 0 or target_mult <= 0:
        raise ValueError("stop_mult and target_mult must be positive")

    width = max(atr, min_stop_pips * pip_size(pair))
    digits = price_precision(pair)

    if direction == BUY:
        sl = entry_price - stop_mult * width
        tp = entry_price + target_mult * width
        if sl < bollinger.lower < entry_price:
            sl = bollinger.lower
    else:
        sl = entry_price + stop_mult * width
        tp = entry_price - target_mult * width
        if entry_price < bollinger.upper < sl:
            sl = bollinger.upper

    return RiskLevels(sl=round(sl, digits), tp=round(tp, digits))
