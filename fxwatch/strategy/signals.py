"""Signal generation — scores indicators into a buy/sell/hold decision.

Three factors, each scored in [-100, 100] (positive = bullish):

    RSI      oversold / overbought, otherwise distance from 50
    MACD     line vs. signal, scaled by histogram size in pips
    Trend    EMA12 vs. EMA26

The weighted sum is the net score.  Rule-based and deterministic.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fxwatch.errors import InvalidQuote
from fxwatch.market.models import Quote
from fxwatch.market.pips import pip_size, price_precision
from fxwatch.risk.sl_tp import (
    DEFAULT_MIN_STOP_PIPS,
    DEFAULT_STOP_MULT,
    DEFAULT_TARGET_MULT,
    calculate_signal_levels,
)
from fxwatch.strategy.models import BUY, HOLD, SELL, IndicatorSet, TradingSignal


@dataclass(frozen=True)
class SignalConfig:
    """Fixed weights and thresholds for the signal policy."""

    rsi_weight: float = 0.40
    macd_weight: float = 0.35
    trend_weight: float = 0.25
    buy_threshold: float = 20.0
    sell_threshold: float = -20.0
    base_confidence: float = 90.0
    oversold: float = 30.0
    overbought: float = 70.0
    stop_mult: float = DEFAULT_STOP_MULT
    target_mult: float = DEFAULT_TARGET_MULT
    min_stop_pips: float = DEFAULT_MIN_STOP_PIPS


@dataclass(frozen=True)
class _Factor:
    name: str
    score: float
    weighted: float
    reason: str


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _clamp(value: float, low: float = -100.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# ── Factors ──────────────────────────────────────────────────────────────


def score_rsi(rsi: float, oversold: float = 30.0, overbought: float = 70.0) -> float:
    """Score RSI: strongly bullish below *oversold*, bearish above *overbought*.

    Inside the band the score is proportional to the distance from 50,
    reaching ±50 at the band edges; beyond them it climbs to ±100 at 0/100.
    """
    if rsi < oversold:
        return _clamp(50.0 + (oversold - rsi) / oversold * 50.0)
    if rsi > overbought:
        return _clamp(-(50.0 + (rsi - overbought) / (100.0 - overbought) * 50.0))
    half_band = (overbought - oversold) / 2.0
    return (50.0 - rsi) / half_band * 50.0


def score_macd(line: float, signal: float, histogram: float, pip: float) -> float:
    """Score MACD momentum: direction from the crossover, size from the histogram."""
    direction = _sign(line - signal)
    if direction == 0:
        return 0.0
    magnitude = min(100.0, 50.0 + 10.0 * abs(histogram) / pip)
    return direction * magnitude


def score_trend(ema_fast: float, ema_slow: float) -> float:
    """Score trend confirmation: ±100 by which EMA is on top."""
    return 100.0 * _sign(ema_fast - ema_slow)


def _build_factors(indicators: IndicatorSet, config: SignalConfig) -> list[_Factor]:
    pip = pip_size(indicators.pair)
    rsi = indicators.rsi
    macd = indicators.macd

    rsi_score = score_rsi(rsi, config.oversold, config.overbought)
    if rsi < config.oversold:
        rsi_reason = f"RSI {rsi:.1f} is oversold (bullish)"
    elif rsi > config.overbought:
        rsi_reason = f"RSI {rsi:.1f} is overbought (bearish)"
    else:
        lean = "bullish" if rsi_score > 0 else "bearish" if rsi_score < 0 else "flat"
        rsi_reason = f"RSI {rsi:.1f} is neutral ({lean} lean)"

    macd_score = score_macd(macd.line, macd.signal, macd.histogram, pip)
    hist_pips = macd.histogram / pip
    if macd_score > 0:
        macd_reason = f"MACD above signal line (bullish momentum, histogram {hist_pips:+.1f} pips)"
    elif macd_score < 0:
        macd_reason = f"MACD below signal line (bearish momentum, histogram {hist_pips:+.1f} pips)"
    else:
        macd_reason = "MACD on its signal line (no momentum)"

    trend_score = score_trend(indicators.ema_12, indicators.ema_26)
    if trend_score > 0:
        trend_reason = "EMA12 above EMA26 (bullish trend)"
    elif trend_score < 0:
        trend_reason = "EMA12 below EMA26 (bearish trend)"
    else:
        trend_reason = "EMA12 equals EMA26 (no trend)"

    return [
        _Factor("rsi", rsi_score, rsi_score * config.rsi_weight, rsi_reason),
        _Factor("macd", macd_score, macd_score * config.macd_weight, macd_reason),
        _Factor("trend", trend_score, trend_score * config.trend_weight, trend_reason),
    ]


def _bollinger_note(indicators: IndicatorSet, price: float) -> Optional[str]:
    bands = indicators.bollinger
    if price <= bands.lower:
        return "Price at or below lower Bollinger band (potential bounce)"
    if price >= bands.upper:
        return "Price at or above upper Bollinger band (potential reversal)"
    return None


# ── Signal ───────────────────────────────────────────────────────────────


def generate_signal(
    indicators: IndicatorSet,
    quote: Quote,
    config: SignalConfig = SignalConfig(),
    generated_at: Optional[datetime] = None,
) -> TradingSignal:
    """Combine *indicators* and *quote* into exactly one ``TradingSignal``.

    Hold signals still carry entry/stop/target, computed for the side the
    score leans towards (buy when the score is zero).

    Raises:
        InvalidQuote: bid ≥ ask, a non-positive price, or a quote for a
            different pair than *indicators*.
    """
    quote.validate()
    if quote.pair != indicators.pair:
        raise InvalidQuote(
            f"Quote pair {quote.pair} does not match indicator pair {indicators.pair}"
        )
    if generated_at is None:
        generated_at = datetime.now(timezone.utc)

    factors = _build_factors(indicators, config)
    score = _clamp(sum(f.weighted for f in factors))

    if score > config.buy_threshold:
        direction = BUY
    elif score < config.sell_threshold:
        direction = SELL
    else:
        direction = HOLD

    lean = _sign(score)
    agreeing = sum(1 for f in factors if _sign(f.score) == lean)
    confidence = config.base_confidence * agreeing / len(factors)

    level_side = direction if direction != HOLD else (SELL if lean < 0 else BUY)
    entry = quote.ask if level_side == BUY else quote.bid
    levels = calculate_signal_levels(
        indicators.pair,
        entry,
        level_side,
        indicators.atr,
        indicators.bollinger,
        stop_mult=config.stop_mult,
        target_mult=config.target_mult,
        min_stop_pips=config.min_stop_pips,
    )

    # sorted() is stable: equal weights keep RSI, MACD, trend order
    ordered = sorted(factors, key=lambda f: abs(f.weighted), reverse=True)
    reasoning = [f.reason for f in ordered]
    note = _bollinger_note(indicators, quote.mid)
    if note:
        reasoning.append(note)

    return TradingSignal(
        pair=indicators.pair,
        direction=direction,
        strength=round(abs(score), 2),
        confidence=round(confidence, 2),
        score=round(score, 2),
        entry_price=round(entry, price_precision(indicators.pair)),
        stop_loss=levels.sl,
        take_profit=levels.tp,
        reasoning=tuple(reasoning),
        generated_at=generated_at,
    )
