"""Tests for fxwatch.strategy.signals and fxwatch.risk.sl_tp."""

from datetime import datetime, timezone

import pytest

from fxwatch.errors import InvalidQuote
from fxwatch.market.models import Quote
from fxwatch.risk.sl_tp import calculate_signal_levels
from fxwatch.strategy.models import MACD, BollingerBands, IndicatorSet
from fxwatch.strategy.signals import (
    SignalConfig,
    generate_signal,
    score_macd,
    score_rsi,
    score_trend,
)

_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
_BANDS = BollingerBands(upper=1.1000, middle=1.0900, lower=1.0800)


def _indicators(
    rsi: float = 50.0,
    macd: MACD = MACD(0.0, 0.0, 0.0),
    ema_12: float = 1.0850,
    ema_26: float = 1.0850,
    bollinger: BollingerBands = _BANDS,
    atr: float = 0.0010,
    pair: str = "EUR/USD",
) -> IndicatorSet:
    return IndicatorSet(
        pair=pair,
        rsi=rsi,
        macd=macd,
        bollinger=bollinger,
        sma_20=bollinger.middle,
        ema_12=ema_12,
        ema_26=ema_26,
        atr=atr,
        close=1.0855,
        bar_count=100,
        as_of=_NOW,
    )


def _quote(bid: float = 1.0854, ask: float = 1.0856, pair: str = "EUR/USD") -> Quote:
    return Quote(pair=pair, bid=bid, ask=ask, timestamp=_NOW)


_BULLISH = dict(rsi=25.0, macd=MACD(0.0010, 0.0008, 0.0002), ema_12=1.0860, ema_26=1.0840)
_BEARISH = dict(rsi=75.0, macd=MACD(-0.0010, -0.0008, -0.0002), ema_12=1.0840, ema_26=1.0860)


# ── Factor scores ────────────────────────────────────────────────────────


class TestFactorScores:
    def test_rsi_oversold(self):
        assert score_rsi(25.0) == pytest.approx(50 + 5 / 30 * 50)

    def test_rsi_overbought(self):
        assert score_rsi(75.0) == pytest.approx(-(50 + 5 / 30 * 50))

    def test_rsi_neutral_band(self):
        assert score_rsi(50.0) == 0.0
        assert score_rsi(40.0) == pytest.approx(25.0)
        assert score_rsi(60.0) == pytest.approx(-25.0)

    def test_rsi_extremes(self):
        assert score_rsi(0.0) == pytest.approx(100.0)
        assert score_rsi(100.0) == pytest.approx(-100.0)

    def test_macd(self):
        assert score_macd(0.0010, 0.0008, 0.0002, 0.0001) == pytest.approx(70.0)
        assert score_macd(-0.0010, -0.0008, -0.0002, 0.0001) == pytest.approx(-70.0)
        assert score_macd(0.0010, 0.0001, 0.0009, 0.0001) == 100.0
        assert score_macd(0.0005, 0.0005, 0.0, 0.0001) == 0.0

    def test_trend(self):
        assert score_trend(1.1, 1.0) == 100.0
        assert score_trend(1.0, 1.1) == -100.0
        assert score_trend(1.0, 1.0) == 0.0


# ── Signals ──────────────────────────────────────────────────────────────


class TestGenerateSignal:
    def test_buy(self):
        sig = generate_signal(_indicators(**_BULLISH), _quote(), generated_at=_NOW)
        assert sig.direction == "buy"
        assert sig.score == pytest.approx(72.83, abs=0.01)
        assert sig.strength == pytest.approx(sig.score)
        assert sig.confidence == pytest.approx(90.0)
        assert sig.entry_price == pytest.approx(1.0856)
        assert sig.stop_loss == pytest.approx(1.0841)
        assert sig.take_profit == pytest.approx(1.0881)
        assert sig.generated_at == _NOW

    def test_sell(self):
        sig = generate_signal(_indicators(**_BEARISH), _quote())
        assert sig.direction == "sell"
        assert sig.score == pytest.approx(-72.83, abs=0.01)
        assert sig.strength == pytest.approx(72.83, abs=0.01)
        assert sig.entry_price == pytest.approx(1.0854)
        assert sig.take_profit < sig.entry_price < sig.stop_loss

    def test_hold_still_has_levels(self):
        sig = generate_signal(_indicators(), _quote())
        assert sig.direction == "hold"
        assert sig.score == 0.0
        # Zero score leans buy-side
        assert sig.entry_price == pytest.approx(1.0856)
        assert sig.stop_loss < sig.entry_price < sig.take_profit

    def test_hold_leaning_bearish_uses_sell_side(self):
        # RSI 60 alone: 0.40 × -25 = -10, inside the hold band
        sig = generate_signal(_indicators(rsi=60.0), _quote())
        assert sig.direction == "hold"
        assert sig.entry_price == pytest.approx(1.0854)
        assert sig.take_profit < sig.entry_price < sig.stop_loss

    def test_confidence_counts_agreeing_factors(self):
        mixed = dict(_BULLISH, rsi=60.0)  # RSI now leans bearish
        sig = generate_signal(_indicators(**mixed), _quote())
        assert sig.direction == "buy"
        assert sig.confidence == pytest.approx(60.0)

    def test_completeness(self):
        for kwargs in (_BULLISH, _BEARISH, {}):
            sig = generate_signal(_indicators(**kwargs), _quote())
            assert sig.direction in ("buy", "sell", "hold")
            assert 0.0 <= sig.strength <= 100.0
            assert 0.0 <= sig.confidence <= 100.0
            assert sig.reasoning
            assert sig.entry_price > 0 and sig.stop_loss > 0 and sig.take_profit > 0

    def test_reasoning_ordered_by_weight(self):
        sig = generate_signal(_indicators(**_BULLISH), _quote())
        # trend 25.0 > MACD 24.5 > RSI 23.3
        assert sig.reasoning[0].startswith("EMA12 above EMA26")
        assert sig.reasoning[1].startswith("MACD above signal line")
        assert sig.reasoning[2].startswith("RSI 25.0 is oversold")
        assert len(sig.reasoning) == 3

    def test_bollinger_note_appended_last(self):
        sig = generate_signal(_indicators(**_BULLISH), _quote(bid=1.0798, ask=1.0800))
        assert "lower Bollinger band" in sig.reasoning[-1]

    def test_crossed_quote_rejected(self):
        with pytest.raises(InvalidQuote):
            generate_signal(_indicators(), _quote(bid=1.0858, ask=1.0854))

    def test_pair_mismatch_rejected(self):
        with pytest.raises(InvalidQuote):
            generate_signal(_indicators(), _quote(pair="GBP/USD"))

    def test_custom_thresholds(self):
        cfg = SignalConfig(buy_threshold=80.0, sell_threshold=-80.0)
        sig = generate_signal(_indicators(**_BULLISH), _quote(), config=cfg)
        assert sig.direction == "hold"

    def test_deterministic(self):
        a = generate_signal(_indicators(**_BULLISH), _quote(), generated_at=_NOW)
        b = generate_signal(_indicators(**_BULLISH), _quote(), generated_at=_NOW)
        assert a == b


# ── Stop / target levels ─────────────────────────────────────────────────


class TestSignalLevels:
    def test_buy_levels_from_atr(self):
        levels = calculate_signal_levels("EUR/USD", 1.0856, "buy", 0.0010, _BANDS)
        assert levels.sl == pytest.approx(1.0841)
        assert levels.tp == pytest.approx(1.0881)

    def test_sell_levels_from_atr(self):
        levels = calculate_signal_levels("EUR/USD", 1.0854, "sell", 0.0010, _BANDS)
        assert levels.sl == pytest.approx(1.0869)
        assert levels.tp == pytest.approx(1.0829)

    def test_min_stop_width(self):
        levels = calculate_signal_levels("EUR/USD", 1.0856, "buy", 0.0, _BANDS)
        # 5-pip floor: stop 7.5 pips, target 12.5 pips away
        assert levels.sl == pytest.approx(1.0856 - 0.00075, abs=1e-5)
        assert levels.tp == pytest.approx(1.0856 + 0.00125, abs=1e-5)

    def test_buy_stop_clamped_to_lower_band(self):
        bands = BollingerBands(upper=1.0900, middle=1.0870, lower=1.0850)
        levels = calculate_signal_levels("EUR/USD", 1.0856, "buy", 0.0010, bands)
        assert levels.sl == pytest.approx(1.0850)

    def test_sell_stop_clamped_to_upper_band(self):
        bands = BollingerBands(upper=1.0860, middle=1.0840, lower=1.0820)
        levels = calculate_signal_levels("EUR/USD", 1.0854, "sell", 0.0010, bands)
        assert levels.sl == pytest.approx(1.0860)

    def test_jpy_rounding(self):
        bands = BollingerBands(upper=151.0, middle=150.0, lower=149.0)
        levels = calculate_signal_levels("USD/JPY", 150.123, "buy", 0.1234, bands)
        assert levels.sl == round(150.123 - 1.5 * 0.1234, 3)

    def test_invalid_direction(self):
        with pytest.raises(ValueError):
            calculate_signal_levels("EUR/USD", 1.0856, "hold", 0.001, _BANDS)
