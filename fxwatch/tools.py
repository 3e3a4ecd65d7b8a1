"""Typed tool table — the seam an agent layer calls into.

Each tool has a frozen args dataclass and an async handler on
``MarketTools``.  ``invoke_tool`` validates a JSON-style payload into the
args type and calls the handler registered in ``TOOL_TABLE``; nothing else
on the object is reachable by name.  All tools are read-only.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from fxwatch.errors import FXWatchError, InsufficientData
from fxwatch.market.pips import normalize_pair
from fxwatch.market.provider import MarketDataProvider, fetch_series
from fxwatch.portfolio.ledger import PortfolioLedger
from fxwatch.strategy.indicators import compute_indicator_set
from fxwatch.strategy.models import BUY, HOLD, SELL
from fxwatch.strategy.signals import SignalConfig, generate_signal

logger = logging.getLogger("fxwatch.tools")

_SERIES_INTERVALS = ("daily", "1min", "5min", "15min", "30min", "60min")


def to_jsonable(obj: Any) -> Any:
    """Convert dataclasses, tuples and datetimes into JSON-friendly values."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def _check_interval(interval: str) -> None:
    if interval not in _SERIES_INTERVALS:
        raise ValueError(
            f"interval must be one of {', '.join(_SERIES_INTERVALS)}, got '{interval}'"
        )


# ── Tool arguments ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class QuoteArgs:
    pair: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "pair", normalize_pair(self.pair))


@dataclass(frozen=True)
class AnalysisArgs:
    pair: str
    interval: str = "daily"

    def __post_init__(self) -> None:
        object.__setattr__(self, "pair", normalize_pair(self.pair))
        _check_interval(self.interval)


@dataclass(frozen=True)
class SignalArgs:
    pair: str
    interval: str = "daily"

    def __post_init__(self) -> None:
        object.__setattr__(self, "pair", normalize_pair(self.pair))
        _check_interval(self.interval)


@dataclass(frozen=True)
class OverviewArgs:
    pairs: tuple[str, ...] = ("EUR/USD", "GBP/USD", "USD/JPY", "AUD/USD", "USD/CAD")
    interval: str = "daily"

    def __post_init__(self) -> None:
        if isinstance(self.pairs, str) or not self.pairs:
            raise ValueError("pairs must be a non-empty list of currency pairs")
        object.__setattr__(self, "pairs", tuple(normalize_pair(p) for p in self.pairs))
        _check_interval(self.interval)


@dataclass(frozen=True)
class PortfolioArgs:
    pass


# ── Tools ────────────────────────────────────────────────────────────────


class MarketTools:
    """Read-only market and portfolio operations.

    Args:
        provider: A ``MarketDataProvider`` (or compatible duck-type / mock).
        ledger: Paper portfolio for ``get_portfolio``; optional.
        signal_config: Weights and thresholds for signal generation.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        ledger: Optional[PortfolioLedger] = None,
        signal_config: SignalConfig = SignalConfig(),
    ) -> None:
        self._provider = provider
        self._ledger = ledger
        self._signal_config = signal_config

    async def get_quote(self, args: QuoteArgs) -> dict:
        """Latest bid/ask, mid and spread for one pair."""
        quote = await self._provider.get_quote(args.pair)
        quote.validate()
        return {
            "pair": quote.pair,
            "bid": quote.bid,
            "ask": quote.ask,
            "mid": quote.mid,
            "spread_pips": quote.spread_pips,
            "timestamp": quote.timestamp.isoformat(),
        }

    async def get_analysis(self, args: AnalysisArgs) -> dict:
        """Full indicator set for one pair."""
        bars = await fetch_series(self._provider, args.pair, args.interval)
        indicators = compute_indicator_set(args.pair, bars)
        return to_jsonable(indicators)

    async def get_signal(self, args: SignalArgs) -> dict:
        """Scored trading signal with entry, stop and target for one pair."""
        quote, bars = await asyncio.gather(
            self._provider.get_quote(args.pair),
            fetch_series(self._provider, args.pair, args.interval),
        )
        indicators = compute_indicator_set(args.pair, bars)
        signal = generate_signal(indicators, quote, self._signal_config)
        return to_jsonable(signal)

    async def get_market_overview(self, args: OverviewArgs) -> dict:
        """Signals across several pairs with a buy/sell/hold distribution.

        Pairs that fail or lack history are reported individually; they do
        not fail the overview.
        """
        rows = await asyncio.gather(
            *(self._overview_row(pair, args.interval) for pair in args.pairs)
        )
        counts = {
            BUY: sum(1 for r in rows if r.get("signal") == BUY),
            SELL: sum(1 for r in rows if r.get("signal") == SELL),
            HOLD: sum(1 for r in rows if r.get("signal") == HOLD),
        }
        if counts[BUY] > counts[SELL]:
            sentiment = "bullish"
        elif counts[SELL] > counts[BUY]:
            sentiment = "bearish"
        else:
            sentiment = "neutral"
        return {
            "pairs_analyzed": len(rows),
            "sentiment": sentiment,
            "signal_distribution": {
                "buy": counts[BUY],
                "sell": counts[SELL],
                "hold": counts[HOLD],
            },
            "pairs": list(rows),
        }

    async def _overview_row(self, pair: str, interval: str) -> dict:
        try:
            quote = await self._provider.get_quote(pair)
            quote.validate()
        except FXWatchError as exc:
            logger.warning("Overview: %s quote failed: %s", pair, exc)
            return {"pair": pair, "error": str(exc)}

        row = {
            "pair": pair,
            "bid": quote.bid,
            "ask": quote.ask,
            "spread_pips": quote.spread_pips,
        }
        try:
            bars = await fetch_series(self._provider, pair, interval)
            indicators = compute_indicator_set(pair, bars)
        except InsufficientData as exc:
            row["note"] = str(exc)
            return row
        except FXWatchError as exc:
            logger.warning("Overview: %s series failed: %s", pair, exc)
            row["error"] = str(exc)
            return row

        signal = generate_signal(indicators, quote, self._signal_config)
        row.update({
            "rsi": round(indicators.rsi, 2),
            "signal": signal.direction,
            "strength": signal.strength,
            "confidence": signal.confidence,
            "reasoning": list(signal.reasoning),
        })
        return row

    async def get_portfolio(self, args: PortfolioArgs) -> dict:
        """Current paper portfolio snapshot."""
        if self._ledger is None:
            raise ValueError("No portfolio is configured")
        return to_jsonable(self._ledger.snapshot())


# ── Tool table ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ToolSpec:
    """Registry entry: name, description, args type and bound handler."""

    name: str
    description: str
    args_type: type
    handler: Callable[[MarketTools, Any], Awaitable[dict]]

    def schema(self) -> dict:
        """Describe the tool's arguments for discovery endpoints."""
        params = {}
        for f in fields(self.args_type):
            has_default = (
                f.default is not dataclasses.MISSING
                or f.default_factory is not dataclasses.MISSING
            )
            params[f.name] = {
                "type": getattr(f.type, "__name__", str(f.type)),
                "required": not has_default,
            }
        return {"name": self.name, "description": self.description, "parameters": params}


TOOL_TABLE: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            "get_quote",
            "Latest bid/ask quote and spread for a currency pair.",
            QuoteArgs,
            MarketTools.get_quote,
        ),
        ToolSpec(
            "get_analysis",
            "Technical indicators (RSI, MACD, Bollinger, SMA, EMA, ATR) for a pair.",
            AnalysisArgs,
            MarketTools.get_analysis,
        ),
        ToolSpec(
            "get_signal",
            "Buy/sell/hold signal with entry, stop-loss and take-profit for a pair.",
            SignalArgs,
            MarketTools.get_signal,
        ),
        ToolSpec(
            "get_market_overview",
            "Signals across several pairs with overall market sentiment.",
            OverviewArgs,
            MarketTools.get_market_overview,
        ),
        ToolSpec(
            "get_portfolio",
            "Paper portfolio value, positions and profit/loss.",
            PortfolioArgs,
            MarketTools.get_portfolio,
        ),
    )
}


def parse_args(spec: ToolSpec, payload: Optional[dict]) -> Any:
    """Validate *payload* into ``spec.args_type``.

    Raises ``ValueError`` on unknown, missing or invalid arguments.
    """
    payload = dict(payload or {})
    known = {f.name for f in fields(spec.args_type)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown argument(s) for {spec.name}: {', '.join(unknown)}")
    if "pairs" in payload and isinstance(payload["pairs"], list):
        payload["pairs"] = tuple(payload["pairs"])
    try:
        return spec.args_type(**payload)
    except TypeError as exc:
        raise ValueError(f"Invalid arguments for {spec.name}: {exc}") from exc


async def invoke_tool(tools: MarketTools, name: str, payload: Optional[dict] = None) -> dict:
    """Run tool *name* with *payload*.

    Raises:
        KeyError: unknown tool name.
        ValueError: invalid arguments.
        FXWatchError: the tool itself failed (data, quote or provider error).
    """
    spec = TOOL_TABLE.get(name)
    if spec is None:
        raise KeyError(f"Unknown tool '{name}'")
    args = parse_args(spec, payload)
    logger.debug("Invoking tool %s with %s", name, args)
    return await spec.handler(tools, args)
