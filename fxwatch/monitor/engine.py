"""FXWatch — Monitoring loop (orchestration).

Connects market data, indicators, signals and the paper ledger into a
single polling loop.  One tick walks the states

    polling → analyzing → deciding → executing → alerting → sleeping

Per-pair failures become alerts; they never abort the tick for other pairs.
"""

import asyncio
import logging
import sqlite3
from collections import deque
from datetime import datetime, timezone
from typing import Optional

from fxwatch.config import MonitorConfig
from fxwatch.errors import (
    MALFORMED,
    DataProviderError,
    FXWatchError,
    InsufficientFunds,
    InsufficientHoldings,
)
from fxwatch.market.models import PriceBar, Quote
from fxwatch.market.pips import is_spread_acceptable
from fxwatch.market.provider import MarketDataProvider, fetch_series
from fxwatch.market.series_store import PriceSeriesStore
from fxwatch.monitor.models import (
    ALERTING,
    ANALYZING,
    CRITICAL,
    DATA_ERROR,
    DECIDING,
    DEGRADED,
    EXECUTING,
    IDLE,
    INFO,
    PERSISTENCE_ERROR,
    POLLING,
    RATE_CHANGE,
    SIGNAL_TRIGGERED,
    SLEEPING,
    STOP_LOSS_HIT,
    TAKE_PROFIT_HIT,
    WARNING,
    Alert,
    TradePlan,
)
from fxwatch.portfolio.ledger import (
    PortfolioLedger,
    conversion_side,
    involves_currency,
    liquidation_price,
    to_home,
)
from fxwatch.portfolio.models import Transaction, new_transaction
from fxwatch.repos.ledger_repo import LedgerRepo
from fxwatch.risk.position_sizer import calculate_trade_amount
from fxwatch.strategy.indicators import compute_indicator_set
from fxwatch.strategy.models import BUY, HOLD, SELL, IndicatorSet, TradingSignal
from fxwatch.strategy.signals import SignalConfig, generate_signal

logger = logging.getLogger("fxwatch.monitor")


class MonitoringLoop:
    """Runs the analysis-and-paper-trading cycle for a set of pairs.

    Args:
        config: Loop settings (pairs, interval, thresholds).
        provider: A ``MarketDataProvider`` (or compatible duck-type / mock).
        ledger: Paper portfolio.  Created from *config* on first use if None.
        store: Price series store.  A fresh one if None.
        signal_config: Weights and thresholds for signal generation.
        repo: Optional ``LedgerRepo``; executed transactions are appended.
        alerts: Queue alerts are published on.  A fresh unbounded one if None.
    """

    def __init__(
        self,
        config: MonitorConfig,
        provider: MarketDataProvider,
        ledger: Optional[PortfolioLedger] = None,
        store: Optional[PriceSeriesStore] = None,
        signal_config: SignalConfig = SignalConfig(),
        repo: Optional[LedgerRepo] = None,
        alerts: Optional[asyncio.Queue] = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._ledger = ledger
        self._store = store or PriceSeriesStore()
        self._signal_config = signal_config
        self._repo = repo
        self._alerts: asyncio.Queue = alerts if alerts is not None else asyncio.Queue()

        self._state = IDLE
        self._running = False
        self._stop_event = asyncio.Event()
        self._cycle_count = 0
        self._last_tick_at: Optional[datetime] = None

        self._signals: dict[str, TradingSignal] = {}
        self._indicators: dict[str, IndicatorSet] = {}
        self._last_directions: dict[str, str] = {}
        self._plans: dict[str, TradePlan] = {}
        self._failures: dict[str, int] = {}
        self._rate_limit_streak = 0
        self._unpersisted: deque[Transaction] = deque()

    # ── Read-only views ──────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def ledger(self) -> Optional[PortfolioLedger]:
        return self._ledger

    @property
    def store(self) -> PriceSeriesStore:
        return self._store

    @property
    def alerts(self) -> asyncio.Queue:
        return self._alerts

    @property
    def latest_signals(self) -> dict[str, TradingSignal]:
        return dict(self._signals)

    @property
    def latest_indicators(self) -> dict[str, IndicatorSet]:
        return dict(self._indicators)

    @property
    def trade_plans(self) -> dict[str, TradePlan]:
        return dict(self._plans)

    def status(self) -> dict:
        """Return a JSON-friendly summary of the loop."""
        return {
            "state": self._state,
            "running": self._running,
            "cycle_count": self._cycle_count,
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "pairs": list(self._config.tracked_pairs),
            "failures": dict(self._failures),
            "degraded_pairs": sorted(
                p for p, n in self._failures.items()
                if n >= self._config.degraded_after_failures
            ),
            "next_sleep_seconds": self.next_sleep_seconds(),
            "unpersisted_transactions": len(self._unpersisted),
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    def _prepare(self) -> None:
        """Validate config and build the ledger.  Raises ``ConfigurationError``."""
        self._config.validate()
        if self._ledger is None:
            self._ledger = PortfolioLedger(
                self._config.initial_amount, self._config.initial_currency
            )

    def stop(self) -> None:
        """Ask the loop to stop at its next suspension point."""
        self._running = False
        self._stop_event.set()

    async def start(self) -> list[dict]:
        """Run until ``stop()`` is called."""
        return await self.run()

    async def run(self, max_cycles: int = 0) -> list[dict]:
        """Run the monitoring loop until stopped.

        Args:
            max_cycles: Stop after this many ticks (0 = unlimited).

        Returns:
            List of per-tick result dicts.

        Raises:
            ConfigurationError: invalid settings; no tick is executed.
        """
        self._prepare()
        self._running = True
        results: list[dict] = []
        cycle = 0
        logger.info(
            "Monitoring %s every %.0fs (portfolio %.2f %s)",
            ", ".join(self._config.tracked_pairs),
            self._config.interval_seconds,
            self._ledger.initial_value,
            self._ledger.currency,
        )

        try:
            while self._running:
                cycle += 1
                result = await self.run_once()
                results.append(result)
                if result["action"] == "stopped":
                    break
                logger.info(
                    "Tick %d: %d ok, %d failed, %d trade(s)",
                    self._cycle_count,
                    sum(1 for p in result["pairs"].values() if p["status"] == "ok"),
                    sum(1 for p in result["pairs"].values() if p["status"] == "error"),
                    len(result["trades"]),
                )

                if max_cycles > 0 and cycle >= max_cycles:
                    break
                await self._sleep(self.next_sleep_seconds())
        finally:
            self._running = False
            self._stop_event.clear()
            self._state = IDLE
        return results

    def next_sleep_seconds(self) -> float:
        """Interval before the next tick, backed off after rate limits."""
        if self._rate_limit_streak == 0:
            return self._config.interval_seconds
        backoff = self._config.rate_limit_backoff_seconds * 2 ** (self._rate_limit_streak - 1)
        return min(backoff, self._config.max_backoff_seconds)

    async def _sleep(self, seconds: float) -> None:
        self._state = SLEEPING
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ── Single tick ──────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one monitoring tick.

        Returns a dict describing the tick:

        - ``{"action": "stopped"}`` when ``stop()`` interrupted polling
        - ``{"action": "tick", "pairs": {...}, "trades": [...], "alerts": [...]}``

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        self._prepare()
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        pairs = list(self._config.tracked_pairs)
        alerts: list[Alert] = []
        report: dict[str, dict] = {}

        # 1 ── Polling
        self._state = POLLING
        fetched = await self._poll(pairs)
        if fetched is None:
            self._state = IDLE
            return {"action": "stopped"}
        self._cycle_count += 1

        # 2 ── Analyzing
        self._state = ANALYZING
        quotes: dict[str, Quote] = {}
        rate_limited = False
        for pair, outcome in zip(pairs, fetched):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, DataProviderError) and outcome.is_rate_limited:
                    rate_limited = True
                report[pair] = self._record_failure(pair, outcome, utc_now, alerts)
                continue
            quote, bars = outcome
            try:
                indicators = self._analyze(pair, quote, bars, utc_now, alerts)
            except FXWatchError as exc:
                report[pair] = self._record_failure(pair, exc, utc_now, alerts)
                continue
            quotes[pair] = quote
            self._indicators[pair] = indicators

        # 3 ── Deciding
        self._state = DECIDING
        fresh: dict[str, TradingSignal] = {}
        for pair in quotes:
            try:
                signal = generate_signal(
                    self._indicators[pair], quotes[pair], self._signal_config, utc_now
                )
            except FXWatchError as exc:
                report[pair] = self._record_failure(pair, exc, utc_now, alerts)
                continue
            fresh[pair] = signal
            self._signals[pair] = signal
            self._failures[pair] = 0
            self._signal_alert(signal, utc_now, alerts)
            report[pair] = {
                "status": "ok",
                "direction": signal.direction,
                "strength": signal.strength,
                "confidence": signal.confidence,
            }

        # 4 ── Executing
        self._state = EXECUTING
        trades = self._execute(quotes, fresh, utc_now, alerts)
        if self._repo is not None:
            self._persist(utc_now, alerts)

        # 5 ── Alerting
        self._state = ALERTING
        for alert in alerts:
            self._alerts.put_nowait(alert)

        self._rate_limit_streak = self._rate_limit_streak + 1 if rate_limited else 0
        self._last_tick_at = utc_now
        self._state = IDLE
        return {
            "action": "tick",
            "cycle": self._cycle_count,
            "at": utc_now.isoformat(),
            "pairs": {p: report[p] for p in pairs if p in report},
            "trades": trades,
            "alerts": [a.kind for a in alerts],
            "rate_limited": rate_limited,
        }

    # ── Polling ──────────────────────────────────────────────────────────

    async def _fetch_pair(self, pair: str) -> tuple[Quote, list[PriceBar]]:
        return await asyncio.gather(
            self._provider.get_quote(pair),
            fetch_series(self._provider, pair, self._config.series_interval),
        )

    async def _poll(self, pairs: list[str]) -> Optional[list]:
        """Fetch every pair concurrently; ``None`` if ``stop()`` won the race."""
        if self._stop_event.is_set():
            return None
        fetch = asyncio.ensure_future(
            asyncio.gather(*(self._fetch_pair(p) for p in pairs), return_exceptions=True)
        )
        stopper = asyncio.ensure_future(self._stop_event.wait())
        done, _ = await asyncio.wait({fetch, stopper}, return_when=asyncio.FIRST_COMPLETED)
        stopper.cancel()
        if fetch not in done:
            fetch.cancel()
            await asyncio.wait({fetch})
            logger.info("Polling cancelled by stop request")
            return None
        return fetch.result()

    # ── Analyzing ────────────────────────────────────────────────────────

    def _analyze(
        self,
        pair: str,
        quote: Quote,
        bars: list[PriceBar],
        utc_now: datetime,
        alerts: list[Alert],
    ) -> IndicatorSet:
        quote.validate()
        try:
            self._store.extend(pair, bars)
        except ValueError as exc:
            raise DataProviderError(MALFORMED, f"{pair}: {exc}") from exc
        previous = self._store.update_quote(quote)
        # Quote-only check; must not depend on having enough bars
        self._rate_change_alert(pair, previous, quote, utc_now, alerts)
        return compute_indicator_set(pair, self._store.bars(pair))

    def _rate_change_alert(
        self,
        pair: str,
        previous: Optional[Quote],
        quote: Quote,
        utc_now: datetime,
        alerts: list[Alert],
    ) -> None:
        if previous is None or previous.mid <= 0:
            return
        change_pct = (quote.mid - previous.mid) / previous.mid * 100.0
        threshold = self._config.rate_change_threshold_pct
        if abs(change_pct) < threshold:
            return
        severity = CRITICAL if abs(change_pct) >= 2 * threshold else WARNING
        alerts.append(Alert(
            kind=RATE_CHANGE,
            pair=pair,
            message=(
                f"{pair} moved {change_pct:+.2f}% "
                f"({previous.mid:.5f} → {quote.mid:.5f})"
            ),
            severity=severity,
            timestamp=utc_now,
        ))

    def _record_failure(
        self,
        pair: str,
        exc: BaseException,
        utc_now: datetime,
        alerts: list[Alert],
    ) -> dict:
        count = self._failures.get(pair, 0) + 1
        self._failures[pair] = count
        logger.warning("%s: tick failed (%d in a row): %s", pair, count, exc)
        alerts.append(Alert(
            kind=DATA_ERROR,
            pair=pair,
            message=f"{pair}: {exc}",
            severity=WARNING,
            timestamp=utc_now,
        ))
        if count == self._config.degraded_after_failures:
            alerts.append(Alert(
                kind=DEGRADED,
                pair=pair,
                message=f"{pair}: {count} consecutive failures, data is stale",
                severity=CRITICAL,
                timestamp=utc_now,
            ))
        return {
            "status": "error",
            "error": str(exc),
            "kind": getattr(exc, "kind", type(exc).__name__),
        }

    # ── Deciding ─────────────────────────────────────────────────────────

    def _signal_alert(
        self, signal: TradingSignal, utc_now: datetime, alerts: list[Alert]
    ) -> None:
        previous = self._last_directions.get(signal.pair)
        self._last_directions[signal.pair] = signal.direction
        if signal.direction == HOLD:
            return
        is_new = signal.direction != previous
        is_strong = signal.strength >= self._config.strong_signal_strength
        if not (is_new or is_strong):
            return
        alerts.append(Alert(
            kind=SIGNAL_TRIGGERED,
            pair=signal.pair,
            message=(
                f"{signal.direction.upper()} {signal.pair} @ {signal.entry_price} "
                f"(strength {signal.strength:.0f}, confidence {signal.confidence:.0f}, "
                f"SL {signal.stop_loss}, TP {signal.take_profit})"
            ),
            severity=WARNING if is_strong else INFO,
            timestamp=utc_now,
        ))

    # ── Executing ────────────────────────────────────────────────────────

    def _execute(
        self,
        quotes: dict[str, Quote],
        signals: dict[str, TradingSignal],
        utc_now: datetime,
        alerts: list[Alert],
    ) -> list[dict]:
        ledger = self._ledger
        trades: list[dict] = []
        exited: set[str] = set()

        for pair, quote in quotes.items():
            if involves_currency(pair, ledger.currency):
                ledger.mark_to_market(pair, quote)

        # Exits on recorded stop-loss / take-profit levels come first
        for pair, quote in quotes.items():
            plan = self._plans.get(pair)
            if plan is None:
                continue
            if ledger.position(pair) is None:
                del self._plans[pair]
                continue
            hit = self._check_exit(plan, quote)
            if hit is None:
                continue
            kind, level = hit
            trade = self._close_position(
                pair, liquidation_price(pair, ledger.currency, quote), kind, utc_now
            )
            if trade is None:
                continue
            exited.add(pair)
            trades.append(trade)
            alerts.append(Alert(
                kind=kind,
                pair=pair,
                message=(
                    f"{pair} {'stop-loss' if kind == STOP_LOSS_HIT else 'take-profit'} "
                    f"at {level} hit, closed for {trade['realized_pnl']:+.2f} {ledger.currency}"
                ),
                severity=WARNING if kind == STOP_LOSS_HIT else INFO,
                timestamp=utc_now,
            ))

        if not self._config.execute_trades:
            return trades

        for pair, signal in signals.items():
            if pair in exited or not involves_currency(pair, ledger.currency):
                continue
            side = conversion_side(pair, ledger.currency, signal.direction)
            if side is None:
                continue
            quote = quotes[pair]
            if not is_spread_acceptable(
                quote.bid, quote.ask, pair, self._config.max_spread_pips
            ):
                logger.info(
                    "%s: spread %.1f above %.1f, not trading",
                    pair, quote.spread_pips, self._config.max_spread_pips,
                )
                continue

            holding = ledger.position(pair)
            if side == BUY and holding is None:
                trade = self._open_position(signal, utc_now)
            elif side == SELL and holding is not None:
                trade = self._close_position(pair, signal.entry_price, "signal", utc_now)
            else:
                continue
            if trade is not None:
                trades.append(trade)
        return trades

    @staticmethod
    def _check_exit(plan: TradePlan, quote: Quote) -> Optional[tuple[str, float]]:
        if plan.direction == BUY:
            if quote.bid <= plan.stop_loss:
                return STOP_LOSS_HIT, plan.stop_loss
            if quote.bid >= plan.take_profit:
                return TAKE_PROFIT_HIT, plan.take_profit
        else:
            if quote.ask >= plan.stop_loss:
                return STOP_LOSS_HIT, plan.stop_loss
            if quote.ask <= plan.take_profit:
                return TAKE_PROFIT_HIT, plan.take_profit
        return None

    def _open_position(self, signal: TradingSignal, utc_now: datetime) -> Optional[dict]:
        ledger = self._ledger
        snapshot = ledger.snapshot(taken_at=utc_now)
        amount = calculate_trade_amount(
            snapshot.total_value,
            snapshot.cash_balance,
            self._config.max_risk_per_trade_pct,
            self._config.min_trade_amount,
        )
        if amount == 0.0:
            logger.info("%s: trade amount below minimum, not trading", signal.pair)
            return None

        tx = new_transaction(signal.pair, BUY, amount, signal.entry_price, utc_now)
        recorded = self._book(tx)
        if recorded is None:
            return None
        self._plans[signal.pair] = TradePlan(
            direction=signal.direction,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            opened_at=utc_now,
        )
        return self._trade_dict(recorded, "signal")

    def _close_position(
        self, pair: str, price: float, reason: str, utc_now: datetime
    ) -> Optional[dict]:
        ledger = self._ledger
        position = ledger.position(pair)
        if position is None:
            return None
        amount = to_home(pair, ledger.currency, position.base_amount, price)
        tx = new_transaction(pair, SELL, amount, price, utc_now)
        recorded = self._book(tx)
        if recorded is None:
            return None
        self._plans.pop(pair, None)
        return self._trade_dict(recorded, reason)

    def _book(self, tx: Transaction) -> Optional[Transaction]:
        try:
            recorded = self._ledger.apply(tx)
        except (InsufficientFunds, InsufficientHoldings) as exc:
            logger.warning("%s: %s rejected: %s", tx.pair, tx.side, exc)
            return None
        if self._repo is not None:
            self._unpersisted.append(recorded)
        return recorded

    def _persist(self, utc_now: datetime, alerts: list[Alert]) -> None:
        """Write booked transactions to the repo in ledger order.

        A failed write keeps it and everything after it queued for the next
        tick, so the stored log never skips or reorders a transaction.
        """
        while self._unpersisted:
            tx = self._unpersisted[0]
            try:
                self._repo.insert_transaction(tx)
            except sqlite3.Error as exc:
                logger.error(
                    "Could not persist transaction %s (%d pending): %s",
                    tx.id, len(self._unpersisted), exc,
                )
                alerts.append(Alert(
                    kind=PERSISTENCE_ERROR,
                    pair=tx.pair,
                    message=(
                        f"Transaction log write failed ({exc}); "
                        f"{len(self._unpersisted)} transaction(s) pending retry"
                    ),
                    severity=CRITICAL,
                    timestamp=utc_now,
                ))
                return
            self._unpersisted.popleft()

    @staticmethod
    def _trade_dict(tx: Transaction, reason: str) -> dict:
        return {
            "id": tx.id,
            "pair": tx.pair,
            "side": tx.side,
            "amount": round(tx.amount, 2),
            "price": tx.price,
            "realized_pnl": tx.realized_pnl,
            "reason": reason,
        }
