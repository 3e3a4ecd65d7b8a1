"""Portfolio ledger — paper accounting for cash, positions and P&L.

All state lives behind one lock.  Mutations go through ``apply``; readers
take an immutable ``snapshot``.  The transaction log alone is enough to
rebuild the ledger (``PortfolioLedger.replay``).

Conventions: cash is held in the portfolio currency; every traded pair has
the portfolio currency on one leg.  A ``buy`` converts cash into the pair's
other ("foreign") currency, a ``sell`` converts foreign currency back.
"""

import logging
import math
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from fxwatch.errors import ConfigurationError, InsufficientFunds, InsufficientHoldings
from fxwatch.market.models import Quote
from fxwatch.market.pips import normalize_pair, split_pair
from fxwatch.portfolio.models import PortfolioSnapshot, Position, PositionView, Transaction
from fxwatch.strategy.models import BUY, DIRECTIONS, HOLD, SELL

logger = logging.getLogger("fxwatch.ledger")

# Relative tolerance when a sell disposes of an entire holding.
_HOLDING_TOLERANCE = 1e-9


# ── Conversion helpers ───────────────────────────────────────────────────


def foreign_currency(pair: str, currency: str) -> str:
    """Return the leg of *pair* that is not *currency*.

    Raises ``ValueError`` if *currency* is on neither leg.
    """
    base, quote = split_pair(pair)
    if currency == base:
        return quote
    if currency == quote:
        return base
    raise ValueError(f"Pair {pair} does not involve portfolio currency {currency}")


def involves_currency(pair: str, currency: str) -> bool:
    return currency in split_pair(pair)


def to_foreign(pair: str, currency: str, amount: float, price: float) -> float:
    """Convert *amount* of *currency* into the pair's foreign leg at *price*."""
    base, _ = split_pair(pair)
    foreign_currency(pair, currency)
    return amount * price if currency == base else amount / price


def to_home(pair: str, currency: str, foreign_amount: float, price: float) -> float:
    """Convert *foreign_amount* back into *currency* at *price*."""
    base, _ = split_pair(pair)
    foreign_currency(pair, currency)
    return foreign_amount / price if currency == base else foreign_amount * price


def conversion_side(pair: str, currency: str, signal_direction: str) -> Optional[str]:
    """Map a signal direction on *pair* to a ledger side.

    A buy signal buys the pair's base currency.  When the base is the
    foreign leg that is a ledger ``buy``; when the base is the portfolio
    currency it means disposing of the foreign leg, a ledger ``sell``.
    Returns ``None`` for hold.

    Raises ``ValueError`` for anything other than buy, sell or hold.
    """
    if signal_direction not in DIRECTIONS:
        raise ValueError(f"Unknown signal direction '{signal_direction}'")
    if signal_direction == HOLD:
        return None
    base, _ = split_pair(pair)
    foreign_currency(pair, currency)
    base_is_foreign = currency != base
    if signal_direction == BUY:
        return BUY if base_is_foreign else SELL
    return SELL if base_is_foreign else BUY


def liquidation_price(pair: str, currency: str, quote: Quote) -> float:
    """Rate at which foreign holdings convert back to *currency* now.

    Selling a foreign base hits the bid; buying back the portfolio-currency
    base pays the ask.
    """
    base, _ = split_pair(pair)
    foreign_currency(pair, currency)
    return quote.ask if currency == base else quote.bid


# ── Ledger ───────────────────────────────────────────────────────────────


class PortfolioLedger:
    """In-memory paper portfolio.

    Args:
        initial_amount: Starting cash (must be positive).
        currency: Portfolio currency, a 3-letter code such as ``"USD"``.
    """

    def __init__(self, initial_amount: float, currency: str) -> None:
        if not (isinstance(initial_amount, (int, float)) and math.isfinite(initial_amount)
                and initial_amount > 0):
            raise ConfigurationError(
                f"initial_amount must be a positive number, got {initial_amount}"
            )
        if not (isinstance(currency, str) and len(currency) == 3 and currency.isalpha()):
            raise ConfigurationError(f"currency must be a 3-letter code, got '{currency}'")

        self._initial_value = float(initial_amount)
        self._currency = currency.upper()
        self._cash = float(initial_amount)
        self._positions: dict[str, Position] = {}
        self._transactions: list[Transaction] = []
        self._ids: set[str] = set()
        self._marks: dict[str, Quote] = {}
        self._realized_by_pair: dict[str, float] = {}
        self._lock = threading.Lock()

    @classmethod
    def replay(
        cls,
        initial_amount: float,
        currency: str,
        transactions: Iterable[Transaction],
    ) -> "PortfolioLedger":
        """Rebuild a ledger by applying *transactions* in order to a fresh one."""
        ledger = cls(initial_amount, currency)
        for tx in transactions:
            ledger.apply(replace(tx, realized_pnl=None))
        return ledger

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def currency(self) -> str:
        return self._currency

    @property
    def initial_value(self) -> float:
        return self._initial_value

    @property
    def cash_balance(self) -> float:
        with self._lock:
            return self._cash

    @property
    def positions(self) -> dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        with self._lock:
            return tuple(self._transactions)

    def position(self, pair: str) -> Optional[Position]:
        with self._lock:
            return self._positions.get(normalize_pair(pair))

    # ── Mutation ─────────────────────────────────────────────────────────

    def apply(self, transaction: Transaction) -> Transaction:
        """Validate and book *transaction*.

        Returns the logged transaction (canonical pair, ``realized_pnl`` set
        on sells).

        Raises:
            ValueError: malformed transaction, duplicate id, or a pair that
                does not involve the portfolio currency.
            InsufficientFunds: a buy larger than the cash balance.
            InsufficientHoldings: a sell of more foreign currency than held.
        """
        pair = normalize_pair(transaction.pair)
        side = transaction.side
        amount = transaction.amount
        price = transaction.price

        if side not in (BUY, SELL):
            raise ValueError(f"side must be 'buy' or 'sell', got '{side}'")
        if not (math.isfinite(amount) and amount > 0):
            raise ValueError(f"amount must be positive, got {amount}")
        if not (math.isfinite(price) and price > 0):
            raise ValueError(f"price must be positive, got {price}")
        foreign = foreign_currency(pair, self._currency)
        foreign_amount = to_foreign(pair, self._currency, amount, price)

        with self._lock:
            if transaction.id in self._ids:
                raise ValueError(f"Duplicate transaction id '{transaction.id}'")

            if side == BUY:
                realized = None
                self._book_buy(pair, foreign, amount, foreign_amount)
            else:
                realized = self._book_sell(pair, amount, foreign_amount)

            recorded = replace(transaction, pair=pair, realized_pnl=realized)
            self._transactions.append(recorded)
            self._ids.add(recorded.id)

        logger.info(
            "Booked %s %s %.2f %s @ %.5f (realized=%s)",
            side, pair, amount, self._currency, price,
            "—" if realized is None else f"{realized:.2f}",
        )
        return recorded

    def _book_buy(self, pair: str, foreign: str, amount: float, foreign_amount: float) -> None:
        if amount > self._cash:
            raise InsufficientFunds(
                f"Buy of {amount:.2f} {self._currency} exceeds cash balance "
                f"{self._cash:.2f} {self._currency}"
            )
        self._cash -= amount

        current = self._positions.get(pair)
        base_amount = foreign_amount + (current.base_amount if current else 0.0)
        cost = amount + (current.quote_amount if current else 0.0)
        self._positions[pair] = Position(
            pair=pair,
            currency=foreign,
            base_amount=base_amount,
            quote_amount=cost,
            average_entry_price=self._average_price(pair, base_amount, cost),
        )

    def _book_sell(self, pair: str, amount: float, foreign_amount: float) -> float:
        current = self._positions.get(pair)
        held = current.base_amount if current else 0.0
        tolerance = held * _HOLDING_TOLERANCE
        if current is None or foreign_amount > held + tolerance:
            foreign = foreign_currency(pair, self._currency)
            raise InsufficientHoldings(
                f"Sell of {foreign_amount:.4f} {foreign} exceeds holding "
                f"{held:.4f} {foreign} on {pair}"
            )

        fraction = min(foreign_amount / held, 1.0)
        cost_removed = current.quote_amount * fraction
        realized = amount - cost_removed
        self._cash += amount
        self._realized_by_pair[pair] = self._realized_by_pair.get(pair, 0.0) + realized

        remaining = held - foreign_amount
        if remaining <= tolerance:
            del self._positions[pair]
        else:
            self._positions[pair] = replace(
                current,
                base_amount=remaining,
                quote_amount=current.quote_amount - cost_removed,
            )
        return realized

    def _average_price(self, pair: str, base_amount: float, cost: float) -> float:
        """Weighted average rate (QUOTE per BASE) implied by holding and cost."""
        base, _ = split_pair(pair)
        if self._currency == base:
            return base_amount / cost
        return cost / base_amount

    # ── Valuation ────────────────────────────────────────────────────────

    def mark_to_market(self, pair: str, quote: Quote) -> float:
        """Record *quote* as the current mark for *pair*.

        Returns the unrealized P&L of the open position at that quote
        (0.0 when flat).  Realized figures are untouched.
        """
        pair = normalize_pair(pair)
        if quote.pair != pair:
            raise ValueError(f"Quote for {quote.pair} cannot mark {pair}")
        quote.validate()
        with self._lock:
            self._marks[pair] = quote
            position = self._positions.get(pair)
            if position is None:
                return 0.0
            return self._market_value(position) - position.quote_amount

    def _mark_price(self, position: Position) -> float:
        mark = self._marks.get(position.pair)
        if mark is None:
            return position.average_entry_price
        return liquidation_price(position.pair, self._currency, mark)

    def _market_value(self, position: Position) -> float:
        if position.pair not in self._marks:
            return position.quote_amount
        return to_home(
            position.pair, self._currency, position.base_amount, self._mark_price(position)
        )

    def snapshot(self, taken_at: Optional[datetime] = None) -> PortfolioSnapshot:
        """Return totals and a per-pair breakdown.  Pure read."""
        with self._lock:
            views: list[PositionView] = []
            holdings_value = 0.0
            unrealized = 0.0
            pairs = sorted(set(self._positions) | set(self._realized_by_pair))
            for pair in pairs:
                position = self._positions.get(pair)
                realized_pair = self._realized_by_pair.get(pair, 0.0)
                if position is None:
                    views.append(
                        PositionView(
                            pair=pair,
                            currency=foreign_currency(pair, self._currency),
                            amount=0.0,
                            cost_basis=0.0,
                            average_entry_price=0.0,
                            mark_price=0.0,
                            market_value=0.0,
                            unrealized_pnl=0.0,
                            realized_pnl=realized_pair,
                        )
                    )
                    continue
                value = self._market_value(position)
                pnl = value - position.quote_amount
                holdings_value += value
                unrealized += pnl
                views.append(
                    PositionView(
                        pair=pair,
                        currency=position.currency,
                        amount=position.base_amount,
                        cost_basis=position.quote_amount,
                        average_entry_price=position.average_entry_price,
                        mark_price=self._mark_price(position),
                        market_value=value,
                        unrealized_pnl=pnl,
                        realized_pnl=realized_pair,
                    )
                )

            realized = sum(self._realized_by_pair.values())
            total_value = self._cash + holdings_value
            total_pnl = total_value - self._initial_value
            return PortfolioSnapshot(
                currency=self._currency,
                initial_value=self._initial_value,
                cash_balance=self._cash,
                total_value=total_value,
                realized_pnl=realized,
                unrealized_pnl=unrealized,
                total_pnl=total_pnl,
                total_pnl_pct=total_pnl / self._initial_value * 100.0,
                transaction_count=len(self._transactions),
                positions=tuple(views),
                taken_at=taken_at or datetime.now(timezone.utc),
            )
