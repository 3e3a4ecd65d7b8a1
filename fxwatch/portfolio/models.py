"""Portfolio data models — positions, transactions and snapshots."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class Position:
    """Foreign currency held against one pair.

    ``base_amount`` is the foreign currency held; ``quote_amount`` is its
    cost basis in the portfolio currency.
    """

    pair: str
    currency: str
    base_amount: float
    quote_amount: float
    average_entry_price: float


@dataclass(frozen=True)
class Transaction:
    """A paper conversion between portfolio cash and a pair's foreign currency.

    ``amount`` is the notional in the portfolio currency; ``price`` is the
    pair's rate (QUOTE per BASE) the conversion executed at.
    ``realized_pnl`` is filled in by the ledger on sells.
    """

    id: str
    pair: str
    side: str  # "buy" or "sell"
    amount: float
    price: float
    timestamp: datetime
    realized_pnl: Optional[float] = None


def new_transaction(
    pair: str,
    side: str,
    amount: float,
    price: float,
    timestamp: Optional[datetime] = None,
) -> Transaction:
    """Build a ``Transaction`` with a fresh unique id."""
    return Transaction(
        id=uuid.uuid4().hex,
        pair=pair,
        side=side,
        amount=amount,
        price=price,
        timestamp=timestamp or datetime.now(timezone.utc),
    )


@dataclass(frozen=True)
class PositionView:
    """Per-pair line of a portfolio snapshot."""

    pair: str
    currency: str
    amount: float
    cost_basis: float
    average_entry_price: float
    mark_price: float
    market_value: float
    unrealized_pnl: float
    realized_pnl: float


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Immutable view of the ledger at one instant."""

    currency: str
    initial_value: float
    cash_balance: float
    total_value: float
    realized_pnl: float
    unrealized_pnl: float
    total_pnl: float
    total_pnl_pct: float
    transaction_count: int
    positions: tuple[PositionView, ...]
    taken_at: datetime
