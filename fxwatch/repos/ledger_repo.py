"""Ledger repository — SQLite persistence for the paper portfolio."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fxwatch.portfolio.ledger import PortfolioLedger
from fxwatch.portfolio.models import Transaction
from fxwatch.repos.db import get_connection

logger = logging.getLogger("fxwatch.ledger_repo")


class LedgerRepo:
    """Data access layer for the portfolio header and transaction log.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def save_portfolio(self, initial_amount: float, currency: str) -> None:
        """Record the portfolio's starting cash.  Idempotent for one portfolio.

        Raises ``ValueError`` if a different portfolio is already stored.
        """
        existing = self.load_portfolio()
        if existing is not None:
            if existing != (float(initial_amount), currency):
                raise ValueError(
                    f"Database already holds a {existing[0]:.2f} {existing[1]} "
                    f"portfolio, cannot store {initial_amount:.2f} {currency}"
                )
            return

        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO portfolio (id, initial_amount, currency, created_at)
                VALUES (1, ?, ?, ?)
                """,
                (float(initial_amount), currency,
                 datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def insert_transaction(self, tx: Transaction) -> None:
        """Append *tx* to the transaction log."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO transactions
                    (id, pair, side, amount, price, realized_pnl, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tx.id, tx.pair, tx.side, tx.amount, tx.price,
                    tx.realized_pnl, tx.timestamp.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def load_portfolio(self) -> Optional[tuple[float, str]]:
        """Return ``(initial_amount, currency)`` or ``None`` if not stored."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT initial_amount, currency FROM portfolio WHERE id = 1"
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return float(row["initial_amount"]), row["currency"]

    def load_transactions(self) -> list[Transaction]:
        """Return the transaction log in insertion order."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM transactions ORDER BY seq ASC"
            ).fetchall()
        finally:
            conn.close()
        return [
            Transaction(
                id=row["id"],
                pair=row["pair"],
                side=row["side"],
                amount=row["amount"],
                price=row["price"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                realized_pnl=row["realized_pnl"],
            )
            for row in rows
        ]

    def load_ledger(self) -> Optional[PortfolioLedger]:
        """Rebuild the ledger by replaying the stored log.

        Returns ``None`` when no portfolio has been saved.
        """
        header = self.load_portfolio()
        if header is None:
            return None
        initial_amount, currency = header
        transactions = self.load_transactions()
        ledger = PortfolioLedger.replay(initial_amount, currency, transactions)
        logger.info(
            "Restored %s portfolio from %d transaction(s)", currency, len(transactions)
        )
        return ledger
