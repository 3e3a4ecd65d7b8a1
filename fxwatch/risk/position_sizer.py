"""Trade sizing — pure math, no I/O.

Calculates how much portfolio cash to convert on a new entry based on
portfolio value, risk percentage, and available cash.
"""


def calculate_trade_amount(
    total_value: float,
    cash_balance: float,
    risk_pct: float,
    min_amount: float = 0.01,
) -> float:
    """Calculate the notional of a new position in the portfolio currency.

    Formula::

        budget = total_value × (risk_pct / 100)
        amount = min(budget, cash_balance)

    Args:
        total_value: Current portfolio value (cash + holdings).
        cash_balance: Cash available to spend.
        risk_pct: Percentage of portfolio value per trade (e.g. 10.0).
        min_amount: Amounts below this are not worth trading.

    Returns:
        The amount to spend, or ``0.0`` when it falls below *min_amount*.

    Raises:
        ValueError: If *total_value* or *risk_pct* is non-positive.
    """
    if total_value <= 0:
        raise ValueError(f"total_value must be positive, got {total_value}")
    if risk_pct <= 0:
        raise ValueError(f"risk_pct must be positive, got {risk_pct}")

    amount = min(total_value * (risk_pct / 100.0), max(cash_balance, 0.0))
    if amount < min_amount:
        return 0.0
    return amount
