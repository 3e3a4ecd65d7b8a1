"""Monitoring loop data models — loop states, alerts and open-trade plans."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# ── Loop states ──────────────────────────────────────────────────────────

IDLE = "idle"
POLLING = "polling"
ANALYZING = "analyzing"
DECIDING = "deciding"
EXECUTING = "executing"
ALERTING = "alerting"
SLEEPING = "sleeping"

# ── Alerts ───────────────────────────────────────────────────────────────

RATE_CHANGE = "rate_change"
SIGNAL_TRIGGERED = "signal_triggered"
STOP_LOSS_HIT = "stop_loss_hit"
TAKE_PROFIT_HIT = "take_profit_hit"
DATA_ERROR = "data_error"
DEGRADED = "degraded"
PERSISTENCE_ERROR = "persistence_error"

ALERT_KINDS = (
    RATE_CHANGE,
    SIGNAL_TRIGGERED,
    STOP_LOSS_HIT,
    TAKE_PROFIT_HIT,
    DATA_ERROR,
    DEGRADED,
    PERSISTENCE_ERROR,
)

INFO = "info"
WARNING = "warning"
CRITICAL = "critical"

SEVERITIES = (INFO, WARNING, CRITICAL)


@dataclass(frozen=True)
class Alert:
    """A notable event raised by the monitoring loop."""

    kind: str
    pair: Optional[str]
    message: str
    severity: str
    timestamp: datetime

    def __post_init__(self) -> None:
        if self.kind not in ALERT_KINDS:
            raise ValueError(f"Unknown alert kind '{self.kind}'")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown alert severity '{self.severity}'")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "pair": self.pair,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TradePlan:
    """Exit levels recorded when the loop opens a position.

    ``direction`` is the signal direction on the pair's base currency, so a
    ``"buy"`` plan exits on the bid and a ``"sell"`` plan on the ask.
    """

    direction: str
    stop_loss: float
    take_profit: float
    opened_at: datetime
