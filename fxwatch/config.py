"""FXWatch — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from fxwatch.errors import ConfigurationError
from fxwatch.market.pips import normalize_pair


_REQUIRED_VARS = [
    "ALPHA_VANTAGE_API_KEY",
]

_SERIES_INTERVALS = ("daily", "1min", "5min", "15min", "30min", "60min")


@dataclass(frozen=True)
class MonitorConfig:
    """Settings for one monitoring loop.

    ``initial_amount`` / ``initial_currency`` seed the paper portfolio;
    ``tracked_pairs`` are canonical ``"BASE/QUOTE"`` strings.
    """

    initial_amount: float = 10_000.0
    initial_currency: str = "USD"
    interval_seconds: float = 60.0
    tracked_pairs: tuple[str, ...] = ("EUR/USD", "GBP/USD", "USD/JPY")
    series_interval: str = "daily"  # "daily" or an intraday interval, e.g. "5min"
    rate_change_threshold_pct: float = 0.5
    max_risk_per_trade_pct: float = 10.0
    min_trade_amount: float = 0.01
    max_spread_pips: float = 3.0
    strong_signal_strength: float = 60.0
    degraded_after_failures: int = 3
    rate_limit_backoff_seconds: float = 60.0
    max_backoff_seconds: float = 900.0
    execute_trades: bool = True

    def validate(self) -> None:
        """Raise ``ConfigurationError`` describing the first invalid field."""
        if not self.initial_amount > 0:
            raise ConfigurationError(
                f"initial_amount must be positive, got {self.initial_amount}"
            )
        currency = self.initial_currency
        if not (isinstance(currency, str) and len(currency) == 3
                and currency.isalpha() and currency.isupper()):
            raise ConfigurationError(
                f"initial_currency must be a 3-letter code, got '{currency}'"
            )
        if not self.interval_seconds > 0:
            raise ConfigurationError(
                f"interval_seconds must be positive, got {self.interval_seconds}"
            )
        if not self.tracked_pairs:
            raise ConfigurationError("tracked_pairs must not be empty")
        for pair in self.tracked_pairs:
            try:
                canonical = normalize_pair(pair)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
            if canonical != pair:
                raise ConfigurationError(
                    f"tracked pair '{pair}' is not canonical (use '{canonical}')"
                )
        if len(set(self.tracked_pairs)) != len(self.tracked_pairs):
            raise ConfigurationError("tracked_pairs contains duplicates")
        if self.series_interval not in _SERIES_INTERVALS:
            raise ConfigurationError(
                f"series_interval must be one of {', '.join(_SERIES_INTERVALS)}, "
                f"got '{self.series_interval}'"
            )
        if not 0 < self.max_risk_per_trade_pct <= 100:
            raise ConfigurationError(
                "max_risk_per_trade_pct must be in (0, 100], "
                f"got {self.max_risk_per_trade_pct}"
            )
        if self.rate_change_threshold_pct <= 0:
            raise ConfigurationError(
                "rate_change_threshold_pct must be positive, "
                f"got {self.rate_change_threshold_pct}"
            )
        if self.degraded_after_failures < 1:
            raise ConfigurationError(
                "degraded_after_failures must be at least 1, "
                f"got {self.degraded_after_failures}"
            )


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    alpha_vantage_api_key: str
    monitor: MonitorConfig
    db_path: str
    log_level: str
    api_port: int

    @property
    def alpha_vantage_base_url(self) -> str:
        """Return the Alpha Vantage query endpoint."""
        return "https://www.alphavantage.co/query"


def _env(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {name}: '{raw}'") from exc


def _parse_pairs(raw: str) -> tuple[str, ...]:
    return tuple(normalize_pair(p) for p in raw.split(",") if p.strip())


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ConfigurationError`` with a message naming the missing variable
    when a required variable is absent, or naming the variable whose value
    cannot be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    monitor = MonitorConfig(
        initial_amount=_env("FX_INITIAL_AMOUNT", "10000", float),
        initial_currency=os.environ.get("FX_INITIAL_CURRENCY", "USD").upper(),
        interval_seconds=_env("FX_INTERVAL_SECONDS", "60", float),
        tracked_pairs=_env(
            "FX_TRACKED_PAIRS", "EUR/USD,GBP/USD,USD/JPY", _parse_pairs
        ),
        series_interval=os.environ.get("FX_SERIES_INTERVAL", "daily"),
        rate_change_threshold_pct=_env("FX_RATE_CHANGE_PCT", "0.5", float),
        max_risk_per_trade_pct=_env("MAX_RISK_PER_TRADE_PCT", "10.0", float),
        max_spread_pips=_env("MAX_SPREAD_PIPS", "3.0", float),
    )
    monitor.validate()

    return Config(
        alpha_vantage_api_key=os.environ["ALPHA_VANTAGE_API_KEY"],
        monitor=monitor,
        db_path=os.environ.get("DB_PATH", "data/fxwatch.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_env("API_PORT", "8080", int),
    )
