"""Tests for fxwatch.config — environment variable loading and validation."""

import pytest

from fxwatch.config import Config, MonitorConfig, load_config
from fxwatch.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure FXWatch env vars are cleared between tests."""
    for var in [
        "ALPHA_VANTAGE_API_KEY",
        "FX_INITIAL_AMOUNT",
        "FX_INITIAL_CURRENCY",
        "FX_INTERVAL_SECONDS",
        "FX_TRACKED_PAIRS",
        "FX_SERIES_INTERVAL",
        "FX_RATE_CHANGE_PCT",
        "MAX_RISK_PER_TRADE_PCT",
        "MAX_SPREAD_PIPS",
        "DB_PATH",
        "LOG_LEVEL",
        "API_PORT",
    ]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def env_path(tmp_path):
    """A non-existent .env so load_dotenv doesn't pick up a real file."""
    return str(tmp_path / "missing.env")


def _set_required(monkeypatch):
    monkeypatch.setenv("ALPHA_VANTAGE_API_KEY", "test-key-abc123")


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch, env_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path)
        assert isinstance(cfg, Config)
        assert cfg.alpha_vantage_api_key == "test-key-abc123"
        assert cfg.alpha_vantage_base_url == "https://www.alphavantage.co/query"

    def test_defaults(self, monkeypatch, env_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path)
        assert cfg.monitor.initial_amount == 10_000.0
        assert cfg.monitor.initial_currency == "USD"
        assert cfg.monitor.interval_seconds == 60.0
        assert cfg.monitor.tracked_pairs == ("EUR/USD", "GBP/USD", "USD/JPY")
        assert cfg.monitor.series_interval == "daily"
        assert cfg.monitor.rate_change_threshold_pct == 0.5
        assert cfg.monitor.max_risk_per_trade_pct == 10.0
        assert cfg.monitor.max_spread_pips == 3.0
        assert cfg.db_path == "data/fxwatch.db"
        assert cfg.log_level == "INFO"
        assert cfg.api_port == 8080

    def test_missing_api_key(self, env_path):
        with pytest.raises(ConfigurationError, match="ALPHA_VANTAGE_API_KEY"):
            load_config(env_path)

    def test_configuration_error_is_value_error(self, env_path):
        with pytest.raises(ValueError):
            load_config(env_path)

    def test_overrides(self, monkeypatch, env_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("FX_INITIAL_AMOUNT", "2500")
        monkeypatch.setenv("FX_INITIAL_CURRENCY", "eur")
        monkeypatch.setenv("FX_TRACKED_PAIRS", "eur_usd, EUR/GBP")
        monkeypatch.setenv("FX_SERIES_INTERVAL", "15min")
        monkeypatch.setenv("API_PORT", "9090")
        cfg = load_config(env_path)
        assert cfg.monitor.initial_amount == 2500.0
        assert cfg.monitor.initial_currency == "EUR"
        assert cfg.monitor.tracked_pairs == ("EUR/USD", "EUR/GBP")
        assert cfg.monitor.series_interval == "15min"
        assert cfg.api_port == 9090

    def test_unparseable_number_names_variable(self, monkeypatch, env_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("FX_INTERVAL_SECONDS", "soon")
        with pytest.raises(ConfigurationError, match="FX_INTERVAL_SECONDS"):
            load_config(env_path)

    def test_invalid_pair_names_variable(self, monkeypatch, env_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("FX_TRACKED_PAIRS", "EURUSD")
        with pytest.raises(ConfigurationError, match="FX_TRACKED_PAIRS"):
            load_config(env_path)

    def test_non_positive_amount_rejected(self, monkeypatch, env_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("FX_INITIAL_AMOUNT", "0")
        with pytest.raises(ConfigurationError, match="initial_amount"):
            load_config(env_path)


class TestMonitorConfigValidate:
    def test_defaults_are_valid(self):
        MonitorConfig().validate()

    def test_zero_interval(self):
        with pytest.raises(ConfigurationError, match="interval_seconds"):
            MonitorConfig(interval_seconds=0).validate()

    def test_empty_pairs(self):
        with pytest.raises(ConfigurationError, match="tracked_pairs"):
            MonitorConfig(tracked_pairs=()).validate()

    def test_duplicate_pairs(self):
        with pytest.raises(ConfigurationError, match="duplicates"):
            MonitorConfig(tracked_pairs=("EUR/USD", "EUR/USD")).validate()

    def test_non_canonical_pair(self):
        with pytest.raises(ConfigurationError, match="canonical"):
            MonitorConfig(tracked_pairs=("eur_usd",)).validate()

    def test_bad_series_interval(self):
        with pytest.raises(ConfigurationError, match="series_interval"):
            MonitorConfig(series_interval="weekly").validate()

    def test_risk_out_of_range(self):
        with pytest.raises(ConfigurationError, match="max_risk_per_trade_pct"):
            MonitorConfig(max_risk_per_trade_pct=150).validate()

    def test_lowercase_currency(self):
        with pytest.raises(ConfigurationError, match="initial_currency"):
            MonitorConfig(initial_currency="usd").validate()
