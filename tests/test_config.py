"""Tests for turtledesk.config — environment variable loading and validation."""

import json

import pytest

from turtledesk.config import Config, load_config, load_watchlist


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure turtledesk env vars are cleared between tests."""
    for var in [
        "KIWOOM_APP_KEY",
        "KIWOOM_SECRET_KEY",
        "KIWOOM_ENVIRONMENT",
        "RISK_FRACTION_PER_TRADE",
        "DEFAULT_EQUITY",
        "MAX_UNITS",
        "FREEZE_VOLATILITY_AT_ENTRY",
        "BATCH_SIZE",
        "BATCH_DELAY_SECONDS",
        "REQUEST_TIMEOUT_SECONDS",
        "HISTORY_LOOKBACK_DAYS",
        "FRESHNESS_MAX_AGE_DAYS",
        "YAHOO_SYMBOL_SUFFIX",
        "WATCHLIST_PATH",
        "DB_PATH",
        "WEBHOOK_URL",
        "LOG_LEVEL",
        "HEALTH_PORT",
        "CURRENT_PRICE_SOURCE",
    ]:
        monkeypatch.delenv(var, raising=False)


def _set_required(monkeypatch):
    """Set the minimum required environment variables."""
    monkeypatch.setenv("KIWOOM_APP_KEY", "app-key-abc")
    monkeypatch.setenv("KIWOOM_SECRET_KEY", "secret-xyz")


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert isinstance(cfg, Config)
        assert cfg.kiwoom_app_key == "app-key-abc"
        assert cfg.kiwoom_secret_key == "secret-xyz"

    def test_defaults(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.kiwoom_environment == "mock"
        assert cfg.risk_fraction_per_trade == 0.02
        assert cfg.default_equity == 1_000_000.0
        assert cfg.max_units == 4
        assert cfg.freeze_volatility_at_entry is False
        assert cfg.batch_size == 10
        assert cfg.batch_delay_seconds == 1.0
        assert cfg.request_timeout_seconds == 10.0
        assert cfg.history_lookback_days == 260
        assert cfg.freshness_max_age_days == 90
        assert cfg.yahoo_symbol_suffix == ".KS"
        assert cfg.db_path == "data/turtledesk.db"
        assert cfg.webhook_url == ""
        assert cfg.log_level == "INFO"
        assert cfg.health_port == 8080
        assert cfg.current_price_source == "kiwoom"

    def test_config_missing_var(self, monkeypatch, tmp_path):
        # Only set one of two required vars; use a non-existent env_path
        # so load_dotenv doesn't re-populate from a real .env file
        monkeypatch.setenv("KIWOOM_APP_KEY", "app-key")
        with pytest.raises(ValueError, match="KIWOOM_SECRET_KEY"):
            load_config(env_path=str(tmp_path / "nonexistent.env"))

    def test_loads_from_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "KIWOOM_APP_KEY=file-key\nKIWOOM_SECRET_KEY=file-secret\nMAX_UNITS=3\n",
            encoding="utf-8",
        )
        cfg = load_config(env_path=str(env_file))
        assert cfg.kiwoom_app_key == "file-key"
        assert cfg.max_units == 3

    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("1", True), ("YES", True), ("false", False), ("0", False),
    ])
    def test_freeze_flag_parsing(self, monkeypatch, tmp_path, raw, expected):
        _set_required(monkeypatch)
        monkeypatch.setenv("FREEZE_VOLATILITY_AT_ENTRY", raw)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.freeze_volatility_at_entry is expected

    def test_environment_switching_mock(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.kiwoom_base_url == "https://mockapi.kiwoom.com"

    def test_environment_switching_live(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("KIWOOM_ENVIRONMENT", "live")
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.kiwoom_base_url == "https://api.kiwoom.com"

    @pytest.mark.parametrize("var, raw", [
        ("RISK_FRACTION_PER_TRADE", "0"),
        ("RISK_FRACTION_PER_TRADE", "-0.01"),
        ("RISK_FRACTION_PER_TRADE", "1.5"),
        ("MAX_UNITS", "0"),
        ("BATCH_SIZE", "0"),
        ("CURRENT_PRICE_SOURCE", "naver"),
    ])
    def test_out_of_range_values_rejected(self, monkeypatch, tmp_path, var, raw):
        _set_required(monkeypatch)
        monkeypatch.setenv(var, raw)
        with pytest.raises(ValueError, match=var):
            load_config(env_path=str(tmp_path / "nonexistent.env"))

    def test_full_risk_fraction_allowed(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("RISK_FRACTION_PER_TRADE", "1")
        monkeypatch.setenv("CURRENT_PRICE_SOURCE", "Yahoo")
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.risk_fraction_per_trade == 1.0
        assert cfg.current_price_source == "yahoo"


class TestLoadWatchlist:
    def test_dict_shape(self, tmp_path):
        path = tmp_path / "watchlist.json"
        path.write_text(json.dumps({"instruments": ["005930", "000660"]}), encoding="utf-8")
        assert load_watchlist(path) == ["005930", "000660"]

    def test_bare_list_deduplicates_in_order(self, tmp_path):
        path = tmp_path / "watchlist.json"
        path.write_text(json.dumps(["005930", " 000660 ", "005930", ""]), encoding="utf-8")
        assert load_watchlist(path) == ["005930", "000660"]

    def test_invalid_shape_raises(self, tmp_path):
        path = tmp_path / "watchlist.json"
        path.write_text(json.dumps({"symbols": ["005930"]}), encoding="utf-8")
        with pytest.raises(ValueError, match="instruments"):
            load_watchlist(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_watchlist(tmp_path / "missing.json")
