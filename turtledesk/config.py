"""turtledesk — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import json
import os
import pathlib
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "KIWOOM_APP_KEY",
    "KIWOOM_SECRET_KEY",
]

_TRUTHY = {"1", "true", "yes", "on"}

_PRICE_SOURCES = ("kiwoom", "yahoo")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    kiwoom_app_key: str
    kiwoom_secret_key: str
    kiwoom_environment: str  # "mock" or "live"
    risk_fraction_per_trade: float
    default_equity: float
    max_units: int
    freeze_volatility_at_entry: bool
    batch_size: int
    batch_delay_seconds: float
    request_timeout_seconds: float
    history_lookback_days: int
    freshness_max_age_days: int
    yahoo_symbol_suffix: str
    watchlist_path: str
    db_path: str
    webhook_url: str
    log_level: str
    health_port: int
    current_price_source: str = "kiwoom"  # "kiwoom" or "yahoo"

    @property
    def kiwoom_base_url(self) -> str:
        """Return the Kiwoom REST API base URL based on environment."""
        if self.kiwoom_environment == "live":
            return "https://api.kiwoom.com"
        return "https://mockapi.kiwoom.com"


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when a
    required variable is absent or a numeric setting is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    config = Config(
        kiwoom_app_key=os.environ["KIWOOM_APP_KEY"],
        kiwoom_secret_key=os.environ["KIWOOM_SECRET_KEY"],
        kiwoom_environment=os.environ.get("KIWOOM_ENVIRONMENT", "mock"),
        risk_fraction_per_trade=float(os.environ.get("RISK_FRACTION_PER_TRADE", "0.02")),
        default_equity=float(os.environ.get("DEFAULT_EQUITY", "1000000")),
        max_units=int(os.environ.get("MAX_UNITS", "4")),
        freeze_volatility_at_entry=(
            os.environ.get("FREEZE_VOLATILITY_AT_ENTRY", "false").strip().lower() in _TRUTHY
        ),
        batch_size=int(os.environ.get("BATCH_SIZE", "10")),
        batch_delay_seconds=float(os.environ.get("BATCH_DELAY_SECONDS", "1.0")),
        request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "10.0")),
        history_lookback_days=int(os.environ.get("HISTORY_LOOKBACK_DAYS", "260")),
        freshness_max_age_days=int(os.environ.get("FRESHNESS_MAX_AGE_DAYS", "90")),
        yahoo_symbol_suffix=os.environ.get("YAHOO_SYMBOL_SUFFIX", ".KS"),
        watchlist_path=os.environ.get("WATCHLIST_PATH", "watchlist.json"),
        db_path=os.environ.get("DB_PATH", "data/turtledesk.db"),
        webhook_url=os.environ.get("WEBHOOK_URL", ""),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
        current_price_source=os.environ.get("CURRENT_PRICE_SOURCE", "kiwoom").strip().lower(),
    )
    _validate(config)
    return config


def _validate(config: Config) -> None:
    """Reject values the engine cannot size or batch with."""
    if not 0 < config.risk_fraction_per_trade <= 1:
        raise ValueError(
            f"RISK_FRACTION_PER_TRADE must be in (0, 1], got {config.risk_fraction_per_trade}"
        )
    if config.max_units < 1:
        raise ValueError(f"MAX_UNITS must be at least 1, got {config.max_units}")
    if config.batch_size < 1:
        raise ValueError(f"BATCH_SIZE must be at least 1, got {config.batch_size}")
    if config.current_price_source not in _PRICE_SOURCES:
        raise ValueError(
            f"CURRENT_PRICE_SOURCE must be one of {', '.join(_PRICE_SOURCES)}, "
            f"got {config.current_price_source!r}"
        )


def load_watchlist(path: str | pathlib.Path) -> list[str]:
    """Load instrument codes from a JSON watchlist file.

    Accepts either ``{"instruments": ["005930", ...]}`` or a bare list.
    Duplicates are dropped, first occurrence wins.

    Raises ``FileNotFoundError`` if the file is missing and ``ValueError``
    if the content has neither shape.
    """
    data = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("instruments")
    if not isinstance(data, list):
        raise ValueError(
            f"Watchlist {path} must be a list or contain an 'instruments' list"
        )

    seen: set[str] = set()
    instruments: list[str] = []
    for item in data:
        code = str(item).strip()
        if code and code not in seen:
            seen.add(code)
            instruments.append(code)
    return instruments
