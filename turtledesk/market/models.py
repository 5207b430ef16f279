"""Market and account data models — validated representations of external data.

Every externally sourced record goes through a ``from_raw`` constructor so a
missing or malformed numeric field surfaces as ``Unavailable`` instead of a
half-populated object.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

from turtledesk.errors import Unavailable


TURTLE_ENTRY_SIGNALS = frozenset({"20day_breakout", "55day_breakout"})


def _number(raw: dict, key: str, source: str) -> float:
    """Read a finite float from *raw[key]* or raise ``Unavailable``."""
    if key not in raw or raw[key] is None:
        raise Unavailable(f"{source}: missing field '{key}'")
    value = raw[key]
    if isinstance(value, str):
        value = value.strip().replace(",", "")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise Unavailable(f"{source}: field '{key}' is not numeric ({raw[key]!r})") from None
    if not math.isfinite(number):
        raise Unavailable(f"{source}: field '{key}' is not finite ({raw[key]!r})")
    return number


def parse_date(value: Any) -> date:
    """Parse an ISO date/datetime string, epoch seconds, or ``date``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).date()
    if isinstance(value, str) and value:
        text = value.strip()
        if len(text) == 8 and text.isdigit():  # YYYYMMDD
            return date(int(text[:4]), int(text[4:6]), int(text[6:]))
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise Unavailable(f"unparseable date {value!r}")


@dataclass(frozen=True)
class PricePoint:
    """A single daily OHLCV bar."""

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_raw(cls, raw: dict) -> "PricePoint":
        """Build a bar from a provider dict (``date`` + OHLCV keys)."""
        source = f"price bar {raw.get('date')!r}"
        if "date" not in raw:
            raise Unavailable(f"{source}: missing field 'date'")
        close = _number(raw, "close", source)
        if close <= 0:
            raise Unavailable(f"{source}: non-positive close {close}")
        high = _number(raw, "high", source)
        low = _number(raw, "low", source)
        if high < low:
            raise Unavailable(f"{source}: high {high} below low {low}")
        return cls(
            date=parse_date(raw["date"]),
            open=_number(raw, "open", source),
            high=high,
            low=low,
            close=close,
            volume=_number(raw, "volume", source) if raw.get("volume") is not None else 0.0,
        )


@dataclass(frozen=True)
class BrokerPosition:
    """A holding as reported by the broker account snapshot."""

    instrument_id: str
    name: str
    quantity: float
    avg_price: float
    current_price: float
    unrealized_pl: float

    @classmethod
    def from_raw(cls, raw: dict) -> "BrokerPosition":
        instrument_id = str(raw.get("instrument_id") or raw.get("symbol") or "").strip()
        if not instrument_id:
            raise Unavailable("broker position: missing instrument id")
        source = f"broker position {instrument_id}"
        quantity = _number(raw, "quantity", source)
        if quantity < 0:
            raise Unavailable(f"{source}: negative quantity {quantity}")
        avg_price = _number(raw, "avg_price", source)
        if quantity > 0 and avg_price <= 0:
            raise Unavailable(f"{source}: non-positive average price {avg_price}")
        return cls(
            instrument_id=instrument_id,
            name=str(raw.get("name") or instrument_id),
            quantity=quantity,
            avg_price=avg_price,
            current_price=_number(raw, "current_price", source),
            unrealized_pl=(
                _number(raw, "unrealized_pl", source)
                if raw.get("unrealized_pl") is not None else 0.0
            ),
        )


@dataclass(frozen=True)
class TradeRecord:
    """A recorded trade, used solely to establish turtle provenance."""

    instrument_id: str
    action: str  # "BUY" or "SELL"
    signal: str  # e.g. "20day_breakout"
    price: float
    quantity: float
    trade_date: date
    n_value: Optional[float] = None
    trade_id: Optional[int] = None

    @property
    def is_turtle_entry(self) -> bool:
        """``True`` for a BUY tagged with a turtle breakout signal."""
        return self.action.upper() == "BUY" and self.signal in TURTLE_ENTRY_SIGNALS

    @classmethod
    def from_raw(cls, raw: dict) -> "TradeRecord":
        instrument_id = str(raw.get("instrument_id") or raw.get("symbol") or "").strip()
        if not instrument_id:
            raise Unavailable("trade record: missing instrument id")
        source = f"trade record {instrument_id}"
        n_value = raw.get("n_value")
        if n_value is not None:
            n_value = _number(raw, "n_value", source)
            if n_value <= 0:
                n_value = None
        return cls(
            instrument_id=instrument_id,
            action=str(raw.get("action") or "").upper(),
            signal=str(raw.get("signal") or ""),
            price=_number(raw, "price", source),
            quantity=_number(raw, "quantity", source),
            trade_date=parse_date(raw.get("trade_date")),
            n_value=n_value,
            trade_id=raw.get("id", raw.get("trade_id")),
        )


@dataclass(frozen=True)
class AccountSummary:
    """Summary of the brokerage account used for the risk budget."""

    total_equity: float
    cash: float
    stock_value: float
