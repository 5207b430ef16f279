"""Tests for turtledesk.market.models — validated external records."""

from datetime import date

import pytest

from turtledesk.errors import Unavailable
from turtledesk.market.models import BrokerPosition, PricePoint, TradeRecord, parse_date


class TestParseDate:
    def test_iso_date(self):
        assert parse_date("2025-03-14") == date(2025, 3, 14)

    def test_iso_datetime_with_z(self):
        assert parse_date("2025-03-14T06:30:00Z") == date(2025, 3, 14)

    def test_compact_date(self):
        assert parse_date("20250314") == date(2025, 3, 14)

    def test_epoch_seconds(self):
        # 2025-03-14T00:00:00Z
        assert parse_date(1741910400) == date(2025, 3, 14)

    def test_garbage_raises(self):
        with pytest.raises(Unavailable):
            parse_date("yesterday")


class TestPricePoint:
    def test_from_raw(self):
        p = PricePoint.from_raw({
            "date": "2025-03-14", "open": "70,000", "high": 71500,
            "low": 69800, "close": 71000, "volume": 1_200_000,
        })
        assert p.date == date(2025, 3, 14)
        assert p.open == 70_000.0
        assert p.close == 71_000.0

    def test_missing_volume_defaults_to_zero(self):
        p = PricePoint.from_raw({
            "date": "2025-03-14", "open": 1, "high": 2, "low": 1, "close": 2,
        })
        assert p.volume == 0.0

    def test_non_positive_close_rejected(self):
        with pytest.raises(Unavailable, match="close"):
            PricePoint.from_raw({"date": "2025-03-14", "open": 1, "high": 1, "low": 0, "close": 0})

    def test_nan_rejected(self):
        with pytest.raises(Unavailable, match="finite"):
            PricePoint.from_raw({
                "date": "2025-03-14", "open": 1, "high": float("nan"), "low": 1, "close": 1,
            })

    def test_high_below_low_rejected(self):
        with pytest.raises(Unavailable, match="below low"):
            PricePoint.from_raw({"date": "2025-03-14", "open": 5, "high": 4, "low": 6, "close": 5})

    def test_missing_date_rejected(self):
        with pytest.raises(Unavailable, match="date"):
            PricePoint.from_raw({"open": 1, "high": 1, "low": 1, "close": 1})


class TestBrokerPosition:
    def test_from_raw_accepts_symbol_key(self):
        pos = BrokerPosition.from_raw({
            "symbol": "005930", "name": "Samsung", "quantity": "100",
            "avg_price": 70000, "current_price": 71000, "unrealized_pl": 100000,
        })
        assert pos.instrument_id == "005930"
        assert pos.quantity == 100.0
        assert pos.unrealized_pl == 100_000.0

    def test_negative_quantity_rejected(self):
        with pytest.raises(Unavailable, match="negative"):
            BrokerPosition.from_raw({
                "instrument_id": "005930", "quantity": -1, "avg_price": 1, "current_price": 1,
            })

    def test_zero_avg_price_rejected_for_held_position(self):
        with pytest.raises(Unavailable, match="average price"):
            BrokerPosition.from_raw({
                "instrument_id": "005930", "quantity": 10, "avg_price": 0, "current_price": 1,
            })


class TestTradeRecord:
    def _raw(self, **overrides):
        raw = {
            "id": 7, "instrument_id": "005930", "action": "buy",
            "signal": "20day_breakout", "price": 70000, "quantity": 100,
            "trade_date": "2025-03-01", "n_value": 2000,
        }
        raw.update(overrides)
        return raw

    def test_turtle_entry(self):
        rec = TradeRecord.from_raw(self._raw())
        assert rec.action == "BUY"
        assert rec.trade_id == 7
        assert rec.n_value == 2000.0
        assert rec.is_turtle_entry is True

    def test_55day_breakout_is_turtle_entry(self):
        assert TradeRecord.from_raw(self._raw(signal="55day_breakout")).is_turtle_entry

    def test_manual_buy_is_not_turtle_entry(self):
        assert not TradeRecord.from_raw(self._raw(signal="MANUAL_BUY")).is_turtle_entry

    def test_sell_is_not_turtle_entry(self):
        assert not TradeRecord.from_raw(self._raw(action="SELL")).is_turtle_entry

    def test_non_positive_n_value_dropped(self):
        assert TradeRecord.from_raw(self._raw(n_value=0)).n_value is None
