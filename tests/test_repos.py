"""Tests for the SQLite repositories — trades provenance and run history."""

import sqlite3
from datetime import date, datetime, timezone

import pytest

from turtledesk.engine import RunResult
from turtledesk.repos.db import get_connection, init_db
from turtledesk.repos.signal_repo import SignalRepo
from turtledesk.repos.trade_repo import TradeRepo
from turtledesk.risk.position_sizer import AccountRiskBudget, size_position
from turtledesk.strategy.models import NEW_ENTRY_BREAKOUT, STOP_LOSS, Exclusion, Signal

_TS = datetime(2025, 3, 14, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "data" / "turtledesk.db")
    init_db(path)
    return path


class TestInitDb:
    def test_creates_tables(self, db_path):
        conn = get_connection(db_path)
        try:
            names = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()
        assert {"trades", "runs", "signals"} <= names

    def test_idempotent(self, db_path):
        TradeRepo(db_path).insert_trade("005930", "BUY", "20day_breakout", 70_000.0, 100, date(2025, 2, 3))
        init_db(db_path)
        assert TradeRepo(db_path).get_trades()["total"] == 1


class TestTradeRepo:
    def test_find_turtle_entries_newest_first(self, db_path):
        repo = TradeRepo(db_path)
        repo.insert_trade("005930", "BUY", "20day_breakout", 68_000.0, 50, date(2025, 1, 6), n_value=1_800.0)
        repo.insert_trade("005930", "BUY", "55day_breakout", 70_000.0, 100, date(2025, 2, 3), n_value=2_000.0)
        repo.insert_trade("005930", "BUY", "manual", 65_000.0, 10, date(2025, 2, 10))
        repo.insert_trade("005930", "SELL", "20day_breakout", 72_000.0, 10, date(2025, 2, 11))
        repo.insert_trade("000660", "BUY", "20day_breakout", 180_000.0, 5, date(2025, 2, 3))

        entries = repo.find_turtle_entries("005930")

        assert [e.trade_date for e in entries] == [date(2025, 2, 3), date(2025, 1, 6)]
        assert entries[0].n_value == pytest.approx(2_000.0)
        assert entries[0].trade_id is not None
        assert all(e.is_turtle_entry for e in entries)

    def test_no_entries(self, db_path):
        assert TradeRepo(db_path).find_turtle_entries("005930") == []

    def test_missing_n_value(self, db_path):
        repo = TradeRepo(db_path)
        repo.insert_trade("005930", "buy", "20day_breakout", 70_000.0, 100, date(2025, 2, 3))
        entry = repo.find_turtle_entries("005930")[0]
        assert entry.action == "BUY"
        assert entry.n_value is None

    def test_rejects_bad_action(self, db_path):
        with pytest.raises(ValueError, match="BUY or SELL"):
            TradeRepo(db_path).insert_trade("005930", "HOLD", "x", 1.0, 1, date(2025, 2, 3))

    def test_rejects_non_positive_price(self, db_path):
        with pytest.raises(ValueError, match="positive"):
            TradeRepo(db_path).insert_trade("005930", "BUY", "x", 0.0, 1, date(2025, 2, 3))

    def test_duplicate_execution_id(self, db_path):
        repo = TradeRepo(db_path)
        repo.insert_trade("005930", "BUY", "20day_breakout", 70_000.0, 100, date(2025, 2, 3), execution_id="E1")
        with pytest.raises(sqlite3.IntegrityError):
            repo.insert_trade("005930", "BUY", "20day_breakout", 70_000.0, 100, date(2025, 2, 3), execution_id="E1")

    def test_get_trades_filters(self, db_path):
        repo = TradeRepo(db_path)
        repo.insert_trade("005930", "BUY", "20day_breakout", 70_000.0, 100, date(2025, 2, 3))
        repo.insert_trade("005930", "SELL", "stop_loss", 66_000.0, 100, date(2025, 2, 20))
        repo.insert_trade("000660", "BUY", "20day_breakout", 180_000.0, 5, date(2025, 2, 3))

        assert repo.get_trades()["total"] == 3
        sells = repo.get_trades(action="sell")
        assert sells["total"] == 1
        assert sells["trades"][0]["signal"] == "stop_loss"
        samsung = repo.get_trades(instrument_id="005930", limit=1)
        assert samsung["total"] == 2
        assert len(samsung["trades"]) == 1
        assert samsung["trades"][0]["action"] == "SELL"


def _run_result() -> RunResult:
    breakout = Signal(
        NEW_ENTRY_BREAKOUT, "005930", 82_000.0, 80_500.0, "strong", timestamp=_TS,
        sizing=size_position(82_000.0, 1_600.0, AccountRiskBudget(10_000_000.0, 0.02)),
    )
    stop = Signal(STOP_LOSS, "000660", 170_000.0, 172_000.0, "strong", timestamp=_TS, degraded=True)
    return RunResult(
        run_id="abc123def456",
        started_at=_TS,
        finished_at=_TS,
        equity=10_000_000.0,
        evaluated=2,
        signals=[stop, breakout],
        exclusions=[Exclusion("035720", "unavailable", "no chart data")],
    )


class TestSignalRepo:
    def test_save_and_load_run(self, db_path):
        repo = SignalRepo(db_path)
        repo.save_run(_run_result())

        payload = repo.get_run("abc123def456")
        assert payload["equity"] == 10_000_000.0
        assert [s["kind"] for s in payload["signals"]] == [STOP_LOSS, NEW_ENTRY_BREAKOUT]
        assert payload["exclusions"][0]["reason"] == "unavailable"

    def test_unknown_run(self, db_path):
        assert SignalRepo(db_path).get_run("missing") is None

    def test_signal_rows(self, db_path):
        repo = SignalRepo(db_path)
        repo.save_run(_run_result())

        history = repo.get_signals()
        assert history["total"] == 2
        # newest row first: the breakout was inserted last
        latest = history["signals"][0]
        assert latest["instrument_id"] == "005930"
        assert latest["quantity"] == 62
        assert latest["degraded"] is False
        assert history["signals"][1]["degraded"] is True
        assert history["signals"][1]["quantity"] is None

    def test_filter_by_instrument(self, db_path):
        repo = SignalRepo(db_path)
        repo.save_run(_run_result())
        assert repo.get_signals(instrument_id="000660")["total"] == 1

    @pytest.mark.asyncio
    async def test_publish_persists(self, db_path):
        repo = SignalRepo(db_path)
        await repo.publish(_run_result())
        assert repo.get_run("abc123def456") is not None
