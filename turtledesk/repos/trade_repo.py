"""Trade repository — SQLite CRUD for the trades table.

Implements ``TradeHistory``: the reconciler reads turtle-tagged BUY
records from here to decide which broker positions it may track.
"""

from datetime import date, datetime, timezone
from typing import Optional

from turtledesk.market.models import TURTLE_ENTRY_SIGNALS, TradeRecord
from turtledesk.repos.db import get_connection


class TradeRepo:
    """Data access layer for trade records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_trade(
        self,
        instrument_id: str,
        action: str,
        signal: str,
        price: float,
        quantity: float,
        trade_date: date,
        n_value: Optional[float] = None,
        name: str = "",
        execution_id: Optional[str] = None,
        note: str = "",
    ) -> int:
        """Insert a trade and return its ``id``.

        Raises ``ValueError`` for an unknown action or non-positive
        price / quantity, and ``sqlite3.IntegrityError`` for a duplicate
        *execution_id*.
        """
        action = action.upper()
        if action not in ("BUY", "SELL"):
            raise ValueError(f"action must be BUY or SELL, got {action!r}")
        if price <= 0 or quantity <= 0:
            raise ValueError(f"price and quantity must be positive, got {price} / {quantity}")

        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO trades
                    (instrument_id, name, action, signal, price, quantity,
                     n_value, trade_date, execution_id, note, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    instrument_id, name, action, signal, price, quantity,
                    n_value, trade_date.isoformat(), execution_id, note,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def find_turtle_entries(self, instrument_id: str) -> list[TradeRecord]:
        """Return turtle-tagged BUY records for *instrument_id*, newest first."""
        placeholders = ", ".join("?" for _ in TURTLE_ENTRY_SIGNALS)
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM trades
                WHERE instrument_id = ? AND action = 'BUY'
                  AND signal IN ({placeholders})
                ORDER BY trade_date DESC, id DESC
                """,
                (instrument_id, *sorted(TURTLE_ENTRY_SIGNALS)),
            ).fetchall()
            return [TradeRecord.from_raw(dict(row)) for row in rows]
        finally:
            conn.close()

    def get_trades(
        self,
        limit: int = 20,
        instrument_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> dict:
        """Return recent trades, newest first.

        Returns:
            ``{"trades": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            conditions: list[str] = []
            params: list = []

            if instrument_id:
                conditions.append("instrument_id = ?")
                params.append(instrument_id)
            if action:
                conditions.append("action = ?")
                params.append(action.upper())

            where_clause = ""
            if conditions:
                where_clause = "WHERE " + " AND ".join(conditions)

            rows = conn.execute(
                f"SELECT * FROM trades {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM trades {where_clause}",
                params,
            ).fetchone()[0]

            trades = [dict(row) for row in rows]
            return {"trades": trades, "total": total}
        finally:
            conn.close()
