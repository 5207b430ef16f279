"""Signal repository — persists each daily run and its signals.

Implements ``SignalSink`` so it can be handed to the orchestrator
alongside the webhook notifier.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Optional

from turtledesk.repos.db import get_connection

if TYPE_CHECKING:
    from turtledesk.engine import RunResult


class SignalRepo:
    """Data access layer for runs and signals.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    async def publish(self, result: "RunResult") -> None:
        await asyncio.to_thread(self.save_run, result)

    def save_run(self, result: "RunResult") -> None:
        """Store the run summary and one row per emitted signal."""
        payload = result.to_dict()
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO runs
                    (run_id, started_at, finished_at, equity,
                     signal_count, exclusion_count, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.run_id,
                    payload["started_at"],
                    payload["finished_at"] or payload["started_at"],
                    result.equity,
                    len(result.signals),
                    len(result.exclusions),
                    json.dumps(payload),
                ),
            )
            conn.executemany(
                """
                INSERT INTO signals
                    (run_id, instrument_id, kind, strength, priority,
                     trigger_price, reference_level, quantity, degraded, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        result.run_id, s.instrument_id, s.kind, s.strength, s.priority,
                        s.trigger_price, s.reference_level,
                        s.sizing.quantity if s.sizing else None,
                        int(s.degraded), s.timestamp.isoformat(),
                    )
                    for s in result.signals
                ],
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_signals(self, limit: int = 20, instrument_id: Optional[str] = None) -> dict:
        """Return persisted signals, newest first.

        Returns:
            ``{"signals": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            where_clause = ""
            params: list = []
            if instrument_id:
                where_clause = "WHERE instrument_id = ?"
                params.append(instrument_id)

            rows = conn.execute(
                f"SELECT * FROM signals {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM signals {where_clause}", params,
            ).fetchone()[0]

            signals = []
            for row in rows:
                item = dict(row)
                item["degraded"] = bool(item["degraded"])
                signals.append(item)
            return {"signals": signals, "total": total}
        finally:
            conn.close()

    def get_run(self, run_id: str) -> Optional[dict]:
        """Return the stored payload of one run, or ``None``."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM runs WHERE run_id = ?", (run_id,),
            ).fetchone()
            return json.loads(row["payload"]) if row else None
        finally:
            conn.close()
