"""Portfolio reconciler — keeps pyramiding ladders in step with the broker.

The reconciler is the only writer of the ladder table.  Each daily run
hands it the broker's position snapshot; it bootstraps ladders for newly
held turtle positions, refreshes existing ones, and discards ladders for
positions that are gone.  Readers get deep copies via :meth:`snapshot`.

Only positions with a turtle-tagged BUY in the trade history are tracked.
Anything else is reported as untracked (with a ``no_provenance``
exclusion) and never receives signals.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from turtledesk.errors import InsufficientHistory, NoProvenance, TurtleError, Unavailable
from turtledesk.market.base import PriceHistoryProvider, TradeHistory
from turtledesk.market.data_guard import validate_price_series
from turtledesk.market.models import BrokerPosition, TradeRecord
from turtledesk.risk.position_sizer import is_valid_n
from turtledesk.risk.pyramiding import (
    DEFAULT_MAX_UNITS,
    PositionLadder,
    apply_add,
    bootstrap_ladder,
    mark_stopped,
)
from turtledesk.strategy.indicators import HIGH_PERIOD, calculate_indicators, calculate_n
from turtledesk.strategy.models import Exclusion, IndicatorSet, utc_now

logger = logging.getLogger("turtledesk.reconciler")

_EXCHANGE_SUFFIXES = (".KS", ".KQ")


def normalize_instrument_id(symbol: str) -> str:
    """Map a broker or provider symbol onto the watchlist code.

    ``A005930`` → ``005930``, ``005930.KS`` → ``005930``.
    """
    code = str(symbol).strip().upper()
    for suffix in _EXCHANGE_SUFFIXES:
        if code.endswith(suffix):
            code = code[: -len(suffix)]
            break
    if len(code) == 7 and code.startswith("A"):
        code = code[1:]
    return code


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    ladders: dict[str, PositionLadder] = field(default_factory=dict)
    untracked: list[str] = field(default_factory=list)
    exclusions: list[Exclusion] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    bootstrapped: list[str] = field(default_factory=list)


class PortfolioReconciler:
    """Owns the per-instrument ladder table.

    Args:
        trade_history: Source of turtle-tagged entries (provenance).
        price_history: Daily bars for recomputing N.
        lookback_days: Bars requested per history fetch.
        max_units: Ladder capacity for new ladders.
        freeze_volatility_at_entry: Keep the ladder N fixed after bootstrap
            and only track the latest value alongside it.
        fallback_n_fraction: Degraded N as a fraction of the average price
            when no measured N exists.
        timeout_seconds: Per-call timeout for provenance and history.
        freshness_max_age_days: Passed to the price-series guard.
    """

    def __init__(
        self,
        trade_history: TradeHistory,
        price_history: PriceHistoryProvider,
        lookback_days: int = 260,
        max_units: int = DEFAULT_MAX_UNITS,
        freeze_volatility_at_entry: bool = False,
        fallback_n_fraction: float = 0.01,
        timeout_seconds: float = 10.0,
        freshness_max_age_days: int = 90,
    ) -> None:
        if max_units < 1:
            raise ValueError(f"max_units must be at least 1, got {max_units}")
        self._trade_history = trade_history
        self._price_history = price_history
        self._lookback_days = lookback_days
        self._max_units = max_units
        self._freeze = freeze_volatility_at_entry
        self._fallback_n_fraction = fallback_n_fraction
        self._timeout = timeout_seconds
        self._freshness_max_age_days = freshness_max_age_days
        self._ladders: dict[str, PositionLadder] = {}
        self._lock = asyncio.Lock()

    # ── Readers ──────────────────────────────────────────────────────────

    def snapshot(self) -> dict[str, PositionLadder]:
        """Deep copy of the ladder table; safe to hand to readers."""
        return {k: copy.deepcopy(v) for k, v in self._ladders.items()}

    def get(self, instrument_id: str) -> Optional[PositionLadder]:
        ladder = self._ladders.get(normalize_instrument_id(instrument_id))
        return copy.deepcopy(ladder) if ladder is not None else None

    def risk_summary(self) -> dict:
        """Aggregate open risk across all active ladders."""
        active = [
            ladder for ladder in self._ladders.values()
            if not ladder.stopped and ladder.risk_amount is not None
        ]
        total_risk = sum(ladder.risk_amount for ladder in active)
        pcts = []
        for ladder in active:
            invested = ladder.current_average_price * ladder.total_quantity
            if invested > 0:
                pcts.append(ladder.risk_amount / invested * 100.0)
        return {
            "total_positions": len(active),
            "total_risk_amount": total_risk,
            "average_risk_pct": sum(pcts) / len(pcts) if pcts else 0.0,
            "degraded_positions": sum(1 for ladder in self._ladders.values() if ladder.n_degraded),
        }

    # ── Reconciliation ───────────────────────────────────────────────────

    async def reconcile(
        self,
        positions: list[BrokerPosition],
        today: Optional[date] = None,
    ) -> ReconcileResult:
        """Align the ladder table with *positions* (the broker snapshot).

        Running twice on an unchanged snapshot leaves every ladder equal
        to the result of the first run.
        """
        today = today or utc_now().date()
        async with self._lock:
            result = ReconcileResult()

            held: dict[str, BrokerPosition] = {}
            for pos in positions:
                if pos.quantity <= 0:
                    continue
                held[normalize_instrument_id(pos.instrument_id)] = pos

            for instrument_id in list(self._ladders):
                if instrument_id not in held:
                    del self._ladders[instrument_id]
                    result.discarded.append(instrument_id)
                    logger.info("%s: position closed, ladder discarded", instrument_id)

            for instrument_id, pos in held.items():
                try:
                    entries = await self._turtle_entries(instrument_id)
                except NoProvenance as exc:
                    if self._ladders.pop(instrument_id, None) is not None:
                        result.discarded.append(instrument_id)
                    result.untracked.append(instrument_id)
                    result.exclusions.append(Exclusion(instrument_id, NoProvenance.reason, str(exc)))
                    logger.info(
                        "%s: held without turtle entry history, not tracked (no_provenance)",
                        instrument_id,
                    )
                    continue
                except Exception as exc:
                    result.exclusions.append(
                        Exclusion(instrument_id, Unavailable.reason, f"provenance query failed: {exc}")
                    )
                    logger.warning(
                        "%s: provenance query failed, ladder left untouched: %s",
                        instrument_id, exc,
                    )
                    continue

                fresh_n, indicators = await self._fresh_n(instrument_id, today)
                existing = self._ladders.get(instrument_id)
                if existing is None:
                    ladder = self._bootstrap(instrument_id, pos, entries, fresh_n)
                    result.bootstrapped.append(instrument_id)
                else:
                    ladder = existing
                    self._refresh(ladder, pos, fresh_n)
                ladder.last_volume_ratio = indicators.volume_ratio if indicators else None
                ladder.exit_low10 = indicators.low10 if indicators else None
                ladder.last_sync_at = utc_now()

                if ladder.total_quantity != pos.quantity:
                    logger.warning(
                        "%s: broker holds %g but ladder tracks %g",
                        instrument_id, pos.quantity, ladder.total_quantity,
                    )
                self._ladders[instrument_id] = ladder

            result.ladders = self.snapshot()
            logger.info(
                "Reconciled %d positions: %d ladders, %d untracked, %d discarded, %d excluded",
                len(held), len(result.ladders), len(result.untracked),
                len(result.discarded), len(result.exclusions),
            )
            return result

    async def _turtle_entries(self, instrument_id: str) -> list[TradeRecord]:
        records = await asyncio.wait_for(
            asyncio.to_thread(self._trade_history.find_turtle_entries, instrument_id),
            timeout=self._timeout,
        )
        entries = [r for r in records if r.is_turtle_entry]
        if not entries:
            raise NoProvenance(f"{instrument_id}: no turtle-tagged BUY recorded")
        # newest first
        entries.sort(key=lambda r: (r.trade_date, r.trade_id or 0), reverse=True)
        return entries

    async def _fresh_n(
        self, instrument_id: str, today: date,
    ) -> tuple[Optional[float], Optional[IndicatorSet]]:
        """Recompute N (and the breakout levels) from guarded price history.

        Returns ``(None, None)`` when no measured N is available; the
        indicator set is ``None`` when the history is too short for levels.
        """
        try:
            points = await asyncio.wait_for(
                self._price_history.get_history(instrument_id, self._lookback_days),
                timeout=self._timeout,
            )
            validate_price_series(
                points, today,
                max_age_days=self._freshness_max_age_days,
                instrument_id=instrument_id,
            )
            if len(points) > HIGH_PERIOD:
                indicators = calculate_indicators(points)
                return indicators.n, indicators
            return calculate_n(points), None
        except asyncio.TimeoutError:
            logger.warning("%s: price history timed out, N not refreshed", instrument_id)
        except InsufficientHistory as exc:
            logger.warning("%s: N not refreshed: %s", instrument_id, exc)
        except TurtleError as exc:
            logger.warning("%s: N not refreshed (%s): %s", instrument_id, exc.reason, exc)
        except Exception as exc:
            logger.error("%s: unexpected error refreshing N: %s", instrument_id, exc)
        return None, None

    def _bootstrap(
        self,
        instrument_id: str,
        pos: BrokerPosition,
        entries: list[TradeRecord],
        fresh_n: Optional[float],
    ) -> PositionLadder:
        recorded_n = next((e.n_value for e in entries if is_valid_n(e.n_value)), None)

        if self._freeze and recorded_n is not None:
            n, source, degraded = recorded_n, "trade_record", False
        elif fresh_n is not None:
            n, source, degraded = fresh_n, "history", False
        elif recorded_n is not None:
            n, source, degraded = recorded_n, "trade_record", False
        else:
            n, source, degraded = pos.avg_price * self._fallback_n_fraction, "fallback", True
            logger.warning(
                "%s: no measured N, using degraded fallback %g (%.0f%% of avg price)",
                instrument_id, n, self._fallback_n_fraction * 100,
            )

        ladder = bootstrap_ladder(
            pos, instrument_id, n,
            n_source=source, n_degraded=degraded, max_units=self._max_units,
        )
        ladder.latest_n = fresh_n
        logger.info(
            "%s: ladder bootstrapped at %g × %g, N=%g (%s)",
            instrument_id, pos.avg_price, pos.quantity, n, source,
        )
        return ladder

    def _refresh(
        self,
        ladder: PositionLadder,
        pos: BrokerPosition,
        fresh_n: Optional[float],
    ) -> None:
        ladder.broker_quantity = pos.quantity
        ladder.current_price = pos.current_price
        ladder.name = pos.name

        if fresh_n is None:
            logger.warning(
                "%s: keeping previous N %g", ladder.instrument_id, ladder.n,
            )
            return

        ladder.latest_n = fresh_n
        if self._freeze and not ladder.n_degraded:
            return
        if ladder.n_degraded:
            logger.info(
                "%s: degraded N %g replaced by measured N %g",
                ladder.instrument_id, ladder.n, fresh_n,
            )
        ladder.n = fresh_n
        ladder.n_source = "history"
        ladder.n_degraded = False

    # ── Execution callbacks ──────────────────────────────────────────────

    async def confirm_add(
        self,
        instrument_id: str,
        execution_price: float,
        execution_id: Optional[str] = None,
        quantity: Optional[float] = None,
    ) -> PositionLadder:
        """Record a filled add-on order. Returns a copy of the updated ladder.

        Raises ``KeyError`` for an untracked instrument; see
        :func:`apply_add` for the ladder-level errors.
        """
        instrument_id = normalize_instrument_id(instrument_id)
        async with self._lock:
            ladder = self._ladders[instrument_id]
            apply_add(ladder, execution_price, execution_id=execution_id, quantity=quantity)
            return copy.deepcopy(ladder)

    async def confirm_stop(self, instrument_id: str) -> PositionLadder:
        """Record an executed stop-loss exit. Returns a copy of the ladder."""
        instrument_id = normalize_instrument_id(instrument_id)
        async with self._lock:
            ladder = mark_stopped(self._ladders[instrument_id])
            logger.info("%s: ladder stopped out", instrument_id)
            return copy.deepcopy(ladder)
