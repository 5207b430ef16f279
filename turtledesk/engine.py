"""turtledesk — Daily orchestrator (one evaluation run per trading day).

Connects price data, the signal detector, the sizing engine, and the
portfolio reconciler into a single run:

    watchlist → batched entry evaluation → broker reconciliation
    → ladder stop-loss / add-on checks → prioritized signal list → sinks

Per-instrument failures become exclusion records and never abort the
run.  Only an unusable watchlist or broker snapshot is fatal.
"""

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from typing import Iterable, Optional

from turtledesk.api.routers import update_run_status
from turtledesk.config import Config
from turtledesk.errors import FatalRunError, MaxUnitsReached, TurtleError, Unavailable
from turtledesk.market.base import (
    BrokerAccount,
    CurrentPriceProvider,
    PriceHistoryProvider,
    SignalSink,
    WatchlistSource,
)
from turtledesk.market.data_guard import validate_price_series
from turtledesk.portfolio.reconciler import PortfolioReconciler, normalize_instrument_id
from turtledesk.risk.position_sizer import AccountRiskBudget, size_position
from turtledesk.risk.pyramiding import (
    PositionLadder,
    check_add_signal,
    check_exit_signal,
    check_stop_loss_signal,
)
from turtledesk.strategy.indicators import calculate_indicators
from turtledesk.strategy.models import NEW_ENTRY_BREAKOUT, Exclusion, Signal, utc_now
from turtledesk.strategy.signals import breakout_diagnostics, detect_signal

logger = logging.getLogger("turtledesk.engine")

DEGRADED_VOLATILITY = "degraded_volatility"


@dataclass
class RunResult:
    """Everything one daily run produced, in priority order."""

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    equity: float = 0.0
    equity_source: str = "broker"  # "broker", "override" or "default"
    evaluated: int = 0
    signals: list[Signal] = field(default_factory=list)
    exclusions: list[Exclusion] = field(default_factory=list)
    ladders: dict[str, PositionLadder] = field(default_factory=dict)
    untracked: list[str] = field(default_factory=list)
    diagnostics: dict[str, dict] = field(default_factory=dict)
    risk_summary: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "equity": self.equity,
            "equity_source": self.equity_source,
            "evaluated": self.evaluated,
            "signals": [s.to_dict() for s in self.signals],
            "exclusions": [asdict(e) for e in self.exclusions],
            "ladders": {k: v.summary() for k, v in self.ladders.items()},
            "untracked": list(self.untracked),
            "diagnostics": dict(self.diagnostics),
            "risk_summary": dict(self.risk_summary),
        }


@dataclass
class _Evaluation:
    instrument_id: str
    signal: Optional[Signal] = None
    exclusion: Optional[Exclusion] = None
    diagnostics: Optional[dict] = None


class DailyOrchestrator:
    """Runs the daily signal pipeline.

    Args:
        config: Application configuration.
        watchlist: Source of instrument codes to scan for new entries.
        price_history: Daily bars for indicators.
        current_prices: Fresh quotes for ladder evaluation.
        broker: Account summary and position snapshot.
        reconciler: Owner of the pyramiding ladders.
        sinks: Receivers of each finished ``RunResult``.
    """

    def __init__(
        self,
        config: Config,
        watchlist: WatchlistSource,
        price_history: PriceHistoryProvider,
        current_prices: CurrentPriceProvider,
        broker: BrokerAccount,
        reconciler: PortfolioReconciler,
        sinks: Iterable[SignalSink] = (),
    ) -> None:
        self._config = config
        self._watchlist = watchlist
        self._price_history = price_history
        self._current_prices = current_prices
        self._broker = broker
        self._reconciler = reconciler
        self._sinks = list(sinks)
        self._running = False
        self._last_result: Optional[RunResult] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[RunResult]:
        return self._last_result

    async def run_once(
        self,
        today: Optional[date] = None,
        equity_override: Optional[float] = None,
    ) -> RunResult:
        """Execute one full daily run and publish the result.

        Raises:
            RuntimeError: If another run is still in progress.
            FatalRunError: If the watchlist is empty.
            Exception: Watchlist or broker failures propagate unmodified.
        """
        if self._running:
            raise RuntimeError("A daily run is already in progress")
        self._running = True
        update_run_status(running=True)
        try:
            result = await self._run(today or utc_now().date(), equity_override)
        except Exception as exc:
            update_run_status(running=False, last_error=str(exc))
            logger.error("Daily run failed: %s", exc)
            raise
        finally:
            self._running = False

        self._last_result = result
        update_run_status(
            running=False,
            last_error=None,
            last_run_id=result.run_id,
            last_run_at=result.finished_at.isoformat(),
            signal_count=len(result.signals),
            exclusion_count=len(result.exclusions),
            ladder_count=len(result.ladders),
            equity=result.equity,
        )
        await self._publish(result)
        return result

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def _run(self, today: date, equity_override: Optional[float]) -> RunResult:
        started = utc_now()
        result = RunResult(run_id=uuid.uuid4().hex[:12], started_at=started)

        instruments = await self._load_watchlist()
        budget, result.equity_source = await self._risk_budget(equity_override)
        result.equity = budget.equity
        logger.info(
            "Run %s: %d instruments, equity %g (%s), max risk %g per trade",
            result.run_id, len(instruments), budget.equity,
            result.equity_source, budget.max_risk,
        )

        # 1. New-entry scan over the watchlist
        evaluations = await self._in_batches(
            instruments,
            lambda instrument_id: self._evaluate_instrument(instrument_id, today, budget, started),
        )
        signals: list[Signal] = []
        for ev in evaluations:
            if ev.diagnostics is not None:
                result.diagnostics[ev.instrument_id] = ev.diagnostics
            if ev.signal is not None:
                signals.append(ev.signal)
            if ev.exclusion is not None:
                result.exclusions.append(ev.exclusion)
        result.evaluated = len(instruments)

        # 2. Broker snapshot → ladders (broker failure is fatal)
        positions = await self._broker.get_positions()
        reconciled = await self._reconciler.reconcile(positions, today=today)
        result.ladders = reconciled.ladders
        result.untracked = reconciled.untracked
        result.exclusions.extend(reconciled.exclusions)

        # 3. Ladder stop-loss / add-on / exit checks on fresh prices
        ladder_evaluations = await self._in_batches(
            [ladder for ladder in reconciled.ladders.values() if not ladder.stopped],
            lambda ladder: self._evaluate_ladder(ladder, budget, started),
        )
        for ev in ladder_evaluations:
            if ev.signal is not None:
                signals.append(ev.signal)
            if ev.exclusion is not None:
                result.exclusions.append(ev.exclusion)

        result.signals = aggregate_signals(signals)
        result.risk_summary = self._reconciler.risk_summary()
        result.finished_at = utc_now()
        logger.info(
            "Run %s finished: %d signals, %d exclusions, %d ladders, %d untracked",
            result.run_id, len(result.signals), len(result.exclusions),
            len(result.ladders), len(result.untracked),
        )
        return result

    async def _load_watchlist(self) -> list[str]:
        raw = await self._watchlist.get_instruments()
        instruments: list[str] = []
        for item in raw or []:
            code = normalize_instrument_id(item)
            if code and code not in instruments:
                instruments.append(code)
        if not instruments:
            raise FatalRunError("Watchlist is empty; nothing to evaluate")
        return instruments

    async def _risk_budget(
        self, equity_override: Optional[float],
    ) -> tuple[AccountRiskBudget, str]:
        fraction = self._config.risk_fraction_per_trade
        if equity_override is not None:
            if equity_override <= 0:
                raise ValueError(f"equity_override must be positive, got {equity_override}")
            return AccountRiskBudget(equity_override, fraction), "override"

        summary = await self._broker.get_account_summary()
        if summary.total_equity > 0:
            return AccountRiskBudget(summary.total_equity, fraction), "broker"

        logger.warning(
            "Broker reported equity %g; sizing with default equity %g",
            summary.total_equity, self._config.default_equity,
        )
        return AccountRiskBudget(self._config.default_equity, fraction), "default"

    async def _in_batches(self, items: list, evaluate) -> list[_Evaluation]:
        """Run *evaluate* over *items* in concurrent batches with a pause between."""
        size = max(1, self._config.batch_size)
        results: list[_Evaluation] = []
        for start in range(0, len(items), size):
            if start > 0 and self._config.batch_delay_seconds > 0:
                await asyncio.sleep(self._config.batch_delay_seconds)
            batch = items[start:start + size]
            results.extend(await asyncio.gather(*(evaluate(item) for item in batch)))
        return results

    async def _evaluate_instrument(
        self,
        instrument_id: str,
        today: date,
        budget: AccountRiskBudget,
        timestamp: datetime,
    ) -> _Evaluation:
        """Entry evaluation for one watchlist instrument; never raises."""
        try:
            points = await asyncio.wait_for(
                self._price_history.get_history(
                    instrument_id, self._config.history_lookback_days,
                ),
                timeout=self._config.request_timeout_seconds,
            )
            validate_price_series(
                points, today,
                max_age_days=self._config.freshness_max_age_days,
                instrument_id=instrument_id,
            )
            indicators = calculate_indicators(points)
            close = points[0].close
            diagnostics = breakout_diagnostics(close, indicators)
            diagnostics["n"] = indicators.n

            signal = detect_signal(instrument_id, close, indicators, timestamp=timestamp)
            if signal is not None and signal.kind == NEW_ENTRY_BREAKOUT:
                signal = replace(signal, sizing=size_position(close, indicators.n, budget))
            return _Evaluation(instrument_id, signal=signal, diagnostics=diagnostics)

        except asyncio.TimeoutError:
            logger.warning("%s: price history timed out, excluded", instrument_id)
            return _Evaluation(
                instrument_id,
                exclusion=Exclusion(instrument_id, Unavailable.reason, "price history timed out"),
            )
        except TurtleError as exc:
            logger.info("%s: excluded (%s): %s", instrument_id, exc.reason, exc)
            return _Evaluation(instrument_id, exclusion=Exclusion(instrument_id, exc.reason, str(exc)))
        except Exception as exc:
            logger.error("%s: unexpected evaluation error: %s", instrument_id, exc)
            return _Evaluation(
                instrument_id, exclusion=Exclusion(instrument_id, TurtleError.reason, str(exc)),
            )

    async def _evaluate_ladder(
        self,
        ladder: PositionLadder,
        budget: AccountRiskBudget,
        timestamp: datetime,
    ) -> _Evaluation:
        """Stop-loss, add-on then 10-session-low exit for one held ladder; never raises."""
        instrument_id = ladder.instrument_id
        try:
            price = await asyncio.wait_for(
                self._current_prices.get_current_price(instrument_id),
                timeout=self._config.request_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("%s: current price timed out, ladder not evaluated", instrument_id)
            return _Evaluation(
                instrument_id,
                exclusion=Exclusion(instrument_id, Unavailable.reason, "current price timed out"),
            )
        except Exception as exc:
            logger.warning("%s: current price unavailable: %s", instrument_id, exc)
            return _Evaluation(
                instrument_id, exclusion=Exclusion(instrument_id, Unavailable.reason, str(exc)),
            )

        try:
            stop = check_stop_loss_signal(ladder, price, timestamp=timestamp)
            if stop is not None:
                return _Evaluation(instrument_id, signal=stop)

            exit_signal = check_exit_signal(ladder, price, timestamp=timestamp)
            if ladder.n_degraded:
                logger.info(
                    "%s: N is a fallback estimate (%g), add-on check skipped",
                    instrument_id, ladder.n,
                )
                return _Evaluation(
                    instrument_id,
                    signal=exit_signal,
                    exclusion=Exclusion(
                        instrument_id, DEGRADED_VOLATILITY,
                        f"fallback N {ladder.n:g}; add-ons suppressed until N is measured",
                    ),
                )
            if not ladder.can_add:
                logger.info("%s: ladder full (%d units)", instrument_id, ladder.current_units)
                return _Evaluation(
                    instrument_id,
                    signal=exit_signal,
                    exclusion=Exclusion(
                        instrument_id, MaxUnitsReached.reason,
                        f"{ladder.current_units}/{ladder.max_units} units held",
                    ),
                )

            add = check_add_signal(ladder, price, budget=budget, timestamp=timestamp)
            return _Evaluation(instrument_id, signal=add or exit_signal)

        except TurtleError as exc:
            logger.info("%s: ladder excluded (%s): %s", instrument_id, exc.reason, exc)
            return _Evaluation(instrument_id, exclusion=Exclusion(instrument_id, exc.reason, str(exc)))
        except Exception as exc:
            logger.error("%s: unexpected ladder evaluation error: %s", instrument_id, exc)
            return _Evaluation(
                instrument_id, exclusion=Exclusion(instrument_id, TurtleError.reason, str(exc)),
            )

    async def _publish(self, result: RunResult) -> None:
        for sink in self._sinks:
            try:
                await sink.publish(result)
            except Exception as exc:
                logger.error(
                    "Sink %s failed for run %s: %s",
                    type(sink).__name__, result.run_id, exc,
                )


def aggregate_signals(signals: list[Signal]) -> list[Signal]:
    """Order by priority and keep one signal per instrument.

    The sort is stable, so signals of equal priority keep their
    evaluation order.  When one instrument has several signals, the
    highest-priority one wins and the rest are logged and dropped.
    """
    ordered = sorted(signals, key=lambda s: s.priority)
    kept: list[Signal] = []
    seen: set[str] = set()
    for signal in ordered:
        if signal.instrument_id in seen:
            logger.info(
                "%s: %s dropped, a higher-priority signal was already emitted",
                signal.instrument_id, signal.kind,
            )
            continue
        seen.add(signal.instrument_id)
        kept.append(signal)
    return kept
