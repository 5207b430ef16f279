"""Internal API routers — /status, /signals, /ladders, /trades, /runs endpoints.

No business logic, no DB access. Delegates to repos, the reconciler, the
orchestrator, and shared state.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Query

logger = logging.getLogger("turtledesk")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_RUN_STATUS: dict = {
    "running": False,
    "last_run_id": None,
    "last_run_at": None,
    "last_error": None,
    "signal_count": 0,
    "exclusion_count": 0,
    "ladder_count": 0,
    "equity": None,
}

_run_status: dict = {**_DEFAULT_RUN_STATUS}

_trade_repo = None    # Set via configure_routers()
_signal_repo = None   # Set via configure_routers()
_reconciler = None    # Set via configure_routers()
_orchestrator = None  # Set via configure_routers()


def configure_routers(
    trade_repo=None,
    signal_repo=None,
    reconciler=None,
    orchestrator=None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        trade_repo: A ``TradeRepo`` instance (or duck-type for tests).
        signal_repo: A ``SignalRepo`` for run history.
        reconciler: The ``PortfolioReconciler`` owning the ladders.
        orchestrator: The ``DailyOrchestrator`` for on-demand runs.
    """
    global _trade_repo, _signal_repo, _reconciler, _orchestrator  # noqa: PLW0603
    _trade_repo = trade_repo
    _signal_repo = signal_repo
    _reconciler = reconciler
    _orchestrator = orchestrator
    _run_status.clear()
    _run_status.update(_DEFAULT_RUN_STATUS)


def update_run_status(**fields) -> None:
    """Update individual fields of the run status dict."""
    _run_status.update(fields)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the status of the most recent daily run."""
    return dict(_run_status)


@router.get("/signals")
async def get_signals():
    """Return the prioritized signals and exclusions of the last run."""
    result = _orchestrator.last_result if _orchestrator is not None else None
    if result is None:
        return {"run_id": None, "signals": [], "exclusions": []}
    data = result.to_dict()
    return {
        "run_id": data["run_id"],
        "signals": data["signals"],
        "exclusions": data["exclusions"],
    }


@router.get("/signals/history")
async def get_signal_history(
    limit: int = Query(default=20, ge=1, le=100),
    instrument: Optional[str] = Query(default=None),
):
    """Return persisted signals from previous runs, newest first."""
    if _signal_repo is None:
        return {"signals": [], "total": 0}
    return _signal_repo.get_signals(limit=limit, instrument_id=instrument)


@router.get("/ladders")
async def get_ladders():
    """Return every tracked pyramiding ladder and the aggregate risk."""
    if _reconciler is None:
        return {"ladders": [], "risk_summary": None}
    ladders = _reconciler.snapshot()
    return {
        "ladders": [ladders[k].summary() for k in sorted(ladders)],
        "risk_summary": _reconciler.risk_summary(),
    }


@router.get("/ladders/{instrument_id}")
async def get_ladder(instrument_id: str):
    """Return one ladder."""
    ladder = _reconciler.get(instrument_id) if _reconciler is not None else None
    if ladder is None:
        return {"error": f"No ladder for {instrument_id}"}
    return ladder.summary()


@router.post("/ladders/{instrument_id}/add")
async def confirm_add(instrument_id: str, body: dict):
    """Execution callback: record a filled add-on unit.

    Body: ``{"price": float, "execution_id": str?, "quantity": float?}``
    """
    if _reconciler is None:
        return {"error": "No reconciler"}
    if "price" not in body:
        return {"status": "error", "errors": ["price is required"]}
    try:
        ladder = await _reconciler.confirm_add(
            instrument_id,
            float(body["price"]),
            execution_id=body.get("execution_id"),
            quantity=float(body["quantity"]) if body.get("quantity") is not None else None,
        )
    except KeyError:
        return {"error": f"No ladder for {instrument_id}"}
    except Exception as exc:
        logger.warning("%s: add-on confirmation rejected: %s", instrument_id, exc)
        return {"status": "error", "errors": [str(exc)]}
    return {"status": "ok", "ladder": ladder.summary()}


@router.post("/ladders/{instrument_id}/stop")
async def confirm_stop(instrument_id: str):
    """Execution callback: record a stop-loss exit."""
    if _reconciler is None:
        return {"error": "No reconciler"}
    try:
        ladder = await _reconciler.confirm_stop(instrument_id)
    except KeyError:
        return {"error": f"No ladder for {instrument_id}"}
    return {"status": "ok", "ladder": ladder.summary()}


@router.get("/trades")
async def get_trades(
    limit: int = Query(default=20, ge=1, le=100),
    instrument: Optional[str] = Query(default=None),
    action: Optional[str] = Query(default=None),
):
    """Return recent trade log entries."""
    if _trade_repo is None:
        return {"trades": [], "total": 0}
    return _trade_repo.get_trades(limit=limit, instrument_id=instrument, action=action)


# ── Control actions ──────────────────────────────────────────────────────


async def _run_in_background(today: Optional[date], equity: Optional[float]) -> None:
    try:
        await _orchestrator.run_once(today=today, equity_override=equity)
    except Exception as exc:
        # run_once already recorded the failure in the run status
        logger.error("Triggered run failed: %s", exc)


@router.post("/runs")
async def trigger_run(background_tasks: BackgroundTasks, body: Optional[dict] = None):
    """Start a daily run now.

    Body (optional): ``{"equity": float, "date": "YYYY-MM-DD"}``
    """
    if _orchestrator is None:
        return {"error": "No orchestrator"}
    if _orchestrator.running:
        return {"status": "already_running"}

    body = body or {}
    errors = []
    equity = None
    if body.get("equity") is not None:
        equity = float(body["equity"])
        if equity <= 0:
            errors.append("equity must be positive")
    today = None
    if body.get("date"):
        try:
            today = date.fromisoformat(body["date"])
        except ValueError:
            errors.append("date must be YYYY-MM-DD")
    if errors:
        return {"status": "error", "errors": errors}

    background_tasks.add_task(_run_in_background, today, equity)
    logger.info("Daily run triggered via API.")
    return {"status": "started"}
