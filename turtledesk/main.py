"""turtledesk — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
the one-shot daily run and the API server.
"""

import logging

from fastapi import FastAPI

from turtledesk.api.routers import router

app = FastAPI(title="turtledesk Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("turtledesk")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def build_orchestrator(config):
    """Wire the concrete adapters into a ``DailyOrchestrator``.

    Also injects the shared objects into the API routers.

    Returns:
        ``(orchestrator, reconciler, trade_repo, signal_repo)``
    """
    from turtledesk.api.routers import configure_routers
    from turtledesk.broker.kiwoom_client import KiwoomClient
    from turtledesk.engine import DailyOrchestrator
    from turtledesk.market.yahoo_client import YahooPriceClient
    from turtledesk.notify.webhook import WebhookNotifier
    from turtledesk.portfolio.reconciler import PortfolioReconciler
    from turtledesk.repos.db import init_db
    from turtledesk.repos.signal_repo import SignalRepo
    from turtledesk.repos.trade_repo import TradeRepo
    from turtledesk.watchlist import WatchlistFile

    init_db(config.db_path)

    prices = YahooPriceClient(config)
    broker = KiwoomClient(config)
    trade_repo = TradeRepo(config.db_path)
    signal_repo = SignalRepo(config.db_path)

    reconciler = PortfolioReconciler(
        trade_history=trade_repo,
        price_history=prices,
        lookback_days=config.history_lookback_days,
        max_units=config.max_units,
        freeze_volatility_at_entry=config.freeze_volatility_at_entry,
        timeout_seconds=config.request_timeout_seconds,
        freshness_max_age_days=config.freshness_max_age_days,
    )

    sinks: list = [signal_repo]
    if config.webhook_url:
        sinks.append(WebhookNotifier(config.webhook_url, timeout=config.request_timeout_seconds))
    else:
        logger.info("WEBHOOK_URL not set; results are only stored locally.")

    orchestrator = DailyOrchestrator(
        config=config,
        watchlist=WatchlistFile(config.watchlist_path),
        price_history=prices,
        current_prices=broker if config.current_price_source == "kiwoom" else prices,
        broker=broker,
        reconciler=reconciler,
        sinks=sinks,
    )
    configure_routers(
        trade_repo=trade_repo,
        signal_repo=signal_repo,
        reconciler=reconciler,
        orchestrator=orchestrator,
    )
    return orchestrator, reconciler, trade_repo, signal_repo


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    from datetime import date

    from turtledesk.config import load_config

    parser = argparse.ArgumentParser(description="turtledesk turtle signal engine")
    parser.add_argument(
        "--mode",
        choices=["run", "serve"],
        default="run",
        help="run: one daily run then exit; serve: API server with POST /runs (default: run)",
    )
    parser.add_argument("--env", help="Path to a .env file")
    parser.add_argument("--equity", type=float, help="Override account equity for sizing")
    parser.add_argument("--date", help="Evaluation date (YYYY-MM-DD, default: today)")
    args = parser.parse_args()

    config = load_config(args.env)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    orchestrator, _, _, _ = build_orchestrator(config)

    if args.mode == "serve":
        asyncio.run(_serve(config.health_port))
    else:
        today = date.fromisoformat(args.date) if args.date else None
        asyncio.run(_run_once(orchestrator, today, args.equity))


async def _run_once(orchestrator, today, equity) -> None:
    """Execute a single daily run and log the prioritized signals."""
    result = await orchestrator.run_once(today=today, equity_override=equity)
    for signal in result.signals:
        qty = signal.sizing.quantity if signal.sizing else None
        logger.info(
            "SIGNAL %-20s %s at %g (ref %g, %s) qty=%s%s",
            signal.kind, signal.instrument_id, signal.trigger_price,
            signal.reference_level, signal.strength, qty,
            " [degraded N]" if signal.degraded else "",
        )
    for exclusion in result.exclusions:
        logger.info("EXCLUDED %s: %s %s", exclusion.instrument_id, exclusion.reason, exclusion.detail)


async def _serve(port: int = 8080) -> None:
    """Start the API server; runs are triggered through ``POST /runs``."""
    import uvicorn

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)
    logger.info("API available at http://localhost:%d", port)
    await server.serve()
    logger.info("turtledesk stopped.")


if __name__ == "__main__":
    _run_cli()
