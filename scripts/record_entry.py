"""One-shot script to record a turtle-tagged BUY in the trade log.

A broker position is only tracked by the pyramiding ladder once a
turtle entry exists for it, so run this after filling a breakout order.

Usage (from the project root):
    python -m scripts.record_entry --instrument 005930 --price 71000 --quantity 10
    python -m scripts.record_entry --instrument 005930 --price 71000 --quantity 10 --n 1800
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from turtledesk.config import load_config
from turtledesk.errors import TurtleError
from turtledesk.market.yahoo_client import YahooPriceClient
from turtledesk.portfolio.reconciler import normalize_instrument_id
from turtledesk.repos.db import init_db
from turtledesk.repos.trade_repo import TradeRepo
from turtledesk.strategy.indicators import calculate_n

logger = logging.getLogger("turtledesk")


async def _current_n(config, instrument_id: str) -> float | None:
    """N from the latest history, or ``None`` if it cannot be computed."""
    client = YahooPriceClient(config)
    try:
        points = await client.get_history(instrument_id, config.history_lookback_days)
        return calculate_n(points)
    except TurtleError as exc:
        logger.warning("%s: N not recorded (%s): %s", instrument_id, exc.reason, exc)
        return None


def _main(args: argparse.Namespace) -> None:
    config = load_config(args.env)
    init_db(config.db_path)

    instrument_id = normalize_instrument_id(args.instrument)
    n_value = args.n
    if n_value is None and not args.no_n:
        n_value = asyncio.run(_current_n(config, instrument_id))

    repo = TradeRepo(config.db_path)
    trade_id = repo.insert_trade(
        instrument_id=instrument_id,
        action="BUY",
        signal=args.signal,
        price=args.price,
        quantity=args.quantity,
        trade_date=date.fromisoformat(args.date) if args.date else date.today(),
        n_value=n_value,
        name=args.name or "",
        execution_id=args.execution_id,
    )
    logger.info(
        "Recorded trade #%d: BUY %s %g @ %g (%s, N=%s)",
        trade_id, instrument_id, args.quantity, args.price, args.signal, n_value,
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Record a turtle entry for provenance")
    parser.add_argument("--instrument", required=True)
    parser.add_argument("--price", type=float, required=True)
    parser.add_argument("--quantity", type=float, required=True)
    parser.add_argument(
        "--signal", default="20day_breakout", choices=["20day_breakout", "55day_breakout"],
    )
    parser.add_argument("--n", type=float, help="N at entry (default: computed from history)")
    parser.add_argument("--no-n", action="store_true", help="Do not record an N value")
    parser.add_argument("--date", help="Trade date (YYYY-MM-DD, default: today)")
    parser.add_argument("--name", help="Instrument display name")
    parser.add_argument("--execution-id", help="Broker execution id")
    parser.add_argument("--env", help="Path to a .env file")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    _main(args)
