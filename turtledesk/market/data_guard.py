"""Price-series integrity guard — freshness and plausibility checks.

A pure validation step run on every fetched series before indicators are
computed.  Synthetic or placeholder data (stale feeds, price jumps that
contradict the series' own recent history, suspiciously regular moves)
is rejected with ``DataIntegrityRejected`` rather than processed.
"""

from datetime import date
from typing import Optional

import numpy as np

from turtledesk.errors import DataIntegrityRejected
from turtledesk.market.models import PricePoint


# Number of most-recent closes inspected by the plausibility checks
_WINDOW = 10


def validate_price_series(
    points: list[PricePoint],
    today: date,
    max_age_days: int = 90,
    max_deviation: float = 0.5,
    min_dispersion_ratio: float = 0.3,
    instrument_id: Optional[str] = None,
) -> None:
    """Raise ``DataIntegrityRejected`` if *points* is not usable.

    Args:
        points: Daily bars, most-recent-first.
        today: Reference date for the freshness check.
        max_age_days: Latest bar may be at most this many days old.
        max_deviation: Maximum relative distance between the latest close
            and any of the last 10 closes (0.5 = 50 %).
        min_dispersion_ratio: The standard deviation of day-to-day
            absolute % changes must be at least this fraction of their
            mean; real markets move irregularly.
        instrument_id: Only used in error messages.
    """
    label = instrument_id or "series"

    if not points:
        raise DataIntegrityRejected(f"{label}: empty price series")

    latest = points[0].date
    age = (today - latest).days
    if age < 0:
        raise DataIntegrityRejected(f"{label}: latest bar {latest} is in the future")
    if age > max_age_days:
        raise DataIntegrityRejected(
            f"{label}: latest bar {latest} is {age} days old (limit {max_age_days})"
        )

    for newer, older in zip(points, points[1:]):
        if newer.date <= older.date:
            raise DataIntegrityRejected(
                f"{label}: bars not strictly descending by date ({newer.date} / {older.date})"
            )

    if len(points) < 5:
        return

    closes = np.array([p.close for p in points[:_WINDOW]], dtype=float)
    latest_close = closes[0]
    deviation = np.max(np.abs(closes - latest_close)) / latest_close
    if deviation > max_deviation:
        raise DataIntegrityRejected(
            f"{label}: latest close {latest_close:g} deviates {deviation:.0%} "
            f"from recent range {closes.min():g}-{closes.max():g}"
        )

    # closes are newest-first; change i is relative to the older bar
    changes = np.abs(closes[:-1] - closes[1:]) / closes[1:]
    mean_change = float(changes.mean())
    if mean_change > 0 and float(changes.std()) < mean_change * min_dispersion_ratio:
        raise DataIntegrityRejected(
            f"{label}: price moves too uniform to be market data "
            f"(mean {mean_change:.4f}, std {float(changes.std()):.4f})"
        )


def is_usable_series(points: list[PricePoint], today: date, **kwargs) -> bool:
    """Boolean form of :func:`validate_price_series`."""
    try:
        validate_price_series(points, today, **kwargs)
    except DataIntegrityRejected:
        return False
    return True
