"""Turtle indicators — N (average true range) and breakout levels. Pure functions, no I/O.

All functions take daily bars ordered **most-recent-first**: ``points[0]``
is the evaluation session and is excluded from every trailing window.
"""

import math

from turtledesk.errors import InsufficientHistory
from turtledesk.market.models import PricePoint
from turtledesk.strategy.models import IndicatorSet


N_PERIOD = 20
MIN_TRUE_RANGE_SAMPLES = 5
HIGH_PERIOD = 20
LOW_PERIOD = 10
EXIT_LOW_PERIOD = 20
VOLUME_PERIOD = 20
WEEK52_SESSIONS = 252


def true_range(high: float, low: float, prev_close: float) -> float:
    """TR = max(high - low, |high - prev_close|, |low - prev_close|)."""
    return max(
        high - low,
        abs(high - prev_close),
        abs(low - prev_close),
    )


def calculate_n(
    points: list[PricePoint],
    period: int = N_PERIOD,
    min_samples: int = MIN_TRUE_RANGE_SAMPLES,
) -> float:
    """Calculate N, the mean true range of the *period* sessions before today.

    Session ``i`` (1 ≤ i ≤ period) uses the close of session ``i + 1`` as
    its previous close, so a full window needs ``period + 2`` bars.
    Samples that are NaN or non-positive are skipped.

    Raises ``InsufficientHistory`` if fewer than *min_samples* valid
    samples exist, or the mean is not a positive finite number.
    """
    samples: list[float] = []
    last = min(period, len(points) - 2)
    for i in range(1, last + 1):
        bar = points[i]
        prev_close = points[i + 1].close
        tr = true_range(bar.high, bar.low, prev_close)
        if math.isfinite(tr) and tr > 0:
            samples.append(tr)

    if len(samples) < min_samples:
        raise InsufficientHistory(
            f"Need at least {min_samples} valid true-range samples for N, "
            f"got {len(samples)} from {len(points)} bars"
        )

    n = sum(samples) / len(samples)
    if not math.isfinite(n) or n <= 0:
        raise InsufficientHistory(f"N computed as {n!r}; refusing non-positive volatility")
    return n


def calculate_indicators(points: list[PricePoint]) -> IndicatorSet:
    """Compute the full ``IndicatorSet`` for the session at ``points[0]``.

    Requires the evaluation bar plus ``HIGH_PERIOD`` (20) trailing bars.
    The 52-week levels use as many of the trailing ``WEEK52_SESSIONS``
    bars as are available; ``sessions_52w`` records how many.

    Raises ``InsufficientHistory`` if the history is too short.
    """
    required = HIGH_PERIOD + 1
    if len(points) < required:
        raise InsufficientHistory(
            f"Need at least {required} daily bars for breakout levels, got {len(points)}"
        )

    n = calculate_n(points)

    trailing20 = points[1:HIGH_PERIOD + 1]
    trailing10 = points[1:LOW_PERIOD + 1]
    exit20 = points[1:EXIT_LOW_PERIOD + 1]
    trailing52w = points[1:WEEK52_SESSIONS + 1]

    volumes = [p.volume for p in points[1:VOLUME_PERIOD + 1]]
    avg_volume20 = sum(volumes) / len(volumes)
    current_volume = points[0].volume
    volume_ratio = current_volume / avg_volume20 if avg_volume20 > 0 else 0.0

    return IndicatorSet(
        n=n,
        high20=max(p.high for p in trailing20),
        low10=min(p.low for p in trailing10),
        low20=min(p.low for p in exit20),
        high52w=max(p.high for p in trailing52w),
        low52w=min(p.low for p in trailing52w),
        sessions_52w=len(trailing52w),
        volume=current_volume,
        avg_volume20=avg_volume20,
        volume_ratio=volume_ratio,
    )
