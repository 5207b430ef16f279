"""Shared fixtures: realistic daily price series for guard-passing tests."""

from datetime import date, timedelta
from typing import Optional

import pytest

from turtledesk.market.models import PricePoint

TODAY = date(2025, 3, 14)

# Irregular day-to-day moves so the series passes the plausibility guard
_STEPS = [0.012, -0.007, 0.019, -0.003, 0.009, -0.015, 0.004, 0.011, -0.009, 0.002]


def _build_series(
    n_bars: int = 60,
    start_price: float = 70_000.0,
    end: date = TODAY,
    last_close: Optional[float] = None,
    last_volume: Optional[float] = None,
    volume: float = 100_000.0,
) -> list[PricePoint]:
    """Return *n_bars* daily bars ending at *end*, most-recent-first.

    *last_close* / *last_volume* replace the evaluation bar's close and
    volume (the high/low are widened to contain the new close).
    """
    closes = [start_price]
    for i in range(1, n_bars):
        closes.append(closes[-1] * (1 + _STEPS[i % len(_STEPS)]))

    bars: list[PricePoint] = []
    for i, close in enumerate(closes):
        high = close * (1 + 0.006 + 0.002 * (i % 3))
        low = close * (1 - 0.005 - 0.002 * (i % 4))
        vol = volume
        if i == n_bars - 1:
            if last_close is not None:
                close = last_close
                high = max(high, close)
                low = min(low, close)
            if last_volume is not None:
                vol = last_volume
        bars.append(
            PricePoint(
                date=end - timedelta(days=n_bars - 1 - i),
                open=closes[i - 1] if i else close,
                high=high,
                low=low,
                close=close,
                volume=vol,
            )
        )
    bars.reverse()
    return bars


@pytest.fixture
def build_series():
    """Factory fixture for guard-passing price series."""
    return _build_series


@pytest.fixture
def breakout_series():
    """Series whose last close is 2 % above the prior 20-session high."""
    base = _build_series()
    high20 = max(p.high for p in base[1:21])
    return _build_series(last_close=high20 * 1.02, last_volume=250_000.0)


@pytest.fixture
def quiet_series():
    """Series whose last close sits between the 10-low and 20-high."""
    base = _build_series()
    high20 = max(p.high for p in base[1:21])
    low10 = min(p.low for p in base[1:11])
    return _build_series(last_close=(high20 + low10) / 2)
