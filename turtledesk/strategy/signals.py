"""Breakout signal detection — System 1 entry rules.

Rules are evaluated in fixed precedence and the first match wins, so an
instrument yields at most one signal per evaluation:

1. close > 20-session high  → ``new_entry_breakout``
2. close < 10-session low   → ``new_entry_breakdown``

The 52-week (System 2) levels are reported by
:func:`breakout_diagnostics` but never emit a signal.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from turtledesk.strategy.models import (
    NEW_ENTRY_BREAKDOWN,
    NEW_ENTRY_BREAKOUT,
    IndicatorSet,
    Signal,
    Strength,
    utc_now,
)

logger = logging.getLogger("turtledesk")


# (kind, reference level getter, predicate) in precedence order
_ENTRY_RULES: list[tuple[str, Callable[[IndicatorSet], float], Callable[[float, float], bool]]] = [
    (NEW_ENTRY_BREAKOUT, lambda ind: ind.high20, lambda close, level: close > level),
    (NEW_ENTRY_BREAKDOWN, lambda ind: ind.low10, lambda close, level: close < level),
]


def classify_strength(volume_ratio: Optional[float]) -> Strength:
    """Classify signal strength from today's volume vs its 20-session mean."""
    if volume_ratio is None:
        return "weak"
    if volume_ratio > 2.0:
        return "strong"
    if volume_ratio > 1.5:
        return "medium"
    return "weak"


def breakout_diagnostics(close: float, indicators: IndicatorSet) -> dict:
    """Per-system breakout status for logging and dashboards."""
    return {
        "system1_20d": "BREAKOUT" if close > indicators.high20 else "NO_SIGNAL",
        "system1_10d": "BREAKDOWN" if close < indicators.low10 else "NO_SIGNAL",
        "system2_52w": "BREAKOUT" if close > indicators.high52w else "NO_SIGNAL",
        "system2_52w_low": "BREAKDOWN" if close < indicators.low52w else "NO_SIGNAL",
        "sessions_52w": indicators.sessions_52w,
    }


def detect_signal(
    instrument_id: str,
    close: float,
    indicators: IndicatorSet,
    timestamp: Optional[datetime] = None,
) -> Optional[Signal]:
    """Evaluate *close* against *indicators* and return at most one entry signal.

    Comparisons are strict: a close exactly at the 20-session high is not
    a breakout.
    """
    matches = [
        (kind, get_level(indicators))
        for kind, get_level, predicate in _ENTRY_RULES
        if predicate(close, get_level(indicators))
    ]
    if not matches:
        return None

    if len(matches) > 1:
        logger.warning(
            "%s: %d entry conditions matched, keeping %s and discarding %s",
            instrument_id, len(matches), matches[0][0],
            ", ".join(kind for kind, _ in matches[1:]),
        )

    kind, level = matches[0]
    logger.info(
        "%s: %s at %g (reference %g, volume ratio %.2f)",
        instrument_id, kind, close, level, indicators.volume_ratio,
    )
    return Signal(
        kind=kind,
        instrument_id=instrument_id,
        trigger_price=close,
        reference_level=level,
        strength=classify_strength(indicators.volume_ratio),
        timestamp=timestamp or utc_now(),
    )
