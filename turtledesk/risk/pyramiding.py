"""Pyramiding ladder — incremental turtle entries for one held instrument.

Rules:
  - Up to ``max_units`` (4) equal-sized units per instrument.
  - Next add-on triggers at the last unit's entry price + 0.5 × N.
  - Stop-loss sits at the ladder's average price − 2 × N.
  - A close below the 10-session low is the System 1 exit for the ladder.

Average price, stop-loss, and next trigger are derived from the unit
entries on every read, so they can never drift from the ladder state.
The ladder only gains a unit through :func:`apply_add`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from turtledesk.errors import InsufficientData, MaxUnitsReached
from turtledesk.market.models import BrokerPosition
from turtledesk.risk.position_sizer import AccountRiskBudget, is_valid_n, size_position
from turtledesk.strategy.models import (
    ADD_ON,
    NEW_ENTRY_BREAKDOWN,
    STOP_LOSS,
    AddOnDetails,
    Signal,
    StopLossDetails,
    utc_now,
)
from turtledesk.strategy.signals import classify_strength

logger = logging.getLogger("turtledesk")

DEFAULT_MAX_UNITS = 4
ADD_STEP_N = 0.5
STOP_DISTANCE_N = 2.0

LadderState = Literal["unit1", "unit2", "unit3", "unit4", "stopped"]
NSource = Literal["history", "trade_record", "fallback"]


@dataclass(frozen=True)
class UnitEntry:
    """One filled tranche of the ladder."""

    level: int
    price: float
    quantity: float
    timestamp: datetime = field(default_factory=utc_now, compare=False)
    execution_id: Optional[str] = None


@dataclass
class PositionLadder:
    """Per-instrument pyramiding state.

    ``n`` is the volatility unit used for all ladder math; ``latest_n`` is
    the most recent fresh computation (they differ only when volatility is
    frozen at entry).  ``n_degraded`` marks a fallback N that must not be
    treated as a measured value.
    """

    instrument_id: str
    original_entry_price: float
    n: Optional[float]
    unit_size: float
    unit_entries: list[UnitEntry] = field(default_factory=list)
    max_units: int = DEFAULT_MAX_UNITS
    name: str = ""
    broker_quantity: float = 0.0
    current_price: float = 0.0
    latest_n: Optional[float] = None
    n_source: NSource = "history"
    n_degraded: bool = False
    stopped: bool = False
    last_volume_ratio: Optional[float] = None
    exit_low10: Optional[float] = None
    created_at: datetime = field(default_factory=utc_now, compare=False)
    last_sync_at: datetime = field(default_factory=utc_now, compare=False)

    # ── Derived state ────────────────────────────────────────────────────

    @property
    def current_units(self) -> int:
        return len(self.unit_entries)

    @property
    def total_quantity(self) -> float:
        return sum(e.quantity for e in self.unit_entries)

    @property
    def has_valid_n(self) -> bool:
        return is_valid_n(self.n)

    @property
    def current_average_price(self) -> float:
        """Quantity-weighted average of the unit entry prices."""
        total = self.total_quantity
        if total <= 0:
            return self.original_entry_price
        return sum(e.price * e.quantity for e in self.unit_entries) / total

    @property
    def current_stop_loss(self) -> Optional[float]:
        """Average price − 2N, or ``None`` without a valid N."""
        if not self.has_valid_n:
            return None
        return self.current_average_price - STOP_DISTANCE_N * self.n

    @property
    def last_entry_price(self) -> float:
        if self.unit_entries:
            return self.unit_entries[-1].price
        return self.original_entry_price

    @property
    def next_add_trigger_price(self) -> Optional[float]:
        """Last entry + 0.5N; ``None`` at max units or without a valid N."""
        if self.current_units >= self.max_units or not self.has_valid_n:
            return None
        return self.last_entry_price + ADD_STEP_N * self.n

    @property
    def can_add(self) -> bool:
        return not self.stopped and self.current_units < self.max_units

    @property
    def state(self) -> LadderState:
        if self.stopped:
            return "stopped"
        return f"unit{self.current_units}"  # type: ignore[return-value]

    @property
    def risk_amount(self) -> Optional[float]:
        """Loss if the whole ladder stops out at the current stop."""
        if not self.has_valid_n:
            return None
        return self.total_quantity * STOP_DISTANCE_N * self.n

    def summary(self) -> dict:
        """JSON-ready view of the ladder for the API and sinks."""
        avg = self.current_average_price
        risk = self.risk_amount
        return {
            "instrument_id": self.instrument_id,
            "name": self.name,
            "state": self.state,
            "current_units": self.current_units,
            "max_units": self.max_units,
            "unit_size": self.unit_size,
            "total_quantity": self.total_quantity,
            "broker_quantity": self.broker_quantity,
            "original_entry_price": self.original_entry_price,
            "current_average_price": avg,
            "current_stop_loss": self.current_stop_loss,
            "next_add_trigger_price": self.next_add_trigger_price,
            "current_price": self.current_price,
            "n": self.n,
            "latest_n": self.latest_n,
            "n_source": self.n_source,
            "n_degraded": self.n_degraded,
            "exit_low10": self.exit_low10,
            "risk_amount": risk,
            "risk_pct": (risk / (avg * self.total_quantity) * 100.0) if risk and avg else None,
            "can_add": self.can_add,
            "unit_entries": [
                {
                    "level": e.level,
                    "price": e.price,
                    "quantity": e.quantity,
                    "timestamp": e.timestamp.isoformat(),
                    "execution_id": e.execution_id,
                }
                for e in self.unit_entries
            ],
            "last_sync_at": self.last_sync_at.isoformat(),
        }


def _require_n(ladder: PositionLadder) -> float:
    if not ladder.has_valid_n:
        raise InsufficientData(f"{ladder.instrument_id}: ladder has no valid N ({ladder.n!r})")
    return ladder.n  # type: ignore[return-value]


# ── Construction ─────────────────────────────────────────────────────────


def bootstrap_ladder(
    position: BrokerPosition,
    instrument_id: str,
    n: Optional[float],
    n_source: NSource = "history",
    n_degraded: bool = False,
    max_units: int = DEFAULT_MAX_UNITS,
    timestamp: Optional[datetime] = None,
) -> PositionLadder:
    """Create a one-unit ladder from a broker holding.

    The whole held quantity becomes unit 1 at the broker's average price,
    and that quantity becomes the unit size for later add-ons.
    """
    if max_units < 1:
        raise ValueError(f"max_units must be at least 1, got {max_units}")
    now = timestamp or utc_now()
    return PositionLadder(
        instrument_id=instrument_id,
        name=position.name,
        original_entry_price=position.avg_price,
        n=n,
        latest_n=None if n_degraded else n,
        n_source=n_source,
        n_degraded=n_degraded,
        unit_size=position.quantity,
        unit_entries=[
            UnitEntry(level=1, price=position.avg_price, quantity=position.quantity, timestamp=now)
        ],
        max_units=max_units,
        broker_quantity=position.quantity,
        current_price=position.current_price,
        created_at=now,
        last_sync_at=now,
    )


# ── Add-on ───────────────────────────────────────────────────────────────


def check_add_signal(
    ladder: PositionLadder,
    current_price: float,
    budget: Optional[AccountRiskBudget] = None,
    timestamp: Optional[datetime] = None,
) -> Optional[Signal]:
    """Return an add-on signal when *current_price* reaches the next trigger.

    Does not mutate *ladder*.  The projection assumes the new unit fills at
    *current_price*.  With a *budget*, the signal carries a sizing result
    computed at the projected average price.

    Raises:
        InsufficientData: If the ladder has no valid N (or sizing fails).
    """
    n = _require_n(ladder)
    if ladder.stopped:
        return None
    if ladder.current_units >= ladder.max_units:
        logger.debug(
            "%s: max units (%d) reached, add-on suppressed",
            ladder.instrument_id, ladder.max_units,
        )
        return None

    trigger = ladder.next_add_trigger_price
    if trigger is None or current_price < trigger:
        return None

    total = ladder.total_quantity
    add_qty = ladder.unit_size
    projected_qty = total + add_qty
    projected_avg = (ladder.current_average_price * total + current_price * add_qty) / projected_qty
    add_level = ladder.current_units + 1

    sizing = size_position(projected_avg, n, budget) if budget is not None else None

    logger.info(
        "%s: add-on level %d at %g (trigger %g), projected avg %g",
        ladder.instrument_id, add_level, current_price, trigger, projected_avg,
    )
    return Signal(
        kind=ADD_ON,
        instrument_id=ladder.instrument_id,
        trigger_price=current_price,
        reference_level=trigger,
        strength=classify_strength(ladder.last_volume_ratio),
        timestamp=timestamp or utc_now(),
        sizing=sizing,
        add_on=AddOnDetails(
            add_level=add_level,
            add_quantity=add_qty,
            projected_average_price=projected_avg,
            projected_stop_loss=projected_avg - STOP_DISTANCE_N * n,
            projected_total_quantity=projected_qty,
            next_add_price_after=(
                current_price + ADD_STEP_N * n if add_level < ladder.max_units else None
            ),
            risk_after_add=projected_qty * STOP_DISTANCE_N * n,
        ),
        degraded=ladder.n_degraded,
    )


def apply_add(
    ladder: PositionLadder,
    execution_price: float,
    execution_id: Optional[str] = None,
    quantity: Optional[float] = None,
    timestamp: Optional[datetime] = None,
) -> PositionLadder:
    """Record a confirmed add-on fill and return the (mutated) ladder.

    A fill whose *execution_id* is already recorded is ignored, so
    re-delivered confirmations cannot add a unit twice.

    Raises:
        ValueError: If the ladder is stopped or the price is non-positive.
        InsufficientData: If the ladder has no valid N.
        MaxUnitsReached: If the ladder is already full.
    """
    if execution_id is not None and any(
        e.execution_id == execution_id for e in ladder.unit_entries
    ):
        logger.info(
            "%s: execution %s already applied, ignoring",
            ladder.instrument_id, execution_id,
        )
        return ladder

    if ladder.stopped:
        raise ValueError(f"{ladder.instrument_id}: cannot add to a stopped ladder")
    if execution_price <= 0:
        raise ValueError(f"execution_price must be positive, got {execution_price}")
    _require_n(ladder)
    if ladder.current_units >= ladder.max_units:
        raise MaxUnitsReached(
            f"{ladder.instrument_id}: already at {ladder.max_units} units"
        )

    level = ladder.current_units + 1
    ladder.unit_entries.append(
        UnitEntry(
            level=level,
            price=execution_price,
            quantity=quantity if quantity is not None else ladder.unit_size,
            timestamp=timestamp or utc_now(),
            execution_id=execution_id,
        )
    )
    logger.info(
        "%s: unit %d filled at %g — avg %g, stop %g, next add %s",
        ladder.instrument_id, level, execution_price,
        ladder.current_average_price, ladder.current_stop_loss,
        ladder.next_add_trigger_price,
    )
    return ladder


# ── Stop-loss ────────────────────────────────────────────────────────────


def check_stop_loss_signal(
    ladder: PositionLadder,
    current_price: float,
    timestamp: Optional[datetime] = None,
) -> Optional[Signal]:
    """Return a stop-loss signal when *current_price* ≤ the ladder stop.

    Raises ``InsufficientData`` if the ladder has no valid N.
    """
    _require_n(ladder)
    if ladder.stopped:
        return None

    stop = ladder.current_stop_loss
    if current_price > stop:
        return None

    avg = ladder.current_average_price
    total = ladder.total_quantity
    loss = (avg - current_price) * total
    logger.warning(
        "%s: stop-loss hit at %g (stop %g, avg %g), loss %g",
        ladder.instrument_id, current_price, stop, avg, loss,
    )
    return Signal(
        kind=STOP_LOSS,
        instrument_id=ladder.instrument_id,
        trigger_price=current_price,
        reference_level=stop,
        strength="strong",
        timestamp=timestamp or utc_now(),
        stop_loss=StopLossDetails(
            stop_loss_price=stop,
            average_price=avg,
            total_quantity=total,
            loss_amount=loss,
        ),
        degraded=ladder.n_degraded,
    )


def mark_stopped(ladder: PositionLadder) -> PositionLadder:
    """Move the ladder to its terminal ``stopped`` state."""
    ladder.stopped = True
    return ladder


# ── System 1 exit ────────────────────────────────────────────────────────


def check_exit_signal(
    ladder: PositionLadder,
    current_price: float,
    timestamp: Optional[datetime] = None,
) -> Optional[Signal]:
    """Return a breakdown signal when *current_price* < the 10-session low.

    Uses ``exit_low10`` from the last reconciliation; without it (history
    unavailable that day) no exit is evaluated.  Independent of N.
    """
    if ladder.stopped or ladder.exit_low10 is None:
        return None
    if current_price >= ladder.exit_low10:
        return None

    logger.warning(
        "%s: held position closed below the 10-session low (%g < %g)",
        ladder.instrument_id, current_price, ladder.exit_low10,
    )
    return Signal(
        kind=NEW_ENTRY_BREAKDOWN,
        instrument_id=ladder.instrument_id,
        trigger_price=current_price,
        reference_level=ladder.exit_low10,
        strength=classify_strength(ladder.last_volume_ratio),
        timestamp=timestamp or utc_now(),
    )
