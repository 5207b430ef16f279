"""Strategy data models — typed representations for strategy outputs."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

from turtledesk.risk.position_sizer import SizingResult


SignalKind = Literal["new_entry_breakout", "new_entry_breakdown", "add_on", "stop_loss"]
Strength = Literal["strong", "medium", "weak"]

NEW_ENTRY_BREAKOUT = "new_entry_breakout"
NEW_ENTRY_BREAKDOWN = "new_entry_breakdown"
ADD_ON = "add_on"
STOP_LOSS = "stop_loss"

# Lower value = handled first
SIGNAL_PRIORITY: dict[str, int] = {
    STOP_LOSS: 0,
    ADD_ON: 1,
    NEW_ENTRY_BREAKOUT: 2,
    NEW_ENTRY_BREAKDOWN: 2,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IndicatorSet:
    """Turtle indicators derived from one price series. Never mutated."""

    n: float
    high20: float
    low10: float
    low20: float
    high52w: float
    low52w: float
    sessions_52w: int
    volume: float
    avg_volume20: float
    volume_ratio: float


@dataclass(frozen=True)
class AddOnDetails:
    """Projected ladder state if the add-on unit is bought."""

    add_level: int
    add_quantity: float
    projected_average_price: float
    projected_stop_loss: float
    projected_total_quantity: float
    next_add_price_after: Optional[float]
    risk_after_add: float


@dataclass(frozen=True)
class StopLossDetails:
    """Loss figures attached to a stop-loss signal."""

    stop_loss_price: float
    average_price: float
    total_quantity: float
    loss_amount: float


@dataclass(frozen=True)
class Signal:
    """A trade signal emitted by one evaluation.

    ``kind`` discriminates the variant; ``add_on`` / ``stop_loss`` carry the
    variant-specific details and ``sizing`` the risk-sized order, when
    applicable.
    """

    kind: SignalKind
    instrument_id: str
    trigger_price: float
    reference_level: float
    strength: Strength
    timestamp: datetime = field(default_factory=utc_now)
    sizing: Optional[SizingResult] = None
    add_on: Optional[AddOnDetails] = None
    stop_loss: Optional[StopLossDetails] = None
    degraded: bool = False

    @property
    def priority(self) -> int:
        return SIGNAL_PRIORITY[self.kind]

    @property
    def is_new_entry(self) -> bool:
        return self.kind in (NEW_ENTRY_BREAKOUT, NEW_ENTRY_BREAKDOWN)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["priority"] = self.priority
        return data


@dataclass(frozen=True)
class Exclusion:
    """An instrument or ladder left out of signal emission for one run."""

    instrument_id: str
    reason: str
    detail: str = ""
