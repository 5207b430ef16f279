"""Position sizing — pure math, no I/O.

Converts an account risk budget and a volatility-based stop distance into
a share quantity, following the turtle 2N stop rule:

    max_risk      = equity × risk_fraction_per_trade
    stop_distance = max(2 × N, 1 % of price)
    quantity      = max(1, floor(max_risk / stop_distance))
"""

import math
from dataclasses import dataclass
from typing import Optional

from turtledesk.errors import InsufficientData


# Floor on the stop distance as a fraction of price; keeps the division
# bounded when N is close to zero.
MIN_STOP_FRACTION = 0.01


@dataclass(frozen=True)
class AccountRiskBudget:
    """Equity and the fraction of it that may be lost on one position."""

    equity: float
    risk_fraction_per_trade: float = 0.02

    @property
    def max_risk(self) -> float:
        return self.equity * self.risk_fraction_per_trade


@dataclass(frozen=True)
class ScenarioPnL:
    """Profit/loss of the sized position at -2N / 0 / +1N / +2N."""

    loss_2n: float
    breakeven: float
    profit_1n: float
    profit_2n: float


@dataclass(frozen=True)
class SizingResult:
    quantity: int
    investment_amount: float
    max_risk: float
    actual_risk: float
    stop_distance: float
    stop_loss_price: float
    n: float
    scenarios: ScenarioPnL

    @property
    def risk_pct_of_investment(self) -> float:
        """Actual risk as a percentage of the capital deployed."""
        if self.investment_amount == 0:
            return 0.0
        return self.actual_risk / self.investment_amount * 100.0


def is_valid_n(n: Optional[float]) -> bool:
    """``True`` when *n* is a finite, strictly positive number."""
    return n is not None and isinstance(n, (int, float)) and math.isfinite(n) and n > 0


def size_position(
    current_price: float,
    n: Optional[float],
    budget: AccountRiskBudget,
) -> SizingResult:
    """Size a position so a stop-out loses at most the risk budget.

    Args:
        current_price: Expected fill price (e.g. 71_000.0).
        n: Volatility unit (20-session average true range).
        budget: Account equity and per-trade risk fraction.

    Returns:
        ``SizingResult``; quantity is never below one share, so for very
        small budgets ``actual_risk`` may exceed ``max_risk`` by at most
        one share's stop distance.

    Raises:
        InsufficientData: If *n* is missing, NaN, or non-positive.
        ValueError: If price, equity, or risk fraction is non-positive.
    """
    if not is_valid_n(n):
        raise InsufficientData(f"cannot size position without a valid N (got {n!r})")
    if current_price <= 0:
        raise ValueError(f"current_price must be positive, got {current_price}")
    if budget.equity <= 0:
        raise ValueError(f"equity must be positive, got {budget.equity}")
    if budget.risk_fraction_per_trade <= 0:
        raise ValueError(
            f"risk_fraction_per_trade must be positive, got {budget.risk_fraction_per_trade}"
        )

    max_risk = budget.max_risk
    stop_distance = max(2.0 * n, MIN_STOP_FRACTION * current_price)
    quantity = max(1, math.floor(max_risk / stop_distance))

    actual_risk = quantity * stop_distance
    return SizingResult(
        quantity=quantity,
        investment_amount=quantity * current_price,
        max_risk=max_risk,
        actual_risk=actual_risk,
        stop_distance=stop_distance,
        stop_loss_price=current_price - stop_distance,
        n=n,
        scenarios=ScenarioPnL(
            loss_2n=-actual_risk,
            breakeven=0.0,
            profit_1n=quantity * n,
            profit_2n=quantity * 2.0 * n,
        ),
    )
