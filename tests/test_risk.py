"""Tests for the risk sizing engine.

Covers the 2N stop distance, the 1 %-of-price floor, the one-share
minimum, scenario P&L, and argument validation.
"""

import math

import pytest

from turtledesk.errors import InsufficientData
from turtledesk.risk.position_sizer import AccountRiskBudget, is_valid_n, size_position


class TestAccountRiskBudget:
    def test_max_risk(self):
        assert AccountRiskBudget(10_000_000.0, 0.02).max_risk == pytest.approx(200_000.0)

    def test_default_fraction(self):
        assert AccountRiskBudget(1_000_000.0).max_risk == pytest.approx(20_000.0)


class TestSizePosition:
    """Unit tests for size_position()."""

    def test_basic_sizing(self):
        """10M equity, 2 % risk, N=2,000 at 70,000 → 50 shares."""
        result = size_position(70_000.0, 2_000.0, AccountRiskBudget(10_000_000.0, 0.02))
        # max_risk = 200,000; stop distance = 2N = 4,000; 200,000 / 4,000 = 50
        assert result.quantity == 50
        assert result.stop_distance == pytest.approx(4_000.0)
        assert result.stop_loss_price == pytest.approx(66_000.0)
        assert result.investment_amount == pytest.approx(3_500_000.0)
        assert result.actual_risk == pytest.approx(200_000.0)
        assert result.n == 2_000.0

    def test_quantity_floors(self):
        result = size_position(70_000.0, 1_500.0, AccountRiskBudget(1_000_000.0, 0.02))
        # 20,000 / 3,000 = 6.67 → 6
        assert result.quantity == 6
        assert result.actual_risk <= result.max_risk

    def test_stop_distance_floor_one_percent_of_price(self):
        """A tiny N is replaced by 1 % of price as the stop distance."""
        result = size_position(70_000.0, 10.0, AccountRiskBudget(1_000_000.0, 0.02))
        assert result.stop_distance == pytest.approx(700.0)
        assert result.quantity == math.floor(20_000.0 / 700.0)

    def test_minimum_one_share(self):
        result = size_position(500_000.0, 20_000.0, AccountRiskBudget(100_000.0, 0.02))
        # 2,000 / 40,000 → 0 → clamped to 1
        assert result.quantity == 1
        assert result.actual_risk > result.max_risk

    def test_scenarios(self):
        result = size_position(70_000.0, 2_000.0, AccountRiskBudget(10_000_000.0, 0.02))
        assert result.scenarios.loss_2n == pytest.approx(-200_000.0)
        assert result.scenarios.breakeven == 0.0
        assert result.scenarios.profit_1n == pytest.approx(100_000.0)
        assert result.scenarios.profit_2n == pytest.approx(200_000.0)

    def test_risk_pct_of_investment(self):
        result = size_position(70_000.0, 2_000.0, AccountRiskBudget(10_000_000.0, 0.02))
        assert result.risk_pct_of_investment == pytest.approx(200_000 / 3_500_000 * 100)

    @pytest.mark.parametrize("bad_n", [None, 0.0, -5.0, float("nan"), float("inf")])
    def test_invalid_n_raises_insufficient_data(self, bad_n):
        with pytest.raises(InsufficientData):
            size_position(70_000.0, bad_n, AccountRiskBudget(1_000_000.0))

    def test_rejects_zero_equity(self):
        with pytest.raises(ValueError, match="equity"):
            size_position(70_000.0, 2_000.0, AccountRiskBudget(0.0))

    def test_rejects_non_positive_price(self):
        with pytest.raises(ValueError, match="current_price"):
            size_position(0.0, 2_000.0, AccountRiskBudget(1_000_000.0))

    def test_rejects_zero_risk_fraction(self):
        with pytest.raises(ValueError, match="risk_fraction"):
            size_position(70_000.0, 2_000.0, AccountRiskBudget(1_000_000.0, 0.0))

    @pytest.mark.parametrize("equity", [1_000_000.0, 10_000_000.0, 33_000_000.0])
    @pytest.mark.parametrize("price", [5_000.0, 70_000.0, 412_000.0])
    @pytest.mark.parametrize("n", [500.0, 1_234.5, 2_000.0, 7_777.0])
    def test_risk_never_exceeds_budget(self, n, price, equity):
        budget = AccountRiskBudget(equity, 0.02)
        stop_distance = max(2.0 * n, 0.01 * price)
        if math.floor(budget.max_risk / stop_distance) < 1:
            pytest.skip("one-share minimum applies")

        result = size_position(price, n, budget)

        assert result.quantity * result.stop_distance <= result.max_risk + 1e-6
        assert result.actual_risk == pytest.approx(result.quantity * result.stop_distance)


class TestIsValidN:
    @pytest.mark.parametrize("value, expected", [
        (2_000.0, True), (1, True), (0, False), (-1.0, False),
        (None, False), (float("nan"), False), (float("inf"), False),
    ])
    def test_values(self, value, expected):
        assert is_valid_n(value) is expected
