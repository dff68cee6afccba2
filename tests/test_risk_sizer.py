import pytest

from algo.sizing.risk_sizer import RiskSizer
from shared.utils.precision import floor_to_decimals, floor_to_step


def test_size_floors_desired_size_to_precision():
    sizer = RiskSizer(leverage=2.0, risk_per_trade=0.02, max_portfolio_allocation=0.4, size_decimals=2)
    # 1000 * 2 * 0.02 = 40 -> 40 / 17 = 2.3529... -> 2.35
    result = sizer.size(1000.0, 17.0, 0.01)
    assert result.trade_size_base == 2.35
    assert result.desired_value == pytest.approx(40.0)
    assert result.max_allowed_capital == pytest.approx(400.0)


def test_min_step_wins_over_smaller_computed_size():
    sizer = RiskSizer(leverage=1.0, risk_per_trade=0.02, size_decimals=2)
    # 100 * 0.02 = 2 -> 2 / 90 = 0.0222 -> 0.02 < min step 0.1
    result = sizer.size(100.0, 90.0, 0.1)
    assert result.trade_size_base == 0.1


def test_size_never_rounds_up():
    sizer = RiskSizer(leverage=1.0, risk_per_trade=0.1, size_decimals=2)
    # 10 / 3 = 3.3333 -> 3.33；19.99 / 10 = 1.999 -> 1.99
    assert sizer.size(100.0, 3.0, 0.01).trade_size_base == 3.33
    assert sizer.size(199.9, 10.0, 0.01).trade_size_base == 1.99


def test_non_positive_price_rejected():
    with pytest.raises(ValueError):
        RiskSizer().size(1000.0, 0.0, 0.01)


def test_precision_helpers():
    assert floor_to_step(0.239, 0.01) == 0.23
    assert floor_to_step(5.0, 0.5) == 5.0
    assert floor_to_decimals(1.999, 2) == 1.99
    assert floor_to_decimals(7.9, 0) == 7.0
