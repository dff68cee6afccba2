import sys
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from shared.config.schema import RiskConfig  # noqa: E402


@pytest.fixture
def risk_cfg() -> RiskConfig:
    return RiskConfig(
        period=21,
        max_window=90,
        entry_threshold=2.0,
        exit_threshold=0.5,
        risk_per_trade=0.02,
        max_portfolio_allocation=0.4,
        min_profit_fraction=0.002,
        max_loss_fraction=0.05,
        take_profit_fraction=0.05,
        leverage=1.0,
        size_decimals=2,
    )
