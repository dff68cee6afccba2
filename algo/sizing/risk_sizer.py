"""按保证金 * 杠杆 * 单笔风险比例计算下单数量。"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.schema import RiskConfig
from shared.models.models import SizingResult
from shared.utils.precision import floor_to_decimals


@dataclass(frozen=True)
class RiskSizer:
    leverage: float = 1.0
    risk_per_trade: float = 0.02
    max_portfolio_allocation: float = 0.4
    size_decimals: int = 2

    @classmethod
    def from_config(cls, cfg: RiskConfig) -> "RiskSizer":
        return cls(
            leverage=cfg.leverage,
            risk_per_trade=cfg.risk_per_trade,
            max_portfolio_allocation=cfg.max_portfolio_allocation,
            size_decimals=cfg.size_decimals,
        )

    def size(self, total_collateral: float, current_price: float, min_step: float) -> SizingResult:
        """计算本笔可下单数量与总仓位资金上限。

        数量只向下截断到合约精度，再与交易所最小步长取较大者。
        """
        if current_price <= 0:
            raise ValueError("current_price must be > 0")
        buying_power = max(0.0, float(total_collateral)) * self.leverage
        desired_value = buying_power * self.risk_per_trade
        desired_size = floor_to_decimals(desired_value / current_price, self.size_decimals)
        trade_size = max(desired_size, float(min_step))
        return SizingResult(
            trade_size_base=trade_size,
            max_allowed_capital=max(0.0, float(total_collateral)) * self.max_portfolio_allocation,
            desired_value=desired_value,
        )
