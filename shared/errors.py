"""交易核心的错误分层。

约定：
- 数据/执行类错误只在单个 tick 内部被捕获，最终退化为“不操作”；
- 只有初始化错误（FatalInit）会传播给调用方。
"""

from __future__ import annotations


class TradingError(Exception):
    """交易核心错误基类。"""

    def __init__(self, message: str, *, market_id: str | int | None = None):
        super().__init__(message)
        self.message = message
        self.market_id = market_id

    def __str__(self) -> str:
        if self.market_id is None:
            return self.message
        return f"[market {self.market_id}] {self.message}"


class DataUnavailable(TradingError):
    """价格/账户/手续费/步长等数据拉取失败或为空。"""


class IndeterminateState(TradingError):
    """已持仓但缺少入场价或手续费，无法安全评估平仓条件。"""


class ExecutionFailure(TradingError):
    """下单/平仓被拒绝或抛错（视为订单未确认）。"""


class FatalInit(TradingError):
    """启动阶段失败（配置缺失/非法、端口缺失等），调度器不会进入 Running。"""
