"""行情/执行端口抽象。

交易核心只依赖这两个接口；钱包、链上连接、账户订阅、交易签名广播
都由外部实现负责。实现方应把底层异常翻译为 DataUnavailable / ExecutionFailure。
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from shared.models.models import AccountState, Direction, PositionSnapshot, PriceQuote


class MarketDataPort(ABC):
    """行情与账户数据源。

    所有方法在数据不可得时返回 None（或抛 DataUnavailable）。
    """

    @abstractmethod
    async def get_price(self, market_id: str) -> PriceQuote | None:
        """最新预言机价格。"""

    @abstractmethod
    async def get_account_state(self) -> AccountState | None:
        """账户保证金快照。"""

    @abstractmethod
    async def get_position(self, market_id: str) -> PositionSnapshot | None:
        """当前持仓；无持仓返回 None。"""

    @abstractmethod
    async def get_taker_fee(self, market_id: str) -> float | None:
        """taker 手续费比例，例如 0.001 表示 0.1%。"""

    @abstractmethod
    async def get_min_order_step(self, market_id: str) -> float | None:
        """最小下单步长（基础币）。"""

    async def get_market_name(self, market_id: str) -> str | None:
        """可读的市场名（例如 SOL-PERP），仅用于日志。"""
        return None


class ExecutionPort(ABC):
    """下单执行端口。"""

    @abstractmethod
    async def place_market_order(
        self,
        market_id: str,
        direction: Direction,
        size_base: float,
        reduce_only: bool = False,
    ) -> str:
        """市价单，返回交易 id；被拒绝时抛 ExecutionFailure。"""

    @abstractmethod
    async def close_position(self, market_id: str) -> str | None:
        """平掉全部持仓，返回交易 id；无持仓时返回 None。"""
