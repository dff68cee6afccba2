"""核心数据结构：行情/账户快照、指标状态、持仓状态、交易动作。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Direction(Enum):
    """永续合约方向。"""

    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


@dataclass(frozen=True)
class PriceQuote:
    """预言机报价。"""
    price: float
    confidence: float = 0.0
    slot: int = 0


@dataclass(frozen=True)
class AccountState:
    """账户保证金快照。"""
    total_collateral: float
    free_collateral: float
    leverage: float


@dataclass(frozen=True)
class PositionSnapshot:
    """交易所侧的持仓（带符号的基础币数量）。"""
    size_base: float


@dataclass(frozen=True)
class IndicatorState:
    """均值/离散度/z-score；样本不足或离散度为 0 时为 None。"""
    mean: float | None = None
    dispersion: float | None = None
    z_score: float | None = None

    @property
    def ready(self) -> bool:
        return self.z_score is not None


@dataclass
class PositionState:
    """PositionManager 持有的持仓视图。"""
    size_base: float = 0.0
    entry_price: float | None = None

    @property
    def is_flat(self) -> bool:
        return self.size_base == 0

    @property
    def direction(self) -> Direction | None:
        if self.size_base > 0:
            return Direction.LONG
        if self.size_base < 0:
            return Direction.SHORT
        return None


@dataclass
class FeeCache:
    """taker 手续费缓存：一次拉取，整轮运行复用，只在 reset 时失效。"""
    taker_fee_fraction: float | None = None

    def reset(self) -> None:
        self.taker_fee_fraction = None


@dataclass(frozen=True)
class SizingResult:
    """RiskSizer 输出。"""
    trade_size_base: float
    max_allowed_capital: float
    desired_value: float


class ActionKind(Enum):
    NONE = "none"
    ENTER = "enter"
    EXIT = "exit"


@dataclass(frozen=True)
class Action:
    """单个 tick 的决策结果（最多一个交易动作）。"""
    kind: ActionKind
    direction: Direction | None = None
    size_base: float = 0.0
    reason: str | None = None

    @classmethod
    def none(cls, reason: str | None = None) -> "Action":
        return cls(kind=ActionKind.NONE, reason=reason)

    @classmethod
    def enter(cls, direction: Direction, size_base: float, reason: str | None = None) -> "Action":
        return cls(kind=ActionKind.ENTER, direction=direction, size_base=size_base, reason=reason)

    @classmethod
    def exit(cls, reason: str | None = None) -> "Action":
        return cls(kind=ActionKind.EXIT, reason=reason)

    @property
    def is_none(self) -> bool:
        return self.kind is ActionKind.NONE


@dataclass(frozen=True)
class TickResult:
    """一次 tick 的结果汇总（供日志/测试/状态快照）。"""
    action: Action
    indicator: IndicatorState | None = None
    price: float | None = None
    executed: bool = False
    error: str | None = None
