"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/越界参数在实盘里“隐蔽爆炸”；
- 策略参数集中在一个带版本号的 RiskConfig 里，参数选择是配置而不是代码分支。
"""

from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RiskConfig(BaseModel):
    """均值回归 + 风控参数（不可变）。"""
    version: str = "ema-v2"

    # 指标
    period: int = 21
    max_window: int = 90
    entry_threshold: float = 2.0
    exit_threshold: float = 0.5

    # 仓位与风控
    risk_per_trade: float = 0.02
    max_portfolio_allocation: float = 0.4
    min_profit_fraction: float = 0.002
    max_loss_fraction: float = 0.05
    take_profit_fraction: float = 0.05
    leverage: float = 1.0
    size_decimals: int = 2

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_ranges(self) -> "RiskConfig":
        if self.period < 2:
            raise ValueError("risk.period must be >= 2")
        if self.max_window < self.period:
            raise ValueError("risk.max_window must be >= risk.period")
        if self.entry_threshold <= 0 or self.exit_threshold <= 0:
            raise ValueError("risk.entry_threshold/exit_threshold must be > 0")
        if self.exit_threshold >= self.entry_threshold:
            raise ValueError("risk.exit_threshold must be < risk.entry_threshold")
        for name in (
            "risk_per_trade",
            "max_portfolio_allocation",
            "max_loss_fraction",
            "take_profit_fraction",
        ):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ValueError(f"risk.{name} must be in (0, 1]")
        if not 0 <= self.min_profit_fraction < 1:
            raise ValueError("risk.min_profit_fraction must be in [0, 1)")
        if self.leverage <= 0:
            raise ValueError("risk.leverage must be > 0")
        if self.size_decimals < 0:
            raise ValueError("risk.size_decimals must be >= 0")
        return self


class SchedulerConfig(BaseModel):
    """调度配置。"""
    interval_s: float = Field(default=5.0, gt=0)
    max_ticks: Optional[int] = Field(default=None, gt=0)
    model_config = ConfigDict(extra="forbid")


class VenueConfig(BaseModel):
    """行情/执行端口配置。

    - paper：本地纸面撮合（随机游走预言机价格）
    - ccxt：通过 ccxt 连接永续合约交易所
    """
    type: Literal["paper", "ccxt"] = "paper"

    # ccxt
    exchange_id: str = "binanceusdm"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    sandbox: bool = True
    # market_id -> 交易所 symbol，例如 {"0": "SOL/USDT:USDT"}
    symbol_map: Dict[str, str] = Field(default_factory=dict)

    # paper
    initial_collateral: float = Field(default=1000.0, ge=0)
    taker_fee: float = Field(default=0.001, ge=0)
    min_order_step: float = Field(default=0.01, gt=0)
    start_price: float = Field(default=100.0, gt=0)
    volatility: float = Field(default=0.002, ge=0)
    seed: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class AppConfig(BaseModel):
    """应用总配置。"""
    market_id: str
    mode: Literal["dry-run", "paper", "live"] = "paper"

    risk: RiskConfig = Field(default_factory=RiskConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    venue: VenueConfig = Field(default_factory=VenueConfig)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "market_id" in data and data["market_id"] is not None:
            data["market_id"] = str(data["market_id"])
        mode = data.get("mode")
        if isinstance(mode, str):
            data["mode"] = mode.replace("_", "-").lower()
        return data

    @model_validator(mode="after")
    def _live_requires_exchange(self) -> "AppConfig":
        if self.mode == "live" and self.venue.type != "ccxt":
            raise ValueError("mode=live requires venue.type=ccxt")
        return self
