"""均值回归交易引擎（TradingEngine）。

目标是“一眼能看懂”：配置 → 端口（行情/执行） → 指标/风控/执行 → 调度。

单个 tick：
    拉价格/账户/持仓/步长 → 指标更新 → 决策 → 最多一次下单 → 结束。
数据类错误只让当前 tick 退化为“不操作”，下一次 tick 自动重试。
"""

from __future__ import annotations

import asyncio
import math
from typing import Any

from algo.factors.signal_engine import SignalEngine
from algo.risk.position_manager import PositionManager
from algo.sizing.risk_sizer import RiskSizer
from broker.ports import ExecutionPort, MarketDataPort
from engine.scheduler import StrategyScheduler
from shared.config.config_loader import load_config
from shared.config.schema import AppConfig, RiskConfig, SchedulerConfig, VenueConfig
from shared.errors import DataUnavailable, ExecutionFailure, FatalInit, TradingError
from shared.models.models import (
    AccountState,
    Action,
    PriceQuote,
    TickResult,
)
from shared.utils.logging import setup_logger


class TradingEngine:
    """一个交易会话：持有指标引擎、持仓管理器与调度器。

    Parameters
    ----------
    risk_cfg:
        指标与风控参数。
    market_data:
        行情/账户端口。
    execution:
        下单端口。
    scheduler_cfg:
        调度参数（间隔、最大 tick 数）。
    """

    def __init__(
        self,
        *,
        risk_cfg: RiskConfig | None,
        market_data: MarketDataPort | None,
        execution: ExecutionPort | None,
        scheduler_cfg: SchedulerConfig | None = None,
    ):
        self.logger = setup_logger("engine")
        if risk_cfg is None:
            raise FatalInit("risk config is required")
        if market_data is None or execution is None:
            raise FatalInit("market data and execution ports are required")

        self.risk_cfg = risk_cfg
        self.market_data = market_data
        self.execution = execution
        sched_cfg = scheduler_cfg or SchedulerConfig()

        self.signal = SignalEngine(period=risk_cfg.period, max_window=risk_cfg.max_window)
        self.positions = PositionManager(risk_cfg, sizer=RiskSizer.from_config(risk_cfg))
        self.scheduler = StrategyScheduler(
            interval_s=sched_cfg.interval_s,
            max_ticks=sched_cfg.max_ticks,
            on_stop=self.reset_session,
        )

        self.market_id: str | None = None
        self.market_name: str | None = None
        self.last_result: TickResult | None = None

    # ------------------------------------------------------------------
    # 构建
    # ------------------------------------------------------------------
    @classmethod
    def from_config(cls, cfg: AppConfig) -> "TradingEngine":
        venue = cls._build_venue(cfg.venue, market_id=cfg.market_id)
        return cls(
            risk_cfg=cfg.risk,
            market_data=venue,
            execution=venue,
            scheduler_cfg=cfg.scheduler,
        )

    @classmethod
    def from_config_path(cls, path: str) -> tuple["TradingEngine", AppConfig]:
        try:
            cfg = load_config(path)
        except (FileNotFoundError, ValueError) as exc:
            raise FatalInit(f"cannot load config {path}: {exc}") from exc
        return cls.from_config(cfg), cfg

    @staticmethod
    def _build_venue(venue_cfg: VenueConfig, *, market_id: str) -> Any:
        if venue_cfg.type == "ccxt":
            from broker.ccxt_venue import CcxtPerpVenue

            try:
                return CcxtPerpVenue.from_config(venue_cfg)
            except (ValueError, AttributeError) as exc:
                raise FatalInit(f"cannot build ccxt venue: {exc}") from exc

        from broker.paper_venue import PaperVenue

        return PaperVenue.from_config(venue_cfg, market_id=market_id)

    # ------------------------------------------------------------------
    # 控制面
    # ------------------------------------------------------------------
    def start(self, market_id: str | int) -> asyncio.Task | None:
        """开始对某个市场按固定间隔运行策略。

        Raises
        ------
        FatalInit
            市场 id 非法或不在事件循环中调用。
        """
        if self.scheduler.is_running():
            self.logger.info("Trading loop already running for market %s.", self.market_id)
            return None
        if market_id is None or str(market_id).strip() == "":
            raise FatalInit("market_id is required")
        self.market_id = str(market_id)
        self.logger.info("Starting trading loop for market %s (config %s).", self.market_id, self.risk_cfg.version)
        try:
            return self.scheduler.start(self.run_tick)
        except RuntimeError as exc:
            raise FatalInit(f"cannot start scheduler: {exc}", market_id=self.market_id) from exc

    def stop(self) -> None:
        self.scheduler.stop()

    def is_running(self) -> bool:
        return self.scheduler.is_running()

    async def wait_closed(self) -> None:
        await self.scheduler.wait_closed()

    def reset_session(self) -> None:
        """清空价格窗口、手续费缓存与入场价；跨 start/stop 的策略状态没有意义。"""
        self.signal.reset()
        self.positions.reset()
        self.logger.info("Strategy session state reset.")

    def status(self) -> dict[str, Any]:
        """当前运行状态快照。"""
        last = self.last_result
        indicator = self.signal.last
        return {
            "running": self.is_running(),
            "market_id": self.market_id,
            "market_name": self.market_name,
            "window": len(self.signal),
            "period": self.signal.period,
            "mean": indicator.mean,
            "dispersion": indicator.dispersion,
            "z_score": indicator.z_score,
            "position_size": self.positions.position.size_base,
            "entry_price": self.positions.entry_price,
            "taker_fee": self.positions.fee_cache.taker_fee_fraction,
            "ticks": self.scheduler.tick_count,
            "last_action": last.action.kind.value if last else None,
            "last_error": last.error if last else None,
        }

    # ------------------------------------------------------------------
    # 单个 tick
    # ------------------------------------------------------------------
    async def run_tick(self) -> TickResult:
        market_id = self.market_id
        if market_id is None:
            raise FatalInit("run_tick called before start()")
        try:
            result = await self._tick(market_id)
        except DataUnavailable as exc:
            self.logger.error("Data unavailable, skipping tick: %s", exc)
            result = TickResult(action=Action.none("data unavailable"), error=str(exc))
        except ExecutionFailure as exc:
            self.logger.error("Order not confirmed, state unchanged: %s", exc)
            result = TickResult(
                action=Action.none("execution failed"),
                indicator=self.signal.last,
                error=str(exc),
            )
        except TradingError as exc:
            self.logger.warning("Tick aborted: %s", exc)
            result = TickResult(action=Action.none(str(exc)), error=str(exc))
        self.last_result = result
        return result

    async def _tick(self, market_id: str) -> TickResult:
        if self.market_name is None:
            self.market_name = await self.market_data.get_market_name(market_id) or f"market {market_id}"
        name = self.market_name

        account = await self._fetch_account()
        quote = await self._fetch_price(market_id)
        min_step = await self._fetch_min_step(market_id)
        snapshot = await self.market_data.get_position(market_id)
        price = quote.price
        self.logger.info(
            "%s price %.4f (conf %.4f, slot %d), collateral %.2f",
            name,
            price,
            quote.confidence,
            quote.slot,
            account.total_collateral,
        )

        indicator = self.signal.observe(price)
        if indicator.mean is None:
            self.logger.info("Window %d/%d, not enough data yet.", len(self.signal), self.signal.period)
        else:
            self.logger.info(
                "EMA %.4f, dispersion %.4f, z %s",
                indicator.mean,
                indicator.dispersion,
                "n/a" if indicator.z_score is None else f"{indicator.z_score:.4f}",
            )

        position = self.positions.sync_position(snapshot)
        await self.positions.ensure_fee(self.market_data, market_id)

        action = self.positions.evaluate(indicator, account, price, min_step)
        sizing = self.positions.last_sizing
        if sizing is not None:
            self.logger.debug(
                "Sizing: trade %.4f base, max capital %.2f, desired value %.2f",
                sizing.trade_size_base,
                sizing.max_allowed_capital,
                sizing.desired_value,
            )
        self.logger.info("Position %+.4f, action %s (%s)", position.size_base, action.kind.value, action.reason)

        executed = False
        if not action.is_none:
            executed = await self.positions.execute(action, self.execution, market_id, price)
        return TickResult(action=action, indicator=indicator, price=price, executed=executed)

    async def _fetch_account(self) -> AccountState:
        account = await self.market_data.get_account_state()
        if account is None:
            raise DataUnavailable("account state unavailable")
        if account.total_collateral <= 0:
            raise DataUnavailable(f"total collateral is {account.total_collateral:.2f}")
        return account

    async def _fetch_price(self, market_id: str) -> PriceQuote:
        quote = await self.market_data.get_price(market_id)
        if quote is None or not math.isfinite(quote.price) or quote.price <= 0:
            raise DataUnavailable("oracle price unavailable", market_id=market_id)
        return quote

    async def _fetch_min_step(self, market_id: str) -> float:
        step = await self.market_data.get_min_order_step(market_id)
        if step is None or step <= 0:
            raise DataUnavailable("min order step unavailable", market_id=market_id)
        return float(step)
