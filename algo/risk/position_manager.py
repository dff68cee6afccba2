"""持仓生命周期与风控决策。

单市场状态机：Flat -> (入场信号) -> Positioned -> (止损 | 止盈 | 信号平仓) -> Flat。
每个 tick 按固定优先级评估，先命中者生效：

1. 指标未就绪（z-score 为 None） -> 不操作；
2. 已持仓：入场价/手续费未知 -> 不操作（且绝不落入入场逻辑）；
   止损 -> 百分比止盈 -> 信号止盈（需覆盖往返手续费 + 最小利润） -> 持有；
3. 空仓：资金占用超上限 / 手续费未知 -> 不操作；z 越过入场阈值 -> 开多/开空。
"""

from __future__ import annotations

from shared.config.schema import RiskConfig
from shared.errors import DataUnavailable, ExecutionFailure, IndeterminateState
from shared.models.models import (
    AccountState,
    Action,
    ActionKind,
    Direction,
    FeeCache,
    IndicatorState,
    PositionSnapshot,
    PositionState,
    SizingResult,
)
from shared.utils.logging import setup_logger
from algo.sizing.risk_sizer import RiskSizer
from broker.ports import ExecutionPort, MarketDataPort


class PositionManager:
    """持仓/入场价/手续费缓存的唯一持有者。

    Parameters
    ----------
    cfg:
        风控与阈值配置。
    sizer:
        下单数量计算器；默认按 cfg 构建。
    """

    def __init__(self, cfg: RiskConfig, sizer: RiskSizer | None = None):
        self.cfg = cfg
        self.sizer = sizer or RiskSizer.from_config(cfg)
        self.logger = setup_logger("position")
        self.position = PositionState()
        self.fee_cache = FeeCache()
        self.last_sizing: SizingResult | None = None

    @property
    def entry_price(self) -> float | None:
        return self.position.entry_price

    # ------------------------------------------------------------------
    # 状态同步
    # ------------------------------------------------------------------
    def sync_position(self, snapshot: PositionSnapshot | None) -> PositionState:
        """用交易所侧持仓刷新本地视图；仓位归零时清掉入场价。"""
        size = float(snapshot.size_base) if snapshot is not None else 0.0
        self.position.size_base = size
        if size == 0 and self.position.entry_price is not None:
            self.logger.info("Position is flat on venue, clearing entry price %.4f.", self.position.entry_price)
            self.position.entry_price = None
        return self.position

    async def ensure_fee(self, market_data: MarketDataPort, market_id: str) -> float | None:
        """拉取并缓存 taker 手续费；失败时保持未知，由决策逻辑兜底。"""
        if self.fee_cache.taker_fee_fraction is not None:
            return self.fee_cache.taker_fee_fraction
        try:
            fee = await market_data.get_taker_fee(market_id)
        except DataUnavailable as exc:
            self.logger.warning("Taker fee unavailable: %s", exc)
            return None
        if fee is None or fee < 0:
            self.logger.warning("Taker fee unavailable for market %s.", market_id)
            return None
        self.fee_cache.taker_fee_fraction = float(fee)
        self.logger.info("Cached taker fee for market %s: %.4f%%", market_id, float(fee) * 100)
        return self.fee_cache.taker_fee_fraction

    def reset(self) -> None:
        """清空会话状态（入场价、手续费缓存）；跨 start/stop 不保留。"""
        self.position = PositionState()
        self.fee_cache.reset()
        self.last_sizing = None

    # ------------------------------------------------------------------
    # 决策
    # ------------------------------------------------------------------
    def evaluate(
        self,
        indicator: IndicatorState,
        account: AccountState,
        current_price: float,
        min_step: float,
    ) -> Action:
        """用自身持有的持仓与手续费缓存做决策，并记录本次 sizing（供日志/状态查询）。"""
        action, sizing = self._decide(indicator, self.position, account, current_price, self.fee_cache, min_step)
        self.last_sizing = sizing
        return action

    def decide(
        self,
        indicator: IndicatorState,
        position: PositionState,
        account: AccountState,
        current_price: float,
        fee_cache: FeeCache,
        min_step: float,
    ) -> Action:
        """纯决策：不修改任何状态，只返回一个 Action。"""
        return self._decide(indicator, position, account, current_price, fee_cache, min_step)[0]

    def _decide(
        self,
        indicator: IndicatorState,
        position: PositionState,
        account: AccountState,
        current_price: float,
        fee_cache: FeeCache,
        min_step: float,
    ) -> tuple[Action, SizingResult | None]:
        z = indicator.z_score
        if z is None:
            return Action.none("indicator not ready"), None

        sizing = self.sizer.size(account.total_collateral, current_price, min_step)
        if not position.is_flat:
            return self._decide_exit(z, position, current_price, fee_cache, sizing), sizing
        return self._decide_entry(z, position, current_price, fee_cache, sizing), sizing

    def _decide_exit(
        self,
        z: float,
        position: PositionState,
        current_price: float,
        fee_cache: FeeCache,
        sizing: SizingResult,
    ) -> Action:
        entry = position.entry_price
        fee = fee_cache.taker_fee_fraction
        if entry is None or fee is None:
            missing = "entry price" if entry is None else "taker fee"
            err = IndeterminateState(f"positioned ({position.size_base:+.4f}) but {missing} is unknown, holding")
            self.logger.warning("%s", err)
            return Action.none(str(err))

        size = position.size_base
        # size 带符号：空头时价格下跌为正收益
        pnl = size * (current_price - entry)
        initial_value = abs(size) * entry
        pnl_pct = pnl / initial_value if initial_value > 0 else 0.0
        self.logger.debug(
            "Position %+.4f @ %.4f, est. PnL %.4f (%+.2f%%)", size, entry, pnl, pnl_pct * 100
        )

        if pnl < 0 and abs(pnl) >= initial_value * self.cfg.max_loss_fraction:
            return Action.exit(f"stop-loss: pnl {pnl:.4f} ({pnl_pct:+.2%}) <= -{self.cfg.max_loss_fraction:.2%}")

        if initial_value > 0 and pnl_pct >= self.cfg.take_profit_fraction:
            return Action.exit(f"take-profit: pnl {pnl_pct:+.2%} >= {self.cfg.take_profit_fraction:.2%}")

        reverted = z >= -self.cfg.exit_threshold if size > 0 else z <= self.cfg.exit_threshold
        if reverted:
            round_trip_fee = sizing.desired_value * fee * 2
            required = round_trip_fee + initial_value * self.cfg.min_profit_fraction
            if pnl > required:
                return Action.exit(f"signal take-profit: z {z:.4f}, pnl {pnl:.4f} > {required:.4f}")
            self.logger.info(
                "z reverted (%.4f) but pnl %.4f does not cover fees + min profit %.4f, holding.",
                z,
                pnl,
                required,
            )
        return Action.none("hold")

    def _decide_entry(
        self,
        z: float,
        position: PositionState,
        current_price: float,
        fee_cache: FeeCache,
        sizing: SizingResult,
    ) -> Action:
        capital_usage = abs(position.size_base) * current_price
        if capital_usage >= sizing.max_allowed_capital:
            self.logger.info(
                "Skipping entry: capital usage %.2f >= max allocation %.2f",
                capital_usage,
                sizing.max_allowed_capital,
            )
            return Action.none("allocation ceiling reached")

        if fee_cache.taker_fee_fraction is None:
            self.logger.warning("Skipping entry: taker fee unknown.")
            return Action.none("taker fee unknown")

        if z < -self.cfg.entry_threshold:
            return Action.enter(
                Direction.LONG,
                sizing.trade_size_base,
                f"z {z:.4f} < {-self.cfg.entry_threshold}",
            )
        if z > self.cfg.entry_threshold:
            return Action.enter(
                Direction.SHORT,
                sizing.trade_size_base,
                f"z {z:.4f} > {self.cfg.entry_threshold}",
            )
        return Action.none("no signal")

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------
    async def execute(
        self,
        action: Action,
        execution: ExecutionPort,
        market_id: str,
        current_price: float,
    ) -> bool:
        """执行动作并在确认后更新状态。

        Returns
        -------
        bool
            是否确实发出并确认了一笔交易。

        Raises
        ------
        ExecutionFailure
            下单/平仓失败；此时持仓与入场价保持不变（入场失败时入场价保持为空）。
        """
        if action.kind is ActionKind.ENTER:
            return await self._execute_entry(action, execution, market_id, current_price)
        if action.kind is ActionKind.EXIT:
            return await self._execute_exit(action, execution, market_id)
        return False

    async def _execute_entry(
        self,
        action: Action,
        execution: ExecutionPort,
        market_id: str,
        current_price: float,
    ) -> bool:
        if not self.position.is_flat:
            self.logger.warning("Refusing entry while positioned (%+.4f).", self.position.size_base)
            return False
        direction = action.direction
        if direction is None or action.size_base <= 0:
            raise ValueError(f"Invalid entry action: {action}")

        try:
            tx_id = await execution.place_market_order(market_id, direction, action.size_base, reduce_only=False)
        except ExecutionFailure:
            self.position.entry_price = None
            raise

        self.position.size_base = direction.sign * action.size_base
        self.position.entry_price = float(current_price)
        self.logger.info(
            "Entered %s %.4f @ %.4f (%s), tx=%s",
            direction.value,
            action.size_base,
            current_price,
            action.reason,
            tx_id,
        )
        return True

    async def _execute_exit(self, action: Action, execution: ExecutionPort, market_id: str) -> bool:
        if self.position.is_flat:
            self.logger.warning("Refusing exit while flat.")
            return False

        tx_id = await execution.close_position(market_id)
        if tx_id is None:
            self.logger.warning("Venue reports no position to close for market %s.", market_id)
        else:
            self.logger.info("Closed position %+.4f (%s), tx=%s", self.position.size_base, action.reason, tx_id)
        self.position.size_base = 0.0
        self.position.entry_price = None
        return True
