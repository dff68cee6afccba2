"""纸面永续合约撮合（dry-run / paper）。

- 不触网，纯本地记账；
- 预言机价格为带种子的随机游走（也可用 set_price 手动喂价）；
- 市价单按当前价成交，收取 taker 手续费，平仓时结算已实现盈亏。
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass

from broker.ports import ExecutionPort, MarketDataPort
from shared.config.schema import VenueConfig
from shared.errors import ExecutionFailure
from shared.models.models import AccountState, Direction, PositionSnapshot, PriceQuote
from shared.utils.logging import setup_logger
from shared.utils.precision import decimals_from_step, floor_to_step


@dataclass
class PaperPosition:
    """纸面持仓（带符号数量 + 均价）。"""
    size_base: float = 0.0
    avg_price: float = 0.0


class PaperVenue(MarketDataPort, ExecutionPort):
    """单市场纸面交易所，同时实现行情与执行端口。"""

    def __init__(
        self,
        *,
        market_id: str,
        initial_collateral: float = 1000.0,
        taker_fee: float = 0.001,
        min_order_step: float = 0.01,
        start_price: float = 100.0,
        volatility: float = 0.002,
        seed: int | None = None,
        max_leverage: float = 10.0,
        auto_walk: bool = True,
    ):
        self.market_id = str(market_id)
        self.collateral = float(initial_collateral)
        self.taker_fee = float(taker_fee)
        self.min_order_step = float(min_order_step)
        self.volatility = float(volatility)
        self.max_leverage = float(max_leverage)
        self.auto_walk = auto_walk
        self.logger = setup_logger("paper-venue")

        self._rng = random.Random(seed)
        self._price = float(start_price)
        self._slot = 0
        self.position = PaperPosition()
        self.realized_pnl = 0.0
        self.fees_paid = 0.0
        self.fills: list[dict] = []

    @classmethod
    def from_config(cls, cfg: VenueConfig, *, market_id: str) -> "PaperVenue":
        return cls(
            market_id=market_id,
            initial_collateral=cfg.initial_collateral,
            taker_fee=cfg.taker_fee,
            min_order_step=cfg.min_order_step,
            start_price=cfg.start_price,
            volatility=cfg.volatility,
            seed=cfg.seed,
        )

    # ------------------------------------------------------------------
    # 喂价
    # ------------------------------------------------------------------
    def set_price(self, price: float) -> None:
        if price <= 0:
            raise ValueError("price must be > 0")
        self._price = float(price)
        self._slot += 1

    def _advance(self) -> None:
        if not self.auto_walk:
            return
        shock = self._rng.gauss(0.0, self.volatility)
        self._price = max(self._price * (1.0 + shock), 1e-9)
        self._slot += 1

    def _check_market(self, market_id: str) -> bool:
        return str(market_id) == self.market_id

    # ------------------------------------------------------------------
    # MarketDataPort
    # ------------------------------------------------------------------
    async def get_price(self, market_id: str) -> PriceQuote | None:
        if not self._check_market(market_id):
            return None
        self._advance()
        return PriceQuote(price=self._price, confidence=self._price * self.volatility / 2, slot=self._slot)

    async def get_account_state(self) -> AccountState:
        unrealized = self.unrealized_pnl()
        total = self.collateral + unrealized
        used = abs(self.position.size_base) * self._price
        leverage = used / total if total > 0 else 0.0
        return AccountState(total_collateral=total, free_collateral=max(0.0, total - used), leverage=leverage)

    async def get_position(self, market_id: str) -> PositionSnapshot | None:
        if not self._check_market(market_id) or self.position.size_base == 0:
            return None
        return PositionSnapshot(size_base=self.position.size_base)

    async def get_taker_fee(self, market_id: str) -> float | None:
        return self.taker_fee if self._check_market(market_id) else None

    async def get_min_order_step(self, market_id: str) -> float | None:
        return self.min_order_step if self._check_market(market_id) else None

    async def get_market_name(self, market_id: str) -> str | None:
        return f"PAPER-{market_id}-PERP" if self._check_market(market_id) else None

    def unrealized_pnl(self) -> float:
        pos = self.position
        if pos.size_base == 0:
            return 0.0
        return pos.size_base * (self._price - pos.avg_price)

    # ------------------------------------------------------------------
    # ExecutionPort
    # ------------------------------------------------------------------
    async def place_market_order(
        self,
        market_id: str,
        direction: Direction,
        size_base: float,
        reduce_only: bool = False,
    ) -> str:
        if not self._check_market(market_id):
            raise ExecutionFailure("unknown market", market_id=market_id)
        qty = floor_to_step(size_base, self.min_order_step)
        if qty < self.min_order_step:
            raise ExecutionFailure(
                f"order size {size_base} below min step {self.min_order_step}", market_id=market_id
            )

        current = self.position.size_base
        signed = direction.sign * qty
        if reduce_only:
            if current == 0 or (current > 0) == (signed > 0):
                raise ExecutionFailure("reduce-only order would increase position", market_id=market_id)
            if abs(signed) > abs(current):
                signed = -current

        notional = abs(signed) * self._price
        fee = notional * self.taker_fee
        if not reduce_only and (current == 0 or (current > 0) == (signed > 0)):
            free = (await self.get_account_state()).free_collateral
            if notional > free * self.max_leverage or fee > free:
                raise ExecutionFailure(f"insufficient collateral for notional {notional:.2f}", market_id=market_id)

        self._fill(signed, fee)
        tx_id = f"paper-{uuid.uuid4().hex[:12]}"
        self.fills.append(
            {
                "tx_id": tx_id,
                "direction": direction.value,
                "size": abs(signed),
                "price": self._price,
                "fee": fee,
                "reduce_only": reduce_only,
            }
        )
        self.logger.info(
            "Filled %s %.*f @ %.4f (fee %.4f), position now %+.4f",
            direction.value,
            decimals_from_step(self.min_order_step),
            abs(signed),
            self._price,
            fee,
            self.position.size_base,
        )
        return tx_id

    async def close_position(self, market_id: str) -> str | None:
        size = self.position.size_base
        if not self._check_market(market_id) or size == 0:
            return None
        direction = Direction.SHORT if size > 0 else Direction.LONG
        return await self.place_market_order(market_id, direction, abs(size), reduce_only=True)

    def _fill(self, signed_qty: float, fee: float) -> None:
        pos = self.position
        price = self._price
        self.collateral -= fee
        self.fees_paid += fee

        if pos.size_base == 0 or (pos.size_base > 0) == (signed_qty > 0):
            new_size = pos.size_base + signed_qty
            pos.avg_price = (abs(pos.size_base) * pos.avg_price + abs(signed_qty) * price) / abs(new_size)
            pos.size_base = new_size
            return

        closed = min(abs(signed_qty), abs(pos.size_base))
        direction = 1 if pos.size_base > 0 else -1
        pnl = closed * (price - pos.avg_price) * direction
        self.collateral += pnl
        self.realized_pnl += pnl
        remaining = pos.size_base + signed_qty
        if abs(remaining) < 1e-12:
            pos.size_base = 0.0
            pos.avg_price = 0.0
        elif (remaining > 0) == (pos.size_base > 0):
            pos.size_base = remaining
        else:
            # 反手：剩余部分按当前价开新仓
            pos.size_base = remaining
            pos.avg_price = price
