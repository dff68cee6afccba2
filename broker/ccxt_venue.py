"""ccxt 永续合约端口适配。

把 ccxt（async_support）的行情/账户/下单接口翻译成 MarketDataPort / ExecutionPort：
- ticker -> PriceQuote（confidence 取半个买卖价差，slot 取交易所时间戳）
- balance + positions -> AccountState
- positions -> 带符号持仓数量（contracts * contractSize）
- market['taker'] / precision.amount -> 手续费与最小步长

所有 ccxt 异常在这里被翻译为 DataUnavailable / ExecutionFailure，不会泄漏到交易核心。
"""

from __future__ import annotations

import math

import ccxt.async_support as ccxt_async
from ccxt.base.decimal_to_precision import TICK_SIZE
from ccxt.base.errors import BaseError as CcxtError

from broker.ports import ExecutionPort, MarketDataPort
from shared.config.schema import VenueConfig
from shared.errors import DataUnavailable, ExecutionFailure
from shared.models.models import AccountState, Direction, PositionSnapshot, PriceQuote
from shared.utils.logging import setup_logger


class CcxtPerpVenue(MarketDataPort, ExecutionPort):
    """基于 ccxt 的永续合约交易所端口。

    Parameters
    ----------
    exchange:
        已构建的 ccxt async 交易所实例（测试时可注入 mock）。
    symbol_map:
        market_id -> 交易所 symbol；未配置时 market_id 直接当作 symbol 使用。
    settle_currency:
        保证金币种。
    """

    def __init__(self, exchange, *, symbol_map: dict[str, str] | None = None, settle_currency: str = "USDT"):
        self.exchange = exchange
        self.symbol_map = {str(k): v for k, v in (symbol_map or {}).items()}
        self.settle_currency = settle_currency
        self.logger = setup_logger("ccxt-venue")
        self._markets_loaded = False

    @classmethod
    def from_config(cls, cfg: VenueConfig) -> "CcxtPerpVenue":
        exchange_cls = getattr(ccxt_async, cfg.exchange_id)
        if not cfg.sandbox and (not cfg.api_key or not cfg.api_secret):
            raise ValueError(f"Missing API key/secret for live trading on {cfg.exchange_id}")
        exchange = exchange_cls(
            {
                "apiKey": cfg.api_key,
                "secret": cfg.api_secret,
                "enableRateLimit": True,
                "options": {"defaultType": "swap"},
            }
        )
        if cfg.sandbox:
            exchange.set_sandbox_mode(True)
        return cls(exchange, symbol_map=cfg.symbol_map)

    def symbol_for(self, market_id: str) -> str:
        return self.symbol_map.get(str(market_id), str(market_id))

    async def _ensure_markets(self) -> None:
        if self._markets_loaded:
            return
        try:
            await self.exchange.load_markets()
        except CcxtError as exc:
            raise DataUnavailable(f"load_markets failed: {exc}") from exc
        self._markets_loaded = True

    async def _market(self, market_id: str) -> dict:
        await self._ensure_markets()
        symbol = self.symbol_for(market_id)
        try:
            return self.exchange.market(symbol)
        except CcxtError as exc:
            raise DataUnavailable(f"unknown market {symbol}: {exc}", market_id=market_id) from exc

    async def close(self) -> None:
        await self.exchange.close()

    # ------------------------------------------------------------------
    # MarketDataPort
    # ------------------------------------------------------------------
    async def get_price(self, market_id: str) -> PriceQuote | None:
        symbol = self.symbol_for(market_id)
        try:
            ticker = await self.exchange.fetch_ticker(symbol)
        except CcxtError as exc:
            raise DataUnavailable(f"fetch_ticker failed: {exc}", market_id=market_id) from exc

        bid, ask = ticker.get("bid"), ticker.get("ask")
        price = ticker.get("last")
        if price is None and bid and ask:
            price = (bid + ask) / 2
        if not price or not math.isfinite(float(price)):
            return None
        confidence = (ask - bid) / 2 if bid and ask else 0.0
        return PriceQuote(price=float(price), confidence=float(confidence), slot=int(ticker.get("timestamp") or 0))

    async def get_account_state(self) -> AccountState | None:
        try:
            balance = await self.exchange.fetch_balance()
            positions = await self.exchange.fetch_positions()
        except CcxtError as exc:
            raise DataUnavailable(f"fetch_balance/positions failed: {exc}") from exc

        total = (balance.get("total") or {}).get(self.settle_currency)
        free = (balance.get("free") or {}).get(self.settle_currency)
        if total is None:
            return None
        notional = sum(abs(float(p.get("notional") or 0.0)) for p in positions or [])
        leverage = notional / float(total) if total else 0.0
        return AccountState(
            total_collateral=float(total),
            free_collateral=float(free or 0.0),
            leverage=leverage,
        )

    async def get_position(self, market_id: str) -> PositionSnapshot | None:
        symbol = self.symbol_for(market_id)
        try:
            positions = await self.exchange.fetch_positions([symbol])
        except CcxtError as exc:
            raise DataUnavailable(f"fetch_positions failed: {exc}", market_id=market_id) from exc

        for pos in positions or []:
            if pos.get("symbol") != symbol:
                continue
            contracts = float(pos.get("contracts") or 0.0)
            if contracts == 0:
                continue
            size = contracts * float(pos.get("contractSize") or 1.0)
            if pos.get("side") == "short":
                size = -abs(size)
            return PositionSnapshot(size_base=size)
        return None

    async def get_taker_fee(self, market_id: str) -> float | None:
        market = await self._market(market_id)
        fee = market.get("taker")
        return float(fee) if fee is not None else None

    async def get_min_order_step(self, market_id: str) -> float | None:
        market = await self._market(market_id)
        precision = (market.get("precision") or {}).get("amount")
        if precision is None:
            return None
        step = float(precision)
        if getattr(self.exchange, "precisionMode", TICK_SIZE) != TICK_SIZE:
            # DECIMAL_PLACES 模式：precision 是小数位数
            step = 10 ** (-int(precision))
        min_amount = ((market.get("limits") or {}).get("amount") or {}).get("min")
        contract_size = float(market.get("contractSize") or 1.0)
        return max(step, float(min_amount or 0.0)) * contract_size

    async def get_market_name(self, market_id: str) -> str | None:
        try:
            market = await self._market(market_id)
        except DataUnavailable:
            return None
        return market.get("id") or market.get("symbol")

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
        symbol = self.symbol_for(market_id)
        side = "buy" if direction is Direction.LONG else "sell"
        params = {"reduceOnly": True} if reduce_only else {}
        try:
            market = await self._market(market_id)
            contracts = size_base / float(market.get("contractSize") or 1.0)
            amount = float(self.exchange.amount_to_precision(symbol, contracts))
            order = await self.exchange.create_order(symbol, "market", side, amount, None, params)
        except DataUnavailable as exc:
            raise ExecutionFailure(str(exc), market_id=market_id) from exc
        except CcxtError as exc:
            raise ExecutionFailure(f"create_order {side} {size_base} failed: {exc}", market_id=market_id) from exc

        order_id = order.get("id")
        if not order_id:
            raise ExecutionFailure("exchange returned no order id", market_id=market_id)
        self.logger.info("Order %s %s %s (reduce_only=%s) -> %s", symbol, side, amount, reduce_only, order_id)
        return str(order_id)

    async def close_position(self, market_id: str) -> str | None:
        try:
            snapshot = await self.get_position(market_id)
        except DataUnavailable as exc:
            raise ExecutionFailure(f"cannot read position before close: {exc}", market_id=market_id) from exc
        if snapshot is None or snapshot.size_base == 0:
            return None
        direction = Direction.SHORT if snapshot.size_base > 0 else Direction.LONG
        return await self.place_market_order(market_id, direction, abs(snapshot.size_base), reduce_only=True)
