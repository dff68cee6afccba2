"""流式 z-score 指标引擎。

逐 tick 输入价格，维护一个有界价格窗口，输出：
- mean：EMA（alpha = 2/(period+1)），首次用最近 period 个样本的 SMA 播种；
- dispersion：最近 period 个样本围绕当前 EMA（而非自身均值）的总体标准差；
- z_score：(price - EMA) / dispersion，dispersion 为 0 时不给出。

样本不足 period 时三项全部为 None，这是下游所有交易逻辑的硬前置条件。
"""

from __future__ import annotations

import math
from collections import deque
from typing import Deque

from shared.models.models import IndicatorState
from shared.utils.logging import setup_logger


class SignalEngine:
    """单市场、单实例持有的指标状态（窗口 + 上一期 EMA）。"""

    def __init__(self, period: int = 21, max_window: int = 90):
        if period <= 0:
            raise ValueError("SignalEngine period must be > 0")
        if max_window < period:
            raise ValueError("SignalEngine max_window must be >= period")
        self.period = int(period)
        self.max_window = int(max_window)
        self.alpha = 2.0 / (self.period + 1)
        self.logger = setup_logger("signal")
        self._window: Deque[float] = deque(maxlen=self.max_window)
        self._ema: float | None = None
        self.last: IndicatorState = IndicatorState()

    @property
    def window(self) -> tuple[float, ...]:
        return tuple(self._window)

    @property
    def ema(self) -> float | None:
        return self._ema

    def __len__(self) -> int:
        return len(self._window)

    def observe(self, price: float) -> IndicatorState:
        price = float(price)
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"price must be finite and > 0, got {price}")
        self._window.append(price)  # deque(maxlen) 自动 FIFO 淘汰最旧样本

        if len(self._window) < self.period:
            self.logger.debug("Window %d/%d, indicators not ready.", len(self._window), self.period)
            self.last = IndicatorState()
            return self.last

        recent = list(self._window)[-self.period:]
        if self._ema is None:
            self._ema = math.fsum(recent) / self.period
        else:
            # 与 price*a + ema*(1-a) 等价；价格不变时 EMA 严格不变
            self._ema = self._ema + self.alpha * (price - self._ema)

        ema = self._ema
        variance = math.fsum((p - ema) ** 2 for p in recent) / self.period
        dispersion = math.sqrt(variance)

        z_score = (price - ema) / dispersion if dispersion > 0 else None
        self.last = IndicatorState(mean=ema, dispersion=dispersion, z_score=z_score)
        return self.last

    def reset(self) -> None:
        self._window.clear()
        self._ema = None
        self.last = IndicatorState()
