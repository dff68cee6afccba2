"""z-score 因子（离线回放）。

把一列价格按顺序逐个喂给一个全新的 SignalEngine，
输出与实盘逐 tick 计算完全一致的 mean/dispersion/z 列，便于研究与对账。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.signal_engine import SignalEngine


@dataclass(frozen=True)
class ZScoreFactor:
    """EMA z-score 因子。"""

    period: int = 21
    max_window: int = 90
    price_col: str = "close"
    prefix: str | None = None
    name: str = "zscore"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ZScoreFactor period must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "max_window": self.max_window,
                "price_col": self.price_col,
                "prefix": self.prefix,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.price_col not in df.columns:
            raise ValueError(f"ZScoreFactor requires column: {self.price_col}")
        prefix = self.prefix or f"zs{self.period}"

        engine = SignalEngine(period=self.period, max_window=self.max_window)
        means: list[float | None] = []
        dispersions: list[float | None] = []
        zs: list[float | None] = []
        for price in df[self.price_col].astype(float).to_list():
            # 缺失或非法价格不进入窗口，该行输出 NaN
            if not math.isfinite(price) or price <= 0:
                means.append(None)
                dispersions.append(None)
                zs.append(None)
                continue
            state = engine.observe(price)
            means.append(state.mean)
            dispersions.append(state.dispersion)
            zs.append(state.z_score)

        # None -> NaN，保持 float 列
        df[f"{prefix}_mean"] = pd.Series(means, index=df.index, dtype="float64")
        df[f"{prefix}_dispersion"] = pd.Series(dispersions, index=df.index, dtype="float64")
        df[f"{prefix}_z"] = pd.Series(zs, index=df.index, dtype="float64")
        return df
