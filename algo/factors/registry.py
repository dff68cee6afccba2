"""因子注册表：字符串 -> 因子实现。"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

import pandas as pd

from algo.factors.zscore import ZScoreFactor

_REGISTRY: dict[str, type] = {}


def register_factor(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_factor_cls(name: str) -> type:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown factor: {name}")
    return _REGISTRY[name]


def _filter_init_kwargs(cls: type, params: Mapping[str, Any]) -> dict[str, Any]:
    """只保留 __init__ 接受的参数（例如直接传入整个 risk 配置）。"""
    sig = inspect.signature(cls)
    allowed = set(sig.parameters)
    return {k: v for k, v in params.items() if k in allowed}


def build_factor(name: str, params: Mapping[str, Any] | None = None) -> Any:
    cls = get_factor_cls(name)
    kwargs = _filter_init_kwargs(cls, params or {})
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"Invalid params for factor '{name}': {dict(params or {})}") from exc


def apply_factors(df: pd.DataFrame, factors: list[Any]) -> pd.DataFrame:
    for f in factors:
        df = f.compute(df)
    return df


# 默认注册
register_factor("zscore", ZScoreFactor)
