"""精度与步进工具（下单数量向下取整到合约精度）。"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_FLOOR


def decimals_from_step(step: float) -> int:
    """根据 step（通常是 10 的负次幂）推导小数位数。"""
    try:
        d = Decimal(str(step))
    except InvalidOperation:
        return 0
    if d == 0:
        return 0
    exp = d.as_tuple().exponent
    return max(0, -int(exp))


def step_from_decimals(decimals: int) -> float:
    """小数位数 -> 步长，例如 2 -> 0.01。"""
    d = max(0, int(decimals))
    return float(Decimal(1).scaleb(-d))


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍（用 Decimal 避免 float 噪声）。

    只截断、不进位：下单数量宁小勿大。
    """
    if step is None:
        return float(value)
    s = float(step)
    if s <= 0:
        return float(value)

    v = Decimal(str(value))
    sd = Decimal(str(step))
    n = (v / sd).to_integral_value(rounding=ROUND_FLOOR)
    out = n * sd
    decs = decimals_from_step(s)
    out = out.quantize(Decimal(1).scaleb(-decs)) if decs > 0 else out.quantize(Decimal(1))
    return float(out)


def floor_to_decimals(value: float, decimals: int) -> float:
    """向下截断到指定小数位（例如 2 位：0.239 -> 0.23）。"""
    return floor_to_step(value, step_from_decimals(decimals))
