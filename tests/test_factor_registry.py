import pandas as pd
import pytest

from algo.factors.registry import apply_factors, build_factor, get_factor_cls
from algo.factors.zscore import ZScoreFactor
from shared.config.schema import RiskConfig


def test_zscore_registered_by_default():
    assert get_factor_cls("zscore") is ZScoreFactor


def test_build_from_risk_config_ignores_unrelated_keys():
    factor = build_factor("zscore", RiskConfig(period=5, max_window=20).model_dump())
    assert factor.period == 5
    assert factor.max_window == 20


def test_unknown_factor_rejected():
    with pytest.raises(ValueError):
        get_factor_cls("macd")


def test_apply_factors_adds_columns():
    df = pd.DataFrame({"close": [1.0, 2.0, 3.0, 4.0]})
    out = apply_factors(df, [build_factor("zscore", {"period": 2, "max_window": 4})])
    assert "zs2_z" in out.columns
