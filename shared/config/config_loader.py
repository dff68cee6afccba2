"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载。
"""

from __future__ import annotations

import difflib
import os
import re
from pathlib import Path
from typing import Any, Iterable

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from shared.config.schema import AppConfig, RiskConfig, SchedulerConfig, VenueConfig

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

_SECTIONS: dict[str, type[BaseModel]] = {
    "risk": RiskConfig,
    "scheduler": SchedulerConfig,
    "venue": VenueConfig,
}


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: set[str], ctx: str) -> None:
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown):
        suggestion = _suggest_key(k, allowed)
        parts.append(f"{k} (did you mean '{suggestion}'?)" if suggestion else k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """在 pydantic 校验之前先做一遍未知键检查，给出更友好的拼写提示。"""
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a dict")
    _ensure_allowed_keys(cfg, allowed=set(AppConfig.model_fields), ctx="config")
    if "market_id" not in cfg:
        raise ValueError("Missing required config key: config.market_id")
    for name, model in _SECTIONS.items():
        block = cfg.get(name)
        if block is None:
            continue
        if not isinstance(block, dict):
            raise ValueError(f"config.{name} must be a dict")
        _ensure_allowed_keys(block, allowed=set(model.model_fields), ctx=f"config.{name}")


def _load_envs(cfg_path: Path) -> None:
    """加载配置目录与其上级目录下的 .env/.env.local（不覆盖已有环境变量）。"""
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        if env_file.exists():
            load_dotenv(env_file, override=False)


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}`；变量缺失时报错，避免静默替换为空。"""
    if isinstance(value, str):
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def parse_config(raw_cfg: dict[str, Any]) -> AppConfig:
    """校验 raw dict 并构造 AppConfig。

    Raises
    ------
    ValueError
        未知键、缺失字段或参数越界（pydantic 错误统一转为 ValueError）。
    """
    validate_raw_config(raw_cfg)
    try:
        return AppConfig.model_validate(raw_cfg)
    except ValidationError as exc:
        raise ValueError(f"Invalid config: {exc}") from exc


def load_config(path: str, load_env: bool = True, expand_env_vars: bool = True) -> AppConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand_env_vars:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    AppConfig
        解析后的配置对象。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        缺少必填字段、参数非法或缺失环境变量。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    with cfg_path.open("r", encoding="utf-8") as f:
        raw_cfg: dict[str, Any] = yaml.safe_load(f) or {}

    if expand_env_vars:
        raw_cfg = expand_env(raw_cfg)
    return parse_config(raw_cfg)
