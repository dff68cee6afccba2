"""永续合约均值回归机器人入口。

非交互式启动器：读取配置 → 构建引擎 → 按固定间隔运行，
收到 SIGINT/SIGTERM 时协作式停止（等待当前 tick 结束）。

`--replay prices.csv` 则不连交易所，只把历史价格按实盘同样的指标逻辑回放一遍。
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from dataclasses import dataclass

import pandas as pd

from algo.factors.registry import apply_factors, build_factor
from engine.trading_engine import TradingEngine
from shared.config.config_loader import load_config
from shared.errors import FatalInit
from shared.utils.logging import setup_logger


@dataclass
class CliArgs:
    """命令行参数结构。"""
    config: str
    market_id: str | None = None
    max_ticks: int | None = None  # 仅用于 debug，限制运行多少个 tick 就停止
    replay: str | None = None
    price_col: str = "close"
    out: str | None = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="perp-meanrev", description="Perp mean-reversion trading bot")
    parser.add_argument("--config", default="config/config.yml", help="配置文件路径 (默认: config/config.yml)")
    parser.add_argument("--market-id", default=None, help="覆盖配置中的 market_id")
    parser.add_argument("--max-ticks", type=int, default=None, help="跑多少个 tick 后退出（用于 dry-run/测试）")
    parser.add_argument("--replay", default=None, help="离线回放价格 CSV，输出 mean/dispersion/z 列")
    parser.add_argument("--price-col", default="close", help="回放时使用的价格列 (默认: close)")
    parser.add_argument("--out", default=None, help="回放结果写入的 CSV 路径")
    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=ns.config,
        market_id=ns.market_id,
        max_ticks=ns.max_ticks,
        replay=ns.replay,
        price_col=ns.price_col,
        out=ns.out,
    )


async def run(args: CliArgs) -> dict:
    logger = setup_logger("main")
    engine, cfg = TradingEngine.from_config_path(args.config)
    if args.max_ticks is not None:
        engine.scheduler.max_ticks = args.max_ticks

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.stop)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    market_id = args.market_id or cfg.market_id
    logger.info("Mode=%s venue=%s market=%s", cfg.mode, cfg.venue.type, market_id)
    try:
        engine.start(market_id)
        await engine.wait_closed()
    finally:
        close = getattr(engine.market_data, "close", None)
        if close is not None:
            await close()
    return engine.status()


def replay(args: CliArgs) -> pd.DataFrame:
    """用配置里的 period/max_window 回放历史价格。"""
    logger = setup_logger("main")
    try:
        cfg = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        raise FatalInit(f"cannot load config {args.config}: {exc}") from exc
    try:
        df = pd.read_csv(args.replay)
    except (OSError, ValueError) as exc:
        raise FatalInit(f"cannot read replay file {args.replay}: {exc}") from exc

    params = dict(cfg.risk.model_dump(), price_col=args.price_col)
    try:
        df = apply_factors(df, [build_factor("zscore", params)])
    except ValueError as exc:
        raise FatalInit(f"replay failed: {exc}") from exc

    z_col = f"zs{cfg.risk.period}_z"
    signals = int((df[z_col].abs() > cfg.risk.entry_threshold).sum())
    logger.info("Replayed %d rows, %d beyond entry threshold %.2f.", len(df), signals, cfg.risk.entry_threshold)
    if args.out:
        df.to_csv(args.out, index=False)
        logger.info("Replay written to %s", args.out)
    return df


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        if args.replay:
            replay(args)
            return 0
        summary = asyncio.run(run(args))
    except FatalInit as exc:
        setup_logger("main").error("Startup failed: %s", exc)
        return 1
    setup_logger("main").info("Final status: %s", summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
