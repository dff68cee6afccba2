"""执行引擎层（engine）。

统一入口：`TradingEngine.start(market_id) / stop() / is_running()`，
内部由 `StrategyScheduler` 按固定间隔逐个执行 tick；
命令行入口由仓库根目录 `main.py` 统一承载。
"""
