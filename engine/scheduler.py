"""固定间隔的策略调度器。

约定：
- 同一时刻最多一个 tick 在执行：下一次 tick 只在上一次完成后才会排期；
- stop 是协作式的，只在 tick 边界生效，不会打断正在执行的 tick；
- 调度器回到 Idle 后触发 on_stop 回调（用于清空策略会话状态）。
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from shared.utils.logging import setup_logger

TickFn = Callable[[], Awaitable[object]]


class StrategyScheduler:
    """Idle -> Running -> Idle。

    Parameters
    ----------
    interval_s:
        两次 tick 之间的间隔（从上一次 tick 完成开始计时）。
    max_ticks:
        可选的最大 tick 数，达到后自动停止（便于 dry-run/测试）。
    on_stop:
        回到 Idle 时调用的回调。
    """

    def __init__(
        self,
        interval_s: float = 5.0,
        *,
        max_ticks: int | None = None,
        on_stop: Callable[[], None] | None = None,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.interval_s = float(interval_s)
        self.max_ticks = max_ticks
        self.on_stop = on_stop
        self.logger = setup_logger("scheduler")

        self._running = False
        self._pending_stop = False
        self._in_tick = False
        self._task: asyncio.Task | None = None
        self._cancelled_task: asyncio.Task | None = None
        self.tick_count = 0

    def is_running(self) -> bool:
        return self._running

    @property
    def pending_stop(self) -> bool:
        return self._pending_stop

    @property
    def in_tick(self) -> bool:
        return self._in_tick

    def start(self, tick_fn: TickFn) -> asyncio.Task | None:
        """启动循环；已在运行时只记录日志。必须在事件循环内调用。"""
        if self._running:
            self.logger.info("Scheduler already running, ignoring start().")
            return None
        loop = asyncio.get_running_loop()
        self._running = True
        self._pending_stop = False
        self.tick_count = 0
        self._task = loop.create_task(self._loop(tick_fn))
        self.logger.info("Scheduler started (interval=%.2fs).", self.interval_s)
        return self._task

    def stop(self) -> None:
        """请求停止。

        - tick 间隙：立即回到 Idle 并取消等待中的定时；
        - tick 执行中：只置 stop 标记，当前 tick 结束后不再排期。
        """
        if not self._running:
            self.logger.info("Scheduler is not running.")
            return
        self._pending_stop = True
        if self._in_tick:
            self.logger.info("Stop requested, waiting for in-flight tick to finish.")
            return
        task = self._task
        if task is not None and not task.done():
            self._cancelled_task = task
            task.cancel()
        self._finish(task)

    async def wait_closed(self) -> None:
        """等待后台循环彻底退出。"""
        task = self._task or self._cancelled_task
        if task is None:
            return
        await asyncio.gather(task, return_exceptions=True)

    async def _loop(self, tick_fn: TickFn) -> None:
        task = asyncio.current_task()
        try:
            while self._running and not self._pending_stop:
                self._in_tick = True
                try:
                    await tick_fn()
                except Exception:
                    self.logger.exception("Tick failed, will retry on next interval.")
                finally:
                    self._in_tick = False
                    self.tick_count += 1

                if self.max_ticks is not None and self.tick_count >= self.max_ticks:
                    self.logger.info("Reached max_ticks=%s, stopping.", self.max_ticks)
                    break
                if self._pending_stop or not self._running:
                    break
                await asyncio.sleep(self.interval_s)
        except asyncio.CancelledError:
            # 只吞掉 stop() 主动发起的取消
            if self._cancelled_task is not task:
                raise
        finally:
            self._finish(task)

    def _finish(self, task: asyncio.Task | None) -> None:
        # 旧循环的收尾不能影响后续新启动的循环
        if task is not self._task or not self._running:
            return
        self._running = False
        self._pending_stop = False
        self._task = None
        self.logger.info("Scheduler stopped after %d tick(s).", self.tick_count)
        if self.on_stop is not None:
            self.on_stop()
