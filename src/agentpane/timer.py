"""Timer - 统一调度服务

提供 interval（周期）和 delay（延迟）两种任务类型，所有防抖、
连接超时、resize 等待都通过具名 delay 任务完成。

- interval: 由 run() 主循环按 tick 驱动（host 轮询等）
- delay: 基于 loop.call_later，精确触发，不依赖主循环是否在运行

使用示例:
    timer = Timer()

    # 注册周期任务（轮询 tmux 状态）
    timer.register_interval("host.poll", 0.5, host.poll)

    # 注册延迟任务（50ms 后 flush mention 队列）
    timer.register_delay("mention.debounce", 0.05, queue.flush)

    # 同名注册会覆盖（取消旧任务）
    timer.cancel_delay("mention.debounce")

    await timer.run()
    timer.stop()
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from . import config
from .telemetry import get_logger, metrics

logger = get_logger(__name__)

Callback = Callable[[], Any | Coroutine[Any, Any, Any]]


@dataclass
class IntervalTask:
    name: str
    interval: float
    callback: Callback
    last_run: float = 0.0  # loop.time()


@dataclass
class DelayTask:
    """一次性任务，handle 为 loop.call_later 的句柄"""

    name: str
    delay: float
    callback: Callback
    handle: asyncio.TimerHandle | None = None
    trigger_at: float = 0.0


class Timer:
    """具名任务调度器

    任务名即取消 token：同名 delay 重新注册会替换旧任务。
    回调可以是同步函数或返回 awaitable，异常只记录日志和 timer.errors 指标。
    """

    def __init__(self, tick_interval: float | None = None):
        self._tick_interval = tick_interval or config.TIMER_TICK_INTERVAL
        self._interval_tasks: dict[str, IntervalTask] = {}
        self._delay_tasks: dict[str, DelayTask] = {}
        self._inflight: set[asyncio.Task] = set()
        self._running = False
        self._task: asyncio.Task | None = None

    # === interval ===

    def register_interval(self, name: str, interval: float, callback: Callback) -> None:
        """注册周期任务

        Args:
            name: 任务名（用于日志和取消）
            interval: 执行间隔（秒）
            callback: 回调函数（同步或异步）
        """
        self._interval_tasks[name] = IntervalTask(name=name, interval=interval, callback=callback)
        logger.debug(f"[Timer] Registered interval task: {name} ({interval}s)")

    def unregister_interval(self, name: str) -> bool:
        if self._interval_tasks.pop(name, None) is not None:
            logger.debug(f"[Timer] Unregistered interval task: {name}")
            return True
        return False

    # === delay ===

    def register_delay(self, name: str, delay: float, callback: Callback) -> None:
        """注册延迟任务

        如果已存在同名任务，会被覆盖（取消旧任务）。

        Args:
            name: 任务名（token）
            delay: 延迟时间（秒）
            callback: 回调函数（同步或异步）
        """
        loop = asyncio.get_running_loop()

        if name in self._delay_tasks:
            logger.debug(f"[Timer] Overwriting delay task: {name}")
            self.cancel_delay(name)

        task = DelayTask(name=name, delay=delay, callback=callback, trigger_at=loop.time() + delay)
        task.handle = loop.call_later(max(delay, 0.0), self._fire_delay, task)
        self._delay_tasks[name] = task
        logger.debug(f"[Timer] Registered delay task: {name} ({delay}s)")

    def cancel_delay(self, name: str) -> bool:
        """取消延迟任务

        Returns:
            是否存在并被取消
        """
        task = self._delay_tasks.pop(name, None)
        if task is None:
            return False
        if task.handle is not None:
            task.handle.cancel()
        logger.debug(f"[Timer] Cancelled delay task: {name}")
        return True

    def has_delay(self, name: str) -> bool:
        return name in self._delay_tasks

    def _fire_delay(self, task: DelayTask) -> None:
        # 已被同名新任务替换
        if self._delay_tasks.get(task.name) is not task:
            return
        del self._delay_tasks[task.name]
        self._spawn(self._execute_callback(task.name, task.callback))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        inflight = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(inflight)
        inflight.add_done_callback(self._inflight.discard)

    async def drain(self) -> None:
        """等待所有已触发的回调执行完毕（用于关闭和测试）"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # === 生命周期 ===

    async def run(self) -> None:
        """启动 Timer 主循环（驱动 interval 任务），持续运行直到 stop()"""
        if self._running:
            logger.warning("[Timer] Already running")
            return

        self._running = True
        self._task = asyncio.current_task()
        logger.info(f"[Timer] Started (tick={self._tick_interval}s)")

        try:
            while self._running:
                await self._tick()
                await asyncio.sleep(self._tick_interval)
        except asyncio.CancelledError:
            logger.info("[Timer] Cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        """停止 Timer，取消所有未触发的延迟任务"""
        for name in list(self._delay_tasks):
            self.cancel_delay(name)

        if not self._running:
            return
        self._running = False
        logger.info("[Timer] Stopping...")

        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _tick(self) -> None:
        now = asyncio.get_running_loop().time()
        for task in list(self._interval_tasks.values()):
            if now - task.last_run >= task.interval:
                task.last_run = now
                await self._execute_callback(task.name, task.callback)

    async def _execute_callback(self, name: str, callback: Callback) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Timer] Task '{name}' failed: {e}")
            if config.METRICS_ENABLED:
                metrics.inc("timer.errors", {"task": name})

    # === 查询 ===

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval_task_count(self) -> int:
        return len(self._interval_tasks)

    @property
    def delay_task_count(self) -> int:
        return len(self._delay_tasks)

    def get_delay_tasks(self) -> list[str]:
        return list(self._delay_tasks.keys())
