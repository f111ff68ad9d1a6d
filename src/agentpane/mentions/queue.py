"""MentionQueue - 带防抖和连接超时的 mention 队列

状态机：
    IDLE -> DEBOUNCING -> FLUSHING -> IDLE                   (已连接)
    IDLE -> AWAITING_CONNECTION -> FLUSHING | EXPIRED        (未连接)

所有延迟都通过 Timer 的具名 delay 调度。flush 在发送前取消全部定时器
并清空队列，发送失败只记录日志，不重新入队（每项至多投递一次）。
"""

import asyncio
import time
from collections.abc import Callable

from .. import config
from ..telemetry import get_logger, metrics
from ..timer import Timer
from .types import ConnectionStatus, MentionTransport, PendingMention, QueueState

logger = get_logger(__name__)

DEBOUNCE_TASK = "mention.debounce"
TIMEOUT_TASK = "mention.timeout"
RETRY_TASK = "mention.retry"


class MentionQueue:
    """Mention 队列

    Args:
        timer: 调度器
        transport: 发送通道
        connection: 连接状态
        debounce: 已连接时的防抖时间
        connection_timeout: 等待连接的最长时间，超时丢弃整个队列
        expiry: 单项过期时间，flush 时跳过过期项
        settle: 连接建立后等待稳定的时间
        inter_item_delay: 逐项发送的间隔
        clock: 时钟（测试注入）
    """

    def __init__(
        self,
        timer: Timer,
        transport: MentionTransport,
        connection: ConnectionStatus,
        debounce: float = config.MENTION_DEBOUNCE_SECONDS,
        connection_timeout: float = config.MENTION_CONNECTION_TIMEOUT_SECONDS,
        expiry: float = config.MENTION_EXPIRY_SECONDS,
        settle: float = config.MENTION_CONNECTION_SETTLE_SECONDS,
        inter_item_delay: float = config.MENTION_INTER_ITEM_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._timer = timer
        self._transport = transport
        self._connection = connection
        self._debounce = debounce
        self._connection_timeout = connection_timeout
        self._expiry = expiry
        self._settle = settle
        self._inter_item_delay = inter_item_delay
        self._clock = clock
        self._items: list[PendingMention] = []
        self._state = QueueState.IDLE
        self._deadline: float | None = None

    @property
    def state(self) -> QueueState:
        return self._state

    def __len__(self) -> int:
        return len(self._items)

    def pending(self) -> list[PendingMention]:
        return list(self._items)

    def configure(self, debounce: float, connection_timeout: float, expiry: float) -> None:
        self._debounce = debounce
        self._connection_timeout = connection_timeout
        self._expiry = expiry

    @property
    def retry_interval(self) -> float:
        return max(config.MENTION_RETRY_MIN_SECONDS, self._settle / 4)

    def enqueue(self, file_path: str, line_start: int | None = None, line_end: int | None = None) -> None:
        """入队并按连接状态安排发送"""
        self._items.append(PendingMention(file_path, line_start, line_end, enqueued_at=self._clock()))
        metrics.gauge("mention.queue_depth", len(self._items))

        if self._connection.is_connected():
            self._state = QueueState.DEBOUNCING
            self._timer.register_delay(DEBOUNCE_TASK, self._debounce, self.flush)
            return

        self._state = QueueState.AWAITING_CONNECTION
        if not self._timer.has_delay(TIMEOUT_TASK):
            self._deadline = self._clock() + self._connection_timeout
            self._timer.register_delay(TIMEOUT_TASK, self._connection_timeout, self._on_timeout)
            logger.debug(f"[Mentions] Waiting up to {self._connection_timeout}s for connection")

    def on_connected(self) -> None:
        """外部通知：连接已建立"""
        if not self._items:
            return
        if self._deadline is None:
            self._deadline = self._clock() + self._connection_timeout
        self._timer.register_delay(RETRY_TASK, self._settle, self._try_flush)

    async def _try_flush(self) -> None:
        if self._connection.is_connected():
            await self.flush()
            return
        if self._deadline is not None and self._clock() >= self._deadline:
            self._expire()
            return
        self._timer.register_delay(RETRY_TASK, self.retry_interval, self._try_flush)

    async def _on_timeout(self) -> None:
        if self._connection.is_connected():
            await self.flush()
        else:
            self._expire()

    def _cancel_timers(self) -> None:
        for name in (DEBOUNCE_TASK, TIMEOUT_TASK, RETRY_TASK):
            self._timer.cancel_delay(name)
        self._deadline = None

    def _expire(self) -> None:
        dropped = len(self._items)
        self._cancel_timers()
        self._items = []
        self._state = QueueState.EXPIRED
        metrics.gauge("mention.queue_depth", 0)
        if dropped:
            logger.warning(f"[Mentions] Connection timed out, dropped {dropped} queued mentions")
            metrics.inc("mention.dropped", value=dropped)

    async def flush(self) -> int:
        """发送整个队列

        Returns:
            成功发送的数量
        """
        self._cancel_timers()
        items, self._items = self._items, []
        metrics.gauge("mention.queue_depth", 0)
        if not items:
            self._state = QueueState.IDLE
            return 0

        self._state = QueueState.FLUSHING
        sent = 0
        attempted = 0
        for item in items:
            if self._clock() - item.enqueued_at > self._expiry:
                logger.debug(f"[Mentions] Skipping expired mention {item.file_path}")
                metrics.inc("mention.expired")
                continue
            if attempted:
                await asyncio.sleep(self._inter_item_delay)
            attempted += 1
            try:
                ok = await self._transport.send(config.MENTION_METHOD, item.to_params())
            except Exception as e:
                logger.error(f"[Mentions] Failed to send mention {item.file_path}: {e}")
                continue
            if ok:
                sent += 1
                metrics.inc("mention.sent")
            else:
                logger.error(f"[Mentions] Remote rejected mention {item.file_path}")

        logger.debug(f"[Mentions] Flushed {sent}/{len(items)} mentions")
        if self._state == QueueState.FLUSHING:
            self._state = QueueState.IDLE
        return sent
