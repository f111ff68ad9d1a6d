"""Mention 队列的数据类型与协作方接口"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class QueueState(Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    AWAITING_CONNECTION = "awaiting_connection"
    FLUSHING = "flushing"
    EXPIRED = "expired"


@dataclass
class PendingMention:
    """待发送的文件引用

    Attributes:
        file_path: 文件路径
        line_start: 起始行（可选）
        line_end: 结束行（可选）
        enqueued_at: 入队时间（monotonic）
    """

    file_path: str
    line_start: int | None = None
    line_end: int | None = None
    enqueued_at: float = field(default_factory=time.monotonic)

    def to_params(self) -> dict:
        return {"filePath": self.file_path, "lineStart": self.line_start, "lineEnd": self.line_end}


class ConnectionStatus(Protocol):
    """远端连接状态（握手完成才算已连接）"""

    def is_connected(self) -> bool: ...


class MentionTransport(Protocol):
    """向远端发送通知"""

    async def send(self, method: str, params: dict) -> bool: ...
