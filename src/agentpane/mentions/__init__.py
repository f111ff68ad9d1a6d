"""Mention 队列"""

from .queue import DEBOUNCE_TASK, RETRY_TASK, TIMEOUT_TASK, MentionQueue
from .transport import ConnectionFlag, HttpMentionTransport
from .types import ConnectionStatus, MentionTransport, PendingMention, QueueState

__all__ = [
    "MentionQueue",
    "QueueState",
    "PendingMention",
    "ConnectionStatus",
    "MentionTransport",
    "ConnectionFlag",
    "HttpMentionTransport",
    "DEBOUNCE_TASK",
    "TIMEOUT_TASK",
    "RETRY_TASK",
]
