"""会话生命周期状态机

    OPEN --begin_close(reason)--> CLOSING(reason) --finish()--> CLOSED(条目移除)

显式关闭方和进程退出回调都通过 begin_close 竞争离开 OPEN 的转换，
只有赢家执行完整的拆除逻辑。CLOSING 条目只由退出回调调用 finish 清除，
关闭方从不清除，这样晚到的退出事件不会被误判为崩溃。
"""

from dataclasses import dataclass
from enum import Enum

from ..telemetry import get_logger

logger = get_logger(__name__)


class Phase(Enum):
    OPEN = "open"
    CLOSING = "closing"


class CloseReason(Enum):
    USER = "user"  # 用户显式关闭（抑制退出错误）
    EXIT = "exit"  # 进程自行退出


@dataclass
class LifecycleState:
    phase: Phase
    reason: CloseReason | None = None


class SessionLifecycle:
    """每个会话一个状态机"""

    def __init__(self):
        self._states: dict[str, LifecycleState] = {}

    def open(self, session_id: str) -> None:
        """会话获得终端时进入 OPEN（已在 CLOSING 的不回退）"""
        state = self._states.get(session_id)
        if state is None:
            self._states[session_id] = LifecycleState(Phase.OPEN)

    def begin_close(self, session_id: str, reason: CloseReason) -> bool:
        """CAS: OPEN -> CLOSING(reason)

        Returns:
            是否赢得转换（不存在或已在 CLOSING 时返回 False）
        """
        state = self._states.get(session_id)
        if state is None or state.phase != Phase.OPEN:
            return False
        state.phase = Phase.CLOSING
        state.reason = reason
        logger.debug(f"[Lifecycle] {session_id} -> closing ({reason.value})")
        return True

    def finish(self, session_id: str) -> None:
        """CLOSING -> CLOSED，移除条目（只由退出回调调用）"""
        if self._states.pop(session_id, None) is not None:
            logger.debug(f"[Lifecycle] {session_id} -> closed")

    def phase(self, session_id: str) -> Phase | None:
        state = self._states.get(session_id)
        return state.phase if state else None

    def reason(self, session_id: str) -> CloseReason | None:
        state = self._states.get(session_id)
        return state.reason if state else None

    def is_closing(self, session_id: str) -> bool:
        return self.phase(session_id) == Phase.CLOSING

    def closing_ids(self) -> set[str]:
        """ClosingSet 视图"""
        return {sid for sid, s in self._states.items() if s.phase == Phase.CLOSING}
