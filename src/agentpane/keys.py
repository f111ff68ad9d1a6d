"""智能 ESC - 双击退出输入模式

第一次按键启动超时：超时内第二次按键则让 surface 进入滚动模式；
超时到期则把 ESC 原样发给 surface 中的进程。超时为 0 或 None 时不启用。
"""

from . import config
from .host.base import Host
from .telemetry import get_logger
from .timer import Timer

logger = get_logger(__name__)

ESCAPE_KEY = "Escape"


class DismissKeyHandler:
    """每个 surface 一个待定按键（Timer delay 名为 keys.esc.<surface>）"""

    def __init__(self, host: Host, timer: Timer, timeout: float | None = config.ESC_TIMEOUT_SECONDS):
        self._host = host
        self._timer = timer
        self.timeout = timeout

    @staticmethod
    def _task_name(surface_id: str) -> str:
        return f"keys.esc.{surface_id}"

    def is_pending(self, surface_id: str) -> bool:
        return self._timer.has_delay(self._task_name(surface_id))

    async def press(self, surface_id: str) -> str:
        """处理一次 ESC

        Returns:
            "sent"（直接发送）| "pending"（等待第二次）| "scroll"（进入滚动模式）
        """
        if not self.timeout:
            await self._host.send_key(surface_id, ESCAPE_KEY)
            return "sent"

        name = self._task_name(surface_id)
        if self._timer.cancel_delay(name):
            logger.debug(f"[Keys] Double ESC on {surface_id}, leaving input mode")
            await self._host.enter_scroll_mode(surface_id)
            return "scroll"

        async def send_escape():
            await self._host.send_key(surface_id, ESCAPE_KEY)

        self._timer.register_delay(name, self.timeout, send_escape)
        return "pending"

    def cancel_all(self) -> None:
        for name in self._timer.get_delay_tasks():
            if name.startswith("keys.esc."):
                self._timer.cancel_delay(name)
