"""None provider - 不启动任何终端

用于由外部自行运行 agent 的场景，所有操作都是 no-op。
"""

from ..settings import TerminalSettings
from ..telemetry import get_logger
from .base import Command, Env, TerminalProvider

logger = get_logger(__name__)


class NoneProvider(TerminalProvider):
    name = "none"

    async def open(self, command: Command, env: Env, config: TerminalSettings, focus: bool = True) -> bool:
        logger.debug("[none] open ignored")
        return True

    async def open_session(self, session_id, command, env, config, focus=True) -> bool:
        return True

    async def close(self) -> None:
        pass

    async def close_session(self, session_id: str) -> None:
        pass

    async def close_session_keep_window(self, old_session_id, new_session_id, config) -> None:
        pass

    async def focus_session(self, session_id: str, config: TerminalSettings | None = None) -> None:
        pass

    async def simple_toggle(self, command, env, config) -> None:
        pass

    async def focus_toggle(self, command, env, config) -> None:
        pass

    async def ensure_visible(self, command, env, config) -> None:
        pass

    async def get_active_surface_id(self) -> str | None:
        return None

    async def get_surface_id_for_session(self, session_id: str) -> str | None:
        return None

    async def list_active_session_ids(self) -> list[str]:
        return []

    def is_available(self) -> bool:
        return True
