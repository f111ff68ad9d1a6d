"""Native provider - 在 host 原生终端中运行进程"""

from ..settings import TerminalSettings
from .base import Command, Env, ManagedTerminalProvider, TerminalState


class NativeProvider(ManagedTerminalProvider):
    """host 自己创建 surface，始终可用（也是回退目标）"""

    name = "native"

    async def _spawn(self, session_id: str, command: Command, env: Env, config: TerminalSettings) -> TerminalState:
        result = await self._ctx.host.spawn_terminal(
            command,
            env,
            config.cwd,
            on_exit=self._handle_exit,
            on_title=self._title_handler(session_id),
        )
        await self._ctx.processes.track(result.job_id)
        return TerminalState(session_id=session_id, surface_id=result.surface_id, job_id=result.job_id, pid=result.pid)

    def is_available(self) -> bool:
        return True
