"""Widget provider - 通过 libtmux 创建终端 pane

libtmux 在用户窗口中直接 split 出 pane，布局会被扰动：
创建前记录显示槽尺寸，pane 被接管进 stash 后恢复。
libtmux 的 pane 不会立即暴露进程，PID 跟踪带重试。
"""

import asyncio
import shlex

import libtmux
from libtmux._internal.query_list import ObjectDoesNotExist
from libtmux.constants import PaneDirection
from libtmux.exc import LibTmuxException

from ..errors import SpawnError
from ..host.tmux import TmuxHost
from ..settings import TerminalSettings
from ..telemetry import format_session_log, get_logger
from .base import Command, Env, ManagedTerminalProvider, ProviderContext, TerminalState

logger = get_logger(__name__)


class WidgetProvider(ManagedTerminalProvider):
    """libtmux 作为终端 widget 库"""

    name = "widget"

    def __init__(self, ctx: ProviderContext):
        super().__init__(ctx)
        self._server: libtmux.Server | None = None

    @property
    def server(self) -> libtmux.Server:
        """延迟创建 libtmux Server（与 host 共用 socket）"""
        if self._server is None:
            socket_path = self._ctx.host.client.socket_path
            self._server = libtmux.Server(socket_path=socket_path) if socket_path else libtmux.Server()
        return self._server

    def is_available(self) -> bool:
        return isinstance(self._ctx.host, TmuxHost)

    def _split(
        self,
        anchor_id: str,
        command: Command,
        env: Env,
        config: TerminalSettings,
    ) -> str | None:
        """在 anchor pane 旁 split（阻塞调用，在线程中执行）"""
        try:
            anchor = self.server.panes.get(pane_id=anchor_id)
            pane = anchor.split(
                direction=PaneDirection.Left if config.split_side == "left" else PaneDirection.Right,
                shell=shlex.join(command),
                environment=dict(env),
                start_directory=config.cwd,
                attach=False,
            )
        except (LibTmuxException, ObjectDoesNotExist) as e:
            logger.error(f"[widget] Split failed: {e}")
            return None
        return pane.pane_id

    async def _spawn(self, session_id: str, command: Command, env: Env, config: TerminalSettings) -> TerminalState:
        if not command:
            raise SpawnError("empty command")

        host = self._ctx.host
        slot = self._ctx.slot
        anchor_id = slot.view_id or await host.current_view()
        if anchor_id is None:
            raise SpawnError("no pane to split from")

        saved = await slot.dimensions()
        pane_id = await asyncio.to_thread(self._split, anchor_id, command, env, config)
        if pane_id is None:
            raise SpawnError("libtmux split failed")

        result = await host.adopt_surface(pane_id, on_exit=self._handle_exit, on_title=self._title_handler(session_id))
        if result is None:
            await host.delete_surface(pane_id)
            raise SpawnError(f"failed to adopt pane {pane_id}")

        if saved is not None:
            await slot.restore_dimensions(*saved)

        if not await self._ctx.processes.track_with_retry(result.job_id):
            logger.warning(format_session_log(self.name, session_id, f"Could not track pid for {result.job_id}"))

        return TerminalState(session_id=session_id, surface_id=result.surface_id, job_id=result.job_id, pid=result.pid)
