"""TmuxHost - 基于 tmux 的 Host 实现

映射关系：
- tab     -> tmux window
- view    -> 用户可见 window 中的 pane（view_id 即当前占据该位置的 pane_id）
- surface -> 带 @agentpane_surface 标记的 pane，不显示时存放在 stash session

展示 surface 使用 swap-pane（原占据者被换入 stash），隐藏使用 break-pane。
进程退出检测依赖 remain-on-exit + 轮询 pane_dead。
"""

import inspect
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ... import config
from ...core.ids import JobKind, get_job_kind, get_native_id, make_job_id
from ...errors import SpawnError
from ..base import (
    EventHandler,
    ExitCallback,
    Host,
    HostEvent,
    SpawnResult,
    SurfaceInfo,
    TitleCallback,
    ViewInfo,
)
from .client import TmuxClient
from ...telemetry import get_logger

logger = get_logger(__name__)

POLL_TASK_NAME = "host.poll"


@dataclass
class _Watch:
    """被监听的 surface"""

    job_id: str
    on_exit: ExitCallback
    on_title: TitleCallback | None = None
    title: str = ""
    exited: bool = False


@dataclass
class _FocusState:
    window_id: str
    pane_id: str
    width: int
    height: int


async def _call(callback, *args) -> None:
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"[TmuxHost] Callback failed: {e}")


class TmuxHost(Host):
    """tmux Host

    Args:
        socket_path: tmux socket 路径，None 使用默认 socket
        stash_session: 隐藏 surface 的 session 名
        client: 可注入的 TmuxClient（测试用）
    """

    def __init__(
        self,
        socket_path: str | None = None,
        stash_session: str | None = None,
        client: TmuxClient | None = None,
    ):
        self._client = client or TmuxClient(socket_path=socket_path)
        self._stash = stash_session or config.STASH_SESSION_NAME
        self._watched: dict[str, _Watch] = {}
        self._event_handler: EventHandler | None = None
        self._focus: _FocusState | None = None
        self._created_stash = False
        self._timer = None

    @property
    def name(self) -> str:
        return "tmux"

    @property
    def client(self) -> TmuxClient:
        return self._client

    @property
    def stash_session(self) -> str:
        return self._stash

    # === 生命周期 ===

    async def start(self, timer) -> None:
        await self._ensure_stash()
        self._timer = timer
        timer.register_interval(POLL_TASK_NAME, config.HOST_POLL_INTERVAL, self.poll)
        logger.info(f"[TmuxHost] Started (stash={self._stash})")

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.unregister_interval(POLL_TASK_NAME)
            self._timer = None
        if self._created_stash:
            await self._client.kill_session(self._stash)
            self._created_stash = False
        logger.info("[TmuxHost] Stopped")

    def set_event_handler(self, handler: EventHandler | None) -> None:
        self._event_handler = handler

    async def _ensure_stash(self) -> bool:
        if await self._client.has_session(self._stash):
            return True
        if await self._client.new_session(self._stash, config.PLACEHOLDER_CMD):
            self._created_stash = True
            logger.debug(f"[TmuxHost] Created stash session {self._stash}")
            return True
        return False

    # === view ===

    async def current_tab(self) -> str | None:
        return await self._client.get_active_window()

    async def current_view(self) -> str | None:
        return await self._client.get_active_pane()

    async def list_views(self, tab_id: str | None = None) -> list[ViewInfo]:
        tab_id = tab_id or await self.current_tab()
        if not tab_id:
            return []
        panes = await self._client.list_panes(tab_id)
        return [self._view_from_pane(p) for p in panes if p["session_name"] != self._stash]

    async def view_info(self, view_id: str) -> ViewInfo | None:
        pane = await self._find_pane(view_id)
        if pane is None or pane["session_name"] == self._stash:
            return None
        return self._view_from_pane(pane)

    async def split_view(self, side: str, width: int) -> str | None:
        pane_id = await self._client.split_window(None, side, width, config.PLACEHOLDER_CMD)
        if pane_id is None:
            return None
        await self._client.set_pane_option(pane_id, config.SCRATCH_OPTION, "1")
        return pane_id

    async def show_surface(self, view_id: str, surface_id: str) -> str | None:
        if view_id == surface_id:
            return view_id
        if not await self._client.swap_pane(surface_id, view_id):
            return None
        # swap-pane 之后 pane_id 跟随内容移动，view 句柄变为 surface 的 pane_id
        return surface_id

    async def close_view(self, view_id: str) -> bool:
        pane = await self._find_pane(view_id)
        if pane is None or pane["session_name"] == self._stash:
            return False
        if pane["is_scratch"]:
            return await self._client.kill_pane(view_id)
        if pane["window_panes"] <= 1:
            logger.warning(f"[TmuxHost] Refusing to hide the only pane of window {pane['window_id']}")
            return False
        if not await self._ensure_stash():
            return False
        return await self._client.break_pane(view_id, self._stash)

    async def focus_view(self, view_id: str, input_mode: bool = True) -> bool:
        await self._client.run("select-window", "-t", view_id)
        if not await self._client.select_pane(view_id):
            return False
        if input_mode:
            await self._client.cancel_mode(view_id)
        return True

    async def set_view_size(self, view_id: str, width: int | None = None, height: int | None = None) -> bool:
        return await self._client.resize_pane(view_id, width=width, height=height)

    async def total_columns(self) -> int:
        value = await self._client.display("#{window_width}")
        try:
            return int(value) if value else 0
        except ValueError:
            return 0

    # === surface ===

    async def spawn_terminal(
        self,
        argv: Sequence[str],
        env: Mapping[str, str],
        cwd: str | None,
        on_exit: ExitCallback,
        on_title: TitleCallback | None = None,
    ) -> SpawnResult:
        if not argv:
            raise SpawnError("empty command")
        if not await self._ensure_stash():
            raise SpawnError("tmux stash session unavailable")

        created = await self._client.new_window(self._stash, argv, env=env, cwd=cwd)
        if created is None:
            raise SpawnError(f"tmux failed to start: {' '.join(argv)}")

        pane_id, pid = created
        await self._mark_surface(pane_id)
        job_id = make_job_id(JobKind.TMUX, pane_id)
        self._watched[pane_id] = _Watch(job_id=job_id, on_exit=on_exit, on_title=on_title)
        logger.debug(f"[TmuxHost] Spawned {pane_id} (pid={pid})")
        return SpawnResult(surface_id=pane_id, job_id=job_id, pid=pid)

    async def adopt_surface(
        self,
        native_id: str,
        on_exit: ExitCallback,
        on_title: TitleCallback | None = None,
    ) -> SpawnResult | None:
        if not await self._ensure_stash():
            return None
        if not await self._client.break_pane(native_id, self._stash):
            return None

        await self._mark_surface(native_id)
        pid_text = await self._client.display("#{pane_pid}", native_id)
        pid = int(pid_text) if pid_text and pid_text.isdigit() else None
        job_id = make_job_id(JobKind.TMUX, native_id)
        self._watched[native_id] = _Watch(job_id=job_id, on_exit=on_exit, on_title=on_title)
        logger.debug(f"[TmuxHost] Adopted {native_id} (pid={pid})")
        return SpawnResult(surface_id=native_id, job_id=job_id, pid=pid)

    async def _mark_surface(self, pane_id: str) -> None:
        await self._client.set_pane_option(pane_id, config.SURFACE_OPTION, "1")
        await self._client.set_pane_option(pane_id, "remain-on-exit", "on")

    async def surface_info(self, surface_id: str) -> SurfaceInfo | None:
        pane = await self._find_pane(surface_id)
        return self._surface_from_pane(pane) if pane else None

    async def list_terminal_surfaces(self) -> list[SurfaceInfo]:
        panes = await self._client.list_panes()
        return [self._surface_from_pane(p) for p in panes if p["is_surface"]]

    async def delete_surface(self, surface_id: str) -> bool:
        # 保持监听：下一次轮询会上报退出
        return await self._client.kill_pane(surface_id)

    async def notify_resize(self, surface_id: str, width: int, height: int) -> bool:
        return await self._client.resize_pane(surface_id, width=width, height=height)

    async def send_key(self, surface_id: str, key: str) -> bool:
        return await self._client.send_keys(surface_id, key)

    async def enter_scroll_mode(self, surface_id: str) -> bool:
        return await self._client.copy_mode(surface_id)

    # === job control ===

    def owns(self, job_id: str) -> bool:
        return get_job_kind(job_id) == JobKind.TMUX

    async def job_pid(self, job_id: str) -> int | None:
        pane = await self._find_pane(get_native_id(job_id))
        if pane is None or pane["dead"]:
            return None
        return pane["pane_pid"]

    async def job_stop(self, job_id: str) -> bool:
        return await self._client.kill_pane(get_native_id(job_id))

    # === 轮询 ===

    async def poll(self) -> None:
        """检测进程退出、标题变化和焦点/尺寸变化"""
        panes = await self._client.list_panes()
        if not panes:
            # tmux 不可达时不做任何推断
            return

        by_id = {p["pane_id"]: p for p in panes}
        for surface_id, watch in list(self._watched.items()):
            pane = by_id.get(surface_id)
            if pane is None:
                del self._watched[surface_id]
                if not watch.exited:
                    watch.exited = True
                    await _call(watch.on_exit, watch.job_id, None)
                    await self._emit(HostEvent.SURFACE_REMOVED, {"surface_id": surface_id})
                continue
            if pane["dead"] and not watch.exited:
                watch.exited = True
                await _call(watch.on_exit, watch.job_id, pane["dead_status"])
            elif pane["title"] != watch.title:
                watch.title = pane["title"]
                if watch.on_title and watch.title:
                    await _call(watch.on_title, watch.title)

        await self._poll_focus(by_id)

    async def _poll_focus(self, by_id: dict[str, dict]) -> None:
        fmt = "\t".join(["#{window_id}", "#{pane_id}", "#{window_width}", "#{window_height}"])
        output = await self._client.display(fmt)
        if not output:
            return
        parts = output.split("\t")
        if len(parts) < 4:
            return
        try:
            current = _FocusState(parts[0], parts[1], int(parts[2]), int(parts[3]))
        except ValueError:
            return

        previous, self._focus = self._focus, current
        if previous is None:
            return

        payload = {"tab_id": current.window_id, "view_id": current.pane_id}
        if current.window_id != previous.window_id:
            await self._emit(HostEvent.TAB_ENTER, payload)
        else:
            if (current.width, current.height) != (previous.width, previous.height):
                await self._emit(HostEvent.RESIZED, payload)
            if current.pane_id != previous.pane_id:
                await self._emit(HostEvent.VIEW_ENTER, payload)
            else:
                return

        pane = by_id.get(current.pane_id)
        if pane and pane["is_surface"]:
            await self._emit(HostEvent.TERMINAL_ENTER, payload)

    async def _emit(self, event: HostEvent, payload: dict) -> None:
        if self._event_handler is not None:
            await _call(self._event_handler, event, payload)

    # === helpers ===

    async def _find_pane(self, pane_id: str) -> dict | None:
        for pane in await self._client.list_panes():
            if pane["pane_id"] == pane_id:
                return pane
        return None

    @staticmethod
    def _view_from_pane(pane: dict) -> ViewInfo:
        return ViewInfo(
            view_id=pane["pane_id"],
            tab_id=pane["window_id"],
            surface_id=pane["pane_id"],
            width=pane["width"],
            height=pane["height"],
            is_terminal=pane["is_surface"],
            active=pane["active"] and pane["window_active"],
        )

    def _surface_from_pane(self, pane: dict) -> SurfaceInfo:
        return SurfaceInfo(
            surface_id=pane["pane_id"],
            job_id=make_job_id(JobKind.TMUX, pane["pane_id"]) if pane["is_surface"] else None,
            pid=pane["pane_pid"],
            title=pane["title"],
            alive=not pane["dead"],
            is_terminal=pane["is_surface"],
            is_scratch=pane["is_scratch"],
        )
