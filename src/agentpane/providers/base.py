"""Terminal Provider 抽象接口

Provider 负责为会话启动并监管进程 + surface。所有后端实现统一接口：

必需操作:
    open, open_session, close, close_session, close_session_keep_window,
    focus_session, simple_toggle, focus_toggle, get_active_surface_id,
    get_surface_id_for_session, list_active_session_ids, is_available

可选操作（有默认实现）:
    toggle, ensure_visible, register_terminal_for_session, debug_snapshot

ManagedTerminalProvider 是拥有 surface 的后端（native / widget）的共同实现：
会话表、遗留的 active 引用、保留窗口关闭、退出处理。
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ..display.slot import DisplaySlotManager
from ..errors import SpawnError
from ..host.base import Host
from ..process import signals
from ..process.jobs import JobRouter, LocalJobTable
from ..process.registry import ProcessRegistry
from ..sessions.registry import SessionRegistry
from ..settings import TerminalSettings
from ..telemetry import format_session_log, get_logger, metrics
from ..timer import Timer
from .lifecycle import CloseReason, SessionLifecycle

logger = get_logger(__name__)

REQUIRED_OPERATIONS = (
    "open",
    "open_session",
    "close",
    "close_session",
    "close_session_keep_window",
    "focus_session",
    "simple_toggle",
    "focus_toggle",
    "get_active_surface_id",
    "get_surface_id_for_session",
    "list_active_session_ids",
    "is_available",
)

Command = Sequence[str]
Env = Mapping[str, str]


def discard_session(sessions: SessionRegistry, session_id: str, previous_active: str | None = None) -> None:
    """撤销启动失败前新建的会话，恢复原活跃会话"""
    sessions.destroy_session(session_id)
    if previous_active is not None:
        sessions.set_active_session(previous_active)
    logger.debug(format_session_log("sessions", session_id, "Discarded after failed start"))


@dataclass
class ProviderContext:
    """Provider 依赖的协作方"""

    host: Host
    slot: DisplaySlotManager
    sessions: SessionRegistry
    processes: ProcessRegistry
    jobs: JobRouter
    local_jobs: LocalJobTable
    timer: Timer
    settings: TerminalSettings


@dataclass
class TerminalState:
    """一个会话的终端（进程 + surface）"""

    session_id: str
    surface_id: str
    job_id: str
    pid: int | None = None
    auto_close: bool = True


class TerminalProvider(ABC):
    """Provider 抽象接口"""

    name = "base"

    def setup(self, settings: TerminalSettings) -> None:
        """配置变更时调用"""

    @abstractmethod
    async def open(self, command: Command, env: Env, config: TerminalSettings, focus: bool = True) -> bool:
        """打开（或展示已有的）默认终端

        Returns:
            终端是否在运行（启动失败为 False，且不留下新建的会话）
        """

    @abstractmethod
    async def open_session(
        self,
        session_id: str,
        command: Command,
        env: Env,
        config: TerminalSettings,
        focus: bool = True,
    ) -> bool:
        """为会话打开终端，已有则展示；启动失败返回 False"""

    @abstractmethod
    async def close(self) -> None:
        """隐藏显示槽"""

    @abstractmethod
    async def close_session(self, session_id: str) -> None:
        """关闭会话的终端并终止其进程"""

    @abstractmethod
    async def close_session_keep_window(
        self,
        old_session_id: str,
        new_session_id: str,
        config: TerminalSettings,
    ) -> None:
        """关闭旧会话，显示槽保留并切换到新会话"""

    @abstractmethod
    async def focus_session(self, session_id: str, config: TerminalSettings | None = None) -> None:
        """展示并聚焦会话的终端"""

    @abstractmethod
    async def simple_toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        """无条件显示/隐藏"""

    @abstractmethod
    async def focus_toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        """已聚焦则隐藏，否则聚焦（不隐藏）"""

    @abstractmethod
    async def get_active_surface_id(self) -> str | None: ...

    @abstractmethod
    async def get_surface_id_for_session(self, session_id: str) -> str | None: ...

    @abstractmethod
    async def list_active_session_ids(self) -> list[str]: ...

    @abstractmethod
    def is_available(self) -> bool: ...

    # === 可选操作 ===

    async def toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        await self.simple_toggle(command, env, config)

    async def ensure_visible(self, command: Command, env: Env, config: TerminalSettings) -> None:
        """确保可见但不抢焦点"""
        await self.open(command, env, config, focus=False)

    async def register_terminal_for_session(self, session_id: str, surface_id: str | None = None) -> bool:
        return False

    def debug_snapshot(self) -> dict | None:
        return None


class ManagedTerminalProvider(TerminalProvider):
    """拥有 surface 的 provider 共同实现

    子类只需实现 _spawn（创建进程 + surface 并开始跟踪 PID）。
    """

    def __init__(self, ctx: ProviderContext):
        self._ctx = ctx
        self._terminals: dict[str, TerminalState] = {}
        self._active: TerminalState | None = None
        self._lifecycle = SessionLifecycle()
        # 已被显式关闭、等待退出事件的 job -> session
        self._closing_jobs: dict[str, str] = {}

    @property
    def lifecycle(self) -> SessionLifecycle:
        return self._lifecycle

    @abstractmethod
    async def _spawn(self, session_id: str, command: Command, env: Env, config: TerminalSettings) -> TerminalState:
        """启动进程并创建 surface（在 stash 中）

        Raises:
            SpawnError: 启动失败，不得留下部分状态
        """

    # === 内部工具 ===

    async def _is_valid(self, state: TerminalState | None) -> bool:
        return state is not None and await self._ctx.host.surface_exists(state.surface_id)

    def _title_handler(self, session_id: str):
        def on_title(title: str) -> None:
            self._ctx.sessions.update_session_name(session_id, title)
        return on_title

    async def _create(
        self,
        session_id: str,
        command: Command,
        env: Env,
        config: TerminalSettings,
    ) -> TerminalState | None:
        try:
            state = await self._spawn(session_id, command, env, config)
        except SpawnError as e:
            logger.error(format_session_log(self.name, session_id, f"Failed to start terminal: {e}"))
            metrics.inc("provider.spawn_errors", {"provider": self.name})
            return None

        state.auto_close = config.auto_close
        self._terminals[session_id] = state
        self._lifecycle.open(session_id)
        self._ctx.sessions.update_terminal_info(session_id, surface_id=state.surface_id, job_id=state.job_id)
        logger.debug(format_session_log(self.name, session_id, f"Started {state.job_id} (pid={state.pid})"))
        return state

    async def _present(self, state: TerminalState, focus: bool, config: TerminalSettings | None = None) -> bool:
        if not await self._ctx.slot.present(state.surface_id, focus, config):
            return False
        self._active = state
        self._ctx.sessions.update_terminal_info(state.session_id, view_id=self._ctx.slot.view_id)
        return True

    async def _terminate(self, state: TerminalState) -> None:
        """两阶段终止：先 TERM 直接子进程，再 stop job"""
        pid = await self._ctx.jobs.job_pid(state.job_id)
        if pid:
            await asyncio.to_thread(signals.terminate_children, pid)
        await self._ctx.jobs.job_stop(state.job_id)

    async def _resolve_state(self, session_id: str) -> TerminalState | None:
        """查找会话的终端：会话表 -> 遗留 active 引用 -> 会话注册表上报的 surface"""
        state = self._terminals.get(session_id)
        if await self._is_valid(state):
            return state

        session = self._ctx.sessions.get_session(session_id)
        active = self._active
        if active is not None and await self._is_valid(active):
            if active.session_id == session_id or (session and session.surface_id == active.surface_id):
                logger.debug(format_session_log(self.name, session_id, "Recovered legacy terminal"))
                active.session_id = session_id
                self._terminals[session_id] = active
                self._lifecycle.open(session_id)
                return active

        if session is not None and session.surface_id:
            surface = await self._ctx.host.surface_info(session.surface_id)
            if surface is not None and surface.alive and (session.job_id or surface.job_id):
                logger.debug(format_session_log(self.name, session_id, "Recovered terminal from session registry"))
                state = TerminalState(
                    session_id=session_id,
                    surface_id=surface.surface_id,
                    job_id=session.job_id or surface.job_id,
                    pid=surface.pid,
                    auto_close=self._ctx.settings.auto_close,
                )
                self._terminals[session_id] = state
                self._lifecycle.open(session_id)
                return state

        return None

    async def _any_live_state(self, exclude: str) -> TerminalState | None:
        for session_id, state in list(self._terminals.items()):
            if session_id != exclude and await self._is_valid(state):
                return state
        return None

    def _state_for_job(self, job_id: str) -> TerminalState | None:
        for state in self._terminals.values():
            if state.job_id == job_id:
                return state
        if self._active is not None and self._active.job_id == job_id:
            return self._active
        return None

    def _retire(self, state: TerminalState) -> None:
        """显式关闭后移除会话表条目，保留 job 映射供退出回调 finish"""
        self._closing_jobs[state.job_id] = state.session_id
        self._forget(state)

    def _forget(self, state: TerminalState) -> None:
        if self._terminals.get(state.session_id) is state:
            del self._terminals[state.session_id]
        if self._active is state:
            self._active = None

    # === 退出处理 ===

    async def _handle_exit(self, job_id: str, exit_code: int | None) -> None:
        """进程退出回调（host 在进程退出或 surface 被删除后调用）"""
        self._ctx.processes.untrack(job_id)
        closing_session = self._closing_jobs.pop(job_id, None)
        state = self._state_for_job(job_id)
        if state is None:
            if closing_session is not None:
                self._lifecycle.finish(closing_session)
                logger.debug(format_session_log(self.name, closing_session, "Intentional close completed"))
            return

        session_id = state.session_id
        if not self._lifecycle.begin_close(session_id, CloseReason.EXIT):
            # 显式关闭已在进行：只做最小清理
            self._forget(state)
            self._lifecycle.finish(session_id)
            logger.debug(format_session_log(self.name, session_id, "Intentional close completed"))
            return

        if exit_code:
            logger.error(format_session_log(self.name, session_id, f"Terminal exited with code {exit_code}"))
            metrics.inc("provider.exit_errors", {"provider": self.name})
        else:
            logger.debug(format_session_log(self.name, session_id, "Terminal process exited"))

        try:
            await self._teardown_after_exit(state)
        finally:
            self._lifecycle.finish(session_id)

    async def _teardown_after_exit(self, state: TerminalState) -> None:
        sessions = self._ctx.sessions
        slot = self._ctx.slot
        session_id = state.session_id

        session_count = sessions.session_count()
        was_shown = await slot.current_surface() == state.surface_id
        self._forget(state)
        if sessions.get_session(session_id) is not None:
            sessions.destroy_session(session_id)

        if not state.auto_close:
            return

        if was_shown and session_count > 1:
            replacement = None
            new_active = sessions.get_active_session_id()
            if new_active:
                replacement = await self._resolve_state(new_active)
            if replacement is None:
                replacement = await self._any_live_state(exclude=session_id)
            if replacement is None and await self._is_valid(self._active):
                replacement = self._active
            if replacement is not None and await self._present(replacement, focus=True):
                await self._ctx.host.delete_surface(state.surface_id)
                return

        if was_shown:
            await slot.close()
        await self._ctx.host.delete_surface(state.surface_id)

    # === 必需操作 ===

    async def open(self, command: Command, env: Env, config: TerminalSettings, focus: bool = True) -> bool:
        if await self._is_valid(self._active):
            await self._present(self._active, focus, config)
            return True

        sessions = self._ctx.sessions
        created = sessions.session_count() == 0
        session_id = sessions.ensure_session()
        state = self._terminals.get(session_id)
        if not await self._is_valid(state):
            state = await self._create(session_id, command, env, config)
            if state is None:
                if created:
                    discard_session(sessions, session_id)
                return False
        await self._present(state, focus, config)
        return True

    async def open_session(
        self,
        session_id: str,
        command: Command,
        env: Env,
        config: TerminalSettings,
        focus: bool = True,
    ) -> bool:
        state = self._terminals.get(session_id)
        if await self._is_valid(state):
            await self._present(state, focus, config)
            logger.debug(format_session_log(self.name, session_id, "Displayed existing terminal"))
            return True

        state = await self._create(session_id, command, env, config)
        if state is None:
            return False
        await self._present(state, focus, config)
        return True

    async def close(self) -> None:
        await self._ctx.slot.close()

    async def close_session(self, session_id: str) -> None:
        state = self._terminals.get(session_id)
        if state is None:
            return

        self._lifecycle.begin_close(session_id, CloseReason.USER)
        self._retire(state)
        if await self._ctx.slot.current_surface() == state.surface_id:
            await self._ctx.slot.close()
        await self._terminate(state)
        await self._ctx.host.delete_surface(state.surface_id)
        logger.debug(format_session_log(self.name, session_id, "Closed session"))

    async def close_session_keep_window(
        self,
        old_session_id: str,
        new_session_id: str,
        config: TerminalSettings,
    ) -> None:
        # 标记必须先于任何拆除动作
        self._lifecycle.begin_close(old_session_id, CloseReason.USER)

        new_state = await self._resolve_state(new_session_id)
        old_state = self._terminals.get(old_session_id)
        if old_state is None:
            old_session = self._ctx.sessions.get_session(old_session_id)
            active = self._active
            if active is not None and old_session is not None and old_session.surface_id == active.surface_id:
                old_state = active
        if old_state is not None:
            self._retire(old_state)

        # 先展示替换者，再拆除旧进程
        if new_state is not None:
            await self._present(new_state, focus=True, config=config)
        else:
            logger.warning(format_session_log(self.name, new_session_id, "No terminal found for replacement session"))
            await self._ctx.slot.close()

        if old_state is None:
            logger.debug(format_session_log(self.name, old_session_id, "No terminal found for closing session"))
            return

        await self._terminate(old_state)
        await self._ctx.host.delete_surface(old_state.surface_id)
        logger.debug(f"[{self.name}] Closed session {old_session_id} and switched to {new_session_id}")

    async def focus_session(self, session_id: str, config: TerminalSettings | None = None) -> None:
        state = await self._resolve_state(session_id)
        if state is None:
            logger.debug(format_session_log(self.name, session_id, "Cannot focus session without terminal"))
            return
        await self._present(state, focus=True, config=config)

    async def simple_toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        if await self._ctx.slot.is_visible():
            logger.debug(f"[{self.name}] Simple toggle: hiding terminal")
            await self._ctx.slot.close()
        elif await self._is_valid(self._active):
            logger.debug(f"[{self.name}] Simple toggle: showing hidden terminal")
            await self._present(self._active, focus=True, config=config)
        else:
            logger.debug(f"[{self.name}] Simple toggle: creating new terminal")
            await self.open(command, env, config, focus=True)

    async def focus_toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        slot = self._ctx.slot
        if not await slot.is_visible():
            if await self._is_valid(self._active):
                await self._present(self._active, focus=True, config=config)
            else:
                await self.open(command, env, config, focus=True)
        elif await slot.is_focused():
            logger.debug(f"[{self.name}] Focus toggle: hiding terminal (currently focused)")
            await slot.close()
        else:
            logger.debug(f"[{self.name}] Focus toggle: focusing terminal")
            await self._ctx.host.focus_view(slot.view_id, input_mode=True)

    async def get_active_surface_id(self) -> str | None:
        if await self._is_valid(self._active):
            return self._active.surface_id
        self._active = None
        return None

    async def get_surface_id_for_session(self, session_id: str) -> str | None:
        state = self._terminals.get(session_id)
        if await self._is_valid(state):
            return state.surface_id
        return None

    async def list_active_session_ids(self) -> list[str]:
        return [sid for sid, state in list(self._terminals.items()) if await self._is_valid(state)]

    # === 可选操作 ===

    async def ensure_visible(self, command: Command, env: Env, config: TerminalSettings) -> None:
        if await self._ctx.slot.is_visible():
            return
        await self.open(command, env, config, focus=False)

    async def register_terminal_for_session(self, session_id: str, surface_id: str | None = None) -> bool:
        """把已存在的终端（默认为 active 终端）登记到会话"""
        if surface_id is None and self._active is not None:
            surface_id = self._active.surface_id
        if not surface_id:
            return False

        surface = await self._ctx.host.surface_info(surface_id)
        if surface is None:
            logger.debug(format_session_log(self.name, session_id, "Cannot register missing surface"))
            return False

        for other_id, state in self._terminals.items():
            if state.surface_id == surface_id and other_id != session_id:
                logger.debug(format_session_log(self.name, session_id, f"Surface already registered to {other_id}"))
                return False

        if self._active is not None and self._active.surface_id == surface_id:
            state = self._active
            state.session_id = session_id
        elif surface.job_id:
            state = TerminalState(session_id, surface_id, surface.job_id, surface.pid, self._ctx.settings.auto_close)
        else:
            return False

        self._terminals[session_id] = state
        self._lifecycle.open(session_id)
        self._ctx.sessions.update_terminal_info(session_id, surface_id=surface_id, job_id=state.job_id)
        return True

    def debug_snapshot(self) -> dict | None:
        return {
            "provider": self.name,
            "active": self._active.session_id if self._active else None,
            "terminals": {sid: {"surface_id": s.surface_id, "job_id": s.job_id, "pid": s.pid}
                          for sid, s in self._terminals.items()},
            "closing": sorted(self._lifecycle.closing_ids()),
        }
