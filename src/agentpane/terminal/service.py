"""TerminalService - 终端子系统的对外入口

编辑器命令（经由 web API）都落到这里：
- open / close / simple_toggle / focus_toggle / toggle / ensure_visible
- 多会话：open_new_session / close_session / switch_to_session
- cleanup_all（退出时调用）
- send_at_mention（经 MentionQueue 投递文件引用）

每次调用先用 build_config 生成有效配置，再交给当前 provider。
"""

import shlex
from collections.abc import Mapping
from typing import Any

from ..host.base import HostEvent
from ..keys import DismissKeyHandler
from ..mentions import ConnectionFlag, MentionQueue
from ..process.cleanup import CleanupEngine, CleanupReport
from ..providers import ProviderContext, TerminalProvider, discard_session, select_provider
from ..sessions.registry import Session
from ..settings import TerminalSettings, apply_user_config, build_config
from ..telemetry import get_logger, metrics

logger = get_logger(__name__)

DEFAULT_TERMINAL_CMD = "claude"


class TerminalService:
    """终端服务

    Args:
        ctx: provider 协作方（settings 随 setup 更新）
        cleanup: 全局清理引擎
        mentions: mention 队列
        connection: 远端连接状态
        keys: 智能 ESC 处理
        ide_port: IDE 集成端口（写入 CLAUDE_CODE_SSE_PORT）
    """

    def __init__(
        self,
        ctx: ProviderContext,
        cleanup: CleanupEngine,
        mentions: MentionQueue,
        connection: ConnectionFlag,
        keys: DismissKeyHandler,
        ide_port: int | None = None,
    ):
        self._ctx = ctx
        self._cleanup = cleanup
        self._mentions = mentions
        self._connection = connection
        self._keys = keys
        self.ide_port = ide_port
        self._provider: TerminalProvider = select_provider(ctx)

    @property
    def settings(self) -> TerminalSettings:
        return self._ctx.settings

    @property
    def provider(self) -> TerminalProvider:
        return self._provider

    @property
    def sessions(self):
        return self._ctx.sessions

    # === 配置 ===

    def setup(
        self,
        user_config: Mapping[str, Any] | None = None,
        terminal_cmd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> TerminalSettings:
        """应用用户配置（非法项告警并保留原值）"""
        if user_config is not None and not isinstance(user_config, Mapping):
            logger.warning("[Terminal] setup expects a mapping or None for user_config")
            user_config = None

        values = dict(user_config or {})
        if terminal_cmd is not None:
            values["terminal_cmd"] = terminal_cmd
        if env is not None:
            values["env"] = env

        old_provider = self._ctx.settings.provider
        settings = apply_user_config(values, self._ctx.settings)
        self._ctx.settings = settings

        self._ctx.slot.configure(settings)
        self._cleanup.set_strategy(settings.cleanup_strategy)
        self._keys.timeout = settings.esc_timeout
        self._mentions.configure(
            debounce=settings.mention_debounce,
            connection_timeout=settings.mention_connection_timeout,
            expiry=settings.mention_expiry,
        )

        if settings.provider != old_provider:
            self._provider = select_provider(self._ctx)
        self._provider.setup(settings)
        logger.debug(f"[Terminal] Configured (provider={self._provider.name})")
        return settings

    def build_command(self, cmd_args: str | None = None) -> tuple[list[str], dict[str, str]]:
        """构造 agent 命令与环境变量"""
        base = self._ctx.settings.terminal_cmd or DEFAULT_TERMINAL_CMD
        argv = shlex.split(base)
        if cmd_args:
            argv.extend(shlex.split(cmd_args))

        env = {
            "ENABLE_IDE_INTEGRATION": "true",
            "FORCE_CODE_TERMINAL": "true",
        }
        if self.ide_port:
            env["CLAUDE_CODE_SSE_PORT"] = str(self.ide_port)
        env.update(self._ctx.settings.env)
        return argv, env

    def _config(self, overrides: Mapping[str, Any] | None, context: Mapping[str, Any] | None = None) -> TerminalSettings:
        return build_config(self._ctx.settings, overrides, context)

    async def _register_new_terminal(self, had_terminal: bool) -> None:
        """首次出现终端时确保有会话与之关联"""
        if had_terminal:
            return
        surface_id = await self._provider.get_active_surface_id()
        if surface_id is None:
            return
        session_id = self._ctx.sessions.ensure_session()
        self._ctx.sessions.update_terminal_info(session_id, surface_id=surface_id)
        await self._provider.register_terminal_for_session(session_id, surface_id)

    # === 单终端操作 ===

    async def open(self, overrides: Mapping[str, Any] | None = None, cmd_args: str | None = None) -> bool:
        """打开默认终端，返回是否成功启动（或已在运行）"""
        config = self._config(overrides)
        argv, env = self.build_command(cmd_args)
        had_terminal = await self._provider.get_active_surface_id() is not None
        if not await self._provider.open(argv, env, config, True):
            return False
        await self._register_new_terminal(had_terminal)
        return True

    async def close(self) -> None:
        await self._provider.close()

    async def simple_toggle(self, overrides: Mapping[str, Any] | None = None, cmd_args: str | None = None) -> None:
        config = self._config(overrides)
        argv, env = self.build_command(cmd_args)
        had_terminal = await self._provider.get_active_surface_id() is not None
        await self._provider.simple_toggle(argv, env, config)
        await self._register_new_terminal(had_terminal)

    async def focus_toggle(self, overrides: Mapping[str, Any] | None = None, cmd_args: str | None = None) -> None:
        config = self._config(overrides)
        argv, env = self.build_command(cmd_args)
        had_terminal = await self._provider.get_active_surface_id() is not None
        await self._provider.focus_toggle(argv, env, config)
        await self._register_new_terminal(had_terminal)

    async def toggle(self, overrides: Mapping[str, Any] | None = None, cmd_args: str | None = None) -> None:
        config = self._config(overrides)
        argv, env = self.build_command(cmd_args)
        await self._provider.toggle(argv, env, config)

    async def ensure_visible(self, overrides: Mapping[str, Any] | None = None, cmd_args: str | None = None) -> None:
        """可见则不动，否则打开但不抢焦点"""
        config = self._config(overrides)
        argv, env = self.build_command(cmd_args)
        had_terminal = await self._provider.get_active_surface_id() is not None
        await self._provider.ensure_visible(argv, env, config)
        await self._register_new_terminal(had_terminal)

    # === 多会话 ===

    async def open_new_session(
        self,
        overrides: Mapping[str, Any] | None = None,
        cmd_args: str | None = None,
    ) -> str | None:
        """创建会话并立即激活、打开其终端

        Returns:
            新会话 id；终端启动失败时撤销会话并返回 None
        """
        sessions = self._ctx.sessions
        config = self._config(overrides)
        argv, env = self.build_command(cmd_args)
        previous_active = sessions.get_active_session_id()
        session_id = sessions.create_session()
        sessions.set_active_session(session_id)
        if not await self._provider.open_session(session_id, argv, env, config, True):
            discard_session(sessions, session_id, previous_active)
            logger.warning(f"[Terminal] Failed to open new session, active={previous_active}")
            return None
        return session_id

    @staticmethod
    def _pick_replacement(sessions: list[Session], session_id: str) -> str | None:
        """优先列表中的前一个会话，其次后一个，再次任意其他会话"""
        ids = [s.id for s in sessions]
        if session_id in ids:
            index = ids.index(session_id)
            if index > 0:
                return ids[index - 1]
            if index < len(ids) - 1:
                return ids[index + 1]
        return next((sid for sid in ids if sid != session_id), None)

    async def close_session(self, session_id: str | None = None) -> None:
        """关闭会话（默认当前活跃会话），有其他会话时显示槽保留并切换"""
        sessions = self._ctx.sessions
        session_id = session_id or sessions.get_active_session_id()
        if not session_id:
            return

        config = self._config(None)
        if sessions.session_count() > 1:
            new_active_id = self._pick_replacement(sessions.list_sessions(), session_id)
            if new_active_id:
                await self._provider.close_session_keep_window(session_id, new_active_id, config)
                sessions.destroy_session(session_id)
                sessions.set_active_session(new_active_id)
                logger.info(f"[Terminal] Closed {session_id}, switched to {new_active_id}")
                return

        await self._provider.close_session(session_id)
        sessions.destroy_session(session_id)
        logger.info(f"[Terminal] Closed {session_id}")

    async def switch_to_session(self, session_id: str, overrides: Mapping[str, Any] | None = None) -> bool:
        sessions = self._ctx.sessions
        if sessions.get_session(session_id) is None:
            logger.warning(f"[Terminal] Cannot switch to non-existent session: {session_id}")
            return False
        sessions.set_active_session(session_id)
        await self._provider.focus_session(session_id, self._config(overrides))
        return True

    def list_sessions(self) -> list[Session]:
        return self._ctx.sessions.list_sessions()

    def session_count(self) -> int:
        return self._ctx.sessions.session_count()

    def get_active_session_id(self) -> str | None:
        return self._ctx.sessions.get_active_session_id()

    async def get_current_session_id(self) -> str | None:
        """当前聚焦的 view 所展示终端对应的会话"""
        host = self._ctx.host
        view_id = await host.current_view()
        if view_id is None:
            return None
        info = await host.view_info(view_id)
        if info is None or not info.surface_id:
            return None
        session = self._ctx.sessions.find_session_by_surface(info.surface_id)
        return session.id if session else None

    # === 清理 ===

    async def cleanup_all(self) -> CleanupReport:
        self._keys.cancel_all()
        return await self._cleanup.cleanup_all()

    # === mentions ===

    async def send_at_mention(
        self,
        file_path: str,
        line_start: int | None = None,
        line_end: int | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        """投递文件引用：已连接则防抖发送并确保终端可见，否则入队并打开终端"""
        self._mentions.enqueue(file_path, line_start, line_end)
        if self._connection.is_connected():
            await self.ensure_visible(overrides)
        else:
            await self.open(overrides)

    def set_connected(self, connected: bool) -> None:
        self._connection.set(connected)
        if connected:
            self._mentions.on_connected()

    # === 按键 ===

    async def dismiss_key(self, surface_id: str | None = None) -> str | None:
        surface_id = surface_id or await self._provider.get_active_surface_id()
        if surface_id is None:
            return None
        return await self._keys.press(surface_id)

    # === host 事件 ===

    async def handle_host_event(self, event: HostEvent, payload: dict | None = None) -> None:
        payload = payload or {}
        if event == HostEvent.SURFACE_REMOVED:
            await self._remove_zombie_session(payload.get("surface_id"))
            return
        await self._ctx.slot.handle_event(event, payload)

    async def _remove_zombie_session(self, surface_id: str | None) -> None:
        """surface 被外部删除后，清除仍指向它的会话"""
        if not surface_id:
            return
        sessions = self._ctx.sessions
        session = sessions.find_session_by_surface(surface_id)
        if session is None:
            return
        if session.id in await self._provider.list_active_session_ids():
            return
        logger.info(f"[Terminal] Removing zombie session {session.id} (surface {surface_id} gone)")
        sessions.destroy_session(session.id)

    def debug_snapshot(self) -> dict:
        return {
            "provider": self._provider.name,
            "provider_state": self._provider.debug_snapshot(),
            "active_session": self.get_active_session_id(),
            "sessions": [s.to_dict() for s in self.list_sessions()],
            "slot_view": self._ctx.slot.view_id,
            "mentions_pending": len(self._mentions),
            "metrics": metrics.snapshot(),
        }
