"""External provider - 在独立的外部终端程序中运行进程

external_terminal_cmd 可以是：
- 模板字符串，一个 %s 填入命令，如 "alacritty -e %s"
- 模板字符串，两个 %s 依次填入工作目录和命令，如 "alacritty --working-directory %s -e %s"
- 可调用对象 fn(command_string, env) -> str | list[str]

只管理一个分离进程，没有 surface，也不参与显示槽。
"""

import asyncio
import os
import shlex
from collections.abc import Callable

from ..errors import ConfigError, SpawnError
from ..process import signals
from ..settings import TerminalSettings
from ..telemetry import format_session_log, get_logger
from .base import Command, Env, ProviderContext, TerminalProvider, discard_session

logger = get_logger(__name__)


def build_external_argv(
    template: str | Callable | None,
    command: Command,
    env: Env,
    cwd: str | None,
) -> list[str]:
    """把外部终端模板展开为 argv

    Raises:
        ConfigError: 模板缺失或格式错误
    """
    command_string = shlex.join(command)

    if template is None:
        raise ConfigError("external_terminal_cmd", template, "not configured")

    if callable(template):
        result = template(command_string, dict(env))
        if isinstance(result, str) and result:
            return shlex.split(result)
        if isinstance(result, (list, tuple)) and result:
            return [str(part) for part in result]
        raise ConfigError("external_terminal_cmd", result, "function must return a non-empty string or list")

    if not isinstance(template, str) or not template:
        raise ConfigError("external_terminal_cmd", template, "must be a non-empty string or function")

    placeholders = template.count("%s")
    if placeholders == 1:
        full_command = template % command_string
    elif placeholders == 2:
        full_command = template % (shlex.quote(cwd or os.getcwd()), command_string)
    else:
        raise ConfigError(
            "external_terminal_cmd",
            template,
            f"must use 1 '%s' (command) or 2 '%s' placeholders (cwd, command); got {placeholders}",
        )
    return shlex.split(full_command)


class ExternalProvider(TerminalProvider):
    """外部终端 provider"""

    name = "external"

    def __init__(self, ctx: ProviderContext):
        self._ctx = ctx
        self._job_id: str | None = None
        self._pid: int | None = None
        self._session_id: str | None = None

    def is_available(self) -> bool:
        template = self._ctx.settings.external_terminal_cmd
        return callable(template) or (isinstance(template, str) and "%s" in template)

    async def _is_running(self) -> bool:
        if self._job_id is None:
            return False
        if await self._ctx.local_jobs.job_pid(self._job_id) is None:
            self._reset()
            return False
        return True

    def _reset(self) -> None:
        self._job_id = None
        self._pid = None
        self._session_id = None

    async def _handle_exit(self, job_id: str, exit_code: int | None) -> None:
        self._ctx.processes.untrack(job_id)
        if job_id != self._job_id:
            return
        logger.debug(format_session_log(self.name, self._session_id, f"External terminal exited ({exit_code})"))
        self._reset()

    async def open(self, command: Command, env: Env, config: TerminalSettings, focus: bool = True) -> bool:
        sessions = self._ctx.sessions
        created = sessions.session_count() == 0
        session_id = sessions.ensure_session()
        if await self.open_session(session_id, command, env, config, focus):
            return True
        if created:
            discard_session(sessions, session_id)
        return False

    async def open_session(
        self,
        session_id: str,
        command: Command,
        env: Env,
        config: TerminalSettings,
        focus: bool = True,
    ) -> bool:
        if await self._is_running():
            logger.debug(f"[{self.name}] External terminal already running")
            return True

        try:
            argv = build_external_argv(config.external_terminal_cmd, command, env, config.cwd)
        except ConfigError as e:
            logger.error(f"[{self.name}] {e}")
            return False

        try:
            job_id, pid = await self._ctx.local_jobs.spawn(
                argv, env, config.cwd or os.getcwd(), on_exit=self._handle_exit
            )
        except SpawnError as e:
            logger.error(f"[{self.name}] Failed to start external terminal: {e}")
            return False

        self._job_id = job_id
        self._pid = pid
        self._session_id = session_id
        await self._ctx.processes.track(job_id)
        self._ctx.sessions.update_terminal_info(session_id, job_id=job_id)
        logger.debug(format_session_log(self.name, session_id, f"Started {shlex.join(argv)} (pid={pid})"))
        return True

    async def close(self) -> None:
        if not await self._is_running():
            return
        pid = await self._ctx.local_jobs.job_pid(self._job_id)
        if pid:
            await asyncio.to_thread(signals.terminate_children, pid)
        await self._ctx.local_jobs.job_stop(self._job_id)

    async def close_session(self, session_id: str) -> None:
        if session_id == self._session_id:
            await self.close()

    async def close_session_keep_window(self, old_session_id, new_session_id, config) -> None:
        await self.close_session(old_session_id)

    async def focus_session(self, session_id: str, config: TerminalSettings | None = None) -> None:
        # 外部窗口的焦点由窗口管理器负责
        pass

    async def simple_toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        if await self._is_running():
            await self.close()
        else:
            await self.open(command, env, config)

    async def focus_toggle(self, command: Command, env: Env, config: TerminalSettings) -> None:
        await self.simple_toggle(command, env, config)

    async def ensure_visible(self, command: Command, env: Env, config: TerminalSettings) -> None:
        pass

    async def get_active_surface_id(self) -> str | None:
        return None

    async def get_surface_id_for_session(self, session_id: str) -> str | None:
        return None

    async def list_active_session_ids(self) -> list[str]:
        if await self._is_running() and self._session_id:
            return [self._session_id]
        return []

    def debug_snapshot(self) -> dict | None:
        return {"provider": self.name, "job_id": self._job_id, "pid": self._pid, "session_id": self._session_id}
