"""自定义 provider 适配

用户提供的任意对象，只要实现了全部必需操作即可作为 provider。
操作可以是同步函数也可以是协程函数；可选操作缺失时使用默认行为。
"""

import inspect
from typing import Any

from ..errors import ProviderValidationError
from ..settings import TerminalSettings
from ..telemetry import get_logger
from .base import REQUIRED_OPERATIONS, Command, Env, TerminalProvider

logger = get_logger(__name__)


def missing_operations(obj: Any) -> list[str]:
    """返回 obj 缺少（或不可调用）的必需操作"""
    return [op for op in REQUIRED_OPERATIONS if not callable(getattr(obj, op, None))]


def validate_provider(obj: Any) -> None:
    """
    Raises:
        ProviderValidationError: 缺少必需操作
    """
    missing = missing_operations(obj)
    if missing:
        raise ProviderValidationError(missing)


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


class CustomProvider(TerminalProvider):
    """包装用户 provider 对象"""

    def __init__(self, impl: Any):
        validate_provider(impl)
        self._impl = impl
        self.name = getattr(impl, "name", None) or type(impl).__name__

    @property
    def impl(self) -> Any:
        return self._impl

    def _optional(self, op: str):
        method = getattr(self._impl, op, None)
        return method if callable(method) else None

    def setup(self, settings: TerminalSettings) -> None:
        setup = self._optional("setup")
        if setup is not None:
            setup(settings)

    async def open(self, command: Command, env: Env, config: TerminalSettings, focus: bool = True) -> bool:
        # 用户实现不返回结果时视为成功
        return await _maybe_await(self._impl.open(command, env, config, focus)) is not False

    async def open_session(self, session_id, command, env, config, focus=True) -> bool:
        return await _maybe_await(self._impl.open_session(session_id, command, env, config, focus)) is not False

    async def close(self) -> None:
        await _maybe_await(self._impl.close())

    async def close_session(self, session_id: str) -> None:
        await _maybe_await(self._impl.close_session(session_id))

    async def close_session_keep_window(self, old_session_id, new_session_id, config) -> None:
        await _maybe_await(self._impl.close_session_keep_window(old_session_id, new_session_id, config))

    async def focus_session(self, session_id: str, config: TerminalSettings | None = None) -> None:
        await _maybe_await(self._impl.focus_session(session_id, config))

    async def simple_toggle(self, command, env, config) -> None:
        await _maybe_await(self._impl.simple_toggle(command, env, config))

    async def focus_toggle(self, command, env, config) -> None:
        await _maybe_await(self._impl.focus_toggle(command, env, config))

    async def get_active_surface_id(self) -> str | None:
        return await _maybe_await(self._impl.get_active_surface_id())

    async def get_surface_id_for_session(self, session_id: str) -> str | None:
        return await _maybe_await(self._impl.get_surface_id_for_session(session_id))

    async def list_active_session_ids(self) -> list[str]:
        return list(await _maybe_await(self._impl.list_active_session_ids()) or [])

    def is_available(self) -> bool:
        try:
            return bool(self._impl.is_available())
        except Exception as e:
            logger.warning(f"[{self.name}] is_available failed: {e}")
            return False

    async def toggle(self, command, env, config) -> None:
        toggle = self._optional("toggle")
        if toggle is None:
            await self.simple_toggle(command, env, config)
        else:
            await _maybe_await(toggle(command, env, config))

    async def ensure_visible(self, command, env, config) -> None:
        ensure_visible = self._optional("ensure_visible")
        if ensure_visible is None:
            await super().ensure_visible(command, env, config)
        else:
            await _maybe_await(ensure_visible(command, env, config))

    async def register_terminal_for_session(self, session_id: str, surface_id: str | None = None) -> bool:
        register = self._optional("register_terminal_for_session")
        if register is None:
            return False
        return bool(await _maybe_await(register(session_id, surface_id)))

    def debug_snapshot(self) -> dict | None:
        snapshot = self._optional("debug_snapshot")
        return snapshot() if snapshot is not None else None
