"""Provider 工厂

选择策略：
- 自定义对象：校验必需操作，失败或不可用时回退 native
- "auto": widget 可用则用 widget，否则 native
- 显式名字：不可用时告警、计数 provider.fallback，回退 native
"""

from typing import Any

from ..errors import ProviderUnavailableError, ProviderValidationError
from ..telemetry import get_logger, metrics
from .base import ProviderContext, TerminalProvider
from .custom import CustomProvider
from .external import ExternalProvider
from .native import NativeProvider
from .none import NoneProvider
from .widget import WidgetProvider

logger = get_logger(__name__)

_BUILTIN = {
    "native": NativeProvider,
    "widget": WidgetProvider,
    "external": ExternalProvider,
    "none": NoneProvider,
}


def create_provider(name: str, ctx: ProviderContext) -> TerminalProvider:
    """按名字创建 provider

    Raises:
        ValueError: 未知名字
        ProviderUnavailableError: provider 在当前环境不可用
    """
    cls = _BUILTIN.get(name)
    if cls is None:
        raise ValueError(f"Unknown provider: {name}")
    provider = cls(ctx)
    if not provider.is_available():
        raise ProviderUnavailableError(f"provider {name!r} is not available")
    return provider


def _fallback(ctx: ProviderContext, requested: str, reason: str) -> TerminalProvider:
    logger.warning(f"[Provider] {reason}, falling back to native")
    metrics.inc("provider.fallback", {"from": requested})
    return NativeProvider(ctx)


def select_provider(ctx: ProviderContext, choice: Any = None) -> TerminalProvider:
    """根据配置选择 provider（总会返回一个可用的 provider）"""
    if choice is None:
        choice = ctx.settings.provider

    if not isinstance(choice, str):
        try:
            provider = CustomProvider(choice)
        except ProviderValidationError as e:
            return _fallback(ctx, "custom", f"Invalid custom provider: {e}")
        if not provider.is_available():
            return _fallback(ctx, "custom", f"Custom provider {provider.name} is not available")
        logger.info(f"[Provider] Using custom provider {provider.name}")
        return provider

    if choice == "auto":
        widget = WidgetProvider(ctx)
        if widget.is_available():
            logger.info("[Provider] Auto-selected widget provider")
            return widget
        logger.info("[Provider] Auto-selected native provider")
        return NativeProvider(ctx)

    try:
        provider = create_provider(choice, ctx)
    except (ValueError, ProviderUnavailableError) as e:
        return _fallback(ctx, choice, str(e))
    logger.info(f"[Provider] Using {choice} provider")
    return provider
