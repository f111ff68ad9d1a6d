"""终端设置 - 用户配置校验与每次调用的有效配置

职责：
- TerminalSettings: 全部可配置项（默认值来自 config 模块）
- apply_user_config: 逐项校验用户配置，非法值告警并保留默认值
- build_config: 合并单次调用的覆盖项，解析工作目录
"""

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from . import config
from .errors import ConfigError
from .telemetry import get_logger

logger = get_logger(__name__)

PROVIDER_NAMES = ("auto", "native", "external", "widget", "none")


@dataclass
class TerminalSettings:
    """终端配置

    provider 可以是名字，也可以是自定义 provider 对象（注册时校验）。
    cwd 在 build_config 之后为已解析的工作目录。
    """

    split_side: str = config.SPLIT_SIDE
    split_width_percentage: float = config.SPLIT_WIDTH_PERCENTAGE
    provider: Any = config.PROVIDER
    auto_close: bool = config.AUTO_CLOSE
    cleanup_strategy: str = config.CLEANUP_STRATEGY
    esc_timeout: float | None = config.ESC_TIMEOUT_SECONDS
    terminal_cmd: str = config.TERMINAL_CMD
    external_terminal_cmd: str | Callable | None = config.EXTERNAL_TERMINAL_CMD
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    git_repo_cwd: bool = config.GIT_REPO_CWD
    cwd_provider: Callable[[dict], str | None] | None = None
    mention_debounce: float = config.MENTION_DEBOUNCE_SECONDS
    mention_connection_timeout: float = config.MENTION_CONNECTION_TIMEOUT_SECONDS
    mention_expiry: float = config.MENTION_EXPIRY_SECONDS


# === validators ===
# 每个 validator 返回规范化后的值，非法时抛 ConfigError


def _split_side(value):
    if value not in ("left", "right"):
        raise ConfigError("split_side", value, "must be 'left' or 'right'")
    return value


def _fraction(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 < value < 1:
        raise ConfigError("split_width_percentage", value, "must be a number in (0, 1)")
    return float(value)


def _provider(value):
    if isinstance(value, str):
        if value not in PROVIDER_NAMES:
            raise ConfigError("provider", value, f"must be one of {', '.join(PROVIDER_NAMES)} or a provider object")
        return value
    if value is None:
        raise ConfigError("provider", value, "must not be empty")
    # 自定义 provider 在选择时校验
    return value


def _bool(key):
    def check(value):
        if not isinstance(value, bool):
            raise ConfigError(key, value, "must be a boolean")
        return value
    return check


def _cleanup_strategy(value):
    if value not in config.CLEANUP_STRATEGIES:
        raise ConfigError("cleanup_strategy", value, f"must be one of {', '.join(config.CLEANUP_STRATEGIES)}")
    return value


def _esc_timeout(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError("esc_timeout", value, "must be a number >= 0 or None")
    return float(value)


def _terminal_cmd(value):
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("terminal_cmd", value, "must be a non-empty string")
    return value


def _external_cmd(value):
    if value is None or callable(value):
        return value
    if not isinstance(value, str) or "%s" not in value:
        raise ConfigError("external_terminal_cmd", value, "must be a callable or a string containing '%s'")
    return value


def _env(value):
    if not isinstance(value, Mapping) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ConfigError("env", value, "must be a mapping of strings")
    return dict(value)


def _cwd(value):
    if value is not None and not isinstance(value, str):
        raise ConfigError("cwd", value, "must be a string or None")
    return value


def _cwd_provider(value):
    if not callable(value):
        raise ConfigError("cwd_provider", value, "must be callable")
    return value


def _positive(key):
    def check(value):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(key, value, "must be a positive number of seconds")
        return float(value)
    return check


_VALIDATORS: dict[str, Callable[[Any], Any]] = {
    "split_side": _split_side,
    "split_width_percentage": _fraction,
    "provider": _provider,
    "auto_close": _bool("auto_close"),
    "cleanup_strategy": _cleanup_strategy,
    "esc_timeout": _esc_timeout,
    "terminal_cmd": _terminal_cmd,
    "external_terminal_cmd": _external_cmd,
    "env": _env,
    "cwd": _cwd,
    "git_repo_cwd": _bool("git_repo_cwd"),
    "cwd_provider": _cwd_provider,
    "mention_debounce": _positive("mention_debounce"),
    "mention_connection_timeout": _positive("mention_connection_timeout"),
    "mention_expiry": _positive("mention_expiry"),
}

# 单次调用允许覆盖的配置项
_OVERRIDABLE = ("split_side", "split_width_percentage", "cwd", "git_repo_cwd", "cwd_provider")


def _validated(settings: TerminalSettings, values: Mapping[str, Any], allowed) -> TerminalSettings:
    changes = {}
    for key, value in values.items():
        if key == "provider_opts" and "external_terminal_cmd" in allowed:
            # 兼容 provider_opts = {"external_terminal_cmd": ...}
            if not isinstance(value, Mapping):
                logger.warning(f"[Settings] provider_opts must be a mapping, got {value!r}")
                continue
            nested = _validated(settings, value, ("external_terminal_cmd",))
            changes["external_terminal_cmd"] = nested.external_terminal_cmd
            continue
        if key not in allowed:
            logger.warning(f"[Settings] Unknown option ignored: {key}")
            continue
        try:
            changes[key] = _VALIDATORS[key](value)
        except ConfigError as e:
            logger.warning(f"[Settings] {e}; keeping {getattr(settings, key)!r}")
    return replace(settings, **changes)


def apply_user_config(
    user_config: Mapping[str, Any] | None,
    base: TerminalSettings | None = None,
) -> TerminalSettings:
    """校验并合并用户配置

    Args:
        user_config: 用户配置字典
        base: 基础配置，None 使用默认值

    Returns:
        新的 TerminalSettings（非法项保留原值）
    """
    base = base or TerminalSettings()
    if not user_config:
        return base
    return _validated(base, user_config, _VALIDATORS.keys())


def find_git_root(start: str | os.PathLike) -> str | None:
    """向上查找包含 .git 的目录"""
    path = Path(start).expanduser().resolve()
    for candidate in (path, *path.parents):
        if (candidate / ".git").exists():
            return str(candidate)
    return None


def resolve_cwd(settings: TerminalSettings, context: Mapping[str, Any] | None = None) -> str | None:
    """解析工作目录

    优先级: cwd_provider(ctx) -> 静态 cwd -> git 根目录（git_repo_cwd）
    """
    ctx = {"cwd": os.getcwd(), "file": None, "file_dir": None}
    if context:
        ctx.update(context)
    if ctx.get("file") and not ctx.get("file_dir"):
        ctx["file_dir"] = str(Path(ctx["file"]).parent)

    if settings.cwd_provider is not None:
        try:
            result = settings.cwd_provider(ctx)
        except Exception as e:
            logger.warning(f"[Settings] cwd_provider failed: {e}")
            result = None
        if isinstance(result, str) and result:
            return os.path.expanduser(result)

    if settings.cwd:
        return os.path.expanduser(settings.cwd)

    if settings.git_repo_cwd:
        return find_git_root(ctx.get("file_dir") or ctx["cwd"])

    return None


def build_config(
    settings: TerminalSettings,
    overrides: Mapping[str, Any] | None = None,
    context: Mapping[str, Any] | None = None,
) -> TerminalSettings:
    """构造单次调用的有效配置

    只允许覆盖显示和工作目录相关的配置项，非法覆盖项被忽略。
    返回配置的 cwd 为解析后的工作目录。
    """
    effective = _validated(settings, overrides, _OVERRIDABLE) if overrides else replace(settings)
    return replace(effective, cwd=resolve_cwd(effective, context))
