"""Telemetry - 统一日志和指标入口

日志格式: [module] [Component] msg
指标示例: cleanup.killed, mention.sent, mention.expired, provider.fallback, timer.errors
"""

import logging

from .core.ids import short_id

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """获取带模块前缀的 logger"""
    return logging.getLogger(name)


def setup_logging(level: str | None = None) -> None:
    """配置根 logger

    Args:
        level: 日志级别名，None 使用配置默认值
    """
    from . import config

    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
        format=_LOG_FORMAT,
    )


def format_session_log(component: str, session_id: str | None, msg: str) -> str:
    """格式化带 session_id 的日志消息: [component:session[:8]] msg"""
    return f"[{component}:{short_id(session_id)}] {msg}"


class Metrics:
    """指标收集 facade

    内存计数器和 gauge，供测试和 /api/debug 调试使用。
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}

    def inc(self, name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
        """递增计数器

        Args:
            name: 指标名（如 "cleanup.killed"）
            labels: 可选标签（如 {"strategy": "aggressive"}）
            value: 递增值，默认 1
        """
        key = self._make_key(name, labels)
        self._counters[key] = self._counters.get(key, 0) + value

    def gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """设置 gauge 值"""
        self._gauges[self._make_key(name, labels)] = value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self._counters.get(self._make_key(name, labels), 0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        return self._gauges.get(self._make_key(name, labels), 0.0)

    def snapshot(self) -> dict[str, dict]:
        """导出全部指标（用于调试接口）"""
        return {"counters": dict(self._counters), "gauges": dict(self._gauges)}

    def reset(self) -> None:
        """重置所有指标（用于测试）"""
        self._counters.clear()
        self._gauges.clear()

    @staticmethod
    def _make_key(name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# 全局指标实例
metrics = Metrics()
