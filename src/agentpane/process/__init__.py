"""Process module - job 路由、进程表与全局清理

- JobRouter / LocalJobTable: job 句柄与所有者
- ProcessRegistry: 进程级 job -> PID 表（显式单例）
- CleanupEngine: 三来源合并的全局清理
"""

from .cleanup import CleanupEngine, CleanupReport, CleanupTarget
from .jobs import JobControl, JobRouter, LocalJobTable
from .registry import ProcessRegistry, TrackedJob

__all__ = [
    "CleanupEngine",
    "CleanupReport",
    "CleanupTarget",
    "JobControl",
    "JobRouter",
    "LocalJobTable",
    "ProcessRegistry",
    "TrackedJob",
]
