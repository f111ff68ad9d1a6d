"""ProcessRegistry - 进程级 job -> PID 表

生命周期约定：
- initialize(): 只构造一次，构造时加载上一轮遗留的表并做孤儿扫描
- track(): 解析 PID 并记录，解析失败静默跳过
- untrack(): 只在进程正常退出路径调用
- clear(): 只由 CleanupEngine 在全局清理结束时调用

表会持久化到状态文件，服务重启后仍能清理遗留进程。
"""

import asyncio
import signal
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import ClassVar

from ..config import PID_TRACK_ATTEMPTS, PID_TRACK_RETRY_SECONDS
from ..telemetry import get_logger, metrics
from . import persistence, signals
from .jobs import JobRouter

logger = get_logger(__name__)


@dataclass
class TrackedJob:
    """进程表条目

    create_time 用于在 PID 被复用时避免误杀。
    """

    job_id: str
    pid: int
    create_time: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TrackedJob":
        return cls(
            job_id=str(data["job_id"]),
            pid=int(data["pid"]),
            create_time=data.get("create_time"),
        )


class ProcessRegistry:
    """进程表（显式单例）

    使用示例:
        registry = await ProcessRegistry.initialize(jobs)
        await registry.track("tmux:%3")
        ...
        registry.clear()
    """

    _instance: ClassVar["ProcessRegistry | None"] = None

    def __init__(self, jobs: JobRouter, persist_path: Path | None = None, persist: bool = True):
        self._jobs = jobs
        self._persist_path = persist_path
        self._persist = persist
        self._entries: dict[str, TrackedJob] = {}

    # === 单例 ===

    @classmethod
    async def initialize(
        cls,
        jobs: JobRouter,
        persist_path: Path | None = None,
        persist: bool = True,
    ) -> "ProcessRegistry":
        """获取进程表，首次调用时构造并执行孤儿扫描"""
        if cls._instance is not None:
            logger.debug("[Registry] Already initialized")
            return cls._instance

        registry = cls(jobs, persist_path=persist_path, persist=persist)
        registry._load()
        await registry.recover_orphans()
        cls._instance = registry
        return registry

    @classmethod
    def instance(cls) -> "ProcessRegistry | None":
        return cls._instance

    @classmethod
    def _reset_for_testing(cls) -> None:
        cls._instance = None

    # === 持久化 ===

    def _load(self) -> None:
        if not self._persist:
            return
        data = persistence.load_jobs(self._persist_path)
        if not data:
            return
        for job_id, raw in data.items():
            try:
                self._entries[job_id] = TrackedJob.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[Registry] Skipping malformed entry {job_id}: {e}")
        logger.info(f"[Registry] Loaded {len(self._entries)} entries from previous run")

    def _save(self) -> None:
        if not self._persist:
            return
        if not self._entries:
            # 表为空时不保留状态文件
            persistence.delete(self._persist_path)
            return
        persistence.save_jobs({k: v.to_dict() for k, v in self._entries.items()}, self._persist_path)

    # === 孤儿扫描 ===

    async def recover_orphans(self) -> int:
        """清理 job 句柄已失效但进程可能仍存活的条目

        Returns:
            强杀的进程数
        """
        killed = 0
        for job_id, entry in list(self._entries.items()):
            if await self._jobs.job_pid(job_id) is not None:
                continue
            if signals.is_alive(entry.pid, entry.create_time):
                logger.warning(f"[Registry] Killing orphan pid={entry.pid} (job {job_id})")
                signals.kill_tree(entry.pid, signal.SIGKILL)
                killed += 1
            del self._entries[job_id]

        if killed:
            metrics.inc("registry.orphans_killed", value=killed)
        self._save()
        return killed

    # === track / untrack ===

    async def track(self, job_id: str) -> bool:
        """记录 job 的 PID，解析失败（进程已消失）时静默返回 False"""
        pid = await self._jobs.job_pid(job_id)
        if not pid or pid <= 0:
            return False
        self._entries[job_id] = TrackedJob(job_id=job_id, pid=pid, create_time=signals.process_create_time(pid))
        self._save()
        logger.debug(f"[Registry] Tracked {job_id} pid={pid}")
        return True

    async def track_with_retry(
        self,
        job_id: str,
        attempts: int = PID_TRACK_ATTEMPTS,
        delay: float = PID_TRACK_RETRY_SECONDS,
    ) -> bool:
        """第三方 widget 不一定立即暴露进程，按固定间隔重试"""
        for attempt in range(attempts):
            if await self.track(job_id):
                return True
            if attempt < attempts - 1:
                await asyncio.sleep(delay)
        logger.debug(f"[Registry] Gave up tracking {job_id} after {attempts} attempts")
        return False

    def untrack(self, job_id: str) -> bool:
        if self._entries.pop(job_id, None) is None:
            return False
        self._save()
        logger.debug(f"[Registry] Untracked {job_id}")
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._save()

    # === 查询 ===

    def entries(self) -> dict[str, TrackedJob]:
        return dict(self._entries)

    def get(self, job_id: str) -> TrackedJob | None:
        return self._entries.get(job_id)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
