"""CleanupEngine - 全局进程清理

三个 PID 来源合并、按 job_id 去重后再执行清理策略：
1. ProcessRegistry 直接跟踪的 job
2. 会话注册表上报的每个会话的 job
3. host 上所有存活的终端 surface

策略：
- pkill_children: TERM 进程组/直接子进程/自身 -> 宽限 -> KILL 幸存者
- aggressive:     立即 KILL 子进程、进程组和自身
- jobstop_only:   只调用 job stop
- none:           不杀进程，也不 stop job（保留进程，手动清理）

除 none 外，所有策略最后对每个 job 调用 job stop，然后清空进程表。
"""

import asyncio
import signal
from dataclasses import dataclass, field

import psutil

from ..config import CLEANUP_GRACE_SECONDS, CLEANUP_STRATEGIES, CLEANUP_STRATEGY
from ..host.base import Host
from ..sessions.registry import SessionRegistry
from ..telemetry import get_logger, metrics
from . import signals
from .jobs import JobRouter
from .registry import ProcessRegistry

logger = get_logger(__name__)


@dataclass
class CleanupTarget:
    """待清理的 job"""

    job_id: str
    pid: int | None
    source: str  # "tracked" | "session" | "surface"
    create_time: float | None = None


@dataclass
class CleanupReport:
    """一次 cleanup_all 的结果"""

    strategy: str
    targets: list[CleanupTarget] = field(default_factory=list)
    signalled: int = 0
    stopped: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.targets


@dataclass
class _KillPlan:
    pid: int
    pgid: int | None
    children: list[psutil.Process]
    leader_alive: bool = True


class CleanupEngine:
    """全局清理引擎

    Args:
        registry: 进程表
        jobs: job 路由
        host: 用于扫描存活终端 surface（可选）
        sessions: 外部会话注册表（可选）
        strategy: 清理策略
        grace: TERM 到 KILL 的宽限时间（秒）
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        jobs: JobRouter,
        host: Host | None = None,
        sessions: SessionRegistry | None = None,
        strategy: str = CLEANUP_STRATEGY,
        grace: float = CLEANUP_GRACE_SECONDS,
    ):
        self._registry = registry
        self._jobs = jobs
        self._host = host
        self._sessions = sessions
        self._grace = grace
        self._strategy = CLEANUP_STRATEGY
        self.set_strategy(strategy)

    @property
    def strategy(self) -> str:
        return self._strategy

    def set_strategy(self, strategy: str) -> None:
        if strategy not in CLEANUP_STRATEGIES:
            logger.warning(f"[Cleanup] Unknown strategy {strategy!r}, keeping {self._strategy}")
            return
        self._strategy = strategy

    async def collect_targets(self) -> dict[str, CleanupTarget]:
        """合并三个来源的 job，按 job_id 去重"""
        targets: dict[str, CleanupTarget] = {}

        for job_id, entry in self._registry.entries().items():
            targets[job_id] = CleanupTarget(job_id, entry.pid, "tracked", entry.create_time)

        if self._sessions is not None:
            for session in self._sessions.list_sessions():
                job_id = session.job_id
                if not job_id or job_id in targets:
                    continue
                pid = await self._jobs.job_pid(job_id)
                if pid:
                    logger.debug(f"[Cleanup] Recovered pid {pid} from session {session.id}")
                    targets[job_id] = CleanupTarget(job_id, pid, "session")

        if self._host is not None:
            try:
                surfaces = await self._host.list_terminal_surfaces()
            except Exception as e:
                logger.debug(f"[Cleanup] Surface scan failed: {e}")
                surfaces = []
            for surface in surfaces:
                job_id = surface.job_id
                if not job_id or job_id in targets or not surface.alive or not surface.pid:
                    continue
                logger.debug(f"[Cleanup] Recovered pid {surface.pid} from surface {surface.surface_id}")
                targets[job_id] = CleanupTarget(job_id, surface.pid, "surface")

        return targets

    async def cleanup_all(self) -> CleanupReport:
        """终止所有已知进程（可重复调用，无目标时为 no-op）"""
        targets = await self.collect_targets()
        report = CleanupReport(strategy=self._strategy, targets=list(targets.values()))

        if not targets:
            self._registry.clear()
            logger.debug("[Cleanup] Nothing to clean up")
            return report

        logger.info(f"[Cleanup] Cleaning up {len(targets)} jobs (strategy={self._strategy})")

        if self._strategy == "none":
            logger.info("[Cleanup] Strategy 'none': leaving processes running")
            self._registry.clear()
            return report

        candidates = [t for t in targets.values() if t.pid]
        if self._strategy == "pkill_children":
            report.signalled = await self._pkill_children(candidates)
        elif self._strategy == "aggressive":
            report.signalled = await self._aggressive(candidates)

        for job_id in targets:
            if await self._jobs.job_stop(job_id):
                report.stopped += 1

        self._registry.clear()
        metrics.inc("cleanup.runs", {"strategy": self._strategy})
        metrics.inc("cleanup.killed", value=report.signalled)
        logger.info(f"[Cleanup] Done: {report.signalled} signalled, {report.stopped} jobs stopped")
        return report

    async def _plan(self, targets: list[CleanupTarget]) -> list[_KillPlan]:
        """信号发送前的快照

        组长已退出时仍按记录的 PID 向进程组发信号（后台子进程可能还在组内），
        除非该 PID 已被启动时间不同的进程复用。
        """

        def snapshot() -> list[_KillPlan]:
            plans = []
            for t in targets:
                if signals.is_reused(t.pid, t.create_time):
                    logger.debug(f"[Cleanup] Skipping {t.job_id}: pid {t.pid} was reused")
                    continue
                if signals.is_alive(t.pid):
                    plans.append(_KillPlan(t.pid, signals.leader_group(t.pid), signals.direct_children(t.pid)))
                    continue
                pgid = signals.orphaned_group(t.pid)
                if pgid is not None:
                    logger.debug(f"[Cleanup] Leader {t.pid} of {t.job_id} exited, group still alive")
                    plans.append(_KillPlan(t.pid, pgid, [], leader_alive=False))
            return plans

        return await asyncio.to_thread(snapshot)

    async def _pkill_children(self, targets: list[CleanupTarget]) -> int:
        plans = await self._plan(targets)

        for plan in plans:
            signals.signal_pgid(plan.pgid, signal.SIGTERM)
            signals.signal_processes(plan.children, signal.SIGTERM)
            if plan.leader_alive:
                signals.signal_pid(plan.pid, signal.SIGTERM)

        await asyncio.sleep(self._grace)

        for plan in plans:
            signals.signal_pgid(plan.pgid, signal.SIGKILL)
            if not plan.leader_alive:
                continue
            # TERM 之前的子进程快照 + 宽限期间新出现的子进程
            survivors = plan.children + signals.direct_children(plan.pid)
            signals.signal_processes(survivors, signal.SIGKILL)
            signals.signal_pid(plan.pid, signal.SIGKILL)

        return len(plans)

    async def _aggressive(self, targets: list[CleanupTarget]) -> int:
        plans = await self._plan(targets)
        for plan in plans:
            signals.signal_processes(plan.children, signal.SIGKILL)
            signals.signal_pgid(plan.pgid, signal.SIGKILL)
            if plan.leader_alive:
                signals.signal_pid(plan.pid, signal.SIGKILL)
        return len(plans)
