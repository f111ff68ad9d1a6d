"""Job 管理

job 是进程的句柄，按命名空间路由到其所有者：
- tmux:%N -> TmuxHost（pane 中的进程）
- proc:N  -> LocalJobTable（external provider 启动的分离进程）
"""

import asyncio
import inspect
import os
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from ..core.ids import JobKind, get_job_kind, make_job_id
from ..errors import SpawnError
from ..telemetry import get_logger

logger = get_logger(__name__)


class JobControl(Protocol):
    """job 所有者需要提供的操作"""

    def owns(self, job_id: str) -> bool: ...

    async def job_pid(self, job_id: str) -> int | None: ...

    async def job_stop(self, job_id: str) -> bool: ...


class LocalJobTable:
    """本地分离进程表

    进程以 start_new_session=True 启动（自成进程组），退出时回调 on_exit。
    """

    def __init__(self):
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._watchers: dict[str, asyncio.Task] = {}
        self._stopped: set[str] = set()
        self._next_id = 1

    def owns(self, job_id: str) -> bool:
        return get_job_kind(job_id) == JobKind.PROC

    async def spawn(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        on_exit: Callable[[str, int | None], Any] | None = None,
    ) -> tuple[str, int]:
        """启动分离进程

        Returns:
            (job_id, pid)

        Raises:
            SpawnError: 启动失败
        """
        if not argv:
            raise SpawnError("empty command")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                env={**os.environ, **(env or {})},
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"failed to start {argv[0]}: {e}") from e

        job_id = make_job_id(JobKind.PROC, self._next_id)
        self._next_id += 1
        self._procs[job_id] = proc
        self._watchers[job_id] = asyncio.create_task(self._watch(job_id, proc, on_exit))
        logger.debug(f"[Jobs] Started {job_id} pid={proc.pid}: {' '.join(argv)}")
        return job_id, proc.pid

    async def _watch(self, job_id, proc, on_exit) -> None:
        code = await proc.wait()
        self._procs.pop(job_id, None)
        self._watchers.pop(job_id, None)
        self._stopped.discard(job_id)
        logger.debug(f"[Jobs] {job_id} exited with {code}")
        if on_exit is None:
            return
        try:
            result = on_exit(job_id, code)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[Jobs] Exit callback for {job_id} failed: {e}")

    async def job_pid(self, job_id: str) -> int | None:
        proc = self._procs.get(job_id)
        if proc is None or proc.returncode is not None or job_id in self._stopped:
            return None
        return proc.pid

    async def job_stop(self, job_id: str) -> bool:
        proc = self._procs.get(job_id)
        if proc is None or proc.returncode is not None:
            return False
        try:
            proc.terminate()
        except ProcessLookupError:
            return False
        self._stopped.add(job_id)
        return True

    def job_ids(self) -> list[str]:
        return list(self._procs)

    async def close(self) -> None:
        """停止监听（不杀进程，清理由 CleanupEngine 负责）"""
        for task in list(self._watchers.values()):
            task.cancel()
        self._watchers.clear()


class JobRouter:
    """按命名空间把 job 操作分发给所有者"""

    def __init__(self, *controls: JobControl):
        self._controls: list[JobControl] = list(controls)

    def add(self, control: JobControl) -> None:
        self._controls.append(control)

    def _owner(self, job_id: str) -> JobControl | None:
        for control in self._controls:
            if control.owns(job_id):
                return control
        return None

    def owns(self, job_id: str) -> bool:
        return self._owner(job_id) is not None

    async def job_pid(self, job_id: str) -> int | None:
        owner = self._owner(job_id)
        if owner is None:
            return None
        try:
            return await owner.job_pid(job_id)
        except Exception as e:
            logger.debug(f"[Jobs] PID resolution failed for {job_id}: {e}")
            return None

    async def job_stop(self, job_id: str) -> bool:
        owner = self._owner(job_id)
        if owner is None:
            return False
        try:
            return await owner.job_stop(job_id)
        except Exception as e:
            logger.debug(f"[Jobs] Stop failed for {job_id}: {e}")
            return False
