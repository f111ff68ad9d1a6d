"""进程信号工具

基于 psutil 枚举子进程，os.killpg / os.kill 发送信号。
所有函数在进程已消失时静默返回，不抛异常。
"""

import os
import signal

import psutil

from ..telemetry import get_logger

logger = get_logger(__name__)


def direct_children(pid: int) -> list[psutil.Process]:
    """直接子进程快照（进程不存在时为空）"""
    try:
        return psutil.Process(pid).children(recursive=False)
    except psutil.Error:
        return []


def leader_group(pid: int) -> int | None:
    """pid 领导的进程组 ID；不是组长或与本进程同组时返回 None"""
    try:
        pgid = os.getpgid(pid)
    except (ProcessLookupError, PermissionError):
        return None
    if pgid != pid or pgid == os.getpgrp():
        return None
    return pgid


def orphaned_group(pid: int) -> int | None:
    """组长已退出、组内仍有成员时返回该进程组 ID"""
    if pid == os.getpgrp():
        return None
    try:
        os.killpg(pid, 0)
    except (ProcessLookupError, PermissionError):
        return None
    return pid


def signal_pgid(pgid: int | None, sig: int) -> bool:
    if pgid is None:
        return False
    try:
        os.killpg(pgid, sig)
        return True
    except (ProcessLookupError, PermissionError):
        return False


def signal_group(pid: int, sig: int) -> bool:
    """向 pid 领导的进程组发送信号"""
    return signal_pgid(leader_group(pid), sig)


def signal_pid(pid: int, sig: int) -> bool:
    try:
        os.kill(pid, sig)
        return True
    except (ProcessLookupError, PermissionError):
        return False


def signal_processes(procs: list[psutil.Process], sig: int) -> int:
    """向一组进程发送信号，返回成功数"""
    sent = 0
    for proc in procs:
        try:
            proc.send_signal(sig)
            sent += 1
        except psutil.Error:
            continue
    return sent


def terminate_children(pid: int) -> int:
    """TERM 直接子进程（shell 包装进程不一定转发 SIGTERM）"""
    return signal_processes(direct_children(pid), signal.SIGTERM)


def kill_tree(pid: int, sig: int = signal.SIGKILL) -> None:
    """信号发送顺序：子进程 -> 进程组 -> 自身"""
    signal_processes(direct_children(pid), sig)
    signal_group(pid, sig)
    signal_pid(pid, sig)


def is_alive(pid: int, create_time: float | None = None) -> bool:
    """进程是否存活；给出 create_time 时同时校验不是 PID 复用"""
    try:
        proc = psutil.Process(pid)
        if proc.status() == psutil.STATUS_ZOMBIE:
            return False
        if create_time is not None and abs(proc.create_time() - create_time) > 1.0:
            return False
        return True
    except psutil.Error:
        return False


def is_reused(pid: int, create_time: float | None) -> bool:
    """PID 是否已被另一个（启动时间不同的）存活进程占用"""
    if create_time is None:
        return False
    try:
        return abs(psutil.Process(pid).create_time() - create_time) > 1.0
    except psutil.Error:
        return False


def process_create_time(pid: int) -> float | None:
    try:
        return psutil.Process(pid).create_time()
    except psutil.Error:
        return None
