"""进程表持久化

ProcessRegistry 的条目写入状态文件，使服务重启后仍能找到
上一轮遗留的进程（孤儿扫描）。

- 原子写入（temp + rename）
- checksum 校验（sha256）
- version 版本控制，损坏文件跳过并告警
"""

import hashlib
import json
import os
import tempfile
import time
from pathlib import Path

from ..config import PERSIST_FILE, PERSIST_VERSION
from ..telemetry import get_logger, metrics

logger = get_logger(__name__)


def _checksum(data: dict) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def save_jobs(jobs: dict[str, dict], path: Path | None = None, version: int = PERSIST_VERSION) -> bool:
    """保存进程表

    Args:
        jobs: {job_id: entry.to_dict()}
        path: 保存路径，默认使用配置

    Returns:
        是否成功
    """
    path = path or PERSIST_FILE
    data = {"version": version, "saved_at": time.time(), "jobs": jobs}
    data["checksum"] = _checksum(data)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix="agentpane_jobs_", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except OSError as e:
        logger.error(f"[Persist] Save failed: {e}")
        metrics.inc("persist.error", {"op": "save"})
        return False

    logger.debug(f"[Persist] Saved {len(jobs)} jobs")
    return True


def load_jobs(path: Path | None = None, version: int = PERSIST_VERSION) -> dict[str, dict] | None:
    """加载进程表，文件缺失/损坏/版本不符时返回 None"""
    path = path or PERSIST_FILE
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"[Persist] Unreadable state file {path}: {e}")
        metrics.inc("persist.error", {"op": "load", "reason": "json"})
        return None

    if not isinstance(data, dict) or data.get("version") != version:
        logger.warning(f"[Persist] Version mismatch in {path}")
        metrics.inc("persist.error", {"op": "load", "reason": "version"})
        return None

    stored = data.pop("checksum", None)
    if stored and stored != _checksum(data):
        logger.warning("[Persist] Checksum mismatch")
        metrics.inc("persist.error", {"op": "load", "reason": "checksum"})
        return None

    jobs = data.get("jobs", {})
    logger.debug(f"[Persist] Loaded {len(jobs)} jobs")
    return jobs


def delete(path: Path | None = None) -> bool:
    path = path or PERSIST_FILE
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as e:
        logger.error(f"[Persist] Delete failed: {e}")
        return False
