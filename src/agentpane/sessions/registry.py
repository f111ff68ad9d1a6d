"""会话注册表

会话注册表由外部协作方拥有，本子系统只调用其接口（SessionRegistry）。
InMemorySessionRegistry 是默认实现，服务独立运行时使用。
"""

import itertools
import time
from dataclasses import asdict, dataclass, field
from typing import Protocol

from ..telemetry import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """逻辑会话，与是否有存活进程无关

    Attributes:
        id: 会话 ID
        name: 显示名（进程设置 OSC 标题时更新）
        created_at: 创建时间戳
        surface_id, job_id, view_id: 最近一次上报的终端信息
    """

    id: str
    name: str
    created_at: float = field(default_factory=time.time)
    surface_id: str | None = None
    job_id: str | None = None
    view_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class SessionRegistry(Protocol):
    """外部会话注册表接口"""

    def create_session(self, name: str | None = None) -> str: ...

    def destroy_session(self, session_id: str) -> bool: ...

    def ensure_session(self) -> str: ...

    def list_sessions(self) -> list[Session]: ...

    def get_session(self, session_id: str) -> Session | None: ...

    def set_active_session(self, session_id: str) -> bool: ...

    def get_active_session_id(self) -> str | None: ...

    def session_count(self) -> int: ...

    def update_terminal_info(
        self,
        session_id: str,
        surface_id: str | None = None,
        job_id: str | None = None,
        view_id: str | None = None,
    ) -> None: ...

    def update_session_name(self, session_id: str, name: str) -> None: ...

    def find_session_by_surface(self, surface_id: str) -> Session | None: ...


class InMemorySessionRegistry:
    """内存会话注册表，list_sessions 按创建顺序返回"""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._active_id: str | None = None
        self._counter = itertools.count(1)

    def create_session(self, name: str | None = None) -> str:
        n = next(self._counter)
        session_id = f"session-{n}"
        self._sessions[session_id] = Session(id=session_id, name=name or f"Session {n}")
        if self._active_id is None:
            self._active_id = session_id
        logger.debug(f"[Sessions] Created {session_id}")
        return session_id

    def destroy_session(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False

        if self._active_id == session_id:
            # 优先前一个会话，其次后一个
            ids = list(self._sessions)
            index = ids.index(session_id)
            neighbours = ids[:index][-1:] or ids[index + 1:index + 2]
            self._active_id = neighbours[0] if neighbours else None

        del self._sessions[session_id]
        logger.debug(f"[Sessions] Destroyed {session_id} (active={self._active_id})")
        return True

    def ensure_session(self) -> str:
        """返回当前活跃会话，没有会话时创建一个"""
        if self._active_id is not None:
            return self._active_id
        if self._sessions:
            self._active_id = next(iter(self._sessions))
            return self._active_id
        return self.create_session()

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def set_active_session(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        self._active_id = session_id
        return True

    def get_active_session_id(self) -> str | None:
        return self._active_id

    def session_count(self) -> int:
        return len(self._sessions)

    def update_terminal_info(
        self,
        session_id: str,
        surface_id: str | None = None,
        job_id: str | None = None,
        view_id: str | None = None,
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if surface_id is not None:
            session.surface_id = surface_id
        if job_id is not None:
            session.job_id = job_id
        if view_id is not None:
            session.view_id = view_id

    def update_session_name(self, session_id: str, name: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None and name:
            session.name = name

    def find_session_by_surface(self, surface_id: str) -> Session | None:
        for session in self._sessions.values():
            if session.surface_id == surface_id:
                return session
        return None
