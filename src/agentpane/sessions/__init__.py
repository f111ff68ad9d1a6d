"""Sessions module - 外部会话注册表接口与内存实现"""

from .registry import InMemorySessionRegistry, Session, SessionRegistry

__all__ = ["InMemorySessionRegistry", "Session", "SessionRegistry"]
