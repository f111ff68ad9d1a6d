"""终端服务"""

from .service import DEFAULT_TERMINAL_CMD, TerminalService

__all__ = ["TerminalService", "DEFAULT_TERMINAL_CMD"]
