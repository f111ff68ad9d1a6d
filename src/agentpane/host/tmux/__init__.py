"""tmux Host 实现"""

from .client import TmuxClient
from .host import TmuxHost

__all__ = ["TmuxClient", "TmuxHost"]
