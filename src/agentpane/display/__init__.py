"""Display module - 显示槽管理"""

from .slot import DisplaySlotManager

__all__ = ["DisplaySlotManager"]
