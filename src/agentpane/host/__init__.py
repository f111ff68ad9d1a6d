"""Terminal Host 模块

提供 Host 接口和数据结构：
- Host: 宿主终端抽象
- HostEvent: 布局事件
- ViewInfo, SurfaceInfo, SpawnResult: 数据结构
- create_host: Host 工厂函数
"""

from .base import Host, HostEvent, SpawnResult, SurfaceInfo, ViewInfo
from .factory import create_host, detect_host_type

__all__ = [
    "Host",
    "HostEvent",
    "SpawnResult",
    "SurfaceInfo",
    "ViewInfo",
    "create_host",
    "detect_host_type",
]
