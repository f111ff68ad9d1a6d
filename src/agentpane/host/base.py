"""Terminal Host 抽象接口

Host 是承载助手进程的终端复用器（当前实现：tmux）。抽象出的概念：

- tab:     一个布局上下文（tmux window），显示槽是 tab 局部的
- view:    tab 内的一个可视区域，同一时刻展示一个 surface
- surface: 绑定到一个进程的终端输出/输入句柄，不显示时存放在 stash

设计原则：
1. 异步优先：所有 IO 操作都是 async
2. 失败降级：命令失败返回 None/False，只有 spawn 会抛 SpawnError
3. 事件驱动：布局变化通过 HostEvent 回调通知上层
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any


class HostEvent(Enum):
    """Host 布局事件"""

    RESIZED = "resized"  # 终端客户端尺寸变化
    TAB_ENTER = "tab_enter"  # 切换到另一个 tab
    VIEW_ENTER = "view_enter"  # tab 内焦点切换
    TERMINAL_ENTER = "terminal_enter"  # 焦点进入本系统管理的终端
    SURFACE_REMOVED = "surface_removed"  # surface 被带外删除


@dataclass
class ViewInfo:
    """View 信息

    Attributes:
        view_id: 标识符（tab 局部，切换 tab 后需要重新解析）
        tab_id: 所属 tab
        surface_id: 当前展示的 surface
        width, height: 字符尺寸
        is_terminal: 展示的是本系统管理的终端 surface
        active: 是否拥有焦点
    """

    view_id: str
    tab_id: str
    surface_id: str | None
    width: int
    height: int
    is_terminal: bool = False
    active: bool = False


@dataclass
class SurfaceInfo:
    """Surface 信息

    Attributes:
        surface_id: 标识符
        job_id: 绑定进程的 job（命名空间 ID）
        pid: 进程 PID
        title: 进程设置的终端标题（OSC）
        alive: 进程是否仍在运行
        is_terminal: 由本系统管理的终端 surface
        is_scratch: 分屏时产生的占位 surface
    """

    surface_id: str
    job_id: str | None
    pid: int | None
    title: str = ""
    alive: bool = True
    is_terminal: bool = False
    is_scratch: bool = False


@dataclass
class SpawnResult:
    """spawn_terminal / adopt_surface 的返回值"""

    surface_id: str
    job_id: str
    pid: int | None


# (job_id, exit_code) - exit_code 为 None 表示 surface 被带外删除、退出码未知
ExitCallback = Callable[[str, int | None], Any]
TitleCallback = Callable[[str], Any]
EventHandler = Callable[[HostEvent, dict], Any]


class Host(ABC):
    """终端 Host 抽象接口

    使用示例:
        host = TmuxHost()
        await host.start(timer)
        spawned = await host.spawn_terminal(["claude"], env, cwd, on_exit)
        view_id = await host.split_view("right", 60)
        await host.show_surface(view_id, spawned.surface_id)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Host 名称（如 "tmux"）"""

    # === 生命周期 ===

    async def start(self, timer) -> None:
        """开始监听布局/进程事件"""

    async def stop(self) -> None:
        """停止监听"""

    @abstractmethod
    def set_event_handler(self, handler: EventHandler | None) -> None:
        """设置布局事件回调"""

    # === view ===

    @abstractmethod
    async def current_tab(self) -> str | None:
        """当前焦点 tab"""

    @abstractmethod
    async def current_view(self) -> str | None:
        """当前焦点 view"""

    @abstractmethod
    async def list_views(self, tab_id: str | None = None) -> list[ViewInfo]:
        """列出 tab 内所有 view（None 表示当前 tab）"""

    @abstractmethod
    async def view_info(self, view_id: str) -> ViewInfo | None:
        """获取 view 信息，view 已失效时返回 None"""

    @abstractmethod
    async def split_view(self, side: str, width: int) -> str | None:
        """在当前 tab 按方向和宽度分出新 view

        新 view 展示一个占位（scratch）surface。

        Returns:
            新 view 的 ID，失败返回 None
        """

    @abstractmethod
    async def show_surface(self, view_id: str, surface_id: str) -> str | None:
        """在 view 中展示 surface，原 surface 被收回 stash

        Returns:
            展示后 view 的 ID（部分 host 的 view 句柄随内容变化），失败返回 None
        """

    @abstractmethod
    async def close_view(self, view_id: str) -> bool:
        """关闭 view，展示中的 surface 被收回 stash 而不是销毁"""

    @abstractmethod
    async def focus_view(self, view_id: str, input_mode: bool = True) -> bool:
        """聚焦 view，input_mode=True 时进入输入模式"""

    @abstractmethod
    async def set_view_size(self, view_id: str, width: int | None = None, height: int | None = None) -> bool:
        """调整 view 尺寸"""

    @abstractmethod
    async def total_columns(self) -> int:
        """当前 tab 的总列数"""

    # === surface ===

    @abstractmethod
    async def spawn_terminal(
        self,
        argv: Sequence[str],
        env: Mapping[str, str],
        cwd: str | None,
        on_exit: ExitCallback,
        on_title: TitleCallback | None = None,
    ) -> SpawnResult:
        """启动终端进程，surface 创建在 stash 中

        Raises:
            SpawnError: 进程启动失败
        """

    async def adopt_surface(
        self,
        native_id: str,
        on_exit: ExitCallback,
        on_title: TitleCallback | None = None,
    ) -> SpawnResult | None:
        """接管由第三方库创建的 surface，移入 stash 并开始监听"""
        return None

    @abstractmethod
    async def surface_info(self, surface_id: str) -> SurfaceInfo | None:
        """获取 surface 信息，已不存在时返回 None"""

    async def surface_exists(self, surface_id: str | None) -> bool:
        if not surface_id:
            return False
        return await self.surface_info(surface_id) is not None

    @abstractmethod
    async def list_terminal_surfaces(self) -> list[SurfaceInfo]:
        """列出所有由本系统管理的终端 surface"""

    @abstractmethod
    async def delete_surface(self, surface_id: str) -> bool:
        """强制删除 surface（连同其进程）"""

    @abstractmethod
    async def notify_resize(self, surface_id: str, width: int, height: int) -> bool:
        """通知进程新的窗口尺寸"""

    @abstractmethod
    async def send_key(self, surface_id: str, key: str) -> bool:
        """向 surface 发送按键（如 "Escape"）"""

    @abstractmethod
    async def enter_scroll_mode(self, surface_id: str) -> bool:
        """退出输入模式（进入滚动/复制模式）"""

    # === job control ===

    @abstractmethod
    def owns(self, job_id: str) -> bool:
        """job 是否由本 host 管理"""

    @abstractmethod
    async def job_pid(self, job_id: str) -> int | None:
        """解析 job 的 PID，job 失效返回 None"""

    @abstractmethod
    async def job_stop(self, job_id: str) -> bool:
        """停止 job"""
