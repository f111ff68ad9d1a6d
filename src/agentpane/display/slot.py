"""DisplaySlotManager - 唯一可见显示槽的管理

职责：
- ensure_slot: 复用有效 view -> 扫描当前 tab 恢复 -> 按配置分屏新建
- present: 在槽中展示 surface，删除分屏留下的占位 surface，通知 resize
- close: 隐藏槽（surface 收回 stash，不销毁）
- 布局事件：resize / tab 切换恢复配置宽度，tab 内焦点切换只通知不改宽度

view 句柄是 tab 局部的，每次使用前都重新校验。
"""

from ..config import TAB_ENTER_SETTLE_SECONDS, VIEW_ENTER_SETTLE_SECONDS
from ..host.base import Host, HostEvent, ViewInfo
from ..settings import TerminalSettings
from ..telemetry import get_logger
from ..timer import Timer

logger = get_logger(__name__)

TAB_ENTER_TASK = "slot.tab_enter"
VIEW_ENTER_TASK = "slot.view_enter"


class DisplaySlotManager:
    """显示槽管理器

    同一时刻最多一个槽，最多展示一个 surface。
    """

    def __init__(self, host: Host, timer: Timer, settings: TerminalSettings | None = None):
        self._host = host
        self._timer = timer
        self._settings = settings or TerminalSettings()
        self._view_id: str | None = None
        self._surface_id: str | None = None

    def configure(self, settings: TerminalSettings) -> None:
        """更新分屏方向/宽度配置（下次创建或恢复宽度时生效）"""
        self._settings = settings

    @property
    def view_id(self) -> str | None:
        return self._view_id

    # === 槽解析 ===

    async def _valid_view(self) -> ViewInfo | None:
        """校验跟踪的 view 仍存在且属于当前 tab"""
        if not self._view_id:
            return None
        info = await self._host.view_info(self._view_id)
        if info is None:
            self.reset()
            return None
        current_tab = await self._host.current_tab()
        if current_tab and info.tab_id != current_tab:
            return None
        return info

    async def _find_terminal_view(self) -> ViewInfo | None:
        """扫描当前 tab 中展示终端 surface 的 view"""
        for view in await self._host.list_views():
            if view.is_terminal:
                return view
        return None

    async def _target_width(self, settings: TerminalSettings | None = None) -> int:
        columns = await self._host.total_columns()
        return max(1, int(columns * (settings or self._settings).split_width_percentage))

    async def _reresolve(self) -> ViewInfo | None:
        info = await self._valid_view()
        if info is not None:
            return info
        found = await self._find_terminal_view()
        if found is None:
            self.reset()
            return None
        self._view_id = found.view_id
        self._surface_id = found.surface_id
        return found

    async def ensure_slot(self, config: TerminalSettings | None = None) -> str | None:
        """获取（或创建）当前 tab 的显示槽

        Args:
            config: 单次调用的有效配置，只影响新建槽的方向和宽度

        Returns:
            view ID，创建失败返回 None
        """
        if await self._valid_view() is not None:
            return self._view_id

        found = await self._find_terminal_view()
        if found is not None:
            logger.debug(f"[Slot] Recovered existing terminal view {found.view_id}")
            self._view_id = found.view_id
            self._surface_id = found.surface_id
            return self._view_id

        side = (config or self._settings).split_side
        width = await self._target_width(config)
        view_id = await self._host.split_view(side, width)
        if view_id is None:
            logger.warning("[Slot] Failed to create display slot")
            return None

        logger.debug(f"[Slot] Created slot {view_id} ({side}, {width} cols)")
        self._view_id = view_id
        self._surface_id = None
        return view_id

    # === 展示 ===

    async def present(self, surface_id: str, focus: bool = True, config: TerminalSettings | None = None) -> bool:
        """在槽中展示 surface

        Args:
            surface_id: 要展示的 surface
            focus: 是否聚焦并进入输入模式
            config: 单次调用的有效配置（槽不存在时按其方向和宽度创建）

        Returns:
            是否成功
        """
        view_id = await self.ensure_slot(config)
        if view_id is None:
            return False

        info = await self._host.view_info(view_id)
        previous = info.surface_id if info else None

        if previous != surface_id:
            new_view = await self._host.show_surface(view_id, surface_id)
            if new_view is None:
                logger.warning(f"[Slot] Failed to show surface {surface_id}")
                return False
            self._view_id = new_view
            if previous:
                await self._delete_if_scratch(previous)

        self._surface_id = surface_id
        await self.notify_resize()

        if focus:
            await self._host.focus_view(self._view_id, input_mode=True)
        return True

    async def _delete_if_scratch(self, surface_id: str) -> None:
        surface = await self._host.surface_info(surface_id)
        if surface is not None and surface.is_scratch:
            await self._host.delete_surface(surface_id)
            logger.debug(f"[Slot] Deleted scratch surface {surface_id}")

    async def close(self) -> bool:
        """隐藏槽，展示中的 surface 保留"""
        info = await self._valid_view()
        if info is None:
            return False
        view_id = self._view_id
        self.reset()
        ok = await self._host.close_view(view_id)
        logger.debug(f"[Slot] Closed slot {view_id} (ok={ok})")
        return ok

    def reset(self) -> None:
        self._view_id = None
        self._surface_id = None

    # === 查询 ===

    async def is_visible(self) -> bool:
        return await self._valid_view() is not None

    async def is_focused(self) -> bool:
        if await self._valid_view() is None:
            return False
        return await self._host.current_view() == self._view_id

    async def dimensions(self) -> tuple[int, int] | None:
        info = await self._valid_view()
        if info is None:
            return None
        return info.width, info.height

    async def current_surface(self) -> str | None:
        info = await self._valid_view()
        if info is None:
            return None
        return self._surface_id or info.surface_id

    # === 尺寸 ===

    async def notify_resize(self) -> bool:
        """通知展示中的进程当前几何尺寸"""
        info = await self._valid_view()
        if info is None or not info.surface_id:
            return False
        return await self._host.notify_resize(info.surface_id, info.width, info.height)

    async def restore_configured_width(self) -> bool:
        if await self._valid_view() is None:
            return False
        return await self._host.set_view_size(self._view_id, width=await self._target_width())

    async def restore_dimensions(self, width: int | None, height: int | None) -> bool:
        """恢复之前保存的槽尺寸（widget 后端重新挂载 surface 后调用）"""
        if await self._valid_view() is None:
            return False
        return await self._host.set_view_size(self._view_id, width=width, height=height)

    # === 布局事件 ===

    async def handle_event(self, event: HostEvent, payload: dict | None = None) -> None:
        """处理 host 布局事件

        - RESIZED: 恢复配置宽度并通知
        - TAB_ENTER: 重新解析句柄，稳定后恢复宽度并通知
        - VIEW_ENTER: 重新解析句柄，稳定后只通知，保留用户手动调整的宽度
        - TERMINAL_ENTER: 重新解析句柄并立即通知
        """
        if event == HostEvent.RESIZED:
            await self.restore_configured_width()
            await self.notify_resize()
        elif event == HostEvent.TAB_ENTER:
            await self._reresolve()
            self._timer.register_delay(TAB_ENTER_TASK, TAB_ENTER_SETTLE_SECONDS, self._after_tab_enter)
        elif event == HostEvent.VIEW_ENTER:
            await self._reresolve()
            self._timer.register_delay(VIEW_ENTER_TASK, VIEW_ENTER_SETTLE_SECONDS, self.notify_resize)
        elif event == HostEvent.TERMINAL_ENTER:
            await self._reresolve()
            await self.notify_resize()

    async def _after_tab_enter(self) -> None:
        await self.restore_configured_width()
        await self.notify_resize()
