"""Bootstrap - 集中构造系统组件

职责：
- 创建 Timer, JobRouter, ProcessRegistry（孤儿扫描）, DisplaySlotManager
- 选择 provider，创建 MentionQueue, TerminalService
- 把 host 布局事件接到 TerminalService
- 返回 RuntimeComponents 供调用方使用

不负责：
- 启动/停止生命周期（Timer.run / host.start 由调用方管理）
"""

from dataclasses import dataclass
from pathlib import Path

from .. import config
from ..display import DisplaySlotManager
from ..host.base import Host
from ..keys import DismissKeyHandler
from ..mentions import ConnectionFlag, HttpMentionTransport, MentionQueue, MentionTransport
from ..process import CleanupEngine, JobRouter, LocalJobTable, ProcessRegistry
from ..providers import ProviderContext
from ..sessions import InMemorySessionRegistry, SessionRegistry
from ..settings import TerminalSettings
from ..telemetry import get_logger
from ..terminal import TerminalService
from ..timer import Timer

logger = get_logger(__name__)

# 防止重复构造
_current_components: "RuntimeComponents | None" = None


@dataclass
class RuntimeComponents:
    """Bootstrap 返回的运行时组件集合"""

    timer: Timer
    host: Host
    jobs: JobRouter
    local_jobs: LocalJobTable
    registry: ProcessRegistry
    sessions: SessionRegistry
    slot: DisplaySlotManager
    cleanup: CleanupEngine
    mentions: MentionQueue
    transport: MentionTransport
    connection: ConnectionFlag
    service: TerminalService

    async def start(self) -> None:
        """启动 host 轮询（Timer 主循环由调用方运行）"""
        await self.host.start(self.timer)
        logger.info(f"[Bootstrap] Host {self.host.name} started")

    async def shutdown(self) -> None:
        """清理所有进程并停止组件"""
        await self.service.cleanup_all()
        await self.local_jobs.close()
        self.timer.stop()
        await self.host.stop()
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
        logger.info("[Bootstrap] Shutdown complete")


async def bootstrap(
    host: Host,
    settings: TerminalSettings | None = None,
    sessions: SessionRegistry | None = None,
    transport: MentionTransport | None = None,
    persist_path: Path | None = None,
    persist: bool = True,
    ide_port: int | None = config.IDE_PORT,
) -> RuntimeComponents:
    """构造运行时组件

    Args:
        host: 终端 host
        settings: 初始配置，None 使用默认值
        sessions: 外部会话注册表，None 使用内存实现
        transport: mention 发送通道，None 使用 HTTP transport
        persist_path: 进程表持久化路径
        persist: 是否持久化进程表
        ide_port: IDE 集成端口

    Raises:
        RuntimeError: 如果已经调用过 bootstrap（防止双重构造）
    """
    global _current_components

    if _current_components is not None:
        raise RuntimeError(
            "bootstrap() has already been called. "
            "Use get_current_components() to access existing components."
        )

    settings = settings or TerminalSettings()
    sessions = sessions if sessions is not None else InMemorySessionRegistry()
    transport = transport if transport is not None else HttpMentionTransport()

    timer = Timer()
    local_jobs = LocalJobTable()
    jobs = JobRouter(host, local_jobs)
    registry = await ProcessRegistry.initialize(jobs, persist_path=persist_path, persist=persist)
    slot = DisplaySlotManager(host, timer, settings)
    cleanup = CleanupEngine(registry, jobs, host=host, sessions=sessions, strategy=settings.cleanup_strategy)
    connection = ConnectionFlag()
    mentions = MentionQueue(
        timer,
        transport,
        connection,
        debounce=settings.mention_debounce,
        connection_timeout=settings.mention_connection_timeout,
        expiry=settings.mention_expiry,
    )
    keys = DismissKeyHandler(host, timer, settings.esc_timeout)

    ctx = ProviderContext(
        host=host,
        slot=slot,
        sessions=sessions,
        processes=registry,
        jobs=jobs,
        local_jobs=local_jobs,
        timer=timer,
        settings=settings,
    )
    service = TerminalService(ctx, cleanup, mentions, connection, keys, ide_port=ide_port)
    host.set_event_handler(service.handle_host_event)

    logger.info(f"[Bootstrap] Components created (provider={service.provider.name})")

    _current_components = RuntimeComponents(
        timer=timer,
        host=host,
        jobs=jobs,
        local_jobs=local_jobs,
        registry=registry,
        sessions=sessions,
        slot=slot,
        cleanup=cleanup,
        mentions=mentions,
        transport=transport,
        connection=connection,
        service=service,
    )
    return _current_components


def get_current_components() -> "RuntimeComponents | None":
    """获取当前运行的 RuntimeComponents，bootstrap() 还没调用时返回 None"""
    return _current_components


def _reset_for_testing() -> None:
    """重置 bootstrap 状态（仅用于测试）"""
    global _current_components
    _current_components = None
    ProcessRegistry._reset_for_testing()
