"""Pytest 配置"""

import pytest

from agentpane.display import DisplaySlotManager
from agentpane.process import JobRouter, LocalJobTable, ProcessRegistry
from agentpane.providers import ProviderContext
from agentpane.runtime.bootstrap import _reset_for_testing
from agentpane.sessions import InMemorySessionRegistry
from agentpane.settings import TerminalSettings
from agentpane.telemetry import metrics
from agentpane.timer import Timer

from fakes import FakeHost


@pytest.fixture
def anyio_backend():
    """指定 anyio 只使用 asyncio backend"""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_globals():
    """每次测试前重置指标和单例"""
    metrics.reset()
    _reset_for_testing()
    yield
    metrics.reset()
    _reset_for_testing()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def timer():
    return Timer(tick_interval=0.05)


@pytest.fixture
def settings():
    return TerminalSettings()


@pytest.fixture
def ctx(host, timer, settings):
    """Provider 协作方（进程表不持久化）"""
    local_jobs = LocalJobTable()
    jobs = JobRouter(host, local_jobs)
    return ProviderContext(
        host=host,
        slot=DisplaySlotManager(host, timer, settings),
        sessions=InMemorySessionRegistry(),
        processes=ProcessRegistry(jobs, persist=False),
        jobs=jobs,
        local_jobs=local_jobs,
        timer=timer,
        settings=settings,
    )
