"""TerminalService 测试（FakeHost + native provider）"""

import asyncio

import pytest

from agentpane.host.base import HostEvent
from agentpane.keys import DismissKeyHandler
from agentpane.mentions import ConnectionFlag, MentionQueue
from agentpane.process import CleanupEngine
from agentpane.providers import NativeProvider, NoneProvider
from agentpane.terminal import TerminalService

from fakes import FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def connection():
    return ConnectionFlag()


@pytest.fixture
def service(ctx, host, timer, transport, connection):
    cleanup = CleanupEngine(ctx.processes, ctx.jobs, host=host, sessions=ctx.sessions, grace=0)
    mentions = MentionQueue(timer, transport, connection, debounce=0.05, settle=0.05, inter_item_delay=0)
    keys = DismissKeyHandler(host, timer, timeout=0.05)
    svc = TerminalService(ctx, cleanup, mentions, connection, keys, ide_port=4321)
    host.set_event_handler(svc.handle_host_event)
    return svc


async def _surface(service, session_id):
    return await service.provider.get_surface_id_for_session(session_id)


class TestSetup:
    """配置"""

    def test_default_provider(self, service):
        assert isinstance(service.provider, NativeProvider)

    def test_setup_applies_and_validates(self, service, ctx):
        settings = service.setup(
            {"split_side": "left", "split_width_percentage": 3, "cleanup_strategy": "aggressive", "esc_timeout": 0},
            terminal_cmd="claude --verbose",
            env={"FOO": "bar"},
        )

        assert settings.split_side == "left"
        # 非法值保留默认
        assert settings.split_width_percentage == 0.30
        assert settings.terminal_cmd == "claude --verbose"
        assert ctx.settings is settings
        assert service._cleanup.strategy == "aggressive"
        assert service._keys.timeout == 0.0

    def test_setup_switches_provider(self, service):
        service.setup({"provider": "none"})
        assert isinstance(service.provider, NoneProvider)

    def test_setup_rejects_non_mapping(self, service):
        before = service.settings
        assert service.setup(["split_side", "left"]) is before

    def test_build_command(self, service):
        service.setup(terminal_cmd="claude --model 'big one'", env={"FORCE_CODE_TERMINAL": "false", "X": "1"})

        argv, env = service.build_command("--resume abc")

        assert argv == ["claude", "--model", "big one", "--resume", "abc"]
        assert env["ENABLE_IDE_INTEGRATION"] == "true"
        assert env["CLAUDE_CODE_SSE_PORT"] == "4321"
        # 用户环境变量优先
        assert env["FORCE_CODE_TERMINAL"] == "false"
        assert env["X"] == "1"


class TestSingleTerminal:
    """open / toggle"""

    @pytest.mark.asyncio
    async def test_open_creates_session(self, service, host):
        await service.open()

        assert service.session_count() == 1
        session_id = service.get_active_session_id()
        assert await _surface(service, session_id) == "%1"
        assert host.shown_surfaces() == ["%1"]
        assert await service.get_current_session_id() == session_id

    @pytest.mark.asyncio
    async def test_open_passes_command(self, service, host):
        await service.open(cmd_args="--continue")

        assert host.surfaces["%1"].argv[-1] == "--continue"
        assert host.surfaces["%1"].env["CLAUDE_CODE_SSE_PORT"] == "4321"

    @pytest.mark.asyncio
    async def test_toggle_variants(self, service, host):
        await service.simple_toggle()
        assert host.shown_surfaces() == ["%1"]
        await service.toggle()
        assert host.shown_surfaces() == []
        await service.focus_toggle()
        assert host.shown_surfaces() == ["%1"]
        await service.close()
        assert host.shown_surfaces() == []
        assert service.session_count() == 1

    @pytest.mark.asyncio
    async def test_ensure_visible(self, service, host):
        await service.ensure_visible()

        assert host.shown_surfaces() == ["%1"]
        assert host.current == "v0"

    @pytest.mark.asyncio
    async def test_split_override(self, service, host):
        await service.open({"split_width_percentage": 0.5})

        view_ids = [vid for vid in host.views if vid != "v0"]
        assert host.views[view_ids[0]].width == 100

    @pytest.mark.asyncio
    async def test_split_side_override(self, service, host):
        await service.open_new_session(overrides={"split_side": "left"})

        view_ids = [vid for vid in host.views if vid != "v0"]
        assert host.views[view_ids[0]].side == "left"


class TestSessions:
    """多会话"""

    @pytest.mark.asyncio
    async def test_open_new_session_activates(self, service, host):
        s1 = await service.open_new_session()
        s2 = await service.open_new_session()

        assert service.get_active_session_id() == s2
        assert host.shown_surfaces() == [await _surface(service, s2)]
        assert [s.id for s in service.list_sessions()] == [s1, s2]

    @pytest.mark.asyncio
    async def test_close_switches_to_remaining(self, service, host, ctx):
        """S1 展示中，关闭 S1：显示槽保留并切到 S2，S1 的退出事件不影响 S2"""
        s1 = await service.open_new_session()
        s2 = await service.open_new_session()
        assert await service.switch_to_session(s1) is True
        view_id = ctx.slot.view_id
        s2_surface = await _surface(service, s2)

        await service.close_session(s1)

        assert service.get_active_session_id() == s2
        assert [s.id for s in service.list_sessions()] == [s2]
        assert host.shown_surfaces() == [s2_surface]

        await host.poll()

        assert service.session_count() == 1
        assert host.shown_surfaces() == [s2_surface]
        assert ctx.slot.view_id == view_id

    @pytest.mark.asyncio
    async def test_close_prefers_previous(self, service):
        a = await service.open_new_session()
        b = await service.open_new_session()
        c = await service.open_new_session()
        await service.switch_to_session(b)

        await service.close_session()

        assert service.get_active_session_id() == a
        assert [s.id for s in service.list_sessions()] == [a, c]

    @pytest.mark.asyncio
    async def test_close_last_session(self, service, host, ctx):
        await service.open()

        await service.close_session()
        await host.poll()

        assert service.session_count() == 0
        assert host.shown_surfaces() == []
        assert ctx.slot.view_id is None

    @pytest.mark.asyncio
    async def test_close_without_sessions(self, service):
        await service.close_session()
        assert service.session_count() == 0

    @pytest.mark.asyncio
    async def test_switch_unknown(self, service):
        assert await service.switch_to_session("missing") is False

    @pytest.mark.asyncio
    async def test_process_exit_switches(self, service, host):
        s1 = await service.open_new_session()
        s2 = await service.open_new_session()

        host.exit_process(await _surface(service, s2), 0)
        await host.poll()

        assert service.get_active_session_id() == s1
        assert host.shown_surfaces() == [await _surface(service, s1)]


class TestHostEvents:
    """host 事件"""

    @pytest.mark.asyncio
    async def test_zombie_session_removed(self, service, ctx, host):
        zombie = ctx.sessions.create_session()
        ctx.sessions.update_terminal_info(zombie, surface_id="%99")

        await host.emit(HostEvent.SURFACE_REMOVED, {"surface_id": "%99"})

        assert ctx.sessions.get_session(zombie) is None

    @pytest.mark.asyncio
    async def test_live_session_kept(self, service, ctx, host):
        await service.open()
        session_id = service.get_active_session_id()

        await host.emit(HostEvent.SURFACE_REMOVED, {"surface_id": "%1"})

        assert ctx.sessions.get_session(session_id) is not None

    @pytest.mark.asyncio
    async def test_external_removal(self, service, host):
        await service.open()

        host.remove_externally("%1")
        await host.poll()

        assert service.session_count() == 0

    @pytest.mark.asyncio
    async def test_layout_event_forwarded(self, service, host, ctx):
        await service.open()
        host.views[ctx.slot.view_id].width = 10

        await host.emit(HostEvent.RESIZED, {})

        assert host.views[ctx.slot.view_id].width == 60


class TestMentionsAndKeys:
    """mention 与按键"""

    @pytest.mark.asyncio
    async def test_mention_while_disconnected(self, service, host, timer, transport):
        await service.send_at_mention("/src/app.py", 3, 7)

        # 未连接：打开终端并排队
        assert host.shown_surfaces() == ["%1"]
        assert host.current != "v0"
        assert transport.sent == []

        service.set_connected(True)
        await asyncio.sleep(0.15)
        await timer.drain()

        assert transport.sent == [("at_mentioned", {"filePath": "/src/app.py", "lineStart": 3, "lineEnd": 7})]

    @pytest.mark.asyncio
    async def test_mention_while_connected(self, service, host, timer, transport):
        service.set_connected(True)

        await service.send_at_mention("/src/app.py")

        # 已连接：只确保可见，不抢焦点
        assert host.shown_surfaces() == ["%1"]
        assert host.current == "v0"

        await asyncio.sleep(0.1)
        await timer.drain()
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_dismiss_key(self, service, host, timer):
        assert await service.dismiss_key() is None

        await service.open()
        assert await service.dismiss_key() == "pending"
        assert await service.dismiss_key() == "scroll"
        assert host.scroll_mode == ["%1"]


class TestCleanup:
    """cleanup_all"""

    @pytest.mark.asyncio
    async def test_cleanup_all(self, service, host, ctx):
        await service.open_new_session()
        await service.open_new_session()

        report = await service.cleanup_all()

        assert report.stopped == 2
        assert len(ctx.processes) == 0
        assert all(s.job_id is None for s in host.surfaces.values())

        again = await service.cleanup_all()
        assert again.is_noop

    @pytest.mark.asyncio
    async def test_debug_snapshot(self, service):
        await service.open()

        snapshot = service.debug_snapshot()

        assert snapshot["provider"] == "native"
        assert snapshot["active_session"] == service.get_active_session_id()
        assert len(snapshot["sessions"]) == 1
        assert snapshot["mentions_pending"] == 0
        assert "counters" in snapshot["metrics"]


class TestSpawnFailure:
    """启动失败不留下会话"""

    @pytest.mark.asyncio
    async def test_open_new_session_rolls_back(self, service, host, ctx):
        first = await service.open_new_session()
        host.fail_spawn = True

        assert await service.open_new_session() is None

        assert [s.id for s in service.list_sessions()] == [first]
        assert service.get_active_session_id() == first
        assert host.shown_surfaces() == [await _surface(service, first)]

    @pytest.mark.asyncio
    async def test_first_open_leaves_no_session(self, service, host, ctx):
        host.fail_spawn = True

        assert await service.open_new_session() is None
        assert await service.open() is False

        assert service.list_sessions() == []
        assert service.get_active_session_id() is None
        assert host.shown_surfaces() == []
        assert len(ctx.processes) == 0

    @pytest.mark.asyncio
    async def test_toggle_failure_leaves_no_session(self, service, host):
        host.fail_spawn = True

        await service.simple_toggle()

        assert service.session_count() == 0

    @pytest.mark.asyncio
    async def test_open_keeps_existing_session(self, service, host):
        """已有会话时启动失败不删除用户的会话"""
        session_id = service.sessions.create_session()
        host.fail_spawn = True

        assert await service.open() is False

        assert [s.id for s in service.list_sessions()] == [session_id]
