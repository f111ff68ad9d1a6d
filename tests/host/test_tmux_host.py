"""TmuxHost 测试（mock TmuxClient）"""

from unittest.mock import AsyncMock

import pytest

from agentpane import config
from agentpane.errors import SpawnError
from agentpane.host.base import HostEvent
from agentpane.host.tmux import TmuxClient, TmuxHost


def _pane(pane_id, session="main", window="@1", dead=False, dead_status=None,
          title="", is_surface=False, is_scratch=False, window_panes=2, pid=100):
    return {
        "pane_id": pane_id,
        "session_name": session,
        "window_id": window,
        "window_active": True,
        "active": False,
        "width": 80,
        "height": 24,
        "window_width": 200,
        "window_panes": window_panes,
        "pane_pid": pid,
        "dead": dead,
        "dead_status": dead_status,
        "title": title,
        "is_surface": is_surface,
        "is_scratch": is_scratch,
    }


@pytest.fixture
def client():
    mock = AsyncMock(spec=TmuxClient)
    mock.has_session.return_value = True
    mock.new_window.return_value = ("%5", 1234)
    mock.set_pane_option.return_value = True
    mock.display.return_value = None
    mock.list_panes.return_value = []
    return mock


@pytest.fixture
def tmux_host(client):
    return TmuxHost(client=client)


class TestSpawn:
    """spawn_terminal"""

    @pytest.mark.asyncio
    async def test_spawn_marks_and_watches(self, tmux_host, client):
        result = await tmux_host.spawn_terminal(["claude"], {"A": "1"}, "/work", on_exit=AsyncMock())

        assert result.surface_id == "%5"
        assert result.job_id == "tmux:%5"
        assert result.pid == 1234
        client.new_window.assert_awaited_once_with(
            config.STASH_SESSION_NAME, ["claude"], env={"A": "1"}, cwd="/work"
        )
        client.set_pane_option.assert_any_await("%5", config.SURFACE_OPTION, "1")
        client.set_pane_option.assert_any_await("%5", "remain-on-exit", "on")

    @pytest.mark.asyncio
    async def test_spawn_creates_stash(self, tmux_host, client):
        client.has_session.return_value = False
        client.new_session.return_value = True

        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=AsyncMock())

        client.new_session.assert_awaited_once_with(config.STASH_SESSION_NAME, config.PLACEHOLDER_CMD)

    @pytest.mark.asyncio
    async def test_spawn_failure_raises(self, tmux_host, client):
        client.new_window.return_value = None

        with pytest.raises(SpawnError):
            await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=AsyncMock())

    @pytest.mark.asyncio
    async def test_spawn_empty_command(self, tmux_host):
        with pytest.raises(SpawnError):
            await tmux_host.spawn_terminal([], {}, None, on_exit=AsyncMock())

    @pytest.mark.asyncio
    async def test_stop_kills_created_stash(self, tmux_host, client):
        client.has_session.return_value = False
        client.new_session.return_value = True
        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=AsyncMock())

        await tmux_host.stop()

        client.kill_session.assert_awaited_once_with(config.STASH_SESSION_NAME)


class TestPoll:
    """退出检测与事件上报"""

    @pytest.mark.asyncio
    async def test_dead_pane_reports_exit_once(self, tmux_host, client):
        on_exit = AsyncMock()
        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=on_exit)

        client.list_panes.return_value = [
            _pane("%1"),
            _pane("%5", session=config.STASH_SESSION_NAME, dead=True, dead_status=3, is_surface=True),
        ]
        await tmux_host.poll()
        await tmux_host.poll()

        on_exit.assert_awaited_once_with("tmux:%5", 3)

    @pytest.mark.asyncio
    async def test_removed_pane_reports_exit_and_event(self, tmux_host, client):
        on_exit = AsyncMock()
        handler = AsyncMock()
        tmux_host.set_event_handler(handler)
        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=on_exit)

        client.list_panes.return_value = [_pane("%1")]
        await tmux_host.poll()

        on_exit.assert_awaited_once_with("tmux:%5", None)
        handler.assert_awaited_once_with(HostEvent.SURFACE_REMOVED, {"surface_id": "%5"})

    @pytest.mark.asyncio
    async def test_unreachable_tmux_is_ignored(self, tmux_host, client):
        on_exit = AsyncMock()
        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=on_exit)

        client.list_panes.return_value = []
        await tmux_host.poll()

        on_exit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_title_change(self, tmux_host, client):
        on_title = AsyncMock()
        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=AsyncMock(), on_title=on_title)

        client.list_panes.return_value = [_pane("%5", title="claude: fixing bug", is_surface=True)]
        await tmux_host.poll()
        await tmux_host.poll()

        on_title.assert_awaited_once_with("claude: fixing bug")

    @pytest.mark.asyncio
    async def test_callback_error_does_not_break_poll(self, tmux_host, client):
        on_exit = AsyncMock(side_effect=RuntimeError("boom"))
        await tmux_host.spawn_terminal(["sh"], {}, None, on_exit=on_exit)

        client.list_panes.return_value = [_pane("%1")]
        await tmux_host.poll()

        on_exit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_focus_events(self, tmux_host, client):
        handler = AsyncMock()
        tmux_host.set_event_handler(handler)
        client.list_panes.return_value = [_pane("%1"), _pane("%5", is_surface=True)]

        client.display.return_value = "@1\t%1\t200\t50"
        await tmux_host.poll()
        handler.assert_not_awaited()

        client.display.return_value = "@1\t%5\t200\t50"
        await tmux_host.poll()
        events = [c.args[0] for c in handler.await_args_list]
        assert events == [HostEvent.VIEW_ENTER, HostEvent.TERMINAL_ENTER]

        handler.reset_mock()
        client.display.return_value = "@1\t%5\t180\t50"
        await tmux_host.poll()
        events = [c.args[0] for c in handler.await_args_list]
        assert events == [HostEvent.RESIZED]

        handler.reset_mock()
        client.display.return_value = "@2\t%1\t180\t50"
        await tmux_host.poll()
        events = [c.args[0] for c in handler.await_args_list]
        assert events == [HostEvent.TAB_ENTER]


class TestViews:
    """view 操作"""

    @pytest.mark.asyncio
    async def test_list_views_hides_stash(self, tmux_host, client):
        client.get_active_window.return_value = "@1"
        client.list_panes.return_value = [
            _pane("%1"),
            _pane("%5", session=config.STASH_SESSION_NAME, is_surface=True),
        ]

        views = await tmux_host.list_views()

        assert [v.view_id for v in views] == ["%1"]

    @pytest.mark.asyncio
    async def test_split_view_marks_scratch(self, tmux_host, client):
        client.split_window.return_value = "%9"

        view_id = await tmux_host.split_view("right", 60)

        assert view_id == "%9"
        client.split_window.assert_awaited_once_with(None, "right", 60, config.PLACEHOLDER_CMD)
        client.set_pane_option.assert_awaited_once_with("%9", config.SCRATCH_OPTION, "1")

    @pytest.mark.asyncio
    async def test_show_surface_swaps(self, tmux_host, client):
        client.swap_pane.return_value = True

        assert await tmux_host.show_surface("%9", "%5") == "%5"
        client.swap_pane.assert_awaited_once_with("%5", "%9")

    @pytest.mark.asyncio
    async def test_show_surface_already_shown(self, tmux_host, client):
        assert await tmux_host.show_surface("%5", "%5") == "%5"
        client.swap_pane.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_scratch_view_kills(self, tmux_host, client):
        client.list_panes.return_value = [_pane("%9", is_scratch=True)]
        client.kill_pane.return_value = True

        assert await tmux_host.close_view("%9") is True
        client.kill_pane.assert_awaited_once_with("%9")

    @pytest.mark.asyncio
    async def test_close_surface_view_breaks_to_stash(self, tmux_host, client):
        client.list_panes.return_value = [_pane("%5", is_surface=True)]
        client.break_pane.return_value = True

        assert await tmux_host.close_view("%5") is True
        client.break_pane.assert_awaited_once_with("%5", config.STASH_SESSION_NAME)

    @pytest.mark.asyncio
    async def test_close_only_pane_refused(self, tmux_host, client):
        client.list_panes.return_value = [_pane("%5", is_surface=True, window_panes=1)]

        assert await tmux_host.close_view("%5") is False
        client.break_pane.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_total_columns(self, tmux_host, client):
        client.display.return_value = "212"
        assert await tmux_host.total_columns() == 212

        client.display.return_value = None
        assert await tmux_host.total_columns() == 0


class TestJobs:
    """job control"""

    def test_owns(self, tmux_host):
        assert tmux_host.owns("tmux:%5") is True
        assert tmux_host.owns("proc:3") is False

    @pytest.mark.asyncio
    async def test_job_pid(self, tmux_host, client):
        client.list_panes.return_value = [_pane("%5", pid=777, is_surface=True)]
        assert await tmux_host.job_pid("tmux:%5") == 777

        client.list_panes.return_value = [_pane("%5", pid=777, dead=True, is_surface=True)]
        assert await tmux_host.job_pid("tmux:%5") is None

    @pytest.mark.asyncio
    async def test_job_stop_kills_pane(self, tmux_host, client):
        client.kill_pane.return_value = True

        assert await tmux_host.job_stop("tmux:%5") is True
        client.kill_pane.assert_awaited_once_with("%5")
