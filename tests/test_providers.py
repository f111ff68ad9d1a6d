"""Provider 工厂 / 自定义 / external / widget 测试"""

import asyncio
import shlex
import sys
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest
from libtmux.constants import PaneDirection
from libtmux.exc import LibTmuxException

from agentpane.errors import ConfigError, ProviderValidationError
from agentpane.host.tmux import TmuxClient, TmuxHost
from agentpane.providers import (
    REQUIRED_OPERATIONS,
    CustomProvider,
    ExternalProvider,
    NativeProvider,
    NoneProvider,
    WidgetProvider,
    build_external_argv,
    create_provider,
    missing_operations,
    select_provider,
    validate_provider,
)
from agentpane.telemetry import metrics

CMD = ["claude"]


class RecordingProvider:
    """实现全部必需操作的用户 provider（混合同步/异步）"""

    name = "recorder"

    def __init__(self, available=True):
        self.available = available
        self.calls = []

    def open(self, command, env, config, focus=True):
        self.calls.append(("open", focus))

    async def open_session(self, session_id, command, env, config, focus=True):
        self.calls.append(("open_session", session_id))

    def close(self):
        self.calls.append(("close",))

    async def close_session(self, session_id):
        self.calls.append(("close_session", session_id))

    def close_session_keep_window(self, old_session_id, new_session_id, config):
        self.calls.append(("close_session_keep_window", old_session_id, new_session_id))

    def focus_session(self, session_id, config=None):
        self.calls.append(("focus_session", session_id))

    def simple_toggle(self, command, env, config):
        self.calls.append(("simple_toggle",))

    def focus_toggle(self, command, env, config):
        self.calls.append(("focus_toggle",))

    async def get_active_surface_id(self):
        return "%9"

    def get_surface_id_for_session(self, session_id):
        return "%9" if session_id == "s1" else None

    def list_active_session_ids(self):
        return ("s1",)

    def is_available(self):
        return self.available


class TestFactory:
    """select_provider / create_provider"""

    def test_auto_without_tmux_is_native(self, ctx):
        assert isinstance(select_provider(ctx, "auto"), NativeProvider)

    def test_auto_with_tmux_is_widget(self, ctx):
        tmux_ctx = replace(ctx, host=TmuxHost(client=AsyncMock(spec=TmuxClient)))
        assert isinstance(select_provider(tmux_ctx, "auto"), WidgetProvider)

    def test_explicit_names(self, ctx):
        assert isinstance(select_provider(ctx, "native"), NativeProvider)
        assert isinstance(select_provider(ctx, "none"), NoneProvider)

    def test_unavailable_falls_back(self, ctx):
        provider = select_provider(ctx, "widget")

        assert isinstance(provider, NativeProvider)
        assert metrics.get_counter("provider.fallback", {"from": "widget"}) == 1

    def test_external_without_template_falls_back(self, ctx):
        assert isinstance(select_provider(ctx, "external"), NativeProvider)
        assert metrics.get_counter("provider.fallback", {"from": "external"}) == 1

    def test_external_with_template(self, ctx):
        ext_ctx = replace(ctx, settings=replace(ctx.settings, external_terminal_cmd="xterm -e %s"))
        assert isinstance(select_provider(ext_ctx, "external"), ExternalProvider)

    def test_unknown_name_falls_back(self, ctx):
        assert isinstance(select_provider(ctx, "bogus"), NativeProvider)
        with pytest.raises(ValueError):
            create_provider("bogus", ctx)

    def test_default_choice_from_settings(self, ctx):
        none_ctx = replace(ctx, settings=replace(ctx.settings, provider="none"))
        assert isinstance(select_provider(none_ctx), NoneProvider)

    def test_custom_provider(self, ctx):
        impl = RecordingProvider()

        provider = select_provider(ctx, impl)

        assert isinstance(provider, CustomProvider)
        assert provider.impl is impl
        assert provider.name == "recorder"

    def test_invalid_custom_falls_back(self, ctx):
        provider = select_provider(ctx, object())

        assert isinstance(provider, NativeProvider)
        assert metrics.get_counter("provider.fallback", {"from": "custom"}) == 1

    def test_unavailable_custom_falls_back(self, ctx):
        assert isinstance(select_provider(ctx, RecordingProvider(available=False)), NativeProvider)


class TestCustomProvider:
    """CustomProvider 适配"""

    def test_missing_operations(self):
        impl = RecordingProvider()
        impl.close = None

        assert missing_operations(impl) == ["close"]
        assert missing_operations(object()) == list(REQUIRED_OPERATIONS)

    def test_validate_raises(self):
        with pytest.raises(ProviderValidationError) as exc_info:
            validate_provider(object())
        assert "open" in exc_info.value.missing

    @pytest.mark.asyncio
    async def test_delegates_sync_and_async(self, settings):
        impl = RecordingProvider()
        provider = CustomProvider(impl)

        await provider.open(CMD, {}, settings, focus=False)
        await provider.open_session("s1", CMD, {}, settings)
        await provider.close_session_keep_window("s1", "s2", settings)
        await provider.close()

        assert impl.calls == [
            ("open", False),
            ("open_session", "s1"),
            ("close_session_keep_window", "s1", "s2"),
            ("close",),
        ]
        assert await provider.get_active_surface_id() == "%9"
        assert await provider.get_surface_id_for_session("s1") == "%9"
        assert await provider.list_active_session_ids() == ["s1"]

    @pytest.mark.asyncio
    async def test_optional_defaults(self, settings):
        impl = RecordingProvider()
        provider = CustomProvider(impl)

        await provider.toggle(CMD, {}, settings)
        await provider.ensure_visible(CMD, {}, settings)

        assert impl.calls == [("simple_toggle",), ("open", False)]
        assert await provider.register_terminal_for_session("s1") is False
        assert provider.debug_snapshot() is None

    @pytest.mark.asyncio
    async def test_optional_overrides(self, settings):
        impl = RecordingProvider()
        toggled = []
        impl.toggle = lambda command, env, config: toggled.append((command, config))
        impl.register_terminal_for_session = AsyncMock(return_value=True)
        impl.debug_snapshot = lambda: {"custom": True}
        provider = CustomProvider(impl)

        await provider.toggle(CMD, {}, settings)

        assert toggled == [(CMD, settings)]
        assert await provider.register_terminal_for_session("s1", "%9") is True
        assert provider.debug_snapshot() == {"custom": True}

    def test_is_available_error(self):
        impl = RecordingProvider()
        impl.is_available = MagicMock(side_effect=RuntimeError("boom"))

        assert CustomProvider(impl).is_available() is False


class TestBuildExternalArgv:
    """外部终端模板展开"""

    def test_single_placeholder(self):
        argv = build_external_argv("alacritty -e %s", ["claude", "--model", "a b"], {}, None)
        assert argv == ["alacritty", "-e", "claude", "--model", "a b"]

    def test_cwd_and_command(self):
        argv = build_external_argv("kitty --directory %s -e %s", ["claude"], {}, "/my projects/app")
        assert argv == ["kitty", "--directory", "/my projects/app", "-e", "claude"]

    def test_callable_string(self):
        def template(command, env):
            assert env == {"A": "1"}
            return f"wezterm start -- {command}"

        argv = build_external_argv(template, ["claude"], {"A": "1"}, None)
        assert argv == ["wezterm", "start", "--", "claude"]

    def test_callable_list(self):
        argv = build_external_argv(lambda command, env: ["foot", "sh", "-c", command], ["claude"], {}, None)
        assert argv == ["foot", "sh", "-c", "claude"]

    @pytest.mark.parametrize("template", [None, "", "xterm", "a %s %s %s", 42])
    def test_invalid_templates(self, template):
        with pytest.raises(ConfigError):
            build_external_argv(template, ["claude"], {}, None)

    def test_callable_bad_result(self):
        with pytest.raises(ConfigError):
            build_external_argv(lambda command, env: None, ["claude"], {}, None)


def _python_template(code: str) -> str:
    # 命令部分成为 python -c 的 argv，不会被执行
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)} %s"


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


class TestExternalProvider:
    """ExternalProvider（真实子进程）"""

    @pytest.mark.asyncio
    async def test_open_and_close(self, ctx, settings):
        config = replace(settings, external_terminal_cmd=_python_template("import time; time.sleep(30)"))
        provider = ExternalProvider(replace(ctx, settings=config))

        await provider.open(CMD, {}, config)
        session_id = ctx.sessions.get_active_session_id()

        assert await provider.list_active_session_ids() == [session_id]
        job_id = ctx.sessions.get_session(session_id).job_id
        assert job_id.startswith("proc:")
        assert job_id in ctx.processes

        # 已在运行时不重复启动
        await provider.open(CMD, {}, config)
        assert len(ctx.local_jobs.job_ids()) == 1

        await provider.close()
        assert await provider.list_active_session_ids() == []

        async def exited():
            return not ctx.local_jobs.job_ids()

        await _wait_for(exited)
        assert job_id not in ctx.processes
        await ctx.local_jobs.close()

    @pytest.mark.asyncio
    async def test_process_exit_resets(self, ctx, settings):
        config = replace(settings, external_terminal_cmd=_python_template("pass"))
        provider = ExternalProvider(replace(ctx, settings=config))

        await provider.simple_toggle(CMD, {}, config)

        async def stopped():
            return await provider.list_active_session_ids() == []

        await _wait_for(stopped)
        assert provider.debug_snapshot()["job_id"] is None

    @pytest.mark.asyncio
    async def test_bad_template_logs(self, ctx, settings):
        config = replace(settings, external_terminal_cmd="xterm")
        provider = ExternalProvider(replace(ctx, settings=config))

        await provider.open(CMD, {}, config)

        assert ctx.local_jobs.job_ids() == []
        assert provider.is_available() is False

    @pytest.mark.asyncio
    async def test_no_surfaces(self, ctx, settings):
        provider = ExternalProvider(ctx)

        assert await provider.get_active_surface_id() is None
        assert await provider.get_surface_id_for_session("s1") is None
        await provider.focus_session("s1")
        await provider.close_session("s1")


class TestWidgetProvider:
    """WidgetProvider（mock libtmux server）"""

    @pytest.fixture
    def server(self):
        server = MagicMock()
        server.panes.get.return_value.split.return_value.pane_id = "%77"
        return server

    @pytest.fixture
    def widget(self, ctx, server):
        provider = WidgetProvider(ctx)
        provider._server = server
        return provider

    def test_requires_tmux_host(self, widget):
        assert widget.is_available() is False

    @pytest.mark.asyncio
    async def test_open_splits_and_adopts(self, ctx, host, widget, server, settings):
        await widget.open(CMD, {"A": "1"}, replace(settings, cwd="/work"))

        server.panes.get.assert_called_once_with(pane_id="v0")
        kwargs = server.panes.get.return_value.split.call_args.kwargs
        assert kwargs["direction"] == (PaneDirection.Left if settings.split_side == "left" else PaneDirection.Right)
        assert kwargs["shell"] == "claude"
        assert kwargs["environment"] == {"A": "1"}
        assert kwargs["start_directory"] == "/work"

        session_id = ctx.sessions.get_active_session_id()
        assert await widget.get_surface_id_for_session(session_id) == "%77"
        assert host.shown_surfaces() == ["%77"]
        assert "tmux:%77" in ctx.processes

    @pytest.mark.asyncio
    async def test_split_failure(self, ctx, host, widget, server, settings):
        server.panes.get.side_effect = LibTmuxException("no such pane")

        await widget.open(CMD, {}, settings)

        assert host.shown_surfaces() == []
        assert metrics.get_counter("provider.spawn_errors", {"provider": "widget"}) == 1
