"""TerminalSettings 校验与有效配置测试"""

import os

import pytest

from agentpane.settings import (
    TerminalSettings,
    apply_user_config,
    build_config,
    find_git_root,
    resolve_cwd,
)


class TestApplyUserConfig:
    """用户配置校验"""

    def test_empty_config_returns_base(self):
        base = TerminalSettings()
        assert apply_user_config(None, base) is base
        assert apply_user_config({}, base) is base

    def test_valid_values_applied(self):
        settings = apply_user_config({
            "split_side": "left",
            "split_width_percentage": 0.5,
            "auto_close": False,
            "cleanup_strategy": "aggressive",
            "esc_timeout": 0,
            "env": {"FOO": "bar"},
        })
        assert settings.split_side == "left"
        assert settings.split_width_percentage == 0.5
        assert settings.auto_close is False
        assert settings.cleanup_strategy == "aggressive"
        assert settings.esc_timeout == 0
        assert settings.env == {"FOO": "bar"}

    @pytest.mark.parametrize("key,value", [
        ("split_side", "top"),
        ("split_width_percentage", 1.5),
        ("split_width_percentage", 0),
        ("split_width_percentage", True),
        ("provider", "bogus"),
        ("auto_close", "yes"),
        ("cleanup_strategy", "nuke"),
        ("esc_timeout", -1),
        ("mention_debounce", 0),
        ("env", {"A": 1}),
        ("cwd_provider", "not callable"),
    ])
    def test_invalid_value_keeps_default(self, key, value, caplog):
        base = TerminalSettings()
        settings = apply_user_config({key: value}, base)
        assert getattr(settings, key) == getattr(base, key)
        assert "invalid value" in caplog.text

    def test_unknown_key_warns(self, caplog):
        settings = apply_user_config({"colour": "red"})
        assert settings == TerminalSettings()
        assert "Unknown option" in caplog.text

    def test_invalid_key_does_not_block_others(self):
        settings = apply_user_config({"split_side": "top", "auto_close": False})
        assert settings.split_side == TerminalSettings().split_side
        assert settings.auto_close is False

    def test_provider_object_accepted(self):
        provider = object()
        settings = apply_user_config({"provider": provider})
        assert settings.provider is provider

    def test_provider_opts_external_cmd(self):
        settings = apply_user_config({"provider_opts": {"external_terminal_cmd": "alacritty -e %s"}})
        assert settings.external_terminal_cmd == "alacritty -e %s"

    def test_provider_opts_without_placeholder_rejected(self):
        settings = apply_user_config({"provider_opts": {"external_terminal_cmd": "alacritty"}})
        assert settings.external_terminal_cmd == TerminalSettings().external_terminal_cmd

    def test_provider_opts_not_mapping(self, caplog):
        apply_user_config({"provider_opts": "alacritty -e %s"})
        assert "provider_opts must be a mapping" in caplog.text


class TestResolveCwd:
    """工作目录解析优先级"""

    def test_no_cwd_configured(self):
        assert resolve_cwd(TerminalSettings()) is None

    def test_static_cwd(self, tmp_path):
        settings = TerminalSettings(cwd=str(tmp_path))
        assert resolve_cwd(settings) == str(tmp_path)

    def test_cwd_provider_wins(self, tmp_path):
        seen = {}

        def provider(ctx):
            seen.update(ctx)
            return str(tmp_path / "from-provider")

        settings = TerminalSettings(cwd="/static", cwd_provider=provider)
        result = resolve_cwd(settings, {"file": str(tmp_path / "a" / "b.py")})

        assert result == str(tmp_path / "from-provider")
        assert seen["file_dir"] == str(tmp_path / "a")
        assert seen["cwd"] == os.getcwd()

    def test_cwd_provider_failure_falls_back(self, caplog):
        def provider(ctx):
            raise RuntimeError("boom")

        settings = TerminalSettings(cwd="/static", cwd_provider=provider)
        assert resolve_cwd(settings) == "/static"
        assert "cwd_provider failed" in caplog.text

    def test_git_root(self, tmp_path):
        (tmp_path / ".git").mkdir()
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)

        settings = TerminalSettings(git_repo_cwd=True)
        assert resolve_cwd(settings, {"cwd": str(nested)}) == str(tmp_path.resolve())

    def test_find_git_root_from_file_path(self, tmp_path):
        (tmp_path / ".git").mkdir()
        target = tmp_path / "a.py"
        target.write_text("")
        assert find_git_root(tmp_path) == str(tmp_path.resolve())


class TestBuildConfig:
    """单次调用的有效配置"""

    def test_overrides_applied_to_copy(self):
        base = TerminalSettings()
        config = build_config(base, {"split_side": "left"})
        assert config.split_side == "left"
        assert base.split_side == TerminalSettings().split_side

    def test_non_overridable_key_ignored(self, caplog):
        base = TerminalSettings()
        config = build_config(base, {"cleanup_strategy": "none"})
        assert config.cleanup_strategy == base.cleanup_strategy
        assert "Unknown option" in caplog.text

    def test_cwd_resolved(self, tmp_path):
        config = build_config(TerminalSettings(), {"cwd": str(tmp_path)})
        assert config.cwd == str(tmp_path)
