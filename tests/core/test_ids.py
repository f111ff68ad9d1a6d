"""Tests for core.ids - namespaced job IDs"""

import pytest

from agentpane.core.ids import (
    JobKind,
    get_job_kind,
    get_native_id,
    make_job_id,
    parse_job_id,
    short_id,
)
from agentpane.telemetry import format_session_log


class TestMakeJobId:
    def test_from_enum(self):
        assert make_job_id(JobKind.TMUX, "%3") == "tmux:%3"

    def test_from_string_and_int(self):
        assert make_job_id("proc", 7) == "proc:7"


class TestParseJobId:
    def test_tmux_id(self):
        parsed = parse_job_id("tmux:%12")
        assert parsed.kind == JobKind.TMUX
        assert parsed.native_id == "%12"
        assert str(parsed) == "tmux:%12"

    def test_native_part_may_contain_colon(self):
        parsed = parse_job_id("proc:a:b")
        assert parsed.native_id == "a:b"

    @pytest.mark.parametrize("value", ["", "tmux", "tmux:", "iterm:abc", "%3"])
    def test_invalid_ids(self, value):
        assert parse_job_id(value) is None


class TestHelpers:
    def test_get_job_kind(self):
        assert get_job_kind("proc:1") == JobKind.PROC
        assert get_job_kind("bogus") is None

    def test_get_native_id_passthrough(self):
        assert get_native_id("tmux:%1") == "%1"
        assert get_native_id("%1") == "%1"

    def test_short_id(self):
        assert short_id(None) == "-"
        assert short_id("tmux:%123456789") == "%1234567"
        assert short_id("session-1", length=4) == "sess"

    def test_session_log_prefix(self):
        assert format_session_log("native", "session-12", "Started") == "[native:session-] Started"
        assert format_session_log("native", None, "Started") == "[native:-] Started"
