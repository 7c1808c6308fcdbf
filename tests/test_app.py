"""命令行入口测试。"""

from __future__ import annotations

import io
import json
import os
from unittest import mock

import pytest

from time_change_listener.app import _build_parser, run_listener
from time_change_listener.config import reload_config
from time_change_listener.events import ListenerEvent


@pytest.fixture(autouse=True)
def short_timeouts():
    """使用较短超时的全局配置。"""
    env = {"TCL_EXIT_TIMEOUT": "2", "TCL_TERM_TIMEOUT": "0.5", "TCL_KILL_TIMEOUT": "0.3"}
    with mock.patch.dict(os.environ, env, clear=False):
        os.environ.pop("TCL_EXECUTABLE", None)
        os.environ.pop("TCL_LOG_DEBUG", None)
        reload_config()
        yield
    reload_config()


def parse_events(out: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in out.getvalue().splitlines()]


class TestParser:
    """命令行参数解析。"""

    def test_defaults(self):
        args = _build_parser().parse_args(["/src"])
        assert args.path == "/src"
        assert args.enable is True
        assert args.build is True

    def test_flags(self):
        args = _build_parser().parse_args(["/src", "--no-enable", "--no-build"])
        assert args.enable is False
        assert args.build is False


class TestRunListener:
    """run_listener 端到端测试。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_events_until_child_exits(self, make_listener_dir):
        """子进程自行退出时输出 started/change/stopped 事件。"""
        build_dir = make_listener_dir("--changes-per-enable", "2", "--exit-after-enable", "0")
        out = io.StringIO()

        code = await run_listener(str(build_dir), build=False, out=out)

        events = parse_events(out)
        assert code == 0
        assert [e["type"] for e in events] == ["started", "change", "change", "stopped"]
        assert isinstance(events[0]["pid"], int)
        assert events[-1]["returncode"] == 0

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_child_failure_exit_code(self, make_listener_dir):
        build_dir = make_listener_dir("--exit-after-enable", "4", "--stderr", "cannot watch clock")
        out = io.StringIO()

        code = await run_listener(str(build_dir), build=False, out=out)

        events = parse_events(out)
        assert code == 1
        errors = [e for e in events if e["type"] == "error"]
        assert any("cannot watch clock" in e["message"] for e in errors)
        assert events[-1]["type"] == "stopped"
        assert events[-1]["returncode"] == 4

    @pytest.mark.asyncio
    async def test_construction_failure(self, tmp_path, capsys):
        """构造失败时返回 1 并在 stderr 给出提示。"""
        out = io.StringIO()

        code = await run_listener(str(tmp_path), build=False, out=out)

        assert code == 1
        assert out.getvalue() == ""
        assert "Failed to start" in capsys.readouterr().err


class TestListenerEvent:
    """事件模型序列化。"""

    def test_none_fields_omitted(self):
        data = json.loads(ListenerEvent(type="change", timestamp=1.5).to_json_line())
        assert data == {"type": "change", "timestamp": 1.5}

    def test_error_event(self):
        line = ListenerEvent(type="error", message="boom").to_json_line()
        assert "\n" not in line
        assert json.loads(line)["message"] == "boom"

    def test_invalid_type_rejected(self):
        with pytest.raises(ValueError):
            ListenerEvent(type="unknown")  # type: ignore[arg-type]
