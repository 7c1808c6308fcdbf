"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import asyncio
import shlex
import stat
import sys
from pathlib import Path
from typing import Callable

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from time_change_listener.config import DEFAULT_EXECUTABLE_NAME, Config  # noqa: E402

# 伪造子进程脚本
FAKE_LISTENER_PATH = PROJECT_ROOT / "tests" / "fixtures" / "fake_listener.py"

IS_WINDOWS = sys.platform == "win32"


def write_script(path: Path, body: str) -> Path:
    """写入可执行 shell 脚本。"""
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class Recorder:
    """记录 on_change / on_error 回调。"""

    def __init__(self) -> None:
        self.changes = 0
        self.errors: list[str] = []

    def on_change(self) -> None:
        self.changes += 1

    def on_error(self, message: str) -> None:
        self.errors.append(message)

    async def wait_until(self, predicate: Callable[[], bool], timeout: float = 5.0) -> None:
        """轮询直到条件成立。"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError(
                    f"condition not met within {timeout}s "
                    f"(changes={self.changes}, errors={self.errors})"
                )
            await asyncio.sleep(0.01)


@pytest.fixture
def recorder() -> Recorder:
    """回调记录器。"""
    return Recorder()


@pytest.fixture
def test_config() -> Config:
    """测试用配置（较短的超时）。"""
    return Config(exit_timeout=2.0, term_timeout=0.5, kill_timeout=0.3)


@pytest.fixture
def make_listener_dir(tmp_path: Path) -> Callable[..., Path]:
    """创建包含伪造监听器可执行文件的构建目录。

    返回工厂函数，参数透传给 fake_listener.py。
    """
    if IS_WINDOWS:
        pytest.skip("POSIX shell wrapper required")

    counter = 0

    def factory(*args: str) -> Path:
        nonlocal counter
        counter += 1
        build_dir = tmp_path / f"listener{counter}"
        build_dir.mkdir()
        argv = [sys.executable, str(FAKE_LISTENER_PATH), *args]
        write_script(
            build_dir / DEFAULT_EXECUTABLE_NAME,
            "exec " + " ".join(shlex.quote(a) for a in argv) + ' "$@"',
        )
        return build_dir

    return factory


@pytest.fixture
def fake_toolchain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[..., Path]:
    """在 PATH 中放置伪造的 make/gcc。

    返回工厂函数：make 的 stderr 内容和退出码可配置。
    """
    if IS_WINDOWS:
        pytest.skip("POSIX shell scripts required")

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", str(bin_dir))

    def factory(stderr: str = "", returncode: int = 0) -> Path:
        body = ""
        if stderr:
            body += f"echo {shlex.quote(stderr)} >&2\n"
        body += f"exit {returncode}"
        write_script(bin_dir / "make", body)
        write_script(bin_dir / "gcc", "exit 0")
        return bin_dir

    return factory
