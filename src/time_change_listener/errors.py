"""监听器异常类。

构造阶段的失败（缺少构建工具、编译失败、无法启动子进程）以异常形式同步抛出；
运行期的错误（子进程 stderr 输出、流读取失败）只通过 on_error 回调上报，不在此定义。
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "ListenerError",
    "MissingDependencyError",
    "BuildFailureError",
    "SpawnError",
]


class ListenerError(Exception):
    """监听器基础异常。"""
    pass


class MissingDependencyError(ListenerError):
    """构建工具不在 PATH 中。

    Attributes:
        missing_tools: 缺失的工具名
    """

    def __init__(self, missing_tools: Sequence[str]) -> None:
        self.missing_tools = tuple(missing_tools)
        names = " and ".join(f"`{tool}`" for tool in self.missing_tools)
        super().__init__(
            f"Missing dependencies {names}. Install them, e.g. on a Debian-based "
            f"system with `sudo apt install build-essential`, then reload the applet."
        )


class BuildFailureError(ListenerError):
    """构建步骤返回非零退出码。

    Attributes:
        executable: 待编译的可执行文件名
        stderr: 构建工具的错误输出
        returncode: 构建工具退出码（启动失败时为 None）
    """

    def __init__(self, executable: str, stderr: str, returncode: int | None = None) -> None:
        self.executable = executable
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"Compilation of `{executable}` failed.\n\n{stderr}")


class SpawnError(ListenerError):
    """构建成功后无法启动子进程。

    Attributes:
        executable: 可执行文件完整路径
        cause: 底层 OSError
    """

    def __init__(self, executable: str, cause: BaseException) -> None:
        self.executable = executable
        self.cause = cause
        super().__init__(f"Failed to start `{executable}`: {cause}")
