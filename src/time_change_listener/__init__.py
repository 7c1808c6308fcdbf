"""time-change-listener - 系统时间变化监听子进程的监督与行协议。

环境变量:
    TCL_EXECUTABLE: 子进程可执行文件名
    TCL_EXIT_TIMEOUT: 发送 exit 后等待退出的时间 (默认 5.0s)
    TCL_LOG_DEBUG: 日志调试模式 (默认 false)

用法:
    python -m time_change_listener /path/to/listener/sources
"""

__version__ = "0.1.0"

from .build import BuildResult, BuildRunner, MakeBuildRunner, PrebuiltRunner
from .errors import BuildFailureError, ListenerError, MissingDependencyError, SpawnError
from .listener import TimeChangeListener

__all__ = [
    "__version__",
    "TimeChangeListener",
    "BuildResult",
    "BuildRunner",
    "MakeBuildRunner",
    "PrebuiltRunner",
    "ListenerError",
    "MissingDependencyError",
    "BuildFailureError",
    "SpawnError",
]
