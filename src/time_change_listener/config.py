"""TCL 环境变量配置管理。

环境变量:
    TCL_EXECUTABLE: 构建目录中子进程可执行文件名
        - 默认 auto-dark-light-time-change-listener

    TCL_BUILD_DRIVER: 构建驱动工具 (默认 make)

    TCL_COMPILER: 构建所需的编译器 (默认 gcc)

    TCL_EXIT_TIMEOUT: 发送 exit 后等待子进程退出的时间（秒）
        - 默认 5.0 秒，限制在 0.1-60 秒范围
        - 超时后先 SIGTERM 再 SIGKILL

    TCL_TERM_TIMEOUT: SIGTERM 之后等待的时间（秒，默认 2.0）

    TCL_KILL_TIMEOUT: SIGKILL 之后等待的时间（秒，默认 1.0）

    TCL_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "DEFAULT_EXECUTABLE_NAME"]

DEFAULT_EXECUTABLE_NAME = "auto-dark-light-time-change-listener"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_name(value: str | None, default: str) -> str:
    """解析名称类环境变量，空值使用默认值。"""
    if not value or not value.strip():
        return default
    return value.strip()


def _parse_timeout(
    value: str | None,
    default: float,
    minimum: float = 0.1,
    maximum: float = 60.0,
) -> float:
    """解析超时时间环境变量，无效值返回默认值。"""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(minimum, min(timeout, maximum))


@dataclass
class Config:
    """TCL 配置。

    Attributes:
        executable_name: 子进程可执行文件名
        build_driver: 构建驱动工具
        compiler: 编译器
        exit_timeout: 发送 exit 后等待子进程退出的时间（秒）
        term_timeout: SIGTERM 后等待时间（秒）
        kill_timeout: SIGKILL 后等待时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    executable_name: str = DEFAULT_EXECUTABLE_NAME
    build_driver: str = "make"
    compiler: str = "gcc"
    exit_timeout: float = 5.0
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(executable_name={self.executable_name}, "
            f"build_driver={self.build_driver}, "
            f"compiler={self.compiler}, "
            f"exit_timeout={self.exit_timeout}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "time-change-listener"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"tcl_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("TCL_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        executable_name=_parse_name(os.environ.get("TCL_EXECUTABLE"), DEFAULT_EXECUTABLE_NAME),
        build_driver=_parse_name(os.environ.get("TCL_BUILD_DRIVER"), "make"),
        compiler=_parse_name(os.environ.get("TCL_COMPILER"), "gcc"),
        exit_timeout=_parse_timeout(os.environ.get("TCL_EXIT_TIMEOUT"), 5.0),
        term_timeout=_parse_timeout(os.environ.get("TCL_TERM_TIMEOUT"), 2.0, maximum=30.0),
        kill_timeout=_parse_timeout(os.environ.get("TCL_KILL_TIMEOUT"), 1.0, maximum=30.0),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
