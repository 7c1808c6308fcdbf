"""time-change-listener 命令行入口。

构建并启动监听子进程，把事件以 JSONL 写到 stdout，
收到 SIGINT/SIGTERM 或子进程自行退出时结束。

用法:
    python -m time_change_listener /path/to/listener/sources [--no-enable] [--no-build]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import TextIO

import anyio

from .build import PrebuiltRunner
from .config import get_config
from .errors import ListenerError
from .events import ListenerEvent
from .listener import TimeChangeListener
from .runtime import IS_WINDOWS

__all__ = ["run_listener", "main"]

logger = logging.getLogger(__name__)


async def _wait_for_shutdown_signal() -> None:
    """等待 SIGINT 或 SIGTERM。"""
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info(f"{signal.Signals(signum).name} received, finalizing listener")
            return


async def run_listener(
    path: str,
    *,
    enable: bool = True,
    build: bool = True,
    out: TextIO | None = None,
) -> int:
    """运行监听器直到收到退出信号或子进程退出。

    Args:
        path: 监听器源码/构建目录
        enable: 启动后是否立即发送 enable
        build: 是否先执行构建
        out: 事件输出流（默认 stdout）

    Returns:
        进程退出码：0 正常结束，1 构建/启动失败或子进程异常退出
    """
    stream = out if out is not None else sys.stdout
    config = get_config()
    logger.info(f"Starting time change listener: {config}")

    def emit(event: ListenerEvent) -> None:
        stream.write(event.to_json_line() + "\n")
        stream.flush()

    try:
        listener = await TimeChangeListener.create(
            path,
            on_change=lambda: emit(ListenerEvent(type="change")),
            on_error=lambda message: emit(ListenerEvent(type="error", message=message)),
            build_runner=None if build else PrebuiltRunner(),
            config=config,
        )
    except ListenerError as e:
        logger.error(f"Listener could not start: {type(e).__name__}")
        print(str(e), file=sys.stderr)
        return 1

    emit(ListenerEvent(type="started", pid=listener.pid))
    exited_on_its_own = False

    async with listener:
        if enable:
            await listener.enable()

        if IS_WINDOWS:
            # Windows 上不支持 open_signal_receiver，Ctrl+C 以 KeyboardInterrupt 结束
            await listener.wait()
            exited_on_its_own = True
        else:
            async with anyio.create_task_group() as tg:

                async def _watch_signals() -> None:
                    await _wait_for_shutdown_signal()
                    tg.cancel_scope.cancel()

                async def _watch_child() -> None:
                    nonlocal exited_on_its_own
                    returncode = await listener.wait()
                    logger.warning(f"Subprocess exited on its own returncode={returncode}")
                    exited_on_its_own = True
                    tg.cancel_scope.cancel()

                tg.start_soon(_watch_signals)
                tg.start_soon(_watch_child)

    emit(ListenerEvent(type="stopped", returncode=listener.returncode))

    if exited_on_its_own and listener.returncode != 0:
        return 1
    return 0


def _setup_logging() -> None:
    config = get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr（stdout 留给事件）
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("time_change_listener").setLevel(log_level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="time-change-listener",
        description="Notify on system time changes (JSONL events on stdout).",
    )
    parser.add_argument("path", help="Directory with the Makefile and the listener executable")
    parser.add_argument(
        "--no-enable",
        dest="enable",
        action="store_false",
        help="Do not send `enable` after start",
    )
    parser.add_argument(
        "--no-build",
        dest="build",
        action="store_false",
        help="Skip `make`, use the already built executable",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """主入口点。"""
    args = _build_parser().parse_args(argv)
    _setup_logging()
    sys.exit(asyncio.run(run_listener(args.path, enable=args.enable, build=args.build)))


if __name__ == "__main__":
    main()
