"""Supervisor of the time change listener child process.

The listener executable is built from a source directory, spawned with its
three standard streams piped, and driven through a one-way line protocol:

    parent -> child (stdin):  enable | disable | exit
    child -> parent (stdout): any line means "the system time changed"
    child -> parent (stderr): any non-empty line is a diagnostic

Construction failures raise `ListenerError` subclasses. Everything after
construction is reported through the owner's `on_error` callback.

Example:
    listener = await TimeChangeListener.create(
        "/path/to/listener/sources",
        on_change=lambda: print("time changed"),
        on_error=print,
    )
    await listener.enable()
    ...
    await listener.finalize()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from os import PathLike
from pathlib import Path
from typing import Callable

from .build import BuildRunner, MakeBuildRunner, find_missing_tools
from .config import Config, get_config
from .errors import BuildFailureError, MissingDependencyError, SpawnError
from .runtime import (
    Command,
    CommandChannel,
    ErrorReader,
    NotificationReader,
    spawn_piped,
    terminate_process,
)

__all__ = ["TimeChangeListener", "ChangeCallback", "ErrorCallback"]

ChangeCallback = Callable[[], None]
ErrorCallback = Callable[[str], None]

logger = logging.getLogger(__name__)

# 子进程退出后等待读循环读到 EOF 的时间（秒）
READER_DRAIN_TIMEOUT = 1.0


def _noop() -> None:
    pass


class TimeChangeListener:
    """Passive listener for system time changes backed by a child process.

    Use `create()` rather than the constructor: it builds and spawns the
    child and starts both read loops before returning.

    Attributes:
        executable: Path of the spawned executable
        config: Configuration used for names and timeouts
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        *,
        executable: Path,
        config: Config,
    ) -> None:
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise ValueError("process must be started with stdin, stdout and stderr piped")

        self.executable = executable
        self.config = config
        self._process = process
        self._on_change = on_change
        self._on_error = on_error

        self._stop_event = asyncio.Event()
        self._finalize_task: asyncio.Task[None] | None = None
        self._reader_tasks: list[asyncio.Task[int]] = []

        self._channel = CommandChannel(process.stdin, self._report_error)
        self._notification_reader = NotificationReader(
            process.stdout, self._stop_event, self._notify_change, self._on_error
        )
        self._error_reader = ErrorReader(
            process.stderr, self._stop_event, self._on_error, executable.name
        )

    @classmethod
    async def create(
        cls,
        path: str | PathLike[str],
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        *,
        build_runner: BuildRunner | None = None,
        config: Config | None = None,
    ) -> "TimeChangeListener":
        """Build, spawn and start listening.

        Args:
            path: Directory holding the build descriptor and the executable
            on_change: Called with no argument for each time change
            on_error: Called with a message for each run-time error
            build_runner: Build step (default: `make -C path`)
            config: Configuration (default: from environment)

        Raises:
            MissingDependencyError: Build tools are not on PATH
            BuildFailureError: The build exited unsuccessfully
            SpawnError: The executable could not be launched
        """
        config = config if config is not None else get_config()
        path = Path(path)
        runner = (
            build_runner
            if build_runner is not None
            else MakeBuildRunner(config.build_driver, config.compiler)
        )

        missing = find_missing_tools(runner.required_tools)
        if missing:
            logger.error(f"Missing build tools: {missing}")
            raise MissingDependencyError(missing)

        try:
            result = await runner.run(path)
        except OSError as e:
            raise BuildFailureError(config.executable_name, str(e)) from e
        if not result.successful:
            logger.error(f"Build failed returncode={result.returncode}")
            raise BuildFailureError(config.executable_name, result.stderr, result.returncode)

        executable = path.absolute() / config.executable_name
        try:
            process = await spawn_piped(executable)
        except OSError as e:
            raise SpawnError(str(executable), e) from e

        listener = cls(process, on_change, on_error, executable=executable, config=config)
        listener._start_readers()
        logger.info(f"Time change listener started pid={process.pid}")
        return listener

    def _start_readers(self) -> None:
        pid = self._process.pid
        self._reader_tasks = [
            asyncio.create_task(self._notification_reader.run(), name=f"tcl-stdout-{pid}"),
            asyncio.create_task(self._error_reader.run(), name=f"tcl-stderr-{pid}"),
        ]

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        """Whether the child process has not exited yet."""
        return self._process.returncode is None

    async def wait(self) -> int:
        """Wait for the child to exit and its streams to be read to the end.

        Returns:
            Exit status of the child
        """
        returncode = await self._process.wait()
        if self._reader_tasks:
            await asyncio.wait(self._reader_tasks, timeout=READER_DRAIN_TIMEOUT)
        return returncode

    @property
    def is_finalized(self) -> bool:
        return self._finalize_task is not None and self._finalize_task.done()

    # ------------------------------------------------------------------
    # owner callbacks
    # ------------------------------------------------------------------

    def _notify_change(self) -> None:
        # 通过属性间接调用，finalize 替换回调后立即生效
        self._on_change()

    def _report_error(self, message: str) -> None:
        try:
            self._on_error(message)
        except Exception:
            logger.exception("on_error callback raised")

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    async def enable(self) -> bool:
        """Enable listening for system time changes."""
        return await self._send(Command.ENABLE)

    async def disable(self) -> bool:
        """Disable listening for system time changes."""
        return await self._send(Command.DISABLE)

    async def _send(self, command: Command) -> bool:
        if self._finalize_task is not None:
            logger.warning(f"Command {command.value!r} sent after finalize")
            self._report_error(f"cannot send `{command.value}`: the listener is finalized")
            return False
        return await self._channel.send(command)

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------

    async def finalize(self) -> None:
        """Stop listening, ask the child to exit and reap it.

        Safe to call more than once; later calls wait for the first teardown.
        """
        if self._finalize_task is None:
            self._finalize_task = asyncio.create_task(
                self._finalize(), name=f"tcl-finalize-{self._process.pid}"
            )
        else:
            logger.debug("finalize() already called")
        await asyncio.shield(self._finalize_task)

    async def _finalize(self) -> None:
        pid = self._process.pid
        self._on_change = _noop
        self._stop_event.set()

        if self._process.returncode is None:
            await self._channel.send(Command.EXIT, quiet=True)
        else:
            logger.debug(f"Subprocess pid={pid} already exited, not sending `exit`")
        await self._channel.close()

        try:
            await asyncio.wait_for(self._process.wait(), timeout=self.config.exit_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Subprocess pid={pid} did not exit {self.config.exit_timeout}s "
                f"after `exit`, terminating"
            )
            await terminate_process(
                self._process,
                term_timeout=self.config.term_timeout,
                kill_timeout=self.config.kill_timeout,
            )

        await self._drain_readers()
        logger.info(f"Time change listener finalized pid={pid} returncode={self.returncode}")

    async def _drain_readers(self) -> None:
        if not self._reader_tasks:
            return

        done, pending = await asyncio.wait(self._reader_tasks, timeout=READER_DRAIN_TIMEOUT)
        for task in pending:
            # 孙进程仍持有管道时读循环不会收到 EOF
            logger.debug(f"Cancelling read loop {task.get_name()}")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    f"Read loop {task.get_name()} crashed: {task.exception()!r}"
                )

    async def __aenter__(self) -> "TimeChangeListener":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.finalize()

    def __repr__(self) -> str:
        status = "finalized" if self.is_finalized else ("running" if self.is_running else "exited")
        return (
            f"TimeChangeListener(pid={self._process.pid}, "
            f"executable={self.executable.name}, "
            f"status={status})"
        )
