"""Line-oriented stdio plumbing between the listener and its child process.

- CommandChannel: newline-terminated commands to the child's stdin
- NotificationReader: every stdout line is a "time changed" signal
- ErrorReader: every non-empty stderr line is a diagnostic for the owner

Both readers share one stop event owned by the supervisor. The event is only
consulted between reads: a read already pending is unblocked by the child
closing its streams after `exit`, not by the event.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Protocol

__all__ = [
    "Command",
    "CommandChannel",
    "LineReader",
    "NotificationReader",
    "ErrorReader",
]

logger = logging.getLogger(__name__)

# 超过 StreamReader limit 的行只保留前这么多字节
MAX_KEPT_LINE_BYTES = 64 * 1024


class Command(str, Enum):
    """Commands understood by the child on its standard input."""

    ENABLE = "enable"
    DISABLE = "disable"
    EXIT = "exit"

    def as_line(self) -> bytes:
        return f"{self.value}\n".encode("utf-8")


class _Writer(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def is_closing(self) -> bool: ...

    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


class CommandChannel:
    """Fire-and-forget command writer.

    Each send writes one complete line and drains the transport, so the child
    observes the whole line before `send()` returns. Sends are serialized with
    a lock. Failures go to `on_failure` instead of being raised.
    """

    def __init__(self, writer: _Writer, on_failure: Callable[[str], None]) -> None:
        self._writer = writer
        self._on_failure = on_failure
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed or self._writer.is_closing()

    async def send(self, command: Command, *, quiet: bool = False) -> bool:
        """Write `command` followed by a newline.

        Args:
            command: Command to send
            quiet: Log failures at debug level instead of reporting them

        Returns:
            True if the line was handed to the pipe, False if it failed
        """
        async with self._lock:
            if self.is_closed:
                self._fail(
                    f"cannot send `{command.value}`: the input stream of the subprocess is closed",
                    quiet,
                )
                return False
            try:
                self._writer.write(command.as_line())
                await self._writer.drain()
            except OSError as e:
                self._fail(f"sending `{command.value}` to the subprocess failed: {e}", quiet)
                return False

        logger.debug(f"Sent command {command.value!r}")
        return True

    def _fail(self, message: str, quiet: bool) -> None:
        if quiet:
            logger.debug(message)
            return
        logger.warning(message)
        self._on_failure(message)

    async def close(self) -> None:
        """Close the child's stdin. Safe to call more than once."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError as e:
                # 子进程已退出时关闭管道会报 BrokenPipe
                logger.debug(f"Error closing stdin: {e}")


class LineReader(ABC):
    """Read loop bound to one output stream of the child."""

    #: stream label used in log and failure messages
    stream_name = "output"

    def __init__(
        self,
        stream: asyncio.StreamReader,
        stop_event: asyncio.Event,
        on_failure: Callable[[str], None],
    ) -> None:
        self._stream = stream
        self._stop_event = stop_event
        self._on_failure = on_failure
        self._active = False
        self.lines_read = 0

    @property
    def is_active(self) -> bool:
        return self._active

    async def run(self) -> int:
        """Dispatch lines until EOF, a read failure, or the stop event.

        Returns:
            Number of lines dispatched
        """
        self._active = True
        try:
            while not self._stop_event.is_set():
                try:
                    line = await self._readline()
                except OSError as e:
                    # 停止过程中（如强制终止）产生的读取错误不上报
                    if not self._stop_event.is_set():
                        logger.warning(f"Reading {self.stream_name} stream failed: {e}")
                        self._invoke(self._on_failure, self._describe_failure(e))
                    break

                if not line:
                    logger.debug(f"EOF on {self.stream_name} stream")
                    break

                self.lines_read += 1
                self.handle_line(line)
        finally:
            self._active = False

        return self.lines_read

    async def _readline(self) -> bytes:
        """Read one line, or the partial line before EOF, or b"" at EOF.

        A line longer than the stream limit is still one line: it is consumed
        in chunks and kept up to MAX_KEPT_LINE_BYTES.
        """
        try:
            return await self._stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed

        kept = bytearray()
        dropped = 0
        while True:
            chunk = await self._stream.read(max(consumed, 1))
            if not chunk:
                break
            room = MAX_KEPT_LINE_BYTES - len(kept)
            kept.extend(chunk[:room])
            dropped += max(len(chunk) - room, 0)
            try:
                tail = await self._stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                tail = e.partial
            except asyncio.LimitOverrunError as e:
                consumed = e.consumed
                continue
            room = MAX_KEPT_LINE_BYTES - len(kept)
            kept.extend(tail[:room])
            dropped += max(len(tail) - room, 0)
            break

        if dropped:
            logger.debug(f"Truncated long line on {self.stream_name} stream, dropped {dropped} bytes")
        return bytes(kept)

    def _describe_failure(self, error: BaseException) -> str:
        return f"reading the {self.stream_name} of the subprocess failed: {error}"

    @staticmethod
    def _invoke(callback: Callable[..., Any], *args: Any) -> None:
        """Call an owner callback; its exceptions must not end the loop."""
        try:
            callback(*args)
        except Exception:
            logger.exception("Owner callback raised")

    @abstractmethod
    def handle_line(self, line: bytes) -> None:
        """Handle one raw line (newline included, except maybe at EOF)."""


class NotificationReader(LineReader):
    """Calls `on_change()` once per stdout line, whatever its content."""

    stream_name = "output"

    def __init__(
        self,
        stream: asyncio.StreamReader,
        stop_event: asyncio.Event,
        on_change: Callable[[], None],
        on_failure: Callable[[str], None],
    ) -> None:
        super().__init__(stream, stop_event, on_failure)
        self._on_change = on_change

    def handle_line(self, line: bytes) -> None:
        self._invoke(self._on_change)


class ErrorReader(LineReader):
    """Forwards each non-empty stderr line to `on_error` with a fixed prefix."""

    stream_name = "error output"

    def __init__(
        self,
        stream: asyncio.StreamReader,
        stop_event: asyncio.Event,
        on_error: Callable[[str], None],
        executable_name: str,
    ) -> None:
        super().__init__(stream, stop_event, on_error)
        self._on_error = on_error
        self._executable_name = executable_name

    def format_message(self, text: str) -> str:
        return f"the subprocess `{self._executable_name}` wrote on its error output: {text}"

    def handle_line(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").rstrip("\r\n")
        if not text:
            return
        logger.debug(f"Subprocess stderr: {text}")
        self._invoke(self._on_error, self.format_message(text))
