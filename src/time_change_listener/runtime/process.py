"""Child process spawning and reliable termination.

time-change-listener runtime module

This module provides:
- Platform-specific isolation kwargs (new session/process group)
- Spawning the listener executable with all three standard streams piped
- Graceful then forced termination (SIGTERM -> timeout -> SIGKILL) for a
  child that ignored the `exit` command

Key design points:
- POSIX: start_new_session=True so terminal SIGINT does not reach the child
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination targets the process group, not just the main process
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Any

__all__ = [
    "IS_WINDOWS",
    "isolation_kwargs",
    "spawn_piped",
    "terminate_process",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0

# Per-stream buffer limit; longer lines are read in chunks by the read loops
STREAM_LIMIT = 1024 * 1024


def isolation_kwargs() -> dict[str, Any]:
    """Build platform-specific kwargs for asyncio.create_subprocess_exec."""
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


async def spawn_piped(executable: Path) -> asyncio.subprocess.Process:
    """Start `executable` with stdin, stdout and stderr piped.

    Raises:
        OSError: If the executable cannot be launched
    """
    process = await asyncio.create_subprocess_exec(
        str(executable),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        limit=STREAM_LIMIT,
        **isolation_kwargs(),
    )
    logger.debug(f"Started subprocess pid={process.pid} argv={executable}")
    return process


async def terminate_process(
    process: asyncio.subprocess.Process,
    term_timeout: float = DEFAULT_TERM_TIMEOUT,
    kill_timeout: float = DEFAULT_KILL_TIMEOUT,
) -> None:
    """Terminate subprocess gracefully, then forcefully if needed.

    Termination strategy:
    1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
    2. Wait up to term_timeout for graceful exit
    3. If still running, send SIGKILL (or kill() on Windows)
    4. Wait up to kill_timeout for forced exit
    """
    pid = process.pid
    if process.returncode is not None:
        return

    logger.debug(f"Terminating subprocess pid={pid}")
    try:
        if IS_WINDOWS:
            _windows_terminate(process)
        else:
            _posix_signal(process, signal.SIGTERM)

        try:
            await asyncio.wait_for(process.wait(), timeout=term_timeout)
            logger.debug(
                f"Subprocess terminated gracefully pid={pid} "
                f"returncode={process.returncode}"
            )
            return
        except asyncio.TimeoutError:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        if IS_WINDOWS:
            process.kill()
        else:
            _posix_signal(process, signal.SIGKILL)

        try:
            await asyncio.wait_for(process.wait(), timeout=kill_timeout)
            logger.debug(
                f"Subprocess killed pid={pid} returncode={process.returncode}"
            )
        except asyncio.TimeoutError:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")

    except ProcessLookupError:
        logger.debug(f"Subprocess already exited pid={pid}")


def _posix_signal(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    """Send `sig` to the child's process group, falling back to the child alone."""
    try:
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, sig)
        logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed, falling back to direct signal: {e}")
        process.send_signal(sig)


def _windows_terminate(process: asyncio.subprocess.Process) -> None:
    """Send CTRL_BREAK_EVENT on Windows.

    Works because the child was started with CREATE_NEW_PROCESS_GROUP.
    """
    try:
        os.kill(process.pid, signal.CTRL_BREAK_EVENT)
        logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
    except (ProcessLookupError, OSError) as e:
        logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
        process.terminate()
