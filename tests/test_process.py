"""Process helper tests.

Test coverage:
- Spawning with piped streams in a new session
- Graceful and forced termination
"""

from __future__ import annotations

import asyncio
import os
import shlex
import sys
from pathlib import Path

import pytest

from time_change_listener.runtime.process import (
    IS_WINDOWS,
    STREAM_LIMIT,
    isolation_kwargs,
    spawn_piped,
    terminate_process,
)

from conftest import write_script

pytestmark = [
    pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific tests"),
    pytest.mark.timeout(10),
]


class TestIsolation:
    """Test platform kwargs."""

    def test_posix_new_session(self):
        assert isolation_kwargs() == {"start_new_session": True}


class TestSpawnPiped:
    """Test spawning."""

    @pytest.mark.asyncio
    async def test_streams_piped(self, tmp_path: Path):
        script = write_script(tmp_path / "echoer", "read line\necho \"got $line\"\necho oops >&2")

        process = await spawn_piped(script)
        assert process.stdin is not None
        process.stdin.write(b"hello\n")
        await process.stdin.drain()

        stdout = await process.stdout.readline()
        stderr = await process.stderr.readline()
        await process.wait()

        assert stdout == b"got hello\n"
        assert stderr == b"oops\n"

    @pytest.mark.asyncio
    async def test_new_session(self, tmp_path: Path):
        script = write_script(tmp_path / "sid", "ps -o sid= -p $$")

        process = await spawn_piped(script)
        out = (await process.stdout.read()).decode().strip()
        await process.wait()

        if out:
            assert out != str(os.getsid(os.getpid()))

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path):
        with pytest.raises(OSError):
            await spawn_piped(tmp_path / "does-not-exist")

    @pytest.mark.asyncio
    async def test_line_past_default_limit(self, tmp_path: Path):
        """A 100 000-byte line is read whole, past asyncio's 64 KiB default."""
        code = "import sys; sys.stdout.write('x' * 100000 + '\\n')"
        script = write_script(tmp_path / "wide", f"exec {shlex.quote(sys.executable)} -c \"{code}\"")

        process = await spawn_piped(script)
        line = await process.stdout.readline()
        await process.wait()

        assert len(line) == 100001
        assert STREAM_LIMIT > len(line)


class TestTerminateProcess:
    """Test termination."""

    @pytest.mark.asyncio
    async def test_sigterm(self, tmp_path: Path):
        script = write_script(tmp_path / "sleeper", f"exec {shlex.quote(sys.executable)} -c 'import time; time.sleep(60)'")
        process = await spawn_piped(script)

        await terminate_process(process, term_timeout=2.0, kill_timeout=1.0)

        assert process.returncode is not None
        assert process.returncode != 0

    @pytest.mark.asyncio
    async def test_sigkill_when_sigterm_ignored(self, tmp_path: Path):
        code = "import signal, sys, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); print('ready', flush=True); time.sleep(60)"
        script = write_script(tmp_path / "stubborn", f"exec {shlex.quote(sys.executable)} -c \"{code}\"")
        process = await spawn_piped(script)
        assert await process.stdout.readline() == b"ready\n"

        await terminate_process(process, term_timeout=0.3, kill_timeout=2.0)

        assert process.returncode == -9

    @pytest.mark.asyncio
    async def test_already_exited(self, tmp_path: Path):
        script = write_script(tmp_path / "quick", "exit 0")
        process = await spawn_piped(script)
        await process.wait()

        await asyncio.wait_for(terminate_process(process), timeout=1.0)

        assert process.returncode == 0
