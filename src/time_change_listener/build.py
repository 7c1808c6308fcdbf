"""Build step run before the listener executable is spawned.

The supervisor only depends on the narrow `BuildRunner` interface:
`required_tools` (checked on PATH before anything runs) and `run(path)`.
`MakeBuildRunner` is the real `make -C <path>` build; `PrebuiltRunner`
skips compilation for an executable that is already built.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

__all__ = [
    "BuildResult",
    "BuildRunner",
    "MakeBuildRunner",
    "PrebuiltRunner",
    "find_missing_tools",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildResult:
    """Outcome of a build.

    Attributes:
        returncode: Exit status of the build driver
        stderr: Captured error output (decoded, may be empty)
    """

    returncode: int
    stderr: str = ""

    @property
    def successful(self) -> bool:
        return self.returncode == 0


class BuildRunner(Protocol):
    """Anything that can build the listener executable in a directory."""

    @property
    def required_tools(self) -> Sequence[str]: ...

    async def run(self, path: Path) -> BuildResult: ...


def find_missing_tools(tools: Iterable[str]) -> list[str]:
    """Return the tools that cannot be found on PATH, in order."""
    return [tool for tool in tools if shutil.which(tool) is None]


@dataclass
class MakeBuildRunner:
    """Runs `<build_driver> -C <path>`; the compiler only has to be on PATH."""

    build_driver: str = "make"
    compiler: str = "gcc"

    @property
    def required_tools(self) -> tuple[str, str]:
        return (self.build_driver, self.compiler)

    async def run(self, path: Path) -> BuildResult:
        """Run the build and capture its error output.

        Raises:
            OSError: If the build driver cannot be launched
        """
        argv = [self.build_driver, "-C", str(path)]
        logger.info(f"Building: {' '.join(argv)}")

        # stdin 使用 DEVNULL，避免构建工具继承调用方的 stdin
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if stdout:
            logger.debug(f"Build output:\n{stdout.decode('utf-8', errors='replace')}")

        result = BuildResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        logger.debug(f"Build finished returncode={result.returncode}")
        return result


class PrebuiltRunner:
    """No-op build for an executable that already exists."""

    required_tools: tuple[str, ...] = ()

    async def run(self, path: Path) -> BuildResult:
        logger.debug(f"Skipping build in {path}")
        return BuildResult(returncode=0)
