from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Sequence

from cloudprovision.errors import ExecutionTimeout, ProcessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def diagnostics(self) -> str:
        """Text inspected by the classifier: stderr, else stdout."""
        return self.stderr if self.stderr.strip() else self.stdout


class CommandRunner(Protocol):
    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """
    Runs an external command without a shell.
    - env is overlaid on the current process environment, never written into it
    - a nonzero exit is returned as a result, not raised
    - on timeout the process is killed and ExecutionTimeout is raised
    """

    def __init__(self, default_timeout: float = 900.0) -> None:
        self.default_timeout = default_timeout

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        argv = tuple(str(part) for part in command)
        limit = timeout if timeout is not None else self.default_timeout
        started = time.monotonic()

        logger.debug(f"Running {' '.join(argv)} (cwd={cwd or os.getcwd()}, timeout={limit:g}s)")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env={**os.environ, **(env or {})},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessError(argv, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            logger.error(f"{argv[0]} exceeded {limit:g}s, killing pid {proc.pid}")
            proc.kill()
            await proc.wait()
            raise ExecutionTimeout(argv, limit) from None

        result = CommandResult(
            command=argv,
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_s=time.monotonic() - started,
        )
        if not result.ok:
            logger.warning(f"{' '.join(argv[:3])} exited with {result.exit_code} after {result.duration_s:.1f}s")
        return result
