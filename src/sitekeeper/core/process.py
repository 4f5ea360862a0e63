"""Child-process runner used by workflow setup steps."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

import structlog

from sitekeeper.core.errors import AtomicOperationError, ErrorKind

logger = structlog.get_logger(__name__)

SpawnHook = Callable[[asyncio.subprocess.Process], None]


class ProcessRunner(Protocol):
    async def spawn_and_wait(
        self,
        command: str,
        args: Sequence[str],
        cwd: Path,
        *,
        timeout: float | None = None,
        on_spawn: SpawnHook | None = None,
    ) -> int: ...


async def terminate(process: asyncio.subprocess.Process) -> None:
    """Kill *process* if it is still running and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


class SubprocessRunner:
    """Runs commands with ``asyncio.create_subprocess_exec``.

    A timeout kills and reaps the child before raising, so a hung command
    never blocks a transaction indefinitely.
    """

    async def spawn_and_wait(
        self,
        command: str,
        args: Sequence[str],
        cwd: Path,
        *,
        timeout: float | None = None,
        on_spawn: SpawnHook | None = None,
    ) -> int:
        """Run *command* with *args* in *cwd* and return its exit code.

        Raises:
            AtomicOperationError: ``IO_ERROR`` if the command cannot be
                started or exceeds *timeout*.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AtomicOperationError(
                ErrorKind.IO_ERROR,
                f"Could not start {command}",
                operation="spawn_and_wait",
                path=cwd,
                cause=exc,
            ) from exc

        if on_spawn is not None:
            on_spawn(process)

        logger.info("process.started", command=command, args=list(args), cwd=str(cwd))
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as exc:
            await terminate(process)
            logger.error(
                "process.timeout", command=command, cwd=str(cwd), timeout=timeout
            )
            raise AtomicOperationError(
                ErrorKind.IO_ERROR,
                f"{command} timed out after {timeout} seconds",
                operation="spawn_and_wait",
                path=cwd,
                cause=exc,
            ) from exc

        returncode = process.returncode if process.returncode is not None else -1
        if returncode != 0:
            logger.warning(
                "process.failed",
                command=command,
                returncode=returncode,
                stderr=stderr.decode("utf-8", errors="replace").strip()[-2000:],
            )
        else:
            logger.debug("process.completed", command=command, cwd=str(cwd))
        return returncode


class UnavailableProcessRunner:
    """Placeholder runner for hosts without process support; always fails."""

    async def spawn_and_wait(
        self,
        command: str,
        args: Sequence[str],
        cwd: Path,
        *,
        timeout: float | None = None,
        on_spawn: SpawnHook | None = None,
    ) -> int:
        raise AtomicOperationError(
            ErrorKind.NOT_IMPLEMENTED,
            f"No process runner is configured to run {command}",
            operation="spawn_and_wait",
            path=cwd,
        )
