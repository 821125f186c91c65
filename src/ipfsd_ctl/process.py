"""Subprocess runner for the ipfs binary.

Thin layer over asyncio subprocesses:
- spawn(): long-running processes (the daemon), exposed as a ProcessHandle
  with independent stdout/stderr line streams, signalling and an
  event-driven exit notification
- run_command(): short-lived subcommands (init, config, version) whose
  output is collected in full

Spawn failures (missing binary, permission denied) raise SpawnFailed
immediately. Nothing is retried.
"""

from __future__ import annotations

__all__ = [
    "CommandResult",
    "ExitStatus",
    "ProcessHandle",
    "run_command",
    "spawn",
]

import asyncio
import logging
import signal
from collections.abc import AsyncIterator, Mapping, Sequence
from pathlib import Path
from typing import Literal, NamedTuple

from ipfsd_ctl.constants import APP_NAME
from ipfsd_ctl.exceptions import CommandTimeout, SpawnFailed

_logger = logging.getLogger(APP_NAME)

# asyncio's default StreamReader limit is 64 KiB; daemon log lines can be long
STREAM_LIMIT_BYTES = 1024 * 1024


class ExitStatus(NamedTuple):
    """How a process ended: exactly one of code/signal is set."""

    code: int | None
    signal: int | None

    @classmethod
    def from_returncode(cls, returncode: int) -> ExitStatus:
        """Translate asyncio's returncode (negative = killed by signal)."""
        if returncode < 0:
            return cls(code=None, signal=-returncode)
        return cls(code=returncode, signal=None)

    @property
    def success(self) -> bool:
        return self.code == 0


class CommandResult(NamedTuple):
    """Output of a finished short-lived command."""

    returncode: int
    stdout: str
    stderr: str


class ProcessHandle:
    """A live subprocess.

    Usage:
        handle = await spawn(exec_path, ["daemon"], env=env)
        async for line in handle.lines("stdout"):
            ...
        handle.terminate()
        status = await handle.wait()
    """

    def __init__(self, process: asyncio.subprocess.Process, argv: list[str]) -> None:
        self._process = process
        self.argv = argv

    @property
    def pid(self) -> int:
        """OS process id."""
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        """Raw returncode, None while the process is running."""
        return self._process.returncode

    async def lines(self, stream: Literal["stdout", "stderr"]) -> AsyncIterator[str]:
        """Yield decoded lines (without trailing newline) until EOF."""
        reader = self._process.stdout if stream == "stdout" else self._process.stderr
        if reader is None:
            return
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                # Line longer than STREAM_LIMIT_BYTES; the reader already discarded it
                continue
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def send_signal(self, sig: int) -> None:
        """Deliver a signal.

        Raises:
            ProcessLookupError: If the process already exited.
            PermissionError: If the signal may not be delivered.
        """
        self._process.send_signal(sig)

    def terminate(self) -> None:
        """Request a graceful exit (SIGTERM)."""
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        """Force the process to exit (SIGKILL)."""
        self._process.kill()

    async def wait(self) -> ExitStatus:
        """Wait for the process to exit."""
        returncode = await self._process.wait()
        return ExitStatus.from_returncode(returncode)


async def spawn(
    path: str,
    args: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessHandle:
    """Start a long-running process with piped stdout/stderr.

    Args:
        path: Executable.
        args: Arguments (without the executable).
        cwd: Working directory.
        env: Complete environment for the child (None = inherit).

    Returns:
        ProcessHandle for the running process.

    Raises:
        SpawnFailed: If the OS refuses to start the process.
    """
    argv = [path, *args]
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            limit=STREAM_LIMIT_BYTES,
        )
    except OSError as e:
        # FileNotFoundError, PermissionError, NotADirectoryError, ...
        raise SpawnFailed(path, f"{type(e).__name__}: {e.strerror or e}") from e

    _logger.debug(f"Spawned {' '.join(argv)} (pid: {process.pid})")
    return ProcessHandle(process, argv)


async def run_command(
    path: str,
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a short-lived command to completion and collect its output.

    Args:
        path: Executable.
        args: Arguments (without the executable).
        env: Complete environment for the child (None = inherit).
        timeout: Seconds before the child is killed.

    Returns:
        CommandResult with decoded stdout/stderr.

    Raises:
        SpawnFailed: If the OS refuses to start the process.
        CommandTimeout: If the command exceeds timeout (the child is killed).
    """
    argv = [path, *args]
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
        )
    except OSError as e:
        raise SpawnFailed(path, f"{type(e).__name__}: {e.strerror or e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise CommandTimeout(argv, timeout or 0.0) from None
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    assert process.returncode is not None  # communicate() waits for exit
    return CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
