"""Custom exceptions for ipfsd-ctl.

All exceptions derive from IpfsdCtlError. Where a failure was caused by the
daemon binary, its diagnostic text is kept verbatim in str(exc) and on the
``detail`` attribute so callers can match on substrings
(e.g. "Unrecognized option", "address already in use",
"failed to set config value").

Nothing here is retried internally - retry policy belongs to the caller.

Discovery / spawning:
    - ExecutableNotFound: No ipfs binary could be resolved
    - SpawnFailed: The OS refused to start the process
    - CommandTimeout: A short-lived subcommand did not finish in time

Repository / configuration:
    - RepoNotInitialized: No config file in the repository
    - InitFailed: `ipfs init` exited non-zero
    - ConfigKeyNotFound: Dotted key path does not exist
    - ConfigReadError: Config document could not be parsed
    - InvalidConfigValue: `ipfs config` rejected a value

Daemon lifecycle:
    - DaemonStartFailed: Fatal stderr line or early exit during startup
    - StartTimeout: Readiness markers did not arrive in time
    - StopFailed: The daemon could not be signalled or did not die
    - InvalidStateTransition: Operation not allowed in the current state

API:
    - ApiError: The daemon's HTTP API returned an error

Usage:
    from ipfsd_ctl.exceptions import DaemonStartFailed, StartTimeout
"""

from __future__ import annotations

__all__ = [
    "ApiError",
    "CommandTimeout",
    "ConfigKeyNotFound",
    "ConfigReadError",
    "DaemonStartFailed",
    "ExecutableNotFound",
    "InitFailed",
    "InvalidConfigValue",
    "InvalidStateTransition",
    "IpfsdCtlError",
    "RepoNotInitialized",
    "SpawnFailed",
    "StartTimeout",
    "StopFailed",
]

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ipfsd_ctl.models import NodeState


class IpfsdCtlError(Exception):
    """Base exception for all controller failures.

    Attributes:
        message: Human-readable message (also returned by str()).
        detail: Diagnostic text from the daemon, verbatim, if any.
    """

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Discovery / spawning
# =============================================================================


class ExecutableNotFound(IpfsdCtlError):
    """No ipfs executable exists at any candidate location.

    Attributes:
        candidates: Paths that were checked, in resolution order.
    """

    def __init__(self, candidates: list[str]) -> None:
        self.candidates = candidates
        tried = ", ".join(candidates) if candidates else "<none>"
        super().__init__(f"ipfs executable not found (tried: {tried})")


class SpawnFailed(IpfsdCtlError):
    """The OS could not start the subprocess (missing binary, permissions).

    Attributes:
        path: Executable that failed to start.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Failed to spawn {path}: {reason}", detail=reason)


class CommandTimeout(IpfsdCtlError):
    """A short-lived subcommand (init, config, version) exceeded its timeout.

    Attributes:
        command: Full argv of the command that timed out.
        timeout: The timeout that elapsed, in seconds.
    """

    def __init__(self, command: list[str], timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command {' '.join(command)!r} timed out after {timeout}s")


# =============================================================================
# Repository / configuration
# =============================================================================


class RepoNotInitialized(IpfsdCtlError):
    """The repository has no config file (run init first)."""

    def __init__(self, repo_path: Path | str) -> None:
        self.repo_path = Path(repo_path)
        super().__init__(f"Repository not initialized: {self.repo_path}")


class InitFailed(IpfsdCtlError):
    """`ipfs init` exited non-zero. ``detail`` holds its stderr."""


class ConfigKeyNotFound(IpfsdCtlError):
    """A segment of a dotted config key does not exist.

    Attributes:
        key: The full dotted key that was requested.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Config key not found: {key}")


class ConfigReadError(IpfsdCtlError):
    """The config document exists but is not valid JSON."""


class InvalidConfigValue(IpfsdCtlError):
    """The daemon's own `config` subcommand rejected a value.

    The daemon's message is preserved verbatim, e.g.
    "Error: failed to set config value: ...".
    """


# =============================================================================
# Daemon lifecycle
# =============================================================================


class DaemonStartFailed(IpfsdCtlError):
    """The daemon reported a fatal error or exited before becoming ready.

    ``detail`` is the offending stderr line (or all collected stderr when the
    process exited without a recognizable error line).
    """


class StartTimeout(IpfsdCtlError):
    """Readiness markers did not all arrive within the start timeout.

    Attributes:
        timeout: The timeout that elapsed, in seconds.
        missing: Which markers were still outstanding ("api", "gateway").
    """

    def __init__(self, timeout: float, missing: list[str]) -> None:
        self.timeout = timeout
        self.missing = missing
        super().__init__(
            f"Daemon did not become ready within {timeout}s (missing: {', '.join(missing) or 'none'})"
        )


class StopFailed(IpfsdCtlError):
    """The daemon could not be signalled, or survived SIGKILL.

    Attributes:
        pid: Process id of the daemon.
    """

    def __init__(self, pid: int, reason: str) -> None:
        self.pid = pid
        super().__init__(f"Failed to stop daemon (pid: {pid}): {reason}", detail=reason)


class InvalidStateTransition(IpfsdCtlError):
    """The requested operation is not allowed in the node's current state.

    Attributes:
        operation: Name of the rejected operation.
        state: State the node was in.
    """

    def __init__(self, operation: str, state: "NodeState") -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while node is {state.value}")


# =============================================================================
# API
# =============================================================================


class ApiError(IpfsdCtlError):
    """The daemon's HTTP API returned an error response.

    Attributes:
        status_code: HTTP status code (None for transport errors).
    """

    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, detail=detail)
