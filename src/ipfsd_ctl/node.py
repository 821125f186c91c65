"""Node: lifecycle controller for one ipfs repository and its daemon.

State machine:

    uninitialized --init--> initialized --start_daemon--> starting --> running
                                 ^                           |            |
                                 |                           v       stop_daemon
                              (retry)  <-------------------failed         |
                                                                          v
                                        stopped <--------------------- stopping

Readiness protocol (start_daemon):
- stdout is scanned for the API and Gateway "listening on" markers, which
  may arrive in either order; the start succeeds once both have been seen
- stderr is scanned for fatal lines (unrecognized option, address in use,
  repository lock held, any "Error:" line)
- the process exiting first, or start_timeout elapsing, also settles it
Whichever happens first settles the start exactly once; everything after
that is ignored. On failure the process is killed before the error is
raised. Output keeps being drained for the lifetime of the process so the
daemon never blocks on a full pipe.

Shutdown (stop_daemon): SIGTERM, wait up to the grace timeout, SIGKILL,
wait up to the kill timeout. Exit is observed through the process's own
exit notification. Afterwards repo.lock / api are removed whatever way the
process ended, and a disposable repository is deleted.

Nodes are created by the factory functions in ipfsd_ctl.factory.
"""

from __future__ import annotations

__all__ = ["Node"]

import asyncio
import json
import logging
from collections import deque
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.config_store import ConfigStore, flatten_config, render_value
from ipfsd_ctl.constants import APP_NAME, CMD_DAEMON
from ipfsd_ctl.exceptions import (
    DaemonStartFailed,
    InvalidStateTransition,
    RepoNotInitialized,
    SpawnFailed,
    StartTimeout,
    StopFailed,
)
from ipfsd_ctl.log_config import log_event
from ipfsd_ctl.models import PROCESS_STATES, ControllerEvent, DaemonAddresses, Endpoint, NodeState
from ipfsd_ctl.process import ExitStatus, ProcessHandle, spawn
from ipfsd_ctl.readiness import is_lock_conflict, match_fatal_line, parse_readiness_line
from ipfsd_ctl.repo import destroy, ensure_directory, init_repo, is_initialized, remove_stale_artifacts

_logger = logging.getLogger(APP_NAME)

# stderr lines kept for the diagnostic when the daemon exits during startup
STDERR_TAIL_LINES = 50

# How long to let output readers reach EOF after the process exited
READER_DRAIN_TIMEOUT_SECONDS = 1.0


def _describe_exit(status: ExitStatus) -> str:
    if status.signal is not None:
        return f"killed by signal {status.signal}"
    return f"exit code {status.code}"


class _StartupMonitor:
    """Collects readiness evidence and settles one start attempt exactly once."""

    def __init__(self) -> None:
        self.result: asyncio.Future[DaemonAddresses] = asyncio.get_running_loop().create_future()
        self.api: Endpoint | None = None
        self.gateway: Endpoint | None = None
        self.stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    @property
    def settled(self) -> bool:
        return self.result.done()

    def missing(self) -> list[str]:
        missing = []
        if self.api is None:
            missing.append("api")
        if self.gateway is None:
            missing.append("gateway")
        return missing

    def on_stdout(self, line: str) -> None:
        if self.settled:
            return
        marker = parse_readiness_line(line)
        if marker is None:
            return
        if marker.kind == "api" and self.api is None:
            self.api = marker.endpoint
        elif marker.kind == "gateway" and self.gateway is None:
            self.gateway = marker.endpoint
        if self.api is not None and self.gateway is not None:
            self.result.set_result(DaemonAddresses(api=self.api, gateway=self.gateway))

    def on_stderr(self, line: str) -> None:
        if line.strip():
            self.stderr_tail.append(line)
        if self.settled:
            return
        fatal = match_fatal_line(line)
        if fatal is not None:
            self.result.set_exception(DaemonStartFailed(f"Daemon failed to start: {fatal}", detail=fatal))

    def on_exit(self, status: ExitStatus) -> None:
        if self.settled:
            return
        diagnostic = "\n".join(self.stderr_tail).strip()
        message = f"Daemon exited before becoming ready ({_describe_exit(status)})"
        if diagnostic:
            message = f"{message}: {diagnostic}"
        self.result.set_exception(DaemonStartFailed(message, detail=diagnostic or None))


class Node:
    """Controller for one ipfs repository and (at most) one daemon process.

    A single Node type serves both flavors: a local node leaves its repository
    in place, a disposable node owns a temp repository and deletes it on stop.

    Usage:
        node = ipfsd_ctl.local("/tmp/my-repo")
        await node.init()
        addresses = await node.start_daemon()
        ...  # talk to addresses.api
        await node.stop_daemon()

    Attributes:
        repo_path: Absolute repository directory.
        exec_path: ipfs binary.
        disposable: Whether stop_daemon deletes repo_path.
        settings: Timeouts and init defaults.
        config_overrides: Nested config written into the repository after init.
    """

    def __init__(
        self,
        repo_path: Path | str,
        exec_path: str,
        *,
        env: Mapping[str, str],
        disposable: bool = False,
        config_overrides: Mapping[str, Any] | None = None,
        settings: ControllerSettings | None = None,
    ) -> None:
        """Initialize a node. Use the factory functions instead of calling this.

        Args:
            repo_path: Repository directory (made absolute).
            exec_path: Resolved ipfs binary.
            env: Complete environment for ipfs subprocesses. Must contain
                IPFS_PATH pointing at repo_path.
            disposable: Delete repo_path on stop.
            config_overrides: Nested config applied after init.
            settings: Controller settings (default: ControllerSettings()).
        """
        self.repo_path = Path(repo_path).expanduser().resolve()
        self.exec_path = exec_path
        self.disposable = disposable
        self.settings = settings or ControllerSettings()
        self.config_overrides: dict[str, Any] = dict(config_overrides or {})
        self._env: dict[str, str] = dict(env)
        self._config_store = ConfigStore(exec_path, self._env, self.settings.command_timeout_seconds)

        self._state = NodeState.INITIALIZED if is_initialized(self.repo_path) else NodeState.UNINITIALIZED
        self._process: ProcessHandle | None = None
        self._addresses: DaemonAddresses | None = None
        self._readers: list[asyncio.Task[None]] = []
        self._stop_task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return (
            f"Node(repo_path={str(self.repo_path)!r}, state={self._state.value!r}, "
            f"disposable={self.disposable!r}, pid={self.daemon_pid()!r})"
        )

    async def __aenter__(self) -> Node:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_daemon()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> NodeState:
        """Current lifecycle state."""
        return self._state

    @property
    def initialized(self) -> bool:
        """True iff the repository's config file exists."""
        return is_initialized(self.repo_path)

    @property
    def env(self) -> dict[str, str]:
        """Copy of the environment passed to ipfs subprocesses."""
        return dict(self._env)

    @property
    def api_address(self) -> Endpoint | None:
        """API endpoint while running, else None."""
        return self._addresses.api if self._addresses else None

    @property
    def gateway_address(self) -> Endpoint | None:
        """Gateway endpoint while running, else None."""
        return self._addresses.gateway if self._addresses else None

    def daemon_pid(self) -> int | None:
        """PID of the daemon while its process is alive, else None.

        A daemon that died on its own while running reports None here even
        though the node stays running until stop_daemon() cleans up.
        """
        if self._state in PROCESS_STATES and self._process is not None and self._process.returncode is None:
            return self._process.pid
        return None

    def _event(self, event: str, message: str, **fields: Any) -> ControllerEvent:
        return ControllerEvent(
            event=event,
            message=message,
            repo_path=str(self.repo_path),
            state=self._state.value,
            **fields,
        )

    # =========================================================================
    # Init
    # =========================================================================

    async def init(self, extra_flags: Sequence[str] | None = None) -> None:
        """Initialize the repository. A no-op if it is already initialized.

        Args:
            extra_flags: Flags for `ipfs init` (default: settings.init_flags).

        Raises:
            InvalidStateTransition: If the node is not uninitialized.
            InitFailed: If `ipfs init` fails.
            InvalidConfigValue: If a config override is rejected.
        """
        if self.initialized:
            if self._state == NodeState.UNINITIALIZED:
                self._state = NodeState.INITIALIZED
            return

        if self._state != NodeState.UNINITIALIZED:
            raise InvalidStateTransition("init", self._state)

        flags = list(extra_flags) if extra_flags is not None else list(self.settings.init_flags)
        ensure_directory(self.repo_path)
        await init_repo(
            self.repo_path,
            self.exec_path,
            flags,
            env=self._env,
            timeout=self.settings.command_timeout_seconds,
        )
        self._state = NodeState.INITIALIZED

        if self.config_overrides:
            await self._apply_config_overrides()

    async def _apply_config_overrides(self) -> None:
        for key, value in flatten_config(self.config_overrides).items():
            await self._config_store.write_path(self.repo_path, key, json.dumps(value))

    # =========================================================================
    # Config
    # =========================================================================

    async def get_config(self, key: str | None = None) -> Any:
        """Read configuration.

        Args:
            key: Dotted key, or None for the whole document.

        Returns:
            The whole document as a dict when key is None; otherwise the value
            rendered the way `ipfs config <key>` prints it (strings raw,
            anything else as JSON, e.g. "null").

        Raises:
            RepoNotInitialized: If the repository has no config.
            ConfigKeyNotFound: If the key does not exist.
        """
        if key is None:
            return await self._config_store.read_all(self.repo_path)
        return render_value(await self._config_store.read_path(self.repo_path, key))

    async def set_config(self, key: str, value: Any) -> None:
        """Set a configuration value through the daemon's config command.

        Args:
            key: Dotted key.
            value: JSON text (str) or a JSON-serializable Python value.

        Raises:
            RepoNotInitialized: If the repository has no config.
            InvalidConfigValue: If the daemon rejects the value.
        """
        value_json = value if isinstance(value, str) else json.dumps(value)
        await self._config_store.write_path(self.repo_path, key, value_json)

    # =========================================================================
    # Start
    # =========================================================================

    async def start_daemon(self, extra_args: Sequence[str] | None = None) -> DaemonAddresses:
        """Spawn the daemon and wait until both API and Gateway are listening.

        Args:
            extra_args: Appended to `ipfs daemon`; the daemon decides what
                is valid (unknown flags fail with "Unrecognized option").

        Returns:
            DaemonAddresses with the announced API and Gateway endpoints.

        Raises:
            InvalidStateTransition: If a daemon is starting, running or stopping.
            RepoNotInitialized: If the repository has not been initialized.
            SpawnFailed: If the binary cannot be started.
            DaemonStartFailed: On a fatal stderr line or early exit.
            StartTimeout: If readiness is not reached in time.
        """
        if self._state in PROCESS_STATES:
            raise InvalidStateTransition("start daemon", self._state)
        if not self.initialized:
            raise RepoNotInitialized(self.repo_path)

        # Set before the first suspension point so concurrent calls fail fast
        self._state = NodeState.STARTING
        args = [CMD_DAEMON, *(extra_args or [])]

        try:
            handle = await spawn(self.exec_path, args, cwd=self.repo_path, env=self._env)
        except SpawnFailed as e:
            self._state = NodeState.FAILED
            log_event(
                logging.ERROR,
                self._event("daemon_spawn_failed", str(e), error_type=type(e).__name__, error_message=e.detail),
            )
            raise
        except asyncio.CancelledError:
            self._state = NodeState.FAILED
            raise

        self._process = handle
        monitor = _StartupMonitor()
        output_readers = [
            asyncio.create_task(self._pump(handle, "stdout", monitor)),
            asyncio.create_task(self._pump(handle, "stderr", monitor)),
        ]
        self._readers = [*output_readers, asyncio.create_task(self._watch_exit(handle, monitor, output_readers))]

        log_event(
            logging.INFO,
            self._event(
                "daemon_starting",
                f"Starting daemon (pid: {handle.pid})",
                pid=handle.pid,
                details={"args": list(args)},
            ),
        )

        timeout = self.settings.start_timeout_seconds
        try:
            addresses = await asyncio.wait_for(monitor.result, timeout=timeout)
        except asyncio.TimeoutError:
            missing = monitor.missing()
            await self._abort_start(handle, "start_timeout")
            raise StartTimeout(timeout, missing) from None
        except DaemonStartFailed as e:
            await self._abort_start(handle, "daemon_start_failed", e)
            raise
        except asyncio.CancelledError:
            await self._abort_start(handle, "daemon_start_cancelled")
            raise

        self._addresses = addresses
        self._state = NodeState.RUNNING
        log_event(
            logging.INFO,
            self._event(
                "daemon_started",
                f"Daemon ready: api={addresses.api}, gateway={addresses.gateway}",
                pid=handle.pid,
                details={"api": addresses.api.multiaddr, "gateway": addresses.gateway.multiaddr},
            ),
        )
        return addresses

    async def _pump(
        self,
        handle: ProcessHandle,
        stream: Literal["stdout", "stderr"],
        monitor: _StartupMonitor,
    ) -> None:
        """Drain one output stream until EOF, feeding the startup monitor."""
        feed = monitor.on_stdout if stream == "stdout" else monitor.on_stderr
        async for line in handle.lines(stream):
            _logger.debug(f"[ipfs:{handle.pid}:{stream}] {line}")
            feed(line)

    async def _watch_exit(
        self,
        handle: ProcessHandle,
        monitor: _StartupMonitor,
        output_readers: list[asyncio.Task[None]],
    ) -> None:
        """Observe process exit: settles a pending start, reports unexpected exits."""
        status = await handle.wait()
        pending = [task for task in output_readers if not task.done()]
        if pending:
            # Let buffered stderr reach the monitor before judging the exit
            await asyncio.wait(pending, timeout=READER_DRAIN_TIMEOUT_SECONDS)
        monitor.on_exit(status)

        if self._state == NodeState.RUNNING and self._process is handle:
            log_event(
                logging.WARNING,
                self._event(
                    "daemon_exited_unexpectedly",
                    f"Daemon exited while running ({_describe_exit(status)})",
                    pid=handle.pid,
                ),
            )

    async def _abort_start(self, handle: ProcessHandle, event: str, error: Exception | None = None) -> None:
        """Kill a daemon that failed to become ready and return to a clean failed state."""
        if handle.returncode is None:
            try:
                handle.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(handle.wait(), timeout=self.settings.kill_timeout_seconds)
            except asyncio.TimeoutError:
                log_event(
                    logging.ERROR,
                    self._event("daemon_kill_timeout", "Daemon did not exit after SIGKILL", pid=handle.pid),
                )

        await self._stop_readers()
        # A lock conflict means the files belong to another live daemon
        if not is_lock_conflict(getattr(error, "detail", None)):
            remove_stale_artifacts(self.repo_path)
        self._release(NodeState.FAILED)

        log_event(
            logging.ERROR,
            self._event(
                event,
                str(error) if error else "Daemon start aborted",
                pid=handle.pid,
                error_type=type(error).__name__ if error else None,
                error_message=getattr(error, "detail", None),
            ),
        )

    # =========================================================================
    # Stop
    # =========================================================================

    async def stop_daemon(self) -> None:
        """Stop the daemon and clean up after it.

        A no-op when nothing is running (a disposable node still deletes its
        repository). Concurrent calls while stopping wait for the same stop.

        Raises:
            InvalidStateTransition: If a start is in progress.
            StopFailed: If the daemon cannot be signalled or survives SIGKILL.
        """
        if self._state == NodeState.STOPPING and self._stop_task is not None:
            await asyncio.shield(self._stop_task)
            return
        if self._state == NodeState.STARTING:
            raise InvalidStateTransition("stop daemon", self._state)
        if self._state != NodeState.RUNNING:
            if self.disposable and self._state != NodeState.STOPPED:
                self._destroy_repo()
                self._state = NodeState.STOPPED
            return

        self._state = NodeState.STOPPING
        self._stop_task = asyncio.create_task(self._shutdown())
        try:
            await asyncio.shield(self._stop_task)
        finally:
            if self._stop_task.done():
                self._stop_task = None

    async def _shutdown(self) -> None:
        handle = self._process
        assert handle is not None  # RUNNING implies a process
        pid = handle.pid

        try:
            status = await self._terminate(handle)
        except StopFailed as e:
            await self._stop_readers()
            self._release(NodeState.FAILED)
            log_event(
                logging.ERROR,
                self._event("daemon_stop_failed", str(e), pid=pid, error_type=type(e).__name__, error_message=e.detail),
            )
            raise

        await self._stop_readers()
        remove_stale_artifacts(self.repo_path)
        if self.disposable:
            self._destroy_repo()
        self._release(NodeState.STOPPED)

        log_event(
            logging.INFO,
            self._event("daemon_stopped", f"Daemon stopped ({_describe_exit(status)})", pid=pid),
        )

    async def _terminate(self, handle: ProcessHandle) -> ExitStatus:
        """SIGTERM, wait for the grace period, then SIGKILL."""
        if handle.returncode is not None:
            return await handle.wait()

        try:
            handle.terminate()
        except ProcessLookupError:
            return await handle.wait()
        except PermissionError as e:
            raise StopFailed(handle.pid, f"cannot send SIGTERM: {e}") from e

        try:
            return await asyncio.wait_for(handle.wait(), timeout=self.settings.stop_grace_timeout_seconds)
        except asyncio.TimeoutError:
            log_event(
                logging.WARNING,
                self._event(
                    "daemon_stop_escalated",
                    f"Daemon ignored SIGTERM for {self.settings.stop_grace_timeout_seconds}s, sending SIGKILL",
                    pid=handle.pid,
                ),
            )

        try:
            handle.kill()
        except ProcessLookupError:
            return await handle.wait()
        except PermissionError as e:
            raise StopFailed(handle.pid, f"cannot send SIGKILL: {e}") from e

        try:
            return await asyncio.wait_for(handle.wait(), timeout=self.settings.kill_timeout_seconds)
        except asyncio.TimeoutError:
            raise StopFailed(
                handle.pid, f"process still running {self.settings.kill_timeout_seconds}s after SIGKILL"
            ) from None

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _stop_readers(self) -> None:
        readers, self._readers = self._readers, []
        current = asyncio.current_task()
        readers = [task for task in readers if task is not current]
        if not readers:
            return
        _, pending = await asyncio.wait(readers, timeout=READER_DRAIN_TIMEOUT_SECONDS)
        for task in pending:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

    def _release(self, state: NodeState) -> None:
        self._process = None
        self._addresses = None
        self._state = state

    def _destroy_repo(self) -> None:
        try:
            destroy(self.repo_path)
        except OSError as e:
            log_event(
                logging.WARNING,
                self._event(
                    "repo_destroy_failed",
                    f"Failed to remove disposable repository {self.repo_path}",
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )
