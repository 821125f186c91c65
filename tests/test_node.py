"""Tests for the Node lifecycle against the scripted fake ipfs binary.

Covers init idempotence, readiness detection, fatal startup errors,
start timeouts, SIGTERM -> SIGKILL escalation, stale lock cleanup and the
state machine's rejection of concurrent operations.
Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import socket
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from ipfsd_ctl import factory
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.exceptions import (
    DaemonStartFailed,
    InvalidConfigValue,
    InvalidStateTransition,
    RepoNotInitialized,
    SpawnFailed,
    StartTimeout,
    StopFailed,
)
from ipfsd_ctl.models import NodeState
from ipfsd_ctl.node import Node


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def assert_no_stale_artifacts(repo: Path) -> None:
    assert not (repo / "repo.lock").exists()
    assert not (repo / "api").exists()


@pytest.fixture
def make_node(
    repo_path: Path,
    settings: ControllerSettings,
    loopback_config: dict[str, Any],
) -> Callable[..., Node]:
    """Create local nodes on the shared repo path with loopback listeners."""

    def _make(node_settings: ControllerSettings | None = None, config: dict[str, Any] | None = None) -> Node:
        return factory.local(repo_path, config or loopback_config, settings=node_settings or settings)

    return _make


@pytest_asyncio.fixture
async def node(make_node: Callable[..., Node]) -> AsyncIterator[Node]:
    """Initialized local node; any running daemon is stopped afterwards."""
    node = make_node()
    await node.init()
    yield node
    if node.state in (NodeState.RUNNING, NodeState.STOPPING):
        await node.stop_daemon()


# ============================================================================
# Init
# ============================================================================


class TestInit:
    """Tests for repository initialization."""

    @pytest.mark.asyncio
    async def test_init_creates_config(self, make_node: Callable[..., Node]) -> None:
        # Arrange
        node = make_node()
        assert node.state == NodeState.UNINITIALIZED
        assert not node.initialized

        # Act
        await node.init()

        # Assert
        assert node.initialized
        assert node.state == NodeState.INITIALIZED
        assert (node.repo_path / "config").exists()

    @pytest.mark.asyncio
    async def test_init_is_idempotent(self, node: Node) -> None:
        # Arrange
        before = (node.repo_path / "config").read_text()

        # Act
        await node.init()

        # Assert
        assert node.state == NodeState.INITIALIZED
        assert (node.repo_path / "config").read_text() == before

    @pytest.mark.asyncio
    async def test_existing_repo_starts_initialized(self, node: Node, make_node: Callable[..., Node]) -> None:
        # Act
        second = make_node()

        # Assert
        assert second.state == NodeState.INITIALIZED

    @pytest.mark.asyncio
    async def test_config_overrides_applied(self, node: Node) -> None:
        # Act
        api = await node.get_config("Addresses.API")

        # Assert
        assert api == "/ip4/127.0.0.1/tcp/0"

    @pytest.mark.asyncio
    async def test_rejected_override_surfaces(self, make_node: Callable[..., Node]) -> None:
        # Arrange
        node = make_node(config={"Bootstrap": True})

        # Act & Assert
        with pytest.raises(InvalidConfigValue):
            await node.init()

    @pytest.mark.asyncio
    async def test_custom_init_flags(self, make_node: Callable[..., Node]) -> None:
        # Arrange
        node = make_node()

        # Act
        await node.init(["--profile=test"])

        # Assert
        assert node.initialized


# ============================================================================
# Config
# ============================================================================


class TestConfig:
    """Tests for get_config / set_config on a node."""

    @pytest.mark.asyncio
    async def test_whole_document(self, node: Node) -> None:
        # Act
        doc = await node.get_config()

        # Assert
        assert isinstance(doc, dict)
        assert "Bootstrap" in doc

    @pytest.mark.asyncio
    async def test_bootstrap_null_round_trip(self, node: Node) -> None:
        # Act
        await node.set_config("Bootstrap", "null")

        # Assert
        assert await node.get_config("Bootstrap") == "null"

    @pytest.mark.asyncio
    async def test_python_values_are_encoded(self, node: Node) -> None:
        # Act
        await node.set_config("Bootstrap", [])
        await node.set_config("Discovery.MDNS.Enabled", False)

        # Assert
        assert await node.get_config("Bootstrap") == "[]"
        assert await node.get_config("Discovery.MDNS.Enabled") == "false"

    @pytest.mark.asyncio
    async def test_invalid_value_rejected_by_daemon(self, node: Node) -> None:
        # Act & Assert
        with pytest.raises(InvalidConfigValue) as exc_info:
            await node.set_config("Bootstrap", "true")

        assert "failed to set config value" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_uninitialized(self, make_node: Callable[..., Node]) -> None:
        # Arrange
        node = make_node()

        # Act & Assert
        with pytest.raises(RepoNotInitialized):
            await node.get_config("Bootstrap")


# ============================================================================
# Start / stop
# ============================================================================


class TestStartStop:
    """Tests for the happy-path daemon lifecycle."""

    @pytest.mark.asyncio
    async def test_start_requires_init(self, make_node: Callable[..., Node]) -> None:
        # Arrange
        node = make_node()

        # Act & Assert
        with pytest.raises(RepoNotInitialized):
            await node.start_daemon()

        assert node.state == NodeState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_pid_only_while_running(self, node: Node) -> None:
        # Arrange
        assert node.daemon_pid() is None

        # Act
        await node.start_daemon()
        pid = node.daemon_pid()
        assert pid is not None
        assert pid_alive(pid)
        await node.stop_daemon()

        # Assert
        assert node.daemon_pid() is None
        assert not pid_alive(pid)

    @pytest.mark.asyncio
    async def test_start_reports_addresses(self, node: Node) -> None:
        # Act
        addresses = await node.start_daemon()

        # Assert
        assert node.state == NodeState.RUNNING
        assert addresses.api.host == "127.0.0.1"
        assert addresses.api.port != 0
        assert addresses.gateway.port != 0
        assert node.api_address == addresses.api
        assert node.gateway_address == addresses.gateway
        assert (node.repo_path / "repo.lock").exists()

    @pytest.mark.asyncio
    async def test_stop_cleans_up(self, node: Node) -> None:
        # Arrange
        await node.start_daemon()

        # Act
        await node.stop_daemon()

        # Assert
        assert node.state == NodeState.STOPPED
        assert node.api_address is None
        assert_no_stale_artifacts(node.repo_path)
        assert node.initialized

    @pytest.mark.asyncio
    async def test_three_cycles(self, node: Node) -> None:
        for _ in range(3):
            # Act
            await node.start_daemon()
            pid = node.daemon_pid()
            await node.stop_daemon()

            # Assert
            assert node.state == NodeState.STOPPED
            assert pid is not None and not pid_alive(pid)
            assert_no_stale_artifacts(node.repo_path)

    @pytest.mark.asyncio
    async def test_markers_in_either_order(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("gateway-first"))
        await node.init()

        # Act
        try:
            addresses = await node.start_daemon()

            # Assert
            assert addresses.api.port != addresses.gateway.port
        finally:
            await node.stop_daemon()

    @pytest.mark.asyncio
    async def test_rpc_api_marker(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("kubo"))
        await node.init()

        # Act
        try:
            addresses = await node.start_daemon()

            # Assert
            assert node.state == NodeState.RUNNING
            assert (node.repo_path / "api").read_text() == addresses.api.multiaddr
        finally:
            await node.stop_daemon()

    @pytest.mark.asyncio
    async def test_output_drained_after_ready(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("noisy"))
        await node.init()
        await node.start_daemon()

        # Act
        await asyncio.sleep(1.0)
        await asyncio.wait_for(node.stop_daemon(), timeout=10)

        # Assert
        assert node.state == NodeState.STOPPED

    @pytest.mark.asyncio
    async def test_async_context_manager_stops(self, node: Node) -> None:
        # Act
        async with node:
            await node.start_daemon()
            pid = node.daemon_pid()

        # Assert
        assert node.state == NodeState.STOPPED
        assert pid is not None and not pid_alive(pid)


# ============================================================================
# Startup failures
# ============================================================================


class TestStartFailures:
    """Tests for fatal lines, early exit and timeouts during startup."""

    @pytest.mark.asyncio
    async def test_unrecognized_option(self, node: Node) -> None:
        # Act & Assert
        with pytest.raises(DaemonStartFailed) as exc_info:
            await node.start_daemon(["--should-not-exist"])

        assert "Unrecognized option 'should-not-exist'" in str(exc_info.value)
        assert node.state == NodeState.FAILED
        assert node.daemon_pid() is None

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, node: Node) -> None:
        # Arrange
        with pytest.raises(DaemonStartFailed):
            await node.start_daemon(["--should-not-exist"])

        # Act
        await node.start_daemon()

        # Assert
        assert node.state == NodeState.RUNNING

    @pytest.mark.asyncio
    async def test_address_in_use(self, node: Node) -> None:
        # Arrange
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            await node.set_config("Addresses.API", json.dumps(f"/ip4/127.0.0.1/tcp/{port}"))

            # Act & Assert
            with pytest.raises(DaemonStartFailed) as exc_info:
                await node.start_daemon()

        assert "address already in use" in str(exc_info.value)
        assert_no_stale_artifacts(node.repo_path)

    @pytest.mark.asyncio
    async def test_lock_held_by_other_daemon(self, node: Node, make_node: Callable[..., Node]) -> None:
        # Arrange
        await node.start_daemon()
        other = make_node()

        # Act & Assert
        with pytest.raises(DaemonStartFailed) as exc_info:
            await other.start_daemon()

        assert "someone else has the lock" in str(exc_info.value)
        assert other.state == NodeState.FAILED
        # The running daemon's lock is left alone
        assert (node.repo_path / "repo.lock").exists()
        assert node.state == NodeState.RUNNING

    @pytest.mark.asyncio
    async def test_early_exit_carries_stderr(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("crash"))
        await node.init()

        # Act & Assert
        with pytest.raises(DaemonStartFailed) as exc_info:
            await node.start_daemon()

        assert "panic: runtime error" in str(exc_info.value)
        assert exc_info.value.detail is not None
        assert node.state == NodeState.FAILED

    @pytest.mark.asyncio
    async def test_start_timeout_kills_daemon(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("hang", start_timeout_seconds=1.0))
        await node.init()

        # Act & Assert
        with pytest.raises(StartTimeout) as exc_info:
            await node.start_daemon()

        assert exc_info.value.missing == ["api", "gateway"]
        assert node.state == NodeState.FAILED
        assert node.daemon_pid() is None
        assert_no_stale_artifacts(node.repo_path)

    @pytest.mark.asyncio
    async def test_spawn_failure(
        self, node: Node, make_node: Callable[..., Node], settings: ControllerSettings, tmp_path: Path
    ) -> None:
        # Arrange
        broken = make_node(settings.model_copy(update={"exec_path": str(tmp_path / "missing-ipfs")}))

        # Act & Assert
        with pytest.raises(SpawnFailed):
            await broken.start_daemon()

        assert broken.state == NodeState.FAILED


# ============================================================================
# Shutdown
# ============================================================================


class TestShutdown:
    """Tests for stop escalation and stale-file cleanup."""

    @pytest.mark.asyncio
    async def test_sigkill_after_grace(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("ignore-term", stop_grace_timeout_seconds=0.5))
        await node.init()
        await node.start_daemon()
        pid = node.daemon_pid()
        assert pid is not None

        # Act
        await node.stop_daemon()

        # Assert
        assert node.state == NodeState.STOPPED
        assert not pid_alive(pid)
        assert_no_stale_artifacts(node.repo_path)

    @pytest.mark.asyncio
    async def test_undeliverable_signal_fails_stop(self, node: Node, monkeypatch: pytest.MonkeyPatch) -> None:
        # Arrange
        await node.start_daemon()
        pid = node.daemon_pid()
        assert pid is not None

        def deny() -> None:
            raise PermissionError(1, "Operation not permitted")

        monkeypatch.setattr(node._process, "terminate", deny)

        # Act & Assert
        try:
            with pytest.raises(StopFailed) as exc_info:
                await node.stop_daemon()

            assert exc_info.value.pid == pid
            assert "cannot send SIGTERM" in str(exc_info.value)
            assert node.state == NodeState.FAILED
            assert node.daemon_pid() is None
        finally:
            os.kill(pid, signal.SIGKILL)

    @pytest.mark.asyncio
    async def test_pid_cleared_after_unexpected_exit(self, node: Node) -> None:
        # Arrange
        await node.start_daemon()
        handle = node._process
        assert handle is not None
        pid = node.daemon_pid()
        assert pid is not None

        # Act
        os.kill(pid, signal.SIGKILL)
        await asyncio.wait_for(handle.wait(), timeout=5)

        # Assert
        assert node.state == NodeState.RUNNING
        assert node.daemon_pid() is None

    @pytest.mark.asyncio
    async def test_stale_files_removed_when_daemon_leaves_them(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("leave-lock"))
        await node.init()
        await node.start_daemon()

        # Act
        await node.stop_daemon()

        # Assert
        assert_no_stale_artifacts(node.repo_path)

    @pytest.mark.asyncio
    async def test_daemon_killed_externally(self, node: Node) -> None:
        # Arrange
        await node.start_daemon()
        pid = node.daemon_pid()
        assert pid is not None
        os.kill(pid, signal.SIGKILL)
        await asyncio.sleep(0.2)

        # Act
        await node.stop_daemon()

        # Assert
        assert node.state == NodeState.STOPPED
        assert_no_stale_artifacts(node.repo_path)

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self, node: Node) -> None:
        # Act
        await node.stop_daemon()

        # Assert
        assert node.state == NodeState.INITIALIZED
        assert node.initialized

    @pytest.mark.asyncio
    async def test_double_stop(self, node: Node) -> None:
        # Arrange
        await node.start_daemon()
        await node.stop_daemon()

        # Act
        await node.stop_daemon()

        # Assert
        assert node.state == NodeState.STOPPED


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrency:
    """Tests for operations issued while another one is in flight."""

    @pytest.mark.asyncio
    async def test_concurrent_start_fails_fast(self, node: Node) -> None:
        # Act
        results = await asyncio.gather(node.start_daemon(), node.start_daemon(), return_exceptions=True)

        # Assert
        failures = [r for r in results if isinstance(r, InvalidStateTransition)]
        successes = [r for r in results if not isinstance(r, BaseException)]
        assert len(failures) == 1
        assert len(successes) == 1
        assert node.state == NodeState.RUNNING

    @pytest.mark.asyncio
    async def test_start_while_running(self, node: Node) -> None:
        # Arrange
        await node.start_daemon()

        # Act & Assert
        with pytest.raises(InvalidStateTransition):
            await node.start_daemon()

    @pytest.mark.asyncio
    async def test_stop_while_starting(
        self, make_node: Callable[..., Node], mode_settings: Callable[..., ControllerSettings]
    ) -> None:
        # Arrange
        node = make_node(mode_settings("hang"))
        await node.init()
        start = asyncio.create_task(node.start_daemon())
        while node.daemon_pid() is None:
            await asyncio.sleep(0.01)
        assert node.state == NodeState.STARTING

        # Act & Assert
        with pytest.raises(InvalidStateTransition):
            await node.stop_daemon()

        start.cancel()
        with pytest.raises(asyncio.CancelledError):
            await start
        assert node.state == NodeState.FAILED
        assert node.daemon_pid() is None

    @pytest.mark.asyncio
    async def test_concurrent_stops_share_shutdown(self, node: Node) -> None:
        # Arrange
        await node.start_daemon()

        # Act
        await asyncio.gather(node.stop_daemon(), node.stop_daemon())

        # Assert
        assert node.state == NodeState.STOPPED
        assert_no_stale_artifacts(node.repo_path)
