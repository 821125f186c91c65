"""Pydantic models for ipfsd-ctl.

This module contains three categories of models:

Lifecycle:
- NodeState: States of the node lifecycle state machine

Endpoint Models (FrozenModel-based):
- FrozenModel: Base class for immutable models
- Endpoint: A listen address announced by the daemon
- DaemonAddresses: API + Gateway endpoints returned by a successful start

Logging Models:
- ControllerEvent: Structured log entries for the controller
"""

from __future__ import annotations

__all__ = [
    # Lifecycle
    "NodeState",
    # Endpoint Models
    "DaemonAddresses",
    "Endpoint",
    "FrozenModel",
    # Logging Models
    "ControllerEvent",
]

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class NodeState(str, Enum):
    """Lifecycle states of a Node."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


# States in which a subprocess handle exists
PROCESS_STATES: frozenset[NodeState] = frozenset({NodeState.STARTING, NodeState.RUNNING, NodeState.STOPPING})


# =============================================================================
# Endpoint Models
# =============================================================================


class FrozenModel(BaseModel):
    """Base class for immutable Pydantic models."""

    model_config = ConfigDict(frozen=True)


class Endpoint(FrozenModel):
    """A network endpoint parsed from a multiaddr such as /ip4/127.0.0.1/tcp/5001.

    Attributes:
        family: Address family protocol (ip4, ip6, dns, dns4, dns6).
        host: Host address or DNS name.
        transport: Transport protocol (tcp or udp).
        port: Port number.
        multiaddr: The original textual multiaddr.
    """

    family: Literal["ip4", "ip6", "dns", "dns4", "dns6"]
    host: str = Field(min_length=1)
    transport: Literal["tcp", "udp"]
    port: int = Field(ge=0, le=65535)
    multiaddr: str

    @property
    def url(self) -> str:
        """HTTP base URL for this endpoint (IPv6 hosts are bracketed)."""
        host = f"[{self.host}]" if self.family == "ip6" else self.host
        return f"http://{host}:{self.port}"

    def __str__(self) -> str:
        return self.multiaddr


class DaemonAddresses(FrozenModel):
    """Endpoints announced by a daemon that reached readiness.

    Attributes:
        api: Where the HTTP API is listening.
        gateway: Where the HTTP gateway is listening.
    """

    api: Endpoint
    gateway: Endpoint


# =============================================================================
# Logging Models
# =============================================================================


class ControllerEvent(BaseModel):
    """Structured log entry emitted by the controller.

    Serialized with model_dump(exclude_none=True) and passed as the log
    record message; formatters render it for console or JSONL output.

    Attributes:
        event: Machine-readable event name (e.g. "daemon_started").
        message: Human-readable description.
        repo_path: Repository the event relates to.
        pid: Daemon process id, if any.
        state: Node state after the event.
        error_type: Exception class name for failures.
        error_message: Exception message for failures.
        details: Additional structured context.
    """

    event: str
    message: str
    repo_path: str | None = None
    pid: int | None = None
    state: str | None = None
    error_type: str | None = None
    error_message: str | None = None
    details: dict[str, Any] | None = None
