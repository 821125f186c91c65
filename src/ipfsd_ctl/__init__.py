"""ipfsd-ctl: spawn and control ipfs daemons from Python.

Example usage:
    import ipfsd_ctl

    async with await ipfsd_ctl.disposable() as node:
        addresses = await node.start_daemon()
        print(addresses.api.url)
"""

from __future__ import annotations

__version__ = "0.1.0"

from ipfsd_ctl.client import IpfsApiClient
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.exceptions import (
    ApiError,
    CommandTimeout,
    ConfigKeyNotFound,
    ConfigReadError,
    DaemonStartFailed,
    ExecutableNotFound,
    InitFailed,
    InvalidConfigValue,
    InvalidStateTransition,
    IpfsdCtlError,
    RepoNotInitialized,
    SpawnFailed,
    StartTimeout,
    StopFailed,
)
from ipfsd_ctl.factory import disposable, disposable_api, local, version
from ipfsd_ctl.log_config import configure_logging
from ipfsd_ctl.models import DaemonAddresses, Endpoint, NodeState
from ipfsd_ctl.node import Node

__all__ = [
    "__version__",
    # Factories
    "disposable",
    "disposable_api",
    "local",
    "version",
    # Core types
    "ControllerSettings",
    "DaemonAddresses",
    "Endpoint",
    "IpfsApiClient",
    "Node",
    "NodeState",
    "configure_logging",
    # Exceptions
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
