"""Application-wide constants for ipfsd-ctl.

Constants that define controller behavior and the on-disk / command-line
contract of the managed ipfs daemon.
For per-caller settings, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    # Environment variables
    "IPFS_EXEC_ENV",
    "IPFS_PATH_ENV",
    "INSTALL_DIR_ENV",
    # Executable discovery
    "BINARY_NAME",
    "DEPENDENCY_PACKAGE",
    "DEPENDENCY_BINARY_DIR",
    "NESTED_DEPS_DIR",
    # Repository layout
    "CONFIG_FILENAME",
    "LOCK_FILENAME",
    "API_FILENAME",
    "DEFAULT_REPO_DIRNAME",
    "DEFAULT_DISPOSABLE_PREFIX",
    # Daemon subcommands
    "CMD_INIT",
    "CMD_DAEMON",
    "CMD_CONFIG",
    "CMD_VERSION",
    # Timeouts
    "DEFAULT_START_TIMEOUT_SECONDS",
    "MAX_START_TIMEOUT_SECONDS",
    "DEFAULT_STOP_GRACE_TIMEOUT_SECONDS",
    "DEFAULT_KILL_TIMEOUT_SECONDS",
    "DEFAULT_COMMAND_TIMEOUT_SECONDS",
    "DEFAULT_API_TIMEOUT_SECONDS",
    # Init
    "DEFAULT_INIT_FLAGS",
    "DISPOSABLE_CONFIG",
]

import sys
from typing import Any

# ============================================================================
# Application Identity
# ============================================================================

# Used for logger names, log directories and the CLI program name.
APP_NAME: str = "ipfsd-ctl"

# ============================================================================
# Environment Variables
# ============================================================================

# Explicit path to the ipfs binary (highest priority after a direct argument)
IPFS_EXEC_ENV: str = "IPFS_EXEC"

# Repository location handed to every ipfs subprocess
IPFS_PATH_ENV: str = "IPFS_PATH"

# Test-only seam: pretend the controller is installed somewhere else
INSTALL_DIR_ENV: str = "IPFSD_CTL_INSTALL_DIR"

# ============================================================================
# Executable Discovery
# ============================================================================

BINARY_NAME: str = "ipfs.exe" if sys.platform == "win32" else "ipfs"

# Dependency package that ships the binary, and the directory inside it
DEPENDENCY_PACKAGE: str = "go-ipfs-dep"
DEPENDENCY_BINARY_DIR: str = "go-ipfs"

# Directory inside the controller package used by the nested layout
NESTED_DEPS_DIR: str = "_deps"

# ============================================================================
# Repository Layout
# ============================================================================

CONFIG_FILENAME: str = "config"
LOCK_FILENAME: str = "repo.lock"
API_FILENAME: str = "api"

# Default repository for local nodes when neither a path nor $IPFS_PATH is given
DEFAULT_REPO_DIRNAME: str = ".ipfs"

DEFAULT_DISPOSABLE_PREFIX: str = "ipfs-"

# ============================================================================
# Daemon Subcommands
# ============================================================================

CMD_INIT: str = "init"
CMD_DAEMON: str = "daemon"
CMD_CONFIG: str = "config"
CMD_VERSION: str = "version"

# ============================================================================
# Timeouts (seconds)
# ============================================================================

# Both readiness markers must arrive within this window, measured from spawn
DEFAULT_START_TIMEOUT_SECONDS: float = 30.0
MAX_START_TIMEOUT_SECONDS: float = 600.0

# SIGTERM -> SIGKILL escalation
DEFAULT_STOP_GRACE_TIMEOUT_SECONDS: float = 10.5
DEFAULT_KILL_TIMEOUT_SECONDS: float = 5.0

# Short-lived subcommands (init, config, version)
DEFAULT_COMMAND_TIMEOUT_SECONDS: float = 60.0

DEFAULT_API_TIMEOUT_SECONDS: float = 30.0

# ============================================================================
# Init
# ============================================================================

# Key size passed to `ipfs init`
DEFAULT_INIT_FLAGS: tuple[str, ...] = ("-b", "2048")

# Config applied to disposable repositories: loopback listeners on
# ephemeral ports, no bootstrap peers, no local discovery.
DISPOSABLE_CONFIG: dict[str, Any] = {
    "Addresses": {
        "API": "/ip4/127.0.0.1/tcp/0",
        "Gateway": "/ip4/127.0.0.1/tcp/0",
        "Swarm": ["/ip4/0.0.0.0/tcp/0"],
    },
    "Bootstrap": [],
    "Discovery": {"MDNS": {"Enabled": False}},
}
