"""Factory functions: the public entry points for creating nodes.

This is the outermost boundary of the controller. It is the only place
that reads the process environment ($IPFS_EXEC, $IPFS_PATH,
$IPFSD_CTL_INSTALL_DIR); everything below receives explicit values.

Example usage:
    import ipfsd_ctl

    node = ipfsd_ctl.local("/tmp/my-repo")
    await node.init()

    async with await ipfsd_ctl.disposable() as node:
        addresses = await node.start_daemon()

    print(await ipfsd_ctl.version())
"""

from __future__ import annotations

__all__ = [
    "disposable",
    "disposable_api",
    "local",
    "merge_config",
    "version",
]

import copy
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ipfsd_ctl.client import IpfsApiClient
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.constants import CMD_VERSION, DEFAULT_REPO_DIRNAME, DISPOSABLE_CONFIG, IPFS_PATH_ENV
from ipfsd_ctl.exceptions import IpfsdCtlError
from ipfsd_ctl.locator import locate_executable
from ipfsd_ctl.log_config import log_event
from ipfsd_ctl.models import ControllerEvent
from ipfsd_ctl.node import Node
from ipfsd_ctl.process import run_command
from ipfsd_ctl.repo import make_temp_repo_path


def _resolve_settings(settings: ControllerSettings | None) -> ControllerSettings:
    return settings if settings is not None else ControllerSettings.from_env()


def _resolve_exec_path(settings: ControllerSettings) -> str:
    # $IPFS_EXEC was already folded into settings by from_env()
    return locate_executable(settings.exec_path, env={}, install_dir=settings.install_dir)


def _subprocess_env(settings: ControllerSettings, repo_path: Path | None = None) -> dict[str, str]:
    """Inherited environment plus settings.env, with IPFS_PATH pinned to the repo."""
    env = {**os.environ, **settings.env}
    if repo_path is not None:
        env[IPFS_PATH_ENV] = str(repo_path)
    return env


def _default_repo_path() -> Path:
    from_env = os.environ.get(IPFS_PATH_ENV, "")
    if from_env:
        return Path(from_env)
    return Path.home() / DEFAULT_REPO_DIRNAME


def merge_config(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge two nested config mappings; overrides win on conflicts.

    Only mappings are merged recursively; lists and scalars are replaced.
    """
    merged = copy.deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def local(
    repo_path: Path | str | None = None,
    config: Mapping[str, Any] | None = None,
    *,
    settings: ControllerSettings | None = None,
) -> Node:
    """Create a node for a persistent repository. The repository is not touched.

    Args:
        repo_path: Repository directory (default: $IPFS_PATH, else ~/.ipfs).
        config: Nested config applied when the node is initialized.
        settings: Controller settings (default: ControllerSettings.from_env()).

    Returns:
        Node in state initialized if the repository has a config, else
        uninitialized.

    Raises:
        ExecutableNotFound: If no ipfs binary can be located.
    """
    settings = _resolve_settings(settings)
    exec_path = _resolve_exec_path(settings)
    path = Path(repo_path if repo_path is not None else _default_repo_path()).expanduser().resolve()

    return Node(
        path,
        exec_path,
        env=_subprocess_env(settings, path),
        disposable=False,
        config_overrides=config,
        settings=settings,
    )


async def disposable(
    config: Mapping[str, Any] | None = None,
    *,
    settings: ControllerSettings | None = None,
) -> Node:
    """Create and initialize a node on a fresh temp repository.

    The repository is configured for tests: API and Gateway on 127.0.0.1
    with OS-assigned ports, swarm on an OS-assigned port, no bootstrap
    peers and no MDNS. `config` is merged on top. The repository is
    deleted when the node is stopped.

    Args:
        config: Extra nested config, merged over the disposable defaults.
        settings: Controller settings (default: ControllerSettings.from_env()).

    Returns:
        Initialized Node.

    Raises:
        ExecutableNotFound: If no ipfs binary can be located.
        InitFailed: If `ipfs init` fails (the temp directory is removed).
        InvalidConfigValue: If a config value is rejected.
    """
    settings = _resolve_settings(settings)
    exec_path = _resolve_exec_path(settings)
    path = make_temp_repo_path(settings.disposable_prefix)

    node = Node(
        path,
        exec_path,
        env=_subprocess_env(settings, path),
        disposable=True,
        config_overrides=merge_config(DISPOSABLE_CONFIG, config or {}),
        settings=settings,
    )
    try:
        await node.init()
    except BaseException:
        # Stopping a disposable node that never ran only removes its repository
        await node.stop_daemon()
        raise
    return node


async def disposable_api(
    config: Mapping[str, Any] | None = None,
    *,
    settings: ControllerSettings | None = None,
) -> tuple[Node, IpfsApiClient]:
    """Create a disposable node, start its daemon and connect an API client.

    The caller owns both: close the client, then stop the node.

    Returns:
        (node, client) with the daemon running.

    Raises:
        Everything disposable() and Node.start_daemon() raise.
    """
    settings = _resolve_settings(settings)
    node = await disposable(config, settings=settings)
    try:
        addresses = await node.start_daemon()
    except BaseException:
        await node.stop_daemon()
        raise
    return node, IpfsApiClient(addresses.api, timeout=settings.api_timeout_seconds)


async def version(*, settings: ControllerSettings | None = None) -> str:
    """Return the trimmed output of `ipfs version`.

    Raises:
        ExecutableNotFound: If no ipfs binary can be located.
        SpawnFailed: If the binary cannot be started.
        IpfsdCtlError: If the command exits non-zero.
    """
    settings = _resolve_settings(settings)
    exec_path = _resolve_exec_path(settings)
    result = await run_command(
        exec_path,
        [CMD_VERSION],
        env=_subprocess_env(settings),
        timeout=settings.command_timeout_seconds,
    )
    if result.returncode != 0:
        diagnostic = result.stderr.strip() or result.stdout.strip()
        log_event(
            logging.ERROR,
            ControllerEvent(
                event="version_failed",
                message=f"ipfs version failed: {diagnostic}",
                error_message=diagnostic,
                details={"exec_path": exec_path, "returncode": result.returncode},
            ),
        )
        raise IpfsdCtlError(f"ipfs version failed: {diagnostic}", detail=diagnostic)
    return result.stdout.strip()
