"""Access to a repository's on-disk JSON configuration.

Reads go straight to <repo>/config. Writes are delegated to the daemon's
own `config` subcommand so that its validation is authoritative: a value the
daemon rejects surfaces as InvalidConfigValue carrying the daemon's message
verbatim, and the document is left unchanged.
"""

from __future__ import annotations

__all__ = [
    "ConfigStore",
    "config_path",
    "flatten_config",
    "render_value",
]

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ipfsd_ctl.constants import APP_NAME, CMD_CONFIG, CONFIG_FILENAME, IPFS_PATH_ENV
from ipfsd_ctl.exceptions import ConfigKeyNotFound, ConfigReadError, InvalidConfigValue, RepoNotInitialized
from ipfsd_ctl.models import ControllerEvent
from ipfsd_ctl.log_config import log_event
from ipfsd_ctl.process import run_command

_logger = logging.getLogger(APP_NAME)


def config_path(repo_path: Path | str) -> Path:
    """Location of the config document inside a repository."""
    return Path(repo_path) / CONFIG_FILENAME


def render_value(value: Any) -> str:
    """Render a config value the way `ipfs config <key>` prints it.

    Strings are printed raw, everything else as indented JSON
    (so None renders as "null").
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2)


def flatten_config(config: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten a nested config mapping into dotted-key leaves.

    Nested mappings are descended into; lists and scalars are leaves.
    Keys that already contain dots are kept as given.

    Example:
        >>> flatten_config({"Addresses": {"API": "/ip4/127.0.0.1/tcp/0"}, "Bootstrap": []})
        {'Addresses.API': '/ip4/127.0.0.1/tcp/0', 'Bootstrap': []}
    """
    flat: dict[str, Any] = {}
    for key, value in config.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flat.update(flatten_config(value, dotted))
        else:
            flat[dotted] = value
    return flat


class ConfigStore:
    """Reads and writes the config of repositories served by one ipfs binary.

    Usage:
        store = ConfigStore("/usr/local/bin/ipfs")
        doc = await store.read_all(repo)
        api = await store.read_path(repo, "Addresses.API")
        await store.write_path(repo, "Bootstrap", "null")
    """

    def __init__(
        self,
        exec_path: str,
        env: Mapping[str, str] | None = None,
        command_timeout: float | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            exec_path: ipfs binary used for writes.
            env: Base environment for subprocesses (default: os.environ).
                IPFS_PATH is always set to the target repository.
            command_timeout: Limit for each `ipfs config` invocation.
        """
        self.exec_path = exec_path
        self._env = dict(os.environ if env is None else env)
        self._command_timeout = command_timeout

    async def read_all(self, repo_path: Path | str) -> dict[str, Any]:
        """Read the whole config document.

        Raises:
            RepoNotInitialized: If the config file does not exist.
            ConfigReadError: If the file is not a JSON object.
        """
        path = config_path(repo_path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise RepoNotInitialized(repo_path) from None
        except OSError as e:
            raise ConfigReadError(f"Failed to read {path}: {e}", detail=str(e)) from e

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigReadError(f"Invalid JSON in {path}: {e}", detail=str(e)) from e

        if not isinstance(document, dict):
            raise ConfigReadError(f"Config document in {path} is not a JSON object")
        return document

    async def read_path(self, repo_path: Path | str, dotted_key: str) -> Any:
        """Read one value by dotted key, e.g. "Addresses.API".

        Raises:
            RepoNotInitialized: If the config file does not exist.
            ConfigKeyNotFound: If any segment is missing.
        """
        node: Any = await self.read_all(repo_path)
        for segment in dotted_key.split("."):
            if not isinstance(node, dict) or segment not in node:
                raise ConfigKeyNotFound(dotted_key)
            node = node[segment]
        return node

    async def write_path(self, repo_path: Path | str, dotted_key: str, value_json: str) -> None:
        """Set one value through `ipfs config <key> <value> --json`.

        Args:
            repo_path: Target repository.
            dotted_key: Key to set.
            value_json: New value as JSON text (e.g. 'null', '["/ip4/..."]').

        Raises:
            RepoNotInitialized: If the config file does not exist.
            InvalidConfigValue: If the daemon rejects the value.
        """
        if not config_path(repo_path).exists():
            raise RepoNotInitialized(repo_path)

        env = {**self._env, IPFS_PATH_ENV: str(repo_path)}
        result = await run_command(
            self.exec_path,
            [CMD_CONFIG, dotted_key, value_json, "--json"],
            env=env,
            timeout=self._command_timeout,
        )
        if result.returncode != 0:
            diagnostic = result.stderr.strip() or result.stdout.strip()
            log_event(
                logging.WARNING,
                ControllerEvent(
                    event="config_set_rejected",
                    message=f"Daemon rejected config value for {dotted_key}",
                    repo_path=str(repo_path),
                    error_message=diagnostic,
                    details={"key": dotted_key, "returncode": result.returncode},
                ),
            )
            raise InvalidConfigValue(diagnostic or f"failed to set config value for {dotted_key}", detail=diagnostic)

        _logger.debug(f"Set config {dotted_key} in {repo_path}")
