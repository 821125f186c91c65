"""Controller settings for ipfsd-ctl.

Every knob that used to be read from global environment variables deep
inside the controller is an explicit field here. Environment lookups happen
only in ControllerSettings.from_env(), which the factory functions call at
the outermost boundary when no settings are passed in.

Example usage:
    # Explicit settings (tests, embedding applications)
    settings = ControllerSettings(exec_path="/usr/local/bin/ipfs", start_timeout_seconds=60)

    # Settings from the process environment ($IPFS_EXEC, ...)
    settings = ControllerSettings.from_env()
"""

from __future__ import annotations

__all__ = [
    "ControllerSettings",
]

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from ipfsd_ctl.constants import (
    DEFAULT_API_TIMEOUT_SECONDS,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_DISPOSABLE_PREFIX,
    DEFAULT_INIT_FLAGS,
    DEFAULT_KILL_TIMEOUT_SECONDS,
    DEFAULT_START_TIMEOUT_SECONDS,
    DEFAULT_STOP_GRACE_TIMEOUT_SECONDS,
    INSTALL_DIR_ENV,
    IPFS_EXEC_ENV,
    MAX_START_TIMEOUT_SECONDS,
)


class ControllerSettings(BaseModel):
    """Settings shared by the factories and every Node they create.

    Attributes:
        exec_path: Explicit ipfs binary. None = run executable discovery.
        install_dir: Pretend install location for discovery (test seam).
            None = the ipfsd_ctl package directory.
        start_timeout_seconds: Readiness window for start_daemon, from spawn.
        stop_grace_timeout_seconds: Wait after SIGTERM before SIGKILL.
        kill_timeout_seconds: Wait after SIGKILL before reporting StopFailed.
        command_timeout_seconds: Limit for init/config/version subcommands.
        api_timeout_seconds: HTTP timeout for the API client.
        init_flags: Flags passed to `ipfs init` when the caller gives none.
        env: Extra environment for every ipfs subprocess.
        disposable_prefix: Name prefix for disposable repository directories.
    """

    exec_path: str | None = Field(default=None, min_length=1)
    install_dir: str | None = Field(default=None, min_length=1)
    start_timeout_seconds: float = Field(
        default=DEFAULT_START_TIMEOUT_SECONDS,
        gt=0,
        le=MAX_START_TIMEOUT_SECONDS,
        description="Readiness timeout for start_daemon",
    )
    stop_grace_timeout_seconds: float = Field(
        default=DEFAULT_STOP_GRACE_TIMEOUT_SECONDS,
        ge=0,
        description="Grace period between SIGTERM and SIGKILL",
    )
    kill_timeout_seconds: float = Field(default=DEFAULT_KILL_TIMEOUT_SECONDS, gt=0)
    command_timeout_seconds: float = Field(default=DEFAULT_COMMAND_TIMEOUT_SECONDS, gt=0)
    api_timeout_seconds: float = Field(default=DEFAULT_API_TIMEOUT_SECONDS, gt=0)
    init_flags: list[str] = Field(default_factory=lambda: list(DEFAULT_INIT_FLAGS))
    env: dict[str, str] = Field(default_factory=dict)
    disposable_prefix: str = Field(default=DEFAULT_DISPOSABLE_PREFIX, min_length=1)

    model_config = {"extra": "ignore"}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> ControllerSettings:
        """Build settings, filling unset discovery fields from the environment.

        Empty environment values are treated as unset.

        Args:
            environ: Environment to read (default: os.environ).
            **overrides: Field values that take precedence over the environment.

        Returns:
            ControllerSettings: Validated settings.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}

        exec_path = environ.get(IPFS_EXEC_ENV, "")
        if exec_path:
            values["exec_path"] = exec_path

        install_dir = environ.get(INSTALL_DIR_ENV, "")
        if install_dir:
            values["install_dir"] = install_dir

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)
