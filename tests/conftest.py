"""Shared fixtures: a scripted fake ipfs binary and fast controller settings.

The fake binary (tests/fake_ipfs.py) is launched through a generated shell
wrapper that execs the current interpreter, so signals sent to the daemon
pid reach the script directly.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.constants import APP_NAME

FAKE_IPFS_SCRIPT = Path(__file__).parent / "fake_ipfs.py"

# Loopback listeners on ephemeral ports so tests never collide on 5001/8080
LOOPBACK_CONFIG: dict[str, Any] = {
    "Addresses": {
        "API": "/ip4/127.0.0.1/tcp/0",
        "Gateway": "/ip4/127.0.0.1/tcp/0",
    },
}


@pytest.fixture
def fake_ipfs(tmp_path: Path) -> Path:
    """Executable wrapper around the fake ipfs script."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    wrapper = bin_dir / "ipfs"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_IPFS_SCRIPT}" "$@"\n')
    wrapper.chmod(0o755)
    return wrapper


@pytest.fixture
def settings(fake_ipfs: Path) -> ControllerSettings:
    """Controller settings pointing at the fake binary, with short timeouts."""
    return ControllerSettings(
        exec_path=str(fake_ipfs),
        start_timeout_seconds=15,
        stop_grace_timeout_seconds=2,
        kill_timeout_seconds=5,
        command_timeout_seconds=30,
    )


@pytest.fixture
def repo_path(tmp_path: Path) -> Path:
    """Not-yet-existing repository directory."""
    return tmp_path / "repo"


@pytest.fixture
def loopback_config() -> dict[str, Any]:
    """Config overrides for local nodes: loopback listeners on ephemeral ports."""
    return {"Addresses": dict(LOOPBACK_CONFIG["Addresses"])}


@pytest.fixture
def mode_settings(settings: ControllerSettings) -> Callable[..., ControllerSettings]:
    """Build settings that run the fake binary in a given FAKE_IPFS_MODE."""

    def _with_mode(mode: str, **updates: Any) -> ControllerSettings:
        return settings.model_copy(update={"env": {**settings.env, "FAKE_IPFS_MODE": mode}, **updates})

    return _with_mode


@pytest.fixture
def restore_logger() -> Iterator[None]:
    """Undo configure_logging() after a test."""
    logger = logging.getLogger(APP_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
