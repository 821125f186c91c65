"""Executable discovery for the ipfs binary.

Resolution order:
1. Explicit override argument (returned as-is)
2. $IPFS_EXEC (returned as-is)
3. Dependency package installed next to ipfsd_ctl ("flat" layout):
       <install_dir>/../go-ipfs-dep/go-ipfs/ipfs
4. Dependency package vendored inside ipfsd_ctl ("nested" layout):
       <install_dir>/_deps/go-ipfs-dep/go-ipfs/ipfs
5. ipfs on $PATH

Overrides are trusted without an existence check so that a bad path
surfaces as SpawnFailed when the binary is first run. Computed candidates
must exist on disk.
"""

from __future__ import annotations

__all__ = [
    "candidate_paths",
    "default_install_dir",
    "locate_executable",
]

import os
import shutil
from collections.abc import Mapping
from pathlib import Path

from ipfsd_ctl.constants import (
    BINARY_NAME,
    DEPENDENCY_BINARY_DIR,
    DEPENDENCY_PACKAGE,
    IPFS_EXEC_ENV,
    NESTED_DEPS_DIR,
)
from ipfsd_ctl.exceptions import ExecutableNotFound


def default_install_dir() -> Path:
    """Directory the ipfsd_ctl package is installed in."""
    return Path(__file__).resolve().parent


def candidate_paths(install_dir: Path | str | None = None) -> list[Path]:
    """Dependency-relative binary locations, flat layout first.

    Args:
        install_dir: Controller install location (default: package directory).

    Returns:
        [flat_candidate, nested_candidate]
    """
    base = Path(install_dir) if install_dir is not None else default_install_dir()
    tail = Path(DEPENDENCY_PACKAGE) / DEPENDENCY_BINARY_DIR / BINARY_NAME
    flat = base.parent / tail
    nested = base / NESTED_DEPS_DIR / tail
    return [Path(os.path.normpath(flat)), Path(os.path.normpath(nested))]


def locate_executable(
    explicit: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    install_dir: Path | str | None = None,
) -> str:
    """Resolve the path of the ipfs binary.

    Args:
        explicit: Caller-supplied path; wins over everything else.
        env: Environment to consult for $IPFS_EXEC (default: os.environ).
        install_dir: Controller install location used for the
            dependency-relative candidates.

    Returns:
        Path to the binary as a string.

    Raises:
        ExecutableNotFound: If no candidate exists.
    """
    if explicit:
        return explicit

    environ = os.environ if env is None else env
    from_env = environ.get(IPFS_EXEC_ENV, "")
    if from_env:
        return from_env

    tried: list[str] = []
    for candidate in candidate_paths(install_dir):
        tried.append(str(candidate))
        if candidate.is_file():
            return str(candidate)

    on_path = shutil.which(BINARY_NAME)
    if on_path is not None:
        return on_path
    tried.append(f"$PATH/{BINARY_NAME}")

    raise ExecutableNotFound(tried)
