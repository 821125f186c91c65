"""Repository directory management.

Handles:
- Directory creation and disposable temp directories
- Initialization state (presence of the config file)
- `ipfs init`
- Stale artifact cleanup (repo.lock, api) after the daemon exits
- Recursive removal of disposable repositories
"""

from __future__ import annotations

__all__ = [
    "destroy",
    "ensure_directory",
    "init_repo",
    "is_initialized",
    "make_temp_repo_path",
    "remove_stale_artifacts",
]

import logging
import os
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path

from ipfsd_ctl.constants import API_FILENAME, CMD_INIT, IPFS_PATH_ENV, LOCK_FILENAME
from ipfsd_ctl.config_store import config_path
from ipfsd_ctl.exceptions import InitFailed
from ipfsd_ctl.log_config import log_event
from ipfsd_ctl.models import ControllerEvent
from ipfsd_ctl.process import run_command

# Files the daemon leaves behind if it does not shut down cleanly
STALE_ARTIFACTS: tuple[str, ...] = (LOCK_FILENAME, API_FILENAME)


def ensure_directory(repo_path: Path | str) -> Path:
    """Create the repository directory (and parents) if absent."""
    path = Path(repo_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_initialized(repo_path: Path | str) -> bool:
    """True iff the repository has a config file."""
    return config_path(repo_path).is_file()


def make_temp_repo_path(prefix: str) -> Path:
    """Create a fresh, uniquely named temp directory for a disposable repository."""
    return Path(tempfile.mkdtemp(prefix=prefix)).resolve()


async def init_repo(
    repo_path: Path | str,
    exec_path: str,
    extra_flags: Sequence[str] = (),
    *,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> bool:
    """Run `ipfs init` against a repository.

    Args:
        repo_path: Repository to initialize (created if absent).
        exec_path: ipfs binary.
        extra_flags: Flags appended to `init`, passed through untouched.
        env: Base environment (default: os.environ). IPFS_PATH is set to repo_path.
        timeout: Limit for the init command.

    Returns:
        True if init ran, False if the repository was already initialized.

    Raises:
        InitFailed: If `ipfs init` exits non-zero (stderr kept verbatim).
        SpawnFailed: If the binary cannot be started.
    """
    if is_initialized(repo_path):
        return False

    ensure_directory(repo_path)
    child_env = {**(os.environ if env is None else env), IPFS_PATH_ENV: str(repo_path)}
    result = await run_command(exec_path, [CMD_INIT, *extra_flags], env=child_env, timeout=timeout)

    if result.returncode != 0:
        diagnostic = result.stderr.strip() or result.stdout.strip()
        log_event(
            logging.ERROR,
            ControllerEvent(
                event="init_failed",
                message=f"ipfs init failed: {diagnostic}",
                repo_path=str(repo_path),
                error_message=diagnostic,
                details={"returncode": result.returncode, "flags": list(extra_flags)},
            ),
        )
        raise InitFailed(f"Failed to initialize repository {repo_path}: {diagnostic}", detail=diagnostic)

    log_event(
        logging.INFO,
        ControllerEvent(
            event="repo_initialized",
            message=f"Initialized repository {repo_path}",
            repo_path=str(repo_path),
        ),
    )
    return True


def remove_stale_artifacts(repo_path: Path | str) -> list[Path]:
    """Remove repo.lock and api if present. Never raises.

    Returns:
        Paths that were removed.
    """
    removed: list[Path] = []
    for name in STALE_ARTIFACTS:
        artifact = Path(repo_path) / name
        try:
            artifact.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            log_event(
                logging.WARNING,
                ControllerEvent(
                    event="stale_artifact_cleanup_failed",
                    message=f"Failed to remove {artifact}",
                    repo_path=str(repo_path),
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )
            continue
        removed.append(artifact)

    if removed:
        log_event(
            logging.INFO,
            ControllerEvent(
                event="stale_artifacts_removed",
                message=f"Removed stale files: {', '.join(p.name for p in removed)}",
                repo_path=str(repo_path),
            ),
        )
    return removed


def destroy(repo_path: Path | str) -> None:
    """Recursively delete a repository. A missing directory is not an error."""
    path = Path(repo_path)
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    log_event(
        logging.INFO,
        ControllerEvent(
            event="repo_destroyed",
            message=f"Removed repository {path}",
            repo_path=str(path),
        ),
    )
