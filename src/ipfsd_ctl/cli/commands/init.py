"""Init command for ipfsd-ctl CLI.

Initializes a repository (a no-op if it already has a config).
"""

from __future__ import annotations

__all__ = ["init"]

import asyncio
import sys
from pathlib import Path

import click

from ipfsd_ctl import factory
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.exceptions import IpfsdCtlError

from ..styling import style_error, style_success, style_warning


@click.command()
@click.argument("repo", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--flag",
    "flags",
    multiple=True,
    help="Flag passed to `ipfs init` (repeatable, e.g. --flag=--profile=test). "
    "Replaces the default key size flags.",
)
@click.pass_obj
def init(settings: ControllerSettings, repo: Path, flags: tuple[str, ...]) -> None:
    """Initialize the repository at REPO."""
    try:
        node = factory.local(repo, settings=settings)
    except IpfsdCtlError as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)

    if node.initialized:
        click.echo(style_warning(f"Repository already initialized: {node.repo_path}"))
        return

    try:
        asyncio.run(node.init(list(flags) if flags else None))
    except IpfsdCtlError as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)

    click.echo(style_success(f"Initialized repository: {node.repo_path}"))
