"""Start command for ipfsd-ctl CLI.

Runs a daemon in the foreground until Ctrl+C, then stops it cleanly
(SIGTERM, escalating to SIGKILL) and removes stale lock files.
"""

from __future__ import annotations

__all__ = ["start"]

import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

import click

from ipfsd_ctl import factory
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.exceptions import IpfsdCtlError
from ipfsd_ctl.node import Node

from ..styling import style_dim, style_error, style_label, style_success


async def _run_foreground(node: Node, init_first: bool, daemon_args: Sequence[str]) -> None:
    if init_first:
        await node.init()

    async with node:
        addresses = await node.start_daemon(daemon_args)
        click.echo(style_success(f"Daemon running (pid: {node.daemon_pid()})"))
        click.echo(f"  {style_label('API')} {addresses.api} ({addresses.api.url})")
        click.echo(f"  {style_label('Gateway')} {addresses.gateway} ({addresses.gateway.url})")
        click.echo()
        click.echo(style_dim("Press Ctrl+C to stop"))
        # Cancelled by asyncio.run on Ctrl+C; leaving the block stops the daemon
        await asyncio.Event().wait()


@click.command(context_settings={"ignore_unknown_options": True})
@click.argument("repo", type=click.Path(file_okay=False, path_type=Path))
@click.argument("daemon_args", nargs=-1, type=click.UNPROCESSED)
@click.option("--init", "init_first", is_flag=True, help="Initialize the repository first if needed")
@click.pass_obj
def start(settings: ControllerSettings, repo: Path, daemon_args: tuple[str, ...], init_first: bool) -> None:
    """Run a daemon for REPO in the foreground.

    Extra DAEMON_ARGS (after --) are passed to `ipfs daemon` untouched.
    """
    try:
        node = factory.local(repo, settings=settings)
        asyncio.run(_run_foreground(node, init_first, list(daemon_args)))
    except KeyboardInterrupt:
        click.echo()
        click.echo("Daemon stopped.")
    except IpfsdCtlError as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)
