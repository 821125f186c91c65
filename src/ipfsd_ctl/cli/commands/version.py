"""Version command for ipfsd-ctl CLI."""

from __future__ import annotations

__all__ = ["version"]

import asyncio
import sys

import click

from ipfsd_ctl import factory
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.exceptions import IpfsdCtlError

from ..styling import style_error


@click.command()
@click.pass_obj
def version(settings: ControllerSettings) -> None:
    """Show the version reported by the ipfs binary."""
    try:
        output = asyncio.run(factory.version(settings=settings))
    except IpfsdCtlError as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)
    click.echo(output)
