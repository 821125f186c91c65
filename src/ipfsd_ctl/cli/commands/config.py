"""Config command for ipfsd-ctl CLI.

    ipfsd-ctl config REPO                 Print the whole config document
    ipfsd-ctl config REPO KEY             Print one value
    ipfsd-ctl config REPO KEY VALUE       Set a string value
    ipfsd-ctl config REPO KEY VALUE --json
                                          Set a value given as JSON text
"""

from __future__ import annotations

__all__ = ["config"]

import asyncio
import json
import sys
from pathlib import Path

import click

from ipfsd_ctl import factory
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.exceptions import IpfsdCtlError
from ipfsd_ctl.node import Node

from ..styling import style_error, style_success


async def _read(node: Node, key: str | None) -> str:
    value = await node.get_config(key)
    if key is None:
        return json.dumps(value, indent=2)
    return value


@click.command()
@click.argument("repo", type=click.Path(file_okay=False, path_type=Path))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--json", "as_json", is_flag=True, help="Treat VALUE as JSON text")
@click.pass_obj
def config(settings: ControllerSettings, repo: Path, key: str | None, value: str | None, as_json: bool) -> None:
    """Read or set configuration of the repository at REPO."""
    try:
        node = factory.local(repo, settings=settings)
        if value is None:
            click.echo(asyncio.run(_read(node, key)))
            return
        assert key is not None  # click fills positionals in order
        asyncio.run(node.set_config(key, value if as_json else json.dumps(value)))
    except IpfsdCtlError as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(1)

    click.echo(style_success(f"Set {key}"))
