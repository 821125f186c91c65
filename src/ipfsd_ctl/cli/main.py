"""Main CLI entry point for ipfsd-ctl.

Defines the CLI group and registers all subcommands.

Commands:
    config   - Read or set repository configuration
    init     - Initialize a repository
    start    - Run a daemon in the foreground until Ctrl+C
    version  - Show the ipfs binary's version

Subcommand help:
    ipfsd-ctl COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import sys

import click
from pydantic import ValidationError

from ipfsd_ctl import __version__
from ipfsd_ctl.config import ControllerSettings
from ipfsd_ctl.log_config import configure_logging, default_log_path

from .commands.config import config
from .commands.init import init
from .commands.start import start
from .commands.version import version
from .styling import style_error


class ReorderedGroup(click.Group):
    """Group that shows examples after the commands section."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        formatter.write(
            """
Examples:
  ipfsd-ctl init ~/my-repo                      Initialize a repository
  ipfsd-ctl config ~/my-repo Addresses.API      Show one config value
  ipfsd-ctl config ~/my-repo Bootstrap null --json
  ipfsd-ctl start ~/my-repo -- --offline        Run a daemon until Ctrl+C
  ipfsd-ctl --log start ~/my-repo               Same, with JSONL events in the log dir

Binary selection (first match wins):
  --exec PATH, $IPFS_EXEC, bundled go-ipfs-dep, ipfs on $PATH
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", "show_version", is_flag=True, help="Show version")
@click.option("--exec", "exec_path", type=click.Path(dir_okay=False), default=None, help="ipfs binary to use")
@click.option("--debug", is_flag=True, help="Log controller and daemon output to stderr")
@click.option("--log", "log_to_file", is_flag=True, help="Also append JSONL events to the user log directory")
@click.pass_context
def cli(ctx: click.Context, show_version: bool, exec_path: str | None, debug: bool, log_to_file: bool) -> None:
    """ipfsd-ctl: spawn and control ipfs daemons."""
    if show_version:
        click.echo(f"ipfsd-ctl {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    if debug or log_to_file:
        configure_logging(default_log_path() if log_to_file else None, level="DEBUG" if debug else "INFO")

    try:
        ctx.obj = ControllerSettings.from_env(exec_path=exec_path)
    except ValidationError as e:
        click.echo(style_error(f"Invalid settings: {e}"), err=True)
        sys.exit(1)


# Register commands
cli.add_command(config)
cli.add_command(init)
cli.add_command(start)
cli.add_command(version)


def main() -> None:
    """CLI entry point."""
    cli()
