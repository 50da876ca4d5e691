"""The ``kbsync`` command group."""

from __future__ import annotations

import click

from kbsync import __version__
from kbsync.commands import register_commands
from kbsync.commands._context import AppContext
from kbsync.config.settings import KbSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="kbsync")
@click.option("--json", "json_output", is_flag=True, help="Print results as JSON.")
@click.option("-q", "--quiet", is_flag=True, help="Print only the status line.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging, including RPC traffic.")
@click.option("--log-json", is_flag=True, help="Write logs to stderr as JSON lines.")
@click.option("--no-color", is_flag=True, help="Disable colored output.")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Read this file instead of discovering kbsync.toml.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, **flags: bool) -> None:
    """kbsync: keymap schema checks and notification replay."""
    ctx.obj = AppContext(KbSettings.from_cli(config_path=config_path, **flags))
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
