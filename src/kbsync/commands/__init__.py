"""Subcommand modules for kbsync.

Provides register_commands() which uses deferred imports to keep
``kbsync --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the standalone commands on the root CLI group."""
    from kbsync.commands.replay import replay
    from kbsync.commands.validate import validate

    cli.add_command(validate)
    cli.add_command(replay)
