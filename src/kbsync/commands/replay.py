"""Command: replay a notification capture through the router."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from kbsync.commands._base import KbCommand

if TYPE_CHECKING:
    from kbsync.commands._context import AppContext


@click.command(
    cls=KbCommand,
    examples="""\
  kbsync replay session.jsonl
  kbsync --json replay session.jsonl""",
)
@click.argument("capture", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def replay(app: AppContext, capture: Path) -> None:
    """Publish every envelope in CAPTURE (JSON Lines) and report topic counts."""
    from kbsync.services.inspect import InspectService

    app.emit(InspectService(app.settings).replay_capture(capture))
