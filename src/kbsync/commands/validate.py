"""Command: check binding parameters against a behavior schema."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from kbsync.commands._base import INT_OR_HEX, LAYER_IDS, KbCommand

if TYPE_CHECKING:
    from kbsync.commands._context import AppContext


@click.command(
    cls=KbCommand,
    examples="""\
  kbsync validate layer-tap.json 1 0x070004 --layers 0,1,2
  kbsync validate momentary-layer.json 2 --layers 0,1,2
  kbsync --json validate key-press.json 0x070004""",
)
@click.argument("schema", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("param1", type=INT_OR_HEX, required=False)
@click.argument("param2", type=INT_OR_HEX, required=False)
@click.option("--layers", type=LAYER_IDS, default=None, help="Layer ids present on the device.")
@click.pass_obj
def validate(
    app: AppContext,
    schema: Path,
    param1: int | None,
    param2: int | None,
    layers: list[int] | None,
) -> None:
    """Check PARAM1/PARAM2 against the parameter sets in SCHEMA (JSON)."""
    from kbsync.services.inspect import InspectService

    app.emit(InspectService(app.settings).check_binding(schema, param1, param2, layer_ids=layers))
