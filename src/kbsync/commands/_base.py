"""Shared Click pieces for kbsync commands.

``KbCommand`` adds an ``--examples`` flag that prints canned invocations
and exits, so ``--help`` stays short.  The parameter types parse the
integer forms keymap values are usually written in.
"""

from __future__ import annotations

from typing import Any

import click


class KbCommand(click.Command):
    """Command accepting ``examples=`` and exposing it as ``--examples``."""

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.examples = examples
        if examples:
            self.params.append(
                click.Option(
                    ["--examples"],
                    is_flag=True,
                    expose_value=False,
                    is_eager=True,
                    callback=self._print_examples,
                    help="Show usage examples.",
                )
            )

    def _print_examples(self, ctx: click.Context, _param: click.Parameter, value: bool) -> None:
        if not value:
            return
        click.echo(f"Examples for '{ctx.command_path}':\n")
        click.echo(self.examples)
        ctx.exit(0)


class IntOrHex(click.ParamType):
    """Integer accepting ``0x``/``0o``/``0b`` prefixes; HID usages are usually hex."""

    name = "integer"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> int:
        if isinstance(value, int):
            return value
        try:
            return int(str(value), 0)
        except ValueError:
            self.fail(f"{value!r} is not an integer", param, ctx)


class LayerIdList(click.ParamType):
    """Comma-separated layer ids, e.g. ``0,1,2``."""

    name = "layer-ids"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> list[int]:
        if isinstance(value, list):
            return value
        try:
            return [int(part, 0) for part in str(value).split(",") if part.strip()]
        except ValueError:
            self.fail(f"expected comma-separated integers, got {value!r}", param, ctx)


INT_OR_HEX = IntOrHex()
LAYER_IDS = LayerIdList()
