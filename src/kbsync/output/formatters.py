"""Rich/JSON output helpers.

The CLI renders ServiceResult for humans (Rich output, colors) or
machines (--json).  Nested mappings such as replay topic counts render as
a table; everything else as indented key/value lines.
"""

from __future__ import annotations

import json as _json
from io import StringIO
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

if TYPE_CHECKING:
    from kbsync.services.result import ServiceResult

KB_THEME = Theme(
    {
        "kb.ok": "bold green",
        "kb.error": "bold red",
        "kb.op": "bold cyan",
        "kb.key": "dim",
        "kb.topic": "magenta",
    }
)


def _buffered_console(no_color: bool) -> Console:
    # Rendered into a buffer so callers decide between stdout and stderr.
    return Console(file=StringIO(), theme=KB_THEME, no_color=no_color, highlight=False, width=120)


def _render_data(console: Console, data: dict[str, Any]) -> None:
    tables: list[tuple[str, dict[str, Any]]] = []
    for key, value in data.items():
        if isinstance(value, dict) and value:
            tables.append((key, value))
        elif isinstance(value, (dict, list)):
            console.print(f"  [kb.key]{escape(key)}:[/] {escape(_json.dumps(value))}")
        else:
            console.print(f"  [kb.key]{escape(key)}:[/] {escape(str(value))}")

    for key, mapping in tables:
        table = Table(title=key, show_header=False, box=None, padding=(0, 2))
        for name, count in mapping.items():
            table.add_row(f"[kb.topic]{escape(str(name))}[/]", escape(str(count)))
        console.print(table)


def format_result(
    result: ServiceResult,
    *,
    json_output: bool = False,
    quiet: bool = False,
    no_color: bool = False,
) -> str:
    """Format a ServiceResult for display.

    Args:
        result: The service result to format.
        json_output: If True, return JSON; otherwise return human-readable text.
        quiet: Human mode only: print just the status line.
        no_color: Human mode only: suppress ANSI styling.
    """
    if json_output:
        return result.model_dump_json(indent=2)

    console = _buffered_console(no_color)
    if result.ok:
        console.print(f"[kb.ok]OK:[/] [kb.op]{escape(result.op)}[/]")
        if result.data and not quiet:
            _render_data(console, result.data)
    else:
        message = result.error.message if result.error else "Unknown error"
        console.print(f"[kb.error]ERROR:[/] [kb.op]{escape(result.op)}[/] - {escape(message)}")
        if result.error and result.error.detail and not quiet:
            _render_data(console, result.error.detail)
    assert isinstance(console.file, StringIO)
    return console.file.getvalue().rstrip("\n")
