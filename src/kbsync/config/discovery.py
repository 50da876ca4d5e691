"""Locating and reading ``kbsync.toml``.

The file is looked up the way git looks for ``.git/``: the start directory
first, then each parent.  ``KBSYNC_CONFIG`` names a file directly and
disables the walk.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import click

CONFIG_FILENAME = "kbsync.toml"
CONFIG_ENV_VAR = "KBSYNC_CONFIG"


def config_candidates(start: Path) -> Iterator[Path]:
    """Yield every place a config file may live, nearest first."""
    start = start.resolve()
    for directory in (start, *start.parents):
        yield directory / CONFIG_FILENAME


def find_config(start: Path | None = None) -> Path | None:
    """Return the config file that applies to *start* (default: cwd), if any."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        path = Path(override).expanduser()
        return path if path.is_file() else None
    return next((p for p in config_candidates(start or Path.cwd()) if p.is_file()), None)


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a config file, reporting bad TOML as a CLI error."""
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise click.ClickException(msg) from exc
