"""Allow ``python -m kbsync``."""

from kbsync.cli import cli

cli()
