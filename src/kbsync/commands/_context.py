"""AppContext: the object Click passes to every kbsync command.

Built once by the root group.  Setting it up configures logging; ``emit``
is the single exit path for command results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from kbsync.config.logging import configure_logging
from kbsync.output.formatters import format_result

if TYPE_CHECKING:
    from kbsync.config.settings import KbSettings
    from kbsync.services.result import ServiceResult


class AppContext:
    def __init__(self, settings: KbSettings) -> None:
        self.settings = settings
        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

    def emit(self, result: ServiceResult) -> None:
        """Print *result* and exit 1 if it is a failure.

        Successful output goes to stdout with warnings on stderr (JSON output
        already carries them).  Failures go to stderr.
        """
        rendered = format_result(
            result,
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            no_color=self.settings.no_color,
        )
        if not result.ok:
            click.echo(rendered, err=True)
            raise SystemExit(1)

        click.echo(rendered)
        if not self.settings.json_output:
            for warning in result.warnings:
                click.echo(f"WARNING: {warning}", err=True)
