"""Log output for kbsync, rendered by structlog.

Modules log with ``logging.getLogger(__name__)``.  ``configure_logging``
routes those records through structlog's ProcessorFormatter so they come
out either as console lines or, with ``--log-json``, as one JSON object per
line on stderr.  While a device is connected its name is bound as the
``device`` field on every record.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Third-party loggers held at WARNING even under --verbose.
QUIET_LOGGERS = ("asyncio",)


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_json: bool) -> structlog.types.Processor:
    if log_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(*, verbose: bool = False, log_json: bool = False) -> None:
    """Install the stderr handler and set kbsync's log level.

    Args:
        verbose: Log kbsync at DEBUG (RPC traffic, notification payloads).
        log_json: Emit JSON lines instead of console text.
    """
    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_json),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("kbsync").setLevel(logging.DEBUG if verbose else logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_device(name: str) -> None:
    """Tag subsequent log records in this context with the device name."""
    structlog.contextvars.bind_contextvars(device=name)


def unbind_device() -> None:
    structlog.contextvars.unbind_contextvars("device")
