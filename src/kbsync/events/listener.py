"""The notification read loop.

Reads one envelope at a time off the connection's notification stream and
publishes it through a :class:`NotificationRouter`.  Reading is strictly
sequential, so publishes happen in arrival order and the coarse and fine
publishes for one envelope are never interleaved with another's.

The loop ends on end-of-stream or when the connection's abort event fires.
Either way the pending read is abandoned and the stream is cancelled; a
read that raises propagates to the caller after the same cleanup.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from kbsync.domain.notifications import (
    NOTIFICATION_TOPIC,
    RoutedEvent,
    decode_notification,
    route_notification,
)

if TYPE_CHECKING:
    from kbsync.events.router import NotificationRouter
    from kbsync.infrastructure.rpc import NotificationStream, ReadResult

logger = logging.getLogger(__name__)


@dataclass
class ListenSummary:
    """Counts gathered over one run of the read loop."""

    received: int = 0
    published: int = 0
    dropped: int = 0
    aborted: bool = False
    topics: Counter[str] = field(default_factory=Counter)


def dispatch_notification(router: NotificationRouter, value: Any) -> RoutedEvent | None:
    """Publish one envelope: raw on the coarse topic, payload on its event topic.

    Envelopes without an active subsystem/event arm, or that break the
    union shape, are logged and dropped without publishing anything.
    """
    try:
        envelope = decode_notification(value)
    except ValidationError as exc:
        logger.warning("Dropping malformed notification: %s", exc.errors(include_url=False))
        return None

    routed = route_notification(envelope)
    if routed is None:
        logger.debug("Dropping notification with no active event: %r", value)
        return None

    router.publish(NOTIFICATION_TOPIC, value)
    router.publish(routed.topic, routed.payload)
    return routed


async def listen_for_notifications(
    stream: NotificationStream,
    router: NotificationRouter,
    abort: asyncio.Event,
    *,
    log_payloads: bool = True,
) -> ListenSummary:
    """Pump *stream* into *router* until end-of-stream or *abort* is set."""
    summary = ListenSummary()
    aborted = asyncio.ensure_future(abort.wait())
    read: asyncio.Future[ReadResult] | None = None
    try:
        while True:
            read = asyncio.ensure_future(stream.read())
            await asyncio.wait({read, aborted}, return_when=asyncio.FIRST_COMPLETED)

            if aborted.done():
                summary.aborted = True
                logger.debug("Notification loop aborted")
                break

            result = read.result()
            if result.done:
                logger.debug("Notification stream ended")
                break
            if result.value is None:
                continue

            summary.received += 1
            if log_payloads:
                logger.debug("Notification %r", result.value)
            routed = dispatch_notification(router, result.value)
            if routed is None:
                summary.dropped += 1
            else:
                summary.published += 1
                summary.topics[routed.topic] += 1
    finally:
        aborted.cancel()
        if read is not None:
            await _abandon(read)
        await stream.cancel()

    return summary


async def _abandon(read: asyncio.Future[ReadResult]) -> None:
    """Cancel an outstanding read and retrieve its outcome."""
    if not read.done():
        read.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await read
    elif not read.cancelled() and read.exception() is not None:
        logger.debug("Notification read failed", exc_info=read.exception())
