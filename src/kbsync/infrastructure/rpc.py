"""Boundary with the RPC transport.

The transport itself (framing, correlation, discovery) lives outside this
package.  What it must provide is captured by the :class:`RpcConnection`
and :class:`NotificationStream` protocols: an async ``call`` taking a
request envelope such as ``{"keymap": {"getKeymap": True}}`` and returning
the matching response envelope, plus a pull-based notification stream.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Envelope = Mapping[str, Any]


@dataclass(frozen=True)
class ReadResult:
    """One pull from a notification stream."""

    done: bool
    value: Any = None


class NotificationStream(Protocol):
    async def read(self) -> ReadResult: ...

    async def cancel(self) -> None: ...


class RpcConnection(Protocol):
    notifications: NotificationStream

    async def call(self, request: Envelope) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class RpcError(Exception):
    """A call failed at the transport or device level."""


class DeviceRejectedError(RpcError):
    """The device answered, but not with the expected success arm."""

    def __init__(self, op: str, response: Any) -> None:
        super().__init__(f"{op} rejected by device: {response!r}")
        self.op = op
        self.response = response


def request_name(request: Envelope) -> str:
    """Return ``subsystem.call`` for a request envelope (for logs and errors)."""
    for subsystem, body in request.items():
        if isinstance(body, Mapping):
            for name in body:
                return f"{subsystem}.{name}"
        return subsystem
    return "<empty>"


async def call_rpc(conn: RpcConnection, request: Envelope) -> dict[str, Any]:
    """Issue one call, logging the request and response at debug level."""
    name = request_name(request)
    logger.debug("RPC request %s: %r", name, request)
    try:
        response = await conn.call(request)
    except Exception:
        logger.debug("RPC call %s failed", name, exc_info=True)
        raise
    logger.debug("RPC response %s: %r", name, response)
    return response


def response_arm(response: Any, subsystem: str, name: str) -> Any:
    """Return ``response[subsystem][name]`` or None if either level is missing."""
    if not isinstance(response, Mapping):
        return None
    body = response.get(subsystem)
    if not isinstance(body, Mapping):
        return None
    return body.get(name)


def expect_arm(response: Any, subsystem: str, name: str) -> Any:
    """Like :func:`response_arm` but raise DeviceRejectedError when absent."""
    value = response_arm(response, subsystem, name)
    if value is None:
        raise DeviceRejectedError(f"{subsystem}.{name}", response)
    return value


def expect_ok(response: Any, subsystem: str, name: str) -> Any:
    """Unwrap an ``{"ok": ...}`` result arm, raising on ``{"err": ...}``."""
    value = expect_arm(response, subsystem, name)
    if not isinstance(value, Mapping) or "ok" not in value:
        raise DeviceRejectedError(f"{subsystem}.{name}", response)
    return value["ok"]


# ---------------------------------------------------------------------------
# In-process streams
# ---------------------------------------------------------------------------


class QueueNotificationStream:
    """A :class:`NotificationStream` fed from an ``asyncio.Queue``.

    ``put`` enqueues an envelope, ``end`` signals end-of-stream.  Reads
    after ``cancel`` report end-of-stream.
    """

    _END = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.cancelled = False

    def put(self, envelope: Any) -> None:
        self._queue.put_nowait(envelope)

    def end(self) -> None:
        self._queue.put_nowait(self._END)

    async def read(self) -> ReadResult:
        if self.cancelled:
            return ReadResult(done=True)
        item = await self._queue.get()
        if item is self._END:
            return ReadResult(done=True)
        return ReadResult(done=False, value=item)

    async def cancel(self) -> None:
        self.cancelled = True


def read_capture(path: Path) -> Iterator[Any]:
    """Yield envelopes from a JSON Lines notification capture.

    Blank lines are skipped; a line that is not valid JSON raises ValueError
    naming the line number.
    """
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                yield json.loads(text)
            except json.JSONDecodeError as exc:
                msg = f"{path}:{lineno}: invalid JSON ({exc.msg})"
                raise ValueError(msg) from exc
