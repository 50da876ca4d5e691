"""Topic-addressed publish/subscribe for device notifications.

One router exists per connection; its subscribers go away with it.
Handlers may be plain callables or coroutine functions.  Coroutines are
scheduled on the running loop and tracked so ``drain()`` can wait for them.

INVARIANT: Subscriber failures are logged, never propagated.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[Any], "Awaitable[None] | None"]


class _Subscription:
    """One registration; identity distinguishes repeated handlers."""

    __slots__ = ("handler", "topic")

    def __init__(self, topic: str, handler: Handler) -> None:
        self.topic = topic
        self.handler = handler


class NotificationRouter:
    """Synchronous fan-out of payloads to per-topic handlers.

    ``publish`` walks a snapshot of the topic's subscribers in registration
    order, so handlers that subscribe or unsubscribe mid-publish only affect
    later publishes.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *topic*.

        Returns a callable that removes exactly this registration.  Calling
        it more than once is harmless.
        """
        subscription = _Subscription(topic, handler)
        self._subscriptions.setdefault(topic, []).append(subscription)

        def unsubscribe() -> None:
            self._remove(subscription)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        """Invoke every handler registered for *topic* with *payload*."""
        for subscription in tuple(self._subscriptions.get(topic, ())):
            self._invoke(subscription, payload)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    def clear(self) -> None:
        """Drop every subscription. Already-scheduled handler tasks keep running."""
        self._subscriptions.clear()

    async def drain(self) -> None:
        """Wait for all scheduled coroutine handlers to finish."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _remove(self, subscription: _Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.topic)
        if not subscriptions:
            return
        for index, candidate in enumerate(subscriptions):
            if candidate is subscription:
                del subscriptions[index]
                break
        if not subscriptions:
            del self._subscriptions[subscription.topic]

    def _invoke(self, subscription: _Subscription, payload: Any) -> None:
        try:
            result = subscription.handler(payload)
        except Exception:
            logger.warning("Subscriber for %s failed", subscription.topic, exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(lambda t: self._handler_done(subscription.topic, t))
            self._tasks.add(task)

    def _handler_done(self, topic: str, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Async subscriber for %s failed", topic, exc_info=exc)
