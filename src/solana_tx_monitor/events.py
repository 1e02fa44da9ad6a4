"""In-process publish/subscribe for monitor events.

Topics published by the monitor:

- ``transaction.pending`` / ``transaction.confirmed`` / ``transaction.failed`` /
  ``transaction.timeout`` with a ``TransactionEvent`` payload
- ``metrics.updated`` with a ``TransactionMetrics`` payload

Subscriptions may use shell-style wildcards (``transaction.*``).
"""

from __future__ import annotations

import fnmatch
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

TOPIC_PENDING = "transaction.pending"
TOPIC_CONFIRMED = "transaction.confirmed"
TOPIC_FAILED = "transaction.failed"
TOPIC_TIMEOUT = "transaction.timeout"
TOPIC_METRICS = "metrics.updated"

Handler = Callable[[Any], Awaitable[None] | None]


class EventBus:
    """Fan-out of payloads to topic subscribers.

    Handlers may be plain functions or coroutine functions. A failing handler
    is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.setdefault(topic, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.get(topic)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[topic]

    def handlers_for(self, topic: str) -> list[Handler]:
        matched: list[Handler] = []
        for pattern, handlers in self._handlers.items():
            if pattern == topic or fnmatch.fnmatchcase(topic, pattern):
                matched.extend(handlers)
        return matched

    async def publish(self, topic: str, payload: Any) -> int:
        """Deliver ``payload`` to every matching handler.

        Returns:
            Number of handlers that completed without raising.
        """
        delivered = 0
        for handler in self.handlers_for(topic):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning("Handler for %s failed: %s", topic, e, exc_info=True)
        return delivered

    def clear(self) -> None:
        self._handlers.clear()
