"""In-process event bus used in place of an external broker."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Sequence

Handler = Callable[[dict[str, Any]], Awaitable[None]]
TopicHandler = Callable[[str, dict[str, Any]], Awaitable[None]]

_LOGGER = logging.getLogger(__name__)


class EventBus:
    """Topic-based dispatcher owned by a single application instance.

    Handlers run sequentially in subscription order; a failing handler
    propagates to the publisher.
    """

    def __init__(self) -> None:
        self._routes: dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._routes.setdefault(topic, []).append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        remaining = [existing for existing in self._routes.get(topic, []) if existing is not handler]
        if remaining:
            self._routes[topic] = remaining
        else:
            self._routes.pop(topic, None)

    async def publish(self, topic: str, message: dict[str, Any]) -> int:
        handlers = tuple(self._routes.get(topic, ()))
        for handler in handlers:
            await handler(message)
        return len(handlers)


class EventProducer:
    """Publishes envelopes onto an :class:`EventBus`."""

    def __init__(self, bus: EventBus, *, servers: str | None = None) -> None:
        self._bus = bus
        self._servers = servers
        self._connected = False

    async def connect(self) -> None:
        if self._servers:
            _LOGGER.info("Event bus servers configured (%s); publishing in-process", self._servers)
        self._connected = True

    async def send(self, topic: str, value: dict[str, Any]) -> None:
        if not self._connected:
            raise RuntimeError("Producer not connected")
        delivered = await self._bus.publish(topic, value)
        if not delivered:
            _LOGGER.debug("No subscribers for %s", topic)

    async def close(self) -> None:
        self._connected = False


class EventConsumer:
    """Routes several topics of an :class:`EventBus` into one ``(topic, message)`` handler."""

    def __init__(self, bus: EventBus, topics: Sequence[str], handler: TopicHandler) -> None:
        self._bus = bus
        self._topics = tuple(topics)
        self._handler = handler
        self._bound: dict[str, Handler] = {}

    @property
    def started(self) -> bool:
        return bool(self._bound)

    def _bind(self, topic: str) -> Handler:
        async def deliver(message: dict[str, Any]) -> None:
            await self._handler(topic, message)

        return deliver

    async def start(self) -> None:
        for topic in self._topics:
            if topic not in self._bound:
                self._bound[topic] = self._bind(topic)
                self._bus.subscribe(topic, self._bound[topic])

    async def stop(self) -> None:
        while self._bound:
            topic, handler = self._bound.popitem()
            self._bus.unsubscribe(topic, handler)
