"""Process-wide status broadcaster.

One :class:`StatusHub` is built at startup and handed to everything that
publishes or consumes status events.  It knows nothing about crawl jobs; it
only delivers messages.

Each subscriber owns a bounded ``asyncio.Queue``.  ``publish`` drops the
message into every queue without awaiting, so a slow observer can never
stall the orchestrator.  A subscriber whose delivery fails (full queue,
closed queue) is evicted; the rest of the fan-out carries on.

The hub is bound to the event loop its subscribers consume from: ``publish``
must be called on that loop's thread.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from backend.config import settings
from backend.events.messages import HubMessage

logger = logging.getLogger(__name__)


class SubscriberClosedError(Exception):
    """Raised when delivering to a subscriber that has been closed."""


class Subscriber:
    """A single observer's delivery queue."""

    def __init__(self, maxsize: int) -> None:
        self._queue: asyncio.Queue[Optional[HubMessage]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: HubMessage) -> None:
        """Enqueue *message* without blocking.

        Raises:
            SubscriberClosedError: If the subscriber has been closed.
            asyncio.QueueFull: If the observer has fallen too far behind.
        """
        if self._closed:
            raise SubscriberClosedError("subscriber is closed")
        self._queue.put_nowait(message)

    def close(self) -> None:
        """Stop accepting messages and wake any pending :meth:`get`."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the sentinel; the observer is going away anyway.
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def get(self) -> Optional[HubMessage]:
        """Wait for the next message; ``None`` once the subscriber is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> Optional[HubMessage]:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> Subscriber:
        return self

    async def __anext__(self) -> HubMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message


class StatusHub:
    """Fan-out broadcaster for :data:`HubMessage` events."""

    def __init__(self, queue_size: Optional[int] = None) -> None:
        self._queue_size = queue_size or settings.hub_queue_size
        self._subscribers: set[Subscriber] = set()
        # Guards the subscriber set across subscribe/unsubscribe/publish.
        self._lock = threading.Lock()

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(self._queue_size)
        with self._lock:
            self._subscribers.add(subscriber)
        logger.debug("Subscriber added (%d active)", len(self))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove *subscriber* and close it.  Unknown subscribers are ignored."""
        with self._lock:
            self._subscribers.discard(subscriber)
        subscriber.close()

    def publish(self, message: HubMessage) -> None:
        """Deliver *message* to every current subscriber.

        Never raises and never blocks.  Subscribers that fail delivery are
        removed once the fan-out pass is finished.
        """
        failed: list[Subscriber] = []
        with self._lock:
            for subscriber in self._subscribers:
                try:
                    subscriber.deliver(message)
                except Exception as exc:  # noqa: BLE001
                    failed.append(subscriber)
                    logger.warning(
                        "Dropping subscriber after failed delivery: %s",
                        type(exc).__name__,
                    )
            self._subscribers.difference_update(failed)
        for subscriber in failed:
            subscriber.close()

    def close(self) -> None:
        """Close every subscriber; called once at process shutdown."""
        with self._lock:
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
