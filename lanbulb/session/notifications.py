"""
Notification fan-out for a session.

The device pushes property changes at any time. The session's read task
publishes each decoded Notification to every live Subscription. Each
subscription has its own bounded buffer; when a consumer falls behind, the
oldest buffered notification is dropped so the read task never blocks and
response delivery to other callers is never stalled.

Usage:
    async with session.notifications() as subscription:
        async for notification in subscription:
            print(notification.params)
"""

import asyncio
import logging

from lanbulb.protocol.codec import Notification

logger = logging.getLogger(__name__)

# Per-subscriber buffer size
DEFAULT_BUFFER_SIZE = 10

_END = object()


class Subscription:
    """
    One consumer's view of the notification stream.

    Sees every notification published after it was created, in device order,
    and ends when the session's connection ends or the subscription is closed.
    """

    def __init__(self, dispatcher: "NotificationDispatcher", buffer_size: int) -> None:
        self._dispatcher = dispatcher
        # One extra slot so the end marker always fits.
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=buffer_size + 1)
        self._buffer_size = buffer_size
        self._ended = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._ended

    def _push(self, notification: Notification) -> None:
        if self._ended:
            return
        if self._queue.qsize() >= self._buffer_size:
            self._queue.get_nowait()
            self.dropped += 1
            logger.debug("Subscriber buffer full, dropped oldest notification (%d total)", self.dropped)
        self._queue.put_nowait(notification)

    def _end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_END)

    def close(self) -> None:
        """Stop receiving notifications. Buffered items are still delivered."""
        self._dispatcher._remove(self)
        self._end()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Notification:
        item = await self._queue.get()
        if item is _END:
            # Keep returning end-of-stream on further calls.
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class NotificationDispatcher:
    """Delivers notifications to all current subscribers of one session."""

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size
        self._subscribers: list[Subscription] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, buffer_size: int | None = None) -> Subscription:
        """
        Create a new subscription starting from the next notification.

        Subscribing after the dispatcher closed returns an already-ended
        subscription.
        """
        if buffer_size is not None and buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        subscription = Subscription(self, buffer_size or self.buffer_size)
        if self._closed:
            subscription._end()
        else:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, notification: Notification) -> int:
        """
        Hand a notification to every subscriber without blocking.

        Returns:
            Number of subscribers it was delivered to.
        """
        subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(notification)
        return len(subscribers)

    def close(self) -> None:
        """End every subscription. Later publishes are ignored."""
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscription in subscribers:
            subscription._end()
        logger.debug("Notification dispatcher closed (%d subscriber(s))", len(subscribers))

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            pass
