"""
Tests for notification fan-out and per-subscriber buffering.
"""

import pytest

from lanbulb.protocol.codec import Notification
from lanbulb.session.notifications import NotificationDispatcher, Subscription


def props(**params: str) -> Notification:
    return Notification(params=params)


async def drain(subscription: Subscription) -> list[Notification]:
    return [notification async for notification in subscription]


class TestDispatcher:
    """Tests for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_every_subscriber_sees_every_notification_in_order(self) -> None:
        dispatcher = NotificationDispatcher()
        first = dispatcher.subscribe()
        second = dispatcher.subscribe()

        sent = [props(bright=str(i)) for i in range(5)]
        for notification in sent:
            assert dispatcher.publish(notification) == 2
        dispatcher.close()

        assert await drain(first) == sent
        assert await drain(second) == sent

    @pytest.mark.asyncio
    async def test_late_subscriber_sees_only_later_notifications(self) -> None:
        dispatcher = NotificationDispatcher()
        dispatcher.publish(props(power="on"))
        subscription = dispatcher.subscribe()
        dispatcher.publish(props(power="off"))
        dispatcher.close()

        assert await drain(subscription) == [props(power="off")]

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self) -> None:
        dispatcher = NotificationDispatcher(buffer_size=3)
        slow = dispatcher.subscribe()
        fast = dispatcher.subscribe(buffer_size=10)

        for i in range(5):
            dispatcher.publish(props(bright=str(i)))
        dispatcher.close()

        assert [n.params["bright"] for n in await drain(slow)] == ["2", "3", "4"]
        assert slow.dropped == 2
        assert len(await drain(fast)) == 5

    @pytest.mark.asyncio
    async def test_close_ends_subscriptions(self) -> None:
        dispatcher = NotificationDispatcher()
        subscription = dispatcher.subscribe()
        dispatcher.close()
        dispatcher.close()

        assert await drain(subscription) == []
        # End of stream is sticky.
        assert await drain(subscription) == []
        assert subscription.closed

    @pytest.mark.asyncio
    async def test_subscribe_after_close(self) -> None:
        dispatcher = NotificationDispatcher()
        dispatcher.close()

        subscription = dispatcher.subscribe()

        assert await drain(subscription) == []
        assert dispatcher.publish(props(power="on")) == 0

    def test_invalid_buffer_size(self) -> None:
        with pytest.raises(ValueError):
            NotificationDispatcher(buffer_size=0)

    @pytest.mark.parametrize("buffer_size", [0, -1])
    def test_invalid_subscription_buffer_size(self, buffer_size: int) -> None:
        dispatcher = NotificationDispatcher()

        with pytest.raises(ValueError):
            dispatcher.subscribe(buffer_size)

        assert dispatcher.subscriber_count == 0


class TestSubscription:
    """Tests for Subscription lifetime."""

    @pytest.mark.asyncio
    async def test_close_unsubscribes_but_keeps_buffered(self) -> None:
        dispatcher = NotificationDispatcher()
        subscription = dispatcher.subscribe()
        dispatcher.publish(props(power="on"))

        subscription.close()
        dispatcher.publish(props(power="off"))

        assert dispatcher.subscriber_count == 0
        assert await drain(subscription) == [props(power="on")]

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        dispatcher = NotificationDispatcher()

        async with dispatcher.subscribe() as subscription:
            assert dispatcher.subscriber_count == 1

        assert subscription.closed
        assert dispatcher.subscriber_count == 0
