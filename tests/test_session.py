"""
End-to-end tests for Session against a fake device on localhost.
"""

import asyncio
import socket
from unittest.mock import patch

import pytest
from fakes import FakeDevice, no_response, wait_until

from lanbulb.errors import ConnectionClosed, DeviceError, MalformedFrame, RequestTimeout
from lanbulb.protocol import commands
from lanbulb.protocol.codec import Notification
from lanbulb.protocol.commands import CfAction, Effect, FlowExpression, FlowTuple, Mode, Power, Prop, Property
from lanbulb.session.session import Session

# =============================================================================
# Requests
# =============================================================================


class TestRequests:
    """Tests for sending commands and receiving results."""

    @pytest.mark.asyncio
    async def test_set_power(self, device: FakeDevice, session: Session) -> None:
        result = await session.set_power(Power.ON, Effect.SMOOTH, 500, Mode.NORMAL)

        assert result == ["ok"]
        assert device.requests == [{"id": 1, "method": "set_power", "params": ["on", "smooth", 500, 0]}]

    @pytest.mark.asyncio
    async def test_get_prop_result_order(self, device: FakeDevice, session: Session) -> None:
        device.respond = lambda m: [{"id": m["id"], "result": ["on", "54", "kitchen"]}]

        result = await session.get_prop(Property.POWER, Property.BRIGHT, Property.NAME)

        assert result == ["on", "54", "kitchen"]
        assert device.requests[0]["params"] == ["power", "bright", "name"]

    @pytest.mark.asyncio
    async def test_typed_operations_wire_format(self, device: FakeDevice, session: Session) -> None:
        flow = FlowExpression([FlowTuple.rgb(1000, 0xFF0000, 100), FlowTuple.sleep(500)])

        await session.toggle(bg=True)
        await session.dev_toggle()
        await session.start_cf(0, CfAction.RECOVER, flow)
        await session.adjust_bright(-30, 200)
        await session.set_name("desk")
        await session.cron_get()
        await session.stop_music()

        assert [(m["method"], m["params"]) for m in device.requests] == [
            ("bg_toggle", []),
            ("dev_toggle", []),
            ("start_cf", [0, 0, "1000,1,16711680,100,500,7,0,-1"]),
            ("adjust_bright", [-30, 200]),
            ("set_name", ["desk"]),
            ("get_prop", ["delayoff"]),
            ("set_music", [0, "", 0]),
        ]

    @pytest.mark.asyncio
    async def test_send_command_raw(self, device: FakeDevice, session: Session) -> None:
        assert await session.send_command("set_adjust", "increase", Prop.BRIGHT) == ["ok"]
        assert device.requests[0]["params"] == ["increase", "bright"]

    @pytest.mark.asyncio
    async def test_device_error(self, device: FakeDevice, session: Session) -> None:
        device.respond = lambda m: [{"id": m["id"], "error": {"code": -1, "message": "unsupported method"}}]

        with pytest.raises(DeviceError) as exc_info:
            await session.set_default()

        assert exc_info.value.code == -1
        assert exc_info.value.message == "unsupported method"
        assert not session.closed

    @pytest.mark.asyncio
    async def test_concurrent_requests_answered_in_reverse(self, device: FakeDevice, session: Session) -> None:
        """Responses in any order reach the caller that sent the matching id."""
        device.respond = no_response
        count = 20

        tasks = [asyncio.create_task(session.get_prop(Property.BRIGHT)) for _ in range(count)]
        await device.wait_for_requests(count)
        for message in reversed(device.requests):
            await device.push({"id": message["id"], "result": [str(message["id"])]})

        results = await asyncio.gather(*tasks)

        assert sorted(m["id"] for m in device.requests) == list(range(1, count + 1))
        assert results == [[str(i)] for i in range(1, count + 1)]

    @pytest.mark.asyncio
    async def test_timeout_keeps_session_open(self, device: FakeDevice, session: Session) -> None:
        device.respond = no_response

        with pytest.raises(RequestTimeout):
            await session.send(commands.build_toggle(), timeout=0.1)

        # The late reply is dropped and the next request still works.
        await device.push({"id": 1, "result": ["late"]})
        device.respond = lambda m: [{"id": m["id"], "result": ["fresh"]}]

        assert not session.closed
        assert await session.toggle() == ["fresh"]

    @pytest.mark.asyncio
    async def test_malformed_frames(self, device: FakeDevice, session: Session) -> None:
        """Garbage is skipped; a broken response with an id fails that request."""
        device.respond = lambda m: [b"garbage\r\n", {"id": m["id"], "result": "ok"}]

        with pytest.raises(MalformedFrame):
            await session.toggle()

        device.respond = lambda m: [{"id": m["id"], "result": ["ok"]}]
        assert await session.toggle() == ["ok"]

    @pytest.mark.asyncio
    async def test_expect_responses_off(self, device: FakeDevice, session: Session) -> None:
        device.respond = no_response
        session.expect_responses = False

        assert await session.set_rgb(0x00FF00, Effect.SUDDEN, 0) is None
        await device.wait_for_requests(1)
        assert device.requests[0]["method"] == "set_rgb"
        assert session.correlator.pending_ids == []


# =============================================================================
# Notifications
# =============================================================================


class TestNotifications:
    @pytest.mark.asyncio
    async def test_notification_before_response(self, device: FakeDevice, session: Session) -> None:
        device.respond = lambda m: [
            {"method": "props", "params": {"power": "on"}},
            {"id": m["id"], "result": ["ok"]},
        ]
        subscription = session.notifications()

        assert await session.set_power(Power.ON) == ["ok"]

        notification = await asyncio.wait_for(anext(subscription), timeout=1.0)
        assert notification == Notification(method="props", params={"power": "on"})

    @pytest.mark.asyncio
    async def test_unsolicited_notifications_in_order(self, device: FakeDevice, session: Session) -> None:
        first = session.notifications()
        second = session.notifications()
        await session.toggle()

        for level in ("10", "20", "30"):
            await device.push({"method": "props", "params": {"bright": level}})

        for subscription in (first, second):
            received = [await asyncio.wait_for(anext(subscription), timeout=1.0) for _ in range(3)]
            assert [n.params["bright"] for n in received] == ["10", "20", "30"]


# =============================================================================
# Closing
# =============================================================================


class TestClose:
    @pytest.mark.asyncio
    async def test_device_disconnect(self, device: FakeDevice, session: Session) -> None:
        """Losing the connection fails waiters and ends subscriptions."""
        device.respond = no_response
        subscription = session.notifications()

        task = asyncio.create_task(session.toggle())
        await device.wait_for_requests(1)
        device.drop_connections()

        with pytest.raises(ConnectionClosed):
            await task
        assert [n async for n in subscription] == []
        assert session.closed

        with pytest.raises(ConnectionClosed):
            await session.toggle()

    @pytest.mark.asyncio
    async def test_close_fails_pending(self, device: FakeDevice, session: Session) -> None:
        device.respond = no_response

        task = asyncio.create_task(session.toggle())
        await device.wait_for_requests(1)
        await session.close()

        with pytest.raises(ConnectionClosed):
            await task
        assert session.transport.closed
        await wait_until(lambda: device.disconnects == 1)

    @pytest.mark.asyncio
    async def test_routing_failure_closes_session(self, device: FakeDevice, session: Session) -> None:
        """An unexpected error in the reader shuts the session down instead of stalling it."""
        device.respond = no_response
        subscription = session.notifications()

        with patch.object(session._dispatcher, "publish", side_effect=RuntimeError("boom")):
            task = asyncio.create_task(session.toggle())
            await device.wait_for_requests(1)
            await device.push({"method": "props", "params": {"power": "on"}})

            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(task, timeout=1.0)

        assert session.closed
        assert [n async for n in subscription] == []

    @pytest.mark.asyncio
    async def test_close_twice(self, session: Session) -> None:
        await session.close()
        await session.close()

        assert session.closed

    @pytest.mark.asyncio
    async def test_context_manager(self, device: FakeDevice) -> None:
        async with await Session.connect("127.0.0.1", device.port) as client:
            assert await client.toggle() == ["ok"]

        assert client.closed


class TestAttach:
    @pytest.mark.asyncio
    async def test_attach_to_socket(self, device: FakeDevice) -> None:
        sock = socket.create_connection(("127.0.0.1", device.port))

        client = await Session.attach(sock, response_timeout=2.0)
        try:
            assert await client.turn_off() == ["ok"]
            assert device.requests[0]["params"] == ["off", "sudden", 0, 0]
        finally:
            await client.close()
