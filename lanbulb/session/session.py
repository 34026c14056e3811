"""
Session: one live connection to a device.

A Session owns its active Transport exclusively and runs one background read
task per transport. The read task decodes every incoming frame and routes it:
responses complete pending requests through the RequestCorrelator,
notifications go to the NotificationDispatcher. Callers only ever wait on
their own request.

Usage:
    session = await Session.connect("192.168.1.204")
    await session.set_power(Power.ON, Effect.SMOOTH, 500)
    name, power = await session.get_prop(Property.NAME, Property.POWER)
    await session.close()
"""

import asyncio
import logging
import socket
from typing import Any

from lanbulb.errors import ConnectionClosed, MalformedFrame, WriteError
from lanbulb.protocol import commands
from lanbulb.protocol.codec import Command, Response, decode
from lanbulb.protocol.commands import (
    AdjustAction,
    CfAction,
    CronType,
    Effect,
    FlowExpression,
    Mode,
    MusicAction,
    Power,
    Prop,
    Property,
    SceneClass,
)
from lanbulb.protocol.transport import DEFAULT_PORT, Transport
from lanbulb.session.correlator import PendingRequest, RequestCorrelator
from lanbulb.session.music import MusicModeManager
from lanbulb.session.notifications import DEFAULT_BUFFER_SIZE, NotificationDispatcher, Subscription

logger = logging.getLogger(__name__)

Result = list[Any] | None


class Session:
    """
    Client session for a single device.

    Attributes:
        expect_responses: When False, commands are written without waiting
            for a reply and return None. Devices do not answer in music mode.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        response_timeout: float = 5.0,
        notification_buffer: int = DEFAULT_BUFFER_SIZE,
        expect_responses: bool = True,
    ) -> None:
        """
        Initialize a session on an established transport.

        Must be called from a running event loop; the read task starts
        immediately.

        Args:
            transport: Connected transport; the session takes ownership.
            response_timeout: Per-request timeout in seconds.
            notification_buffer: Per-subscriber notification buffer size.
            expect_responses: Whether commands wait for a reply.
        """
        self._transport = transport
        self.remote_address = transport.remote_address
        self.expect_responses = expect_responses

        self._correlator = RequestCorrelator(self._send_frame, timeout=response_timeout)
        self._dispatcher = NotificationDispatcher(notification_buffer)
        self._read_tasks: set[asyncio.Task[None]] = set()
        self._closed = False

        self._start_reader(transport)

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout: float = 5.0,
        response_timeout: float = 5.0,
        notification_buffer: int = DEFAULT_BUFFER_SIZE,
    ) -> "Session":
        """
        Connect to a device and start a session.

        Raises:
            ConnectTimeout, ConnectRefused, ConnectError: See Transport.connect.
        """
        transport = await Transport.connect(host, port, timeout=connect_timeout)
        return cls(transport, response_timeout=response_timeout, notification_buffer=notification_buffer)

    @classmethod
    async def attach(cls, sock: socket.socket, **kwargs: Any) -> "Session":
        """Start a session on an already-connected socket."""
        transport = await Transport.attach(sock)
        return cls(transport, **kwargs)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def transport(self) -> Transport:
        """The currently active transport."""
        return self._transport

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    def _start_reader(self, transport: Transport) -> None:
        task = asyncio.create_task(self._read_loop(transport), name=f"lanbulb-reader-{transport.remote_address[0]}")
        self._read_tasks.add(task)
        task.add_done_callback(self._read_tasks.discard)

    async def _read_loop(self, transport: Transport) -> None:
        """Decode and route frames until this transport's read path ends."""
        try:
            async for raw in transport.frames():
                try:
                    frame = decode(raw)
                except MalformedFrame as e:
                    if e.request_id is not None:
                        logger.warning("Malformed response for id %d: %s", e.request_id, e)
                        self._correlator.fail(e.request_id, e)
                    else:
                        logger.warning("Skipping malformed frame: %s", e)
                    continue

                if isinstance(frame, Response):
                    self._correlator.resolve(frame)
                else:
                    self._dispatcher.publish(frame)
        except Exception:
            logger.exception("Reader for %s failed", self.remote_address[0])
        finally:
            # A transport superseded by music mode ends quietly.
            if transport is self._transport:
                await self._shutdown(ConnectionClosed(f"Connection to {self.remote_address[0]} closed"))

    async def _shutdown(self, error: ConnectionClosed) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info("Session with %s:%d ended: %s", *self.remote_address, error)
        self._correlator.fail_all(error)
        self._dispatcher.close()
        await self._transport.close()

    async def close(self) -> None:
        """Close the session. Pending requests fail with ConnectionClosed."""
        await self._shutdown(ConnectionClosed("Session closed"))
        current = asyncio.current_task()
        for task in list(self._read_tasks):
            if task is not current:
                task.cancel()
        await asyncio.gather(*(t for t in self._read_tasks if t is not current), return_exceptions=True)

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _promote(self, transport: Transport) -> None:
        """
        Make ``transport`` the active transport and close the previous one.

        Used by the music-mode handoff. Requests still pending on the old
        transport are left to their own timeouts.
        """
        if self._closed:
            await transport.close()
            raise ConnectionClosed("Session closed during music-mode handoff")

        old = self._transport
        self._transport = transport
        self._start_reader(transport)
        logger.info(
            "Promoted connection from %s:%d; closing previous transport to %s:%d",
            *transport.remote_address,
            *old.remote_address,
        )
        await old.close()

    # =========================================================================
    # Requests
    # =========================================================================

    async def _send_frame(self, frame: bytes) -> None:
        try:
            await self._transport.send(frame)
        except WriteError as e:
            # Fatal for the session; everyone waiting learns about it.
            await self._shutdown(ConnectionClosed(str(e)))
            raise

    async def issue(self, command: Command, timeout: float | None = None) -> PendingRequest:
        """Send a command and return its pending handle without waiting."""
        return await self._correlator.issue(command, timeout)

    async def send(self, command: Command, timeout: float | None = None) -> Result:
        """
        Send a command and wait for its result.

        Returns:
            The result list, or None when ``expect_responses`` is False.

        Raises:
            DeviceError: The device answered with an error.
            RequestTimeout: No answer in time; the connection stays open.
            ConnectionClosed: The connection is or became closed.
        """
        if not self.expect_responses:
            await self._correlator.send_only(command)
            return None
        return await self._correlator.request(command, timeout)

    async def send_command(self, method: str, *params: Any) -> Result:
        """Send an arbitrary method with raw params."""
        return await self.send(commands.build_command(method, *params))

    def notifications(self, buffer_size: int | None = None) -> Subscription:
        """Subscribe to notifications from now on."""
        return self._dispatcher.subscribe(buffer_size)

    # =========================================================================
    # Device operations
    # =========================================================================

    async def get_prop(self, *properties: Property | str) -> Result:
        """Read properties; the result follows the requested order."""
        return await self.send(commands.build_get_prop(*properties))

    async def set_power(
        self,
        power: Power,
        effect: Effect = Effect.SMOOTH,
        duration_ms: int = 500,
        mode: Mode = Mode.NORMAL,
        *,
        bg: bool = False,
    ) -> Result:
        return await self.send(commands.build_set_power(power, effect, duration_ms, mode, bg=bg))

    async def turn_on(self, *, bg: bool = False) -> Result:
        return await self.set_power(Power.ON, Effect.SUDDEN, 0, Mode.NORMAL, bg=bg)

    async def turn_off(self, *, bg: bool = False) -> Result:
        return await self.set_power(Power.OFF, Effect.SUDDEN, 0, Mode.NORMAL, bg=bg)

    async def toggle(self, *, bg: bool = False) -> Result:
        return await self.send(commands.build_toggle(bg=bg))

    async def dev_toggle(self) -> Result:
        """Flip both the main and the background light."""
        return await self.send(commands.build_dev_toggle())

    async def set_ct_abx(self, ct: int, effect: Effect = Effect.SMOOTH, duration_ms: int = 500, *, bg: bool = False) -> Result:
        return await self.send(commands.build_set_ct_abx(ct, effect, duration_ms, bg=bg))

    async def set_rgb(self, rgb: int, effect: Effect = Effect.SMOOTH, duration_ms: int = 500, *, bg: bool = False) -> Result:
        return await self.send(commands.build_set_rgb(rgb, effect, duration_ms, bg=bg))

    async def set_hsv(
        self,
        hue: int,
        sat: int,
        effect: Effect = Effect.SMOOTH,
        duration_ms: int = 500,
        *,
        bg: bool = False,
    ) -> Result:
        return await self.send(commands.build_set_hsv(hue, sat, effect, duration_ms, bg=bg))

    async def set_bright(
        self,
        brightness: int,
        effect: Effect = Effect.SMOOTH,
        duration_ms: int = 500,
        *,
        bg: bool = False,
    ) -> Result:
        return await self.send(commands.build_set_bright(brightness, effect, duration_ms, bg=bg))

    async def set_scene(
        self,
        scene_class: SceneClass,
        val1: int,
        val2: int,
        val3: int | FlowExpression,
        *,
        bg: bool = False,
    ) -> Result:
        return await self.send(commands.build_set_scene(scene_class, val1, val2, val3, bg=bg))

    async def start_cf(self, count: int, action: CfAction, flow: FlowExpression, *, bg: bool = False) -> Result:
        return await self.send(commands.build_start_cf(count, action, flow, bg=bg))

    async def stop_cf(self, *, bg: bool = False) -> Result:
        return await self.send(commands.build_stop_cf(bg=bg))

    async def set_adjust(self, action: AdjustAction, prop: Prop, *, bg: bool = False) -> Result:
        return await self.send(commands.build_set_adjust(action, prop, bg=bg))

    async def adjust_bright(self, percentage: int, duration_ms: int = 500, *, bg: bool = False) -> Result:
        return await self.send(commands.build_adjust(Prop.BRIGHT, percentage, duration_ms, bg=bg))

    async def adjust_ct(self, percentage: int, duration_ms: int = 500, *, bg: bool = False) -> Result:
        return await self.send(commands.build_adjust(Prop.CT, percentage, duration_ms, bg=bg))

    async def adjust_color(self, percentage: int, duration_ms: int = 500, *, bg: bool = False) -> Result:
        return await self.send(commands.build_adjust(Prop.COLOR, percentage, duration_ms, bg=bg))

    async def set_default(self, *, bg: bool = False) -> Result:
        """Persist the current state; only accepted while the light is on."""
        return await self.send(commands.build_set_default(bg=bg))

    async def set_name(self, name: str) -> Result:
        return await self.send(commands.build_set_name(name))

    async def set_music(self, action: MusicAction, host: str = "", port: int = 0) -> Result:
        return await self.send(commands.build_set_music(action, host, port))

    async def cron_add(self, cron_type: CronType, minutes: int) -> Result:
        return await self.send(commands.build_cron_add(cron_type, minutes))

    async def cron_del(self, cron_type: CronType = CronType.OFF) -> Result:
        return await self.send(commands.build_cron_del(cron_type))

    async def cron_get(self, cron_type: CronType = CronType.OFF) -> Result:
        # The cron_get reply is a JSON object; the delayoff property carries
        # the same remaining minutes as a plain value.
        return await self.get_prop(Property.DELAY_OFF)

    # =========================================================================
    # Music mode
    # =========================================================================

    async def start_music(
        self,
        host: str | None = None,
        port: int = 0,
        *,
        bind_host: str = "0.0.0.0",
        accept_timeout: float = 10.0,
    ) -> MusicModeManager:
        """
        Switch this session into music mode.

        Args:
            host: Local address the device should connect back to. None picks
                the interface that routes to the device.
            port: Listener port; 0 picks an ephemeral port.
            bind_host: Address the listener binds to.
            accept_timeout: Seconds to wait for the device to connect.

        Returns:
            The finished manager (state PROMOTED).

        Raises:
            MusicModeTimeout: The device did not connect in time.
        """
        manager = MusicModeManager(self, host, port, bind_host=bind_host, accept_timeout=accept_timeout)
        await manager.start()
        return manager

    async def stop_music(self) -> Result:
        return await self.set_music(MusicAction.OFF)

    def __repr__(self) -> str:
        host, port = self.remote_address
        return f"Session({host}:{port}, closed={self._closed})"

