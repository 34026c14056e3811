"""
Music mode handoff.

Devices rate-limit commands on a normal connection. In music mode the roles
of the TCP connection invert: we open a listener, ask the device (over the
existing session) to connect to it with ``set_music``, accept that single
inbound connection and make it the session's active transport. The session
keeps its correlator and notification subscribers; only the transport
changes.

States:
    NOT_STARTED -> LISTENER_OPEN -> AWAITING_INBOUND -> PROMOTED
                                                     -> FAILED
"""

import asyncio
import logging
import socket
from enum import Enum
from typing import TYPE_CHECKING

from lanbulb.errors import MusicModeTimeout
from lanbulb.protocol.commands import MusicAction
from lanbulb.protocol.transport import Transport

if TYPE_CHECKING:
    from lanbulb.session.session import Session

logger = logging.getLogger(__name__)


class MusicState(Enum):
    """Progress of one music-mode handoff."""

    NOT_STARTED = "not_started"
    LISTENER_OPEN = "listener_open"
    AWAITING_INBOUND = "awaiting_inbound"
    PROMOTED = "promoted"
    FAILED = "failed"


def local_ip_for(peer_ip: str) -> str:
    """
    Determine which local IP address can reach the given peer.

    This "connects" a temporary UDP socket to the peer (no packets are sent)
    and reads back the local address the OS picked. Falls back to loopback.
    """
    if peer_ip in ("127.0.0.1", "::1", "localhost"):
        return "127.0.0.1"

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            # Port doesn't matter for UDP connect.
            s.connect((peer_ip, 9))
            local_ip = s.getsockname()[0]
            if local_ip and local_ip != "0.0.0.0":
                return local_ip
    except OSError as e:
        logger.debug("Could not determine local IP for %s: %s", peer_ip, e)

    return "127.0.0.1"


class MusicModeManager:
    """
    Orchestrates one music-mode role reversal for a session.

    Attributes:
        state: Current MusicState.
        advertised: (host, port) sent to the device, once the listener is open.
    """

    def __init__(
        self,
        session: "Session",
        host: str | None = None,
        port: int = 0,
        *,
        bind_host: str = "0.0.0.0",
        accept_timeout: float = 10.0,
    ) -> None:
        """
        Initialize the manager.

        Args:
            session: Session whose transport will be replaced.
            host: Address the device should connect to. None picks the local
                interface address that routes to the device.
            port: Listener port; 0 picks an ephemeral port.
            bind_host: Address the listener binds to.
            accept_timeout: Seconds to wait for the inbound connection.
        """
        self.session = session
        self.host = host or local_ip_for(session.remote_address[0])
        self.port = port
        self.bind_host = bind_host
        self.accept_timeout = accept_timeout

        self.state = MusicState.NOT_STARTED
        self.advertised: tuple[str, int] | None = None

        self._server: asyncio.Server | None = None
        self._inbound: asyncio.Future[tuple[asyncio.StreamReader, asyncio.StreamWriter]] | None = None

    async def start(self) -> Transport:
        """
        Run the handoff.

        Returns:
            The new, promoted transport.

        Raises:
            MusicModeTimeout: No inbound connection within accept_timeout. The
                original transport stays active.
            DeviceError, RequestTimeout, ConnectionClosed: set_music failed.
        """
        if self.state is not MusicState.NOT_STARTED:
            raise RuntimeError(f"Music mode handoff already ran (state {self.state.name})")

        loop = asyncio.get_running_loop()
        self._inbound = loop.create_future()
        self._server = await asyncio.start_server(self._on_inbound, host=self.bind_host, port=self.port)
        listen_port = self._server.sockets[0].getsockname()[1]
        self.advertised = (self.host, listen_port)
        self.state = MusicState.LISTENER_OPEN
        logger.info("Music mode listener on %s:%d (advertising %s:%d)", self.bind_host, listen_port, *self.advertised)

        try:
            await self.session.set_music(MusicAction.ON, self.host, listen_port)
            self.state = MusicState.AWAITING_INBOUND

            try:
                reader, writer = await asyncio.wait_for(asyncio.shield(self._inbound), timeout=self.accept_timeout)
            except TimeoutError as e:
                raise MusicModeTimeout(
                    f"Device did not connect to {self.host}:{listen_port} within {self.accept_timeout:g}s"
                ) from e
        except BaseException:
            self.state = MusicState.FAILED
            self._discard_inbound()
            raise
        finally:
            self._close_listener()

        transport = Transport(reader, writer)
        try:
            await self.session._promote(transport)
        except BaseException:
            self.state = MusicState.FAILED
            raise

        self.state = MusicState.PROMOTED
        logger.info("Music mode active via %s:%d", *transport.remote_address)
        return transport

    async def _on_inbound(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        if self._inbound is None or self._inbound.done():
            logger.warning("Rejecting unexpected music mode connection from %s", peer)
            writer.close()
            return
        logger.debug("Music mode connection from %s", peer)
        self._inbound.set_result((reader, writer))

    def _discard_inbound(self) -> None:
        # A connection that raced in after a failure is not used.
        if self._inbound is None:
            return
        if self._inbound.done() and not self._inbound.cancelled():
            _reader, writer = self._inbound.result()
            writer.close()
        else:
            self._inbound.cancel()

    def _close_listener(self) -> None:
        if self._server is None:
            return
        # Only stop accepting: wait_closed() would also wait for the accepted
        # connection, which stays open as the session transport.
        self._server.close()
        self._server = None
        logger.debug("Music mode listener closed")
