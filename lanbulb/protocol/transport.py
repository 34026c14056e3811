"""
Connection transport for one device.

A Transport owns an asyncio stream pair to a single device. Frames are
newline-delimited; writes are serialized with a lock because the protocol has
no interleave marker beyond line framing, while reads proceed independently
through the frames() iterator.
"""

import asyncio
import logging
import socket
from collections.abc import AsyncIterator

from lanbulb.errors import ConnectError, ConnectRefused, ConnectTimeout, WriteError

logger = logging.getLogger(__name__)

# Default device control port
DEFAULT_PORT = 55443

# Frames are tiny; anything longer than this is a broken peer.
MAX_FRAME_BYTES = 64 * 1024


class Transport:
    """
    Bidirectional, line-framed byte stream to a device.

    Attributes:
        remote_address: (host, port) of the peer, or ("unknown", 0).
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self._closed = False

        peername = writer.get_extra_info("peername")
        self.remote_address: tuple[str, int] = (peername[0], peername[1]) if peername else ("unknown", 0)

    @classmethod
    async def connect(cls, host: str, port: int = DEFAULT_PORT, timeout: float = 5.0) -> "Transport":
        """
        Open a TCP connection to a device.

        Args:
            host: Device address.
            port: Control port (0 selects the default 55443).
            timeout: Seconds to wait for the connection.

        Raises:
            ConnectTimeout: No connection within ``timeout``.
            ConnectRefused: The device refused the connection.
            ConnectError: Any other OS-level connect failure.
        """
        port = port or DEFAULT_PORT
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=MAX_FRAME_BYTES),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise ConnectTimeout(f"Timed out connecting to {host}:{port} after {timeout:g}s") from e
        except ConnectionRefusedError as e:
            raise ConnectRefused(f"Connection refused by {host}:{port}") from e
        except OSError as e:
            raise ConnectError(f"Could not connect to {host}:{port}: {e}") from e

        logger.info("Connected to %s:%d", host, port)
        return cls(reader, writer)

    @classmethod
    async def attach(cls, sock: socket.socket) -> "Transport":
        """Wrap an already-connected socket."""
        reader, writer = await asyncio.open_connection(sock=sock, limit=MAX_FRAME_BYTES)
        transport = cls(reader, writer)
        logger.debug("Attached to socket connected to %s:%d", *transport.remote_address)
        return transport

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: bytes) -> None:
        """
        Write one frame.

        Raises:
            WriteError: If the transport is closed or the write fails. The
                transport is closed before the error propagates.
        """
        if self._closed:
            raise WriteError("Transport is closed")

        async with self._write_lock:
            try:
                self._writer.write(frame)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                logger.warning("Write to %s:%d failed: %s", *self.remote_address, e)
                await self.close()
                raise WriteError(f"Write to {self.remote_address[0]} failed: {e}") from e

        logger.debug("send -> %s", frame.rstrip().decode("utf-8", errors="replace"))

    async def frames(self) -> AsyncIterator[bytes]:
        """
        Yield incoming frames without their delimiter.

        The iterator ends when the peer closes the connection or a read fails.
        Only one consumer should iterate at a time.
        """
        while True:
            try:
                line = await self._reader.readline()
            except (ConnectionError, OSError) as e:
                logger.info("Read from %s:%d failed: %s", *self.remote_address, e)
                return
            except ValueError as e:
                # readline() signals an overlong line this way.
                logger.warning("Dropping connection to %s:%d: %s", *self.remote_address, e)
                return

            if not line:
                logger.debug("EOF from %s:%d", *self.remote_address)
                return

            line = line.strip()
            if line:
                logger.debug("recv <- %s", line.decode("utf-8", errors="replace"))
                yield line

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        logger.debug("Closing transport to %s:%d", *self.remote_address)
        try:
            self._writer.close()
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass  # Already disconnected

    def __repr__(self) -> str:
        host, port = self.remote_address
        return f"Transport({host}:{port}, closed={self._closed})"
