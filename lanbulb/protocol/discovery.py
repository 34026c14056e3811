"""
SSDP-style multicast discovery of LAN bulbs.

A controller sends one M-SEARCH datagram to the multicast group
239.255.255.250:1982 and every bulb answers, unicast, with an HTTP-like
header block:

    HTTP/1.1 200 OK
    Cache-Control: max-age=3600
    Location: yeelight://192.168.1.239:55443
    id: 0x000000000015243f
    model: color
    fw_ver: 18
    support: get_prop set_default set_power toggle ...
    power: on
    bright: 100
    name: living room

Replies are collected for a bounded window. The "id" header identifies a
device; a repeated reply from the same id is the same device.
"""

import asyncio
import logging
import socket
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lanbulb.protocol.transport import DEFAULT_PORT

if TYPE_CHECKING:
    from lanbulb.session.session import Session

logger = logging.getLogger(__name__)

MULTICAST_GROUP = "239.255.255.250"
DISCOVERY_PORT = 1982

SEARCH_TARGET = "wifi_bulb"

REPLY_STATUS_LINE = "HTTP/1.1 200 OK"

LOCATION_SCHEME = "yeelight://"


def build_search_payload(group: str = MULTICAST_GROUP, port: int = DISCOVERY_PORT) -> bytes:
    """Build the M-SEARCH probe datagram."""
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {group}:{port}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"ST: {SEARCH_TARGET}\r\n"
    ).encode("ascii")


@dataclass
class DiscoveredDevice:
    """
    Snapshot of one discovery reply.

    Not a live handle: call connect() to open a Session.

    Attributes:
        id: Numeric device id (from the hex "id" header).
        address: Control address from the Location header.
        port: Control port from the Location header.
        headers: All reply headers, keys as sent by the device.
        response_address: (host, port) the reply came from.
        last_seen: Wall-clock time of the latest reply folded in.
    """

    id: int
    address: str
    port: int
    headers: dict[str, str] = field(default_factory=dict)
    response_address: tuple[str, int] = ("", 0)
    last_seen: float = field(default_factory=time.time)

    def refresh(self, other: "DiscoveredDevice") -> None:
        """Fold a later reply from the same device into this one."""
        self.address = other.address
        self.port = other.port
        self.headers = other.headers
        self.response_address = other.response_address
        self.last_seen = other.last_seen

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default

    @property
    def name(self) -> str:
        return self.header("name") or ""

    @property
    def model(self) -> str:
        return self.header("model") or ""

    @property
    def supported_methods(self) -> list[str]:
        return (self.header("support") or "").split()

    @property
    def location(self) -> str:
        return f"{self.address}:{self.port}"

    async def connect(self, **kwargs: Any) -> "Session":
        """
        Open a Session to this device.

        Keyword arguments are passed to Session.connect.
        """
        from lanbulb.session.session import Session

        return await Session.connect(self.address, self.port, **kwargs)

    def __str__(self) -> str:
        return f"{self.location}\t{self.name or '-'}"


def parse_location(location: str) -> tuple[str, int]:
    """
    Split a ``yeelight://host:port`` location.

    Raises:
        ValueError: If the host or port is missing or the port is not a number.
    """
    value = location.strip()
    if value.lower().startswith(LOCATION_SCHEME):
        value = value[len(LOCATION_SCHEME) :]
    host, sep, port = value.rpartition(":")
    if not sep:
        return value, DEFAULT_PORT
    if not host:
        raise ValueError(f"Location without host: {location!r}")
    return host, int(port)


def parse_reply(data: bytes, addr: tuple[str, int]) -> DiscoveredDevice | None:
    """
    Parse one discovery reply.

    Returns:
        The device, or None if the datagram is not a valid bulb reply (wrong
        status line, missing or non-hex id). Our own probe, looped back by
        the multicast stack, is rejected here as well.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None

    lines = text.split("\r\n")
    if lines[0].strip() != REPLY_STATUS_LINE:
        return None

    headers: dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if sep and key.strip():
            headers[key.strip()] = value.strip()

    lowered = {k.lower(): v for k, v in headers.items()}
    raw_id = lowered.get("id")
    if not raw_id:
        return None

    try:
        device_id = int(raw_id, 16)
    except ValueError:
        return None

    address, port = addr[0], DEFAULT_PORT
    if "location" in lowered:
        try:
            address, port = parse_location(lowered["location"])
        except ValueError:
            return None

    return DiscoveredDevice(
        id=device_id,
        address=address,
        port=port,
        headers=headers,
        response_address=(addr[0], addr[1]),
    )


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects parsed replies on the probe socket into a queue."""

    def __init__(self) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.replies: asyncio.Queue[DiscoveredDevice] = asyncio.Queue()
        self.skipped = 0

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:  # type: ignore[override]
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        device = parse_reply(data, addr)
        if device is None:
            self.skipped += 1
            logger.debug("Ignoring non-bulb datagram from %s:%d (%d bytes)", addr[0], addr[1], len(data))
            return
        self.replies.put_nowait(device)

    def error_received(self, exc: Exception) -> None:
        logger.warning("Discovery socket error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc:
            logger.warning("Discovery socket lost: %s", exc)


async def _probe(
    bind_host: str,
    bind_port: int,
    group: str,
    port: int,
) -> tuple[asyncio.DatagramTransport, DiscoveryProtocol]:
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        DiscoveryProtocol,
        local_addr=(bind_host, bind_port),
        family=socket.AF_INET,
    )

    sock = transport.get_extra_info("socket")
    if sock is not None:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)

    transport.sendto(build_search_payload(group, port), (group, port))
    logger.debug("Sent discovery probe to %s:%d", group, port)
    return transport, protocol


async def discover(
    timeout: float = 5.0,
    *,
    group: str = MULTICAST_GROUP,
    port: int = DISCOVERY_PORT,
    bind_host: str = "0.0.0.0",
    bind_port: int = 0,
) -> AsyncIterator[DiscoveredDevice]:
    """
    Probe the network and yield each distinct device as it first replies.

    The sequence is finite: it ends when ``timeout`` seconds have passed since
    the probe. A later reply from an already-yielded device is not yielded
    again; it updates that device's metadata in place. Zero replies is an
    empty sequence, not an error. Each call sends a fresh probe.

    Args:
        timeout: Listening window in seconds.
        group: Multicast group (or unicast address) to probe.
        port: Destination port of the probe.
        bind_host: Local address of the probe socket.
        bind_port: Local port of the probe socket; 0 is ephemeral.
    """
    transport, protocol = await _probe(bind_host, bind_port, group, port)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    found: dict[int, DiscoveredDevice] = {}

    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                device = await asyncio.wait_for(protocol.replies.get(), timeout=remaining)
            except TimeoutError:
                break

            known = found.get(device.id)
            if known is not None:
                known.refresh(device)
                logger.debug("Updated device 0x%016x from a repeat reply", device.id)
                continue
            found[device.id] = device
            logger.info("Discovered device 0x%016x at %s (%s)", device.id, device.location, device.name or "unnamed")
            yield device
    finally:
        transport.close()

    logger.debug("Discovery finished: %d device(s), %d datagram(s) skipped", len(found), protocol.skipped)


async def scan(
    timeout: float = 5.0,
    *,
    group: str = MULTICAST_GROUP,
    port: int = DISCOVERY_PORT,
    bind_host: str = "0.0.0.0",
    bind_port: int = 0,
) -> list[DiscoveredDevice]:
    """
    Probe the network for the full window and return all devices.

    Devices are ordered by first reply. A duplicate reply from the same id
    replaces that entry's metadata with the latest reply.
    """
    transport, protocol = await _probe(bind_host, bind_port, group, port)
    try:
        await asyncio.sleep(timeout)
    finally:
        transport.close()

    found: dict[int, DiscoveredDevice] = {}
    while not protocol.replies.empty():
        device = protocol.replies.get_nowait()
        # dict keeps first-insertion order; reassigning keeps the position.
        found[device.id] = device

    logger.info("Scan found %d device(s)", len(found))
    return list(found.values())
