"""
lanbulb - asyncio client for LAN smart bulbs.

lanbulb speaks the line-delimited JSON control protocol of Yeelight-compatible
bulbs: it keeps a session to one device, correlates replies with requests,
delivers pushed property notifications, discovers devices by multicast and
hands a session over to music mode to escape the command rate limit.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from lanbulb.errors import (
    ConnectError,
    ConnectionClosed,
    ConnectRefused,
    ConnectTimeout,
    DeviceError,
    LanBulbError,
    MalformedFrame,
    MusicModeTimeout,
    RequestTimeout,
    WriteError,
)
from lanbulb.protocol.discovery import DiscoveredDevice, discover, scan
from lanbulb.session import MusicModeManager, MusicState, Session, Subscription

__all__ = [
    "ConnectError",
    "ConnectRefused",
    "ConnectTimeout",
    "ConnectionClosed",
    "DeviceError",
    "DiscoveredDevice",
    "LanBulbError",
    "MalformedFrame",
    "MusicModeManager",
    "MusicModeTimeout",
    "MusicState",
    "RequestTimeout",
    "Session",
    "Subscription",
    "WriteError",
    "__version__",
    "discover",
    "scan",
]
