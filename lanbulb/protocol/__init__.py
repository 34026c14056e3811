"""
Protocol implementations for lanbulb.

This package contains the wire-level pieces:
- codec: JSON frame encoding/decoding
- commands: parameter types and command builders
- transport: line-framed TCP connection to one device
- discovery: multicast device discovery
"""

from lanbulb.protocol.codec import Command, Notification, Response, decode, encode
from lanbulb.protocol.transport import DEFAULT_PORT, Transport

__all__ = ["Command", "DEFAULT_PORT", "Notification", "Response", "Transport", "decode", "encode"]
