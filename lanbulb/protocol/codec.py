"""
Wire codec for the LAN bulb control protocol.

Every message is a single JSON object terminated by CRLF.

Request (controller -> device):
    {"id": 1, "method": "set_power", "params": ["on", "smooth", 500, 0]}

Response (device -> controller):
    {"id": 1, "result": ["ok"]}
    {"id": 1, "error": {"code": -1, "message": "unsupported method"}}

Notification (device -> controller, unsolicited):
    {"method": "props", "params": {"power": "on", "bright": "10"}}

The presence of an "id" member is the only thing that separates a response
from a notification.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from lanbulb.errors import MalformedFrame

FRAME_DELIMITER = b"\r\n"


@dataclass(frozen=True)
class Command:
    """A device method call: name plus ordered, JSON-representable params."""

    method: str
    params: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        # Accept any iterable from callers but store an immutable tuple.
        if not isinstance(self.params, tuple):
            object.__setattr__(self, "params", tuple(self.params))


@dataclass(frozen=True)
class ErrorDetail:
    """Error member of an error response."""

    code: int
    message: str


@dataclass(frozen=True)
class Response:
    """A reply tagged with the id of the request it answers."""

    id: int
    result: list[Any] | None = None
    error: ErrorDetail | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class Notification:
    """An unsolicited property-change message pushed by the device."""

    method: str = "props"
    params: dict[str, Any] = field(default_factory=dict)


Frame = Response | Notification


def encode(command: Command, request_id: int) -> bytes:
    """
    Serialize a command into one wire frame.

    Args:
        command: The command to send.
        request_id: Correlation id allocated for this request.

    Returns:
        Compact JSON followed by the frame delimiter.
    """
    message = {"id": request_id, "method": command.method, "params": list(command.params)}
    return json.dumps(message, separators=(",", ":")).encode("utf-8") + FRAME_DELIMITER


def _is_int(value: Any) -> bool:
    # bool is an int subclass; a JSON true is not a valid id or code.
    return isinstance(value, int) and not isinstance(value, bool)


def decode(data: bytes | str) -> Frame:
    """
    Parse one frame into a Response or a Notification.

    Args:
        data: A single frame, with or without its trailing delimiter.

    Returns:
        The decoded frame.

    Raises:
        MalformedFrame: If the data is not a JSON object of either shape.
    """
    try:
        message = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedFrame(f"Invalid JSON: {e}", raw=data) from e

    if not isinstance(message, dict):
        raise MalformedFrame("Frame is not a JSON object", raw=data)

    if "id" in message:
        return _decode_response(message, data)

    method = message.get("method")
    params = message.get("params")
    if not isinstance(method, str) or not isinstance(params, dict):
        raise MalformedFrame("Notification lacks method/params", raw=data)

    return Notification(method=method, params=params)


def _decode_response(message: dict[str, Any], data: bytes | str) -> Response:
    request_id = message["id"]
    if not _is_int(request_id):
        raise MalformedFrame(f"Response id is not an integer: {request_id!r}", raw=data)

    if "result" in message:
        result = message["result"]
        if not isinstance(result, list):
            raise MalformedFrame("Response result is not a list", raw=data, request_id=request_id)
        return Response(id=request_id, result=result)

    error = message.get("error")
    if isinstance(error, dict) and _is_int(error.get("code")):
        return Response(
            id=request_id,
            error=ErrorDetail(code=error["code"], message=str(error.get("message", ""))),
        )

    raise MalformedFrame("Response lacks result/error", raw=data, request_id=request_id)
