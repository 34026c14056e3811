"""
Tests for the wire codec.

Covers the exact request encoding and the response / notification split on
decode, including the malformed shapes a device may emit.
"""

import json

import pytest

from lanbulb.errors import MalformedFrame
from lanbulb.protocol.codec import (
    FRAME_DELIMITER,
    Command,
    ErrorDetail,
    Notification,
    Response,
    decode,
    encode,
)

# =============================================================================
# Encoding
# =============================================================================


class TestEncode:
    """Tests for encode()."""

    def test_exact_bytes(self) -> None:
        """Requests are compact JSON in id, method, params order plus CRLF."""
        frame = encode(Command("set_power", ("on", "smooth", 500, 0)), 1)

        assert frame == b'{"id":1,"method":"set_power","params":["on","smooth",500,0]}\r\n'

    def test_empty_params(self) -> None:
        frame = encode(Command("toggle"), 7)

        assert frame == b'{"id":7,"method":"toggle","params":[]}\r\n'

    def test_single_frame(self) -> None:
        """The delimiter appears only at the end, even for string params."""
        frame = encode(Command("set_name", ("line\nbreak",)), 3)

        assert frame.endswith(FRAME_DELIMITER)
        assert frame.count(b"\n") == 1
        assert json.loads(frame)["params"] == ["line\nbreak"]

    def test_command_params_become_tuple(self) -> None:
        command = Command("get_prop", ["power", "bright"])  # type: ignore[arg-type]

        assert command.params == ("power", "bright")
        assert hash(command) == hash(Command("get_prop", ("power", "bright")))


# =============================================================================
# Decoding
# =============================================================================


class TestDecode:
    """Tests for decode()."""

    def test_result_response(self) -> None:
        frame = decode(b'{"id":1,"result":["ok"]}\r\n')

        assert frame == Response(id=1, result=["ok"])
        assert not frame.is_error

    def test_error_response(self) -> None:
        frame = decode('{"id":2,"error":{"code":-1,"message":"unsupported method"}}')

        assert isinstance(frame, Response)
        assert frame.is_error
        assert frame.error == ErrorDetail(code=-1, message="unsupported method")

    def test_notification(self) -> None:
        frame = decode(b'{"method":"props","params":{"power":"on","bright":"10"}}')

        assert frame == Notification(method="props", params={"power": "on", "bright": "10"})

    def test_id_decides_kind(self) -> None:
        """A frame with an id is a response even if it also carries method/params."""
        frame = decode(b'{"id":5,"method":"props","params":{},"result":[]}')

        assert isinstance(frame, Response)
        assert frame.result == []

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"[1,2,3]",
            b'"string"',
            b'{"method":"props"}',
            b'{"params":{"power":"on"}}',
            b'{"method":"props","params":["on"]}',
            b'{"id":"1","result":["ok"]}',
            b'{"id":true,"result":["ok"]}',
        ],
    )
    def test_malformed_without_id(self, raw: bytes) -> None:
        with pytest.raises(MalformedFrame) as exc_info:
            decode(raw)

        assert exc_info.value.request_id is None
        assert exc_info.value.raw == raw

    @pytest.mark.parametrize(
        "raw",
        [
            b'{"id":4}',
            b'{"id":4,"result":"ok"}',
            b'{"id":4,"error":"bad"}',
            b'{"id":4,"error":{"message":"no code"}}',
        ],
    )
    def test_malformed_with_id_keeps_id(self, raw: bytes) -> None:
        """A broken response still reports which request it was for."""
        with pytest.raises(MalformedFrame) as exc_info:
            decode(raw)

        assert exc_info.value.request_id == 4

    def test_invalid_utf8(self) -> None:
        with pytest.raises(MalformedFrame):
            decode(b'{"id":1,"result":["\xff"]}')
