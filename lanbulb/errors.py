"""
Exception hierarchy for lanbulb.

Every error raised by the library derives from LanBulbError. Timeouts also
derive from the builtin TimeoutError and connection failures from
ConnectionError, so callers may catch either the library family or the
builtin one.
"""


class LanBulbError(Exception):
    """Base exception for all lanbulb errors."""

    pass


class ConnectError(LanBulbError, ConnectionError):
    """A connection to the device could not be established."""

    pass


class ConnectTimeout(ConnectError, TimeoutError):
    """No connection was established within the connect timeout."""

    pass


class ConnectRefused(ConnectError):
    """The device actively refused the connection."""

    pass


class MalformedFrame(LanBulbError):
    """
    An incoming frame could not be decoded.

    Attributes:
        raw: The offending bytes (or text).
        request_id: Integer id found in the frame, if any. A malformed frame
            with an id is surfaced to the caller waiting on that id.
    """

    def __init__(self, message: str, raw: bytes | str = b"", request_id: int | None = None) -> None:
        super().__init__(message)
        self.raw = raw
        self.request_id = request_id


class RequestTimeout(LanBulbError, TimeoutError):
    """No response arrived for a request within its timeout."""

    def __init__(self, request_id: int, method: str, timeout: float) -> None:
        super().__init__(f"No response to {method} (id={request_id}) within {timeout:g}s")
        self.request_id = request_id
        self.method = method
        self.timeout = timeout


class ConnectionClosed(LanBulbError, ConnectionError):
    """The session's connection is closed; pending and new requests fail."""

    pass


class WriteError(ConnectionClosed):
    """Writing a frame failed (connection reset, broken pipe)."""

    pass


class DeviceError(LanBulbError):
    """The device answered with an error response."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"Device response error: {message} (code {code})")
        self.code = code
        self.message = message


class MusicModeTimeout(LanBulbError, TimeoutError):
    """The device did not connect back to the music-mode listener in time."""

    pass
