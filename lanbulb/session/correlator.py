"""
Request correlation by id.

Each outgoing command gets the next id of a per-session counter (starting at
1) and a pending slot holding an asyncio future plus a timeout timer. The
read loop hands every decoded Response to resolve(); the slot with that id is
completed exactly once and removed. Replies whose id has no slot (unknown,
already answered, timed out or abandoned) are dropped.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from lanbulb.errors import ConnectionClosed, DeviceError, LanBulbError, RequestTimeout
from lanbulb.protocol.codec import Command, Response, encode

logger = logging.getLogger(__name__)

# Sends one encoded frame on the session's active transport.
FrameSender = Callable[[bytes], Awaitable[None]]


@dataclass
class PendingRequest:
    """Handle for an issued request."""

    id: int
    method: str
    future: asyncio.Future[list[Any]] = field(repr=False)
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    async def wait(self) -> list[Any]:
        """
        Wait for the response.

        Returns:
            The response's result list.

        Raises:
            DeviceError: The device answered with an error.
            RequestTimeout: No answer within the request timeout.
            ConnectionClosed: The connection ended first.
        """
        return await self.future


class RequestCorrelator:
    """
    Tracks in-flight requests of one session.

    The correlator never retries: a timed-out or failed request is reported to
    its caller and forgotten.
    """

    def __init__(self, send: FrameSender, timeout: float = 5.0) -> None:
        """
        Initialize the correlator.

        Args:
            send: Coroutine function writing one frame to the transport.
            timeout: Default per-request timeout in seconds.
        """
        self._send = send
        self.timeout = timeout
        self._next_id = 1
        self._pending: dict[int, PendingRequest] = {}
        self._closed_error: ConnectionClosed | None = None

    @property
    def pending_ids(self) -> list[int]:
        return sorted(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed_error is not None

    def _allocate_id(self) -> int:
        request_id = self._next_id
        self._next_id += 1
        return request_id

    async def issue(self, command: Command, timeout: float | None = None) -> PendingRequest:
        """
        Register and send a command.

        Args:
            command: Command to send.
            timeout: Override of the default timeout for this request.

        Returns:
            The pending request; await ``wait()`` for the result.

        Raises:
            ConnectionClosed: The session is closed.
            WriteError: Sending failed. No slot is left behind.
        """
        if self._closed_error is not None:
            raise ConnectionClosed(str(self._closed_error))

        loop = asyncio.get_running_loop()
        timeout = self.timeout if timeout is None else timeout
        request_id = self._allocate_id()

        pending = PendingRequest(request_id, command.method, loop.create_future())
        pending.timer = loop.call_later(timeout, self._expire, request_id, timeout)
        pending.future.add_done_callback(lambda _f, rid=request_id: self._forget(rid, pending))
        self._pending[request_id] = pending

        try:
            await self._send(encode(command, request_id))
        except BaseException:
            # Nobody will ever wait on this slot. A failed send may already
            # have failed it through fail_all(); mark that error retrieved.
            self._forget(request_id, pending)
            if pending.future.done() and not pending.future.cancelled():
                pending.future.exception()
            else:
                pending.future.cancel()
            raise

        return pending

    async def request(self, command: Command, timeout: float | None = None) -> list[Any]:
        """Issue a command and wait for its result."""
        pending = await self.issue(command, timeout)
        return await pending.wait()

    async def send_only(self, command: Command) -> int:
        """
        Send a command without recording a pending slot.

        Used when the device is known not to answer (music mode). The id is
        still consumed so ids stay unique per session.
        """
        if self._closed_error is not None:
            raise ConnectionClosed(str(self._closed_error))
        request_id = self._allocate_id()
        await self._send(encode(command, request_id))
        return request_id

    def resolve(self, response: Response) -> bool:
        """
        Complete the pending request a response answers.

        Returns:
            True if a waiting caller was completed, False if the response was
            discarded.
        """
        pending = self._pending.pop(response.id, None)
        if pending is None or pending.future.done():
            logger.debug("Discarding response for unknown or finished id %d", response.id)
            return False

        if pending.timer is not None:
            pending.timer.cancel()

        if response.error is not None:
            pending.future.set_exception(DeviceError(response.error.code, response.error.message))
        else:
            pending.future.set_result(response.result or [])
        return True

    def fail(self, request_id: int, error: LanBulbError) -> bool:
        """Fail one pending request. Returns False if it was not pending."""
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        pending.future.set_exception(error)
        return True

    def fail_all(self, error: ConnectionClosed) -> int:
        """
        Fail every pending request and refuse new ones.

        Returns:
            Number of requests failed.
        """
        self._closed_error = error
        pending_requests = list(self._pending.values())
        self._pending.clear()

        failed = 0
        for pending in pending_requests:
            if pending.timer is not None:
                pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_exception(ConnectionClosed(str(error)))
                failed += 1

        if failed:
            logger.info("Failed %d pending request(s): %s", failed, error)
        return failed

    def _expire(self, request_id: int, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        logger.debug("Request %d (%s) timed out", request_id, pending.method)
        pending.future.set_exception(RequestTimeout(request_id, pending.method, timeout))

    def _forget(self, request_id: int, pending: PendingRequest) -> None:
        # Runs when the future completes for any reason, including a caller
        # cancelling its wait.
        if self._pending.get(request_id) is pending:
            del self._pending[request_id]
        if pending.timer is not None:
            pending.timer.cancel()
