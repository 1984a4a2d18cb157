"""
Mock transport for testing.

This module provides a mock transport implementation that allows testing
the protocol engine without a radio. Device output is either queued as a
reply to the next write, generated by a callback from the written bytes,
or fed directly to simulate unsolicited traffic.

Example:
    >>> from meshlink.transport import MockTransport
    >>> from meshlink import DeviceSession, SessionConfig
    >>>
    >>> mock = MockTransport()
    >>> mock.add_response(bytes.fromhex("3E0100" "0A"))  # NO_MORE_MESSAGES
    >>>
    >>> async with DeviceSession(mock, SessionConfig(handshake_on_connect=False)) as session:
    ...     result = await session.run_message_sync()
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Union

from meshlink.exceptions import TransportError
from meshlink.transport.abc import AbstractTransport

_Inbound = Union[bytes, BaseException, None]


class MockTransport(AbstractTransport):
    """
    Mock transport for testing without hardware.

    Records all written data for verification. Each write releases the next
    queued response (if any) to the reader; feed() makes bytes readable
    immediately.

    Attributes:
        written_data: List of all bytes written to the transport.

    Example:
        >>> mock = MockTransport()
        >>> mock.add_response(b"\\x3e\\x01\\x00\\x00")  # OK
        >>>
        >>> async with mock:
        ...     await mock.write(b"test")
        ...     chunk = await mock.read_available()
        ...     assert chunk == b"\\x3e\\x01\\x00\\x00"
        ...     assert mock.written_data == [b"test"]
    """

    def __init__(self, port_name: str = "mock://test") -> None:
        """
        Initialize the mock transport.

        Args:
            port_name: Identifier for the mock transport.
        """
        self._port_name = port_name
        self._is_open = False
        self._responses: deque[bytes] = deque()
        self._written_data: list[bytes] = []
        self._inbound: asyncio.Queue[_Inbound] = asyncio.Queue()
        self._response_callback: Callable[[bytes], bytes | None] | None = None
        self._write_error: BaseException | None = None
        self._chunk_size: int | None = None
        self.open_count = 0
        self.close_count = 0

    @property
    def is_open(self) -> bool:
        """Check if the mock transport is open."""
        return self._is_open

    @property
    def port_name(self) -> str:
        """Get the mock port name."""
        return self._port_name

    @property
    def written_data(self) -> list[bytes]:
        """Get all data written to the transport."""
        return self._written_data.copy()

    @property
    def last_written(self) -> bytes | None:
        """Get the most recently written data."""
        return self._written_data[-1] if self._written_data else None

    @property
    def pending_responses(self) -> int:
        """Number of queued responses not yet released by a write."""
        return len(self._responses)

    # =========================================================================
    # Scripting
    # =========================================================================

    def add_response(self, response: bytes) -> None:
        """
        Queue a response to release on the next write.

        Args:
            response: Bytes the device sends back (may hold several frames).
        """
        self._responses.append(bytes(response))

    def add_responses(self, *responses: bytes) -> None:
        """
        Queue several responses, one per write.

        Args:
            *responses: Multiple byte responses to add.
        """
        for response in responses:
            self.add_response(response)

    def set_response_callback(
        self,
        callback: Callable[[bytes], bytes | None] | None,
    ) -> None:
        """
        Set a callback to dynamically generate responses.

        The callback receives the written data and returns the response
        bytes. If it returns None, the next queued response is used instead.

        Args:
            callback: Function that takes written bytes and returns response.
        """
        self._response_callback = callback

    def set_chunk_size(self, chunk_size: int | None) -> None:
        """
        Split device output into reads of at most chunk_size bytes.

        Args:
            chunk_size: Bytes per read, or None to deliver each response whole.
        """
        if chunk_size is not None and chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._chunk_size = chunk_size

    def feed(self, data: bytes) -> None:
        """
        Make bytes readable immediately, as if the device sent them unprompted.

        Args:
            data: Raw bytes from the device.
        """
        data = bytes(data)
        if not data:
            return
        size = self._chunk_size or len(data)
        for start in range(0, len(data), size):
            self._inbound.put_nowait(data[start : start + size])

    def inject_error(self, error: BaseException) -> None:
        """
        Make the next read raise an error, after any bytes already readable.

        Args:
            error: Exception raised by read_available().
        """
        self._inbound.put_nowait(error)

    def set_write_error(self, error: BaseException | None) -> None:
        """
        Make subsequent writes raise an error.

        Args:
            error: Exception raised by write(), or None to clear.
        """
        self._write_error = error

    def clear(self) -> None:
        """Clear all written data, queued responses and unread input."""
        self._written_data.clear()
        self._responses.clear()
        self.discard_buffers()

    def clear_written(self) -> None:
        """Clear only the written data history."""
        self._written_data.clear()

    # =========================================================================
    # AbstractTransport
    # =========================================================================

    async def open(self) -> None:
        """Open the mock transport."""
        if self._is_open:
            raise TransportError("Mock transport already open")

        # Drop close sentinels left by a previous close
        kept: list[_Inbound] = []
        while not self._inbound.empty():
            item = self._inbound.get_nowait()
            if item is not None:
                kept.append(item)
        for item in kept:
            self._inbound.put_nowait(item)

        self._is_open = True
        self.open_count += 1

    async def close(self) -> None:
        """Close the mock transport and wake any pending reader."""
        if self._is_open:
            self.close_count += 1
        self._is_open = False
        self._inbound.put_nowait(None)

    async def write(self, data: bytes) -> None:
        """
        Write data to the mock transport.

        Records the written data and releases a response.

        Args:
            data: Bytes to write.

        Raises:
            TransportError: If transport is not open.
        """
        if not self._is_open:
            raise TransportError("Mock transport not open")
        if self._write_error is not None:
            raise self._write_error

        self._written_data.append(bytes(data))
        self._on_write(bytes(data))

    def _on_write(self, data: bytes) -> None:
        if self._response_callback is not None:
            response = self._response_callback(data)
            if response is not None:
                self.feed(response)
                return
        if self._responses:
            self.feed(self._responses.popleft())

    async def read_available(self, timeout: float | None = None) -> bytes:
        """
        Return the next chunk of device output.

        Args:
            timeout: Seconds to wait. None waits indefinitely.

        Returns:
            Next chunk, or b"" on timeout.

        Raises:
            TransportError: If the transport is not open or gets closed.
        """
        if not self._is_open:
            raise TransportError("Mock transport not open")

        try:
            if timeout is None:
                item = await self._inbound.get()
            else:
                item = await asyncio.wait_for(self._inbound.get(), timeout)
        except asyncio.TimeoutError:
            return b""

        if item is None:
            raise TransportError("Mock transport closed")
        if isinstance(item, BaseException):
            raise item
        return item

    def discard_buffers(self) -> None:
        """Discard unread device output."""
        while not self._inbound.empty():
            self._inbound.get_nowait()

    # =========================================================================
    # Assertions
    # =========================================================================

    def assert_written(self, expected: bytes, index: int = -1) -> None:
        """
        Assert that specific data was written.

        Args:
            expected: Expected bytes.
            index: Index in written_data list (-1 for last).

        Raises:
            AssertionError: If data doesn't match.
        """
        if not self._written_data:
            raise AssertionError("No data written to mock transport")

        actual = self._written_data[index]
        if actual != expected:
            raise AssertionError(f"Written data mismatch: expected {expected!r}, got {actual!r}")

    def assert_write_count(self, expected: int) -> None:
        """
        Assert number of write operations.

        Args:
            expected: Expected number of writes.

        Raises:
            AssertionError: If count doesn't match.
        """
        actual = len(self._written_data)
        if actual != expected:
            raise AssertionError(f"Write count mismatch: expected {expected}, got {actual}")

    def __repr__(self) -> str:
        status = "open" if self._is_open else "closed"
        return f"MockTransport({self._port_name!r}, {status}, writes={len(self._written_data)})"


class ScriptedMockTransport(MockTransport):
    """
    Mock transport with scripted request/response pairs.

    Each write consumes the next script step: the written bytes are checked
    against the expected request (if given) and the step's response is
    released. A step with response None answers nothing, which lets tests
    provoke timeouts.

    Example:
        >>> mock = ScriptedMockTransport()
        >>> mock.expect(request=b"<\\x02\\x00\\x01\\x08", response=b">\\x01\\x00\\x05")
        >>> mock.expect(request=None, response=None)
    """

    def __init__(self, port_name: str = "mock://scripted") -> None:
        super().__init__(port_name)
        self._script: list[tuple[bytes | None, bytes | None]] = []
        self._script_index = 0

    @property
    def remaining_steps(self) -> int:
        """Number of script steps not yet consumed."""
        return len(self._script) - self._script_index

    def expect(
        self,
        response: bytes | None,
        request: bytes | None = None,
    ) -> None:
        """
        Add an expected request/response pair.

        Args:
            response: Response to release, or None for no reply.
            request: Expected request (None to match any).
        """
        self._script.append((request, response))

    def _on_write(self, data: bytes) -> None:
        if self._script_index >= len(self._script):
            super()._on_write(data)
            return

        expected_request, response = self._script[self._script_index]
        if expected_request is not None and data != expected_request:
            raise AssertionError(
                f"Script mismatch at step {self._script_index}: "
                f"expected {expected_request!r}, got {data!r}"
            )
        self._script_index += 1
        if response is not None:
            self.feed(response)

    def reset_script(self) -> None:
        """Reset script to beginning."""
        self._script_index = 0
        self.discard_buffers()

    def clear_script(self) -> None:
        """Clear all scripted expectations."""
        self._script.clear()
        self._script_index = 0
