"""
Exception hierarchy for meshlink.

All exceptions inherit from MeshLinkError, providing a clean hierarchy
for error handling. The design follows these principles:

1. Framing problems are recovered inside the stream framer and never raised
2. Device-reported errors carry the failed command code and status byte
3. Timeouts are distinct from device errors so callers can choose to retry
4. Sequence failures report how far the exchange got
"""

from __future__ import annotations

from typing import Final


class MeshLinkError(Exception):
    """
    Base exception for all meshlink errors.

    All library-specific exceptions inherit from this class, allowing
    callers to catch all meshlink errors with a single except clause.
    """

    pass


class ProtocolError(MeshLinkError):
    """
    Protocol-level error.

    Raised when the protocol is violated, such as:
    - Unexpected response code for a command
    - Handshake reply of the wrong type
    """

    pass


class FrameError(ProtocolError):
    """
    Frame construction error.

    Raised when a frame cannot be encoded. Malformed frames on the receive
    path are discarded by the StreamFramer instead of raising.
    """

    pass


class OversizedFrameError(FrameError):
    """Payload is larger than the maximum frame size."""

    def __init__(self, size: int, maximum: int) -> None:
        super().__init__(f"Payload of {size} bytes exceeds maximum frame size of {maximum} bytes")
        self.size = size
        self.maximum = maximum


class SequenceError(ProtocolError):
    """
    Multi-frame sequence failure.

    Raised when a contact or message sync cannot complete:
    - An item fails structural validation
    - A frame with an unrecognized response code arrives mid-sequence
    - The iteration safety bound is exceeded
    """

    def __init__(
        self,
        message: str,
        *,
        sequence: str | None = None,
        response_code: int | None = None,
        records_received: int = 0,
    ) -> None:
        super().__init__(message)
        self.sequence = sequence
        self.response_code = response_code
        self.records_received = records_received

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.sequence:
            parts.append(f"sequence={self.sequence}")
        if self.response_code is not None:
            parts.append(f"code=0x{self.response_code:02X}")
        if self.records_received:
            parts.append(f"received={self.records_received}")
        return " ".join(parts) if len(parts) > 1 else parts[0]


class TimeoutError(MeshLinkError):  # noqa: A001 - intentionally shadows builtin
    """
    Communication timeout.

    Raised when a response is not received within the expected time.
    The pending command is cleared before this is raised, so the next
    command can be sent immediately.
    """

    def __init__(
        self,
        message: str = "Communication timeout",
        *,
        timeout_seconds: float | None = None,
        command_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds
        self.command_code = command_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.timeout_seconds is not None:
            return f"{base} (after {self.timeout_seconds:.1f}s)"
        return base


class ConnectionError(MeshLinkError):  # noqa: A001 - intentionally shadows builtin
    """
    Device session connection error.

    Raised when:
    - A command is issued on a session that is not connected
    - The session is disconnected while a command is waiting for a reply
    """

    pass


class CommandError(MeshLinkError):
    """
    Error response from the device.

    Raised when the device answers a command with the error response code.
    The session remains usable for subsequent commands.
    """

    def __init__(
        self,
        command_code: int,
        status: int | None,
        message: str | None = None,
    ) -> None:
        self.command_code = command_code
        self.status = status
        if message is None:
            message = STATUS_MESSAGES.get(status, "Unknown error") if status is not None else "No status"
        self.message = message
        status_text = f"0x{status:02X}" if status is not None else "none"
        super().__init__(
            f"Command 0x{command_code:02X} failed with status {status_text}: {self.message}"
        )


class TransportError(MeshLinkError):
    """
    Transport-level error.

    Raised for low-level transport issues:
    - Serial port errors
    - I/O errors
    - Port closed underneath the session
    """

    pass


# Status byte to message mapping for the generic error response
STATUS_MESSAGES: Final[dict[int, str]] = {
    0x00: "Success",
    0x01: "Invalid command",
    0x02: "Invalid parameter",
    0x03: "Device error",
    0x04: "Network error",
    0x05: "Timeout",
    0xFF: "Unknown error",
}
