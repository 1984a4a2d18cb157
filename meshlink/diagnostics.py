"""
Diagnostics hooks for protocol traffic.

A DiagnosticsSink receives notifications about everything the protocol
engine does that a caller cannot observe through return values: bytes
thrown away during resynchronization, frames that matched nothing, push
notifications, transport faults. The sink is injected into DeviceSession;
there is no process-wide registry.

The base class implements every hook as a no-op so subclasses override
only what they need. LoggingDiagnostics, the default, writes each event to
the ``meshlink.diagnostics`` logger.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from meshlink.protocol.encoding import bytes_to_hex

if TYPE_CHECKING:
    from meshlink.protocol.frame_codec import Frame

# Longest hex dump written per event
HEX_DUMP_LIMIT = 64


class DiagnosticsSink:
    """No-op diagnostics sink. Subclass and override the hooks of interest."""

    def bytes_discarded(self, data: bytes, reason: str) -> None:
        """Bytes were dropped while resynchronizing the stream."""

    def frame_received(self, frame: Frame) -> None:
        """A complete frame was decoded from the stream."""

    def frame_sent(self, data: bytes) -> None:
        """An encoded frame was written to the transport."""

    def frame_ignored(self, frame: Frame, reason: str) -> None:
        """A decoded frame was dropped without being routed anywhere."""

    def unmatched_frame(self, frame: Frame) -> None:
        """A reply arrived with no pending command and no open sequence."""

    def push_received(self, code: int, data: bytes) -> None:
        """A push notification was routed to observers."""

    def command_completed(self, command_code: int, response_code: int, elapsed: float) -> None:
        """A command received its reply."""

    def command_failed(self, command_code: int, error: BaseException) -> None:
        """A command ended with an error, timeout or cancellation."""

    def transport_error(self, error: BaseException) -> None:
        """The transport failed and the session is going down."""


class LoggingDiagnostics(DiagnosticsSink):
    """
    Diagnostics sink that writes events to a logger.

    Wire traffic is logged at DEBUG, anomalies at WARNING and transport
    faults at ERROR.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("meshlink.diagnostics")

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def bytes_discarded(self, data: bytes, reason: str) -> None:
        self._logger.debug(
            "Discarded %d byte(s) (%s): %s",
            len(data),
            reason,
            bytes_to_hex(data, limit=HEX_DUMP_LIMIT),
        )

    def frame_received(self, frame: Frame) -> None:
        self._logger.debug(
            "RX %s: %s",
            frame.direction.name,
            bytes_to_hex(frame.payload, limit=HEX_DUMP_LIMIT),
        )

    def frame_sent(self, data: bytes) -> None:
        self._logger.debug("TX: %s", bytes_to_hex(data, limit=HEX_DUMP_LIMIT))

    def frame_ignored(self, frame: Frame, reason: str) -> None:
        self._logger.debug("Ignored %r: %s", frame, reason)

    def unmatched_frame(self, frame: Frame) -> None:
        self._logger.warning("Unsolicited reply %r with no pending command", frame)

    def push_received(self, code: int, data: bytes) -> None:
        self._logger.debug("Push 0x%02X (%d bytes)", code, len(data))

    def command_completed(self, command_code: int, response_code: int, elapsed: float) -> None:
        self._logger.debug(
            "Command 0x%02X answered with 0x%02X in %.3fs",
            command_code,
            response_code,
            elapsed,
        )

    def command_failed(self, command_code: int, error: BaseException) -> None:
        self._logger.debug("Command 0x%02X failed: %s", command_code, error)

    def transport_error(self, error: BaseException) -> None:
        self._logger.error("Transport failure: %s", error)
