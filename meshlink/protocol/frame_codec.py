"""
MeshCore frame encoding and decoding.

Every frame, in either direction, has the same layout:

    +--------+---------+---------+------------------+
    | Marker | Len lo  | Len hi  | Payload          |
    | 1 byte | 1 byte  | 1 byte  | Len bytes        |
    +--------+---------+---------+------------------+

- Marker 0x3C ('<'): host to device ("inbound" to the radio)
- Marker 0x3E ('>'): device to host ("outbound" from the radio)
- Length: little-endian count of payload bytes
- Payload byte 0: command code (host to device) or response/push code
  (device to host)
- Payload byte 1: status byte, meaningful only in error responses

There is no checksum or terminator; the length field alone delimits a
frame, which is why the stream framer has to resynchronize on markers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from meshlink.exceptions import OversizedFrameError
from meshlink.protocol.constants import (
    FRAME_MARKERS,
    CommandCode,
    ProtocolConstants,
    ResponseCode,
)
from meshlink.protocol.encoding import decode_uint16_le, encode_uint16_le


class Direction(Enum):
    """Frame direction, determined solely by the marker byte."""

    INBOUND = ProtocolConstants.MARKER_INBOUND
    """Host to device (0x3C)."""

    OUTBOUND = ProtocolConstants.MARKER_OUTBOUND
    """Device to host (0x3E)."""

    @property
    def marker(self) -> int:
        """Wire marker byte for this direction."""
        return self.value


class DecodeStatus(Enum):
    """
    Result codes for a decode attempt.

    These indicate the outcome of attempting to decode a frame from the
    start of a byte buffer.
    """

    SUCCESS = auto()
    """A complete frame was decoded."""

    NEED_MORE_DATA = auto()
    """Buffer holds a valid prefix of a frame; wait for more bytes."""

    INVALID = auto()
    """Buffer does not start with a decodable frame."""


@dataclass(frozen=True)
class ResponseEnvelope:
    """
    Device reply viewed as code, status and data.

    Attributes:
        response_code: First payload byte.
        status: Second payload byte, or None for a one-byte payload. Only
            meaningful when response_code is ERR.
        data: Payload after the code and status bytes.
        payload: The full frame payload.
    """

    response_code: int
    status: int | None
    data: bytes
    payload: bytes

    @classmethod
    def from_payload(cls, payload: bytes) -> ResponseEnvelope:
        """Build an envelope from a non-empty device-to-host payload."""
        if not payload:
            raise ValueError("Cannot build a response envelope from an empty payload")
        return cls(
            response_code=payload[0],
            status=payload[1] if len(payload) > 1 else None,
            data=bytes(payload[2:]),
            payload=bytes(payload),
        )

    @property
    def body(self) -> bytes:
        """Everything after the response code (status byte included)."""
        return self.payload[1:]

    @property
    def code(self) -> ResponseCode | int:
        """Response code as a ResponseCode enum if recognized, else raw int."""
        try:
            return ResponseCode(self.response_code)
        except ValueError:
            return self.response_code

    @property
    def is_error(self) -> bool:
        """Check if this is the generic error response."""
        return self.response_code == ResponseCode.ERR

    def __repr__(self) -> str:
        code = self.code
        name = code.name if isinstance(code, ResponseCode) else f"0x{self.response_code:02X}"
        return f"ResponseEnvelope({name}, {len(self.payload)} bytes)"


@dataclass(frozen=True)
class Frame:
    """
    One complete protocol frame.

    Attributes:
        direction: Direction given by the marker byte.
        payload: Frame payload (length field excluded).
    """

    direction: Direction
    payload: bytes

    @property
    def code(self) -> int | None:
        """First payload byte, or None for an empty payload."""
        return self.payload[0] if self.payload else None

    @property
    def is_from_device(self) -> bool:
        """Check if this frame was sent by the device."""
        return self.direction is Direction.OUTBOUND

    def envelope(self) -> ResponseEnvelope:
        """View this frame as a response envelope."""
        return ResponseEnvelope.from_payload(self.payload)

    def to_bytes(self) -> bytes:
        """Encode this frame using the default codec."""
        return DEFAULT_FRAME_CODEC.encode(self.direction, self.payload)

    def __repr__(self) -> str:
        code = f"0x{self.payload[0]:02X}" if self.payload else "empty"
        return f"Frame({self.direction.name}, code={code}, {len(self.payload)} bytes)"


@dataclass(frozen=True)
class DecodeResult:
    """
    Outcome of FrameCodec.try_decode.

    Attributes:
        status: Decode outcome.
        frame: Decoded frame on SUCCESS, otherwise None.
        consumed: Bytes consumed from the buffer on SUCCESS, otherwise 0.
        message: Diagnostic text for NEED_MORE_DATA and INVALID.
    """

    status: DecodeStatus
    frame: Frame | None = None
    consumed: int = 0
    message: str = ""


class FrameCodec:
    """
    Stateless MeshCore frame encoder/decoder.

    The codec has no side effects and can be called repeatedly against a
    growing buffer.

    Example:
        >>> codec = FrameCodec()
        >>> codec.encode(Direction.INBOUND, bytes([0x16, 0x08]))
        b'<\\x02\\x00\\x16\\x08'
        >>> result = codec.try_decode(bytes.fromhex("3E0400160001 02".replace(" ", "")))
        >>> result.status
        <DecodeStatus.SUCCESS: 1>
    """

    def __init__(self, max_payload_size: int = ProtocolConstants.MAX_FRAME_SIZE) -> None:
        """
        Initialize the codec.

        Args:
            max_payload_size: Largest payload accepted by encode and
                try_decode. Cannot exceed what the 2-byte length field holds.
        """
        if not 0 < max_payload_size <= 0xFFFF:
            raise ValueError(f"max_payload_size must be 1-65535, got {max_payload_size}")
        self._max_payload_size = max_payload_size

    @property
    def max_payload_size(self) -> int:
        """Largest payload this codec accepts."""
        return self._max_payload_size

    def encode(self, direction: Direction, payload: bytes | bytearray) -> bytes:
        """
        Encode a frame for transmission.

        Args:
            direction: Frame direction; selects the marker byte.
            payload: Frame payload.

        Returns:
            Marker, little-endian length and payload.

        Raises:
            OversizedFrameError: If the payload exceeds the maximum size.
        """
        size = len(payload)
        if size > self._max_payload_size:
            raise OversizedFrameError(size, self._max_payload_size)
        return bytes([direction.marker]) + encode_uint16_le(size) + bytes(payload)

    def encode_command(self, command: CommandCode | int, data: bytes = b"") -> bytes:
        """
        Encode a host-to-device command frame.

        Args:
            command: Command code (payload byte 0).
            data: Command arguments.

        Returns:
            Complete frame bytes.
        """
        if not 0 <= command <= 0xFF:
            raise ValueError(f"Command code must be 0-255, got {command}")
        return self.encode(Direction.INBOUND, bytes([command]) + bytes(data))

    def try_decode(self, buffer: bytes | bytearray | memoryview) -> DecodeResult:
        """
        Decode a frame from the start of the buffer.

        Args:
            buffer: Candidate bytes, expected to start at a marker.

        Returns:
            SUCCESS with the frame and byte count, NEED_MORE_DATA when the
            buffer is a valid but incomplete prefix, or INVALID when the
            marker is illegal or the declared length is oversized.
        """
        if not buffer:
            return DecodeResult(DecodeStatus.NEED_MORE_DATA, message="Buffer is empty")

        marker = buffer[0]
        if marker not in FRAME_MARKERS:
            return DecodeResult(
                DecodeStatus.INVALID,
                message=f"Invalid frame marker 0x{marker:02X}",
            )

        if len(buffer) < ProtocolConstants.HEADER_SIZE:
            return DecodeResult(
                DecodeStatus.NEED_MORE_DATA,
                message=f"Header incomplete (have {len(buffer)} of {ProtocolConstants.HEADER_SIZE})",
            )

        length = decode_uint16_le(buffer, 1)
        if length > self._max_payload_size:
            return DecodeResult(
                DecodeStatus.INVALID,
                message=f"Declared length {length} exceeds maximum {self._max_payload_size}",
            )

        total = ProtocolConstants.HEADER_SIZE + length
        if len(buffer) < total:
            return DecodeResult(
                DecodeStatus.NEED_MORE_DATA,
                message=f"Incomplete frame (need {total}, have {len(buffer)})",
            )

        frame = Frame(
            direction=Direction(marker),
            payload=bytes(buffer[ProtocolConstants.HEADER_SIZE : total]),
        )
        return DecodeResult(DecodeStatus.SUCCESS, frame=frame, consumed=total)


# Module-level convenience instance
DEFAULT_FRAME_CODEC: FrameCodec = FrameCodec()
"""Default FrameCodec instance for convenience."""


def encode_frame(direction: Direction, payload: bytes | bytearray) -> bytes:
    """Encode a frame using the default codec."""
    return DEFAULT_FRAME_CODEC.encode(direction, payload)


def try_decode_frame(buffer: bytes | bytearray | memoryview) -> DecodeResult:
    """Decode a frame using the default codec."""
    return DEFAULT_FRAME_CODEC.try_decode(buffer)
