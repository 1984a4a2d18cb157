"""
Pydantic models for session configuration and sequence results.

This module defines the data structures handed to and returned by
DeviceSession, implemented as immutable Pydantic models with validation.

Design principles:
- All models are frozen (immutable)
- Records keep the raw bytes; only boundary-level facts are decoded
- Configuration is validated once, at construction
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from meshlink.protocol.constants import (
    DEFAULT_PUSH_CODE_RANGES,
    MESSAGE_RECORD_CODES,
    ProtocolConstants,
    PushCodeTable,
    ResponseCode,
)
from meshlink.protocol.encoding import bytes_to_hex


class SequenceState(str, Enum):
    """Lifecycle of a multi-frame sequence."""

    IDLE = "idle"
    REQUESTING = "requesting"
    RECEIVING = "receiving"
    COMPLETE = "complete"
    FAILED = "failed"


class PartialResultPolicy(str, Enum):
    """What a failed sequence does with the records it already received."""

    DISCARD = "discard"
    """Raise the error; received records are dropped."""

    RETURN_PARTIAL = "return_partial"
    """Return a FAILED result holding the records received so far."""


# =============================================================================
# Records
# =============================================================================


class ContactRecord(BaseModel):
    """
    One contact entry streamed by a contact sync.

    Only the public key is decoded; the rest of the record (type, flags,
    path, name, timestamps) stays in ``raw``.

    Example:
        >>> record = ContactRecord.from_body(bytes(range(99)))
        >>> record.public_key[:2]
        b'\\x00\\x01'
    """

    model_config = ConfigDict(frozen=True)

    raw: bytes = Field(description="Record body after the response code")
    public_key: bytes = Field(description="32-byte public key at the start of the record")

    @model_validator(mode="after")
    def validate_sizes(self) -> ContactRecord:
        if len(self.raw) < ProtocolConstants.CONTACT_RECORD_MIN_SIZE:
            raise ValueError(
                f"Contact record must be at least {ProtocolConstants.CONTACT_RECORD_MIN_SIZE} bytes, "
                f"got {len(self.raw)}"
            )
        if len(self.public_key) != ProtocolConstants.PUBLIC_KEY_SIZE:
            raise ValueError(
                f"Public key must be {ProtocolConstants.PUBLIC_KEY_SIZE} bytes, got {len(self.public_key)}"
            )
        return self

    @classmethod
    def from_body(cls, body: bytes) -> ContactRecord:
        """
        Build a record from a CONTACT reply body.

        Args:
            body: Payload after the CONTACT response code.

        Raises:
            pydantic.ValidationError: If the body is shorter than a record.
        """
        return cls(raw=bytes(body), public_key=bytes(body[: ProtocolConstants.PUBLIC_KEY_SIZE]))

    @property
    def key_prefix(self) -> str:
        """First 6 key bytes as hex, the form used to address messages."""
        return self.public_key[:6].hex()

    def __repr__(self) -> str:
        return f"ContactRecord({self.key_prefix}, {len(self.raw)} bytes)"


class MessageRecord(BaseModel):
    """
    One queued message returned by a message sync.

    Attributes:
        response_code: Message format (direct/channel, legacy/v3).
        raw: Record body after the response code.
    """

    model_config = ConfigDict(frozen=True)

    response_code: int
    raw: bytes

    @field_validator("response_code")
    @classmethod
    def validate_code(cls, v: int) -> int:
        if v not in MESSAGE_RECORD_CODES:
            raise ValueError(f"0x{v:02X} is not a message response code")
        return v

    @property
    def is_channel(self) -> bool:
        """Check if this is a channel (group) message."""
        return self.response_code in (ResponseCode.CHANNEL_MSG_RECV, ResponseCode.CHANNEL_MSG_RECV_V3)

    @property
    def is_v3(self) -> bool:
        """Check if the record uses the v3 layout with SNR."""
        return self.response_code in (ResponseCode.CONTACT_MSG_RECV_V3, ResponseCode.CHANNEL_MSG_RECV_V3)

    def __repr__(self) -> str:
        kind = "channel" if self.is_channel else "direct"
        return f"MessageRecord({kind}, code=0x{self.response_code:02X}, {bytes_to_hex(self.raw, limit=8)})"


RecordT = TypeVar("RecordT")


class SequenceResult(BaseModel, Generic[RecordT]):
    """
    Outcome of a contact or message sync.

    Attributes:
        records: Items received, in arrival order.
        state: COMPLETE, or FAILED under the RETURN_PARTIAL policy.
        expected_total: Count announced by the contact list start reply.
        cursor: Last-modified cursor from the end-of-contacts reply; pass it
            back as ``since`` to fetch only newer contacts.
        iterations: Number of fetch or receive cycles performed.
        error: Failure text when state is FAILED.
    """

    model_config = ConfigDict(frozen=True)

    records: list[RecordT] = Field(default_factory=list)
    state: SequenceState = SequenceState.COMPLETE
    expected_total: int | None = None
    cursor: int | None = None
    iterations: int = 0
    error: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.state is SequenceState.COMPLETE

    @property
    def count_matches(self) -> bool:
        """Check the received count against the announced total, if any."""
        return self.expected_total is None or self.expected_total == len(self.records)

    def __len__(self) -> int:
        return len(self.records)


# =============================================================================
# Configuration
# =============================================================================


class SessionConfig(BaseModel):
    """
    Tunables for a DeviceSession.

    Example:
        >>> config = SessionConfig(default_timeout=2.0, handshake_on_connect=False)
        >>> config.push_code_table().is_push(0x83)
        True
    """

    model_config = ConfigDict(frozen=True)

    default_timeout: float = Field(default=ProtocolConstants.DEFAULT_TIMEOUT, gt=0)
    """Seconds to wait for a command reply."""

    item_timeout: float = Field(default=ProtocolConstants.DEFAULT_ITEM_TIMEOUT, gt=0)
    """Seconds to wait for each streamed contact."""

    max_payload_size: int = Field(default=ProtocolConstants.MAX_FRAME_SIZE, gt=0, le=0xFFFF)
    """Largest frame payload sent or accepted."""

    max_sync_iterations: int = Field(default=ProtocolConstants.MAX_SYNC_ITERATIONS, gt=0)
    """Upper bound on cycles in one sequence."""

    partial_result_policy: PartialResultPolicy = PartialResultPolicy.DISCARD

    push_code_ranges: tuple[tuple[int, int], ...] = DEFAULT_PUSH_CODE_RANGES
    """Inclusive response code ranges treated as push notifications."""

    handshake_on_connect: bool = True
    """Run APP_START / DEVICE_QUERY when the session connects."""

    app_protocol_version: int = Field(default=ProtocolConstants.APP_PROTOCOL_VERSION, ge=0, le=0xFF)

    @field_validator("push_code_ranges")
    @classmethod
    def validate_ranges(cls, v: tuple[tuple[int, int], ...]) -> tuple[tuple[int, int], ...]:
        for low, high in v:
            if not (0 <= low <= 0xFF and 0 <= high <= 0xFF):
                raise ValueError(f"Push code range ({low}, {high}) is outside 0x00-0xFF")
            if low > high:
                raise ValueError(f"Push code range start {low} is above end {high}")
        return v

    def push_code_table(self) -> PushCodeTable:
        """Build the push classification table for these ranges."""
        return PushCodeTable(self.push_code_ranges)
