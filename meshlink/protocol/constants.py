"""
MeshCore companion protocol codes and constants.

Covers the command codes sent by the host, the response and push codes
sent back by the radio, the status bytes carried by error responses, and
the push code table used to tell unsolicited notifications from replies.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import IntEnum
from typing import Final


class CommandCode(IntEnum):
    """
    Host-to-device command codes.

    The command code is the first payload byte of every host-to-device
    frame. Codes are grouped by function:
    - 0x01-0x0A: Session start, messaging, contacts, time, adverts
    - 0x0B-0x15: Radio and contact maintenance
    - 0x16-0x2B: Device query, keys, login, channels, signing, paths
    """

    APP_START = 0x01
    """Announce the host application; device answers with SELF_INFO."""

    SEND_TXT_MSG = 0x02
    """Send a direct text message to a contact."""

    SEND_CHANNEL_TXT_MSG = 0x03
    """Send a text message to a channel."""

    GET_CONTACTS = 0x04
    """Start contact list retrieval (optional 4-byte 'since' cursor)."""

    GET_DEVICE_TIME = 0x05
    """Read the device clock."""

    SET_DEVICE_TIME = 0x06
    """Set the device clock (4-byte Unix timestamp)."""

    SEND_SELF_ADVERT = 0x07
    """Broadcast our own advertisement."""

    SET_ADVERT_NAME = 0x08
    """Set the advertised node name."""

    ADD_UPDATE_CONTACT = 0x09
    """Add or update a contact."""

    SYNC_NEXT_MESSAGE = 0x0A
    """Fetch the next queued message."""

    SET_RADIO_PARAMS = 0x0B
    SET_RADIO_TX_POWER = 0x0C
    RESET_PATH = 0x0D
    SET_ADVERT_LATLON = 0x0E
    REMOVE_CONTACT = 0x0F
    SHARE_CONTACT = 0x10
    EXPORT_CONTACT = 0x11
    IMPORT_CONTACT = 0x12
    REBOOT = 0x13

    GET_BATT_AND_STORAGE = 0x14
    """Read battery voltage and storage usage."""

    SET_TUNING_PARAMS = 0x15

    DEVICE_QUERY = 0x16
    """Query firmware and capabilities; device answers with DEVICE_INFO."""

    EXPORT_PRIVATE_KEY = 0x17
    IMPORT_PRIVATE_KEY = 0x18
    SEND_RAW_DATA = 0x19
    SEND_LOGIN = 0x1A
    SEND_STATUS_REQ = 0x1B
    HAS_CONNECTION = 0x1C
    LOGOUT = 0x1D
    GET_CONTACT_BY_KEY = 0x1E
    GET_CHANNEL = 0x1F
    SET_CHANNEL = 0x20
    SIGN_START = 0x21
    SIGN_DATA = 0x22
    SIGN_FINISH = 0x23
    SEND_TRACE_PATH = 0x24
    SET_DEVICE_PIN = 0x25
    SET_OTHER_PARAMS = 0x26
    SEND_TELEMETRY_REQ = 0x27
    GET_CUSTOM_VARS = 0x28
    SET_CUSTOM_VAR = 0x29
    GET_ADVERT_PATH = 0x2A
    GET_TUNING_PARAMS = 0x2B


class ResponseCode(IntEnum):
    """
    Device-to-host response and push codes.

    The response code is the first payload byte of every device-to-host
    frame:
    - 0x00-0x19: Synchronous replies to a specific command
    - 0x80-0x8E: Asynchronous push notifications
    """

    # ===== Synchronous replies =====

    OK = 0x00
    """Generic success with no additional data."""

    ERR = 0x01
    """Error; a status byte follows."""

    CONTACTS_START = 0x02
    """Start of contact list; uint32 LE total follows."""

    CONTACT = 0x03
    """One contact record."""

    END_OF_CONTACTS = 0x04
    """End of contact list; optional uint32 LE lastmod cursor follows."""

    SELF_INFO = 0x05
    SENT = 0x06

    CONTACT_MSG_RECV = 0x07
    """Direct message (legacy format)."""

    CHANNEL_MSG_RECV = 0x08
    """Channel message (legacy format)."""

    CURR_TIME = 0x09

    NO_MORE_MESSAGES = 0x0A
    """Message queue is empty."""

    EXPORT_CONTACT = 0x0B
    BATT_AND_STORAGE = 0x0C

    DEVICE_INFO = 0x0D
    """Firmware version and capabilities."""

    PRIVATE_KEY = 0x0E
    DISABLED = 0x0F

    CONTACT_MSG_RECV_V3 = 0x10
    """Direct message (v3 format, carries SNR)."""

    CHANNEL_MSG_RECV_V3 = 0x11
    """Channel message (v3 format, carries SNR)."""

    CHANNEL_INFO = 0x12
    SIGN_START = 0x13
    SIGNATURE = 0x14
    CUSTOM_VARS = 0x15
    ADVERT_PATH = 0x16
    TUNING_PARAMS = 0x17
    STATS = 0x18
    AUTOADD_CONFIG = 0x19

    # ===== Asynchronous push notifications =====

    PUSH_ADVERT = 0x80
    PUSH_PATH_UPDATED = 0x81
    PUSH_SEND_CONFIRMED = 0x82

    PUSH_MSG_WAITING = 0x83
    """New messages queued; drain them with SYNC_NEXT_MESSAGE."""

    PUSH_RAW_DATA = 0x84
    PUSH_LOGIN_SUCCESS = 0x85
    PUSH_LOGIN_FAIL = 0x86
    PUSH_STATUS_RESPONSE = 0x87
    PUSH_LOG_RX_DATA = 0x88
    PUSH_TRACE_DATA = 0x89
    PUSH_NEW_ADVERT = 0x8A
    PUSH_TELEMETRY_RESPONSE = 0x8B
    PUSH_BINARY_RESPONSE = 0x8C
    PUSH_PATH_DISCOVERY_RESPONSE = 0x8D
    PUSH_CONTROL_DATA = 0x8E


class StatusCode(IntEnum):
    """Status byte carried by an ERR response."""

    SUCCESS = 0x00
    INVALID_COMMAND = 0x01
    INVALID_PARAMETER = 0x02
    DEVICE_ERROR = 0x03
    NETWORK_ERROR = 0x04
    TIMEOUT = 0x05
    UNKNOWN = 0xFF


class ProtocolConstants:
    """
    MeshCore protocol constants.

    Contains frame markers, sizes, timing values and safety bounds used
    throughout the protocol implementation.
    """

    # ===== Frame Markers =====

    MARKER_INBOUND: Final[int] = 0x3C
    """Host-to-device frame marker ('<')."""

    MARKER_OUTBOUND: Final[int] = 0x3E
    """Device-to-host frame marker ('>')."""

    # ===== Frame Sizes =====

    HEADER_SIZE: Final[int] = 3
    """Marker byte plus 2-byte little-endian length."""

    MAX_FRAME_SIZE: Final[int] = 1024
    """Maximum payload length accepted or emitted."""

    # ===== Timing Constants (seconds) =====

    DEFAULT_TIMEOUT: Final[float] = 5.0
    """Default command response timeout."""

    DEFAULT_ITEM_TIMEOUT: Final[float] = 5.0
    """Time to wait for each streamed item during a sequence."""

    # ===== Safety Bounds =====

    MAX_SYNC_ITERATIONS: Final[int] = 1000
    """Upper bound on fetch/item cycles in a single sequence."""

    # ===== Record Sizes =====

    PUBLIC_KEY_SIZE: Final[int] = 32
    """Contact public key length."""

    MAX_PATH_SIZE: Final[int] = 64
    """Out-path field length in a contact record."""

    CONTACT_RECORD_MIN_SIZE: Final[int] = 35 + 64
    """Key, type, flags, path length and path; everything after is optional."""

    # ===== Handshake =====

    APP_PROTOCOL_VERSION: Final[int] = 0x08
    """Protocol version announced by APP_START and DEVICE_QUERY."""

    # ===== Serial Port Configuration =====

    DEFAULT_BAUD_RATE: Final[int] = 115200
    """Default baud rate for USB serial companions."""

    READ_CHUNK_SIZE: Final[int] = 1024
    """Maximum bytes requested from the transport per read."""


FRAME_MARKERS: Final[frozenset[int]] = frozenset({
    ProtocolConstants.MARKER_INBOUND,
    ProtocolConstants.MARKER_OUTBOUND,
})
"""The only two legal leading bytes of a frame."""

MESSAGE_RECORD_CODES: Final[frozenset[int]] = frozenset({
    ResponseCode.CONTACT_MSG_RECV,
    ResponseCode.CHANNEL_MSG_RECV,
    ResponseCode.CONTACT_MSG_RECV_V3,
    ResponseCode.CHANNEL_MSG_RECV_V3,
})
"""Response codes carrying a queued message."""

MESSAGE_RECORD_MIN_SIZES: Final[dict[int, int]] = {
    # pubkey prefix(6) + path len + text type + timestamp(4)
    ResponseCode.CONTACT_MSG_RECV: 12,
    # channel index + path len + text type + timestamp(4)
    ResponseCode.CHANNEL_MSG_RECV: 7,
    # snr + reserved(2) ahead of the legacy layout
    ResponseCode.CONTACT_MSG_RECV_V3: 15,
    ResponseCode.CHANNEL_MSG_RECV_V3: 10,
}
"""Minimum body size (bytes after the response code) per message format."""

CONTACT_RESIDUE_CODES: Final[frozenset[int]] = frozenset({
    ResponseCode.CONTACT,
    ResponseCode.END_OF_CONTACTS,
})
"""Contact-list frames that firmware may leave in the message queue."""

EMPTY_CONTACT_LIST_STATUSES: Final[frozenset[int]] = frozenset({
    StatusCode.INVALID_PARAMETER,
    StatusCode.DEVICE_ERROR,
    StatusCode.NETWORK_ERROR,
    StatusCode.TIMEOUT,
    StatusCode.UNKNOWN,
})
"""ERR statuses answering GET_CONTACTS that mean there is nothing to list.

INVALID_PARAMETER is how firmware reports an empty contact list; the others
are transient device states. INVALID_COMMAND (no contact support) is fatal.
"""


class PushCodeTable:
    """
    Set of response code ranges reserved for push notifications.

    Frames whose code falls inside any range are never matched against a
    pending command. Later protocol revisions may add ranges, so the table
    is configurable rather than a single hard-coded bound.

    Example:
        >>> table = PushCodeTable([(0x80, 0x8E)])
        >>> table.is_push(0x83)
        True
        >>> table.is_push(0x0A)
        False
    """

    def __init__(self, ranges: Iterable[tuple[int, int]]) -> None:
        normalized: list[tuple[int, int]] = []
        for low, high in ranges:
            if not (0 <= low <= 0xFF and 0 <= high <= 0xFF):
                raise ValueError(f"Push code range 0x{low:X}-0x{high:X} is outside 0x00-0xFF")
            if low > high:
                raise ValueError(f"Push code range start 0x{low:02X} is above end 0x{high:02X}")
            normalized.append((low, high))
        self._ranges: tuple[tuple[int, int], ...] = tuple(sorted(normalized))

    @property
    def ranges(self) -> tuple[tuple[int, int], ...]:
        """Configured inclusive ranges, sorted by start."""
        return self._ranges

    def is_push(self, code: int) -> bool:
        """Check whether a response code is reserved for push notifications."""
        return any(low <= code <= high for low, high in self._ranges)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, int) and self.is_push(code)

    def __repr__(self) -> str:
        spans = ", ".join(f"0x{low:02X}-0x{high:02X}" for low, high in self._ranges)
        return f"PushCodeTable({spans})"


DEFAULT_PUSH_CODE_RANGES: Final[tuple[tuple[int, int], ...]] = ((0x80, 0x8E),)
"""Push code ranges defined by the current protocol revision."""

DEFAULT_PUSH_CODE_TABLE: Final[PushCodeTable] = PushCodeTable(DEFAULT_PUSH_CODE_RANGES)
"""Default push classification table."""
