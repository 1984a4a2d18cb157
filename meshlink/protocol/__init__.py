"""
Protocol layer for MeshCore companion communication.

This module contains the low-level protocol handling:
- Command, response and status codes and protocol constants
- Push code classification
- Little-endian integer and hex formatting helpers
- Frame encoding/decoding
- Stream framing with resynchronization
"""

from meshlink.protocol.constants import (
    DEFAULT_PUSH_CODE_RANGES,
    DEFAULT_PUSH_CODE_TABLE,
    CommandCode,
    ProtocolConstants,
    PushCodeTable,
    ResponseCode,
    StatusCode,
)
from meshlink.protocol.encoding import (
    bytes_to_hex,
    decode_uint16_le,
    decode_uint32_le,
    encode_uint16_le,
    encode_uint32_le,
    try_decode_uint32_le,
)
from meshlink.protocol.frame_codec import (
    DEFAULT_FRAME_CODEC,
    DecodeResult,
    DecodeStatus,
    Direction,
    Frame,
    FrameCodec,
    ResponseEnvelope,
    encode_frame,
    try_decode_frame,
)
from meshlink.protocol.framer import StreamFramer

__all__ = [
    # Constants
    "CommandCode",
    "ResponseCode",
    "StatusCode",
    "ProtocolConstants",
    "PushCodeTable",
    "DEFAULT_PUSH_CODE_RANGES",
    "DEFAULT_PUSH_CODE_TABLE",
    # Encoding
    "encode_uint16_le",
    "decode_uint16_le",
    "encode_uint32_le",
    "decode_uint32_le",
    "try_decode_uint32_le",
    "bytes_to_hex",
    # Frame codec
    "Direction",
    "Frame",
    "ResponseEnvelope",
    "DecodeStatus",
    "DecodeResult",
    "FrameCodec",
    "DEFAULT_FRAME_CODEC",
    "encode_frame",
    "try_decode_frame",
    # Framing
    "StreamFramer",
]
