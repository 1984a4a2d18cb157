"""
Binary encoding helpers for the MeshCore protocol.

All multi-byte integers on the wire are little-endian:
- Frame length is a 2-byte unsigned value (low byte first)
- Counters and timestamps in replies are 4-byte unsigned values

Also provides the hex formatting used in debug logs.
"""

from __future__ import annotations


def encode_uint16_le(value: int) -> bytes:
    """
    Encode a 16-bit unsigned value as 2 little-endian bytes.

    Args:
        value: 16-bit value (0-65535).

    Returns:
        2 bytes, low byte first.

    Raises:
        ValueError: If value is not in range 0-65535.

    Example:
        >>> encode_uint16_le(0x0104)
        b'\\x04\\x01'
    """
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"UInt16 value must be 0-65535, got {value}")
    return value.to_bytes(2, "little")


def decode_uint16_le(data: bytes | bytearray | memoryview, offset: int = 0) -> int:
    """
    Decode a little-endian 16-bit unsigned value.

    Args:
        data: Source buffer.
        offset: Position of the low byte.

    Returns:
        Decoded value (0-65535).

    Raises:
        ValueError: If fewer than 2 bytes are available at offset.
    """
    if offset < 0 or len(data) < offset + 2:
        raise ValueError(f"Need 2 bytes at offset {offset}, buffer has {len(data)}")
    return data[offset] | (data[offset + 1] << 8)


def encode_uint32_le(value: int) -> bytes:
    """
    Encode a 32-bit unsigned value as 4 little-endian bytes.

    Raises:
        ValueError: If value is not in range 0-0xFFFFFFFF.
    """
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"UInt32 value must be 0-4294967295, got {value}")
    return value.to_bytes(4, "little")


def decode_uint32_le(data: bytes | bytearray | memoryview, offset: int = 0) -> int:
    """
    Decode a little-endian 32-bit unsigned value.

    Raises:
        ValueError: If fewer than 4 bytes are available at offset.
    """
    if offset < 0 or len(data) < offset + 4:
        raise ValueError(f"Need 4 bytes at offset {offset}, buffer has {len(data)}")
    return int.from_bytes(bytes(data[offset : offset + 4]), "little")


def try_decode_uint32_le(data: bytes | bytearray | memoryview, offset: int = 0) -> int | None:
    """
    Decode a little-endian 32-bit value, or None if the buffer is too short.

    Example:
        >>> try_decode_uint32_le(b"\\x03\\x00\\x00\\x00")
        3
        >>> try_decode_uint32_le(b"\\x03")
        None
    """
    try:
        return decode_uint32_le(data, offset)
    except ValueError:
        return None


def bytes_to_hex(
    data: bytes | bytearray | memoryview,
    separator: str = " ",
    limit: int | None = None,
) -> str:
    """
    Format bytes as uppercase hex pairs for logging.

    Args:
        data: Bytes to format.
        separator: Text placed between pairs.
        limit: Maximum number of bytes shown; longer input is truncated
            with a trailing byte count.

    Returns:
        Hex string, e.g. "3E 04 00 16".

    Example:
        >>> bytes_to_hex(b"\\x3e\\x04\\x00")
        '3E 04 00'
        >>> bytes_to_hex(bytes(10), limit=2)
        '00 00 ... (10 bytes)'
    """
    raw = bytes(data)
    if limit is not None and len(raw) > limit:
        shown = separator.join(f"{b:02X}" for b in raw[:limit])
        return f"{shown} ... ({len(raw)} bytes)"
    return separator.join(f"{b:02X}" for b in raw)
