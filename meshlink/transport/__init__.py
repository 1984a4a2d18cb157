"""
Transport layer for MeshCore companion communication.

This package provides transport implementations for communicating with
companion radios over various physical interfaces.

Available transports:
- AsyncSerialTransport: Async USB serial port using pyserial-asyncio
- MockTransport: Mock transport for testing without hardware
- ScriptedMockTransport: Mock transport driven by request/response steps

Example:
    >>> from meshlink.transport import AsyncSerialTransport
    >>> async with AsyncSerialTransport("/dev/ttyACM0") as transport:
    ...     await transport.write(frame_data)
    ...     chunk = await transport.read_available(timeout=1.0)

Testing Example:
    >>> from meshlink.transport import MockTransport
    >>> mock = MockTransport()
    >>> mock.add_response(bytes.fromhex("3E0100" "0A"))  # NO_MORE_MESSAGES
"""

from meshlink.transport.abc import AbstractTransport
from meshlink.transport.mock import MockTransport, ScriptedMockTransport
from meshlink.transport.serial_async import AsyncSerialTransport

__all__ = [
    "AbstractTransport",
    "AsyncSerialTransport",
    "MockTransport",
    "ScriptedMockTransport",
]
