"""
meshlink - Python library for communicating with MeshCore companion radios.

This library provides async communication with MeshCore mesh radios over a
serial/USB link, implementing the companion protocol's framing, command
correlation, push notification routing and multi-frame sync sequences.

Example:
    >>> from meshlink import DeviceSession
    >>> from meshlink.transport import AsyncSerialTransport
    >>>
    >>> async def main():
    ...     transport = AsyncSerialTransport("/dev/ttyACM0")
    ...     async with DeviceSession(transport) as session:
    ...         contacts = await session.run_contact_sync()
    ...         for contact in contacts.records:
    ...             print(contact.key_prefix)
"""

from meshlink.diagnostics import DiagnosticsSink, LoggingDiagnostics
from meshlink.dispatcher import CommandDispatcher, PendingCommand, PushEvent, SequenceChannel
from meshlink.exceptions import (
    CommandError,
    ConnectionError,
    FrameError,
    MeshLinkError,
    OversizedFrameError,
    ProtocolError,
    SequenceError,
    TimeoutError,
    TransportError,
)
from meshlink.models.records import (
    ContactRecord,
    MessageRecord,
    PartialResultPolicy,
    SequenceResult,
    SequenceState,
    SessionConfig,
)
from meshlink.protocol.constants import CommandCode, ResponseCode, StatusCode
from meshlink.protocol.frame_codec import Direction, Frame, FrameCodec, ResponseEnvelope
from meshlink.protocol.framer import StreamFramer
from meshlink.sequences import ContactSync, MessageSync, SequenceProtocol
from meshlink.session import DeviceSession, SessionState
from meshlink.transport import AbstractTransport, AsyncSerialTransport

__version__ = "0.1.0"
__all__ = [
    # Session
    "DeviceSession",
    "SessionState",
    "SessionConfig",
    # Protocol engine
    "FrameCodec",
    "Frame",
    "Direction",
    "ResponseEnvelope",
    "StreamFramer",
    "CommandDispatcher",
    "PendingCommand",
    "PushEvent",
    "SequenceChannel",
    # Sequences
    "SequenceProtocol",
    "ContactSync",
    "MessageSync",
    "SequenceResult",
    "SequenceState",
    "PartialResultPolicy",
    # Models
    "ContactRecord",
    "MessageRecord",
    # Codes
    "CommandCode",
    "ResponseCode",
    "StatusCode",
    # Diagnostics
    "DiagnosticsSink",
    "LoggingDiagnostics",
    # Exceptions
    "MeshLinkError",
    "ProtocolError",
    "FrameError",
    "OversizedFrameError",
    "SequenceError",
    "CommandError",
    "TimeoutError",
    "ConnectionError",
    "TransportError",
    # Transport
    "AbstractTransport",
    "AsyncSerialTransport",
    # Version
    "__version__",
]
