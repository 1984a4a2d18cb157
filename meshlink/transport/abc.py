"""
Abstract transport interface for MeshCore companion communication.

This module defines the abstract base class for all transport implementations.
Transports move raw bytes between the host and the companion radio; they know
nothing about frames.

The transport layer is responsible for:
- Opening/closing the physical connection
- Writing raw bytes
- Returning whatever bytes have arrived, in arbitrary chunks
- Buffer management

Implementations:
- AsyncSerialTransport: pyserial-asyncio based USB serial port
- MockTransport: For testing without hardware
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types import TracebackType


class AbstractTransport(ABC):
    """
    Abstract base class for companion radio transports.

    Transports provide async byte I/O. Reads are chunk-oriented: a single
    read may return part of a frame, several frames, or bytes that belong to
    no frame at all. Reassembly is the job of StreamFramer.

    Transports support async context manager protocol for safe resource
    management:

        async with AsyncSerialTransport("/dev/ttyACM0") as transport:
            await transport.write(frame)
            chunk = await transport.read_available(timeout=1.0)

    Attributes:
        is_open: Whether the transport connection is currently open.
        port_name: Identifier for the transport (e.g., serial port name).
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """
        Check if the transport connection is currently open.

        Returns:
            True if connected and ready for I/O, False otherwise.
        """
        ...

    @property
    @abstractmethod
    def port_name(self) -> str:
        """
        Get the transport identifier.

        Returns:
            Port name or identifier string (e.g., "/dev/ttyACM0", "COM3").
        """
        ...

    @abstractmethod
    async def open(self) -> None:
        """
        Open the transport connection.

        Raises:
            TransportError: If the connection cannot be established.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the transport connection.

        Releases the physical connection and wakes any pending reader.
        Safe to call multiple times (idempotent).
        """
        ...

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write data to the transport.

        Args:
            data: Bytes to send, normally one complete encoded frame.

        Raises:
            TransportError: If the transport is not open or write fails.
        """
        ...

    @abstractmethod
    async def read_available(self, timeout: float | None = None) -> bytes:
        """
        Read whatever bytes are available.

        Waits until at least one byte has arrived or the timeout expires.

        Args:
            timeout: Seconds to wait. None waits indefinitely.

        Returns:
            One or more bytes, or b"" if the timeout expired first.

        Raises:
            TransportError: If the transport is closed, reached end of
                stream, or the read fails.
        """
        ...

    @abstractmethod
    def discard_buffers(self) -> None:
        """
        Discard any pending data in input and output buffers.

        Useful for starting a session from a clean stream.
        """
        ...

    async def __aenter__(self) -> AbstractTransport:
        """Async context manager entry - opens the transport."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - closes the transport."""
        await self.close()
