"""
Async serial transport using pyserial-asyncio.

This module provides the primary transport implementation for communicating
with MeshCore companion radios over USB serial (CDC-ACM).

Serial Configuration:
- Baud rate: 115200 (default)
- Data bits: 8
- Parity: None
- Stop bits: 1
- Flow control: None

Example:
    >>> transport = AsyncSerialTransport("/dev/ttyACM0")
    >>> async with transport:
    ...     await transport.write(frame)
    ...     chunk = await transport.read_available(timeout=1.0)
"""

from __future__ import annotations

import asyncio
import logging

import serial
import serial_asyncio

from meshlink.exceptions import TransportError
from meshlink.protocol.constants import ProtocolConstants
from meshlink.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)


class AsyncSerialTransport(AbstractTransport):
    """
    Async serial transport using pyserial-asyncio.

    Provides non-blocking serial communication using Python's asyncio
    framework. This is the transport for real hardware.

    Attributes:
        port_name: Serial port path (e.g., "/dev/ttyACM0", "COM3").
        is_open: Whether the port is currently open.

    Example:
        >>> transport = AsyncSerialTransport("/dev/ttyACM0", baudrate=115200)
        >>> await transport.open()
        >>> try:
        ...     await transport.write(b"<\\x02\\x00\\x16\\x08")
        ...     chunk = await transport.read_available(timeout=5.0)
        ... finally:
        ...     await transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = ProtocolConstants.DEFAULT_BAUD_RATE,
        read_chunk_size: int = ProtocolConstants.READ_CHUNK_SIZE,
    ) -> None:
        """
        Initialize the async serial transport.

        Args:
            port: Serial port path (e.g., "/dev/ttyACM0", "COM3").
            baudrate: Baud rate (default: 115200).
            read_chunk_size: Maximum bytes returned by one read.
        """
        if read_chunk_size <= 0:
            raise ValueError(f"read_chunk_size must be positive, got {read_chunk_size}")

        self._port = port
        self._baudrate = baudrate
        self._read_chunk_size = read_chunk_size
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._serial_instance: serial.Serial | None = None

    @property
    def is_open(self) -> bool:
        """Check if the serial port is currently open."""
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self._reader is not None
        )

    @property
    def port_name(self) -> str:
        """Get the serial port path."""
        return self._port

    @property
    def baudrate(self) -> int:
        """Get the configured baud rate."""
        return self._baudrate

    async def open(self) -> None:
        """
        Open the serial port connection (8N1, no flow control).

        Raises:
            TransportError: If the port cannot be opened.
        """
        if self.is_open:
            return

        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self._port,
                baudrate=self._baudrate,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                bytesize=serial.EIGHTBITS,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
            # Underlying port, for buffer resets
            transport = self._writer.transport
            if hasattr(transport, "serial"):
                self._serial_instance = transport.serial

        except serial.SerialException as e:
            raise TransportError(f"Failed to open serial port {self._port}: {e}") from e
        except OSError as e:
            raise TransportError(f"OS error opening {self._port}: {e}") from e

        logger.debug("Opened %s at %d baud", self._port, self._baudrate)

    async def close(self) -> None:
        """
        Close the serial port connection.

        Safe to call multiple times.
        """
        writer = self._writer
        self._reader = None
        self._writer = None
        self._serial_instance = None

        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, serial.SerialException) as e:
                logger.debug("Error while closing %s: %s", self._port, e)

    async def write(self, data: bytes) -> None:
        """
        Write data to the serial port.

        Args:
            data: Bytes to transmit.

        Raises:
            TransportError: If the port is not open or write fails.
        """
        if not self.is_open:
            raise TransportError("Serial port is not open")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except (OSError, serial.SerialException) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def read_available(self, timeout: float | None = None) -> bytes:
        """
        Read up to one chunk of available bytes.

        Args:
            timeout: Seconds to wait for the first byte. None waits
                indefinitely.

        Returns:
            Received bytes, or b"" on timeout.

        Raises:
            TransportError: If the port is not open, was closed by the
                device, or the read fails.
        """
        if not self.is_open:
            raise TransportError("Serial port is not open")

        try:
            if timeout is None:
                data = await self._reader.read(self._read_chunk_size)
            else:
                data = await asyncio.wait_for(self._reader.read(self._read_chunk_size), timeout)
        except asyncio.TimeoutError:
            return b""
        except (OSError, serial.SerialException) as e:
            raise TransportError(f"Read failed: {e}") from e

        if not data:
            raise TransportError(f"Serial port {self._port} closed by device")
        return data

    def discard_buffers(self) -> None:
        """
        Discard any pending data in input and output buffers.

        Note: This operates on the underlying serial port and may not
        affect data already buffered by the asyncio layer.
        """
        if self._serial_instance is not None:
            try:
                self._serial_instance.reset_input_buffer()
                self._serial_instance.reset_output_buffer()
            except (OSError, serial.SerialException) as e:
                logger.debug("Could not reset buffers on %s: %s", self._port, e)

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"AsyncSerialTransport({self._port!r}, baudrate={self._baudrate}, {status})"
