"""
MeshCore device session.

This module provides the main client interface for a MeshCore companion
radio. A DeviceSession owns the transport, a background read task that
frames the incoming byte stream, and the command dispatcher.

The session follows a simple lifecycle:
    DISCONNECTED -> connect() -> CONNECTING -> CONNECTED
    CONNECTED -> disconnect() -> DISCONNECTING -> DISCONNECTED
    CONNECTED -> transport failure -> DISCONNECTED

Example:
    >>> from meshlink import DeviceSession
    >>> from meshlink.transport import AsyncSerialTransport
    >>>
    >>> async def main():
    ...     async with DeviceSession(AsyncSerialTransport("/dev/ttyACM0")) as session:
    ...         session.on_push(lambda event: print(event))
    ...         contacts = await session.run_contact_sync()
    ...         messages = await session.run_message_sync()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum, auto
from typing import TYPE_CHECKING, Union

from meshlink.diagnostics import DiagnosticsSink, LoggingDiagnostics
from meshlink.dispatcher import CommandDispatcher, PushEvent
from meshlink.exceptions import (
    ConnectionError,
    ProtocolError,
    TimeoutError,
    TransportError,
)
from meshlink.models.records import (
    ContactRecord,
    MessageRecord,
    PartialResultPolicy,
    SequenceResult,
    SessionConfig,
)
from meshlink.protocol.constants import CommandCode, ResponseCode
from meshlink.protocol.frame_codec import FrameCodec, ResponseEnvelope
from meshlink.protocol.framer import StreamFramer
from meshlink.sequences import ContactSync, MessageSync

if TYPE_CHECKING:
    from types import TracebackType

    from meshlink.transport.abc import AbstractTransport

# Module logger
logger = logging.getLogger(__name__)

PushCallback = Callable[[PushEvent], Union[None, Awaitable[None]]]


class SessionState(Enum):
    """Device session connection states."""

    DISCONNECTED = auto()
    """No read task; transport closed."""

    CONNECTING = auto()
    """Opening the transport and running the handshake."""

    CONNECTED = auto()
    """Ready for commands and sequences."""

    DISCONNECTING = auto()
    """Failing waiters and closing the transport."""


class DeviceSession:
    """
    Session with one MeshCore companion radio.

    Commands are serialized: concurrent callers of execute() and the sync
    methods are written one at a time, each after the previous exchange has
    finished. Push notifications are delivered to subscribers registered
    with on_push() in arrival order.

    Attributes:
        state: Current connection state.
        transport: The underlying transport.
        config: Session configuration.

    Example:
        >>> session = DeviceSession(transport, SessionConfig(default_timeout=2.0))
        >>> await session.connect()
        >>> reply = await session.execute(CommandCode.GET_BATT_AND_STORAGE)
        >>> await session.disconnect()
    """

    def __init__(
        self,
        transport: AbstractTransport,
        config: SessionConfig | None = None,
        *,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            transport: Transport to the radio; opened by connect() if needed.
            config: Session configuration.
            diagnostics: Sink for protocol diagnostics. Defaults to
                LoggingDiagnostics.
        """
        self._transport = transport
        self._config = config or SessionConfig()
        self._diagnostics = diagnostics or LoggingDiagnostics()
        self._codec = FrameCodec(self._config.max_payload_size)
        self._push_table = self._config.push_code_table()

        self._state = SessionState.DISCONNECTED
        self._framer: StreamFramer | None = None
        self._dispatcher: CommandDispatcher | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._subscribers: list[PushCallback] = []
        self._push_tasks: set[asyncio.Task[None]] = set()
        self._self_info: ResponseEnvelope | None = None
        self._device_info: ResponseEnvelope | None = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SessionState:
        """Get the current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the session is ready for commands."""
        return self._state == SessionState.CONNECTED

    @property
    def transport(self) -> AbstractTransport:
        """Get the underlying transport."""
        return self._transport

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def self_info(self) -> ResponseEnvelope | None:
        """SELF_INFO reply from the last handshake, if APP_START answered."""
        return self._self_info

    @property
    def device_info(self) -> ResponseEnvelope | None:
        """DEVICE_INFO reply from the last handshake."""
        return self._device_info

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the transport, start the read task and run the handshake.

        The handshake runs only when ``config.handshake_on_connect`` is set.
        On any failure the session is torn down again before the error
        propagates.

        Raises:
            ConnectionError: If the session is not disconnected.
            TransportError: If the transport cannot be opened.
            ProtocolError, TimeoutError, CommandError: If the handshake fails.
        """
        if self._state != SessionState.DISCONNECTED:
            raise ConnectionError(f"Cannot connect: session is in {self._state.name} state")

        self._state = SessionState.CONNECTING
        logger.info("Connecting to %s", self._transport.port_name)

        try:
            if not self._transport.is_open:
                await self._transport.open()
            self._transport.discard_buffers()

            self._framer = StreamFramer(self._codec, self._diagnostics)
            self._dispatcher = CommandDispatcher(
                self._write,
                codec=self._codec,
                push_table=self._push_table,
                diagnostics=self._diagnostics,
                default_timeout=self._config.default_timeout,
                on_push=self._handle_push,
            )
            self._read_task = asyncio.create_task(
                self._read_loop(self._framer, self._dispatcher),
                name=f"meshlink-read:{self._transport.port_name}",
            )
            self._state = SessionState.CONNECTED

            if self._config.handshake_on_connect:
                await self.handshake()

        except (Exception, asyncio.CancelledError):
            logger.debug("Connect to %s failed, tearing down", self._transport.port_name)
            await self._shutdown(ConnectionError("Connect failed"))
            raise

        logger.info("Connected to %s", self._transport.port_name)

    async def disconnect(self) -> None:
        """
        Stop the read task, fail waiters and close the transport.

        Commands still waiting for a reply fail with ConnectionError.
        Safe to call when already disconnected.
        """
        if self._state in (SessionState.DISCONNECTED, SessionState.DISCONNECTING):
            return

        logger.info("Disconnecting from %s", self._transport.port_name)
        self._state = SessionState.DISCONNECTING
        await self._shutdown(ConnectionError("Session disconnected"))
        logger.debug("Disconnected")

    async def _shutdown(self, error: BaseException) -> None:
        if self._dispatcher is not None:
            self._dispatcher.close(error)

        task = self._read_task
        self._read_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        try:
            if self._transport.is_open:
                await self._transport.close()
        except TransportError as e:
            logger.warning("Error closing %s: %s", self._transport.port_name, e)
        finally:
            self._framer = None
            self._state = SessionState.DISCONNECTED

    async def _abort(self, error: TransportError) -> None:
        """Tear the session down after a transport fault."""
        if self._state in (SessionState.DISCONNECTED, SessionState.DISCONNECTING):
            return
        self._diagnostics.transport_error(error)
        logger.error("Transport failure on %s: %s", self._transport.port_name, error)
        self._state = SessionState.DISCONNECTING
        await self._shutdown(error)

    async def _read_loop(self, framer: StreamFramer, dispatcher: CommandDispatcher) -> None:
        """Frame incoming bytes and dispatch them until cancelled or failed."""
        try:
            while True:
                chunk = await self._transport.read_available()
                if not chunk:
                    continue
                for frame in framer.feed(chunk):
                    dispatcher.dispatch(frame)
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            await self._abort(e)
        except Exception as e:
            logger.exception("Read loop on %s failed", self._transport.port_name)
            await self._abort(TransportError(f"Read loop failed: {e}"))

    async def _write(self, data: bytes) -> None:
        try:
            await self._transport.write(data)
        except TransportError as e:
            await self._abort(e)
            raise

    # =========================================================================
    # Commands
    # =========================================================================

    async def execute(
        self,
        command: CommandCode | int,
        data: bytes = b"",
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """
        Send one command and wait for its reply.

        Args:
            command: Command code.
            data: Command arguments.
            timeout: Reply timeout in seconds. None uses the configured
                default.

        Returns:
            Reply envelope.

        Raises:
            ConnectionError: If not connected, or disconnected while waiting.
            CommandError: If the device answered with ERR.
            TimeoutError: If no reply arrived in time.
            TransportError: If the transport failed.
        """
        dispatcher = self._require_dispatcher()
        return await dispatcher.send(command, data, timeout)

    async def handshake(self) -> ResponseEnvelope:
        """
        Announce the application and query the device.

        Sends APP_START then DEVICE_QUERY, both carrying the configured app
        protocol version. Firmware that does not answer APP_START is queried
        with DEVICE_QUERY alone.

        Returns:
            DEVICE_INFO reply.

        Raises:
            ProtocolError: If DEVICE_QUERY is not answered with DEVICE_INFO.
        """
        version = bytes([self._config.app_protocol_version])
        try:
            self._self_info = await self.execute(CommandCode.APP_START, version)
        except TimeoutError:
            logger.debug("APP_START timed out; falling back to DEVICE_QUERY")
            self._self_info = None

        reply = await self.execute(CommandCode.DEVICE_QUERY, version)
        if reply.response_code != ResponseCode.DEVICE_INFO:
            raise ProtocolError(
                f"Device initialization failed: DEVICE_QUERY answered with 0x{reply.response_code:02X}"
            )
        self._device_info = reply
        logger.debug("Handshake complete: %r", reply)
        return reply

    async def run_contact_sync(
        self,
        *,
        since: int = 0,
        stop_at_total: bool = False,
        policy: PartialResultPolicy | None = None,
    ) -> SequenceResult[ContactRecord]:
        """
        Download the contact list.

        Args:
            since: Only contacts modified after this cursor; pass a previous
                result's ``cursor`` for an incremental sync.
            stop_at_total: Complete once the announced count has arrived.
            policy: Partial result policy; defaults to the configured one.

        Returns:
            Sync result with the contact records and the new cursor.
        """
        sync = ContactSync(
            since=since,
            stop_at_total=stop_at_total,
            item_timeout=self._config.item_timeout,
            policy=policy or self._config.partial_result_policy,
            max_iterations=self._config.max_sync_iterations,
        )
        return await sync.run(self._require_dispatcher())

    async def run_message_sync(
        self,
        *,
        policy: PartialResultPolicy | None = None,
    ) -> SequenceResult[MessageRecord]:
        """
        Drain all queued messages.

        Args:
            policy: Partial result policy; defaults to the configured one.

        Returns:
            Sync result with the message records in queue order.
        """
        sync = MessageSync(
            policy=policy or self._config.partial_result_policy,
            max_iterations=self._config.max_sync_iterations,
        )
        return await sync.run(self._require_dispatcher())

    def _require_dispatcher(self) -> CommandDispatcher:
        if self._state != SessionState.CONNECTED or self._dispatcher is None:
            raise ConnectionError(f"Not connected (state: {self._state.name})")
        return self._dispatcher

    # =========================================================================
    # Push notifications
    # =========================================================================

    def on_push(self, callback: PushCallback) -> Callable[[], None]:
        """
        Subscribe to push notifications.

        The callback is called with each PushEvent in arrival order. It may
        be a plain function or a coroutine function; coroutines are
        scheduled as tasks. Exceptions raised by a callback are logged and
        do not affect the session or other subscribers.

        Args:
            callback: Function receiving PushEvent.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _handle_push(self, event: PushEvent) -> None:
        if not self._push_table.is_push(event.code):
            logger.debug("Ignoring unsolicited reply 0x%02X", event.code)
            return

        for callback in list(self._subscribers):
            try:
                result = callback(event)
            except Exception:
                logger.exception("Push callback %r failed for %r", callback, event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._push_tasks.add(task)
                task.add_done_callback(self._push_task_done)

    def _push_task_done(self, task: asyncio.Future[None]) -> None:
        self._push_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async push callback failed: %s", error, exc_info=error)

    # =========================================================================
    # Context manager
    # =========================================================================

    async def __aenter__(self) -> DeviceSession:
        """Async context manager entry - connects the session."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - disconnects and closes the transport."""
        await self.disconnect()

    def __repr__(self) -> str:
        return f"DeviceSession({self._transport.port_name!r}, state={self._state.name})"
