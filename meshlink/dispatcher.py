"""
Command/response correlation.

The companion protocol has no request identifiers: a reply is matched to a
command only because at most one command is outstanding at any time. The
CommandDispatcher enforces that discipline with an asyncio.Lock gate and a
single PendingCommand slot, and classifies every decoded frame as either a
push notification, the reply to the pending command, an item of the open
sequence, or an unsolicited reply.

Routing order for device-to-host frames:
1. Code in the push code table: push channel, always
2. Pending command not yet resolved: resolves it (ERR raises CommandError)
3. Sequence channel open: queued for the sequence
4. Otherwise: reported as unmatched and handed to the push channel
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Union

from meshlink.diagnostics import DiagnosticsSink, LoggingDiagnostics
from meshlink.exceptions import CommandError, ConnectionError, TimeoutError, TransportError
from meshlink.protocol.constants import (
    DEFAULT_PUSH_CODE_TABLE,
    CommandCode,
    ProtocolConstants,
    PushCodeTable,
)
from meshlink.protocol.frame_codec import (
    DEFAULT_FRAME_CODEC,
    Direction,
    Frame,
    FrameCodec,
    ResponseEnvelope,
)

logger = logging.getLogger(__name__)

WriteFunc = Callable[[bytes], Awaitable[None]]
PushHandler = Callable[["PushEvent"], None]
_SequenceItem = Union[ResponseEnvelope, BaseException]


@dataclass
class PendingCommand:
    """
    The single command awaiting its reply.

    Attributes:
        command_code: Code of the command that was written.
        issued_at: Event loop time when the command was created.
        deadline: Event loop time after which the command times out.
        future: Resolved with the reply envelope, or failed with an error.
    """

    command_code: int
    issued_at: float
    deadline: float
    future: asyncio.Future[ResponseEnvelope] = field(repr=False)


@dataclass(frozen=True)
class PushEvent:
    """
    Unsolicited device-to-host frame handed to observers.

    Attributes:
        code: Response/push code (payload byte 0).
        data: Payload after the code byte.
    """

    code: int
    data: bytes

    def __repr__(self) -> str:
        return f"PushEvent(0x{self.code:02X}, {len(self.data)} bytes)"


class CommandDispatcher:
    """
    Serializes commands and routes decoded frames.

    The dispatcher does not read from the transport. The owner's read loop
    calls dispatch() for every decoded frame; send() writes through the
    injected write coroutine.

    Example:
        >>> dispatcher = CommandDispatcher(transport.write)
        >>> # in the read loop: dispatcher.dispatch(frame)
        >>> reply = await dispatcher.send(CommandCode.DEVICE_QUERY, b"\\x08")
    """

    def __init__(
        self,
        write: WriteFunc,
        *,
        codec: FrameCodec | None = None,
        push_table: PushCodeTable | None = None,
        diagnostics: DiagnosticsSink | None = None,
        default_timeout: float = ProtocolConstants.DEFAULT_TIMEOUT,
        on_push: PushHandler | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            write: Coroutine function writing raw bytes to the transport.
            codec: Codec used to encode commands.
            push_table: Response codes that are always push notifications.
            diagnostics: Sink for routing events.
            default_timeout: Reply timeout used when send() gets none.
            on_push: Called synchronously for each push event.
        """
        if default_timeout <= 0:
            raise ValueError(f"default_timeout must be positive, got {default_timeout}")

        self._write = write
        self._codec = codec or DEFAULT_FRAME_CODEC
        self._push_table = push_table or DEFAULT_PUSH_CODE_TABLE
        self._diagnostics = diagnostics or LoggingDiagnostics()
        self._default_timeout = default_timeout
        self._on_push = on_push

        self._gate = asyncio.Lock()
        self._pending: PendingCommand | None = None
        self._sink: asyncio.Queue[_SequenceItem] | None = None
        self._close_error: BaseException | None = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def pending(self) -> PendingCommand | None:
        """The command currently awaiting its reply, if any."""
        return self._pending

    @property
    def is_busy(self) -> bool:
        """Check if a command or sequence currently holds the gate."""
        return self._gate.locked()

    @property
    def is_closed(self) -> bool:
        return self._close_error is not None

    @property
    def push_table(self) -> PushCodeTable:
        return self._push_table

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(
        self,
        command_code: CommandCode | int,
        data: bytes = b"",
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """
        Send one command and wait for its reply.

        Waits for the gate first, so concurrent callers are written one at a
        time, each only after the previous reply, timeout or cancellation.

        Args:
            command_code: Command code to send.
            data: Command arguments.
            timeout: Seconds to wait for the reply after the command is
                created. None uses the default timeout.

        Returns:
            Reply envelope.

        Raises:
            CommandError: If the device answered with ERR.
            TimeoutError: If no reply arrived before the deadline.
            ConnectionError: If the dispatcher is closed.
            OversizedFrameError: If the command does not fit in a frame.
            TransportError: If the write fails.
        """
        async with self._gate:
            return await self._send_locked(command_code, data, timeout)

    async def _send_locked(
        self,
        command_code: CommandCode | int,
        data: bytes,
        timeout: float | None,
    ) -> ResponseEnvelope:
        self._raise_if_closed()

        effective_timeout = self._default_timeout if timeout is None else timeout
        if effective_timeout <= 0:
            raise ValueError(f"timeout must be positive, got {effective_timeout}")

        code = int(command_code)
        encoded = self._codec.encode_command(code, data)

        loop = asyncio.get_running_loop()
        issued_at = loop.time()
        pending = PendingCommand(
            command_code=code,
            issued_at=issued_at,
            deadline=issued_at + effective_timeout,
            future=loop.create_future(),
        )
        self._pending = pending

        try:
            await self._write(encoded)
            self._diagnostics.frame_sent(encoded)

            remaining = max(0.0, pending.deadline - loop.time())
            try:
                envelope = await asyncio.wait_for(pending.future, remaining)
            except asyncio.TimeoutError:
                error = TimeoutError(
                    f"No reply to command 0x{code:02X}",
                    timeout_seconds=effective_timeout,
                    command_code=code,
                )
                self._diagnostics.command_failed(code, error)
                raise error from None

        except asyncio.CancelledError as e:
            self._diagnostics.command_failed(code, e)
            raise
        except (CommandError, ConnectionError, TransportError) as e:
            self._diagnostics.command_failed(code, e)
            raise
        finally:
            if self._pending is pending:
                self._pending = None
            if not pending.future.done():
                pending.future.cancel()
            elif not pending.future.cancelled():
                # Mark a failure nobody awaited as retrieved
                pending.future.exception()

        self._diagnostics.command_completed(code, envelope.response_code, loop.time() - issued_at)
        return envelope

    # =========================================================================
    # Sequences
    # =========================================================================

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[SequenceChannel]:
        """
        Hold the gate for a multi-frame exchange.

        While the context is open, replies that arrive with no pending
        command are queued on the yielded channel instead of being reported
        as unmatched.

        Yields:
            Channel for sending commands and receiving streamed items.

        Raises:
            ConnectionError: If the dispatcher is closed.
        """
        async with self._gate:
            self._raise_if_closed()
            queue: asyncio.Queue[_SequenceItem] = asyncio.Queue()
            self._sink = queue
            try:
                yield SequenceChannel(self, queue)
            finally:
                if self._sink is queue:
                    self._sink = None

    # =========================================================================
    # Receiving
    # =========================================================================

    def dispatch(self, frame: Frame) -> None:
        """
        Route one decoded frame.

        Must be called from the event loop thread, in stream order.

        Args:
            frame: Frame produced by the stream framer.
        """
        self._diagnostics.frame_received(frame)

        if frame.direction is not Direction.OUTBOUND:
            self._diagnostics.frame_ignored(frame, "host-to-device frame")
            return
        if not frame.payload:
            self._diagnostics.frame_ignored(frame, "empty payload")
            return

        code = frame.payload[0]
        if self._push_table.is_push(code):
            self._diagnostics.push_received(code, frame.payload[1:])
            self._deliver_push(frame)
            return

        pending = self._pending
        if pending is not None and not pending.future.done():
            envelope = frame.envelope()
            if envelope.is_error:
                pending.future.set_exception(CommandError(pending.command_code, envelope.status))
            else:
                pending.future.set_result(envelope)
            return

        if self._sink is not None:
            self._sink.put_nowait(frame.envelope())
            return

        self._diagnostics.unmatched_frame(frame)
        self._deliver_push(frame)

    def _deliver_push(self, frame: Frame) -> None:
        if self._on_push is None:
            return
        event = PushEvent(code=frame.payload[0], data=bytes(frame.payload[1:]))
        try:
            self._on_push(event)
        except Exception:
            logger.exception("Push handler failed for %r", event)

    # =========================================================================
    # Shutdown
    # =========================================================================

    def close(self, error: BaseException | None = None) -> None:
        """
        Fail all waiters and refuse further commands.

        Args:
            error: Exception delivered to the pending command and the open
                sequence channel. Defaults to ConnectionError.
        """
        if error is None:
            error = ConnectionError("Session closed")
        if self._close_error is None:
            self._close_error = error

        pending = self._pending
        if pending is not None and not pending.future.done():
            pending.future.set_exception(error)
        if self._sink is not None:
            self._sink.put_nowait(error)

    def _raise_if_closed(self) -> None:
        if self._close_error is not None:
            raise ConnectionError("Dispatcher is closed") from self._close_error

    def __repr__(self) -> str:
        if self._close_error is not None:
            state = "closed"
        elif self._pending is not None:
            state = f"pending=0x{self._pending.command_code:02X}"
        else:
            state = "idle"
        return f"CommandDispatcher({state})"


class SequenceChannel:
    """
    Gate-holding handle for one multi-frame exchange.

    Obtained from CommandDispatcher.exclusive(). Commands sent through the
    channel reuse the held gate; items streamed by the device without a
    pending command are read with receive().
    """

    def __init__(self, dispatcher: CommandDispatcher, queue: asyncio.Queue[_SequenceItem]) -> None:
        self._dispatcher = dispatcher
        self._queue = queue

    async def send(
        self,
        command_code: CommandCode | int,
        data: bytes = b"",
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a command under the held gate and wait for its reply."""
        return await self._dispatcher._send_locked(command_code, data, timeout)

    async def receive(self, timeout: float) -> ResponseEnvelope:
        """
        Wait for the next streamed item.

        Args:
            timeout: Seconds to wait.

        Returns:
            Envelope of the next frame that arrived with no pending command.

        Raises:
            TimeoutError: If nothing arrives in time.
            ConnectionError, TransportError: If the dispatcher was closed.
        """
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                "No sequence item received",
                timeout_seconds=timeout,
            ) from None
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def queued(self) -> int:
        """Number of items received but not yet consumed."""
        return self._queue.qsize()
