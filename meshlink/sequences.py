"""
Multi-frame sequence protocols.

Two exchanges span more than one request/response pair:

Contact sync (one command, streamed reply):
    GET_CONTACTS [since]
        <- CONTACTS_START total
        <- CONTACT record      (repeated, no further commands)
        <- END_OF_CONTACTS [lastmod]

Message sync (one command per item):
    SYNC_NEXT_MESSAGE  <- CONTACT_MSG_RECV / CHANNEL_MSG_RECV / *_V3
    SYNC_NEXT_MESSAGE  <- ...
    SYNC_NEXT_MESSAGE  <- NO_MORE_MESSAGES

Both hold the dispatcher gate for their whole duration so no other command
can interleave with the stream.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Generic, TypeVar

from meshlink.dispatcher import CommandDispatcher, SequenceChannel
from meshlink.exceptions import CommandError, MeshLinkError, SequenceError
from meshlink.models.records import (
    ContactRecord,
    MessageRecord,
    PartialResultPolicy,
    SequenceResult,
    SequenceState,
)
from meshlink.protocol.constants import (
    CONTACT_RESIDUE_CODES,
    EMPTY_CONTACT_LIST_STATUSES,
    MESSAGE_RECORD_CODES,
    MESSAGE_RECORD_MIN_SIZES,
    CommandCode,
    ProtocolConstants,
    ResponseCode,
)
from meshlink.protocol.encoding import encode_uint32_le, try_decode_uint32_le
from meshlink.protocol.frame_codec import ResponseEnvelope

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class SequenceProtocol(ABC, Generic[RecordT]):
    """
    Base class for multi-frame exchanges.

    A sequence object is single-use: create it, call run() once, read the
    result. The state moves IDLE -> REQUESTING -> RECEIVING -> COMPLETE, or
    to FAILED from any active state.

    Failure handling follows the partial result policy:
    - DISCARD: the error is raised and received records are dropped
    - RETURN_PARTIAL: a FAILED result with the records so far is returned

    Cancellation always propagates.
    """

    name: str = "sequence"

    def __init__(
        self,
        *,
        policy: PartialResultPolicy = PartialResultPolicy.DISCARD,
        max_iterations: int = ProtocolConstants.MAX_SYNC_ITERATIONS,
        command_timeout: float | None = None,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self._policy = policy
        self._max_iterations = max_iterations
        self._command_timeout = command_timeout

        self._state = SequenceState.IDLE
        self._records: list[RecordT] = []
        self._iterations = 0
        self._expected_total: int | None = None
        self._cursor: int | None = None

    @property
    def state(self) -> SequenceState:
        return self._state

    @property
    def records(self) -> list[RecordT]:
        """Records received so far."""
        return list(self._records)

    @property
    def iterations(self) -> int:
        return self._iterations

    async def run(self, dispatcher: CommandDispatcher) -> SequenceResult[RecordT]:
        """
        Run the exchange to completion.

        Args:
            dispatcher: Dispatcher of a connected session.

        Returns:
            COMPLETE result, or FAILED result under RETURN_PARTIAL.

        Raises:
            SequenceError: Malformed item, unexpected code or iteration bound.
            CommandError: The device rejected the request.
            TimeoutError: A reply or streamed item did not arrive in time.
            ConnectionError: The session closed before or during the run.
        """
        if self._state is not SequenceState.IDLE:
            raise RuntimeError(f"{type(self).__name__} has already run")

        async with dispatcher.exclusive() as channel:
            try:
                await self._exchange(channel)
            except asyncio.CancelledError:
                self._state = SequenceState.FAILED
                raise
            except MeshLinkError as e:
                self._state = SequenceState.FAILED
                logger.warning(
                    "%s failed after %d record(s): %s",
                    self.name,
                    len(self._records),
                    e,
                )
                if self._policy is PartialResultPolicy.RETURN_PARTIAL:
                    return self._result(error=str(e))
                raise

        self._state = SequenceState.COMPLETE
        return self._result()

    @abstractmethod
    async def _exchange(self, channel: SequenceChannel) -> None:
        """Drive the exchange, appending to self._records."""

    def _result(self, error: str | None = None) -> SequenceResult[RecordT]:
        return SequenceResult(
            records=list(self._records),
            state=self._state,
            expected_total=self._expected_total,
            cursor=self._cursor,
            iterations=self._iterations,
            error=error,
        )

    def _error(self, message: str, response_code: int | None = None) -> SequenceError:
        return SequenceError(
            message,
            sequence=self.name,
            response_code=response_code,
            records_received=len(self._records),
        )

    def _check_iterations(self) -> None:
        if self._iterations >= self._max_iterations:
            raise self._error(f"Exceeded {self._max_iterations} iterations")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._state.value}, records={len(self._records)})"


class ContactSync(SequenceProtocol[ContactRecord]):
    """
    Download the contact list.

    Sends GET_CONTACTS once, then collects the streamed CONTACT items until
    END_OF_CONTACTS. A device may skip CONTACTS_START and answer the command
    with the first CONTACT directly.
    An ERR reply to GET_CONTACTS with a status in
    EMPTY_CONTACT_LIST_STATUSES completes with no records; any other status
    raises CommandError.

    Example:
        >>> result = await ContactSync().run(dispatcher)
        >>> later = await ContactSync(since=result.cursor).run(dispatcher)
    """

    name = "contact_sync"

    def __init__(
        self,
        *,
        since: int = 0,
        stop_at_total: bool = False,
        item_timeout: float = ProtocolConstants.DEFAULT_ITEM_TIMEOUT,
        policy: PartialResultPolicy = PartialResultPolicy.DISCARD,
        max_iterations: int = ProtocolConstants.MAX_SYNC_ITERATIONS,
        command_timeout: float | None = None,
    ) -> None:
        """
        Initialize a contact sync.

        Args:
            since: Only return contacts modified after this cursor (0 for all).
            stop_at_total: Complete as soon as the announced number of
                contacts has arrived instead of waiting for END_OF_CONTACTS.
            item_timeout: Seconds to wait for each streamed item.
            policy: Partial result policy.
            max_iterations: Upper bound on streamed items.
            command_timeout: Reply timeout for GET_CONTACTS.
        """
        super().__init__(policy=policy, max_iterations=max_iterations, command_timeout=command_timeout)
        if not 0 <= since <= 0xFFFFFFFF:
            raise ValueError(f"since must be a 32-bit value, got {since}")
        if item_timeout <= 0:
            raise ValueError(f"item_timeout must be positive, got {item_timeout}")
        self._since = since
        self._stop_at_total = stop_at_total
        self._item_timeout = item_timeout

    async def _exchange(self, channel: SequenceChannel) -> None:
        self._state = SequenceState.REQUESTING
        data = encode_uint32_le(self._since) if self._since else b""
        try:
            reply = await channel.send(CommandCode.GET_CONTACTS, data, self._command_timeout)
        except CommandError as e:
            self._iterations += 1
            if e.status not in EMPTY_CONTACT_LIST_STATUSES:
                raise
            logger.info("GET_CONTACTS answered with status 0x%02X; no contacts to list", e.status)
            return
        self._iterations += 1
        self._state = SequenceState.RECEIVING

        code = reply.response_code
        if code == ResponseCode.CONTACTS_START:
            self._expected_total = try_decode_uint32_le(reply.body)
            if self._expected_total is None:
                raise self._error("Contact list start reply has no total", code)
            logger.debug("Contact list start: %d contact(s) announced", self._expected_total)
        elif code == ResponseCode.CONTACT:
            self._accept(reply)
        elif code == ResponseCode.END_OF_CONTACTS:
            self._finish(reply)
            return
        else:
            raise self._error(f"Unexpected reply 0x{code:02X} to GET_CONTACTS", code)

        while not self._total_reached():
            self._check_iterations()
            item = await channel.receive(self._item_timeout)
            self._iterations += 1

            code = item.response_code
            if code == ResponseCode.CONTACT:
                self._accept(item)
            elif code == ResponseCode.END_OF_CONTACTS:
                self._finish(item)
                return
            elif code == ResponseCode.ERR:
                raise CommandError(CommandCode.GET_CONTACTS, item.status)
            else:
                raise self._error(f"Unexpected code 0x{code:02X} in contact list", code)

        self._check_count()

    def _total_reached(self) -> bool:
        return (
            self._stop_at_total
            and self._expected_total is not None
            and len(self._records) >= self._expected_total
        )

    def _accept(self, envelope: ResponseEnvelope) -> None:
        body = envelope.body
        if len(body) < ProtocolConstants.CONTACT_RECORD_MIN_SIZE:
            raise self._error(
                f"Contact record too short: {len(body)} bytes, "
                f"need {ProtocolConstants.CONTACT_RECORD_MIN_SIZE}",
                envelope.response_code,
            )
        self._records.append(ContactRecord.from_body(body))

    def _finish(self, envelope: ResponseEnvelope) -> None:
        self._cursor = try_decode_uint32_le(envelope.body)
        self._check_count()

    def _check_count(self) -> None:
        if self._expected_total is not None and self._expected_total != len(self._records):
            logger.warning(
                "Contact count mismatch: device announced %d, received %d",
                self._expected_total,
                len(self._records),
            )


class MessageSync(SequenceProtocol[MessageRecord]):
    """
    Drain the device's queued messages.

    Sends SYNC_NEXT_MESSAGE repeatedly until NO_MORE_MESSAGES. Leftover
    contact list frames that some firmware leaves in the queue are skipped.
    An ERR reply also ends the drain; messages received before it are kept
    and the status byte is available as end_status.
    """

    name = "message_sync"

    def __init__(
        self,
        *,
        skip_codes: Iterable[int] = CONTACT_RESIDUE_CODES,
        policy: PartialResultPolicy = PartialResultPolicy.DISCARD,
        max_iterations: int = ProtocolConstants.MAX_SYNC_ITERATIONS,
        command_timeout: float | None = None,
    ) -> None:
        super().__init__(policy=policy, max_iterations=max_iterations, command_timeout=command_timeout)
        self._skip_codes = frozenset(skip_codes)
        self._skipped = 0
        self._end_status: int | None = None

    @property
    def skipped(self) -> int:
        """Number of residue frames skipped."""
        return self._skipped

    @property
    def end_status(self) -> int | None:
        """Status byte of the ERR reply that ended the drain, if one did."""
        return self._end_status

    async def _exchange(self, channel: SequenceChannel) -> None:
        self._state = SequenceState.REQUESTING
        while True:
            self._check_iterations()
            try:
                reply = await channel.send(CommandCode.SYNC_NEXT_MESSAGE, b"", self._command_timeout)
            except CommandError as e:
                # Messages already drained are gone from the device queue
                self._iterations += 1
                self._end_status = e.status
                logger.warning(
                    "Message sync ended by device error after %d message(s): %s",
                    len(self._records),
                    e,
                )
                return
            self._iterations += 1
            self._state = SequenceState.RECEIVING

            code = reply.response_code
            if code == ResponseCode.NO_MORE_MESSAGES:
                return
            if code in MESSAGE_RECORD_CODES:
                self._accept(reply)
            elif code in self._skip_codes:
                self._skipped += 1
                logger.debug("Skipping queued frame 0x%02X during message sync", code)
            else:
                raise self._error(f"Unexpected reply 0x{code:02X} to SYNC_NEXT_MESSAGE", code)

    def _accept(self, envelope: ResponseEnvelope) -> None:
        code = envelope.response_code
        minimum = MESSAGE_RECORD_MIN_SIZES[code]
        if len(envelope.body) < minimum:
            raise self._error(
                f"Message record too short: {len(envelope.body)} bytes, need {minimum}",
                code,
            )
        self._records.append(MessageRecord(response_code=code, raw=envelope.body))
