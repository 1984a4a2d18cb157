"""Tests for DeviceSession."""

import asyncio
import logging

import pytest
import pytest_asyncio

from meshlink import DeviceSession, SessionConfig, SessionState
from meshlink.diagnostics import DiagnosticsSink
from meshlink.dispatcher import PushEvent
from meshlink.exceptions import (
    CommandError,
    ConnectionError,
    ProtocolError,
    TimeoutError,
    TransportError,
)
from meshlink.models.records import PartialResultPolicy, SequenceState
from meshlink.protocol.constants import CommandCode, ResponseCode
from meshlink.protocol.encoding import encode_uint32_le
from meshlink.protocol.frame_codec import Direction, encode_frame
from meshlink.transport.mock import MockTransport, ScriptedMockTransport


def reply(*payload: int) -> bytes:
    """Encode a device-to-host frame."""
    return encode_frame(Direction.OUTBOUND, bytes(payload))


def command(code: int, data: bytes = b"") -> bytes:
    """Encode a host-to-device command as it appears on the wire."""
    return encode_frame(Direction.INBOUND, bytes([code]) + data)


def contact_reply(key_byte: int) -> bytes:
    return reply(0x03, *([key_byte] * 32), *bytes(67))


async def settle() -> None:
    """Let scheduled tasks run until they block."""
    for _ in range(10):
        await asyncio.sleep(0)


async def wait_for_state(session: DeviceSession, state: SessionState) -> None:
    """Poll until the session reaches a state."""
    for _ in range(100):
        if session.state == state:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"Session stuck in {session.state.name}")


class RecordingDiagnostics(DiagnosticsSink):
    """Diagnostics sink that records every event name."""

    def __init__(self):
        self.events = []

    def bytes_discarded(self, data, reason):
        self.events.append(("discarded", data))

    def frame_received(self, frame):
        self.events.append(("received", frame.code))

    def frame_sent(self, data):
        self.events.append(("sent", data))

    def transport_error(self, error):
        self.events.append(("transport_error", error))


class TestSessionLifecycle:
    """Tests for connect/disconnect."""

    @pytest.fixture
    def mock_transport(self):
        """Create a MockTransport instance."""
        return MockTransport()

    @pytest.fixture
    def session(self, mock_transport):
        """Create a session without the connect handshake."""
        return DeviceSession(mock_transport, SessionConfig(default_timeout=0.5, handshake_on_connect=False))

    def test_initial_state(self, session):
        """Test session starts disconnected."""
        assert session.state == SessionState.DISCONNECTED
        assert session.is_connected is False
        assert session.device_info is None

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, session, mock_transport):
        """Test the basic lifecycle."""
        await session.connect()
        assert session.state == SessionState.CONNECTED
        assert mock_transport.is_open

        await session.disconnect()
        assert session.state == SessionState.DISCONNECTED
        assert not mock_transport.is_open

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, session, mock_transport):
        """Test that disconnecting twice is harmless."""
        await session.connect()
        await session.disconnect()
        await session.disconnect()
        assert mock_transport.close_count == 1

    @pytest.mark.asyncio
    async def test_connect_twice_raises(self, session):
        """Test that connecting a connected session raises."""
        await session.connect()
        try:
            with pytest.raises(ConnectionError) as exc_info:
                await session.connect()
            assert "CONNECTED" in str(exc_info.value)
        finally:
            await session.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect(self, session, mock_transport):
        """Test that a session can connect again after disconnecting."""
        await session.connect()
        await session.disconnect()
        await session.connect()

        mock_transport.add_response(reply(0x00))
        envelope = await session.execute(CommandCode.SET_ADVERT_NAME, b"node")
        assert envelope.response_code == ResponseCode.OK
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_transport):
        """Test scoped acquisition."""
        config = SessionConfig(handshake_on_connect=False)
        async with DeviceSession(mock_transport, config) as session:
            assert session.is_connected
        assert session.state == SessionState.DISCONNECTED
        assert not mock_transport.is_open

    @pytest.mark.asyncio
    async def test_execute_requires_connection(self, session):
        """Test that commands are refused while disconnected."""
        with pytest.raises(ConnectionError):
            await session.execute(CommandCode.GET_DEVICE_TIME)

    def test_repr(self, session):
        """Test session string representation."""
        assert repr(session) == "DeviceSession('mock://test', state=DISCONNECTED)"


class TestHandshake:
    """Tests for the connect handshake."""

    @pytest.mark.asyncio
    async def test_handshake_on_connect(self):
        """Test APP_START followed by DEVICE_QUERY."""
        transport = ScriptedMockTransport()
        transport.expect(reply(0x05, 0x01, 0x02), request=command(0x01, b"\x08"))
        transport.expect(reply(0x0D, 0x08, 0x07), request=command(0x16, b"\x08"))

        session = DeviceSession(transport, SessionConfig(default_timeout=0.5))
        await session.connect()
        try:
            assert session.is_connected
            assert session.self_info.response_code == ResponseCode.SELF_INFO
            assert session.device_info.response_code == ResponseCode.DEVICE_INFO
            transport.assert_write_count(2)
        finally:
            await session.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_falls_back_to_device_query(self):
        """Test that a silent APP_START is skipped."""
        transport = ScriptedMockTransport()
        transport.expect(None, request=command(0x01, b"\x08"))
        transport.expect(reply(0x0D, 0x08), request=command(0x16, b"\x08"))

        session = DeviceSession(transport, SessionConfig(default_timeout=0.1))
        await session.connect()
        try:
            assert session.self_info is None
            assert session.device_info is not None
        finally:
            await session.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_wrong_reply_fails_connect(self):
        """Test that DEVICE_QUERY must answer DEVICE_INFO."""
        transport = MockTransport()
        transport.add_responses(reply(0x05), reply(0x00))

        session = DeviceSession(transport, SessionConfig(default_timeout=0.5))
        with pytest.raises(ProtocolError):
            await session.connect()

        assert session.state == SessionState.DISCONNECTED
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_handshake_timeout_fails_connect(self):
        """Test that a silent device fails the connect."""
        transport = MockTransport()

        session = DeviceSession(transport, SessionConfig(default_timeout=0.05))
        with pytest.raises(TimeoutError):
            await session.connect()

        assert session.state == SessionState.DISCONNECTED
        # APP_START, then the DEVICE_QUERY fallback
        assert transport.written_data == [command(0x01, b"\x08"), command(0x16, b"\x08")]

    @pytest.mark.asyncio
    async def test_custom_protocol_version(self):
        """Test that the configured app version is announced."""
        transport = MockTransport()
        transport.add_responses(reply(0x05), reply(0x0D, 0x03))

        config = SessionConfig(app_protocol_version=0x03)
        async with DeviceSession(transport, config):
            transport.assert_written(command(0x01, b"\x03"), index=0)
            transport.assert_written(command(0x16, b"\x03"), index=1)


class TestCommands:
    """Tests for execute and sequences through a connected session."""

    @pytest.fixture
    def mock_transport(self):
        """Create a MockTransport instance."""
        return MockTransport()

    @pytest.fixture
    def diagnostics(self):
        """Create a recording diagnostics sink."""
        return RecordingDiagnostics()

    @pytest_asyncio.fixture
    async def session(self, mock_transport, diagnostics):
        """Create and connect a session without the handshake."""
        config = SessionConfig(default_timeout=0.5, item_timeout=0.5, handshake_on_connect=False)
        session = DeviceSession(mock_transport, config, diagnostics=diagnostics)
        await session.connect()
        yield session
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_execute(self, session, mock_transport):
        """Test a single command round trip."""
        mock_transport.add_response(reply(0x09, 0x10, 0x20, 0x30, 0x40))

        envelope = await session.execute(CommandCode.GET_DEVICE_TIME)

        mock_transport.assert_written(command(0x05))
        assert envelope.response_code == ResponseCode.CURR_TIME
        assert envelope.body == bytes([0x10, 0x20, 0x30, 0x40])

    @pytest.mark.asyncio
    async def test_execute_error_reply(self, session, mock_transport):
        """Test that ERR raises CommandError and the session stays usable."""
        mock_transport.add_responses(reply(0x01, 0x01), reply(0x00))

        with pytest.raises(CommandError):
            await session.execute(0x7F)

        assert session.is_connected
        assert (await session.execute(CommandCode.REBOOT)).response_code == ResponseCode.OK

    @pytest.mark.asyncio
    async def test_execute_timeout(self, session):
        """Test that a silent device raises TimeoutError."""
        with pytest.raises(TimeoutError):
            await session.execute(CommandCode.GET_DEVICE_TIME, timeout=0.05)
        assert session.is_connected

    @pytest.mark.asyncio
    async def test_concurrent_executes_are_serialized(self, session, mock_transport):
        """Test that concurrent callers each get their own reply."""
        mock_transport.add_responses(reply(0x09, 1, 0, 0, 0), reply(0x0C, 2, 0))

        first, second = await asyncio.gather(
            session.execute(CommandCode.GET_DEVICE_TIME),
            session.execute(CommandCode.GET_BATT_AND_STORAGE),
        )

        assert first.response_code == ResponseCode.CURR_TIME
        assert second.response_code == ResponseCode.BATT_AND_STORAGE

    @pytest.mark.asyncio
    async def test_noise_before_reply(self, session, mock_transport, diagnostics):
        """Test that line noise is discarded and reported."""
        mock_transport.add_response(b"\x00\xff" + reply(0x00))

        await session.execute(CommandCode.REBOOT)

        assert ("discarded", b"\x00\xff") in diagnostics.events
        assert ("sent", command(0x13)) in diagnostics.events

    @pytest.mark.asyncio
    async def test_contact_sync_one_byte_at_a_time(self, session, mock_transport):
        """Test a 3-contact sync delivered in single-byte reads."""
        mock_transport.set_chunk_size(1)
        mock_transport.add_response(
            reply(0x02, *encode_uint32_le(3))
            + contact_reply(0x01)
            + contact_reply(0x02)
            + contact_reply(0x03)
            + reply(0x04, *encode_uint32_le(99))
        )

        result = await session.run_contact_sync()

        mock_transport.assert_write_count(1)
        mock_transport.assert_written(command(0x04))
        assert result.state == SequenceState.COMPLETE
        assert [c.public_key[0] for c in result.records] == [1, 2, 3]
        assert result.cursor == 99

    @pytest.mark.asyncio
    async def test_message_sync_empty(self, session, mock_transport):
        """Test draining an empty queue."""
        mock_transport.add_response(reply(0x0A))

        result = await session.run_message_sync()

        mock_transport.assert_write_count(1)
        assert result.records == []

    @pytest.mark.asyncio
    async def test_contact_sync_empty_list_error(self, session, mock_transport):
        """Test that ERR/INVALID_PARAMETER to GET_CONTACTS is an empty list."""
        mock_transport.add_response(bytes([0x3E, 0x02, 0x00, 0x01, 0x02]))

        result = await session.run_contact_sync()

        assert result.state == SequenceState.COMPLETE
        assert result.records == []
        assert session.is_connected

    @pytest.mark.asyncio
    async def test_message_sync_error_keeps_messages(self, session, mock_transport):
        """Test that ERR mid-drain returns the messages already dequeued."""
        mock_transport.add_responses(reply(0x07, *bytes(12)), reply(0x01, 0x03))

        result = await session.run_message_sync()

        mock_transport.assert_write_count(2)
        assert result.state == SequenceState.COMPLETE
        assert len(result) == 1
        assert result.records[0].response_code == ResponseCode.CONTACT_MSG_RECV

    @pytest.mark.asyncio
    async def test_message_sync_partial_policy_override(self, session, mock_transport):
        """Test per-call partial result policy."""
        mock_transport.add_responses(reply(0x07, *bytes(12)), reply(0x42))

        result = await session.run_message_sync(policy=PartialResultPolicy.RETURN_PARTIAL)

        assert result.state == SequenceState.FAILED
        assert len(result) == 1

    @pytest.mark.asyncio
    async def test_disconnect_fails_in_flight_command(self, session):
        """Test that disconnect fails a waiting command with ConnectionError."""
        task = asyncio.create_task(session.execute(CommandCode.GET_DEVICE_TIME))
        await settle()

        await session.disconnect()

        with pytest.raises(ConnectionError):
            await task

    @pytest.mark.asyncio
    async def test_read_fault_tears_down(self, session, mock_transport, diagnostics):
        """Test that a transport read failure disconnects the session."""
        task = asyncio.create_task(session.execute(CommandCode.GET_DEVICE_TIME))
        await settle()

        mock_transport.inject_error(TransportError("device unplugged"))

        with pytest.raises(TransportError):
            await task
        await wait_for_state(session, SessionState.DISCONNECTED)
        assert not mock_transport.is_open
        assert any(name == "transport_error" for name, _ in diagnostics.events)

        with pytest.raises(ConnectionError):
            await session.execute(CommandCode.GET_DEVICE_TIME)

    @pytest.mark.asyncio
    async def test_unexpected_read_error_is_logged(self, session, mock_transport, caplog):
        """Test that a non-transport failure in the read loop keeps its traceback."""
        task = asyncio.create_task(session.execute(CommandCode.GET_DEVICE_TIME))
        await settle()

        with caplog.at_level(logging.ERROR, logger="meshlink.session"):
            mock_transport.inject_error(RuntimeError("decoder bug"))
            with pytest.raises(TransportError):
                await task
            await wait_for_state(session, SessionState.DISCONNECTED)

        failures = [r for r in caplog.records if r.getMessage().startswith("Read loop on")]
        assert len(failures) == 1
        assert failures[0].exc_info is not None
        assert isinstance(failures[0].exc_info[1], RuntimeError)

    @pytest.mark.asyncio
    async def test_write_fault_tears_down(self, session, mock_transport):
        """Test that a write failure disconnects the session."""
        mock_transport.set_write_error(TransportError("write failed"))

        with pytest.raises(TransportError):
            await session.execute(CommandCode.GET_DEVICE_TIME)

        assert session.state == SessionState.DISCONNECTED


class TestPushSubscription:
    """Tests for on_push."""

    @pytest.fixture
    def mock_transport(self):
        """Create a MockTransport instance."""
        return MockTransport()

    @pytest_asyncio.fixture
    async def session(self, mock_transport):
        """Create and connect a session without the handshake."""
        session = DeviceSession(mock_transport, SessionConfig(default_timeout=0.5, handshake_on_connect=False))
        await session.connect()
        yield session
        await session.disconnect()

    @pytest.mark.asyncio
    async def test_sync_callback(self, session, mock_transport):
        """Test that pushes reach a plain callback in order."""
        events = []
        session.on_push(events.append)

        mock_transport.feed(reply(0x83) + reply(0x80, 0xAA))
        await settle()

        assert events == [PushEvent(0x83, b""), PushEvent(0x80, b"\xaa")]

    @pytest.mark.asyncio
    async def test_async_callback(self, session, mock_transport):
        """Test that coroutine callbacks are scheduled."""
        received = asyncio.Event()
        events = []

        async def callback(event):
            events.append(event)
            received.set()

        session.on_push(callback)
        mock_transport.feed(reply(0x83))
        await asyncio.wait_for(received.wait(), 1.0)

        assert events == [PushEvent(0x83, b"")]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, session, mock_transport):
        """Test that the returned function removes the subscription."""
        events = []
        unsubscribe = session.on_push(events.append)
        unsubscribe()
        unsubscribe()

        mock_transport.feed(reply(0x83))
        await settle()
        assert events == []

    @pytest.mark.asyncio
    async def test_failing_callback_is_isolated(self, session, mock_transport, caplog):
        """Test that one failing subscriber does not stop the others."""
        events = []

        def broken(event):
            raise RuntimeError("boom")

        session.on_push(broken)
        session.on_push(events.append)

        with caplog.at_level(logging.ERROR):
            mock_transport.feed(reply(0x83))
            await settle()

        assert events == [PushEvent(0x83, b"")]
        assert "Push callback" in caplog.text
        assert session.is_connected

    @pytest.mark.asyncio
    async def test_push_during_command(self, session, mock_transport):
        """Test that a push arriving before the reply does not complete the command."""
        events = []
        session.on_push(events.append)
        mock_transport.add_response(reply(0x83) + reply(0x0A))

        result = await session.run_message_sync()

        assert result.records == []
        assert events == [PushEvent(0x83, b"")]

    @pytest.mark.asyncio
    async def test_late_reply_not_delivered(self, session, mock_transport):
        """Test that an unsolicited reply is not passed to subscribers."""
        events = []
        session.on_push(events.append)

        mock_transport.feed(reply(0x09, 0, 0, 0, 0))
        await settle()

        assert events == []
