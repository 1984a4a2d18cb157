"""Tests for MockTransport."""

import asyncio

import pytest

from meshlink.exceptions import TransportError
from meshlink.transport.mock import MockTransport, ScriptedMockTransport


class TestMockTransport:
    """Tests for MockTransport class."""

    @pytest.fixture
    def transport(self):
        """Create a MockTransport instance."""
        return MockTransport()

    @pytest.mark.asyncio
    async def test_open_close(self, transport):
        """Test opening and closing transport."""
        assert not transport.is_open
        await transport.open()
        assert transport.is_open
        await transport.close()
        assert not transport.is_open
        assert transport.open_count == 1
        assert transport.close_count == 1

    @pytest.mark.asyncio
    async def test_double_open_raises(self, transport):
        """Test that opening twice raises error."""
        await transport.open()
        with pytest.raises(TransportError):
            await transport.open()

    @pytest.mark.asyncio
    async def test_write_records_data(self, transport):
        """Test that write records data."""
        await transport.open()
        await transport.write(b"hello")
        await transport.write(b"world")
        assert transport.written_data == [b"hello", b"world"]
        assert transport.last_written == b"world"

    @pytest.mark.asyncio
    async def test_write_when_closed_raises(self, transport):
        """Test that writing to closed transport raises."""
        with pytest.raises(TransportError):
            await transport.write(b"test")

    @pytest.mark.asyncio
    async def test_response_released_by_write(self, transport):
        """Test that a queued response becomes readable only after a write."""
        await transport.open()
        transport.add_response(b"\x3e\x01\x00\x00")
        assert transport.pending_responses == 1
        assert await transport.read_available(timeout=0.01) == b""

        await transport.write(b"cmd")
        assert await transport.read_available(timeout=0.1) == b"\x3e\x01\x00\x00"
        assert transport.pending_responses == 0

    @pytest.mark.asyncio
    async def test_add_responses_one_per_write(self, transport):
        """Test adding multiple responses at once."""
        await transport.open()
        transport.add_responses(b"\x01", b"\x02")

        await transport.write(b"a")
        assert await transport.read_available(timeout=0.1) == b"\x01"
        await transport.write(b"b")
        assert await transport.read_available(timeout=0.1) == b"\x02"

    @pytest.mark.asyncio
    async def test_feed_is_immediate(self, transport):
        """Test that fed bytes are readable without a write."""
        await transport.open()
        transport.feed(b"\x3e\x01\x00\x83")
        assert await transport.read_available(timeout=0.1) == b"\x3e\x01\x00\x83"

    @pytest.mark.asyncio
    async def test_chunk_size_splits_output(self, transport):
        """Test that output is delivered in bounded reads."""
        await transport.open()
        transport.set_chunk_size(2)
        transport.feed(b"abcde")

        chunks = [await transport.read_available(timeout=0.1) for _ in range(3)]
        assert chunks == [b"ab", b"cd", b"e"]

    def test_invalid_chunk_size_raises(self, transport):
        """Test that chunk size must be positive."""
        with pytest.raises(ValueError):
            transport.set_chunk_size(0)

    @pytest.mark.asyncio
    async def test_read_timeout_returns_empty(self, transport):
        """Test that a read with nothing available returns no bytes."""
        await transport.open()
        assert await transport.read_available(timeout=0.01) == b""

    @pytest.mark.asyncio
    async def test_read_when_closed_raises(self, transport):
        """Test that reading a closed transport raises."""
        with pytest.raises(TransportError):
            await transport.read_available(timeout=0.01)

    @pytest.mark.asyncio
    async def test_close_wakes_reader(self, transport):
        """Test that close fails a reader blocked without a timeout."""
        await transport.open()
        reader = asyncio.create_task(transport.read_available())
        await asyncio.sleep(0)

        await transport.close()
        with pytest.raises(TransportError):
            await reader

    @pytest.mark.asyncio
    async def test_reopen_after_close(self, transport):
        """Test that a reopened transport does not see the old close."""
        await transport.open()
        await transport.close()
        await transport.open()

        transport.feed(b"\x01")
        assert await transport.read_available(timeout=0.1) == b"\x01"

    @pytest.mark.asyncio
    async def test_inject_error(self, transport):
        """Test that an injected error follows bytes already readable."""
        await transport.open()
        transport.feed(b"\x01")
        transport.inject_error(TransportError("unplugged"))

        assert await transport.read_available() == b"\x01"
        with pytest.raises(TransportError):
            await transport.read_available()

    @pytest.mark.asyncio
    async def test_write_error(self, transport):
        """Test that a configured write error is raised."""
        await transport.open()
        transport.set_write_error(TransportError("write failed"))
        with pytest.raises(TransportError):
            await transport.write(b"a")
        assert transport.written_data == []

        transport.set_write_error(None)
        await transport.write(b"a")

    @pytest.mark.asyncio
    async def test_clear(self, transport):
        """Test clearing transport state."""
        await transport.open()
        await transport.write(b"test")
        transport.add_response(b"\x86")
        transport.feed(b"\x87")
        transport.clear()
        assert transport.written_data == []
        assert transport.pending_responses == 0
        assert await transport.read_available(timeout=0.01) == b""

    @pytest.mark.asyncio
    async def test_discard_buffers(self, transport):
        """Test discarding unread input."""
        await transport.open()
        transport.feed(b"buffered data")
        transport.discard_buffers()
        assert await transport.read_available(timeout=0.01) == b""

    @pytest.mark.asyncio
    async def test_response_callback(self, transport):
        """Test dynamic response callback."""
        await transport.open()

        def echo_callback(data: bytes) -> bytes | None:
            return data  # Echo back what was written

        transport.set_response_callback(echo_callback)
        await transport.write(b"\x86")
        assert await transport.read_available(timeout=0.1) == b"\x86"

    @pytest.mark.asyncio
    async def test_response_callback_falls_back_to_queue(self, transport):
        """Test that a callback returning None releases the queued response."""
        await transport.open()
        transport.set_response_callback(lambda data: None)
        transport.add_response(b"\x01")

        await transport.write(b"a")
        assert await transport.read_available(timeout=0.1) == b"\x01"

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test async context manager protocol."""
        async with MockTransport() as transport:
            assert transport.is_open
            transport.feed(b"\x86")
            assert await transport.read_available(timeout=0.1) == b"\x86"
        assert not transport.is_open

    def test_assert_written(self, transport):
        """Test assert_written helper."""

        async def run():
            await transport.open()
            await transport.write(b"test")
            transport.assert_written(b"test")
            transport.assert_written(b"test", 0)
            transport.assert_written(b"test", -1)

        asyncio.run(run())

    def test_assert_written_fails(self, transport):
        """Test assert_written raises on mismatch."""

        async def run():
            await transport.open()
            await transport.write(b"test")
            with pytest.raises(AssertionError):
                transport.assert_written(b"wrong")

        asyncio.run(run())

    def test_assert_written_nothing_written(self, transport):
        """Test assert_written raises when nothing was written."""
        with pytest.raises(AssertionError):
            transport.assert_written(b"test")

    def test_assert_write_count(self, transport):
        """Test assert_write_count helper."""

        async def run():
            await transport.open()
            await transport.write(b"a")
            await transport.write(b"b")
            transport.assert_write_count(2)
            with pytest.raises(AssertionError):
                transport.assert_write_count(3)

        asyncio.run(run())

    def test_repr(self, transport):
        """Test string representation."""
        assert repr(transport) == "MockTransport('mock://test', closed, writes=0)"


class TestScriptedMockTransport:
    """Tests for ScriptedMockTransport class."""

    @pytest.fixture
    def transport(self):
        """Create a ScriptedMockTransport instance."""
        return ScriptedMockTransport()

    @pytest.mark.asyncio
    async def test_scripted_responses(self, transport):
        """Test scripted request/response pairs."""
        await transport.open()
        transport.expect(response=b"\x86", request=b"request1")
        transport.expect(response=b"\x87", request=b"request2")

        await transport.write(b"request1")
        assert await transport.read_available(timeout=0.1) == b"\x86"

        await transport.write(b"request2")
        assert await transport.read_available(timeout=0.1) == b"\x87"
        assert transport.remaining_steps == 0

    @pytest.mark.asyncio
    async def test_scripted_any_request(self, transport):
        """Test scripted response for any request."""
        await transport.open()
        transport.expect(response=b"\x86")  # No specific request

        await transport.write(b"anything")
        assert await transport.read_available(timeout=0.1) == b"\x86"

    @pytest.mark.asyncio
    async def test_scripted_silence(self, transport):
        """Test that a step without a response answers nothing."""
        await transport.open()
        transport.expect(response=None)
        transport.expect(response=b"\x87")

        await transport.write(b"a")
        assert await transport.read_available(timeout=0.01) == b""
        await transport.write(b"b")
        assert await transport.read_available(timeout=0.1) == b"\x87"

    @pytest.mark.asyncio
    async def test_scripted_wrong_request_raises(self, transport):
        """Test that wrong request raises assertion."""
        await transport.open()
        transport.expect(response=b"\x86", request=b"expected")

        with pytest.raises(AssertionError) as exc_info:
            await transport.write(b"wrong")
        assert "Script mismatch" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_script_exhausted_uses_queue(self, transport):
        """Test that writes past the script release queued responses."""
        await transport.open()
        transport.expect(response=b"\x86")
        transport.add_response(b"\x01")

        await transport.write(b"a")
        await transport.write(b"b")
        assert await transport.read_available(timeout=0.1) == b"\x86"
        assert await transport.read_available(timeout=0.1) == b"\x01"

    @pytest.mark.asyncio
    async def test_reset_script(self, transport):
        """Test resetting script to beginning."""
        await transport.open()
        transport.expect(response=b"\x86")
        transport.expect(response=b"\x87")

        await transport.write(b"a")
        await transport.read_available(timeout=0.1)

        transport.reset_script()

        await transport.write(b"b")
        assert await transport.read_available(timeout=0.1) == b"\x86"  # Back to first response

    def test_clear_script(self, transport):
        """Test clearing all scripted steps."""
        transport.expect(response=b"\x86")
        transport.clear_script()
        assert transport.remaining_steps == 0
