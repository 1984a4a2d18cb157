"""
Stream framing and resynchronization.

The transport delivers an arbitrary byte stream: frames may be split across
reads, several frames may arrive in one read, and line noise or a partially
lost frame may leave garbage in front of the next marker. StreamFramer
accumulates the stream and hands out complete frames, discarding whatever
cannot be decoded.

Resynchronization rules:
- No marker anywhere in the buffer: discard the whole buffer
- Marker at offset k > 0: discard the k leading bytes
- Marker at offset 0 but the frame cannot be decoded: discard one byte
  and rescan, so a spurious marker inside garbage costs a single byte
- Incomplete frame: keep everything and wait for more data

Discards are reported to the diagnostics sink and never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from meshlink.protocol.constants import FRAME_MARKERS
from meshlink.protocol.frame_codec import (
    DEFAULT_FRAME_CODEC,
    DecodeStatus,
    Frame,
    FrameCodec,
)

if TYPE_CHECKING:
    from meshlink.diagnostics import DiagnosticsSink

logger = logging.getLogger(__name__)


class StreamFramer:
    """
    Accumulating frame splitter with marker resynchronization.

    Frames are produced lazily: feed() returns a generator, and bytes that
    the generator has not reached yet stay buffered. Abandoning the
    generator early is safe; the next feed() or frames() call resumes where
    it stopped.

    Example:
        >>> framer = StreamFramer()
        >>> list(framer.feed(bytes.fromhex("FF3E0400")))
        []
        >>> [f.payload for f in framer.feed(bytes.fromhex("16000102"))]
        [b'\\x16\\x00\\x01\\x02']
    """

    def __init__(
        self,
        codec: FrameCodec | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        """
        Initialize the framer.

        Args:
            codec: Frame codec used to decode candidate slices.
            diagnostics: Sink notified of discarded bytes.
        """
        self._codec = codec or DEFAULT_FRAME_CODEC
        self._diagnostics = diagnostics
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting to be framed."""
        return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes | bytearray) -> Iterator[Frame]:
        """
        Append received bytes and iterate the frames now complete.

        Args:
            data: Bytes just read from the transport (may be empty).

        Returns:
            Lazy iterator over decoded frames, in stream order.
        """
        if data:
            self._buffer.extend(data)
        return self.frames()

    def frames(self) -> Iterator[Frame]:
        """
        Iterate frames decodable from the current buffer.

        Yields:
            Complete frames. Stops when the buffer is empty or holds only an
            incomplete frame.
        """
        while self._buffer:
            start = self._find_marker()
            if start < 0:
                self._discard(len(self._buffer), "no frame marker")
                return
            if start > 0:
                self._discard(start, "leading bytes before frame marker")

            result = self._codec.try_decode(self._buffer)

            if result.status is DecodeStatus.NEED_MORE_DATA:
                return

            if result.status is DecodeStatus.INVALID:
                self._discard(1, result.message)
                continue

            del self._buffer[: result.consumed]
            if result.frame is not None:
                yield result.frame

    def clear(self) -> None:
        """Drop all buffered bytes without reporting them."""
        self._buffer.clear()

    def _find_marker(self) -> int:
        for index, value in enumerate(self._buffer):
            if value in FRAME_MARKERS:
                return index
        return -1

    def _discard(self, count: int, reason: str) -> None:
        dropped = bytes(self._buffer[:count])
        del self._buffer[:count]
        logger.debug("Discarded %d byte(s): %s", count, reason)
        if self._diagnostics is not None:
            self._diagnostics.bytes_discarded(dropped, reason)

    def __repr__(self) -> str:
        return f"StreamFramer(buffered={len(self._buffer)})"
