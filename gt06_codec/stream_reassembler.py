"""
Stream reassembler for GT06 connections.

Turns an arbitrarily chunked TCP byte stream into complete, checksum-valid
frames. Noise before a header is dropped and reported once, as a RESYNC
diagnostic, when the next header is found. Corrupt frames are dropped as a
whole and reported; the stream always makes forward progress.
"""
from typing import Iterator, List, Union

from .errors import BadTrailer, ChecksumMismatch, MalformedFrame
from .frame_codec import FRAME_OVERHEAD, HEADER, MIN_PACKET_SIZE, decode_frame
from .models.diagnostic import Diagnostic, DiagnosticKind
from .models.frame import Frame

StreamItem = Union[Frame, Diagnostic]


class StreamReassembler:
    """
    Per-connection receive state: accumulation buffer plus pending noise count.

    Feeding any partition of a byte stream yields the same sequence of frames
    and diagnostics as feeding it in one piece. One instance must only ever
    be used by one connection.
    """

    def __init__(self, header: bytes = HEADER):
        if len(header) != 2:
            raise ValueError("header must be two bytes")
        self._header = header
        self._buffer = bytearray()
        self._pending_noise = 0
        self.frames_decoded = 0
        self.frames_discarded = 0

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of a frame."""
        return len(self._buffer)

    @property
    def pending_noise(self) -> int:
        """Noise bytes dropped since the last header that have not been reported yet."""
        return self._pending_noise

    def feed(self, chunk: bytes) -> Iterator[StreamItem]:
        """
        Append a chunk and lazily yield every frame/diagnostic it completes.

        The chunk is buffered immediately; frames are sliced off only as the
        returned iterator is consumed. decode_stream() consumes it in one call.
        """
        self._buffer.extend(chunk)
        return self._drain()

    def _drain(self) -> Iterator[StreamItem]:
        while True:
            if not self._align():
                return

            if len(self._buffer) < MIN_PACKET_SIZE:
                return

            if self._pending_noise:
                yield Diagnostic(
                    DiagnosticKind.RESYNC,
                    self._pending_noise,
                    "noise before frame header"
                )
                self._pending_noise = 0

            total_len = self._buffer[2] + FRAME_OVERHEAD
            if len(self._buffer) < total_len:
                # Short read, not a short frame: wait for the rest
                return

            candidate = bytes(self._buffer[:total_len])
            del self._buffer[:total_len]

            try:
                frame = decode_frame(candidate)
            except ChecksumMismatch as e:
                self.frames_discarded += 1
                yield Diagnostic(DiagnosticKind.CHECKSUM_MISMATCH, total_len, str(e))
                continue
            except BadTrailer as e:
                self.frames_discarded += 1
                yield Diagnostic(DiagnosticKind.BAD_TRAILER, total_len, str(e))
                continue
            except MalformedFrame as e:
                self.frames_discarded += 1
                yield Diagnostic(DiagnosticKind.MALFORMED_FRAME, total_len, str(e))
                continue

            self.frames_decoded += 1
            yield frame

    def _align(self) -> bool:
        """
        Drop bytes before the first header.

        Returns True when the buffer starts with a header (possibly still
        incomplete), False when nothing usable is buffered.
        """
        if self._buffer[:2] == self._header:
            return True

        index = self._buffer.find(self._header)
        if index > 0:
            self._pending_noise += index
            del self._buffer[:index]
            return True

        # No header at all: keep a trailing first header byte so a header split across chunks survives
        keep = 1 if self._buffer[-1:] == self._header[:1] else 0
        dropped = len(self._buffer) - keep
        if dropped:
            self._pending_noise += dropped
            del self._buffer[:dropped]
        return False

    def reset(self):
        """Forget all buffered bytes (connection teardown)."""
        self._buffer.clear()
        self._pending_noise = 0


def decode_stream(reassembler: StreamReassembler, chunk: bytes) -> List[StreamItem]:
    """Feed one chunk and return all frames and diagnostics it completes, in order."""
    return list(reassembler.feed(chunk))
