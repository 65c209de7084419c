"""Ring buffer that mixes 16-bit linear audio from several streams."""

from __future__ import annotations

from array import array
from dataclasses import dataclass
from typing import Optional

from .ringbuffer import RingBuffer

_SAMPLE_MIN = -32768
_SAMPLE_MAX = 32767


def saturated_sum(dst: bytes, src: bytes) -> bytes:
    """Add native-endian signed 16-bit samples of ``src`` to ``dst`` with clipping.

    A trailing odd byte keeps its value from ``dst``.
    """
    count = min(len(dst), len(src)) // 2
    left = array("h", bytes(dst[:2 * count]))
    right = array("h", bytes(src[:2 * count]))
    mixed = array(
        "h",
        (max(_SAMPLE_MIN, min(_SAMPLE_MAX, a + b)) for a, b in zip(left, right)),
    )
    return mixed.tobytes() + bytes(dst[2 * count:])


@dataclass(eq=False)
class MixStream:
    """Per-stream position within a mix buffer."""

    used: int = 0
    write: int = 0


class MixBuffer:
    """Shared ring buffer into which attached streams mix their samples."""

    def __init__(self, size: int) -> None:
        self._rb = RingBuffer(size)
        self._streams: list[MixStream] = []

    def attach(self, stream: MixStream) -> None:
        """Start mixing ``stream`` at the current read position."""
        stream.used = 0
        stream.write = self._rb._read
        self._streams.append(stream)

    def detach(self, stream: MixStream) -> None:
        """Stop mixing ``stream``."""
        self._streams.remove(stream)

    def free(self, stream: MixStream) -> int:
        """Bytes that ``stream`` may still write."""
        return self._rb.size - stream.used

    def used(self) -> int:
        """Bytes ready to be read."""
        return self._rb.used()

    def streams(self) -> int:
        """Number of attached streams."""
        return len(self._streams)

    def _mix_write(self, stream: MixStream, data: bytes) -> int:
        rb = self._rb
        saved_write, saved_used = rb._write, rb._used
        rb._write, rb._used = stream.write, stream.used
        try:
            written = rb.write_with(data, saturated_sum)
            stream.write, stream.used = rb._write, rb._used
        finally:
            rb._write, rb._used = saved_write, saved_used
        return written

    def write(self, stream: MixStream, data: bytes) -> int:
        """Mix ``data`` for ``stream``; return the number of bytes accepted."""
        data = bytes(data)
        length = min(len(data), self.free(stream))
        if length > 0:
            overlap = self._rb.used() - stream.used
            if length > overlap:
                if overlap:
                    self._mix_write(stream, data[:overlap])
                self._rb.write(data[overlap:length])
                stream.write = self._rb._write
                stream.used = self._rb._used
            else:
                self._mix_write(stream, data[:length])
        return length

    def consume(self, n: int) -> int:
        """Advance the read position by ``n`` bytes for all streams."""
        consumed = self._rb.consume(n)
        rb = self._rb
        for stream in self._streams:
            stream.used = stream.used - n if stream.used > n else 0
            pos = rb._read + stream.used
            stream.write = pos - rb.size if pos >= rb.size else pos
        return consumed

    def read_all(self) -> bytes:
        """All mixed data ready for reading."""
        return self._rb.read_all()

    def read_n(self, n: int) -> Optional[bytes]:
        """The first ``n`` mixed bytes, or None if fewer are ready."""
        return self._rb.read_n(n)