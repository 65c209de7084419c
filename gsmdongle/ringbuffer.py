"""Fixed-size byte ring buffer with wrap-around reads and writes."""

from __future__ import annotations

from typing import Callable, Optional

WriteMethod = Callable[[bytes, bytes], bytes]


def memmem(haystack: bytes, needle: bytes) -> Optional[int]:
    """Return the offset of the first occurrence of ``needle`` in ``haystack``.

    Returns None when either argument is empty or no match exists.
    """
    if not haystack or not needle or len(haystack) < len(needle):
        return None
    pos = bytes(haystack).find(bytes(needle))
    return None if pos < 0 else pos


class RingBuffer:
    """A circular byte buffer of fixed capacity."""

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("ring buffer size must not be negative")
        self.size = size
        self._buffer = bytearray(size)
        self._used = 0
        self._read = 0
        self._write = 0

    def used(self) -> int:
        """Number of bytes available for reading."""
        return self._used

    def free(self) -> int:
        """Number of bytes that can still be written."""
        return self.size - self._used

    def _chunks(self, length: int) -> list[bytes]:
        if length <= 0:
            return []
        end = self._read + length
        if end > self.size:
            return [
                bytes(self._buffer[self._read:self.size]),
                bytes(self._buffer[:end - self.size]),
            ]
        return [bytes(self._buffer[self._read:end])]

    def startswith(self, data: bytes) -> bool:
        """True when the buffered data begins with ``data``."""
        if not data or self._used < len(data):
            return False
        return b"".join(self._chunks(len(data))) == bytes(data)

    def read_all(self) -> bytes:
        """Return all buffered data without consuming it."""
        return b"".join(self._chunks(self._used))

    def read_n(self, n: int) -> Optional[bytes]:
        """Return the first ``n`` buffered bytes, or None if fewer are present."""
        if self._used < n:
            return None
        return b"".join(self._chunks(n))

    def read_until(self, sep: bytes) -> Optional[bytes]:
        """Return the data preceding the first ``sep``, or None if absent."""
        if not sep or self._used < len(sep):
            return None
        data = self.read_all()
        pos = memmem(data, sep)
        return None if pos is None else data[:pos]

    def consume(self, n: int) -> int:
        """Drop up to ``n`` bytes from the read side; return how many were dropped."""
        n = min(max(n, 0), self._used)
        if n > 0:
            self._used -= n
            if self._used == 0:
                self._read = 0
                self._write = 0
            else:
                pos = self._read + n
                self._read = pos - self.size if pos >= self.size else pos
        return n

    def _store(self, pos: int, chunk: bytes, method: Optional[WriteMethod]) -> None:
        end = pos + len(chunk)
        if method is None:
            self._buffer[pos:end] = chunk
        else:
            merged = method(bytes(self._buffer[pos:end]), chunk)
            if len(merged) != len(chunk):
                raise ValueError("write method must keep the chunk length")
            self._buffer[pos:end] = merged

    def _write_core(self, data: bytes, method: Optional[WriteMethod]) -> int:
        data = bytes(data)
        n = min(len(data), self.free())
        if n > 0:
            end = self._write + n
            if end > self.size:
                first = self.size - self._write
                self._store(self._write, data[:first], method)
                self._store(0, data[first:n], method)
                self._write = end - self.size
            else:
                self._store(self._write, data[:n], method)
                self._write = 0 if end == self.size else end
            self._used += n
        return n

    def write(self, data: bytes) -> int:
        """Append as much of ``data`` as fits; return the number of bytes written."""
        return self._write_core(data, None)

    def write_with(self, data: bytes, method: WriteMethod) -> int:
        """Write ``data`` combining it with existing bytes through ``method``.

        ``method(existing, incoming)`` returns the bytes to store and must keep
        the length of ``incoming``.
        """
        return self._write_core(data, method)

    def advance_write(self, n: int) -> int:
        """Mark up to ``n`` bytes at the write position as written."""
        n = min(max(n, 0), self.free())
        if n > 0:
            self._write = (self._write + n) % self.size
            self._used += n
        return n