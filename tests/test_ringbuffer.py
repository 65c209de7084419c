import pytest

from gsmdongle.ringbuffer import RingBuffer, memmem


def test_memmem_finds_first_occurrence():
    assert memmem(b"abcabc", b"ca") == 2
    assert memmem(b"hello", b"h") == 0


def test_memmem_missing_or_empty():
    assert memmem(b"abc", b"x") is None
    assert memmem(b"", b"a") is None
    assert memmem(b"abc", b"") is None
    assert memmem(b"ab", b"abc") is None


def test_write_and_read_all():
    rb = RingBuffer(16)
    assert rb.write(b"\r\nOK\r\n") == 6
    assert rb.used() == 6
    assert rb.free() == 10
    assert rb.read_all() == b"\r\nOK\r\n"


def test_write_truncates_to_free_space():
    rb = RingBuffer(4)
    assert rb.write(b"abcdef") == 4
    assert rb.read_all() == b"abcd"
    assert rb.free() == 0
    assert rb.write(b"x") == 0


def test_wraparound_read_all():
    rb = RingBuffer(8)
    rb.write(b"012345")
    assert rb.consume(4) == 4
    assert rb.write(b"abcde") == 5
    assert rb.used() == 7
    assert rb.read_all() == b"45abcde"


def test_consume_more_than_used_resets():
    rb = RingBuffer(8)
    rb.write(b"abc")
    assert rb.consume(10) == 3
    assert rb.used() == 0
    assert rb.read_all() == b""
    rb.write(b"zz")
    assert rb.read_all() == b"zz"


def test_read_n():
    rb = RingBuffer(8)
    rb.write(b"012345")
    rb.consume(5)
    rb.write(b"6789")
    assert rb.read_n(3) == b"567"
    assert rb.read_n(0) == b""
    assert rb.read_n(6) is None


def test_read_until_across_wrap():
    rb = RingBuffer(8)
    rb.write(b"xxxxxx")
    rb.consume(5)
    rb.write(b"AB\r\nC")
    assert rb.read_until(b"\r\n") == b"xAB"
    assert rb.read_until(b"\n") == b"xAB\r"
    assert rb.read_until(b"ZZ") is None
    assert rb.read_until(b"") is None


def test_startswith():
    rb = RingBuffer(6)
    rb.write(b"abcd")
    rb.consume(3)
    rb.write(b"OKxx")
    assert rb.startswith(b"dOK")
    assert not rb.startswith(b"dOX")
    assert not rb.startswith(b"dOKxxy")
    assert not rb.startswith(b"")


def test_write_with_method_combines():
    rb = RingBuffer(4)
    rb.write(b"\x01\x02")
    rb.consume(0)

    def xor(existing, incoming):
        return bytes(a ^ b for a, b in zip(existing, incoming))

    rb2 = RingBuffer(4)
    assert rb2.write_with(b"\x0f\x0f", xor) == 2
    assert rb2.read_all() == b"\x0f\x0f"
    assert rb.read_all() == b"\x01\x02"


def test_write_with_rejects_length_change():
    rb = RingBuffer(4)
    with pytest.raises(ValueError):
        rb.write_with(b"ab", lambda existing, incoming: b"a")


def test_advance_write_marks_used():
    rb = RingBuffer(4)
    assert rb.advance_write(3) == 3
    assert rb.used() == 3
    assert rb.advance_write(5) == 1
    assert rb.free() == 0
    assert rb.read_all() == bytes(4)