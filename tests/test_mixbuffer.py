from array import array

import pytest

from gsmdongle.mixbuffer import MixBuffer, MixStream, saturated_sum


def pcm(*samples):
    return array("h", samples).tobytes()


def samples(data):
    return list(array("h", data))


def test_saturated_sum_adds_and_clips():
    result = saturated_sum(pcm(100, 30000, -30000), pcm(5, 10000, -10000))
    assert samples(result) == [105, 32767, -32768]


def test_saturated_sum_keeps_odd_byte():
    dst = pcm(1) + b"\x7f"
    src = pcm(2) + b"\x01"
    result = saturated_sum(dst, src)
    assert result[-1:] == b"\x7f"
    assert samples(result[:2]) == [3]


def test_attach_detach_counts():
    mb = MixBuffer(16)
    a, b = MixStream(), MixStream()
    mb.attach(a)
    mb.attach(b)
    assert mb.streams() == 2
    mb.detach(a)
    assert mb.streams() == 1
    with pytest.raises(ValueError):
        mb.detach(a)


def test_two_streams_mix():
    mb = MixBuffer(16)
    a, b = MixStream(), MixStream()
    mb.attach(a)
    mb.attach(b)
    assert mb.write(a, pcm(100, 200, 300)) == 6
    assert mb.write(b, pcm(1, 2)) == 4
    assert samples(mb.read_all()) == [101, 202, 300]
    assert mb.used() == 6
    assert mb.write(b, pcm(5, 6)) == 4
    assert samples(mb.read_all()) == [101, 202, 305, 6]
    assert a.used == 6
    assert b.used == 8


def test_free_tracks_stream_usage():
    mb = MixBuffer(8)
    a = MixStream()
    mb.attach(a)
    mb.write(a, pcm(1, 2, 3))
    assert mb.free(a) == 2
    assert mb.write(a, pcm(4, 5)) == 2
    assert mb.free(a) == 0
    assert mb.write(a, pcm(6)) == 0


def test_consume_updates_streams():
    mb = MixBuffer(16)
    a, b = MixStream(), MixStream()
    mb.attach(a)
    mb.attach(b)
    mb.write(a, pcm(100, 200, 300))
    mb.write(b, pcm(1, 2, 3, 4))
    assert mb.consume(4) == 4
    assert a.used == 2
    assert b.used == 4
    assert samples(mb.read_all()) == [303, 4]
    assert mb.read_n(2) == pcm(303)
    assert mb.read_n(6) is None


def test_mix_across_wrap():
    mb = MixBuffer(8)
    a, b = MixStream(), MixStream()
    mb.attach(a)
    mb.write(a, pcm(1, 2, 3, 4))
    mb.consume(6)
    mb.attach(b)
    assert mb.write(b, pcm(10, 20)) == 4
    assert samples(mb.read_all()) == [14, 20]
    assert mb.used() == 4