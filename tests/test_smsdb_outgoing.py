import sqlite3

import pytest

from gsmdongle.smsdb import PAYLOAD_MAX_LEN, SmsDb
from gsmdongle.smsdb_outgoing import OutgoingStore

DEV = "imsi-test"
DST = "+10005550000"


@pytest.fixture
def store():
    db = SmsDb(":memory:")
    yield OutgoingStore(db)
    db.close()


def test_add_returns_increasing_ids(store):
    first = store.add(DEV, DST, 1, 3600, False, b"a")
    second = store.add(DEV, DST, 1, 3600, False, b"b")
    assert second > first


def test_clear_returns_and_removes(store):
    uid = store.add(DEV, DST, 1, 3600, False, b"payload-1")
    assert store.clear(uid) == (DST, b"payload-1")
    with pytest.raises(KeyError):
        store.clear(uid)


def test_payload_truncated(store):
    uid = store.add(DEV, DST, 1, 3600, False, b"x" * (PAYLOAD_MAX_LEN + 100))
    dst, payload = store.clear(uid)
    assert len(payload) == PAYLOAD_MAX_LEN


def test_part_put_without_report_completes(store):
    uid = store.add(DEV, DST, 2, 3600, False, b"data")
    assert store.part_put(uid, 1) is None
    assert store.part_put(uid, 2) == (DST, b"data")
    with pytest.raises(KeyError):
        store.clear(uid)


def test_part_put_unknown_message(store):
    assert store.part_put(12345, 1) is None


def test_part_put_duplicate_reference(store):
    uid = store.add(DEV, DST, 2, 3600, True, b"data")
    store.part_put(uid, 7)
    with pytest.raises(sqlite3.IntegrityError):
        store.part_put(uid, 7)


def test_part_status_collects_final_statuses(store):
    uid = store.add(DEV, DST, 2, 3600, True, b"report")
    assert store.part_put(uid, 5) is None
    assert store.part_put(uid, 6) is None
    assert store.part_status(DEV, DST, 5, 0) is None
    # temporary failure does not finish the part
    assert store.part_status(DEV, DST, 6, 32) is None
    assert store.part_status(DEV, DST, 6, 0) == ([0, 0], b"report")
    with pytest.raises(KeyError):
        store.part_status(DEV, DST, 5, 0)


def test_part_status_permanent_failure_counts(store):
    uid = store.add(DEV, DST, 1, 3600, True, b"p")
    store.part_put(uid, 9)
    assert store.part_status(DEV, DST, 9, 64) == ([64], b"p")


def test_part_status_unknown(store):
    with pytest.raises(KeyError):
        store.part_status(DEV, DST, 1, 0)


def test_purge_one(store):
    assert store.purge_one() is None
    store.add(DEV, DST, 1, 3600, False, b"fresh")
    store.add(DEV, "+10005550001", 1, -60, False, b"old")
    assert store.purge_one() == ("+10005550001", b"old")
    assert store.purge_one() is None


def test_long_key_rejected(store):
    with pytest.raises(ValueError):
        store.part_status("i" * 300, DST, 1, 0)