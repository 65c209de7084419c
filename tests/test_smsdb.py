import os

import pytest

from gsmdongle.smsdb import MAX_DB_FIELD, SmsDb, make_key


@pytest.fixture
def db():
    with SmsDb(":memory:", csms_ttl=600) as database:
        yield database


def test_make_key_joins_fields():
    assert make_key("imsi", "+100", 7, 3) == "imsi/+100/7/3"


def test_make_key_too_long():
    with pytest.raises(ValueError):
        make_key("x" * MAX_DB_FIELD, "y")


def test_put_reassembles_in_order(db):
    assert db.put("dev", "+100", 5, 3, 2, "b") == (1, None)
    assert db.put("dev", "+100", 5, 3, 3, "c") == (2, None)
    count, text = db.put("dev", "+100", 5, 3, 1, "a")
    assert count == 3
    assert text == "abc"


def test_put_single_part_completes_immediately(db):
    assert db.put("dev", "+100", 1, 1, 1, "hello") == (1, "hello")


def test_put_replaces_duplicate_order(db):
    assert db.put("dev", "+100", 9, 2, 1, "old") == (1, None)
    assert db.put("dev", "+100", 9, 2, 1, "new") == (1, None)
    assert db.put("dev", "+100", 9, 2, 2, "!") == (2, "new!")


def test_put_clears_after_completion(db):
    db.put("dev", "+100", 2, 2, 1, "a")
    db.put("dev", "+100", 2, 2, 2, "b")
    assert db.put("dev", "+100", 2, 2, 1, "again") == (1, None)


def test_put_keys_are_independent(db):
    assert db.put("dev", "+100", 3, 2, 1, "a") == (1, None)
    assert db.put("dev", "+200", 3, 2, 1, "b") == (1, None)
    assert db.put("dev", "+100", 4, 2, 1, "c") == (1, None)


def test_put_sets_future_expiration(db):
    db.put("dev", "+100", 6, 2, 1, "a")
    (future,) = db.connection.execute(
        "SELECT COUNT(*) FROM incoming WHERE expiration > CURRENT_TIMESTAMP"
    ).fetchone()
    assert future == 1


def test_put_long_key_raises(db):
    with pytest.raises(ValueError):
        db.put("d" * MAX_DB_FIELD, "+100", 1, 2, 1, "a")


def test_get_refid_starts_at_zero_and_increments(db):
    assert [db.get_refid("dev", "+100") for _ in range(3)] == [0, 1, 2]


def test_get_refid_wraps_around(db):
    refs = [db.get_refid("dev", "+100") for _ in range(257)]
    assert refs[255] == 255
    assert refs[256] == 0
    assert sorted(set(refs)) == list(range(256))


def test_get_refid_per_destination(db):
    db.get_refid("dev", "+100")
    db.get_refid("dev", "+100")
    assert db.get_refid("dev", "+200") == 0
    assert db.get_refid("other", "+100") == 0


def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute("INSERT INTO outgoing_ref (refid, key) VALUES (1, 'k')")
            raise RuntimeError("boom")
    (count,) = db.connection.execute("SELECT COUNT(*) FROM outgoing_ref").fetchone()
    assert count == 0


def test_file_database_persists(tmp_path):
    base = str(tmp_path / "smsdb")
    with SmsDb(base) as first:
        assert first.get_refid("dev", "+100") == 0
        first.put("dev", "+100", 8, 2, 1, "part")
    assert os.path.exists(base + ".sqlite3")
    with SmsDb(base) as second:
        assert second.get_refid("dev", "+100") == 1
        assert second.put("dev", "+100", 8, 2, 2, "two") == (2, "parttwo")