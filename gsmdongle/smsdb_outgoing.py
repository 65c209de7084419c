"""Tracking of sent messages: parts, delivery reports and expiry."""

from __future__ import annotations

import sqlite3
from typing import Optional

from .smsdb import PAYLOAD_MAX_LEN, SmsDb, make_key

_PUT_MSG = (
    "INSERT INTO outgoing_msg (dev, dst, cnt, expiration, srr, payload) "
    "VALUES (?, ?, ?, datetime(julianday(CURRENT_TIMESTAMP) + ? / 86400.0), ?, ?)"
)
_PUT_PART = "INSERT INTO outgoing_part (key, msg, status) VALUES (?, ?, NULL)"
_DEL_MSG = "DELETE FROM outgoing_msg WHERE rowid = ?"
_DEL_PARTS = "DELETE FROM outgoing_part WHERE msg = ?"
_GET_MSG = "SELECT dev, dst, srr FROM outgoing_msg WHERE rowid = ?"
_SET_PART = "UPDATE outgoing_part SET status = ? WHERE rowid = ?"
_GET_PART = "SELECT rowid, msg FROM outgoing_part WHERE key = ?"
# parts that completed or failed for good; pending and temporarily failed ones are left out
_CNT_DONE_PARTS = (
    "SELECT m.cnt, (SELECT COUNT(p.rowid) FROM outgoing_part p WHERE p.msg = m.rowid "
    "AND (p.status & 64 != 0 OR p.status & 32 = 0)) FROM outgoing_msg m WHERE m.rowid = ?"
)
_CNT_ALL_PARTS = (
    "SELECT m.cnt, (SELECT COUNT(p.rowid) FROM outgoing_part p WHERE p.msg = m.rowid) "
    "FROM outgoing_msg m WHERE m.rowid = ?"
)
_GET_PAYLOAD = "SELECT payload, dst FROM outgoing_msg WHERE rowid = ?"
_GET_ALL_STATUS = "SELECT status FROM outgoing_part WHERE msg = ? ORDER BY rowid"
_GET_EXPIRED = (
    "SELECT rowid, payload, dst FROM outgoing_msg "
    "WHERE expiration < CURRENT_TIMESTAMP LIMIT 1"
)


def _clip(payload: Optional[bytes]) -> bytes:
    return bytes(payload or b"")[:PAYLOAD_MAX_LEN]


class OutgoingStore:
    """Outgoing message bookkeeping on top of an :class:`SmsDb`."""

    def __init__(self, db: SmsDb) -> None:
        self.db = db

    @staticmethod
    def _delete(conn: sqlite3.Connection, uid: int) -> None:
        conn.execute(_DEL_MSG, (uid,))
        conn.execute(_DEL_PARTS, (uid,))

    @staticmethod
    def _payload(conn: sqlite3.Connection, uid: int) -> tuple[str, bytes]:
        row = conn.execute(_GET_PAYLOAD, (uid,)).fetchone()
        if row is None:
            raise KeyError(uid)
        payload, dst = row
        return dst, _clip(payload)

    def add(self, id: str, addr: str, cnt: int, ttl: int, srr: bool,
            payload: bytes) -> int:
        """Record a message of ``cnt`` parts sent to ``addr``; return its id."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                _PUT_MSG, (id, addr, cnt, ttl, int(bool(srr)), _clip(payload))
            )
            return cursor.lastrowid

    def clear(self, uid: int) -> tuple[str, bytes]:
        """Forget message ``uid``; return its destination and payload."""
        with self.db.transaction() as conn:
            dst, payload = self._payload(conn, uid)
            self._delete(conn, uid)
            return dst, payload

    def part_put(self, uid: int, refid: int) -> Optional[tuple[str, bytes]]:
        """Record that a part with reference ``refid`` of message ``uid`` was sent.

        For a message without a status report request, once every part is
        sent the message is removed and its destination and payload are
        returned; otherwise None.
        """
        with self.db.transaction() as conn:
            row = conn.execute(_GET_MSG, (uid,)).fetchone()
            if row is None:
                return None
            dev, dst, srr = row
            conn.execute(_PUT_PART, (make_key(dev, dst, refid), uid))
            if srr:
                return None
            counts = conn.execute(_CNT_ALL_PARTS, (uid,)).fetchone()
            if counts is None:
                raise KeyError(uid)
            expected, stored = counts
            if expected != stored:
                return None
            result = self._payload(conn, uid)
            self._delete(conn, uid)
            return result

    def part_status(self, id: str, addr: str, mr: int,
                    st: int) -> Optional[tuple[list[int], bytes]]:
        """Store the delivery status ``st`` of the part with reference ``mr``.

        When every part has reached a final status the message is removed and
        the statuses of all parts (in sending order) and the payload are
        returned; otherwise None.  Raises KeyError for an unknown part.
        """
        key = make_key(id, addr, mr)
        with self.db.transaction() as conn:
            row = conn.execute(_GET_PART, (key,)).fetchone()
            if row is None:
                raise KeyError(key)
            partid, uid = row
            conn.execute(_SET_PART, (st, partid))
            counts = conn.execute(_CNT_DONE_PARTS, (uid,)).fetchone()
            if counts is None:
                raise KeyError(uid)
            expected, done = counts
            if expected != done:
                return None
            statuses = [status for (status,) in conn.execute(_GET_ALL_STATUS, (uid,))]
            _, payload = self._payload(conn, uid)
            self._delete(conn, uid)
            return statuses, payload

    def purge_one(self) -> Optional[tuple[str, bytes]]:
        """Remove one expired message; return its destination and payload, or None."""
        with self.db.transaction() as conn:
            row = conn.execute(_GET_EXPIRED).fetchone()
            if row is None:
                return None
            uid, payload, dst = row
            self._delete(conn, uid)
            return dst, _clip(payload)