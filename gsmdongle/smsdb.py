"""SQLite store for reassembling concatenated SMS and tracking sent messages."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

MAX_DB_FIELD = 256
PAYLOAD_MAX_LEN = 4096
DST_MAX_LEN = 256
DB_SUFFIX = ".sqlite3"
MEMORY = ":memory:"

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS incoming (key VARCHAR(256), seqorder INTEGER, "
    "expiration TIMESTAMP DEFAULT CURRENT_TIMESTAMP, message VARCHAR(256), "
    "PRIMARY KEY(key, seqorder))",
    "CREATE INDEX IF NOT EXISTS incoming_key ON incoming(key)",
    "CREATE TABLE IF NOT EXISTS outgoing_ref (key VARCHAR(256), refid INTEGER, "
    "PRIMARY KEY(key))",
    "CREATE TABLE IF NOT EXISTS outgoing_msg (dev VARCHAR(256), dst VARCHAR(255), "
    "cnt INTEGER, expiration TIMESTAMP, srr BOOLEAN, payload BLOB)",
    "CREATE TABLE IF NOT EXISTS outgoing_part (key VARCHAR(256), msg INTEGER, "
    "status INTEGER, PRIMARY KEY(key))",
    "CREATE INDEX IF NOT EXISTS outgoing_part_msg ON outgoing_part(msg)",
)

_PUT_MESSAGE = (
    "INSERT OR REPLACE INTO incoming (key, seqorder, expiration, message) "
    "VALUES (?, ?, datetime(julianday(CURRENT_TIMESTAMP) + ? / 86400.0), ?)"
)
_GET_COUNT = "SELECT COUNT(seqorder) FROM incoming WHERE key = ?"
_GET_FULL_MESSAGE = "SELECT message FROM incoming WHERE key = ? ORDER BY seqorder"
_CLEAR_MESSAGES = "DELETE FROM incoming WHERE key = ?"
_GET_REFID = "SELECT refid FROM outgoing_ref WHERE key = ?"
_INS_REFID = "INSERT INTO outgoing_ref (refid, key) VALUES (?, ?)"
_SET_REFID = "UPDATE outgoing_ref SET refid = ? WHERE key = ?"


def make_key(*fields: object) -> str:
    """Join ``fields`` with slashes into a database key of bounded length."""
    key = "/".join(str(field) for field in fields)
    if len(key.encode("utf-8")) > MAX_DB_FIELD:
        raise ValueError(f"key length must be at most {MAX_DB_FIELD} bytes")
    return key


class SmsDb:
    """Message database kept in ``<path>.sqlite3`` (or in memory for ``:memory:``)."""

    def __init__(self, path: str, csms_ttl: int = 600) -> None:
        self.filename = path if path == MEMORY else path + DB_SUFFIX
        self.csms_ttl = csms_ttl
        self.lock = threading.RLock()
        self.connection = sqlite3.connect(
            self.filename, isolation_level=None, check_same_thread=False
        )
        try:
            with self.lock:
                for statement in _SCHEMA:
                    self.connection.execute(statement)
        except sqlite3.Error:
            self.connection.close()
            raise

    def close(self) -> None:
        """Close the database."""
        with self.lock:
            self.connection.close()

    def __enter__(self) -> "SmsDb":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the database lock inside one transaction; roll back on error."""
        with self.lock:
            self.connection.execute("BEGIN TRANSACTION")
            try:
                yield self.connection
            except BaseException:
                self.connection.execute("ROLLBACK")
                raise
            self.connection.execute("COMMIT")

    def put(self, id: str, addr: str, ref: int, parts: int, order: int,
            msg: str) -> tuple[int, Optional[str]]:
        """Store one part of a concatenated message.

        Returns the number of parts stored so far and, once all ``parts`` are
        present, the whole message (the parts are then removed); otherwise None.
        """
        key = make_key(id, addr, ref, parts)
        with self.transaction() as conn:
            conn.execute(_PUT_MESSAGE, (key, order, self.csms_ttl, msg))
            (count,) = conn.execute(_GET_COUNT, (key,)).fetchone()
            if count != parts:
                return count, None
            text = "".join(
                part if part is not None else ""
                for (part,) in conn.execute(_GET_FULL_MESSAGE, (key,))
            )
            conn.execute(_CLEAR_MESSAGES, (key,))
            return count, text

    def get_refid(self, id: str, addr: str) -> int:
        """Next concatenation reference (0..255) for messages to ``addr``."""
        key = make_key(id, addr)
        with self.transaction() as conn:
            row = conn.execute(_GET_REFID, (key,)).fetchone()
            if row is None:
                refid = 0
                conn.execute(_INS_REFID, (refid, key))
            else:
                refid = (int(row[0]) + 1) % 256
                conn.execute(_SET_REFID, (refid, key))
            return refid