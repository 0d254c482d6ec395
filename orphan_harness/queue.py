"""Queue engine interface and the default SQLite-backed engine.

The engine is the system under test. The harness only relies on the
``OrphanQueue`` surface: a durable ``enqueue``, non-destructive ``peek`` and
``peek_by_offset``, a destructive ``dequeue``, ``length`` and ``close``.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from .errors import QueueEmpty, QueueError

DB_NAME = "queue.db"

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS orphans ("
    "seq INTEGER PRIMARY KEY AUTOINCREMENT, "
    "value BLOB NOT NULL)"
)


@dataclass(frozen=True)
class QueueItem:
    seq: int
    value: bytes


class OrphanQueue(Protocol):
    def enqueue(self, value: bytes) -> QueueItem: ...

    def peek(self) -> QueueItem: ...

    def peek_by_offset(self, offset: int) -> QueueItem: ...

    def dequeue(self) -> QueueItem: ...

    def length(self) -> int: ...

    def close(self) -> None: ...


QueueOpener = Callable[[Union[str, Path]], OrphanQueue]


class SqliteQueue:
    """FIFO queue in ``<path>/queue.db``.

    ``enqueue`` returns only after its transaction is committed with
    ``synchronous=FULL``. Opening the database runs SQLite's own hot-journal
    rollback, which is the recovery step after a crash.
    """

    def __init__(self, path: Path, conn: sqlite3.Connection):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = conn
        self._lock = threading.Lock()
        self._read_only = False

    @classmethod
    def open(cls, path: Union[str, Path]) -> "SqliteQueue":
        p = Path(path)
        try:
            p.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(p / DB_NAME),
                isolation_level=None,
                check_same_thread=False,
            )
            conn.execute("PRAGMA journal_mode=DELETE")
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute(_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise QueueError(f"opening queue {p} failed: {e}") from e
        return cls(p, conn)

    @classmethod
    def inspect(cls, path: Union[str, Path]) -> OrphanQueue:
        """Open an existing queue for reading without creating anything.

        A missing directory, a missing or zero-length ``queue.db``, or a
        database without the orphans table all read as an empty queue. The
        returned queue refuses ``enqueue`` and ``dequeue``.
        """
        p = Path(path)
        db_path = p / DB_NAME
        try:
            if not db_path.is_file() or db_path.stat().st_size == 0:
                return EmptyQueue(p)
            conn = sqlite3.connect(
                db_path.resolve().as_uri() + "?mode=rw",
                uri=True,
                isolation_level=None,
                check_same_thread=False,
            )
        except (OSError, sqlite3.Error) as e:
            raise QueueError(f"opening queue {p} failed: {e}") from e
        try:
            row = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'orphans'"
            ).fetchone()
        except sqlite3.Error as e:
            conn.close()
            raise QueueError(f"opening queue {p} failed: {e}") from e
        if row is None:
            conn.close()
            return EmptyQueue(p)
        q = cls(p, conn)
        q._read_only = True
        return q

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise QueueError("queue is closed")
        return self._conn

    def _writable_db(self) -> sqlite3.Connection:
        db = self._db()
        if self._read_only:
            raise QueueError("queue was opened for inspection only")
        return db

    def enqueue(self, value: bytes) -> QueueItem:
        with self._lock:
            db = self._writable_db()
            try:
                db.execute("BEGIN IMMEDIATE")
                cur = db.execute("INSERT INTO orphans (value) VALUES (?)", (value,))
                db.execute("COMMIT")
            except sqlite3.Error as e:
                _rollback(db)
                raise QueueError(f"enqueue failed: {e}") from e
            return QueueItem(cur.lastrowid, value)

    def peek(self) -> QueueItem:
        return self.peek_by_offset(0)

    def peek_by_offset(self, offset: int) -> QueueItem:
        if offset < 0:
            raise QueueError(f"negative offset {offset}")
        with self._lock:
            try:
                row = self._db().execute(
                    "SELECT seq, value FROM orphans ORDER BY seq LIMIT 1 OFFSET ?",
                    (offset,),
                ).fetchone()
            except sqlite3.Error as e:
                raise QueueError(f"peek failed: {e}") from e
        if row is None:
            if offset == 0:
                raise QueueEmpty("queue is empty")
            raise QueueError(f"offset {offset} out of range")
        return QueueItem(row[0], bytes(row[1]))

    def dequeue(self) -> QueueItem:
        with self._lock:
            db = self._writable_db()
            try:
                db.execute("BEGIN IMMEDIATE")
                row = db.execute(
                    "SELECT seq, value FROM orphans ORDER BY seq LIMIT 1"
                ).fetchone()
                if row is None:
                    db.execute("ROLLBACK")
                    raise QueueEmpty("queue is empty")
                db.execute("DELETE FROM orphans WHERE seq = ?", (row[0],))
                db.execute("COMMIT")
            except sqlite3.Error as e:
                _rollback(db)
                raise QueueError(f"dequeue failed: {e}") from e
        return QueueItem(row[0], bytes(row[1]))

    def length(self) -> int:
        with self._lock:
            try:
                (n,) = self._db().execute("SELECT COUNT(*) FROM orphans").fetchone()
            except sqlite3.Error as e:
                raise QueueError(f"length failed: {e}") from e
        return n

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            conn, self._conn = self._conn, None
            try:
                conn.close()
            except sqlite3.Error as e:
                raise QueueError(f"close failed: {e}") from e


def _rollback(db: sqlite3.Connection) -> None:
    if db.in_transaction:
        try:
            db.execute("ROLLBACK")
        except sqlite3.Error:
            pass


def open_queue(path: Union[str, Path]) -> OrphanQueue:
    return SqliteQueue.open(path)


def inspect_queue(path: Union[str, Path]) -> OrphanQueue:
    return SqliteQueue.inspect(path)


class EmptyQueue:
    """Stand-in for a queue that never reached disk."""

    def __init__(self, path: Path):
        self.path = path

    def enqueue(self, value: bytes) -> QueueItem:
        raise QueueError("queue was opened for inspection only")

    def peek(self) -> QueueItem:
        raise QueueEmpty("queue is empty")

    def peek_by_offset(self, offset: int) -> QueueItem:
        if offset == 0:
            raise QueueEmpty("queue is empty")
        raise QueueError(f"offset {offset} out of range")

    def dequeue(self) -> QueueItem:
        raise QueueError("queue was opened for inspection only")

    def length(self) -> int:
        return 0

    def close(self) -> None:
        pass
