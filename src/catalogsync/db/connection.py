"""
SQLite database handle.

One writer connection per Database, opened lazily. Callers own the handle and
pass it into every orchestrator/pool call; there is no module-level
"current database".

Async callers run database work through ``asyncio.to_thread`` so lock waits
and large commits stay off the event loop. The writer connection is shared
across those threads and guarded by ``Database.lock``; use ``locked()`` or
``transaction()`` rather than touching ``connection`` from a worker thread.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from .schema import initialize_schema

logger = logging.getLogger(__name__)

_LOCK_MESSAGES = ("database is locked", "database is busy")


def is_lock_error(exc: sqlite3.Error) -> bool:
    """True for SQLite's transient lock-conflict errors."""
    return isinstance(exc, sqlite3.OperationalError) and any(
        msg in str(exc).lower() for msg in _LOCK_MESSAGES
    )


class Database:
    """Owns the writer connection and hands out transactions."""

    def __init__(
        self,
        path: Union[str, Path],
        lock_retry_max: int = 5,
        lock_retry_delay: float = 0.05,
        busy_timeout_ms: int = 5000,
    ):
        self.path = str(path)
        self.lock_retry_max = lock_retry_max
        self.lock_retry_delay = lock_retry_delay
        self.busy_timeout_ms = busy_timeout_ms
        self.lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Writer connection, created and migrated on first use."""
        with self.lock:
            if self._conn is None:
                self._conn = self._open()
            return self._conn

    def _open(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: we issue BEGIN/COMMIT ourselves
        conn = sqlite3.connect(
            self.path, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if self.path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        initialize_schema(conn)
        logger.debug(f"Opened catalog database at {self.path}")
        return conn

    @contextmanager
    def locked(self) -> Iterator[sqlite3.Connection]:
        """Writer connection held exclusively for the block (no transaction)."""
        with self.lock:
            yield self.connection

    def reader(self) -> sqlite3.Connection:
        """Open a separate read-only connection.

        The caller closes it. WAL mode means it sees the last committed state
        and is not blocked by an in-flight writer transaction.
        """
        if self.path == ":memory:":
            raise ValueError("In-memory databases have no read-only view")
        # Make sure the file and schema exist before opening read-only
        self.connection
        uri = Path(self.path).resolve().as_uri() + "?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a write transaction (BEGIN IMMEDIATE ... COMMIT).

        Holds ``lock`` for the whole block. Acquiring the SQLite write lock is
        retried with exponential backoff while another writer holds it. Any
        exception inside the block rolls back.
        """
        with self.lock:
            conn = self.connection
            self._begin(conn)
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _begin(self, conn: sqlite3.Connection) -> None:
        attempt = 0
        while True:
            try:
                conn.execute("BEGIN IMMEDIATE")
                return
            except sqlite3.OperationalError as e:
                if not is_lock_error(e) or attempt >= self.lock_retry_max:
                    raise
                delay = self.lock_retry_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    f"Database locked, retrying in {delay:.2f}s "
                    f"({attempt}/{self.lock_retry_max})"
                )
                time.sleep(delay)

    def close(self) -> None:
        with self.lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
