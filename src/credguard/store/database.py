"""
CredGuard Durable Store

SQLite-backed persistence shared by the credential store, the audit log and
the rate limiter.

Every call is bounded: the connection lock is acquired with a timeout and
SQLite itself waits at most ``busy_timeout`` for file locks. Any timeout or
``sqlite3.Error`` is surfaced as ``StoreFailure``.

Transactions nest. The outermost ``transaction()`` issues
``BEGIN IMMEDIATE`` and commits on exit; inner scopes join it. An exception
anywhere inside rolls the whole unit back.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence

import attrs
import structlog

from credguard.core.exceptions import StoreFailure

logger = structlog.get_logger()


SCHEMA = """
CREATE TABLE IF NOT EXISTS principals (
    principal_id TEXT PRIMARY KEY,
    email TEXT,
    display_name TEXT,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS credentials (
    principal_id TEXT NOT NULL REFERENCES principals(principal_id) ON DELETE CASCADE,
    kind TEXT NOT NULL,
    secret_hash TEXT NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (principal_id, kind)
);

CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    principal_id TEXT NOT NULL,
    event_kind TEXT NOT NULL,
    origin TEXT NOT NULL,
    user_agent TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS failed_attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    principal_id TEXT,
    origin TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_principal ON audit_events (principal_id, id);
CREATE INDEX IF NOT EXISTS idx_failed_origin ON failed_attempts (origin, created_at);
CREATE INDEX IF NOT EXISTS idx_failed_principal ON failed_attempts (principal_id, created_at);
"""


def to_epoch(value: datetime) -> float:
    """Convert an aware datetime to UTC epoch seconds."""
    return value.timestamp()


def from_epoch(value: float) -> datetime:
    """Convert UTC epoch seconds to an aware datetime."""
    return datetime.fromtimestamp(value, tz=timezone.utc)


@attrs.define
class Database:
    """
    Single shared SQLite connection with bounded, nestable transactions.

    Thread-safe: the connection is guarded by a re-entrant lock.

    Example:
        db = Database(path=":memory:", timeout_seconds=5.0)
        with db.transaction():
            db.execute("INSERT INTO ...", (...))
            db.execute("DELETE FROM ...", (...))
    """

    path: str = ":memory:"
    timeout_seconds: float = 5.0

    _conn: Optional[sqlite3.Connection] = attrs.field(default=None, alias="_conn")
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _depth: int = attrs.field(default=0, init=False)
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        if self._conn is None:
            self._conn = self._connect()
        try:
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreFailure(f"Schema initialization failed: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {int(self.timeout_seconds * 1000)}")
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            self._logger.error("store_connect_failed", path=self.path, error=str(e))
            raise StoreFailure(f"Database connection failed: {e}") from e

        self._logger.debug("store_connected", path=self.path)
        return conn

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        if self._conn is None:
            raise StoreFailure("Database is closed")
        if not self._lock.acquire(timeout=self.timeout_seconds):
            self._logger.error("store_lock_timeout", timeout=self.timeout_seconds)
            raise StoreFailure("Timed out waiting for the store")
        try:
            yield self._conn
        finally:
            self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Open (or join) a transaction.

        Raises:
            StoreFailure: On lock timeout or any SQLite error
        """
        with self._locked() as conn:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            self._run(conn, "BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield conn
            except BaseException:
                self._rollback(conn)
                raise
            else:
                try:
                    self._run(conn, "COMMIT")
                except StoreFailure:
                    self._rollback(conn)
                    raise
            finally:
                self._depth = 0

    @property
    def in_transaction(self) -> bool:
        """True while a transaction scope is open."""
        return self._depth > 0

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Execute a write statement inside (or as) a transaction."""
        with self.transaction() as conn:
            return self._run(conn, sql, params)

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a read query and return all rows."""
        with self._locked() as conn:
            return self._run(conn, sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """Run a read query and return the first row, if any."""
        with self._locked() as conn:
            return self._run(conn, sql, params).fetchone()

    def close(self) -> None:
        """Close the connection. Later calls raise StoreFailure."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _run(
        self, conn: sqlite3.Connection, sql: str, params: Sequence[Any] = ()
    ) -> sqlite3.Cursor:
        try:
            return conn.execute(sql, params)
        except sqlite3.Error as e:
            self._logger.error("store_failure", error=str(e))
            raise StoreFailure(f"Store operation failed: {e}") from e

    def _rollback(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # Connection is unusable; the caller still sees the first error
            self._logger.error("store_rollback_failed", error=str(e))
        else:
            self._logger.debug("store_rolled_back")
