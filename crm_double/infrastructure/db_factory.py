"""
Database connection factory utilities for crm-double.

The engine talks to SQLite through exactly one connection. Every statement
runs under a re-entrant lock, so concurrent callers are serialized and no two
compound operations can interleave. `Database.transaction()` gives those
compound operations an explicit boundary; nested calls become savepoints so a
batch can roll back one item without losing the others.

The DatabaseManager singleton owns the process-wide database opened from
settings and closes it on interpreter exit. Includes retry logic for the
initial open (a file held by another process reports "database is locked")
using tenacity.
"""

from __future__ import annotations

import atexit
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Generator, Iterable, List, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from crm_double.config import get_settings
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

MEMORY_PATH = ":memory:"


class Database:
    """
    A single serialized SQLite connection.

    Parameters
    ----------
    conn : sqlite3.Connection
        Connection opened in autocommit mode (isolation_level=None).
    path : str
        Path the connection was opened from, kept for diagnostics.
    """

    def __init__(self, conn: sqlite3.Connection, path: str) -> None:
        self._conn = conn
        self.path = path
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Hold the connection lock without opening a transaction.

        Example
        -------
            with db.connection() as conn:
                conn.execute("SELECT 1").fetchone()
        """
        with self._lock:
            if self._closed:
                raise sqlite3.ProgrammingError("Cannot operate on a closed database.")
            yield self._conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Run a block atomically.

        The outermost call issues BEGIN IMMEDIATE and COMMIT; nested calls use
        SAVEPOINT / RELEASE. Any exception rolls back the innermost scope and
        propagates.
        """
        with self.connection() as conn:
            depth = self._depth
            savepoint = f"sp_{depth}"
            conn.execute("BEGIN IMMEDIATE" if depth == 0 else f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    conn.execute("ROLLBACK")
                else:
                    conn.execute(f"ROLLBACK TO {savepoint}")
                    conn.execute(f"RELEASE {savepoint}")
                raise
            else:
                self._depth -= 1
                conn.execute("COMMIT" if depth == 0 else f"RELEASE {savepoint}")

    def query_all(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self.connection() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self.connection() as conn:
            return conn.execute(sql, tuple(params)).fetchone()

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(sqlite3.OperationalError),
    reraise=True,
)
def _connect(path: str, busy_timeout_ms: int) -> sqlite3.Connection:
    conn = sqlite3.connect(
        path,
        timeout=busy_timeout_ms / 1000.0,
        isolation_level=None,
        check_same_thread=False,
    )
    try:
        conn.row_factory = sqlite3.Row
        if path != MEMORY_PATH:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def open_database(path: Optional[str] = None, busy_timeout_ms: Optional[int] = None) -> Database:
    """
    Open a Database with automatic retry.

    Retries up to 3 times with exponential backoff when SQLite reports an
    operational error (typically a lock held by another process).

    Parameters
    ----------
    path : str, optional
        SQLite file path or ":memory:". Defaults to settings.db_path.
    busy_timeout_ms : int, optional
        Busy timeout. Defaults to settings.db_busy_timeout_ms.

    Returns
    -------
    Database
        A new serialized database handle.

    Raises
    ------
    sqlite3.OperationalError
        If the database cannot be opened after all retry attempts.
    """
    settings = get_settings()
    db_path = path or settings.db_path
    timeout = busy_timeout_ms if busy_timeout_ms is not None else settings.db_busy_timeout_ms
    conn = _connect(db_path, timeout)
    log.debug("Database opened", extra={"db_path": db_path})
    return Database(conn, db_path)


class DatabaseManager:
    """
    Thread-safe singleton owning the process-wide Database.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["DatabaseManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "DatabaseManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._database = None
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_database(self) -> Database:
        """
        Get or open the shared Database configured by settings.
        """
        with self._lock:
            if self._database is None or self._database.closed:
                self._database = open_database()
            return self._database

    def close_all(self) -> None:
        """
        Close the managed database.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._database is not None:
                try:
                    self._database.close()
                except sqlite3.Error:
                    log.warning("Database close failed", exc_info=True)
                finally:
                    self._database = None


def get_database() -> Database:
    """Shared Database via DatabaseManager."""
    return DatabaseManager().get_database()


__all__ = [
    "Database",
    "DatabaseManager",
    "MEMORY_PATH",
    "get_database",
    "open_database",
]
