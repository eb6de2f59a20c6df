"""Database connection management for Sukudo."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DB_NAME = "sukudo.db"


def get_default_db_path() -> Path:
    """Return the default database path (<data dir>/sukudo.db).

    The data directory is ~/.sukudo unless SUKUDO_DATA_DIR is set.
    """
    data_dir = os.environ.get("SUKUDO_DATA_DIR")
    base = Path(data_dir) if data_dir else Path.home() / ".sukudo"
    return base / DEFAULT_DB_NAME


def ensure_db_directory(db_path: Path) -> None:
    """Ensure the database directory exists, creating it if necessary."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def apply_pragmas(conn: sqlite3.Connection) -> None:
    """Apply the standard connection settings."""
    conn.execute("PRAGMA foreign_keys = ON")
    # WAL: concurrent readers alongside the single writer
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 10000")
    conn.execute("PRAGMA temp_store = MEMORY")
    conn.row_factory = sqlite3.Row


def open_connection(db_path: Path, timeout: float = 30.0) -> sqlite3.Connection:
    """Open a long-lived connection with standard settings.

    The caller owns the connection and must close it.
    """
    ensure_db_directory(db_path)
    conn = sqlite3.connect(str(db_path), timeout=timeout)
    apply_pragmas(conn)
    return conn


@contextmanager
def get_connection(
    db_path: Path | None = None, timeout: float = 30.0
) -> Iterator[sqlite3.Connection]:
    """Get a database connection with proper settings.

    Args:
        db_path: Path to the database file. Defaults to get_default_db_path().
        timeout: How long to wait for locks (seconds). Default 30s.

    Yields:
        An sqlite3 Connection object.

    Raises:
        sqlite3.OperationalError: If database is locked and timeout exceeded.
    """
    if db_path is None:
        db_path = get_default_db_path()

    conn = open_connection(db_path, timeout=timeout)
    try:
        yield conn
    finally:
        conn.close()


def check_database_connectivity(db_path: Path | None = None) -> bool:
    """Check if the database is accessible with a SELECT 1."""
    if db_path is None:
        db_path = get_default_db_path()

    if not db_path.exists():
        return False

    try:
        conn = sqlite3.connect(str(db_path), timeout=5.0)
        try:
            conn.execute("SELECT 1")
            return True
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.warning("Database connectivity check failed: %s", e)
        return False


class DaemonConnectionPool:
    """Thread-safe connection pool for daemon mode.

    Maintains a single connection shared across threads under a lock.
    This is appropriate for SQLite with WAL mode where readers don't
    block each other. Request handlers reach it through asyncio.to_thread.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        """Initialize the connection pool.

        Args:
            db_path: Path to SQLite database file.
            timeout: Connection timeout in seconds.
        """
        self.db_path = db_path
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._closed = False

    def _get_connection_unlocked(self) -> sqlite3.Connection:
        """Get the shared connection. Must be called with lock held."""
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        if self._conn is None:
            ensure_db_directory(self.db_path)
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False,  # Safe with our locking
            )
            apply_pragmas(self._conn)

        return self._conn

    def execute_read(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Execute a read-only query safely.

        Returns:
            List of result rows.
        """
        with self._lock:
            conn = self._get_connection_unlocked()
            cursor = conn.execute(query, params)
            return cursor.fetchall()

    def call(self, fn: Callable[..., T], *args: object) -> T:
        """Run fn(conn, *args) with the shared connection held.

        Intended for read helpers such as get_job(); writes belong in
        transaction().
        """
        with self._lock:
            conn = self._get_connection_unlocked()
            return fn(conn, *args)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for atomic database transactions.

        Commits on success, rolls back on exception. Uses BEGIN IMMEDIATE
        for write-intent transactions.

        Example:
            with pool.transaction() as conn:
                insert_job(conn, job)
                insert_event(conn, job.id, "Queued")

        Yields:
            The database connection for direct query execution.
        """
        with self._lock:
            conn = self._get_connection_unlocked()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        """Close the connection pool.

        After closing, the pool cannot be reused.
        """
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error as e:
                    logger.warning("Error closing connection pool: %s", e)
                self._conn = None
            self._closed = True

    @property
    def is_closed(self) -> bool:
        """Check if the pool has been closed."""
        with self._lock:
            return self._closed
