"""
SQLite Storage Backend.

Runs the database in WAL journal mode so readers never wait behind an
in-flight insert. One connection per thread; SQLite serializes writers.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from fleetwatch.storage.backend import StorageBackend

logger = logging.getLogger(__name__)


class SQLiteBackend(StorageBackend):
    """
    SQLite storage backend implementation.

    Thread-safe via connection-per-thread pattern.
    """

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 5000):
        """
        Initialize SQLite backend.

        Args:
            db_path: Path to SQLite database file (created if doesn't exist)
            busy_timeout_ms: How long a writer waits for the write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_ms = busy_timeout_ms

        # Thread-local storage for connections, plus every connection handed
        # out so close() reaches the ones opened by other threads
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        # Create initial connection to verify path is valid
        self._get_connection()
        logger.info(f"Opened SQLite event database at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get thread-local database connection.

        Returns:
            SQLite connection for current thread
        """
        if not hasattr(self._local, "connection") or self._local.connection is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.connection

    def execute_script(self, script: str) -> None:
        conn = self._get_connection()
        conn.executescript(script)
        conn.commit()

    def execute(self, query: str, params: tuple = ()) -> None:
        conn = self._get_connection()
        try:
            conn.execute(query, params)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

    def insert(self, query: str, params: tuple = ()) -> int:
        conn = self._get_connection()
        try:
            cursor = conn.execute(query, params)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        return int(cursor.lastrowid)

    def fetch_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        conn = self._get_connection()
        cursor = conn.execute(query, params)
        row = cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    def fetch_all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        conn = self._get_connection()
        cursor = conn.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """
        Close every connection this backend opened, on any thread.

        A later call from any thread opens a fresh connection.
        """
        with self._connections_lock:
            connections, self._connections = self._connections, []
            self._local = threading.local()
        for conn in connections:
            conn.close()
        if connections:
            logger.debug(f"Closed {len(connections)} SQLite connection(s) to {self.db_path}")
