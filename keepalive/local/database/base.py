import sqlite3
import logging
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import List, Optional, Tuple, Any, Generator

log = logging.getLogger(__name__)


class BaseDBManager:
    """
    Base class for SQLite database managers. A fresh connection is opened per
    operation, so the same manager can be used from several threads.
    """

    def __init__(self, db_path: Path, enable_wal: bool = True):
        """
        :param db_path: The path to the SQLite database file.
        :param enable_wal: Whether to enable WAL mode, which lets the supervisor
            and the worker write to the same file concurrently.
        """
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.lock = threading.Lock()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Yields a new database connection while holding this manager's lock.
        Cross-process writes are serialized by SQLite's own busy timeout.
        """
        with self.lock:
            conn = sqlite3.connect(self.db_path, timeout=10)
            try:
                if self.enable_wal:
                    conn.execute("PRAGMA journal_mode=WAL;")
                yield conn
            finally:
                conn.close()

    def execute(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> List[Any]:
        """
        Executes a single SQL statement and commits.

        :return: The fetched rows, if any.
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, params or ())
                conn.commit()
                return cursor.fetchall()
        except sqlite3.Error as e:
            log.error(f"Database operation failed: {e}")
            raise

    def execute_many(self, sql: str, params: List[Tuple[Any, ...]]) -> None:
        """Executes a statement for each parameter tuple in one transaction."""
        try:
            with self._get_connection() as conn:
                conn.executemany(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            log.error(f"Batch database operation failed: {e}")
            raise

    def fetch_all(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> List[sqlite3.Row]:
        """Fetches all rows of a query as sqlite3.Row objects."""
        try:
            with self._get_connection() as conn:
                conn.row_factory = sqlite3.Row
                return conn.execute(sql, params or ()).fetchall()
        except sqlite3.Error as e:
            log.error(f"Failed to fetch data: {e}")
            raise
