import time
import sqlite3
import logging
from pathlib import Path
from collections import namedtuple
from typing import List, Dict, Any, Tuple
from keepalive.local.database.base import BaseDBManager

LogEntry = namedtuple('LogEntry', ['id', 'timestamp', 'level', 'process', 'module', 'message'])
log = logging.getLogger(__name__)


def _format_row(row: sqlite3.Row) -> LogEntry:
    dt = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(row['timestamp']))
    return LogEntry(
        id=row['id'], timestamp=row['timestamp'], level=row['level'],
        process=row['process'], module=row['module'],
        message=f"{dt} - {row['level']:<8} - [{row['process']}:{row['module']}] - {row['message']}"
    )


class LogDBManager(BaseDBManager):
    """
    Manages the log database shared by the supervisor and worker processes.
    """

    def initialize_database(self) -> None:
        """Ensures the log table exists."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    level TEXT,
                    process TEXT,
                    module TEXT,
                    funcName TEXT,
                    lineno INTEGER,
                    message TEXT
                )
            ''')
            log.debug("Log database table created/verified.")
        except (sqlite3.Error, OSError) as e:
            log.critical(f"Could not create log database table: {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Inserts multiple log entries in a single transaction.

        :param log_entries: Dicts with keys: timestamp, level, process, module, funcName, lineno, message.
        """
        if not log_entries:
            return

        params = [(
            entry['timestamp'],
            entry['level'],
            entry['process'],
            entry['module'],
            entry['funcName'],
            entry['lineno'],
            entry['message']
        ) for entry in log_entries]

        self.execute_many(
            '''INSERT INTO logs (timestamp, level, process, module, funcName, lineno, message)
               VALUES (?, ?, ?, ?, ?, ?, ?)''',
            params
        )

    def fetch_last_entries(self, limit: int, include_debug: bool = False) -> List[LogEntry]:
        """
        Fetches the most recent log entries, oldest first.

        :param limit: The maximum number of log entries to retrieve.
        :param include_debug: Whether DEBUG rows are included.
        """
        level_filter = "" if include_debug else "WHERE level != 'DEBUG'"
        try:
            rows = self.fetch_all(
                f"SELECT id, timestamp, level, process, module, message FROM logs {level_filter} "
                "ORDER BY id DESC LIMIT ?",
                (limit,)
            )
        except sqlite3.Error as e:
            log.error(f"Failed to fetch log entries from database: {e}")
            return []
        return [_format_row(row) for row in reversed(rows)]

    def listen_for_updates(self, last_id: int) -> Tuple[List[LogEntry], int]:
        """
        Polls the database for rows newer than `last_id`.

        :return: The new entries and the new highest id.
        """
        try:
            rows = self.fetch_all(
                "SELECT id, timestamp, level, process, module, message FROM logs WHERE id > ? ORDER BY id ASC",
                (last_id,)
            )
        except sqlite3.Error as e:
            log.error(f"Failed to poll log database for updates: {e}")
            return [], last_id

        entries = [_format_row(row) for row in rows]
        new_last_id = entries[-1].id if entries else last_id
        return entries, new_last_id
