import sys
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional
from typing import List, Dict, Any
from keepalive.local.database import LogDBManager


class SQLiteHandler(logging.Handler):
    """
    A logging handler that writes logs to a SQLite database in batches,
    flushed by a background thread.
    """
    def __init__(self, db_path: Path, process_name: str, buffer_size: int = 100,
                 flush_interval: float = 10, max_db_size_mb: float = 100,
                 size_check_interval: float = 12 * 3600):
        """
        Initializes the SQLite handler.

        :param db_path: The path to the SQLite database file.
        :param process_name: Label stored with every row ('supervisor', 'worker', ...).
        :param buffer_size: Flush as soon as this many records are buffered.
        :param flush_interval: Seconds between background flushes.
        :param max_db_size_mb: Size above which a warning is logged.
        :param size_check_interval: Seconds between database size checks.
        """
        super().__init__()
        self.db_path = db_path
        self.process_name = process_name
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self.max_db_size_mb = max_db_size_mb
        self.size_check_interval = size_check_interval
        self.log_buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.stop_event = threading.Event()
        self.logDB = LogDBManager(self.db_path)
        self.logDB.initialize_database()
        self.flush_thread = self._start_thread(self._periodic_flush, "SQLiteFlushThread")
        self.db_size_check_thread: Optional[threading.Thread] = self._start_thread(
            self._periodic_db_size_check, "LogDbSizeCheckThread"
        )

    def _start_thread(self, target, name: str) -> threading.Thread:
        thread = threading.Thread(target=target, daemon=True, name=name)
        thread.start()
        return thread

    def _periodic_flush(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Adds a log record to the internal buffer for batch writing.

        :param record: The log record to be processed.
        """
        log_entry = {
            "timestamp": record.created,
            "level": record.levelname,
            "process": self.process_name,
            "module": record.name,
            "funcName": record.funcName,
            "lineno": record.lineno,
            "message": record.getMessage() if not record.exc_info else self.format(record)
        }
        with self.buffer_lock:
            self.log_buffer.append(log_entry)
            should_flush = len(self.log_buffer) >= self.buffer_size
        if should_flush:
            self.flush()

    def flush(self) -> None:
        """Writes the buffered records. The DB write happens outside the buffer lock."""
        with self.buffer_lock:
            if not self.log_buffer:
                return
            entries_to_write = list(self.log_buffer)
            self.log_buffer.clear()
        try:
            self.logDB.insert_log_batch(entries_to_write)
        except sqlite3.Error as e:
            print(f"Error writing logs to DB: {e}. Log entries: {len(entries_to_write)}", file=sys.stderr)

    def _check_db_file_size(self) -> None:
        """Logs a warning if the log database file exceeds the limit."""
        logger = logging.getLogger(__name__)
        try:
            file_size_mb = self.db_path.stat().st_size / (1024 * 1024)
        except FileNotFoundError:
            logger.debug(f"Log database file '{self.db_path}' not found during size check.")
            return
        except OSError as e:
            logger.error(f"Error checking log database file size for '{self.db_path}': {e}")
            return

        if file_size_mb > self.max_db_size_mb:
            logger.warning(
                f"Log database file '{self.db_path}' size ({file_size_mb:.2f} MB) "
                f"exceeds configured limit ({self.max_db_size_mb} MB)."
            )

    def _periodic_db_size_check(self) -> None:
        while not self.stop_event.wait(self.size_check_interval):
            self._check_db_file_size()

    def close(self) -> None:
        """Stops the background threads and writes whatever is still buffered."""
        self.stop_event.set()
        for thread in (self.flush_thread, self.db_size_check_thread):
            if thread is not None and thread.is_alive():
                thread.join(timeout=2)
        self.flush()
        super().close()
