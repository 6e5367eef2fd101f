import sys
import logging
from typing import Optional

from keepalive.local import app_globals as config
from keepalive.log.handler import SQLiteHandler, LokiHandler


class MainFormatter(logging.Formatter):
    """Console formatter that prefixes each line with the owning process."""

    def __init__(self, process_name: str = "main"):
        super().__init__(f'%(asctime)s - %(levelname)-8s - [{process_name}:%(name)s] - %(message)s')


def setup_logging(console_level: int = logging.INFO, process_name: str = "main",
                  console_stream: Optional[object] = None) -> None:
    """
    Configures the root logger for the current process.
    This sets up handlers for console, SQLite, and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param process_name: Label attached to every record ('supervisor', 'worker', 'console').
    :param console_stream: Stream for the console handler, stdout by default.
    """
    config.LOG_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(console_stream or sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter(process_name))
    root_logger.addHandler(console_handler)

    # --- SQLite Handler (always enabled for all levels) ---
    try:
        sqlite_handler = SQLiteHandler(
            db_path=config.LOG_DB_PATH,
            process_name=process_name,
            buffer_size=config.LOG_BUFFER_SIZE,
            flush_interval=config.LOG_BUFFER_FLUSH_INTERVAL,
            max_db_size_mb=config.MAX_LOG_DB_SIZE_MB,
            size_check_interval=config.LOG_DB_SIZE_CHECK_INTERVAL_SECONDS,
        )
        sqlite_handler.setLevel(logging.DEBUG)
        sqlite_handler.setFormatter(logging.Formatter('%(message)s'))
        root_logger.addHandler(sqlite_handler)
    except Exception as e:
        root_logger.error(f"Failed to initialize SQLite logging handler: {e}. Logging to DB will be disabled.")

    # --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, process_name=process_name, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO)  # Avoid spamming Loki with DEBUG logs
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")


def set_console_level(level: int) -> None:
    """Changes the level of the console handler(s) on the root logger."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, (SQLiteHandler, LokiHandler)):
            handler.setLevel(level)
