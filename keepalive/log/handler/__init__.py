"""
Logging handlers for the application.
Batched handlers that ship log records to SQLite and, optionally, Grafana Loki.
"""

from .loki import LokiHandler
from .sql import SQLiteHandler

__all__ = ["SQLiteHandler", "LokiHandler"]
