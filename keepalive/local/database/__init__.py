"""
This module initializes the local database management system.
It exposes the log database manager used by the SQLite log handler and the console.
"""

from .log import LogDBManager, LogEntry

__all__ = ["LogDBManager", "LogEntry"]
