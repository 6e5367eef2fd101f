"""
Local package for the Keepalive application.

This package provides the application-level configuration through the
app_globals object, the process supervisor, and the operator console.
"""

from .global_config import app_globals

__all__ = ["app_globals"]
