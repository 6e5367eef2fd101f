from .setup import setup_logging, set_console_level, MainFormatter

__all__ = ["setup_logging", "set_console_level", "MainFormatter"]
