"""
Structured logging for the sync engine

Components log through an injected ``logging.Logger`` (or adapter) and fall
back to their module logger, so nothing in the core depends on global logging
state. Applications call ``setup_logging`` once at startup.

Usage:
    from driftwarden.utils.logging import setup_logging, ContextLogger

    setup_logging(level="INFO", json_format=True)

    log = ContextLogger(logging.getLogger("driftwarden"), table="customers")
    log.info("Diff computed", extra={"inserts": 12})
"""

from .config import configure_from_env, reset_logging, setup_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger, LoggerLike, resolve_logger

__all__ = [
    "setup_logging",
    "configure_from_env",
    "reset_logging",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
    "resolve_logger",
    "LoggerLike",
]
