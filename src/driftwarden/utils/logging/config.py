"""
Console logging setup for the ``driftwarden`` logger hierarchy.

Only the package logger is configured; the host application's root logger and
handlers are left alone. Components still accept an injected logger, in which
case the host decides where records go.
"""

import logging
import os
import sys
from typing import TextIO

from .formatters import ConsoleFormatter, JSONFormatter

PACKAGE_LOGGER = "driftwarden"

# Database drivers are chatty at DEBUG
DRIVER_LOGGERS = ("pymysql", "psycopg")

_TRUTHY = ("true", "1", "yes")


def _installed_handlers(package_logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in package_logger.handlers if getattr(h, "_driftwarden", False)]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    stream: TextIO | None = None,
    app_name: str = "driftwarden",
    propagate: bool = False,
) -> logging.Handler:
    """
    Attach one console handler to the ``driftwarden`` logger.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_format: One JSON object per line instead of console text
        stream: Output stream (default: stderr)
        app_name: ``app`` field of JSON records
        propagate: Also pass records on to the root logger

    Returns:
        The installed handler
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    package_logger = logging.getLogger(PACKAGE_LOGGER)

    reset_logging()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JSONFormatter(app_name=app_name))
    else:
        handler.setFormatter(ConsoleFormatter(use_colors=stream is None))
    handler._driftwarden = True

    package_logger.addHandler(handler)
    package_logger.setLevel(numeric_level)
    package_logger.propagate = propagate

    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    package_logger.debug(f"Logging initialized: level={level}, json={json_format}")
    return handler


def reset_logging() -> None:
    """Remove the handler installed by ``setup_logging`` and restore propagation."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in _installed_handlers(package_logger):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


def configure_from_env() -> logging.Handler:
    """
    Configure logging from environment variables

    Environment variables:
        DRIFTWARDEN_LOG_LEVEL: Log level (default: INFO)
        DRIFTWARDEN_LOG_JSON: Use JSON format (default: false)
    """
    return setup_logging(
        level=os.getenv("DRIFTWARDEN_LOG_LEVEL", "INFO"),
        json_format=os.getenv("DRIFTWARDEN_LOG_JSON", "false").lower() in _TRUTHY,
    )
