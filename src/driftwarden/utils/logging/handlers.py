"""
Logger adapters for binding table/operation context.
"""

import logging
from collections.abc import MutableMapping
from typing import Any

LoggerLike = logging.Logger | logging.LoggerAdapter


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter that attaches bound context to every record.

    Call-site ``extra`` values take precedence over bound ones.

    Usage:
        log = ContextLogger(logger, table="customers")
        log.info("Inserted batch", extra={"batch": 3})
    """

    def __init__(self, logger: LoggerLike, **context: Any):
        # Unwrap nested adapters so context merges instead of shadowing
        if isinstance(logger, ContextLogger):
            context = {**logger.extra, **context}
            logger = logger.logger
        super().__init__(logger, context)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextLogger":
        """Return a new adapter with additional context."""
        return ContextLogger(self, **context)

    def get_context(self) -> dict[str, Any]:
        return dict(self.extra)


def resolve_logger(logger: LoggerLike | None, default_name: str, **context: Any) -> ContextLogger:
    """
    Return an adapter over the injected logger, or over ``default_name``.

    Args:
        logger: Injected logger or adapter (None for the module default)
        default_name: Logger name used when nothing is injected
        **context: Context to bind
    """
    return ContextLogger(logger if logger is not None else logging.getLogger(default_name), **context)
