"""Context management for structured logging.

Provides automatic context injection into log records using contextvars,
so request IDs and caller identity are included in every message logged
while a request is being resolved, without threading them through calls.

Each asyncio task gets its own copy of the context, so concurrent
requests never see each other's fields.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for the current async task/thread.

    Args:
        **kwargs: Key-value pairs to add to logging context.
            Common examples: request_id, identity, entity_type

    Changes made inside a ``log_context`` block are undone when the block
    exits.

    Example:
        ```python
        with log_context(request_id="abc-123"):
            set_log_context(identity="ada")
            logger.info("Resolving")  # Includes request_id and identity
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily extend the logging context.

    The previous context is restored on exit, including when the block raises.

    Example:
        ```python
        with log_context(request_id="r-1"):
            logger.info("inside")  # has request_id
        logger.info("outside")  # does not
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    token = _log_context.set(current)
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvars log context into LogRecords.

    Attached to the root handlers by ``configure_logging``, so formatters see
    the context fields as ordinary record attributes.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject context into log record.

        Args:
            record: The log record to enhance with context.

        Returns:
            True (always allow the record to be logged).
        """
        for key, value in _log_context.get().items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


__all__ = [
    "ContextInjectingFilter",
    "log_context",
    "set_log_context",
]
