"""Logging infrastructure.

Standard-library logging with contextvars-based request context and an
optional JSON Lines formatter.

Usage:
    from batchgraph.infra.logging import setup_logging, log_context

    setup_logging()
    with log_context(request_id="r-1"):
        logging.getLogger(__name__).info("Resolving request")
"""

from batchgraph.infra.logging.config import (
    build_logging_config,
    configure_logging,
    setup_logging,
)
from batchgraph.infra.logging.context import (
    ContextInjectingFilter,
    log_context,
    set_log_context,
)
from batchgraph.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "build_logging_config",
    "configure_logging",
    "log_context",
    "set_log_context",
    "setup_logging",
]
