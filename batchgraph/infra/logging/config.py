"""Logging configuration setup.

Provides logging configuration using:
- dictConfig for flexible configuration
- ContextInjectingFilter for automatic request context propagation
- All handlers on the root logger (child loggers propagate)
- Optional JSONL format for machine parsing
"""

from __future__ import annotations

import logging
import logging.config
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from batchgraph.core.settings.logs import LoggingSettings

logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
TEXT_FORMAT_WITH_REQUEST = (
    "%(asctime)s %(levelname)-8s %(name)s [%(request_id)s]: %(message)s"
)


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    settings_obj = log_settings
    if settings_obj is None:
        from batchgraph.core.settings import get_logging_settings

        settings_obj = get_logging_settings()

    configure_logging(
        log_level=settings_obj.level,
        json_logs=settings_obj.json_format,
        include_request_id=settings_obj.include_request_id,
    )
    _LOGGING_INITIALIZED = True


def build_logging_config(
    log_level: str = "INFO",
    *,
    json_logs: bool = False,
    include_request_id: bool = True,
) -> dict[str, Any]:
    """Build the dictConfig mapping used by ``configure_logging``."""
    if json_logs:
        formatter: dict[str, Any] = {
            "()": "batchgraph.infra.logging.formatters.JSONFormatter",
        }
    else:
        formatter = {
            "format": TEXT_FORMAT_WITH_REQUEST if include_request_id else TEXT_FORMAT,
            # request_id is absent outside of a request
            "defaults": {"request_id": "-"},
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "filters": {
            "context": {
                "()": "batchgraph.infra.logging.context.ContextInjectingFilter",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["context"],
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def configure_logging(
    log_level: str = "INFO",
    *,
    json_logs: bool = False,
    include_request_id: bool = True,
) -> None:
    """Configure logging with dictConfig.

    Args:
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_logs: Enable JSONL (JSON Lines) structured logging.
        include_request_id: Include the request ID in text-format records.

    Example:
        from batchgraph.core.settings import get_logging_settings
        settings = get_logging_settings()
        configure_logging(settings.level, json_logs=settings.json_format)
    """
    logging.config.dictConfig(
        build_logging_config(
            log_level,
            json_logs=json_logs,
            include_request_id=include_request_id,
        )
    )
    logger.debug(
        "Logging configured",
        extra={"log_level": log_level, "json_logs": json_logs},
    )


__all__ = ["build_logging_config", "configure_logging", "setup_logging"]
