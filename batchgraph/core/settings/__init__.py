"""Pydantic Settings v2 configuration.

Settings are split by concern (resolver/logging), read from environment
variables (and an optional ``.env`` file), validated once and frozen.

Import settings via cached loaders:
    from batchgraph.core.settings import get_resolver_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .loader import clear_all_caches, get_logging_settings, get_resolver_settings
from .logs import LoggingSettings
from .resolver import ResolverSettings

__all__ = [
    "LoggingSettings",
    "ResolverSettings",
    "clear_all_caches",
    "get_logging_settings",
    "get_resolver_settings",
]
