"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from batchgraph.core.settings.loader import get_resolver_settings

    settings = get_resolver_settings()  # First call: loads and validates
    settings = get_resolver_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    get_resolver_settings.cache_clear()

    Or pass an explicit instance:
    settings = ResolverSettings(max_page_size=10)
"""

from __future__ import annotations

from functools import lru_cache

from .logs import LoggingSettings
from .resolver import ResolverSettings


@lru_cache(maxsize=1)
def get_resolver_settings() -> ResolverSettings:
    """Get cached resolution engine settings.

    Returns:
        Validated and frozen ResolverSettings instance.
    """
    return ResolverSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear every cached settings instance (used by tests)."""
    get_resolver_settings.cache_clear()
    get_logging_settings.cache_clear()
