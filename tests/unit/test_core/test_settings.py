"""Tests for resolver and logging settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from batchgraph.core.settings import (
    LoggingSettings,
    ResolverSettings,
    get_logging_settings,
    get_resolver_settings,
)


class TestResolverSettings:
    """Resolver limits, clamps and environment loading."""

    def test_defaults(self):
        """Defaults match the documented limits."""
        settings = ResolverSettings()

        assert settings.max_page_size == 100
        assert settings.default_page_size == 50
        assert settings.max_query_depth == 10
        assert settings.max_complexity == 1000
        assert settings.max_batch_size == 500
        assert settings.fetch_timeout is None

    def test_random_secret_per_instance(self):
        """Without configuration a random cursor secret is generated."""
        first = ResolverSettings().cursor_secret.get_secret_value()
        second = ResolverSettings().cursor_secret.get_secret_value()
        assert first and second and first != second

    def test_env_prefix(self, monkeypatch):
        """RESOLVER_ environment variables override defaults."""
        monkeypatch.setenv("RESOLVER_MAX_PAGE_SIZE", "20")
        monkeypatch.setenv("RESOLVER_DEFAULT_PAGE_SIZE", "10")
        monkeypatch.setenv("RESOLVER_CURSOR_SECRET", "from-env")

        settings = ResolverSettings()

        assert settings.max_page_size == 20
        assert settings.cursor_secret.get_secret_value() == "from-env"

    def test_default_page_size_must_fit(self):
        """The default page size cannot exceed the clamp."""
        with pytest.raises(ValidationError, match="default_page_size"):
            ResolverSettings(max_page_size=10, default_page_size=20)

    def test_frozen(self):
        """Settings are immutable once validated."""
        settings = ResolverSettings()
        with pytest.raises(ValidationError):
            settings.max_page_size = 5

    @pytest.mark.parametrize(
        ("requested", "expected"),
        [(None, 50), (10_000, 100), (0, 1), (-5, 1), (42, 42)],
    )
    def test_clamp_limit(self, requested, expected):
        """Requested page sizes are clamped to [1, max_page_size]."""
        assert ResolverSettings().clamp_limit(requested) == expected


class TestLoggingSettings:
    """Logging configuration."""

    def test_level_normalized(self, monkeypatch):
        """Levels are accepted in any case."""
        monkeypatch.setenv("LOG_LEVEL", "debug")
        settings = LoggingSettings()
        assert settings.level == "DEBUG"
        assert settings.level_int == 10

    def test_invalid_level(self):
        """Unknown levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingSettings(level="LOUD")


class TestLoaders:
    """Cached loaders."""

    def test_cached_instance(self):
        """Loaders return the same instance until the cache is cleared."""
        assert get_resolver_settings() is get_resolver_settings()
        assert get_logging_settings() is get_logging_settings()

    def test_cache_clear_reloads(self, monkeypatch):
        """Clearing the cache picks up new environment values."""
        before = get_resolver_settings()
        monkeypatch.setenv("RESOLVER_MAX_COMPLEXITY", "77")
        get_resolver_settings.cache_clear()

        after = get_resolver_settings()

        assert after is not before
        assert after.max_complexity == 77
