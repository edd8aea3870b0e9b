"""Resolution engine configuration settings.

Controls pagination clamps, batch bounds, query cost limits and cursor signing.
Environment variables use RESOLVER_ prefix.
"""

from __future__ import annotations

import secrets

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResolverSettings(BaseSettings):
    """Resolution engine configuration.

    Environment variables use RESOLVER_ prefix.
    Example: RESOLVER_MAX_PAGE_SIZE=100, RESOLVER_MAX_QUERY_DEPTH=8
    """

    # Pagination clamps
    max_page_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Hard upper bound applied to every requested page size",
    )
    default_page_size: int = Field(
        default=50,
        ge=1,
        le=10_000,
        description="Page size used when a query does not request one",
    )

    # Query limits for security
    max_query_depth: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum resolution tree depth (depth_limit)",
    )
    max_complexity: int = Field(
        default=1000,
        ge=1,
        le=1_000_000,
        description="Maximum resolution tree cost (cost_limit)",
    )

    # Batch bounds
    max_batch_size: int = Field(
        default=500,
        ge=1,
        le=100_000,
        description="Maximum keys merged into one batch fetch; extra keys roll into the next tick",
    )
    max_batch_rows: int = Field(
        default=10_000,
        ge=1,
        le=1_000_000,
        description="Maximum rows one merged batch fetch may return",
    )

    # Timeouts
    fetch_timeout: float | None = Field(
        default=None,
        gt=0,
        le=600.0,
        description="Seconds allowed per storage fetch (None disables)",
    )
    request_timeout: float | None = Field(
        default=None,
        gt=0,
        le=3600.0,
        description="Seconds allowed per external request (None disables)",
    )

    # Cursor signing
    cursor_secret: SecretStr = Field(
        default_factory=lambda: SecretStr(secrets.token_urlsafe(32)),
        description="HMAC key for pagination cursors (random per process when unset)",
    )

    model_config = SettingsConfigDict(
        env_prefix="RESOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def validate_page_sizes(self) -> ResolverSettings:
        """Ensure the default page size fits inside the clamp."""
        if self.default_page_size > self.max_page_size:
            msg = (
                f"default_page_size ({self.default_page_size}) must not exceed "
                f"max_page_size ({self.max_page_size})"
            )
            raise ValueError(msg)
        return self

    def clamp_limit(self, limit: int | None) -> int:
        """Clamp a requested page size to ``[1, max_page_size]``."""
        if limit is None:
            return self.default_page_size
        return max(1, min(limit, self.max_page_size))
