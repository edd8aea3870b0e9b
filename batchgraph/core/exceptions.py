"""Custom exception classes for the resolution engine."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    Follows RFC 7807 Problem Details so the surrounding API layer can
    render any engine failure without knowing its concrete type.

    Attributes:
        status_code: HTTP status code suggested for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=422,
            detail="Unknown filter field 'colour' for entity 'product'",
            type="invalid-query",
            extra={"entity_type": "product", "field": "colour"},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for HTTP status code."""
        titles = {
            400: "Bad Request",
            409: "Conflict",
            422: "Unprocessable Entity",
            499: "Client Closed Request",
            500: "Internal Server Error",
            502: "Bad Gateway",
            504: "Gateway Timeout",
        }
        return titles.get(status_code, "Error")

    def to_problem(self) -> dict[str, Any]:
        """Render the exception as an RFC 7807 problem document."""
        return {
            "type": self.type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
            **self.extra,
        }


class ResolutionError(AppException):
    """Base class for every failure raised by the resolution engine.

    Subclasses define a stable ``code`` that API glue exposes to clients
    (for example in GraphQL ``extensions.code``).
    """

    code = "RESOLUTION_ERROR"


class InvalidQuery(ResolutionError):
    """Raised when a query descriptor cannot be composed.

    Covers unknown filter or sort fields, unknown entity types, malformed
    cursors and invalid limits. Raised at composition time, so the storage
    collaborator never sees the offending query.

    Example:
        raise InvalidQuery(
            detail="Unknown sort field 'colour' for entity 'product'",
            extra={"entity_type": "product", "field": "colour"},
        )
    """

    code = "INVALID_QUERY"

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(
            status_code=422,
            detail=detail,
            type="invalid-query",
            title="Invalid Query",
            extra=extra,
        )


class StaleCursor(ResolutionError):
    """Raised when a cursor is replayed against a different sort order."""

    code = "STALE_CURSOR"

    def __init__(
        self,
        detail: str = "Cursor was issued for a different sort order",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            detail=detail,
            type="stale-cursor",
            title="Stale Cursor",
            extra=extra,
        )


class QueryTooExpensive(ResolutionError):
    """Raised by the complexity guard before any storage access occurs.

    Example:
        raise QueryTooExpensive(
            detail="Query depth 6 exceeds limit of 5",
            cost=120,
            depth=6,
            cost_limit=1000,
            depth_limit=5,
        )
    """

    code = "QUERY_TOO_EXPENSIVE"

    def __init__(
        self,
        detail: str,
        *,
        cost: int | None = None,
        depth: int | None = None,
        cost_limit: int | None = None,
        depth_limit: int | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.cost = cost
        self.depth = depth
        self.cost_limit = cost_limit
        self.depth_limit = depth_limit
        super().__init__(
            status_code=400,
            detail=detail,
            type="query-too-expensive",
            title="Query Too Expensive",
            extra={
                "cost": cost,
                "depth": depth,
                "cost_limit": cost_limit,
                "depth_limit": depth_limit,
                **(extra or {}),
            },
        )


class FetchFailed(ResolutionError):
    """Raised for every waiter of a Batch whose storage fetch failed.

    The storage exception, when there is one, is chained as ``__cause__``.
    One instance is shared by all waiters of the failed Batch.
    """

    code = "FETCH_FAILED"

    def __init__(
        self,
        entity_type: str,
        detail: str | None = None,
        *,
        key_count: int = 0,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.key_count = key_count
        super().__init__(
            status_code=502,
            detail=detail or f"Storage fetch failed for entity '{entity_type}'",
            type="fetch-failed",
            title="Fetch Failed",
            extra={"entity_type": entity_type, "key_count": key_count, **(extra or {})},
        )


class Cancelled(ResolutionError):
    """Raised for pending work when the external request is aborted."""

    code = "CANCELLED"

    def __init__(
        self,
        detail: str = "Request was cancelled",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=499,
            detail=detail,
            type="cancelled",
            title="Cancelled",
            extra=extra,
        )


__all__ = [
    "AppException",
    "Cancelled",
    "FetchFailed",
    "InvalidQuery",
    "QueryTooExpensive",
    "ResolutionError",
    "StaleCursor",
]
