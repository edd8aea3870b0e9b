"""Mapping of resolution errors to GraphQL errors.

Every ResolutionError carries a stable ``code``. GraphQL clients receive it
as ``extensions.code`` together with the error's structured context, so they
can branch on the failure kind instead of parsing messages.

Usage:
    schema = strawberry.Schema(
        query=Query,
        extensions=[ResolutionErrorExtension],
    )
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterator, Sequence
from typing import Any

from graphql import GraphQLError, GraphQLFormattedError, Node
from strawberry.extensions import SchemaExtension

from batchgraph.core.exceptions import ResolutionError

logger = logging.getLogger(__name__)


def error_extensions(error: ResolutionError) -> dict[str, Any]:
    """``extensions`` payload for a resolution error."""
    extensions = {
        key: value
        for key, value in error.extra.items()
        if value is None or isinstance(value, (str, int, float, bool))
    }
    extensions["code"] = error.code
    return extensions


def to_graphql_error(
    error: ResolutionError,
    *,
    nodes: Collection[Node] | None = None,
    path: Sequence[str | int] | None = None,
) -> GraphQLError:
    """Wrap a resolution error as a GraphQLError with ``extensions.code``."""
    return GraphQLError(
        error.detail,
        nodes=nodes,
        path=path,
        original_error=error,
        extensions=error_extensions(error),
    )


def format_errors(errors: Sequence[Any]) -> list[GraphQLFormattedError]:
    """Format executor FieldErrors the way GraphQL responses do."""
    return [
        to_graphql_error(item.error, path=list(item.path)).formatted for item in errors
    ]


class ResolutionErrorExtension(SchemaExtension):
    """Attach ``extensions.code`` to errors raised by resolvers.

    Resolver exceptions reach the result wrapped in a GraphQLError; this
    extension copies the ResolutionError's code and context onto it after
    the operation finishes.
    """

    def on_operation(self) -> Iterator[None]:
        yield
        result = self.execution_context.result
        if result is None or not result.errors:
            return
        for error in result.errors:
            original = error.original_error
            if not isinstance(original, ResolutionError):
                continue
            error.extensions = {**(error.extensions or {}), **error_extensions(original)}
            logger.info(
                "Resolution error returned to client",
                extra={"code": original.code, "path": error.path},
            )


__all__ = [
    "ResolutionErrorExtension",
    "error_extensions",
    "format_errors",
    "to_graphql_error",
]
