"""Strawberry / graphql-core glue for the resolution engine."""

from batchgraph.features.graphql.context import GraphQLContext, execute_operation
from batchgraph.features.graphql.errors import (
    ResolutionErrorExtension,
    error_extensions,
    format_errors,
    to_graphql_error,
)
from batchgraph.features.graphql.validation import TreeBuilder, complexity_rule

__all__ = [
    "GraphQLContext",
    "ResolutionErrorExtension",
    "TreeBuilder",
    "complexity_rule",
    "error_extensions",
    "execute_operation",
    "format_errors",
    "to_graphql_error",
]
