"""Batched, cached resolution of nested relational data.

Resolvers load related records through ``ResolutionContext.register_or_get``;
loads raised in the same tick are merged into one storage call per entity
type and memoized for the rest of the request.
"""

from batchgraph.features.resolution.cache import MISSING, RequestCache
from batchgraph.features.resolution.complexity import (
    ComplexityGuard,
    ComplexityReport,
    GraphNode,
    ResolutionGraph,
    ResolutionNode,
    measure,
)
from batchgraph.features.resolution.context import ResolutionContext
from batchgraph.features.resolution.engine import ResolutionEngine
from batchgraph.features.resolution.executor import (
    ExecutionResult,
    Executor,
    FieldError,
    Selection,
)
from batchgraph.features.resolution.fields import (
    FieldDefinition,
    FieldRegistry,
    belongs_to,
    collection,
    has_many,
    limit_arity,
    scalar,
)
from batchgraph.features.resolution.keys import NOT_FOUND, Key, Record
from batchgraph.features.resolution.query import (
    Filter,
    FilterOperator,
    QueryDescriptor,
    SortDirection,
    SortField,
)
from batchgraph.features.resolution.registry import EntityRegistry, EntityType
from batchgraph.features.resolution.scheduler import BatchScheduler, Handle

__all__ = [
    "MISSING",
    "NOT_FOUND",
    "BatchScheduler",
    "ComplexityGuard",
    "ComplexityReport",
    "EntityRegistry",
    "EntityType",
    "ExecutionResult",
    "Executor",
    "FieldDefinition",
    "FieldError",
    "FieldRegistry",
    "Filter",
    "FilterOperator",
    "GraphNode",
    "Handle",
    "Key",
    "QueryDescriptor",
    "Record",
    "RequestCache",
    "ResolutionContext",
    "ResolutionEngine",
    "ResolutionGraph",
    "ResolutionNode",
    "Selection",
    "SortDirection",
    "SortField",
    "belongs_to",
    "collection",
    "has_many",
    "limit_arity",
    "measure",
    "scalar",
]
