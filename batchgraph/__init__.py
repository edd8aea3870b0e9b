"""batchgraph: batched, cached resolution of nested relational data.

Usage:
    from batchgraph import EntityRegistry, EntityType, Key, ResolutionEngine

    engine = ResolutionEngine(registry)
    async with engine.request() as ctx:
        product = await ctx.register_or_get(Key.of("product", id=17))
"""

from batchgraph.core.exceptions import (
    AppException,
    Cancelled,
    FetchFailed,
    InvalidQuery,
    QueryTooExpensive,
    ResolutionError,
    StaleCursor,
)
from batchgraph.core.pagination import CursorCodec, Page
from batchgraph.core.settings import ResolverSettings
from batchgraph.features.resolution import (
    NOT_FOUND,
    ComplexityGuard,
    EntityRegistry,
    EntityType,
    FieldRegistry,
    Key,
    QueryDescriptor,
    ResolutionContext,
    ResolutionEngine,
    ResolutionNode,
    Selection,
)

__version__ = "0.1.0"

__all__ = [
    "NOT_FOUND",
    "AppException",
    "Cancelled",
    "ComplexityGuard",
    "CursorCodec",
    "EntityRegistry",
    "EntityType",
    "FetchFailed",
    "FieldRegistry",
    "InvalidQuery",
    "Key",
    "Page",
    "QueryDescriptor",
    "QueryTooExpensive",
    "ResolutionContext",
    "ResolutionEngine",
    "ResolutionError",
    "ResolutionNode",
    "ResolverSettings",
    "Selection",
    "StaleCursor",
    "__version__",
]
