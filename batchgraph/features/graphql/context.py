"""GraphQL context for request-scoped resolution.

The context is created fresh for each GraphQL request and gives resolvers
the ResolutionContext of that request (scheduler, cache, guard, identity).

Example usage in a resolver:
    @strawberry.field
    async def category(self, info: Info[GraphQLContext, None]) -> CategoryType | None:
        record = await info.context.resolution.load("category", id=self.category_id)
        return CategoryType.from_record(record) if record else None
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from strawberry import Schema
    from strawberry.types import ExecutionResult

    from batchgraph.features.resolution.context import ResolutionContext
    from batchgraph.features.resolution.engine import ResolutionEngine


@dataclass
class GraphQLContext:
    """Request context for GraphQL operations."""

    resolution: ResolutionContext

    @property
    def identity(self) -> Any:
        return self.resolution.identity

    @property
    def request_id(self) -> str | None:
        return self.resolution.request_id


async def execute_operation(
    schema: Schema,
    engine: ResolutionEngine,
    query: str,
    *,
    variable_values: dict[str, Any] | None = None,
    operation_name: str | None = None,
    identity: Any = None,
    request_id: str | None = None,
) -> ExecutionResult:
    """Execute one GraphQL operation inside its own resolution request scope."""
    async with engine.request(identity=identity, request_id=request_id) as ctx:
        return await schema.execute(
            query,
            variable_values=variable_values,
            operation_name=operation_name,
            context_value=GraphQLContext(ctx),
        )


__all__ = ["GraphQLContext", "execute_operation"]
