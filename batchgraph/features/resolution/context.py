"""Explicit per-request resolution context.

The context is created fresh for each external request and passed as an
argument into every resolver call. It provides:
- The request cache and batch scheduler (for N+1 prevention)
- Query descriptor construction bound to the registry and cursor codec
- The complexity guard
- The caller identity and request id (for logging)

Example usage in a resolver:
    async def resolve_category(parent, args, ctx: ResolutionContext):
        record = await ctx.register_or_get(Key.of("category", id=parent["category_id"]))
        return None if record is NOT_FOUND else record
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import Cancelled, FetchFailed, InvalidQuery
from batchgraph.core.pagination.schemas import Page
from batchgraph.features.resolution.cache import RequestCache
from batchgraph.features.resolution.complexity import ComplexityGuard
from batchgraph.features.resolution.keys import Key, is_scalar
from batchgraph.features.resolution.query import QueryDescriptor
from batchgraph.features.resolution.scheduler import BatchScheduler

if TYPE_CHECKING:
    from batchgraph.core.pagination.cursor import CursorCodec
    from batchgraph.core.settings.resolver import ResolverSettings
    from batchgraph.features.resolution.complexity import (
        ComplexityReport,
        ResolutionGraph,
        ResolutionNode,
    )
    from batchgraph.features.resolution.registry import EntityRegistry

logger = logging.getLogger(__name__)


@dataclass
class ResolutionContext:
    """Request-scoped dependencies for resolvers.

    Only the three entry points ``register_or_get``, ``submit_query`` and
    ``check_complexity`` touch storage or limits; everything else is
    convenience on top of them.
    """

    registry: EntityRegistry
    settings: ResolverSettings
    codec: CursorCodec
    scheduler: BatchScheduler
    cache: RequestCache
    guard: ComplexityGuard
    identity: Any = None
    request_id: str | None = None
    state: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        registry: EntityRegistry,
        settings: ResolverSettings,
        codec: CursorCodec,
        *,
        identity: Any = None,
        request_id: str | None = None,
    ) -> ResolutionContext:
        """Build a context with a fresh scheduler and cache."""
        scheduler = BatchScheduler(registry, settings)
        return cls(
            registry=registry,
            settings=settings,
            codec=codec,
            scheduler=scheduler,
            cache=RequestCache(scheduler),
            guard=ComplexityGuard.from_settings(settings),
            identity=identity,
            request_id=request_id,
        )

    @property
    def cancelled(self) -> bool:
        return self.scheduler.closed

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def register_or_get(self, key: Key, *, many: bool = False) -> Any:
        """Resolve ``key`` from the request cache or through the next batch.

        Returns a read-only Record or NOT_FOUND (to-one), or a tuple of
        Records (``many``).
        """
        return await self.cache.get_or_register(key, many=many)

    async def submit_query(self, descriptor: QueryDescriptor) -> Page:
        """Fetch one page of a collection.

        Identical descriptors share one storage call within the request. A
        descriptor built without an entity type is validated against the
        entity's allow-lists before anything reaches storage.

        Raises:
            InvalidQuery: If the descriptor names an unknown entity type, an
                unknown filter or sort field, or a malformed cursor.
            FetchFailed: If the storage fetch failed or timed out.
            Cancelled: If the request was cancelled.
        """
        if descriptor.entity is None:
            descriptor = self._bind(descriptor)
        limit = self.settings.clamp_limit(descriptor.limit)
        if limit != descriptor.limit:
            descriptor = replace(descriptor, limit=limit)
        if self.scheduler.closed:
            raise Cancelled()
        async with self.scheduler.suspended():
            return await self.cache.get_or_submit(descriptor, self._run_query)

    def check_complexity(
        self,
        tree: ResolutionGraph | ResolutionNode | Iterable[ResolutionNode],
    ) -> ComplexityReport:
        """Run the complexity guard; raises QueryTooExpensive on rejection."""
        return self.guard.check(tree)

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def query(self, entity_type: str) -> QueryDescriptor:
        """Start a descriptor for ``entity_type`` with the default page size."""
        return QueryDescriptor.for_entity(
            self.registry.get(entity_type),
            max_page_size=self.settings.max_page_size,
            default_limit=self.settings.default_page_size,
            codec=self.codec,
        )

    async def load(self, entity_type: str, /, **binds: Any) -> Any:
        return await self.register_or_get(Key.of(entity_type, **binds))

    async def load_many(self, entity_type: str, /, **binds: Any) -> Any:
        return await self.register_or_get(Key.of(entity_type, **binds), many=True)

    async def gather(self, *aws: Awaitable[Any]) -> list[Any]:
        """Run awaitables concurrently as tracked resolver tasks.

        Exceptions are returned in place of results.
        """
        return await self.scheduler.gather(*aws)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bind(self, descriptor: QueryDescriptor) -> QueryDescriptor:
        # rebuilt through the with_* builders so every term passes the allow-lists
        if descriptor.any_of or (descriptor.after is not None and descriptor.cursor is None):
            raise InvalidQuery(
                "Membership groups and raw seek positions are internal to batching",
                extra={"entity_type": descriptor.entity_type},
            )
        bound = self.query(descriptor.entity_type)
        for item in descriptor.filters:
            if isinstance(item.field, tuple):
                raise InvalidQuery(
                    "Row-value filters are internal to batching",
                    extra={"entity_type": descriptor.entity_type},
                )
            bound = bound.with_filter(item.field, item.op, item.value)
        for term in descriptor.sort:
            bound = bound.with_sort(term.field, term.direction)
        bound = bound.with_limit(descriptor.limit).with_offset(descriptor.offset)
        return bound.with_cursor(descriptor.cursor)

    async def _run_query(self, descriptor: QueryDescriptor) -> Page:
        entity = descriptor.entity
        assert entity is not None
        # one extra row tells whether another page follows
        probe = replace(descriptor, limit=descriptor.limit + 1, max_page_size=descriptor.limit + 1)
        timeout = self.settings.fetch_timeout
        try:
            async with asyncio.timeout(timeout):
                rows = await entity.fetch(probe)
        except TimeoutError as exc:
            raise FetchFailed(
                entity.name,
                f"Storage fetch for '{entity.name}' timed out after {timeout}s",
            ) from exc
        except FetchFailed:
            raise
        except Exception as exc:
            logger.warning(
                "Collection fetch failed",
                extra={"entity_type": entity.name, "error": str(exc)},
            )
            raise FetchFailed(entity.name) from exc

        has_more = len(rows) > descriptor.limit
        items = tuple(MappingProxyType(dict(row)) for row in rows[: descriptor.limit])
        next_cursor = None
        if has_more and items:
            next_cursor = self.codec.create_cursor(
                items[-1],
                [term.field for term in descriptor.effective_sort],
                descriptor.fingerprint,
            )

        # page rows also answer later primary-key loads
        for item in items:
            pk_value = item.get(entity.primary_key)
            if pk_value is not None and is_scalar(pk_value):
                self.cache.prime(
                    Key.of(entity.name, {entity.primary_key: pk_value}),
                    item,
                )

        logger.debug(
            "Collection page fetched",
            extra={
                "entity_type": entity.name,
                "count": len(items),
                "has_more": has_more,
            },
        )
        return Page(
            entity_type=entity.name,
            items=items,
            next_cursor=next_cursor,
            has_more=has_more,
        )


__all__ = ["ResolutionContext"]
