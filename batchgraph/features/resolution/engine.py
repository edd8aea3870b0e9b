"""Resolution engine: process-wide configuration plus the request lifecycle.

The engine is built once at startup from the entity registry, the field
registry and the settings. Every external request gets its own
ResolutionContext (scheduler, cache, guard) from ``engine.request()``;
leaving the block discards the cache and fails anything still pending with
``Cancelled``.

Usage:
    engine = ResolutionEngine(registry, fields)

    result = await engine.execute(
        [Selection("users", {"limit": 10}, children=(Selection("name"),))],
        identity=current_user,
    )

    async with engine.request(identity=current_user) as ctx:
        page = await ctx.submit_query(ctx.query("product").with_limit(20))
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import Cancelled
from batchgraph.core.pagination.cursor import CursorCodec
from batchgraph.core.settings import get_resolver_settings
from batchgraph.features.resolution.context import ResolutionContext
from batchgraph.features.resolution.executor import ExecutionResult, Executor, Selection
from batchgraph.features.resolution.fields import FieldRegistry
from batchgraph.infra.logging.context import log_context, set_log_context

if TYPE_CHECKING:
    from batchgraph.core.settings.resolver import ResolverSettings
    from batchgraph.features.resolution.registry import EntityRegistry

logger = logging.getLogger(__name__)


class ResolutionEngine:
    """Entry point the surrounding API layer talks to."""

    def __init__(
        self,
        registry: EntityRegistry,
        fields: FieldRegistry | None = None,
        settings: ResolverSettings | None = None,
        *,
        codec: CursorCodec | None = None,
    ) -> None:
        self.registry = registry
        self.fields = fields or FieldRegistry()
        self.settings = settings or get_resolver_settings()
        self.codec = codec or CursorCodec(self.settings.cursor_secret)
        self.executor = Executor(self.fields)

    @asynccontextmanager
    async def request(
        self,
        *,
        identity: Any = None,
        request_id: str | None = None,
    ) -> AsyncIterator[ResolutionContext]:
        """Open a request scope.

        The context must not be used after the block exits.
        """
        request_id = request_id or uuid.uuid4().hex
        ctx = ResolutionContext.create(
            self.registry,
            self.settings,
            self.codec,
            identity=identity,
            request_id=request_id,
        )
        with log_context(request_id=request_id):
            if identity is not None:
                set_log_context(identity=str(identity))
            try:
                yield ctx
            except asyncio.CancelledError:
                logger.info("Request cancelled", extra={"pending": ctx.scheduler.has_pending()})
                ctx.scheduler.close(Cancelled())
                raise
            except BaseException:
                ctx.scheduler.close(Cancelled("Request aborted"))
                raise
            finally:
                ctx.scheduler.close(Cancelled("Request finished"))
                ctx.cache.clear()
                logger.debug(
                    "Request finished",
                    extra={
                        "ticks": ctx.scheduler.stats.ticks,
                        "fetch_calls": ctx.scheduler.stats.fetch_calls,
                        "cache_hits": ctx.cache.stats.hits,
                        "cache_misses": ctx.cache.stats.misses,
                    },
                )

    async def execute(
        self,
        selections: Sequence[Selection],
        *,
        identity: Any = None,
        request_id: str | None = None,
        root: Any = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Plan, guard and resolve one selection tree in its own request scope.

        Args:
            selections: Root selections
            identity: Caller identity made available to resolvers
            request_id: Request id for logging (generated when omitted)
            root: Parent value passed to root resolvers
            timeout: Seconds before the request is cancelled; defaults to
                ``settings.request_timeout``

        Raises:
            InvalidQuery: If the selection tree does not fit the field registry.
            QueryTooExpensive: If the tree exceeds depth or cost limits.
            Cancelled: If the request timed out.
        """
        timeout = timeout if timeout is not None else self.settings.request_timeout
        async with self.request(identity=identity, request_id=request_id) as ctx:
            try:
                async with asyncio.timeout(timeout):
                    return await self.executor.execute(selections, ctx, root=root)
            except TimeoutError:
                logger.info("Request timed out", extra={"timeout": timeout})
                error = Cancelled(f"Request timed out after {timeout}s")
                ctx.scheduler.close(error)
                raise error from None


__all__ = ["ResolutionEngine"]
