"""Request-scoped cache in front of the batch scheduler.

The cache memoizes every load of one external request, keyed by the Key and
the cardinality of the load. A Key is registered with the scheduler at most
once per request, however many resolvers ask for it and whether or not the
first fetch has finished yet. Failures are cached too, so a failed Key is not
re-fetched within the same request.

Identical ``submit_query`` descriptors share one storage call the same way.

The cache lives and dies with its request; nothing is shared between
requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from batchgraph.features.resolution.keys import Key

if TYPE_CHECKING:
    from batchgraph.core.pagination.schemas import Page
    from batchgraph.features.resolution.query import QueryDescriptor
    from batchgraph.features.resolution.scheduler import BatchScheduler, Handle

logger = logging.getLogger(__name__)

MISSING: Final = object()


@dataclass(eq=False, slots=True)
class _Entry:
    handle: Handle | None = None
    value: Any = MISSING
    error: BaseException | None = None

    @property
    def resolved(self) -> bool:
        return self.value is not MISSING or self.error is not None

    def result(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    query_hits: int = 0
    query_misses: int = 0


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


class RequestCache:
    """Memoizes loads and collection pages for one request.

    Usage:
        cache = RequestCache(scheduler)
        product = await cache.get_or_register(Key.of("product", id=17))
        again = await cache.get_or_register(Key.of("product", id=17))  # no fetch
    """

    def __init__(self, scheduler: BatchScheduler) -> None:
        self._scheduler = scheduler
        self._entries: dict[tuple[Key, bool], _Entry] = {}
        self._pages: dict[QueryDescriptor, asyncio.Future[Page]] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return (key, False) in self._entries or (key, True) in self._entries

    def peek(self, key: Key, *, many: bool = False) -> Any:
        """Return the resolved value for ``key`` without fetching.

        Returns MISSING when the Key has not been resolved in this request.
        A cached failure is re-raised.
        """
        entry = self._entries.get((key, many))
        if entry is None or not entry.resolved:
            return MISSING
        return entry.result()

    def prime(self, key: Key, value: Any, *, many: bool = False) -> bool:
        """Store ``value`` under ``key`` unless the Key is already known.

        Returns True if the value was stored.
        """
        slot = (key, many)
        if slot in self._entries:
            return False
        self._entries[slot] = _Entry(value=value)
        return True

    async def get_or_register(self, key: Key, *, many: bool = False) -> Any:
        """Return the cached value for ``key`` or fetch it through the scheduler.

        Returns immediately, without suspending, when the Key is already
        resolved in this request. Concurrent callers for an unresolved Key
        share the single registration made by the first caller.

        Raises:
            InvalidQuery: If the Key's entity type or bind fields are invalid.
            FetchFailed: If the batch holding the Key failed.
            Cancelled: If the request was cancelled.
        """
        slot = (key, many)
        entry = self._entries.get(slot)
        if entry is not None:
            self.stats.hits += 1
            if entry.resolved:
                return entry.result()
            assert entry.handle is not None
            return await entry.handle

        self.stats.misses += 1
        handle = self._scheduler.register(key, many=many)
        entry = self._entries[slot] = _Entry(handle=handle)

        def store(done: Handle) -> None:
            error = done.exception()
            if error is not None:
                entry.error = error
            else:
                entry.value = done.result()
            entry.handle = None

        if handle.done():
            store(handle)
            return entry.result()
        handle.add_done_callback(store)
        return await handle

    async def get_or_submit(
        self,
        descriptor: QueryDescriptor,
        run: Callable[[QueryDescriptor], Awaitable[Page]],
    ) -> Page:
        """Return the cached page for ``descriptor`` or produce it with ``run``."""
        future = self._pages.get(descriptor)
        if future is not None:
            self.stats.query_hits += 1
            return await asyncio.shield(future)

        self.stats.query_misses += 1
        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._pages[descriptor] = future
        try:
            page = await run(descriptor)
        except asyncio.CancelledError:
            del self._pages[descriptor]
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            raise
        future.set_result(page)
        return page

    def clear(self) -> None:
        """Discard every entry (called when the request ends)."""
        if self._entries or self._pages:
            logger.debug(
                "Discarding request cache",
                extra={
                    "entries": len(self._entries),
                    "pages": len(self._pages),
                    "hits": self.stats.hits,
                    "misses": self.stats.misses,
                },
            )
        self._entries.clear()
        self._pages.clear()


__all__ = ["MISSING", "CacheStats", "RequestCache"]
