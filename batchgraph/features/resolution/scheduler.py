"""Batch scheduler: coalesces fetches raised during one tick of resolution.

Resolvers call ``register(key)`` and await the returned handle. Registrations
for equal Keys share one PendingFetch. When resolution reaches a fixed point
(every tracked resolver is either finished or waiting on the scheduler), the
scheduler flushes the tick: one storage call per entity type, built from a
membership filter over all bind values of that type, with the rows
partitioned back to each Key.

Tick detection:
    Resolver tasks started through ``spawn``/``gather`` are tracked. Each
    tracked task holds one "runnable" unit while it can make progress and
    gives it up while it waits on a handle or on its children. A flush
    happens once no unit is held and a full event-loop pass produced no new
    registration. Code the scheduler cannot see (plain ``asyncio.gather``,
    awaiting external I/O while holding a unit) is covered by a fallback:
    a tick also ends after ``settle_passes`` consecutive quiet loop passes.
    The fallback can cost an extra tick but never deadlocks.

Failure policy:
    A storage error fails every PendingFetch of that Batch with the same
    FetchFailed. Other entity types flushed in the same tick are unaffected.
    Nothing is retried.

Usage:
    scheduler = BatchScheduler(registry, settings)
    handle = scheduler.register(Key.of("product", id=17))
    product = await handle
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Coroutine, Iterator, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import Cancelled, FetchFailed
from batchgraph.features.resolution.keys import NOT_FOUND, Key, Record
from batchgraph.features.resolution.query import (
    Filter,
    FilterOperator,
    QueryDescriptor,
    SortDirection,
    SortField,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from batchgraph.core.settings.resolver import ResolverSettings
    from batchgraph.features.resolution.registry import EntityRegistry, EntityType

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_PASSES = 8

LoadKey = tuple[Key, bool]


@dataclass(eq=False, slots=True)
class _Slot:
    scheduler: BatchScheduler
    task: asyncio.Task[Any] | None = None


_current_slot: ContextVar[_Slot | None] = ContextVar("batchgraph_slot", default=None)


@dataclass(eq=False, slots=True)
class _Waiter:
    tracked: bool
    handed: bool = False


@dataclass(eq=False, slots=True)
class _Group:
    remaining: int
    parent_tracked: bool
    handed: bool = False


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # Marks the exception retrieved so unawaited handles do not warn.
    if not future.cancelled():
        future.exception()


class PendingFetch:
    """One-shot future for a single load of one Key.

    ``many`` distinguishes a to-many load (all matching records) from a
    to-one load (exactly one record or NOT_FOUND) of the same Key.
    """

    __slots__ = ("future", "key", "many", "tick", "waiters")

    def __init__(self, key: Key, many: bool, future: asyncio.Future[Any], tick: int) -> None:
        self.key = key
        self.many = many
        self.future = future
        self.tick = tick
        self.waiters: list[_Waiter] = []
        future.add_done_callback(_consume_exception)

    @property
    def load_key(self) -> LoadKey:
        return (self.key, self.many)

    def attach(self, tracked: bool) -> _Waiter:
        waiter = _Waiter(tracked)
        self.waiters.append(waiter)
        return waiter

    def __repr__(self) -> str:
        return f"PendingFetch({self.key}, many={self.many}, waiters={len(self.waiters)})"


class Handle:
    """Awaitable returned by ``BatchScheduler.register``.

    Handles for equal Keys registered in the same tick share one
    PendingFetch, so they resolve to the same value.
    """

    __slots__ = ("_pending", "_scheduler")

    def __init__(self, scheduler: BatchScheduler, pending: PendingFetch) -> None:
        self._scheduler = scheduler
        self._pending = pending

    @property
    def key(self) -> Key:
        return self._pending.key

    @property
    def many(self) -> bool:
        return self._pending.many

    def done(self) -> bool:
        return self._pending.future.done()

    def result(self) -> Any:
        return self._pending.future.result()

    def exception(self) -> BaseException | None:
        return self._pending.future.exception()

    def add_done_callback(self, fn: Callable[[Handle], Any]) -> None:
        self._pending.future.add_done_callback(lambda _: fn(self))

    def shares_fetch_with(self, other: Handle) -> bool:
        return self._pending is other._pending

    def __await__(self) -> Any:
        return self._scheduler._wait(self._pending).__await__()


class Batch:
    """PendingFetches of one entity type collected within one tick."""

    def __init__(self, entity_type: str, tick: int) -> None:
        self.entity_type = entity_type
        self.tick = tick
        self._fetches: dict[LoadKey, PendingFetch] = {}

    def add(self, pending: PendingFetch) -> None:
        self._fetches[pending.load_key] = pending

    def __len__(self) -> int:
        return len(self._fetches)

    def __iter__(self) -> Iterator[PendingFetch]:
        return iter(self._fetches.values())

    def shapes(self) -> dict[tuple[str, ...], list[tuple[Any, ...]]]:
        """Distinct bind values per bind shape, in registration order."""
        shapes: dict[tuple[str, ...], dict[tuple[Any, ...], None]] = {}
        for pending in self:
            shapes.setdefault(pending.key.shape, {})[pending.key.values] = None
        return {shape: list(values) for shape, values in shapes.items()}

    def to_descriptor(self, entity: EntityType, max_rows: int) -> QueryDescriptor:
        """Merge every Key of the batch into one membership query.

        One bind shape becomes a single ``IN`` filter; several shapes become
        an ``any_of`` disjunction of ``IN`` filters. The limit probes one row
        past ``max_rows`` so oversized results can be detected.
        """
        membership: list[Filter] = []
        for shape, values in self.shapes().items():
            if len(shape) == 1:
                membership.append(
                    Filter(shape[0], FilterOperator.IN, tuple(v[0] for v in values))
                )
            else:
                membership.append(Filter(shape, FilterOperator.IN, tuple(values)))

        filters, any_of = (tuple(membership), ()) if len(membership) == 1 else ((), tuple(membership))
        return QueryDescriptor(
            entity_type=entity.name,
            filters=filters,
            any_of=any_of,
            sort=(SortField(entity.primary_key, SortDirection.ASC),),
            limit=max_rows + 1,
            entity=entity,
            max_page_size=max_rows + 1,
        )

    def partition(self, rows: Sequence[Record], max_rows: int) -> list[tuple[PendingFetch, Any]]:
        """Match fetched rows back to each PendingFetch.

        Rows are frozen into read-only mappings. To-one loads resolve to
        their single row or NOT_FOUND; to-many loads resolve to a tuple of
        rows in storage order.

        Raises:
            FetchFailed: If storage returned more than ``max_rows`` rows or
                several rows for a to-one Key.
        """
        if len(rows) > max_rows:
            raise FetchFailed(
                self.entity_type,
                f"Batch fetch for '{self.entity_type}' returned more than {max_rows} rows",
                key_count=len(self),
                extra={"max_rows": max_rows},
            )

        shapes = list(self.shapes())
        index: dict[tuple[str, ...], dict[tuple[Any, ...], list[Record]]] = {
            shape: {} for shape in shapes
        }
        for row in rows:
            frozen = MappingProxyType(dict(row))
            for shape in shapes:
                values = tuple(frozen.get(name) for name in shape)
                try:
                    index[shape].setdefault(values, []).append(frozen)
                except TypeError:
                    # unhashable bind value: cannot match any scalar key
                    continue

        results: list[tuple[PendingFetch, Any]] = []
        for pending in self:
            matched = index[pending.key.shape].get(pending.key.values, [])
            if pending.many:
                results.append((pending, tuple(matched)))
            elif not matched:
                results.append((pending, NOT_FOUND))
            elif len(matched) == 1:
                results.append((pending, matched[0]))
            else:
                logger.error(
                    "Storage returned several rows for a to-one key",
                    extra={
                        "entity_type": self.entity_type,
                        "key": str(pending.key),
                        "row_count": len(matched),
                    },
                )
                raise FetchFailed(
                    self.entity_type,
                    f"Storage returned {len(matched)} rows for to-one key {pending.key}",
                    key_count=len(self),
                    extra={"key": str(pending.key)},
                )
        return results


@dataclass
class SchedulerStats:
    """Counters exposed for tests and debug logging."""

    registrations: int = 0
    deduplicated: int = 0
    ticks: int = 0
    fetch_calls: int = 0
    keys_batched: int = 0
    failed_batches: int = 0
    fetch_calls_by_type: dict[str, int] = field(default_factory=dict)


class BatchScheduler:
    """Collects pending fetches per tick and flushes them as bulk fetches.

    One scheduler belongs to one external request. It is not thread-safe:
    all registrations happen on the request's event loop, which serializes
    the dedup step.
    """

    def __init__(
        self,
        registry: EntityRegistry,
        settings: ResolverSettings,
        *,
        settle_passes: int = DEFAULT_SETTLE_PASSES,
    ) -> None:
        if settle_passes < 1:
            raise ValueError("settle_passes must be >= 1")
        self._registry = registry
        self._settings = settings
        self._settle_passes = settle_passes

        self._batches: dict[str, Batch] = {}
        self._overflow: dict[str, deque[PendingFetch]] = {}
        self._unresolved: dict[LoadKey, PendingFetch] = {}
        self._tick = 0
        self._registrations = 0

        self._runnable = 0
        self._drain_task: asyncio.Task[None] | None = None
        self._closed: Cancelled | None = None
        self.stats = SchedulerStats()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def tick(self) -> int:
        """Number of ticks flushed so far."""
        return self._tick

    @property
    def closed(self) -> bool:
        return self._closed is not None

    def has_pending(self) -> bool:
        return bool(self._unresolved)

    def register(self, key: Key, *, many: bool = False) -> Handle:
        """Register a fetch of ``key`` for the current tick.

        Args:
            key: Identity of the fetch
            many: Resolve to every matching record instead of exactly one

        Returns:
            Awaitable handle resolving to a Record, NOT_FOUND or (for
            ``many``) a tuple of Records

        Raises:
            InvalidQuery: If the entity type is unknown or a bind field is
                not filterable
        """
        entity = self._registry.get(key.entity_type)
        for name in key.shape:
            entity.check_filter_field(name)

        loop = asyncio.get_running_loop()
        if self._closed is not None:
            pending = PendingFetch(key, many, loop.create_future(), self._tick)
            pending.future.set_exception(self._closed)
            return Handle(self, pending)

        load_key = (key, many)
        pending = self._unresolved.get(load_key)
        if pending is not None:
            self.stats.deduplicated += 1
            return Handle(self, pending)

        pending = PendingFetch(key, many, loop.create_future(), self._tick)
        self._unresolved[load_key] = pending
        self._enqueue(pending)
        self._registrations += 1
        self.stats.registrations += 1

        if self._drain_task is None:
            self._drain_task = loop.create_task(self._drain())
        return Handle(self, pending)

    def _enqueue(self, pending: PendingFetch) -> None:
        entity_type = pending.key.entity_type
        batch = self._batches.get(entity_type)
        if batch is None:
            batch = self._batches[entity_type] = Batch(entity_type, self._tick)
        if len(batch) < self._settings.max_batch_size:
            batch.add(pending)
        else:
            self._overflow.setdefault(entity_type, deque()).append(pending)

    def _refill_from_overflow(self) -> None:
        limit = self._settings.max_batch_size
        for entity_type, queue in list(self._overflow.items()):
            batch = self._batches.setdefault(entity_type, Batch(entity_type, self._tick))
            while queue and len(batch) < limit:
                batch.add(queue.popleft())
            if not queue:
                del self._overflow[entity_type]

    # ------------------------------------------------------------------
    # Runnable accounting
    # ------------------------------------------------------------------

    def _acquire(self) -> None:
        self._runnable += 1

    def _release(self) -> None:
        self._runnable -= 1

    def _tracked_slot(self) -> _Slot | None:
        slot = _current_slot.get()
        if slot is None or slot.scheduler is not self:
            return None
        if slot.task is not asyncio.current_task():
            return None
        return slot

    def spawn(self, aw: Awaitable[Any]) -> asyncio.Task[Any]:
        """Run ``aw`` as a tracked resolver task."""
        return self._spawn(aw, None)

    def _spawn(self, aw: Awaitable[Any], group: _Group | None) -> asyncio.Task[Any]:
        slot = _Slot(self)

        async def run() -> Any:
            slot.task = asyncio.current_task()
            _current_slot.set(slot)
            return await aw

        self._acquire()
        task = asyncio.get_running_loop().create_task(run())

        def finished(_: asyncio.Task[Any]) -> None:
            if group is not None:
                group.remaining -= 1
                if group.remaining == 0 and group.parent_tracked and not group.handed:
                    # the parent is ready again before this child lets go
                    group.handed = True
                    self._acquire()
            self._release()

        task.add_done_callback(finished)
        return task

    async def gather(self, *aws: Awaitable[Any]) -> list[Any]:
        """Run awaitables as tracked child tasks and wait for all of them.

        Exceptions are returned in place of results, like
        ``asyncio.gather(..., return_exceptions=True)``.
        """
        if not aws:
            return []
        slot = self._tracked_slot()
        group = _Group(remaining=len(aws), parent_tracked=slot is not None)
        tasks = [self._spawn(aw, group) for aw in aws]
        if slot is not None:
            self._release()
        try:
            return await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            if slot is not None and not group.handed:
                group.handed = True
                self._acquire()

    @asynccontextmanager
    async def suspended(self) -> AsyncIterator[None]:
        """Give up the caller's runnable unit while it awaits external work."""
        slot = self._tracked_slot()
        if slot is not None:
            self._release()
        try:
            yield
        finally:
            if slot is not None:
                self._acquire()

    async def _wait(self, pending: PendingFetch) -> Any:
        if pending.future.done():
            return pending.future.result()
        tracked = self._tracked_slot() is not None
        waiter = pending.attach(tracked)
        if tracked:
            self._release()
        try:
            return await asyncio.shield(pending.future)
        finally:
            if tracked and not waiter.handed:
                waiter.handed = True
                self._acquire()

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        _current_slot.set(None)
        try:
            while self._batches:
                await self._settle()
                if self._closed is not None:
                    return
                await self._flush()
        finally:
            self._drain_task = None

    async def _settle(self) -> None:
        """Wait until the current tick has reached a fixed point."""
        seen = self._registrations
        quiet = 0
        while True:
            await asyncio.sleep(0)
            if self._registrations != seen:
                seen = self._registrations
                quiet = 0
                continue
            quiet += 1
            if self._runnable <= 0 or quiet >= self._settle_passes:
                return

    async def _flush(self) -> None:
        batches = list(self._batches.values())
        self._batches = {}
        self._tick += 1
        self.stats.ticks += 1
        self._refill_from_overflow()
        await asyncio.gather(*(self._dispatch(batch) for batch in batches))

    async def _dispatch(self, batch: Batch) -> None:
        max_rows = self._settings.max_batch_rows
        timeout = self._settings.fetch_timeout
        counts = self.stats.fetch_calls_by_type
        counts[batch.entity_type] = counts.get(batch.entity_type, 0) + 1
        self.stats.fetch_calls += 1
        self.stats.keys_batched += len(batch)

        logger.debug(
            "Dispatching batch",
            extra={
                "entity_type": batch.entity_type,
                "key_count": len(batch),
                "tick": self._tick,
            },
        )
        try:
            entity = self._registry.get(batch.entity_type)
            descriptor = batch.to_descriptor(entity, max_rows)
            async with asyncio.timeout(timeout):
                rows = await entity.fetch(descriptor)
            results = batch.partition(rows, max_rows)
        except FetchFailed as exc:
            error = exc
        except TimeoutError as exc:
            error = FetchFailed(
                batch.entity_type,
                f"Storage fetch for '{batch.entity_type}' timed out after {timeout}s",
                key_count=len(batch),
            )
            error.__cause__ = exc
        except Exception as exc:
            error = FetchFailed(batch.entity_type, key_count=len(batch))
            error.__cause__ = exc
        else:
            for pending, value in results:
                self._resolve(pending, value=value)
            return

        self.stats.failed_batches += 1
        logger.warning(
            "Batch fetch failed",
            extra={
                "entity_type": batch.entity_type,
                "key_count": len(batch),
                "tick": self._tick,
                "error": str(error.__cause__ or error),
            },
        )
        for pending in batch:
            self._resolve(pending, error=error)

    def _resolve(
        self,
        pending: PendingFetch,
        *,
        value: Any = None,
        error: BaseException | None = None,
    ) -> None:
        self._unresolved.pop(pending.load_key, None)
        if pending.future.done():
            return
        for waiter in pending.waiters:
            if waiter.tracked and not waiter.handed:
                waiter.handed = True
                self._acquire()
        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(value)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def close(self, error: Cancelled | None = None) -> None:
        """Fail every unresolved fetch with Cancelled and stop flushing.

        In-flight storage calls are cancelled on a best-effort basis.
        Registrations after close resolve to the same Cancelled error.
        """
        if self._closed is not None:
            return
        self._closed = error or Cancelled()
        pending = list(self._unresolved.values())
        self._batches.clear()
        self._overflow.clear()
        for item in pending:
            self._resolve(item, error=self._closed)
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        if pending:
            logger.info(
                "Scheduler closed with pending fetches",
                extra={"pending": len(pending), "reason": self._closed.detail},
            )


__all__ = [
    "Batch",
    "BatchScheduler",
    "Handle",
    "PendingFetch",
    "SchedulerStats",
]
