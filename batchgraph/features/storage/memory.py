"""In-memory storage collaborator.

Evaluates QueryDescriptors against lists of plain dict rows: conjunctive
filters, the ``any_of`` membership disjunction, multi-column sort, keyset
seek after a decoded cursor, offset and limit. Every call is recorded, which
makes the store the storage-call counter the resolution tests assert on.

Nulls sort as the smallest value: first ascending, last descending.

Usage:
    store = InMemoryStore({"product": [{"id": 1, "price": 10}]})
    registry.register(EntityType("product", "id", fetch=store.fetcher("product")))
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from batchgraph.features.resolution.query import QueryDescriptor, SortDirection
from batchgraph.features.resolution.registry import FetchFn

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FetchCall:
    """One recorded storage call."""

    entity_type: str
    descriptor: QueryDescriptor
    row_count: int


@dataclass
class InMemoryStore:
    """Dict-backed tables with call recording and failure injection.

    Attributes:
        tables: Rows per entity type
        delay: Seconds each fetch sleeps before answering
        calls: Recorded storage calls, in order
        failures: Entity types whose next fetches raise the mapped exception
    """

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    delay: float = 0.0
    calls: list[FetchCall] = field(default_factory=list)
    failures: dict[str, Exception] = field(default_factory=dict)

    def insert(self, entity_type: str, *rows: Mapping[str, Any]) -> None:
        self.tables.setdefault(entity_type, []).extend(dict(row) for row in rows)

    def fail(self, entity_type: str, error: Exception | None = None) -> None:
        """Make every following fetch of ``entity_type`` raise ``error``."""
        self.failures[entity_type] = error or RuntimeError(f"storage unavailable: {entity_type}")

    def recover(self, entity_type: str) -> None:
        self.failures.pop(entity_type, None)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_for(self, entity_type: str) -> list[FetchCall]:
        return [call for call in self.calls if call.entity_type == entity_type]

    def reset_calls(self) -> None:
        self.calls.clear()

    def fetcher(self, entity_type: str) -> FetchFn:
        """Return the storage-fetch coroutine for ``entity_type``."""

        async def fetch(descriptor: QueryDescriptor) -> list[dict[str, Any]]:
            return await self.fetch(entity_type, descriptor)

        return fetch

    async def fetch(self, entity_type: str, descriptor: QueryDescriptor) -> list[dict[str, Any]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.failures.get(entity_type)
        if error is not None:
            self.calls.append(FetchCall(entity_type, descriptor, 0))
            raise error

        rows = evaluate(self.tables.get(entity_type, ()), descriptor)
        self.calls.append(FetchCall(entity_type, descriptor, len(rows)))
        logger.debug(
            "In-memory fetch",
            extra={"entity_type": entity_type, "row_count": len(rows)},
        )
        return rows


def evaluate(rows: Iterable[Mapping[str, Any]], descriptor: QueryDescriptor) -> list[dict[str, Any]]:
    """Apply a descriptor to rows and return copies of the selected page."""
    selected = [row for row in rows if descriptor.matches(row)]
    sort = [(term.field, term.direction) for term in descriptor.effective_sort]
    if sort:
        selected.sort(key=functools.cmp_to_key(functools.partial(_compare_rows, sort)))
    if descriptor.after is not None:
        selected = [
            row
            for row in selected
            if _compare_to_position(sort, row, descriptor.after) > 0
        ]
    if descriptor.offset:
        selected = selected[descriptor.offset :]
    return [dict(row) for row in selected[: descriptor.limit]]


def _compare_values(left: Any, right: Any) -> int:
    if left == right:
        return 0
    if left is None:
        return -1
    if right is None:
        return 1
    return -1 if left < right else 1


def _compare_rows(
    sort: Sequence[tuple[str, SortDirection]],
    left: Mapping[str, Any],
    right: Mapping[str, Any],
) -> int:
    return _compare_to_position(sort, left, tuple(right.get(name) for name, _ in sort))


def _compare_to_position(
    sort: Sequence[tuple[str, SortDirection]],
    row: Mapping[str, Any],
    position: Sequence[Any],
) -> int:
    """Order of ``row`` relative to a sort-key tuple under ``sort``."""
    for (name, direction), value in zip(sort, position, strict=True):
        result = _compare_values(row.get(name), value)
        if result:
            return -result if direction is SortDirection.DESC else result
    return 0


__all__ = ["FetchCall", "InMemoryStore", "evaluate"]
