"""Composable query descriptors for filtered, sorted and paginated collections.

A QueryDescriptor is immutable: every ``with_*`` call validates its input
against the entity type's allow-lists and returns a new descriptor, so a base
descriptor can be shared safely between resolution branches.

Usage:
    query = (
        ctx.query("product")
        .with_filter("category_id", "eq", 3)
        .with_sort("price", "desc")
        .with_limit(20)
    )
    page = await ctx.submit_query(query)
    next_page = await ctx.submit_query(query.with_cursor(page.next_cursor))
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import InvalidQuery
from batchgraph.core.pagination.cursor import sort_fingerprint
from batchgraph.features.resolution.keys import is_scalar

if TYPE_CHECKING:
    from batchgraph.core.pagination.cursor import CursorCodec
    from batchgraph.features.resolution.registry import EntityType


class FilterOperator(StrEnum):
    """Supported filter operators."""

    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"


class SortDirection(StrEnum):
    """Sort directions."""

    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True, slots=True)
class Filter:
    """One predicate: ``field op value``.

    ``field`` may be a tuple of field names for row-value membership, in
    which case ``op`` is ``IN`` and ``value`` is a tuple of value tuples.
    """

    field: str | tuple[str, ...]
    op: FilterOperator
    value: Any

    @property
    def fields(self) -> tuple[str, ...]:
        return self.field if isinstance(self.field, tuple) else (self.field,)

    def matches(self, record: Mapping[str, Any]) -> bool:
        """Evaluate the predicate against a record."""
        if isinstance(self.field, tuple):
            actual: Any = tuple(record.get(name) for name in self.field)
        else:
            actual = record.get(self.field)

        if self.op is FilterOperator.EQ:
            return actual == self.value
        if self.op is FilterOperator.NE:
            return actual != self.value
        if self.op is FilterOperator.IN:
            return actual in self.value
        if actual is None or self.value is None:
            return False
        try:
            if self.op is FilterOperator.LT:
                return actual < self.value
            if self.op is FilterOperator.LTE:
                return actual <= self.value
            if self.op is FilterOperator.GT:
                return actual > self.value
            return actual >= self.value
        except TypeError:
            return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": list(self.field) if isinstance(self.field, tuple) else self.field,
            "op": self.op.value,
            "value": [list(v) if isinstance(v, tuple) else v for v in self.value]
            if self.op is FilterOperator.IN
            else self.value,
        }


@dataclass(frozen=True, slots=True)
class SortField:
    """One sort term."""

    field: str
    direction: SortDirection = SortDirection.ASC

    def as_pair(self) -> tuple[str, str]:
        return (self.field, self.direction.value)


def _coerce_operator(op: str | FilterOperator) -> FilterOperator:
    try:
        return FilterOperator(op)
    except ValueError:
        raise InvalidQuery(
            f"Unknown filter operator '{op}'",
            extra={"operator": str(op)},
        ) from None


def _coerce_direction(direction: str | SortDirection) -> SortDirection:
    try:
        return SortDirection(str(direction).lower())
    except ValueError:
        raise InvalidQuery(
            f"Unknown sort direction '{direction}'",
            extra={"direction": str(direction)},
        ) from None


def _membership_values(name: str, value: Any) -> tuple[Any, ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise InvalidQuery(
            f"Filter '{name} in' needs a collection of values",
            extra={"field": name},
        )
    values = tuple(value)
    if not values:
        raise InvalidQuery(
            f"Filter '{name} in' needs at least one value",
            extra={"field": name},
        )
    for item in values:
        if not is_scalar(item):
            raise InvalidQuery(
                f"Filter '{name} in' values must be scalars",
                extra={"field": name},
            )
    return values


@dataclass(frozen=True)
class QueryDescriptor:
    """Immutable description of a collection request.

    Attributes:
        entity_type: Entity type name
        filters: Conjunctive predicates, in composition order
        any_of: Disjunctive membership predicates (a record must match at
            least one); used when one batch merges several key shapes
        sort: Requested sort terms, in priority order
        cursor: Opaque cursor the page continues after
        after: Decoded sort-key tuple of ``cursor``, aligned with ``effective_sort``
        limit: Page size, clamped to ``[1, max_page_size]``
        offset: Rows to skip (limit/offset pagination, exclusive with ``cursor``)
    """

    entity_type: str
    filters: tuple[Filter, ...] = ()
    any_of: tuple[Filter, ...] = ()
    sort: tuple[SortField, ...] = ()
    cursor: str | None = None
    after: tuple[Any, ...] | None = None
    limit: int = 50
    offset: int = 0
    entity: EntityType | None = field(default=None, compare=False, repr=False)
    max_page_size: int = field(default=100, compare=False, repr=False)
    codec: CursorCodec | None = field(default=None, compare=False, repr=False)

    @classmethod
    def for_entity(
        cls,
        entity: EntityType,
        *,
        max_page_size: int,
        default_limit: int,
        codec: CursorCodec | None = None,
    ) -> QueryDescriptor:
        """Start an unfiltered, unsorted descriptor for an entity type."""
        return cls(
            entity_type=entity.name,
            limit=max(1, min(default_limit, max_page_size)),
            entity=entity,
            max_page_size=max_page_size,
            codec=codec,
        )

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def _require_entity(self) -> EntityType:
        if self.entity is None:
            raise InvalidQuery(
                f"Descriptor for '{self.entity_type}' is not bound to an entity type",
                extra={"entity_type": self.entity_type},
            )
        return self.entity

    def with_filter(
        self,
        name: str,
        op: str | FilterOperator = FilterOperator.EQ,
        value: Any = None,
    ) -> QueryDescriptor:
        """Return a copy with one more filter.

        Raises:
            InvalidQuery: If the field is not filterable, the operator is
                unknown or the value has the wrong shape.
        """
        entity = self._require_entity()
        entity.check_filter_field(name)
        operator = _coerce_operator(op)
        if operator is FilterOperator.IN:
            value = _membership_values(name, value)
        elif not is_scalar(value):
            raise InvalidQuery(
                f"Filter '{name} {operator.value}' needs a scalar value",
                extra={"field": name},
            )
        return replace(self, filters=(*self.filters, Filter(name, operator, value)))

    def with_sort(
        self,
        name: str,
        direction: str | SortDirection = SortDirection.ASC,
    ) -> QueryDescriptor:
        """Return a copy with one more sort term.

        Raises:
            InvalidQuery: If the field is not sortable or already sorted on.
            StaleCursor: If a cursor is set and the new sort no longer matches it.
        """
        entity = self._require_entity()
        entity.check_sort_field(name)
        if any(term.field == name for term in self.sort):
            raise InvalidQuery(
                f"Sort field '{name}' is already part of the sort",
                extra={"entity_type": self.entity_type, "field": name},
            )
        updated = replace(
            self, sort=(*self.sort, SortField(name, _coerce_direction(direction)))
        )
        if updated.cursor is not None:
            return updated.with_cursor(updated.cursor)
        return updated

    def with_cursor(self, cursor: str | None) -> QueryDescriptor:
        """Return a copy positioned after ``cursor`` (``None`` rewinds).

        Raises:
            InvalidQuery: If the cursor is malformed, tampered with or combined
                with an offset.
            StaleCursor: If the cursor was issued under a different sort.
        """
        if cursor is None:
            return replace(self, cursor=None, after=None)
        if self.offset:
            raise InvalidQuery(
                "A cursor cannot be combined with an offset",
                extra={"entity_type": self.entity_type},
            )
        if self.codec is None:
            raise InvalidQuery(
                f"Descriptor for '{self.entity_type}' has no cursor codec",
                extra={"entity_type": self.entity_type},
            )
        data = self.codec.decode(cursor, expected_fingerprint=self.fingerprint)
        if len(data.values) != len(self.effective_sort):
            raise InvalidQuery(
                "Cursor does not match the sort specification",
                extra={"entity_type": self.entity_type},
            )
        return replace(self, cursor=cursor, after=data.values)

    def with_limit(self, limit: int) -> QueryDescriptor:
        """Return a copy with ``limit`` clamped to ``[1, max_page_size]``."""
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidQuery(
                f"Limit must be an integer, got {type(limit).__name__}",
                extra={"entity_type": self.entity_type},
            )
        return replace(self, limit=max(1, min(limit, self.max_page_size)))

    def with_offset(self, offset: int) -> QueryDescriptor:
        """Return a copy that skips ``offset`` rows.

        Raises:
            InvalidQuery: If the offset is negative or a cursor is set.
        """
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidQuery(
                "Offset must be a non-negative integer",
                extra={"entity_type": self.entity_type},
            )
        if offset and self.cursor is not None:
            raise InvalidQuery(
                "An offset cannot be combined with a cursor",
                extra={"entity_type": self.entity_type},
            )
        return replace(self, offset=offset)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def effective_sort(self) -> tuple[SortField, ...]:
        """The sort terms actually applied: the requested sort, then the
        primary key ascending when it is not already part of it."""
        if self.entity is None:
            return self.sort
        pk = self.entity.primary_key
        if any(term.field == pk for term in self.sort):
            return self.sort
        return (*self.sort, SortField(pk, SortDirection.ASC))

    @property
    def fingerprint(self) -> str:
        return sort_fingerprint(
            self.entity_type, [term.as_pair() for term in self.effective_sort]
        )

    def matches(self, record: Mapping[str, Any]) -> bool:
        """Evaluate every filter (and the ``any_of`` disjunction) on a record."""
        if not all(f.matches(record) for f in self.filters):
            return False
        return not self.any_of or any(f.matches(record) for f in self.any_of)

    def to_dict(self) -> dict[str, Any]:
        """Serializable representation (used for logging and the CLI)."""
        return {
            "entity_type": self.entity_type,
            "filters": [f.to_dict() for f in self.filters],
            "any_of": [f.to_dict() for f in self.any_of],
            "sort": [list(term.as_pair()) for term in self.effective_sort],
            "cursor": self.cursor,
            "limit": self.limit,
            "offset": self.offset,
        }


__all__ = [
    "Filter",
    "FilterOperator",
    "QueryDescriptor",
    "SortDirection",
    "SortField",
]
