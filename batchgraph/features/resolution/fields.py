"""Field definitions and the registry resolvers are dispatched through.

Every field of every object type is declared once: its resolve coroutine,
its declared unit cost, the upper bound of results it yields and, for fields
returning objects, the object type of its children. The executor plans and
resolves selections purely by looking fields up here.

Usage:
    fields = FieldRegistry()
    fields.define("Query", collection("products", "product", returns="Product"))
    fields.define("Product", scalar("name"))
    fields.define("Product", belongs_to("category", "category", "category_id"))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import InvalidQuery
from batchgraph.features.resolution.keys import NOT_FOUND, Key

if TYPE_CHECKING:
    from batchgraph.features.resolution.context import ResolutionContext

ResolveFn = Callable[[Any, Mapping[str, Any], "ResolutionContext"], Awaitable[Any]]
ArityFn = Callable[[Mapping[str, Any]], int]

ROOT_TYPE = "Query"


def type_name_for(entity_type: str) -> str:
    """Default object type name of an entity type (``order_item`` -> ``OrderItem``)."""
    return "".join(part.title() for part in entity_type.split("_"))


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    """Declared behaviour of one field.

    Attributes:
        name: Field name as selected by clients
        resolve: Coroutine ``(parent, args, ctx) -> value``; None reads
            ``parent[name]``
        unit_cost: Cost of resolving the field once
        arity: Upper bound of results, or a callable deriving it from the
            field arguments (clamped to the page size maximum)
        returns: Object type of the result, None for scalar fields
        many: Whether the field yields a list of objects
    """

    name: str
    resolve: ResolveFn | None = None
    unit_cost: int = 1
    arity: int | ArityFn = 1
    returns: str | None = None
    many: bool = False

    def arity_for(self, args: Mapping[str, Any], max_page_size: int) -> int:
        if callable(self.arity):
            try:
                requested = int(self.arity(args))
            except (TypeError, ValueError):
                raise InvalidQuery(
                    f"Invalid size argument for field '{self.name}'",
                    extra={"field": self.name},
                ) from None
            return max(0, min(requested, max_page_size))
        return self.arity

    async def run(self, parent: Any, args: Mapping[str, Any], ctx: ResolutionContext) -> Any:
        if self.resolve is None:
            return parent.get(self.name) if parent is not None else None
        return await self.resolve(parent, args, ctx)


class FieldRegistry:
    """Field definitions keyed by (object type, field name)."""

    def __init__(self) -> None:
        self._fields: dict[tuple[str, str], FieldDefinition] = {}

    def define(self, type_name: str, *definitions: FieldDefinition) -> None:
        """Register field definitions on an object type.

        Raises:
            ValueError: If a field is already defined on the type.
        """
        for definition in definitions:
            slot = (type_name, definition.name)
            if slot in self._fields:
                raise ValueError(f"Field '{type_name}.{definition.name}' is already defined")
            self._fields[slot] = definition

    def get(self, type_name: str, field_name: str) -> FieldDefinition:
        """Look up a field.

        Raises:
            InvalidQuery: If the type has no such field.
        """
        try:
            return self._fields[(type_name, field_name)]
        except KeyError:
            raise InvalidQuery(
                f"Unknown field '{field_name}' on type '{type_name}'",
                extra={"type": type_name, "field": field_name},
            ) from None

    def fields_of(self, type_name: str) -> list[FieldDefinition]:
        return [d for (t, _), d in self._fields.items() if t == type_name]

    def __iter__(self) -> Iterator[tuple[str, FieldDefinition]]:
        return ((t, d) for (t, _), d in self._fields.items())

    def __len__(self) -> int:
        return len(self._fields)


def limit_arity(default: int) -> ArityFn:
    """Arity taken from a ``limit`` or ``first`` argument."""

    def arity(args: Mapping[str, Any]) -> int:
        value = args.get("limit", args.get("first"))
        return default if value is None else value

    return arity


def scalar(name: str, *, unit_cost: int = 0) -> FieldDefinition:
    """A field read straight from the parent record."""
    return FieldDefinition(name, unit_cost=unit_cost)


def belongs_to(
    name: str,
    entity_type: str,
    foreign_key: str,
    *,
    target_field: str = "id",
    returns: str | None = None,
    unit_cost: int = 1,
) -> FieldDefinition:
    """A to-one relationship loaded through the request cache.

    Resolves to None when the parent's foreign key is null or the target
    record does not exist.
    """

    async def resolve(parent: Any, args: Mapping[str, Any], ctx: ResolutionContext) -> Any:
        value = parent.get(foreign_key)
        if value is None:
            return None
        record = await ctx.register_or_get(Key.of(entity_type, {target_field: value}))
        return None if record is NOT_FOUND else record

    return FieldDefinition(
        name, resolve, unit_cost=unit_cost, returns=returns or type_name_for(entity_type)
    )


def has_many(
    name: str,
    entity_type: str,
    foreign_key: str,
    *,
    source_field: str = "id",
    arity: int | ArityFn = 10,
    returns: str | None = None,
    unit_cost: int = 1,
) -> FieldDefinition:
    """A to-many relationship loaded through the request cache.

    Yields at most ``arity`` records, in storage order.
    """

    async def resolve(parent: Any, args: Mapping[str, Any], ctx: ResolutionContext) -> Any:
        records = await ctx.register_or_get(
            Key.of(entity_type, {foreign_key: parent.get(source_field)}), many=True
        )
        return records[: definition.arity_for(args, ctx.settings.max_page_size)]

    definition = FieldDefinition(
        name,
        resolve,
        unit_cost=unit_cost,
        arity=arity,
        returns=returns or type_name_for(entity_type),
        many=True,
    )
    return definition


def collection(
    name: str,
    entity_type: str,
    *,
    returns: str | None = None,
    unit_cost: int = 1,
    default_limit: int = 50,
) -> FieldDefinition:
    """A paginated collection built from field arguments.

    Arguments: ``filter`` (mapping of field to equality value), ``sort``
    (list of ``"field"`` or ``"-field"``), ``limit``/``first``, ``after``.
    """

    async def resolve(parent: Any, args: Mapping[str, Any], ctx: ResolutionContext) -> Any:
        query = ctx.query(entity_type)
        for field_name, value in (args.get("filter") or {}).items():
            query = query.with_filter(field_name, "eq", value)
        for term in args.get("sort") or ():
            if term.startswith("-"):
                query = query.with_sort(term[1:], "desc")
            else:
                query = query.with_sort(term, "asc")
        limit = args.get("limit", args.get("first"))
        if limit is not None:
            query = query.with_limit(limit)
        if args.get("after"):
            query = query.with_cursor(args["after"])
        page = await ctx.submit_query(query)
        return page.items

    return FieldDefinition(
        name,
        resolve,
        unit_cost=unit_cost,
        arity=limit_arity(default_limit),
        returns=returns or type_name_for(entity_type),
        many=True,
    )


__all__ = [
    "ROOT_TYPE",
    "FieldDefinition",
    "FieldRegistry",
    "belongs_to",
    "collection",
    "has_many",
    "limit_arity",
    "scalar",
    "type_name_for",
]
