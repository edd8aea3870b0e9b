"""Entity type registration.

Every fetchable collection is registered once at startup with its primary
key, the fields clients may filter and sort on, and the storage-fetch
coroutine that executes a QueryDescriptor.

Usage:
    registry = EntityRegistry()
    registry.register(
        EntityType(
            name="product",
            primary_key="id",
            fetch=store.fetcher("product"),
            filter_fields={"category_id", "price"},
            sort_fields={"price", "name"},
        )
    )
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from batchgraph.core.exceptions import InvalidQuery

if TYPE_CHECKING:
    from batchgraph.features.resolution.keys import Record
    from batchgraph.features.resolution.query import QueryDescriptor

logger = logging.getLogger(__name__)

FetchFn = Callable[["QueryDescriptor"], Awaitable[Sequence["Record"]]]


@dataclass(frozen=True)
class EntityType:
    """A fetchable collection.

    The primary key is always filterable and sortable, whether or not it is
    listed in the allow-lists.

    Attributes:
        name: Unique entity type name (e.g. ``"order"``).
        primary_key: Field holding the record identity.
        fetch: Storage-fetch coroutine ``(QueryDescriptor) -> ordered records``.
        filter_fields: Fields clients may filter on.
        sort_fields: Fields clients may sort on.
    """

    name: str
    primary_key: str
    fetch: FetchFn = field(compare=False, repr=False)
    filter_fields: frozenset[str] = frozenset()
    sort_fields: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Entity type name must not be empty")
        object.__setattr__(
            self, "filter_fields", frozenset(self.filter_fields) | {self.primary_key}
        )
        object.__setattr__(
            self, "sort_fields", frozenset(self.sort_fields) | {self.primary_key}
        )

    def check_filter_field(self, name: str) -> None:
        if name not in self.filter_fields:
            raise InvalidQuery(
                f"Unknown filter field '{name}' for entity '{self.name}'",
                extra={"entity_type": self.name, "field": name},
            )

    def check_sort_field(self, name: str) -> None:
        if name not in self.sort_fields:
            raise InvalidQuery(
                f"Unknown sort field '{name}' for entity '{self.name}'",
                extra={"entity_type": self.name, "field": name},
            )


class EntityRegistry:
    """Registry of entity types, populated once at startup."""

    def __init__(self, entity_types: Iterable[EntityType] = ()) -> None:
        self._types: dict[str, EntityType] = {}
        for entity_type in entity_types:
            self.register(entity_type)

    def register(self, entity_type: EntityType) -> EntityType:
        """Register an entity type.

        Raises:
            ValueError: If an entity type with the same name is already registered.
        """
        if entity_type.name in self._types:
            raise ValueError(f"Entity type '{entity_type.name}' is already registered")
        self._types[entity_type.name] = entity_type
        logger.debug(
            "Registered entity type",
            extra={
                "entity_type": entity_type.name,
                "primary_key": entity_type.primary_key,
            },
        )
        return entity_type

    def get(self, name: str) -> EntityType:
        """Look up an entity type by name.

        Raises:
            InvalidQuery: If the name is not registered.
        """
        try:
            return self._types[name]
        except KeyError:
            raise InvalidQuery(
                f"Unknown entity type '{name}'",
                extra={"entity_type": name},
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[EntityType]:
        return iter(self._types.values())

    def __len__(self) -> int:
        return len(self._types)

    @property
    def names(self) -> list[str]:
        return sorted(self._types)


__all__ = ["EntityRegistry", "EntityType", "FetchFn"]
