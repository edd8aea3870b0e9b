"""Fetch identity: the Key and the NotFound sentinel.

A Key names one pending fetch: an entity type plus the bind values that
select its rows, e.g. ``Key.of("order_item", order_id=5)``. Keys compare and
hash by value, which makes them usable both as batch-group discriminators and
as request cache keys.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Final
from uuid import UUID

from batchgraph.core.exceptions import InvalidQuery

Scalar = str | int | float | bool | Decimal | UUID | date | datetime | time | None

SCALAR_TYPES: Final = (str, int, float, bool, Decimal, UUID, date, datetime, time)

Record = Mapping[str, Any]


def is_scalar(value: Any) -> bool:
    """Return True for values usable as bind or filter values."""
    return value is None or isinstance(value, SCALAR_TYPES)


@dataclass(frozen=True, slots=True)
class Key:
    """Immutable identity of a pending fetch.

    ``binds`` is stored sorted by field name so that two Keys built from the
    same mapping in a different order are equal.

    Attributes:
        entity_type: Name of the registered entity type.
        binds: Sorted ``(field, value)`` pairs.
    """

    entity_type: str
    binds: tuple[tuple[str, Scalar], ...]

    @classmethod
    def of(
        cls,
        entity_type: str,
        binds: Mapping[str, Scalar] | None = None,
        /,
        **kwargs: Scalar,
    ) -> Key:
        """Build a Key from a mapping and/or keyword bind values.

        Raises:
            InvalidQuery: If no bind values are given or a value is not a scalar.
        """
        merged = {**(binds or {}), **kwargs}
        if not merged:
            raise InvalidQuery(
                f"Key for entity '{entity_type}' needs at least one bind value",
                extra={"entity_type": entity_type},
            )
        for name, value in merged.items():
            if not is_scalar(value):
                raise InvalidQuery(
                    f"Bind value for '{name}' must be a scalar, got {type(value).__name__}",
                    extra={"entity_type": entity_type, "field": name},
                )
        return cls(entity_type, tuple(sorted(merged.items())))

    @property
    def shape(self) -> tuple[str, ...]:
        """The bound field names, in sorted order."""
        return tuple(name for name, _ in self.binds)

    @property
    def values(self) -> tuple[Scalar, ...]:
        """The bound values, aligned with ``shape``."""
        return tuple(value for _, value in self.binds)

    def as_dict(self) -> dict[str, Scalar]:
        return dict(self.binds)

    def matches(self, record: Record) -> bool:
        """Return True if every bind value equals the record's field value."""
        return all(record.get(name) == value for name, value in self.binds)

    def __str__(self) -> str:
        binds = ", ".join(f"{name}={value!r}" for name, value in self.binds)
        return f"{self.entity_type}({binds})"


class _NotFoundType:
    """Sentinel resolved for a to-one Key absent from the batch result."""

    _instance: _NotFoundType | None = None

    def __new__(cls) -> _NotFoundType:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NotFound"

    def __reduce__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND: Final = _NotFoundType()


__all__ = ["NOT_FOUND", "Key", "Record", "Scalar", "is_scalar"]
