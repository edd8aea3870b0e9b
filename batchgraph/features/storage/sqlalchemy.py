"""SQLAlchemy async storage collaborator.

Translates a QueryDescriptor into a ``select()`` over one table:

- Conjunctive filters and the ``any_of`` membership disjunction
- Composite-key membership as an OR of per-row equality groups
- ORDER BY over the effective sort, nulls treated as the smallest value
- Keyset seek past a decoded cursor position, then OFFSET/LIMIT

For ORDER BY price DESC, id ASC with cursor at (p1, id1) the seek is:
    WHERE (price < p1 OR price IS NULL) OR (price = p1 AND id > id1)

Usage:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    fetch = SQLAlchemyFetcher(async_sessionmaker(engine), products_table)
    registry.register(EntityType("product", "id", fetch=fetch))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import ColumnElement, Select, Table, and_, false, or_, select, true

from batchgraph.features.resolution.query import (
    Filter,
    FilterOperator,
    QueryDescriptor,
    SortDirection,
    SortField,
)

if TYPE_CHECKING:
    from sqlalchemy import Column
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class SQLAlchemyFetcher:
    """Storage-fetch coroutine backed by one table.

    Each call opens a short-lived session from the factory, so the fetcher
    can be shared by every request.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source: Table | type[DeclarativeBase],
    ) -> None:
        self._session_factory = session_factory
        self.table: Table = source if isinstance(source, Table) else source.__table__  # type: ignore[assignment]

    async def __call__(self, descriptor: QueryDescriptor) -> list[dict[str, Any]]:
        statement = self.build_statement(descriptor)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            rows = [dict(row) for row in result.mappings().all()]
        logger.debug(
            "SQL fetch",
            extra={"entity_type": descriptor.entity_type, "row_count": len(rows)},
        )
        return rows

    def column(self, name: str) -> Column[Any]:
        return self.table.c[name]

    def build_statement(self, descriptor: QueryDescriptor) -> Select[Any]:
        """Build the SELECT statement for a descriptor."""
        statement = select(self.table)

        for item in descriptor.filters:
            statement = statement.where(self._filter_clause(item))
        if descriptor.any_of:
            statement = statement.where(or_(*(self._filter_clause(f) for f in descriptor.any_of)))

        sort = descriptor.effective_sort
        if descriptor.after is not None:
            statement = statement.where(self._seek_clause(sort, descriptor.after))

        for term in sort:
            column = self.column(term.field)
            if term.direction is SortDirection.DESC:
                statement = statement.order_by(column.desc().nulls_last())
            else:
                statement = statement.order_by(column.asc().nulls_first())

        if descriptor.offset:
            statement = statement.offset(descriptor.offset)
        return statement.limit(descriptor.limit)

    def _filter_clause(self, item: Filter) -> ColumnElement[bool]:
        if isinstance(item.field, tuple):
            columns = [self.column(name) for name in item.field]
            return or_(
                *(
                    and_(*(_equals(column, value) for column, value in zip(columns, row, strict=True)))
                    for row in item.value
                )
            )

        column = self.column(item.field)
        value = item.value
        if item.op is FilterOperator.EQ:
            return _equals(column, value)
        if item.op is FilterOperator.NE:
            if value is None:
                return column.is_not(None)
            return or_(column != value, column.is_(None))
        if item.op is FilterOperator.IN:
            present = [v for v in value if v is not None]
            clause = column.in_(present) if present else false()
            if len(present) != len(value):
                clause = or_(clause, column.is_(None))
            return clause
        if value is None:
            return false()
        if item.op is FilterOperator.LT:
            return column < value
        if item.op is FilterOperator.LTE:
            return column <= value
        if item.op is FilterOperator.GT:
            return column > value
        return column >= value

    def _seek_clause(
        self,
        sort: Sequence[SortField],
        position: Sequence[Any],
    ) -> ColumnElement[bool]:
        """Rows strictly after ``position`` in the given sort order.

        For columns (a, b, c) with cursor values (v1, v2, v3):
            (a after v1) OR
            (a = v1 AND b after v2) OR
            (a = v1 AND b = v2 AND c after v3)
        """
        or_conditions: list[ColumnElement[bool]] = []
        for i, term in enumerate(sort):
            column = self.column(term.field)
            eq_conditions = [
                _equals(self.column(prev.field), position[j]) for j, prev in enumerate(sort[:i])
            ]
            compare = _after(column, position[i], term.direction)
            or_conditions.append(and_(*eq_conditions, compare) if eq_conditions else compare)
        return or_(*or_conditions) if or_conditions else true()


def _equals(column: Column[Any], value: Any) -> ColumnElement[bool]:
    return column.is_(None) if value is None else column == value


def _after(column: Column[Any], value: Any, direction: SortDirection) -> ColumnElement[bool]:
    # nulls are the smallest value in both directions
    if direction is SortDirection.DESC:
        if value is None:
            return false()
        return or_(column < value, column.is_(None))
    if value is None:
        return column.is_not(None)
    return column > value


__all__ = ["SQLAlchemyFetcher"]
