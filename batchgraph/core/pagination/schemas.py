"""Pagination response schema for cursor-based pagination.

``Page`` is what ``submit_query`` resolves to: the records of one page plus
the cursor that continues after its last record.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, SkipValidation


class Page(BaseModel):
    """One page of records from a collection query.

    Usage:
        page = await ctx.submit_query(query)
        for record in page.items:
            ...
        if page.has_more:
            page = await ctx.submit_query(query.with_cursor(page.next_cursor))

    Attributes:
        entity_type: Entity type the records belong to
        items: Read-only records in sort order (shared by every caller
            that submitted the same query)
        next_cursor: Cursor to fetch the next page (None if no more)
        has_more: Whether more records exist after this page
    """

    entity_type: str = Field(description="Entity type of the records")
    # records stay the read-only views the context built
    items: SkipValidation[tuple[Mapping[str, Any], ...]] = Field(
        default=(),
        description="Records in sort order",
    )
    next_cursor: str | None = Field(
        default=None,
        description="Cursor to fetch next page",
    )
    has_more: bool = Field(
        default=False,
        description="Whether more records exist",
    )

    model_config = {"frozen": True}

    def __len__(self) -> int:
        return len(self.items)


__all__ = ["Page"]
