"""Tests for QueryDescriptor composition."""

from __future__ import annotations

import pytest

from batchgraph.core.exceptions import InvalidQuery, StaleCursor
from batchgraph.core.pagination.cursor import CursorData
from batchgraph.features.resolution.query import (
    Filter,
    FilterOperator,
    QueryDescriptor,
    SortDirection,
    SortField,
)


@pytest.fixture
def products(registry, codec) -> QueryDescriptor:
    return QueryDescriptor.for_entity(
        registry.get("product"), max_page_size=100, default_limit=50, codec=codec
    )


class TestComposition:
    """Descriptors are immutable and validated as they are built."""

    def test_with_filter_returns_new_descriptor(self, products):
        filtered = products.with_filter("category_id", "eq", 3)

        assert products.filters == ()
        assert filtered.filters == (Filter("category_id", FilterOperator.EQ, 3),)

    def test_unknown_filter_field(self, products):
        with pytest.raises(InvalidQuery, match="Unknown filter field 'colour'"):
            products.with_filter("colour", "eq", "red")

    def test_unknown_sort_field(self, products):
        with pytest.raises(InvalidQuery, match="Unknown sort field"):
            products.with_sort("category_id")

    def test_unknown_operator(self, products):
        with pytest.raises(InvalidQuery, match="Unknown filter operator"):
            products.with_filter("price", "like", 3)

    def test_unknown_direction(self, products):
        with pytest.raises(InvalidQuery, match="Unknown sort direction"):
            products.with_sort("price", "sideways")

    def test_duplicate_sort_field(self, products):
        with pytest.raises(InvalidQuery, match="already part of the sort"):
            products.with_sort("price").with_sort("price", "desc")

    @pytest.mark.parametrize("value", ["abc", 3, []])
    def test_in_needs_collection(self, products, value):
        with pytest.raises(InvalidQuery):
            products.with_filter("category_id", "in", value)

    def test_non_scalar_filter_value(self, products):
        with pytest.raises(InvalidQuery, match="needs a scalar value"):
            products.with_filter("price", "eq", {"amount": 3})

    def test_limit_is_clamped(self, products):
        assert products.with_limit(10_000).limit == 100
        assert products.with_limit(0).limit == 1
        assert products.with_limit(20).limit == 20

    def test_limit_must_be_integer(self, products):
        with pytest.raises(InvalidQuery):
            products.with_limit("20")

    def test_negative_offset(self, products):
        with pytest.raises(InvalidQuery):
            products.with_offset(-1)

    def test_unbound_descriptor(self):
        with pytest.raises(InvalidQuery, match="not bound"):
            QueryDescriptor("product").with_filter("price", "eq", 1)


class TestEffectiveSort:
    """The primary key is the final tiebreaker."""

    def test_primary_key_appended(self, products):
        query = products.with_sort("price", "desc")

        assert query.effective_sort == (
            SortField("price", SortDirection.DESC),
            SortField("id", SortDirection.ASC),
        )

    def test_primary_key_not_duplicated(self, products):
        query = products.with_sort("id", "desc")
        assert query.effective_sort == (SortField("id", SortDirection.DESC),)

    def test_fingerprint_follows_sort(self, products):
        assert products.with_sort("price").fingerprint != products.with_sort("price", "desc").fingerprint
        assert products.with_sort("price").fingerprint == products.with_sort("price").fingerprint


class TestCursors:
    """Cursor validation at composition time."""

    def test_with_cursor_decodes_position(self, products, codec):
        query = products.with_sort("price")
        cursor = codec.encode(CursorData(values=(12, 1), fingerprint=query.fingerprint))

        assert query.with_cursor(cursor).after == (12, 1)

    def test_stale_cursor(self, products, codec):
        asc = products.with_sort("price")
        cursor = codec.encode(CursorData(values=(12, 1), fingerprint=asc.fingerprint))

        with pytest.raises(StaleCursor):
            products.with_sort("price", "desc").with_cursor(cursor)

    def test_sort_change_after_cursor_is_stale(self, products, codec):
        cursor = codec.encode(CursorData(values=(1,), fingerprint=products.fingerprint))
        query = products.with_cursor(cursor)

        with pytest.raises(StaleCursor):
            query.with_sort("price")

    def test_tampered_cursor(self, products):
        with pytest.raises(InvalidQuery):
            products.with_cursor("not-a-cursor")

    def test_cursor_and_offset_are_exclusive(self, products, codec):
        cursor = codec.encode(CursorData(values=(1,), fingerprint=products.fingerprint))

        with pytest.raises(InvalidQuery, match="offset"):
            products.with_offset(5).with_cursor(cursor)
        with pytest.raises(InvalidQuery, match="cursor"):
            products.with_cursor(cursor).with_offset(5)

    def test_none_rewinds(self, products, codec):
        cursor = codec.encode(CursorData(values=(1,), fingerprint=products.fingerprint))
        rewound = products.with_cursor(cursor).with_cursor(None)
        assert rewound.cursor is None
        assert rewound.after is None


class TestMatching:
    """In-process evaluation of filters."""

    def test_conjunction(self, products):
        query = products.with_filter("category_id", "eq", 2).with_filter("price", "gte", 30)

        assert query.matches({"id": 3, "category_id": 2, "price": 30})
        assert not query.matches({"id": 1, "category_id": 1, "price": 30})

    def test_comparison_with_null_is_false(self, products):
        query = products.with_filter("price", "lt", 10)
        assert not query.matches({"id": 6, "price": None})

    def test_to_dict(self, products):
        data = products.with_filter("category_id", "in", [1, 2]).with_limit(10).to_dict()

        assert data["filters"] == [{"field": "category_id", "op": "in", "value": [1, 2]}]
        assert data["sort"] == [["id", "asc"]]
        assert data["limit"] == 10
