"""Tests for Key identity and the NotFound sentinel."""

from __future__ import annotations

import pickle

import pytest

from batchgraph.core.exceptions import InvalidQuery
from batchgraph.features.resolution.keys import NOT_FOUND, Key


class TestKey:
    """Keys compare by value and expose their shape."""

    def test_bind_order_does_not_matter(self):
        first = Key.of("order_item", order_id=5, product_id=3)
        second = Key.of("order_item", {"product_id": 3}, order_id=5)

        assert first == second
        assert hash(first) == hash(second)
        assert first.shape == ("order_id", "product_id")
        assert first.values == (5, 3)

    def test_different_entity_types_differ(self):
        assert Key.of("order", id=1) != Key.of("user", id=1)

    def test_matches_record(self):
        key = Key.of("order", user_id=1)

        assert key.matches({"id": 2, "user_id": 1})
        assert not key.matches({"id": 5, "user_id": 3})

    def test_str(self):
        assert str(Key.of("order", id=1)) == "order(id=1)"

    def test_requires_binds(self):
        with pytest.raises(InvalidQuery, match="at least one bind value"):
            Key.of("order")

    def test_rejects_non_scalar_values(self):
        with pytest.raises(InvalidQuery, match="must be a scalar"):
            Key.of("order", id=[1, 2])

    def test_none_is_a_valid_bind(self):
        assert Key.of("category", parent_id=None).as_dict() == {"parent_id": None}


class TestNotFound:
    """NOT_FOUND is a falsy singleton."""

    def test_singleton_and_falsy(self):
        assert not NOT_FOUND
        assert type(NOT_FOUND)() is NOT_FOUND
        assert repr(NOT_FOUND) == "NotFound"

    def test_survives_pickling(self):
        assert pickle.loads(pickle.dumps(NOT_FOUND)) is NOT_FOUND
