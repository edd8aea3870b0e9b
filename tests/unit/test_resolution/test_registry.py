"""Tests for entity type registration."""

from __future__ import annotations

import pytest

from batchgraph.core.exceptions import InvalidQuery
from batchgraph.features.resolution.registry import EntityRegistry, EntityType


async def _fetch(descriptor):
    return []


class TestEntityType:
    """Allow-lists always include the primary key."""

    def test_primary_key_always_allowed(self):
        entity = EntityType("product", "id", fetch=_fetch, filter_fields=frozenset({"price"}))

        assert entity.filter_fields == {"id", "price"}
        assert entity.sort_fields == {"id"}

    def test_unknown_filter_field(self):
        entity = EntityType("product", "id", fetch=_fetch)

        with pytest.raises(InvalidQuery, match="Unknown filter field 'colour'") as exc_info:
            entity.check_filter_field("colour")
        assert exc_info.value.extra == {"entity_type": "product", "field": "colour"}

    def test_unknown_sort_field(self):
        entity = EntityType("product", "id", fetch=_fetch)
        with pytest.raises(InvalidQuery, match="Unknown sort field"):
            entity.check_sort_field("price")

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            EntityType("", "id", fetch=_fetch)


class TestEntityRegistry:
    """Registration and lookup."""

    def test_register_and_get(self, registry):
        assert registry.get("product").primary_key == "id"
        assert "order_item" in registry
        assert len(registry) == 5
        assert registry.names == ["category", "order", "order_item", "product", "user"]

    def test_duplicate_rejected(self):
        registry = EntityRegistry([EntityType("user", "id", fetch=_fetch)])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(EntityType("user", "id", fetch=_fetch))

    def test_unknown_entity_type(self, registry):
        with pytest.raises(InvalidQuery, match="Unknown entity type 'invoice'"):
            registry.get("invoice")
