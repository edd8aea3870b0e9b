"""Tests for field definitions and relationship helpers."""

from __future__ import annotations

import pytest

from batchgraph.core.exceptions import InvalidQuery
from batchgraph.features.resolution.fields import (
    FieldDefinition,
    FieldRegistry,
    belongs_to,
    collection,
    has_many,
    limit_arity,
    scalar,
    type_name_for,
)


@pytest.mark.parametrize(
    ("entity_type", "expected"),
    [("order", "Order"), ("order_item", "OrderItem"), ("user", "User")],
)
def test_type_name_for(entity_type, expected):
    assert type_name_for(entity_type) == expected


class TestArity:
    """List arity from declarations and arguments."""

    def test_fixed_arity(self):
        assert has_many("orders", "order", "user_id", arity=10).arity_for({}, 100) == 10

    def test_limit_argument_is_clamped(self):
        definition = FieldDefinition("users", arity=limit_arity(50))

        assert definition.arity_for({}, 100) == 50
        assert definition.arity_for({"limit": 5}, 100) == 5
        assert definition.arity_for({"first": 500}, 100) == 100
        assert definition.arity_for({"limit": -3}, 100) == 0

    def test_invalid_size_argument(self):
        definition = FieldDefinition("users", arity=limit_arity(50))

        with pytest.raises(InvalidQuery, match="Invalid size argument"):
            definition.arity_for({"limit": "lots"}, 100)


class TestFieldRegistry:
    def test_define_and_get(self, fields):
        assert fields.get("Order", "items").returns == "OrderItem"
        assert fields.get("Order", "items").many
        assert fields.get("Product", "category").returns == "Category"
        assert {d.name for d in fields.fields_of("Category")} == {"id", "name", "parent"}

    def test_duplicate_field(self):
        registry = FieldRegistry()
        registry.define("User", scalar("name"))

        with pytest.raises(ValueError, match="already defined"):
            registry.define("User", scalar("name"))

    def test_unknown_field(self, fields):
        with pytest.raises(InvalidQuery, match="Unknown field 'email' on type 'User'"):
            fields.get("User", "email")


class TestResolvers:
    """Relationship helpers load through the request context."""

    @pytest.mark.asyncio
    async def test_scalar_reads_parent(self, ctx):
        assert await scalar("name").run({"name": "ada"}, {}, ctx) == "ada"
        assert await scalar("name").run(None, {}, ctx) is None

    @pytest.mark.asyncio
    async def test_belongs_to(self, ctx):
        category = belongs_to("category", "category", "category_id")

        assert (await category.run({"category_id": 3}, {}, ctx))["name"] == "Puzzles"
        assert await category.run({"category_id": None}, {}, ctx) is None
        assert await category.run({"category_id": 99}, {}, ctx) is None

    @pytest.mark.asyncio
    async def test_has_many(self, ctx):
        orders = has_many("orders", "order", "user_id")

        rows = await orders.run({"id": 1}, {}, ctx)

        assert [row["status"] for row in rows] == ["paid", "open"]

    @pytest.mark.asyncio
    async def test_has_many_yields_at_most_its_arity(self, ctx, store):
        for order_id in range(100, 142):
            store.insert("order", {"id": order_id, "user_id": 1, "status": "open"})
        orders = has_many("orders", "order", "user_id", arity=10)
        limited = has_many("orders", "order", "user_id", arity=limit_arity(10))

        assert len(await orders.run({"id": 1}, {}, ctx)) == 10
        assert len(await limited.run({"id": 1}, {"first": 3}, ctx)) == 3
        assert store.calls_for("order")[0].row_count == 44

    @pytest.mark.asyncio
    async def test_collection_arguments(self, ctx):
        products = collection("products", "product")

        rows = await products.run(
            None, {"filter": {"category_id": 2}, "sort": ["-name"], "limit": 1}, ctx
        )

        assert [row["name"] for row in rows] == ["Go"]

    @pytest.mark.asyncio
    async def test_collection_rejects_unknown_sort(self, ctx):
        with pytest.raises(InvalidQuery):
            await collection("products", "product").run(None, {"sort": ["colour"]}, ctx)
