"""Strawberry schema wired to the resolution engine."""

from __future__ import annotations

from typing import Any

import pytest
import strawberry
from graphql import parse, validate
from strawberry.extensions import AddValidationRules

from batchgraph.core.exceptions import FetchFailed
from batchgraph.features.graphql import (
    GraphQLContext,
    ResolutionErrorExtension,
    complexity_rule,
    execute_operation,
    format_errors,
)
from batchgraph.features.resolution.complexity import ComplexityGuard
from batchgraph.features.resolution.executor import FieldError


@strawberry.type
class Category:
    id: int
    name: str
    parent_id: strawberry.Private[int | None]

    @classmethod
    def from_record(cls, record: Any) -> Category:
        return cls(id=record["id"], name=record["name"], parent_id=record["parent_id"])

    @strawberry.field
    async def parent(self, info: strawberry.Info[GraphQLContext, None]) -> Category | None:
        if self.parent_id is None:
            return None
        record = await info.context.resolution.load("category", id=self.parent_id)
        return Category.from_record(record) if record else None


@strawberry.type
class Product:
    id: int
    name: str
    price: int | None
    category_id: strawberry.Private[int]

    @strawberry.field
    async def category(self, info: strawberry.Info[GraphQLContext, None]) -> Category | None:
        record = await info.context.resolution.load("category", id=self.category_id)
        return Category.from_record(record) if record else None


@strawberry.type
class Query:
    @strawberry.field
    async def products(
        self,
        info: strawberry.Info[GraphQLContext, None],
        first: int = 10,
        after: str | None = None,
    ) -> list[Product]:
        ctx = info.context.resolution
        query = ctx.query("product").with_limit(first).with_cursor(after)
        page = await ctx.submit_query(query)
        return [
            Product(
                id=row["id"],
                name=row["name"],
                price=row["price"],
                category_id=row["category_id"],
            )
            for row in page.items
        ]


def build_schema(guard: ComplexityGuard) -> strawberry.Schema:
    return strawberry.Schema(
        query=Query,
        extensions=[
            AddValidationRules([complexity_rule(guard, max_list_size=100)]),
            ResolutionErrorExtension,
        ],
    )


@pytest.fixture
def schema() -> strawberry.Schema:
    return build_schema(ComplexityGuard(cost_limit=100, depth_limit=3))


class TestExecution:
    """Operations resolve through batched loads."""

    @pytest.mark.asyncio
    async def test_categories_are_batched(self, schema, engine, store):
        result = await execute_operation(
            schema, engine, "{ products(first: 6) { name category { name } } }"
        )

        assert result.errors is None
        names = [(p["name"], p["category"]["name"]) for p in result.data["products"]]
        assert names[0] == ("Dune", "Books")
        assert names[-1] == ("Tangram", "Puzzles")
        assert len(store.calls_for("category")) == 1
        assert store.calls_for("category")[0].row_count == 3

    @pytest.mark.asyncio
    async def test_resolution_error_code_in_extensions(self, schema, engine, store):
        store.fail("category")

        result = await execute_operation(
            schema, engine, "{ products(first: 2) { name category { name } } }"
        )

        assert [p["category"] for p in result.data["products"]] == [None, None]
        assert {error.extensions["code"] for error in result.errors} == {"FETCH_FAILED"}
        assert result.errors[0].extensions["entity_type"] == "category"
        assert result.errors[0].path == ["products", 0, "category"]

    @pytest.mark.asyncio
    async def test_stale_cursor_code(self, schema, engine):
        first = await execute_operation(schema, engine, "{ products(first: 2) { id } }")
        assert first.errors is None

        result = await execute_operation(
            schema, engine, '{ products(first: 2, after: "garbage.cursor") { id } }'
        )

        assert result.data is None
        assert result.errors[0].extensions["code"] == "INVALID_QUERY"


class TestComplexityRule:
    """Expensive operations are rejected during validation."""

    @pytest.mark.asyncio
    async def test_too_expensive_never_touches_storage(self, engine, store):
        schema = build_schema(ComplexityGuard(cost_limit=50, depth_limit=5))

        result = await execute_operation(
            schema, engine, "{ products(first: 100) { name category { name } } }"
        )

        assert result.data is None
        (error,) = result.errors
        assert error.extensions["code"] == "QUERY_TOO_EXPENSIVE"
        assert error.extensions["cost"] == 1 + 100 * (1 + 1 + 1)
        assert store.call_count == 0

    @pytest.mark.asyncio
    async def test_too_deep(self, schema, engine, store):
        result = await execute_operation(
            schema, engine, "{ products { category { parent { name } } } }"
        )

        assert result.errors[0].extensions["code"] == "QUERY_TOO_EXPENSIVE"
        assert result.errors[0].extensions["depth"] == 4
        assert store.call_count == 0

    def test_fragments_are_expanded(self, schema):
        rule = complexity_rule(ComplexityGuard(cost_limit=10, depth_limit=5), max_list_size=100)
        document = parse(
            """
            query { products(first: 5) { ...ProductFields } }
            fragment ProductFields on Product { name ... on Product { category { name } } }
            """
        )

        (error,) = validate(schema._schema, document, [rule])

        # 1 + 5 * (name 1 + category (1 + name 1))
        assert error.extensions["cost"] == 16

    def test_unit_costs_and_introspection(self, schema):
        rule = complexity_rule(
            ComplexityGuard(cost_limit=100, depth_limit=5),
            max_list_size=100,
            unit_costs={"Query.products": 50},
            default_list_size=1,
        )

        assert validate(schema._schema, parse("{ products { id } __typename }"), [rule]) == []
        errors = validate(schema._schema, parse("{ a: products { id } b: products { id } }"), [rule])
        assert errors[0].extensions["cost"] == 102

    def test_variable_size_counts_as_max_list_size(self, schema):
        rule = complexity_rule(ComplexityGuard(cost_limit=50, depth_limit=5), max_list_size=100)

        literal = validate(schema._schema, parse("{ products(first: 5) { id } }"), [rule])
        (error,) = validate(
            schema._schema,
            parse("query Products($n: Int!) { products(first: $n) { id } }"),
            [rule],
        )

        assert literal == []
        assert error.extensions["cost"] == 1 + 100 * 1

    @pytest.mark.asyncio
    async def test_variable_size_is_rejected_before_storage(self, engine, store):
        schema = build_schema(ComplexityGuard(cost_limit=50, depth_limit=5))

        result = await execute_operation(
            schema,
            engine,
            "query Products($n: Int!) { products(first: $n) { id } }",
            variable_values={"n": 100},
        )

        assert result.errors[0].extensions["code"] == "QUERY_TOO_EXPENSIVE"
        assert store.call_count == 0


def test_format_errors():
    error = FetchFailed("order")

    (formatted,) = format_errors([FieldError(("user", "orders"), error)])

    assert formatted["path"] == ["user", "orders"]
    assert formatted["extensions"]["code"] == "FETCH_FAILED"
    assert formatted["message"] == error.detail
