"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
    - Settings Fixtures: resolver settings and cursor codec
    - Catalog Fixtures: an in-memory store holding users, orders, order
      items, products and categories, with a storage-call log
    - Engine Fixtures: entity registry, field registry, engine and a
      request-scoped ResolutionContext

The storage-call log (``store.calls``) is what batching and caching tests
assert on.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping
from typing import Any

import pytest

from batchgraph.core.pagination.cursor import CursorCodec
from batchgraph.core.settings import ResolverSettings, clear_all_caches
from batchgraph.features.resolution.context import ResolutionContext
from batchgraph.features.resolution.engine import ResolutionEngine
from batchgraph.features.resolution.fields import (
    FieldDefinition,
    FieldRegistry,
    belongs_to,
    collection,
    has_many,
    scalar,
)
from batchgraph.features.resolution.keys import NOT_FOUND, Key
from batchgraph.features.resolution.registry import EntityRegistry, EntityType
from batchgraph.features.storage.memory import InMemoryStore

CURSOR_SECRET = "test-cursor-secret"


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Reset cached settings so environment changes in one test never leak."""
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
def settings() -> ResolverSettings:
    """Resolver settings with a fixed cursor secret."""
    return ResolverSettings(
        cursor_secret=CURSOR_SECRET,
        max_page_size=100,
        default_page_size=50,
        max_query_depth=6,
        max_complexity=1000,
    )


@pytest.fixture
def codec() -> CursorCodec:
    return CursorCodec(CURSOR_SECRET)


# ============================================================================
# Catalog Fixtures
# ============================================================================


def catalog_rows() -> dict[str, list[dict[str, Any]]]:
    """Sample data: 3 users, 5 orders, 8 order items, 6 products, 3 categories."""
    return {
        "category": [
            {"id": 1, "name": "Books", "parent_id": None},
            {"id": 2, "name": "Games", "parent_id": None},
            {"id": 3, "name": "Puzzles", "parent_id": 2},
        ],
        "product": [
            {"id": 1, "name": "Dune", "price": 12, "category_id": 1},
            {"id": 2, "name": "Emma", "price": 8, "category_id": 1},
            {"id": 3, "name": "Go", "price": 30, "category_id": 2},
            {"id": 4, "name": "Chess", "price": 30, "category_id": 2},
            {"id": 5, "name": "Sudoku", "price": 5, "category_id": 3},
            {"id": 6, "name": "Tangram", "price": None, "category_id": 3},
        ],
        "user": [
            {"id": 1, "name": "ada"},
            {"id": 2, "name": "grace"},
            {"id": 3, "name": "linus"},
        ],
        "order": [
            {"id": 1, "user_id": 1, "status": "paid"},
            {"id": 2, "user_id": 1, "status": "open"},
            {"id": 3, "user_id": 2, "status": "paid"},
            {"id": 4, "user_id": 2, "status": "paid"},
            {"id": 5, "user_id": 3, "status": "open"},
        ],
        "order_item": [
            {"id": 1, "order_id": 1, "product_id": 1, "quantity": 1},
            {"id": 2, "order_id": 1, "product_id": 3, "quantity": 2},
            {"id": 3, "order_id": 2, "product_id": 1, "quantity": 1},
            {"id": 4, "order_id": 3, "product_id": 4, "quantity": 1},
            {"id": 5, "order_id": 3, "product_id": 5, "quantity": 3},
            {"id": 6, "order_id": 4, "product_id": 2, "quantity": 1},
            {"id": 7, "order_id": 5, "product_id": 6, "quantity": 4},
            {"id": 8, "order_id": 5, "product_id": 3, "quantity": 1},
        ],
    }


@pytest.fixture
def catalog() -> dict[str, list[dict[str, Any]]]:
    """Fresh copy of the sample catalog rows."""
    return catalog_rows()


@pytest.fixture
def store(catalog: dict[str, list[dict[str, Any]]]) -> InMemoryStore:
    """In-memory catalog store recording every storage call."""
    return InMemoryStore(tables=catalog)


def build_registry(store: InMemoryStore) -> EntityRegistry:
    return EntityRegistry(
        [
            EntityType(
                "user",
                "id",
                fetch=store.fetcher("user"),
                filter_fields=frozenset({"name"}),
                sort_fields=frozenset({"name"}),
            ),
            EntityType(
                "order",
                "id",
                fetch=store.fetcher("order"),
                filter_fields=frozenset({"user_id", "status"}),
                sort_fields=frozenset({"status"}),
            ),
            EntityType(
                "order_item",
                "id",
                fetch=store.fetcher("order_item"),
                filter_fields=frozenset({"order_id", "product_id"}),
                sort_fields=frozenset({"quantity"}),
            ),
            EntityType(
                "product",
                "id",
                fetch=store.fetcher("product"),
                filter_fields=frozenset({"category_id", "price", "name"}),
                sort_fields=frozenset({"price", "name"}),
            ),
            EntityType(
                "category",
                "id",
                fetch=store.fetcher("category"),
                filter_fields=frozenset({"parent_id", "name"}),
                sort_fields=frozenset({"name"}),
            ),
        ]
    )


@pytest.fixture
def registry(store: InMemoryStore) -> EntityRegistry:
    """Entity registry wired to the in-memory catalog."""
    return build_registry(store)


async def _resolve_user(parent: Any, args: Mapping[str, Any], ctx: ResolutionContext) -> Any:
    record = await ctx.register_or_get(Key.of("user", id=args["id"]))
    return None if record is NOT_FOUND else record


def build_fields() -> FieldRegistry:
    fields = FieldRegistry()
    fields.define(
        "Query",
        collection("users", "user"),
        collection("products", "product"),
        FieldDefinition("user", _resolve_user, returns="User"),
    )
    fields.define(
        "User",
        scalar("id"),
        scalar("name"),
        has_many("orders", "order", "user_id", arity=10),
    )
    fields.define(
        "Order",
        scalar("id"),
        scalar("status"),
        belongs_to("user", "user", "user_id"),
        has_many("items", "order_item", "order_id", arity=10),
    )
    fields.define(
        "OrderItem",
        scalar("id"),
        scalar("quantity"),
        belongs_to("product", "product", "product_id"),
    )
    fields.define(
        "Product",
        scalar("id"),
        scalar("name"),
        scalar("price"),
        belongs_to("category", "category", "category_id"),
    )
    fields.define(
        "Category",
        scalar("id"),
        scalar("name"),
        belongs_to("parent", "category", "parent_id"),
    )
    return fields


@pytest.fixture
def fields() -> FieldRegistry:
    """Field registry describing the catalog object graph."""
    return build_fields()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def engine(
    registry: EntityRegistry,
    fields: FieldRegistry,
    settings: ResolverSettings,
    codec: CursorCodec,
) -> ResolutionEngine:
    return ResolutionEngine(registry, fields, settings, codec=codec)


@pytest.fixture
async def ctx(engine: ResolutionEngine) -> AsyncGenerator[ResolutionContext]:
    """A request-scoped ResolutionContext, closed after the test."""
    context = ResolutionContext.create(
        engine.registry, engine.settings, engine.codec, request_id="test-request"
    )
    yield context
    context.scheduler.close()
    context.cache.clear()
