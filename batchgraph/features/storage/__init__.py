"""Storage collaborators implementing ``fetch(QueryDescriptor) -> records``."""

from batchgraph.features.storage.memory import FetchCall, InMemoryStore, evaluate
from batchgraph.features.storage.sqlalchemy import SQLAlchemyFetcher

__all__ = ["FetchCall", "InMemoryStore", "SQLAlchemyFetcher", "evaluate"]
