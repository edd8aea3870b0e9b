"""Cursor-based pagination.

Cursors are opaque, signed strings that encode the sort-key tuple of the
last record on a page plus a fingerprint of the sort order. Clients pass
them back unchanged to fetch the following page.
"""

from batchgraph.core.pagination.cursor import CursorCodec, CursorData, sort_fingerprint
from batchgraph.core.pagination.schemas import Page

__all__ = [
    "CursorCodec",
    "CursorData",
    "Page",
    "sort_fingerprint",
]
