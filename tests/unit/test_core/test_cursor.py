"""Tests for the pagination cursor codec."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

import pytest
from pydantic import SecretStr

from batchgraph.core.exceptions import InvalidQuery, StaleCursor
from batchgraph.core.pagination.cursor import CursorCodec, CursorData, sort_fingerprint


@pytest.fixture
def fingerprint() -> str:
    return sort_fingerprint("product", [("price", "asc"), ("id", "asc")])


class TestSortFingerprint:
    """Sort fingerprints identify an entity type's sort order."""

    def test_is_deterministic(self):
        """The same sort always produces the same fingerprint."""
        sort = [("price", "asc"), ("id", "asc")]
        assert sort_fingerprint("product", sort) == sort_fingerprint("product", sort)

    def test_direction_changes_fingerprint(self):
        """Reversing a direction yields a different fingerprint."""
        asc = sort_fingerprint("product", [("price", "asc"), ("id", "asc")])
        desc = sort_fingerprint("product", [("price", "desc"), ("id", "asc")])
        assert asc != desc

    def test_entity_type_changes_fingerprint(self):
        """The same sort on another entity type is a different fingerprint."""
        assert sort_fingerprint("product", [("id", "asc")]) != sort_fingerprint(
            "order", [("id", "asc")]
        )


class TestCursorCodec:
    """Encoding, signing and decoding cursors."""

    def test_round_trip(self, fingerprint):
        """Decoding an encoded cursor returns the same values."""
        codec = CursorCodec("secret")
        cursor = codec.encode(CursorData(values=(12, 4), fingerprint=fingerprint))

        data = codec.decode(cursor, expected_fingerprint=fingerprint)

        assert data.values == (12, 4)
        assert data.fingerprint == fingerprint
        assert data.direction == "forward"

    def test_round_trip_preserves_types(self, fingerprint):
        """Non-JSON scalars decode back to their Python types."""
        codec = CursorCodec("secret")
        values = (
            datetime(2024, 5, 1, 12, 30, tzinfo=UTC),
            date(2024, 5, 1),
            UUID("12345678-1234-5678-1234-567812345678"),
            Decimal("19.99"),
            None,
            "text",
        )

        data = codec.decode(codec.encode(CursorData(values=values, fingerprint=fingerprint)))

        assert data.values == values
        assert isinstance(data.values[3], Decimal)

    def test_cursor_is_url_safe(self, fingerprint):
        """Cursors contain only URL-safe characters."""
        codec = CursorCodec("secret")
        cursor = codec.encode(CursorData(values=("a/b+c?",), fingerprint=fingerprint))
        assert all(ch.isalnum() or ch in "-_." for ch in cursor)

    def test_accepts_secret_str(self, fingerprint):
        """A SecretStr secret signs the same way as the plain string."""
        data = CursorData(values=(1,), fingerprint=fingerprint)
        assert CursorCodec(SecretStr("secret")).encode(data) == CursorCodec("secret").encode(data)

    def test_empty_secret_rejected(self):
        """An empty signing key is a configuration error."""
        with pytest.raises(ValueError, match="must not be empty"):
            CursorCodec("")

    def test_tampered_cursor_rejected(self, fingerprint):
        """Changing the body invalidates the signature."""
        codec = CursorCodec("secret")
        cursor = codec.encode(CursorData(values=(12, 4), fingerprint=fingerprint))
        signature = cursor.partition(".")[2]
        forged = codec.encode(CursorData(values=(0, 0), fingerprint=fingerprint)).partition(".")[0]

        with pytest.raises(InvalidQuery, match="signature"):
            codec.decode(f"{forged}.{signature}")

    def test_other_secret_rejected(self, fingerprint):
        """A cursor signed with another key does not verify."""
        cursor = CursorCodec("one").encode(CursorData(values=(1,), fingerprint=fingerprint))
        with pytest.raises(InvalidQuery):
            CursorCodec("two").decode(cursor)

    @pytest.mark.parametrize("cursor", ["", "no-dot", ".sig", "body.", "énorme.ü"])
    def test_malformed_cursor_rejected(self, cursor):
        """Garbage input is an InvalidQuery, never a crash."""
        with pytest.raises(InvalidQuery):
            CursorCodec("secret").decode(cursor)

    def test_stale_cursor(self, fingerprint):
        """A cursor replayed under another sort is stale."""
        codec = CursorCodec("secret")
        cursor = codec.encode(CursorData(values=(12, 4), fingerprint=fingerprint))
        other = sort_fingerprint("product", [("price", "desc"), ("id", "asc")])

        with pytest.raises(StaleCursor):
            codec.decode(cursor, expected_fingerprint=other)

    def test_create_cursor_from_record(self, fingerprint):
        """create_cursor picks the sort fields out of a record."""
        codec = CursorCodec("secret")
        cursor = codec.create_cursor({"id": 4, "price": 30, "name": "Chess"}, ["price", "id"], fingerprint)

        assert codec.decode(cursor).values == (30, 4)

    def test_unencodable_value_rejected(self, fingerprint):
        """Sort values that are not scalars cannot be put in a cursor."""
        with pytest.raises(InvalidQuery):
            CursorCodec("secret").encode(CursorData(values=([1, 2],), fingerprint=fingerprint))
