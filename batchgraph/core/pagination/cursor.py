"""Cursor encoding and decoding for pagination.

Cursors are opaque strings that encode a position in a sorted result set:
the sort-key tuple of the last record of a page, plus a fingerprint of the
sort specification the page was produced under. A cursor replayed against a
different sort order is rejected as stale.

The cursor format is:
1. Compact JSON payload: {"v": [...sort key values...], "s": "<fingerprint>", "d": "forward"}
2. URL-safe base64 (unpadded) body
3. "." followed by a truncated HMAC-SHA256 signature of the body

Non-JSON scalars (datetime, date, time, UUID, Decimal) are tagged so they
decode back to the same Python type.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, SecretStr

from batchgraph.core.exceptions import InvalidQuery, StaleCursor

SIGNATURE_BYTES = 16


class CursorData(BaseModel):
    """Internal representation of cursor data.

    Attributes:
        values: Sort-key values of the last record on the previous page,
            aligned with the effective sort specification
        fingerprint: Fingerprint of the sort specification
        direction: Pagination direction (only forward is supported)
    """

    values: tuple[Any, ...] = Field(description="Sort key values for seeking")
    fingerprint: str = Field(description="Sort specification fingerprint")
    direction: Literal["forward"] = Field(
        default="forward",
        description="Pagination direction",
    )

    model_config = {"frozen": True}


def sort_fingerprint(entity_type: str, sort: Sequence[tuple[str, str]]) -> str:
    """Fingerprint an entity type's effective sort specification.

    Args:
        entity_type: Entity type name
        sort: Ordered ``(field, direction)`` pairs

    Returns:
        16-character hex digest
    """
    spec = ",".join(f"{field}:{direction}" for field, direction in sort)
    return hashlib.sha256(f"{entity_type}|{spec}".encode()).hexdigest()[:16]


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _serialize_value(value: Any) -> Any:
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return {"$dt": value.isoformat()}
    if isinstance(value, date):
        return {"$d": value.isoformat()}
    if isinstance(value, time):
        return {"$t": value.isoformat()}
    if isinstance(value, UUID):
        return {"$uuid": str(value)}
    if isinstance(value, Decimal):
        return {"$dec": str(value)}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise InvalidQuery(
        f"Sort key value of type {type(value).__name__} cannot be encoded in a cursor"
    )


def _deserialize_value(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    if len(value) != 1:
        raise ValueError("unexpected object in cursor values")
    ((tag, raw),) = value.items()
    if tag == "$dt":
        return datetime.fromisoformat(raw)
    if tag == "$d":
        return date.fromisoformat(raw)
    if tag == "$t":
        return time.fromisoformat(raw)
    if tag == "$uuid":
        return UUID(raw)
    if tag == "$dec":
        return Decimal(raw)
    raise ValueError(f"unknown cursor value tag {tag!r}")


class CursorCodec:
    """Encode, sign, verify and decode pagination cursors.

    Usage:
        codec = CursorCodec(settings.cursor_secret)

        # Encoding
        cursor = codec.encode(CursorData(values=(19.99, 42), fingerprint=fp))

        # Decoding, checking the cursor belongs to the active sort
        data = codec.decode(cursor, expected_fingerprint=fp)
    """

    def __init__(self, secret: str | bytes | SecretStr) -> None:
        if isinstance(secret, SecretStr):
            secret = secret.get_secret_value()
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ValueError("Cursor secret must not be empty")
        self._secret = secret

    def _sign(self, body: str) -> str:
        digest = hmac.new(self._secret, body.encode("utf-8"), hashlib.sha256).digest()
        return _b64encode(digest[:SIGNATURE_BYTES])

    def encode(self, data: CursorData) -> str:
        """Encode cursor data to an opaque signed string.

        Raises:
            InvalidQuery: If a sort key value has no cursor representation.
        """
        payload = {
            "v": [_serialize_value(value) for value in data.values],
            "s": data.fingerprint,
            "d": data.direction,
        }
        body = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def decode(
        self,
        cursor: str,
        expected_fingerprint: str | None = None,
    ) -> CursorData:
        """Verify and decode a cursor string.

        Args:
            cursor: Cursor previously produced by ``encode``
            expected_fingerprint: When given, the sort fingerprint the cursor
                must have been issued under

        Returns:
            CursorData with the decoded sort key values

        Raises:
            InvalidQuery: If the cursor is malformed or its signature is invalid
            StaleCursor: If the cursor was issued for a different sort order
        """
        body, sep, signature = cursor.partition(".")
        if not sep or not body or not signature:
            raise InvalidQuery("Malformed cursor")
        if not hmac.compare_digest(signature.encode("utf-8"), self._sign(body).encode("utf-8")):
            raise InvalidQuery("Cursor signature is invalid")

        try:
            payload = json.loads(_b64decode(body))
            if not isinstance(payload, dict) or not isinstance(payload.get("v"), list):
                raise ValueError("unexpected cursor payload")
            data = CursorData(
                values=tuple(_deserialize_value(value) for value in payload["v"]),
                fingerprint=payload["s"],
                direction=payload.get("d", "forward"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidQuery(f"Malformed cursor: {e}") from e

        if expected_fingerprint is not None and data.fingerprint != expected_fingerprint:
            raise StaleCursor(
                extra={
                    "fingerprint": data.fingerprint,
                    "expected_fingerprint": expected_fingerprint,
                }
            )
        return data

    def create_cursor(
        self,
        record: Mapping[str, Any],
        sort_fields: Sequence[str],
        fingerprint: str,
    ) -> str:
        """Create a cursor positioned after ``record``.

        Args:
            record: Last record of the current page
            sort_fields: Effective sort field names, in order
            fingerprint: Fingerprint of the effective sort specification

        Returns:
            Encoded cursor string
        """
        values = tuple(record.get(field) for field in sort_fields)
        return self.encode(CursorData(values=values, fingerprint=fingerprint))


__all__ = ["CursorCodec", "CursorData", "sort_fingerprint"]
