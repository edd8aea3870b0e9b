"""Pagination cursor commands."""

import json
import sys

import click

from batchgraph.cli.utils import dump_json, error, success
from batchgraph.core.exceptions import ResolutionError
from batchgraph.core.pagination.cursor import CursorCodec, CursorData, sort_fingerprint
from batchgraph.core.settings import get_resolver_settings


def _parse_sort(terms: tuple[str, ...]) -> list[tuple[str, str]]:
    sort = []
    for term in terms:
        name, _, direction = term.partition(":")
        direction = (direction or "asc").lower()
        if not name or direction not in ("asc", "desc"):
            raise click.BadParameter(f"expected FIELD[:asc|desc], got '{term}'", param_hint="--sort")
        sort.append((name, direction))
    return sort


def _codec(secret: str | None) -> CursorCodec:
    return CursorCodec(secret if secret is not None else get_resolver_settings().cursor_secret)


@click.group(name="cursor")
def cursor() -> None:
    """Encode and inspect pagination cursors."""


@cursor.command()
@click.argument("token")
@click.option("--secret", envvar="RESOLVER_CURSOR_SECRET", help="Cursor signing secret")
@click.option("--entity", help="Entity type the cursor should belong to")
@click.option(
    "--sort",
    "sort_terms",
    multiple=True,
    help="Effective sort term FIELD[:asc|desc]; repeat for each term",
)
def inspect(token: str, secret: str | None, entity: str | None, sort_terms: tuple[str, ...]) -> None:
    """Verify and decode TOKEN.

    With --entity and --sort the cursor is also checked against that sort
    order and reported stale if it was issued for another one.
    """
    expected = None
    if entity and sort_terms:
        expected = sort_fingerprint(entity, _parse_sort(sort_terms))

    try:
        data = _codec(secret).decode(token, expected_fingerprint=expected)
    except ResolutionError as e:
        error(f"{e.code}: {e.detail}")
        sys.exit(1)

    success("Cursor is valid")
    dump_json(
        {
            "values": list(data.values),
            "fingerprint": data.fingerprint,
            "direction": data.direction,
        }
    )


@cursor.command()
@click.option("--secret", envvar="RESOLVER_CURSOR_SECRET", help="Cursor signing secret")
@click.option("--entity", required=True, help="Entity type name")
@click.option(
    "--sort",
    "sort_terms",
    multiple=True,
    required=True,
    help="Effective sort term FIELD[:asc|desc]; repeat for each term",
)
@click.option("--values", "values_json", required=True, help="JSON array of sort key values")
def encode(secret: str | None, entity: str, sort_terms: tuple[str, ...], values_json: str) -> None:
    """Encode a cursor positioned after the given sort key values."""
    sort = _parse_sort(sort_terms)
    try:
        values = json.loads(values_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--values") from e
    if not isinstance(values, list) or len(values) != len(sort):
        raise click.BadParameter(
            "expected a JSON array with one value per sort term", param_hint="--values"
        )

    data = CursorData(values=tuple(values), fingerprint=sort_fingerprint(entity, sort))
    click.echo(_codec(secret).encode(data))
