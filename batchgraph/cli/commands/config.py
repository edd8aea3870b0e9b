"""Configuration inspection commands."""

import sys

import click
from pydantic import ValidationError

from batchgraph.cli.utils import dump_json, error, header, key_values, warning
from batchgraph.core.settings import get_logging_settings, get_resolver_settings


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""


@config.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    help="Output format",
)
@click.option(
    "--show-secrets/--hide-secrets",
    default=False,
    help="Show the cursor signing secret",
)
def show(output_format: str, show_secrets: bool) -> None:
    """Display the effective resolver and logging settings."""
    try:
        resolver = get_resolver_settings()
        logs = get_logging_settings()
    except ValidationError as e:
        error(f"Invalid configuration: {e}")
        sys.exit(1)

    resolver_dict = resolver.model_dump(exclude={"cursor_secret"})
    resolver_dict["cursor_secret"] = (
        resolver.cursor_secret.get_secret_value() if show_secrets else "***"
    )
    config_dict = {"resolver": resolver_dict, "logging": logs.model_dump()}

    if output_format == "json":
        dump_json(config_dict)
        return

    if not show_secrets:
        warning("Secrets are hidden. Use --show-secrets to display them.")
    for section_name, values in config_dict.items():
        header(section_name)
        key_values(values)
