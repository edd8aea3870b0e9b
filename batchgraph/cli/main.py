"""Main CLI entry point for batchgraph commands."""

import click

from batchgraph import __version__
from batchgraph.cli.commands import check, config, cursor
from batchgraph.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="batchgraph")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """batchgraph CLI - tools for the batched resolution engine.

    \b
    Commands:
      check    Run the complexity guard on a JSON resolution graph
      cursor   Encode and inspect pagination cursors
      config   Show effective settings

    \b
    Quick Start:
      batchgraph check graph.json --max-depth 5
      batchgraph cursor inspect TOKEN --entity product --sort price:asc --sort id
      batchgraph config show --format json
    """
    ctx.ensure_object(dict)


cli.add_command(check.check)
cli.add_command(cursor.cursor)
cli.add_command(config.config)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
