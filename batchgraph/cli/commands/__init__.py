"""CLI command modules."""

from batchgraph.cli.commands import check, config, cursor

__all__ = ["check", "config", "cursor"]
