"""CLI utilities for formatting output."""

from batchgraph.cli.utils.formatters import (
    dump_json,
    error,
    header,
    info,
    key_values,
    success,
    warning,
)

__all__ = [
    "dump_json",
    "error",
    "header",
    "info",
    "key_values",
    "success",
    "warning",
]
