"""Complexity check for resolution graphs stored as JSON."""

import json
import sys

import click

from batchgraph.cli.utils import error, key_values, success
from batchgraph.core.exceptions import InvalidQuery, QueryTooExpensive
from batchgraph.core.settings import get_resolver_settings
from batchgraph.features.resolution.complexity import ComplexityGuard, ResolutionGraph


@click.command(name="check")
@click.argument("graph_file", type=click.File("r"))
@click.option("--max-depth", type=click.IntRange(min=1), help="Override the depth limit")
@click.option("--max-complexity", type=click.IntRange(min=0), help="Override the cost limit")
def check(graph_file, max_depth: int | None, max_complexity: int | None) -> None:
    """Run the complexity guard on a resolution graph.

    GRAPH_FILE holds either a nested tree ({"field", "arity", "unit_cost",
    "children"}) or an explicit graph ({"roots": [...], "nodes": {...}}).
    Use "-" to read from stdin. Exits with status 1 if the graph is rejected.
    """
    settings = get_resolver_settings()
    guard = ComplexityGuard(
        cost_limit=max_complexity if max_complexity is not None else settings.max_complexity,
        depth_limit=max_depth if max_depth is not None else settings.max_query_depth,
    )

    try:
        graph = ResolutionGraph.from_dict(json.load(graph_file))
        report = guard.check(graph)
    except json.JSONDecodeError as e:
        error(f"Invalid JSON: {e}")
        sys.exit(1)
    except InvalidQuery as e:
        error(e.detail)
        sys.exit(1)
    except QueryTooExpensive as e:
        error(f"Rejected: {e.detail}")
        key_values(
            {
                "cost": e.cost,
                "depth": e.depth,
                "cost_limit": guard.cost_limit,
                "depth_limit": guard.depth_limit,
            }
        )
        sys.exit(1)

    success("Accepted")
    key_values(
        {
            "cost": report.total_cost,
            "depth": report.max_depth,
            "cost_limit": guard.cost_limit,
            "depth_limit": guard.depth_limit,
        }
    )
