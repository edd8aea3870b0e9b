"""Query complexity and depth guard.

Rejects expensive resolution trees before any storage access occurs. A tree
is modelled as an explicit node-id graph: each node names a field, its unit
cost, the upper bound of results it produces (arity) and its child node ids.

Cost of a node is its unit cost multiplied by the arities of all of its
ancestors, so nested lists multiply:

    orders(limit: 50)         unit 1, arity 50   -> 1
        items(limit: 10)      unit 1, arity 10   -> 1 * 50 = 50
            product           unit 2, arity 1    -> 2 * 50 * 10 = 1000
    # total cost 1051, depth 3

Shared subtrees are costed once per path that reaches them. A node that
references one of its own ancestors describes an unbounded request and is
rejected outright.

Usage:
    guard = ComplexityGuard(cost_limit=1000, depth_limit=10)
    report = guard.check(ResolutionNode("orders", arity=50, children=(...,)))
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import InvalidQuery, QueryTooExpensive

if TYPE_CHECKING:
    from batchgraph.core.settings.resolver import ResolverSettings

logger = logging.getLogger(__name__)

_VISITING = 1
_DONE = 2


@dataclass(frozen=True, slots=True)
class ResolutionNode:
    """A node of a nested resolution tree.

    Attributes:
        field: Field name
        unit_cost: Declared cost of resolving the field once
        arity: Upper bound of results the field yields
        children: Child nodes resolved for each result
    """

    field: str
    unit_cost: int = 1
    arity: int = 1
    children: tuple[ResolutionNode, ...] = ()


@dataclass(frozen=True, slots=True)
class GraphNode:
    """A node of a resolution graph, referencing children by id."""

    node_id: str
    field: str
    unit_cost: int = 1
    arity: int = 1
    children: tuple[str, ...] = ()


class ResolutionGraph:
    """Explicit node-id graph describing one request."""

    def __init__(self, nodes: Iterable[GraphNode], roots: Sequence[str]) -> None:
        self.nodes: dict[str, GraphNode] = {}
        for node in nodes:
            if node.node_id in self.nodes:
                raise InvalidQuery(f"Duplicate resolution node id '{node.node_id}'")
            if node.unit_cost < 0 or node.arity < 0:
                raise InvalidQuery(
                    f"Resolution node '{node.node_id}' has a negative cost or arity",
                    extra={"node_id": node.node_id, "field": node.field},
                )
            self.nodes[node.node_id] = node
        self.roots = tuple(roots)

        for node_id in self.roots:
            if node_id not in self.nodes:
                raise InvalidQuery(f"Unknown root node id '{node_id}'")
        for node in self.nodes.values():
            for child in node.children:
                if child not in self.nodes:
                    raise InvalidQuery(
                        f"Node '{node.node_id}' references unknown child '{child}'",
                        extra={"node_id": node.node_id},
                    )

    @classmethod
    def from_tree(cls, roots: ResolutionNode | Iterable[ResolutionNode]) -> ResolutionGraph:
        """Flatten nested ResolutionNodes into a graph with path-based ids."""
        if isinstance(roots, ResolutionNode):
            roots = (roots,)
        nodes: list[GraphNode] = []
        root_ids: list[str] = []

        def visit(node: ResolutionNode, node_id: str) -> None:
            child_ids = tuple(f"{node_id}.{i}" for i in range(len(node.children)))
            nodes.append(
                GraphNode(node_id, node.field, node.unit_cost, node.arity, child_ids)
            )
            for child, child_id in zip(node.children, child_ids, strict=True):
                visit(child, child_id)

        for i, root in enumerate(roots):
            root_id = str(i)
            root_ids.append(root_id)
            visit(root, root_id)
        return cls(nodes, root_ids)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResolutionGraph:
        """Build a graph from its JSON form.

        Two forms are accepted: ``{"roots": [...], "nodes": {id: {...}}}`` for
        an explicit graph, or a nested ``{"field": ..., "children": [...]}``
        tree (or ``{"tree": [...]}`` for several roots).

        Raises:
            InvalidQuery: If the document has neither form.
        """
        try:
            if "nodes" in data:
                nodes = [
                    GraphNode(
                        node_id=str(node_id),
                        field=str(spec["field"]),
                        unit_cost=int(spec.get("unit_cost", 1)),
                        arity=int(spec.get("arity", 1)),
                        children=tuple(str(c) for c in spec.get("children", ())),
                    )
                    for node_id, spec in data["nodes"].items()
                ]
                return cls(nodes, [str(r) for r in data["roots"]])

            trees = data["tree"] if "tree" in data else [data]
            return cls.from_tree(_tree_from_dict(tree) for tree in trees)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidQuery(f"Malformed resolution graph: {e}") from e


def _tree_from_dict(data: Mapping[str, Any]) -> ResolutionNode:
    return ResolutionNode(
        field=str(data["field"]),
        unit_cost=int(data.get("unit_cost", 1)),
        arity=int(data.get("arity", 1)),
        children=tuple(_tree_from_dict(child) for child in data.get("children", ())),
    )


@dataclass(frozen=True, slots=True)
class ComplexityReport:
    """Measured cost and depth of an accepted request."""

    total_cost: int
    max_depth: int


def as_graph(tree: ResolutionGraph | ResolutionNode | Iterable[ResolutionNode]) -> ResolutionGraph:
    if isinstance(tree, ResolutionGraph):
        return tree
    return ResolutionGraph.from_tree(tree)


def measure(graph: ResolutionGraph) -> ComplexityReport:
    """Compute total cost and maximum depth of a graph.

    Raises:
        QueryTooExpensive: If the graph contains a cycle.
    """
    cost: dict[str, int] = {}
    height: dict[str, int] = {}
    state: dict[str, int] = {}

    for root in graph.roots:
        stack: list[tuple[str, bool]] = [(root, False)]
        while stack:
            node_id, expanded = stack.pop()
            node = graph.nodes[node_id]
            if expanded:
                cost[node_id] = node.unit_cost + node.arity * sum(
                    cost[child] for child in node.children
                )
                height[node_id] = 1 + max(
                    (height[child] for child in node.children), default=0
                )
                state[node_id] = _DONE
                continue

            if state.get(node_id) == _DONE:
                continue
            state[node_id] = _VISITING
            stack.append((node_id, True))
            for child in reversed(node.children):
                if state.get(child) == _VISITING:
                    raise QueryTooExpensive(
                        f"Resolution graph is cyclic at field '{graph.nodes[child].field}'",
                        extra={"node_id": child, "field": graph.nodes[child].field},
                    )
                if state.get(child) != _DONE:
                    stack.append((child, False))

    return ComplexityReport(
        total_cost=sum(cost[root] for root in graph.roots),
        max_depth=max((height[root] for root in graph.roots), default=0),
    )


class ComplexityGuard:
    """Reject resolution trees exceeding configured depth or cost.

    The check is a pure pre-execution step: it touches no storage and holds
    no state between calls.
    """

    def __init__(self, cost_limit: int, depth_limit: int) -> None:
        if cost_limit < 0 or depth_limit < 1:
            raise ValueError("cost_limit must be >= 0 and depth_limit >= 1")
        self.cost_limit = cost_limit
        self.depth_limit = depth_limit

    @classmethod
    def from_settings(cls, settings: ResolverSettings) -> ComplexityGuard:
        return cls(cost_limit=settings.max_complexity, depth_limit=settings.max_query_depth)

    def check(
        self,
        tree: ResolutionGraph | ResolutionNode | Iterable[ResolutionNode],
    ) -> ComplexityReport:
        """Measure a tree and reject it if it exceeds either limit.

        Returns:
            The measured ComplexityReport when the tree is accepted

        Raises:
            QueryTooExpensive: If depth or cost exceeds its limit, or the
                graph is cyclic
        """
        report = measure(as_graph(tree))

        if report.max_depth > self.depth_limit:
            logger.warning(
                "Resolution depth exceeded",
                extra={"depth": report.max_depth, "limit": self.depth_limit},
            )
            raise QueryTooExpensive(
                f"Query depth {report.max_depth} exceeds limit of {self.depth_limit}",
                cost=report.total_cost,
                depth=report.max_depth,
                cost_limit=self.cost_limit,
                depth_limit=self.depth_limit,
            )

        if report.total_cost > self.cost_limit:
            logger.warning(
                "Resolution cost exceeded",
                extra={"complexity": report.total_cost, "limit": self.cost_limit},
            )
            raise QueryTooExpensive(
                f"Query complexity {report.total_cost} exceeds limit of {self.cost_limit}",
                cost=report.total_cost,
                depth=report.max_depth,
                cost_limit=self.cost_limit,
                depth_limit=self.depth_limit,
            )

        logger.debug(
            "Resolution complexity accepted",
            extra={"complexity": report.total_cost, "depth": report.max_depth},
        )
        return report


__all__ = [
    "ComplexityGuard",
    "ComplexityReport",
    "GraphNode",
    "ResolutionGraph",
    "ResolutionNode",
    "as_graph",
    "measure",
]
