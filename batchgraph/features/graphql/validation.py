"""GraphQL validation rule enforcing the resolution complexity guard.

The rule turns each operation into a resolution tree (one node per selected
field, list arity from ``first``/``last``/``limit`` arguments) and runs it
through ComplexityGuard during validation, so a rejected operation never
starts executing and never touches storage.

Usage:
    from strawberry.extensions import AddValidationRules

    schema = strawberry.Schema(
        query=Query,
        extensions=[
            AddValidationRules(
                [
                    complexity_rule(
                        ComplexityGuard.from_settings(settings),
                        max_list_size=settings.max_page_size,
                    )
                ]
            ),
        ],
    )
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from graphql.language import (
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    IntValueNode,
    OperationDefinitionNode,
    SelectionSetNode,
)
from graphql.type import GraphQLList, GraphQLNonNull, GraphQLObjectType, GraphQLSchema
from graphql.validation import ValidationContext, ValidationRule

from batchgraph.core.exceptions import QueryTooExpensive
from batchgraph.features.graphql.errors import to_graphql_error
from batchgraph.features.resolution.complexity import ComplexityGuard, ResolutionNode

SIZE_ARGUMENTS = ("first", "last", "limit")
DEFAULT_LIST_SIZE = 10


class TreeBuilder:
    """Derive resolution trees from GraphQL selection sets."""

    def __init__(
        self,
        schema: GraphQLSchema,
        fragments: Mapping[str, Any],
        *,
        max_list_size: int,
        unit_costs: Mapping[str, int] | None = None,
        default_cost: int = 1,
        default_list_size: int = DEFAULT_LIST_SIZE,
    ) -> None:
        self.schema = schema
        self.fragments = fragments
        self.unit_costs = dict(unit_costs or {})
        self.default_cost = default_cost
        self.default_list_size = default_list_size
        self.max_list_size = max_list_size

    def build(self, operation: OperationDefinitionNode) -> tuple[ResolutionNode, ...]:
        root = {
            "query": self.schema.query_type,
            "mutation": self.schema.mutation_type,
            "subscription": self.schema.subscription_type,
        }[operation.operation.value]
        if root is None:
            return ()
        return self._selection_set(operation.selection_set, root, frozenset())

    def _selection_set(
        self,
        selection_set: SelectionSetNode,
        parent_type: Any,
        fragment_path: frozenset[str],
    ) -> tuple[ResolutionNode, ...]:
        nodes: list[ResolutionNode] = []
        for selection in selection_set.selections:
            if isinstance(selection, FieldNode):
                node = self._field(selection, parent_type, fragment_path)
                if node is not None:
                    nodes.append(node)
            elif isinstance(selection, InlineFragmentNode):
                fragment_type = parent_type
                if selection.type_condition is not None:
                    fragment_type = self.schema.get_type(selection.type_condition.name.value)
                nodes.extend(
                    self._selection_set(selection.selection_set, fragment_type, fragment_path)
                )
            elif isinstance(selection, FragmentSpreadNode):
                name = selection.name.value
                fragment = self.fragments.get(name)
                # cyclic spreads are reported by graphql-core's own rules
                if fragment is None or name in fragment_path:
                    continue
                fragment_type = self.schema.get_type(fragment.type_condition.name.value)
                nodes.extend(
                    self._selection_set(
                        fragment.selection_set, fragment_type, fragment_path | {name}
                    )
                )
        return tuple(nodes)

    def _field(
        self,
        node: FieldNode,
        parent_type: Any,
        fragment_path: frozenset[str],
    ) -> ResolutionNode | None:
        name = node.name.value
        if name.startswith("__"):
            return None

        field_type = None
        if isinstance(parent_type, GraphQLObjectType) and name in parent_type.fields:
            field_type = parent_type.fields[name].type

        arity = self.list_size(node) if _is_list(field_type) else 1
        children: tuple[ResolutionNode, ...] = ()
        if node.selection_set is not None:
            children = self._selection_set(
                node.selection_set, _named_type(field_type), fragment_path
            )

        type_name = getattr(parent_type, "name", "")
        return ResolutionNode(
            field=name,
            unit_cost=self.unit_costs.get(f"{type_name}.{name}", self.default_cost),
            arity=arity,
            children=children,
        )

    def list_size(self, node: FieldNode) -> int:
        """List arity from a size argument.

        A literal size is used as given; a size supplied through a variable
        is unknown at validation time and counts as ``max_list_size``.
        Without a size argument the field counts as ``default_list_size``.
        Every size is clamped to ``max_list_size``.
        """
        size = self.default_list_size
        for argument in node.arguments or ():
            if argument.name.value not in SIZE_ARGUMENTS:
                continue
            if isinstance(argument.value, IntValueNode):
                size = max(0, int(argument.value.value))
            else:
                size = self.max_list_size
            break
        return min(size, self.max_list_size)


def _is_list(field_type: Any) -> bool:
    if isinstance(field_type, GraphQLNonNull):
        field_type = field_type.of_type
    return isinstance(field_type, GraphQLList)


def _named_type(field_type: Any) -> Any:
    while isinstance(field_type, (GraphQLNonNull, GraphQLList)):
        field_type = field_type.of_type
    return field_type


def complexity_rule(
    guard: ComplexityGuard,
    *,
    max_list_size: int,
    unit_costs: Mapping[str, int] | None = None,
    default_cost: int = 1,
    default_list_size: int = DEFAULT_LIST_SIZE,
) -> type[ValidationRule]:
    """Build a validation rule class bound to ``guard``.

    Args:
        guard: Guard holding the depth and cost limits
        max_list_size: Upper clamp for list arity, and the arity of list
            fields sized through a variable (usually the max page size)
        unit_costs: Unit cost per ``"Type.field"``; other fields cost ``default_cost``
        default_cost: Unit cost of fields absent from ``unit_costs``
        default_list_size: Arity of list fields without a size argument
    """

    class ResolutionComplexityRule(ValidationRule):
        """Reject operations whose resolution tree exceeds the guard's limits."""

        def __init__(self, context: ValidationContext) -> None:
            super().__init__(context)
            document = context.document
            fragments = {
                definition.name.value: definition
                for definition in document.definitions
                if isinstance(definition, FragmentDefinitionNode)
            }
            self.builder = TreeBuilder(
                context.schema,
                fragments,
                unit_costs=unit_costs,
                default_cost=default_cost,
                default_list_size=default_list_size,
                max_list_size=max_list_size,
            )

        def enter_operation_definition(self, node: OperationDefinitionNode, *_args: Any) -> None:
            tree = self.builder.build(node)
            try:
                guard.check(tree)
            except QueryTooExpensive as exc:
                self.report_error(to_graphql_error(exc, nodes=[node]))

    return ResolutionComplexityRule


__all__ = ["DEFAULT_LIST_SIZE", "TreeBuilder", "complexity_rule"]
