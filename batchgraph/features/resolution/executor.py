"""Selection-tree executor.

Runs one request's selection tree in three steps:

1. Plan: look every selected field up in the FieldRegistry and build the
   resolution tree (unit cost, arity from arguments, children).
2. Guard: check the tree against the depth and cost limits. A rejected tree
   never reaches storage.
3. Resolve: run sibling fields concurrently as tracked resolver tasks so
   their loads land in the same batches. A failing field resolves to None
   and is reported as a FieldError; siblings that do not depend on it
   complete normally.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from batchgraph.core.exceptions import InvalidQuery, ResolutionError
from batchgraph.features.resolution.complexity import ResolutionNode
from batchgraph.features.resolution.fields import ROOT_TYPE
from batchgraph.features.resolution.keys import NOT_FOUND

if TYPE_CHECKING:
    from batchgraph.features.resolution.complexity import ComplexityReport
    from batchgraph.features.resolution.context import ResolutionContext
    from batchgraph.features.resolution.fields import FieldDefinition, FieldRegistry

logger = logging.getLogger(__name__)

Path = tuple[str | int, ...]


@dataclass(frozen=True)
class Selection:
    """One selected field with its arguments and sub-selections."""

    field: str
    args: Mapping[str, Any] = field(default_factory=dict)
    children: tuple[Selection, ...] = ()
    alias: str | None = None

    @property
    def response_key(self) -> str:
        return self.alias or self.field

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Selection:
        """Build a selection from ``{"field", "args", "children", "alias"}``."""
        try:
            return cls(
                field=str(data["field"]),
                args=dict(data.get("args") or {}),
                children=tuple(cls.from_dict(c) for c in data.get("children") or ()),
                alias=data.get("alias"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidQuery(f"Malformed selection: {e}") from e


@dataclass(frozen=True)
class FieldError:
    """A failure localized to one response path."""

    path: Path
    error: ResolutionError

    @property
    def code(self) -> str:
        return self.error.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": list(self.path),
            "message": self.error.detail,
            "code": self.error.code,
        }


@dataclass
class ExecutionResult:
    data: dict[str, Any] | None
    errors: list[FieldError] = field(default_factory=list)
    report: ComplexityReport | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


class Executor:
    """Plans, guards and resolves selection trees against a FieldRegistry."""

    def __init__(self, fields: FieldRegistry, *, root_type: str = ROOT_TYPE) -> None:
        self.fields = fields
        self.root_type = root_type

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        selections: Iterable[Selection],
        max_page_size: int,
        *,
        type_name: str | None = None,
    ) -> tuple[ResolutionNode, ...]:
        """Build the resolution tree for ``selections``.

        Raises:
            InvalidQuery: If a field is unknown, a scalar field has
                sub-selections or an object field has none.
        """
        parent_type = type_name or self.root_type
        nodes: list[ResolutionNode] = []
        for selection in selections:
            definition = self.fields.get(parent_type, selection.field)
            if definition.returns is None and selection.children:
                raise InvalidQuery(
                    f"Field '{parent_type}.{selection.field}' has no sub-fields",
                    extra={"type": parent_type, "field": selection.field},
                )
            if definition.returns is not None and not selection.children:
                raise InvalidQuery(
                    f"Field '{parent_type}.{selection.field}' needs a selection of sub-fields",
                    extra={"type": parent_type, "field": selection.field},
                )
            children = ()
            if definition.returns is not None:
                children = self.plan(
                    selection.children, max_page_size, type_name=definition.returns
                )
            nodes.append(
                ResolutionNode(
                    field=selection.field,
                    unit_cost=definition.unit_cost,
                    arity=definition.arity_for(selection.args, max_page_size),
                    children=children,
                )
            )
        return tuple(nodes)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        selections: Sequence[Selection],
        ctx: ResolutionContext,
        *,
        root: Any = None,
    ) -> ExecutionResult:
        """Plan, guard and resolve a selection tree.

        Planning and guard failures reject the whole request and are
        raised; failures during resolution are collected per field.

        Raises:
            InvalidQuery: If the selection tree does not fit the registry.
            QueryTooExpensive: If the tree exceeds the configured limits.
        """
        tree = self.plan(selections, ctx.settings.max_page_size)
        report = ctx.check_complexity(tree)

        errors: list[FieldError] = []
        task = ctx.scheduler.spawn(
            self._resolve_object(self.root_type, root, selections, ctx, (), errors)
        )
        data = await task
        errors.sort(key=lambda e: [str(p) for p in e.path])
        if errors:
            logger.info(
                "Resolution completed with field errors",
                extra={"error_count": len(errors), "codes": sorted({e.code for e in errors})},
            )
        return ExecutionResult(data=data, errors=errors, report=report)

    async def _resolve_object(
        self,
        type_name: str,
        parent: Any,
        selections: Sequence[Selection],
        ctx: ResolutionContext,
        path: Path,
        errors: list[FieldError],
    ) -> dict[str, Any]:
        results = await ctx.gather(
            *(
                self._resolve_field(type_name, parent, selection, ctx, path, errors)
                for selection in selections
            )
        )
        _reraise_base(results)
        return {
            selection.response_key: value
            for selection, value in zip(selections, results, strict=True)
        }

    async def _resolve_field(
        self,
        type_name: str,
        parent: Any,
        selection: Selection,
        ctx: ResolutionContext,
        path: Path,
        errors: list[FieldError],
    ) -> Any:
        definition = self.fields.get(type_name, selection.field)
        field_path = (*path, selection.response_key)
        try:
            value = await definition.run(parent, selection.args, ctx)
        except ResolutionError as exc:
            errors.append(FieldError(field_path, exc))
            return None

        if value is NOT_FOUND or value is None:
            return None
        if definition.returns is None:
            return value
        return await self._complete(definition, value, selection, ctx, field_path, errors)

    async def _complete(
        self,
        definition: FieldDefinition,
        value: Any,
        selection: Selection,
        ctx: ResolutionContext,
        path: Path,
        errors: list[FieldError],
    ) -> Any:
        assert definition.returns is not None
        if not definition.many:
            return await self._resolve_object(
                definition.returns, value, selection.children, ctx, path, errors
            )
        # never more items than the arity the guard costed
        items = list(value)[: definition.arity_for(selection.args, ctx.settings.max_page_size)]
        results = await ctx.gather(
            *(
                self._resolve_object(
                    definition.returns, item, selection.children, ctx, (*path, i), errors
                )
                for i, item in enumerate(items)
            )
        )
        _reraise_base(results)
        return results


def _reraise_base(results: Sequence[Any]) -> None:
    # ctx.gather returns exceptions in place of results; field failures are
    # already collected, so anything left here is cancellation or a bug
    for result in results:
        if isinstance(result, BaseException):
            raise result


__all__ = ["ExecutionResult", "Executor", "FieldError", "Selection"]
