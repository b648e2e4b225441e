"""
Compile a filter document into a SQL predicate fragment.

Uses the strategy pattern: each operator is an isolated class in
``operators/``, registered in a ``SQLOperatorRegistry``. The filter is
first parsed into :class:`~.ast.Condition` objects (unknown operators fail
here, before anything reaches the engine); each condition's field is then
resolved to a system column, a promoted column or a ``json_extract`` call
and handed to the registry.

The result never carries the ``WHERE`` keyword; callers add it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .ast import parse_filter
from .fragments import (
    BODY_COLUMN,
    SYSTEM_FIELD_COLUMNS,
    FieldKind,
    FieldRef,
    SQLFragment,
    extract,
    quote_identifier,
)
from .operators import DEFAULT_REGISTRY

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .strategy import SQLOperatorRegistry


class FilterCompiler:
    """
    Filter-document to SQL compiler.

    Args:
        registry: Optional custom operator registry. Falls back to
            ``DEFAULT_REGISTRY``.
        columns: Promoted paths mapped to their mirrored column names.
            Conditions on these paths compare against the column instead of
            extracting from the body.
        source: Column holding the serialized body.
    """

    def __init__(
        self,
        registry: SQLOperatorRegistry | None = None,
        columns: Mapping[str, str] | None = None,
        source: str = BODY_COLUMN,
    ) -> None:
        self._registry = registry or DEFAULT_REGISTRY
        self._columns = dict(columns or {})
        self._source = source

    def resolve_field(self, path: str) -> FieldRef:
        system_column = SYSTEM_FIELD_COLUMNS.get(path)
        if system_column is not None:
            return FieldRef(path, system_column, FieldKind.SYSTEM)
        column = self._columns.get(path)
        if column is not None:
            return FieldRef(path, quote_identifier(column), FieldKind.COLUMN)
        return FieldRef(path, extract(path, self._source), FieldKind.BODY)

    def compile(self, filter: Mapping[str, Any] | None) -> SQLFragment:
        """
        Compile ``filter`` to an ``AND``-joined predicate.

        An empty or ``None`` filter yields the empty fragment (match all).

        Raises:
            CompileError: For malformed filters or operands.
            UnknownOperatorError: For unsupported ``$`` keys.
        """
        fragments = [
            self._registry.apply(cond.op, self.resolve_field(cond.field), cond.value)
            for cond in parse_filter(filter)
        ]
        return SQLFragment.join(fragments, " AND ")


def compile_filter(
    filter: Mapping[str, Any] | None,
    *,
    columns: Mapping[str, str] | None = None,
) -> SQLFragment:
    """Compile ``filter`` with the default registry."""
    return FilterCompiler(columns=columns).compile(filter)
