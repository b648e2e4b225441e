"""Set membership operators."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from ...exceptions import CompileError
from ..ast import QueryOperator
from ..fragments import SQLFragment, placeholders
from ..strategy import SQLOperator
from .standard import bind

if TYPE_CHECKING:
    from ..fragments import FieldRef


def _members(op: QueryOperator, field: FieldRef, value: Any) -> list[Any]:
    if isinstance(value, str | bytes | Mapping) or not isinstance(value, Iterable):
        raise CompileError(
            f"{op.value} requires an array operand for '{field.path}'", key=field.path
        )
    return list(value)


class InOperator(SQLOperator):
    @property
    def name(self) -> QueryOperator:
        return QueryOperator.IN

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        members = _members(self.name, field, value)
        if not members:
            return SQLFragment("1 = 0")
        values = [m for m in members if m is not None]
        has_null = len(values) != len(members)
        if not values:
            return SQLFragment(f"{field.expr} IS NULL")
        sql = f"{field.expr} IN ({placeholders(len(values))})"
        if has_null:
            sql = f"({sql} OR {field.expr} IS NULL)"
        return SQLFragment(sql, tuple(bind(field, v) for v in values))


class NotInOperator(SQLOperator):
    @property
    def name(self) -> QueryOperator:
        return QueryOperator.NIN

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        members = _members(self.name, field, value)
        if not members:
            return SQLFragment("1 = 1")
        values = [m for m in members if m is not None]
        has_null = len(values) != len(members)
        if not values:
            return SQLFragment(f"{field.expr} IS NOT NULL")
        sql = f"{field.expr} NOT IN ({placeholders(len(values))})"
        if has_null:
            sql = f"({sql} AND {field.expr} IS NOT NULL)"
        return SQLFragment(sql, tuple(bind(field, v) for v in values))
