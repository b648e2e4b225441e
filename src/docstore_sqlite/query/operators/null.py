"""Presence operators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..ast import QueryOperator
from ..fragments import SQLFragment
from ..strategy import SQLOperator

if TYPE_CHECKING:
    from ..fragments import FieldRef


class ExistsOperator(SQLOperator):
    @property
    def name(self) -> QueryOperator:
        return QueryOperator.EXISTS

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        # A stored JSON null is indistinguishable from a missing key here.
        if value:
            return SQLFragment(f"{field.expr} IS NOT NULL")
        return SQLFragment(f"{field.expr} IS NULL")
