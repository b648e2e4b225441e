"""Standard comparison operators."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from ...serialization import encode_param
from ..ast import QueryOperator
from ..fragments import FieldKind, SQLFragment
from ..strategy import SQLOperator

if TYPE_CHECKING:
    from ..fragments import FieldRef

_SQLITE_TIMESTAMP = "%Y-%m-%d %H:%M:%S"


def bind(field: FieldRef, value: Any) -> Any:
    """
    Encode an operand for ``field``.

    System columns take the raw operand (datetimes in SQLite's
    ``CURRENT_TIMESTAMP`` format); body and promoted fields are encoded to
    match ``json_extract`` output.
    """
    if field.kind is FieldKind.SYSTEM:
        if isinstance(value, datetime):
            return value.strftime(_SQLITE_TIMESTAMP)
        if isinstance(value, str | int | float) and not isinstance(value, bool):
            return value
        return str(value)
    return encode_param(value)


class _ComparisonOperator(SQLOperator):
    sql_operator: str = "="

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        return SQLFragment(f"{field.expr} {self.sql_operator} ?", (bind(field, value),))


class _RangeOperator(SQLOperator):
    sql_operator: str = ">"

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        # Text operands keep text ordering (ISO dates); numbers compare as REAL.
        expr = field.expr if isinstance(value, str) else field.numeric_expr
        return SQLFragment(f"{expr} {self.sql_operator} ?", (bind(field, value),))


class EqualOperator(_ComparisonOperator):
    sql_operator = "="

    @property
    def name(self) -> QueryOperator:
        return QueryOperator.EQ

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        if value is None:
            return SQLFragment(f"{field.expr} IS NULL")
        return super().apply(field, value)


class NotEqualOperator(_ComparisonOperator):
    sql_operator = "!="

    @property
    def name(self) -> QueryOperator:
        return QueryOperator.NE

    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        if value is None:
            return SQLFragment(f"{field.expr} IS NOT NULL")
        return super().apply(field, value)


class GreaterThanOperator(_RangeOperator):
    sql_operator = ">"

    @property
    def name(self) -> QueryOperator:
        return QueryOperator.GT


class GreaterEqualOperator(_RangeOperator):
    sql_operator = ">="

    @property
    def name(self) -> QueryOperator:
        return QueryOperator.GTE


class LessThanOperator(_RangeOperator):
    sql_operator = "<"

    @property
    def name(self) -> QueryOperator:
        return QueryOperator.LT


class LessEqualOperator(_RangeOperator):
    sql_operator = "<="

    @property
    def name(self) -> QueryOperator:
        return QueryOperator.LTE
