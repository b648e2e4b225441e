"""
Parsed filter representation.

A filter is parsed once into a flat list of :class:`Condition` objects,
each carrying a closed :class:`QueryOperator`. Unknown ``$``-keys are
rejected here, so the compilers never branch on raw operator strings.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..exceptions import CompileError, UnknownOperatorError


class QueryOperator(str, Enum):
    """Supported filter operators."""

    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NIN = "$nin"
    EXISTS = "$exists"
    REGEX = "$regex"


class UpdateOperator(str, Enum):
    """Supported update operators."""

    SET = "$set"
    UNSET = "$unset"
    INC = "$inc"


_VALID_OPERATORS: list[str] = [m.value for m in QueryOperator]


@dataclass(frozen=True)
class Condition:
    """One ``field <operator> value`` comparison."""

    field: str
    op: QueryOperator
    value: Any


def parse_operator(key: str) -> QueryOperator:
    try:
        return QueryOperator(key)
    except ValueError:
        raise UnknownOperatorError(key, _VALID_OPERATORS) from None


def is_operator_object(value: Any) -> bool:
    """
    ``True`` when ``value`` is an operator-object.

    A mapping whose keys all start with ``$`` is an operator-object; a
    mapping with none is a literal sub-document; mixing the two is an error.
    """
    if not isinstance(value, Mapping) or not value:
        return False
    dollar = [isinstance(k, str) and k.startswith("$") for k in value]
    if all(dollar):
        return True
    if any(dollar):
        raise CompileError(
            "Cannot mix operators and literal fields in one filter entry: "
            f"{sorted(map(str, value))}",
        )
    return False


def parse_filter(filter: Mapping[str, Any] | None) -> list[Condition]:
    """Flatten a filter document into conditions, in iteration order."""
    if not filter:
        return []
    if not isinstance(filter, Mapping):
        raise CompileError(f"Filter must be a mapping, got {type(filter).__name__}")

    conditions: list[Condition] = []
    for field, value in filter.items():
        if not isinstance(field, str) or not field:
            raise CompileError(f"Invalid filter field: {field!r}", key=str(field))
        if field.startswith("$"):
            # Top-level logical operators ($and/$or/...) are not supported.
            raise UnknownOperatorError(field, _VALID_OPERATORS)
        if is_operator_object(value):
            for key, operand in value.items():
                conditions.append(Condition(field, parse_operator(key), operand))
        else:
            conditions.append(Condition(field, QueryOperator.EQ, value))
    return conditions


def literal_fields(filter: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Fields fixed by equality in ``filter``.

    Used to seed upserted documents: literal values and ``$eq`` operands.
    """
    return {
        c.field: c.value
        for c in parse_filter(filter)
        if c.op is QueryOperator.EQ
    }
