"""
SQL operator compilation strategy.

Provides the ``SQLOperator`` interface and a registry keyed by
:class:`~docstore_sqlite.query.ast.QueryOperator`. Each operator is an
isolated class in ``operators/`` that turns a resolved field and an operand
into a :class:`SQLFragment`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ..exceptions import UnknownOperatorError

if TYPE_CHECKING:
    from .ast import QueryOperator
    from .fragments import FieldRef, SQLFragment


class SQLOperator(ABC):
    """
    Strategy interface for compiling a filter operator
    into a SQL predicate fragment.
    """

    @property
    @abstractmethod
    def name(self) -> QueryOperator:
        """The operator this strategy handles."""
        ...

    @abstractmethod
    def apply(self, field: FieldRef, value: Any) -> SQLFragment:
        """
        Build a predicate fragment.

        Args:
            field: The resolved field reference (system column, promoted
                column or body extraction).
            value: The raw operand from the filter.

        Returns:
            A fragment with ``?`` placeholders and its parameters.
        """
        ...


class SQLOperatorRegistry:
    """
    Registry of ``SQLOperator`` instances keyed by :class:`QueryOperator`.
    """

    def __init__(self) -> None:
        self._operators: dict[QueryOperator, SQLOperator] = {}

    def register(self, operator: SQLOperator) -> None:
        self._operators[operator.name] = operator

    def register_all(self, *operators: SQLOperator) -> None:
        for op in operators:
            self.register(op)

    def unregister(self, name: QueryOperator) -> None:
        self._operators.pop(name, None)

    def get(self, name: QueryOperator) -> SQLOperator | None:
        return self._operators.get(name)

    def has(self, name: QueryOperator) -> bool:
        return name in self._operators

    @property
    def supported_operators(self) -> set[QueryOperator]:
        return set(self._operators.keys())

    def apply(self, name: QueryOperator, field: FieldRef, value: Any) -> SQLFragment:
        """
        Look up the operator and apply.

        Raises:
            UnknownOperatorError: If the operator is not registered.
        """
        op = self.get(name)
        if op is None:
            raise UnknownOperatorError(
                name.value, [o.value for o in self.supported_operators]
            )
        return op.apply(field, value)
