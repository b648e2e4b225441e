"""
Document store exception hierarchy.

All exceptions inherit from ``DocumentStoreError`` and provide
``to_dict()`` for API-friendly error responses.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any


class DocumentStoreError(Exception):
    """Root exception for the document store."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class ConfigurationError(DocumentStoreError):
    """Raised when a ``ConnectionConfig`` holds invalid values."""


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


class CompileError(DocumentStoreError):
    """Unsupported operator or malformed filter / update / options."""

    def __init__(self, message: str, key: str | None = None) -> None:
        self.message = message
        self.key = key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "COMPILE_ERROR",
            "message": self.message,
            "key": self.key,
        }


class UnknownOperatorError(CompileError):
    """
    Unknown ``$``-operator in a filter.

    Provides fuzzy-matched suggestions for likely intended operators.
    """

    def __init__(self, operator: str, valid_operators: list[str]) -> None:
        self.operator = operator
        self.valid_operators = valid_operators
        self.suggestions = get_close_matches(operator, valid_operators, n=3, cutoff=0.6)

        message = f"Unsupported operator: '{operator}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message, key=operator)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNKNOWN_OPERATOR",
            "operator": self.operator,
            "suggestions": self.suggestions,
            "valid_operators": sorted(self.valid_operators),
        }


class InvalidUpdateError(CompileError):
    """Malformed update document (unknown operator, system field target, ...)."""


class MissingSetOperatorError(CompileError):
    """Raised when ``update_many`` is called without a ``$set`` operator."""

    def __init__(self) -> None:
        super().__init__("update_many requires the $set operator", key="$set")


# ---------------------------------------------------------------------------
# Schema / promotion
# ---------------------------------------------------------------------------


class CompoundUniqueNotSupportedError(DocumentStoreError):
    """Unique constraints can only be applied to a single promoted path."""

    def __init__(self, paths: list[str]) -> None:
        self.paths = paths
        super().__init__(
            "Unique constraint can only be applied to single fields, "
            f"got: {', '.join(paths)}"
        )


class ConstraintViolationError(DocumentStoreError):
    """
    A uniqueness or check constraint rejected a write.

    ``engine_message`` is the verbatim message reported by SQLite and
    ``expression`` the human-readable check expression when one is known.
    """

    def __init__(
        self,
        engine_message: str,
        *,
        expression: str | None = None,
        table: str | None = None,
    ) -> None:
        self.engine_message = engine_message
        self.expression = expression
        self.table = table
        message = engine_message
        if expression and expression not in engine_message:
            message = f"{engine_message} ({expression})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "CONSTRAINT_VIOLATION",
            "message": self.engine_message,
            "expression": self.expression,
            "table": self.table,
        }


class DuplicateKeyError(ConstraintViolationError):
    """Raised when a write collides with an existing ``_id`` or unique column."""


# ---------------------------------------------------------------------------
# Connection / transactions
# ---------------------------------------------------------------------------


class ConnectionStateError(DocumentStoreError):
    """Raised on lifecycle misuse (connect twice, use after close)."""


class PoolTimeoutError(DocumentStoreError):
    """No pooled connection became free within ``pool_timeout`` seconds."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.2f}s waiting for a connection")


class TransactionStateError(DocumentStoreError):
    """Commit or rollback requested while no transaction is active."""


__all__: list[str] = [
    "CompileError",
    "CompoundUniqueNotSupportedError",
    "ConfigurationError",
    "ConnectionStateError",
    "ConstraintViolationError",
    "DocumentStoreError",
    "DuplicateKeyError",
    "InvalidUpdateError",
    "MissingSetOperatorError",
    "PoolTimeoutError",
    "TransactionStateError",
    "UnknownOperatorError",
]
