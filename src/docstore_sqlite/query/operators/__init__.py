"""
Filter operator implementations and default registry.

Usage::

    from docstore_sqlite.query.operators import DEFAULT_REGISTRY

    fragment = DEFAULT_REGISTRY.apply(QueryOperator.EQ, field, value)
"""

from __future__ import annotations

from ..strategy import SQLOperatorRegistry
from .null import ExistsOperator
from .set import InOperator, NotInOperator
from .standard import (
    EqualOperator,
    GreaterEqualOperator,
    GreaterThanOperator,
    LessEqualOperator,
    LessThanOperator,
    NotEqualOperator,
    bind,
)
from .string import RegexOperator, escape_like, regex_to_like


def build_default_registry() -> SQLOperatorRegistry:
    """Create a registry with all built-in filter operators."""
    registry = SQLOperatorRegistry()
    registry.register_all(
        # Standard comparison
        EqualOperator(),
        NotEqualOperator(),
        GreaterThanOperator(),
        GreaterEqualOperator(),
        LessThanOperator(),
        LessEqualOperator(),
        # Set
        InOperator(),
        NotInOperator(),
        # Presence
        ExistsOperator(),
        # Pattern
        RegexOperator(),
    )
    return registry


DEFAULT_REGISTRY: SQLOperatorRegistry = build_default_registry()

__all__ = [
    "DEFAULT_REGISTRY",
    "EqualOperator",
    "ExistsOperator",
    "GreaterEqualOperator",
    "GreaterThanOperator",
    "InOperator",
    "LessEqualOperator",
    "LessThanOperator",
    "NotEqualOperator",
    "NotInOperator",
    "RegexOperator",
    "bind",
    "build_default_registry",
    "escape_like",
    "regex_to_like",
]
