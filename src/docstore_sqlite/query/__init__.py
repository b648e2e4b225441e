"""
Filter, update and result-option compilers.

Everything here is pure: compilers turn documents into
:class:`SQLFragment` objects and never talk to the engine.
"""

from __future__ import annotations

from .ast import (
    Condition,
    QueryOperator,
    UpdateOperator,
    literal_fields,
    parse_filter,
)
from .filters import FilterCompiler, compile_filter
from .fragments import (
    BODY_COLUMN,
    ID_COLUMN,
    FieldKind,
    FieldRef,
    SQLFragment,
    column_for_path,
    extract,
    json_path,
    quote_identifier,
)
from .operators import DEFAULT_REGISTRY, build_default_registry
from .options import (
    MAX_LIMIT_SENTINEL,
    FindOptions,
    apply_projection,
    compile_pagination,
    compile_sort,
)
from .raw import prepare_raw_predicate, rewrite_expression
from .strategy import SQLOperator, SQLOperatorRegistry
from .updates import UpdateCompiler, UpdateSpec

__all__ = [
    "BODY_COLUMN",
    "DEFAULT_REGISTRY",
    "ID_COLUMN",
    "MAX_LIMIT_SENTINEL",
    "Condition",
    "FieldKind",
    "FieldRef",
    "FilterCompiler",
    "FindOptions",
    "QueryOperator",
    "SQLFragment",
    "SQLOperator",
    "SQLOperatorRegistry",
    "UpdateCompiler",
    "UpdateOperator",
    "UpdateSpec",
    "apply_projection",
    "build_default_registry",
    "column_for_path",
    "compile_filter",
    "compile_pagination",
    "compile_sort",
    "extract",
    "json_path",
    "literal_fields",
    "parse_filter",
    "prepare_raw_predicate",
    "quote_identifier",
    "rewrite_expression",
]
