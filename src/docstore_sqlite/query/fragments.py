"""
SQL fragment primitives shared by the filter, update and sort compilers.

A fragment is SQL text with ``?`` placeholders plus the positional
parameters that fill them, in order. Fragments compose by concatenating
text and parameter tuples.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..exceptions import CompileError

if TYPE_CHECKING:
    from collections.abc import Iterable

BODY_COLUMN = "data"
ID_COLUMN = "id"
CREATED_AT_COLUMN = "created_at"
UPDATED_AT_COLUMN = "updated_at"

FIXED_COLUMNS: frozenset[str] = frozenset(
    {ID_COLUMN, BODY_COLUMN, CREATED_AT_COLUMN, UPDATED_AT_COLUMN}
)

# Document field -> real column. ``_id`` and ``id`` both address the key.
SYSTEM_FIELD_COLUMNS: dict[str, str] = {
    "_id": ID_COLUMN,
    "id": ID_COLUMN,
    "created_at": CREATED_AT_COLUMN,
    "updated_at": UPDATED_AT_COLUMN,
}

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_COLUMNS = frozenset({"_id", "rowid", "oid", "_rowid_"})


@dataclass(frozen=True)
class SQLFragment:
    """SQL text with positional ``?`` parameters."""

    sql: str = ""
    params: tuple[Any, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.sql)

    def __add__(self, other: SQLFragment) -> SQLFragment:
        if not other:
            return self
        if not self:
            return other
        return SQLFragment(f"{self.sql} {other.sql}", self.params + other.params)

    def prefixed(self, keyword: str) -> SQLFragment:
        """Return ``keyword <sql>``, or the empty fragment when empty."""
        if not self:
            return self
        return SQLFragment(f"{keyword} {self.sql}", self.params)

    @classmethod
    def join(cls, fragments: Iterable[SQLFragment], separator: str) -> SQLFragment:
        parts = [f for f in fragments if f]
        return cls(
            separator.join(f.sql for f in parts),
            tuple(p for f in parts for p in f.params),
        )


class FieldKind(str, Enum):
    """Where a filter field's value is read from."""

    SYSTEM = "system"
    COLUMN = "column"
    BODY = "body"


@dataclass(frozen=True)
class FieldRef:
    """
    A resolved field reference inside a compiled statement.

    Attributes:
        path: The document field path as written by the caller.
        expr: SQL expression yielding the field's value.
        kind: System column, promoted column, or JSON body extraction.
    """

    path: str
    expr: str
    kind: FieldKind

    @property
    def numeric_expr(self) -> str:
        """Expression cast to REAL for range comparisons.

        System columns are compared as stored.
        """
        if self.kind is FieldKind.SYSTEM:
            return self.expr
        return f"CAST({self.expr} AS REAL)"


def is_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_RE.match(name))


def validate_identifier(name: str, what: str = "identifier") -> str:
    """Reject anything that cannot be interpolated into SQL as a bare name."""
    if not isinstance(name, str) or not is_identifier(name):
        raise CompileError(f"Invalid {what}: {name!r}", key=str(name))
    return name


def json_path(path: str) -> str:
    """
    Convert a dotted field path into a SQLite JSON path.

    ``address.city`` -> ``$.address.city``; numeric segments index arrays
    (``tags.0`` -> ``$.tags[0]``); other segments are double-quoted.
    """
    if not isinstance(path, str) or not path:
        raise CompileError("Field path must be a non-empty string", key=str(path))
    out = ["$"]
    for segment in path.split("."):
        if not segment:
            raise CompileError(f"Empty segment in field path: {path!r}", key=path)
        if "'" in segment or '"' in segment:
            raise CompileError(
                f"Quotes are not allowed in field path: {path!r}", key=path
            )
        if segment.isdigit():
            out.append(f"[{segment}]")
        elif is_identifier(segment):
            out.append(f".{segment}")
        else:
            out.append(f'."{segment}"')
    return "".join(out)


def extract(path: str, source: str = BODY_COLUMN) -> str:
    """``json_extract`` expression for ``path`` inside ``source``."""
    return f"json_extract({source}, '{json_path(path)}')"


def column_for_path(path: str) -> str:
    """
    Promoted column name for a dotted path.

    Dots are flattened to a double underscore (``address.city`` ->
    ``address__city``); every segment must be a plain identifier.
    """
    if not isinstance(path, str) or not path:
        raise CompileError("Promoted path must be a non-empty string", key=str(path))
    segments = path.split(".")
    for segment in segments:
        if not is_identifier(segment):
            raise CompileError(f"Cannot promote path {path!r}", key=path)
    column = "__".join(segments)
    if column in FIXED_COLUMNS or column.lower() in _RESERVED_COLUMNS:
        raise CompileError(f"Cannot promote system field {path!r}", key=path)
    return column


def quote_identifier(name: str) -> str:
    """Double-quote a validated identifier so keywords work as column names."""
    return f'"{validate_identifier(name)}"'


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))
