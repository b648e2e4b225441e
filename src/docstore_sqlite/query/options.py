"""
Result-shaping options: ordering, pagination and projection.

The filter defines *what* matches; :class:`FindOptions` defines *how* the
matching documents come back.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from ..exceptions import CompileError
from ..serialization import ID_FIELD, clone, deep_get, deep_set, deep_unset
from .fragments import SYSTEM_FIELD_COLUMNS, SQLFragment, extract, quote_identifier

# SQLite rejects OFFSET without LIMIT. Skip-only queries use this bound, so
# they are capped rather than truly unbounded.
MAX_LIMIT_SENTINEL = 999_999_999

SortSpec = Mapping[str, int] | Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


@dataclass(frozen=True)
class FindOptions:
    """
    Immutable container for result-shaping parameters.

    Attributes:
        sort: Ordered field -> direction (``1`` / ``-1``) pairs.
        limit: Maximum number of documents; ``None`` or ``0`` means no limit.
        skip: Number of documents to skip.
        projection: Inclusion (``{"a": 1}``) or exclusion (``{"a": 0}``) map.
    """

    sort: list[tuple[str, int]] = field(default_factory=list)
    limit: int | None = None
    skip: int | None = None
    projection: dict[str, int] | None = None

    @classmethod
    def build(
        cls,
        sort: SortSpec | None = None,
        limit: int | None = None,
        skip: int | None = None,
        projection: Mapping[str, Any] | None = None,
    ) -> FindOptions:
        return cls(
            sort=normalize_sort(sort),
            limit=limit,
            skip=skip,
            projection=dict(projection) if projection else None,
        )

    def with_pagination(
        self, limit: int | None = None, skip: int | None = None
    ) -> FindOptions:
        """Return a copy with updated pagination parameters."""
        return replace(
            self,
            limit=limit if limit is not None else self.limit,
            skip=skip if skip is not None else self.skip,
        )

    def with_sort(self, sort: SortSpec) -> FindOptions:
        return replace(self, sort=normalize_sort(sort))


def normalize_sort(sort: SortSpec | None) -> list[tuple[str, int]]:
    if not sort:
        return []
    items = sort.items() if isinstance(sort, Mapping) else sort
    pairs: list[tuple[str, int]] = []
    for item in items:
        try:
            path, direction = item
        except (TypeError, ValueError):
            raise CompileError(f"Invalid sort entry: {item!r}") from None
        if not isinstance(path, str) or not path:
            raise CompileError(f"Invalid sort field: {path!r}", key=str(path))
        if isinstance(direction, bool) or direction not in (ASCENDING, DESCENDING):
            raise CompileError(
                f"Sort direction for '{path}' must be 1 or -1, got {direction!r}",
                key=path,
            )
        pairs.append((path, direction))
    return pairs


def compile_sort(
    sort: SortSpec | None,
    *,
    columns: Mapping[str, str] | None = None,
) -> SQLFragment:
    """
    ``ORDER BY`` clause preserving the caller's key order.

    Identifier and timestamp fields sort on their columns, promoted paths on
    their mirrored column, everything else on ``json_extract``.
    """
    terms = []
    for path, direction in normalize_sort(sort):
        expr = SYSTEM_FIELD_COLUMNS.get(path)
        if expr is None:
            column = (columns or {}).get(path)
            expr = quote_identifier(column) if column else extract(path)
        terms.append(f"{expr} {'ASC' if direction == ASCENDING else 'DESC'}")
    if not terms:
        return SQLFragment()
    return SQLFragment(f"ORDER BY {', '.join(terms)}")


def _check_count(value: Any, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise CompileError(f"{name} must be an integer, got {value!r}", key=name)
    if value < 0:
        raise CompileError(f"{name} must not be negative, got {value}", key=name)
    return value


def compile_pagination(
    limit: int | None = None, skip: int | None = None
) -> SQLFragment:
    """
    ``LIMIT`` / ``OFFSET`` clause.

    Values are validated integers and inlined. Any given limit is emitted,
    ``0`` included; a skip without a limit emits ``LIMIT MAX_LIMIT_SENTINEL``.
    """
    n = _check_count(limit, "limit")
    m = _check_count(skip, "skip")
    if n is not None:
        sql = f"LIMIT {n}"
        if m:
            sql += f" OFFSET {m}"
        return SQLFragment(sql)
    if m:
        return SQLFragment(f"LIMIT {MAX_LIMIT_SENTINEL} OFFSET {m}")
    return SQLFragment()


def apply_projection(
    document: dict[str, Any], projection: Mapping[str, Any] | None
) -> dict[str, Any]:
    """
    Shape a returned document.

    ``_id`` is kept unless explicitly excluded; otherwise inclusion and
    exclusion cannot be mixed.
    """
    if not projection:
        return document
    flags = {path: bool(flag) for path, flag in projection.items()}
    keep_id = flags.pop(ID_FIELD, True)
    modes = set(flags.values())
    if len(modes) > 1:
        raise CompileError("Projection cannot mix inclusion and exclusion")

    if modes == {True}:
        shaped: dict[str, Any] = {}
        missing = object()
        for path in flags:
            value = deep_get(document, path, missing)
            if value is not missing:
                deep_set(shaped, path, value)
        if keep_id and ID_FIELD in document:
            shaped = {ID_FIELD: document[ID_FIELD], **shaped}
        return shaped

    shaped = clone(document)
    for path in flags:
        deep_unset(shaped, path)
    if not keep_id:
        shaped.pop(ID_FIELD, None)
    return shaped
