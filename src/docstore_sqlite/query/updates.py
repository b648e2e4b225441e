"""
Update-document parsing and compilation.

An update is either an operator document (``$set`` / ``$unset`` / ``$inc``)
or a replacement body. Operator updates run in one of two ways:

- **in place**: a single ``UPDATE`` rewriting the body with SQLite's
  ``json_set`` / ``json_remove``;
- **read-modify-write**: matching rows are fetched, :meth:`UpdateSpec.apply`
  mutates the decoded body in memory and each row is written back by id.

The collection picks read-modify-write whenever a promoted column mirrors
an affected path or a path indexes an array (see
:meth:`UpdateCompiler.requires_read_modify_write`), and whenever a target
row matches :meth:`UpdateCompiler.in_place_hazard`. Both ways produce the
body :meth:`UpdateSpec.apply` would.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import InvalidUpdateError
from ..serialization import (
    SYSTEM_FIELDS,
    clone,
    deep_get,
    deep_set,
    deep_unset,
    encode_document,
    encode_json,
    split_path,
)
from .ast import UpdateOperator
from .fragments import BODY_COLUMN, UPDATED_AT_COLUMN, SQLFragment, json_path

if TYPE_CHECKING:
    from collections.abc import Collection

_VALID_UPDATE_OPERATORS = [m.value for m in UpdateOperator]


def _check_path(path: Any, op: str) -> str:
    if not isinstance(path, str) or not path:
        raise InvalidUpdateError(f"{op} requires non-empty string paths", key=op)
    if split_path(path)[0] in SYSTEM_FIELDS:
        raise InvalidUpdateError(
            f"Field '{path}' is managed by the store and cannot be updated", key=path
        )
    # Validates segments (no quotes, no empty parts).
    json_path(path)
    return path


def _overlaps(a: str, b: str) -> bool:
    return a == b or a.startswith(b + ".") or b.startswith(a + ".")


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True)
class UpdateSpec:
    """
    A validated update document.

    Attributes:
        set: Paths to overwrite, in caller order.
        unset: Paths to delete.
        inc: Paths to increment by a numeric delta.
        replacement: The new body for whole-document updates, else ``None``.
    """

    set: dict[str, Any] = field(default_factory=dict)
    unset: tuple[str, ...] = ()
    inc: dict[str, int | float] = field(default_factory=dict)
    replacement: dict[str, Any] | None = None

    @classmethod
    def parse(cls, update: Mapping[str, Any] | UpdateSpec) -> UpdateSpec:
        if isinstance(update, UpdateSpec):
            return update
        if not isinstance(update, Mapping):
            raise InvalidUpdateError(
                f"Update must be a mapping, got {type(update).__name__}"
            )
        if not update:
            raise InvalidUpdateError("Update document must not be empty")

        dollar = [isinstance(k, str) and k.startswith("$") for k in update]
        if not any(dollar):
            return cls(
                replacement={k: v for k, v in update.items() if k not in SYSTEM_FIELDS}
            )
        if not all(dollar):
            raise InvalidUpdateError(
                "Cannot mix update operators and replacement fields: "
                f"{sorted(map(str, update))}"
            )

        set_: dict[str, Any] = {}
        unset: list[str] = []
        inc: dict[str, int | float] = {}
        for key, operand in update.items():
            try:
                op = UpdateOperator(key)
            except ValueError:
                raise InvalidUpdateError(
                    f"Unsupported update operator: '{key}'. "
                    f"Valid operators: {', '.join(_VALID_UPDATE_OPERATORS)}",
                    key=key,
                ) from None

            if op is UpdateOperator.SET:
                if not isinstance(operand, Mapping):
                    raise InvalidUpdateError("$set requires a mapping", key=key)
                for path, value in operand.items():
                    set_[_check_path(path, key)] = value
            elif op is UpdateOperator.UNSET:
                paths: Iterable[Any]
                if isinstance(operand, Mapping):
                    paths = operand.keys()
                elif isinstance(operand, str):
                    paths = [operand]
                elif isinstance(operand, Iterable):
                    paths = operand
                else:
                    raise InvalidUpdateError(
                        "$unset requires a mapping or list", key=key
                    )
                unset.extend(_check_path(p, key) for p in paths)
            else:
                if not isinstance(operand, Mapping):
                    raise InvalidUpdateError("$inc requires a mapping", key=key)
                for path, delta in operand.items():
                    if not _is_number(delta):
                        raise InvalidUpdateError(
                            f"$inc delta for '{path}' must be a number, got {delta!r}",
                            key=str(path),
                        )
                    inc[_check_path(path, key)] = delta

        spec = cls(set=set_, unset=tuple(dict.fromkeys(unset)), inc=inc)
        if not spec.paths:
            raise InvalidUpdateError("Update operators must not be empty")
        spec._check_conflicts()
        return spec

    def _check_conflicts(self) -> None:
        paths = list(self.set) + list(self.unset) + list(self.inc)
        for i, a in enumerate(paths):
            for b in paths[i + 1 :]:
                if _overlaps(a, b):
                    raise InvalidUpdateError(
                        f"Updating '{a}' and '{b}' in one update would conflict",
                        key=b,
                    )

    @property
    def is_replacement(self) -> bool:
        return self.replacement is not None

    @property
    def has_set(self) -> bool:
        return bool(self.set)

    @property
    def paths(self) -> list[str]:
        """Every path this update touches (empty for replacements)."""
        return [*self.set, *self.unset, *self.inc]

    def apply(self, document: Mapping[str, Any]) -> dict[str, Any]:
        """Return a new body with the update applied."""
        if self.replacement is not None:
            return clone(self.replacement)

        body = clone({k: v for k, v in document.items() if k not in SYSTEM_FIELDS})
        for path, value in self.set.items():
            deep_set(body, path, copy.deepcopy(value))
        for path in self.unset:
            deep_unset(body, path)
        for path, delta in self.inc.items():
            current = deep_get(body, path, None)
            if current is None:
                current = 0
            elif not _is_number(current):
                raise InvalidUpdateError(
                    f"Cannot apply $inc to non-numeric field '{path}'", key=path
                )
            deep_set(body, path, current + delta)
        return body


class UpdateCompiler:
    """Compiles :class:`UpdateSpec` objects into ``SET`` clauses."""

    def __init__(self, source: str = BODY_COLUMN) -> None:
        self._source = source

    def compile_set(self, values: Mapping[str, Any]) -> SQLFragment:
        """``data = json_set(data, '$.a', json(?), ...)`` for a path/value map."""
        expr, params = self._json_set(self._source, values)
        return SQLFragment(f"{self._source} = {expr}", params)

    def compile_in_place(self, spec: UpdateSpec) -> SQLFragment:
        """
        Full ``SET`` clause for an operator update executed as one statement.

        ``$inc`` reads the pre-update value of the row, so it composes with
        ``$set`` / ``$unset`` on disjoint paths.
        """
        if spec.replacement is not None:
            return self.compile_replacement(spec.replacement)

        expr, params = self._json_set(self._source, spec.set)
        if spec.unset:
            paths = ", ".join(f"'{json_path(p)}'" for p in spec.unset)
            expr = f"json_remove({expr}, {paths})"
        if spec.inc:
            parts = []
            inc_params: list[Any] = []
            for path, delta in spec.inc.items():
                jp = json_path(path)
                current = f"json_extract({self._source}, '{jp}')"
                parts.append(f"'{jp}', COALESCE({current}, 0) + ?")
                inc_params.append(delta)
            expr = f"json_set({expr}, {', '.join(parts)})"
            params = params + tuple(inc_params)
        return SQLFragment(
            f"{self._source} = {expr}, {UPDATED_AT_COLUMN} = CURRENT_TIMESTAMP", params
        )

    def compile_replacement(self, document: Mapping[str, Any]) -> SQLFragment:
        """Replace the body wholesale."""
        return SQLFragment(
            f"{self._source} = ?, {UPDATED_AT_COLUMN} = CURRENT_TIMESTAMP",
            (encode_document(document),),
        )

    def compile_body(self, body: Mapping[str, Any]) -> SQLFragment:
        """``SET`` clause writing a body computed by :meth:`UpdateSpec.apply`."""
        return self.compile_replacement(body)

    @staticmethod
    def requires_read_modify_write(
        spec: UpdateSpec, promoted_paths: Collection[str]
    ) -> bool:
        """
        ``True`` when a promoted column mirrors, contains or lies inside an
        affected path, or when a path has an array index segment.

        SQLite's JSON functions neither pad arrays nor leave a ``null`` hole
        on removal, so indexed paths are always applied in memory.
        """
        if spec.is_replacement:
            return False
        if any(part.isdigit() for path in spec.paths for part in split_path(path)):
            return True
        return any(
            _overlaps(path, promoted)
            for path in spec.paths
            for promoted in promoted_paths
        )

    def in_place_hazard(self, spec: UpdateSpec) -> SQLFragment:
        """
        Predicate true for rows the in-place statement would get wrong.

        ``json_set`` leaves a path untouched when a parent holds a scalar,
        where :func:`deep_set` replaces the parent with an object, and
        ``$inc`` must reject a non-numeric value instead of overwriting it.
        Empty when the update cannot diverge.
        """
        if spec.is_replacement:
            return SQLFragment()
        checks: list[str] = []
        for path in [*spec.set, *spec.inc]:
            parts = split_path(path)
            for i in range(1, len(parts)):
                parent = json_path(".".join(parts[:i]))
                checks.append(f"json_type({self._source}, '{parent}') <> 'object'")
        for path in spec.inc:
            checks.append(
                f"json_type({self._source}, '{json_path(path)}') "
                "NOT IN ('integer', 'real', 'null')"
            )
        return SQLFragment(" OR ".join(dict.fromkeys(checks)))

    @staticmethod
    def _json_set(
        source: str, values: Mapping[str, Any]
    ) -> tuple[str, tuple[Any, ...]]:
        if not values:
            return source, ()
        parts = [f"'{json_path(path)}', json(?)" for path in values]
        params = tuple(encode_json(v) for v in values.values())
        return f"json_set({source}, {', '.join(parts)})", params
