"""Document <-> JSON body round-trip and dotted-path helpers."""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar, cast
from uuid import UUID

from pydantic import BaseModel

from .exceptions import DocumentStoreError

TModel = TypeVar("TModel", bound=BaseModel)

ID_FIELD = "_id"
TIMESTAMP_FIELDS: frozenset[str] = frozenset({"created_at", "updated_at"})
# Keys that live in real columns and never inside the JSON body.
SYSTEM_FIELDS: frozenset[str] = frozenset({ID_FIELD, "id"}) | TIMESTAMP_FIELDS

_SEPARATORS = (",", ":")


def _json_default(value: Any) -> Any:
    """Convert non-JSON Python types into JSON-safe values."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, set | frozenset | tuple):
        return list(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_json(value: Any) -> str:
    """Serialize to compact JSON, the same text SQLite's JSON functions emit."""
    return json.dumps(
        value, separators=_SEPARATORS, ensure_ascii=False, default=_json_default
    )


def encode_document(document: Mapping[str, Any]) -> str:
    """Serialize a document body. System fields are stripped."""
    body = {k: v for k, v in document.items() if k not in SYSTEM_FIELDS}
    try:
        return encode_json(body)
    except (TypeError, ValueError) as e:
        raise DocumentStoreError(f"Document is not serializable: {e}") from e


def decode_document(text: str | bytes) -> dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise DocumentStoreError("Stored document body is not a JSON object")
    return data


def encode_param(value: Any) -> Any:
    """
    Encode a filter operand for comparison against ``json_extract`` output.

    ``json_extract`` yields integers for JSON booleans and minified JSON text
    for arrays and objects, so operands are coerced the same way.
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if value is None or isinstance(value, str | int | float):
        return value
    if isinstance(value, Mapping | list | tuple):
        return encode_json(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def to_document(obj: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Normalize a mapping or pydantic model into a plain ``dict``.

    A model's ``id`` field is mapped onto ``_id``.
    """
    if isinstance(obj, BaseModel):
        data = obj.model_dump(mode="json")
        if "id" in data and ID_FIELD not in data:
            data[ID_FIELD] = data.pop("id")
        return data
    if isinstance(obj, Mapping):
        return dict(obj)
    raise DocumentStoreError(
        f"Documents must be mappings or pydantic models, got {type(obj).__name__}"
    )


def from_document(cls: type[TModel], doc: Mapping[str, Any]) -> TModel:
    """Validate a stored document into a pydantic model (``_id`` -> ``id``)."""
    data = dict(doc)
    if ID_FIELD in data and "id" in cls.model_fields:
        data["id"] = data.pop(ID_FIELD)
    return cls.model_validate(data)


def split_path(path: str) -> list[str]:
    return path.split(".")


def deep_get(doc: Any, path: str, default: Any = None) -> Any:
    cur = doc
    for part in split_path(path):
        if isinstance(cur, Mapping) and part in cur:
            cur = cur[part]
        elif isinstance(cur, list) and part.isdigit() and int(part) < len(cur):
            cur = cur[int(part)]
        else:
            return default
    return cur


def deep_set(doc: dict[str, Any], path: str, value: Any) -> None:
    """Set ``path`` on ``doc``, creating intermediate objects as needed."""
    parts = split_path(path)
    cur: Any = doc
    for part in parts[:-1]:
        if isinstance(cur, list):
            index = _list_index(cur, part, path)
            if not isinstance(cur[index], dict | list):
                cur[index] = {}
            cur = cur[index]
            continue
        if not isinstance(cur.get(part), dict | list):
            cur[part] = {}
        cur = cur[part]
    leaf = parts[-1]
    if isinstance(cur, list):
        cur[_list_index(cur, leaf, path)] = value
    else:
        cur[leaf] = value


def _list_index(items: list[Any], part: str, path: str) -> int:
    if not part.isdigit():
        raise DocumentStoreError(f"Cannot create field '{part}' in array at '{path}'")
    index = int(part)
    while len(items) <= index:
        items.append(None)
    return index


def deep_unset(doc: dict[str, Any], path: str) -> bool:
    """Remove the leaf key at ``path``. Returns ``True`` if something was removed."""
    parts = split_path(path)
    parent = deep_get(doc, ".".join(parts[:-1]), None) if len(parts) > 1 else doc
    leaf = parts[-1]
    if isinstance(parent, dict) and leaf in parent:
        del parent[leaf]
        return True
    if isinstance(parent, list) and leaf.isdigit() and int(leaf) < len(parent):
        # Mongo semantics: unsetting an array element leaves a null hole.
        parent[int(leaf)] = None
        return True
    return False


def clone(doc: dict[str, Any]) -> dict[str, Any]:
    return cast("dict[str, Any]", copy.deepcopy(doc))
