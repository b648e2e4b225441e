from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

import pytest
from pydantic import BaseModel

from docstore_sqlite.exceptions import DocumentStoreError
from docstore_sqlite.serialization import (
    decode_document,
    deep_get,
    deep_set,
    deep_unset,
    encode_document,
    encode_param,
    from_document,
    to_document,
)


class User(BaseModel):
    id: str | None = None
    name: str
    age: int = 0


def test_encode_document_is_compact_and_strips_system_fields():
    text = encode_document({"_id": "1", "created_at": "x", "a": [1, 2], "b": "é"})
    assert text == '{"a":[1,2],"b":"é"}'


def test_encode_document_handles_common_types():
    text = encode_document(
        {
            "when": datetime(2024, 1, 2, 3, 4, 5),
            "uid": UUID("12345678-1234-5678-1234-567812345678"),
            "price": Decimal("1.5"),
        }
    )
    assert decode_document(text) == {
        "when": "2024-01-02T03:04:05",
        "uid": "12345678-1234-5678-1234-567812345678",
        "price": 1.5,
    }


def test_encode_document_rejects_unknown_types():
    with pytest.raises(DocumentStoreError):
        encode_document({"x": object()})


def test_decode_rejects_non_object():
    with pytest.raises(DocumentStoreError):
        decode_document("[1, 2]")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, 1),
        (False, 0),
        (None, None),
        ("a", "a"),
        (3, 3),
        ([1, "a"], '[1,"a"]'),
        ({"k": 1}, '{"k":1}'),
    ],
)
def test_encode_param(value, expected):
    assert encode_param(value) == expected


def test_to_document_from_model_maps_id():
    assert to_document(User(id="u1", name="A")) == {"_id": "u1", "name": "A", "age": 0}


def test_to_document_rejects_other_types():
    with pytest.raises(DocumentStoreError):
        to_document(["a"])  # type: ignore[arg-type]


def test_from_document_validates_model():
    user = from_document(User, {"_id": "u1", "name": "A", "age": 3})
    assert user == User(id="u1", name="A", age=3)


def test_deep_helpers():
    doc: dict = {"a": {"b": [10, 20]}}
    assert deep_get(doc, "a.b.1") == 20
    assert deep_get(doc, "a.c", "missing") == "missing"
    deep_set(doc, "x.y", 1)
    assert doc["x"] == {"y": 1}
    deep_set(doc, "a.b.3", 40)
    assert doc["a"]["b"] == [10, 20, None, 40]
    assert deep_unset(doc, "x.y") is True
    assert deep_unset(doc, "x.y") is False
    assert deep_unset(doc, "a.b.0") is True
    assert doc["a"]["b"][0] is None
