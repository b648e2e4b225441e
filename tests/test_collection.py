"""End-to-end tests for DocumentCollection and DocumentStore."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from docstore_sqlite import DocumentStore, FindOptions
from docstore_sqlite.exceptions import (
    CompileError,
    DuplicateKeyError,
    InvalidUpdateError,
    MissingSetOperatorError,
    UnknownOperatorError,
)


def _names(docs) -> list[str]:
    return [d["name"] for d in docs]


# -- Inserts and reads ------------------------------------------------------


@pytest.mark.asyncio()
async def test_insert_generates_id_and_timestamps(store):
    coll = store["notes"]
    result = await coll.insert_one({"title": "hello"})
    assert len(result.inserted_id) == 24
    doc = await coll.get(result.inserted_id)
    assert doc["_id"] == result.inserted_id
    assert doc["title"] == "hello"
    assert doc["created_at"] is not None
    assert doc["updated_at"] is not None


@pytest.mark.asyncio()
async def test_find_with_range_filter(users):
    assert _names(await users.find({"age": {"$gt": 25}})) == ["Alice", "Carol", "Eve"]


@pytest.mark.asyncio()
async def test_find_nested_and_bool(users):
    assert _names(await users.find({"address.city": "Paris"})) == ["Alice"]
    assert _names(await users.find({"active": False})) == ["Dave"]
    assert _names(await users.find({"tags": {"$exists": True}})) == ["Carol"]


@pytest.mark.asyncio()
async def test_find_in_and_regex(users):
    found = await users.find({"name": {"$in": ["Bob", "Eve", "Zed"]}})
    assert _names(found) == ["Bob", "Eve"]
    assert _names(await users.find({"name": {"$regex": "^c"}})) == ["Carol"]
    assert await users.find({"name": {"$in": []}}) == []


@pytest.mark.asyncio()
async def test_sort_limit_skip(users):
    found = await users.find(sort={"age": -1}, limit=2)
    assert _names(found) == ["Carol", "Alice"]
    found = await users.find(sort=[("age", 1)], skip=3)
    assert _names(found) == ["Alice", "Carol"]
    opts = FindOptions.build(sort={"name": -1}, limit=1)
    assert _names(await users.find(options=opts)) == ["Eve"]
    assert await users.find(limit=0) == []


@pytest.mark.asyncio()
async def test_projection(users):
    doc = await users.find_one({"_id": "u1"}, projection={"name": 1})
    assert doc == {"_id": "u1", "name": "Alice"}


@pytest.mark.asyncio()
async def test_count_and_get(users):
    assert await users.count_documents() == 5
    assert await users.count_documents({"age": {"$lt": 26}}) == 2
    assert await users.get("missing") is None


@pytest.mark.asyncio()
async def test_where_raw_predicate(users):
    found = await users.where("age > ? OR name = ?", [30, "Bob"])
    assert _names(found) == ["Bob", "Carol"]


@pytest.mark.asyncio()
async def test_invalid_filter_fails_before_table_exists(store):
    coll = store["never_created"]
    with pytest.raises(UnknownOperatorError):
        await coll.find({"age": {"$bad": 1}})
    with pytest.raises(CompileError):
        await coll.find(limit=-1)
    assert "never_created" not in await store.collections()


@pytest.mark.asyncio()
async def test_duplicate_id_rejected(users):
    with pytest.raises(DuplicateKeyError):
        await users.insert_one({"_id": "u1", "name": "Again"})


@pytest.mark.asyncio()
async def test_insert_many_is_atomic(users):
    with pytest.raises(DuplicateKeyError):
        await users.insert_many([{"_id": "n1", "name": "New"}, {"_id": "u2"}])
    assert await users.get("n1") is None


@pytest.mark.asyncio()
async def test_save_inserts_then_replaces(store):
    coll = store["settings"]
    await coll.save({"_id": "s1", "value": 1})
    saved = await coll.save({"_id": "s1", "value": 2})
    assert saved["value"] == 2
    assert await coll.count_documents() == 1


@pytest.mark.asyncio()
async def test_is_unique(users):
    assert await users.is_unique({"name": "Alice"}, "name") is False
    assert await users.is_unique({"_id": "u1", "name": "Alice"}, "name") is True
    assert await users.is_unique({"name": "Zed"}, "name") is True


# -- Updates ----------------------------------------------------------------


@pytest.mark.asyncio()
async def test_update_many_sets_matching_documents(users):
    result = await users.update_many({"age": {"$gt": 25}}, {"$set": {"senior": True}})
    assert (result.matched_count, result.modified_count) == (3, 3)
    assert result.upserted_id is None
    assert _names(await users.find({"senior": True})) == ["Alice", "Carol", "Eve"]
    assert await users.count_documents({"senior": {"$exists": False}}) == 2


@pytest.mark.asyncio()
async def test_update_many_without_set_writes_nothing(users):
    with pytest.raises(MissingSetOperatorError):
        await users.update_many({}, {"$inc": {"age": 1}})
    assert [d["age"] for d in await users.find()] == [30, 25, 35, 20, 28]


@pytest.mark.asyncio()
async def test_update_one_targets_first_in_insertion_order(users):
    result = await users.update_one({"age": {"$gte": 20}}, {"$inc": {"age": 1}})
    assert result.matched_count == 1
    assert (await users.get("u1"))["age"] == 31
    assert (await users.get("u2"))["age"] == 25


@pytest.mark.asyncio()
async def test_update_unset_and_nested_set(users):
    await users.update_one({"_id": "u2"}, {"$unset": ["address"]})
    await users.update_one({"_id": "u4"}, {"$set": {"profile.level": 2}})
    assert "address" not in await users.get("u2")
    assert (await users.get("u4"))["profile"] == {"level": 2}


@pytest.mark.asyncio()
async def test_update_no_match(users):
    result = await users.update_one({"name": "Nobody"}, {"$set": {"x": 1}})
    assert (result.matched_count, result.modified_count) == (0, 0)
    assert await users.count_documents() == 5


@pytest.mark.asyncio()
async def test_upsert_seeds_document_from_filter(users):
    result = await users.update_one(
        {"name": "Zed", "age": {"$gt": 1}}, {"$set": {"role": "guest"}}, upsert=True
    )
    assert (result.matched_count, result.modified_count) == (0, 0)
    assert result.upserted_id is not None
    doc = await users.get(result.upserted_id)
    assert doc["name"] == "Zed"
    assert doc["role"] == "guest"
    assert "age" not in doc


@pytest.mark.asyncio()
async def test_upsert_uses_filter_id(users):
    result = await users.update_one({"_id": "z9"}, {"$inc": {"n": 2}}, upsert=True)
    assert result.upserted_id == "z9"
    assert (await users.get("z9"))["n"] == 2


@pytest.mark.asyncio()
async def test_replace_one_keeps_id(users):
    result = await users.replace_one({"_id": "u2"}, {"_id": "other", "name": "Bobby"})
    assert result.matched_count == 1
    doc = await users.get("u2")
    assert doc["name"] == "Bobby"
    assert "age" not in doc


@pytest.mark.asyncio()
async def test_replace_one_rejects_operators(users):
    with pytest.raises(CompileError):
        await users.replace_one({"_id": "u2"}, {"$set": {"name": "x"}})


@pytest.mark.asyncio()
async def test_update_on_promoted_path_uses_read_modify_write(store, users):
    await users.promote("address.city")
    result = await users.update_many(
        {"age": {"$gte": 30}}, {"$set": {"address.city": "Rome"}}
    )
    assert result.modified_count == 2
    assert _names(await users.find({"address.city": "Rome"})) == ["Alice", "Carol"]
    rows = await store.raw(
        "SELECT id FROM users WHERE address__city = ? ORDER BY rowid", ["Rome"]
    )
    assert [r["id"] for r in rows] == ["u1", "u3"]


@pytest.mark.asyncio()
async def test_read_modify_write_failure_rolls_back(users):
    await users.promote("name")
    with pytest.raises(InvalidUpdateError):
        await users.update_many({}, {"$set": {"flag": 1}, "$inc": {"name": 1}})
    assert await users.count_documents({"flag": 1}) == 0


@pytest.mark.asyncio()
@pytest.mark.parametrize("promoted", [False, True])
async def test_inc_on_non_numeric_field_raises(users, promoted):
    if promoted:
        await users.promote("name")
    with pytest.raises(InvalidUpdateError):
        await users.update_one({"_id": "u1"}, {"$inc": {"name": 5}})
    assert (await users.get("u1"))["name"] == "Alice"


@pytest.mark.asyncio()
@pytest.mark.parametrize("promoted", [False, True])
async def test_set_below_scalar_replaces_it_with_object(users, promoted):
    if promoted:
        await users.promote("age")
    result = await users.update_one({"_id": "u1"}, {"$set": {"age.years": 31}})
    assert (result.matched_count, result.modified_count) == (1, 1)
    assert (await users.get("u1"))["age"] == {"years": 31}
    assert (await users.get("u2"))["age"] == 25


@pytest.mark.asyncio()
async def test_inc_counts_missing_and_null_as_zero_in_place(users):
    await users.update_one({"_id": "u2"}, {"$set": {"score": None}})
    result = await users.update_many({}, {"$set": {"seen": True}, "$inc": {"score": 2}})
    assert result.modified_count == 5
    assert [d["score"] for d in await users.find()] == [2, 2, 2, 2, 2]


@pytest.mark.asyncio()
async def test_array_index_update_matches_in_memory_semantics(users):
    await users.update_one({"_id": "u3"}, {"$set": {"tags.2": "ops"}})
    assert (await users.get("u3"))["tags"] == ["admin", None, "ops"]
    await users.update_one({"_id": "u3"}, {"$unset": ["tags.0"]})
    assert (await users.get("u3"))["tags"] == [None, None, "ops"]


# -- Deletes ----------------------------------------------------------------


@pytest.mark.asyncio()
async def test_delete_one_and_many(users):
    assert (await users.delete_one({"age": {"$gt": 0}})).deleted_count == 1
    assert await users.get("u1") is None
    assert (await users.delete_many({"age": {"$lt": 30}})).deleted_count == 3
    assert _names(await users.find()) == ["Carol"]


@pytest.mark.asyncio()
async def test_delete_many_refuses_empty_filter(users):
    with pytest.raises(CompileError):
        await users.delete_many({})
    assert await users.count_documents() == 5


# -- Store ------------------------------------------------------------------


class Person(BaseModel):
    id: str | None = None
    name: str
    age: int = 0


@pytest.mark.asyncio()
async def test_model_collection_returns_models(store):
    people = store.collection("people", model=Person)
    result = await people.insert_one(Person(name="Ada", age=36))
    person = await people.get(result.inserted_id)
    assert isinstance(person, Person)
    assert person.id == result.inserted_id
    assert person.age == 36


@pytest.mark.asyncio()
async def test_collection_cache(store):
    assert store["users"] is store.collection("users")
    assert store.collection("users", model=Person) is not store["users"]


@pytest.mark.asyncio()
async def test_store_transaction_groups_writes(store):
    coll = store["ledger"]
    await coll.ensure_table()
    with pytest.raises(RuntimeError):
        async with store.transaction():
            await coll.insert_one({"amount": 1})
            await coll.insert_one({"amount": 2})
            raise RuntimeError("abort")
    assert await coll.count_documents() == 0


@pytest.mark.asyncio()
async def test_raw_and_collections(store, users):
    assert await store.collections() == ["users"]
    rows = await store.raw("SELECT COUNT(*) AS n FROM users WHERE id != ?", ["u1"])
    assert rows == [{"n": 4}]
    assert await store.raw("DELETE FROM users WHERE id = ?", ["u1"]) == []
    assert await users.count_documents() == 4


@pytest.mark.asyncio()
async def test_drop(store, users):
    await users.drop()
    assert await store.collections() == []
    assert await users.count_documents() == 0


@pytest.mark.asyncio()
async def test_memory_store_round_trip(memory_store):
    coll = memory_store["items"]
    await coll.insert_many([{"n": i} for i in range(3)])
    assert [d["n"] for d in await coll.find(sort={"n": -1})] == [2, 1, 0]
    assert memory_store.status().connected


@pytest.mark.asyncio()
async def test_store_accepts_existing_manager(manager):
    store = DocumentStore(manager)
    assert store.manager is manager
    await store.connect()
    await store["x"].insert_one({"a": 1})
    assert await store["x"].count_documents() == 1
