from __future__ import annotations

import pytest

from docstore_sqlite import ConnectionConfig, ConnectionManager, DocumentStore


@pytest.fixture()
def db_config(tmp_path):
    return ConnectionConfig(path=str(tmp_path / "store.db"), maintenance_interval=None)


@pytest.fixture()
async def manager(db_config):
    mgr = ConnectionManager(db_config)
    await mgr.connect()
    yield mgr
    await mgr.close()


@pytest.fixture()
async def store(db_config):
    async with DocumentStore(db_config) as s:
        yield s


@pytest.fixture()
async def memory_store():
    async with DocumentStore(ConnectionConfig(maintenance_interval=None)) as s:
        yield s


@pytest.fixture()
async def users(store):
    coll = store.collection("users")
    await coll.insert_many(
        [
            {"_id": "u1", "name": "Alice", "age": 30, "address": {"city": "Paris"}},
            {"_id": "u2", "name": "Bob", "age": 25, "address": {"city": "London"}},
            {"_id": "u3", "name": "Carol", "age": 35, "tags": ["admin"]},
            {"_id": "u4", "name": "Dave", "age": 20, "active": False},
            {"_id": "u5", "name": "Eve", "age": 28, "active": True},
        ]
    )
    return coll
