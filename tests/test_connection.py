"""Integration tests for the connection manager against real SQLite files."""

from __future__ import annotations

import asyncio

import pytest

from docstore_sqlite import ConnectionConfig, ConnectionManager
from docstore_sqlite.connection import execute
from docstore_sqlite.exceptions import (
    ConnectionStateError,
    DuplicateKeyError,
    PoolTimeoutError,
    TransactionStateError,
)


async def _create_items(manager: ConnectionManager) -> None:
    async with manager.transaction() as tx:
        await tx.connection.exec_driver_sql(
            "CREATE TABLE IF NOT EXISTS items (id TEXT PRIMARY KEY, n INTEGER)"
        )


async def _ids(manager: ConnectionManager) -> list[str]:
    async with manager.connection() as conn:
        result = await conn.exec_driver_sql("SELECT id FROM items ORDER BY id")
        return [row[0] for row in result.fetchall()]


# -- Lifecycle --------------------------------------------------------------


@pytest.mark.asyncio()
async def test_connect_twice_raises(manager):
    assert manager.is_connected
    with pytest.raises(ConnectionStateError, match="already connected"):
        await manager.connect()


@pytest.mark.asyncio()
async def test_engine_requires_connect(db_config):
    mgr = ConnectionManager(db_config)
    with pytest.raises(ConnectionStateError):
        _ = mgr.engine
    assert await mgr.health_check() is False


@pytest.mark.asyncio()
async def test_acquisition_auto_connects(db_config):
    mgr = ConnectionManager(db_config)
    try:
        async with mgr.connection() as conn:
            assert (await conn.exec_driver_sql("SELECT 1")).scalar() == 1
        assert mgr.is_connected
    finally:
        await mgr.close()


@pytest.mark.asyncio()
async def test_close_is_idempotent(manager):
    await manager.close()
    await manager.close()
    assert not manager.is_connected
    assert manager.status().connected is False


@pytest.mark.asyncio()
async def test_pragmas_applied(manager):
    async with manager.connection() as conn:
        mode = (await conn.exec_driver_sql("PRAGMA journal_mode")).scalar()
        fks = (await conn.exec_driver_sql("PRAGMA foreign_keys")).scalar()
        busy = (await conn.exec_driver_sql("PRAGMA busy_timeout")).scalar()
    assert str(mode).lower() == "wal"
    assert fks == 1
    assert busy == 60_000


@pytest.mark.asyncio()
async def test_health_check(manager):
    assert await manager.health_check() is True


# -- Transactions -----------------------------------------------------------


@pytest.mark.asyncio()
async def test_transaction_commits(manager):
    await _create_items(manager)
    async with manager.transaction() as tx:
        assert tx.depth == 1
        await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
    assert await _ids(manager) == ["a"]


@pytest.mark.asyncio()
async def test_transaction_rolls_back_and_reraises(manager):
    await _create_items(manager)
    with pytest.raises(RuntimeError, match="boom"):
        async with manager.transaction() as tx:
            await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
            raise RuntimeError("boom")
    assert await _ids(manager) == []
    assert manager.active_transactions == 0


@pytest.mark.asyncio()
async def test_nested_failure_rolls_back_only_savepoint(manager):
    await _create_items(manager)
    async with manager.transaction() as outer:
        await outer.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
        with pytest.raises(ValueError):
            async with manager.transaction() as inner:
                assert inner is outer
                assert inner.depth == 2
                await inner.connection.exec_driver_sql(
                    "INSERT INTO items VALUES ('b', 2)"
                )
                raise ValueError("inner")
        assert outer.depth == 1
        await outer.connection.exec_driver_sql("INSERT INTO items VALUES ('c', 3)")
    assert await _ids(manager) == ["a", "c"]


@pytest.mark.asyncio()
async def test_outer_failure_discards_committed_savepoints(manager):
    await _create_items(manager)
    with pytest.raises(RuntimeError):
        async with manager.transaction():
            async with manager.transaction() as tx:
                await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
            raise RuntimeError("outer")
    assert await _ids(manager) == []


@pytest.mark.asyncio()
async def test_status_reports_depth(manager):
    assert manager.status().in_transaction is False
    async with manager.transaction():
        async with manager.transaction():
            status = manager.status()
            assert status.in_transaction is True
            assert status.transaction_depth == 2
            assert status.active_transactions == 1
    assert manager.status().transaction_depth == 0


@pytest.mark.asyncio()
async def test_connection_inside_transaction_reuses_it(manager):
    await _create_items(manager)
    async with manager.transaction() as tx:
        await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
        async with manager.connection() as conn:
            assert conn is tx.connection
            count = (await conn.exec_driver_sql("SELECT COUNT(*) FROM items")).scalar()
        assert count == 1


@pytest.mark.asyncio()
async def test_explicit_primitives(manager):
    await _create_items(manager)
    handle = await manager.acquire()
    try:
        await manager.begin(handle)
        await manager.begin(handle)
        assert handle.depth == 2
        await handle.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
        await manager.rollback(handle)
        await handle.connection.exec_driver_sql("INSERT INTO items VALUES ('b', 2)")
        await manager.commit(handle)
        assert handle.depth == 0
        with pytest.raises(TransactionStateError):
            await manager.commit(handle)
        with pytest.raises(TransactionStateError):
            await manager.rollback(handle)
    finally:
        await manager.release(handle)
    assert await _ids(manager) == ["b"]


@pytest.mark.asyncio()
async def test_release_rolls_back_open_transaction(manager):
    await _create_items(manager)
    handle = await manager.acquire()
    await manager.begin(handle)
    await handle.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
    await manager.release(handle)
    assert await _ids(manager) == []


@pytest.mark.asyncio()
async def test_concurrent_tasks_get_separate_transactions(manager):
    await _create_items(manager)

    async def insert(key: str) -> None:
        async with manager.transaction() as tx:
            await tx.connection.exec_driver_sql(
                "INSERT INTO items VALUES (?, 1)", (key,)
            )

    await asyncio.gather(*(insert(k) for k in "abcd"))
    assert await _ids(manager) == ["a", "b", "c", "d"]


@pytest.mark.asyncio()
async def test_child_task_failure_keeps_sibling_savepoint(manager):
    await _create_items(manager)
    order: list[str] = []

    async def ok() -> None:
        async with manager.transaction() as tx:
            order.append("ok")
            await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
            await asyncio.sleep(0)
            assert tx.depth == 2

    async def bad() -> None:
        async with manager.transaction() as tx:
            order.append("bad")
            await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('b', 2)")
            await asyncio.sleep(0)
            raise ValueError("bad")

    async with manager.transaction() as outer:
        results = await asyncio.gather(ok(), bad(), return_exceptions=True)
        assert outer.depth == 1
        assert outer.owner is asyncio.current_task()

    assert results[0] is None
    assert isinstance(results[1], ValueError)
    assert order == ["ok", "bad"]
    assert await _ids(manager) == ["a"]


@pytest.mark.asyncio()
async def test_child_task_nests_inside_its_own_savepoint(manager):
    await _create_items(manager)

    async def child() -> None:
        async with manager.transaction() as tx:
            await tx.connection.exec_driver_sql("INSERT INTO items VALUES ('a', 1)")
            with pytest.raises(ValueError):
                async with manager.transaction() as inner:
                    assert inner.depth == 3
                    await inner.connection.exec_driver_sql(
                        "INSERT INTO items VALUES ('b', 2)"
                    )
                    raise ValueError("inner")

    async with manager.transaction():
        await asyncio.create_task(child())
    assert await _ids(manager) == ["a"]


# -- Errors -----------------------------------------------------------------


@pytest.mark.asyncio()
async def test_integrity_error_mapped(manager):
    await _create_items(manager)
    with pytest.raises(DuplicateKeyError) as exc_info:
        async with manager.transaction() as tx:
            for _ in range(2):
                await execute(
                    tx.connection,
                    "INSERT INTO items VALUES (?, ?)",
                    ("a", 1),
                    table="items",
                )
    assert exc_info.value.table == "items"
    assert exc_info.value.__cause__ is not None
    assert await _ids(manager) == []


@pytest.mark.asyncio()
async def test_pool_timeout(tmp_path):
    cfg = ConnectionConfig(
        path=str(tmp_path / "pool.db"),
        pool_size=1,
        max_overflow=0,
        pool_timeout=0.2,
        maintenance_interval=None,
    )
    mgr = ConnectionManager(cfg)
    await mgr.connect()
    try:
        held = await mgr.acquire()
        try:
            with pytest.raises(PoolTimeoutError):
                await mgr.acquire()
        finally:
            await mgr.release(held)
        again = await mgr.acquire()
        await mgr.release(again)
    finally:
        await mgr.close()


@pytest.mark.asyncio()
async def test_memory_database_single_connection():
    mgr = ConnectionManager(
        ConnectionConfig(pool_timeout=0.2, maintenance_interval=None)
    )
    try:
        held = await mgr.acquire()
        try:
            with pytest.raises(PoolTimeoutError):
                await mgr.acquire()
        finally:
            await mgr.release(held)
        async with mgr.transaction() as tx:
            await tx.connection.exec_driver_sql("CREATE TABLE t (x)")
            await tx.connection.exec_driver_sql("INSERT INTO t VALUES (1)")
        async with mgr.connection() as conn:
            assert (await conn.exec_driver_sql("SELECT x FROM t")).scalar() == 1
    finally:
        await mgr.close()


# -- Introspection ----------------------------------------------------------


@pytest.mark.asyncio()
async def test_collections_and_stats(manager):
    await _create_items(manager)
    assert await manager.collections() == ["items"]
    stats = await manager.database_stats()
    assert stats.page_size > 0
    assert stats.database_size == stats.page_count * stats.page_size
    assert stats.journal_mode.lower() == "wal"
    assert stats.wal_checkpoint is not None


@pytest.mark.asyncio()
async def test_pragma_returns_rows(manager):
    rows = await manager.pragma("PRAGMA journal_mode")
    assert rows[0][0].lower() == "wal"
