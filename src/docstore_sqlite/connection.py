"""
ConnectionManager: engine lifecycle, pooling, nested transactions.

SQLite is reached through SQLAlchemy's asyncio engine on the aiosqlite
driver. The driver's own transaction handling is switched off on connect
and SQLAlchemy's ``begin`` event emits ``BEGIN`` itself, so savepoints
(``begin_nested``) behave as documented.

Transactions nest per task context: the outermost ``transaction()`` owns a
pooled connection and a real ``BEGIN``/``COMMIT``; every inner one opens a
``SAVEPOINT`` on the same connection.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from .config import ConnectionConfig
from .exceptions import (
    ConnectionStateError,
    ConstraintViolationError,
    DuplicateKeyError,
    PoolTimeoutError,
    TransactionStateError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

    from sqlalchemy.engine import CursorResult
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction

    from .maintenance import MaintenanceWorker

logger = logging.getLogger("docstore.connection")

_CHECK_MESSAGE_RE = re.compile(r"Check constraint violated: (?P<expr>.*)$", re.DOTALL)
_UNIQUE_MARKERS = ("UNIQUE constraint failed", "PRIMARY KEY")
BEGIN_MODE_OPTION = "docstore_begin_mode"


def map_integrity_error(
    error: sa_exc.IntegrityError, table: str | None = None
) -> ConstraintViolationError:
    """Translate an engine ``IntegrityError`` into the store's taxonomy."""
    message = str(error.orig) if error.orig is not None else str(error)
    if any(marker in message for marker in _UNIQUE_MARKERS):
        return DuplicateKeyError(message, table=table)
    match = _CHECK_MESSAGE_RE.search(message)
    return ConstraintViolationError(
        message,
        expression=match.group("expr").strip() if match else None,
        table=table,
    )


async def execute(
    conn: AsyncConnection,
    sql: str,
    params: Iterable[Any] = (),
    *,
    table: str | None = None,
) -> CursorResult[Any]:
    """
    Run ``sql`` with positional ``?`` parameters.

    Raises:
        ConstraintViolationError: When a unique index or check trigger
            rejects the write. The engine error is chained.
    """
    try:
        return await conn.exec_driver_sql(sql, tuple(params))
    except sa_exc.IntegrityError as e:
        raise map_integrity_error(e, table) from e


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    in_transaction: bool
    transaction_depth: int
    db_path: str
    active_transactions: int


@dataclass(frozen=True)
class DatabaseStats:
    """Storage figures reported by SQLite's PRAGMAs (sizes in bytes)."""

    page_count: int
    page_size: int
    free_pages: int
    database_size: int
    free_space: int
    cache_size: int
    journal_mode: str
    wal_checkpoint: tuple[int, int, int] | None = None


class TransactionHandle:
    """
    A borrowed connection and its stack of open transactions.

    Depth ``1`` is the real transaction; every further level is a savepoint.
    """

    def __init__(
        self,
        connection: AsyncConnection,
        owner: asyncio.Task[Any] | None = None,
    ) -> None:
        self._connection = connection
        self._stack: list[AsyncTransaction] = []
        self._owner = owner
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> AsyncConnection:
        return self._connection

    @property
    def owner(self) -> asyncio.Task[Any] | None:
        """The task that may open levels without waiting its turn."""
        return self._owner

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def in_transaction(self) -> bool:
        return bool(self._stack)

    async def begin(self) -> AsyncTransaction:
        """``BEGIN`` at depth zero, otherwise ``SAVEPOINT``."""
        if self._stack:
            tx = await self._connection.begin_nested()
        else:
            # Take the write lock up front; a deferred BEGIN that later writes
            # can fail with SQLITE_BUSY without waiting on busy_timeout.
            await self._connection.execution_options(**{BEGIN_MODE_OPTION: "IMMEDIATE"})
            tx = await self._connection.begin()
        self._stack.append(tx)
        logger.debug("Transaction opened (depth=%d)", self.depth)
        return tx

    async def commit(self) -> None:
        """``RELEASE SAVEPOINT`` for nested levels, ``COMMIT`` at depth one."""
        if not self._stack:
            raise TransactionStateError("commit() called with no active transaction")
        tx = self._stack.pop()
        await tx.commit()
        logger.debug("Transaction committed (depth=%d)", self.depth + 1)

    async def rollback(self) -> None:
        """``ROLLBACK TO SAVEPOINT`` for nested levels, ``ROLLBACK`` at depth one."""
        if not self._stack:
            raise TransactionStateError("rollback() called with no active transaction")
        tx = self._stack.pop()
        await tx.rollback()
        logger.debug("Transaction rolled back (depth=%d)", self.depth + 1)

    async def commit_to(self, depth: int) -> None:
        """Commit every level down to and including ``depth``."""
        while self.depth >= depth > 0:
            await self.commit()

    async def rollback_to(self, depth: int) -> None:
        """Roll back every level down to and including ``depth``."""
        while self.depth >= depth > 0:
            await self.rollback()

    async def end(self, tx: AsyncTransaction, *, commit: bool) -> None:
        """Close ``tx`` and, the same way, any level still open above it."""
        if tx not in self._stack:
            raise TransactionStateError("Transaction level is no longer open")
        depth = self._stack.index(tx) + 1
        if commit:
            await self.commit_to(depth)
        else:
            await self.rollback_to(depth)

    @asynccontextmanager
    async def borrowed(self) -> AsyncIterator[None]:
        """
        Lend the connection to the calling task until the block exits.

        Tasks spawned inside a transaction inherit it; they take turns here so
        each one's savepoint stays on top of the stack while it is open.
        """
        async with self._lock:
            owner, self._owner = self._owner, asyncio.current_task()
            try:
                yield
            finally:
                self._owner = owner


class ConnectionManager:
    """
    Owns the engine and hands out connections and transactions.

    One instance per database; nothing is process-global, so several
    managers (one per test, say) can coexist.
    """

    def __init__(self, config: ConnectionConfig | None = None) -> None:
        self._config = config or ConnectionConfig()
        self._engine: AsyncEngine | None = None
        self._connect_lock = asyncio.Lock()
        self._memory_lock = asyncio.Lock()
        self._handles: set[TransactionHandle] = set()
        self._current: ContextVar[TransactionHandle | None] = ContextVar(
            f"docstore_transaction_{id(self)}", default=None
        )
        self._worker: MaintenanceWorker | None = None

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """Return the engine; raises if not connected."""
        if self._engine is None:
            raise ConnectionStateError("Not connected; call connect() first")
        return self._engine

    @property
    def active_transactions(self) -> int:
        """Number of outermost transactions currently open, across all tasks."""
        return sum(1 for h in self._handles if h.in_transaction)

    @property
    def current_transaction(self) -> TransactionHandle | None:
        handle = self._current.get()
        if handle is not None and handle.in_transaction:
            return handle
        return None

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> AsyncEngine:
        """Create the engine and start background maintenance.

        Raises:
            ConnectionStateError: If already connected.
        """
        async with self._connect_lock:
            if self._engine is not None:
                raise ConnectionStateError("Connection manager is already connected")
            return await self._connect()

    async def _connect(self) -> AsyncEngine:
        engine = self._create_engine()
        try:
            async with engine.connect() as conn:
                await conn.exec_driver_sql("SELECT 1")
                await conn.rollback()
        except Exception:
            await engine.dispose()
            raise
        self._engine = engine
        logger.info(
            "Connected to %s (pool_size=%d)",
            self._config.path,
            1 if self._config.is_memory else self._config.pool_size,
        )

        if self._config.maintenance_interval and not self._config.is_memory:
            from .maintenance import MaintenanceWorker

            self._worker = MaintenanceWorker(self, self._config.maintenance_interval)
            await self._worker.start()
        return engine

    async def _ensure_connected(self) -> AsyncEngine:
        if self._engine is not None:
            return self._engine
        async with self._connect_lock:
            if self._engine is not None:
                return self._engine
            return await self._connect()

    def _create_engine(self) -> AsyncEngine:
        cfg = self._config
        connect_args = {"timeout": cfg.busy_timeout_ms / 1000}
        if cfg.is_memory:
            engine = create_async_engine(
                cfg.url,
                poolclass=StaticPool,
                connect_args=connect_args,
                echo=cfg.echo,
            )
        else:
            engine = create_async_engine(
                cfg.url,
                poolclass=AsyncAdaptedQueuePool,
                pool_size=cfg.pool_size,
                max_overflow=cfg.max_overflow,
                pool_timeout=cfg.pool_timeout,
                pool_pre_ping=cfg.pool_pre_ping,
                connect_args=connect_args,
                echo=cfg.echo,
            )
        event.listen(engine.sync_engine, "connect", self._on_connect)
        event.listen(engine.sync_engine, "begin", _on_begin)
        return engine

    def _pragmas(self) -> list[str]:
        cfg = self._config
        pragmas = [
            "PRAGMA foreign_keys = ON",
            f"PRAGMA busy_timeout = {cfg.busy_timeout_ms}",
        ]
        if cfg.is_memory:
            pragmas += ["PRAGMA journal_mode = MEMORY", "PRAGMA synchronous = OFF"]
        else:
            pragmas += [
                f"PRAGMA journal_mode = {cfg.journal_mode}",
                f"PRAGMA synchronous = {cfg.synchronous}",
                f"PRAGMA cache_size = {cfg.cache_size}",
                "PRAGMA temp_store = MEMORY",
                f"PRAGMA mmap_size = {cfg.mmap_size}",
                "PRAGMA auto_vacuum = INCREMENTAL",
            ]
        return pragmas

    def _on_connect(self, dbapi_connection: Any, _record: Any) -> None:
        # Stop the driver from issuing its own BEGIN; see _on_begin.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            for pragma in self._pragmas():
                cursor.execute(pragma)
        finally:
            cursor.close()

    async def close(self) -> None:
        """Stop maintenance and dispose of the engine. Idempotent."""
        if self._worker is not None:
            await self._worker.stop()
            self._worker = None
        if self._engine is None:
            return
        if self._handles:
            logger.warning(
                "Closing with %d connection(s) still checked out", len(self._handles)
            )
        engine, self._engine = self._engine, None
        await engine.dispose()
        logger.info("Closed connection manager for %s", self._config.path)

    async def health_check(self) -> bool:
        """Round-trip ``SELECT 1``; return ``True`` if the database answers."""
        if self._engine is None:
            return False
        try:
            async with self.connection() as conn:
                await conn.exec_driver_sql("SELECT 1")
            return True
        except Exception:  # noqa: BLE001
            logger.warning(
                "Health check failed for %s", self._config.path, exc_info=True
            )
            return False

    # -- connections -------------------------------------------------------

    async def acquire(self) -> TransactionHandle:
        """
        Borrow a connection outside any context manager.

        The caller must hand it back with :meth:`release`.

        Raises:
            PoolTimeoutError: If no connection frees up within ``pool_timeout``.
        """
        engine = await self._ensure_connected()
        timeout = self._config.pool_timeout
        if self._config.is_memory:
            try:
                await asyncio.wait_for(self._memory_lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                raise PoolTimeoutError(timeout) from None
            try:
                conn = await engine.connect()
            except BaseException:
                self._memory_lock.release()
                raise
        else:
            try:
                conn = await engine.connect()
            except sa_exc.TimeoutError as e:
                raise PoolTimeoutError(timeout) from e
        handle = TransactionHandle(conn, owner=asyncio.current_task())
        self._handles.add(handle)
        return handle

    async def release(self, handle: TransactionHandle) -> None:
        """Return a borrowed connection, rolling back anything left open."""
        if handle not in self._handles:
            return
        self._handles.discard(handle)
        conn = handle.connection
        try:
            if handle.in_transaction:
                logger.warning(
                    "Releasing connection with %d open transaction level(s); "
                    "rolling back",
                    handle.depth,
                )
                await handle.rollback_to(1)
            if conn.in_transaction():
                await conn.rollback()
        finally:
            try:
                await conn.close()
            finally:
                if self._config.is_memory:
                    self._memory_lock.release()

    async def begin(self, handle: TransactionHandle) -> None:
        await handle.begin()

    async def commit(self, handle: TransactionHandle) -> None:
        await handle.commit()

    async def rollback(self, handle: TransactionHandle) -> None:
        await handle.rollback()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        """
        Scoped connection for reads.

        Inside :meth:`transaction` (same task context) the transaction's own
        connection is yielded. Otherwise a pooled connection is borrowed and
        its implicit transaction is rolled back on exit, so writes made here
        are discarded; write inside :meth:`transaction`.
        """
        current = self.current_transaction
        if current is not None:
            yield current.connection
            return
        handle = await self.acquire()
        try:
            yield handle.connection
        finally:
            await self.release(handle)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionHandle]:
        """
        Open a transaction, or a savepoint when one is already open.

        A task that inherited the transaction from the task that opened it
        waits its turn on the connection before opening its savepoint. On
        error the level is rolled back and the original exception is
        re-raised.
        """
        current = self.current_transaction
        if current is not None:
            if current.owner is asyncio.current_task():
                async with self._level(current):
                    yield current
                return
            async with current.borrowed(), self._level(current):
                yield current
            return

        handle = await self.acquire()
        token = self._current.set(handle)
        try:
            async with self._level(handle):
                yield handle
        finally:
            self._current.reset(token)
            await self.release(handle)

    @asynccontextmanager
    async def _level(self, handle: TransactionHandle) -> AsyncIterator[None]:
        tx = await handle.begin()
        depth = handle.depth
        try:
            yield
        except BaseException:
            try:
                await handle.end(tx, commit=False)
            except Exception:  # noqa: BLE001
                logger.exception("Rollback failed at depth %d", depth)
            raise
        await handle.end(tx, commit=True)

    # -- introspection -----------------------------------------------------

    def status(self) -> ConnectionStatus:
        current = self.current_transaction
        return ConnectionStatus(
            connected=self.is_connected,
            in_transaction=current is not None,
            transaction_depth=current.depth if current is not None else 0,
            db_path=self._config.path,
            active_transactions=self.active_transactions,
        )

    async def collections(self) -> list[str]:
        """Names of the user tables in the database."""
        async with self.connection() as conn:
            result = await conn.exec_driver_sql(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            return [row[0] for row in result.fetchall()]

    async def pragma(self, statement: str) -> Sequence[tuple[Any, ...]]:
        """
        Run a PRAGMA on the driver connection, outside any transaction.

        Used for statements SQLite refuses or weakens inside ``BEGIN``
        (checkpoints, vacuum).
        """
        async with self.connection() as conn:
            raw = await conn.get_raw_connection()
            driver = raw.driver_connection
            if driver is None:
                raise ConnectionStateError("Driver connection is not available")
            async with driver.execute(statement) as cursor:
                rows = await cursor.fetchall()
            return [tuple(row) for row in rows]

    async def database_stats(self) -> DatabaseStats:
        async with self.connection() as conn:

            async def scalar(sql: str) -> Any:
                return (await conn.exec_driver_sql(sql)).scalar()

            page_count = int(await scalar("PRAGMA page_count"))
            page_size = int(await scalar("PRAGMA page_size"))
            free_pages = int(await scalar("PRAGMA freelist_count"))
            cache_size = int(await scalar("PRAGMA cache_size"))
            journal_mode = str(await scalar("PRAGMA journal_mode"))

        checkpoint = None
        if not self._config.is_memory and journal_mode.lower() == "wal":
            rows = await self.pragma("PRAGMA wal_checkpoint(PASSIVE)")
            if rows:
                busy, log, checkpointed = rows[0]
                checkpoint = (int(busy), int(log), int(checkpointed))

        return DatabaseStats(
            page_count=page_count,
            page_size=page_size,
            free_pages=free_pages,
            database_size=page_count * page_size,
            free_space=free_pages * page_size,
            cache_size=cache_size,
            journal_mode=journal_mode,
            wal_checkpoint=checkpoint,
        )

    async def maintenance(self) -> bool:
        """Run one maintenance cycle now. Returns ``True`` if it ran."""
        from .maintenance import MaintenanceWorker

        worker = self._worker or MaintenanceWorker(
            self, self._config.maintenance_interval or 0.0
        )
        return await worker.run_once()


def _on_begin(conn: Any) -> None:
    mode = conn.get_execution_options().get(BEGIN_MODE_OPTION)
    conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")
