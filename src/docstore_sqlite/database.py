"""DocumentStore: one database, its connection manager and its collections."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from .collection import DocumentCollection
from .config import ConnectionConfig
from .connection import ConnectionManager, execute
from .serialization import encode_param

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from types import TracebackType

    from pydantic import BaseModel

    from .connection import ConnectionStatus, DatabaseStats, TransactionHandle
    from .ids import IIDGenerator
    from .query.strategy import SQLOperatorRegistry

logger = logging.getLogger("docstore.database")


class DocumentStore:
    """
    Entry point for a document database.

    Accepts either a :class:`ConnectionConfig` (a manager is built and owned)
    or an existing :class:`ConnectionManager` (shared, still closed by
    :meth:`close`). Collections are created lazily and cached by name::

        async with DocumentStore(ConnectionConfig(path="app.db")) as store:
            users = store["users"]
            await users.insert_one({"name": "Ada", "age": 36})
    """

    def __init__(
        self,
        target: ConnectionConfig | ConnectionManager | None = None,
        *,
        id_generator: IIDGenerator | None = None,
        registry: SQLOperatorRegistry | None = None,
    ) -> None:
        if isinstance(target, ConnectionManager):
            self._manager = target
        else:
            self._manager = ConnectionManager(target or ConnectionConfig())
        self._id_generator = id_generator
        self._registry = registry
        self._collections: dict[
            tuple[str, type[BaseModel] | None], DocumentCollection
        ] = {}

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    async def connect(self) -> DocumentStore:
        if not self._manager.is_connected:
            await self._manager.connect()
        return self

    def collection(
        self, name: str, model: type[BaseModel] | None = None
    ) -> DocumentCollection:
        """Return the collection ``name``; its table is created on first use."""
        key = (name, model)
        cached = self._collections.get(key)
        if cached is not None:
            return cached
        coll = DocumentCollection(
            self._manager,
            name,
            id_generator=self._id_generator,
            registry=self._registry,
            model=model,
        )
        self._collections[key] = coll
        return coll

    def __getitem__(self, name: str) -> DocumentCollection:
        return self.collection(name)

    async def collections(self) -> list[str]:
        return await self._manager.collections()

    async def raw(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """
        Run one SQL statement in a transaction.

        Rows of a query come back as dicts keyed by column name; statements
        without a result set return ``[]``. Parameters are positional ``?``
        placeholders and are encoded like filter operands.

        Raises:
            ConstraintViolationError: When a unique index or check trigger
                rejects the write.
        """
        async with self._manager.transaction() as tx:
            result = await execute(
                tx.connection, sql, (encode_param(p) for p in params)
            )
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result.fetchall()]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionHandle]:
        """Group collection calls into one transaction (nesting uses savepoints)."""
        async with self._manager.transaction() as tx:
            yield tx

    def status(self) -> ConnectionStatus:
        return self._manager.status()

    async def database_stats(self) -> DatabaseStats:
        return await self._manager.database_stats()

    async def maintenance(self) -> bool:
        return await self._manager.maintenance()

    async def close(self) -> None:
        await self._manager.close()
        self._collections.clear()
        logger.debug("DocumentStore closed")

    async def __aenter__(self) -> DocumentStore:
        return await self.connect()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
