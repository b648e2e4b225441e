"""
DocumentCollection: CRUD over one table of JSON documents.

Each row stores the document body as JSON text in ``data``; ``_id`` and the
timestamps live in real columns and are merged back into returned
documents. Filters, updates and options are compiled before any statement
is sent, so malformed input never reaches the engine.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from .connection import execute
from .exceptions import CompileError, MissingSetOperatorError
from .ids import ObjectIdGenerator
from .promotion import PromotedColumnSynchronizer
from .query.ast import literal_fields
from .query.filters import FilterCompiler
from .query.fragments import (
    BODY_COLUMN,
    CREATED_AT_COLUMN,
    ID_COLUMN,
    UPDATED_AT_COLUMN,
    SQLFragment,
)
from .query.options import (
    FindOptions,
    apply_projection,
    compile_pagination,
    compile_sort,
)
from .query.raw import prepare_raw_predicate
from .query.updates import UpdateCompiler, UpdateSpec
from .results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult
from .schema import ensure_table, validate_table_name
from .serialization import (
    ID_FIELD,
    SYSTEM_FIELDS,
    TIMESTAMP_FIELDS,
    decode_document,
    deep_get,
    deep_set,
    encode_document,
    encode_param,
    from_document,
    to_document,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncConnection

    from .connection import ConnectionManager
    from .ids import IIDGenerator
    from .promotion import PromotedColumn
    from .query.options import SortSpec
    from .query.strategy import SQLOperatorRegistry

logger = logging.getLogger("docstore.collection")

_SELECT_COLUMNS = ", ".join(
    (ID_COLUMN, BODY_COLUMN, CREATED_AT_COLUMN, UPDATED_AT_COLUMN)
)
_DEFAULT_ORDER = "ORDER BY rowid"

Document = dict[str, Any]


class DocumentCollection:
    """
    A named collection of documents.

    Args:
        manager: Connection manager shared by every collection of a store.
        name: Table name; must be a plain SQL identifier.
        id_generator: Strategy for ``_id`` values of new documents.
        registry: Optional custom filter operator registry.
        model: Optional pydantic model; when set, read methods return
            validated model instances instead of dicts.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        name: str,
        *,
        id_generator: IIDGenerator | None = None,
        registry: SQLOperatorRegistry | None = None,
        model: type[BaseModel] | None = None,
    ) -> None:
        self._manager = manager
        self._name = validate_table_name(name)
        self._ids = id_generator or ObjectIdGenerator()
        self._registry = registry
        self._model = model
        self._synchronizer = PromotedColumnSynchronizer(manager)
        self._updates = UpdateCompiler()
        self._ensured = False
        self._promoted: dict[str, str] | None = None

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"DocumentCollection({self._name!r})"

    # -- schema ------------------------------------------------------------

    async def ensure_table(self) -> None:
        """Create the backing table if it does not exist."""
        async with self._manager.transaction() as tx:
            await ensure_table(tx.connection, self._name)
        self._ensured = True

    async def _ready(self) -> None:
        if not self._ensured:
            await self.ensure_table()

    async def _promoted_paths(self) -> dict[str, str]:
        if self._promoted is None:
            self._promoted = await self._synchronizer.promoted_paths(self._name)
        return self._promoted

    async def _filter(self, filter: Mapping[str, Any] | None) -> SQLFragment:
        # Compile once against the body alone so bad filters fail before any
        # statement runs; recompile when promoted columns can serve the paths.
        compiled = FilterCompiler(self._registry).compile(filter)
        await self._ready()
        promoted = await self._promoted_paths()
        if compiled and promoted:
            compiled = FilterCompiler(self._registry, columns=promoted).compile(filter)
        return compiled.prefixed("WHERE")

    # -- documents ---------------------------------------------------------

    def _hydrate(self, row: Sequence[Any]) -> Any:
        doc_id, data, created_at, updated_at = row
        document: Document = decode_document(data)
        document[ID_FIELD] = doc_id
        document[CREATED_AT_COLUMN] = created_at
        document[UPDATED_AT_COLUMN] = updated_at
        return document

    def _output(self, document: Document, projection: Mapping[str, Any] | None) -> Any:
        shaped = apply_projection(document, projection)
        if self._model is not None:
            return from_document(self._model, shaped)
        return shaped

    def _new_id(self, document: Mapping[str, Any]) -> str:
        existing = document.get(ID_FIELD, document.get("id"))
        if existing is None:
            return str(self._ids.next_id())
        return str(existing)

    # -- inserts -----------------------------------------------------------

    async def insert_one(
        self, document: Mapping[str, Any] | BaseModel
    ) -> InsertOneResult:
        """
        Insert one document; ``_id`` is generated when missing.

        Raises:
            DuplicateKeyError: The ``_id`` or a unique promoted path collides.
            ConstraintViolationError: A check constraint rejects the body.
        """
        doc = to_document(document)
        doc_id = self._new_id(doc)
        body = encode_document(doc)
        await self._ready()
        async with self._manager.transaction() as tx:
            await self._insert(tx.connection, doc_id, body)
        logger.debug("Inserted %s into %s", doc_id, self._name)
        return InsertOneResult(doc_id)

    async def insert_many(
        self, documents: Iterable[Mapping[str, Any] | BaseModel]
    ) -> InsertManyResult:
        """Insert all documents in one transaction; any failure inserts none."""
        prepared = []
        for document in documents:
            doc = to_document(document)
            prepared.append((self._new_id(doc), encode_document(doc)))
        if not prepared:
            return InsertManyResult([])
        await self._ready()
        async with self._manager.transaction() as tx:
            for doc_id, body in prepared:
                await self._insert(tx.connection, doc_id, body)
        logger.debug("Inserted %d document(s) into %s", len(prepared), self._name)
        return InsertManyResult([doc_id for doc_id, _ in prepared])

    async def _insert(self, conn: AsyncConnection, doc_id: str, body: str) -> None:
        await execute(
            conn,
            f"INSERT INTO {self._name} ({ID_COLUMN}, {BODY_COLUMN}) VALUES (?, ?)",
            (doc_id, body),
            table=self._name,
        )

    async def save(self, document: Mapping[str, Any] | BaseModel) -> Any:
        """Insert, or replace the body of the document with the same ``_id``."""
        doc = to_document(document)
        doc_id = self._new_id(doc)
        body = encode_document(doc)
        await self._ready()
        async with self._manager.transaction() as tx:
            await execute(
                tx.connection,
                f"INSERT INTO {self._name} ({ID_COLUMN}, {BODY_COLUMN}) VALUES (?, ?) "
                f"ON CONFLICT({ID_COLUMN}) DO UPDATE SET "
                f"{BODY_COLUMN} = excluded.{BODY_COLUMN}, "
                f"{UPDATED_AT_COLUMN} = CURRENT_TIMESTAMP",
                (doc_id, body),
                table=self._name,
            )
        return await self.get(doc_id)

    # -- reads -------------------------------------------------------------

    async def get(self, doc_id: Any) -> Any | None:
        """Fetch a document by ``_id``."""
        return await self.find_one({ID_FIELD: str(doc_id)})

    async def find(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
        skip: int | None = None,
        projection: Mapping[str, Any] | None = None,
        options: FindOptions | None = None,
    ) -> list[Any]:
        """
        Documents matching ``filter``, in insertion order unless sorted.

        Explicit keyword arguments override the matching ``options`` fields.
        """
        opts = self._options(options, sort, limit, skip, projection)
        where = await self._filter(filter)
        return await self._select(where, opts)

    async def find_one(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        sort: SortSpec | None = None,
        projection: Mapping[str, Any] | None = None,
    ) -> Any | None:
        found = await self.find(filter, sort=sort, limit=1, projection=projection)
        return found[0] if found else None

    async def where(
        self,
        clause: str,
        params: Sequence[Any] = (),
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
        skip: int | None = None,
        projection: Mapping[str, Any] | None = None,
        options: FindOptions | None = None,
    ) -> list[Any]:
        """
        Documents matching a raw SQL predicate.

        ``clause`` may omit its leading ``WHERE``; bare field names are
        rewritten to read from the body. The clause itself is not validated:
        pass every value through ``params``.
        """
        opts = self._options(options, sort, limit, skip, projection)
        await self._ready()
        where = SQLFragment(
            prepare_raw_predicate(clause), tuple(encode_param(p) for p in params)
        )
        return await self._select(where, opts)

    async def count_documents(self, filter: Mapping[str, Any] | None = None) -> int:
        where = await self._filter(filter)
        async with self._manager.connection() as conn:
            result = await conn.exec_driver_sql(
                f"SELECT COUNT(*) FROM {self._name} {where.sql}".rstrip(), where.params
            )
            return int(result.scalar_one())

    @staticmethod
    def _options(
        options: FindOptions | None,
        sort: SortSpec | None,
        limit: int | None,
        skip: int | None,
        projection: Mapping[str, Any] | None,
    ) -> FindOptions:
        opts = options or FindOptions()
        if sort is not None:
            opts = opts.with_sort(sort)
        opts = opts.with_pagination(limit=limit, skip=skip)
        if projection is not None:
            opts = FindOptions(opts.sort, opts.limit, opts.skip, dict(projection))
        # Validate pagination before touching the database.
        compile_pagination(opts.limit, opts.skip)
        return opts

    async def _select(self, where: SQLFragment, opts: FindOptions) -> list[Any]:
        order = compile_sort(opts.sort, columns=await self._promoted_paths())
        page = compile_pagination(opts.limit, opts.skip)
        statement = (
            SQLFragment(f"SELECT {_SELECT_COLUMNS} FROM {self._name}")
            + where
            + (order or SQLFragment(_DEFAULT_ORDER))
            + page
        )
        async with self._manager.connection() as conn:
            result = await conn.exec_driver_sql(statement.sql, statement.params)
            rows = result.fetchall()
        return [self._output(self._hydrate(row), opts.projection) for row in rows]

    async def is_unique(
        self, document: Mapping[str, Any] | BaseModel, field: str
    ) -> bool:
        """
        ``True`` when no other document has the same value at ``field``.

        The document's own ``_id``, when present, is excluded from the check.
        """
        doc = to_document(document)
        value = deep_get(doc, field)
        filter: dict[str, Any] = {field: value}
        doc_id = doc.get(ID_FIELD)
        if doc_id is not None:
            filter[ID_FIELD] = {"$ne": str(doc_id)}
        return await self.count_documents(filter) == 0

    # -- updates -----------------------------------------------------------

    async def update_one(
        self,
        filter: Mapping[str, Any] | None,
        update: Mapping[str, Any] | UpdateSpec,
        *,
        upsert: bool = False,
    ) -> UpdateResult:
        """Apply ``update`` to the first matching document (insertion order)."""
        spec = UpdateSpec.parse(update)
        return await self._update(filter, spec, multi=False, upsert=upsert)

    async def update_many(
        self,
        filter: Mapping[str, Any] | None,
        update: Mapping[str, Any] | UpdateSpec,
        *,
        upsert: bool = False,
    ) -> UpdateResult:
        """
        Apply ``update`` to every matching document.

        Raises:
            MissingSetOperatorError: ``update`` has no ``$set``. Nothing is
                written.
        """
        spec = UpdateSpec.parse(update)
        if not spec.has_set:
            raise MissingSetOperatorError()
        return await self._update(filter, spec, multi=True, upsert=upsert)

    async def replace_one(
        self,
        filter: Mapping[str, Any] | None,
        replacement: Mapping[str, Any] | BaseModel,
        *,
        upsert: bool = False,
    ) -> UpdateResult:
        """Replace the body of the first matching document wholesale."""
        doc = to_document(replacement)
        if any(isinstance(k, str) and k.startswith("$") for k in doc):
            raise CompileError("Replacement document must not contain operators")
        body = {k: v for k, v in doc.items() if k not in SYSTEM_FIELDS}
        spec = UpdateSpec(replacement=body)
        return await self._update(filter, spec, multi=False, upsert=upsert)

    async def _update(
        self,
        filter: Mapping[str, Any] | None,
        spec: UpdateSpec,
        *,
        multi: bool,
        upsert: bool,
    ) -> UpdateResult:
        where = await self._filter(filter)
        promoted = await self._promoted_paths()
        read_modify_write = self._updates.requires_read_modify_write(
            spec, promoted.keys()
        )
        limit = SQLFragment() if multi else SQLFragment("LIMIT 1")

        async with self._manager.transaction() as tx:
            conn = tx.connection
            if not read_modify_write:
                read_modify_write = await self._diverges_in_place(
                    conn, spec, where, limit
                )
            if read_modify_write:
                statement = (
                    SQLFragment(f"SELECT {ID_COLUMN}, {BODY_COLUMN} FROM {self._name}")
                    + where
                    + SQLFragment(_DEFAULT_ORDER)
                    + limit
                )
                result = await conn.exec_driver_sql(statement.sql, statement.params)
                rows = result.fetchall()
                for doc_id, data in rows:
                    body = spec.apply(decode_document(data))
                    assignment = self._updates.compile_body(body)
                    await execute(
                        conn,
                        f"UPDATE {self._name} SET {assignment.sql} "
                        f"WHERE {ID_COLUMN} = ?",
                        (*assignment.params, doc_id),
                        table=self._name,
                    )
                matched = modified = len(rows)
            else:
                assignment = self._updates.compile_in_place(spec)
                if multi:
                    target = where
                else:
                    target = SQLFragment(
                        f"WHERE {ID_COLUMN} = (SELECT {ID_COLUMN} FROM {self._name} "
                        f"{where.sql} {_DEFAULT_ORDER} LIMIT 1)",
                        where.params,
                    )
                statement = (
                    SQLFragment(
                        f"UPDATE {self._name} SET {assignment.sql}", assignment.params
                    )
                    + target
                )
                result = await execute(
                    conn, statement.sql, statement.params, table=self._name
                )
                matched = modified = result.rowcount

            if matched == 0 and upsert:
                upserted_id = await self._upsert(conn, filter, spec)
                return UpdateResult(upserted_id=upserted_id)

        logger.debug(
            "Updated %s: matched=%d modified=%d (%s)",
            self._name,
            matched,
            modified,
            "read-modify-write" if read_modify_write else "in place",
        )
        return UpdateResult(matched_count=matched, modified_count=modified)

    async def _diverges_in_place(
        self,
        conn: AsyncConnection,
        spec: UpdateSpec,
        where: SQLFragment,
        limit: SQLFragment,
    ) -> bool:
        """``True`` if a target row needs the read-modify-write path."""
        hazard = self._updates.in_place_hazard(spec)
        if not hazard:
            return False
        targets = SQLFragment(f"SELECT {ID_COLUMN} FROM {self._name}") + where
        if limit:
            targets = targets + SQLFragment(_DEFAULT_ORDER) + limit
        statement = SQLFragment(
            f"SELECT 1 FROM {self._name} WHERE {ID_COLUMN} IN ({targets.sql}) "
            f"AND ({hazard.sql}) LIMIT 1",
            targets.params + hazard.params,
        )
        result = await conn.exec_driver_sql(statement.sql, statement.params)
        return result.first() is not None

    async def _upsert(
        self,
        conn: AsyncConnection,
        filter: Mapping[str, Any] | None,
        spec: UpdateSpec,
    ) -> str:
        seed: Document = {}
        doc_id: str | None = None
        for path, value in literal_fields(filter).items():
            if path in (ID_FIELD, "id"):
                doc_id = str(value)
            elif path not in TIMESTAMP_FIELDS and value is not None:
                deep_set(seed, path, copy.deepcopy(value))
        body = spec.apply(seed)
        new_id = doc_id or str(self._ids.next_id())
        await self._insert(conn, new_id, encode_document(body))
        logger.debug("Upserted %s into %s", new_id, self._name)
        return new_id

    # -- deletes -----------------------------------------------------------

    async def delete_one(self, filter: Mapping[str, Any] | None) -> DeleteResult:
        where = await self._filter(filter)
        async with self._manager.transaction() as tx:
            result = await tx.connection.exec_driver_sql(
                f"DELETE FROM {self._name} WHERE {ID_COLUMN} = "
                f"(SELECT {ID_COLUMN} FROM {self._name} {where.sql} "
                f"{_DEFAULT_ORDER} LIMIT 1)",
                where.params,
            )
        return DeleteResult(result.rowcount)

    async def delete_many(self, filter: Mapping[str, Any]) -> DeleteResult:
        """
        Delete every matching document.

        Raises:
            CompileError: For an empty filter; a blanket delete must be
                spelled out as a raw statement.
        """
        if not filter:
            raise CompileError("delete_many requires a non-empty filter")
        where = await self._filter(filter)
        async with self._manager.transaction() as tx:
            result = await tx.connection.exec_driver_sql(
                f"DELETE FROM {self._name} {where.sql}", where.params
            )
        logger.debug("Deleted %d document(s) from %s", result.rowcount, self._name)
        return DeleteResult(result.rowcount)

    # -- promotion ---------------------------------------------------------

    async def promote(
        self, paths: str | Sequence[str], *, unique: bool = False
    ) -> list[PromotedColumn]:
        """Mirror ``paths`` into real, indexed columns."""
        self._promoted = None
        try:
            promoted = await self._synchronizer.promote(
                self._name, paths, unique=unique
            )
        finally:
            self._promoted = None
        self._ensured = True
        return promoted

    async def create_index(self, paths: str | Sequence[str]) -> list[PromotedColumn]:
        return await self.promote(paths)

    async def unique(self, path: str) -> PromotedColumn:
        return (await self.promote(path, unique=True))[0]

    async def add_check_constraint(self, path: str, expression: str) -> str:
        try:
            return await self._synchronizer.add_check_constraint(
                self._name, path, expression
            )
        finally:
            self._promoted = None
            self._ensured = True

    async def promoted_columns(self) -> list[PromotedColumn]:
        return await self._synchronizer.promoted_columns(self._name)

    async def drop(self) -> None:
        """Drop the backing table with its indexes and triggers."""
        async with self._manager.transaction() as tx:
            await tx.connection.exec_driver_sql(f"DROP TABLE IF EXISTS {self._name}")
        self._ensured = False
        self._promoted = None
        logger.info("Dropped collection %s", self._name)
