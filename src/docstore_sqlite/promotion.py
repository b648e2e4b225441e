"""
PromotedColumnSynchronizer: mirror body paths into real columns.

Promoting ``address.city`` on ``users``:

1. adds the column ``address__city`` (no declared type, so values keep the
   type ``json_extract`` returns);
2. installs ``AFTER INSERT`` / ``AFTER UPDATE OF data`` triggers that copy
   the path into the column;
3. back-fills existing rows inside a savepoint;
4. indexes the column, uniquely when asked.

Everything runs in one transaction. A failed back-fill is logged and rolled
back to its savepoint; the promotion itself still commits.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import exc as sa_exc

from .connection import execute
from .exceptions import CompileError, CompoundUniqueNotSupportedError
from .query.fragments import (
    BODY_COLUMN,
    FIXED_COLUMNS,
    ID_COLUMN,
    column_for_path,
    extract,
    quote_identifier,
)
from .query.raw import rewrite_expression, tokenize
from .schema import (
    ensure_table,
    table_columns,
    table_indexes,
    table_triggers,
    validate_table_name,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncConnection

    from .connection import ConnectionManager

logger = logging.getLogger("docstore.promotion")

CHECK_MESSAGE_PREFIX = "Check constraint violated: "

_SYNC_PATH_RE = re.compile(r"json_extract\(NEW\.data, '\$\.(?P<path>[A-Za-z0-9_.]+)'\)")


@dataclass(frozen=True)
class PromotedColumn:
    """
    Catalog view of one promoted path.

    Attributes:
        path: Dotted body path mirrored by the column.
        column: Real column name.
        unique: Whether a single-column unique index covers the column.
        indexes: Names of every index that includes the column.
        checks: Base names of the check triggers attached to the column.
    """

    path: str
    column: str
    unique: bool = False
    indexes: tuple[str, ...] = ()
    checks: tuple[str, ...] = ()


def normalize_paths(paths: str | Sequence[str]) -> list[str]:
    """Accept ``"a"``, ``"a, b"`` or ``["a", "b"]``; duplicates are dropped."""
    raw = paths.split(",") if isinstance(paths, str) else list(paths)
    cleaned = [p.strip() for p in raw if isinstance(p, str) and p.strip()]
    if not cleaned or len(cleaned) != len(raw):
        raise CompileError(f"Invalid promotion path(s): {paths!r}")
    return list(dict.fromkeys(cleaned))


def sync_trigger_names(table: str, column: str) -> tuple[str, str]:
    base = f"trg_{table}_{column}_sync"
    return f"{base}_insert", f"{base}_update"


def index_name(table: str, columns: Sequence[str]) -> str:
    return f"idx_{table}_{'_'.join(columns)}"


def unique_index_name(table: str, column: str) -> str:
    return f"uq_{table}_{column}"


def check_trigger_base(table: str, column: str, expression: str) -> str:
    digest = hashlib.sha1(expression.encode("utf-8")).hexdigest()[:8]
    return f"chk_{table}_{column}_{digest}"


class PromotedColumnSynchronizer:
    """Provisions promoted columns, their triggers, indexes and checks."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def promote(
        self,
        table: str,
        paths: str | Sequence[str],
        *,
        unique: bool = False,
    ) -> list[PromotedColumn]:
        """
        Promote one path, or several sharing one composite index.

        Idempotent: promoting an already promoted path changes nothing.

        Raises:
            CompoundUniqueNotSupportedError: ``unique=True`` with more than
                one path. Raised before any DDL runs.
            DuplicateKeyError: Existing rows already collide on a unique path.
            CompileError: Two paths flatten to the same column name
                (``a.b`` and ``a__b``).
        """
        path_list = normalize_paths(paths)
        if unique and len(path_list) > 1:
            raise CompoundUniqueNotSupportedError(path_list)
        validate_table_name(table)
        columns = [column_for_path(p) for p in path_list]
        if len(set(columns)) != len(columns):
            raise CompileError(f"Paths map to the same column: {path_list!r}")

        async with self._manager.transaction() as tx:
            conn = tx.connection
            await ensure_table(conn, table)
            mirrored = await self._sync_paths(conn, table)
            for path, column in zip(path_list, columns):
                if mirrored.get(column, path) != path:
                    raise CompileError(
                        f"Column {column!r} already mirrors "
                        f"{mirrored[column]!r}; cannot promote {path!r}",
                        key=path,
                    )
            existing = set(await table_columns(conn, table))
            for path, column in zip(path_list, columns):
                if column not in existing:
                    await conn.exec_driver_sql(
                        f"ALTER TABLE {table} ADD COLUMN {quote_identifier(column)}"
                    )
                    logger.info("Promoted %s.%s to column %s", table, path, column)
                await self._install_sync_triggers(conn, table, path, column)
                await self._backfill(table, path, column, conn)

            if unique:
                await execute(
                    conn,
                    f"CREATE UNIQUE INDEX IF NOT EXISTS "
                    f"{unique_index_name(table, columns[0])} "
                    f"ON {table} ({quote_identifier(columns[0])})",
                    table=table,
                )
            else:
                await conn.exec_driver_sql(
                    f"CREATE INDEX IF NOT EXISTS {index_name(table, columns)} "
                    f"ON {table} ({', '.join(quote_identifier(c) for c in columns)})"
                )

        return [
            PromotedColumn(path, column, unique=unique)
            for path, column in zip(path_list, columns)
        ]

    async def _install_sync_triggers(
        self, conn: AsyncConnection, table: str, path: str, column: str
    ) -> None:
        insert_name, update_name = sync_trigger_names(table, column)
        value = extract(path, f"NEW.{BODY_COLUMN}")
        col = quote_identifier(column)
        for name, timing in (
            (insert_name, "AFTER INSERT"),
            (update_name, f"AFTER UPDATE OF {BODY_COLUMN}"),
        ):
            await conn.exec_driver_sql(
                f"CREATE TRIGGER IF NOT EXISTS {name} {timing} ON {table} "
                f"FOR EACH ROW WHEN {value} IS NOT NEW.{col} "
                f"BEGIN UPDATE {table} SET {col} = {value} "
                f"WHERE {ID_COLUMN} = NEW.{ID_COLUMN}; END"
            )

    async def _backfill(
        self, table: str, path: str, column: str, conn: AsyncConnection
    ) -> None:
        col = quote_identifier(column)
        value = extract(path)
        try:
            async with self._manager.transaction():
                result = await conn.exec_driver_sql(
                    f"UPDATE {table} SET {col} = {value} WHERE {col} IS NOT {value}"
                )
            if result.rowcount:
                logger.info(
                    "Back-filled %d row(s) of %s.%s", result.rowcount, table, column
                )
        except sa_exc.DBAPIError:
            logger.warning(
                "Back-fill of %s.%s failed; existing rows keep their values",
                table,
                column,
                exc_info=True,
            )

    async def add_check_constraint(
        self, table: str, path: str, expression: str
    ) -> str:
        """
        Reject inserts and body updates for which ``expression`` is false.

        Bare field names in ``expression`` read from the new body (``age >= 18``
        checks ``json_extract(NEW.data, '$.age')``). A missing field makes the
        expression ``NULL``, which passes. The path is promoted first.

        Returns the base name of the installed trigger pair.
        """
        if not isinstance(expression, str) or not expression.strip():
            raise CompileError("Check expression must be a non-empty string", key=path)
        if any(t.kind == "other" and t.text == ";" for t in tokenize(expression)):
            raise CompileError("Check expression must be a single expression", key=path)

        column = column_for_path(path)
        condition = rewrite_expression(expression, f"NEW.{BODY_COLUMN}")
        message = f"{CHECK_MESSAGE_PREFIX}{expression}".replace("'", "''")
        base = check_trigger_base(table, column, expression)

        async with self._manager.transaction() as tx:
            await self.promote(table, path)
            conn = tx.connection
            for suffix, timing in (
                ("insert", "BEFORE INSERT"),
                ("update", f"BEFORE UPDATE OF {BODY_COLUMN}"),
            ):
                name = f"{base}_{suffix}"
                await conn.exec_driver_sql(f"DROP TRIGGER IF EXISTS {name}")
                await conn.exec_driver_sql(
                    f"CREATE TRIGGER {name} {timing} ON {table} FOR EACH ROW "
                    f"WHEN NOT ({condition}) "
                    f"BEGIN SELECT RAISE(ABORT, '{message}'); END"
                )
        logger.info("Added check on %s.%s: %s", table, path, expression)
        return base

    async def promoted_columns(self, table: str) -> list[PromotedColumn]:
        """Introspect the catalog for promoted columns of ``table``."""
        validate_table_name(table)
        async with self._manager.connection() as conn:
            columns = [
                c for c in await table_columns(conn, table) if c not in FIXED_COLUMNS
            ]
            if not columns:
                return []
            indexes = await table_indexes(conn, table)
            triggers = await table_triggers(conn, table)
            paths = await self._sync_paths(conn, table)

        promoted = []
        for column in columns:
            check_prefix = f"chk_{table}_{column}_"
            promoted.append(
                PromotedColumn(
                    path=paths.get(column, column),
                    column=column,
                    unique=any(
                        ix.unique and ix.columns == (column,) for ix in indexes
                    ),
                    indexes=tuple(ix.name for ix in indexes if column in ix.columns),
                    checks=tuple(
                        sorted(
                            {
                                t.rsplit("_", 1)[0]
                                for t in triggers
                                if t.startswith(check_prefix)
                            }
                        )
                    ),
                )
            )
        return promoted

    async def promoted_paths(self, table: str) -> dict[str, str]:
        """Promoted path -> column for ``table``."""
        validate_table_name(table)
        async with self._manager.connection() as conn:
            by_column = await self._sync_paths(conn, table)
        return {path: column for column, path in by_column.items()}

    @staticmethod
    async def _sync_paths(conn: AsyncConnection, table: str) -> dict[str, str]:
        """Column -> path, read back from the insert sync triggers' SQL."""
        result = await conn.exec_driver_sql(
            "SELECT name, sql FROM sqlite_master "
            "WHERE type = 'trigger' AND tbl_name = ?",
            (table,),
        )
        mapping: dict[str, str] = {}
        prefix = f"trg_{table}_"
        for name, sql in result.fetchall():
            if not (name.startswith(prefix) and name.endswith("_sync_insert")):
                continue
            match = _SYNC_PATH_RE.search(sql or "")
            if match is None:
                continue
            column = name[len(prefix) : -len("_sync_insert")]
            mapping[column] = match.group("path")
        return mapping
