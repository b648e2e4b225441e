"""Collection table DDL and catalog introspection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .exceptions import CompileError
from .query.fragments import (
    BODY_COLUMN,
    CREATED_AT_COLUMN,
    ID_COLUMN,
    UPDATED_AT_COLUMN,
    validate_identifier,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection

logger = logging.getLogger("docstore.schema")


@dataclass(frozen=True)
class IndexInfo:
    name: str
    unique: bool
    columns: tuple[str, ...]


def validate_table_name(name: str) -> str:
    validate_identifier(name, "collection name")
    if name.lower().startswith("sqlite_"):
        raise CompileError(f"Collection name is reserved: {name!r}", key=name)
    return name


def create_table_sql(table: str) -> str:
    validate_table_name(table)
    return (
        f"CREATE TABLE IF NOT EXISTS {table} ("
        f"{ID_COLUMN} TEXT PRIMARY KEY, "
        f"{BODY_COLUMN} TEXT NOT NULL, "
        f"{CREATED_AT_COLUMN} DATETIME DEFAULT CURRENT_TIMESTAMP, "
        f"{UPDATED_AT_COLUMN} DATETIME DEFAULT CURRENT_TIMESTAMP)"
    )


async def ensure_table(conn: AsyncConnection, table: str) -> None:
    await conn.exec_driver_sql(create_table_sql(table))
    logger.debug("Ensured table %s", table)


async def table_columns(conn: AsyncConnection, table: str) -> list[str]:
    """Column names in declaration order (empty if the table does not exist)."""
    validate_table_name(table)
    result = await conn.exec_driver_sql(f"PRAGMA table_info({table})")
    return [row[1] for row in result.fetchall()]


async def table_indexes(conn: AsyncConnection, table: str) -> list[IndexInfo]:
    validate_table_name(table)
    result = await conn.exec_driver_sql(f"PRAGMA index_list({table})")
    indexes: list[IndexInfo] = []
    for row in result.fetchall():
        name, unique = row[1], bool(row[2])
        cols = await conn.exec_driver_sql(f"PRAGMA index_info('{name}')")
        indexes.append(
            IndexInfo(name, unique, tuple(c[2] for c in cols.fetchall()))
        )
    return indexes


async def table_triggers(conn: AsyncConnection, table: str) -> list[str]:
    result = await conn.exec_driver_sql(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'trigger' AND tbl_name = ? ORDER BY name",
        (table,),
    )
    return [row[0] for row in result.fetchall()]
