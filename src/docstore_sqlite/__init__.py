"""MongoDB-style document queries over SQLite JSON columns."""

from __future__ import annotations

from .collection import DocumentCollection
from .config import ConnectionConfig
from .connection import (
    ConnectionManager,
    ConnectionStatus,
    DatabaseStats,
    TransactionHandle,
)
from .database import DocumentStore
from .exceptions import (
    CompileError,
    CompoundUniqueNotSupportedError,
    ConfigurationError,
    ConnectionStateError,
    ConstraintViolationError,
    DocumentStoreError,
    DuplicateKeyError,
    InvalidUpdateError,
    MissingSetOperatorError,
    PoolTimeoutError,
    TransactionStateError,
    UnknownOperatorError,
)
from .ids import IIDGenerator, ObjectIdGenerator
from .maintenance import MaintenanceWorker
from .promotion import PromotedColumn, PromotedColumnSynchronizer
from .query import (
    FilterCompiler,
    FindOptions,
    QueryOperator,
    SQLFragment,
    SQLOperator,
    SQLOperatorRegistry,
    UpdateCompiler,
    UpdateSpec,
    build_default_registry,
    compile_filter,
    compile_pagination,
    compile_sort,
)
from .results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult

__all__ = [
    # Store
    "DocumentStore",
    "DocumentCollection",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionStatus",
    "DatabaseStats",
    "TransactionHandle",
    "MaintenanceWorker",
    "PromotedColumn",
    "PromotedColumnSynchronizer",
    "IIDGenerator",
    "ObjectIdGenerator",
    # Compilers
    "FilterCompiler",
    "FindOptions",
    "QueryOperator",
    "SQLFragment",
    "SQLOperator",
    "SQLOperatorRegistry",
    "UpdateCompiler",
    "UpdateSpec",
    "build_default_registry",
    "compile_filter",
    "compile_pagination",
    "compile_sort",
    # Results
    "DeleteResult",
    "InsertManyResult",
    "InsertOneResult",
    "UpdateResult",
    # Exceptions
    "CompileError",
    "CompoundUniqueNotSupportedError",
    "ConfigurationError",
    "ConnectionStateError",
    "ConstraintViolationError",
    "DocumentStoreError",
    "DuplicateKeyError",
    "InvalidUpdateError",
    "MissingSetOperatorError",
    "PoolTimeoutError",
    "TransactionStateError",
    "UnknownOperatorError",
]
