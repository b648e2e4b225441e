"""Connection configuration for the document store."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

MEMORY_PATH = ":memory:"


@dataclass(frozen=True)
class ConnectionConfig:
    """Configuration for :class:`~docstore_sqlite.connection.ConnectionManager`.

    Attributes:
        path: SQLite database file, or ``":memory:"`` for a private in-memory
            database (single shared connection).
        pool_size: Number of pooled connections kept open (file databases).
        max_overflow: Extra connections allowed beyond ``pool_size``.
        pool_timeout: Seconds to wait for a free connection before
            ``PoolTimeoutError``.
        pool_pre_ping: Validate connections with a round-trip on checkout.
        busy_timeout_ms: SQLite busy timeout, bounds the wait on the engine's
            write lock.
        maintenance_interval: Seconds between background maintenance runs;
            ``None`` disables the worker.
        journal_mode: Journal mode for file databases.
        synchronous: ``PRAGMA synchronous`` level for file databases.
        cache_size: ``PRAGMA cache_size`` (negative values are KiB).
        mmap_size: ``PRAGMA mmap_size`` in bytes for file databases.
        echo: Log every statement through SQLAlchemy's engine logger.
    """

    path: str = MEMORY_PATH
    pool_size: int = 5
    max_overflow: int = 0
    pool_timeout: float = 30.0
    pool_pre_ping: bool = True
    busy_timeout_ms: int = 60_000
    maintenance_interval: float | None = 300.0
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    cache_size: int = -32_768
    mmap_size: int = 134_217_728
    echo: bool = False

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigurationError("path must not be empty")
        if self.pool_size < 1:
            raise ConfigurationError("pool_size must be at least 1")
        if self.max_overflow < 0:
            raise ConfigurationError("max_overflow must not be negative")
        if self.pool_timeout < 0:
            raise ConfigurationError("pool_timeout must not be negative")
        if self.busy_timeout_ms < 0:
            raise ConfigurationError("busy_timeout_ms must not be negative")
        if self.maintenance_interval is not None and self.maintenance_interval <= 0:
            raise ConfigurationError("maintenance_interval must be positive or None")

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY_PATH

    @property
    def url(self) -> str:
        """SQLAlchemy URL for the aiosqlite driver."""
        return f"sqlite+aiosqlite:///{self.path}"

    @classmethod
    def from_env(
        cls,
        prefix: str = "DOCSTORE_",
        environ: Mapping[str, str] | None = None,
    ) -> ConnectionConfig:
        """Build a config from environment variables.

        ``<prefix>PATH`` wins over ``SQLITE_PATH``; unset variables keep the
        dataclass defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        path = env.get(f"{prefix}PATH") or env.get("SQLITE_PATH")
        if path:
            kwargs["path"] = path

        try:
            if f"{prefix}POOL_SIZE" in env:
                kwargs["pool_size"] = int(env[f"{prefix}POOL_SIZE"])
            if f"{prefix}POOL_TIMEOUT" in env:
                kwargs["pool_timeout"] = float(env[f"{prefix}POOL_TIMEOUT"])
            if f"{prefix}BUSY_TIMEOUT_MS" in env:
                kwargs["busy_timeout_ms"] = int(env[f"{prefix}BUSY_TIMEOUT_MS"])
            if f"{prefix}MAINTENANCE_INTERVAL" in env:
                raw = env[f"{prefix}MAINTENANCE_INTERVAL"].strip().lower()
                kwargs["maintenance_interval"] = (
                    None if raw in ("", "0", "off", "none") else float(raw)
                )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment value: {e}") from e

        return cls(**kwargs)  # type: ignore[arg-type]
